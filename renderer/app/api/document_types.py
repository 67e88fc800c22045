"""
Document type discovery and schema introspection endpoints.

Both routes are read-only and operate entirely from the frozen mapper
registry. No storage access occurs at request time.
"""

from typing import Any, Dict, List

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from renderer.app.mapping.registry import MapperRegistry

router = APIRouter(prefix="/document-types", tags=["Document Types"])


class DocumentTypeItem(BaseModel):
    code: str
    description: str
    has_schema: bool


def _mappers(request: Request) -> MapperRegistry:
    return request.app.state.engine.mappers


@router.get(
    "",
    response_model=List[DocumentTypeItem],
    summary="List registered document types",
)
def list_document_types(request: Request) -> List[DocumentTypeItem]:
    return [
        DocumentTypeItem(
            code=entry.code,
            description=entry.description,
            has_schema=entry.json_schema() is not None,
        )
        for entry in _mappers(request).entries()
    ]


@router.get(
    "/{code}/schema",
    summary="Get the JSON schema for a document type payload",
)
def get_document_type_schema(code: str, request: Request) -> Dict[str, Any]:
    """
    Return the JSON schema the mapper validates request bodies against.
    """
    for entry in _mappers(request).entries():
        if entry.code != code:
            continue
        schema = entry.json_schema()
        if schema is None:
            raise HTTPException(
                status_code=404,
                detail=f"Document type '{code}' does not publish a schema",
            )
        return schema

    raise HTTPException(
        status_code=404,
        detail=f"Unknown document type '{code}'",
    )
