"""
Render endpoint.

POST /render/{tenant_code}/{workspace_code}/{document_type_code}

The body is opaque to the HTTP layer; it is handed verbatim to the
mapper registered for the document type. The bearer credential from the
``Authorization`` header is handed verbatim to the auth verifier.

Failures are returned as JSON with the stage at which rendering
stopped:

    {"stage": "...", "error": "...", "message": "...", "request_id": "..."}
"""

import logging
import uuid
from typing import Annotated, Dict, Literal, Optional, Type

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from fastapi.responses import ORJSONResponse, Response

from renderer.app.errors import (
    AuthVerifierUnavailable,
    InjectorExecutionError,
    PayloadValidationError,
    RenderCancelled,
    RenderFailed,
    TemplateNotFound,
    Unauthorized,
    UnknownInjectorError,
    UnknownMapperError,
    UnsupportedFormatError,
)
from renderer.app.rendering.pipeline import RenderPipeline, RenderRequest

logger = logging.getLogger("renderer.api")

router = APIRouter(tags=["Rendering"])

# Ordered: first matching cause type wins
_STATUS_BY_CAUSE: Dict[Type[BaseException], int] = {
    Unauthorized: status.HTTP_401_UNAUTHORIZED,
    AuthVerifierUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
    UnknownMapperError: status.HTTP_404_NOT_FOUND,
    PayloadValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    TemplateNotFound: status.HTTP_404_NOT_FOUND,
    UnknownInjectorError: status.HTTP_500_INTERNAL_SERVER_ERROR,
    UnsupportedFormatError: status.HTTP_500_INTERNAL_SERVER_ERROR,
    InjectorExecutionError: status.HTTP_502_BAD_GATEWAY,
    RenderCancelled: status.HTTP_504_GATEWAY_TIMEOUT,
}

# =============================================================================
# Dependency providers
# =============================================================================


def get_request_id(
    x_request_id: Annotated[
        Optional[str],
        Header(description="Caller-supplied trace ID"),
    ] = None,
) -> str:
    """Extract or generate a request ID for end-to-end traceability."""
    if x_request_id and len(x_request_id) > 128:
        return uuid.uuid4().hex
    return x_request_id or uuid.uuid4().hex


def get_bearer_token(
    authorization: Annotated[Optional[str], Header()] = None,
) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_pipeline(request: Request) -> RenderPipeline:
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise RuntimeError("render pipeline not initialized")
    return pipeline


async def read_bounded_body(request: Request, max_bytes: int) -> bytes:
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > max_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Body exceeds the {max_bytes} byte limit.",
        )

    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > max_bytes:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail=f"Body exceeds the {max_bytes} byte limit.",
            )
    return bytes(body)


# =============================================================================
# Error translation
# =============================================================================


def status_for(failure: RenderFailed) -> int:
    for cause_type, code in _STATUS_BY_CAUSE.items():
        if isinstance(failure.cause, cause_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def failure_response(failure: RenderFailed, request_id: str) -> ORJSONResponse:
    code = status_for(failure)
    content = {
        "stage": failure.stage.value,
        "error": type(failure.cause).__name__,
        "message": str(failure.cause),
        "request_id": request_id,
    }
    if isinstance(failure.cause, PayloadValidationError):
        content["errors"] = failure.cause.errors
    if code == status.HTTP_500_INTERNAL_SERVER_ERROR and not isinstance(
        failure.cause, (UnknownInjectorError, UnsupportedFormatError)
    ):
        content["message"] = "Internal render error."

    headers = {"X-Request-Id": request_id}
    if code == status.HTTP_401_UNAUTHORIZED:
        headers["WWW-Authenticate"] = "Bearer"
    return ORJSONResponse(status_code=code, content=content, headers=headers)


# =============================================================================
# POST /render/{tenant_code}/{workspace_code}/{document_type_code}
# =============================================================================


@router.post(
    "/render/{tenant_code}/{workspace_code}/{document_type_code}",
    summary="Render a document for a tenant workspace",
    response_class=Response,
    responses={
        200: {"description": "Rendered document"},
        401: {"description": "Credential missing or rejected"},
        404: {"description": "Unknown document type or no template"},
        413: {"description": "Payload too large"},
        422: {"description": "Payload failed validation"},
        502: {"description": "Injector failure"},
        504: {"description": "Render timed out"},
    },
)
async def render_document(
    request: Request,
    tenant_code: str,
    workspace_code: str,
    document_type_code: str,
    pipeline: Annotated[RenderPipeline, Depends(get_pipeline)],
    request_id: Annotated[str, Depends(get_request_id)],
    token: Annotated[Optional[str], Depends(get_bearer_token)],
    disposition: Annotated[
        Literal["inline", "attachment"],
        Query(description="Content-Disposition of the rendered document"),
    ] = "inline",
) -> Response:
    settings = request.app.state.settings
    raw_body = await read_bounded_body(request, settings.max_body_size_bytes)

    render_request = RenderRequest(
        request_id=request_id,
        tenant_code=tenant_code,
        workspace_code=workspace_code,
        document_type_code=document_type_code,
        raw_body=raw_body,
        credential=token,
        headers={
            k: v for k, v in request.headers.items() if k.lower() != "authorization"
        },
    )

    try:
        result = await pipeline.render(
            render_request, emitter=request.app.state.event_emitter
        )
    except RenderFailed as failure:
        return failure_response(failure, request_id)

    filename = f"{document_type_code}.{result.file_extension}"
    return Response(
        content=result.content,
        media_type=result.media_type,
        headers={
            "Content-Disposition": f'{disposition}; filename="{filename}"',
            "X-Template-Id": result.template_id,
            "X-Template-Version": str(result.template_version),
            "X-Template-Scope": result.template_scope.value,
            "X-Content-Hash": result.content_hash,
            "X-Request-Id": result.request_id,
        },
    )
