"""
Document-type mapper registry.

Each document type code is bound to exactly one mapper. Document types
must be registered here to be addressable through the render API.
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from renderer.app.errors import (
    DuplicateMapperError,
    PayloadValidationError,
    RegistryFrozenError,
    RenderEngineError,
    UnknownMapperError,
)
from renderer.app.injection.values import InjectableValue, InjectionKey, coerce_value
from renderer.app.mapping.mapper import MappedRequest, Mapper, MapperContext

logger = logging.getLogger("renderer.mapping")


class MapperEntry(BaseModel):
    """
    Declarative description of a registered document type.
    """

    code: str
    description: str
    mapper: Any

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    def json_schema(self) -> Optional[Dict[str, Any]]:
        produce = getattr(self.mapper, "json_schema", None)
        return produce() if callable(produce) else None


class MapperRegistry:
    def __init__(self) -> None:
        self._mappers: Dict[str, Mapper] = {}
        self._frozen = False

    def register(self, document_type_code: str, mapper: Mapper) -> None:
        if self._frozen:
            raise RegistryFrozenError(
                f"Cannot register mapper '{document_type_code}': "
                "registry is frozen"
            )
        if not document_type_code:
            raise ValueError("document_type_code must be non-empty")
        if document_type_code in self._mappers:
            raise DuplicateMapperError(document_type_code)
        self._mappers[document_type_code] = mapper
        logger.debug(
            "mapper_registered",
            extra={"document_type_code": document_type_code},
        )

    def freeze(self) -> None:
        if self._frozen:
            return
        self._mappers = MappingProxyType(dict(self._mappers))
        self._frozen = True
        logger.info(
            "mapper_registry_frozen",
            extra={"mapper_count": len(self._mappers)},
        )

    @property
    def frozen(self) -> bool:
        return self._frozen

    def __contains__(self, document_type_code: object) -> bool:
        return document_type_code in self._mappers

    def get(self, document_type_code: str) -> Mapper:
        try:
            return self._mappers[document_type_code]
        except KeyError:
            raise UnknownMapperError(document_type_code) from None

    def entries(self) -> List[MapperEntry]:
        return [
            MapperEntry(
                code=code,
                description=getattr(mapper, "description", ""),
                mapper=mapper,
            )
            for code, mapper in sorted(self._mappers.items())
        ]

    def map(
        self,
        context: MapperContext,
        document_type_code: str,
        raw_body: bytes,
    ) -> MappedRequest:
        """
        Parse, validate and extract the request body.

        Raises ``UnknownMapperError`` when no mapper is bound and
        ``PayloadValidationError`` for any parse, validation or
        extraction failure.
        """
        mapper = self.get(document_type_code)

        try:
            payload = mapper.parse(raw_body, context)
            mapper.validate(payload)
            extracted = mapper.extract(payload, context)
            injectables: Dict[InjectionKey, InjectableValue] = {
                key: coerce_value(key, raw) for key, raw in extracted.items()
            }
        except RenderEngineError:
            raise
        except (ValueError, TypeError) as exc:
            raise PayloadValidationError(document_type_code, str(exc)) from exc

        return MappedRequest(payload=payload, injectables=injectables)
