"""
Request mappers.

A mapper turns the opaque request body for one document type into a
typed payload, validates it, and may extract injectable values directly
from it. Values supplied by the mapper take precedence over registered
injectors for the same key.

IMPORTANT:
- ``parse`` and ``validate`` run before any injector is invoked.
- Mappers must be stateless; one instance serves every request.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Protocol, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from renderer.app.errors import PayloadValidationError
from renderer.app.injection.values import InjectableValue, InjectionKey


class MapperContext(BaseModel):
    """Request coordinates visible to a mapper."""

    request_id: str
    tenant_code: str
    workspace_code: str
    document_type_code: str
    headers: Mapping[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)


@dataclass(frozen=True)
class MappedRequest:
    payload: Any
    injectables: Dict[InjectionKey, InjectableValue] = field(default_factory=dict)


class Mapper(Protocol):
    description: str

    def parse(self, raw_body: bytes, context: MapperContext) -> Any:
        ...

    def validate(self, payload: Any) -> None:
        ...

    def extract(
        self, payload: Any, context: MapperContext
    ) -> Mapping[InjectionKey, Any]:
        ...


Extractor = Callable[[Any, MapperContext], Mapping[InjectionKey, Any]]
Validator = Callable[[Any], None]


class SchemaMapper:
    """
    Mapper backed by a pydantic schema.

    The raw body is parsed as JSON straight into ``schema``. An optional
    ``validator`` applies business rules after parsing; an optional
    ``extractor`` pulls injectable values out of the payload.
    """

    def __init__(
        self,
        schema: Type[BaseModel],
        *,
        description: str = "",
        extractor: Optional[Extractor] = None,
        validator: Optional[Validator] = None,
    ) -> None:
        self.schema = schema
        self.description = description
        self._extractor = extractor
        self._validator = validator

    def parse(self, raw_body: bytes, context: MapperContext) -> BaseModel:
        try:
            return self.schema.model_validate_json(raw_body)
        except ValidationError as exc:
            raise PayloadValidationError(
                context.document_type_code,
                f"Payload does not match schema {self.schema.__name__}",
                errors=exc.errors(include_url=False, include_context=False),
            ) from exc

    def validate(self, payload: Any) -> None:
        if self._validator is not None:
            self._validator(payload)

    def extract(
        self, payload: Any, context: MapperContext
    ) -> Mapping[InjectionKey, Any]:
        if self._extractor is None:
            return {}
        return self._extractor(payload, context)

    def json_schema(self) -> Dict[str, Any]:
        return self.schema.model_json_schema()
