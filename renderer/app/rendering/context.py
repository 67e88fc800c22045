"""
Per-request render context.

A ``RenderContext`` is created for exactly one render request and is
discarded afterwards. It carries the request coordinates, the mapped
payload, the resolved template, the shared init data and the values
resolved so far.

IMPORTANT:
- The resolved-values map is private runtime state. It is written only
  by the injection stage and is never shared between requests.
- ``init_data`` is the read-only view established at startup.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator

from renderer.app.injection.values import InjectableValue, InjectionKey
from renderer.app.templates.models import TemplateDefinition


class RenderContext(BaseModel):
    request_id: str
    tenant_code: str
    workspace_code: str
    document_type_code: str

    template: TemplateDefinition
    payload: Any = None

    init_data: Mapping[str, Any] = Field(
        default_factory=lambda: MappingProxyType({})
    )
    headers: Mapping[str, str] = Field(default_factory=dict)
    selected_formats: Mapping[InjectionKey, str] = Field(default_factory=dict)

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    # Runtime-only plumbing (not serialized)
    _resolved: Dict[InjectionKey, InjectableValue] = PrivateAttr(
        default_factory=dict
    )

    @field_validator("init_data", "headers", "selected_formats", mode="after")
    @classmethod
    def _read_only(cls, value: Mapping[Any, Any]) -> Mapping[Any, Any]:
        if isinstance(value, MappingProxyType):
            return value
        return MappingProxyType(dict(value))

    def get_resolved(self, key: InjectionKey) -> Optional[InjectableValue]:
        return self._resolved.get(key)

    def set_resolved(self, key: InjectionKey, value: InjectableValue) -> None:
        if key in self._resolved:
            raise RuntimeError(f"Value for '{key}' already resolved")
        if not value.matches(key):
            raise TypeError(
                f"Value of type {value.value_type.value} cannot fill '{key}'"
            )
        self._resolved[key] = value

    def resolved_values(self) -> Mapping[InjectionKey, InjectableValue]:
        return MappingProxyType(self._resolved)

    def selected_format(self, key: InjectionKey) -> Optional[str]:
        """Display format chosen for ``key`` in this render, if any."""
        return self.selected_formats.get(key)

    def value_of(self, key: InjectionKey) -> Any:
        """Return the raw resolved value for ``key``; KeyError if absent."""
        return self._resolved[key].value
