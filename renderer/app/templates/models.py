"""
Template definitions.

A ``TemplateDefinition`` is an immutable, versioned template bound to an
organizational scope. Publishing a change produces a new version; an
existing version is never edited in place.

Scope / coordinate rules (validated on construction):

- ``workspace`` and ``tenant-system-workspace`` templates carry both a
  tenant code and a workspace code.
- ``global-system`` templates carry neither.

A template may select a display format for any TIME, NUMBER or BOOL
placeholder in ``placeholder_formats``. Placeholders without a selection
use the default of their injector, if it advertises formats.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from renderer.app.injection.formatting import FORMATTABLE_TYPES
from renderer.app.injection.values import InjectionKey

RESERVED_PLACEHOLDER_NAMES = frozenset({"document"})


class TemplateScope(str, Enum):
    WORKSPACE = "workspace"
    TENANT_SYSTEM_WORKSPACE = "tenant-system-workspace"
    GLOBAL_SYSTEM = "global-system"


class TemplateDefinition(BaseModel):
    id: str = Field(..., min_length=1)
    scope: TemplateScope
    tenant_code: Optional[str] = None
    workspace_code: Optional[str] = None
    document_type_code: str = Field(..., min_length=1)

    body: str
    placeholders: Tuple[InjectionKey, ...] = ()
    # Placeholder name -> selected display format
    placeholder_formats: Dict[str, str] = Field(default_factory=dict)

    active: bool = True
    version: int = Field(default=1, ge=1)
    description: Optional[str] = None
    published_at: Optional[datetime] = None

    model_config = ConfigDict(frozen=True, extra="forbid")

    @model_validator(mode="after")
    def _check_scope_coordinates(self) -> "TemplateDefinition":
        if self.scope is TemplateScope.GLOBAL_SYSTEM:
            if self.tenant_code is not None or self.workspace_code is not None:
                raise ValueError(
                    "global-system templates must not carry tenant or "
                    "workspace codes"
                )
        elif not self.tenant_code or not self.workspace_code:
            raise ValueError(
                f"{self.scope.value} templates require tenant_code and "
                "workspace_code"
            )
        return self

    @model_validator(mode="after")
    def _check_placeholders(self) -> "TemplateDefinition":
        seen = set()
        for key in self.placeholders:
            if key.name in RESERVED_PLACEHOLDER_NAMES:
                raise ValueError(f"Placeholder name '{key.name}' is reserved")
            if key.name in seen:
                raise ValueError(
                    f"Placeholder name '{key.name}' declared more than once"
                )
            seen.add(key.name)

        declared = {key.name: key for key in self.placeholders}
        for name, pattern in self.placeholder_formats.items():
            key = declared.get(name)
            if key is None:
                raise ValueError(
                    f"Format selected for undeclared placeholder '{name}'"
                )
            if key.value_type not in FORMATTABLE_TYPES:
                raise ValueError(
                    f"Placeholder '{key}' has no display formats"
                )
            if not pattern:
                raise ValueError(f"Empty format selected for '{name}'")
        return self

    @property
    def cache_key(self) -> Tuple[str, int]:
        return (self.id, self.version)
