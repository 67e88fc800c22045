"""
Error taxonomy for the rendering engine.

Two families exist:

- Startup errors (duplicate registration, invalid injector wiring,
  migration failure). These are fatal: the process must not begin
  serving when one is raised.
- Request errors. These are raised inside the render pipeline and are
  translated at the pipeline boundary into ``RenderFailed``, which
  carries the stage at which the failure occurred.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, List, Optional

from renderer.app.rendering.state import RenderStage

if TYPE_CHECKING:
    from renderer.app.injection.values import InjectionKey


class FailureKind(str, Enum):
    """
    Caller-facing classification of a request failure.
    """

    UNAUTHORIZED = "unauthorized"
    BAD_REQUEST = "bad_request"
    NOT_CONFIGURED = "not_configured"
    TRANSIENT = "transient"
    INTERNAL = "internal"


class RenderEngineError(Exception):
    """Base class for every error raised by the engine."""

    kind: FailureKind = FailureKind.INTERNAL


# ---------------------------------------------------------------------------
# Startup (fatal) errors
# ---------------------------------------------------------------------------


class DuplicateRegistrationError(RenderEngineError):
    """Raised when a registry key is bound twice."""

    kind = FailureKind.NOT_CONFIGURED


class DuplicateKeyError(DuplicateRegistrationError):
    def __init__(self, key: "InjectionKey") -> None:
        self.key = key
        super().__init__(f"Injector already registered for key '{key}'.")


class DuplicateMapperError(DuplicateRegistrationError):
    def __init__(self, document_type_code: str) -> None:
        self.document_type_code = document_type_code
        super().__init__(
            f"Mapper already registered for document type "
            f"'{document_type_code}'."
        )


class RegistryFrozenError(RenderEngineError):
    """Raised when registration is attempted after the registry froze."""

    kind = FailureKind.NOT_CONFIGURED


class InjectorConfigurationError(RenderEngineError):
    """Raised at freeze time for unknown dependencies or cycles."""

    kind = FailureKind.NOT_CONFIGURED


class MigrationError(RenderEngineError):
    def __init__(
        self,
        message: str,
        *,
        revision: Optional[str] = None,
    ) -> None:
        self.revision = revision
        super().__init__(message)


# ---------------------------------------------------------------------------
# Request errors
# ---------------------------------------------------------------------------


class Unauthorized(RenderEngineError):
    kind = FailureKind.UNAUTHORIZED


class AuthVerifierUnavailable(RenderEngineError):
    """The external authority could not be reached or answered oddly."""

    kind = FailureKind.TRANSIENT


class UnknownMapperError(RenderEngineError):
    kind = FailureKind.NOT_CONFIGURED

    def __init__(self, document_type_code: str) -> None:
        self.document_type_code = document_type_code
        super().__init__(
            f"No mapper registered for document type '{document_type_code}'."
        )


class PayloadValidationError(RenderEngineError):
    kind = FailureKind.BAD_REQUEST

    def __init__(
        self,
        document_type_code: str,
        message: str,
        *,
        errors: Optional[List[Any]] = None,
    ) -> None:
        self.document_type_code = document_type_code
        self.errors = list(errors or [])
        super().__init__(message)


class TemplateNotFound(RenderEngineError):
    kind = FailureKind.NOT_CONFIGURED

    def __init__(
        self,
        tenant_code: str,
        workspace_code: str,
        document_type_code: str,
    ) -> None:
        self.tenant_code = tenant_code
        self.workspace_code = workspace_code
        self.document_type_code = document_type_code
        super().__init__(
            f"No active template for document type '{document_type_code}' "
            f"(tenant='{tenant_code}', workspace='{workspace_code}')."
        )


class TemplateVersionConflict(RenderEngineError):
    kind = FailureKind.BAD_REQUEST


class UnknownInjectorError(RenderEngineError):
    kind = FailureKind.NOT_CONFIGURED

    def __init__(self, key: "InjectionKey") -> None:
        self.key = key
        super().__init__(f"No injector registered for key '{key}'.")


class UnsupportedFormatError(RenderEngineError):
    """Raised when a template selects a format its injector does not offer."""

    kind = FailureKind.NOT_CONFIGURED

    def __init__(self, key: "InjectionKey", pattern: str) -> None:
        self.key = key
        self.pattern = pattern
        super().__init__(
            f"Format '{pattern}' is not offered by the injector for '{key}'."
        )


class InjectorExecutionError(RenderEngineError):
    kind = FailureKind.INTERNAL

    def __init__(self, key: "InjectionKey", cause: BaseException) -> None:
        self.key = key
        self.cause = cause
        super().__init__(
            f"Injector for '{key}' failed: "
            f"{type(cause).__name__}: {cause}"
        )


class RenderCancelled(RenderEngineError):
    kind = FailureKind.TRANSIENT


class DocumentRenderError(RenderEngineError):
    """Raised when substitution or typesetting fails."""


# ---------------------------------------------------------------------------
# Pipeline boundary
# ---------------------------------------------------------------------------


class RenderFailed(RenderEngineError):
    """
    Terminal failure of a render request.

    ``stage`` identifies where the pipeline stopped; ``cause`` is the
    underlying error. No rendered output exists when this is raised.
    """

    def __init__(self, stage: RenderStage, cause: BaseException) -> None:
        self.stage = stage
        self.cause = cause
        super().__init__(f"[{stage.value}] {cause}")

    @property
    def kind(self) -> FailureKind:  # type: ignore[override]
        if isinstance(self.cause, RenderEngineError):
            return self.cause.kind
        return FailureKind.INTERNAL

    def to_dict(self) -> dict:
        return {
            "stage": self.stage.value,
            "kind": self.kind.value,
            "error": type(self.cause).__name__,
            "message": str(self.cause),
        }
