from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from renderer.app.rendering.state import RenderState


# ----------------------------------------------------------------------
# Event Types (Finite and Versioned)
# ----------------------------------------------------------------------
class RenderEventType(str, Enum):
    """
    Progression events emitted during the render lifecycle.

    NOTE:
    This enum is finite and versioned.
    New entries must preserve observational semantics.
    """

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------
    RENDER_RECEIVED = "render_received"
    AUTHENTICATED = "authenticated"
    PAYLOAD_MAPPED = "payload_mapped"
    TEMPLATE_RESOLVED = "template_resolved"
    VALUES_INJECTED = "values_injected"
    DOCUMENT_RENDERED = "document_rendered"

    # ------------------------------------------------------------------
    # Terminal
    # ------------------------------------------------------------------
    RENDER_COMPLETED = "render_completed"
    RENDER_FAILED = "render_failed"

    # ------------------------------------------------------------------
    # Injection detail (non-transition)
    # ------------------------------------------------------------------
    INJECTOR_COMPLETED = "injector_completed"

    @property
    def terminal(self) -> bool:
        return self in {
            RenderEventType.RENDER_COMPLETED,
            RenderEventType.RENDER_FAILED,
        }


# ----------------------------------------------------------------------
# Event Model
# ----------------------------------------------------------------------
class RenderEvent(BaseModel):
    """
    An immutable observation of a render lifecycle step.

    Events are strictly observational. They never influence control
    flow and never carry rendered output.
    """

    event_id: UUID = Field(default_factory=uuid4)
    request_id: str = Field(..., description="The render request identifier")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    event_type: RenderEventType
    state: RenderState

    # Optional contextual metadata (stage, template id, key, timings)
    details: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )
