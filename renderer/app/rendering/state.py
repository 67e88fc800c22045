"""
Render lifecycle states and failure stages.

The pipeline advances strictly forward through ``RenderState`` and may
enter ``FAILED`` from any non-terminal state. ``RenderStage`` is the tag
attached to every failure returned to callers.
"""

from enum import Enum


class RenderState(str, Enum):
    RECEIVED = "received"
    AUTHENTICATED = "authenticated"
    MAPPED = "mapped"
    RESOLVED = "resolved"
    INJECTED = "injected"
    RENDERED = "rendered"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in {RenderState.COMPLETED, RenderState.FAILED}


class RenderStage(str, Enum):
    AUTH = "auth"
    MAPPING = "mapping"
    RESOLUTION = "resolution"
    INJECTION = "injection"
    RENDER = "render"
