from __future__ import annotations

import logging
from typing import Protocol

from renderer.app.events.models import RenderEvent

logger = logging.getLogger("renderer.events")


class RenderEventEmitter(Protocol):
    """
    Interface for broadcasting render observations.

    Implementations must be:
    - non-blocking (or minimally blocking)
    - fail-safe (emission failures must not break a render)
    - observational only
    """

    async def emit(self, event: RenderEvent) -> None:
        ...


class NullEventEmitter:
    """
    A safe no-op emitter.
    """

    async def emit(self, event: RenderEvent) -> None:
        return


class LoggingEventEmitter:
    """
    Writes each event to the ``renderer.events`` logger.
    """

    def __init__(self, level: int = logging.INFO) -> None:
        self._level = level

    async def emit(self, event: RenderEvent) -> None:
        logger.log(
            self._level,
            event.event_type.value,
            extra={
                "request_id": event.request_id,
                "state": event.state.value,
                "details": event.details or {},
            },
        )
