from .models import RenderEvent, RenderEventType
from .emitter import LoggingEventEmitter, NullEventEmitter, RenderEventEmitter

__all__ = [
    "RenderEvent",
    "RenderEventType",
    "RenderEventEmitter",
    "NullEventEmitter",
    "LoggingEventEmitter",
]
