"""
Built-in injectors.

Registered on every engine before extensions, so extension code can
depend on them. All values are computed in UTC.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING

from renderer.app.injection.formatting import DATE_TIME_FORMATS
from renderer.app.injection.injector import FunctionInjector
from renderer.app.injection.values import ValueType

if TYPE_CHECKING:
    from renderer.app.engine.builder import EngineBuilder
    from renderer.app.rendering.context import RenderContext


def _now() -> datetime:
    return datetime.now(timezone.utc)


def date_time_now(ctx: "RenderContext") -> datetime:
    return _now()


def date_now(ctx: "RenderContext") -> str:
    return _now().date().isoformat()


def year_now(ctx: "RenderContext") -> int:
    return _now().year


def register_builtins(builder: "EngineBuilder") -> None:
    builder.register_injector(
        ValueType.TIME, "date_time_now", FunctionInjector(date_time_now, formats=DATE_TIME_FORMATS)
    )
    builder.register_injector(
        ValueType.STRING, "date_now", FunctionInjector(date_now)
    )
    builder.register_injector(
        ValueType.NUMBER, "year_now", FunctionInjector(year_now)
    )
