"""
Injector capability interface.

An injector produces exactly one typed value for one placeholder, from
the current ``RenderContext``. Injectors are registered once at startup
and shared by every request, so they MUST NOT keep per-request state.

Injectors may declare ``dependencies``: keys whose values must be
resolved before this injector runs. Dependent values are read through
``RenderContext.get_resolved``.

Injectors of TIME, NUMBER and BOOL values may also expose ``formats``
(a ``FormatConfig``). The pattern selected for the current placeholder
is available through ``RenderContext.selected_format``.
"""

from __future__ import annotations

import inspect
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Protocol, Sequence, Tuple, Union

import anyio

from renderer.app.injection.formatting import FormatConfig
from renderer.app.injection.values import InjectionKey

if TYPE_CHECKING:
    from renderer.app.rendering.context import RenderContext


InjectorFn = Callable[["RenderContext"], Union[Any, Awaitable[Any]]]


class Injector(Protocol):
    """
    Produces a value for a single ``InjectionKey``.

    ``timeout`` of ``None`` means the registry-wide default applies.
    ``formats`` is optional; injectors without it are never formatted
    unless the template selects a pattern.
    """

    dependencies: Tuple[InjectionKey, ...]
    timeout: Optional[float]

    async def resolve(self, ctx: "RenderContext") -> Any:
        ...


def formats_of(injector: Any) -> Optional[FormatConfig]:
    return getattr(injector, "formats", None)


class FunctionInjector:
    """
    Adapts a plain function (sync or async) to the ``Injector`` protocol.

    Synchronous functions run in a worker thread so that a blocking
    injector cannot stall the event loop. On timeout or cancellation the
    thread is abandoned and its result discarded.
    """

    def __init__(
        self,
        fn: InjectorFn,
        *,
        dependencies: Sequence[InjectionKey] = (),
        timeout: Optional[float] = None,
        formats: Optional[FormatConfig] = None,
        name: Optional[str] = None,
    ) -> None:
        if timeout is not None and timeout <= 0:
            raise ValueError("Injector timeout must be positive")
        self._fn = fn
        self._is_async = inspect.iscoroutinefunction(fn) or inspect.iscoroutinefunction(
            getattr(fn, "__call__", None)
        )
        self.dependencies = tuple(dependencies)
        self.timeout = timeout
        self.formats = formats
        self.name = name or getattr(fn, "__name__", type(fn).__name__)

    async def resolve(self, ctx: "RenderContext") -> Any:
        if self._is_async:
            return await self._fn(ctx)
        return await anyio.to_thread.run_sync(self._fn, ctx, abandon_on_cancel=True)

    def __repr__(self) -> str:
        return f"FunctionInjector({self.name})"


def injector(
    *,
    dependencies: Sequence[InjectionKey] = (),
    timeout: Optional[float] = None,
    formats: Optional[FormatConfig] = None,
) -> Callable[[InjectorFn], FunctionInjector]:
    """Decorator form of ``FunctionInjector``."""

    def wrap(fn: InjectorFn) -> FunctionInjector:
        return FunctionInjector(
            fn, dependencies=dependencies, timeout=timeout, formats=formats
        )

    return wrap
