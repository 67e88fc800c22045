"""
Injector registry and invocation.

The registry is built once at startup, frozen, and then served
read-only to every request. After ``freeze()`` no registration is
possible, so request-time lookups need no locking.

Invocation rules:
- At most one invocation per key per render; results are cached in the
  ``RenderContext`` and never shared across requests.
- Keys are resolved in dependency levels. All keys of one level run
  concurrently and the level is joined before the next level starts.
- A single failure cancels the rest of its level and aborts the render.
"""

from __future__ import annotations

import logging
import time
from graphlib import CycleError, TopologicalSorter
from types import MappingProxyType
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Set

import anyio

from renderer.app.errors import (
    DuplicateKeyError,
    InjectorConfigurationError,
    InjectorExecutionError,
    RegistryFrozenError,
    UnknownInjectorError,
    UnsupportedFormatError,
)
from renderer.app.injection.formatting import FORMATTABLE_TYPES
from renderer.app.injection.injector import Injector, formats_of
from renderer.app.injection.values import InjectableValue, InjectionKey, coerce_value

if TYPE_CHECKING:
    from renderer.app.rendering.context import RenderContext
    from renderer.app.templates.models import TemplateDefinition

logger = logging.getLogger("renderer.injection")

DEFAULT_INJECTOR_TIMEOUT_SECONDS = 30.0

OnResolved = Callable[[InjectionKey, float], Awaitable[None]]


def _sort_keys(keys: Iterable[InjectionKey]) -> List[InjectionKey]:
    return sorted(keys, key=lambda k: (k.value_type.value, k.name))


class InjectorRegistry:
    """
    Maps ``InjectionKey`` to the injector that produces it.
    """

    def __init__(
        self,
        *,
        default_timeout: float = DEFAULT_INJECTOR_TIMEOUT_SECONDS,
        max_concurrency: int = 16,
    ) -> None:
        if default_timeout <= 0:
            raise ValueError("default_timeout must be positive")
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self._injectors: Dict[InjectionKey, Injector] = {}
        self._frozen = False
        self._default_timeout = default_timeout
        self._max_concurrency = max_concurrency

    # ------------------------------------------------------------------
    # Build phase
    # ------------------------------------------------------------------

    def register(self, key: InjectionKey, injector: Injector) -> None:
        """
        Bind ``injector`` to ``key``.

        A duplicate key raises ``DuplicateKeyError`` and leaves the
        first registration in place.
        """
        if self._frozen:
            raise RegistryFrozenError(
                f"Cannot register injector '{key}': registry is frozen"
            )
        if key in self._injectors:
            raise DuplicateKeyError(key)
        self._injectors[key] = injector
        logger.debug("injector_registered", extra={"key": str(key)})

    def freeze(self) -> None:
        """
        Validate the dependency graph and stop accepting registrations.

        Raises ``InjectorConfigurationError`` for dependencies on
        unregistered keys or for dependency cycles.
        """
        if self._frozen:
            return

        graph: Dict[InjectionKey, Set[InjectionKey]] = {}
        for key, injector in self._injectors.items():
            deps = set(getattr(injector, "dependencies", ()) or ())
            if key in deps:
                raise InjectorConfigurationError(
                    f"Injector '{key}' depends on itself"
                )
            missing = _sort_keys(deps - set(self._injectors))
            if missing:
                raise InjectorConfigurationError(
                    f"Injector '{key}' depends on unregistered key(s): "
                    + ", ".join(str(k) for k in missing)
                )
            if formats_of(injector) is not None and key.value_type not in FORMATTABLE_TYPES:
                raise InjectorConfigurationError(
                    f"Injector '{key}' advertises formats but {key.value_type.value} "
                    "values cannot be formatted"
                )
            graph[key] = deps

        try:
            TopologicalSorter(graph).prepare()
        except CycleError as exc:
            cycle = " -> ".join(str(k) for k in exc.args[1])
            raise InjectorConfigurationError(
                f"Injector dependency cycle: {cycle}"
            ) from exc

        self._injectors = MappingProxyType(dict(self._injectors))
        self._frozen = True
        logger.info(
            "injector_registry_frozen",
            extra={"injector_count": len(self._injectors)},
        )

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    @property
    def frozen(self) -> bool:
        return self._frozen

    def __contains__(self, key: object) -> bool:
        return key in self._injectors

    def __len__(self) -> int:
        return len(self._injectors)

    def keys(self) -> List[InjectionKey]:
        return _sort_keys(self._injectors.keys())

    def get(self, key: InjectionKey) -> Injector:
        try:
            return self._injectors[key]
        except KeyError:
            raise UnknownInjectorError(key) from None

    def selected_formats(
        self, template: "TemplateDefinition"
    ) -> Dict[InjectionKey, str]:
        """
        Resolve the display format of every placeholder in ``template``.

        The template's own selection wins; otherwise the injector's
        default applies. A selection outside the options an injector
        advertises raises ``UnsupportedFormatError``. Placeholders with
        no selection and no advertised formats are left out.
        """
        selected: Dict[InjectionKey, str] = {}
        for key in template.placeholders:
            config = formats_of(self._injectors.get(key))
            pattern = template.placeholder_formats.get(key.name)
            if pattern is None:
                if config is not None:
                    selected[key] = config.default
                continue
            if config is not None and not config.accepts(pattern):
                raise UnsupportedFormatError(key, pattern)
            selected[key] = pattern
        return selected

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def plan(
        self,
        keys: Iterable[InjectionKey],
        *,
        supplied: Iterable[InjectionKey] = (),
    ) -> List[List[InjectionKey]]:
        """
        Compute the dependency levels needed to resolve ``keys``.

        Keys in ``supplied`` are treated as already resolved. Every key
        that must be invoked is checked for a binding before anything
        runs, so an unbound placeholder fails without side effects.
        """
        done = set(supplied)
        required: Dict[InjectionKey, Set[InjectionKey]] = {}
        pending = _sort_keys(set(keys) - done)

        while pending:
            key = pending.pop(0)
            if key in required:
                continue
            injector = self.get(key)
            deps = set(getattr(injector, "dependencies", ()) or ()) - done
            required[key] = deps
            pending.extend(_sort_keys(d for d in deps if d not in required))

        sorter = TopologicalSorter(required)
        sorter.prepare()
        levels: List[List[InjectionKey]] = []
        while sorter.is_active():
            ready = sorter.get_ready()
            levels.append(_sort_keys(ready))
            sorter.done(*ready)
        return levels

    # ------------------------------------------------------------------
    # Invocation
    # ------------------------------------------------------------------

    async def resolve(
        self, ctx: "RenderContext", key: InjectionKey
    ) -> InjectableValue:
        """
        Produce the value for ``key`` within ``ctx``.

        Returns the cached value when ``key`` was already resolved for
        this render. Injector failures, per-injector timeouts and values
        of the wrong type are raised as ``InjectorExecutionError``.
        Cancellation from the caller is propagated unchanged.
        """
        cached = ctx.get_resolved(key)
        if cached is not None:
            return cached

        injector = self.get(key)
        timeout = getattr(injector, "timeout", None) or self._default_timeout

        try:
            with anyio.move_on_after(timeout) as scope:
                raw = await injector.resolve(ctx)
        except anyio.get_cancelled_exc_class():
            raise
        except Exception as exc:
            raise InjectorExecutionError(key, exc) from exc

        if scope.cancelled_caught:
            raise InjectorExecutionError(
                key, TimeoutError(f"Injector timed out after {timeout}s")
            )

        try:
            value = coerce_value(key, raw)
        except TypeError as exc:
            raise InjectorExecutionError(key, exc) from exc

        ctx.set_resolved(key, value)
        return value

    async def resolve_all(
        self,
        ctx: "RenderContext",
        keys: Iterable[InjectionKey],
        *,
        on_resolved: Optional[OnResolved] = None,
    ) -> Mapping[InjectionKey, InjectableValue]:
        """
        Resolve every key in ``keys`` not already present in ``ctx``.

        Raises the first failure observed. Remaining invocations in the
        same level are cancelled and later levels never start.
        """
        levels = self.plan(keys, supplied=ctx.resolved_values().keys())
        limiter = anyio.CapacityLimiter(self._max_concurrency)

        for level in levels:
            failures: List[Exception] = []

            async with anyio.create_task_group() as tg:
                for key in level:
                    tg.start_soon(
                        self._resolve_one,
                        ctx,
                        key,
                        limiter,
                        failures,
                        tg.cancel_scope,
                        on_resolved,
                    )

            if failures:
                raise failures[0]

        return ctx.resolved_values()

    async def _resolve_one(
        self,
        ctx: "RenderContext",
        key: InjectionKey,
        limiter: anyio.CapacityLimiter,
        failures: List[Exception],
        scope: anyio.CancelScope,
        on_resolved: Optional[OnResolved],
    ) -> None:
        started = time.perf_counter()
        try:
            async with limiter:
                await self.resolve(ctx, key)
        except InjectorExecutionError as exc:
            logger.warning(
                "injector_failed",
                extra={
                    "key": str(key),
                    "request_id": ctx.request_id,
                    "error": type(exc.cause).__name__,
                },
            )
            failures.append(exc)
            scope.cancel()
            return
        except Exception as exc:
            failures.append(exc)
            scope.cancel()
            return

        elapsed_ms = (time.perf_counter() - started) * 1000.0
        if on_resolved is not None:
            await on_resolved(key, elapsed_ms)
