"""
Engine composition.

Startup follows build -> freeze -> serve:

1. Injectors, mappers and the optional init function are registered on
   an ``EngineBuilder``. Duplicate registrations fail immediately.
2. ``build()`` freezes both registries (validating the injector
   dependency graph), runs the init function exactly once and returns a
   ``RenderEngine``.
3. The ``RenderEngine`` is shared read-only by every request.

Any error raised during build is fatal: the service must not start.
"""

from __future__ import annotations

import importlib
import inspect
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional, Union

from renderer.app.errors import DuplicateRegistrationError, RegistryFrozenError
from renderer.app.injection.injector import Injector
from renderer.app.injection.registry import (
    DEFAULT_INJECTOR_TIMEOUT_SECONDS,
    InjectorRegistry,
)
from renderer.app.injection.values import InjectionKey, ValueType
from renderer.app.mapping.mapper import Mapper
from renderer.app.mapping.registry import MapperRegistry

logger = logging.getLogger("renderer.engine")

InitFunc = Callable[[], Union[Mapping[str, Any], Awaitable[Mapping[str, Any]], None]]
Extension = Callable[["EngineBuilder"], None]


@dataclass(frozen=True)
class RenderEngine:
    """Frozen registries plus the read-only init data."""

    injectors: InjectorRegistry
    mappers: MapperRegistry
    init_data: Mapping[str, Any]


class EngineBuilder:
    def __init__(
        self,
        *,
        injector_timeout: float = DEFAULT_INJECTOR_TIMEOUT_SECONDS,
        injector_concurrency: int = 16,
    ) -> None:
        self._injectors = InjectorRegistry(
            default_timeout=injector_timeout,
            max_concurrency=injector_concurrency,
        )
        self._mappers = MapperRegistry()
        self._init_func: Optional[InitFunc] = None
        self._built = False

    # ------------------------------------------------------------------
    # Registration API
    # ------------------------------------------------------------------

    def register_injector(
        self, value_type: ValueType, key: str, injector: Injector
    ) -> InjectionKey:
        self._ensure_open()
        injection_key = InjectionKey(value_type=value_type, name=key)
        self._injectors.register(injection_key, injector)
        return injection_key

    def register_mapper(self, document_type_code: str, mapper: Mapper) -> None:
        self._ensure_open()
        self._mappers.register(document_type_code, mapper)

    def set_init_func(self, fn: InitFunc) -> None:
        self._ensure_open()
        if self._init_func is not None:
            raise DuplicateRegistrationError("Init function already set")
        self._init_func = fn

    def _ensure_open(self) -> None:
        if self._built:
            raise RegistryFrozenError("Engine already built")

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------

    async def build(self) -> RenderEngine:
        self._ensure_open()

        self._injectors.freeze()
        self._mappers.freeze()
        self._built = True

        init_data: Mapping[str, Any] = {}
        if self._init_func is not None:
            produced = self._init_func()
            if inspect.isawaitable(produced):
                produced = await produced
            init_data = dict(produced or {})

        logger.info(
            "render_engine_built",
            extra={
                "injectors": len(self._injectors),
                "mappers": len(self._mappers.entries()),
                "init_keys": sorted(init_data),
            },
        )
        return RenderEngine(
            injectors=self._injectors,
            mappers=self._mappers,
            init_data=MappingProxyType(init_data),
        )


# ----------------------------------------------------------------------
# Extensions
# ----------------------------------------------------------------------


def resolve_extension(spec: str) -> Extension:
    """
    Import an extension from a ``package.module:function`` spec.
    """
    module_name, sep, attr = spec.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(
            f"Invalid extension spec '{spec}', expected 'module:function'"
        )
    module = importlib.import_module(module_name)
    try:
        extension = getattr(module, attr)
    except AttributeError:
        raise ValueError(
            f"Extension '{spec}': module has no attribute '{attr}'"
        ) from None
    if not callable(extension):
        raise ValueError(f"Extension '{spec}' is not callable")
    return extension


def load_extensions(builder: EngineBuilder, specs: Iterable[str]) -> None:
    for spec in specs:
        extension = resolve_extension(spec)
        extension(builder)
        logger.info("extension_loaded", extra={"extension": spec})
