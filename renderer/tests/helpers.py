"""
Shared test doubles for render engine tests.
"""

from __future__ import annotations

import math
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

import anyio
from pydantic import BaseModel, Field

from renderer.app.engine.builder import EngineBuilder, RenderEngine
from renderer.app.errors import Unauthorized
from renderer.app.events.models import RenderEvent
from renderer.app.injection.values import InjectionKey, ValueType
from renderer.app.mapping.mapper import SchemaMapper
from renderer.app.rendering.pipeline import RenderPipeline, RenderRequest
from renderer.app.rendering.typesetting import PlainTextTypesetter
from renderer.app.templates.models import TemplateDefinition, TemplateScope
from renderer.app.templates.resolver import TemplateResolver
from renderer.app.templates.store import InMemoryTemplateStore


def key(value_type: ValueType, name: str) -> InjectionKey:
    return InjectionKey(value_type=value_type, name=name)


def make_template(
    template_id: str,
    *,
    scope: TemplateScope = TemplateScope.GLOBAL_SYSTEM,
    tenant_code: Optional[str] = None,
    workspace_code: Optional[str] = None,
    document_type_code: str = "invoice",
    body: str = "{{ document.template_id }}",
    placeholders: Sequence[InjectionKey] = (),
    active: bool = True,
    version: int = 1,
    placeholder_formats: Optional[Dict[str, str]] = None,
) -> TemplateDefinition:
    return TemplateDefinition(
        id=template_id,
        scope=scope,
        tenant_code=tenant_code,
        workspace_code=workspace_code,
        document_type_code=document_type_code,
        body=body,
        placeholders=tuple(placeholders),
        active=active,
        version=version,
        placeholder_formats=placeholder_formats or {},
    )


# ---------------------------------------------------------------------------
# Injectors
# ---------------------------------------------------------------------------


class StubInjector:
    """Returns a fixed value and counts invocations."""

    def __init__(
        self,
        value: Any,
        *,
        dependencies: Sequence[InjectionKey] = (),
        timeout: Optional[float] = None,
        delay: float = 0.0,
    ) -> None:
        self.value = value
        self.dependencies: Tuple[InjectionKey, ...] = tuple(dependencies)
        self.timeout = timeout
        self.delay = delay
        self.calls = 0

    async def resolve(self, ctx) -> Any:
        self.calls += 1
        if self.delay:
            await anyio.sleep(self.delay)
        return self.value


class FailingInjector:
    def __init__(self, exc: Exception) -> None:
        self.exc = exc
        self.dependencies: Tuple[InjectionKey, ...] = ()
        self.timeout = None
        self.calls = 0

    async def resolve(self, ctx) -> Any:
        self.calls += 1
        raise self.exc


class SleepUntilCancelled:
    """Sleeps until cancelled; records whether cancellation reached it."""

    def __init__(self) -> None:
        self.dependencies: Tuple[InjectionKey, ...] = ()
        self.timeout = None
        self.started = False
        self.cancelled = False

    async def resolve(self, ctx) -> Any:
        self.started = True
        try:
            await anyio.sleep(60)
        except anyio.get_cancelled_exc_class():
            self.cancelled = True
            raise
        return "unreachable"


# ---------------------------------------------------------------------------
# Verifiers / emitters
# ---------------------------------------------------------------------------


class AllowAllVerifier:
    def __init__(self) -> None:
        self.tokens: List[Optional[str]] = []

    async def verify(self, token: Optional[str]) -> None:
        self.tokens.append(token)


class RejectingVerifier:
    async def verify(self, token: Optional[str]) -> None:
        raise Unauthorized("rejected")


class ListEmitter:
    def __init__(self) -> None:
        self.events: List[RenderEvent] = []

    async def emit(self, event: RenderEvent) -> None:
        self.events.append(event)


class StreamEmitter:
    """
    Publishes events on an anyio memory stream.

    The stream ends after the terminal event, so ``events()`` can be
    drained once the render has returned.
    """

    def __init__(self) -> None:
        self._send, self._receive = anyio.create_memory_object_stream(math.inf)
        self._closed = False

    async def emit(self, event: RenderEvent) -> None:
        if self._closed:
            return
        await self._send.send(event)
        if event.event_type.terminal:
            self._closed = True
            await self._send.aclose()

    async def events(self) -> AsyncIterator[RenderEvent]:
        async with self._receive:
            async for event in self._receive:
                yield event


# ---------------------------------------------------------------------------
# Mapper
# ---------------------------------------------------------------------------


class NotePayload(BaseModel):
    title: str = Field(..., min_length=1)
    amount: int = 0


def note_mapper(**kwargs: Any) -> SchemaMapper:
    return SchemaMapper(NotePayload, description="Test note", **kwargs)


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------


async def build_engine(
    *,
    injectors: Optional[Dict[InjectionKey, Any]] = None,
    mappers: Optional[Dict[str, Any]] = None,
    init_data: Optional[Dict[str, Any]] = None,
    injector_timeout: float = 5.0,
) -> RenderEngine:
    builder = EngineBuilder(injector_timeout=injector_timeout)
    for injection_key, injector in (injectors or {}).items():
        builder.register_injector(
            injection_key.value_type, injection_key.name, injector
        )
    for code, mapper in (mappers or {}).items():
        builder.register_mapper(code, mapper)
    if init_data is not None:
        builder.set_init_func(lambda: init_data)
    return await builder.build()


async def build_pipeline(
    *,
    templates: Sequence[TemplateDefinition],
    injectors: Optional[Dict[InjectionKey, Any]] = None,
    mappers: Optional[Dict[str, Any]] = None,
    init_data: Optional[Dict[str, Any]] = None,
    verifier: Any = None,
    render_timeout: float = 10.0,
) -> RenderPipeline:
    engine = await build_engine(
        injectors=injectors, mappers=mappers, init_data=init_data
    )
    return RenderPipeline(
        engine=engine,
        resolver=TemplateResolver(InMemoryTemplateStore(list(templates))),
        verifier=verifier or AllowAllVerifier(),
        typesetter=PlainTextTypesetter(),
        render_timeout=render_timeout,
    )


def make_request(
    body: bytes = b'{"title": "Hello"}',
    *,
    tenant_code: str = "T1",
    workspace_code: str = "W1",
    document_type_code: str = "note",
    credential: Optional[str] = "token",
) -> RenderRequest:
    return RenderRequest(
        request_id="req-001",
        tenant_code=tenant_code,
        workspace_code=workspace_code,
        document_type_code=document_type_code,
        raw_body=body,
        credential=credential,
    )
