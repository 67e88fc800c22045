import pytest

from renderer.app.engine.builder import EngineBuilder, load_extensions, resolve_extension
from renderer.app.errors import (
    DuplicateKeyError,
    DuplicateRegistrationError,
    InjectorConfigurationError,
    RegistryFrozenError,
)
from renderer.app.extensions import invoice
from renderer.app.injection.builtins import register_builtins
from renderer.app.injection.values import InjectionKey, ValueType
from renderer.tests.helpers import StubInjector, key

pytestmark = pytest.mark.anyio


async def test_init_func_runs_once_and_data_is_read_only():
    calls = []

    async def init():
        calls.append(1)
        return {"company_name": "Initech"}

    builder = EngineBuilder()
    builder.set_init_func(init)
    engine = await builder.build()

    assert calls == [1]
    assert engine.init_data["company_name"] == "Initech"
    with pytest.raises(TypeError):
        engine.init_data["company_name"] = "Other"


async def test_init_func_can_only_be_set_once():
    builder = EngineBuilder()
    builder.set_init_func(lambda: {})

    with pytest.raises(DuplicateRegistrationError):
        builder.set_init_func(lambda: {})


async def test_builder_is_closed_after_build():
    builder = EngineBuilder()
    await builder.build()

    with pytest.raises(RegistryFrozenError):
        builder.register_injector(ValueType.STRING, "late", StubInjector("x"))


async def test_invalid_dependency_wiring_fails_build():
    builder = EngineBuilder()
    builder.register_injector(
        ValueType.NUMBER,
        "total",
        StubInjector(1, dependencies=[key(ValueType.TABLE, "missing")]),
    )

    with pytest.raises(InjectorConfigurationError):
        await builder.build()


async def test_builtins_are_registered():
    builder = EngineBuilder()
    register_builtins(builder)
    engine = await builder.build()

    assert InjectionKey.parse("TIME:date_time_now") in engine.injectors
    assert InjectionKey.parse("STRING:date_now") in engine.injectors
    assert InjectionKey.parse("NUMBER:year_now") in engine.injectors


async def test_extension_cannot_shadow_a_builtin():
    builder = EngineBuilder()
    register_builtins(builder)

    with pytest.raises(DuplicateKeyError):
        builder.register_injector(ValueType.NUMBER, "year_now", StubInjector(1))


async def test_load_extensions_from_spec():
    builder = EngineBuilder()
    load_extensions(builder, ["renderer.app.extensions.invoice:register"])
    engine = await builder.build()

    assert "invoice" in engine.mappers
    assert invoice.INVOICE_TOTAL in engine.injectors
    assert engine.init_data["company_name"]


@pytest.mark.parametrize(
    "spec",
    [
        "renderer.app.extensions.invoice",
        "renderer.app.extensions.invoice:does_not_exist",
        "renderer.app.extensions.invoice:DOCUMENT_TYPE_CODE",
    ],
)
def test_invalid_extension_specs_are_rejected(spec):
    with pytest.raises(ValueError):
        resolve_extension(spec)
