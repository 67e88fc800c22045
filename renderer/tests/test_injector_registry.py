import time

import anyio
import pytest

from renderer.app.errors import (
    DuplicateKeyError,
    InjectorConfigurationError,
    InjectorExecutionError,
    RegistryFrozenError,
    UnknownInjectorError,
    UnsupportedFormatError,
)
from renderer.app.injection.formatting import DATE_FORMATS, NUMBER_FORMATS
from renderer.app.injection.injector import FunctionInjector
from renderer.app.injection.registry import InjectorRegistry
from renderer.app.injection.values import ValueType
from renderer.app.rendering.context import RenderContext
from renderer.tests.helpers import (
    FailingInjector,
    SleepUntilCancelled,
    StubInjector,
    key,
    make_template,
)

pytestmark = pytest.mark.anyio

TITLE = key(ValueType.STRING, "title")
TOTAL = key(ValueType.NUMBER, "total")
LINES = key(ValueType.TABLE, "lines")
FLAG = key(ValueType.BOOL, "flag")


def _ctx(**kwargs) -> RenderContext:
    return RenderContext(
        request_id="req-1",
        tenant_code="T1",
        workspace_code="W1",
        document_type_code="invoice",
        template=make_template("g"),
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


async def test_duplicate_key_keeps_first_registration():
    registry = InjectorRegistry()
    first = StubInjector("first")
    registry.register(TITLE, first)

    with pytest.raises(DuplicateKeyError) as excinfo:
        registry.register(TITLE, StubInjector("second"))

    assert excinfo.value.key == TITLE
    assert registry.get(TITLE) is first

    registry.freeze()
    value = await registry.resolve(_ctx(), TITLE)
    assert value.value == "first"


async def test_same_name_different_type_is_a_distinct_key():
    registry = InjectorRegistry()
    registry.register(key(ValueType.STRING, "total"), StubInjector("12"))
    registry.register(TOTAL, StubInjector(12))

    assert len(registry) == 2


async def test_registration_after_freeze_is_rejected():
    registry = InjectorRegistry()
    registry.freeze()

    with pytest.raises(RegistryFrozenError):
        registry.register(TITLE, StubInjector("late"))


async def test_freeze_rejects_unknown_dependency():
    registry = InjectorRegistry()
    registry.register(TOTAL, StubInjector(1, dependencies=[LINES]))

    with pytest.raises(InjectorConfigurationError, match="TABLE:lines"):
        registry.freeze()


async def test_freeze_rejects_dependency_cycle():
    registry = InjectorRegistry()
    registry.register(TOTAL, StubInjector(1, dependencies=[TITLE]))
    registry.register(TITLE, StubInjector("t", dependencies=[TOTAL]))

    with pytest.raises(InjectorConfigurationError, match="cycle"):
        registry.freeze()


async def test_freeze_rejects_self_dependency():
    registry = InjectorRegistry()
    registry.register(TOTAL, StubInjector(1, dependencies=[TOTAL]))

    with pytest.raises(InjectorConfigurationError):
        registry.freeze()


# ---------------------------------------------------------------------------
# Invocation
# ---------------------------------------------------------------------------


async def test_unknown_key_raises_unknown_injector_error():
    registry = InjectorRegistry()
    registry.freeze()

    with pytest.raises(UnknownInjectorError) as excinfo:
        await registry.resolve(_ctx(), LINES)

    assert excinfo.value.key == LINES


async def test_injector_exception_is_wrapped_with_key():
    registry = InjectorRegistry()
    registry.register(TITLE, FailingInjector(RuntimeError("boom")))
    registry.freeze()

    with pytest.raises(InjectorExecutionError) as excinfo:
        await registry.resolve(_ctx(), TITLE)

    assert excinfo.value.key == TITLE
    assert isinstance(excinfo.value.cause, RuntimeError)


async def test_wrong_value_type_is_an_execution_error():
    registry = InjectorRegistry()
    registry.register(TOTAL, StubInjector("not a number"))
    registry.freeze()

    with pytest.raises(InjectorExecutionError) as excinfo:
        await registry.resolve(_ctx(), TOTAL)

    assert isinstance(excinfo.value.cause, TypeError)


async def test_per_injector_timeout_is_an_execution_error():
    registry = InjectorRegistry()
    registry.register(TITLE, StubInjector("slow", timeout=0.05, delay=1.0))
    registry.freeze()

    with pytest.raises(InjectorExecutionError) as excinfo:
        await registry.resolve(_ctx(), TITLE)

    assert isinstance(excinfo.value.cause, TimeoutError)


async def test_blocking_sync_injector_is_bounded_by_its_timeout():
    def slow_lookup(ctx):
        time.sleep(0.5)
        return "late"

    registry = InjectorRegistry()
    registry.register(TITLE, FunctionInjector(slow_lookup, timeout=0.1))
    registry.freeze()

    with anyio.fail_after(2):
        with pytest.raises(InjectorExecutionError) as excinfo:
            await registry.resolve(_ctx(), TITLE)

    assert isinstance(excinfo.value.cause, TimeoutError)
    assert "timed out after 0.1s" in str(excinfo.value)


async def test_timeout_raised_by_the_injector_itself_is_reported_as_is():
    registry = InjectorRegistry()
    registry.register(TITLE, FailingInjector(TimeoutError("socket read timed out")))
    registry.freeze()

    with pytest.raises(InjectorExecutionError) as excinfo:
        await registry.resolve(_ctx(), TITLE)

    assert isinstance(excinfo.value.cause, TimeoutError)
    assert str(excinfo.value.cause) == "socket read timed out"


async def test_value_is_computed_once_per_render():
    registry = InjectorRegistry()
    stub = StubInjector("once")
    registry.register(TITLE, stub)
    registry.freeze()
    ctx = _ctx()

    await registry.resolve(ctx, TITLE)
    await registry.resolve(ctx, TITLE)
    assert stub.calls == 1

    # A new render starts with an empty cache
    await registry.resolve(_ctx(), TITLE)
    assert stub.calls == 2


async def test_function_injector_supports_sync_and_async():
    async def async_title(ctx):
        return "async"

    registry = InjectorRegistry()
    registry.register(TITLE, FunctionInjector(async_title))
    registry.register(FLAG, FunctionInjector(lambda ctx: True))
    registry.freeze()
    ctx = _ctx()

    values = await registry.resolve_all(ctx, [TITLE, FLAG])

    assert values[TITLE].value == "async"
    assert values[FLAG].value is True


# ---------------------------------------------------------------------------
# Dependency levels and concurrency
# ---------------------------------------------------------------------------


async def test_plan_orders_dependencies_into_levels():
    registry = InjectorRegistry()
    registry.register(LINES, StubInjector({"columns": [{"key": "a", "label": "A"}]}))
    registry.register(TOTAL, StubInjector(3, dependencies=[LINES]))
    registry.register(TITLE, StubInjector("t"))
    registry.freeze()

    levels = registry.plan([TOTAL, TITLE])

    assert levels == [[TITLE, LINES], [TOTAL]]


async def test_plan_skips_supplied_dependencies():
    registry = InjectorRegistry()
    registry.register(LINES, StubInjector({"columns": [{"key": "a", "label": "A"}]}))
    registry.register(TOTAL, StubInjector(3, dependencies=[LINES]))
    registry.freeze()

    assert registry.plan([TOTAL], supplied=[LINES]) == [[TOTAL]]


async def test_plan_fails_before_invoking_anything_when_a_key_is_unbound():
    registry = InjectorRegistry()
    title = StubInjector("t")
    registry.register(TITLE, title)
    registry.freeze()

    with pytest.raises(UnknownInjectorError):
        await registry.resolve_all(_ctx(), [TITLE, LINES])

    assert title.calls == 0


async def test_dependent_reads_dependency_value():
    def total_from_lines(ctx):
        table = ctx.value_of(LINES)
        return len(table.rows)

    registry = InjectorRegistry()
    registry.register(
        LINES,
        StubInjector(
            {
                "columns": [{"key": "a", "label": "A"}],
                "rows": [[{"value": 1}], [{"value": 2}]],
            }
        ),
    )
    registry.register(
        TOTAL, FunctionInjector(total_from_lines, dependencies=[LINES])
    )
    registry.freeze()

    values = await registry.resolve_all(_ctx(), [TOTAL])

    assert values[TOTAL].value == 2


async def test_independent_injectors_run_concurrently():
    gate = anyio.Event()

    async def waiter(ctx):
        await gate.wait()
        return "released"

    async def releaser(ctx):
        gate.set()
        return True

    registry = InjectorRegistry()
    registry.register(TITLE, FunctionInjector(waiter))
    registry.register(FLAG, FunctionInjector(releaser))
    registry.freeze()

    with anyio.fail_after(2):
        values = await registry.resolve_all(_ctx(), [TITLE, FLAG])

    assert values[TITLE].value == "released"


async def test_single_failure_cancels_siblings_and_aborts():
    sleeper = SleepUntilCancelled()
    dependent = StubInjector(1, dependencies=[TITLE])

    async def fail_once_sleeper_runs(ctx):
        while not sleeper.started:
            await anyio.sleep(0.01)
        raise ValueError("bad")

    registry = InjectorRegistry()
    registry.register(TITLE, FunctionInjector(fail_once_sleeper_runs))
    registry.register(FLAG, sleeper)
    registry.register(TOTAL, dependent)
    registry.freeze()

    with anyio.fail_after(2):
        with pytest.raises(InjectorExecutionError) as excinfo:
            await registry.resolve_all(_ctx(), [TITLE, FLAG, TOTAL])

    assert excinfo.value.key == TITLE
    assert sleeper.cancelled is True
    assert dependent.calls == 0


async def test_on_resolved_callback_reports_each_key():
    seen = []

    async def on_resolved(resolved_key, elapsed_ms):
        seen.append(resolved_key)

    registry = InjectorRegistry()
    registry.register(TITLE, StubInjector("t"))
    registry.register(FLAG, StubInjector(False))
    registry.freeze()

    await registry.resolve_all(_ctx(), [TITLE, FLAG], on_resolved=on_resolved)

    assert sorted(seen, key=str) == sorted([TITLE, FLAG], key=str)


# ---------------------------------------------------------------------------
# Display formats
# ---------------------------------------------------------------------------

ISSUED = key(ValueType.TIME, "issued_at")


def _formatted_registry() -> InjectorRegistry:
    registry = InjectorRegistry()
    registry.register(TOTAL, FunctionInjector(lambda ctx: 1234.5, formats=NUMBER_FORMATS))
    registry.register(ISSUED, FunctionInjector(lambda ctx: None, formats=DATE_FORMATS))
    registry.register(TITLE, StubInjector("t"))
    registry.freeze()
    return registry


async def test_injector_default_format_applies_without_a_selection():
    template = make_template("g", placeholders=[TOTAL, TITLE])

    selected = _formatted_registry().selected_formats(template)

    assert selected == {TOTAL: "#,##0.00"}


async def test_template_selection_overrides_the_default():
    template = make_template(
        "g",
        placeholders=[TOTAL, ISSUED],
        placeholder_formats={"total": "#,##0", "issued_at": "YYYY-MM-DD"},
    )

    selected = _formatted_registry().selected_formats(template)

    assert selected == {TOTAL: "#,##0", ISSUED: "YYYY-MM-DD"}


async def test_selection_outside_the_advertised_options_is_rejected():
    template = make_template(
        "g", placeholders=[TOTAL], placeholder_formats={"total": "0.0000"}
    )

    with pytest.raises(UnsupportedFormatError) as excinfo:
        _formatted_registry().selected_formats(template)

    assert excinfo.value.key == TOTAL
    assert excinfo.value.pattern == "0.0000"


async def test_freeze_rejects_formats_on_a_string_injector():
    registry = InjectorRegistry()
    registry.register(TITLE, FunctionInjector(lambda ctx: "t", formats=NUMBER_FORMATS))

    with pytest.raises(InjectorConfigurationError, match="formats"):
        registry.freeze()
