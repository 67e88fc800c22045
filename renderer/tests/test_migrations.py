import shutil

import pytest
from sqlalchemy import inspect

from renderer.app.db import create_db_engine
from renderer.app.errors import MigrationError, TemplateVersionConflict
from renderer.app.injection.values import ValueType
from renderer.app.migrations.runner import SCRIPT_LOCATION, MigrationRunner
from renderer.app.templates.models import TemplateScope
from renderer.app.templates.resolver import TemplateResolver
from renderer.app.templates.store import SqlTemplateStore
from renderer.tests.helpers import key, make_template

HEAD = "0004_add_placeholder_formats"


@pytest.fixture
def engine(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'templates.db'}")
    yield engine
    engine.dispose()


def _scripts_with(tmp_path, filename: str, body: str):
    """Copy of the shipped revisions plus one extra revision file."""
    location = tmp_path / "migrations"
    shutil.copytree(
        SCRIPT_LOCATION,
        location,
        ignore=shutil.ignore_patterns("__pycache__", "runner.py"),
    )
    (location / "versions" / filename).write_text(body)
    return location


def _revision(revision: str, statement: str) -> str:
    return (
        "from alembic import op\n\n"
        f"revision = {revision!r}\n"
        f"down_revision = {HEAD!r}\n"
        "branch_labels = None\n"
        "depends_on = None\n\n\n"
        "def upgrade():\n"
        f"    op.execute({statement!r})\n\n\n"
        "def downgrade():\n"
        "    pass\n"
    )


def test_first_run_upgrades_to_head(engine):
    runner = MigrationRunner(engine)

    applied = runner.run()

    assert applied[0] == "0001_create_document_templates"
    assert applied[-1] == HEAD
    assert runner.current() == HEAD
    tables = inspect(engine).get_table_names()
    assert "document_templates" in tables
    assert "alembic_version" in tables
    columns = {c["name"] for c in inspect(engine).get_columns("document_templates")}
    assert "placeholder_formats" in columns


def test_second_run_is_a_no_op(engine):
    runner = MigrationRunner(engine)
    runner.run()

    assert runner.run() == []
    assert runner.pending() == []
    assert runner.current() == HEAD


def test_new_revision_is_applied_on_top(engine, tmp_path):
    MigrationRunner(engine).run()
    location = _scripts_with(
        tmp_path,
        "0005_template_audit.py",
        _revision(
            "0005_template_audit",
            "CREATE TABLE template_audit (id INTEGER PRIMARY KEY)",
        ),
    )

    runner = MigrationRunner(engine, script_location=location)

    assert runner.pending() == ["0005_template_audit"]
    assert runner.run() == ["0005_template_audit"]
    assert "template_audit" in inspect(engine).get_table_names()


def test_failing_revision_raises_and_is_not_recorded(engine, tmp_path):
    MigrationRunner(engine).run()
    location = _scripts_with(
        tmp_path,
        "0005_broken.py",
        _revision("0005_broken", "CREATE TABLE ("),
    )
    runner = MigrationRunner(engine, script_location=location)

    with pytest.raises(MigrationError) as excinfo:
        runner.run()

    assert excinfo.value.revision == "0005_broken"
    assert runner.current() == HEAD
    assert runner.pending() == ["0005_broken"]


def test_missing_script_location_is_a_migration_error(engine, tmp_path):
    runner = MigrationRunner(engine, script_location=tmp_path / "nowhere")

    with pytest.raises(MigrationError):
        runner.run()


# ---------------------------------------------------------------------------
# SQL template store
# ---------------------------------------------------------------------------


@pytest.fixture
def store(engine):
    MigrationRunner(engine).run()
    return SqlTemplateStore(engine)


def test_published_template_round_trips(store):
    placeholders = [key(ValueType.TABLE, "lines"), key(ValueType.STRING, "title")]
    total = key(ValueType.NUMBER, "total")
    published = store.publish(
        make_template(
            "ws-invoice",
            scope=TemplateScope.WORKSPACE,
            tenant_code="T1",
            workspace_code="W1",
            placeholders=placeholders + [total],
            placeholder_formats={"total": "#,##0"},
        )
    )

    [loaded] = store.candidates("invoice")

    assert loaded.id == "ws-invoice"
    assert loaded.scope is TemplateScope.WORKSPACE
    assert loaded.placeholders == tuple(placeholders + [total])
    assert loaded.placeholder_formats == {"total": "#,##0"}
    assert loaded.published_at == published.published_at


def test_publishing_an_older_version_conflicts(store):
    store.publish(make_template("g-v2", version=2))

    with pytest.raises(TemplateVersionConflict):
        store.publish(make_template("g-v1", version=1))


def test_resolver_reads_through_sql_store(store):
    store.publish(make_template("g-v1"))
    store.publish(make_template("g-v2", version=2))
    store.set_active("g-v2", False)

    resolved = TemplateResolver(store).resolve("T1", "W1", "invoice")

    assert resolved.id == "g-v1"


def test_template_without_formats_round_trips_empty(store):
    store.publish(make_template("g-v1"))

    [loaded] = store.candidates("invoice")

    assert loaded.placeholder_formats == {}
