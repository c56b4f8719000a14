"""Schema regression tests for the Alembic revisions.

Replays migrations/versions on an empty SQLite database and checks that the
resulting tables, columns, indexes and FK targets match the models, so a
model change without a matching revision fails here.
"""

import importlib.util
from pathlib import Path

import pytest
import sqlalchemy as sa
from alembic.migration import MigrationContext
from alembic.operations import Operations

from cdeboard.models import db
from cdeboard.models import (  # noqa: F401  registers every table on db.metadata
    audit,
    auth,
    cde,
    compliance,
    decision_support,
    monitoring,
    objective,
    project,
    uptake,
)

VERSIONS = Path(__file__).resolve().parent.parent / "migrations" / "versions"


# ── Helpers ─────────────────────────────────────────────────────────────────

def _load_revisions():
    """Revision modules in upgrade order (follows down_revision links)."""
    modules = {}
    for path in VERSIONS.glob("*.py"):
        spec = importlib.util.spec_from_file_location(path.stem, path)
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        modules[module.down_revision] = module

    ordered, head = [], None
    while head in modules:
        module = modules[head]
        ordered.append(module)
        head = module.revision
    return ordered


def _run(connection, step):
    ctx = MigrationContext.configure(connection)
    with Operations.context(ctx):
        for module in _load_revisions() if step == "upgrade" else reversed(_load_revisions()):
            getattr(module, step)()


def _model_fks(table):
    return {
        (tuple(fk.column_keys), fk.referred_table.name, fk.ondelete)
        for fk in table.foreign_key_constraints
    }


def _db_fks(inspector, name):
    return {
        (tuple(fk["constrained_columns"]), fk["referred_table"], fk["options"].get("ondelete"))
        for fk in inspector.get_foreign_keys(name)
    }


@pytest.fixture()
def migrated():
    engine = sa.create_engine("sqlite://")
    with engine.begin() as connection:
        _run(connection, "upgrade")
        yield connection, sa.inspect(connection)
    engine.dispose()


# ── Tests ───────────────────────────────────────────────────────────────────


def test_single_linear_history():
    revisions = _load_revisions()
    assert revisions, "no revision files found"
    assert len(revisions) == len(list(VERSIONS.glob("*.py")))


def test_tables_match_models(migrated):
    _, inspector = migrated
    assert set(inspector.get_table_names()) == set(db.metadata.tables)


@pytest.mark.parametrize("table_name", sorted(db.metadata.tables))
def test_columns_indexes_and_fks_match(migrated, table_name):
    _, inspector = migrated
    table = db.metadata.tables[table_name]

    assert {c["name"] for c in inspector.get_columns(table_name)} == set(table.columns.keys())
    assert {i["name"] for i in inspector.get_indexes(table_name)} == {i.name for i in table.indexes}
    assert _db_fks(inspector, table_name) == _model_fks(table)


def test_downgrade_drops_everything(migrated):
    connection, _ = migrated
    _run(connection, "downgrade")
    assert sa.inspect(connection).get_table_names() == []
