"""Schema contract alignment checks for ORM metadata surfaces."""

from __future__ import annotations

import importlib.util
from pathlib import Path
import re
import sys
import types

import pytest

import backend.db.models  # noqa: F401  # Ensure all mapped classes are registered.
from backend.db.base import Base

MIGRATION_PATH = (
    Path(__file__).resolve().parents[1]
    / "backend"
    / "db"
    / "migrations"
    / "versions"
    / "0001_initial_schema.py"
)


def _migration_table_ddl(monkeypatch: pytest.MonkeyPatch) -> tuple[str, ...]:
    fake_alembic = types.ModuleType("alembic")
    fake_alembic.op = types.SimpleNamespace(execute=lambda statement: None)
    monkeypatch.setitem(sys.modules, "alembic", fake_alembic)

    spec = importlib.util.spec_from_file_location("migration_0001_contract", MIGRATION_PATH)
    assert spec is not None and spec.loader is not None
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module.TABLE_DDL


def _ddl_columns(statements: tuple[str, ...]) -> dict[str, set[str]]:
    pattern = re.compile(r"CREATE TABLE (\w+) \((.*)\);", re.S)

    tables: dict[str, set[str]] = {}
    for statement in statements:
        match = pattern.search(statement)
        assert match is not None, statement
        table_name, body = match.groups()

        columns: set[str] = set()
        starts_item = True
        for raw_line in body.splitlines():
            line = raw_line.strip()
            if not line:
                continue
            if starts_item and not line.startswith("CONSTRAINT"):
                columns.add(line.split()[0])
            # Multi-line constraints continue until a line ends with a comma.
            starts_item = line.endswith(",")

        tables[table_name] = columns

    return tables


def test_orm_tables_and_columns_match_migration_schema(monkeypatch: pytest.MonkeyPatch) -> None:
    """ORM models must cover all migration tables/columns exactly."""

    ddl = _ddl_columns(_migration_table_ddl(monkeypatch))
    mapped_tables = Base.metadata.tables

    missing_table_models = sorted(set(ddl) - set(mapped_tables))
    unexpected_mapped_tables = sorted(set(mapped_tables) - set(ddl))

    assert missing_table_models == [], f"Missing ORM models for migration tables: {missing_table_models}"
    assert unexpected_mapped_tables == [], (
        f"Mapped ORM tables not present in migration schema: {unexpected_mapped_tables}"
    )

    column_mismatches: dict[str, dict[str, list[str]]] = {}
    for table_name in sorted(mapped_tables):
        ddl_columns = ddl[table_name]
        orm_columns = {column.name for column in mapped_tables[table_name].columns}

        missing_columns = sorted(ddl_columns - orm_columns)
        extra_columns = sorted(orm_columns - ddl_columns)
        if missing_columns or extra_columns:
            column_mismatches[table_name] = {
                "missing_columns": missing_columns,
                "extra_columns": extra_columns,
            }

    assert column_mismatches == {}, f"Migration/ORM column mismatches detected: {column_mismatches}"


def test_settlement_tables_are_all_present(monkeypatch: pytest.MonkeyPatch) -> None:
    ddl = _ddl_columns(_migration_table_ddl(monkeypatch))
    assert set(ddl) == {
        "clients",
        "securities",
        "raw_trades",
        "trade_executions",
        "holdings",
        "cash_ledger",
        "margin_accounts",
        "margin_alerts",
        "daily_prices",
        "daily_snapshots",
        "fee_schedule",
        "margin_config",
    }
    assert {"loan_balance", "maintenance_status", "margin_call_deadline"} <= ddl["margin_accounts"]


def test_primary_key_names_follow_migration_convention() -> None:
    for table_name, table in Base.metadata.tables.items():
        assert table.primary_key.name == f"pk_{table_name}"
