"""Unit tests for scripts/settlement_cli.py."""

from __future__ import annotations

import argparse
from contextlib import contextmanager
from datetime import date
from decimal import Decimal
import importlib.util
import json
from pathlib import Path
import runpy
import sys
from types import SimpleNamespace
from typing import Any, Iterator

import pytest

from settlement.runtime_config import SettlementRuntimeConfig

ROOT = Path(__file__).resolve().parents[1]
SCRIPT_PATH = ROOT / "scripts" / "settlement_cli.py"


def _load_cli_module(module_name: str) -> Any:
    spec = importlib.util.spec_from_file_location(module_name, SCRIPT_PATH)
    assert spec is not None and spec.loader is not None
    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    spec.loader.exec_module(module)
    return module


class _FakeCursor:
    def __init__(self, conn: "_FakeConnection", row_factory: Any = None) -> None:
        self._conn = conn
        self._row_factory = row_factory

    def __enter__(self) -> "_FakeCursor":
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        return None

    def execute(self, sql: str, params: Any = None) -> None:
        self._conn.executed.append((sql, params, self._row_factory))

    def fetchall(self) -> list[dict[str, Any]]:
        return list(self._conn.fetchall_rows)


class _FakeConnection:
    def __init__(self, rows: list[dict[str, Any]] | None = None) -> None:
        self.fetchall_rows = rows or []
        self.executed: list[tuple[str, Any, Any]] = []
        self.transactions: list[str] = []
        self.closed = False

    def cursor(self, row_factory: Any = None) -> _FakeCursor:
        return _FakeCursor(self, row_factory=row_factory)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        self.transactions.append("begin")
        try:
            yield
        except Exception:
            self.transactions.append("rollback")
            raise
        self.transactions.append("commit")

    def close(self) -> None:
        self.closed = True


class _StubParser:
    def __init__(self, args: argparse.Namespace) -> None:
        self._args = args

    def parse_args(self) -> argparse.Namespace:
        return self._args


def _prepare_main(monkeypatch: pytest.MonkeyPatch, cli: Any, args: argparse.Namespace) -> _FakeConnection:
    conn = _FakeConnection()
    monkeypatch.setattr(cli, "_build_parser", lambda: _StubParser(args))
    monkeypatch.setattr(cli, "_resolve_connection", lambda _: conn)
    monkeypatch.setattr(cli, "load_runtime_config", lambda: SettlementRuntimeConfig(trade_batch_size=50))
    return conn


def test_import_path_branch_adds_root_when_missing(monkeypatch: pytest.MonkeyPatch) -> None:
    root = str(ROOT)
    monkeypatch.setattr(sys, "path", [entry for entry in sys.path if entry != root])
    runpy.run_path(str(SCRIPT_PATH), run_name="settlement_cli_import_missing_root")
    assert root in sys.path


def test_import_main_guard_branch_executes(monkeypatch: pytest.MonkeyPatch) -> None:
    root = str(ROOT)
    monkeypatch.setattr(sys, "path", [root, *[entry for entry in sys.path if entry != root]])
    monkeypatch.setattr(sys, "argv", [str(SCRIPT_PATH), "--help"])
    with pytest.raises(SystemExit) as exc:
        runpy.run_path(str(SCRIPT_PATH), run_name="__main__")
    assert exc.value.code == 0


def test_convert_named_params_and_parse_date() -> None:
    cli = _load_cli_module("settlement_cli_mod_parse")
    assert (
        cli._convert_named_params("x=:x AND y = ANY(CAST(:ids AS UUID[])) AND z::int=1")
        == "x=%(x)s AND y = ANY(CAST(%(ids)s AS UUID[])) AND z::int=1"
    )
    assert cli._parse_date(" 2026-01-12 ") == date(2026, 1, 12)
    with pytest.raises(argparse.ArgumentTypeError, match="Invalid date"):
        cli._parse_date("12/01/2026")


def test_psycopg_settlement_db_adapter_paths() -> None:
    cli = _load_cli_module("settlement_cli_mod_db")
    conn = _FakeConnection(rows=[{"value": 1}])
    db = cli.PsycopgSettlementDB(conn)

    assert db.fetch_one("SELECT :value", {"value": 1}) == {"value": 1}
    assert conn.executed[-1][0] == "SELECT %(value)s"
    assert conn.executed[-1][2] is cli.dict_row

    conn.fetchall_rows = []
    assert db.fetch_one("SELECT :value", {"value": 1}) is None

    conn.fetchall_rows = [{"a": 1}, {"a": 2}]
    assert db.fetch_all("SELECT :a, :b", {"a": 1, "b": 2}) == [{"a": 1}, {"a": 2}]

    with db.transaction():
        db.execute("UPDATE x SET y = :y WHERE z = :z", {"y": 3, "z": 4})
    assert conn.executed[-1][0] == "UPDATE x SET y = %(y)s WHERE z = %(z)s"
    assert conn.transactions == ["begin", "commit"]

    with pytest.raises(RuntimeError):
        with db.transaction():
            raise RuntimeError("write failed")
    assert conn.transactions[-1] == "rollback"


def test_resolve_connection_uses_dsn(monkeypatch: pytest.MonkeyPatch) -> None:
    cli = _load_cli_module("settlement_cli_mod_conn_dsn")
    expected = _FakeConnection()
    seen: dict[str, Any] = {}

    def _connect(*args: Any, **kwargs: Any) -> _FakeConnection:
        seen["args"] = args
        seen["kwargs"] = kwargs
        return expected

    monkeypatch.setattr(cli.psycopg, "connect", _connect)

    args = argparse.Namespace(dsn="postgresql://test", host=None, port=None, dbname=None, user=None, password=None)
    assert cli._resolve_connection(args) is expected
    assert seen["args"] == ("postgresql://test",)
    assert seen["kwargs"] == {"autocommit": True}


def test_resolve_connection_from_env_and_missing(monkeypatch: pytest.MonkeyPatch) -> None:
    cli = _load_cli_module("settlement_cli_mod_conn_env")
    expected = _FakeConnection()
    seen: dict[str, Any] = {}

    def _connect(*args: Any, **kwargs: Any) -> _FakeConnection:
        seen["args"] = args
        seen["kwargs"] = kwargs
        return expected

    monkeypatch.setattr(cli.psycopg, "connect", _connect)
    monkeypatch.delenv("DB_DSN", raising=False)
    monkeypatch.setenv("DB_HOST", "localhost")
    monkeypatch.setenv("DB_PORT", "55432")
    monkeypatch.setenv("DB_NAME", "settlement_test")
    monkeypatch.setenv("DB_USER", "postgres")
    monkeypatch.setenv("DB_PASSWORD", "postgres")

    args = argparse.Namespace(dsn=None, host=None, port=None, dbname=None, user=None, password=None)
    assert cli._resolve_connection(args) is expected
    assert seen["args"] == ()
    assert seen["kwargs"] == {
        "host": "localhost",
        "port": "55432",
        "dbname": "settlement_test",
        "user": "postgres",
        "password": "postgres",
        "autocommit": True,
    }

    monkeypatch.delenv("DB_PASSWORD")
    monkeypatch.delenv("DB_PORT")
    with pytest.raises(SystemExit, match=r"Missing DB connection args.*missing: port, password"):
        cli._resolve_connection(args)


def test_build_parser_parses_commands() -> None:
    cli = _load_cli_module("settlement_cli_mod_parser")
    parser = cli._build_parser()

    margins = parser.parse_args(
        ["--dsn", "postgresql://local", "calculate-margins", "--snapshot-date", "2026-01-12", "--offset", "200"]
    )
    assert margins.command == "calculate-margins"
    assert margins.snapshot_date == date(2026, 1, 12)
    assert margins.offset == 200
    assert margins.single_batch is False

    classify = parser.parse_args(["classify-marginability", "--isin", "A", "--isin", "B", "--dry-run"])
    assert classify.isins == ["A", "B"]
    assert classify.dry_run is True

    reconcile = parser.parse_args(["reconcile-ledger"])
    assert reconcile.limit == 500

    with pytest.raises(SystemExit):
        parser.parse_args(["recalc-balance"])


@pytest.mark.parametrize(("failed_count", "expected_code"), [(0, 0), (3, 2)])
def test_main_process_trades_codes(
    failed_count: int,
    expected_code: int,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    cli = _load_cli_module(f"settlement_cli_mod_trades_{failed_count}")
    args = argparse.Namespace(command="process-trades", import_audit_id=7, single_batch=False)
    conn = _prepare_main(monkeypatch, cli, args)
    seen: dict[str, Any] = {}

    class _Processor:
        def __init__(self, store: Any, **kwargs: Any) -> None:
            seen["init"] = kwargs

        def run_until_exhausted(self, import_audit_id: Any, max_iterations: int) -> Any:
            seen["run"] = (import_audit_id, max_iterations)
            return SimpleNamespace(
                failed_count=failed_count,
                as_dict=lambda: {"processed_count": 4, "failed_count": failed_count},
            )

    monkeypatch.setattr(cli, "TradeExecutionProcessor", _Processor)

    assert cli.main() == expected_code
    payload = json.loads(capsys.readouterr().out.strip())
    assert payload == {"processed_count": 4, "failed_count": failed_count}
    assert seen["init"] == {"batch_size": 50, "error_report_limit": 50}
    assert seen["run"] == (7, 100)
    assert conn.closed is True


def test_main_process_trades_single_batch(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    cli = _load_cli_module("settlement_cli_mod_trades_single")
    args = argparse.Namespace(command="process-trades", import_audit_id=None, single_batch=True)
    _prepare_main(monkeypatch, cli, args)

    class _Processor:
        def __init__(self, store: Any, **kwargs: Any) -> None:
            pass

        def run_batch(self, import_audit_id: Any) -> Any:
            return SimpleNamespace(failed_count=0, as_dict=lambda: {"total_considered": 0})

        def run_until_exhausted(self, *args: Any, **kwargs: Any) -> Any:
            pytest.fail("unexpected loop run")

    monkeypatch.setattr(cli, "TradeExecutionProcessor", _Processor)

    assert cli.main() == 0
    assert json.loads(capsys.readouterr().out.strip()) == {"total_considered": 0}


def test_main_calculate_margins_single_client(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    cli = _load_cli_module("settlement_cli_mod_margins_client")
    args = argparse.Namespace(
        command="calculate-margins",
        snapshot_date=date(2026, 1, 12),
        client_id="client-a",
        offset=0,
        single_batch=False,
    )
    _prepare_main(monkeypatch, cli, args)
    seen: dict[str, Any] = {}

    class _Job:
        def __init__(self, store: Any, **kwargs: Any) -> None:
            pass

        def run_batch(self, **kwargs: Any) -> Any:
            seen.update(kwargs)
            return SimpleNamespace(
                errors=(SimpleNamespace(key="client-a", error="boom"),),
                as_dict=lambda: {"clients_processed": 0},
            )

        def run_all(self, **kwargs: Any) -> Any:
            pytest.fail("unexpected full run")

    monkeypatch.setattr(cli, "MarginCalculationJob", _Job)

    assert cli.main() == 2
    assert seen == {"snapshot_date": date(2026, 1, 12), "client_id": "client-a", "offset": 0}
    assert json.loads(capsys.readouterr().out.strip()) == {"clients_processed": 0}


def test_main_calculate_margins_full_run(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    cli = _load_cli_module("settlement_cli_mod_margins_all")
    args = argparse.Namespace(
        command="calculate-margins",
        snapshot_date=None,
        client_id=None,
        offset=0,
        single_batch=False,
    )
    _prepare_main(monkeypatch, cli, args)

    class _Job:
        def __init__(self, store: Any, **kwargs: Any) -> None:
            pass

        def run_all(self, snapshot_date: Any, max_iterations: int) -> Any:
            return SimpleNamespace(errors=(), as_dict=lambda: {"stop_reason": "done"})

    monkeypatch.setattr(cli, "MarginCalculationJob", _Job)

    assert cli.main() == 0
    assert json.loads(capsys.readouterr().out.strip()) == {"stop_reason": "done"}


def test_main_classify_marginability(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    cli = _load_cli_module("settlement_cli_mod_classify")
    args = argparse.Namespace(
        command="classify-marginability",
        isins=["ISIN1"],
        dry_run=True,
        as_of=date(2026, 1, 12),
    )
    _prepare_main(monkeypatch, cli, args)
    seen: dict[str, Any] = {}

    def _load(store: Any, as_of: date) -> str:
        seen["as_of"] = as_of
        return "config"

    def _classify(store: Any, config: Any, **kwargs: Any) -> Any:
        seen["config"] = config
        seen.update(kwargs)
        return SimpleNamespace(as_dict=lambda: {"total_securities": 1, "dry_run": True})

    monkeypatch.setattr(cli, "load_margin_config", _load)
    monkeypatch.setattr(cli, "run_classification", _classify)

    assert cli.main() == 0
    assert seen == {"as_of": date(2026, 1, 12), "config": "config", "isins": ["ISIN1"], "dry_run": True}
    assert json.loads(capsys.readouterr().out.strip())["total_securities"] == 1


def test_main_classify_marginability_defaults_as_of_to_utc_today(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    cli = _load_cli_module("settlement_cli_mod_classify_default")
    args = argparse.Namespace(command="classify-marginability", isins=None, dry_run=False, as_of=None)
    _prepare_main(monkeypatch, cli, args)
    seen: dict[str, Any] = {}

    class _Clock:
        def today(self) -> date:
            return date(2026, 3, 2)

    def _load(store: Any, as_of: date) -> str:
        seen["as_of"] = as_of
        return "config"

    monkeypatch.setattr(cli, "SettlementClock", _Clock)
    monkeypatch.setattr(cli, "load_margin_config", _load)
    monkeypatch.setattr(
        cli,
        "run_classification",
        lambda store, config, **kwargs: SimpleNamespace(as_dict=lambda: {"total_securities": 0}),
    )

    assert cli.main() == 0
    assert seen == {"as_of": date(2026, 3, 2)}
    capsys.readouterr()


def test_main_recalc_balance(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    cli = _load_cli_module("settlement_cli_mod_recalc")
    args = argparse.Namespace(command="recalc-balance", client_id="client-a")
    _prepare_main(monkeypatch, cli, args)
    monkeypatch.setattr(
        cli,
        "recompute_running_balance",
        lambda store, client_id: SimpleNamespace(
            client_id=client_id,
            entries_scanned=3,
            entries_corrected=1,
            final_balance=Decimal("-4000.50"),
        ),
    )

    assert cli.main() == 0
    assert json.loads(capsys.readouterr().out.strip()) == {
        "client_id": "client-a",
        "entries_scanned": 3,
        "entries_corrected": 1,
        "final_balance": "-4000.5",
    }


@pytest.mark.parametrize(("unposted_count", "expected_code"), [(0, 0), (1, 2)])
def test_main_reconcile_ledger_codes(
    unposted_count: int,
    expected_code: int,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    cli = _load_cli_module(f"settlement_cli_mod_reconcile_{unposted_count}")
    args = argparse.Namespace(command="reconcile-ledger", limit=10)
    _prepare_main(monkeypatch, cli, args)
    unposted = [
        SimpleNamespace(
            exec_id="EX-1",
            client_id="client-a",
            side="BUY",
            net_value=Decimal("1008.80"),
            trade_date=date(2026, 1, 7),
        )
    ][:unposted_count]
    monkeypatch.setattr(cli, "find_unposted_executions", lambda store, limit: unposted)

    assert cli.main() == expected_code
    payload = json.loads(capsys.readouterr().out.strip())
    assert payload["unposted_count"] == unposted_count
    if unposted_count:
        assert payload["executions"][0] == {
            "exec_id": "EX-1",
            "client_id": "client-a",
            "side": "BUY",
            "net_value": "1008.8",
            "trade_date": "2026-01-07",
        }


def test_main_closes_connection_on_error(monkeypatch: pytest.MonkeyPatch) -> None:
    cli = _load_cli_module("settlement_cli_mod_error_close")
    args = argparse.Namespace(command="recalc-balance", client_id="client-a")
    conn = _prepare_main(monkeypatch, cli, args)

    def _fail(store: Any, client_id: str) -> Any:
        raise RuntimeError("ledger unavailable")

    monkeypatch.setattr(cli, "recompute_running_balance", _fail)

    with pytest.raises(RuntimeError, match="ledger unavailable"):
        cli.main()
    assert conn.closed is True
