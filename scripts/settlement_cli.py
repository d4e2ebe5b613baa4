#!/usr/bin/env python3
"""Operator CLI for settlement posting, margin calculation and ledger maintenance."""

from __future__ import annotations

import argparse
from contextlib import contextmanager
from datetime import date
import json
import logging
import os
from pathlib import Path
import re
import sys
from typing import Any, Iterator, Mapping, Optional, Sequence

import psycopg
from psycopg.rows import dict_row

# Ensure repository root is importable when script is executed by path.
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from settlement.cash_ledger import find_unposted_executions, recompute_running_balance
from settlement.common import SettlementClock, decimal_to_str
from settlement.margin.calculation import MarginCalculationJob
from settlement.margin.marginability import run_classification
from settlement.regulatory_config import load_margin_config
from settlement.runtime_config import SettlementRuntimeConfig, load_runtime_config
from settlement.store import SettlementStore
from settlement.trade_processor import TradeExecutionProcessor

_NAMED_PARAM_RE = re.compile(r"(?<!:):([a-zA-Z_][a-zA-Z0-9_]*)")


def _convert_named_params(sql: str) -> str:
    return _NAMED_PARAM_RE.sub(r"%(\1)s", sql)


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value.strip())
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid date (expected YYYY-MM-DD): {value}") from exc


class PsycopgSettlementDB:
    """psycopg adapter implementing the settlement database protocol."""

    def __init__(self, conn: psycopg.Connection[Any]) -> None:
        self.conn = conn

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self.conn.transaction():
            yield

    def fetch_one(self, sql: str, params: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
        rows = self.fetch_all(sql, params)
        return rows[0] if rows else None

    def fetch_all(self, sql: str, params: Mapping[str, Any]) -> Sequence[Mapping[str, Any]]:
        converted = _convert_named_params(sql)
        with self.conn.cursor(row_factory=dict_row) as cur:
            cur.execute(converted, dict(params))
            return [dict(row) for row in cur.fetchall()]

    def execute(self, sql: str, params: Mapping[str, Any]) -> None:
        converted = _convert_named_params(sql)
        with self.conn.cursor() as cur:
            cur.execute(converted, dict(params))


def _resolve_connection(args: argparse.Namespace) -> psycopg.Connection[Any]:
    dsn = args.dsn or os.getenv("DB_DSN")
    if dsn:
        return psycopg.connect(dsn, autocommit=True)

    host = args.host or os.getenv("DB_HOST")
    port = args.port or os.getenv("DB_PORT")
    dbname = args.dbname or os.getenv("DB_NAME")
    user = args.user or os.getenv("DB_USER")
    password = args.password or os.getenv("DB_PASSWORD")

    missing = [
        key
        for key, value in (
            ("host", host),
            ("port", port),
            ("dbname", dbname),
            ("user", user),
            ("password", password),
        )
        if not value
    ]
    if missing:
        raise SystemExit(
            "Missing DB connection args. Provide --dsn or set --host/--port/--dbname/--user/--password "
            f"(missing: {', '.join(missing)})."
        )

    return psycopg.connect(
        host=host,
        port=port,
        dbname=dbname,
        user=user,
        password=password,
        autocommit=True,
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Trade settlement and margin risk CLI")
    parser.add_argument("--dsn", help="PostgreSQL DSN (optional, falls back to DB_DSN)")
    parser.add_argument("--host", help="DB host")
    parser.add_argument("--port", help="DB port")
    parser.add_argument("--dbname", help="DB name")
    parser.add_argument("--user", help="DB user")
    parser.add_argument("--password", help="DB password")

    subparsers = parser.add_subparsers(dest="command", required=True)

    trades_cmd = subparsers.add_parser("process-trades", help="Post unprocessed raw trades")
    trades_cmd.add_argument("--import-audit-id", type=int, default=None)
    trades_cmd.add_argument("--single-batch", action="store_true", help="Run one batch instead of looping")

    margins_cmd = subparsers.add_parser("calculate-margins", help="Recompute margin accounts and alerts")
    margins_cmd.add_argument("--snapshot-date", type=_parse_date, default=None)
    margins_cmd.add_argument("--client-id", default=None, help="Recompute a single client")
    margins_cmd.add_argument("--offset", type=int, default=0)
    margins_cmd.add_argument("--single-batch", action="store_true", help="Run one batch instead of paging")

    classify_cmd = subparsers.add_parser("classify-marginability", help="Classify securities for margin lending")
    classify_cmd.add_argument("--isin", action="append", dest="isins", default=None)
    classify_cmd.add_argument("--dry-run", action="store_true")
    classify_cmd.add_argument("--as-of", type=_parse_date, default=None, help="Config effective date")

    recalc_cmd = subparsers.add_parser("recalc-balance", help="Recompute a client's running cash balance")
    recalc_cmd.add_argument("--client-id", required=True)

    reconcile_cmd = subparsers.add_parser(
        "reconcile-ledger",
        help="List executions without a matching trade ledger entry",
    )
    reconcile_cmd.add_argument("--limit", type=int, default=500)

    return parser


def _run_command(args: argparse.Namespace, store: SettlementStore, config: SettlementRuntimeConfig) -> int:
    if args.command == "process-trades":
        processor = TradeExecutionProcessor(
            store,
            batch_size=config.trade_batch_size,
            error_report_limit=config.error_report_limit,
        )
        if args.single_batch:
            batch = processor.run_batch(args.import_audit_id)
            print(json.dumps(batch.as_dict(), sort_keys=True))
            return 0 if batch.failed_count == 0 else 2
        run = processor.run_until_exhausted(args.import_audit_id, max_iterations=config.max_batch_iterations)
        print(json.dumps(run.as_dict(), sort_keys=True))
        return 0 if run.failed_count == 0 else 2

    if args.command == "calculate-margins":
        job = MarginCalculationJob(
            store,
            batch_size=config.margin_batch_size,
            error_report_limit=config.error_report_limit,
        )
        if args.single_batch or args.client_id:
            margin_batch = job.run_batch(
                snapshot_date=args.snapshot_date,
                client_id=args.client_id,
                offset=args.offset,
            )
            print(json.dumps(margin_batch.as_dict(), sort_keys=True))
            return 0 if not margin_batch.errors else 2
        margin_run = job.run_all(snapshot_date=args.snapshot_date, max_iterations=config.max_batch_iterations)
        print(json.dumps(margin_run.as_dict(), sort_keys=True))
        return 0 if not margin_run.errors else 2

    if args.command == "classify-marginability":
        margin_config = load_margin_config(store, args.as_of or SettlementClock().today())
        summary = run_classification(store, margin_config, isins=args.isins, dry_run=args.dry_run)
        print(json.dumps(summary.as_dict(), sort_keys=True))
        return 0

    if args.command == "recalc-balance":
        result = recompute_running_balance(store, args.client_id)
        payload = {
            "client_id": result.client_id,
            "entries_scanned": result.entries_scanned,
            "entries_corrected": result.entries_corrected,
            "final_balance": decimal_to_str(result.final_balance),
        }
        print(json.dumps(payload, sort_keys=True))
        return 0

    unposted = find_unposted_executions(store, limit=args.limit)
    payload = {
        "unposted_count": len(unposted),
        "executions": [
            {
                "exec_id": item.exec_id,
                "client_id": item.client_id,
                "side": item.side,
                "net_value": decimal_to_str(item.net_value),
                "trade_date": item.trade_date.isoformat(),
            }
            for item in unposted
        ],
    }
    print(json.dumps(payload, sort_keys=True))
    return 0 if not unposted else 2


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()

    config = load_runtime_config()
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    conn = _resolve_connection(args)
    store = SettlementStore(PsycopgSettlementDB(conn))
    try:
        return _run_command(args, store, config)
    finally:
        conn.close()


if __name__ == "__main__":
    raise SystemExit(main())
