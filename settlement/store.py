"""SQL persistence for the settlement and margin jobs.

Every statement the engine issues lives here so the batch jobs stay
database-agnostic and can be exercised against an in-memory double.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
import json
from typing import Any, Iterator, Mapping, Optional, Sequence

from settlement.common import SettlementDatabase, as_decimal
from settlement.records import (
    ClientRecord,
    DailySnapshotRecord,
    LedgerEntry,
    MarginAccountState,
    MarginAlertRecord,
    PositionRow,
    RawTradeRow,
    SecurityRecord,
    TradeExecutionRecord,
)

FILLED_STATUSES = ("FILL", "PF")

_RAW_TRADE_COLUMNS = """
    id,
    source,
    status,
    side,
    bo_id,
    client_code,
    isin,
    security_code,
    board,
    category,
    asset_class,
    trade_date,
    trade_time,
    quantity,
    price,
    value,
    exec_id,
    order_id,
    session,
    fill_type,
    compulsory_spot,
    import_audit_id
"""

_CLIENT_COLUMNS = """
    client_id,
    bo_id,
    client_code,
    account_type,
    income_status,
    kyc_completed,
    status
"""

_SECURITY_COLUMNS = """
    isin,
    security_code,
    category,
    board,
    sector,
    trailing_pe,
    free_float_market_cap,
    annual_dividend_pct,
    status,
    asset_class
"""

_MARGIN_ACCOUNT_COLUMNS = """
    client_id,
    loan_balance,
    margin_ratio,
    total_portfolio_value,
    marginable_portfolio_value,
    client_equity,
    maintenance_status,
    applied_ratio,
    margin_call_count,
    margin_call_deadline,
    last_margin_call_date
"""


def _alert_params(alert: MarginAlertRecord) -> dict[str, Any]:
    return {
        "client_id": alert.client_id,
        "alert_date": alert.alert_date,
        "alert_type": alert.alert_type,
        "deadline_date": alert.deadline_date,
        "details": json.dumps(alert.details, sort_keys=True, separators=(",", ":"), default=str),
    }


class SettlementStore:
    """Typed access to the settlement schema over a ``SettlementDatabase``."""

    def __init__(self, db: SettlementDatabase) -> None:
        self._db = db

    @contextmanager
    def unit_of_work(self) -> Iterator[None]:
        """Group writes into one transaction when the adapter supports it."""
        transaction = getattr(self._db, "transaction", None)
        if transaction is None:
            yield
            return
        with transaction():
            yield

    # -- raw trades ---------------------------------------------------------

    def fetch_pending_raw_trades(
        self,
        limit: int,
        import_audit_id: Optional[int] = None,
    ) -> list[RawTradeRow]:
        audit_filter = ""
        params: dict[str, Any] = {"statuses": list(FILLED_STATUSES), "limit": limit}
        if import_audit_id is not None:
            audit_filter = "AND import_audit_id = :import_audit_id"
            params["import_audit_id"] = import_audit_id
        rows = self._db.fetch_all(
            f"""
            SELECT {_RAW_TRADE_COLUMNS}
            FROM raw_trades
            WHERE processed = FALSE
              AND status = ANY(:statuses)
              AND quantity > 0
              {audit_filter}
            ORDER BY id ASC
            LIMIT :limit
            """,
            params,
        )
        return [RawTradeRow.from_row(row) for row in rows]

    def existing_exec_ids(self, exec_ids: Sequence[str]) -> set[str]:
        if not exec_ids:
            return set()
        rows = self._db.fetch_all(
            """
            SELECT exec_id
            FROM trade_executions
            WHERE exec_id = ANY(:exec_ids)
            """,
            {"exec_ids": list(exec_ids)},
        )
        return {str(row["exec_id"]) for row in rows}

    def mark_raw_trade(self, raw_trade_id: int, processed: bool, error_message: Optional[str]) -> None:
        self._db.execute(
            """
            UPDATE raw_trades
            SET processed = :processed,
                error_message = :error_message
            WHERE id = :raw_trade_id
            """,
            {
                "raw_trade_id": raw_trade_id,
                "processed": processed,
                "error_message": error_message,
            },
        )

    # -- clients and securities ---------------------------------------------

    def find_client_by_bo_id(self, bo_id: str) -> Optional[ClientRecord]:
        row = self._db.fetch_one(
            f"""
            SELECT {_CLIENT_COLUMNS}
            FROM clients
            WHERE bo_id = :bo_id
            """,
            {"bo_id": bo_id},
        )
        return None if row is None else ClientRecord.from_row(row)

    def find_client_by_code(self, client_code: str) -> Optional[ClientRecord]:
        row = self._db.fetch_one(
            f"""
            SELECT {_CLIENT_COLUMNS}
            FROM clients
            WHERE client_code = :client_code
            """,
            {"client_code": client_code},
        )
        return None if row is None else ClientRecord.from_row(row)

    def fetch_client(self, client_id: str) -> Optional[ClientRecord]:
        row = self._db.fetch_one(
            f"""
            SELECT {_CLIENT_COLUMNS}
            FROM clients
            WHERE client_id = :client_id
            """,
            {"client_id": client_id},
        )
        return None if row is None else ClientRecord.from_row(row)

    def insert_placeholder_client(
        self,
        bo_id: Optional[str],
        client_code: Optional[str],
        name: str,
    ) -> Optional[ClientRecord]:
        """Insert a pending-review client; returns None when a concurrent insert won."""
        row = self._db.fetch_one(
            f"""
            INSERT INTO clients (
                bo_id,
                client_code,
                name,
                status
            ) VALUES (
                :bo_id,
                :client_code,
                :name,
                'pending_review'
            )
            ON CONFLICT DO NOTHING
            RETURNING {_CLIENT_COLUMNS}
            """,
            {"bo_id": bo_id, "client_code": client_code, "name": name},
        )
        return None if row is None else ClientRecord.from_row(row)

    def find_security_isin_by_code(self, security_code: str) -> Optional[str]:
        row = self._db.fetch_one(
            """
            SELECT isin
            FROM securities
            WHERE security_code = :security_code
            """,
            {"security_code": security_code},
        )
        return None if row is None else str(row["isin"])

    def security_exists(self, isin: str) -> bool:
        row = self._db.fetch_one(
            """
            SELECT isin
            FROM securities
            WHERE isin = :isin
            """,
            {"isin": isin},
        )
        return row is not None

    def insert_placeholder_security(
        self,
        isin: str,
        security_code: str,
        asset_class: Optional[str],
        category: Optional[str],
        board: Optional[str],
    ) -> bool:
        row = self._db.fetch_one(
            """
            INSERT INTO securities (
                isin,
                security_code,
                company_name,
                asset_class,
                category,
                board,
                status
            ) VALUES (
                :isin,
                :security_code,
                :security_code,
                :asset_class,
                :category,
                :board,
                'active'
            )
            ON CONFLICT DO NOTHING
            RETURNING isin
            """,
            {
                "isin": isin,
                "security_code": security_code,
                "asset_class": asset_class or "EQ",
                "category": category,
                "board": board,
            },
        )
        return row is not None

    def fetch_securities(self, isins: Optional[Sequence[str]] = None) -> list[SecurityRecord]:
        if isins is None:
            rows = self._db.fetch_all(
                f"""
                SELECT {_SECURITY_COLUMNS}
                FROM securities
                ORDER BY isin ASC
                """,
                {},
            )
        else:
            rows = self._db.fetch_all(
                f"""
                SELECT {_SECURITY_COLUMNS}
                FROM securities
                WHERE isin = ANY(:isins)
                ORDER BY isin ASC
                """,
                {"isins": list(isins)},
            )
        return [SecurityRecord.from_row(row) for row in rows]

    def update_marginability(
        self,
        isin: str,
        is_marginable: bool,
        reason: str,
        updated_at_utc: datetime,
    ) -> None:
        self._db.execute(
            """
            UPDATE securities
            SET is_marginable = :is_marginable,
                marginability_reason = :reason,
                marginability_updated_at_utc = :updated_at_utc
            WHERE isin = :isin
            """,
            {
                "isin": isin,
                "is_marginable": is_marginable,
                "reason": reason,
                "updated_at_utc": updated_at_utc,
            },
        )

    # -- executions and holdings --------------------------------------------

    def insert_trade_execution(self, record: TradeExecutionRecord) -> bool:
        """Insert an execution; False means the exec_id was already recorded."""
        row = self._db.fetch_one(
            """
            INSERT INTO trade_executions (
                exec_id,
                order_id,
                client_id,
                isin,
                exchange,
                side,
                quantity,
                price,
                value,
                trade_date,
                trade_time,
                settlement_date,
                session,
                fill_type,
                category,
                board,
                commission,
                exchange_fee,
                depository_fee,
                tax,
                net_value
            ) VALUES (
                :exec_id,
                :order_id,
                :client_id,
                :isin,
                :exchange,
                :side,
                :quantity,
                :price,
                :value,
                :trade_date,
                :trade_time,
                :settlement_date,
                :session,
                :fill_type,
                :category,
                :board,
                :commission,
                :exchange_fee,
                :depository_fee,
                :tax,
                :net_value
            )
            ON CONFLICT (exec_id) DO NOTHING
            RETURNING exec_id
            """,
            {
                "exec_id": record.exec_id,
                "order_id": record.order_id,
                "client_id": record.client_id,
                "isin": record.isin,
                "exchange": record.exchange,
                "side": record.side,
                "quantity": record.quantity,
                "price": record.price,
                "value": record.value,
                "trade_date": record.trade_date,
                "trade_time": record.trade_time,
                "settlement_date": record.settlement_date,
                "session": record.session,
                "fill_type": record.fill_type,
                "category": record.category,
                "board": record.board,
                "commission": record.commission,
                "exchange_fee": record.exchange_fee,
                "depository_fee": record.depository_fee,
                "tax": record.tax,
                "net_value": record.net_value,
            },
        )
        return row is not None

    def fetch_holding(self, client_id: str, isin: str) -> Optional[Mapping[str, Any]]:
        return self._db.fetch_one(
            """
            SELECT quantity, average_cost, total_invested, realized_pl
            FROM holdings
            WHERE client_id = :client_id
              AND isin = :isin
            """,
            {"client_id": client_id, "isin": isin},
        )

    def upsert_holding(
        self,
        client_id: str,
        isin: str,
        quantity: int,
        average_cost: Decimal,
        total_invested: Decimal,
        realized_pl: Decimal,
        as_of_date: date,
    ) -> None:
        self._db.execute(
            """
            INSERT INTO holdings (
                client_id,
                isin,
                quantity,
                average_cost,
                total_invested,
                realized_pl,
                as_of_date
            ) VALUES (
                :client_id,
                :isin,
                :quantity,
                :average_cost,
                :total_invested,
                :realized_pl,
                :as_of_date
            )
            ON CONFLICT (client_id, isin) DO UPDATE SET
                quantity = EXCLUDED.quantity,
                average_cost = EXCLUDED.average_cost,
                total_invested = EXCLUDED.total_invested,
                realized_pl = EXCLUDED.realized_pl,
                as_of_date = EXCLUDED.as_of_date,
                updated_at_utc = now()
            """,
            {
                "client_id": client_id,
                "isin": isin,
                "quantity": quantity,
                "average_cost": average_cost,
                "total_invested": total_invested,
                "realized_pl": realized_pl,
                "as_of_date": as_of_date,
            },
        )

    def fetch_open_positions(self, client_id: str) -> list[PositionRow]:
        rows = self._db.fetch_all(
            """
            SELECT
                h.client_id,
                h.isin,
                h.quantity,
                h.average_cost,
                COALESCE(s.is_marginable, FALSE) AS is_marginable
            FROM holdings h
            LEFT JOIN securities s
              ON s.isin = h.isin
            WHERE h.client_id = :client_id
              AND h.quantity > 0
            ORDER BY h.isin ASC
            """,
            {"client_id": client_id},
        )
        return [PositionRow.from_row(row) for row in rows]

    def fetch_positions_for_clients(self, client_ids: Sequence[str]) -> list[PositionRow]:
        if not client_ids:
            return []
        rows = self._db.fetch_all(
            """
            SELECT
                h.client_id,
                h.isin,
                h.quantity,
                h.average_cost,
                COALESCE(s.is_marginable, FALSE) AS is_marginable
            FROM holdings h
            LEFT JOIN securities s
              ON s.isin = h.isin
            WHERE h.client_id = ANY(CAST(:client_ids AS UUID[]))
              AND h.quantity > 0
            ORDER BY h.client_id ASC, h.isin ASC
            """,
            {"client_ids": list(client_ids)},
        )
        return [PositionRow.from_row(row) for row in rows]

    # -- cash ledger --------------------------------------------------------

    def latest_running_balance(self, client_id: str) -> Optional[Decimal]:
        row = self._db.fetch_one(
            """
            SELECT running_balance
            FROM cash_ledger
            WHERE client_id = :client_id
            ORDER BY id DESC
            LIMIT 1
            """,
            {"client_id": client_id},
        )
        return None if row is None else as_decimal(row["running_balance"])

    def insert_ledger_entry(self, entry: LedgerEntry) -> int:
        row = self._db.fetch_one(
            """
            INSERT INTO cash_ledger (
                client_id,
                transaction_date,
                value_date,
                amount,
                running_balance,
                entry_type,
                reference,
                narration
            ) VALUES (
                :client_id,
                :transaction_date,
                :value_date,
                :amount,
                :running_balance,
                :entry_type,
                :reference,
                :narration
            )
            RETURNING id
            """,
            {
                "client_id": entry.client_id,
                "transaction_date": entry.transaction_date,
                "value_date": entry.value_date,
                "amount": entry.amount,
                "running_balance": entry.running_balance,
                "entry_type": entry.entry_type,
                "reference": entry.reference,
                "narration": entry.narration,
            },
        )
        return 0 if row is None else int(row["id"])

    def fetch_ledger_entries(self, client_id: str) -> list[Mapping[str, Any]]:
        return list(
            self._db.fetch_all(
                """
                SELECT id, amount, running_balance
                FROM cash_ledger
                WHERE client_id = :client_id
                ORDER BY id ASC
                """,
                {"client_id": client_id},
            )
        )

    def update_running_balance(self, entry_id: int, running_balance: Decimal) -> None:
        self._db.execute(
            """
            UPDATE cash_ledger
            SET running_balance = :running_balance
            WHERE id = :entry_id
            """,
            {"entry_id": entry_id, "running_balance": running_balance},
        )

    def fetch_unposted_executions(self, limit: int) -> list[Mapping[str, Any]]:
        return list(
            self._db.fetch_all(
                """
                SELECT
                    te.exec_id,
                    te.client_id,
                    te.side,
                    te.net_value,
                    te.trade_date
                FROM trade_executions te
                WHERE NOT EXISTS (
                    SELECT 1
                    FROM cash_ledger cl
                    WHERE cl.client_id = te.client_id
                      AND cl.reference = te.exec_id
                      AND cl.entry_type IN ('BUY_TRADE', 'SELL_TRADE')
                )
                ORDER BY te.trade_date ASC, te.exec_id ASC
                LIMIT :limit
                """,
                {"limit": limit},
            )
        )

    # -- regulatory config ---------------------------------------------------

    def fetch_fee_schedule_rows(self, as_of: date) -> Sequence[Mapping[str, Any]]:
        return self._db.fetch_all(
            """
            SELECT fee_type, rate, min_amount
            FROM fee_schedule
            WHERE is_active = TRUE
              AND effective_from <= :as_of
              AND (effective_to IS NULL OR effective_to > :as_of)
            ORDER BY effective_from ASC, id ASC
            """,
            {"as_of": as_of},
        )

    def fetch_margin_config_rows(self, as_of: date) -> Sequence[Mapping[str, Any]]:
        return self._db.fetch_all(
            """
            SELECT parameter_name, parameter_value
            FROM margin_config
            WHERE is_active = TRUE
              AND effective_from <= :as_of
              AND (effective_to IS NULL OR effective_to > :as_of)
            ORDER BY effective_from ASC, id ASC
            """,
            {"as_of": as_of},
        )

    # -- prices ---------------------------------------------------------------

    def latest_price_date(self) -> Optional[date]:
        row = self._db.fetch_one(
            """
            SELECT MAX(price_date) AS price_date
            FROM daily_prices
            """,
            {},
        )
        return None if row is None else row["price_date"]

    def close_price_on_or_before(self, isin: str, as_of: date) -> Optional[Decimal]:
        row = self._db.fetch_one(
            """
            SELECT close_price
            FROM daily_prices
            WHERE isin = :isin
              AND price_date <= :as_of
              AND close_price IS NOT NULL
            ORDER BY price_date DESC
            LIMIT 1
            """,
            {"isin": isin, "as_of": as_of},
        )
        return None if row is None else as_decimal(row["close_price"])

    # -- margin --------------------------------------------------------------

    def fetch_margin_client_ids(self, offset: int, limit: int) -> list[str]:
        rows = self._db.fetch_all(
            """
            SELECT client_id
            FROM clients
            WHERE account_type = 'Margin'
            ORDER BY client_id ASC
            OFFSET :offset
            LIMIT :limit
            """,
            {"offset": offset, "limit": limit},
        )
        return [str(row["client_id"]) for row in rows]

    def fetch_margin_account(self, client_id: str) -> Optional[MarginAccountState]:
        row = self._db.fetch_one(
            f"""
            SELECT {_MARGIN_ACCOUNT_COLUMNS}
            FROM margin_accounts
            WHERE client_id = :client_id
            """,
            {"client_id": client_id},
        )
        return None if row is None else MarginAccountState.from_row(row)

    def upsert_margin_account(self, state: MarginAccountState) -> None:
        self._db.execute(
            """
            INSERT INTO margin_accounts (
                client_id,
                loan_balance,
                margin_ratio,
                total_portfolio_value,
                marginable_portfolio_value,
                client_equity,
                maintenance_status,
                applied_ratio,
                margin_call_count,
                margin_call_deadline,
                last_margin_call_date
            ) VALUES (
                :client_id,
                :loan_balance,
                :margin_ratio,
                :total_portfolio_value,
                :marginable_portfolio_value,
                :client_equity,
                :maintenance_status,
                :applied_ratio,
                :margin_call_count,
                :margin_call_deadline,
                :last_margin_call_date
            )
            ON CONFLICT (client_id) DO UPDATE SET
                loan_balance = EXCLUDED.loan_balance,
                margin_ratio = EXCLUDED.margin_ratio,
                total_portfolio_value = EXCLUDED.total_portfolio_value,
                marginable_portfolio_value = EXCLUDED.marginable_portfolio_value,
                client_equity = EXCLUDED.client_equity,
                maintenance_status = EXCLUDED.maintenance_status,
                applied_ratio = EXCLUDED.applied_ratio,
                margin_call_count = EXCLUDED.margin_call_count,
                margin_call_deadline = EXCLUDED.margin_call_deadline,
                last_margin_call_date = EXCLUDED.last_margin_call_date,
                updated_at_utc = now()
            """,
            {
                "client_id": state.client_id,
                "loan_balance": state.loan_balance,
                "margin_ratio": state.margin_ratio,
                "total_portfolio_value": state.total_portfolio_value,
                "marginable_portfolio_value": state.marginable_portfolio_value,
                "client_equity": state.client_equity,
                "maintenance_status": state.maintenance_status,
                "applied_ratio": state.applied_ratio,
                "margin_call_count": state.margin_call_count,
                "margin_call_deadline": state.margin_call_deadline,
                "last_margin_call_date": state.last_margin_call_date,
            },
        )

    def fetch_loan_accounts(self) -> list[tuple[str, Decimal]]:
        rows = self._db.fetch_all(
            """
            SELECT ma.client_id, ma.loan_balance
            FROM margin_accounts ma
            JOIN clients c
              ON c.client_id = ma.client_id
            WHERE c.account_type = 'Margin'
              AND ma.loan_balance > 0
            ORDER BY ma.client_id ASC
            """,
            {},
        )
        return [(str(row["client_id"]), as_decimal(row["loan_balance"])) for row in rows]

    def insert_alert(self, alert: MarginAlertRecord) -> None:
        self._db.execute(
            """
            INSERT INTO margin_alerts (
                client_id,
                alert_date,
                alert_type,
                deadline_date,
                details
            ) VALUES (
                :client_id,
                :alert_date,
                :alert_type,
                :deadline_date,
                CAST(:details AS JSONB)
            )
            """,
            _alert_params(alert),
        )

    def insert_alert_once(self, alert: MarginAlertRecord) -> bool:
        """Insert unless the same (client, date, type) alert already exists."""
        row = self._db.fetch_one(
            """
            INSERT INTO margin_alerts (
                client_id,
                alert_date,
                alert_type,
                deadline_date,
                details
            )
            SELECT
                CAST(:client_id AS UUID),
                CAST(:alert_date AS DATE),
                CAST(:alert_type AS margin_alert_type_enum),
                CAST(:deadline_date AS DATE),
                CAST(:details AS JSONB)
            WHERE NOT EXISTS (
                SELECT 1
                FROM margin_alerts
                WHERE client_id = CAST(:client_id AS UUID)
                  AND alert_date = CAST(:alert_date AS DATE)
                  AND alert_type = CAST(:alert_type AS margin_alert_type_enum)
            )
            RETURNING id
            """,
            _alert_params(alert),
        )
        return row is not None

    def alert_exists(self, client_id: str, alert_date: date, alert_type: str) -> bool:
        row = self._db.fetch_one(
            """
            SELECT id
            FROM margin_alerts
            WHERE client_id = :client_id
              AND alert_date = :alert_date
              AND alert_type = :alert_type
            LIMIT 1
            """,
            {"client_id": client_id, "alert_date": alert_date, "alert_type": alert_type},
        )
        return row is not None

    def upsert_daily_snapshot(self, snapshot: DailySnapshotRecord) -> None:
        self._db.execute(
            """
            INSERT INTO daily_snapshots (
                client_id,
                snapshot_date,
                total_portfolio_value,
                cash_balance,
                loan_balance,
                net_equity,
                margin_utilization_pct,
                unrealized_pl
            ) VALUES (
                :client_id,
                :snapshot_date,
                :total_portfolio_value,
                :cash_balance,
                :loan_balance,
                :net_equity,
                :margin_utilization_pct,
                :unrealized_pl
            )
            ON CONFLICT (client_id, snapshot_date) DO UPDATE SET
                total_portfolio_value = EXCLUDED.total_portfolio_value,
                cash_balance = EXCLUDED.cash_balance,
                loan_balance = EXCLUDED.loan_balance,
                net_equity = EXCLUDED.net_equity,
                margin_utilization_pct = EXCLUDED.margin_utilization_pct,
                unrealized_pl = EXCLUDED.unrealized_pl
            """,
            {
                "client_id": snapshot.client_id,
                "snapshot_date": snapshot.snapshot_date,
                "total_portfolio_value": snapshot.total_portfolio_value,
                "cash_balance": snapshot.cash_balance,
                "loan_balance": snapshot.loan_balance,
                "net_equity": snapshot.net_equity,
                "margin_utilization_pct": snapshot.margin_utilization_pct,
                "unrealized_pl": snapshot.unrealized_pl,
            },
        )
