"""Typed row records exchanged between the store and the batch jobs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, time
from decimal import Decimal
from typing import Any, Mapping, Optional

from settlement.common import ZERO, as_decimal


def _opt_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _opt_decimal(value: Any) -> Optional[Decimal]:
    return None if value is None else as_decimal(value)


@dataclass(frozen=True)
class RawTradeRow:
    id: int
    source: str
    status: Optional[str]
    side: Optional[str]
    bo_id: Optional[str]
    client_code: Optional[str]
    isin: Optional[str]
    security_code: Optional[str]
    board: Optional[str]
    category: Optional[str]
    asset_class: Optional[str]
    trade_date: Optional[date]
    trade_time: Optional[time]
    quantity: int
    price: Decimal
    value: Decimal
    exec_id: Optional[str]
    order_id: Optional[str] = None
    session: Optional[str] = None
    fill_type: Optional[str] = None
    compulsory_spot: bool = False
    import_audit_id: Optional[int] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "RawTradeRow":
        return cls(
            id=int(row["id"]),
            source=str(row["source"]),
            status=_opt_str(row.get("status")),
            side=_opt_str(row.get("side")),
            bo_id=_opt_str(row.get("bo_id")),
            client_code=_opt_str(row.get("client_code")),
            isin=_opt_str(row.get("isin")),
            security_code=_opt_str(row.get("security_code")),
            board=_opt_str(row.get("board")),
            category=_opt_str(row.get("category")),
            asset_class=_opt_str(row.get("asset_class")),
            trade_date=row.get("trade_date"),
            trade_time=row.get("trade_time"),
            quantity=int(row.get("quantity") or 0),
            price=as_decimal(row.get("price")),
            value=as_decimal(row.get("value")),
            exec_id=_opt_str(row.get("exec_id")),
            order_id=_opt_str(row.get("order_id")),
            session=_opt_str(row.get("session")),
            fill_type=_opt_str(row.get("fill_type")),
            compulsory_spot=bool(row.get("compulsory_spot") or False),
            import_audit_id=row.get("import_audit_id"),
        )


@dataclass(frozen=True)
class ClientRecord:
    client_id: str
    bo_id: Optional[str] = None
    client_code: Optional[str] = None
    account_type: Optional[str] = None
    income_status: Optional[str] = None
    kyc_completed: Optional[bool] = None
    status: str = "active"

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "ClientRecord":
        return cls(
            client_id=str(row["client_id"]),
            bo_id=_opt_str(row.get("bo_id")),
            client_code=_opt_str(row.get("client_code")),
            account_type=_opt_str(row.get("account_type")),
            income_status=_opt_str(row.get("income_status")),
            kyc_completed=row.get("kyc_completed"),
            status=str(row.get("status") or "active"),
        )


@dataclass(frozen=True)
class SecurityRecord:
    """Marginability inputs for one security."""

    isin: str
    security_code: Optional[str] = None
    category: Optional[str] = None
    board: Optional[str] = None
    sector: Optional[str] = None
    trailing_pe: Optional[Decimal] = None
    free_float_market_cap: Optional[Decimal] = None
    annual_dividend_pct: Optional[Decimal] = None
    status: Optional[str] = None
    asset_class: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "SecurityRecord":
        return cls(
            isin=str(row["isin"]),
            security_code=_opt_str(row.get("security_code")),
            category=_opt_str(row.get("category")),
            board=_opt_str(row.get("board")),
            sector=_opt_str(row.get("sector")),
            trailing_pe=_opt_decimal(row.get("trailing_pe")),
            free_float_market_cap=_opt_decimal(row.get("free_float_market_cap")),
            annual_dividend_pct=_opt_decimal(row.get("annual_dividend_pct")),
            status=_opt_str(row.get("status")),
            asset_class=_opt_str(row.get("asset_class")),
        )


@dataclass(frozen=True)
class TradeExecutionRecord:
    exec_id: str
    order_id: Optional[str]
    client_id: str
    isin: str
    exchange: str
    side: str
    quantity: int
    price: Decimal
    value: Decimal
    trade_date: date
    trade_time: Optional[time]
    settlement_date: date
    session: Optional[str]
    fill_type: Optional[str]
    category: Optional[str]
    board: Optional[str]
    commission: Decimal
    exchange_fee: Decimal
    depository_fee: Decimal
    tax: Decimal
    net_value: Decimal


@dataclass(frozen=True)
class LedgerEntry:
    client_id: str
    transaction_date: date
    amount: Decimal
    running_balance: Decimal
    entry_type: str
    value_date: Optional[date] = None
    reference: Optional[str] = None
    narration: Optional[str] = None


@dataclass(frozen=True)
class PositionRow:
    """Open position joined with the security's marginability flag."""

    client_id: str
    isin: str
    quantity: int
    average_cost: Decimal
    is_marginable: bool = False

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "PositionRow":
        return cls(
            client_id=str(row["client_id"]),
            isin=str(row["isin"]),
            quantity=int(row["quantity"]),
            average_cost=as_decimal(row.get("average_cost")),
            is_marginable=bool(row.get("is_marginable") or False),
        )


@dataclass(frozen=True)
class MarginAccountState:
    client_id: str
    maintenance_status: str = "NORMAL"
    margin_call_count: int = 0
    margin_call_deadline: Optional[date] = None
    last_margin_call_date: Optional[date] = None
    loan_balance: Decimal = ZERO
    margin_ratio: Optional[Decimal] = None
    total_portfolio_value: Decimal = ZERO
    marginable_portfolio_value: Decimal = ZERO
    client_equity: Decimal = ZERO
    applied_ratio: str = "N/A"

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "MarginAccountState":
        return cls(
            client_id=str(row["client_id"]),
            maintenance_status=str(row.get("maintenance_status") or "NORMAL"),
            margin_call_count=int(row.get("margin_call_count") or 0),
            margin_call_deadline=row.get("margin_call_deadline"),
            last_margin_call_date=row.get("last_margin_call_date"),
            loan_balance=as_decimal(row.get("loan_balance")),
            margin_ratio=_opt_decimal(row.get("margin_ratio")),
            total_portfolio_value=as_decimal(row.get("total_portfolio_value")),
            marginable_portfolio_value=as_decimal(row.get("marginable_portfolio_value")),
            client_equity=as_decimal(row.get("client_equity")),
            applied_ratio=str(row.get("applied_ratio") or "N/A"),
        )


@dataclass(frozen=True)
class MarginAlertRecord:
    client_id: str
    alert_date: date
    alert_type: str
    details: Mapping[str, Any] = field(default_factory=dict)
    deadline_date: Optional[date] = None


@dataclass(frozen=True)
class DailySnapshotRecord:
    client_id: str
    snapshot_date: date
    total_portfolio_value: Decimal
    cash_balance: Decimal
    loan_balance: Decimal
    net_equity: Decimal
    margin_utilization_pct: Decimal
    unrealized_pl: Decimal
