"""Append-only cash ledger postings and running-balance maintenance."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
import logging
from typing import Any, Mapping, Optional

from backend.db.enums import LedgerEntryType, TradeSide
from settlement.common import ZERO, as_decimal, round_money
from settlement.records import LedgerEntry
from settlement.store import SettlementStore

logger = logging.getLogger(__name__)

TRADE_ENTRY_TYPES = (LedgerEntryType.BUY_TRADE, LedgerEntryType.SELL_TRADE)


@dataclass(frozen=True)
class RecomputeResult:
    client_id: str
    entries_scanned: int
    entries_corrected: int
    final_balance: Decimal


@dataclass(frozen=True)
class UnpostedExecution:
    exec_id: str
    client_id: str
    side: str
    net_value: Decimal
    trade_date: date

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "UnpostedExecution":
        return cls(
            exec_id=str(row["exec_id"]),
            client_id=str(row["client_id"]),
            side=str(row["side"]),
            net_value=as_decimal(row["net_value"]),
            trade_date=row["trade_date"],
        )


def trade_cash_amount(side: TradeSide, net_value: Decimal) -> Decimal:
    """BUY debits the client, SELL credits them."""
    amount = -net_value if side == TradeSide.BUY else net_value
    return round_money(amount)


def post_cash_movement(
    store: SettlementStore,
    client_id: str,
    amount: Decimal,
    entry_type: LedgerEntryType,
    transaction_date: date,
    value_date: Optional[date] = None,
    reference: Optional[str] = None,
    narration: Optional[str] = None,
) -> LedgerEntry:
    """Append one entry whose running balance carries on from the client's latest entry."""
    previous = store.latest_running_balance(client_id)
    amount = round_money(amount)
    entry = LedgerEntry(
        client_id=client_id,
        transaction_date=transaction_date,
        value_date=value_date,
        amount=amount,
        running_balance=round_money((previous if previous is not None else ZERO) + amount),
        entry_type=entry_type.value,
        reference=reference,
        narration=narration,
    )
    store.insert_ledger_entry(entry)
    return entry


def recompute_running_balance(store: SettlementStore, client_id: str) -> RecomputeResult:
    """Replay a client's entries in insertion order from zero and repair drifted balances."""
    balance = ZERO
    scanned = 0
    corrected = 0
    for row in store.fetch_ledger_entries(client_id):
        scanned += 1
        balance = round_money(balance + as_decimal(row["amount"]))
        if as_decimal(row["running_balance"]) != balance:
            store.update_running_balance(int(row["id"]), balance)
            corrected += 1
    if corrected:
        logger.warning(
            "Corrected %d of %d running balances for client %s.",
            corrected,
            scanned,
            client_id,
        )
    return RecomputeResult(
        client_id=client_id,
        entries_scanned=scanned,
        entries_corrected=corrected,
        final_balance=balance,
    )


def find_unposted_executions(store: SettlementStore, limit: int = 500) -> list[UnpostedExecution]:
    """Executions with no BUY_TRADE/SELL_TRADE ledger entry referencing them."""
    return [UnpostedExecution.from_row(row) for row in store.fetch_unposted_executions(limit)]
