"""Posting of raw exchange fills into executions, holdings and the cash ledger."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Optional

from backend.db.enums import LedgerEntryType, TradeSide
from settlement.cash_ledger import post_cash_movement, trade_cash_amount
from settlement.common import ItemError, SettlementClock, cap_errors, decimal_to_str
from settlement.errors import TradeRejectedError
from settlement.fee_calculator import calculate_fees
from settlement.holdings import HoldingState, apply_buy, apply_sell
from settlement.identity import check_margin_eligibility, resolve_client, resolve_security
from settlement.records import RawTradeRow, TradeExecutionRecord
from settlement.regulatory_config import FeeSchedule, load_fee_schedule
from settlement.settlement_calendar import compute_settlement_date
from settlement.store import SettlementStore

logger = logging.getLogger(__name__)

DUPLICATE_EXEC_ID = "Duplicate exec_id"
MISSING_EXEC_ID = "Missing exec_id"

_SIDE_CODES = {
    "B": TradeSide.BUY,
    "BUY": TradeSide.BUY,
    "S": TradeSide.SELL,
    "SELL": TradeSide.SELL,
}


def parse_side(raw_side: Optional[str]) -> TradeSide:
    side = _SIDE_CODES.get((raw_side or "").strip().upper())
    if side is None:
        raise TradeRejectedError(f"Unknown trade side: {raw_side!r}")
    return side


@dataclass(frozen=True)
class TradeBatchResult:
    processed_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    total_considered: int = 0
    errors: tuple[ItemError, ...] = ()

    def as_dict(self) -> dict[str, Any]:
        return {
            "processed_count": self.processed_count,
            "failed_count": self.failed_count,
            "skipped_count": self.skipped_count,
            "total_considered": self.total_considered,
            "errors": [{"raw_trade_id": item.key, "error": item.error} for item in self.errors],
        }


@dataclass(frozen=True)
class TradeRunSummary:
    iterations: int
    processed_count: int
    failed_count: int
    skipped_count: int
    stop_reason: str
    errors: tuple[ItemError, ...] = field(default=())

    def as_dict(self) -> dict[str, Any]:
        return {
            "iterations": self.iterations,
            "processed_count": self.processed_count,
            "failed_count": self.failed_count,
            "skipped_count": self.skipped_count,
            "stop_reason": self.stop_reason,
            "errors": [{"raw_trade_id": item.key, "error": item.error} for item in self.errors],
        }


class TradeExecutionProcessor:
    """Consumes unprocessed FILL/PF raw trades in bounded batches.

    Rows are posted sequentially; a failing row is left unprocessed with
    its error text and never blocks the rest of the batch.
    """

    def __init__(
        self,
        store: SettlementStore,
        *,
        batch_size: int = 200,
        error_report_limit: int = 50,
        clock: Optional[SettlementClock] = None,
        fee_schedule: Optional[FeeSchedule] = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._store = store
        self._batch_size = batch_size
        self._error_report_limit = error_report_limit
        self._clock = clock or SettlementClock()
        self._fee_schedule = fee_schedule

    @property
    def batch_size(self) -> int:
        return self._batch_size

    def run_batch(self, import_audit_id: Optional[int] = None) -> TradeBatchResult:
        rows = self._store.fetch_pending_raw_trades(self._batch_size, import_audit_id)
        if not rows:
            logger.info("No unprocessed trades found.")
            return TradeBatchResult()

        schedule = self._fee_schedule or load_fee_schedule(self._store, self._clock.today())
        seen = self._store.existing_exec_ids([row.exec_id for row in rows if row.exec_id])

        processed = 0
        skipped = 0
        errors: list[ItemError] = []
        for raw in rows:
            if not raw.exec_id or raw.exec_id in seen:
                reason = DUPLICATE_EXEC_ID if raw.exec_id else MISSING_EXEC_ID
                self._store.mark_raw_trade(raw.id, processed=True, error_message=reason)
                skipped += 1
                continue
            try:
                with self._store.unit_of_work():
                    posted = self._post_trade(raw, schedule)
            except Exception as exc:
                message = str(exc) or exc.__class__.__name__
                logger.warning("Raw trade %s failed: %s", raw.id, message)
                errors.append(ItemError(key=str(raw.id), error=message))
                self._store.mark_raw_trade(raw.id, processed=False, error_message=message)
                continue
            seen.add(raw.exec_id)
            if posted:
                processed += 1
            else:
                skipped += 1

        result = TradeBatchResult(
            processed_count=processed,
            failed_count=len(errors),
            skipped_count=skipped,
            total_considered=len(rows),
            errors=cap_errors(errors, self._error_report_limit),
        )
        logger.info(
            "Trade batch complete: considered=%d processed=%d skipped=%d failed=%d",
            result.total_considered,
            result.processed_count,
            result.skipped_count,
            result.failed_count,
        )
        return result

    def run_until_exhausted(
        self,
        import_audit_id: Optional[int] = None,
        max_iterations: int = 100,
    ) -> TradeRunSummary:
        """Re-invoke ``run_batch`` until a short batch, no progress, or the iteration cap."""
        processed = failed = skipped = 0
        errors: list[ItemError] = []
        iterations = 0
        stop_reason = "iteration_cap"
        while iterations < max_iterations:
            iterations += 1
            result = self.run_batch(import_audit_id)
            processed += result.processed_count
            failed += result.failed_count
            skipped += result.skipped_count
            errors.extend(result.errors)
            if result.total_considered == 0:
                stop_reason = "exhausted"
                break
            # Failed rows stay unprocessed and would be re-fetched unchanged.
            if result.processed_count == 0 and result.skipped_count == 0:
                stop_reason = "no_progress"
                logger.warning(
                    "Trade processing made no progress; raw trades blocking the queue: %s",
                    ", ".join(item.key for item in result.errors),
                )
                break
            if result.total_considered < self._batch_size:
                stop_reason = "short_batch"
                break
        if stop_reason == "iteration_cap":
            logger.warning("Trade processing stopped at the iteration cap of %d.", max_iterations)
        return TradeRunSummary(
            iterations=iterations,
            processed_count=processed,
            failed_count=failed,
            skipped_count=skipped,
            stop_reason=stop_reason,
            errors=cap_errors(errors, self._error_report_limit),
        )

    def _post_trade(self, raw: RawTradeRow, schedule: FeeSchedule) -> bool:
        """Post one raw trade; returns False when the execution insert hit a duplicate."""
        side = parse_side(raw.side)
        if raw.trade_date is None:
            raise TradeRejectedError("Missing trade_date")

        client = resolve_client(self._store, raw)
        check_margin_eligibility(client)
        isin = resolve_security(self._store, raw)

        fees = calculate_fees(raw.value, side, schedule)
        settlement_date = compute_settlement_date(raw.trade_date, raw.category, side, raw.compulsory_spot)

        inserted = self._store.insert_trade_execution(
            TradeExecutionRecord(
                exec_id=raw.exec_id or "",
                order_id=raw.order_id,
                client_id=client.client_id,
                isin=isin,
                exchange=raw.source,
                side=side.value,
                quantity=raw.quantity,
                price=raw.price,
                value=raw.value,
                trade_date=raw.trade_date,
                trade_time=raw.trade_time,
                settlement_date=settlement_date,
                session=raw.session,
                fill_type=raw.fill_type,
                category=raw.category,
                board=raw.board,
                commission=fees.commission,
                exchange_fee=fees.exchange_fee,
                depository_fee=fees.depository_fee,
                tax=fees.tax,
                net_value=fees.net_value,
            )
        )
        if not inserted:
            self._store.mark_raw_trade(raw.id, processed=True, error_message=DUPLICATE_EXEC_ID)
            return False

        holding = HoldingState.from_row(self._store.fetch_holding(client.client_id, isin))
        if side is TradeSide.BUY:
            holding = apply_buy(holding, raw.quantity, fees.net_value)
        else:
            sold = apply_sell(holding, raw.quantity, raw.price, fees.net_value)
            if sold.clamped_quantity:
                logger.warning(
                    "Over-sell clamped to zero: raw trade %s client %s isin %s sold %d beyond holding.",
                    raw.id,
                    client.client_id,
                    isin,
                    sold.clamped_quantity,
                )
            holding = sold.holding
        self._store.upsert_holding(
            client_id=client.client_id,
            isin=isin,
            quantity=holding.quantity,
            average_cost=holding.average_cost,
            total_invested=holding.total_invested,
            realized_pl=holding.realized_pl,
            as_of_date=raw.trade_date,
        )

        post_cash_movement(
            self._store,
            client.client_id,
            trade_cash_amount(side, fees.net_value),
            LedgerEntryType.BUY_TRADE if side is TradeSide.BUY else LedgerEntryType.SELL_TRADE,
            transaction_date=raw.trade_date,
            value_date=settlement_date,
            reference=raw.exec_id,
            narration=f"{side.value} {raw.quantity} {raw.security_code or isin} @ {decimal_to_str(raw.price)}",
        )
        self._store.mark_raw_trade(raw.id, processed=True, error_message=None)
        return True
