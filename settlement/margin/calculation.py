"""Margin calculation batch job.

For each margin client the job values the open portfolio at the
snapshot date, derives the loan from a negative cash balance, decides the
maintenance status (with deadline escalation), raises alerts and writes
the margin account and daily snapshot. The concentration check runs once
after the final client batch of a full run.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
import logging
from typing import Any, Mapping, Optional

from backend.db.enums import MarginAlertType, MarginStatus
from settlement.common import (
    ZERO,
    ItemError,
    SettlementClock,
    cap_errors,
    round_money,
    round_ratio,
)
from settlement.errors import SettlementError
from settlement.margin.rules import (
    MarginCallState,
    deadline_passed,
    determine_applied_ratio,
    determine_status,
    next_margin_call_state,
)
from settlement.pricing import DailyPriceResolver, PriceResolver, position_value
from settlement.records import (
    DailySnapshotRecord,
    MarginAccountState,
    MarginAlertRecord,
    PositionRow,
)
from settlement.regulatory_config import MarginConfig, load_margin_config
from settlement.store import SettlementStore

logger = logging.getLogger(__name__)

CONCENTRATION_CHECK_KEY = "CONCENTRATION_CHECK"
ONE = Decimal("1")


def _empty_status_counts() -> dict[str, int]:
    return {status.value: 0 for status in MarginStatus}


@dataclass(frozen=True)
class PortfolioValuation:
    total_value: Decimal
    marginable_value: Decimal
    cost_basis: Decimal


@dataclass(frozen=True)
class ClientMarginOutcome:
    client_id: str
    status: MarginStatus
    equity_ratio: Decimal
    loan_balance: Decimal
    alerts_generated: int


@dataclass(frozen=True)
class MarginBatchResult:
    snapshot_date: date
    clients_processed: int
    status_counts: Mapping[str, int]
    alerts_generated: int
    snapshots_created: int
    batch_size: int
    offset: int
    next_offset: int
    done: bool
    errors: tuple[ItemError, ...] = ()

    def as_dict(self) -> dict[str, Any]:
        return {
            "snapshot_date": self.snapshot_date.isoformat(),
            "clients_processed": self.clients_processed,
            "status_counts": dict(self.status_counts),
            "alerts_generated": self.alerts_generated,
            "snapshots_created": self.snapshots_created,
            "batch_size": self.batch_size,
            "offset": self.offset,
            "next_offset": self.next_offset,
            "done": self.done,
            "errors": [{"client_id": item.key, "error": item.error} for item in self.errors],
        }


@dataclass(frozen=True)
class MarginRunSummary:
    snapshot_date: date
    iterations: int
    clients_processed: int
    status_counts: Mapping[str, int]
    alerts_generated: int
    snapshots_created: int
    stop_reason: str
    errors: tuple[ItemError, ...] = field(default=())

    def as_dict(self) -> dict[str, Any]:
        return {
            "snapshot_date": self.snapshot_date.isoformat(),
            "iterations": self.iterations,
            "clients_processed": self.clients_processed,
            "status_counts": dict(self.status_counts),
            "alerts_generated": self.alerts_generated,
            "snapshots_created": self.snapshots_created,
            "stop_reason": self.stop_reason,
            "errors": [{"client_id": item.key, "error": item.error} for item in self.errors],
        }


def value_portfolio(
    positions: list[PositionRow],
    resolver: PriceResolver,
    snapshot_date: date,
) -> PortfolioValuation:
    total = ZERO
    marginable = ZERO
    cost_basis = ZERO
    for position in positions:
        value = position_value(resolver, position.isin, position.quantity, position.average_cost, snapshot_date)
        total += value
        cost_basis += position.average_cost * position.quantity
        if position.is_marginable:
            marginable += value
    return PortfolioValuation(total_value=total, marginable_value=marginable, cost_basis=cost_basis)


def equity_ratio(marginable_value: Decimal, loan_balance: Decimal) -> Decimal:
    """(marginable - loan) / marginable, defined as 1 for an empty marginable portfolio."""
    if marginable_value <= 0:
        return ONE
    return (marginable_value - loan_balance) / marginable_value


class MarginCalculationJob:
    """Recomputes margin accounts for one bounded slice of margin clients."""

    def __init__(
        self,
        store: SettlementStore,
        *,
        batch_size: int = 200,
        error_report_limit: int = 50,
        clock: Optional[SettlementClock] = None,
        config: Optional[MarginConfig] = None,
        price_resolver: Optional[PriceResolver] = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._store = store
        self._batch_size = batch_size
        self._error_report_limit = error_report_limit
        self._clock = clock or SettlementClock()
        self._config = config
        self._price_resolver = price_resolver

    def resolve_snapshot_date(self, snapshot_date: Optional[date] = None) -> date:
        if snapshot_date is not None:
            return snapshot_date
        latest = self._store.latest_price_date()
        if latest is None:
            raise SettlementError("Cannot determine snapshot date: no daily prices available")
        return latest

    def run_batch(
        self,
        snapshot_date: Optional[date] = None,
        client_id: Optional[str] = None,
        offset: int = 0,
    ) -> MarginBatchResult:
        snapshot = self.resolve_snapshot_date(snapshot_date)
        config = self._config or load_margin_config(self._store, snapshot)
        resolver = self._price_resolver or DailyPriceResolver(self._store)

        if client_id is not None:
            client = self._store.fetch_client(client_id)
            client_ids = [client.client_id] if client is not None else []
        else:
            client_ids = self._store.fetch_margin_client_ids(offset, self._batch_size)

        status_counts = _empty_status_counts()
        alerts = 0
        processed = 0
        errors: list[ItemError] = []
        for current_id in client_ids:
            try:
                with self._store.unit_of_work():
                    outcome = self._process_client(current_id, snapshot, config, resolver)
            except Exception as exc:
                message = str(exc) or exc.__class__.__name__
                logger.warning("Margin calculation failed for client %s: %s", current_id, message)
                errors.append(ItemError(key=current_id, error=message))
                continue
            status_counts[outcome.status.value] += 1
            alerts += outcome.alerts_generated
            processed += 1

        is_final_batch = len(client_ids) < self._batch_size
        if client_id is None and is_final_batch:
            try:
                alerts += self._check_concentration(snapshot, config, resolver)
            except Exception as exc:
                message = str(exc) or exc.__class__.__name__
                logger.warning("Concentration check failed: %s", message)
                errors.append(ItemError(key=CONCENTRATION_CHECK_KEY, error=message))

        result = MarginBatchResult(
            snapshot_date=snapshot,
            clients_processed=processed,
            status_counts=status_counts,
            alerts_generated=alerts,
            snapshots_created=processed,
            batch_size=len(client_ids),
            offset=offset,
            next_offset=offset + len(client_ids),
            done=client_id is not None or is_final_batch,
            errors=cap_errors(errors, self._error_report_limit),
        )
        logger.info(
            "Margin batch complete: snapshot_date=%s offset=%d clients=%d alerts=%d failed=%d",
            snapshot.isoformat(),
            offset,
            processed,
            alerts,
            len(errors),
        )
        return result

    def run_all(self, snapshot_date: Optional[date] = None, max_iterations: int = 100) -> MarginRunSummary:
        """Page through all margin clients until a batch reports ``done``."""
        snapshot = self.resolve_snapshot_date(snapshot_date)
        status_counts = _empty_status_counts()
        clients = alerts = snapshots = 0
        errors: list[ItemError] = []
        offset = 0
        iterations = 0
        stop_reason = "iteration_cap"
        while iterations < max_iterations:
            iterations += 1
            result = self.run_batch(snapshot_date=snapshot, offset=offset)
            clients += result.clients_processed
            alerts += result.alerts_generated
            snapshots += result.snapshots_created
            for status, count in result.status_counts.items():
                status_counts[status] += count
            errors.extend(result.errors)
            if result.done:
                stop_reason = "done"
                break
            offset = result.next_offset
        if stop_reason == "iteration_cap":
            logger.warning("Margin calculation stopped at the iteration cap of %d.", max_iterations)
        return MarginRunSummary(
            snapshot_date=snapshot,
            iterations=iterations,
            clients_processed=clients,
            status_counts=status_counts,
            alerts_generated=alerts,
            snapshots_created=snapshots,
            stop_reason=stop_reason,
            errors=cap_errors(errors, self._error_report_limit),
        )

    def _process_client(
        self,
        client_id: str,
        snapshot_date: date,
        config: MarginConfig,
        resolver: PriceResolver,
    ) -> ClientMarginOutcome:
        valuation = value_portfolio(self._store.fetch_open_positions(client_id), resolver, snapshot_date)
        cash_balance = self._store.latest_running_balance(client_id) or ZERO
        loan = -cash_balance if cash_balance < 0 else ZERO
        ratio = equity_ratio(valuation.marginable_value, loan)
        client_equity = valuation.total_value - loan
        applied = determine_applied_ratio(valuation.marginable_value, config)
        fresh_status = determine_status(ratio, config.normal_threshold, config.force_sell_threshold)

        stored = self._store.fetch_margin_account(client_id)
        previous = MarginCallState()
        if stored is not None:
            previous = MarginCallState(
                status=MarginStatus(stored.maintenance_status),
                margin_call_count=stored.margin_call_count,
                margin_call_deadline=stored.margin_call_deadline,
                last_margin_call_date=stored.last_margin_call_date,
            )

        breached = deadline_passed(previous, snapshot_date)
        # A same-day re-run sees the escalated FORCE_SELL already stored.
        escalated_today = (
            not breached
            and previous.status is MarginStatus.FORCE_SELL
            and self._store.alert_exists(client_id, snapshot_date, MarginAlertType.DEADLINE_BREACH.value)
        )
        status = MarginStatus.FORCE_SELL if breached or escalated_today else fresh_status
        state = next_margin_call_state(previous, status, snapshot_date, config.margin_call_deadline_days)

        self._store.upsert_margin_account(
            MarginAccountState(
                client_id=client_id,
                maintenance_status=status.value,
                margin_call_count=state.margin_call_count,
                margin_call_deadline=state.margin_call_deadline,
                last_margin_call_date=state.last_margin_call_date,
                loan_balance=round_money(loan),
                margin_ratio=round_ratio(ratio),
                total_portfolio_value=round_money(valuation.total_value),
                marginable_portfolio_value=round_money(valuation.marginable_value),
                client_equity=round_money(client_equity),
                applied_ratio=applied.label,
            )
        )

        alerts = 0
        if status is not MarginStatus.NORMAL and status is not previous.status:
            alert_type = (
                MarginAlertType.FORCE_SELL_TRIGGERED
                if status is MarginStatus.FORCE_SELL
                else MarginAlertType.MARGIN_CALL
            )
            self._store.insert_alert(
                MarginAlertRecord(
                    client_id=client_id,
                    alert_date=snapshot_date,
                    alert_type=alert_type.value,
                    deadline_date=state.margin_call_deadline,
                    details={
                        "equity_ratio": round_ratio(ratio),
                        "marginable_portfolio_value": round_money(valuation.marginable_value),
                        "total_portfolio_value": round_money(valuation.total_value),
                        "loan_balance": round_money(loan),
                        "client_equity": round_money(client_equity),
                        "applied_ratio": applied.label,
                        "margin_call_count": state.margin_call_count,
                        "deadline_date": state.margin_call_deadline,
                    },
                )
            )
            alerts += 1

        if breached and self._store.insert_alert_once(
            MarginAlertRecord(
                client_id=client_id,
                alert_date=snapshot_date,
                alert_type=MarginAlertType.DEADLINE_BREACH.value,
                details={
                    "original_deadline": previous.margin_call_deadline,
                    "equity_ratio": round_ratio(ratio),
                    "loan_balance": round_money(loan),
                    "escalated_to": MarginStatus.FORCE_SELL.value,
                },
            )
        ):
            alerts += 1

        if loan > 0 and config.core_capital_net_worth > 0:
            client_limit = min(
                config.core_capital_net_worth * config.single_client_limit_pct,
                config.single_client_limit_max,
            )
            if loan > client_limit and self._store.insert_alert_once(
                MarginAlertRecord(
                    client_id=client_id,
                    alert_date=snapshot_date,
                    alert_type=MarginAlertType.EXPOSURE_BREACH.value,
                    details={
                        "breach_type": "SINGLE_CLIENT",
                        "loan_balance": round_money(loan),
                        "client_limit": round_money(client_limit),
                        "core_capital": round_money(config.core_capital_net_worth),
                        "limit_pct": config.single_client_limit_pct,
                    },
                )
            ):
                alerts += 1

        utilization = loan / valuation.total_value if valuation.total_value > 0 else ZERO
        self._store.upsert_daily_snapshot(
            DailySnapshotRecord(
                client_id=client_id,
                snapshot_date=snapshot_date,
                total_portfolio_value=round_money(valuation.total_value),
                cash_balance=round_money(cash_balance),
                loan_balance=round_money(loan),
                net_equity=round_money(client_equity),
                margin_utilization_pct=round_ratio(utilization),
                unrealized_pl=round_money(valuation.total_value - valuation.cost_basis),
            )
        )
        return ClientMarginOutcome(
            client_id=client_id,
            status=status,
            equity_ratio=ratio,
            loan_balance=loan,
            alerts_generated=alerts,
        )

    def _check_concentration(self, snapshot_date: date, config: MarginConfig, resolver: PriceResolver) -> int:
        """Attribute each client's loan across holdings and flag over-concentrated securities."""
        loans = dict(self._store.fetch_loan_accounts())
        total_loan = sum(loans.values(), ZERO)
        if total_loan <= 0:
            return 0

        holding_values: dict[str, dict[str, Decimal]] = defaultdict(dict)
        for position in self._store.fetch_positions_for_clients(sorted(loans)):
            value = position_value(resolver, position.isin, position.quantity, position.average_cost, snapshot_date)
            holding_values[position.client_id][position.isin] = value

        attributed: dict[str, Decimal] = defaultdict(lambda: ZERO)
        holders: dict[str, set[str]] = defaultdict(set)
        for client_id, values in holding_values.items():
            portfolio = sum(values.values(), ZERO)
            for isin in values:
                holders[isin].add(client_id)
            if portfolio <= 0:
                continue
            for isin, value in values.items():
                attributed[isin] += value / portfolio * loans[client_id]

        limit = config.single_security_limit_pct * total_loan
        alerts = 0
        for isin in sorted(attributed):
            if attributed[isin] <= limit:
                continue
            logger.warning(
                "Concentration breach on %s: attributed loan %s exceeds limit %s.",
                isin,
                round_money(attributed[isin]),
                round_money(limit),
            )
            for client_id in sorted(holders[isin]):
                if self._store.insert_alert_once(
                    MarginAlertRecord(
                        client_id=client_id,
                        alert_date=snapshot_date,
                        alert_type=MarginAlertType.CONCENTRATION_BREACH.value,
                        details={
                            "isin": isin,
                            "attributed_loan": round_money(attributed[isin]),
                            "concentration_limit": round_money(limit),
                            "total_outstanding_margin": round_money(total_loan),
                            "limit_pct": config.single_security_limit_pct,
                        },
                    )
                ):
                    alerts += 1
        return alerts
