"""Margin status, financing tier and margin-call state transitions."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

from backend.db.enums import MarginStatus
from settlement.regulatory_config import MarginConfig
from settlement.settlement_calendar import add_business_days

RATIO_UNAVAILABLE = "N/A"
RATIO_ONE_TO_HALF = "1:0.5"
RATIO_ONE_TO_ONE = "1:1"


@dataclass(frozen=True)
class AppliedRatio:
    label: str
    effective_equity_threshold: Decimal


@dataclass(frozen=True)
class MarginCallState:
    """Margin-call bookkeeping carried on the margin account."""

    status: Optional[MarginStatus] = None
    margin_call_count: int = 0
    margin_call_deadline: Optional[date] = None
    last_margin_call_date: Optional[date] = None


def determine_status(
    equity_ratio: Decimal,
    normal_threshold: Decimal,
    force_sell_threshold: Decimal,
) -> MarginStatus:
    """NORMAL at or above the normal threshold, FORCE_SELL at or below the force-sell threshold."""
    if equity_ratio >= normal_threshold:
        return MarginStatus.NORMAL
    if equity_ratio <= force_sell_threshold:
        return MarginStatus.FORCE_SELL
    return MarginStatus.MARGIN_CALL


def determine_applied_ratio(marginable_portfolio_value: Decimal, config: MarginConfig) -> AppliedRatio:
    """Pick the financing tier; an active market P/E cap forces the conservative tier."""
    if config.market_pe_cap_active:
        return AppliedRatio(RATIO_ONE_TO_HALF, config.portfolio_tier1_ratio)
    if marginable_portfolio_value >= config.portfolio_tier1_max:
        return AppliedRatio(RATIO_ONE_TO_ONE, config.portfolio_tier2_ratio)
    if marginable_portfolio_value >= config.portfolio_tier1_min:
        return AppliedRatio(RATIO_ONE_TO_HALF, config.portfolio_tier1_ratio)
    return AppliedRatio(RATIO_UNAVAILABLE, Decimal("1"))


def deadline_passed(previous: MarginCallState, snapshot_date: date) -> bool:
    return (
        previous.status is MarginStatus.MARGIN_CALL
        and previous.margin_call_deadline is not None
        and previous.margin_call_deadline < snapshot_date
    )


def next_margin_call_state(
    previous: MarginCallState,
    status: MarginStatus,
    snapshot_date: date,
    deadline_days: int,
) -> MarginCallState:
    """Apply the effective status to the stored margin-call bookkeeping.

    Entering MARGIN_CALL or FORCE_SELL bumps the call count and stamps the
    call date; only MARGIN_CALL gets a deadline. Returning to NORMAL clears
    the count and deadline. Staying in the same status changes nothing.
    """
    if status is MarginStatus.NORMAL:
        return MarginCallState(
            status=status,
            margin_call_count=0,
            margin_call_deadline=None,
            last_margin_call_date=previous.last_margin_call_date,
        )
    if previous.status is status:
        return previous
    deadline = add_business_days(snapshot_date, deadline_days) if status is MarginStatus.MARGIN_CALL else None
    return MarginCallState(
        status=status,
        margin_call_count=previous.margin_call_count + 1,
        margin_call_deadline=deadline,
        last_margin_call_date=snapshot_date,
    )
