"""Settlement date resolution over the Friday/Saturday weekend calendar."""

from __future__ import annotations

from datetime import date, timedelta

from backend.db.enums import TradeSide

# date.weekday(): Monday=0 ... Friday=4, Saturday=5
WEEKEND_DAYS: frozenset[int] = frozenset({4, 5})

SPOT_SELL_DAYS = 0
SPOT_BUY_DAYS = 1
Z_CATEGORY_DAYS = 3
DEFAULT_DAYS = 2


def is_business_day(day: date) -> bool:
    return day.weekday() not in WEEKEND_DAYS


def add_business_days(start: date, days: int) -> date:
    """Walk forward one calendar day at a time until ``days`` business days are counted."""
    if days < 0:
        raise ValueError("days must be >= 0")
    result = start
    added = 0
    while added < days:
        result += timedelta(days=1)
        if is_business_day(result):
            added += 1
    return result


def settlement_days(category: str | None, side: TradeSide, is_spot: bool) -> int:
    if is_spot:
        return SPOT_SELL_DAYS if side is TradeSide.SELL else SPOT_BUY_DAYS
    if category == "Z":
        return Z_CATEGORY_DAYS
    return DEFAULT_DAYS


def compute_settlement_date(
    trade_date: date,
    category: str | None,
    side: TradeSide,
    is_spot: bool,
) -> date:
    """Resolve T+N settlement: spot sell T+0, spot buy T+1, Z T+3, others T+2."""
    return add_business_days(trade_date, settlement_days(category, side, is_spot))
