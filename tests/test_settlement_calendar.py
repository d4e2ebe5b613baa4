"""Unit tests for settlement date resolution."""

from __future__ import annotations

from datetime import date

import pytest

from backend.db.enums import TradeSide
from settlement.settlement_calendar import add_business_days, compute_settlement_date, is_business_day

WEDNESDAY = date(2026, 1, 7)
THURSDAY = date(2026, 1, 8)


def test_weekend_is_friday_and_saturday() -> None:
    assert is_business_day(date(2026, 1, 9)) is False
    assert is_business_day(date(2026, 1, 10)) is False
    assert is_business_day(date(2026, 1, 11)) is True


def test_spot_sell_settles_same_day() -> None:
    assert compute_settlement_date(WEDNESDAY, "A", TradeSide.SELL, True) == WEDNESDAY


def test_spot_buy_settles_next_business_day() -> None:
    assert compute_settlement_date(THURSDAY, "A", TradeSide.BUY, True) == date(2026, 1, 11)


def test_z_category_buy_on_thursday_skips_weekend() -> None:
    assert compute_settlement_date(THURSDAY, "Z", TradeSide.BUY, False) == date(2026, 1, 13)


def test_default_category_settles_t_plus_two() -> None:
    assert compute_settlement_date(WEDNESDAY, "A", TradeSide.BUY, False) == date(2026, 1, 11)
    assert compute_settlement_date(WEDNESDAY, None, TradeSide.SELL, False) == date(2026, 1, 11)


def test_add_business_days_zero_and_negative() -> None:
    friday = date(2026, 1, 9)
    assert add_business_days(friday, 0) == friday
    with pytest.raises(ValueError, match="days must be >= 0"):
        add_business_days(friday, -1)
