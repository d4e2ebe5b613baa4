"""Unit tests for average-cost holding accounting."""

from __future__ import annotations

from decimal import Decimal

from settlement.holdings import HoldingState, apply_buy, apply_sell


def test_first_buy_average_cost_includes_fees() -> None:
    holding = apply_buy(HoldingState(), 100, Decimal("1008.80"))

    assert holding.quantity == 100
    assert holding.average_cost == Decimal("10.09")
    assert holding.total_invested == Decimal("1008.80")
    assert holding.realized_pl == Decimal("0")


def test_subsequent_buy_blends_weighted_average() -> None:
    start = HoldingState(quantity=100, average_cost=Decimal("10.00"), total_invested=Decimal("1000.00"))
    holding = apply_buy(start, 100, Decimal("1200.00"))

    assert holding.quantity == 200
    assert holding.average_cost == Decimal("11.00")
    assert holding.total_invested == Decimal("2200.00")


def test_sell_realizes_against_average_cost() -> None:
    start = HoldingState(quantity=100, average_cost=Decimal("10.00"), total_invested=Decimal("1000.00"))
    sold = apply_sell(start, 40, Decimal("12"), Decimal("470.00"))

    assert sold.holding.quantity == 60
    assert sold.holding.average_cost == Decimal("10.00")
    assert sold.holding.total_invested == Decimal("1000.00")
    assert sold.holding.realized_pl == Decimal("70.00")
    assert sold.clamped_quantity == 0


def test_over_sell_clamps_quantity_to_zero() -> None:
    start = HoldingState(quantity=50, average_cost=Decimal("10.00"))
    sold = apply_sell(start, 80, Decimal("10"), Decimal("790.00"))

    assert sold.holding.quantity == 0
    assert sold.clamped_quantity == 30


def test_sell_without_prior_holding_uses_trade_price_as_cost_basis() -> None:
    sold = apply_sell(HoldingState(), 10, Decimal("5"), Decimal("48.00"))

    assert sold.holding.quantity == 0
    assert sold.holding.realized_pl == Decimal("-2.00")


def test_from_row_defaults_missing_holding() -> None:
    assert HoldingState.from_row(None) == HoldingState()
    state = HoldingState.from_row(
        {"quantity": 5, "average_cost": Decimal("1.5"), "total_invested": None, "realized_pl": Decimal("2")}
    )
    assert state.quantity == 5
    assert state.total_invested == Decimal("0")
