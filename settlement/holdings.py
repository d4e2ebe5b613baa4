"""Average-cost position accounting."""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any, Mapping, Optional

from settlement.common import ZERO, as_decimal, round_money


@dataclass(frozen=True)
class HoldingState:
    quantity: int = 0
    average_cost: Decimal = ZERO
    total_invested: Decimal = ZERO
    realized_pl: Decimal = ZERO

    @classmethod
    def from_row(cls, row: Optional[Mapping[str, Any]]) -> "HoldingState":
        if row is None:
            return cls()
        return cls(
            quantity=int(row.get("quantity") or 0),
            average_cost=as_decimal(row.get("average_cost")),
            total_invested=as_decimal(row.get("total_invested")),
            realized_pl=as_decimal(row.get("realized_pl")),
        )


@dataclass(frozen=True)
class SellResult:
    holding: HoldingState
    clamped_quantity: int


def apply_buy(state: HoldingState, quantity: int, net_value: Decimal) -> HoldingState:
    """Blend the purchase (value plus fees) into the weighted average cost."""
    new_quantity = state.quantity + quantity
    if new_quantity > 0:
        average_cost = round_money((state.average_cost * state.quantity + net_value) / new_quantity)
    else:
        average_cost = ZERO
    return replace(
        state,
        quantity=new_quantity,
        average_cost=average_cost,
        total_invested=round_money(state.total_invested + net_value),
    )


def apply_sell(state: HoldingState, quantity: int, price: Decimal, net_value: Decimal) -> SellResult:
    """Realize P&L against the average cost; quantity never goes below zero.

    ``clamped_quantity`` is the part of the sell that exceeded the held
    quantity.
    """
    cost_basis = state.average_cost if state.average_cost > 0 else price
    realized = round_money(state.realized_pl + net_value - cost_basis * quantity)
    remaining = state.quantity - quantity
    return SellResult(
        holding=replace(state, quantity=max(0, remaining), realized_pl=realized),
        clamped_quantity=max(0, -remaining),
    )
