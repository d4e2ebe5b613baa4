"""Brokerage fee breakdown and net settlement value."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from backend.db.enums import TradeSide
from settlement.common import round_money
from settlement.regulatory_config import FeeSchedule


@dataclass(frozen=True)
class FeeBreakdown:
    """Fees charged on one execution, each rounded to 2 decimals."""

    commission: Decimal
    exchange_fee: Decimal
    depository_fee: Decimal
    tax: Decimal
    total_fees: Decimal
    net_value: Decimal


def calculate_fees(trade_value: Decimal, side: TradeSide, schedule: FeeSchedule) -> FeeBreakdown:
    """Compute fee components and the client's net settlement value.

    BUY net value is the trade value plus all fees (the client pays on top);
    SELL net value is the trade value minus all fees. Each component is
    rounded before totalling so the persisted components always sum to
    ``total_fees``.
    """
    commission = round_money(trade_value * schedule.commission_rate)
    exchange_fee = round_money(trade_value * schedule.exchange_fee_rate)
    depository_fee = round_money(max(trade_value * schedule.depository_fee_rate, schedule.depository_fee_min))
    tax = round_money(trade_value * schedule.tax_rate)
    total_fees = commission + exchange_fee + depository_fee + tax

    if side is TradeSide.BUY:
        net_value = trade_value + total_fees
    else:
        net_value = trade_value - total_fees

    return FeeBreakdown(
        commission=commission,
        exchange_fee=exchange_fee,
        depository_fee=depository_fee,
        tax=tax,
        total_fees=round_money(total_fees),
        net_value=round_money(net_value),
    )
