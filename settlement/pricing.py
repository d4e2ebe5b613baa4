"""Security price resolution for portfolio valuation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional, Protocol

from settlement.store import SettlementStore


class PriceResolver(Protocol):
    def price_on_or_before(self, isin: str, as_of: date) -> Optional[Decimal]:
        """Close on ``as_of``, else the most recent prior close, else None."""


@dataclass
class DailyPriceResolver:
    """Resolves closes from daily_prices, memoized for one valuation run."""

    store: SettlementStore
    _cache: dict[tuple[str, date], Optional[Decimal]] = field(default_factory=dict)

    def price_on_or_before(self, isin: str, as_of: date) -> Optional[Decimal]:
        key = (isin, as_of)
        if key not in self._cache:
            self._cache[key] = self.store.close_price_on_or_before(isin, as_of)
        return self._cache[key]


def position_value(
    resolver: PriceResolver,
    isin: str,
    quantity: int,
    average_cost: Decimal,
    as_of: date,
) -> Decimal:
    """Mark a position to market, falling back to average cost when no price exists."""
    price = resolver.price_on_or_before(isin, as_of)
    if price is None:
        price = average_cost
    return price * quantity
