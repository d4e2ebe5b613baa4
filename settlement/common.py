"""Shared storage protocol, clock and money helpers for the settlement core."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Mapping, Optional, Protocol, Sequence

MONEY = Decimal("0.01")
RATIO = Decimal("0.0001")
ZERO = Decimal("0")


class SettlementDatabase(Protocol):
    """Minimal DB protocol used by the settlement store."""

    def fetch_one(self, sql: str, params: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
        """Fetch one row."""

    def fetch_all(self, sql: str, params: Mapping[str, Any]) -> Sequence[Mapping[str, Any]]:
        """Fetch rows."""

    def execute(self, sql: str, params: Mapping[str, Any]) -> None:
        """Execute mutation statement."""


@dataclass(frozen=True)
class SettlementClock:
    """Injectable UTC clock for deterministic testing."""

    def now_utc(self) -> datetime:
        """Return current UTC timestamp."""
        return datetime.now(tz=timezone.utc)

    def today(self) -> date:
        return self.now_utc().date()


@dataclass(frozen=True)
class ItemError:
    """One per-row or per-client failure reported in a batch summary."""

    key: str
    error: str


def as_decimal(value: Any, default: Decimal = ZERO) -> Decimal:
    """Coerce DB/driver numerics to Decimal without float round-trips."""
    if value is None:
        return default
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def round_money(value: Decimal) -> Decimal:
    """Round a monetary amount to 2 decimal places, half away from zero."""
    return value.quantize(MONEY, rounding=ROUND_HALF_UP)


def round_ratio(value: Decimal) -> Decimal:
    """Round a ratio to 4 decimal places."""
    return value.quantize(RATIO, rounding=ROUND_HALF_UP)


def decimal_to_str(value: Decimal) -> str:
    """Canonical decimal serialization for JSON payloads."""
    return format(value.normalize(), "f") if value != 0 else "0"


def cap_errors(errors: Sequence[ItemError], limit: int) -> tuple[ItemError, ...]:
    return tuple(errors[: max(limit, 0)])
