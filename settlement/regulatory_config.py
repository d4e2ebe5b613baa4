"""Regulatory fee schedule and margin parameters with named defaults."""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any, Mapping, Sequence

from settlement.errors import ConfigurationError

if TYPE_CHECKING:
    from settlement.store import SettlementStore


@dataclass(frozen=True)
class FeeSchedule:
    """Per-trade fee rates applied to the trade value."""

    commission_rate: Decimal = Decimal("0.003")
    exchange_fee_rate: Decimal = Decimal("0.0003")
    depository_fee_rate: Decimal = Decimal("0.000175")
    depository_fee_min: Decimal = Decimal("5")
    tax_rate: Decimal = Decimal("0.0005")


@dataclass(frozen=True)
class MarginConfig:
    """Margin rule parameters; every field maps to a margin_config parameter_name."""

    market_pe_threshold: Decimal = Decimal("20")
    market_pe_cap_active: bool = False
    normal_threshold: Decimal = Decimal("0.75")
    force_sell_threshold: Decimal = Decimal("0.50")
    margin_call_deadline_days: int = 3
    single_client_limit_pct: Decimal = Decimal("0.15")
    single_client_limit_max: Decimal = Decimal("100000000")
    single_security_limit_pct: Decimal = Decimal("0.15")
    core_capital_net_worth: Decimal = Decimal("0")
    min_ffmc_mn: Decimal = Decimal("500")
    max_trailing_pe: Decimal = Decimal("30")
    sectoral_pe_multiplier: Decimal = Decimal("2")
    min_b_category_dividend_pct: Decimal = Decimal("5")
    portfolio_tier1_min: Decimal = Decimal("500000")
    portfolio_tier1_max: Decimal = Decimal("1000000")
    portfolio_tier1_ratio: Decimal = Decimal("0.667")
    portfolio_tier2_ratio: Decimal = Decimal("0.50")


FEE_TYPE_COMMISSION = "BROKERAGE_COMMISSION"
FEE_TYPE_EXCHANGE = "EXCHANGE_FEE"
FEE_TYPE_DEPOSITORY = "CDBL_FEE"
FEE_TYPE_TAX = "AIT"


def _parse_decimal(name: str, raw: Any) -> Decimal:
    if isinstance(raw, bool):
        raise ConfigurationError(f"Invalid numeric value for {name}: {raw!r}")
    try:
        value = raw if isinstance(raw, Decimal) else Decimal(str(raw).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ConfigurationError(f"Invalid numeric value for {name}: {raw!r}") from exc
    if not value.is_finite():
        raise ConfigurationError(f"Invalid numeric value for {name}: {raw!r}")
    return value


def fee_schedule_from_rows(rows: Sequence[Mapping[str, Any]]) -> FeeSchedule:
    """Build a fee schedule from active rows, falling back to defaults per fee type."""
    by_type: dict[str, Mapping[str, Any]] = {}
    for row in rows:
        by_type[str(row["fee_type"])] = row

    defaults = FeeSchedule()

    def rate(fee_type: str, default: Decimal) -> Decimal:
        row = by_type.get(fee_type)
        if row is None or row.get("rate") is None:
            return default
        return _parse_decimal(fee_type, row["rate"])

    depository = by_type.get(FEE_TYPE_DEPOSITORY)
    depository_min = defaults.depository_fee_min
    if depository is not None and depository.get("min_amount") is not None:
        depository_min = _parse_decimal(f"{FEE_TYPE_DEPOSITORY}.min_amount", depository["min_amount"])

    return FeeSchedule(
        commission_rate=rate(FEE_TYPE_COMMISSION, defaults.commission_rate),
        exchange_fee_rate=rate(FEE_TYPE_EXCHANGE, defaults.exchange_fee_rate),
        depository_fee_rate=rate(FEE_TYPE_DEPOSITORY, defaults.depository_fee_rate),
        depository_fee_min=depository_min,
        tax_rate=rate(FEE_TYPE_TAX, defaults.tax_rate),
    )


def margin_config_from_rows(rows: Sequence[Mapping[str, Any]]) -> MarginConfig:
    """Build margin config from parameter rows; unknown parameter names are ignored.

    Rows are expected in ascending effective_from order so the most recent
    effective row for a parameter wins.
    """
    raw_by_name: dict[str, Any] = {}
    for row in rows:
        raw_by_name[str(row["parameter_name"])] = row["parameter_value"]

    overrides: dict[str, Any] = {}
    for field in fields(MarginConfig):
        if field.name not in raw_by_name:
            continue
        value = _parse_decimal(field.name, raw_by_name[field.name])
        if field.name == "market_pe_cap_active":
            overrides[field.name] = value == 1
        elif field.name == "margin_call_deadline_days":
            if value != value.to_integral_value() or value < 0:
                raise ConfigurationError(f"margin_call_deadline_days must be a non-negative integer: {value}")
            overrides[field.name] = int(value)
        else:
            overrides[field.name] = value
    return MarginConfig(**overrides)


def load_fee_schedule(store: "SettlementStore", as_of: date) -> FeeSchedule:
    """Resolve the fee schedule effective on ``as_of``."""
    return fee_schedule_from_rows(store.fetch_fee_schedule_rows(as_of))


def load_margin_config(store: "SettlementStore", as_of: date) -> MarginConfig:
    """Resolve margin parameters effective on ``as_of``."""
    return margin_config_from_rows(store.fetch_margin_config_rows(as_of))
