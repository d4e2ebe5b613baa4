"""Ordered marginability rule chain over the securities master.

Each security is checked against a fixed sequence of eligibility rules
and the first failing rule decides the outcome; failures are never
aggregated. Sector median P/E values are computed once per run over the
whole input set and shared across every security in that run.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass
import enum
import logging
from decimal import Decimal
from typing import Any, Mapping, Optional, Sequence

from settlement.common import SettlementClock, decimal_to_str, round_money
from settlement.records import SecurityRecord
from settlement.regulatory_config import MarginConfig
from settlement.store import SettlementStore

logger = logging.getLogger(__name__)

NON_MARGINABLE_CATEGORIES = frozenset({"N", "Z", "G", "S"})
MARGINABLE_CATEGORIES = frozenset({"A", "B"})
LOWER_TIER_CATEGORY = "B"
MAIN_BOARD = "PUBLIC"
FUND_ASSET_CLASSES = frozenset({"MF"})
SUSPENDED_STATUS = "suspended"


class ReasonCode(str, enum.Enum):
    EXCLUDED_CATEGORY = "EXCLUDED_CATEGORY"
    SUSPENDED = "SUSPENDED"
    NOT_MAIN_BOARD = "NOT_MAIN_BOARD"
    MUTUAL_FUND = "MUTUAL_FUND"
    CATEGORY_NOT_ALLOWED = "CATEGORY_NOT_ALLOWED"
    INSUFFICIENT_DIVIDEND = "INSUFFICIENT_DIVIDEND"
    NEGATIVE_OR_MISSING_EPS = "NEGATIVE_OR_MISSING_EPS"
    PE_ABOVE_MAX = "PE_ABOVE_MAX"
    PE_ABOVE_SECTOR_MULTIPLE = "PE_ABOVE_SECTOR_MULTIPLE"
    LOW_FREE_FLOAT = "LOW_FREE_FLOAT"
    ELIGIBLE = "ELIGIBLE"


@dataclass(frozen=True)
class MarginabilityDecision:
    isin: str
    is_marginable: bool
    reason_code: ReasonCode
    reason: str


@dataclass(frozen=True)
class ClassificationSummary:
    total_securities: int
    marginable_count: int
    non_marginable_count: int
    reason_breakdown: Mapping[str, int]
    sector_medians: Mapping[str, Decimal]
    dry_run: bool
    decisions: tuple[MarginabilityDecision, ...] = ()

    def as_dict(self) -> dict[str, Any]:
        return {
            "total_securities": self.total_securities,
            "marginable_count": self.marginable_count,
            "non_marginable_count": self.non_marginable_count,
            "reason_breakdown": dict(self.reason_breakdown),
            "sector_medians": {sector: decimal_to_str(value) for sector, value in self.sector_medians.items()},
            "dry_run": self.dry_run,
        }


def _fmt(value: Optional[Decimal], missing: str = "NULL") -> str:
    return missing if value is None else decimal_to_str(value)


def _median(values: Sequence[Decimal]) -> Decimal:
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2:
        return ordered[mid]
    return (ordered[mid - 1] + ordered[mid]) / 2


def sector_median_pe(securities: Sequence[SecurityRecord]) -> dict[str, Decimal]:
    """Median trailing P/E per sector over positive P/E values only."""
    by_sector: dict[str, list[Decimal]] = defaultdict(list)
    for security in securities:
        if security.sector and security.trailing_pe is not None and security.trailing_pe > 0:
            by_sector[security.sector].append(security.trailing_pe)
    return {sector: _median(values) for sector, values in sorted(by_sector.items())}


def _reject(security: SecurityRecord, code: ReasonCode, reason: str) -> MarginabilityDecision:
    return MarginabilityDecision(isin=security.isin, is_marginable=False, reason_code=code, reason=reason)


def classify_security(
    security: SecurityRecord,
    config: MarginConfig,
    sector_medians: Mapping[str, Decimal],
) -> MarginabilityDecision:
    category = security.category
    if not category or category in NON_MARGINABLE_CATEGORIES:
        return _reject(
            security,
            ReasonCode.EXCLUDED_CATEGORY,
            f"Category '{category or 'NULL'}' is not marginable",
        )
    if security.status == SUSPENDED_STATUS:
        return _reject(security, ReasonCode.SUSPENDED, "Security is suspended")
    if security.board != MAIN_BOARD:
        return _reject(
            security,
            ReasonCode.NOT_MAIN_BOARD,
            f"Board '{security.board or 'NULL'}' is not the main board ({MAIN_BOARD})",
        )
    if security.asset_class in FUND_ASSET_CLASSES:
        return _reject(security, ReasonCode.MUTUAL_FUND, "Mutual fund securities are not marginable")
    if category not in MARGINABLE_CATEGORIES:
        return _reject(
            security,
            ReasonCode.CATEGORY_NOT_ALLOWED,
            f"Category '{category}' is not marginable; only A and B are",
        )

    if category == LOWER_TIER_CATEGORY:
        dividend = security.annual_dividend_pct
        if dividend is None or dividend < config.min_b_category_dividend_pct:
            return _reject(
                security,
                ReasonCode.INSUFFICIENT_DIVIDEND,
                f"B-category requires >= {decimal_to_str(config.min_b_category_dividend_pct)}% "
                f"annual dividend (current: {_fmt(dividend, 'not set')})",
            )

    pe = security.trailing_pe
    if pe is None or pe <= 0:
        return _reject(security, ReasonCode.NEGATIVE_OR_MISSING_EPS, f"Negative or missing EPS (P/E: {_fmt(pe)})")
    if pe > config.max_trailing_pe:
        return _reject(
            security,
            ReasonCode.PE_ABOVE_MAX,
            f"Trailing P/E ({_fmt(pe)}) exceeds max ({_fmt(config.max_trailing_pe)})",
        )

    sector_median = sector_medians.get(security.sector) if security.sector else None
    if sector_median:
        pe_limit = config.sectoral_pe_multiplier * sector_median
        if pe > pe_limit:
            return _reject(
                security,
                ReasonCode.PE_ABOVE_SECTOR_MULTIPLE,
                f"P/E ({_fmt(pe)}) exceeds {_fmt(config.sectoral_pe_multiplier)}x sectoral median "
                f"({round_money(sector_median)}, limit: {round_money(pe_limit)})",
            )

    ffmc = security.free_float_market_cap
    if ffmc is None or ffmc < config.min_ffmc_mn:
        return _reject(
            security,
            ReasonCode.LOW_FREE_FLOAT,
            f"Free float market cap ({_fmt(ffmc)} mn) below {_fmt(config.min_ffmc_mn)} mn",
        )

    return MarginabilityDecision(
        isin=security.isin,
        is_marginable=True,
        reason_code=ReasonCode.ELIGIBLE,
        reason="Meets all marginability criteria",
    )


def classify_securities(
    securities: Sequence[SecurityRecord],
    config: MarginConfig,
) -> tuple[list[MarginabilityDecision], dict[str, Decimal]]:
    medians = sector_median_pe(securities)
    return [classify_security(security, config, medians) for security in securities], medians


def run_classification(
    store: SettlementStore,
    config: MarginConfig,
    *,
    isins: Optional[Sequence[str]] = None,
    dry_run: bool = False,
    clock: Optional[SettlementClock] = None,
) -> ClassificationSummary:
    """Classify the securities master (or the given ISINs) and persist unless ``dry_run``."""
    securities = store.fetch_securities(list(isins) if isins else None)
    decisions, medians = classify_securities(securities, config)

    if not dry_run and decisions:
        updated_at = (clock or SettlementClock()).now_utc()
        for decision in decisions:
            store.update_marginability(decision.isin, decision.is_marginable, decision.reason, updated_at)

    breakdown = Counter(decision.reason_code.value for decision in decisions if not decision.is_marginable)
    marginable = sum(1 for decision in decisions if decision.is_marginable)
    summary = ClassificationSummary(
        total_securities=len(decisions),
        marginable_count=marginable,
        non_marginable_count=len(decisions) - marginable,
        reason_breakdown=dict(sorted(breakdown.items())),
        sector_medians=medians,
        dry_run=dry_run,
        decisions=tuple(decisions),
    )
    logger.info(
        "Marginability classification complete: total=%d marginable=%d dry_run=%s",
        summary.total_securities,
        summary.marginable_count,
        dry_run,
    )
    return summary
