"""Unit tests for the ordered marginability rule chain."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

import pytest

from settlement.margin.marginability import (
    ReasonCode,
    classify_security,
    run_classification,
    sector_median_pe,
)
from settlement.records import SecurityRecord
from settlement.regulatory_config import MarginConfig
from tests.utils.memory_store import FixedClock, MemoryStore

CONFIG = MarginConfig()


def _security(**fields: Any) -> SecurityRecord:
    values: dict[str, Any] = {
        "isin": "BD0000000001",
        "security_code": "GP",
        "category": "A",
        "board": "PUBLIC",
        "sector": "TELECOM",
        "trailing_pe": Decimal("12"),
        "free_float_market_cap": Decimal("600"),
        "annual_dividend_pct": Decimal("10"),
        "status": "active",
        "asset_class": "EQ",
    }
    values.update(fields)
    return SecurityRecord(**values)


def test_eligible_security_meets_all_criteria() -> None:
    decision = classify_security(_security(), CONFIG, {})
    assert decision.is_marginable is True
    assert decision.reason_code is ReasonCode.ELIGIBLE


@pytest.mark.parametrize(
    ("fields", "code"),
    [
        ({"category": None}, ReasonCode.EXCLUDED_CATEGORY),
        ({"category": "Z"}, ReasonCode.EXCLUDED_CATEGORY),
        ({"category": "S", "status": "suspended"}, ReasonCode.EXCLUDED_CATEGORY),
        ({"status": "suspended", "board": "SME"}, ReasonCode.SUSPENDED),
        ({"board": "SME", "asset_class": "MF"}, ReasonCode.NOT_MAIN_BOARD),
        ({"board": None}, ReasonCode.NOT_MAIN_BOARD),
        ({"asset_class": "MF", "category": "C"}, ReasonCode.MUTUAL_FUND),
        ({"category": "C", "trailing_pe": None}, ReasonCode.CATEGORY_NOT_ALLOWED),
        ({"trailing_pe": Decimal("-3")}, ReasonCode.NEGATIVE_OR_MISSING_EPS),
        ({"trailing_pe": None, "free_float_market_cap": None}, ReasonCode.NEGATIVE_OR_MISSING_EPS),
        ({"trailing_pe": Decimal("30.5")}, ReasonCode.PE_ABOVE_MAX),
        ({"free_float_market_cap": Decimal("499.99")}, ReasonCode.LOW_FREE_FLOAT),
        ({"free_float_market_cap": None}, ReasonCode.LOW_FREE_FLOAT),
    ],
)
def test_first_failing_rule_wins(fields: dict[str, Any], code: ReasonCode) -> None:
    decision = classify_security(_security(**fields), CONFIG, {})
    assert decision.is_marginable is False
    assert decision.reason_code is code


def test_b_category_dividend_boundary_is_inclusive() -> None:
    rejected = classify_security(_security(category="B", annual_dividend_pct=Decimal("4.9")), CONFIG, {})
    assert rejected.reason_code is ReasonCode.INSUFFICIENT_DIVIDEND
    assert "4.9" in rejected.reason

    accepted = classify_security(_security(category="B", annual_dividend_pct=Decimal("5.0")), CONFIG, {})
    assert accepted.is_marginable is True

    missing = classify_security(_security(category="B", annual_dividend_pct=None), CONFIG, {})
    assert missing.reason_code is ReasonCode.INSUFFICIENT_DIVIDEND
    assert "not set" in missing.reason


def test_sector_multiple_boundary() -> None:
    medians = {"BANK": Decimal("10")}
    at_limit = classify_security(_security(sector="BANK", trailing_pe=Decimal("20.0")), CONFIG, medians)
    over_limit = classify_security(_security(sector="BANK", trailing_pe=Decimal("20.01")), CONFIG, medians)

    assert at_limit.is_marginable is True
    assert over_limit.reason_code is ReasonCode.PE_ABOVE_SECTOR_MULTIPLE
    assert "limit: 20.00" in over_limit.reason


def test_sector_check_skipped_without_sector_median() -> None:
    decision = classify_security(_security(sector="NEW", trailing_pe=Decimal("25")), CONFIG, {"BANK": Decimal("5")})
    assert decision.is_marginable is True


def test_sector_median_uses_positive_pe_only() -> None:
    securities = [
        _security(isin="1", sector="BANK", trailing_pe=Decimal("8")),
        _security(isin="2", sector="BANK", trailing_pe=Decimal("12")),
        _security(isin="3", sector="BANK", trailing_pe=Decimal("-4")),
        _security(isin="4", sector="BANK", trailing_pe=None),
        _security(isin="5", sector="FOOD", trailing_pe=Decimal("9")),
        _security(isin="6", sector=None, trailing_pe=Decimal("50")),
    ]
    assert sector_median_pe(securities) == {"BANK": Decimal("10"), "FOOD": Decimal("9")}


def _seed(store: MemoryStore) -> None:
    store.add_security("ISIN-A", category="A", sector="BANK", trailing_pe=Decimal("10"), free_float_market_cap=Decimal("800"))
    store.add_security("ISIN-B", category="B", sector="BANK", trailing_pe=Decimal("12"), annual_dividend_pct=Decimal("2"))
    store.add_security("ISIN-Z", category="Z", sector="BANK", trailing_pe=Decimal("14"))
    store.add_security(
        "ISIN-LOW",
        category="A",
        sector="FOOD",
        trailing_pe=Decimal("10"),
        free_float_market_cap=Decimal("100"),
        is_marginable=True,
    )


def test_dry_run_reports_without_writing() -> None:
    store = MemoryStore()
    _seed(store)

    summary = run_classification(store, CONFIG, dry_run=True)

    assert summary.total_securities == 4
    assert summary.marginable_count == 1
    assert summary.non_marginable_count == 3
    assert summary.reason_breakdown == {
        "EXCLUDED_CATEGORY": 1,
        "INSUFFICIENT_DIVIDEND": 1,
        "LOW_FREE_FLOAT": 1,
    }
    assert summary.sector_medians == {"BANK": Decimal("12"), "FOOD": Decimal("10")}
    assert store.securities["ISIN-LOW"]["is_marginable"] is True
    assert store.securities["ISIN-A"]["marginability_reason"] is None
    assert summary.as_dict()["sector_medians"] == {"BANK": "12", "FOOD": "10"}


def test_classification_persists_flags_and_reasons() -> None:
    store = MemoryStore()
    _seed(store)
    clock = FixedClock()

    run_classification(store, CONFIG, clock=clock)

    assert store.securities["ISIN-A"]["is_marginable"] is True
    assert store.securities["ISIN-A"]["marginability_reason"] == "Meets all marginability criteria"
    assert store.securities["ISIN-LOW"]["is_marginable"] is False
    assert store.securities["ISIN-LOW"]["marginability_updated_at_utc"] == clock.fixed


def test_classification_limited_to_requested_isins() -> None:
    store = MemoryStore()
    _seed(store)

    summary = run_classification(store, CONFIG, isins=["ISIN-A"])

    assert summary.total_securities == 1
    assert store.securities["ISIN-Z"]["marginability_reason"] is None
