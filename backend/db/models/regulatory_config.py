"""Effective-dated fee schedule and margin parameter model definitions."""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    Identity,
    Integer,
    Numeric,
    PrimaryKeyConstraint,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from backend.db.base import Base

logger = logging.getLogger(__name__)


class FeeScheduleEntry(Base):
    """One fee rate row; the loader picks the active row per fee type."""

    __tablename__ = "fee_schedule"
    __table_args__ = (
        PrimaryKeyConstraint("id", name="pk_fee_schedule"),
        CheckConstraint(
            "fee_type IN ('BROKERAGE_COMMISSION', 'EXCHANGE_FEE', 'CDBL_FEE', 'AIT')",
            name="ck_fee_schedule_fee_type",
        ),
        CheckConstraint("rate >= 0 AND rate <= 1", name="ck_fee_schedule_rate_range"),
        CheckConstraint(
            "effective_to IS NULL OR effective_to > effective_from",
            name="ck_fee_schedule_effective_window",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, Identity(always=True), primary_key=True)
    fee_type: Mapped[str] = mapped_column(Text, nullable=False)
    rate: Mapped[Decimal] = mapped_column(Numeric(12, 8), nullable=False)
    min_amount: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False, server_default=text("0"))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("TRUE"))
    effective_from: Mapped[date] = mapped_column(Date, nullable=False, server_default=text("CURRENT_DATE"))
    effective_to: Mapped[date | None] = mapped_column(Date)


class MarginConfigParameter(Base):
    """Named regulatory margin parameter with an effective-date window."""

    __tablename__ = "margin_config"
    __table_args__ = (
        PrimaryKeyConstraint("id", name="pk_margin_config"),
        UniqueConstraint(
            "parameter_name",
            "effective_from",
            name="uq_margin_config_name_effective_from",
        ),
        CheckConstraint(
            "effective_to IS NULL OR effective_to > effective_from",
            name="ck_margin_config_effective_window",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, Identity(always=True), primary_key=True)
    parameter_name: Mapped[str] = mapped_column(Text, nullable=False)
    parameter_value: Mapped[Decimal] = mapped_column(Numeric, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("TRUE"))
    effective_from: Mapped[date] = mapped_column(Date, nullable=False, server_default=text("CURRENT_DATE"))
    effective_to: Mapped[date | None] = mapped_column(Date)
