"""Security master and daily price model definitions."""

from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    PrimaryKeyConstraint,
    Text,
    UniqueConstraint,
    desc,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from backend.db.base import Base
from backend.db.enums import exchange_enum

logger = logging.getLogger(__name__)


class Security(Base):
    """Listed instrument with marginability classification inputs and outcome."""

    __tablename__ = "securities"
    __table_args__ = (
        PrimaryKeyConstraint("isin", name="pk_securities"),
        UniqueConstraint("security_code", name="uq_securities_security_code"),
        CheckConstraint("status IN ('active', 'suspended')", name="ck_securities_status"),
    )

    isin: Mapped[str] = mapped_column(Text, primary_key=True)
    security_code: Mapped[str | None] = mapped_column(Text)
    company_name: Mapped[str | None] = mapped_column(Text)
    asset_class: Mapped[str | None] = mapped_column(Text)
    category: Mapped[str | None] = mapped_column(Text)
    board: Mapped[str | None] = mapped_column(Text)
    sector: Mapped[str | None] = mapped_column(Text)
    free_float_market_cap: Mapped[Decimal | None] = mapped_column(Numeric(20, 4))
    trailing_pe: Mapped[Decimal | None] = mapped_column(Numeric(12, 4))
    annual_dividend_pct: Mapped[Decimal | None] = mapped_column(Numeric(8, 4))
    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        server_default=text("'active'"),
    )
    is_marginable: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        server_default=text("FALSE"),
    )
    marginability_reason: Mapped[str | None] = mapped_column(Text)
    marginability_updated_at_utc: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )


class DailyPrice(Base):
    """End-of-day price bar per security."""

    __tablename__ = "daily_prices"
    __table_args__ = (
        PrimaryKeyConstraint("isin", "price_date", name="pk_daily_prices"),
        Index("idx_daily_prices_date_desc", desc("price_date")),
    )

    isin: Mapped[str] = mapped_column(
        Text,
        ForeignKey(
            "securities.isin",
            name="fk_daily_prices_security",
            onupdate="RESTRICT",
            ondelete="RESTRICT",
        ),
        primary_key=True,
    )
    price_date: Mapped[date] = mapped_column(Date, primary_key=True)
    open_price: Mapped[Decimal | None] = mapped_column(Numeric(20, 4))
    high_price: Mapped[Decimal | None] = mapped_column(Numeric(20, 4))
    low_price: Mapped[Decimal | None] = mapped_column(Numeric(20, 4))
    close_price: Mapped[Decimal | None] = mapped_column(Numeric(20, 4))
    volume: Mapped[int | None] = mapped_column(BigInteger)
    source: Mapped[str | None] = mapped_column(exchange_enum)
