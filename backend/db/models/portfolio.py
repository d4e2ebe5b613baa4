"""Holding position and daily snapshot model definitions."""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    PrimaryKeyConstraint,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from backend.db.base import Base

logger = logging.getLogger(__name__)


class Holding(Base):
    """Average-cost position per (client, security)."""

    __tablename__ = "holdings"
    __table_args__ = (
        PrimaryKeyConstraint("client_id", "isin", name="pk_holdings"),
        CheckConstraint("quantity >= 0", name="ck_holdings_quantity_nonneg"),
        Index("idx_holdings_client", "client_id"),
    )

    client_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey(
            "clients.client_id",
            name="fk_holdings_client",
            onupdate="RESTRICT",
            ondelete="RESTRICT",
        ),
        primary_key=True,
    )
    isin: Mapped[str] = mapped_column(
        Text,
        ForeignKey(
            "securities.isin",
            name="fk_holdings_security",
            onupdate="RESTRICT",
            ondelete="RESTRICT",
        ),
        primary_key=True,
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    average_cost: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False, server_default=text("0"))
    total_invested: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False, server_default=text("0"))
    realized_pl: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False, server_default=text("0"))
    as_of_date: Mapped[date | None] = mapped_column(Date)
    updated_at_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )


class DailySnapshot(Base):
    """End-of-day client valuation snapshot keyed by (client, date)."""

    __tablename__ = "daily_snapshots"
    __table_args__ = (PrimaryKeyConstraint("client_id", "snapshot_date", name="pk_daily_snapshots"),)

    client_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey(
            "clients.client_id",
            name="fk_daily_snapshots_client",
            onupdate="RESTRICT",
            ondelete="RESTRICT",
        ),
        primary_key=True,
    )
    snapshot_date: Mapped[date] = mapped_column(Date, primary_key=True)
    total_portfolio_value: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False)
    cash_balance: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False)
    loan_balance: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False)
    net_equity: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False)
    margin_utilization_pct: Mapped[Decimal] = mapped_column(Numeric(10, 4), nullable=False)
    unrealized_pl: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False)
    created_at_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )
