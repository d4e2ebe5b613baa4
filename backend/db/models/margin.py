"""Margin account state and alert model definitions."""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Identity,
    Index,
    Integer,
    Numeric,
    PrimaryKeyConstraint,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from backend.db.base import Base
from backend.db.enums import margin_alert_type_enum, margin_status_enum

logger = logging.getLogger(__name__)


class MarginAccount(Base):
    """Latest margin valuation and maintenance status per margin client."""

    __tablename__ = "margin_accounts"
    __table_args__ = (
        PrimaryKeyConstraint("client_id", name="pk_margin_accounts"),
        CheckConstraint("loan_balance >= 0", name="ck_margin_accounts_loan_nonneg"),
        CheckConstraint("margin_call_count >= 0", name="ck_margin_accounts_call_count_nonneg"),
    )

    client_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey(
            "clients.client_id",
            name="fk_margin_accounts_client",
            onupdate="RESTRICT",
            ondelete="RESTRICT",
        ),
        primary_key=True,
    )
    loan_balance: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False, server_default=text("0"))
    margin_ratio: Mapped[Decimal | None] = mapped_column(Numeric(10, 4))
    total_portfolio_value: Mapped[Decimal] = mapped_column(
        Numeric(20, 2),
        nullable=False,
        server_default=text("0"),
    )
    marginable_portfolio_value: Mapped[Decimal] = mapped_column(
        Numeric(20, 2),
        nullable=False,
        server_default=text("0"),
    )
    client_equity: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False, server_default=text("0"))
    maintenance_status: Mapped[str] = mapped_column(
        margin_status_enum,
        nullable=False,
        server_default=text("'NORMAL'"),
    )
    applied_ratio: Mapped[str] = mapped_column(Text, nullable=False, server_default=text("'N/A'"))
    margin_call_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    margin_call_deadline: Mapped[date | None] = mapped_column(Date)
    last_margin_call_date: Mapped[date | None] = mapped_column(Date)
    updated_at_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )


class MarginAlert(Base):
    """Append-only margin status transition or limit breach event."""

    __tablename__ = "margin_alerts"
    __table_args__ = (
        PrimaryKeyConstraint("id", name="pk_margin_alerts"),
        Index("idx_margin_alerts_client_date", "client_id", "alert_date"),
        Index(
            "uqix_margin_alerts_breach_per_day",
            "client_id",
            "alert_date",
            "alert_type",
            unique=True,
            postgresql_where=text(
                "alert_type IN ('DEADLINE_BREACH', 'EXPOSURE_BREACH', 'CONCENTRATION_BREACH')"
            ),
        ),
    )

    id: Mapped[int] = mapped_column(
        BigInteger,
        Identity(always=True),
        primary_key=True,
    )
    client_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey(
            "clients.client_id",
            name="fk_margin_alerts_client",
            onupdate="RESTRICT",
            ondelete="RESTRICT",
        ),
        nullable=False,
    )
    alert_date: Mapped[date] = mapped_column(Date, nullable=False)
    alert_type: Mapped[str] = mapped_column(margin_alert_type_enum, nullable=False)
    deadline_date: Mapped[date | None] = mapped_column(Date)
    details: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        server_default=text("'{}'::jsonb"),
    )
    resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("FALSE"))
    created_at_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )
