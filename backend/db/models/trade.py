"""Raw trade staging and posted execution model definitions."""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, time
from decimal import Decimal

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
    Time,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from backend.db.base import Base
from backend.db.enums import exchange_enum, trade_side_enum

logger = logging.getLogger(__name__)


class RawTrade(Base):
    """Exchange fill row staged by ingestion and consumed once by the processor."""

    __tablename__ = "raw_trades"
    __table_args__ = (
        PrimaryKeyConstraint("id", name="pk_raw_trades"),
        CheckConstraint("side IS NULL OR side IN ('B', 'S')", name="ck_raw_trades_side"),
        Index(
            "idx_raw_trades_pending",
            "id",
            postgresql_where=text("processed = FALSE"),
        ),
        Index("idx_raw_trades_exec_id", "exec_id"),
        Index("idx_raw_trades_import_audit", "import_audit_id"),
    )

    id: Mapped[int] = mapped_column(
        BigInteger,
        Identity(always=True),
        primary_key=True,
    )
    source: Mapped[str] = mapped_column(exchange_enum, nullable=False)
    status: Mapped[str | None] = mapped_column(Text)
    side: Mapped[str | None] = mapped_column(Text)
    bo_id: Mapped[str | None] = mapped_column(Text)
    client_code: Mapped[str | None] = mapped_column(Text)
    isin: Mapped[str | None] = mapped_column(Text)
    security_code: Mapped[str | None] = mapped_column(Text)
    board: Mapped[str | None] = mapped_column(Text)
    category: Mapped[str | None] = mapped_column(Text)
    asset_class: Mapped[str | None] = mapped_column(Text)
    trade_date: Mapped[date | None] = mapped_column(Date)
    trade_time: Mapped[time | None] = mapped_column(Time)
    quantity: Mapped[int | None] = mapped_column(Integer)
    price: Mapped[Decimal | None] = mapped_column(Numeric(20, 4))
    value: Mapped[Decimal | None] = mapped_column(Numeric(20, 2))
    exec_id: Mapped[str | None] = mapped_column(Text)
    order_id: Mapped[str | None] = mapped_column(Text)
    session: Mapped[str | None] = mapped_column(Text)
    fill_type: Mapped[str | None] = mapped_column(Text)
    compulsory_spot: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        server_default=text("FALSE"),
    )
    processed: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        server_default=text("FALSE"),
    )
    error_message: Mapped[str | None] = mapped_column(Text)
    import_audit_id: Mapped[int | None] = mapped_column(BigInteger)
    created_at_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )


class TradeExecution(Base):
    """Immutable accepted fill; exec_id is the at-most-once posting key."""

    __tablename__ = "trade_executions"
    __table_args__ = (
        PrimaryKeyConstraint("exec_id", name="pk_trade_executions"),
        CheckConstraint("quantity > 0", name="ck_trade_executions_quantity_pos"),
        Index("idx_trade_executions_client_date", "client_id", "trade_date"),
    )

    exec_id: Mapped[str] = mapped_column(Text, primary_key=True)
    order_id: Mapped[str | None] = mapped_column(Text)
    client_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey(
            "clients.client_id",
            name="fk_trade_executions_client",
            onupdate="RESTRICT",
            ondelete="RESTRICT",
        ),
        nullable=False,
    )
    isin: Mapped[str] = mapped_column(
        Text,
        ForeignKey(
            "securities.isin",
            name="fk_trade_executions_security",
            onupdate="RESTRICT",
            ondelete="RESTRICT",
        ),
        nullable=False,
    )
    exchange: Mapped[str] = mapped_column(exchange_enum, nullable=False)
    side: Mapped[str] = mapped_column(trade_side_enum, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(20, 4), nullable=False)
    value: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False)
    trade_date: Mapped[date] = mapped_column(Date, nullable=False)
    trade_time: Mapped[time | None] = mapped_column(Time)
    settlement_date: Mapped[date | None] = mapped_column(Date)
    session: Mapped[str | None] = mapped_column(Text)
    fill_type: Mapped[str | None] = mapped_column(Text)
    category: Mapped[str | None] = mapped_column(Text)
    board: Mapped[str | None] = mapped_column(Text)
    commission: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False, server_default=text("0"))
    exchange_fee: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False, server_default=text("0"))
    depository_fee: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False, server_default=text("0"))
    tax: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False, server_default=text("0"))
    net_value: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False)
    created_at_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )
