"""Append-only client cash ledger model definitions."""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Date,
    DateTime,
    ForeignKey,
    Identity,
    Index,
    Numeric,
    PrimaryKeyConstraint,
    Text,
    desc,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from backend.db.base import Base
from backend.db.enums import ledger_entry_type_enum

logger = logging.getLogger(__name__)


class CashLedger(Base):
    """Cash movement carrying the client's running balance in insertion order."""

    __tablename__ = "cash_ledger"
    __table_args__ = (
        PrimaryKeyConstraint("id", name="pk_cash_ledger"),
        Index("idx_cash_ledger_client_id_desc", "client_id", desc("id")),
        Index("idx_cash_ledger_reference", "reference"),
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
            name="fk_cash_ledger_client",
            onupdate="RESTRICT",
            ondelete="RESTRICT",
        ),
        nullable=False,
    )
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    value_date: Mapped[date | None] = mapped_column(Date)
    amount: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False)
    running_balance: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False)
    entry_type: Mapped[str] = mapped_column(ledger_entry_type_enum, nullable=False)
    reference: Mapped[str | None] = mapped_column(Text)
    narration: Mapped[str | None] = mapped_column(Text)
    created_at_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )
