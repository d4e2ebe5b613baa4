"""Client registry model definitions."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    PrimaryKeyConstraint,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from backend.db.base import Base

logger = logging.getLogger(__name__)


class Client(Base):
    """Brokerage client keyed by BO account and client code."""

    __tablename__ = "clients"
    __table_args__ = (
        PrimaryKeyConstraint("client_id", name="pk_clients"),
        UniqueConstraint("bo_id", name="uq_clients_bo_id"),
        UniqueConstraint("client_code", name="uq_clients_client_code"),
        CheckConstraint(
            "status IN ('active', 'suspended', 'closed', 'pending_review')",
            name="ck_clients_status",
        ),
        CheckConstraint(
            "account_type IS NULL OR account_type IN ('Cash', 'Margin')",
            name="ck_clients_account_type",
        ),
        CheckConstraint(
            "income_status IS NULL OR income_status IN "
            "('employed', 'self_employed', 'student', 'homemaker', 'retired')",
            name="ck_clients_income_status",
        ),
        Index("idx_clients_account_type", "account_type"),
    )

    client_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    bo_id: Mapped[str | None] = mapped_column(Text)
    client_code: Mapped[str | None] = mapped_column(Text)
    name: Mapped[str | None] = mapped_column(Text)
    income_status: Mapped[str | None] = mapped_column(Text)
    kyc_completed: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        server_default=text("FALSE"),
    )
    account_type: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        server_default=text("'active'"),
    )
    created_at_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )
