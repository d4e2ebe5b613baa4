"""SQLAlchemy declarative base for the settlement schema.

Constraint names in the models mirror the raw DDL in the initial migration.
The naming convention only fills in names for constraints declared without one.
"""

from __future__ import annotations

import logging

from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)

SETTLEMENT_NAMING_CONVENTION = {
    "pk": "pk_%(table_name)s",
    "fk": "fk_%(table_name)s_%(referred_table_name)s",
    "uq": "uq_%(table_name)s_%(column_0_N_name)s",
    "ix": "idx_%(table_name)s_%(column_0_N_name)s",
}

metadata = MetaData(naming_convention=SETTLEMENT_NAMING_CONVENTION)


class Base(DeclarativeBase):
    """Declarative base shared by every settlement table model."""

    metadata = metadata
