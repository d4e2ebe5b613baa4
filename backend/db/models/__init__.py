"""Model module imports for SQLAlchemy metadata registration."""

from __future__ import annotations

import logging

from backend.db.models.cash_ledger import CashLedger
from backend.db.models.client import Client
from backend.db.models.margin import MarginAccount, MarginAlert
from backend.db.models.portfolio import DailySnapshot, Holding
from backend.db.models.regulatory_config import FeeScheduleEntry, MarginConfigParameter
from backend.db.models.security import DailyPrice, Security
from backend.db.models.trade import RawTrade, TradeExecution

logger = logging.getLogger(__name__)

__all__ = [
    "CashLedger",
    "Client",
    "DailyPrice",
    "DailySnapshot",
    "FeeScheduleEntry",
    "Holding",
    "MarginAccount",
    "MarginAlert",
    "MarginConfigParameter",
    "RawTrade",
    "Security",
    "TradeExecution",
]
