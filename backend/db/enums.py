"""PostgreSQL native enum contracts for the settlement database schema."""

from __future__ import annotations

import enum
import logging

from sqlalchemy.dialects.postgresql import ENUM as PGEnum

logger = logging.getLogger(__name__)


class TradeSide(str, enum.Enum):
    """Side of a posted execution."""

    BUY = "BUY"
    SELL = "SELL"


class MarginStatus(str, enum.Enum):
    """Maintenance status of a margin account."""

    NORMAL = "NORMAL"
    MARGIN_CALL = "MARGIN_CALL"
    FORCE_SELL = "FORCE_SELL"


class MarginAlertType(str, enum.Enum):
    """Margin alert event type."""

    MARGIN_CALL = "MARGIN_CALL"
    FORCE_SELL_TRIGGERED = "FORCE_SELL_TRIGGERED"
    DEADLINE_BREACH = "DEADLINE_BREACH"
    EXPOSURE_BREACH = "EXPOSURE_BREACH"
    CONCENTRATION_BREACH = "CONCENTRATION_BREACH"


class LedgerEntryType(str, enum.Enum):
    """Cash ledger movement type."""

    OPENING_BALANCE = "OPENING_BALANCE"
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    BUY_TRADE = "BUY_TRADE"
    SELL_TRADE = "SELL_TRADE"
    COMMISSION = "COMMISSION"
    TAX = "TAX"
    DIVIDEND = "DIVIDEND"
    IPO_ALLOTMENT = "IPO_ALLOTMENT"
    INTEREST_CHARGE = "INTEREST_CHARGE"


class Exchange(str, enum.Enum):
    """Source exchange of a trade."""

    DSE = "DSE"
    CSE = "CSE"


trade_side_enum = PGEnum(TradeSide, name="trade_side_enum")
margin_status_enum = PGEnum(MarginStatus, name="margin_status_enum")
margin_alert_type_enum = PGEnum(MarginAlertType, name="margin_alert_type_enum")
ledger_entry_type_enum = PGEnum(LedgerEntryType, name="ledger_entry_type_enum")
exchange_enum = PGEnum(Exchange, name="exchange_enum")
