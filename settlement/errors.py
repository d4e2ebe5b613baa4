"""Error taxonomy for settlement batch processing."""

from __future__ import annotations


class SettlementError(RuntimeError):
    """Base class for settlement core failures."""


class TradeRejectedError(SettlementError):
    """Retryable row-scoped rejection; the raw trade stays unprocessed."""


class ConfigurationError(SettlementError):
    """Configuration could not be read or parsed; fatal for the invocation."""
