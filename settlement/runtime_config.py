"""Environment-backed runtime configuration for settlement batch jobs."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import os


@dataclass(frozen=True)
class SettlementRuntimeConfig:
    """Batch sizing, loop safety and logging settings."""

    trade_batch_size: int = 200
    margin_batch_size: int = 200
    max_batch_iterations: int = 100
    error_report_limit: int = 50
    log_level: str = "INFO"


def _read_int(name: str, default: int, *, minimum: int = 1) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw.strip())
    except ValueError as exc:
        raise RuntimeError(f"Invalid integer value for {name}: {raw}") from exc
    if value < minimum:
        raise RuntimeError(f"{name} must be >= {minimum}: {raw}")
    return value


def _read_log_level(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    level = raw.strip().upper()
    if not isinstance(logging.getLevelName(level), int):
        raise RuntimeError(f"Invalid log level for {name}: {raw}")
    return level


def load_runtime_config() -> SettlementRuntimeConfig:
    """Load and validate runtime configuration from environment."""
    return SettlementRuntimeConfig(
        trade_batch_size=_read_int("SETTLEMENT_TRADE_BATCH_SIZE", 200),
        margin_batch_size=_read_int("SETTLEMENT_MARGIN_BATCH_SIZE", 200),
        max_batch_iterations=_read_int("SETTLEMENT_MAX_BATCH_ITERATIONS", 100),
        error_report_limit=_read_int("SETTLEMENT_ERROR_REPORT_LIMIT", 50, minimum=0),
        log_level=_read_log_level("SETTLEMENT_LOG_LEVEL", "INFO"),
    )
