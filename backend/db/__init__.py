"""Settlement database package: declarative models and the schema migration."""

from __future__ import annotations

import logging

from backend.db import models
from backend.db.base import SETTLEMENT_NAMING_CONVENTION, Base, metadata

logger = logging.getLogger(__name__)

__all__ = ["Base", "SETTLEMENT_NAMING_CONVENTION", "metadata", "models"]
