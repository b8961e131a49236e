"""Persistence layer: ORM models and the record store."""

from perp_trading.storage.models import InvalidTransition
from perp_trading.storage.store import Store

__all__ = ["InvalidTransition", "Store"]
