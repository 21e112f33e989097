"""
Trade cache: store interface, in-memory store and the
SQLAlchemy-backed store.
"""

from .base import InMemoryTradeCache, TradeCacheStore
from .models import Base, TradeEventModel
from .repository import SqlTradeCache


__all__ = [
    "TradeCacheStore",
    "InMemoryTradeCache",
    "SqlTradeCache",
    "TradeEventModel",
    "Base",
]
