"""
Launchpad Pipeline - Types.

============================================================
PURPOSE
============================================================
All type definitions shared by the pricing, polling,
reconciliation and portfolio components.

CRITICAL PRINCIPLE:
    "All on-chain quantities are exact integers."
    uint256 values are Python ints. Floats never participate
    in price, value, volume or balance arithmetic.

============================================================
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Sequence
from dataclasses import dataclass, field
from enum import Enum


# ============================================================
# ENUMS
# ============================================================

class TradeKind(Enum):
    """Side of a bonding-curve trade."""

    BUY = "buy"
    SELL = "sell"


class ConnectionStatus(Enum):
    """
    Connection health of a price poller.

    State Machine:

        DISCONNECTED ──► CONNECTED ──► RECONNECTING ──► DISCONNECTED
             │                ▲              │
             └──► RECONNECTING┘◄─────────────┘
    """

    DISCONNECTED = "disconnected"
    """No successful fetch yet, retries exhausted, or stopped."""

    CONNECTED = "connected"
    """Last fetch succeeded."""

    RECONNECTING = "reconnecting"
    """Last fetch failed, short-delay retry pending."""


class PriceDirection(Enum):
    """Direction of the latest price move."""

    UP = "up"
    DOWN = "down"
    UNCHANGED = "unchanged"


class DataState(Enum):
    """What the consumer is looking at."""

    NO_DATA = "no_data"
    """Nothing fetched yet and nothing failed yet."""

    FAILED = "failed"
    """The most recent fetch failed."""

    STALE = "stale"
    """Latest successful sample is older than the stale threshold."""

    FRESH = "fresh"
    """Latest successful sample is within the stale threshold."""


# ============================================================
# CURVE TYPES
# ============================================================

@dataclass(frozen=True)
class CurveParameters:
    """Bonding curve parameters, fixed at market creation."""

    base_price: int
    slope: int


@dataclass(frozen=True)
class CurveState:
    """Mutable pool state as observed on the ledger."""

    tokens_sold: int
    max_supply: int
    migrated: bool = False


@dataclass(frozen=True)
class PriceSample:
    """One successful price observation."""

    price: int
    tokens_sold: int
    observed_at: datetime


# ============================================================
# LEDGER TYPES
# ============================================================

@dataclass(frozen=True)
class RawLogEntry:
    """
    Event log exactly as emitted by the ledger.

    keys and data keep the ledger's ordering; values are hex
    strings or ints.
    """

    keys: Sequence[Any]
    data: Sequence[Any]
    transaction_hash: str
    block_number: Optional[int] = None
    event_index: Optional[int] = None
    from_address: Optional[str] = None


# ============================================================
# TRADE RECORD
# ============================================================

@dataclass(frozen=True)
class TradeRecord:
    """
    Canonical trade record.

    Identity is (tx_hash, log_index): two records with the same
    id denote the same event regardless of where they came from.
    """

    id: str
    pool_address: str
    trader: str
    kind: TradeKind
    amount: int
    counter_value: int
    fee: int
    price: int
    timestamp: datetime
    tx_hash: str
    block_number: Optional[int] = None
    log_index: Optional[int] = None

    @staticmethod
    def make_id(tx_hash: str, log_index: Optional[int]) -> str:
        """Build the identity key for a trade."""
        return f"{tx_hash}_{log_index if log_index is not None else 0}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary; uint256 fields become decimal strings."""
        return {
            "id": self.id,
            "pool_address": self.pool_address,
            "trader": self.trader,
            "kind": self.kind.value,
            "amount": str(self.amount),
            "counter_value": str(self.counter_value),
            "fee": str(self.fee),
            "price": str(self.price),
            "timestamp": self.timestamp.isoformat(),
            "tx_hash": self.tx_hash,
            "block_number": self.block_number,
            "log_index": self.log_index,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TradeRecord":
        """Create from dictionary produced by to_dict()."""
        timestamp = data["timestamp"]
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)

        log_index = data.get("log_index")
        return cls(
            id=data.get("id") or cls.make_id(data["tx_hash"], log_index),
            pool_address=data["pool_address"],
            trader=data["trader"],
            kind=TradeKind(data["kind"]),
            amount=int(data["amount"]),
            counter_value=int(data["counter_value"]),
            fee=int(data.get("fee") or 0),
            price=int(data["price"]),
            timestamp=timestamp,
            tx_hash=data["tx_hash"],
            block_number=data.get("block_number"),
            log_index=log_index,
        )


# ============================================================
# HOLDINGS
# ============================================================

@dataclass(frozen=True)
class TokenInfo:
    """Token metadata needed for valuation and display."""

    address: str
    symbol: str = "???"
    decimals: int = 18
    pool_address: Optional[str] = None


@dataclass(frozen=True)
class Holding:
    """Balance of one token under one of the user's addresses."""

    owner_address: str
    token_address: str
    balance: int


@dataclass
class AggregatedHolding:
    """
    Balance of one token summed over all of the user's addresses.

    Derived state. Rebuilt from Holdings, never persisted.
    """

    token_address: str
    total_balance: int
    per_address: List[Holding] = field(default_factory=list)

    @property
    def address_count(self) -> int:
        """Number of addresses contributing to this total."""
        return len(self.per_address)
