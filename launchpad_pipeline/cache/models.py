"""
Launchpad Pipeline - ORM Models.

============================================================
PURPOSE
============================================================
SQLAlchemy ORM model for the trade cache.

TABLES:
- trade_events: One row per trade event, unique on trade_id

uint256 quantities are stored as decimal strings so no
database numeric type can truncate them.

============================================================
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ..types import TradeKind, TradeRecord


class Base(DeclarativeBase):
    """Base class for ORM models."""
    pass


# ============================================================
# TRADE EVENT MODEL
# ============================================================

class TradeEventModel(Base):
    """
    Cached trade event.
    """

    __tablename__ = "trade_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Identity
    trade_id: Mapped[str] = mapped_column(String(160), unique=True, nullable=False, index=True)
    tx_hash: Mapped[str] = mapped_column(String(80), nullable=False)
    log_index: Mapped[Optional[int]] = mapped_column(Integer)
    block_number: Mapped[Optional[int]] = mapped_column(BigInteger)

    # Trade
    pool_address: Mapped[str] = mapped_column(String(80), nullable=False)
    trader: Mapped[str] = mapped_column(String(80), nullable=False)
    kind: Mapped[str] = mapped_column(String(8), nullable=False)
    amount: Mapped[str] = mapped_column(Text, nullable=False)
    counter_value: Mapped[str] = mapped_column(Text, nullable=False)
    fee: Mapped[str] = mapped_column(Text, nullable=False, default="0")
    price: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("ix_trade_events_pool_timestamp", "pool_address", "timestamp"),
    )

    @classmethod
    def from_record(cls, record: TradeRecord) -> "TradeEventModel":
        """Create a row from a TradeRecord."""
        return cls(
            trade_id=record.id,
            tx_hash=record.tx_hash,
            log_index=record.log_index,
            block_number=record.block_number,
            pool_address=record.pool_address,
            trader=record.trader,
            kind=record.kind.value,
            amount=str(record.amount),
            counter_value=str(record.counter_value),
            fee=str(record.fee),
            price=str(record.price),
            timestamp=record.timestamp,
        )

    def to_record(self) -> TradeRecord:
        """Convert back to a TradeRecord; naive timestamps are UTC."""
        timestamp = self.timestamp
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)

        return TradeRecord(
            id=self.trade_id,
            pool_address=self.pool_address,
            trader=self.trader,
            kind=TradeKind(self.kind),
            amount=int(self.amount),
            counter_value=int(self.counter_value),
            fee=int(self.fee or 0),
            price=int(self.price),
            timestamp=timestamp,
            tx_hash=self.tx_hash,
            block_number=self.block_number,
            log_index=self.log_index,
        )

    def __repr__(self) -> str:
        return f"<TradeEventModel(trade_id={self.trade_id}, kind={self.kind})>"
