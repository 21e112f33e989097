"""
Launchpad Pipeline - Event Normalizer.

============================================================
PURPOSE
============================================================
Decodes raw Buy/Sell event logs into canonical TradeRecords.

EVENT LAYOUT (both kinds):
    keys = [selector, trader]
    data = [amount.low, amount.high,
            counter.low, counter.high,
            fee.low, fee.high]

RULES:
- Kind is decided only by keys[0] against the configured
  Buy and Sell selectors
- u256 = low + (high << 128), each word < 2**128
- unit price = counter * 10**decimals // amount (0 if amount == 0)
- timestamp is the containing block's, supplied by the caller

Any violation raises NormalizationError for that single entry.

============================================================
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from .config import NormalizerConfig
from .errors import NormalizationError
from .pricing import DEFAULT_DECIMALS, u256_from_words, unit_price
from .selectors import felt_to_hex, normalize_felt
from .types import RawLogEntry, TradeKind, TradeRecord


logger = logging.getLogger(__name__)


MIN_KEYS = 2
MIN_DATA_WORDS = 6


class EventNormalizer:
    """
    Converts RawLogEntry values into TradeRecords.

    Stateless once constructed; safe to share between pools of
    the same token decimals.
    """

    def __init__(
        self,
        buy_selector: Any,
        sell_selector: Any,
        decimals: int = DEFAULT_DECIMALS,
        pool_address: Optional[str] = None,
    ):
        """
        Initialize normalizer.

        Args:
            buy_selector: Buy event selector (int or hex string)
            sell_selector: Sell event selector (int or hex string)
            decimals: Token decimals for unit price scaling
            pool_address: Fallback pool when a log has no from_address
        """
        self._buy_selector = normalize_felt(buy_selector)
        self._sell_selector = normalize_felt(sell_selector)
        self._decimals = decimals
        self._pool_address = pool_address

    @classmethod
    def from_config(
        cls,
        config: NormalizerConfig,
        pool_address: Optional[str] = None,
        decimals: Optional[int] = None,
    ) -> "EventNormalizer":
        """Build from config; explicit decimals override the configured ones."""
        buy, sell = config.resolve_selectors()
        return cls(
            buy_selector=buy,
            sell_selector=sell,
            decimals=config.token_decimals if decimals is None else decimals,
            pool_address=pool_address,
        )

    @property
    def decimals(self) -> int:
        return self._decimals

    def with_decimals(self, decimals: int) -> "EventNormalizer":
        """Same selectors, different token decimals."""
        return EventNormalizer(
            buy_selector=self._buy_selector,
            sell_selector=self._sell_selector,
            decimals=decimals,
            pool_address=self._pool_address,
        )

    def classify(self, selector: Any) -> Optional[TradeKind]:
        """Map an event selector to a trade kind, None if unknown."""
        try:
            value = normalize_felt(selector)
        except ValueError:
            return None

        if value == self._buy_selector:
            return TradeKind.BUY
        if value == self._sell_selector:
            return TradeKind.SELL
        return None

    def normalize(
        self,
        raw: RawLogEntry,
        block_timestamp: datetime,
        pool_address: Optional[str] = None,
    ) -> TradeRecord:
        """
        Decode one log entry.

        Args:
            raw: Log entry as returned by the ledger
            block_timestamp: Timestamp of the containing block
            pool_address: Pool the log was fetched for

        Returns:
            TradeRecord

        Raises:
            NormalizationError: If the entry is not a well-formed trade
        """
        pool_address = raw.from_address or pool_address or self._pool_address or ""

        if len(raw.keys) < MIN_KEYS:
            raise self._error(raw, pool_address, "keys", f"expected {MIN_KEYS} keys, got {len(raw.keys)}")

        kind = self.classify(raw.keys[0])
        if kind is None:
            raise self._error(raw, pool_address, "keys[0]", f"unknown event selector {raw.keys[0]!r}")

        if len(raw.data) < MIN_DATA_WORDS:
            raise self._error(
                raw, pool_address, "data",
                f"expected {MIN_DATA_WORDS} data words, got {len(raw.data)}",
            )

        try:
            trader = felt_to_hex(normalize_felt(raw.keys[1]))
        except ValueError as e:
            raise self._error(raw, pool_address, "keys[1]", "invalid trader address", e)

        amount = self._u256(raw, pool_address, raw.data, 0, "amount")
        counter_value = self._u256(raw, pool_address, raw.data, 2, "counter_value")
        fee = self._u256(raw, pool_address, raw.data, 4, "fee")

        if block_timestamp.tzinfo is None:
            block_timestamp = block_timestamp.replace(tzinfo=timezone.utc)

        return TradeRecord(
            id=TradeRecord.make_id(raw.transaction_hash, raw.event_index),
            pool_address=pool_address,
            trader=trader,
            kind=kind,
            amount=amount,
            counter_value=counter_value,
            fee=fee,
            price=unit_price(amount, counter_value, self._decimals),
            timestamp=block_timestamp,
            tx_hash=raw.transaction_hash,
            block_number=raw.block_number,
            log_index=raw.event_index,
        )

    # --------------------------------------------------------
    # HELPERS
    # --------------------------------------------------------

    def _u256(
        self,
        raw: RawLogEntry,
        pool_address: str,
        data: Sequence[Any],
        offset: int,
        field_name: str,
    ) -> int:
        try:
            return u256_from_words(data[offset], data[offset + 1])
        except ValueError as e:
            raise self._error(raw, pool_address, field_name, str(e), e)

    @staticmethod
    def _error(
        raw: RawLogEntry,
        pool_address: str,
        field_name: str,
        reason: str,
        original_error: Optional[Exception] = None,
    ) -> NormalizationError:
        return NormalizationError(
            f"Malformed trade event: {reason}",
            pool_address=pool_address or None,
            tx_hash=raw.transaction_hash,
            field_name=field_name,
            raw_data={"keys": list(raw.keys), "data": list(raw.data)},
            original_error=original_error,
        )
