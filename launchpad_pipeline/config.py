"""
Launchpad Pipeline - Configuration.

============================================================
PURPOSE
============================================================
All configuration for the price & trade pipeline.

CRITICAL CONSTRAINTS:
- Bounded retries, never blind loops
- retry_delay < polling_interval < stale_threshold
- Every network call has a timeout

Values load from the environment (optionally a .env file)
via PipelineConfig.from_env().

============================================================
"""

import os
from dataclasses import dataclass, field
from typing import Optional, Tuple

from dotenv import load_dotenv

from .errors import ConfigurationError
from .selectors import normalize_felt, selector_from_name


# ============================================================
# POLLER CONFIGURATION
# ============================================================

@dataclass
class PollerConfig:
    """
    Price poller schedule and retry policy.

    SAFETY: Limited retries at a fixed short delay.
    """

    polling_interval_seconds: float = 10.0
    """Interval between scheduled price fetches."""

    stale_threshold_seconds: float = 30.0
    """Age after which the latest sample is stale."""

    max_retry_attempts: int = 3
    """Consecutive failures before giving up until the next tick."""

    retry_delay_seconds: float = 2.0
    """Delay before a retry after a failed fetch."""

    request_timeout_seconds: float = 10.0
    """Timeout applied to every ledger call made by the poller."""

    def validate(self) -> None:
        """
        Check policy consistency.

        Raises:
            ConfigurationError: If values are inconsistent
        """
        if self.polling_interval_seconds <= 0:
            raise ConfigurationError(
                "polling_interval_seconds must be positive",
                config_key="polling_interval_seconds",
            )
        if self.stale_threshold_seconds <= self.polling_interval_seconds:
            raise ConfigurationError(
                "stale_threshold_seconds must exceed polling_interval_seconds",
                config_key="stale_threshold_seconds",
            )
        if not 0 < self.retry_delay_seconds < self.polling_interval_seconds:
            raise ConfigurationError(
                "retry_delay_seconds must be positive and shorter than the polling interval",
                config_key="retry_delay_seconds",
            )
        if self.max_retry_attempts < 1:
            raise ConfigurationError(
                "max_retry_attempts must be at least 1",
                config_key="max_retry_attempts",
            )
        if self.request_timeout_seconds <= 0:
            raise ConfigurationError(
                "request_timeout_seconds must be positive",
                config_key="request_timeout_seconds",
            )


# ============================================================
# NORMALIZER CONFIGURATION
# ============================================================

@dataclass
class NormalizerConfig:
    """
    Event decoding configuration.

    Selectors are the ledger's event identifiers (keys[0]).
    An explicit selector wins over the one derived from the
    event name.
    """

    buy_event_name: Optional[str] = "Buy"
    """Name of the pool's Buy event."""

    sell_event_name: Optional[str] = "Sell"
    """Name of the pool's Sell event."""

    buy_selector: Optional[str] = None
    """Explicit selector of the Buy event (hex)."""

    sell_selector: Optional[str] = None
    """Explicit selector of the Sell event (hex)."""

    token_decimals: int = 18
    """Decimals of the traded token, used for unit price scaling."""

    def resolve_selectors(self) -> Tuple[int, int]:
        """
        Get (buy_selector, sell_selector) as ints.

        Raises:
            ConfigurationError: If a selector is missing, malformed
                or both kinds resolve to the same selector
        """
        buy = self._resolve("buy", self.buy_selector, self.buy_event_name)
        sell = self._resolve("sell", self.sell_selector, self.sell_event_name)

        if buy == sell:
            raise ConfigurationError(
                "Buy and Sell events resolve to the same selector",
                config_key="sell_selector",
            )
        return buy, sell

    def validate(self) -> None:
        """Raises ConfigurationError when selectors cannot be resolved."""
        self.resolve_selectors()
        if self.token_decimals < 0:
            raise ConfigurationError("token_decimals must be >= 0", config_key="token_decimals")

    @staticmethod
    def _resolve(kind: str, selector: Optional[str], event_name: Optional[str]) -> int:
        if selector:
            try:
                return normalize_felt(selector)
            except ValueError as e:
                raise ConfigurationError(
                    f"Invalid {kind} selector {selector!r}",
                    config_key=f"{kind}_selector",
                    original_error=e,
                )
        if event_name:
            return selector_from_name(event_name)
        raise ConfigurationError(
            f"{kind.capitalize()} event selector or name is required",
            config_key=f"{kind}_selector",
        )


# ============================================================
# RECONCILER CONFIGURATION
# ============================================================

@dataclass
class ReconcilerConfig:
    """
    Trade history reconciliation configuration.
    """

    start_block: int = 0
    """Block to start from when nothing is cached."""

    trade_poll_interval_seconds: float = 30.0
    """Interval of the incremental trade feed."""

    request_timeout_seconds: float = 30.0
    """Timeout for a whole live fetch."""

    cache_timeout_seconds: float = 5.0
    """Timeout for a cache read; a slow cache degrades to empty."""

    cache_read_limit: int = 100
    """Maximum cached trades loaded per pool."""

    newest_first: bool = True
    """Default display order."""

    def validate(self) -> None:
        """Raises ConfigurationError on invalid values."""
        if self.start_block < 0:
            raise ConfigurationError("start_block must be >= 0", config_key="start_block")
        if self.trade_poll_interval_seconds <= 0:
            raise ConfigurationError(
                "trade_poll_interval_seconds must be positive",
                config_key="trade_poll_interval_seconds",
            )
        if self.cache_read_limit <= 0:
            raise ConfigurationError("cache_read_limit must be positive", config_key="cache_read_limit")


# ============================================================
# LEDGER CONFIGURATION
# ============================================================

@dataclass
class LedgerConfig:
    """
    Ledger node (JSON-RPC) configuration.
    """

    rpc_url: Optional[str] = None
    """JSON-RPC endpoint."""

    timeout_seconds: float = 15.0
    """HTTP timeout per request."""

    events_chunk_size: int = 100
    """Page size for event queries."""

    state_entry_point: str = "get_pool_state"
    """Pool view returning (tokens_sold: u256, max_supply: u256, migrated: bool)."""

    config_entry_point: str = "get_pool_config"
    """Pool view returning (base_price: u256, slope: u256)."""

    balance_entry_point: str = "balance_of"
    """Token view returning balance: u256."""

    def validate(self) -> None:
        """Raises ConfigurationError when the endpoint is missing."""
        if not self.rpc_url:
            raise ConfigurationError("Ledger RPC URL is required", config_key="rpc_url")
        if self.events_chunk_size <= 0:
            raise ConfigurationError("events_chunk_size must be positive", config_key="events_chunk_size")


# ============================================================
# CACHE CONFIGURATION
# ============================================================

@dataclass
class CacheConfig:
    """
    Trade cache configuration.

    No URL means the pipeline runs live-only.
    """

    database_url: Optional[str] = None
    """SQLAlchemy async URL, e.g. sqlite+aiosqlite:///trades.db"""

    echo: bool = False
    """Log SQL statements."""

    @property
    def enabled(self) -> bool:
        """Whether a cache store is configured."""
        return bool(self.database_url)


# ============================================================
# MASTER CONFIGURATION
# ============================================================

@dataclass
class PipelineConfig:
    """
    Master configuration for the pipeline.
    """

    poller: PollerConfig = field(default_factory=PollerConfig)
    normalizer: NormalizerConfig = field(default_factory=NormalizerConfig)
    reconciler: ReconcilerConfig = field(default_factory=ReconcilerConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)

    log_level: str = "INFO"
    log_format: str = "text"

    def validate(self) -> None:
        """Validate every section."""
        self.poller.validate()
        self.normalizer.validate()
        self.reconciler.validate()
        self.ledger.validate()

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "PipelineConfig":
        """
        Load configuration from environment variables.

        Args:
            env_file: Optional .env path (default: search from cwd)

        Raises:
            ConfigurationError: If a numeric variable does not parse
        """
        load_dotenv(env_file)

        return cls(
            poller=PollerConfig(
                polling_interval_seconds=_env_float("LAUNCHPAD_POLL_INTERVAL", 10.0),
                stale_threshold_seconds=_env_float("LAUNCHPAD_STALE_THRESHOLD", 30.0),
                max_retry_attempts=_env_int("LAUNCHPAD_MAX_RETRIES", 3),
                retry_delay_seconds=_env_float("LAUNCHPAD_RETRY_DELAY", 2.0),
                request_timeout_seconds=_env_float("LAUNCHPAD_REQUEST_TIMEOUT", 10.0),
            ),
            normalizer=NormalizerConfig(
                buy_selector=os.getenv("LAUNCHPAD_BUY_SELECTOR"),
                sell_selector=os.getenv("LAUNCHPAD_SELL_SELECTOR"),
                token_decimals=_env_int("LAUNCHPAD_TOKEN_DECIMALS", 18),
            ),
            reconciler=ReconcilerConfig(
                start_block=_env_int("LAUNCHPAD_START_BLOCK", 0),
                trade_poll_interval_seconds=_env_float("LAUNCHPAD_TRADE_POLL_INTERVAL", 30.0),
            ),
            ledger=LedgerConfig(
                rpc_url=os.getenv("LAUNCHPAD_RPC_URL"),
                timeout_seconds=_env_float("LAUNCHPAD_REQUEST_TIMEOUT", 15.0),
            ),
            cache=CacheConfig(
                database_url=os.getenv("LAUNCHPAD_CACHE_URL"),
            ),
            log_level=os.getenv("LAUNCHPAD_LOG_LEVEL", "INFO"),
            log_format=os.getenv("LAUNCHPAD_LOG_FORMAT", "text"),
        )

    @classmethod
    def for_testing(cls) -> "PipelineConfig":
        """Get configuration for testing: fast schedule, in-memory cache."""
        return cls(
            poller=PollerConfig(
                polling_interval_seconds=0.2,
                stale_threshold_seconds=0.6,
                max_retry_attempts=3,
                retry_delay_seconds=0.02,
                request_timeout_seconds=0.5,
            ),
            normalizer=NormalizerConfig(buy_selector="0xb0b", sell_selector="0x5e11"),
            reconciler=ReconcilerConfig(trade_poll_interval_seconds=0.05),
            ledger=LedgerConfig(rpc_url="http://localhost:5050/rpc"),
            cache=CacheConfig(database_url="sqlite+aiosqlite:///:memory:"),
        )


# ============================================================
# HELPERS
# ============================================================

def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}", config_key=name, original_error=e)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}", config_key=name, original_error=e)
