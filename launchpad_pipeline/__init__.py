"""
Launchpad Pipeline Package.

============================================================
PURPOSE
============================================================
Price & trade reconciliation for a bonding-curve token
launch platform.

CRITICAL PRINCIPLE:
    "Exact integers in, exact integers out."
    Prices, values, volumes and balances are never floats.

============================================================
MODULES
============================================================
- types: Curve, trade and holding types
- pricing: Bonding-curve math and uint256 helpers
- selectors: Starknet selector helpers
- normalizer: Raw event log -> TradeRecord
- reconciliation: Cache/live trade merge and history
- feed: Incremental trade subscription
- state_machine: Poller connection status
- poller: Price polling, staleness, retries
- portfolio: Multi-address balance aggregation and valuation
- ledger: Ledger interfaces and clients
- cache: Trade cache store (in-memory, SQLAlchemy)
- config: Configuration
- errors: Error taxonomy
- logging_utils: Logging setup and masking
- cli: Command-line interface

============================================================
"""

__version__ = "1.0.0"

# ============================================================
# TYPES
# ============================================================
from .types import (
    # Enums
    TradeKind,
    ConnectionStatus,
    PriceDirection,
    DataState,
    # Dataclasses
    CurveParameters,
    CurveState,
    PriceSample,
    RawLogEntry,
    TradeRecord,
    TokenInfo,
    Holding,
    AggregatedHolding,
)

# ============================================================
# CONFIG
# ============================================================
from .config import (
    PollerConfig,
    NormalizerConfig,
    ReconcilerConfig,
    LedgerConfig,
    CacheConfig,
    PipelineConfig,
)

# ============================================================
# ERRORS
# ============================================================
from .errors import (
    PipelineError,
    NetworkError,
    CacheError,
    NormalizationError,
    NotFoundError,
    ConfigurationError,
)

# ============================================================
# PRICING
# ============================================================
from .pricing import (
    PriceChange,
    calculate_price,
    curve_price,
    calculate_market_cap,
    calculate_progress,
    calculate_price_change,
    parse_u256,
    u256_from_words,
    unit_price,
    safe_divide,
    format_units,
    to_base_units,
)

# ============================================================
# COMPONENTS
# ============================================================
from .normalizer import EventNormalizer
from .reconciliation import (
    MergeResult,
    TradeFilter,
    TradeStats,
    TradeHistory,
    TradeReconciler,
    merge_trades,
    sort_trades,
    filter_trades,
    trade_stats,
)
from .feed import TradeHistoryFeed
from .state_machine import ConnectionStateMachine, StatusTransitionEvent
from .poller import PriceSnapshot, PricePoller, PricePollerPool
from .portfolio import (
    BalanceCollection,
    FailedLookup,
    HoldingValue,
    PortfolioValuation,
    PortfolioValuator,
    aggregate,
    holding_value,
    total_portfolio_value,
)

# ============================================================
# LEDGER & CACHE
# ============================================================
from .ledger import (
    LedgerReader,
    BalanceSource,
    InMemoryLedger,
    InMemoryLedgerConfig,
    InMemoryBalanceSource,
    StarknetRpcLedger,
    StarknetBalanceSource,
)
from .cache import TradeCacheStore, InMemoryTradeCache, SqlTradeCache


__all__ = [
    "__version__",
    # Types
    "TradeKind",
    "ConnectionStatus",
    "PriceDirection",
    "DataState",
    "CurveParameters",
    "CurveState",
    "PriceSample",
    "RawLogEntry",
    "TradeRecord",
    "TokenInfo",
    "Holding",
    "AggregatedHolding",
    # Config
    "PollerConfig",
    "NormalizerConfig",
    "ReconcilerConfig",
    "LedgerConfig",
    "CacheConfig",
    "PipelineConfig",
    # Errors
    "PipelineError",
    "NetworkError",
    "CacheError",
    "NormalizationError",
    "NotFoundError",
    "ConfigurationError",
    # Pricing
    "PriceChange",
    "calculate_price",
    "curve_price",
    "calculate_market_cap",
    "calculate_progress",
    "calculate_price_change",
    "parse_u256",
    "u256_from_words",
    "unit_price",
    "safe_divide",
    "format_units",
    "to_base_units",
    # Components
    "EventNormalizer",
    "MergeResult",
    "TradeFilter",
    "TradeStats",
    "TradeHistory",
    "TradeReconciler",
    "merge_trades",
    "sort_trades",
    "filter_trades",
    "trade_stats",
    "TradeHistoryFeed",
    "ConnectionStateMachine",
    "StatusTransitionEvent",
    "PriceSnapshot",
    "PricePoller",
    "PricePollerPool",
    "BalanceCollection",
    "FailedLookup",
    "HoldingValue",
    "PortfolioValuation",
    "PortfolioValuator",
    "aggregate",
    "holding_value",
    "total_portfolio_value",
    # Ledger & cache
    "LedgerReader",
    "BalanceSource",
    "InMemoryLedger",
    "InMemoryLedgerConfig",
    "InMemoryBalanceSource",
    "StarknetRpcLedger",
    "StarknetBalanceSource",
    "TradeCacheStore",
    "InMemoryTradeCache",
    "SqlTradeCache",
]
