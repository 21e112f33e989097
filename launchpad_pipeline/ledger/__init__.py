"""
Ledger access: abstract interfaces, a Starknet JSON-RPC client
and an in-memory ledger for tests.
"""

from .base import BalanceSource, LedgerReader
from .memory import InMemoryBalanceSource, InMemoryLedger, InMemoryLedgerConfig
from .starknet import StarknetBalanceSource, StarknetRpcLedger


__all__ = [
    "LedgerReader",
    "BalanceSource",
    "InMemoryLedger",
    "InMemoryLedgerConfig",
    "InMemoryBalanceSource",
    "StarknetRpcLedger",
    "StarknetBalanceSource",
]
