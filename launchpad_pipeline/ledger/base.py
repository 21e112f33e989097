"""
Launchpad Pipeline - Ledger Interfaces.

============================================================
PURPOSE
============================================================
Abstract read interfaces the pipeline consumes.

All methods are network calls that may fail or time out.
Implementations raise NetworkError for transport failures;
they never return partial garbage.

============================================================
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from ..types import CurveParameters, CurveState, RawLogEntry


class LedgerReader(ABC):
    """
    Read-only view of the ledger for one or more pools.
    """

    @abstractmethod
    async def get_curve_state(self, pool_address: str) -> CurveState:
        """
        Get current pool state.

        Raises:
            NetworkError: If the ledger cannot be reached
        """
        pass

    @abstractmethod
    async def get_curve_parameters(self, pool_address: str) -> CurveParameters:
        """
        Get the pool's curve parameters.

        Raises:
            NetworkError: If the ledger cannot be reached
        """
        pass

    @abstractmethod
    async def get_event_logs(
        self,
        pool_address: str,
        from_block: int,
        to_block: Optional[int] = None,
    ) -> List[RawLogEntry]:
        """
        Get the pool's event logs.

        Args:
            pool_address: Emitting contract
            from_block: First block (inclusive)
            to_block: Last block (inclusive), latest if None

        Raises:
            NetworkError: If the ledger cannot be reached
        """
        pass

    @abstractmethod
    async def get_block_timestamp(self, block_number: int) -> datetime:
        """
        Get the timestamp of a block (UTC).

        Raises:
            NetworkError: If the ledger cannot be reached
        """
        pass

    async def close(self) -> None:
        """Release resources."""
        return None

    async def __aenter__(self) -> "LedgerReader":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


class BalanceSource(ABC):
    """
    Supplies raw token balances per address.
    """

    @abstractmethod
    async def get_balance(self, token_address: str, owner_address: str) -> int:
        """
        Get balance of token held by owner, in base units.

        Raises:
            NetworkError: If the balance cannot be fetched
        """
        pass
