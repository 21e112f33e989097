"""
Launchpad Pipeline - Portfolio Valuation.

============================================================
PURPOSE
============================================================
Aggregates a user's token balances across all of their
derived addresses and values them at current curve prices.

RULES:
- Totals are exact integer sums, recomputed on every call
- value = balance * price
- A token with a balance but no known price is left out of
  the total and reported in excluded_tokens
- A failed balance lookup is reported, never counted as 0

============================================================
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Union

from .errors import PipelineError
from .ledger.base import BalanceSource
from .logging_utils import mask_address
from .types import AggregatedHolding, Holding, TokenInfo


logger = logging.getLogger(__name__)


TokenRef = Union[str, TokenInfo]


# ============================================================
# VALUATION TYPES
# ============================================================

@dataclass
class FailedLookup:
    """A (owner, token) balance that could not be fetched."""

    owner_address: str
    token_address: str
    error: Optional[Exception] = None


@dataclass
class BalanceCollection:
    """Result of collecting balances for many addresses."""

    holdings: List[Holding] = field(default_factory=list)
    failed: List[FailedLookup] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failed


@dataclass
class HoldingValue:
    """One token's aggregated balance and its value."""

    token_address: str
    balance: int
    price: int
    value: int
    address_count: int = 0
    token: Optional[TokenInfo] = None


@dataclass
class PortfolioValuation:
    """Value of a whole portfolio."""

    holdings: List[HoldingValue] = field(default_factory=list)
    """Priced holdings, highest value first."""

    total_value: int = 0

    excluded_tokens: List[str] = field(default_factory=list)
    """Tokens with a balance but no price."""

    failed: List[FailedLookup] = field(default_factory=list)
    """Balance lookups that failed; the total may be understated."""

    @property
    def is_partial(self) -> bool:
        return bool(self.excluded_tokens or self.failed)

    def value_of(self, token_address: str) -> Optional[int]:
        for holding in self.holdings:
            if holding.token_address == token_address:
                return holding.value
        return None


# ============================================================
# PURE OPERATIONS
# ============================================================

def aggregate(holdings: Iterable[Holding]) -> List[AggregatedHolding]:
    """
    Group holdings by token and sum their balances.

    Tokens keep the order in which they first appear. Tokens
    whose total is zero are left out.
    """
    by_token: Dict[str, AggregatedHolding] = {}

    for holding in holdings:
        entry = by_token.get(holding.token_address)
        if entry is None:
            entry = AggregatedHolding(token_address=holding.token_address, total_balance=0)
            by_token[holding.token_address] = entry

        entry.total_balance += holding.balance
        if holding.balance != 0:
            entry.per_address.append(holding)

    return [entry for entry in by_token.values() if entry.total_balance != 0]


def holding_value(balance: int, price: int) -> int:
    """Value of a balance at a price."""
    return balance * price


def total_portfolio_value(
    aggregated: Iterable[AggregatedHolding],
    prices: Mapping[str, int],
    tokens: Optional[Mapping[str, TokenInfo]] = None,
) -> PortfolioValuation:
    """
    Value aggregated holdings at the given prices.

    Args:
        aggregated: Output of aggregate()
        prices: Current price per token address
        tokens: Optional token metadata per address
    """
    valuation = PortfolioValuation()

    for entry in aggregated:
        price = prices.get(entry.token_address)
        if price is None:
            if entry.total_balance != 0:
                valuation.excluded_tokens.append(entry.token_address)
            continue

        value = holding_value(entry.total_balance, price)
        valuation.holdings.append(HoldingValue(
            token_address=entry.token_address,
            balance=entry.total_balance,
            price=price,
            value=value,
            address_count=entry.address_count,
            token=tokens.get(entry.token_address) if tokens else None,
        ))
        valuation.total_value += value

    valuation.holdings.sort(key=lambda h: h.value, reverse=True)
    return valuation


# ============================================================
# PORTFOLIO VALUATOR
# ============================================================

class PortfolioValuator:
    """
    Collects balances for a set of addresses and values them.

    Keeps the most recent collection so single balances and
    per-token aggregates can be looked up without refetching.
    """

    def __init__(
        self,
        balance_source: BalanceSource,
        tokens: Optional[Sequence[TokenInfo]] = None,
        request_timeout_seconds: float = 10.0,
    ):
        """
        Initialize valuator.

        Args:
            balance_source: Where balances come from
            tokens: Known token metadata
            request_timeout_seconds: Timeout per balance lookup
        """
        self._balance_source = balance_source
        self._tokens: Dict[str, TokenInfo] = {t.address: t for t in (tokens or [])}
        self._timeout = request_timeout_seconds

        self._holdings: List[Holding] = []
        self._aggregated: List[AggregatedHolding] = []

    def register_token(self, token: TokenInfo) -> None:
        self._tokens[token.address] = token

    def token_info(self, token_address: str) -> Optional[TokenInfo]:
        return self._tokens.get(token_address)

    def prices_by_token(self, pool_prices: Mapping[str, int]) -> Dict[str, int]:
        """Map per-pool prices to token addresses via TokenInfo.pool_address."""
        return {
            token.address: pool_prices[token.pool_address]
            for token in self._tokens.values()
            if token.pool_address is not None and token.pool_address in pool_prices
        }

    # --------------------------------------------------------
    # COLLECTION
    # --------------------------------------------------------

    async def collect_holdings(
        self,
        addresses: Sequence[str],
        tokens: Sequence[TokenRef],
    ) -> BalanceCollection:
        """
        Fetch every (address, token) balance concurrently.

        Each pair is looked up exactly once; failures are listed
        in the result instead of being counted as zero.
        """
        token_addresses = _unique(_token_address(t) for t in tokens)
        owner_addresses = _unique(addresses)
        pairs = [(owner, token) for token in token_addresses for owner in owner_addresses]

        results = await asyncio.gather(
            *(self._lookup(owner, token) for owner, token in pairs),
            return_exceptions=True,
        )

        collection = BalanceCollection()
        for (owner, token), result in zip(pairs, results):
            if isinstance(result, Exception):
                logger.warning(f"Balance lookup failed for {token} @ {mask_address(owner)}: {result}")
                collection.failed.append(FailedLookup(owner, token, result))
            else:
                collection.holdings.append(Holding(owner, token, result))

        self._holdings = collection.holdings
        self._aggregated = aggregate(collection.holdings)

        logger.debug(
            f"Collected {len(collection.holdings)} balances "
            f"({len(collection.failed)} failed) for {len(owner_addresses)} addresses"
        )
        return collection

    async def _lookup(self, owner: str, token: str) -> int:
        try:
            return await asyncio.wait_for(
                self._balance_source.get_balance(token, owner),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as e:
            raise PipelineError(f"Balance lookup timed out after {self._timeout}s", original_error=e)

    async def value_portfolio(
        self,
        addresses: Sequence[str],
        tokens: Sequence[TokenRef],
        prices: Mapping[str, int],
    ) -> PortfolioValuation:
        """Collect, aggregate and value in one step."""
        for token in tokens:
            if isinstance(token, TokenInfo):
                self.register_token(token)

        collection = await self.collect_holdings(addresses, tokens)
        valuation = total_portfolio_value(self._aggregated, prices, self._tokens)
        valuation.failed = collection.failed

        logger.info(
            f"Portfolio valued at {valuation.total_value} across {len(valuation.holdings)} tokens"
            + (f", {len(valuation.excluded_tokens)} unpriced" if valuation.excluded_tokens else "")
        )
        return valuation

    # --------------------------------------------------------
    # LOOKUPS
    # --------------------------------------------------------

    @property
    def aggregated(self) -> List[AggregatedHolding]:
        return list(self._aggregated)

    def get_aggregated(self, token_address: str) -> Optional[AggregatedHolding]:
        """Aggregate of one token from the last collection."""
        for entry in self._aggregated:
            if entry.token_address == token_address:
                return entry
        return None

    def get_balance_for(self, owner_address: str, token_address: str) -> Optional[int]:
        """Balance of one address from the last collection, None if not fetched."""
        for holding in self._holdings:
            if holding.owner_address == owner_address and holding.token_address == token_address:
                return holding.balance
        return None


def _token_address(token: TokenRef) -> str:
    return token.address if isinstance(token, TokenInfo) else token


def _unique(values: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(values))
