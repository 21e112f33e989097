"""
Launchpad Pipeline - Pricing Model.

============================================================
PURPOSE
============================================================
Pure bonding-curve math.

FORMULAS:
    price       = base_price + slope * tokens_sold
    market_cap  = price * tokens_sold
    progress    = clamp(tokens_sold * 10000 // max_supply / 100, 0, 100)

All arithmetic is exact integer arithmetic so results match
the ledger bit for bit. Every function is side-effect free.

============================================================
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional, Union

from .selectors import normalize_felt
from .types import CurveParameters, PriceDirection


# ============================================================
# CONSTANTS
# ============================================================

PERCENTAGE_PRECISION = 100
"""Progress and change percentages carry 2 decimal places."""

MAX_PROGRESS = 100.0
MIN_PROGRESS = 0.0

U128_LIMIT = 1 << 128
U256_LIMIT = 1 << 256

DEFAULT_DECIMALS = 18


# ============================================================
# PRICE / MARKET CAP / PROGRESS
# ============================================================

def calculate_price(base_price: int, slope: int, tokens_sold: int) -> int:
    """
    Current unit price on the curve.

    Args:
        base_price: Curve base price
        slope: Curve slope
        tokens_sold: Cumulative tokens sold

    Returns:
        base_price + slope * tokens_sold
    """
    return int(base_price) + int(slope) * int(tokens_sold)


def curve_price(params: CurveParameters, tokens_sold: int) -> int:
    """calculate_price() for a CurveParameters value."""
    return calculate_price(params.base_price, params.slope, tokens_sold)


def calculate_market_cap(price: int, tokens_sold: int) -> int:
    """Market capitalization: price * tokens_sold."""
    return int(price) * int(tokens_sold)


def calculate_progress(tokens_sold: int, max_supply: int) -> float:
    """
    Bonding curve progress percentage in [0, 100].

    Edge cases:
        max_supply <= 0        -> 0
        tokens_sold <= 0       -> 0
        tokens_sold >= supply  -> 100
    """
    sold = int(tokens_sold)
    supply = int(max_supply)

    if supply <= 0:
        return MIN_PROGRESS
    if sold <= 0:
        return MIN_PROGRESS
    if sold >= supply:
        return MAX_PROGRESS

    # Scale by 10000 first to keep 2 decimal places
    progress_scaled = (sold * 10000) // supply
    progress = max(progress_scaled, 0) / PERCENTAGE_PRECISION

    return min(max(progress, MIN_PROGRESS), MAX_PROGRESS)


# ============================================================
# PRICE CHANGE
# ============================================================

@dataclass(frozen=True)
class PriceChange:
    """Change between two consecutive price samples."""

    direction: PriceDirection
    amount: int
    """Absolute difference, always >= 0."""

    basis_points: int
    """Signed change in hundredths of a percent."""

    @property
    def percentage(self) -> float:
        """Signed change percentage with 2 decimal places."""
        return self.basis_points / PERCENTAGE_PRECISION


NO_CHANGE = PriceChange(direction=PriceDirection.UNCHANGED, amount=0, basis_points=0)


def calculate_price_change(current: int, previous: Optional[int]) -> PriceChange:
    """
    Direction, magnitude and percentage of a price move.

    Magnitude is larger-minus-smaller; the sign is attached from
    the comparison so the math never depends on negative deltas.
    """
    if previous is None:
        return NO_CHANGE

    if current > previous:
        direction = PriceDirection.UP
        amount = current - previous
    elif current < previous:
        direction = PriceDirection.DOWN
        amount = previous - current
    else:
        return NO_CHANGE

    if previous == 0:
        # No meaningful percentage from a zero base
        return PriceChange(direction=direction, amount=amount, basis_points=0)

    magnitude = (amount * 10000) // previous
    sign = 1 if direction == PriceDirection.UP else -1

    return PriceChange(direction=direction, amount=amount, basis_points=sign * magnitude)


# ============================================================
# UINT256 HANDLING
# ============================================================

def u256_from_words(low: Any, high: Any) -> int:
    """
    Rebuild a uint256 from its (low, high) 128-bit words.

    Raises:
        ValueError: If a word is negative or wider than 128 bits
    """
    low_int = normalize_felt(low)
    high_int = normalize_felt(high)

    for name, word in (("low", low_int), ("high", high_int)):
        if word < 0 or word >= U128_LIMIT:
            raise ValueError(f"u256 {name} word out of range: {word}")

    return low_int + (high_int << 128)


def parse_u256(value: Any) -> int:
    """
    Parse a uint256 from a contract response.

    Accepts an int, a decimal or hex string, or a mapping with
    "low" and "high" words. Anything else parses as 0.
    """
    if isinstance(value, Mapping) and "low" in value and "high" in value:
        return u256_from_words(value["low"], value["high"])

    try:
        return normalize_felt(value)
    except ValueError:
        return 0


def safe_divide(numerator: int, denominator: int) -> int:
    """Integer division that returns 0 for a zero denominator."""
    if denominator == 0:
        return 0
    return numerator // denominator


def unit_price(amount: int, counter_value: int, decimals: int = DEFAULT_DECIMALS) -> int:
    """Counter value paid per whole token: counter_value * 10**decimals / amount."""
    if amount == 0:
        return 0
    return (counter_value * 10 ** decimals) // amount


# ============================================================
# DISPLAY HELPERS
# ============================================================

def format_units(
    value: int,
    decimals: int = DEFAULT_DECIMALS,
    display_decimals: int = 4,
) -> str:
    """
    Format a base-unit integer as a human-readable amount.

    Trailing zeros of the fractional part are dropped.
    """
    negative = value < 0
    magnitude = -value if negative else value

    divisor = 10 ** decimals
    integer_part = magnitude // divisor
    fractional_part = magnitude % divisor

    fractional_str = str(fractional_part).rjust(decimals, "0")[:display_decimals]
    trimmed = fractional_str.rstrip("0")

    text = f"{integer_part}.{trimmed}" if trimmed else str(integer_part)
    return f"-{text}" if negative else text


def to_base_units(value: Union[int, str, Decimal], decimals: int = DEFAULT_DECIMALS) -> int:
    """
    Convert a human-readable amount into base units.

    Extra fractional digits beyond `decimals` are truncated.
    """
    text = str(value).strip()
    try:
        Decimal(text)
    except InvalidOperation:
        raise ValueError(f"Not a decimal amount: {value!r}")

    negative = text.startswith("-")
    text = text.lstrip("+-")

    integer_part, _, fractional_part = text.partition(".")
    padded = fractional_part.ljust(decimals, "0")[:decimals]
    result = int((integer_part or "0") + padded) if decimals else int(integer_part or "0")

    return -result if negative else result
