"""
Starknet selector helpers.

A selector is the Starknet keccak of a name: keccak-256 of
the ASCII name, truncated to its low 250 bits. Event keys[0]
and entry point selectors both use it.
"""

from typing import Any, Union

from eth_utils import keccak


MASK_250 = (1 << 250) - 1


def starknet_keccak(data: bytes) -> int:
    """keccak-256 of data, masked to 250 bits."""
    return int.from_bytes(keccak(data), "big") & MASK_250


def selector_from_name(name: str) -> int:
    """Selector of an event or entry point name."""
    return starknet_keccak(name.encode("ascii"))


def normalize_felt(value: Union[int, str, Any]) -> int:
    """
    Felt as int, so "0x0ab", "0xAB" and 171 compare equal.

    Raises:
        ValueError: If the value is not an int or numeric string
    """
    if isinstance(value, bool):
        raise ValueError(f"Not a felt: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text.lower().startswith("0x"):
            return int(text, 16)
        return int(text, 10)
    raise ValueError(f"Not a felt: {value!r}")


def felt_to_hex(value: int) -> str:
    """Canonical 0x-prefixed lowercase hex."""
    return hex(value)
