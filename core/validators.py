# PATH: core/validators.py
"""
Validators for on-chain identifiers.

Addresses are 20-byte hex strings; series/ilk identifiers are bytes6
and vault identifiers bytes12, all 0x-prefixed.
"""

import re
from typing import Any

ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")
HEX_PATTERN = re.compile(r"^0x[0-9a-fA-F]*$")


def is_address(value: Any) -> bool:
    """True for a 0x-prefixed 20-byte hex string (checksum not enforced)."""
    return isinstance(value, str) and ADDRESS_PATTERN.match(value) is not None


def is_hex_id(value: Any, size_bytes: int) -> bool:
    """
    True for a 0x-prefixed hex string of exactly size_bytes bytes.

    Example:
        is_hex_id("0x000069f8a660", 6) -> True
    """
    if not isinstance(value, str) or HEX_PATTERN.match(value) is None:
        return False
    return len(value) == 2 + size_bytes * 2


def same_address(a: Any, b: Any) -> bool:
    """Case-insensitive address comparison; False if either is not an address."""
    return is_address(a) and is_address(b) and a.lower() == b.lower()
