"""
chains/abi.py - Minimal static ABI codec.

Only static types are supported (uintN, intN, address, bool, bytesN),
which covers every pool, ladle and ERC20 call the borrow flow makes.
Selectors are hardcoded: keccak256(signature)[:4].
"""

import re
from typing import Any, Sequence

from core.exceptions import AbiEncodingError
from core.validators import is_address

WORD_HEX_LEN = 64

# =============================================================================
# SELECTORS
# =============================================================================

FUNCTION_SELECTORS: dict[str, str] = {
    # Pool
    "sellFYTokenPreview(uint128)": "27bab063",
    "sellFYToken(address,uint128)": "bc3d1c4e",
    "sellBasePreview(uint128)": "13e7bc8c",
    "sellBase(address,uint128)": "bcc1694f",
    "getCache()": "0a0d8686",
    "baseToken()": "c55dae63",
    "fyToken()": "dc3bfba9",
    # ERC20
    "balanceOf(address)": "70a08231",
    "allowance(address,address)": "dd62ed3e",
    "approve(address,uint256)": "095ea7b3",
    "decimals()": "313ce567",
    # Ladle
    "build(bytes6,bytes6,uint8)": "6d4756d7",
    "pour(bytes12,address,int128,int128)": "99d42940",
    "pools(bytes6)": "bf1025f3",
}

# keccak256("VaultBuilt(bytes12,address,bytes6,bytes6)")
VAULT_BUILT_TOPIC = "0x9ac97fd6af059aea8b5fdcb128adb5bcbe11a206b94f81bf9025234e945a0403"

_SIGNATURE_PATTERN = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)\((.*)\)$")
_INT_PATTERN = re.compile(r"^(u?)int(\d*)$")
_BYTES_PATTERN = re.compile(r"^bytes(\d+)$")
_HEX_BODY = re.compile(r"^[0-9a-fA-F]*$")


def parse_signature(signature: str) -> tuple[str, list[str]]:
    """
    Split "name(type1,type2)" into ("name", ["type1", "type2"]).
    """
    match = _SIGNATURE_PATTERN.match(signature.replace(" ", ""))
    if not match:
        raise AbiEncodingError(f"Malformed signature: {signature!r}")
    name, params = match.group(1), match.group(2)
    return name, [p for p in params.split(",") if p]


def selector_for(signature: str) -> str:
    """Hex selector (no 0x) for a known function signature."""
    selector = FUNCTION_SELECTORS.get(signature)
    if selector is None:
        raise AbiEncodingError(
            f"Unknown function signature: {signature}",
            details={"signature": signature},
        )
    return selector


def _int_bits(abi_type: str) -> tuple[bool, int] | None:
    match = _INT_PATTERN.match(abi_type)
    if not match:
        return None
    bits = int(match.group(2) or 256)
    if bits % 8 or not 8 <= bits <= 256:
        raise AbiEncodingError(f"Unsupported integer type: {abi_type}")
    return match.group(1) == "u", bits


def _bytes_size(abi_type: str) -> int | None:
    match = _BYTES_PATTERN.match(abi_type)
    if not match:
        return None
    size = int(match.group(1))
    if not 1 <= size <= 32:
        raise AbiEncodingError(f"Unsupported bytes type: {abi_type}")
    return size


# =============================================================================
# ENCODING
# =============================================================================

def encode_word(abi_type: str, value: Any) -> str:
    """Encode a single static value as a 32-byte hex word (no 0x)."""
    if abi_type == "address":
        if not is_address(value):
            raise AbiEncodingError(f"Not an address: {value!r}")
        return value.lower()[2:].zfill(WORD_HEX_LEN)

    if abi_type == "bool":
        return ("1" if value else "0").zfill(WORD_HEX_LEN)

    int_spec = _int_bits(abi_type)
    if int_spec is not None:
        unsigned, bits = int_spec
        if not isinstance(value, int) or isinstance(value, bool):
            raise AbiEncodingError(f"{abi_type} expects int, got {type(value).__name__}")
        if unsigned:
            if not 0 <= value < 2**bits:
                raise AbiEncodingError(f"{value} out of range for {abi_type}")
            return format(value, "x").zfill(WORD_HEX_LEN)
        if not -(2 ** (bits - 1)) <= value < 2 ** (bits - 1):
            raise AbiEncodingError(f"{value} out of range for {abi_type}")
        return format(value % 2**256, "x").zfill(WORD_HEX_LEN)

    size = _bytes_size(abi_type)
    if size is not None:
        raw = value.hex() if isinstance(value, (bytes, bytearray)) else str(value)
        raw = raw[2:] if raw.startswith("0x") else raw
        if len(raw) != size * 2 or not _HEX_BODY.match(raw):
            raise AbiEncodingError(f"{abi_type} expects {size} bytes, got {value!r}")
        return raw.lower().ljust(WORD_HEX_LEN, "0")

    raise AbiEncodingError(f"Unsupported ABI type: {abi_type}")


def encode_call(signature: str, args: Sequence[Any] = ()) -> str:
    """
    Encode calldata for a known function.

    Example:
        encode_call("sellFYTokenPreview(uint128)", [10**18])
        -> "0x27bab063" + 64 hex chars
    """
    _, types = parse_signature(signature)
    if len(types) != len(args):
        raise AbiEncodingError(
            f"{signature} takes {len(types)} args, got {len(args)}",
            details={"signature": signature},
        )
    words = "".join(encode_word(t, a) for t, a in zip(types, args))
    return f"0x{selector_for(signature)}{words}"


def encode_topic(abi_type: str, value: Any) -> str:
    """Encode an indexed event argument as a log topic."""
    return "0x" + encode_word(abi_type, value)


# =============================================================================
# DECODING
# =============================================================================

def strip_hex(data: str) -> str:
    return data[2:] if data.startswith("0x") else data


def decode_word(abi_type: str, word: str) -> Any:
    """Decode one 32-byte hex word (no 0x)."""
    if len(word) != WORD_HEX_LEN:
        raise AbiEncodingError(f"Word must be {WORD_HEX_LEN} hex chars, got {len(word)}")

    if abi_type == "address":
        return "0x" + word[24:]

    if abi_type == "bool":
        return int(word, 16) != 0

    int_spec = _int_bits(abi_type)
    if int_spec is not None:
        unsigned, bits = int_spec
        value = int(word, 16)
        if unsigned:
            return value
        return value - 2**256 if value >= 2**255 else value

    size = _bytes_size(abi_type)
    if size is not None:
        return "0x" + word[: size * 2]

    raise AbiEncodingError(f"Unsupported ABI type: {abi_type}")


def decode_words(types: Sequence[str], data: str, strict: bool = False) -> tuple:
    """
    Decode consecutive static words.

    Args:
        types: ABI types, one per word
        data: hex payload (0x optional), selector already removed
        strict: require the payload to be exactly len(types) words

    Raises:
        AbiEncodingError: payload too short (or not exact when strict)
    """
    body = strip_hex(data)
    needed = WORD_HEX_LEN * len(types)
    if len(body) < needed or (strict and len(body) != needed):
        raise AbiEncodingError(
            f"Expected {len(types)} words, payload has {len(body)} hex chars",
            details={"types": list(types), "raw": data[:100]},
        )
    return tuple(
        decode_word(t, body[i * WORD_HEX_LEN:(i + 1) * WORD_HEX_LEN])
        for i, t in enumerate(types)
    )
