"""
amm/revert.py - Revert classification.

Turns opaque failure objects from the ledger into typed causes.

DECODE PIPELINE (fixed priority, first match wins):
  1. Raw payload found (data / cause.data / cause.cause.data /
     error.data / error.cause.data):
       selector = payload[:10]
       decode against POOL schema, then HELPER schema
       no structural match -> source from contract address
  2. No payload: selector scraped from the message text,
     source from "address: 0x..." in the message or an explicit
     contract address field, compared with known pool/helper.
  3. Nothing usable: RevertInfo with selector None, source UNKNOWN.

Failure objects may be exceptions (attributes, __cause__) or JSON-RPC
error mappings. classify() never raises.
"""

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from chains.abi import decode_words
from core.constants import RevertSource
from core.exceptions import AbiEncodingError
from core.validators import is_address, same_address

# Pool errors: keccak256(signature)[:4]
SELECTOR_NOT_ENOUGH_BASE_IN = "0x68744619"            # NotEnoughBaseIn(uint256,uint256)
SELECTOR_SLIPPAGE_DURING_MINT = "0xd48b6b81"          # SlippageDuringMint(uint256,uint256,uint256)
SELECTOR_NEGATIVE_INTEREST_RATES = "0xb24d9e1b"       # NegativeInterestRatesNotAllowed(uint128,uint128)

REVERT_SELECTOR_FROM_MESSAGE = re.compile(r"(?:^|[^a-fA-F0-9])(0x[a-fA-F0-9]{8})(?![a-fA-F0-9])")
ERROR_ADDRESS_FROM_MESSAGE = re.compile(r"address:\s*(0x[a-fA-F0-9]{40})", re.IGNORECASE)
_HEX_PAYLOAD = re.compile(r"^0x[0-9a-fA-F]{8,}$")


# =============================================================================
# SCHEMAS
# =============================================================================

@dataclass(frozen=True)
class ErrorDef:
    """A custom error: name and static argument types."""
    name: str
    arg_types: tuple = ()

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(self.arg_types)})"


@dataclass(frozen=True)
class ErrorSchema:
    """Custom errors one contract can revert with, keyed by selector."""
    source: RevertSource
    errors: dict = field(default_factory=dict)

    def decode(self, data: str) -> Optional[tuple[ErrorDef, tuple]]:
        """
        Structural decode: known selector and exactly the expected words.

        Returns None when the payload does not belong to this schema.
        """
        error_def = self.errors.get(data[:10].lower())
        if error_def is None:
            return None
        try:
            args = decode_words(error_def.arg_types, data[10:], strict=True)
        except AbiEncodingError:
            return None
        return error_def, args


POOL_ERROR_SCHEMA = ErrorSchema(
    source=RevertSource.POOL,
    errors={
        SELECTOR_NOT_ENOUGH_BASE_IN: ErrorDef("NotEnoughBaseIn", ("uint256", "uint256")),
        SELECTOR_SLIPPAGE_DURING_MINT: ErrorDef("SlippageDuringMint", ("uint256", "uint256", "uint256")),
        SELECTOR_NEGATIVE_INTEREST_RATES: ErrorDef(
            "NegativeInterestRatesNotAllowed", ("uint128", "uint128")
        ),
    },
)

HELPER_ERROR_SCHEMA = ErrorSchema(
    source=RevertSource.HELPER,
    errors={
        "0x1f2a2005": ErrorDef("ZeroAmount"),
        "0x1c276dfe": ErrorDef("UnsupportedPool", ("address",)),
        "0xbb11282e": ErrorDef("MinLpOutNotMet", ("uint256", "uint256")),
    },
)


# =============================================================================
# RESULTS
# =============================================================================

@dataclass(frozen=True)
class RevertContext:
    """Known contract addresses used to attribute a revert."""
    pool_address: Optional[str] = None
    helper_address: Optional[str] = None


@dataclass(frozen=True)
class RevertInfo:
    """Everything recoverable about one failure."""
    selector: Optional[str]
    matched_against: RevertSource = RevertSource.UNKNOWN
    error_name: Optional[str] = None
    args: Optional[tuple] = None
    data: Optional[str] = None
    contract_address: Optional[str] = None

    @property
    def decoded(self) -> bool:
        return self.error_name is not None


@dataclass(frozen=True)
class NotEnoughInputAvailable:
    """Pool saw less input than the operation needs."""
    available: int
    needed: int
    selector: str = SELECTOR_NOT_ENOUGH_BASE_IN

    @property
    def shortfall(self) -> int:
        return self.needed - self.available if self.needed > self.available else 0

    @property
    def has_amounts(self) -> bool:
        return self.available != 0 or self.needed != 0


@dataclass(frozen=True)
class SlippageExceeded:
    """Pool ratio moved outside the caller's bounds."""
    observed_ratio: int
    min_ratio: int
    max_ratio: int
    selector: str = SELECTOR_SLIPPAGE_DURING_MINT

    @property
    def has_amounts(self) -> bool:
        return any((self.observed_ratio, self.min_ratio, self.max_ratio))


RevertHint = Union[NotEnoughInputAvailable, SlippageExceeded]


# =============================================================================
# EXTRACTION
# =============================================================================

_ALIASES = {
    "short_message": ("short_message", "shortMessage"),
    "contract_address": ("contract_address", "contractAddress"),
}


def _field(obj: Any, name: str) -> Any:
    """Read a field from a mapping or an object, trying camelCase aliases."""
    if obj is None:
        return None
    for key in _ALIASES.get(name, (name,)):
        if isinstance(obj, Mapping):
            value = obj.get(key)
        else:
            value = getattr(obj, key, None)
        if value is not None:
            return value
    return None


def _cause(obj: Any) -> Any:
    value = _field(obj, "cause")
    if value is None and isinstance(obj, BaseException):
        value = obj.__cause__
    return value


def _candidates(failure: Any) -> list:
    """Failure shapes in lookup order: direct, nested cause, nested error."""
    cause = _cause(failure)
    error = _field(failure, "error")
    return [failure, cause, _cause(cause), error, _cause(error)]


def _as_payload(value: Any) -> Optional[str]:
    if isinstance(value, (bytes, bytearray)):
        value = "0x" + bytes(value).hex()
    if isinstance(value, str) and _HEX_PAYLOAD.match(value):
        return value.lower()
    return None


def extract_revert_data(failure: Any) -> Optional[str]:
    """First payload that looks like selector + args, lower-cased."""
    for candidate in _candidates(failure):
        payload = _as_payload(_field(candidate, "data"))
        if payload is not None:
            return payload
    return None


def extract_message(failure: Any) -> str:
    """Short message if present, else message, else str() of an exception."""
    for name in ("short_message", "message"):
        value = _field(failure, name)
        if isinstance(value, str) and value:
            return value
    if isinstance(failure, BaseException):
        return str(failure)
    if isinstance(failure, str):
        return failure
    return ""


def extract_contract_address(failure: Any) -> Optional[str]:
    """Explicit address fields first, then "address: 0x..." in the message."""
    for candidate in (failure, _cause(failure), _field(failure, "error")):
        for name in ("contract_address", "address"):
            value = _field(candidate, name)
            if is_address(value):
                return value

    match = ERROR_ADDRESS_FROM_MESSAGE.search(extract_message(failure))
    if match and is_address(match.group(1)):
        return match.group(1)
    return None


def selector_from_message(message: str) -> Optional[str]:
    match = REVERT_SELECTOR_FROM_MESSAGE.search(message or "")
    return match.group(1).lower() if match else None


# =============================================================================
# CLASSIFIER
# =============================================================================

class RevertClassifier:
    """
    Classify ledger failures against the pool and helper error schemas.

    Usage:
        classifier = RevertClassifier(RevertContext(pool_address=pool))
        info = classifier.classify(caught)
        hint = classifier.hint(caught)
    """

    def __init__(
        self,
        context: Optional[RevertContext] = None,
        schemas: tuple = (POOL_ERROR_SCHEMA, HELPER_ERROR_SCHEMA),
    ):
        self.context = context or RevertContext()
        self.schemas = schemas

    def _source_from_address(self, address: Optional[str], context: RevertContext) -> RevertSource:
        if same_address(address, context.pool_address):
            return RevertSource.POOL
        if same_address(address, context.helper_address):
            return RevertSource.HELPER
        return RevertSource.UNKNOWN

    def classify(self, failure: Any, context: Optional[RevertContext] = None) -> RevertInfo:
        context = context or self.context
        data = extract_revert_data(failure)
        contract_address = extract_contract_address(failure)
        address_source = self._source_from_address(contract_address, context)

        if data is not None:
            for schema in self.schemas:
                decoded = schema.decode(data)
                if decoded is not None:
                    error_def, args = decoded
                    return RevertInfo(
                        selector=data[:10],
                        matched_against=schema.source,
                        error_name=error_def.name,
                        args=args,
                        data=data,
                        contract_address=contract_address,
                    )
            return RevertInfo(
                selector=data[:10],
                matched_against=address_source,
                data=data,
                contract_address=contract_address,
            )

        return RevertInfo(
            selector=selector_from_message(extract_message(failure)),
            matched_against=address_source,
            contract_address=contract_address,
        )

    def hint(self, failure: Any, context: Optional[RevertContext] = None) -> Optional[RevertHint]:
        """
        Promote the two business-meaningful pool errors to typed hints.

        Selector-only matches are promoted with zero amounts unless the
        revert is attributed to the helper, whose selectors may collide.
        """
        return self.hint_from_info(self.classify(failure, context))

    @staticmethod
    def hint_from_info(info: RevertInfo) -> Optional[RevertHint]:
        selector = info.selector
        args = info.args or ()

        if selector == SELECTOR_NOT_ENOUGH_BASE_IN and info.error_name == "NotEnoughBaseIn":
            return NotEnoughInputAvailable(available=args[0], needed=args[1])
        if selector == SELECTOR_SLIPPAGE_DURING_MINT and info.error_name == "SlippageDuringMint":
            return SlippageExceeded(observed_ratio=args[0], min_ratio=args[1], max_ratio=args[2])

        if info.matched_against == RevertSource.HELPER:
            return None
        if selector == SELECTOR_NOT_ENOUGH_BASE_IN:
            return NotEnoughInputAvailable(available=0, needed=0)
        if selector == SELECTOR_SLIPPAGE_DURING_MINT:
            return SlippageExceeded(observed_ratio=0, min_ratio=0, max_ratio=0)
        return None

    def describe(
        self,
        failure: Any,
        fallback: str = "Transaction failed",
        context: Optional[RevertContext] = None,
    ) -> str:
        """Human-readable reason; never includes the raw payload."""
        return describe_revert(self.classify(failure, context), fallback)


def describe_revert(info: RevertInfo, fallback: str = "Transaction failed") -> str:
    hint = RevertClassifier.hint_from_info(info)
    selector = info.selector

    suffix = ""
    if info.contract_address and info.matched_against in (RevertSource.UNKNOWN, RevertSource.HELPER):
        suffix = f" (source: {info.matched_against.value.lower()} @ {info.contract_address})"

    if isinstance(hint, NotEnoughInputAvailable):
        if not hint.has_amounts:
            return (
                f"Pool rejected the input: NotEnoughBaseIn (revert {hint.selector}). "
                f"Increase the base amount or reduce the fy amount, then retry.{suffix}"
            )
        return (
            f"Pool rejected the input: NotEnoughBaseIn (revert {hint.selector}). "
            f"Pool sees {hint.available} available but needs {hint.needed} "
            f"(shortfall {hint.shortfall}).{suffix}"
        )

    if isinstance(hint, SlippageExceeded):
        if not hint.has_amounts:
            return (
                f"Pool rejected ratio bounds (revert {hint.selector}). "
                f"Try a smaller size or retry after the pool updates.{suffix}"
            )
        return (
            f"Pool rejected ratio bounds (revert {hint.selector}). "
            f"observed={hint.observed_ratio}, min={hint.min_ratio}, max={hint.max_ratio}. "
            f"Try a smaller size or retry after the pool updates.{suffix}"
        )

    if selector == SELECTOR_NEGATIVE_INTEREST_RATES:
        return (
            f"Pool rejected trade: negative interest rates not allowed. "
            f"Try a smaller amount. (revert {selector})"
        )

    if selector in (SELECTOR_NOT_ENOUGH_BASE_IN, SELECTOR_SLIPPAGE_DURING_MINT):
        return f"{fallback}: reverted via helper (revert {selector}), details unavailable.{suffix}"

    if info.error_name:
        args = ", ".join(str(a) for a in info.args or ())
        return f"{fallback}: {info.error_name}({args}) (revert {selector}){suffix}"

    if selector:
        return f"{fallback} (revert {selector}){suffix}"
    return f"{fallback}{suffix}"
