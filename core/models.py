# PATH: core/models.py
"""
Core data models for the borrow engine.

POOL STATE CONTRACT
===================
All reserves are native smallest units (uint128 on-chain).
  healthy:  cached <= live  AND  pending_base == pending_fy == 0
  pending:  live - cached when live > cached, else 0
A pool that is not healthy is never quoted (fail-closed).

QUOTE CONTRACT
==============
A Quote is either a success (input_amount, output_amount set and
output_amount >= desired_output) or a failure (failure reason set).
output_amount is always an actual sampled curve response, never an
estimate. Quotes are produced fresh per request and never cached.

POSITION KEY CONTRACT
=====================
  borrow:vaultId:{owner_lowercase}:{series_id}:{ilk_id}
Deterministic per (owner, series, collateral type).
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from core.constants import (
    DEFAULT_SLIPPAGE_BPS,
    ErrorCode,
    FlowStep,
    POSITION_KEY_PREFIX,
    QUOTE_FAILURE_MESSAGES,
    QuoteFailureReason,
    U128_MAX,
)
from core.exceptions import ConfigError
from core.validators import is_address, is_hex_id

if TYPE_CHECKING:
    from amm.revert import RevertHint, RevertInfo


# ============================================================================
# POOL
# ============================================================================

@dataclass(frozen=True)
class PoolState:
    """Live balances and cached reserves of a bond pool."""
    base_reserve_live: int
    fy_reserve_live: int
    base_reserve_cached: int
    fy_reserve_cached: int
    pending_base: int = 0
    pending_fy: int = 0

    @classmethod
    def from_reserves(
        cls,
        base_live: int,
        fy_live: int,
        base_cached: int,
        fy_cached: int,
    ) -> "PoolState":
        """Build a state deriving pending amounts from live minus cached."""
        return cls(
            base_reserve_live=base_live,
            fy_reserve_live=fy_live,
            base_reserve_cached=base_cached,
            fy_reserve_cached=fy_cached,
            pending_base=base_live - base_cached if base_live > base_cached else 0,
            pending_fy=fy_live - fy_cached if fy_live > fy_cached else 0,
        )

    @property
    def cached_exceeds_live(self) -> bool:
        return (
            self.base_reserve_cached > self.base_reserve_live
            or self.fy_reserve_cached > self.fy_reserve_live
        )

    @property
    def has_pending(self) -> bool:
        return self.pending_base != 0 or self.pending_fy != 0

    @property
    def is_clean(self) -> bool:
        return not self.cached_exceeds_live and not self.has_pending

    def to_dict(self) -> Dict[str, Any]:
        return {
            "base_reserve_live": str(self.base_reserve_live),
            "fy_reserve_live": str(self.fy_reserve_live),
            "base_reserve_cached": str(self.base_reserve_cached),
            "fy_reserve_cached": str(self.fy_reserve_cached),
            "pending_base": str(self.pending_base),
            "pending_fy": str(self.pending_fy),
            "cached_exceeds_live": self.cached_exceeds_live,
            "is_clean": self.is_clean,
        }


# ============================================================================
# QUOTE
# ============================================================================

@dataclass(frozen=True)
class Bracket:
    """
    Search interval for the quote engine.

    low is known-insufficient (or never sampled), high is known-sufficient
    or U128_MAX as a last resort.
    """
    low: int
    high: int

    def __post_init__(self):
        if self.low < 0 or self.high > U128_MAX or self.low >= self.high:
            raise ValueError(
                f"Invalid bracket [{self.low}, {self.high}]: "
                f"need 0 <= low < high <= U128_MAX"
            )

    @property
    def width(self) -> int:
        return self.high - self.low


@dataclass(frozen=True)
class Quote:
    """Result of inverting the pool curve for a desired output."""
    desired_output: int
    input_amount: Optional[int] = None
    output_amount: Optional[int] = None
    failure: Optional[QuoteFailureReason] = None
    message: str = ""
    revert: Optional["RevertInfo"] = None
    samples_used: int = 0

    @classmethod
    def success(cls, desired_output: int, input_amount: int, output_amount: int, samples_used: int) -> "Quote":
        return cls(
            desired_output=desired_output,
            input_amount=input_amount,
            output_amount=output_amount,
            samples_used=samples_used,
        )

    @classmethod
    def failed(
        cls,
        desired_output: int,
        reason: QuoteFailureReason,
        message: str = "",
        revert: Optional["RevertInfo"] = None,
        samples_used: int = 0,
    ) -> "Quote":
        return cls(
            desired_output=desired_output,
            failure=reason,
            message=message or QUOTE_FAILURE_MESSAGES[reason],
            revert=revert,
            samples_used=samples_used,
        )

    @property
    def ok(self) -> bool:
        return self.failure is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "desired_output": str(self.desired_output),
            "input_amount": None if self.input_amount is None else str(self.input_amount),
            "output_amount": None if self.output_amount is None else str(self.output_amount),
            "failure": self.failure.value if self.failure else None,
            "message": self.message,
            "revert_selector": self.revert.selector if self.revert else None,
            "samples_used": self.samples_used,
        }


# ============================================================================
# MARKET / SESSION / POSITION
# ============================================================================

@dataclass(frozen=True)
class MarketConfig:
    """One borrowable series: collateral type, debt series and its pool."""
    key: str
    chain_id: int
    ladle: str
    cauldron: str
    pool: str
    collateral_token: str
    collateral_join: str
    series_id: str
    ilk_id: str
    collateral_decimals: int
    base_decimals: int
    collateral_symbol: str = ""
    base_symbol: str = ""
    helper: Optional[str] = None

    @classmethod
    def from_dict(cls, key: str, data: Dict[str, Any]) -> "MarketConfig":
        """
        Build from a markets.yaml entry.

        Raises:
            ConfigError: missing field or malformed address/identifier
        """
        required = (
            "chain_id", "ladle", "cauldron", "pool", "collateral_token",
            "collateral_join", "series_id", "ilk_id",
            "collateral_decimals", "base_decimals",
        )
        missing = [name for name in required if name not in data]
        if missing:
            raise ConfigError(
                f"Market {key} is missing fields: {', '.join(missing)}",
                details={"market": key, "missing": missing},
            )

        for name in ("ladle", "cauldron", "pool", "collateral_token", "collateral_join"):
            if not is_address(data[name]):
                raise ConfigError(
                    f"Market {key}: {name} is not an address: {data[name]!r}",
                    details={"market": key, "field": name},
                )
        helper = data.get("helper")
        if helper is not None and not is_address(helper):
            raise ConfigError(f"Market {key}: helper is not an address: {helper!r}")

        for name in ("series_id", "ilk_id"):
            if not is_hex_id(data[name], 6):
                raise ConfigError(
                    f"Market {key}: {name} must be bytes6 hex: {data[name]!r}",
                    details={"market": key, "field": name},
                )

        return cls(
            key=key,
            chain_id=int(data["chain_id"]),
            ladle=data["ladle"],
            cauldron=data["cauldron"],
            pool=data["pool"],
            collateral_token=data["collateral_token"],
            collateral_join=data["collateral_join"],
            series_id=data["series_id"],
            ilk_id=data["ilk_id"],
            collateral_decimals=int(data["collateral_decimals"]),
            base_decimals=int(data["base_decimals"]),
            collateral_symbol=data.get("collateral_symbol", ""),
            base_symbol=data.get("base_symbol", ""),
            helper=helper,
        )


@dataclass
class WalletSession:
    """
    Session-scoped handles injected into the orchestrator.

    Balance and allowance are the caller's last known values; None means
    unknown. The orchestrator updates allowance after approving.
    """
    address: Optional[str] = None
    chain_id: Optional[int] = None
    collateral_balance: Optional[int] = None
    allowance: Optional[int] = None


def position_key(owner: str, series_id: str, ilk_id: str) -> str:
    """
    Deterministic store key for a position.

    Example:
        position_key("0xAbC...", "0x000069f8a660", "0x555344540000")
        -> "borrow:vaultId:0xabc...:0x000069f8a660:0x555344540000"
    """
    return f"{POSITION_KEY_PREFIX}:{owner.lower()}:{series_id.lower()}:{ilk_id.lower()}"


@dataclass
class Position:
    """A vault pairing posted collateral with minted debt."""
    owner: str
    series_id: str
    ilk_id: str
    position_id: Optional[str] = None
    collateral_amount: int = 0
    debt_amount: int = 0

    @property
    def key(self) -> str:
        return position_key(self.owner, self.series_id, self.ilk_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "position_id": self.position_id,
            "owner": self.owner,
            "series_id": self.series_id,
            "ilk_id": self.ilk_id,
            "collateral_amount": str(self.collateral_amount),
            "debt_amount": str(self.debt_amount),
        }


# ============================================================================
# FLOW
# ============================================================================

@dataclass(frozen=True)
class BorrowParams:
    """Human amounts as typed by the user."""
    collateral_amount: str
    borrow_amount: str
    slippage_bps: int = DEFAULT_SLIPPAGE_BPS


@dataclass(frozen=True)
class FlowFailure:
    """Why a borrow flow stopped, in renderable form."""
    code: ErrorCode
    message: str
    step: Optional[FlowStep] = None
    quote_reason: Optional[QuoteFailureReason] = None
    revert: Optional["RevertInfo"] = None
    hint: Optional["RevertHint"] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "step": self.step.value if self.step else None,
            "quote_reason": self.quote_reason.value if self.quote_reason else None,
            "revert_selector": self.revert.selector if self.revert else None,
        }


@dataclass(frozen=True)
class FlowState:
    """Snapshot emitted at every flow transition."""
    step: FlowStep = FlowStep.IDLE
    last_tx_ref: Optional[str] = None
    last_error: Optional[FlowFailure] = None

    @property
    def is_terminal(self) -> bool:
        return self.step in (FlowStep.DONE, FlowStep.FAILED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step.value,
            "last_tx_ref": self.last_tx_ref,
            "last_error": self.last_error.to_dict() if self.last_error else None,
        }


@dataclass
class FlowResult:
    """Terminal outcome of one borrow submission."""
    state: FlowState
    position: Optional[Position] = None
    quote: Optional[Quote] = None
    tx_refs: List[str] = field(default_factory=list)
    discarded: bool = False

    @property
    def ok(self) -> bool:
        return self.state.step == FlowStep.DONE

    @property
    def position_id(self) -> Optional[str]:
        return self.position.position_id if self.position else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "state": self.state.to_dict(),
            "position": self.position.to_dict() if self.position else None,
            "quote": self.quote.to_dict() if self.quote else None,
            "tx_refs": list(self.tx_refs),
            "discarded": self.discarded,
        }
