# PATH: core/constants.py
"""
Constants for the borrow engine.

Contains enums, numeric limits and flow defaults shared by the
quote engine, the revert classifier and the borrow orchestrator.
"""

from enum import Enum
from typing import Final

# =============================================================================
# NUMERIC LIMITS
# =============================================================================

# Pool amounts are uint128 on-chain; previews revert outside this range.
U128_MAX: Final[int] = 2**128 - 1
U256_MAX: Final[int] = 2**256 - 1

BPS_DENOMINATOR: Final[int] = 10_000

# Swap floor applied between quoting and selling the minted debt.
DEFAULT_SLIPPAGE_BPS: Final[int] = 50

# Search budgets (samples, not wall-clock)
MAX_EXPANSION_SAMPLES: Final[int] = 32
MAX_BISECTION_SAMPLES: Final[int] = 40

# Vault rediscovery window (VaultBuilt logs)
VAULT_DISCOVERY_LOOKBACK_BLOCKS: Final[int] = 3_000_000

# Receipt polling
DEFAULT_RECEIPT_POLL_INTERVAL_S: Final[float] = 1.0
DEFAULT_RECEIPT_TIMEOUT_S: Final[float] = 120.0

POSITION_KEY_PREFIX: Final[str] = "borrow:vaultId"


class ErrorCode(str, Enum):
    """
    Error codes carried by exceptions and flow failures.

    INFRA_RPC_ERROR comes from the transport, the rest from the
    ledger, the orchestrator and configuration.
    """
    # Infrastructure
    INFRA_RPC_ERROR = "INFRA_RPC_ERROR"

    # Ledger
    CONTRACT_REVERT = "CONTRACT_REVERT"
    TX_REVERTED = "TX_REVERTED"
    TX_TIMEOUT = "TX_TIMEOUT"
    ABI_ENCODING_ERROR = "ABI_ENCODING_ERROR"

    # Orchestration
    WALLET_UNAVAILABLE = "WALLET_UNAVAILABLE"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    STEP_FAILED = "STEP_FAILED"
    FLOW_BUSY = "FLOW_BUSY"
    INVALID_TRANSITION = "INVALID_TRANSITION"

    # Config
    CONFIG_ERROR = "CONFIG_ERROR"

    UNKNOWN = "UNKNOWN"


class QuoteFailureReason(str, Enum):
    """Why a quote could not be produced."""
    INVALID_REQUEST = "INVALID_REQUEST"
    STALE_CACHE = "STALE_CACHE"
    PENDING_SETTLEMENT = "PENDING_SETTLEMENT"
    INSUFFICIENT_LIQUIDITY = "INSUFFICIENT_LIQUIDITY"
    PREVIEW_UNAVAILABLE = "PREVIEW_UNAVAILABLE"
    PREVIEW_REVERTED = "PREVIEW_REVERTED"
    NEGATIVE_RATE_REJECTED = "NEGATIVE_RATE_REJECTED"
    QUOTE_BELOW_DESIRED = "QUOTE_BELOW_DESIRED"


QUOTE_FAILURE_MESSAGES: Final[dict] = {
    QuoteFailureReason.INVALID_REQUEST: "Enter an amount greater than zero.",
    QuoteFailureReason.STALE_CACHE: (
        "Pool cache is ahead of its balances; quoting is paused until the pool syncs."
    ),
    QuoteFailureReason.PENDING_SETTLEMENT: (
        "Pool holds unsettled tokens; recover the pool before borrowing."
    ),
    QuoteFailureReason.INSUFFICIENT_LIQUIDITY: "Not enough liquidity in the pool for this amount.",
    QuoteFailureReason.PREVIEW_UNAVAILABLE: "Pool preview is unavailable for this amount.",
    QuoteFailureReason.PREVIEW_REVERTED: "Pool preview reverted at the quoted size.",
    QuoteFailureReason.NEGATIVE_RATE_REJECTED: (
        "Pool rejected trade: negative interest rates not allowed. Try a smaller amount."
    ),
    QuoteFailureReason.QUOTE_BELOW_DESIRED: (
        "Quote did not reach the requested amount; try again."
    ),
}


class RevertSource(str, Enum):
    """Which known contract schema a revert was attributed to."""
    POOL = "POOL"
    HELPER = "HELPER"
    UNKNOWN = "UNKNOWN"


class FlowStep(str, Enum):
    """Borrow flow steps."""
    IDLE = "IDLE"
    APPROVING = "APPROVING"
    OPENING_POSITION = "OPENING_POSITION"
    SUPPLYING_AND_BORROWING = "SUPPLYING_AND_BORROWING"
    SWAPPING = "SWAPPING"
    DONE = "DONE"
    FAILED = "FAILED"


class PoolRecoveryOutcome(str, Enum):
    """Result of a pool recovery attempt."""
    CACHE_GT_LIVE = "CACHE_GT_LIVE"
    ALREADY_CLEAN = "ALREADY_CLEAN"
    CLEANED = "CLEANED"
    STILL_DIRTY = "STILL_DIRTY"
