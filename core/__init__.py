"""
core - Core utilities and models for the borrow engine.

This package contains:
- models.py: Data models (PoolState, Quote, Position, FlowState)
- constants.py: Enums, limits and error codes
- exceptions.py: Typed exceptions with error codes
- math.py: Integer/Decimal amount helpers (no float)
- validators.py: Address and identifier checks
- time.py: Timestamps
- logging.py: Structured JSON logging
"""

from core.constants import (
    ErrorCode,
    FlowStep,
    PoolRecoveryOutcome,
    QuoteFailureReason,
    RevertSource,
    U128_MAX,
)
from core.exceptions import (
    BorrowError,
    ConfigError,
    ContractRevertError,
    FlowBusyError,
    InfraError,
    InvalidTransitionError,
    TransactionRevertedError,
    ValidationError,
    WalletUnavailableError,
)
from core.logging import get_logger, setup_logging
from core.models import (
    Bracket,
    BorrowParams,
    FlowFailure,
    FlowResult,
    FlowState,
    MarketConfig,
    PoolState,
    Position,
    Quote,
    WalletSession,
    position_key,
)

__all__ = [
    # Constants
    "ErrorCode",
    "FlowStep",
    "PoolRecoveryOutcome",
    "QuoteFailureReason",
    "RevertSource",
    "U128_MAX",
    # Exceptions
    "BorrowError",
    "ConfigError",
    "ContractRevertError",
    "FlowBusyError",
    "InfraError",
    "InvalidTransitionError",
    "TransactionRevertedError",
    "ValidationError",
    "WalletUnavailableError",
    # Models
    "Bracket",
    "BorrowParams",
    "FlowFailure",
    "FlowResult",
    "FlowState",
    "MarketConfig",
    "PoolState",
    "Position",
    "Quote",
    "WalletSession",
    "position_key",
    # Logging
    "get_logger",
    "setup_logging",
]
