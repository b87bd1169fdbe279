# PATH: core/exceptions.py
"""
Typed exceptions for the borrow engine.

Transport and ledger failures raise; quote and flow failures are
returned as data by their components. Revert payloads stay attached
to ContractRevertError so the revert classifier can read them.
"""

from typing import Any, Optional

from core.constants import ErrorCode, FlowStep


class BorrowError(Exception):
    """Base exception for the borrow engine."""

    def __init__(
        self,
        message: str = "",
        code: ErrorCode = ErrorCode.UNKNOWN,
        details: Optional[dict] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def __str__(self):
        return f"[{self.code.value}] {self.message}"


class InfraError(BorrowError):
    """Infrastructure-related errors (RPC, timeouts, rate limits)."""

    def __init__(
        self,
        message: str = "",
        code: ErrorCode = ErrorCode.INFRA_RPC_ERROR,
        details: Optional[dict] = None,
    ):
        super().__init__(message, code, details)


class ContractRevertError(BorrowError):
    """
    A call was rejected by the remote contract.

    Keeps the raw JSON-RPC error object plus the fields the classifier
    looks for: data (revert payload), short_message, contract_address.
    """

    def __init__(
        self,
        message: str,
        data: Optional[str] = None,
        contract_address: Optional[str] = None,
        error: Any = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, ErrorCode.CONTRACT_REVERT, details)
        self.data = data
        self.contract_address = contract_address
        self.error = error
        self.short_message = message


class TransactionRevertedError(BorrowError):
    """A submitted transaction was mined with status 0."""

    def __init__(self, tx_hash: str, details: Optional[dict] = None):
        super().__init__(
            f"Transaction {tx_hash} reverted",
            ErrorCode.TX_REVERTED,
            details,
        )
        self.tx_hash = tx_hash


class TransactionTimeoutError(BorrowError):
    """No receipt arrived before the confirmation deadline."""

    def __init__(self, tx_hash: str, timeout_s: float):
        super().__init__(
            f"No receipt for {tx_hash} after {timeout_s}s",
            ErrorCode.TX_TIMEOUT,
            {"tx_hash": tx_hash, "timeout_s": timeout_s},
        )
        self.tx_hash = tx_hash


class AbiEncodingError(BorrowError):
    """Call could not be encoded or a result could not be decoded."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, ErrorCode.ABI_ENCODING_ERROR, details)


class ValidationError(BorrowError):
    """Input validation failed."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, ErrorCode.VALIDATION_FAILED, details)


class WalletUnavailableError(ValidationError):
    """No signer is connected."""

    def __init__(self, message: str = "Connect a wallet to continue", details: Optional[dict] = None):
        super().__init__(message, details)
        self.code = ErrorCode.WALLET_UNAVAILABLE


class ConfigError(BorrowError):
    """Configuration missing or malformed."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, ErrorCode.CONFIG_ERROR, details)


class InvalidTransitionError(BorrowError):
    """Raised when an invalid flow transition is attempted."""

    def __init__(self, from_step: FlowStep, to_step: FlowStep, valid: list):
        super().__init__(
            f"Cannot transition from {from_step.value} to {to_step.value}. "
            f"Valid transitions: {[s.value for s in valid]}",
            ErrorCode.INVALID_TRANSITION,
            {"from": from_step.value, "to": to_step.value},
        )


class FlowBusyError(BorrowError):
    """A borrow flow is already in flight for this orchestrator."""

    def __init__(self, step: FlowStep):
        super().__init__(
            f"Borrow flow already in progress (step={step.value})",
            ErrorCode.FLOW_BUSY,
            {"step": step.value},
        )
