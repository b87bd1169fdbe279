"""
chains/ledger.py - Remote ledger client.

The borrow engine talks to the chain only through LedgerClient:
- preview(call): simulate, no state change
- submit(call): simulate, broadcast, wait for a confirmed receipt
- current_block_height()
- event_logs_since(from_height, log_filter)

RPCLedgerClient implements it on top of RPCProvider. Transactions are
sent with eth_sendTransaction, so signing stays with the wallet/node
that owns the sender account.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Protocol

from chains.abi import decode_words, encode_call, parse_signature
from chains.providers import RPCProvider
from core.constants import DEFAULT_RECEIPT_POLL_INTERVAL_S, DEFAULT_RECEIPT_TIMEOUT_S
from core.exceptions import (
    TransactionRevertedError,
    TransactionTimeoutError,
    ValidationError,
)
from core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ContractCall:
    """
    One contract function invocation.

    Usage:
        ContractCall(
            to=pool,
            signature="sellFYTokenPreview(uint128)",
            args=(10**18,),
            returns=("uint128",),
        )
    """
    to: str
    signature: str
    args: tuple = ()
    returns: tuple = ()
    sender: Optional[str] = None

    @property
    def function_name(self) -> str:
        return parse_signature(self.signature)[0]

    def encode(self) -> str:
        return encode_call(self.signature, self.args)

    def decode_result(self, data: Optional[str]) -> Any:
        """Single return → value, several → tuple, none → None."""
        if not self.returns:
            return None
        values = decode_words(self.returns, data or "0x")
        return values[0] if len(values) == 1 else values

    def describe(self) -> dict:
        return {"to": self.to, "function": self.function_name, "sender": self.sender}


@dataclass(frozen=True)
class LogFilter:
    """Address plus positional topics (None = wildcard)."""
    address: str
    topics: tuple = ()
    to_height: Optional[int] = None


@dataclass(frozen=True)
class LogEntry:
    """One decoded-enough event log."""
    address: str
    topics: tuple
    data: str
    block_number: int
    log_index: int
    tx_hash: Optional[str] = None


@dataclass(frozen=True)
class Receipt:
    """Confirmed transaction receipt."""
    tx_hash: str
    block_number: int
    status: int
    result: Any = None
    logs: tuple = field(default_factory=tuple)


class LedgerClient(Protocol):
    """Contract the engine needs from the remote execution environment."""

    async def preview(self, call: ContractCall) -> Any: ...

    async def submit(self, call: ContractCall) -> Receipt: ...

    async def current_block_height(self) -> int: ...

    async def event_logs_since(self, from_height: int, log_filter: LogFilter) -> list[LogEntry]: ...


def _hex_int(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, int):
        return value
    return int(value, 16)


def parse_log(raw: dict) -> LogEntry:
    """Convert an eth_getLogs entry to LogEntry."""
    return LogEntry(
        address=raw.get("address", ""),
        topics=tuple(raw.get("topics") or ()),
        data=raw.get("data") or "0x",
        block_number=_hex_int(raw.get("blockNumber")),
        log_index=_hex_int(raw.get("logIndex")),
        tx_hash=raw.get("transactionHash"),
    )


def sort_logs(logs: Iterable[LogEntry]) -> list[LogEntry]:
    """Chain order: block number, then log index."""
    return sorted(logs, key=lambda log: (log.block_number, log.log_index))


class RPCLedgerClient:
    """
    LedgerClient over JSON-RPC.

    Usage:
        ledger = RPCLedgerClient(provider)
        out = await ledger.preview(call)
        receipt = await ledger.submit(call_with_sender)
    """

    def __init__(
        self,
        provider: RPCProvider,
        poll_interval_s: float = DEFAULT_RECEIPT_POLL_INTERVAL_S,
        receipt_timeout_s: float = DEFAULT_RECEIPT_TIMEOUT_S,
    ):
        self.provider = provider
        self.poll_interval_s = poll_interval_s
        self.receipt_timeout_s = receipt_timeout_s

    async def preview(self, call: ContractCall) -> Any:
        """
        Simulate a call and decode its return value.

        Raises:
            ContractRevertError: the contract reverted
            InfraError: transport failure
        """
        response = await self.provider.eth_call(
            to=call.to,
            data=call.encode(),
            sender=call.sender,
        )
        return call.decode_result(response.result)

    async def submit(self, call: ContractCall) -> Receipt:
        """
        Simulate, broadcast and wait for confirmation.

        The simulated return value is carried on the receipt (for
        example the vault id returned by build()).

        Raises:
            ContractRevertError: simulation reverted, nothing was sent
            TransactionRevertedError: mined with status 0
            TransactionTimeoutError: no receipt before the deadline
        """
        if not call.sender:
            raise ValidationError(
                f"{call.function_name} needs a sender to be submitted",
                details=call.describe(),
            )

        result = await self.preview(call)

        tx_hash = await self.provider.send_transaction(
            {"from": call.sender, "to": call.to, "data": call.encode()}
        )
        logger.info(
            "Transaction sent",
            extra={"context": {**call.describe(), "tx_hash": tx_hash}},
        )

        raw = await self._wait_for_receipt(tx_hash)
        status = _hex_int(raw.get("status"))
        receipt = Receipt(
            tx_hash=tx_hash,
            block_number=_hex_int(raw.get("blockNumber")),
            status=status,
            result=result,
            logs=tuple(parse_log(log) for log in raw.get("logs") or ()),
        )

        if status != 1:
            raise TransactionRevertedError(
                tx_hash,
                details={**call.describe(), "block_number": receipt.block_number},
            )

        logger.info(
            "Transaction confirmed",
            extra={"context": {"tx_hash": tx_hash, "block_number": receipt.block_number}},
        )
        return receipt

    async def _wait_for_receipt(self, tx_hash: str) -> dict:
        deadline = time.monotonic() + self.receipt_timeout_s
        while True:
            raw = await self.provider.get_transaction_receipt(tx_hash)
            if raw is not None:
                return raw
            if time.monotonic() >= deadline:
                raise TransactionTimeoutError(tx_hash, self.receipt_timeout_s)
            await asyncio.sleep(self.poll_interval_s)

    async def current_block_height(self) -> int:
        block_number, _ = await self.provider.get_block_number()
        return block_number

    async def event_logs_since(self, from_height: int, log_filter: LogFilter) -> list[LogEntry]:
        """Logs matching log_filter from from_height, in chain order."""
        params: dict[str, Any] = {
            "address": log_filter.address,
            "fromBlock": hex(max(from_height, 0)),
            "toBlock": hex(log_filter.to_height) if log_filter.to_height is not None else "latest",
        }
        if log_filter.topics:
            params["topics"] = list(log_filter.topics)

        raw_logs = await self.provider.get_logs(params)
        return sort_logs(parse_log(raw) for raw in raw_logs)
