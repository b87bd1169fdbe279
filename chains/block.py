"""
chains/block.py - Block height helpers.

Provides:
- Block height fetching with latency tracking
- Lookback window clamping for log scans
"""

from dataclasses import dataclass

from core.time import elapsed_ms, now_ms
from core.logging import get_logger
from chains.ledger import LedgerClient

logger = get_logger(__name__)


@dataclass(frozen=True)
class BlockState:
    """Block height observed at a point in time."""
    block_number: int
    timestamp_ms: int
    latency_ms: int

    def age_ms(self) -> int:
        return now_ms() - self.timestamp_ms


async def fetch_block_state(ledger: LedgerClient) -> BlockState:
    """
    Fetch current block height through the ledger client.

    Raises:
        InfraError: if the height cannot be read
    """
    start_ms = now_ms()
    block_number = await ledger.current_block_height()
    state = BlockState(
        block_number=block_number,
        timestamp_ms=now_ms(),
        latency_ms=elapsed_ms(start_ms),
    )
    logger.debug(
        "Fetched block height",
        extra={"context": {"block_number": block_number, "latency_ms": state.latency_ms}},
    )
    return state


def lookback_start(current_height: int, window: int) -> int:
    """
    First block of a lookback window, never below genesis.

    Example:
        lookback_start(100, 3_000_000) -> 0
    """
    return current_height - window if current_height > window else 0
