"""
chains/ - Blockchain interaction layer.

Modules:
- providers: JSON-RPC provider management with failover
- abi: static ABI codec and selector table
- ledger: preview/submit/log client used by the engine
- block: block height helpers
"""

from chains.providers import (
    RPCProvider,
    RPCResponse,
    RPCStats,
)
from chains.ledger import (
    ContractCall,
    LedgerClient,
    LogEntry,
    LogFilter,
    Receipt,
    RPCLedgerClient,
)
from chains.block import (
    BlockState,
    fetch_block_state,
    lookback_start,
)

__all__ = [
    # Providers
    "RPCProvider",
    "RPCResponse",
    "RPCStats",
    # Ledger
    "ContractCall",
    "LedgerClient",
    "LogEntry",
    "LogFilter",
    "Receipt",
    "RPCLedgerClient",
    # Block
    "BlockState",
    "fetch_block_state",
    "lookback_start",
]
