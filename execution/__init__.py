# PATH: execution/__init__.py
"""
Borrow execution layer.

This module contains the execution layer components:
- state_machine: borrow flow steps and transitions
- orchestrator: runs approve -> build -> pour -> sell
- position_store: persisted vault ids
- discovery: vault rediscovery from VaultBuilt logs
"""

from execution.state_machine import (
    BorrowFlowMachine,
    StepTransition,
    VALID_TRANSITIONS,
)
from execution.position_store import (
    InMemoryPositionStore,
    JsonFilePositionStore,
    PositionStore,
)
from execution.discovery import discover_position_id
from execution.orchestrator import (
    BorrowRequest,
    PositionOrchestrator,
)

__all__ = [
    # State machine
    "BorrowFlowMachine",
    "StepTransition",
    "VALID_TRANSITIONS",
    # Store
    "InMemoryPositionStore",
    "JsonFilePositionStore",
    "PositionStore",
    # Discovery
    "discover_position_id",
    # Orchestrator
    "BorrowRequest",
    "PositionOrchestrator",
]
