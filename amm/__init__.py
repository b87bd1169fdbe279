"""
amm/ - Pool curve access, quoting and revert classification.

Modules:
- sampler: single-point curve evaluation through preview calls
- quote: minimum-input search (bracketing + bisection)
- revert: revert payload classification and hints
- pool_state: pool reads, consistency diagnostics, recovery
"""

from amm.revert import (
    NotEnoughInputAvailable,
    RevertClassifier,
    RevertContext,
    RevertHint,
    RevertInfo,
    SlippageExceeded,
    describe_revert,
)
from amm.sampler import CurveSampler
from amm.quote import QuoteEngine
from amm.pool_state import (
    PoolConsistency,
    PoolRecovery,
    check_pool_consistency,
    read_pool_state,
    recover_pool,
)

__all__ = [
    "CurveSampler",
    "QuoteEngine",
    "NotEnoughInputAvailable",
    "RevertClassifier",
    "RevertContext",
    "RevertHint",
    "RevertInfo",
    "SlippageExceeded",
    "describe_revert",
    "PoolConsistency",
    "PoolRecovery",
    "check_pool_consistency",
    "read_pool_state",
    "recover_pool",
]
