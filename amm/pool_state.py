"""
amm/pool_state.py - Pool reads, consistency checks and recovery.

Provides:
- read_pool_state: cached reserves (getCache) vs live token balances
- check_pool_consistency: ladle.pools(series) vs configured pool
- recover_pool: sell pending tokens so the pool is quotable again
"""

import asyncio
from dataclasses import dataclass
from typing import Callable, Optional

from chains.ledger import ContractCall, LedgerClient
from core.constants import PoolRecoveryOutcome
from core.logging import get_logger
from core.models import MarketConfig, PoolState
from core.validators import same_address

logger = get_logger(__name__)


async def read_pool_state(ledger: LedgerClient, pool_address: str) -> PoolState:
    """
    Read cached reserves and live balances of a pool.

    Raises:
        BorrowError: any read failed
    """
    base_token, fy_token, cache = await asyncio.gather(
        ledger.preview(ContractCall(pool_address, "baseToken()", returns=("address",))),
        ledger.preview(ContractCall(pool_address, "fyToken()", returns=("address",))),
        ledger.preview(
            ContractCall(pool_address, "getCache()", returns=("uint104", "uint104", "uint32"))
        ),
    )
    base_cached, fy_cached = cache[0], cache[1]

    base_live, fy_live = await asyncio.gather(
        ledger.preview(
            ContractCall(base_token, "balanceOf(address)", (pool_address,), returns=("uint256",))
        ),
        ledger.preview(
            ContractCall(fy_token, "balanceOf(address)", (pool_address,), returns=("uint256",))
        ),
    )

    state = PoolState.from_reserves(
        base_live=base_live,
        fy_live=fy_live,
        base_cached=base_cached,
        fy_cached=fy_cached,
    )
    logger.debug("Pool state read", extra={"context": {"pool": pool_address, **state.to_dict()}})
    return state


@dataclass(frozen=True)
class PoolConsistency:
    """Configured pool compared with the ladle's registered pool."""
    series_id: str
    configured_pool: str
    onchain_pool: Optional[str] = None
    error: Optional[str] = None

    @property
    def matches(self) -> bool:
        return same_address(self.configured_pool, self.onchain_pool)


async def check_pool_consistency(ledger: LedgerClient, market: MarketConfig) -> PoolConsistency:
    """
    Diagnostic: does the ladle route this series to the configured pool?

    Never raises; read failures are reported on the result.
    """
    try:
        onchain = await ledger.preview(
            ContractCall(market.ladle, "pools(bytes6)", (market.series_id,), returns=("address",))
        )
    except Exception as e:
        logger.warning(
            "Pool consistency check failed",
            extra={"context": {"market": market.key, "error": str(e)}},
        )
        return PoolConsistency(market.series_id, market.pool, error=str(e))

    result = PoolConsistency(market.series_id, market.pool, onchain_pool=onchain)
    if not result.matches:
        logger.warning(
            "Configured pool differs from ladle",
            extra={"context": {"market": market.key, "configured": market.pool, "onchain": onchain}},
        )
    return result


@dataclass(frozen=True)
class PoolRecovery:
    outcome: PoolRecoveryOutcome
    state: PoolState
    tx_refs: tuple = ()

    @property
    def cleaned(self) -> bool:
        return self.outcome in (PoolRecoveryOutcome.ALREADY_CLEAN, PoolRecoveryOutcome.CLEANED)


async def recover_pool(
    ledger: LedgerClient,
    pool_address: str,
    account: str,
    on_status: Optional[Callable[[str], None]] = None,
    on_tx_ref: Optional[Callable[[str], None]] = None,
) -> PoolRecovery:
    """
    Sell pending fy-token, then pending base, with zero minimums.

    A pool whose cache is ahead of its balances cannot be fixed this way
    and is returned untouched (CACHE_GT_LIVE).

    Raises:
        BorrowError: a read or a recovery transaction failed
    """
    state = await read_pool_state(ledger, pool_address)
    if state.cached_exceeds_live:
        return PoolRecovery(PoolRecoveryOutcome.CACHE_GT_LIVE, state)
    if not state.has_pending:
        return PoolRecovery(PoolRecoveryOutcome.ALREADY_CLEAN, state)

    tx_refs = []

    if state.pending_fy > 0:
        if on_status:
            on_status("Fixing pool: selling pending fy")
        receipt = await ledger.submit(
            ContractCall(pool_address, "sellFYToken(address,uint128)", (account, 0),
                         returns=("uint128",), sender=account)
        )
        tx_refs.append(receipt.tx_hash)
        if on_tx_ref:
            on_tx_ref(receipt.tx_hash)
        state = await read_pool_state(ledger, pool_address)

    if state.pending_base > 0:
        if on_status:
            on_status("Fixing pool: selling pending base")
        receipt = await ledger.submit(
            ContractCall(pool_address, "sellBase(address,uint128)", (account, 0),
                         returns=("uint128",), sender=account)
        )
        tx_refs.append(receipt.tx_hash)
        if on_tx_ref:
            on_tx_ref(receipt.tx_hash)
        state = await read_pool_state(ledger, pool_address)

    outcome = PoolRecoveryOutcome.CLEANED if state.is_clean else PoolRecoveryOutcome.STILL_DIRTY
    logger.info(
        "Pool recovery finished",
        extra={"context": {"pool": pool_address, "outcome": outcome.value, "tx_refs": tx_refs}},
    )
    return PoolRecovery(outcome, state, tuple(tx_refs))
