"""
service.py - Presentation-facing facade for one borrow market.

Wires provider -> ledger -> sampler/classifier -> quote engine ->
orchestrator for a configured market and exposes the operations a UI
or CLI needs.

Usage:
    service = BorrowService.from_config("celo_kesm", session)
    quote = await service.quote_amount("5000")
    result = await service.submit_borrow(BorrowParams("100", "5000"))
    await service.close()
"""

from pathlib import Path
from typing import Any, AsyncIterator, Callable, Optional

from amm.pool_state import (
    PoolConsistency,
    PoolRecovery,
    check_pool_consistency,
    read_pool_state,
    recover_pool,
)
from amm.quote import QuoteEngine
from amm.revert import RevertClassifier, RevertContext, RevertHint
from amm.sampler import CurveSampler
from chains.ledger import ContractCall, LedgerClient, RPCLedgerClient
from chains.providers import RPCProvider
from config import get_chain_config_by_id, get_market_config
from core.constants import QuoteFailureReason
from core.exceptions import BorrowError, WalletUnavailableError
from core.logging import get_logger
from core.math import parse_units
from core.models import (
    BorrowParams,
    FlowResult,
    FlowState,
    MarketConfig,
    PoolState,
    Quote,
    WalletSession,
    position_key,
)
from execution.discovery import discover_position_id
from execution.orchestrator import PositionOrchestrator
from execution.position_store import (
    InMemoryPositionStore,
    JsonFilePositionStore,
    PositionStore,
)

logger = get_logger(__name__)


class BorrowService:
    """Quote, borrow and diagnose one market for one wallet session."""

    def __init__(
        self,
        market: MarketConfig,
        ledger: LedgerClient,
        store: Optional[PositionStore] = None,
        session: Optional[WalletSession] = None,
        provider: Optional[RPCProvider] = None,
    ):
        self.market = market
        self.ledger = ledger
        self.store = store or InMemoryPositionStore()
        self.session = session or WalletSession()
        self.provider = provider

        self.classifier = RevertClassifier(
            RevertContext(pool_address=market.pool, helper_address=market.helper)
        )
        self.sampler = CurveSampler(ledger, market.pool)
        self.engine = QuoteEngine(self.sampler, self.classifier)
        self.orchestrator = PositionOrchestrator(
            ledger=ledger,
            market=market,
            quote_engine=self.engine,
            store=self.store,
            session=self.session,
            classifier=self.classifier,
        )

    @classmethod
    def from_config(
        cls,
        market_key: str,
        session: Optional[WalletSession] = None,
        store_path: Optional[Path] = None,
        config_dir: Optional[Path] = None,
    ) -> "BorrowService":
        """
        Build a service from markets.yaml and chains.yaml.

        Raises:
            KeyError: unknown market or chain
            ConfigError: malformed market entry
        """
        market = get_market_config(market_key, config_dir)
        chain = get_chain_config_by_id(market.chain_id, config_dir)
        provider = RPCProvider(
            chain_id=market.chain_id,
            rpc_urls=chain.get("rpc_urls", []),
            timeout_seconds=chain.get("timeout_seconds", 10),
        )
        store = JsonFilePositionStore(store_path) if store_path else InMemoryPositionStore()
        return cls(market, RPCLedgerClient(provider), store, session, provider)

    async def close(self) -> None:
        if self.provider is not None:
            await self.provider.close()

    async def refresh_wallet(self) -> WalletSession:
        """
        Read chain id, collateral balance and join allowance for the signer.

        Raises:
            WalletUnavailableError: no signer address
            BorrowError: a read failed
        """
        owner = self.session.address
        if not owner:
            raise WalletUnavailableError()

        if self.provider is not None:
            self.session.chain_id = await self.provider.get_chain_id()
        token = self.market.collateral_token
        self.session.collateral_balance = await self.ledger.preview(
            ContractCall(token, "balanceOf(address)", (owner,), returns=("uint256",))
        )
        self.session.allowance = await self.ledger.preview(
            ContractCall(
                token,
                "allowance(address,address)",
                (owner, self.market.collateral_join),
                returns=("uint256",),
            )
        )
        return self.session

    # =========================================================================
    # QUOTES & POOL
    # =========================================================================

    async def pool_state(self) -> PoolState:
        return await read_pool_state(self.ledger, self.market.pool)

    async def quote(self, desired_output: int) -> Quote:
        """
        Fresh quote against the current pool state.

        A pool state read failure is reported as PREVIEW_UNAVAILABLE.
        """
        if desired_output <= 0:
            return Quote.failed(desired_output, QuoteFailureReason.INVALID_REQUEST)
        try:
            state = await self.pool_state()
        except Exception as e:
            logger.warning(
                "Pool state unavailable",
                extra={"context": {"market": self.market.key, "error": str(e)}},
            )
            return Quote.failed(
                desired_output,
                QuoteFailureReason.PREVIEW_UNAVAILABLE,
                message=f"Pool state unavailable: {e.message if isinstance(e, BorrowError) else e}",
            )
        return await self.engine.quote_minimum_input_for_desired_output(desired_output, state)

    async def quote_amount(self, amount: str) -> Quote:
        """Quote for a human base amount, e.g. "5000"."""
        return await self.quote(parse_units(amount, self.market.base_decimals))

    async def check_pool(self) -> PoolConsistency:
        return await check_pool_consistency(self.ledger, self.market)

    async def recover_pool(self, on_status: Optional[Callable[[str], None]] = None) -> PoolRecovery:
        if not self.session.address:
            raise WalletUnavailableError()
        return await recover_pool(self.ledger, self.market.pool, self.session.address, on_status=on_status)

    # =========================================================================
    # POSITIONS
    # =========================================================================

    def stored_position_id(self) -> Optional[str]:
        if not self.session.address:
            return None
        return self.store.get(position_key(self.session.address, self.market.series_id, self.market.ilk_id))

    async def discover_position(self) -> Optional[str]:
        if not self.session.address:
            raise WalletUnavailableError()
        return await discover_position_id(
            self.ledger,
            self.market.cauldron,
            self.session.address,
            self.market.series_id,
            self.market.ilk_id,
        )

    # =========================================================================
    # BORROW
    # =========================================================================

    async def submit_borrow(
        self,
        params: BorrowParams,
        on_status: Optional[Callable[[FlowState], None]] = None,
    ) -> FlowResult:
        return await self.orchestrator.run(params, on_status=on_status)

    def stream_borrow(self, params: BorrowParams) -> AsyncIterator[FlowState]:
        return self.orchestrator.stream(params)

    def abandon(self) -> None:
        self.orchestrator.abandon()

    # =========================================================================
    # FAILURES
    # =========================================================================

    def classify_failure(self, error: Any) -> Optional[RevertHint]:
        return self.classifier.hint(error)

    def describe_failure(self, error: Any, fallback: str = "Transaction failed") -> str:
        return self.classifier.describe(error, fallback)
