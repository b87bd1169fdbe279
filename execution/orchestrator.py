# PATH: execution/orchestrator.py
"""
Borrow flow orchestrator.

Sequences the on-chain steps of a fixed-rate borrow:

  approve(join, collateral)              only if allowance unknown or short
  build(series, ilk, 0) -> vault id      only if no id is stored/discovered
  pour(vault, pool, +collateral, +fy)    fy sized by the quote engine
  sellFYToken(owner, desired * 9950 / 10000)

Each step is confirmed before the next one starts. A failure stops the
flow without rollback: an approval or a vault that already exists is
reused by the next submission, so resubmitting is cheap.

One submission at a time. abandon() bumps the submission token; results
of an abandoned flow are discarded and never reported.
"""

import asyncio
from dataclasses import dataclass
from typing import AsyncIterator, Callable, List, Optional

from amm.pool_state import read_pool_state
from amm.quote import QuoteEngine
from amm.revert import RevertClassifier, RevertContext, describe_revert
from chains.ledger import ContractCall, LedgerClient, Receipt
from core.constants import ErrorCode, FlowStep
from core.exceptions import (
    BorrowError,
    ContractRevertError,
    FlowBusyError,
    ValidationError,
    WalletUnavailableError,
)
from core.logging import get_logger
from core.math import apply_slippage_floor, parse_units
from core.models import (
    BorrowParams,
    FlowFailure,
    FlowResult,
    FlowState,
    MarketConfig,
    Position,
    Quote,
    WalletSession,
    position_key,
)
from execution.discovery import built_vault_id, discover_position_id
from execution.position_store import PositionStore
from execution.state_machine import BorrowFlowMachine

logger = get_logger(__name__)

StatusCallback = Callable[[FlowState], None]

STEP_LABELS = {
    FlowStep.APPROVING: "Approval",
    FlowStep.OPENING_POSITION: "Opening position",
    FlowStep.SUPPLYING_AND_BORROWING: "Supplying collateral and borrowing",
    FlowStep.SWAPPING: "Swap",
}


@dataclass(frozen=True)
class BorrowRequest:
    """Validated borrow amounts in native units."""
    owner: str
    collateral_amount: int
    borrow_amount: int
    slippage_bps: int


class _Abandoned(Exception):
    """Internal: the submission token changed under a running flow."""


class _StepFailed(Exception):
    """Internal: a step produced a failure that is not an exception."""

    def __init__(self, failure: FlowFailure):
        super().__init__(failure.message)
        self.failure = failure


class PositionOrchestrator:
    """
    Run the borrow flow for one market and one wallet session.

    Usage:
        orchestrator = PositionOrchestrator(ledger, market, engine, store, session)
        result = await orchestrator.run(BorrowParams("100", "5000"))

        async for state in orchestrator.stream(params):
            render(state)
    """

    def __init__(
        self,
        ledger: LedgerClient,
        market: MarketConfig,
        quote_engine: QuoteEngine,
        store: PositionStore,
        session: Optional[WalletSession] = None,
        classifier: Optional[RevertClassifier] = None,
        on_status: Optional[StatusCallback] = None,
        discover_positions: bool = True,
    ):
        self.ledger = ledger
        self.market = market
        self.quote_engine = quote_engine
        self.store = store
        self.session = session or WalletSession()
        self.classifier = classifier or RevertClassifier(
            RevertContext(pool_address=market.pool, helper_address=market.helper)
        )
        self.on_status = on_status
        self.discover_positions = discover_positions

        self._token = 0
        self._busy = False
        self._machine: Optional[BorrowFlowMachine] = None
        self.last_result: Optional[FlowResult] = None

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def state(self) -> FlowState:
        if self._machine is None:
            return FlowState()
        return FlowState(step=self._machine.step, last_tx_ref=self._machine.last_tx_ref)

    def abandon(self) -> None:
        """Detach the running flow; its remaining results are discarded."""
        if self._busy:
            logger.info(
                "Borrow flow abandoned",
                extra={"context": {"market": self.market.key, "token": self._token}},
            )
        self._token += 1
        self._busy = False

    def _is_current(self, token: int) -> bool:
        return token == self._token

    def _check_current(self, token: int) -> None:
        if not self._is_current(token):
            raise _Abandoned()

    # =========================================================================
    # VALIDATION
    # =========================================================================

    def validate(self, params: BorrowParams) -> BorrowRequest:
        """
        Synchronous entry checks; nothing is submitted when they fail.

        Raises:
            WalletUnavailableError: no signer
            ValidationError: bad amounts, balance or network
        """
        owner = self.session.address
        if not owner:
            raise WalletUnavailableError()

        try:
            collateral = parse_units(params.collateral_amount, self.market.collateral_decimals)
            borrow = parse_units(params.borrow_amount, self.market.base_decimals)
        except ValidationError as e:
            raise ValidationError(f"Invalid amount: {e.message}", details=e.details) from e

        if collateral <= 0:
            raise ValidationError("Collateral amount must be greater than zero")
        if borrow <= 0:
            raise ValidationError("Borrow amount must be greater than zero")

        balance = self.session.collateral_balance
        if balance is not None and collateral > balance:
            raise ValidationError(
                "Collateral amount exceeds wallet balance",
                details={"collateral": str(collateral), "balance": str(balance)},
            )

        if self.session.chain_id != self.market.chain_id:
            raise ValidationError(
                f"Switch to chain {self.market.chain_id} to borrow",
                details={"selected": self.session.chain_id, "required": self.market.chain_id},
            )

        # Range check only; the floor itself is computed when swapping.
        apply_slippage_floor(borrow, params.slippage_bps)

        return BorrowRequest(
            owner=owner,
            collateral_amount=collateral,
            borrow_amount=borrow,
            slippage_bps=params.slippage_bps,
        )

    # =========================================================================
    # RUN
    # =========================================================================

    async def run(self, params: BorrowParams, on_status: Optional[StatusCallback] = None) -> FlowResult:
        """
        Validate and execute one borrow submission.

        Flow failures are returned on the result, not raised.

        Raises:
            FlowBusyError: another submission is in flight
        """
        if self._busy:
            raise FlowBusyError(self._machine.step if self._machine else FlowStep.IDLE)

        try:
            request = self.validate(params)
        except ValidationError as e:
            state = FlowState(last_error=FlowFailure(code=e.code, message=e.message))
            logger.warning(
                "Borrow rejected",
                extra={"context": {"market": self.market.key, "code": e.code.value, "error": e.message}},
            )
            self._emit(state, on_status)
            result = FlowResult(state=state)
            self.last_result = result
            return result

        self._token += 1
        token = self._token
        self._busy = True
        machine = BorrowFlowMachine(flow_id=f"{self.market.key}-{token}")
        self._machine = machine

        try:
            result = await self._execute(token, machine, request, on_status)
        finally:
            if self._is_current(token):
                self._busy = False

        if not result.discarded:
            self.last_result = result
        return result

    async def stream(self, params: BorrowParams) -> AsyncIterator[FlowState]:
        """
        Run a submission and yield every status update.

        The terminal FlowResult is left on last_result.
        """
        queue: asyncio.Queue = asyncio.Queue()

        async def _drive() -> FlowResult:
            try:
                return await self.run(params, on_status=queue.put_nowait)
            finally:
                queue.put_nowait(None)

        task = asyncio.create_task(_drive())
        while True:
            state = await queue.get()
            if state is None:
                break
            yield state
        await task

    def _emit(self, state: FlowState, on_status: Optional[StatusCallback]) -> None:
        for callback in (self.on_status, on_status):
            if callback is not None:
                callback(state)

    def _advance(
        self,
        token: int,
        machine: BorrowFlowMachine,
        step: FlowStep,
        on_status: Optional[StatusCallback],
    ) -> None:
        self._check_current(token)
        machine.transition_to(step)
        logger.info(
            "Borrow step",
            extra={"context": {"flow_id": machine.flow_id, "step": step.value, "last_tx_ref": machine.last_tx_ref}},
        )
        self._emit(FlowState(step=step, last_tx_ref=machine.last_tx_ref), on_status)

    async def _submit(self, machine: BorrowFlowMachine, tx_refs: List[str], call: ContractCall) -> Receipt:
        receipt = await self.ledger.submit(call)
        machine.record_tx(receipt.tx_hash)
        tx_refs.append(receipt.tx_hash)
        return receipt

    # =========================================================================
    # STEPS
    # =========================================================================

    def _needs_approval(self, collateral: int) -> bool:
        allowance = self.session.allowance
        return allowance is None or allowance < collateral

    async def _known_position_id(self, owner: str, key: str) -> Optional[str]:
        position_id = self.store.get(key)
        if position_id or not self.discover_positions:
            return position_id

        try:
            position_id = await discover_position_id(
                self.ledger,
                self.market.cauldron,
                owner,
                self.market.series_id,
                self.market.ilk_id,
            )
        except Exception as e:
            logger.warning(
                "Vault rediscovery failed",
                extra={"context": {"market": self.market.key, "error": str(e)}},
            )
            return None

        if position_id:
            self.store.set(key, position_id)
        return position_id

    async def _execute(
        self,
        token: int,
        machine: BorrowFlowMachine,
        request: BorrowRequest,
        on_status: Optional[StatusCallback],
    ) -> FlowResult:
        market = self.market
        owner = request.owner
        key = position_key(owner, market.series_id, market.ilk_id)
        position = Position(
            owner=owner,
            series_id=market.series_id,
            ilk_id=market.ilk_id,
            collateral_amount=request.collateral_amount,
        )
        tx_refs: List[str] = []
        quote: Optional[Quote] = None

        try:
            if self._needs_approval(request.collateral_amount):
                self._advance(token, machine, FlowStep.APPROVING, on_status)
                await self._submit(machine, tx_refs, ContractCall(
                    market.collateral_token,
                    "approve(address,uint256)",
                    (market.collateral_join, request.collateral_amount),
                    returns=("bool",),
                    sender=owner,
                ))
                self.session.allowance = request.collateral_amount
                self._check_current(token)

            position_id = await self._known_position_id(owner, key)
            if not position_id:
                self._advance(token, machine, FlowStep.OPENING_POSITION, on_status)
                receipt = await self._submit(machine, tx_refs, ContractCall(
                    market.ladle,
                    "build(bytes6,bytes6,uint8)",
                    (market.series_id, market.ilk_id, 0),
                    returns=("bytes12",),
                    sender=owner,
                ))
                position_id = built_vault_id(receipt, market.cauldron)
                if position_id is None:
                    logger.warning(
                        "VaultBuilt log missing from receipt, using simulated vault id",
                        extra={"context": {"tx_hash": receipt.tx_hash, "position_id": receipt.result}},
                    )
                    position_id = receipt.result
                if not position_id:
                    raise _StepFailed(FlowFailure(
                        code=ErrorCode.STEP_FAILED,
                        message="Opening position failed: no vault id in the receipt",
                        step=FlowStep.OPENING_POSITION,
                    ))
                # Persisted even if abandoned: the vault exists on-chain.
                self.store.set(key, position_id)
                logger.info(
                    "Position opened",
                    extra={"context": {"key": key, "position_id": position_id, "tx_hash": receipt.tx_hash}},
                )
            position.position_id = position_id

            self._advance(token, machine, FlowStep.SUPPLYING_AND_BORROWING, on_status)
            pool_state = await read_pool_state(self.ledger, market.pool)
            quote = await self.quote_engine.quote_minimum_input_for_desired_output(
                request.borrow_amount, pool_state
            )
            self._check_current(token)
            if not quote.ok:
                raise _StepFailed(FlowFailure(
                    code=ErrorCode.STEP_FAILED,
                    message=quote.message,
                    step=FlowStep.SUPPLYING_AND_BORROWING,
                    quote_reason=quote.failure,
                    revert=quote.revert,
                ))

            await self._submit(machine, tx_refs, ContractCall(
                market.ladle,
                "pour(bytes12,address,int128,int128)",
                (position_id, market.pool, request.collateral_amount, quote.input_amount),
                sender=owner,
            ))
            position.debt_amount = quote.input_amount

            self._advance(token, machine, FlowStep.SWAPPING, on_status)
            min_out = apply_slippage_floor(request.borrow_amount, request.slippage_bps)
            await self._submit(machine, tx_refs, ContractCall(
                market.pool,
                "sellFYToken(address,uint128)",
                (owner, min_out),
                returns=("uint128",),
                sender=owner,
            ))

            self._advance(token, machine, FlowStep.DONE, on_status)

        except _Abandoned:
            return self._discarded(machine, position, quote, tx_refs)
        except _StepFailed as e:
            return self._failed(token, machine, e.failure, position, quote, tx_refs, on_status)
        except Exception as e:
            failure = self._failure_from_error(machine.step, e)
            return self._failed(token, machine, failure, position, quote, tx_refs, on_status)

        logger.info(
            "Borrow flow done",
            extra={"context": {"flow_id": machine.flow_id, "position_id": position.position_id, "tx_refs": tx_refs}},
        )
        return FlowResult(
            state=FlowState(step=FlowStep.DONE, last_tx_ref=machine.last_tx_ref),
            position=position,
            quote=quote,
            tx_refs=tx_refs,
        )

    # =========================================================================
    # FAILURE
    # =========================================================================

    def _failure_from_error(self, step: FlowStep, error: Exception) -> FlowFailure:
        """Failure data for any error raised by a step, in whatever shape."""
        label = STEP_LABELS.get(step, "Borrow")
        revert = self.classifier.classify(error)
        if isinstance(error, ContractRevertError) or revert.selector is not None:
            return FlowFailure(
                code=ErrorCode.STEP_FAILED,
                message=describe_revert(revert, fallback=f"{label} failed"),
                step=step,
                revert=revert,
                hint=self.classifier.hint_from_info(revert),
            )
        detail = error.message if isinstance(error, BorrowError) else str(error) or type(error).__name__
        return FlowFailure(
            code=ErrorCode.STEP_FAILED,
            message=f"{label} failed: {detail}",
            step=step,
        )

    def _failed(
        self,
        token: int,
        machine: BorrowFlowMachine,
        failure: FlowFailure,
        position: Position,
        quote: Optional[Quote],
        tx_refs: List[str],
        on_status: Optional[StatusCallback],
    ) -> FlowResult:
        if not self._is_current(token):
            return self._discarded(machine, position, quote, tx_refs)

        machine.fail(reason=failure.message)
        state = FlowState(step=FlowStep.FAILED, last_tx_ref=machine.last_tx_ref, last_error=failure)
        logger.warning(
            "Borrow flow failed",
            extra={"context": {"flow_id": machine.flow_id, **failure.to_dict()}},
        )
        self._emit(state, on_status)
        return FlowResult(state=state, position=position, quote=quote, tx_refs=tx_refs)

    def _discarded(
        self,
        machine: BorrowFlowMachine,
        position: Position,
        quote: Optional[Quote],
        tx_refs: List[str],
    ) -> FlowResult:
        logger.info(
            "Discarding abandoned flow result",
            extra={"context": {"flow_id": machine.flow_id, "step": machine.step.value}},
        )
        return FlowResult(
            state=FlowState(step=machine.step, last_tx_ref=machine.last_tx_ref),
            position=position,
            quote=quote,
            tx_refs=tx_refs,
            discarded=True,
        )
