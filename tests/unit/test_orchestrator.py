"""
tests/unit/test_orchestrator.py - Borrow flow orchestration tests.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from amm.quote import QuoteEngine
from amm.revert import NotEnoughInputAvailable, SELECTOR_NOT_ENOUGH_BASE_IN
from amm.sampler import CurveSampler
from chains.abi import VAULT_BUILT_TOPIC, encode_topic
from chains.ledger import LogEntry
from core.constants import ErrorCode, FlowStep, QuoteFailureReason
from core.exceptions import FlowBusyError
from core.models import BorrowParams, position_key
from execution.orchestrator import PositionOrchestrator
from execution.position_store import InMemoryPositionStore

from conftest import (
    FakeLedger,
    NodeFailure,
    OWNER,
    POOL,
    VAULT_ID,
    install_curve,
    install_pool_state,
    revert,
)

ONE = 10**18
PARAMS = BorrowParams(collateral_amount="100", borrow_amount="1")


class GatedLedger(FakeLedger):
    """Blocks the first submit until released."""

    def __init__(self):
        super().__init__()
        self.entered = asyncio.Event()
        self.release = asyncio.Event()
        self._gated = True

    async def submit(self, call):
        if self._gated:
            self._gated = False
            self.entered.set()
            await self.release.wait()
        return await super().submit(call)


def prepare(ledger: FakeLedger) -> None:
    install_pool_state(ledger, base_live=10**6 * ONE, fy_live=10**6 * ONE)
    install_curve(ledger, lambda x: x * 9 // 10)
    ledger.on_submit("build(bytes6,bytes6,uint8)", VAULT_ID)


def vault_built_log(market, vault_id: str, block: int) -> LogEntry:
    return LogEntry(
        address=market.cauldron,
        topics=(
            VAULT_BUILT_TOPIC,
            "0x" + vault_id[2:].ljust(64, "0"),
            encode_topic("address", OWNER),
            encode_topic("bytes6", market.series_id),
        ),
        data="0x" + market.ilk_id[2:].ljust(64, "0"),
        block_number=block,
        log_index=0,
    )


def build_orchestrator(ledger, market, session, store=None, **kwargs) -> PositionOrchestrator:
    engine = QuoteEngine(CurveSampler(ledger, market.pool))
    return PositionOrchestrator(
        ledger=ledger,
        market=market,
        quote_engine=engine,
        store=store if store is not None else InMemoryPositionStore(),
        session=session,
        **kwargs,
    )


@pytest.fixture
def store():
    return InMemoryPositionStore()


class TestValidation:
    """Entry checks block submission synchronously."""

    @pytest.mark.asyncio
    async def test_no_signer(self, fake_ledger, market, session, store):
        session.address = None
        orchestrator = build_orchestrator(fake_ledger, market, session, store)

        result = await orchestrator.run(PARAMS)

        assert not result.ok
        assert result.state.step == FlowStep.IDLE
        assert result.state.last_error.code == ErrorCode.WALLET_UNAVAILABLE
        assert fake_ledger.submitted == []

    @pytest.mark.parametrize(
        "collateral,amount",
        [("0", "1"), ("100", "0"), ("-1", "1"), ("abc", "1"), ("1.1234567", "1"), ("1001", "1")],
    )
    @pytest.mark.asyncio
    async def test_bad_amounts(self, fake_ledger, market, session, store, collateral, amount):
        orchestrator = build_orchestrator(fake_ledger, market, session, store)

        result = await orchestrator.run(BorrowParams(collateral, amount))

        assert result.state.last_error.code == ErrorCode.VALIDATION_FAILED
        assert fake_ledger.submitted == []
        assert not orchestrator.busy

    @pytest.mark.asyncio
    async def test_wrong_chain(self, fake_ledger, market, session, store):
        session.chain_id = 8453
        orchestrator = build_orchestrator(fake_ledger, market, session, store)

        result = await orchestrator.run(PARAMS)

        assert result.state.last_error.code == ErrorCode.VALIDATION_FAILED
        assert "42220" in result.state.last_error.message


class TestBorrowFlow:
    """Step sequencing, skips and persistence."""

    @pytest.mark.asyncio
    async def test_full_flow(self, fake_ledger, market, session, store):
        prepare(fake_ledger)
        statuses = []
        orchestrator = build_orchestrator(fake_ledger, market, session, store, on_status=statuses.append)

        result = await orchestrator.run(PARAMS)

        assert result.ok
        assert fake_ledger.submitted_functions() == ["approve", "build", "pour", "sellFYToken"]
        assert [s.step for s in statuses] == [
            FlowStep.APPROVING,
            FlowStep.OPENING_POSITION,
            FlowStep.SUPPLYING_AND_BORROWING,
            FlowStep.SWAPPING,
            FlowStep.DONE,
        ]
        assert result.position_id == VAULT_ID
        assert result.state.last_tx_ref == result.tx_refs[-1]
        assert store.get(position_key(OWNER, market.series_id, market.ilk_id)) == VAULT_ID

        approve, _, pour, sell = fake_ledger.submitted
        assert approve.args == (market.collateral_join, 100 * 10**6)
        assert pour.args == (VAULT_ID, POOL, 100 * 10**6, result.quote.input_amount)
        assert result.quote.output_amount >= ONE
        assert sell.args == (OWNER, ONE * 9_950 // 10_000)
        assert session.allowance == 100 * 10**6

    @pytest.mark.asyncio
    async def test_second_run_reuses_position(self, fake_ledger, market, session, store):
        prepare(fake_ledger)
        orchestrator = build_orchestrator(fake_ledger, market, session, store)

        await orchestrator.run(PARAMS)
        fake_ledger.submitted.clear()
        result = await orchestrator.run(PARAMS)

        assert result.ok
        assert fake_ledger.submitted_functions() == ["pour", "sellFYToken"]

    @pytest.mark.asyncio
    async def test_rediscovered_position_skips_build(self, fake_ledger, market, session, store):
        prepare(fake_ledger)
        session.allowance = 10**30
        fake_ledger.logs = [vault_built_log(market, "0x" + "bb" * 12, block=4_000_000)]
        orchestrator = build_orchestrator(fake_ledger, market, session, store)

        result = await orchestrator.run(PARAMS)

        assert result.ok
        assert fake_ledger.submitted_functions() == ["pour", "sellFYToken"]
        assert result.position_id == "0x" + "bb" * 12
        assert store.get(position_key(OWNER, market.series_id, market.ilk_id)) == result.position_id

    @pytest.mark.asyncio
    async def test_discovery_disabled(self, fake_ledger, market, session, store):
        prepare(fake_ledger)
        session.allowance = 10**30
        orchestrator = build_orchestrator(fake_ledger, market, session, store, discover_positions=False)

        await orchestrator.run(PARAMS)

        assert fake_ledger.log_queries == []

    @pytest.mark.asyncio
    async def test_quote_failure_stops_before_pour(self, fake_ledger, market, session, store):
        prepare(fake_ledger)
        install_pool_state(fake_ledger, base_live=10**6 * ONE, fy_live=10**6 * ONE, base_cached=10**6 * ONE + 1)
        orchestrator = build_orchestrator(fake_ledger, market, session, store)

        result = await orchestrator.run(PARAMS)

        assert result.state.step == FlowStep.FAILED
        failure = result.state.last_error
        assert failure.code == ErrorCode.STEP_FAILED
        assert failure.step == FlowStep.SUPPLYING_AND_BORROWING
        assert failure.quote_reason == QuoteFailureReason.STALE_CACHE
        assert "pour" not in fake_ledger.submitted_functions()
        # the vault built before the failure is kept
        assert store.get(position_key(OWNER, market.series_id, market.ilk_id)) == VAULT_ID

    @pytest.mark.asyncio
    async def test_swap_revert_is_classified(self, fake_ledger, market, session, store):
        prepare(fake_ledger)
        data = SELECTOR_NOT_ENOUGH_BASE_IN + format(500, "x").zfill(64) + format(1000, "x").zfill(64)
        fake_ledger.on_submit("sellFYToken(address,uint128)", revert(data=data))
        orchestrator = build_orchestrator(fake_ledger, market, session, store)

        result = await orchestrator.run(PARAMS)

        failure = result.state.last_error
        assert failure.step == FlowStep.SWAPPING
        assert failure.hint == NotEnoughInputAvailable(available=500, needed=1000)
        assert "NotEnoughBaseIn" in failure.message
        assert data not in failure.message
        assert result.position_id == VAULT_ID
        assert not orchestrator.busy

    @pytest.mark.asyncio
    async def test_vault_id_taken_from_receipt_log(self, fake_ledger, market, session, store):
        prepare(fake_ledger)
        mined_id = "0x" + "cc" * 12
        fake_ledger.on_receipt_logs("build(bytes6,bytes6,uint8)", [
            vault_built_log(market, mined_id, block=fake_ledger.height + 2),
        ])
        orchestrator = build_orchestrator(fake_ledger, market, session, store)

        result = await orchestrator.run(PARAMS)

        assert result.ok
        assert result.position_id == mined_id
        assert store.get(position_key(OWNER, market.series_id, market.ilk_id)) == mined_id
        pour = fake_ledger.submitted[2]
        assert pour.args[0] == mined_id

    @pytest.mark.asyncio
    async def test_build_without_vault_id_fails(self, fake_ledger, market, session, store):
        prepare(fake_ledger)
        fake_ledger.on_submit("build(bytes6,bytes6,uint8)", None)
        orchestrator = build_orchestrator(fake_ledger, market, session, store)

        result = await orchestrator.run(PARAMS)

        assert result.state.step == FlowStep.FAILED
        assert result.state.last_error.step == FlowStep.OPENING_POSITION
        assert fake_ledger.submitted_functions() == ["approve", "build"]
        assert store.get(position_key(OWNER, market.series_id, market.ilk_id)) is None


class TestForeignFailures:
    """Errors outside the BorrowError hierarchy end the flow as data."""

    @pytest.mark.asyncio
    async def test_approve_failure_with_revert_data(self, fake_ledger, market, session, store):
        prepare(fake_ledger)
        data = SELECTOR_NOT_ENOUGH_BASE_IN + format(500, "x").zfill(64) + format(1000, "x").zfill(64)
        fake_ledger.on_submit("approve(address,uint256)", NodeFailure(data=data))
        statuses = []
        orchestrator = build_orchestrator(fake_ledger, market, session, store, on_status=statuses.append)

        result = await orchestrator.run(PARAMS)

        assert result.state.step == FlowStep.FAILED
        failure = result.state.last_error
        assert failure.step == FlowStep.APPROVING
        assert failure.revert.selector == SELECTOR_NOT_ENOUGH_BASE_IN
        assert failure.hint == NotEnoughInputAvailable(available=500, needed=1000)
        assert statuses[-1].step == FlowStep.FAILED
        assert not orchestrator.busy

    @pytest.mark.asyncio
    async def test_plain_error_on_pour(self, fake_ledger, market, session, store):
        prepare(fake_ledger)
        fake_ledger.on_submit("pour(bytes12,address,int128,int128)", ValueError("invalid literal for int()"))
        orchestrator = build_orchestrator(fake_ledger, market, session, store)

        result = await orchestrator.run(PARAMS)

        failure = result.state.last_error
        assert result.state.step == FlowStep.FAILED
        assert failure.step == FlowStep.SUPPLYING_AND_BORROWING
        assert failure.message == "Supplying collateral and borrowing failed: invalid literal for int()"
        assert failure.revert is None
        assert result.position_id == VAULT_ID

    @pytest.mark.asyncio
    async def test_discovery_error_means_no_vault(self, fake_ledger, market, session, store):
        prepare(fake_ledger)
        fake_ledger.event_logs_since = AsyncMock(side_effect=ValueError("bad log"))
        orchestrator = build_orchestrator(fake_ledger, market, session, store)

        result = await orchestrator.run(PARAMS)

        assert result.ok
        assert "build" in fake_ledger.submitted_functions()


class TestSubmissionGuard:
    """One submission at a time; abandoned results are discarded."""

    @pytest.mark.asyncio
    async def test_reentrant_submission_rejected(self, market, session, store):
        ledger = GatedLedger()
        prepare(ledger)
        orchestrator = build_orchestrator(ledger, market, session, store)

        first = asyncio.create_task(orchestrator.run(PARAMS))
        await ledger.entered.wait()

        with pytest.raises(FlowBusyError):
            await orchestrator.run(PARAMS)

        ledger.release.set()
        result = await first
        assert result.ok

    @pytest.mark.asyncio
    async def test_abandoned_flow_is_discarded(self, market, session, store):
        ledger = GatedLedger()
        prepare(ledger)
        statuses = []
        orchestrator = build_orchestrator(ledger, market, session, store, on_status=statuses.append)

        first = asyncio.create_task(orchestrator.run(PARAMS))
        await ledger.entered.wait()
        orchestrator.abandon()
        assert not orchestrator.busy

        ledger.release.set()
        result = await first

        assert result.discarded
        assert [s.step for s in statuses] == [FlowStep.APPROVING]
        assert ledger.submitted_functions() == ["approve"]
        assert orchestrator.last_result is None

    @pytest.mark.asyncio
    async def test_stream_yields_every_transition(self, fake_ledger, market, session, store):
        prepare(fake_ledger)
        session.allowance = 10**30
        orchestrator = build_orchestrator(fake_ledger, market, session, store)

        steps = [state.step async for state in orchestrator.stream(PARAMS)]

        assert steps == [
            FlowStep.OPENING_POSITION,
            FlowStep.SUPPLYING_AND_BORROWING,
            FlowStep.SWAPPING,
            FlowStep.DONE,
        ]
        assert orchestrator.last_result.ok
