"""
tests/unit/test_service.py - BorrowService facade and CLI wiring.
"""

import json
import logging

import pytest
from click.testing import CliRunner

import run_borrow
from amm.revert import NotEnoughInputAvailable, SELECTOR_NEGATIVE_INTEREST_RATES, SELECTOR_NOT_ENOUGH_BASE_IN
from core.constants import FlowStep, QuoteFailureReason
from core.exceptions import WalletUnavailableError
from core.models import BorrowParams, WalletSession
from execution.position_store import InMemoryPositionStore
from service import BorrowService

from conftest import NodeFailure, OWNER, VAULT_ID, install_curve, install_pool_state, revert

ONE = 10**18


def _close_all_handlers():
    for handler in logging.root.handlers[:]:
        handler.close()
        logging.root.removeHandler(handler)


@pytest.fixture
def service(fake_ledger, market, session):
    return BorrowService(market, fake_ledger, InMemoryPositionStore(), session)


class TestQuotes:

    @pytest.mark.asyncio
    async def test_quote_amount(self, service, fake_ledger):
        install_pool_state(fake_ledger, base_live=10**6 * ONE, fy_live=10**6 * ONE)
        install_curve(fake_ledger, lambda x: x * 9 // 10)

        quote = await service.quote_amount("9")

        assert quote.ok
        # 40 halvings of a ~9e18 bracket leave the conservative bound within 1e7
        assert 10 * ONE <= quote.input_amount < 10 * ONE + 10**7
        assert quote.output_amount == quote.input_amount * 9 // 10
        assert quote.samples_used == 2 + 40 + 1

    @pytest.mark.asyncio
    async def test_zero_amount_reads_nothing(self, service, fake_ledger):
        quote = await service.quote(0)
        assert quote.failure == QuoteFailureReason.INVALID_REQUEST
        assert fake_ledger.previews == []

    @pytest.mark.asyncio
    async def test_pool_read_failure_is_preview_unavailable(self, service, fake_ledger):
        install_pool_state(fake_ledger, base_live=ONE, fy_live=ONE)
        fake_ledger.on_preview("baseToken()", revert())

        quote = await service.quote(ONE)

        assert quote.failure == QuoteFailureReason.PREVIEW_UNAVAILABLE
        assert quote.message.startswith("Pool state unavailable")

    @pytest.mark.asyncio
    async def test_foreign_pool_read_failure(self, service, fake_ledger):
        install_pool_state(fake_ledger, base_live=ONE, fy_live=ONE)
        fake_ledger.on_preview("getCache()", NodeFailure("connection reset"))

        quote = await service.quote(ONE)

        assert quote.failure == QuoteFailureReason.PREVIEW_UNAVAILABLE
        assert quote.message == "Pool state unavailable: connection reset"


class TestWallet:

    @pytest.mark.asyncio
    async def test_refresh_wallet(self, service, fake_ledger, market):
        fake_ledger.on_preview("balanceOf(address)", 5 * 10**6)
        fake_ledger.on_preview("allowance(address,address)", 10**6)

        session = await service.refresh_wallet()

        assert session.collateral_balance == 5 * 10**6
        assert session.allowance == 10**6
        allowance_call = fake_ledger.previews[-1]
        assert allowance_call.args == (OWNER, market.collateral_join)

    @pytest.mark.asyncio
    async def test_refresh_without_signer(self, fake_ledger, market):
        service = BorrowService(market, fake_ledger)
        with pytest.raises(WalletUnavailableError):
            await service.refresh_wallet()
        assert service.stored_position_id() is None


class TestBorrowAndFailures:

    @pytest.mark.asyncio
    async def test_submit_borrow_persists_position(self, service, fake_ledger):
        install_pool_state(fake_ledger, base_live=10**6 * ONE, fy_live=10**6 * ONE)
        install_curve(fake_ledger, lambda x: x * 9 // 10)
        fake_ledger.on_submit("build(bytes6,bytes6,uint8)", VAULT_ID)
        states = []

        result = await service.submit_borrow(BorrowParams("100", "1"), on_status=states.append)

        assert result.ok
        assert states[-1].step == FlowStep.DONE
        assert service.stored_position_id() == VAULT_ID

    def test_classify_failure(self, service):
        data = SELECTOR_NOT_ENOUGH_BASE_IN + format(1, "x").zfill(64) + format(3, "x").zfill(64)
        assert service.classify_failure(revert(data=data)) == NotEnoughInputAvailable(1, 3)

    def test_describe_failure_hides_payload(self, service):
        message = service.describe_failure(revert(data=SELECTOR_NEGATIVE_INTEREST_RATES))
        assert "negative interest rates" in message

    def test_describe_unknown(self, service):
        message = service.describe_failure(ValueError("socket closed"), fallback="Swap failed")
        assert message.startswith("Swap failed")


class TestCli:

    @pytest.fixture
    def patched(self, monkeypatch, fake_ledger, market):
        built = {}

        def from_config(market_key, session=None, store_path=None, config_dir=None):
            service = BorrowService(market, fake_ledger, InMemoryPositionStore(), session or WalletSession())
            built["service"] = service
            return service

        monkeypatch.setattr(run_borrow.BorrowService, "from_config", from_config)
        yield built
        _close_all_handlers()

    def test_quote_command(self, patched, fake_ledger):
        install_pool_state(fake_ledger, base_live=10**6 * ONE, fy_live=10**6 * ONE)
        install_curve(fake_ledger, lambda x: x * 9 // 10)

        result = CliRunner().invoke(run_borrow.cli, ["quote", "--amount", "9"])

        assert result.exit_code == 0, result.output
        assert '"ok": true' in result.output
        assert "Sell 10" in result.output
        assert "KESm" in result.output

    def test_pool_state_command(self, patched, fake_ledger, market):
        install_pool_state(fake_ledger, base_live=100, fy_live=100, base_cached=90)
        fake_ledger.on_preview("pools(bytes6)", market.pool)

        result = CliRunner().invoke(run_borrow.cli, ["pool-state"])

        assert result.exit_code == 0, result.output
        payload = json.loads(result.output)
        assert payload["pending_base"] == "10"
        assert payload["ladle_pool_matches"] is True

    def test_recover_requires_account(self, patched, fake_ledger):
        result = CliRunner().invoke(run_borrow.cli, ["recover-pool"])

        assert result.exit_code == 1
        assert "WALLET_UNAVAILABLE" in result.output

    def test_unknown_market(self, monkeypatch):
        def from_config(market_key, **kwargs):
            raise KeyError(f"Unknown market: {market_key}")

        monkeypatch.setattr(run_borrow.BorrowService, "from_config", from_config)

        result = CliRunner().invoke(run_borrow.cli, ["quote", "--market", "nope", "--amount", "1"])
        _close_all_handlers()

        assert result.exit_code == 1
        assert "Unknown market" in result.output
