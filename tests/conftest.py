# PATH: tests/conftest.py
"""
Pytest configuration and fixtures for borrow engine tests.
"""

import sys
from pathlib import Path
from typing import Any, Callable, Optional

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from chains.ledger import ContractCall, LogEntry, LogFilter, Receipt  # noqa: E402
from core.exceptions import ContractRevertError  # noqa: E402
from core.models import MarketConfig, WalletSession  # noqa: E402


POOL = "0x483D89802E0B780C03D1647C98031694f2fD743D"
BASE_TOKEN = "0x456a3D042C0DbD3db53D5489e98dFb038553B0d0"
FY_TOKEN = "0x2EcECD30c115B6F1eA612205A04cf3cF77049503"
HELPER = "0x1111111111111111111111111111111111111111"
OWNER = "0xAbCdEf0123456789aBcDeF0123456789AbCdEf01"
VAULT_ID = "0x0000000000000000000000aa"


def pytest_configure(config):
    """Configure pytest."""
    # Add custom markers
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )


class FakeLedger:
    """
    In-memory LedgerClient.

    Handlers are keyed by function signature. A handler is either a value
    or a callable taking the ContractCall; returning or raising an
    exception makes the call fail.
    """

    def __init__(self):
        self.preview_handlers: dict[str, Any] = {}
        self.submit_handlers: dict[str, Any] = {}
        self.receipt_logs: dict[str, list[LogEntry]] = {}
        self.previews: list[ContractCall] = []
        self.submitted: list[ContractCall] = []
        self.height = 5_000_000
        self.logs: list[LogEntry] = []
        self.log_queries: list[tuple[int, LogFilter]] = []

    def on_preview(self, signature: str, handler: Any) -> None:
        self.preview_handlers[signature] = handler

    def on_submit(self, signature: str, handler: Any) -> None:
        self.submit_handlers[signature] = handler

    def on_receipt_logs(self, signature: str, logs: list[LogEntry]) -> None:
        self.receipt_logs[signature] = logs

    @staticmethod
    def _resolve(handler: Any, call: ContractCall) -> Any:
        value = handler(call) if callable(handler) else handler
        if isinstance(value, BaseException):
            raise value
        return value

    def submitted_functions(self) -> list[str]:
        return [call.function_name for call in self.submitted]

    async def preview(self, call: ContractCall) -> Any:
        self.previews.append(call)
        if call.signature not in self.preview_handlers:
            raise AssertionError(f"Unexpected preview: {call.signature}")
        return self._resolve(self.preview_handlers[call.signature], call)

    async def submit(self, call: ContractCall) -> Receipt:
        self.submitted.append(call)
        result = None
        if call.signature in self.submit_handlers:
            result = self._resolve(self.submit_handlers[call.signature], call)
        n = len(self.submitted)
        return Receipt(
            tx_hash=f"0x{n:064x}",
            block_number=self.height + n,
            status=1,
            result=result,
            logs=tuple(self.receipt_logs.get(call.signature, ())),
        )

    async def current_block_height(self) -> int:
        return self.height

    async def event_logs_since(self, from_height: int, log_filter: LogFilter) -> list[LogEntry]:
        self.log_queries.append((from_height, log_filter))
        return list(self.logs)


class NodeFailure(Exception):
    """Ledger failure outside the BorrowError hierarchy, as a wallet SDK raises it."""

    def __init__(self, message: str = "execution reverted", data: Optional[str] = None):
        super().__init__(message)
        self.data = data


def revert(data: Optional[str] = None, message: str = "execution reverted", address: str = POOL) -> ContractRevertError:
    return ContractRevertError(message, data=data, contract_address=address)


def install_curve(ledger: FakeLedger, curve: Callable[[int], Optional[int]]) -> None:
    """Preview handler from a function; None means the preview reverts."""

    def handler(call: ContractCall):
        out = curve(call.args[0])
        return revert() if out is None else out

    ledger.on_preview("sellFYTokenPreview(uint128)", handler)


def install_pool_state(
    ledger: FakeLedger,
    base_live: int,
    fy_live: int,
    base_cached: Optional[int] = None,
    fy_cached: Optional[int] = None,
) -> None:
    base_cached = base_live if base_cached is None else base_cached
    fy_cached = fy_live if fy_cached is None else fy_cached
    ledger.on_preview("baseToken()", BASE_TOKEN)
    ledger.on_preview("fyToken()", FY_TOKEN)
    ledger.on_preview("getCache()", (base_cached, fy_cached, 0))
    balances = {BASE_TOKEN: base_live, FY_TOKEN: fy_live}
    ledger.on_preview("balanceOf(address)", lambda call: balances[call.to])


@pytest.fixture
def fake_ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def market() -> MarketConfig:
    return MarketConfig(
        key="celo_kesm",
        chain_id=42220,
        ladle="0x29F8028Fc13E2Fc9E708a1b69E79B96A7F675220",
        cauldron="0x18f552AcD039A83cb2e003f9d12FC65868408669",
        pool=POOL,
        collateral_token="0x48065fbBE25f71C9282ddf5e1cD6D6A887483D5e",
        collateral_join="0x55bf8434Aa8eecdAd5b657fa124c2B487D8a7814",
        series_id="0x000069f8a660",
        ilk_id="0x555344540000",
        collateral_decimals=6,
        base_decimals=18,
        collateral_symbol="USDT",
        base_symbol="KESm",
        helper=HELPER,
    )


@pytest.fixture
def session() -> WalletSession:
    return WalletSession(
        address=OWNER,
        chain_id=42220,
        collateral_balance=1_000 * 10**6,
        allowance=None,
    )
