#!/usr/bin/env python3
"""
run_borrow.py - CLI entrypoint for the borrow engine.

Usage:
    python run_borrow.py quote --market celo_kesm --amount 5000
    python run_borrow.py pool-state --market base_cngn
    python run_borrow.py borrow --market celo_kesm --account 0x... \\
        --collateral 100 --amount 5000

Transactions are sent with eth_sendTransaction: the RPC node (or a
local signer behind it) must own --account.
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Awaitable, Callable, Optional

import click

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from core.constants import DEFAULT_SLIPPAGE_BPS
from core.exceptions import BorrowError
from core.logging import get_logger, set_global_context, setup_logging
from core.math import format_units
from core.models import BorrowParams, FlowState, WalletSession
from service import BorrowService

logger = get_logger("borrow.cli")

DEFAULT_STORE_PATH = "data/positions.json"


def _run(
    market: str,
    account: Optional[str],
    store: Optional[str],
    action: Callable[[BorrowService], Awaitable[None]],
) -> None:
    """Build a service, run one action, always close the provider."""

    async def _main() -> None:
        session = WalletSession(address=account)
        service = BorrowService.from_config(
            market,
            session=session,
            store_path=Path(store) if store else None,
        )
        try:
            await action(service)
        finally:
            await service.close()

    try:
        asyncio.run(_main())
    except (BorrowError, KeyError) as e:
        logger.error(f"Command failed: {e}", extra={"context": {"market": market, "error": str(e)}})
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


def _echo_json(data: dict) -> None:
    click.echo(json.dumps(data, indent=2))


@click.group()
@click.option(
    "--log-level",
    "-l",
    default="WARNING",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Log level",
)
@click.option(
    "--json-logs/--no-json-logs",
    default=False,
    help="Use JSON log format",
)
def cli(log_level: str, json_logs: bool) -> None:
    """Fixed-rate borrow engine."""
    setup_logging(level=log_level, json_output=json_logs)
    set_global_context(service="borrow-cli", version="0.1.0")


market_option = click.option("--market", "-m", default="celo_kesm", help="Market key from markets.yaml")
account_option = click.option("--account", "-a", default=None, help="Signer address")


@cli.command()
@market_option
@click.option("--amount", required=True, help="Desired base amount, e.g. 5000")
def quote(market: str, amount: str) -> None:
    """Minimum fy-token to sell for at least AMOUNT base."""

    async def action(service: BorrowService) -> None:
        result = await service.quote_amount(amount)
        _echo_json(result.to_dict())
        if result.ok:
            decimals = service.market.base_decimals
            click.echo(
                f"Sell {format_units(result.input_amount, decimals)} fy for "
                f"{format_units(result.output_amount, decimals)} {service.market.base_symbol}"
            )

    _run(market, None, None, action)


@cli.command("pool-state")
@market_option
def pool_state(market: str) -> None:
    """Cached vs live reserves and ladle routing."""

    async def action(service: BorrowService) -> None:
        state = await service.pool_state()
        consistency = await service.check_pool()
        _echo_json({
            **state.to_dict(),
            "ladle_pool": consistency.onchain_pool,
            "ladle_pool_matches": consistency.matches,
            "ladle_error": consistency.error,
        })

    _run(market, None, None, action)


@cli.command("recover-pool")
@market_option
@account_option
def recover_pool_cmd(market: str, account: Optional[str]) -> None:
    """Sell pending tokens so the pool can be quoted again."""

    async def action(service: BorrowService) -> None:
        recovery = await service.recover_pool(on_status=click.echo)
        _echo_json({
            "outcome": recovery.outcome.value,
            "cleaned": recovery.cleaned,
            "tx_refs": list(recovery.tx_refs),
            "state": recovery.state.to_dict(),
        })

    _run(market, account, None, action)


@cli.command("discover-position")
@market_option
@account_option
@click.option("--store", default=DEFAULT_STORE_PATH, help="Position store file")
def discover_position(market: str, account: Optional[str], store: str) -> None:
    """Stored and rediscovered vault ids for the account."""

    async def action(service: BorrowService) -> None:
        _echo_json({
            "stored": service.stored_position_id(),
            "discovered": await service.discover_position(),
        })

    _run(market, account, store, action)


@cli.command()
@market_option
@account_option
@click.option("--collateral", required=True, help="Collateral amount, e.g. 100")
@click.option("--amount", required=True, help="Base amount to receive, e.g. 5000")
@click.option("--slippage-bps", default=DEFAULT_SLIPPAGE_BPS, type=int, help="Swap slippage floor")
@click.option("--store", default=DEFAULT_STORE_PATH, help="Position store file")
def borrow(
    market: str,
    account: Optional[str],
    collateral: str,
    amount: str,
    slippage_bps: int,
    store: str,
) -> None:
    """Approve, open a position, post collateral, borrow and swap."""

    def on_status(state: FlowState) -> None:
        line = f"[{state.step.value}]"
        if state.last_tx_ref:
            line += f" last tx {state.last_tx_ref}"
        if state.last_error:
            line += f" {state.last_error.message}"
        click.echo(line)

    async def action(service: BorrowService) -> None:
        if account:
            await service.refresh_wallet()
        params = BorrowParams(
            collateral_amount=collateral,
            borrow_amount=amount,
            slippage_bps=slippage_bps,
        )
        result = await service.submit_borrow(params, on_status=on_status)
        _echo_json(result.to_dict())
        if not result.ok:
            sys.exit(2)

    _run(market, account, store, action)


if __name__ == "__main__":
    cli()
