"""
adamint CLI - Run the wallet API and perform wallet operations from the shell.
"""

from __future__ import annotations

import asyncio
import json
import signal
import sys
from pathlib import Path

import typer
from loguru import logger

from adamint.backends import CardanoCliBackend, ToolchainError
from adamint.config import Settings, get_settings
from adamint.models import OperationResult
from adamint.operations import WalletOperations
from adamint.value import LOVELACE_ASSET

app = typer.Typer(
    name="adamint",
    help="Cardano multi-asset wallet operations",
    add_completion=False,
)


def setup_logging(level: str = "INFO", log_dir: Path | None = None) -> None:
    """Configure loguru logging."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_dir / "adamint.log",
            level=level.upper(),
            format=(
                "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"
            ),
            rotation="10 MB",
            retention=5,
        )


def build_operations(settings: Settings) -> WalletOperations:
    return WalletOperations(CardanoCliBackend(settings))


def _load(log_level: str | None) -> tuple[Settings, WalletOperations]:
    settings = get_settings()
    setup_logging(log_level or settings.log_level, settings.log_dir)
    return settings, build_operations(settings)


def _report(result: OperationResult) -> None:
    if not result.success:
        logger.error(f"Operation failed: {result.error}")
        raise typer.Exit(1)
    typer.echo(f"Transaction: {result.transaction}")
    typer.echo(f"Network fee: {result.network_fee:,} lovelace")


@app.command()
def serve(
    log_level: str | None = typer.Option(None, "--log-level", "-l"),
) -> None:
    """Run the HTTP API server."""
    settings, operations = _load(log_level)
    settings.wallet_dir.mkdir(parents=True, exist_ok=True)

    logger.info("Starting adamint API")
    logger.info(f"Network: {settings.network}")
    logger.info(f"Wallet directory: {settings.wallet_dir}")

    try:
        asyncio.run(_serve(settings, operations))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")


async def _serve(settings: Settings, operations: WalletOperations) -> None:
    from adamint.server import ApiServer

    server = ApiServer(settings, operations)
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        await server.start()
        await stop_event.wait()
        logger.info("Received shutdown signal")
    finally:
        await server.stop()


@app.command()
def create_wallet(
    name: str = typer.Argument(..., help="Wallet name"),
    policy_lock_slot: str | None = typer.Option(
        None, "--policy-lock-slot", help="Also create a mint script locked at this slot (-1: none)"
    ),
    stake: bool = typer.Option(False, "--stake", help="Generate a stake key and address"),
    log_level: str | None = typer.Option(None, "--log-level", "-l"),
) -> None:
    """Generate keys and address for a new wallet."""
    _, operations = _load(log_level)
    try:
        created = operations.create_wallet(name, policy_lock_slot, with_stake_key=stake)
    except (ToolchainError, ValueError) as e:
        logger.error(str(e))
        raise typer.Exit(1)

    typer.echo(json.dumps(created.model_dump(by_alias=True, exclude_none=True), indent=2))
    typer.echo("\nBack up the wallet directory - it holds the signing keys!")


@app.command()
def balance(
    name: str = typer.Argument(..., help="Wallet name"),
    log_level: str | None = typer.Option(None, "--log-level", "-l"),
) -> None:
    """Display the UTxOs and aggregate value of a wallet."""
    _, operations = _load(log_level)
    try:
        wallet_balance = operations.wallet_balance(name)
    except ToolchainError as e:
        logger.error(str(e))
        raise typer.Exit(1)

    lovelace = wallet_balance.value.lovelace
    typer.echo(f"\nBalance: {lovelace:,} lovelace ({lovelace / 1e6:.6f} ADA)")
    assets = wallet_balance.value.native_assets()
    if assets:
        typer.echo("\nNative assets:")
        for asset, quantity in sorted(assets.items()):
            typer.echo(f"  {asset}: {quantity:,}")
    typer.echo(f"\nUTxOs: {len(wallet_balance.utxos)}")
    for utxo in wallet_balance.utxos:
        typer.echo(f"  {utxo.ref}  {utxo.value.quantity(LOVELACE_ASSET):>15,} lovelace")


@app.command()
def tip(
    log_level: str | None = typer.Option(None, "--log-level", "-l"),
) -> None:
    """Show the current chain tip."""
    _, operations = _load(log_level)
    try:
        typer.echo(json.dumps(operations.query_tip(), indent=2))
    except ToolchainError as e:
        logger.error(str(e))
        raise typer.Exit(1)


@app.command()
def policy_id(
    key_hash: str = typer.Argument(..., help="Payment key hash of the policy wallet"),
    lock_slot: str | None = typer.Option(None, "--lock-slot", help="Time lock slot (-1: none)"),
    log_level: str | None = typer.Option(None, "--log-level", "-l"),
) -> None:
    """Print a mint script and its policy id."""
    _, operations = _load(log_level)
    try:
        script = operations.mint_script(key_hash, lock_slot)
        typer.echo(json.dumps(script.model_dump(by_alias=True), indent=2))
        typer.echo(f"\nPolicy id: {operations.policy_id(script)}")
    except (ToolchainError, ValueError) as e:
        logger.error(str(e))
        raise typer.Exit(1)


@app.command()
def transfer_lovelace(
    wallet: str = typer.Argument(..., help="Sending wallet name"),
    address: str = typer.Argument(..., help="Recipient address"),
    amount: int = typer.Argument(..., help="Amount in lovelace"),
    message: str | None = typer.Option(None, "--message", "-m", help="Transaction message"),
    minus_fee: bool = typer.Option(
        False, "--minus-fee", help="Deduct the network fee from the sent amount"
    ),
    input_tx: str | None = typer.Option(
        None, "--input-tx", help="Only spend the output of this transaction"
    ),
    log_level: str | None = typer.Option(None, "--log-level", "-l"),
) -> None:
    """Send lovelace to an address."""
    _, operations = _load(log_level)
    _report(operations.transfer_lovelace(wallet, address, amount, message, minus_fee, input_tx))


@app.command()
def wipe(
    wallet: str = typer.Argument(..., help="Wallet name"),
    address: str = typer.Argument(..., help="Address receiving everything"),
    log_level: str | None = typer.Option(None, "--log-level", "-l"),
) -> None:
    """Move the entire wallet content to an address."""
    _, operations = _load(log_level)
    _report(operations.wipe_wallet(wallet, address))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
