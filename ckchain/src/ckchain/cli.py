"""
CryptoKit CLI - query the configured blockchain backend and run the offline codecs.
"""

from __future__ import annotations

import dataclasses
import json
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum
from typing import Any

import typer
from loguru import logger

from ckchain.backends import BlockchainBackend, create_backend
from ckchain.backends.ethereum_index import EthereumIndexBackend
from ckchain.config import get_settings
from ckchain.errors import BackendError
from ckcore.assets import decode_asset_name, encode_asset_id
from ckcore.tx import TxCodecError, calculate_tx_hash, get_op_return_data

app = typer.Typer(
    name="cryptokit",
    help="CryptoKit - one interface over Counterparty and Ethereum backends",
    add_completion=False,
)


def setup_logging(level: str = "INFO") -> None:
    """Configure loguru logging."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )


def _jsonable(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return _jsonable(dataclasses.asdict(value))
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def echo_json(value: Any) -> None:
    typer.echo(json.dumps(_jsonable(value), indent=2, default=str))


@contextmanager
def open_backend(name: str | None, log_level: str | None) -> Iterator[BlockchainBackend]:
    settings = get_settings()
    setup_logging(log_level or settings.log_level)
    try:
        backend = create_backend(settings, name)
    except BackendError as e:
        logger.error(str(e))
        raise typer.Exit(1) from e
    try:
        yield backend
    except BackendError as e:
        logger.error(str(e))
        raise typer.Exit(1) from e
    finally:
        backend.close()


BackendOption = typer.Option(
    None, "--backend", "-b", help="Backend: Counterparty | Ethereum | EthereumMongo"
)
LogLevelOption = typer.Option(None, "--log-level", "-l")


@app.command()
def state(
    backend_name: str | None = BackendOption,
    log_level: str | None = LogLevelOption,
) -> None:
    """Show the backend server state."""
    with open_backend(backend_name, log_level) as backend:
        echo_json(backend.get_server_state())


@app.command()
def confirmations(
    tx_hash: str = typer.Argument(..., help="Transaction hash"),
    backend_name: str | None = BackendOption,
    log_level: str | None = LogLevelOption,
) -> None:
    """Show the number of confirmations of a transaction."""
    with open_backend(backend_name, log_level) as backend:
        typer.echo(backend.get_tx_confirmations(tx_hash))


@app.command("asset-info")
def asset_info(
    tx: str = typer.Argument(..., help="Transaction hash, or raw transaction with --raw"),
    raw: bool = typer.Option(False, "--raw", help="TX is a raw transaction"),
    backend_name: str | None = BackendOption,
    log_level: str | None = LogLevelOption,
) -> None:
    """Decode the asset movement carried by a transaction."""
    with open_backend(backend_name, log_level) as backend:
        info = backend.get_asset_info_from_tx(tx, hash_passed=not raw)
        if info is None:
            typer.echo("No asset information in transaction")
            raise typer.Exit(1)
        echo_json(info)


@app.command()
def balances(
    wallets: list[str] = typer.Option([], "--wallet", "-w", help="Wallet address (repeatable)"),
    assets: list[str] = typer.Option([], "--asset", "-a", help="Asset name (repeatable)"),
    backend_name: str | None = BackendOption,
    log_level: str | None = LogLevelOption,
) -> None:
    """Show asset balances of wallets."""
    with open_backend(backend_name, log_level) as backend:
        echo_json(backend.get_balances(assets or None, wallets or None))


@app.command()
def fuel(
    addresses: list[str] = typer.Argument(..., help="Addresses"),
    backend_name: str | None = BackendOption,
    log_level: str | None = LogLevelOption,
) -> None:
    """Show native coin (BTC/ETH) balances."""
    with open_backend(backend_name, log_level) as backend:
        echo_json(backend.get_fuel_balance(addresses))


@app.command()
def history(
    address: str = typer.Argument(..., help="Address"),
    assets: list[str] = typer.Option([], "--asset", "-a", help="Asset name (repeatable)"),
    limit: int | None = typer.Option(None, "--limit", "-n", help="Most recent rows to show"),
    direction: str = typer.Option("desc", "--direction", "-d", help="asc | desc"),
    backend_name: str | None = BackendOption,
    log_level: str | None = LogLevelOption,
) -> None:
    """Show token transfer history of an address with running balances."""
    with open_backend(backend_name, log_level) as backend:
        if not isinstance(backend, EthereumIndexBackend):
            logger.error(f"Address history requires the EthereumMongo backend, not {backend.name}")
            raise typer.Exit(1)
        try:
            rows = backend.get_address_history(
                assets or None, address, limit=limit, direction=direction
            )
        except ValueError as e:
            logger.error(str(e))
            raise typer.Exit(1) from e
        echo_json(rows)


@app.command("tx-hash")
def tx_hash(raw_tx: str = typer.Argument(..., help="Raw transaction hex")) -> None:
    """Compute the transaction id of a raw Bitcoin transaction."""
    try:
        typer.echo(calculate_tx_hash(raw_tx))
    except ValueError as e:
        typer.echo(f"Invalid transaction hex: {e}", err=True)
        raise typer.Exit(1) from e


@app.command("op-return")
def op_return(
    raw_tx: str = typer.Argument(..., help="Raw transaction hex"),
    text: bool = typer.Option(False, "--text", help="Print the payload as UTF-8 text"),
) -> None:
    """Extract the OP_RETURN payload of a raw Bitcoin transaction."""
    try:
        payload = get_op_return_data(raw_tx, as_hex=not text)
    except TxCodecError as e:
        typer.echo(f"Invalid transaction: {e}", err=True)
        raise typer.Exit(1) from e
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8", errors="replace")
    typer.echo(payload)


@app.command()
def ticker(value: str = typer.Argument(..., help="Numeric asset id or asset name")) -> None:
    """Convert between numeric asset ids and asset names."""
    try:
        if value.isdigit():
            typer.echo(encode_asset_id(int(value)))
        else:
            typer.echo(decode_asset_name(value))
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e


def main() -> None:
    app()


if __name__ == "__main__":
    main()
