"""
walletcore CLI - mnemonics, key and address derivation, transaction decoding, fee estimates.
"""

from __future__ import annotations

import asyncio
import json
import sys
from decimal import Decimal
from pathlib import Path

import typer
from loguru import logger

from walletcore.address import Address
from walletcore.bip32 import Purpose, derive_path, master_from_mnemonic, purpose_path
from walletcore.config import Settings, get_settings
from walletcore.errors import WalletCoreError
from walletcore.mnemonic import generate_mnemonic
from walletcore.models import Network, ScriptType
from walletcore.transaction import Transaction

app = typer.Typer(
    name="walletcore",
    help="Bitcoin key derivation and transaction tooling",
    add_completion=False,
)

WORD_COUNT_STRENGTH = {12: 128, 15: 160, 18: 192, 21: 224, 24: 256}


def setup_logging(level: str = "INFO") -> None:
    """Configure loguru logging."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )


def _init(network: Network | None, log_level: str | None) -> tuple[Settings, Network]:
    """Load settings, configure logging and resolve the network to use."""
    settings = get_settings()
    setup_logging(log_level or settings.log_level)
    return settings, network or settings.network


def _load_mnemonic(mnemonic: str | None, mnemonic_file: Path | None) -> str:
    if mnemonic_file:
        if not mnemonic_file.exists():
            logger.error(f"Mnemonic file not found: {mnemonic_file}")
            raise typer.Exit(1)
        mnemonic = mnemonic_file.read_text().strip()

    if not mnemonic:
        logger.error("Mnemonic required. Use --mnemonic, --mnemonic-file, or MNEMONIC env var")
        raise typer.Exit(1)
    return mnemonic


@app.command()
def generate(
    word_count: int = typer.Option(24, "--words", "-w", help="Number of words (12-24)"),
) -> None:
    """Generate a new BIP39 mnemonic phrase."""
    setup_logging()

    strength = WORD_COUNT_STRENGTH.get(word_count)
    if strength is None:
        logger.error(f"Invalid word count {word_count}; use 12, 15, 18, 21 or 24")
        raise typer.Exit(1)

    typer.echo(generate_mnemonic(strength))


@app.command()
def derive(
    path: str = typer.Argument(..., help="Derivation path, e.g. m/84'/0'/0'/0/0"),
    mnemonic: str = typer.Option(None, "--mnemonic", envvar="MNEMONIC", help="BIP39 mnemonic"),
    mnemonic_file: Path | None = typer.Option(
        None, "--mnemonic-file", "-f", help="Path to mnemonic file"
    ),
    passphrase: str = typer.Option("", "--passphrase", envvar="MNEMONIC_PASSPHRASE"),
    network: Network | None = typer.Option(None, "--network", "-n", help="Bitcoin network"),
    script_type: ScriptType = typer.Option(
        ScriptType.P2WPKH, "--script-type", "-t", help="Address type for the derived key"
    ),
    log_level: str | None = typer.Option(None, "--log-level", "-l"),
) -> None:
    """Derive an extended public key and address at PATH."""
    _, network = _init(network, log_level)
    words = _load_mnemonic(mnemonic, mnemonic_file)

    try:
        with master_from_mnemonic(words, passphrase, network) as master:
            with derive_path(master, path) as node:
                result = {
                    "path": path,
                    "fingerprint": master.fingerprint.hex(),
                    "xpub": node.to_xpub(),
                    "public_key": node.public_key.hex(),
                    "address": node.address(script_type).to_string(),
                }
    except WalletCoreError as e:
        logger.error(str(e))
        raise typer.Exit(1) from e

    typer.echo(json.dumps(result, indent=2))


@app.command()
def address(
    mnemonic: str = typer.Option(None, "--mnemonic", envvar="MNEMONIC", help="BIP39 mnemonic"),
    mnemonic_file: Path | None = typer.Option(
        None, "--mnemonic-file", "-f", help="Path to mnemonic file"
    ),
    passphrase: str = typer.Option("", "--passphrase", envvar="MNEMONIC_PASSPHRASE"),
    network: Network | None = typer.Option(None, "--network", "-n", help="Bitcoin network"),
    purpose: int = typer.Option(84, "--purpose", "-p", help="44, 49, 84 or 86"),
    account: int = typer.Option(0, "--account", "-a"),
    change: int = typer.Option(0, "--change", "-c", help="0 = receive, 1 = change"),
    index: int = typer.Option(0, "--index", "-i"),
    count: int = typer.Option(1, "--count", help="Number of consecutive addresses"),
    log_level: str | None = typer.Option(None, "--log-level", "-l"),
) -> None:
    """Show BIP44/49/84/86 addresses for an account."""
    _, network = _init(network, log_level)
    words = _load_mnemonic(mnemonic, mnemonic_file)

    try:
        purpose_enum = Purpose(purpose)
    except ValueError:
        logger.error(f"Unsupported purpose {purpose}; use 44, 49, 84 or 86")
        raise typer.Exit(1) from None

    try:
        with master_from_mnemonic(words, passphrase, network) as master:
            for i in range(index, index + count):
                path, script_type = purpose_path(
                    purpose_enum, network.params.coin_type, account, change, i
                )
                with derive_path(master, path) as node:
                    addr = node.address(script_type)
                typer.echo(f"{path}  {addr}")
    except WalletCoreError as e:
        logger.error(str(e))
        raise typer.Exit(1) from e


@app.command("decode-tx")
def decode_tx(
    tx_hex: str = typer.Argument(..., help="Raw transaction hex"),
    network: Network | None = typer.Option(None, "--network", "-n", help="Bitcoin network"),
) -> None:
    """Decode a raw transaction into a JSON summary."""
    _, network = _init(network, "WARNING")

    try:
        tx = Transaction.from_hex(tx_hex.strip())
    except WalletCoreError as e:
        logger.error(f"Could not decode transaction: {e}")
        raise typer.Exit(1) from e

    summary = tx.to_dict()
    for out in summary["vout"]:
        try:
            out["address"] = Address.from_script(bytes.fromhex(out["script_pubkey"]), network).to_string()
        except WalletCoreError:
            out["address"] = None

    typer.echo(json.dumps(summary, indent=2))


@app.command("estimate-fee")
def estimate_fee(
    target: int = typer.Option(6, "--target", "-t", help="Confirmation target in blocks"),
    log_level: str | None = typer.Option(None, "--log-level", "-l"),
) -> None:
    """Ask the configured node for a fee rate, falling back to WALLETCORE_FEE_RATE."""
    settings, _ = _init(None, log_level)

    try:
        rate = asyncio.run(_estimate_fee(settings, target))
    except WalletCoreError as e:
        logger.error(f"Node request failed: {e}")
        raise typer.Exit(1) from e

    if rate is None:
        logger.warning(f"Node has no estimate for {target} blocks, using {settings.fee_rate}")
        rate = settings.fee_rate
    typer.echo(f"{rate} sat/vB")


async def _estimate_fee(settings: Settings, target: int) -> Decimal | None:
    client = settings.node_client()
    try:
        return await client.estimate_smart_fee(target)
    finally:
        await client.close()


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
