"""
Somnus CLI

Command-line interface for the Somnus transaction engine.

Wallets are operator-supplied private keys (data/pk.txt or PRIVATE_KEY).
Every RPC and faucet request can be routed through a rotating proxy pool.

Commands:
  run      - Run faucet claims and transfers for every wallet
  faucet   - Claim testnet funds for every wallet
  wallets  - List wallet addresses
  proxies  - Show the proxy pool
  gas      - Show the current gas price and retry escalation
  info     - Show system information
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Optional

import click

from .config import Settings
from .pneuma.errors import ChainError, ConfigError
from .pneuma.gas import GasOracle, format_gwei
from .pneuma.proxy import ProxyPool, load_proxies
from .pneuma.rpc import RpcClient
from .sigil.eth import KEYS_FILE, get_address, load_private_keys


# ============ Constants ============

VERSION = "1.0.0"


# ============ Banner ============


def _print_banner() -> None:
    """Print the Somnus CLI banner."""
    border = click.style("  ◆ ═══════════════════════════════════════ ◆", fg="cyan")
    click.echo()
    click.echo(border)
    click.echo()
    click.echo(
        click.style("          S O M N U S", fg="bright_white", bold=True)
        + click.style(f"          v{VERSION}", dim=True)
    )
    click.secho("        ─── Testnet Transaction Engine ───", fg="cyan")
    click.echo()
    click.echo(border)
    click.echo()


def _load_settings(config_path: Optional[Path]) -> Settings:
    try:
        return Settings.load(config_path)
    except ConfigError as exc:
        click.secho(f"ERROR: {exc}", fg="red")
        sys.exit(exc.exit_code)


config_option = click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="JSON config file (default: ./config.json)",
)


# ============ Main CLI Group ============


@click.group(invoke_without_command=True)
@click.version_option(version=VERSION, prog_name="somnus")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Somnus testnet transaction engine."""
    if ctx.invoked_subcommand is None:
        _print_banner()
        click.echo(ctx.get_help())


# ============ Top-level Commands ============

from .theurgy.runner import PROXY_FILE, faucet, run

cli.add_command(run)
cli.add_command(faucet)


# ============ Wallets ============


@cli.command()
@click.option(
    "--keys",
    "keys_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Private keys file (default: data/pk.txt)",
)
def wallets(keys_path: Optional[Path]) -> None:
    """List wallet addresses."""
    try:
        keys = load_private_keys(keys_path)
    except ValueError as exc:
        click.echo("No wallets found.")
        click.echo(str(exc))
        sys.exit(1)

    click.echo(f"Wallets: {len(keys)}")
    for number, key in enumerate(keys, start=1):
        try:
            click.echo(f"  {number}. {get_address(key)}")
        except ValueError:
            click.secho(f"  {number}. invalid private key", fg="yellow")


# ============ Proxies ============


@cli.command()
@config_option
@click.option(
    "--proxy-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Proxy list (default: data/proxy.txt)",
)
def proxies(config_path: Optional[Path], proxy_file: Optional[Path]) -> None:
    """Show the proxy pool (credentials are never printed)."""
    settings = _load_settings(config_path)
    proxy_settings = settings.proxy()
    entries = load_proxies(proxy_file or PROXY_FILE, proxy_settings.protocol)

    state = "enabled" if proxy_settings.enabled else "disabled"
    rotation = "on" if proxy_settings.rotation_enabled else "off"
    click.echo(f"Proxy support: {state} ({proxy_settings.protocol}, rotation {rotation})")
    click.echo(f"Proxies loaded: {len(entries)}")
    for entry in entries:
        auth = "  [auth]" if entry.has_auth else ""
        click.echo(f"  {entry.protocol}://{entry}{auth}")


# ============ Gas ============


@cli.command()
@config_option
@click.option("--rpc-url", envvar="SOMNUS_RPC_URL", default=None, help="Override the RPC endpoint")
@click.option("--attempts", default=3, show_default=True, help="Retry steps to show")
def gas(config_path: Optional[Path], rpc_url: Optional[str], attempts: int) -> None:
    """Show the current gas price and its retry escalation."""
    settings = _load_settings(config_path)
    if rpc_url:
        settings.set("network.rpc_url", rpc_url)
    network = settings.network()

    async def quote() -> int:
        async with RpcClient(network.rpc_url, network.chain_id, timeout=network.request_timeout) as rpc:
            return await rpc.get_gas_price()

    try:
        network_price = asyncio.run(quote())
    except ChainError as exc:
        click.secho(f"ERROR: Failed to fetch gas price: {exc}", fg="red")
        sys.exit(1)

    oracle = GasOracle(RpcClient(network.rpc_url, network.chain_id), settings.gas())
    low, high = oracle.bounds()
    click.echo(f"Network gas price: {format_gwei(network_price)} gwei")
    click.echo(f"Bounds: {format_gwei(low)} - {format_gwei(high)} gwei")
    for step in range(attempts):
        price = oracle.adjust(network_price, step)
        click.echo(
            f"  attempt {step + 1}: {format_gwei(price)} gwei "
            f"({oracle.multiplier(step):.3f}x)"
        )


# ============ Info ============


@cli.command()
@config_option
def info(config_path: Optional[Path]) -> None:
    """Show system information."""
    _print_banner()
    settings = _load_settings(config_path)
    network = settings.network()

    # ── Status ──
    click.secho("  Status ─────────────────────────────────", fg="cyan")
    click.echo()

    click.echo(
        click.style("  Network:     ", dim=True)
        + click.style(f"{network.rpc_url} (chain {network.chain_id})", fg="bright_white")
    )

    try:
        keys = load_private_keys()
        wallet_text = click.style(f"{len(keys)} loaded", fg="bright_white")
    except ValueError:
        wallet_text = click.style("none", fg="yellow") + click.style(
            f"  (add keys to {KEYS_FILE})", dim=True
        )
    click.echo(click.style("  Wallets:     ", dim=True) + wallet_text)

    proxy_settings = settings.proxy()
    entries = load_proxies(PROXY_FILE, proxy_settings.protocol) if proxy_settings.enabled else []
    pool = ProxyPool(entries, enabled=proxy_settings.enabled, protocol=proxy_settings.protocol)
    click.echo(
        click.style("  Proxies:     ", dim=True)
        + click.style(pool.describe(), fg="bright_white")
    )

    click.echo()

    # ── Commands ──
    click.secho("  Commands ───────────────────────────────", fg="cyan")
    click.echo()

    commands = [
        ("run    ", "Faucet claims and transfers for all wallets"),
        ("faucet ", "Claim testnet funds"),
        ("wallets", "List wallet addresses"),
        ("proxies", "Show the proxy pool"),
        ("gas    ", "Show gas price and retry escalation"),
    ]
    for cmd, desc in commands:
        click.echo(
            click.style("  ", dim=True)
            + click.style(cmd, fg="bright_white", bold=True)
            + click.style("  ◇  ", fg="cyan")
            + click.style(desc, dim=True)
        )

    click.echo()


# ============ Entry Points ============


def main() -> None:
    """Somnus CLI entry point."""
    # Ensure UTF-8 output on Windows (for Unicode box-drawing / symbols)
    if sys.platform == "win32":
        try:
            sys.stdout.reconfigure(encoding="utf-8")  # type: ignore[union-attr]
            sys.stderr.reconfigure(encoding="utf-8")  # type: ignore[union-attr]
        except (AttributeError, OSError):
            pass  # Fallback: old Python or non-tty
    cli()


if __name__ == "__main__":
    main()
