"""
Theurgy Runner - engine context and the wallet loop.

The Engine bundles everything a wallet session needs (settings, proxy pool,
RPC client, nonce sequencer, gas oracle, submitter).  It is constructed once
and passed down explicitly; there is no module-level state.

Wallets are processed one at a time.  A failing operation is logged and the
loop moves on; only startup problems abort a run.
"""

from __future__ import annotations

import asyncio
import logging
import random
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Sequence

import click

from ..config import Settings
from ..log import setup_logging, wallet_logger
from ..pneuma.errors import ConfigError
from ..pneuma.gas import GasOracle
from ..pneuma.nonce import NonceSequencer
from ..pneuma.proxy import ProxyEntry, ProxyPool, load_proxies
from ..pneuma.retry import RetryPolicy
from ..pneuma.rpc import ClientFactory, RpcClient
from ..pneuma.tx import TransactionSubmitter
from ..sigil.eth import DATA_DIR, get_account, load_private_keys
from ..spec.models import TxResult, WalletSession
from .faucet import FaucetResult, claim_faucet
from .transfer import run_transfers

logger = logging.getLogger(__name__)

OPERATIONS = ("faucet", "transfer")

Sleep = Callable[[float], Awaitable[Any]]


@dataclass
class Engine:
    settings: Settings
    pool: ProxyPool
    rpc: RpcClient
    nonces: NonceSequencer
    oracle: GasOracle
    submitter: TransactionSubmitter
    client_factory: Optional[ClientFactory] = None
    sleep: Sleep = asyncio.sleep
    rng: random.Random = field(default_factory=random.Random)

    @classmethod
    def build(
        cls,
        settings: Settings,
        proxies: Sequence[ProxyEntry] = (),
        *,
        client_factory: Optional[ClientFactory] = None,
        sleep: Sleep = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ) -> "Engine":
        proxy_settings = settings.proxy()
        pool = ProxyPool(
            proxies,
            enabled=proxy_settings.enabled,
            protocol=proxy_settings.protocol,
            rotation_enabled=proxy_settings.rotation_enabled,
        )
        if pool.enabled:
            logger.info("Proxy support enabled with %d proxies available", pool.size)
            pool.select_next()

        network = settings.network()
        rpc = RpcClient(
            network.rpc_url,
            network.chain_id,
            pool=pool,
            timeout=network.request_timeout,
            client_factory=client_factory,
        )
        gas_settings = settings.gas()
        nonces = NonceSequencer(rpc)
        oracle = GasOracle(rpc, gas_settings)
        submitter = TransactionSubmitter(
            rpc,
            nonces,
            oracle,
            gas_settings=gas_settings,
            retry_policy=RetryPolicy.from_settings(settings.retry()),
            receipt_timeout=network.receipt_timeout,
            poll_interval=network.receipt_poll_interval,
            sleep=sleep,
        )
        return cls(
            settings=settings,
            pool=pool,
            rpc=rpc,
            nonces=nonces,
            oracle=oracle,
            submitter=submitter,
            client_factory=client_factory,
            sleep=sleep,
            rng=rng or random.Random(),
        )

    def session(self, private_key: str, index: Optional[int] = None) -> WalletSession:
        return WalletSession(account=get_account(private_key), index=index)

    async def pause(self, reason: str, key: str = "delay", wallet: Optional[int] = None) -> float:
        """Random pacing delay from ``general.<key>``."""
        low, high = self.settings.delay_range(key)
        seconds = self.rng.uniform(low, high)
        wallet_logger(__name__, wallet).info("Waiting %.1f seconds before %s...", seconds, reason)
        await self.sleep(seconds)
        return seconds

    async def aclose(self) -> None:
        await self.rpc.aclose()


@dataclass
class WalletReport:
    index: int
    address: Optional[str] = None
    faucet: Optional[FaucetResult] = None
    transfers: list[TxResult] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        if self.errors:
            return False
        if self.faucet is not None and not self.faucet.success:
            return False
        return all(result.ok for result in self.transfers)


async def process_wallet(
    engine: Engine,
    private_key: str,
    index: int,
    total: int,
    operations: Sequence[str] = OPERATIONS,
) -> WalletReport:
    """Run the selected operations for one wallet; never raises."""
    log = wallet_logger(__name__, index)
    report = WalletReport(index=index)

    try:
        session = engine.session(private_key, index)
    except ValueError as exc:
        log.error("Skipping wallet %d: %s", index, exc)
        report.errors.append("invalid private key")
        return report

    report.address = session.address
    log.info("Processing wallet %d/%d: %s", index, total, session.address)
    if engine.pool.current is not None:
        log.info("Using proxy: %s", engine.pool.current)

    for name in operations:
        try:
            if name == "faucet":
                report.faucet = await claim_faucet(engine, session)
            elif name == "transfer":
                report.transfers = await run_transfers(engine, session)
            else:
                log.warning("Unknown operation %r, skipping", name)
        except Exception as exc:
            log.error("Error in %s operations: %s", name, exc)
            report.errors.append(f"{name}: {exc}")

    return report


async def run_wallets(
    engine: Engine,
    private_keys: Sequence[str],
    operations: Sequence[str] = OPERATIONS,
) -> list[WalletReport]:
    """Process every wallet in order, pausing between wallets."""
    reports: list[WalletReport] = []
    total = len(private_keys)
    logger.info("Processing %d wallets...", total)
    try:
        for number, private_key in enumerate(private_keys, start=1):
            reports.append(await process_wallet(engine, private_key, number, total, operations))
            if number < total:
                await engine.pause("next wallet", key="wallet_delay")
    finally:
        await engine.aclose()
    return reports


# ============ Commands ============


PROXY_FILE = DATA_DIR / "proxy.txt"


def bootstrap(
    config_path: Optional[Path],
    keys_path: Optional[Path],
    proxy_file: Optional[Path],
    rpc_url: Optional[str] = None,
) -> tuple[Settings, list[str], list[ProxyEntry]]:
    """
    Resolve settings, keys and proxies for a command.

    Exits with code 2 on an unreadable config and 1 when no keys are found.
    """
    try:
        settings = Settings.load(config_path)
    except ConfigError as exc:
        click.secho(f"ERROR: {exc}", fg="red")
        sys.exit(exc.exit_code)
    if rpc_url:
        settings.set("network.rpc_url", rpc_url)

    setup_logging(settings.string("general.log_level", "info"))

    try:
        keys = load_private_keys(keys_path)
    except ValueError as exc:
        click.secho(f"ERROR: {exc}", fg="red")
        sys.exit(1)

    proxies: list[ProxyEntry] = []
    proxy_settings = settings.proxy()
    if proxy_settings.enabled:
        proxies = load_proxies(proxy_file or PROXY_FILE, proxy_settings.protocol)

    return settings, keys, proxies


def _summarize(reports: Sequence[WalletReport]) -> None:
    click.echo("")
    for report in reports:
        sent = len(report.transfers)
        confirmed = sum(1 for result in report.transfers if result.ok)
        status = click.style("ok", fg="green") if report.ok else click.style("issues", fg="yellow")
        click.echo(
            f"  Wallet {report.index}: {report.address or 'invalid key'}  "
            f"transfers {confirmed}/{sent}  [{status}]"
        )


def _common_options(func: Callable[..., Any]) -> Callable[..., Any]:
    func = click.option(
        "--rpc-url",
        envvar="SOMNUS_RPC_URL",
        default=None,
        help="Override the RPC endpoint",
    )(func)
    func = click.option(
        "--proxy-file",
        type=click.Path(dir_okay=False, path_type=Path),
        default=None,
        help="Proxy list (default: data/proxy.txt)",
    )(func)
    func = click.option(
        "--keys",
        "keys_path",
        type=click.Path(dir_okay=False, path_type=Path),
        default=None,
        help="Private keys file (default: data/pk.txt)",
    )(func)
    func = click.option(
        "--config",
        "config_path",
        type=click.Path(dir_okay=False, path_type=Path),
        default=None,
        help="JSON config file (default: ./config.json)",
    )(func)
    return func


@click.command()
@_common_options
@click.option(
    "--only",
    "only",
    type=click.Choice(OPERATIONS),
    multiple=True,
    help="Run only these operations (repeatable)",
)
def run(
    config_path: Optional[Path],
    keys_path: Optional[Path],
    proxy_file: Optional[Path],
    rpc_url: Optional[str],
    only: tuple[str, ...],
) -> None:
    """Run faucet claims and transfers for every wallet."""
    settings, keys, proxies = bootstrap(config_path, keys_path, proxy_file, rpc_url)
    engine = Engine.build(settings, proxies)

    click.echo(f"=== Somnus run: {len(keys)} wallet(s) ===")
    reports = asyncio.run(run_wallets(engine, keys, only or OPERATIONS))
    _summarize(reports)


@click.command()
@_common_options
def faucet(
    config_path: Optional[Path],
    keys_path: Optional[Path],
    proxy_file: Optional[Path],
    rpc_url: Optional[str],
) -> None:
    """Claim testnet funds from the faucet for every wallet."""
    settings, keys, proxies = bootstrap(config_path, keys_path, proxy_file, rpc_url)
    engine = Engine.build(settings, proxies)

    reports = asyncio.run(run_wallets(engine, keys, ("faucet",)))
    click.echo("")
    for report in reports:
        result = report.faucet
        if result is None:
            click.secho(f"  Wallet {report.index}: not processed", fg="yellow")
        elif result.skipped:
            click.echo(f"  Wallet {report.index}: skipped ({result.message})")
        elif result.success:
            click.secho(f"  Wallet {report.index}: claimed ({result.message})", fg="green")
        else:
            click.secho(f"  Wallet {report.index}: failed ({result.message})", fg="red")
