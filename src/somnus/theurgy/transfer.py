"""
Theurgy Transfer - batches of small value transfers.

Each cycle sends a random number of transfers to the wallet itself unless
a recipient is configured.  Native amounts are a percentage of the balance
left after gas (the default) or a random fixed amount.  The nonce cursor
is reset once at the start of every cycle so a batch always starts from
the network's pending count.

With ``operations.transfer.token`` set, the batch moves that ERC-20 token
instead of the native currency.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from eth_utils import from_wei, to_checksum_address, to_wei

from ..log import wallet_logger
from ..pneuma.abi import ERC20_ABI, decode_result, encode_call
from ..pneuma.errors import ChainError
from ..spec.models import TxRequest, TxResult, WalletSession

if TYPE_CHECKING:
    from .runner import Engine

NATIVE_TRANSFER_GAS = 21_000

# Gas headroom kept back when sizing a native transfer.
GAS_SAFETY_FACTOR = 2


def random_amount(engine: "Engine") -> Decimal:
    """Random amount in whole units, rounded to the configured decimals."""
    settings = engine.settings.transfer()
    low, high = settings.amount_range
    value = engine.rng.uniform(low, high)
    return round(Decimal(str(value)), settings.decimals)


def native_transfer(to: str, value: int) -> TxRequest:
    return TxRequest(
        to=to_checksum_address(to),
        value=value,
        gas_limit=NATIVE_TRANSFER_GAS,
    )


def token_transfer(token: str, to: str, amount: Decimal, decimals: int) -> TxRequest:
    """ERC-20 ``transfer(to, amount)``; gas limit is estimated at send time."""
    units = int(amount * (Decimal(10) ** decimals))
    return TxRequest(
        to=to_checksum_address(token),
        data=encode_call(ERC20_ABI, "transfer", [to_checksum_address(to), units]),
    )


async def token_decimals(engine: "Engine", token: str) -> int:
    raw = await engine.rpc.eth_call(
        to_checksum_address(token), encode_call(ERC20_ABI, "decimals", [])
    )
    return int(decode_result(ERC20_ABI, "decimals", raw))


async def _sized_native_amount(engine: "Engine", session: WalletSession) -> Optional[int]:
    """
    Amount in wei for the next native transfer, or None to skip.

    In percentage mode the amount is a share of the balance left after gas;
    otherwise it is a random fixed amount.  Either way it shrinks to fit the
    balance once gas is accounted for.
    """
    settings = engine.settings.transfer()
    symbol = engine.settings.network().currency_symbol
    log = wallet_logger(__name__, session.index)

    balance = await engine.submitter.balance(session)
    if balance == 0:
        log.warning("No balance to transfer")
        return None
    log.info("Balance: %s %s", from_wei(balance, "ether"), symbol)

    gas_price = await engine.oracle.price()
    gas_cost = NATIVE_TRANSFER_GAS * gas_price * GAS_SAFETY_FACTOR

    if settings.use_percentage:
        spendable = balance - gas_cost
        if spendable <= 0:
            log.warning("Insufficient balance to perform transfer")
            return None
        value = int(Decimal(spendable) * Decimal(str(settings.percentage)) / 100)
        log.info(
            "Using percentage-based amount: %g%% of balance (%s %s)",
            settings.percentage, from_wei(value, "ether"), symbol,
        )
    else:
        value = to_wei(random_amount(engine), "ether")
        log.info("Using fixed amount: %s %s", from_wei(value, "ether"), symbol)

    if balance < value + gas_cost:
        if balance <= gas_cost:
            log.warning("Insufficient balance to even cover gas costs")
            return None
        log.warning("Insufficient balance for full transfer + gas, adjusting amount")
        value = balance - gas_cost
    return value


async def run_transfers(engine: "Engine", session: WalletSession) -> list[TxResult]:
    """
    Run the configured transfer cycles for one wallet.

    Returns:
        One TxResult per transfer that was sent; skipped transfers
        (no balance) produce no entry
    """
    settings = engine.settings.transfer()
    log = wallet_logger(__name__, session.index)
    if not settings.enabled:
        log.info("Transfer operations disabled in config")
        return []

    symbol = engine.settings.network().currency_symbol
    recipient = settings.recipient or session.address
    target = "self" if recipient == session.address else recipient
    low, high = settings.count_range
    count = engine.rng.randint(int(low), int(high))
    log.info(
        "Will perform %d transfers to %s, repeated %d time(s)",
        count, target, settings.repeat_times,
    )

    decimals = 18
    if settings.token:
        try:
            decimals = await token_decimals(engine, settings.token)
        except ChainError as exc:
            log.error("Could not read token decimals for %s: %s", settings.token, exc)
            return []

    results: list[TxResult] = []
    for cycle in range(1, settings.repeat_times + 1):
        engine.nonces.reset(session)
        succeeded = 0

        for number in range(1, count + 1):
            label = f"transfer #{number}/{count}"
            await engine.pause(label, wallet=session.index)
            if settings.token:
                amount = random_amount(engine)
                request = token_transfer(settings.token, recipient, amount, decimals)
                log.info("Sending %s of %s tokens to %s", label, amount, target)
            else:
                value = await _sized_native_amount(engine, session)
                if value is None:
                    continue
                request = native_transfer(recipient, value)
                log.info("Sending %s of %s %s to %s", label, from_wei(value, "ether"), symbol, target)

            result = await engine.submitter.send_with_retry(session, request, label)
            results.append(result)
            if result.ok:
                succeeded += 1
                log.info("%s successful", label.capitalize())
            else:
                log.error("%s failed: %s", label.capitalize(), result.message)

        log.info(
            "Completed %d/%d transfers in cycle %d/%d",
            succeeded, count, cycle, settings.repeat_times,
        )

    return results
