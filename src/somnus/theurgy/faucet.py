"""
Theurgy Faucet - testnet faucet claims.

POSTs the wallet address to the faucet API through the current proxy,
under the faucet retry policy (exponential backoff by default).  A faucet
that says the wallet already claimed recently is not an error: the claim
is reported as a skipped success and the wallet moves on.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

import httpx

from ..log import log_event, wallet_logger
from ..pneuma.errors import PROXY_KINDS, ChainError, ErrorKind
from ..pneuma.retry import RetryPolicy, with_retry
from ..spec.models import Failure, RetryContext, WalletSession

if TYPE_CHECKING:
    from .runner import Engine

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/134.0.0.0 Safari/537.36"
)

RATE_LIMIT_MARKERS = ("wait 24 hours", "rate limit")


@dataclass(frozen=True)
class FaucetResult:
    success: bool
    skipped: bool = False
    message: str = ""
    status: Optional[str] = None


def browser_headers(origin: str) -> dict[str, str]:
    return {
        "Content-Type": "application/json",
        "Accept": "*/*",
        "Origin": origin,
        "Referer": origin.rstrip("/") + "/",
        "User-Agent": USER_AGENT,
        "Sec-Fetch-Dest": "empty",
        "Sec-Fetch-Mode": "cors",
        "Sec-Fetch-Site": "same-origin",
        "Accept-Language": "en-US,en;q=0.9",
    }


def _is_rate_limited(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in RATE_LIMIT_MARKERS)


def _error_message(response: httpx.Response) -> str:
    try:
        body: Any = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        return str(body.get("error") or body.get("message") or body)
    return str(body)


async def request_claim(engine: "Engine", session: WalletSession) -> FaucetResult:
    """
    Send one faucet request.

    Raises:
        ChainError: RATE_LIMIT when the faucet throttles this wallet,
                    CONNECTION for transport/proxy failures,
                    UNCLASSIFIED for any other rejection
    """
    settings = engine.settings.faucet()
    log = wallet_logger(__name__, session.index)
    factory = engine.client_factory or _faucet_client

    if engine.pool.current is not None:
        log.info("Using proxy for faucet request: %s", engine.pool.current)
    log.info("Sending faucet request to API for address %s", session.address)

    client = factory(engine.pool.current_agent(), settings.timeout)
    try:
        response = await client.post(
            settings.url,
            json={"address": session.address},
            headers=browser_headers(settings.origin),
        )
    except httpx.TransportError as exc:
        raise ChainError(f"Faucet request failed: {exc}", ErrorKind.CONNECTION) from exc
    finally:
        await client.aclose()

    status = response.status_code
    if status == 429:
        raise ChainError("Faucet rate limit reached", ErrorKind.RATE_LIMIT, code=status)
    if status == 407 or status >= 500:
        raise ChainError(f"Faucet returned HTTP {status}", ErrorKind.CONNECTION, code=status)

    if status >= 400:
        message = _error_message(response)
        kind = ErrorKind.RATE_LIMIT if _is_rate_limited(message) else ErrorKind.UNCLASSIFIED
        raise ChainError(f"Faucet request failed: {message}", kind, code=status)

    try:
        body = response.json()
    except ValueError as exc:
        raise ChainError("Faucet returned a non-JSON body", ErrorKind.CONNECTION) from exc

    if isinstance(body, dict) and body.get("success"):
        data = body.get("data") if isinstance(body.get("data"), dict) else {}
        return FaucetResult(
            success=True,
            message=str(body.get("message") or "Request accepted"),
            status=data.get("status"),
        )

    error = body.get("error") if isinstance(body, dict) else body
    message = str(error) if error else "Unknown error"
    kind = ErrorKind.RATE_LIMIT if _is_rate_limited(message) else ErrorKind.UNCLASSIFIED
    raise ChainError(f"Faucet request failed: {message}", kind)


def _faucet_client(proxy: Optional[httpx.Proxy], timeout: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(proxy=proxy, timeout=timeout)


async def claim_faucet(engine: "Engine", session: WalletSession) -> FaucetResult:
    """
    Claim testnet funds for ``session``.

    Returns:
        FaucetResult; ``success`` is True for accepted and rate-limited
        claims alike
    """
    settings = engine.settings.faucet()
    log = wallet_logger(__name__, session.index)

    if not settings.enabled:
        log.info("Faucet operations disabled in config")
        return FaucetResult(success=True, skipped=True, message="disabled")

    log.info("Attempting to claim from the testnet faucet...")
    await engine.pause("faucet claim operation", wallet=session.index)

    async def attempt(ctx: RetryContext) -> FaucetResult:
        return await request_claim(engine, session)

    async def before_retry(kind: ErrorKind, ctx: RetryContext) -> None:
        if kind in PROXY_KINDS:
            await engine.rpc.rotate_proxy()

    policy = RetryPolicy.from_settings(settings.retry)
    outcome = await with_retry(
        attempt,
        policy,
        label="faucet claim",
        on_retry=before_retry,
        sleep=engine.sleep,
        log=log,
    )

    if isinstance(outcome, Failure):
        if outcome.kind is ErrorKind.RATE_LIMIT:
            log.info(
                "This wallet has already claimed funds recently. "
                "Skipping faucet and continuing with other operations."
            )
            return FaucetResult(success=True, skipped=True, message=outcome.message)
        log.warning("Faucet claim failed. Continuing with other operations.")
        return FaucetResult(success=False, message=outcome.message)

    log_event(
        log,
        level="info",
        event="faucet_claimed",
        message=f"Faucet request successful: {outcome.message}",
        address=session.address,
        status=outcome.status,
        url=settings.url,
    )
    return outcome
