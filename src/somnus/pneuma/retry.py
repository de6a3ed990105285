"""
Retry/Backoff Policy.

A generic wrapper around a fallible async action.  Each failure (raised or
returned as a ``Failure`` value) is classified into an ErrorKind; retryable
kinds are retried after a linear or exponential-with-jitter delay,
everything else ends the loop immediately.  Nothing is raised to the caller:
the loop ends in the action's value or a ``Failure``.

    Idle -> Attempting -> Success
                       -> Classifying -> Waiting -> Attempting
                                      -> Failure
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
import random
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Mapping, Optional, TypeVar, Union

from ..config import RetrySettings
from ..spec.models import Failure, RetryContext, RetryState
from .errors import RETRYABLE_KINDS, ErrorKind, classify, short_reason

logger = logging.getLogger(__name__)

T = TypeVar("T")

Action = Callable[[RetryContext], Awaitable[T]]
RetryHook = Callable[[ErrorKind, RetryContext], Union[Awaitable[Any], Any]]

EXPONENTIAL_BASE = 1.5

# Calls that fail gas estimation usually revert deterministically.
DEFAULT_KIND_CAPS: Mapping[ErrorKind, int] = {ErrorKind.GAS_ESTIMATION: 2}


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 2.0
    backoff: str = "linear"
    max_delay: float = 60.0
    jitter: float = 1.0
    retryable: frozenset = RETRYABLE_KINDS
    kind_caps: Mapping[ErrorKind, int] = field(default_factory=lambda: dict(DEFAULT_KIND_CAPS))

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> "RetryPolicy":
        backoff = settings.backoff if settings.backoff in ("linear", "exponential") else "linear"
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.delay_seconds,
            backoff=backoff,
            max_delay=settings.max_delay_seconds,
        )

    def attempts_for(self, kind: ErrorKind) -> int:
        return min(self.max_attempts, self.kind_caps.get(kind, self.max_attempts))


def compute_delay(policy: RetryPolicy, attempt: int, rng: Optional[random.Random] = None) -> float:
    """
    Delay in seconds before the attempt following ``attempt`` (1-based).

    linear:      base * attempt
    exponential: min(base * 1.5 ** attempt + uniform(0, jitter), max_delay)
    """
    if policy.backoff == "exponential":
        jitter = (rng or random).uniform(0, policy.jitter) if policy.jitter > 0 else 0.0
        return min(policy.base_delay * EXPONENTIAL_BASE ** attempt + jitter, policy.max_delay)
    return min(policy.base_delay * attempt, policy.max_delay)


def _to_failure(error: Union[BaseException, Failure], kind: ErrorKind, attempts: int) -> Failure:
    if isinstance(error, Failure):
        return replace(error, attempts=attempts)
    return Failure(
        kind=kind,
        message=short_reason(kind, str(error)),
        detail=error,
        attempts=attempts,
    )


async def with_retry(
    action: Action,
    policy: RetryPolicy,
    *,
    label: str = "operation",
    classifier: Callable[[BaseException], ErrorKind] = classify,
    on_retry: Optional[RetryHook] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    log: Union[logging.Logger, logging.LoggerAdapter, None] = None,
) -> Any:
    """
    Run ``action`` until it succeeds, fails fatally, or attempts run out.

    Args:
        action: Async callable receiving the live RetryContext
        policy: Attempts and backoff
        label: Name used in log lines
        classifier: Maps raised exceptions to an ErrorKind
        on_retry: Hook run before waiting for the next attempt (proxy
                  rotation, nonce reset); may be sync or async
        sleep: Awaitable delay function

    Returns:
        The action's result, or a Failure carrying the attempt count and
        last error
    """
    log = log or logger
    ctx = RetryContext()

    while True:
        ctx.attempt += 1
        ctx.transition(RetryState.ATTEMPTING)
        try:
            result = await action(ctx)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            error: Union[BaseException, Failure] = exc
            kind = classifier(exc)
        else:
            if not isinstance(result, Failure):
                ctx.transition(RetryState.SUCCESS)
                if ctx.attempt > 1:
                    log.info("%s succeeded on attempt %d/%d", label, ctx.attempt, policy.max_attempts)
                return result
            error = result
            kind = result.kind

        ctx.transition(RetryState.CLASSIFYING)
        ctx.last_error = error
        ctx.last_kind = kind
        log.warning(
            "%s failed on attempt %d/%d (%s): %s",
            label, ctx.attempt, policy.max_attempts, kind.value, error,
        )

        if kind not in policy.retryable:
            ctx.transition(RetryState.FAILURE)
            log.error("Non-retryable error in %s: %s", label, kind.value)
            return _to_failure(error, kind, ctx.attempt)

        if ctx.attempt >= policy.attempts_for(kind):
            ctx.transition(RetryState.FAILURE)
            log.error("%s failed after %d attempts", label, ctx.attempt)
            return _to_failure(error, kind, ctx.attempt)

        if on_retry is not None:
            outcome = on_retry(kind, ctx)
            if inspect.isawaitable(outcome):
                await outcome

        delay = compute_delay(policy, ctx.attempt)
        ctx.transition(RetryState.WAITING)
        ctx.total_delay += delay
        log.info("Waiting %.1fs before retrying %s...", delay, label)
        await sleep(delay)


def retrying(policy: RetryPolicy, **options: Any) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[Any]]]:
    """Decorator form of ``with_retry`` for coroutine functions."""

    label = options.pop("label", None)

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[Any]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            return await with_retry(
                lambda ctx: func(*args, **kwargs),
                policy,
                label=label or func.__name__,
                **options,
            )

        return wrapper

    return decorator
