from __future__ import annotations

import logging
import re
import sys
from typing import Any, MutableMapping, Optional
from urllib.parse import urlsplit, urlunsplit

ROOT_LOGGER = "somnus"

URL_TOKEN_RE = re.compile(r"https?://[^\s\"'<>]+", re.IGNORECASE)
CREDENTIALS_RE = re.compile(r"(?<![\w/])([^\s:@/]+):([^\s:@/]+)@")


def _sanitize_url_token(token: str) -> str:
    candidate = token
    trailing = ""
    while candidate and candidate[-1] in ".,);]}":
        trailing = candidate[-1] + trailing
        candidate = candidate[:-1]

    parsed = urlsplit(candidate)
    if parsed.scheme.lower() in {"http", "https"} and parsed.netloc:
        netloc = parsed.netloc.rsplit("@", 1)[-1]
        candidate = urlunsplit((parsed.scheme, netloc, parsed.path, "", ""))
    return f"{candidate}{trailing}"


def sanitize_text(value: str) -> str:
    masked = URL_TOKEN_RE.sub(lambda match: _sanitize_url_token(match.group(0)), value)
    masked = CREDENTIALS_RE.sub(r"\1:***@", masked)
    return masked


def _sanitize_value(value: Any) -> Any:
    if isinstance(value, str):
        return sanitize_text(value)
    if isinstance(value, dict):
        return {key: _sanitize_value(child) for key, child in value.items()}
    if isinstance(value, (list, tuple)):
        return type(value)(_sanitize_value(item) for item in value)
    return value


class WalletAdapter(logging.LoggerAdapter):
    """Prefixes every message with the wallet number, when there is one."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        wallet = (self.extra or {}).get("wallet")
        if wallet is None:
            return msg, kwargs
        return f"[Wallet {wallet}] {msg}", kwargs


def wallet_logger(name: str, wallet: Optional[int] = None) -> WalletAdapter:
    return WalletAdapter(logging.getLogger(name), {"wallet": wallet})


def log_event(
    logger: logging.Logger | logging.LoggerAdapter,
    *,
    level: str,
    event: str,
    message: str,
    **fields: Any,
) -> None:
    extra = {"event": event}
    extra.update({key: _sanitize_value(value) for key, value in fields.items()})
    safe_message = sanitize_text(message)
    if fields:
        safe_message = safe_message + " " + " ".join(
            f"{key}={extra[key]}" for key in fields
        )

    levelno = logging.getLevelName(level.upper())
    if not isinstance(levelno, int):
        levelno = logging.INFO
    logger.log(levelno, safe_message, extra=extra)


def setup_logging(level: str = "info", stream: Any = None) -> logging.Logger:
    logger = logging.getLogger(ROOT_LOGGER)
    resolved = logging.getLevelName(level.upper())
    logger.setLevel(resolved if isinstance(resolved, int) else logging.INFO)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)-7s %(message)s", datefmt="%H:%M:%S")
    )

    logger.handlers.clear()
    logger.addHandler(handler)
    logger.propagate = False

    return logger
