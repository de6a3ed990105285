"""
Private key loading for somnus wallets.

Keys are supplied by the operator, never generated or stored by somnus:
one hex key per line in data/pk.txt, or PRIVATE_KEY in the environment
(or data/.env).

Dependencies: eth-account (lightweight, no full web3.py needed)
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from eth_account import Account
from eth_account.signers.local import LocalAccount


# Default data directory
DATA_DIR = Path("data")
KEYS_FILE = DATA_DIR / "pk.txt"
SOMNUS_ENV = DATA_DIR / ".env"


def normalize_private_key(private_key: str) -> str:
    """Strip whitespace and ensure the 0x prefix."""
    private_key = private_key.strip()
    if not private_key.startswith("0x"):
        private_key = "0x" + private_key
    return private_key


def load_private_keys(
    keys_path: Optional[Path] = None,
    env_path: Optional[Path] = None,
) -> list[str]:
    """
    Load private keys from the keys file, falling back to the environment.

    Args:
        keys_path: Keys file, one key per line (default: data/pk.txt)
        env_path: Path to .env file (default: data/.env)

    Returns:
        List of 0x-prefixed hex private keys

    Raises:
        ValueError: If no keys are found anywhere
    """
    keys_path = keys_path or KEYS_FILE
    env_path = env_path or SOMNUS_ENV

    keys: list[str] = []
    if keys_path.exists():
        for line in keys_path.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if line and not line.startswith("#"):
                keys.append(normalize_private_key(line))

    if not keys:
        if env_path.exists():
            load_dotenv(env_path, override=False)
        private_key = os.environ.get("PRIVATE_KEY")
        if private_key:
            keys.append(normalize_private_key(private_key))

    if not keys:
        raise ValueError(
            f"No private keys found. Add keys to {keys_path} (one per line) "
            f"or set PRIVATE_KEY in {env_path}"
        )

    return keys


def get_account(private_key: str) -> LocalAccount:
    """
    Get an eth-account LocalAccount from a private key.

    Raises:
        ValueError: If the key is not a valid secp256k1 private key
    """
    try:
        return Account.from_key(normalize_private_key(private_key))
    except Exception as exc:
        raise ValueError("Invalid private key") from exc


def get_address(private_key: str) -> str:
    """0x-prefixed checksummed address for a private key."""
    return get_account(private_key).address
