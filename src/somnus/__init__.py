__all__ = [
    # Models
    "Failure",
    "RetryContext",
    "RetryState",
    "TxRequest",
    "TxResult",
    "TxSuccess",
    "WalletSession",
    # Errors
    "ChainError",
    "ConfigError",
    "ErrorKind",
    "classify",
    # Configuration
    "Settings",
    # Engine components
    "GasOracle",
    "NonceSequencer",
    "ProxyEntry",
    "ProxyPool",
    "RetryPolicy",
    "RpcClient",
    "TransactionSubmitter",
    "parse_proxy",
    "load_proxies",
    "with_retry",
    # Wallets
    "get_account",
    "get_address",
    "load_private_keys",
]

from .config import Settings
from .pneuma.errors import ChainError, ConfigError, ErrorKind, classify
from .pneuma.gas import GasOracle
from .pneuma.nonce import NonceSequencer
from .pneuma.proxy import ProxyEntry, ProxyPool, load_proxies, parse_proxy
from .pneuma.retry import RetryPolicy, with_retry
from .pneuma.rpc import RpcClient
from .pneuma.tx import TransactionSubmitter
from .sigil.eth import get_account, get_address, load_private_keys
from .spec.models import (
    Failure,
    RetryContext,
    RetryState,
    TxRequest,
    TxResult,
    TxSuccess,
    WalletSession,
)
