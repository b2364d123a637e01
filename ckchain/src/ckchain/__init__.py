"""
ckchain - Blockchain backends for CryptoKit

One backend contract over Counterparty (counterpartyd + bitcoind), an
Ethereum RPC microservice and a MongoDB Ethereum transaction index.
"""

__version__ = "0.1.0"

from ckchain.backends import (
    BackendKind,
    BackendRegistry,
    BlockchainBackend,
    create_backend,
    resolve_backend_kind,
)
from ckchain.config import Settings, get_settings
from ckchain.errors import (
    BackendError,
    ConfigurationError,
    UnknownTransactionTypeError,
    UnsupportedOperationError,
)

__all__ = [
    "BackendError",
    "BackendKind",
    "BackendRegistry",
    "BlockchainBackend",
    "ConfigurationError",
    "Settings",
    "UnknownTransactionTypeError",
    "UnsupportedOperationError",
    "create_backend",
    "get_settings",
    "resolve_backend_kind",
]
