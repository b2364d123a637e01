"""
Blockchain backend implementations and backend selection.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum

from loguru import logger

from ckchain.backends.base import (
    BackendError,
    BlockchainBackend,
    ConfigurationError,
    UnknownTransactionTypeError,
    UnsupportedOperationError,
)
from ckchain.backends.counterparty import CounterpartyBackend
from ckchain.backends.ethereum import EthereumBackend
from ckchain.backends.ethereum_index import EthereumIndexBackend
from ckchain.config import Settings
from ckchain.index import EthereumIndex
from ckcore.cache import TTLCache
from ckcore.rpc import RPCServicePool


class BackendKind(str, Enum):
    COUNTERPARTY = "Counterparty"
    ETHEREUM = "Ethereum"
    ETHEREUM_MONGO = "EthereumMongo"


DEFAULT_BACKEND = BackendKind.COUNTERPARTY


def resolve_backend_kind(
    override: str | BackendKind | None = None, settings: Settings | None = None
) -> BackendKind:
    """
    Pick the backend: explicit override, else the configured layer, else Counterparty.

    Raises:
        ConfigurationError: If the name is not a known backend
    """
    if isinstance(override, BackendKind):
        return override
    name = override or (settings.layer if settings is not None else None)
    if not name:
        return DEFAULT_BACKEND
    for kind in BackendKind:
        if kind.value.lower() == name.lower():
            return kind
    known = ", ".join(kind.value for kind in BackendKind)
    raise ConfigurationError(f"Unknown blockchain backend '{name}' (expected one of: {known})")


def create_rpc_pool(settings: Settings, cache: TTLCache | None = None) -> RPCServicePool:
    clients = {name: endpoint.create_client() for name, endpoint in settings.rpc.items()}
    return RPCServicePool(clients, cache=cache)


def create_backend(
    settings: Settings,
    kind: str | BackendKind | None = None,
    rpc: RPCServicePool | None = None,
    index: EthereumIndex | None = None,
    cache: TTLCache | None = None,
) -> BlockchainBackend:
    """
    Construct one backend from settings.

    ``rpc`` and ``index`` may be injected; otherwise they are built from the
    settings and share ``cache``.
    """
    kind = resolve_backend_kind(kind, settings)
    cache = cache if cache is not None else TTLCache()
    rpc = rpc if rpc is not None else create_rpc_pool(settings, cache)

    backend: BlockchainBackend
    if kind is BackendKind.COUNTERPARTY:
        backend = CounterpartyBackend(rpc)
    elif kind is BackendKind.ETHEREUM:
        backend = EthereumBackend(rpc)
    else:
        if index is None:
            index = EthereumIndex.from_settings(settings, cache=cache)
        backend = EthereumIndexBackend(rpc, index)

    logger.info(f"Using {kind.value} blockchain backend")
    return backend


class BackendRegistry:
    """
    Caller-owned holder of backend instances.

    Each backend kind is constructed on first request and reused afterwards.
    """

    def __init__(
        self,
        settings: Settings,
        factory: Callable[..., BlockchainBackend] = create_backend,
    ):
        self.settings = settings
        self._factory = factory
        self._backends: dict[BackendKind, BlockchainBackend] = {}

    def get(self, name: str | BackendKind | None = None) -> BlockchainBackend:
        kind = resolve_backend_kind(name, self.settings)
        backend = self._backends.get(kind)
        if backend is None:
            backend = self._factory(self.settings, kind)
            self._backends[kind] = backend
        return backend

    def close(self) -> None:
        for backend in self._backends.values():
            backend.close()
        self._backends.clear()


__all__ = [
    "BackendError",
    "BackendKind",
    "BackendRegistry",
    "BlockchainBackend",
    "ConfigurationError",
    "CounterpartyBackend",
    "EthereumBackend",
    "EthereumIndexBackend",
    "UnknownTransactionTypeError",
    "UnsupportedOperationError",
    "create_backend",
    "create_rpc_pool",
    "resolve_backend_kind",
]
