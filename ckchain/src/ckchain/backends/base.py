"""
Base blockchain backend interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any

from ckchain.errors import (
    BackendError,
    ConfigurationError,
    UnknownTransactionTypeError,
    UnsupportedOperationError,
)
from ckchain.models import AssetInfo

__all__ = [
    "BackendError",
    "BlockchainBackend",
    "ConfigurationError",
    "FuelBalances",
    "UnknownTransactionTypeError",
    "UnsupportedOperationError",
    "WalletBalances",
]

FuelBalances = dict[str, dict[str, Decimal]]
WalletBalances = dict[str, dict[str, Any]]


class BlockchainBackend(ABC):
    """
    Abstract blockchain backend interface.

    Every backend answers the same set of queries so callers never need to
    know which chain or data source is configured. Not-found results are
    returned as ``None``/0/empty values; transport errors propagate unchanged.
    """

    name: str = "abstract"

    @abstractmethod
    def check_backend_config(self, config: dict[str, Any] | None = None) -> bool:
        """Check the backing service is up and usable"""

    @abstractmethod
    def get_server_state(self) -> dict[str, Any]:
        """Get operational parameters of the backing service"""

    @abstractmethod
    def get_block(self, block_id: str | int) -> Any:
        """Get block transactions by hash or number"""

    @abstractmethod
    def get_block_info(self, block_index: int) -> Any:
        """Get detailed block information"""

    @abstractmethod
    def get_raw_transaction(self, tx_hash: str, extended: bool = False) -> Any:
        """Get raw transaction hex, or decoded detail when ``extended``"""

    @abstractmethod
    def get_tx_confirmations(self, tx_hash: str) -> int:
        """Get number of confirmations, 0 when unknown"""

    @abstractmethod
    def get_fuel_balance(self, addresses: list[str]) -> FuelBalances:
        """Get native coin balances: {address: {coin: amount}}"""

    @abstractmethod
    def get_last_transactions(self) -> list[Any]:
        """Get newest unconfirmed transactions"""

    @abstractmethod
    def get_asset_info_from_tx(self, tx: str, hash_passed: bool = True) -> AssetInfo | None:
        """
        Decode the asset movement carried by a transaction.

        Args:
            tx: Transaction hash, or raw transaction when ``hash_passed`` is False

        Raises:
            UnknownTransactionTypeError: On an unrecognised type code
        """

    @abstractmethod
    def get_asset_txs_from_blocks(
        self, assets: list[str], block_indexes: list[int]
    ) -> list[dict[str, Any]]:
        """Get protocol messages from blocks that reference one of the assets"""

    @abstractmethod
    def get_balances(
        self, assets: list[str] | None = None, wallets: list[str] | None = None
    ) -> WalletBalances:
        """Get balances: {wallet: {asset: amount}}"""

    @abstractmethod
    def send(
        self,
        source: str,
        destination: str,
        asset: str,
        amount: int | Decimal,
        public_keys: list[str] | None = None,
        **options: Any,
    ) -> Any:
        """Build an unsigned transfer transaction"""

    @abstractmethod
    def sign_raw_tx(self, raw_tx: str, private_key: str) -> str:
        """Sign a raw transaction"""

    @abstractmethod
    def send_raw_tx(self, raw_tx: str) -> str:
        """Broadcast a signed transaction, returns its hash"""

    @abstractmethod
    def decode_raw_tx(self, raw_tx: str) -> dict[str, Any]:
        """Decode a raw transaction"""

    @property
    def balances_service_name(self) -> str | None:
        """RPC endpoint that serves balances, if balances come from a service"""
        return None

    def close(self) -> None:
        """Release any held connections"""
        pass
