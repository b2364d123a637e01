"""
Ethereum blockchain backend delegating every query to the eth-service RPC microservice.
"""

from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal
from typing import Any

import httpx
from loguru import logger

from ckchain.backends.base import (
    BlockchainBackend,
    ConfigurationError,
    FuelBalances,
    UnknownTransactionTypeError,
    UnsupportedOperationError,
    WalletBalances,
)
from ckchain.models import AssetInfo, TxType
from ckcore.rpc import RPCError, RPCServicePool

ETH_SERVICE = "eth-service"

OP_TYPES = {
    "transfer": TxType.SEND,
    TxType.SEND.value: TxType.SEND,
    "issuance": TxType.ISSUANCE,
    TxType.ISSUANCE.value: TxType.ISSUANCE,
}

GAS_PRICE_TIERS = ("average", "fast", "safeLow")


def parse_op_type(op_type: Any) -> TxType:
    """Map an eth-service ``opType`` (name or numeric code) to a transaction type."""
    key = op_type
    if isinstance(op_type, str) and op_type.isdigit():
        key = int(op_type)
    try:
        return OP_TYPES[key]
    except (KeyError, TypeError):
        raise UnknownTransactionTypeError(op_type) from None


def normalize_raw_tx(raw_tx: str) -> str:
    """Lower-case a raw transaction and make sure it carries the ``0x`` prefix."""
    raw_tx = raw_tx.lower()
    return raw_tx if raw_tx.startswith("0x") else f"0x{raw_tx}"


class EthereumBackend(BlockchainBackend):
    """
    Blockchain backend for Ethereum via the eth-service microservice.

    There is no raw transaction store, balance table or block message scan
    behind eth-service, so those operations raise UnsupportedOperationError.
    """

    name = "Ethereum"
    required_endpoints: tuple[str, ...] = (ETH_SERVICE,)

    def __init__(self, rpc: RPCServicePool):
        for endpoint in self.required_endpoints:
            if not rpc.has_endpoint(endpoint):
                raise ConfigurationError(f"{self.name} backend requires RPC endpoint '{endpoint}'")
        self.rpc = rpc

    def _service(self, method: str, params: Any = None, **kwargs: Any) -> Any:
        return self.rpc.execute(ETH_SERVICE, method, params if params is not None else [], **kwargs)

    def check_backend_config(self, config: dict[str, Any] | None = None) -> bool:
        try:
            state = self._service("getServerState")
        except (httpx.HTTPError, RPCError) as e:
            logger.error(f"{ETH_SERVICE} is DOWN: {e}")
            return False
        result = isinstance(state, Mapping)
        if result:
            logger.info(f"{ETH_SERVICE} is UP and RUNNING")
        else:
            logger.warning(f"{ETH_SERVICE} returned unexpected state: {state!r}")
        return result

    def get_server_state(self) -> dict[str, Any]:
        return self._service("getServerState")

    def get_block(self, block_id: str | int) -> Any:
        return self._service("getBlock", {"blockNumber": block_id})

    def get_block_info(self, block_index: int) -> Any:
        return self.get_block(block_index)

    def get_raw_transaction(self, tx_hash: str, extended: bool = False) -> Any:
        raise UnsupportedOperationError(self.name, "get_raw_transaction")

    def get_tx_confirmations(self, tx_hash: str) -> int:
        details = self._service("getTransactionDetails", [tx_hash])
        if not isinstance(details, Mapping) or not isinstance(details.get("tx"), Mapping):
            return 0
        return int(details["tx"].get("confirmations", 0))

    def get_fuel_balance(self, addresses: list[str]) -> FuelBalances:
        result = self._service("getFuelBalance", list(addresses))
        return dict(result) if isinstance(result, Mapping) else {}

    def get_last_transactions(self) -> list[Any]:
        result = self._service("getLastTransactions")
        return result if isinstance(result, list) else []

    def get_asset_info_from_tx(self, tx: str, hash_passed: bool = True) -> AssetInfo | None:
        method = "getTx" if hash_passed else "decodeRawTx"
        data = self._service(method, [tx], cache_result=True)
        if not isinstance(data, Mapping) or data.get("asset") is None:
            return None
        return AssetInfo(
            source=data.get("from"),
            destination=data.get("to"),
            asset=data["asset"],
            quantity=data.get("quantity", 0),
            type=parse_op_type(data.get("opType")),
            gas=int(data.get("gas") or 0),
            gas_used=int(data.get("gasUsed") or 0),
        )

    def get_asset_txs_from_blocks(
        self, assets: list[str], block_indexes: list[int]
    ) -> list[dict[str, Any]]:
        raise UnsupportedOperationError(self.name, "get_asset_txs_from_blocks")

    def get_balances(
        self, assets: list[str] | None = None, wallets: list[str] | None = None
    ) -> WalletBalances:
        raise UnsupportedOperationError(self.name, "get_balances")

    @property
    def balances_service_name(self) -> str | None:
        return ETH_SERVICE

    @staticmethod
    def _send_params(
        source: str,
        destination: str,
        asset: str,
        amount: int | Decimal,
        gas_price: Mapping[str, Any] | None,
        use_actual_nonce: bool,
    ) -> list[Any]:
        gas_price = gas_price or {}
        tiers = [gas_price.get(tier, 0) for tier in GAS_PRICE_TIERS]
        amount = str(amount) if isinstance(amount, Decimal) else amount
        return [source, destination, asset, amount, *tiers, use_actual_nonce]

    def send(
        self,
        source: str,
        destination: str,
        asset: str,
        amount: int | Decimal,
        public_keys: list[str] | None = None,
        gas_price: Mapping[str, Any] | None = None,
        use_actual_nonce: bool = False,
    ) -> Any:
        """
        Build an unsigned transfer.

        Args:
            gas_price: Gas price tiers ``average``, ``fast`` and ``safeLow``; missing tiers are 0
            use_actual_nonce: Ask the service to use the account's on-chain nonce
        """
        params = self._send_params(source, destination, asset, amount, gas_price, use_actual_nonce)
        return self._service("createSendTx", params, log_result=True)

    def sign_raw_tx(self, raw_tx: str, private_key: str) -> str:
        return self._service("signTx", [raw_tx, private_key])

    def send_raw_tx(self, raw_tx: str) -> str:
        return self._service("sendTx", [raw_tx], log_result=True)

    def decode_raw_tx(self, raw_tx: str) -> dict[str, Any]:
        return self._service("decodeRawTx", [raw_tx], cache_result=True)

    def close(self) -> None:
        self.rpc.close()
