"""
Counterparty blockchain backend.

Asset data comes from counterpartyd; raw transactions, blocks, signing and
broadcasting go through the underlying bitcoind node.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from decimal import Decimal
from typing import Any

import httpx
from loguru import logger

from ckchain.backends.base import (
    BackendError,
    BlockchainBackend,
    ConfigurationError,
    FuelBalances,
    UnknownTransactionTypeError,
    WalletBalances,
)
from ckchain.models import AssetInfo, TxType
from ckcore.assets import asset_name_from_hex
from ckcore.rpc import RPCError, RPCServicePool
from ckcore.tx import btc_to_sats, sats_to_btc

COUNTERPARTYD = "counterpartyd"
BITCOIND = "bitcoind"

# Layout of the message data returned by get_tx_info (hex digits)
TYPE_SLICE = slice(0, 8)
ASSET_SLICE = slice(8, 24)
QUANTITY_SLICE = slice(24, 40)
MESSAGE_HEX_WIDTH = QUANTITY_SLICE.stop
HEX_RE = re.compile(r"^[0-9a-fA-F]*$")


def _is_cacheable_raw_tx(result: Any) -> bool:
    return isinstance(result, str) and bool(result)


class CounterpartyBackend(BlockchainBackend):
    """
    Blockchain backend for the Counterparty meta-protocol.

    Requires the ``counterpartyd`` and ``bitcoind`` endpoints.
    """

    name = "Counterparty"

    def __init__(self, rpc: RPCServicePool):
        for endpoint in (COUNTERPARTYD, BITCOIND):
            if not rpc.has_endpoint(endpoint):
                raise ConfigurationError(f"{self.name} backend requires RPC endpoint '{endpoint}'")
        self.rpc = rpc

    def _counterpartyd(self, method: str, params: Any = None, **kwargs: Any) -> Any:
        return self.rpc.execute(COUNTERPARTYD, method, params if params is not None else {}, **kwargs)

    def _bitcoind(self, method: str, params: list[Any] | None = None, **kwargs: Any) -> Any:
        return self.rpc.execute(BITCOIND, method, params or [], **kwargs)

    def check_backend_config(self, config: dict[str, Any] | None = None) -> bool:
        try:
            state = self._counterpartyd("get_running_info")
        except (httpx.HTTPError, RPCError) as e:
            logger.error(f"counterpartyd is DOWN: {e}")
            return False
        result = isinstance(state, Mapping)
        if result:
            logger.info("counterpartyd is UP and RUNNING")
        else:
            logger.warning(f"counterpartyd returned unexpected state: {state!r}")
        return result

    def get_server_state(self) -> dict[str, Any]:
        return self._counterpartyd("get_running_info")

    def get_block(self, block_id: str | int) -> dict[str, Any]:
        block_hash = block_id
        if isinstance(block_id, int):
            block_hash = self._bitcoind("getblockhash", [block_id])
        return self._bitcoind("getblock", [block_hash])

    def get_block_info(self, block_index: int) -> dict[str, Any]:
        return self._counterpartyd(
            "get_block_info", {"block_index": block_index}, cache_result=True
        )

    def get_raw_transaction(self, tx_hash: str, extended: bool = False) -> Any:
        """
        Get a transaction from bitcoind.

        The plain hex form never changes and is cached; the verbose form carries
        a live confirmation count and is always fetched.
        """
        if extended:
            return self._bitcoind("getrawtransaction", [tx_hash, 1])
        return self._bitcoind(
            "getrawtransaction",
            [tx_hash, 0],
            cache_result=True,
            cache_if=_is_cacheable_raw_tx,
        )

    def get_tx_confirmations(self, tx_hash: str) -> int:
        tx = self.get_raw_transaction(tx_hash, extended=True)
        if not isinstance(tx, Mapping):
            return 0
        return int(tx.get("confirmations", 0))

    def get_fuel_balance(self, addresses: list[str]) -> FuelBalances:
        balances: FuelBalances = {}
        for address in addresses:
            utxos = self._counterpartyd("get_unspent_txouts", {"address": address}) or []
            total_sats = 0
            for utxo in utxos:
                if "value" in utxo:
                    total_sats += int(utxo["value"])
                else:
                    total_sats += btc_to_sats(utxo.get("amount", 0))
            balances[address] = {"BTC": sats_to_btc(total_sats)}
        return balances

    def get_last_transactions(self) -> list[str]:
        return self._bitcoind("getrawmempool") or []

    def get_asset_info_from_tx(self, tx: str, hash_passed: bool = True) -> AssetInfo:
        """
        Decode the send or issuance message carried by a Counterparty transaction.

        Message data layout (hex): 8 digits type id, 16 digits asset id,
        16 digits quantity.

        Raises:
            UnknownTransactionTypeError: If the type id is not send or issuance,
                or the transaction carries no decodable message
        """
        tx_hex = self.get_raw_transaction(tx) if hash_passed else tx
        info = self._counterpartyd("get_tx_info", {"tx_hex": tx_hex}, cache_result=True)

        # get_tx_info answers [source, destination, btc_amount, fee, data]
        if isinstance(info, Mapping):
            source, destination, data = info.get("source"), info.get("destination"), info.get("data")
        else:
            source, destination, data = info[0], info[1], info[4]
        data = data or ""
        # Plain BTC transactions carry no (or a truncated) message
        if len(data) < MESSAGE_HEX_WIDTH or not HEX_RE.match(data[:MESSAGE_HEX_WIDTH]):
            raise UnknownTransactionTypeError(data or None)

        type_code = int(data[TYPE_SLICE], 16)
        try:
            tx_type = TxType(type_code)
        except ValueError:
            raise UnknownTransactionTypeError(type_code) from None

        return AssetInfo(
            source=source or None,
            destination=destination or None,
            asset=asset_name_from_hex(data[ASSET_SLICE]),
            quantity=int(data[QUANTITY_SLICE], 16),
            type=tx_type,
        )

    def get_asset_txs_from_blocks(
        self, assets: list[str], block_indexes: list[int]
    ) -> list[dict[str, Any]]:
        wanted = set(assets)
        blocks = self._counterpartyd(
            "get_blocks", {"block_indexes": list(block_indexes)}, cache_result=True
        )
        result = []
        for block in blocks or []:
            for message in block.get("_messages") or []:
                bindings = self._decode_bindings(message.get("bindings"))
                if bindings is None:
                    continue
                if message.get("category") == "order_matches":
                    matched = message.get("command") == "update" or bool(
                        {bindings.get("forward_asset"), bindings.get("backward_asset")} & wanted
                    )
                else:
                    matched = bindings.get("asset") in wanted
                if matched:
                    result.append({**message, "bindings": bindings})
        return result

    @staticmethod
    def _decode_bindings(raw: Any) -> dict[str, Any] | None:
        if not raw:
            return None
        if isinstance(raw, Mapping):
            return dict(raw)
        try:
            bindings = json.loads(raw)
        except ValueError:
            logger.debug(f"Skipping message with undecodable bindings: {raw!r}")
            return None
        return bindings if isinstance(bindings, dict) and bindings else None

    def get_balances(
        self, assets: list[str] | None = None, wallets: list[str] | None = None
    ) -> WalletBalances:
        filters = []
        if wallets:
            filters.append({"field": "address", "op": "IN", "value": list(wallets)})
        if assets:
            filters.append({"field": "asset", "op": "IN", "value": list(assets)})

        rows = self._counterpartyd("get_balances", {"filters": filters}) or []
        balances: WalletBalances = {}
        for row in rows:
            balances.setdefault(row["address"], {})[row["asset"]] = row["quantity"]
        return balances

    @property
    def balances_service_name(self) -> str:
        return COUNTERPARTYD

    def send(
        self,
        source: str,
        destination: str,
        asset: str,
        amount: int | Decimal,
        public_keys: list[str] | None = None,
        **options: Any,
    ) -> str:
        """
        Build an unsigned send.

        Args:
            amount: Quantity in the asset's base units
            public_keys: Source public keys, needed for multisig data encoding
            options: Extra create_send parameters (fee, encoding, ...)
        """
        params: dict[str, Any] = {
            "source": source,
            "destination": destination,
            "asset": asset,
            "quantity": int(amount),
        }
        if public_keys:
            params["pubkey"] = list(public_keys)
        params.update(options)
        return self._counterpartyd("create_send", params, log_result=True)

    def sign_raw_tx(self, raw_tx: str, private_key: str) -> str:
        result = self._bitcoind(
            "signrawtransactionwithkey", [raw_tx, [private_key]], log_result=True
        )
        if not result.get("complete"):
            raise BackendError(f"Transaction signing incomplete: {result.get('errors')}")
        return result["hex"]

    def send_raw_tx(self, raw_tx: str) -> str:
        return self._bitcoind("sendrawtransaction", [raw_tx], log_result=True)

    def decode_raw_tx(self, raw_tx: str) -> dict[str, Any]:
        return self._bitcoind("decoderawtransaction", [raw_tx], cache_result=True)

    def close(self) -> None:
        self.rpc.close()
