"""
Ethereum blockchain backend reading the MongoDB transaction index.

Blocks, confirmations, balances and history come from the index; geth is
asked for live ETH balances and eth-service builds and forwards transactions.
"""

from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal
from typing import Any

from ckchain.backends.base import FuelBalances, UnsupportedOperationError, WalletBalances
from ckchain.backends.ethereum import ETH_SERVICE, EthereumBackend, normalize_raw_tx
from ckchain.index import EthereumIndex
from ckchain.models import (
    AddressDetails,
    AddressHistoryEntry,
    TransactionDetails,
    TransactionRecord,
    TxStatus,
)
from ckcore.constants import WEI_DECIMALS
from ckcore.rpc import RPCServicePool

GETH = "geth"


class EthereumIndexBackend(EthereumBackend):
    """
    Ethereum backend over the transaction index.

    Requires the ``eth-service`` and ``geth`` endpoints and an
    :class:`~ckchain.index.EthereumIndex`.
    """

    name = "EthereumMongo"
    required_endpoints = (ETH_SERVICE, GETH)

    def __init__(self, rpc: RPCServicePool, index: EthereumIndex):
        super().__init__(rpc)
        self.index = index

    @property
    def balances_service_name(self) -> str | None:
        return None

    def get_block(self, block_id: str | int) -> list[TransactionRecord]:
        return self.index.get_block_transactions(block_id)

    def get_last_block(self) -> int | None:
        return self.index.get_last_block()

    def get_raw_transaction(self, tx_hash: str, extended: bool = False) -> Any:
        raise UnsupportedOperationError(self.name, "get_raw_transaction")

    def get_tx_confirmations(self, tx_hash: str) -> int:
        tx = self.index.get_transaction(tx_hash)
        if tx is None:
            return 0
        return self.index.confirmations(tx)

    def get_tx_status(self, tx_hash: str) -> TxStatus | None:
        tx = self.index.get_transaction(tx_hash)
        if tx is None:
            return None
        return TxStatus(confirmations=self.index.confirmations(tx), success=tx.success)

    def get_fuel_balance(self, addresses: list[str]) -> FuelBalances:
        balances: FuelBalances = {}
        for address in addresses:
            balance = self.rpc.execute(GETH, "eth_getBalance", [address, "latest"])
            if balance is None:
                continue
            balances[address] = {"ETH": Decimal(int(balance, 16)).scaleb(-WEI_DECIMALS)}
        return balances

    def get_balances(
        self, assets: list[str] | None = None, wallets: list[str] | None = None
    ) -> WalletBalances:
        assets = list(assets) if assets else list(self.index.asset_contracts)
        balances = self.index.get_addresses_balances(assets, wallets or [])
        return {
            wallet: {asset: balance.amount for asset, balance in wallet_balances.items()}
            for wallet, wallet_balances in balances.items()
        }

    def get_address_details(self, address: str) -> AddressDetails:
        details = self.index.get_address_details(address)
        fuel = self.get_fuel_balance([address])
        details.balance = fuel.get(address, {}).get("ETH", Decimal(0))
        return details

    def get_address_history(
        self,
        assets: list[str] | None,
        address: str,
        limit: int | None = None,
        direction: str = "desc",
        operation_types: tuple[str, ...] = ("transfer",),
    ) -> list[AddressHistoryEntry]:
        return self.index.get_address_history(
            assets, address, limit=limit, direction=direction, operation_types=operation_types
        )

    def get_transaction_details(self, tx_hash: str) -> TransactionDetails | None:
        return self.index.get_transaction_details(tx_hash)

    def hw_send(
        self,
        source: str,
        destination: str,
        asset: str,
        amount: int | Decimal,
        public_keys: list[str] | None = None,
        gas_price: Mapping[str, Any] | None = None,
        use_actual_nonce: bool = False,
    ) -> Any:
        """Build an unsigned transfer for signing on a hardware wallet."""
        params = self._send_params(source, destination, asset, amount, gas_price, use_actual_nonce)
        return self._service("createHwSendTx", params, log_result=True)

    def send_raw_tx(self, raw_tx: str) -> str:
        return self._service("sendRawTransaction", [normalize_raw_tx(raw_tx)], log_result=True)

    def check_balance(self, raw_tx: str) -> Any:
        return self._service("checkBalance", [raw_tx])

    def top_up_and_send_raw_tx(self, raw_tx: str, top_up_tx: str) -> Any:
        """Broadcast a fuel top-up transaction followed by ``raw_tx``."""
        return self._service(
            "topUpAndSendRawTx",
            [normalize_raw_tx(raw_tx), normalize_raw_tx(top_up_tx)],
            log_result=True,
        )

    def close(self) -> None:
        super().close()
        self.index.close()
