"""
Query and aggregation layer over the MongoDB Ethereum transaction index.

The index is written by an external indexer; this module only reads it,
reshapes documents into domain records and caches the expensive lookups:

- ``tokens``: the full token catalog, for ``token_cache_ttl`` seconds
- ``last-block``: the highest indexed block number, for ``last_block_ttl`` seconds
- ``tx-<hash>``: transaction details, forever (mined transactions are immutable)
"""

from __future__ import annotations

import dataclasses
import re
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from loguru import logger
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.errors import PyMongoError

from ckchain.errors import ConfigurationError
from ckchain.models import (
    AddressDetails,
    AddressHistoryEntry,
    Balance,
    Operation,
    OperationType,
    Token,
    TransactionDetails,
    TransactionRecord,
    strip_internal,
)
from ckcore.bignumber import bignumber_to_decimal, raw_amount_to_decimal
from ckcore.cache import TTLCache
from ckcore.constants import LAST_BLOCK_UPDATE_INTERVAL, TOKEN_UPDATE_INTERVAL

ADDRESS_RE = re.compile(r"^0x[0-9a-f]{40}$")
TX_HASH_RE = re.compile(r"^0x[0-9a-f]{64}$")

# Logical name -> collection name in the index database
COLLECTIONS = {
    "transactions": "transactions",
    "blocks": "blocks",
    "contracts": "contracts",
    "tokens": "tokens",
    "operations": "tokenOperations2",
    "balances": "tokenBalances",
}

TOKENS_CACHE_KEY = "tokens"
LAST_BLOCK_CACHE_KEY = "last-block"

DEFAULT_OPERATIONS_LIMIT = 10
HISTORY_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def is_valid_address(address: Any) -> bool:
    return isinstance(address, str) and ADDRESS_RE.match(address) is not None


def is_valid_tx_hash(tx_hash: Any) -> bool:
    return isinstance(tx_hash, str) and TX_HASH_RE.match(tx_hash) is not None


def tx_cache_key(tx_hash: str) -> str:
    return f"tx-{tx_hash}"


class EthereumIndex:
    """
    Read-only view of the Ethereum index.

    Args:
        db: pymongo ``Database`` (or any mapping of collection name to collection)
        asset_contracts: Configured asset name -> token contract address
        cache: Cache for the token catalog, last block and transaction details
    """

    def __init__(
        self,
        db: Any,
        asset_contracts: Mapping[str, str] | None = None,
        cache: TTLCache | None = None,
        token_cache_ttl: float = TOKEN_UPDATE_INTERVAL,
        last_block_ttl: float = LAST_BLOCK_UPDATE_INTERVAL,
        client: MongoClient | None = None,
    ):
        self.transactions = db[COLLECTIONS["transactions"]]
        self.blocks = db[COLLECTIONS["blocks"]]
        self.contracts = db[COLLECTIONS["contracts"]]
        self.tokens = db[COLLECTIONS["tokens"]]
        self.operations = db[COLLECTIONS["operations"]]
        self.balances = db[COLLECTIONS["balances"]]

        self.asset_contracts = dict(asset_contracts or {})
        self.cache = cache if cache is not None else TTLCache()
        self.token_cache_ttl = token_cache_ttl
        self.last_block_ttl = last_block_ttl
        self._client = client

    @classmethod
    def from_settings(cls, settings: Any, cache: TTLCache | None = None) -> EthereumIndex:
        if settings.mongo is None:
            raise ConfigurationError("Mongo configuration not found")
        client: MongoClient = MongoClient(settings.mongo.server)
        logger.info(f"Using Ethereum index {settings.mongo.server}/{settings.mongo.db_name}")
        return cls(
            client[settings.mongo.db_name],
            asset_contracts=settings.asset_contracts(),
            cache=cache,
            token_cache_ttl=settings.token_cache_ttl,
            last_block_ttl=settings.last_block_ttl,
            client=client,
        )

    def close(self) -> None:
        if self._client is not None:
            self._client.close()

    is_valid_address = staticmethod(is_valid_address)
    is_valid_tx_hash = staticmethod(is_valid_tx_hash)

    @staticmethod
    def _find(
        collection: Any,
        query: dict[str, Any],
        sort: list[tuple[str, int]] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        cursor = collection.find(query)
        if sort:
            cursor = cursor.sort(sort)
        if limit:
            cursor = cursor.limit(limit)
        return list(cursor)

    # Blocks and transactions

    def get_last_block(self) -> int | None:
        cached = self.cache.get(LAST_BLOCK_CACHE_KEY, max_age=self.last_block_ttl)
        if cached is not None:
            return cached
        blocks = self._find(self.blocks, {}, sort=[("number", DESCENDING)], limit=1)
        if not blocks or blocks[0].get("number") is None:
            return None
        last_block = int(blocks[0]["number"])
        self.cache.set(LAST_BLOCK_CACHE_KEY, last_block)
        return last_block

    def get_block_transactions(self, block: int | str) -> list[TransactionRecord]:
        docs = self._find(self.transactions, {"blockNumber": int(block)})
        return [TransactionRecord.from_document(doc) for doc in docs]

    def get_transaction(self, tx_hash: str) -> TransactionRecord | None:
        doc = self.transactions.find_one({"hash": tx_hash})
        return TransactionRecord.from_document(doc) if doc else None

    def confirmations(self, tx: TransactionRecord) -> int:
        last_block = self.get_last_block()
        if last_block is None or tx.block_number is None:
            return 0
        return last_block - tx.block_number

    # Operations

    def get_operations(self, tx_hash: str, op_type: str | None = None) -> list[Operation]:
        query: dict[str, Any] = {"transactionHash": tx_hash}
        if op_type:
            query["type"] = op_type
        return [Operation.from_document(doc) for doc in self._find(self.operations, query)]

    def get_transfers(self, tx_hash: str) -> list[Operation]:
        return self.get_operations(tx_hash, OperationType.TRANSFER.value)

    def get_issuances(self, tx_hash: str) -> list[Operation]:
        return self.get_operations(tx_hash, OperationType.ISSUANCE.value)

    def _get_contract_operations(self, op_type: str, address: str, limit: int) -> list[Operation]:
        docs = self._find(
            self.operations,
            {"contract": address, "type": op_type},
            sort=[("timestamp", DESCENDING)],
            limit=limit,
        )
        return [Operation.from_document(doc) for doc in docs]

    def get_contract_transfers(
        self, address: str, limit: int = DEFAULT_OPERATIONS_LIMIT
    ) -> list[Operation]:
        return self._get_contract_operations(OperationType.TRANSFER.value, address, limit)

    def get_contract_issuances(
        self, address: str, limit: int = DEFAULT_OPERATIONS_LIMIT
    ) -> list[Operation]:
        return self._get_contract_operations(OperationType.ISSUANCE.value, address, limit)

    def get_address_transfers(
        self, address: str, limit: int = DEFAULT_OPERATIONS_LIMIT
    ) -> list[Operation]:
        """Most recent transfers sent or received by ``address``, newest first."""
        docs = self._find(
            self.operations,
            {
                "$or": [{"from": address}, {"to": address}],
                "type": OperationType.TRANSFER.value,
            },
            sort=[("timestamp", DESCENDING)],
            limit=limit,
        )
        return [Operation.from_document(doc) for doc in docs]

    # Contracts and tokens

    def get_contract(self, address: str) -> dict[str, Any] | None:
        doc = self.contracts.find_one({"address": address})
        return strip_internal(doc) if doc else None

    def get_contract_transactions_count(self, address: str) -> int:
        doc = self.tokens.find_one({"address": address})
        return int(doc.get("txsCount") or 0) if doc else 0

    def get_tokens(self, refresh: bool = False) -> dict[str, Token]:
        """Token catalog keyed by contract address, most transferred first."""
        if not refresh:
            cached = self.cache.get(TOKENS_CACHE_KEY, max_age=self.token_cache_ttl)
            if cached is not None:
                return cached

        docs = self._find(self.tokens, {}, sort=[("transfersCount", DESCENDING)])
        tokens = {}
        for doc in docs:
            token = Token.from_document(doc)
            tokens[token.address] = token
        self.cache.set(TOKENS_CACHE_KEY, tokens)
        logger.debug(f"Token catalog loaded: {len(tokens)} tokens")
        return tokens

    def get_token(self, address: str) -> Token | None:
        return self.get_tokens().get(address)

    # Aggregations

    def get_address_details(self, address: str) -> AddressDetails:
        """
        Aggregate what the index knows about an address.

        Token contracts get their latest transfers and issuances; any other
        address gets its balances in the configured assets, the tokens behind
        those balances and its latest transfers. The native coin balance is
        left at zero for the backend to fill in.
        """
        details = AddressDetails(address=address)

        incoming = self._find(self.transactions, {"to": address})
        details.total_in = sum(
            (bignumber_to_decimal(doc.get("value") or 0) for doc in incoming), Decimal(0)
        )

        contract = self.get_contract(address)
        if contract:
            details.is_contract = True
            details.contract = contract
            details.token = self.get_token(address)

        if details.token is not None:
            details.transfers = self._omit_on_failure(
                "transfers", address, self.get_contract_transfers
            )
            details.issuances = self._omit_on_failure(
                "issuances", address, self.get_contract_issuances
            )
        else:
            details.balances = self.get_address_balances(address)
            for balance in details.balances:
                token = self.get_token(balance.contract)
                if token is not None:
                    details.tokens[balance.contract] = token
            details.transfers = self.get_address_transfers(address)
        return details

    @staticmethod
    def _omit_on_failure(
        name: str, address: str, query: Callable[[str], list[Operation]]
    ) -> list[Operation] | None:
        try:
            return query(address)
        except PyMongoError as e:
            logger.error(f"Failed to load contract {name} for {address}: {e}")
            return None

    def get_transaction_details(self, tx_hash: str) -> TransactionDetails | None:
        """
        Transaction with the contracts it touched and its token operation.

        The assembled details are cached without expiry; confirmations are
        recomputed on every call.
        """
        key = tx_cache_key(tx_hash)
        details = self.cache.get(key)
        if details is None:
            details = self._build_transaction_details(tx_hash)
            if details is None:
                return None
            self.cache.set(key, details)
        return dataclasses.replace(
            details,
            contracts=list(details.contracts),
            transfers=list(details.transfers),
            issuances=list(details.issuances),
            confirmations=self.confirmations(details.tx),
        )

    def _build_transaction_details(self, tx_hash: str) -> TransactionDetails | None:
        tx = self.get_transaction(tx_hash)
        if tx is None:
            return None

        details = TransactionDetails(tx=tx)
        if tx.creates:
            details.contracts.append(tx.creates)
        if tx.from_address and self.get_contract(tx.from_address):
            details.contracts.append(tx.from_address)
        if tx.to_address and self.get_contract(tx.to_address):
            details.contracts.append(tx.to_address)
            details.token = self.get_token(tx.to_address)
            if details.token is not None:
                details.transfers = self.get_transfers(tx_hash)
                details.issuances = self.get_issuances(tx_hash)
                if details.issuances:
                    details.operation = details.issuances[0]
                elif details.transfers:
                    details.operation = details.transfers[0]
        return details

    # Balances

    def _configured_tokens(self, assets: Iterable[str] | None = None) -> dict[str, Token]:
        """Configured asset name -> token, for assets whose token is in the catalog."""
        wanted = set(assets) if assets else None
        tokens = {}
        for asset, contract in self.asset_contracts.items():
            if wanted is not None and asset not in wanted:
                continue
            token = self.get_token(contract)
            if token is None:
                logger.warning(f"Token {contract} for asset {asset} not found in the index")
                continue
            tokens[asset] = token
        return tokens

    def get_addresses_balances(
        self, assets: Iterable[str], addresses: Iterable[str]
    ) -> dict[str, dict[str, Balance]]:
        """Balances in the given configured assets: {address: {asset: Balance}}."""
        addresses = list(addresses)
        result: dict[str, dict[str, Balance]] = {}
        for asset, token in self._configured_tokens(assets).items():
            for address in addresses:
                doc = self.balances.find_one({"address": address, "contract": token.address})
                if not doc:
                    continue
                raw = doc.get("balance", 0)
                result.setdefault(address, {})[asset] = Balance(
                    address=address,
                    asset=asset,
                    contract=token.address,
                    raw=raw,
                    decimals=token.decimals,
                    amount=raw_amount_to_decimal(raw, token.decimals),
                )
        return result

    def get_address_balances(self, address: str) -> list[Balance]:
        if not self.asset_contracts:
            return []
        balances = self.get_addresses_balances(self.asset_contracts, [address])
        return list(balances.get(address, {}).values())

    def get_address_history(
        self,
        assets: Iterable[str] | None,
        address: str,
        limit: int | None = None,
        direction: str = "desc",
        operation_types: Iterable[str] = (OperationType.TRANSFER.value,),
    ) -> list[AddressHistoryEntry]:
        """
        Operations touching ``address`` with the running balance after each one.

        Operations are always folded oldest first so running balances start at
        zero; ``limit`` keeps the most recent rows and ``direction`` only
        decides the order they are returned in.

        Args:
            assets: Configured asset names to include (all configured when empty)
            limit: Number of most recent rows to keep
            direction: "asc" (oldest first) or "desc" (newest first)
            operation_types: Operation types to include
        """
        if direction not in ("asc", "desc"):
            raise ValueError(f"direction must be 'asc' or 'desc', got {direction!r}")

        tokens = self._configured_tokens(assets)
        contract_assets = {token.address: asset for asset, token in tokens.items()}
        if not contract_assets:
            return []

        docs = self._find(
            self.operations,
            {
                "type": {"$in": list(operation_types)},
                "addresses": address,
                "contract": {"$in": list(contract_assets)},
            },
            sort=[("timestamp", ASCENDING)],
        )

        running: dict[str, Decimal] = {asset: Decimal(0) for asset in tokens}
        rows = []
        for doc in docs:
            op = Operation.from_document(doc)
            asset = contract_assets.get(op.contract or "")
            if asset is None:
                continue
            decimals = tokens[asset].decimals
            difference = raw_amount_to_decimal(op.value, decimals)
            own, opposite = op.to_address, op.from_address
            if op.from_address == address:
                difference = -difference
                own, opposite = op.from_address, op.to_address

            running[asset] += difference
            rows.append(
                AddressHistoryEntry(
                    date=datetime.fromtimestamp(op.timestamp, tz=timezone.utc).strftime(
                        HISTORY_DATE_FORMAT
                    ),
                    timestamp=op.timestamp * 1000,
                    block=op.block_number,
                    tx_hash=op.transaction_hash,
                    address=own,
                    opposite_address=opposite,
                    difference=difference,
                    asset=asset,
                    balance=running[asset],
                    usd_price=op.usd_price,
                )
            )

        if limit:
            rows = rows[-limit:]
        if direction == "desc":
            rows.reverse()
        logger.debug(f"Address history [{address}]: {len(rows)} rows")
        return rows
