"""
Domain records returned by the backends and the index layer.

Records are built from backend responses and store documents through the
``from_*`` constructors, so storage-internal fields (Mongo ``_id``) never
reach callers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any

from ckcore.constants import BASE_TX_GAS, TXN_TYPE_ISSUANCE, TXN_TYPE_SEND

INTERNAL_FIELDS = frozenset({"_id"})


def strip_internal(document: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in document.items() if key not in INTERNAL_FIELDS}


class TxType(int, Enum):
    SEND = TXN_TYPE_SEND
    ISSUANCE = TXN_TYPE_ISSUANCE


class OperationType(str, Enum):
    TRANSFER = "transfer"
    ISSUANCE = "issuance"


@dataclass
class AssetInfo:
    """Asset movement carried by a single transaction."""

    source: str | None
    destination: str | None
    asset: str
    quantity: int | Decimal | str
    type: TxType
    gas: int = 0
    gas_used: int = 0


def _to_int(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    return int(value)


@dataclass
class TransactionRecord:
    hash: str
    block_number: int | None
    from_address: str
    to_address: str | None
    value: Any
    gas_limit: int
    gas_used: int
    success: bool
    status: str | None = None
    creates: str | None = None
    timestamp: int | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def is_contract_creation(self) -> bool:
        return self.to_address is None

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> TransactionRecord:
        doc = strip_internal(document)
        gas_limit = _to_int(doc.pop("gasLimit") if "gasLimit" in doc else doc.pop("gas", 0))
        gas_used = _to_int(doc.pop("gasUsed", 0))
        status = doc.pop("status", None)
        if status is not None:
            success = str(status).lower() in ("0x1", "1", "true")
        else:
            success = BASE_TX_GAS < gas_used < gas_limit
        block_number = doc.pop("blockNumber", None)
        return cls(
            hash=doc.pop("hash"),
            block_number=int(block_number) if block_number is not None else None,
            from_address=doc.pop("from", ""),
            to_address=doc.pop("to", None) or None,
            value=doc.pop("value", 0),
            gas_limit=gas_limit,
            gas_used=gas_used,
            success=success,
            status=str(status) if status is not None else None,
            creates=doc.pop("creates", None) or None,
            timestamp=doc.pop("timestamp", None),
            extra=doc,
        )


@dataclass
class Operation:
    """Token transfer or issuance recorded by the index."""

    transaction_hash: str
    contract: str | None
    from_address: str | None
    to_address: str | None
    value: Any
    timestamp: int
    type: str
    block_number: int | None = None
    usd_price: Any = None

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> Operation:
        doc = strip_internal(document)
        return cls(
            transaction_hash=doc["transactionHash"],
            contract=doc.get("contract"),
            from_address=doc.get("from"),
            to_address=doc.get("to"),
            value=doc.get("value", 0),
            timestamp=int(doc.get("timestamp", 0)),
            type=doc["type"],
            block_number=doc.get("blockNumber"),
            usd_price=doc.get("usdPrice"),
        )


@dataclass
class Token:
    address: str
    decimals: int
    name: str | None = None
    symbol: str | None = None
    transfers_count: int = 0
    txs_count: int = 0
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> Token:
        doc = strip_internal(document)
        decimals = doc.pop("decimals", 0)
        return cls(
            address=doc.pop("address"),
            decimals=int(decimals) if decimals not in (None, "") else 0,
            name=doc.pop("name", None),
            symbol=doc.pop("symbol", None),
            transfers_count=int(doc.pop("transfersCount", 0) or 0),
            txs_count=int(doc.pop("txsCount", 0) or 0),
            extra=doc,
        )


@dataclass
class Balance:
    address: str
    asset: str
    contract: str
    raw: Any
    decimals: int
    amount: Decimal


@dataclass
class AddressHistoryEntry:
    date: str
    timestamp: int  # milliseconds
    block: int | None
    tx_hash: str
    address: str | None
    opposite_address: str | None
    difference: Decimal
    asset: str
    balance: Decimal
    usd_price: Any = None


@dataclass
class TxStatus:
    confirmations: int
    success: bool


@dataclass
class TransactionDetails:
    tx: TransactionRecord
    contracts: list[str] = field(default_factory=list)
    token: Token | None = None
    transfers: list[Operation] = field(default_factory=list)
    issuances: list[Operation] = field(default_factory=list)
    operation: Operation | None = None
    confirmations: int = 0


@dataclass
class AddressDetails:
    address: str
    is_contract: bool = False
    balance: Decimal = Decimal(0)
    total_in: Decimal = Decimal(0)
    contract: dict[str, Any] | None = None
    token: Token | None = None
    balances: list[Balance] = field(default_factory=list)
    tokens: dict[str, Token] = field(default_factory=dict)
    transfers: list[Operation] | None = None
    issuances: list[Operation] | None = None
