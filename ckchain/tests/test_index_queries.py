"""
Tests for ckchain.index (EthereumIndex over in-memory collections)
"""

from decimal import Decimal

import pytest
from pymongo.errors import OperationFailure

from ckchain.index import is_valid_address, is_valid_tx_hash
from ckchain.index.ethereum import LAST_BLOCK_CACHE_KEY, tx_cache_key
from ckchain.models import TransactionRecord

ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20
CAROL = "0x" + "c3" * 20
TOKEN_A = "0x" + "0a" * 20
TOKEN_B = "0x" + "0b" * 20
TOKEN_C = "0x" + "0c" * 20
UNTRACKED = "0x" + "ff" * 20

ASSETS = {"TKA": TOKEN_A, "TKB": TOKEN_B, "TKC": TOKEN_C}

TX_HASH = "0x" + "12" * 32
ISSUE_HASH = "0x" + "34" * 32
MISSING_HASH = "0x" + "99" * 32


def transfer(contract, sender, receiver, value, timestamp, tx_hash=None, op_type="transfer"):
    return {
        "transactionHash": tx_hash or f"0x{timestamp:064x}",
        "contract": contract,
        "from": sender,
        "to": receiver,
        "addresses": [sender, receiver],
        "value": value,
        "timestamp": timestamp,
        "blockNumber": timestamp // 10,
        "type": op_type,
    }


@pytest.fixture
def tokens(db):
    db["tokens"].insert_many(
        [
            {"address": TOKEN_B, "decimals": 8, "symbol": "TKB", "transfersCount": 50},
            {"address": TOKEN_A, "decimals": 2, "symbol": "TKA", "transfersCount": 900},
            {"address": TOKEN_C, "decimals": 0, "symbol": "TKC", "transfersCount": 5},
        ]
    )
    return db["tokens"]


class TestValidation:
    def test_address(self) -> None:
        assert is_valid_address(ALICE)
        assert not is_valid_address(ALICE.upper())
        assert not is_valid_address(ALICE[:-2])
        assert not is_valid_address(None)

    def test_tx_hash(self) -> None:
        assert is_valid_tx_hash(TX_HASH)
        assert not is_valid_tx_hash(ALICE)
        assert not is_valid_tx_hash(42)


class TestTransactionRecord:
    def test_status_decides_success(self) -> None:
        doc = {"hash": TX_HASH, "from": ALICE, "gasLimit": 50000, "gasUsed": 50000}
        assert TransactionRecord.from_document({**doc, "status": "0x1"}).success
        assert not TransactionRecord.from_document({**doc, "status": "0x0"}).success

    def test_gas_inference_without_status(self) -> None:
        doc = {"hash": TX_HASH, "from": ALICE, "gasLimit": 60000}
        assert TransactionRecord.from_document({**doc, "gasUsed": 40000}).success
        assert not TransactionRecord.from_document({**doc, "gasUsed": 60000}).success
        assert not TransactionRecord.from_document({**doc, "gasUsed": 21000}).success

    def test_contract_creation_and_internal_id(self) -> None:
        record = TransactionRecord.from_document(
            {"_id": "x", "hash": TX_HASH, "from": ALICE, "to": None, "creates": TOKEN_A}
        )
        assert record.is_contract_creation
        assert record.creates == TOKEN_A
        assert "_id" not in record.extra

    def test_gas_limit_preferred_over_gas(self) -> None:
        doc = {"hash": TX_HASH, "from": ALICE, "gasLimit": 50000, "gas": 21000}
        record = TransactionRecord.from_document(doc)
        assert record.gas_limit == 50000
        assert record.extra["gas"] == 21000
        assert TransactionRecord.from_document({"hash": TX_HASH, "gas": 70000}).gas_limit == 70000


class TestTokenCatalog:
    def test_sorted_by_transfers_count(self, make_index, tokens) -> None:
        catalog = make_index().get_tokens()
        assert list(catalog) == [TOKEN_A, TOKEN_B, TOKEN_C]
        assert catalog[TOKEN_A].decimals == 2
        assert "_id" not in catalog[TOKEN_A].extra

    def test_lookups_served_from_catalog(self, make_index, tokens) -> None:
        index = make_index()
        assert index.get_token(TOKEN_B).symbol == "TKB"
        assert index.get_token(UNTRACKED) is None
        assert index.get_token(TOKEN_C).transfers_count == 5
        assert tokens.find_calls == 1

    def test_cache_expires_after_an_hour(self, make_index, tokens, clock) -> None:
        index = make_index()
        index.get_tokens()
        tokens.insert_many([{"address": UNTRACKED, "decimals": 18, "transfersCount": 1}])

        clock.now += 3600
        assert UNTRACKED not in index.get_tokens()

        clock.now += 1
        assert UNTRACKED in index.get_tokens()
        assert tokens.find_calls == 2

    def test_explicit_refresh(self, make_index, tokens) -> None:
        index = make_index()
        index.get_tokens()
        tokens.insert_many([{"address": UNTRACKED, "decimals": 18, "transfersCount": 1}])
        assert UNTRACKED in index.get_tokens(refresh=True)


class TestLastBlock:
    def test_highest_block_number(self, make_index, db) -> None:
        db["blocks"].insert_many([{"number": 100}, {"number": 105}, {"number": 101}])
        assert make_index().get_last_block() == 105

    def test_empty_index(self, make_index, db) -> None:
        index = make_index()
        assert index.get_last_block() is None
        assert LAST_BLOCK_CACHE_KEY not in index.cache

    def test_cached_for_ttl(self, make_index, db, clock) -> None:
        db["blocks"].insert_many([{"number": 100}])
        index = make_index(last_block_ttl=15)
        assert index.get_last_block() == 100

        db["blocks"].insert_many([{"number": 101}])
        clock.now += 10
        assert index.get_last_block() == 100
        clock.now += 10
        assert index.get_last_block() == 101


class TestAddressHistory:
    @pytest.fixture
    def history_index(self, make_index, db, tokens):
        # Inserted out of order; the fold must still run oldest first
        db["tokenOperations2"].insert_many(
            [
                transfer(TOKEN_A, ALICE, BOB, 400, 1700000200),
                transfer(TOKEN_A, BOB, ALICE, 100, 1700000300),
                transfer(TOKEN_A, BOB, ALICE, 1000, 1700000000),
                transfer(UNTRACKED, BOB, ALICE, 5, 1700000100),
                transfer(TOKEN_A, BOB, CAROL, 777, 1700000150),
                transfer(TOKEN_A, ALICE, ALICE, 1, 1700000400, op_type="issuance"),
            ]
        )
        return make_index(ASSETS)

    def test_running_balance_ascending(self, history_index) -> None:
        rows = history_index.get_address_history(["TKA"], ALICE, direction="asc")
        assert [row.balance for row in rows] == [Decimal(10), Decimal(6), Decimal(7)]
        assert [row.difference for row in rows] == [Decimal(10), Decimal(-4), Decimal(1)]

    def test_descending_reverses_rows(self, history_index) -> None:
        rows = history_index.get_address_history(["TKA"], ALICE, direction="desc")
        assert [row.balance for row in rows] == [Decimal(7), Decimal(6), Decimal(10)]
        assert [row.difference for row in rows] == [Decimal(1), Decimal(-4), Decimal(10)]

    def test_row_fields(self, history_index) -> None:
        first, outbound = history_index.get_address_history(["TKA"], ALICE, direction="asc")[:2]
        assert first.date == "2023-11-14 22:13:20"
        assert first.timestamp == 1700000000 * 1000
        assert first.block == 170000000
        assert first.asset == "TKA"
        assert first.address == ALICE
        assert first.opposite_address == BOB
        assert outbound.address == ALICE
        assert outbound.opposite_address == BOB
        assert outbound.tx_hash == f"0x{1700000200:064x}"

    def test_limit_keeps_most_recent_rows(self, history_index) -> None:
        asc = history_index.get_address_history(["TKA"], ALICE, limit=2, direction="asc")
        desc = history_index.get_address_history(["TKA"], ALICE, limit=2, direction="desc")
        assert [row.balance for row in asc] == [Decimal(6), Decimal(7)]
        assert [row.balance for row in desc] == [Decimal(7), Decimal(6)]

    def test_all_configured_assets_when_none_given(self, history_index) -> None:
        rows = history_index.get_address_history(None, ALICE)
        assert len(rows) == 3

    def test_operation_types(self, history_index) -> None:
        rows = history_index.get_address_history(
            ["TKA"], ALICE, direction="asc", operation_types=("transfer", "issuance")
        )
        assert len(rows) == 4
        assert rows[-1].tx_hash == f"0x{1700000400:064x}"

    def test_unconfigured_asset(self, history_index) -> None:
        assert history_index.get_address_history(["NOPE"], ALICE) == []

    def test_invalid_direction(self, history_index) -> None:
        with pytest.raises(ValueError, match="direction"):
            history_index.get_address_history(["TKA"], ALICE, direction="up")


class TestBalances:
    @pytest.fixture
    def balances_index(self, make_index, db, tokens):
        db["tokenBalances"].insert_many(
            [
                {"address": ALICE, "contract": TOKEN_A, "balance": 12345},
                {"address": ALICE, "contract": TOKEN_B, "balance": {"s": 1, "c": ["25"], "e": 9}},
                {"address": BOB, "contract": TOKEN_A, "balance": "50"},
            ]
        )
        return make_index(ASSETS)

    def test_addresses_balances(self, balances_index) -> None:
        result = balances_index.get_addresses_balances(["TKA", "TKB", "TKC"], [ALICE, BOB])
        assert set(result) == {ALICE, BOB}
        assert result[ALICE]["TKA"].amount == Decimal("123.45")
        assert result[ALICE]["TKB"].amount == Decimal("25")
        assert result[BOB]["TKA"].amount == Decimal("0.50")
        assert "TKC" not in result[ALICE]

    def test_float_coefficient_chunks(self, balances_index, db) -> None:
        db["tokenBalances"].insert_many(
            [
                {
                    "address": BOB,
                    "contract": TOKEN_B,
                    "balance": {"s": 1, "c": [2500000000.0], "e": 9},
                }
            ]
        )
        result = balances_index.get_addresses_balances(["TKB"], [BOB])
        assert result[BOB]["TKB"].amount == Decimal("25")

    def test_only_requested_assets(self, balances_index) -> None:
        result = balances_index.get_addresses_balances(["TKB"], [ALICE, BOB])
        assert result == {ALICE: {"TKB": result[ALICE]["TKB"]}}

    def test_address_balances_use_configured_assets(self, balances_index) -> None:
        balances = balances_index.get_address_balances(ALICE)
        assert sorted(balance.asset for balance in balances) == ["TKA", "TKB"]

    def test_no_configured_assets(self, make_index, tokens) -> None:
        assert make_index().get_address_balances(ALICE) == []


class TestAddressDetails:
    def test_plain_address_with_two_assets(self, make_index, db, tokens) -> None:
        db["tokenBalances"].insert_many(
            [
                {"address": ALICE, "contract": TOKEN_A, "balance": 100},
                {"address": ALICE, "contract": TOKEN_B, "balance": 100},
            ]
        )
        db["tokenOperations2"].insert_many(
            [
                transfer(TOKEN_A, BOB, ALICE, 100, 1700000000),
                transfer(TOKEN_B, ALICE, BOB, 100, 1700000100),
                transfer(TOKEN_B, BOB, CAROL, 100, 1700000200),
            ]
        )
        db["transactions"].insert_many(
            [
                {"hash": TX_HASH, "from": BOB, "to": ALICE, "value": 2.5},
                {"hash": ISSUE_HASH, "from": BOB, "to": ALICE, "value": 1},
            ]
        )

        details = make_index(ASSETS).get_address_details(ALICE)

        assert not details.is_contract
        assert details.token is None
        assert set(details.tokens) == {TOKEN_A, TOKEN_B}
        assert details.tokens[TOKEN_B].symbol == "TKB"
        assert sorted(balance.asset for balance in details.balances) == ["TKA", "TKB"]
        assert [op.timestamp for op in details.transfers] == [1700000100, 1700000000]
        assert details.issuances is None
        assert details.total_in == Decimal("3.5")

    def test_token_contract(self, make_index, db, tokens) -> None:
        db["contracts"].insert_many([{"address": TOKEN_A, "creator": BOB}])
        db["tokenOperations2"].insert_many(
            [transfer(TOKEN_A, BOB, ALICE, 1, 1700000000 + i) for i in range(12)]
            + [transfer(TOKEN_A, TOKEN_A, BOB, 5, 1699999999, op_type="issuance")]
        )

        details = make_index(ASSETS).get_address_details(TOKEN_A)

        assert details.is_contract
        assert details.contract == {"address": TOKEN_A, "creator": BOB}
        assert details.token.symbol == "TKA"
        assert len(details.transfers) == 10
        assert details.transfers[0].timestamp == 1700000011
        assert [op.type for op in details.issuances] == ["issuance"]
        assert details.balances == []

    def test_contract_query_failure_omits_operations(self, make_index, db, tokens) -> None:
        db["contracts"].insert_many([{"address": TOKEN_A}])
        db["tokenOperations2"].error = OperationFailure("operation exceeded time limit")

        details = make_index(ASSETS).get_address_details(TOKEN_A)

        assert details.is_contract
        assert details.token is not None
        assert details.transfers is None
        assert details.issuances is None

    def test_contract_without_token(self, make_index, db, tokens) -> None:
        db["contracts"].insert_many([{"address": UNTRACKED}])
        details = make_index(ASSETS).get_address_details(UNTRACKED)
        assert details.is_contract
        assert details.token is None
        assert details.transfers == []


class TestTransactionDetails:
    @pytest.fixture
    def tx_index(self, make_index, db, tokens):
        db["blocks"].insert_many([{"number": 120}])
        db["contracts"].insert_many([{"address": TOKEN_A}])
        db["transactions"].insert_many(
            [
                {
                    "hash": TX_HASH,
                    "blockNumber": 100,
                    "from": ALICE,
                    "to": TOKEN_A,
                    "value": 0,
                    "gasLimit": 90000,
                    "gasUsed": 52000,
                    "status": "0x1",
                },
                {
                    "hash": ISSUE_HASH,
                    "blockNumber": 110,
                    "from": BOB,
                    "to": TOKEN_A,
                    "value": 0,
                    "gasLimit": 90000,
                    "gasUsed": 61000,
                },
            ]
        )
        db["tokenOperations2"].insert_many(
            [
                transfer(TOKEN_A, ALICE, BOB, 500, 1700000000, tx_hash=TX_HASH),
                transfer(TOKEN_A, TOKEN_A, BOB, 9, 1700000100, tx_hash=ISSUE_HASH),
                transfer(
                    TOKEN_A, TOKEN_A, BOB, 1000, 1700000100, tx_hash=ISSUE_HASH, op_type="issuance"
                ),
            ]
        )
        return make_index(ASSETS)

    def test_token_transfer(self, tx_index) -> None:
        details = tx_index.get_transaction_details(TX_HASH)
        assert details.tx.hash == TX_HASH
        assert details.tx.success
        assert details.contracts == [TOKEN_A]
        assert details.token.address == TOKEN_A
        assert details.operation.type == "transfer"
        assert details.operation.value == 500
        assert details.issuances == []
        assert details.confirmations == 20

    def test_issuance_preferred_over_transfer(self, tx_index) -> None:
        details = tx_index.get_transaction_details(ISSUE_HASH)
        assert len(details.transfers) == 1
        assert details.operation.type == "issuance"
        assert details.operation.value == 1000

    def test_contract_creation(self, make_index, db, tokens) -> None:
        db["transactions"].insert_many(
            [{"hash": TX_HASH, "blockNumber": 5, "from": ALICE, "to": None, "creates": TOKEN_C}]
        )
        details = make_index().get_transaction_details(TX_HASH)
        assert details.contracts == [TOKEN_C]
        assert details.token is None
        assert details.operation is None

    def test_cached_without_expiry(self, tx_index, db, clock) -> None:
        tx_index.get_transaction_details(TX_HASH)
        db["transactions"].docs.clear()
        clock.now += 10**6
        assert tx_index.get_transaction_details(TX_HASH).tx.hash == TX_HASH

    def test_confirmations_recomputed_from_cache(self, tx_index, db, clock) -> None:
        assert tx_index.get_transaction_details(TX_HASH).confirmations == 20
        db["blocks"].insert_many([{"number": 125}])
        clock.now += 16
        assert tx_index.get_transaction_details(TX_HASH).confirmations == 25

    def test_cached_lists_are_not_shared(self, tx_index) -> None:
        details = tx_index.get_transaction_details(TX_HASH)
        details.contracts.append(BOB)
        details.transfers.clear()
        fresh = tx_index.get_transaction_details(TX_HASH)
        assert fresh.contracts == [TOKEN_A]
        assert len(fresh.transfers) == 1

    def test_missing_transaction_not_cached(self, tx_index) -> None:
        assert tx_index.get_transaction_details(MISSING_HASH) is None
        assert tx_cache_key(MISSING_HASH) not in tx_index.cache


class TestLookups:
    def test_block_transactions(self, make_index, db) -> None:
        db["transactions"].insert_many(
            [
                {"hash": TX_HASH, "blockNumber": 7, "from": ALICE},
                {"hash": ISSUE_HASH, "blockNumber": 8, "from": BOB},
            ]
        )
        records = make_index().get_block_transactions("7")
        assert [record.hash for record in records] == [TX_HASH]

    def test_contract(self, make_index, db) -> None:
        db["contracts"].insert_many([{"address": TOKEN_A, "creator": BOB}])
        index = make_index()
        assert index.get_contract(TOKEN_A) == {"address": TOKEN_A, "creator": BOB}
        assert index.get_contract(ALICE) is None

    def test_contract_transactions_count(self, make_index, db) -> None:
        db["tokens"].insert_many([{"address": TOKEN_A, "decimals": 2, "txsCount": 42}])
        index = make_index()
        assert index.get_contract_transactions_count(TOKEN_A) == 42
        assert index.get_contract_transactions_count(UNTRACKED) == 0
