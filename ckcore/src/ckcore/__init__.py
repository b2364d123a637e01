"""
ckcore - Codecs and shared primitives for CryptoKit components

Provides the asset identifier codec, big-number conversion, the raw
transaction codec, symmetric encryption, the TTL cache and the JSON-RPC
transport.
"""

__version__ = "0.1.0"

from ckcore.assets import (
    asset_name_from_hex,
    decode_asset_name,
    encode_asset_id,
    is_valid_asset_name,
)
from ckcore.bignumber import SerializedBigNumber, bignumber_to_decimal, raw_amount_to_decimal
from ckcore.cache import TTLCache
from ckcore.crypt import (
    CryptError,
    decrypt,
    decrypt_with_password,
    encrypt,
    encrypt_with_password,
)
from ckcore.rpc import JSONRPCClient, RPCError, RPCServicePool, UnknownEndpointError
from ckcore.tx import (
    RawTransaction,
    TxCodecError,
    TxInput,
    TxOutput,
    add_multisig_data_output,
    add_op_return_output,
    btc_to_sats,
    calculate_tx_hash,
    decode_transaction,
    get_op_return_data,
    parse_transaction,
    sats_to_btc,
)

__all__ = [
    "CryptError",
    "JSONRPCClient",
    "RPCError",
    "RPCServicePool",
    "RawTransaction",
    "SerializedBigNumber",
    "TTLCache",
    "TxCodecError",
    "TxInput",
    "TxOutput",
    "UnknownEndpointError",
    "add_multisig_data_output",
    "add_op_return_output",
    "asset_name_from_hex",
    "bignumber_to_decimal",
    "btc_to_sats",
    "calculate_tx_hash",
    "decode_asset_name",
    "decrypt",
    "decrypt_with_password",
    "decode_transaction",
    "encode_asset_id",
    "encrypt",
    "encrypt_with_password",
    "get_op_return_data",
    "is_valid_asset_name",
    "parse_transaction",
    "raw_amount_to_decimal",
    "sats_to_btc",
]
