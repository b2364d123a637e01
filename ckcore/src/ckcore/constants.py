"""
Protocol constants shared by the codecs and backends.
"""

from __future__ import annotations

# Minor units per BTC
SATOSHI = 100_000_000

# Decimal places of ETH (wei per ETH = 10**18)
WEI_DECIMALS = 18

# Counterparty message type codes
TXN_TYPE_SEND = 0
TXN_TYPE_ISSUANCE = 20

# Script opcodes used by the metadata outputs
OP_RETURN = 0x6A
OP_1 = 0x51
OP_3 = 0x53
OP_CHECKMULTISIG = 0xAE

# Largest payload a single-byte direct push can carry (opcodes 0x01-0x4b)
MAX_OP_RETURN_PAYLOAD = 75

# Bare multisig data output: payload hex is zero-padded to this many nibbles
MULTISIG_DATA_HEX_WIDTH = 196
MULTISIG_DATA_OUTPUT_VALUE = 7800  # sats

# Gas used by a plain value transfer; anything at or below it did not run contract code
BASE_TX_GAS = 21000

# Index cache lifetimes (seconds)
TOKEN_UPDATE_INTERVAL = 3600
LAST_BLOCK_UPDATE_INTERVAL = 15
