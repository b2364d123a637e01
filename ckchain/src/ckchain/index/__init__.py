"""
Query and aggregation layer over the MongoDB Ethereum index.
"""

from ckchain.index.ethereum import EthereumIndex, is_valid_address, is_valid_tx_hash

__all__ = ["EthereumIndex", "is_valid_address", "is_valid_tx_hash"]
