"""
Node client implementations.

Available clients:
- BitcoinCoreClient: Full node via Bitcoin Core JSON-RPC
"""

from walletcore.backends.base import NodeClient, TransactionInfo
from walletcore.backends.bitcoin_core import BitcoinCoreClient

__all__ = [
    "BitcoinCoreClient",
    "NodeClient",
    "TransactionInfo",
]
