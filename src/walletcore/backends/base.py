"""
Base node client interface.

The signing engine never talks to the network itself; UTXOs, fee estimates
and broadcasting come through this collaborator.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal

from walletcore.models import Utxo
from walletcore.transaction import Transaction


@dataclass
class TransactionInfo:
    """A transaction as seen by the node"""

    txid: str
    tx: Transaction
    confirmations: int
    block_hash: str | None = None
    block_time: int | None = None


class NodeClient(ABC):
    """
    Abstract node client interface.
    Implementations surface failures as NodeError and broadcast rejections
    as BroadcastRejected; there is no retry policy.
    """

    @abstractmethod
    async def list_unspent(self, addresses: list[str], min_conf: int = 1) -> list[Utxo]:
        """Get spendable UTXOs paying to the given addresses"""

    @abstractmethod
    async def estimate_smart_fee(self, target_blocks: int) -> Decimal | None:
        """Estimate fee in sat/vB for target confirmation blocks, None if unavailable"""

    @abstractmethod
    async def send_raw_transaction(self, raw_tx: bytes | str) -> str:
        """Broadcast a serialized transaction, returns txid"""

    @abstractmethod
    async def get_raw_transaction(self, txid: str) -> TransactionInfo | None:
        """Get a transaction and its confirmation count by txid, None if unknown"""

    async def close(self) -> None:
        """Close any open connections"""
        pass
