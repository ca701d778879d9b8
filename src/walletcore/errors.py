"""
Error taxonomy for the transaction construction and signing engine.

Every structural or cryptographic violation surfaces as one of these types;
nothing is silently coerced.
"""

from __future__ import annotations


class WalletCoreError(Exception):
    """Base class for all walletcore errors."""


class InvalidSeedLength(WalletCoreError):
    pass


class InvalidMnemonicChecksum(WalletCoreError):
    pass


class InvalidDerivationPath(WalletCoreError):
    pass


class InvalidScript(WalletCoreError):
    pass


class DustOutputError(WalletCoreError):
    pass


class InsufficientFunds(WalletCoreError):
    """Raised when the available UTXOs cannot fund target plus fee."""

    def __init__(self, message: str, *, required: int = 0, available: int = 0):
        super().__init__(message)
        self.required = required
        self.available = available


class SignatureFailure(WalletCoreError):
    pass


class KeyErasedError(SignatureFailure):
    """Key material was used after it had been wiped."""


class EncodingError(WalletCoreError):
    """Address, key, transaction or backup decoding failed."""


class TransactionBuildError(WalletCoreError):
    pass


class UnbalancedTransaction(TransactionBuildError):
    pass


class BroadcastRejected(WalletCoreError):
    """The node refused a transaction; `reason` carries its rejection string."""

    def __init__(self, reason: str):
        super().__init__(f"Broadcast rejected: {reason}")
        self.reason = reason


class NodeError(WalletCoreError):
    """Opaque failure reported by the node client collaborator."""

    def __init__(self, message: str, code: int | None = None):
        super().__init__(message)
        self.code = code
