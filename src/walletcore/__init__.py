"""
walletcore - Bitcoin transaction construction and signing engine

Provides HD key derivation, script and Taproot builders, coin selection,
sighash computation, signing and secure key material handling.
"""

__version__ = "0.1.0"

from walletcore.address import Address
from walletcore.bip32 import (
    DerivationPath,
    ExtendedKey,
    Purpose,
    derive,
    derive_address,
    derive_path,
    master_from_mnemonic,
    master_from_seed,
    purpose_path,
)
from walletcore.builder import TransactionBuilder
from walletcore.coin_selection import CoinSelection, CoinSelector, SelectionStrategy, select
from walletcore.errors import (
    BroadcastRejected,
    DustOutputError,
    EncodingError,
    InsufficientFunds,
    InvalidDerivationPath,
    InvalidMnemonicChecksum,
    InvalidScript,
    InvalidSeedLength,
    KeyErasedError,
    NodeError,
    SignatureFailure,
    TransactionBuildError,
    UnbalancedTransaction,
    WalletCoreError,
)
from walletcore.keys import KeyMaterial, secret_scope
from walletcore.models import Network, ScriptType, Utxo, btc_to_sats, sats_to_btc
from walletcore.script import Opcode, Script, ScriptBuilder
from walletcore.signer import InputSpend, SignedTransaction, Signer
from walletcore.taproot import ControlBlock, TapLeaf, TaprootTree, TaprootTreeBuilder
from walletcore.transaction import Transaction, TxIn, TxOut

__all__ = [
    "Address",
    "BroadcastRejected",
    "CoinSelection",
    "CoinSelector",
    "ControlBlock",
    "DerivationPath",
    "DustOutputError",
    "EncodingError",
    "ExtendedKey",
    "InputSpend",
    "InsufficientFunds",
    "InvalidDerivationPath",
    "InvalidMnemonicChecksum",
    "InvalidScript",
    "InvalidSeedLength",
    "KeyErasedError",
    "KeyMaterial",
    "Network",
    "NodeError",
    "Opcode",
    "Purpose",
    "Script",
    "ScriptBuilder",
    "ScriptType",
    "SelectionStrategy",
    "SignatureFailure",
    "SignedTransaction",
    "Signer",
    "TapLeaf",
    "TaprootTree",
    "TaprootTreeBuilder",
    "Transaction",
    "TransactionBuildError",
    "TransactionBuilder",
    "TxIn",
    "TxOut",
    "UnbalancedTransaction",
    "Utxo",
    "WalletCoreError",
    "btc_to_sats",
    "derive",
    "derive_address",
    "derive_path",
    "master_from_mnemonic",
    "master_from_seed",
    "purpose_path",
    "sats_to_btc",
    "secret_scope",
    "select",
]
