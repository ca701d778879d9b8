"""
Bitcoin protocol and policy constants.

Dust thresholds follow Bitcoin Core's GetDustThreshold() at the default
dustrelayfee of 3 sat/vB: (output size + size of the input that will later
spend it) * 3.
"""

from __future__ import annotations

# secp256k1 curve order
SECP256K1_N = int("FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141", 16)

HARDENED_OFFSET = 0x80000000
MAX_INDEX = 0xFFFFFFFF
MAX_DEPTH = 255

SATS_PER_BTC = 100_000_000
MAX_MONEY = 21_000_000 * SATS_PER_BTC

# Script limits
MAX_SCRIPT_SIZE = 10_000
MAX_TAPROOT_DEPTH = 128
TAPROOT_LEAF_TAPSCRIPT = 0xC0
TAPROOT_LEAF_MASK = 0xFE
TAPROOT_CONTROL_BASE_SIZE = 33
TAPROOT_CONTROL_NODE_SIZE = 32

# Sighash flags
SIGHASH_DEFAULT = 0x00
SIGHASH_ALL = 0x01
SIGHASH_NONE = 0x02
SIGHASH_SINGLE = 0x03
SIGHASH_ANYONECANPAY = 0x80

VALID_LEGACY_SIGHASH_TYPES = frozenset(
    {
        SIGHASH_ALL,
        SIGHASH_NONE,
        SIGHASH_SINGLE,
        SIGHASH_ALL | SIGHASH_ANYONECANPAY,
        SIGHASH_NONE | SIGHASH_ANYONECANPAY,
        SIGHASH_SINGLE | SIGHASH_ANYONECANPAY,
    }
)
VALID_TAPROOT_SIGHASH_TYPES = VALID_LEGACY_SIGHASH_TYPES | {SIGHASH_DEFAULT}

# Sequence numbers
SEQUENCE_FINAL = 0xFFFFFFFF
SEQUENCE_RBF = 0xFFFFFFFD

# Segwit
WITNESS_SCALE_FACTOR = 4

# Standard P2PKH dust limit in Bitcoin Core
STANDARD_DUST_LIMIT = 546  # satoshis
DEFAULT_DUST_RELAY_FEE = 3  # sat/vB

# Input size Bitcoin Core assumes when computing the dust threshold
DUST_SPEND_SIZE_LEGACY = 32 + 4 + 1 + 107 + 4  # 148
DUST_SPEND_SIZE_WITNESS = 32 + 4 + 1 + (107 // WITNESS_SCALE_FACTOR) + 4  # 67
