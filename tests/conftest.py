"""
Shared fixtures for walletcore tests.
"""

from __future__ import annotations

import pytest

from walletcore.bip32 import ExtendedKey, master_from_mnemonic, master_from_seed
from walletcore.keys import KeyMaterial
from walletcore.models import ScriptType, Utxo
from walletcore.signer import Signer

ABANDON_MNEMONIC = (
    "abandon abandon abandon abandon abandon abandon "
    "abandon abandon abandon abandon abandon about"
)
BIP32_VECTOR1_SEED = bytes.fromhex("000102030405060708090a0b0c0d0e0f")
BIP32_VECTOR2_SEED = bytes.fromhex(
    "fffcf9f6f3f0edeae7e4e1dedbd8d5d2cfccc9c6c3c0bdbab7b4b1aeaba8a5a2"
    "9f9c999693908d8a8784817e7b7875726f6c696663605d5a5754514e4b484542"
)


def make_utxo(
    value: int,
    script_pubkey: bytes,
    txid_byte: int = 1,
    vout: int = 0,
    script_type: ScriptType | None = None,
) -> Utxo:
    return Utxo(
        txid=f"{txid_byte:02x}" * 32,
        vout=vout,
        value=value,
        script_pubkey=script_pubkey,
        script_type=script_type,
    )


@pytest.fixture
def vector1_master() -> ExtendedKey:
    return master_from_seed(BIP32_VECTOR1_SEED)


@pytest.fixture
def abandon_master() -> ExtendedKey:
    return master_from_mnemonic(ABANDON_MNEMONIC)


@pytest.fixture
def deterministic_signer() -> Signer:
    """Signer with all-zero BIP340 auxiliary randomness"""
    return Signer(aux_rand=lambda: bytes(32))


@pytest.fixture
def key_factory():
    """Build fresh KeyMaterial from a small integer secret."""

    def _make(n: int) -> KeyMaterial:
        return KeyMaterial(n.to_bytes(32, "big"))

    return _make
