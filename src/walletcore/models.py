"""
Shared data models: networks, script types, UTXOs and amount conversion.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from walletcore.constants import MAX_INDEX, MAX_MONEY, SATS_PER_BTC


@dataclass(frozen=True)
class NetworkParams:
    """Encoding prefixes for one Bitcoin network"""

    hrp: str
    p2pkh_prefix: int
    p2sh_prefix: int
    wif_prefix: int
    xprv_version: bytes
    xpub_version: bytes
    coin_type: int


_MAINNET = NetworkParams(
    hrp="bc",
    p2pkh_prefix=0x00,
    p2sh_prefix=0x05,
    wif_prefix=0x80,
    xprv_version=bytes.fromhex("0488ade4"),
    xpub_version=bytes.fromhex("0488b21e"),
    coin_type=0,
)


def _test_params(hrp: str) -> NetworkParams:
    return NetworkParams(
        hrp=hrp,
        p2pkh_prefix=0x6F,
        p2sh_prefix=0xC4,
        wif_prefix=0xEF,
        xprv_version=bytes.fromhex("04358394"),
        xpub_version=bytes.fromhex("043587cf"),
        coin_type=1,
    )


class Network(str, Enum):
    MAINNET = "mainnet"
    TESTNET = "testnet"
    SIGNET = "signet"
    REGTEST = "regtest"

    @property
    def params(self) -> NetworkParams:
        return _NETWORK_PARAMS[self]

    @property
    def is_test(self) -> bool:
        return self is not Network.MAINNET


_NETWORK_PARAMS: dict[Network, NetworkParams] = {
    Network.MAINNET: _MAINNET,
    Network.TESTNET: _test_params("tb"),
    Network.SIGNET: _test_params("tb"),
    Network.REGTEST: _test_params("bcrt"),
}


class ScriptType(str, Enum):
    P2PKH = "p2pkh"
    P2SH = "p2sh"
    P2WPKH = "p2wpkh"
    P2WSH = "p2wsh"
    P2TR = "p2tr"
    P2SH_P2WPKH = "p2sh-p2wpkh"  # nested segwit; on-chain it is a P2SH output
    P2PK = "p2pk"
    MULTISIG = "multisig"
    NULL_DATA = "nulldata"
    UNKNOWN = "unknown"

    @property
    def is_segwit(self) -> bool:
        return self in (ScriptType.P2WPKH, ScriptType.P2WSH, ScriptType.P2TR, ScriptType.P2SH_P2WPKH)


@dataclass(frozen=True)
class Utxo:
    """
    A spendable output reference.

    txid is hex in RPC (display) byte order, i.e. reversed relative to the
    serialized outpoint.
    """

    txid: str
    vout: int
    value: int
    script_pubkey: bytes
    script_type: ScriptType | None = None
    address: str | None = None
    confirmations: int = 0
    path: str | None = None

    def __post_init__(self) -> None:
        if len(self.txid) != 64:
            raise ValueError(f"txid must be 32 bytes hex, got {self.txid!r}")
        bytes.fromhex(self.txid)
        if not 0 <= self.vout <= MAX_INDEX:
            raise ValueError(f"vout out of range: {self.vout}")
        if not 0 < self.value <= MAX_MONEY:
            raise ValueError(f"UTXO value must be positive, got {self.value}")

    @property
    def outpoint(self) -> tuple[str, int]:
        return (self.txid, self.vout)

    @property
    def resolved_script_type(self) -> ScriptType:
        """Script type given at construction, otherwise classified from the scriptPubKey."""
        if self.script_type is not None:
            return self.script_type
        from walletcore.script import classify_script  # script imports models

        return classify_script(self.script_pubkey)


def btc_to_sats(amount: Decimal | float | str) -> int:
    """Convert a BTC amount (as returned by RPC) to integer satoshis, exactly."""
    value = Decimal(str(amount)) * SATS_PER_BTC
    if value != value.to_integral_value():
        raise ValueError(f"Amount {amount} has sub-satoshi precision")
    return int(value)


def sats_to_btc(sats: int) -> Decimal:
    return (Decimal(sats) / SATS_PER_BTC).quantize(Decimal("0.00000001"))
