"""
Bitcoin address handling.

An Address is a closed tagged union: a network tag, one of the five
spendable script variants and the payload (hash or witness program).
Decoding then re-encoding is lossless.
"""

from __future__ import annotations

from dataclasses import dataclass

from walletcore.encoding import (
    base58check_decode,
    base58check_encode,
    decode_segwit_address,
    encode_segwit_address,
    hash160,
    sha256,
)
from walletcore.errors import EncodingError, InvalidScript
from walletcore.models import Network, ScriptType
from walletcore.script import (
    Script,
    classify_script,
    p2pkh_script,
    p2sh_script,
    p2tr_script,
    p2wpkh_script,
    p2wsh_script,
)

_PAYLOAD_SIZES = {
    ScriptType.P2PKH: 20,
    ScriptType.P2SH: 20,
    ScriptType.P2WPKH: 20,
    ScriptType.P2WSH: 32,
    ScriptType.P2TR: 32,
}

_HRP_NETWORKS = {
    "bc": Network.MAINNET,
    "tb": Network.TESTNET,
    "bcrt": Network.REGTEST,
}


@dataclass(frozen=True)
class Address:
    network: Network
    script_type: ScriptType
    payload: bytes

    def __post_init__(self) -> None:
        expected = _PAYLOAD_SIZES.get(self.script_type)
        if expected is None:
            raise EncodingError(f"{self.script_type.value} has no address form")
        if len(self.payload) != expected:
            raise EncodingError(
                f"{self.script_type.value} payload must be {expected} bytes, got {len(self.payload)}"
            )

    @classmethod
    def from_string(cls, address: str, network: Network | None = None) -> Address:
        """
        Decode a Base58Check or Bech32/Bech32m address.

        The network is inferred from the prefix/HRP. Test networks share
        prefixes, so pass `network` to pin signet or regtest.
        """
        if address[:3].lower() in ("bc1", "tb1") or address[:5].lower() == "bcrt1":
            decoded = cls._from_segwit(address)
        else:
            decoded = cls._from_base58(address)

        if network is not None:
            if network.params.hrp != decoded.network.params.hrp and not (
                network.is_test and decoded.network.is_test and not decoded.script_type.is_segwit
            ):
                raise EncodingError(f"Address {address} is not a {network.value} address")
            decoded = cls(network, decoded.script_type, decoded.payload)
        return decoded

    @classmethod
    def _from_base58(cls, address: str) -> Address:
        data = base58check_decode(address)
        if len(data) != 21:
            raise EncodingError(f"Invalid Base58 address payload length: {len(data)}")
        version, payload = data[0], data[1:]
        for network in (Network.MAINNET, Network.TESTNET):
            if version == network.params.p2pkh_prefix:
                return cls(network, ScriptType.P2PKH, payload)
            if version == network.params.p2sh_prefix:
                return cls(network, ScriptType.P2SH, payload)
        raise EncodingError(f"Unknown address version byte: {version:#04x}")

    @classmethod
    def _from_segwit(cls, address: str) -> Address:
        hrp, witver, witprog = decode_segwit_address(address)
        network = _HRP_NETWORKS.get(hrp)
        if network is None:
            raise EncodingError(f"Unknown address HRP: {hrp}")
        if witver == 0:
            script_type = ScriptType.P2WPKH if len(witprog) == 20 else ScriptType.P2WSH
        elif witver == 1 and len(witprog) == 32:
            script_type = ScriptType.P2TR
        else:
            raise EncodingError(f"Unsupported witness program v{witver} ({len(witprog)} bytes)")
        return cls(network, script_type, witprog)

    @classmethod
    def from_script(cls, script_pubkey: bytes | Script, network: Network = Network.MAINNET) -> Address:
        spk = bytes(script_pubkey)
        script_type = classify_script(spk)
        if script_type == ScriptType.P2PKH:
            return cls(network, script_type, spk[3:23])
        if script_type == ScriptType.P2SH:
            return cls(network, script_type, spk[2:22])
        if script_type in (ScriptType.P2WPKH, ScriptType.P2WSH, ScriptType.P2TR):
            return cls(network, script_type, spk[2:])
        raise EncodingError(f"Script {spk.hex()} has no address form")

    @classmethod
    def from_public_key(
        cls,
        pubkey: bytes,
        script_type: ScriptType = ScriptType.P2WPKH,
        network: Network = Network.MAINNET,
    ) -> Address:
        """Single-key address; P2TR uses the BIP86 key-only tweak."""
        if len(pubkey) != 33:
            raise EncodingError("Public key must be 33 bytes compressed")

        if script_type == ScriptType.P2PKH:
            return cls(network, script_type, hash160(pubkey))
        if script_type == ScriptType.P2WPKH:
            return cls(network, script_type, hash160(pubkey))
        if script_type == ScriptType.P2SH_P2WPKH:
            redeem = p2wpkh_script(hash160(pubkey))
            return cls(network, ScriptType.P2SH, hash160(redeem.raw))
        if script_type == ScriptType.P2TR:
            from walletcore.taproot import taproot_tweak_pubkey

            output_key, _ = taproot_tweak_pubkey(pubkey[1:])
            return cls(network, script_type, output_key)
        raise InvalidScript(f"No single-key address for {script_type.value}")

    @classmethod
    def p2sh_from_redeem_script(cls, redeem_script: bytes | Script, network: Network = Network.MAINNET) -> Address:
        return cls(network, ScriptType.P2SH, hash160(bytes(redeem_script)))

    @classmethod
    def p2wsh_from_witness_script(
        cls, witness_script: bytes | Script, network: Network = Network.MAINNET
    ) -> Address:
        return cls(network, ScriptType.P2WSH, sha256(bytes(witness_script)))

    def to_string(self) -> str:
        params = self.network.params
        if self.script_type == ScriptType.P2PKH:
            return base58check_encode(bytes([params.p2pkh_prefix]) + self.payload)
        if self.script_type == ScriptType.P2SH:
            return base58check_encode(bytes([params.p2sh_prefix]) + self.payload)
        witver = 1 if self.script_type == ScriptType.P2TR else 0
        return encode_segwit_address(params.hrp, witver, self.payload)

    def script_pubkey(self) -> Script:
        builders = {
            ScriptType.P2PKH: p2pkh_script,
            ScriptType.P2SH: p2sh_script,
            ScriptType.P2WPKH: p2wpkh_script,
            ScriptType.P2WSH: p2wsh_script,
            ScriptType.P2TR: p2tr_script,
        }
        return builders[self.script_type](self.payload)

    def __str__(self) -> str:
        return self.to_string()


def address_to_scriptpubkey(address: str, network: Network | None = None) -> bytes:
    return Address.from_string(address, network).script_pubkey().raw


def scriptpubkey_to_address(script_pubkey: bytes, network: Network = Network.MAINNET) -> str:
    return Address.from_script(script_pubkey, network).to_string()
