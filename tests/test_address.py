"""
Tests for address encoding, decoding and scriptPubKey conversion.
"""

import pytest

from walletcore.address import Address, address_to_scriptpubkey, scriptpubkey_to_address
from walletcore.errors import EncodingError
from walletcore.models import Network, ScriptType
from walletcore.script import multisig_script

PUBKEY = bytes.fromhex("0279be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798")


class TestFromPublicKey:
    def test_p2pkh(self):
        address = Address.from_public_key(PUBKEY, ScriptType.P2PKH)
        assert str(address) == "1BgGZ9tcN4rm9KBzDn7KprQz87SZ26SAMH"

    def test_p2wpkh(self):
        address = Address.from_public_key(PUBKEY, ScriptType.P2WPKH)
        assert str(address) == "bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4"

    def test_p2wpkh_testnet(self):
        address = Address.from_public_key(PUBKEY, ScriptType.P2WPKH, Network.TESTNET)
        assert str(address) == "tb1qw508d6qejxtdg4y5r3zarvary0c5xw7kxpjzsx"

    def test_p2wpkh_regtest_hrp(self):
        address = Address.from_public_key(PUBKEY, ScriptType.P2WPKH, Network.REGTEST)
        assert str(address).startswith("bcrt1q")

    def test_nested_segwit_is_p2sh(self):
        address = Address.from_public_key(PUBKEY, ScriptType.P2SH_P2WPKH)
        assert address.script_type == ScriptType.P2SH
        assert str(address).startswith("3")

    def test_uncompressed_rejected(self):
        with pytest.raises(EncodingError):
            Address.from_public_key(b"\x04" + bytes(64))


class TestFromString:
    @pytest.mark.parametrize(
        "text,script_type",
        [
            ("1BgGZ9tcN4rm9KBzDn7KprQz87SZ26SAMH", ScriptType.P2PKH),
            ("bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4", ScriptType.P2WPKH),
            (
                "bc1qrp33g0q5c5txsp9arysrx4k6zdkfs4nce4xj0gdcccefvpysxf3qccfmv3",
                ScriptType.P2WSH,
            ),
            (
                "bc1p0xlxvlhemja6c4dqv22uapctqupfhlxm9h8z3k2e72q4k9hcz7vqzk5jj0",
                ScriptType.P2TR,
            ),
        ],
    )
    def test_roundtrip(self, text, script_type):
        address = Address.from_string(text)
        assert address.script_type == script_type
        assert address.network == Network.MAINNET
        assert address.to_string() == text

    def test_uppercase_bech32(self):
        address = Address.from_string("BC1QW508D6QEJXTDG4Y5R3ZARVARY0C5XW7KV8F3T4")
        assert address.to_string() == "bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4"

    def test_network_mismatch(self):
        with pytest.raises(EncodingError):
            Address.from_string("bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4", Network.TESTNET)

    def test_pin_signet(self):
        address = Address.from_string(
            "tb1qw508d6qejxtdg4y5r3zarvary0c5xw7kxpjzsx", Network.SIGNET
        )
        assert address.network == Network.SIGNET

    def test_testnet_defaults(self):
        address = Address.from_string("tb1qw508d6qejxtdg4y5r3zarvary0c5xw7kxpjzsx")
        assert address.network == Network.TESTNET

    def test_garbage(self):
        with pytest.raises(EncodingError):
            Address.from_string("not-an-address")

    def test_future_witness_version_unsupported(self):
        # BIP350 v16 test vector
        with pytest.raises(EncodingError):
            Address.from_string("BC1SW50QGDZ25J")


class TestScriptConversion:
    def test_address_to_scriptpubkey(self):
        spk = address_to_scriptpubkey("bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4")
        assert spk.hex() == "0014751e76e8199196d454941c45d1b3a323f1433bd6"

    def test_scriptpubkey_to_address(self):
        spk = bytes.fromhex("76a914751e76e8199196d454941c45d1b3a323f1433bd688ac")
        assert scriptpubkey_to_address(spk) == "1BgGZ9tcN4rm9KBzDn7KprQz87SZ26SAMH"

    def test_bare_multisig_has_no_address(self):
        with pytest.raises(EncodingError):
            Address.from_script(multisig_script(1, [PUBKEY]))

    def test_p2wsh_from_witness_script(self):
        script = multisig_script(1, [PUBKEY])
        address = Address.p2wsh_from_witness_script(script)
        assert address.script_type == ScriptType.P2WSH
        assert Address.from_script(address.script_pubkey()) == address

    def test_p2sh_from_redeem_script(self):
        address = Address.p2sh_from_redeem_script(multisig_script(1, [PUBKEY]))
        assert str(address).startswith("3")

    def test_payload_length_checked(self):
        with pytest.raises(EncodingError):
            Address(Network.MAINNET, ScriptType.P2TR, bytes(20))
