"""
Tests for network parameters and UTXO validation.
"""

import pytest

from walletcore.models import Network, ScriptType, Utxo
from walletcore.script import p2pkh_script, p2wpkh_script


class TestNetwork:
    def test_prefixes(self):
        assert Network.MAINNET.params.hrp == "bc"
        assert Network.SIGNET.params.hrp == "tb"
        assert Network.REGTEST.params.hrp == "bcrt"
        assert Network.TESTNET.params.coin_type == 1
        assert not Network.MAINNET.is_test
        assert Network.REGTEST.is_test

    def test_nested_segwit_counts_as_segwit(self):
        assert ScriptType.P2SH_P2WPKH.is_segwit
        assert not ScriptType.P2SH.is_segwit
        assert not ScriptType.P2PKH.is_segwit


class TestUtxo:
    def test_script_type_classified(self):
        utxo = Utxo(txid="aa" * 32, vout=0, value=1_000, script_pubkey=p2wpkh_script(bytes(20)).raw)
        assert utxo.resolved_script_type == ScriptType.P2WPKH
        assert utxo.outpoint == ("aa" * 32, 0)

    def test_explicit_script_type_wins(self):
        utxo = Utxo(
            txid="aa" * 32,
            vout=0,
            value=1_000,
            script_pubkey=bytes.fromhex("a914" + "00" * 20 + "87"),
            script_type=ScriptType.P2SH_P2WPKH,
        )
        assert utxo.resolved_script_type == ScriptType.P2SH_P2WPKH

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"txid": "aa" * 31},
            {"txid": "zz" * 32},
            {"vout": -1},
            {"value": 0},
            {"value": 21_000_000 * 100_000_000 + 1},
        ],
    )
    def test_invalid(self, kwargs):
        fields = {
            "txid": "aa" * 32,
            "vout": 0,
            "value": 1_000,
            "script_pubkey": p2pkh_script(bytes(20)).raw,
        }
        fields.update(kwargs)
        with pytest.raises(ValueError):
            Utxo(**fields)
