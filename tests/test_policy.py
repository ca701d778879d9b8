"""
Tests for weight, fee and dust estimation.
"""

from decimal import Decimal

import pytest

from walletcore.errors import InvalidScript
from walletcore.models import ScriptType, btc_to_sats, sats_to_btc
from walletcore.policy import (
    dust_threshold,
    estimate_fee,
    estimate_vsize,
    estimate_weight,
    fee_for_vsize,
    input_weight,
    script_dust_threshold,
)
from walletcore.script import null_data_script, p2wpkh_script


class TestWeights:
    def test_p2wpkh_one_in_one_out(self):
        # 10 + 41 + 31 = 82 non-witness bytes, 108 witness, 2 marker
        weight = estimate_weight([ScriptType.P2WPKH], [ScriptType.P2WPKH])
        assert weight == 82 * 4 + 108 + 2
        assert estimate_vsize([ScriptType.P2WPKH], [ScriptType.P2WPKH]) == 110

    def test_legacy_has_no_marker(self):
        weight = estimate_weight([ScriptType.P2PKH], [ScriptType.P2PKH])
        assert weight == (10 + 148 + 34) * 4

    def test_taproot_input(self):
        assert input_weight(ScriptType.P2TR) == 41 * 4 + 66

    def test_extra_output_bytes(self):
        base = estimate_weight([ScriptType.P2WPKH])
        assert estimate_weight([ScriptType.P2WPKH], extra_output_bytes=10) == base + 40

    def test_unknown_input_type(self):
        with pytest.raises(InvalidScript):
            estimate_weight([ScriptType.MULTISIG])


class TestFees:
    def test_fee_rounds_up(self):
        assert fee_for_vsize(110, Decimal("1.5")) == 165
        assert fee_for_vsize(111, Decimal("1.5")) == 167

    def test_estimate_fee(self):
        assert estimate_fee([ScriptType.P2WPKH], [ScriptType.P2WPKH], 2) == 220

    def test_zero_rate(self):
        assert estimate_fee([ScriptType.P2PKH], [ScriptType.P2PKH], 0) == 0


class TestDust:
    @pytest.mark.parametrize(
        "script_type,expected",
        [
            (ScriptType.P2PKH, 546),
            (ScriptType.P2SH, 540),
            (ScriptType.P2WPKH, 294),
            (ScriptType.P2WSH, 330),
            (ScriptType.P2TR, 330),
        ],
    )
    def test_default_thresholds(self, script_type, expected):
        assert dust_threshold(script_type) == expected

    def test_higher_relay_fee(self):
        assert dust_threshold(ScriptType.P2WPKH, 6) == 588

    def test_op_return_never_dust(self):
        assert script_dust_threshold(null_data_script(b"hello").raw) == 0

    def test_script_threshold_matches_type(self):
        spk = p2wpkh_script(bytes(20)).raw
        assert script_dust_threshold(spk) == 294


class TestAmounts:
    def test_btc_to_sats(self):
        assert btc_to_sats("0.00012345") == 12345
        assert btc_to_sats(Decimal("1")) == 100_000_000

    def test_sub_satoshi_rejected(self):
        with pytest.raises(ValueError):
            btc_to_sats("0.000000001")

    def test_sats_to_btc(self):
        assert sats_to_btc(150_000_000) == Decimal("1.5")
