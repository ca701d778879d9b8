"""
Tests for the walletcore command line interface.
"""

import json
from decimal import Decimal
from unittest.mock import AsyncMock

from typer.testing import CliRunner

from tests.conftest import ABANDON_MNEMONIC
from tests.test_transaction import BIP143_UNSIGNED
from walletcore.backends import BitcoinCoreClient
from walletcore.cli import app
from walletcore.errors import NodeError

runner = CliRunner()


class TestGenerate:
    def test_generate_12_words(self):
        result = runner.invoke(app, ["generate", "--words", "12"])
        assert result.exit_code == 0
        assert len(result.stdout.split()) == 12

    def test_invalid_word_count(self):
        result = runner.invoke(app, ["generate", "--words", "13"])
        assert result.exit_code == 1


class TestDerive:
    def test_bip84_first_address(self):
        result = runner.invoke(
            app, ["derive", "m/84'/0'/0'/0/0", "--mnemonic", ABANDON_MNEMONIC]
        )
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["address"] == "bc1qcr8te4kr609gcawutmrza0j4xv80jy8z306fyu"
        assert data["fingerprint"] == "73c5da0a"

    def test_mnemonic_file(self, tmp_path):
        path = tmp_path / "seed.txt"
        path.write_text(ABANDON_MNEMONIC + "\n")
        result = runner.invoke(
            app, ["derive", "m/44'/0'/0'/0/0", "-f", str(path), "--script-type", "p2pkh"]
        )
        assert result.exit_code == 0
        assert json.loads(result.stdout)["address"] == "1LqBGSKuX5yYUonjxT5qGfpUsXKYYWeabA"

    def test_bad_checksum(self):
        bad = ABANDON_MNEMONIC.replace("about", "abandon")
        result = runner.invoke(app, ["derive", "m/0", "--mnemonic", bad])
        assert result.exit_code == 1

    def test_missing_mnemonic(self, monkeypatch):
        monkeypatch.delenv("MNEMONIC", raising=False)
        result = runner.invoke(app, ["derive", "m/0"])
        assert result.exit_code == 1


class TestAddress:
    def test_taproot_addresses(self):
        result = runner.invoke(
            app, ["address", "--mnemonic", ABANDON_MNEMONIC, "--purpose", "86", "--count", "2"]
        )
        assert result.exit_code == 0
        lines = result.stdout.strip().splitlines()
        assert len(lines) == 2
        assert lines[0].startswith("m/86'/0'/0'/0/0")
        assert lines[0].endswith("bc1p5cyxnuxmeuwuvkwfem96lqzszd02n6xdcjrs20cac6yqjjwudpxqkedrcr")

    def test_unsupported_purpose(self):
        result = runner.invoke(app, ["address", "--mnemonic", ABANDON_MNEMONIC, "--purpose", "45"])
        assert result.exit_code == 1


class TestDecodeTx:
    def test_decode(self):
        result = runner.invoke(app, ["decode-tx", BIP143_UNSIGNED])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["locktime"] == 17
        assert data["vout"][0]["address"].startswith("1")

    def test_decode_garbage(self):
        result = runner.invoke(app, ["decode-tx", "deadbeef"])
        assert result.exit_code == 1


class TestEstimateFee:
    def test_node_estimate(self, monkeypatch):
        mock = AsyncMock(return_value=Decimal("12"))
        monkeypatch.setattr(BitcoinCoreClient, "estimate_smart_fee", mock)
        result = runner.invoke(app, ["estimate-fee", "--target", "3"])
        assert result.exit_code == 0
        assert "12 sat/vB" in result.stdout
        mock.assert_awaited_once_with(3)

    def test_fallback_to_configured_rate(self, monkeypatch):
        monkeypatch.setenv("WALLETCORE_FEE_RATE", "4.5")
        monkeypatch.setattr(BitcoinCoreClient, "estimate_smart_fee", AsyncMock(return_value=None))
        result = runner.invoke(app, ["estimate-fee"])
        assert result.exit_code == 0
        assert "4.5 sat/vB" in result.stdout

    def test_node_unreachable(self, monkeypatch):
        monkeypatch.setattr(
            BitcoinCoreClient,
            "estimate_smart_fee",
            AsyncMock(side_effect=NodeError("connection refused")),
        )
        result = runner.invoke(app, ["estimate-fee"])
        assert result.exit_code == 1
