"""
Tests for coin selection strategies.
"""

import pytest

from tests.conftest import make_utxo
from walletcore.coin_selection import CoinSelector, SelectionStrategy, select
from walletcore.errors import InsufficientFunds, TransactionBuildError
from walletcore.models import ScriptType
from walletcore.script import p2wpkh_script

SPK = p2wpkh_script(bytes(20)).raw


def _utxos(*values):
    return [make_utxo(v, SPK, txid_byte=i + 1) for i, v in enumerate(values)]


class TestLargestFirst:
    def test_change_output(self):
        selection = select(_utxos(1_000_000), 500_000, 1, SelectionStrategy.LARGEST_FIRST)
        # 1 P2WPKH in, 2 P2WPKH out: ceil(562 / 4)
        assert selection.fee == 141
        assert selection.change_value == 499_859
        assert selection.has_change
        assert selection.total_value == 1_000_000

    def test_spends_biggest_first(self):
        utxos = _utxos(10_000, 300_000, 50_000)
        selection = select(utxos, 100_000, 1, SelectionStrategy.LARGEST_FIRST)
        assert [u.value for u in selection.utxos] == [300_000]

    def test_adds_inputs_until_covered(self):
        utxos = _utxos(60_000, 50_000, 40_000)
        selection = select(utxos, 100_000, 1, SelectionStrategy.LARGEST_FIRST)
        assert [u.value for u in selection.utxos] == [60_000, 50_000]

    def test_dust_change_goes_to_fee(self):
        selection = select(_utxos(10_000), 9_700, 1, SelectionStrategy.LARGEST_FIRST)
        assert selection.change_value == 0
        assert selection.fee == 300
        assert selection.dropped_change == 190

    def test_min_change_floor(self):
        selector = CoinSelector(min_change=1_000)
        selection = selector.select(_utxos(10_000), 9_000, 1, SelectionStrategy.LARGEST_FIRST)
        assert selection.change_value == 0
        assert selection.fee == 1_000

    def test_insufficient_funds(self):
        with pytest.raises(InsufficientFunds) as exc_info:
            select(_utxos(1_000, 2_000), 5_000, 1, SelectionStrategy.LARGEST_FIRST)
        assert exc_info.value.available == 3_000
        assert exc_info.value.required > 5_000

    def test_deterministic_tie_break(self):
        utxos = [make_utxo(50_000, SPK, txid_byte=2), make_utxo(50_000, SPK, txid_byte=1)]
        first = select(utxos, 10_000, 1, SelectionStrategy.LARGEST_FIRST)
        second = select(list(reversed(utxos)), 10_000, 1, SelectionStrategy.LARGEST_FIRST)
        assert first.utxos[0].txid == "01" * 32
        assert first.utxos == second.utxos


class TestBranchAndBound:
    def test_exact_match_without_change(self):
        # effective values 100000 / 50000 / 30000 at 1 sat/vB (68 vB per input)
        utxos = _utxos(100_068, 50_068, 30_068)
        selection = select(utxos, 149_958, 1)
        assert selection.strategy == SelectionStrategy.BRANCH_AND_BOUND
        assert selection.change_value == 0
        assert sorted(u.value for u in selection.utxos) == [50_068, 100_068]
        assert selection.fee == selection.total_value - 149_958
        assert selection.fee == 178

    def test_falls_back_to_largest_first(self):
        selection = select(_utxos(1_000_000), 500_000, 1)
        assert selection.strategy == SelectionStrategy.LARGEST_FIRST
        assert selection.has_change

    def test_search_budget(self):
        selector = CoinSelector(max_tries=1)
        selection = selector.select(_utxos(100_068, 50_068, 30_068), 149_958, 1)
        assert selection.strategy == SelectionStrategy.LARGEST_FIRST

    def test_deterministic(self):
        utxos = _utxos(100_068, 50_068, 30_068, 20_068, 50_068)
        first = select(utxos, 149_958, 1)
        second = select(list(reversed(utxos)), 149_958, 1)
        assert [u.outpoint for u in first.utxos] == [u.outpoint for u in second.utxos]


class TestValidation:
    def test_duplicate_utxo(self):
        utxo = make_utxo(10_000, SPK)
        with pytest.raises(TransactionBuildError):
            select([utxo, utxo], 1_000, 1)

    def test_non_positive_target(self):
        with pytest.raises(ValueError):
            select(_utxos(10_000), 0, 1)

    def test_negative_fee_rate(self):
        with pytest.raises(ValueError):
            select(_utxos(10_000), 1_000, -1)


class TestUnsizableCoins:
    P2SH_SPK = bytes.fromhex("a914" + "00" * 20 + "87")
    P2PK_SPK = bytes.fromhex("21" + "02" + "11" * 32 + "ac")

    @pytest.mark.parametrize("strategy", list(SelectionStrategy))
    def test_skipped_in_mixed_pool(self, strategy):
        utxos = [
            make_utxo(1_000_000, SPK, txid_byte=1),
            make_utxo(5_000, self.P2SH_SPK, txid_byte=2),
            make_utxo(2_000_000, self.P2PK_SPK, txid_byte=3),
        ]
        selection = select(utxos, 10_000, 1, strategy)
        assert [u.txid for u in selection.utxos] == ["01" * 32]

    def test_flagged_nested_segwit_is_spendable(self):
        utxo = make_utxo(50_000, self.P2SH_SPK, script_type=ScriptType.P2SH_P2WPKH)
        selection = select([utxo], 10_000, 1)
        assert selection.utxos == [utxo]

    def test_only_unsizable_coins_is_insufficient(self):
        utxos = [make_utxo(1_000_000, self.P2SH_SPK)]
        with pytest.raises(InsufficientFunds) as exc_info:
            select(utxos, 10_000, 1)
        assert exc_info.value.available == 0
