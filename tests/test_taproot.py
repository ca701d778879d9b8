"""
Tests for Taproot tweaking, trees and control blocks (BIP341 wallet vectors).
"""

import pytest

from walletcore.constants import TAPROOT_LEAF_TAPSCRIPT
from walletcore.errors import EncodingError, InvalidScript
from walletcore.keys import KeyMaterial
from walletcore.taproot import (
    ControlBlock,
    TapLeaf,
    TaprootTreeBuilder,
    lift_x,
    tap_branch_hash,
    taproot_tweak_pubkey,
    taproot_tweak_seckey,
    verify_control_block,
)

KEY_ONLY_INTERNAL = bytes.fromhex("d6889cb081036e0faefa3a35157ad71086b123b2b144b649798b494c300a961d")
SINGLE_LEAF_INTERNAL = bytes.fromhex(
    "187791b6f712a8ea41c8ecdd0ee77fab3e85263b37e1ec18a3651926b3a6cf27"
)
SINGLE_LEAF_SCRIPT = bytes.fromhex(
    "20d85a959b0290bf19bb89ed43c916be835475d013da4b362117393e25a48229b8ac"
)


class TestKeyOnly:
    def test_output_key(self):
        tree = TaprootTreeBuilder(KEY_ONLY_INTERNAL).finalize()
        assert tree.merkle_root == b""
        assert tree.output_key.hex() == (
            "53a1f6e454df1aa2776a2814a721372d6258050de330b3c6d10ee8f4e0dda343"
        )
        assert str(tree.address()) == (
            "bc1p2wsldez5mud2yam29q22wgfh9439spgduvct83k3pm50fcxa5dps59h4z5"
        )
        assert tree.control_blocks == ()

    def test_compressed_internal_key_accepted(self):
        compressed = b"\x02" + KEY_ONLY_INTERNAL
        assert TaprootTreeBuilder(compressed).finalize().output_key == (
            TaprootTreeBuilder(KEY_ONLY_INTERNAL).finalize().output_key
        )


class TestSingleLeaf:
    def test_vector(self):
        tree = TaprootTreeBuilder(SINGLE_LEAF_INTERNAL).add_leaf(SINGLE_LEAF_SCRIPT).finalize()
        assert tree.leaves[0].leaf_hash.hex() == (
            "5b75adecf53548f3ec6ad7d78383bf84cc57b55a3127c72b9a2481752dd88b21"
        )
        assert tree.merkle_root == tree.leaves[0].leaf_hash
        assert tree.tweak.hex() == (
            "cbd8679ba636c1110ea247542cfbd964131a6be84f873f7f3b62a777528ed001"
        )
        assert tree.output_key.hex() == (
            "147c9c57132f6e7ecddba9800bb0c4449251c92a1e60371ee77557b6620f3ea3"
        )
        assert str(tree.address()) == (
            "bc1pz37fc4cn9ah8anwm4xqqhvxygjf9rjf2resrw8h8w4tmvcs0863sa2e586"
        )
        assert tree.control_block_for(SINGLE_LEAF_SCRIPT).serialize().hex() == (
            "c1187791b6f712a8ea41c8ecdd0ee77fab3e85263b37e1ec18a3651926b3a6cf27"
        )

    def test_unknown_leaf(self):
        tree = TaprootTreeBuilder(SINGLE_LEAF_INTERNAL).add_leaf(SINGLE_LEAF_SCRIPT).finalize()
        with pytest.raises(InvalidScript):
            tree.control_block_for(b"\x51")


class TestMultiLeaf:
    def _tree(self, n):
        builder = TaprootTreeBuilder(KEY_ONLY_INTERNAL)
        for i in range(n):
            builder.add_leaf(bytes([0x51 + i]))
        return builder.finalize()

    @pytest.mark.parametrize("n", [2, 3, 5])
    def test_every_control_block_verifies(self, n):
        tree = self._tree(n)
        for leaf in tree.leaves:
            block = tree.control_block_for(leaf.script)
            assert verify_control_block(tree.output_key, leaf.script, block)

    def test_odd_node_carried_up(self):
        tree = self._tree(3)
        a, b, c = (leaf.leaf_hash for leaf in tree.leaves)
        assert tree.merkle_root == tap_branch_hash(tap_branch_hash(a, b), c)
        assert len(tree.control_block_for(b"\x53").path) == 1
        assert len(tree.control_block_for(b"\x51").path) == 2

    def test_wrong_script_fails_verification(self):
        tree = self._tree(2)
        block = tree.control_block_for(b"\x51")
        assert not verify_control_block(tree.output_key, b"\x52", block)

    def test_branch_hash_is_order_independent(self):
        x, y = bytes(32), b"\x01" * 32
        assert tap_branch_hash(x, y) == tap_branch_hash(y, x)


class TestControlBlock:
    def test_parse_roundtrip(self):
        raw = bytes([TAPROOT_LEAF_TAPSCRIPT | 1]) + SINGLE_LEAF_INTERNAL + bytes(64)
        block = ControlBlock.parse(raw)
        assert block.parity == 1
        assert block.leaf_version == TAPROOT_LEAF_TAPSCRIPT
        assert len(block.path) == 2
        assert block.serialize() == raw

    def test_parse_bad_length(self):
        with pytest.raises(EncodingError):
            ControlBlock.parse(bytes(34))
        with pytest.raises(EncodingError):
            ControlBlock.parse(bytes(20))

    def test_depth_limit(self):
        with pytest.raises(InvalidScript):
            ControlBlock(TAPROOT_LEAF_TAPSCRIPT, 0, SINGLE_LEAF_INTERNAL, tuple([bytes(32)] * 129))

    def test_odd_leaf_version_rejected(self):
        with pytest.raises(InvalidScript):
            TapLeaf(b"\x51", 0xC1)


class TestTweaks:
    def test_seckey_tweak_matches_pubkey_tweak(self):
        key = KeyMaterial((7).to_bytes(32, "big"))
        with key.use() as secret:
            tweaked = taproot_tweak_seckey(secret, b"")
        tweaked_key = KeyMaterial(tweaked)
        output_key, _ = taproot_tweak_pubkey(key.xonly_public_key)
        assert tweaked_key.xonly_public_key == output_key

    def test_lift_x_rejects_off_curve(self):
        # BIP340 vector 5: public key not on the curve
        with pytest.raises(InvalidScript):
            lift_x(bytes.fromhex("eefdea4cdb677750a420fee807eacf21eb9898ae79b9768766e4faa04a2d4a34"))
