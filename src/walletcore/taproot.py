"""
Taproot (BIP341) commitments.

TaprootTreeBuilder hashes leaves into a Merkle tree, tweaks the internal key
into the output key and produces a control block for every leaf.

Leaves are combined pairwise, bottom-up, in insertion order; a node left
without a partner at some level moves up unchanged. Children are sorted
before hashing, as BIP341 requires.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from coincurve import PrivateKey, PublicKey

from walletcore.constants import (
    MAX_TAPROOT_DEPTH,
    SECP256K1_N,
    TAPROOT_CONTROL_BASE_SIZE,
    TAPROOT_CONTROL_NODE_SIZE,
    TAPROOT_LEAF_MASK,
    TAPROOT_LEAF_TAPSCRIPT,
)
from walletcore.encoding import push_prefixed, tagged_hash
from walletcore.errors import EncodingError, InvalidScript
from walletcore.models import Network, ScriptType
from walletcore.script import Script, p2tr_script


def tap_leaf_hash(script: bytes | Script, leaf_version: int = TAPROOT_LEAF_TAPSCRIPT) -> bytes:
    return tagged_hash("TapLeaf", bytes([leaf_version]) + push_prefixed(bytes(script)))


def tap_branch_hash(left: bytes, right: bytes) -> bytes:
    if right < left:
        left, right = right, left
    return tagged_hash("TapBranch", left + right)


def taproot_tweak(internal_key: bytes, merkle_root: bytes = b"") -> bytes:
    """t = TaggedHash("TapTweak", P || merkle_root); raises InvalidScript if t >= n."""
    tweak = tagged_hash("TapTweak", internal_key + merkle_root)
    if int.from_bytes(tweak, "big") >= SECP256K1_N:
        raise InvalidScript("Taproot tweak is not a valid scalar")
    return tweak


def lift_x(xonly: bytes) -> PublicKey:
    """The point with x-coordinate `xonly` and even y"""
    if len(xonly) != 32:
        raise InvalidScript(f"X-only key must be 32 bytes, got {len(xonly)}")
    try:
        return PublicKey(b"\x02" + xonly)
    except ValueError as e:
        raise InvalidScript(f"X-only key is not on the curve: {e}") from e


def taproot_tweak_pubkey(internal_key: bytes, merkle_root: bytes = b"") -> tuple[bytes, int]:
    """
    Compute the output key Q = lift_x(P) + t*G.

    Returns (x-only Q, parity of Q's y coordinate).
    """
    tweak = taproot_tweak(internal_key, merkle_root)
    try:
        output = lift_x(internal_key).add(tweak).format(compressed=True)
    except ValueError as e:
        raise InvalidScript(f"Taproot tweak produced an invalid point: {e}") from e
    return output[1:], output[0] & 1


def taproot_tweak_seckey(secret: bytes | bytearray, merkle_root: bytes = b"") -> bytearray:
    """Tweak a private key for key-path spending (negated first when its y is odd)."""
    pubkey = PrivateKey(bytes(secret)).public_key.format(compressed=True)
    d = int.from_bytes(secret, "big")
    if pubkey[0] == 0x03:
        d = SECP256K1_N - d
    t = int.from_bytes(taproot_tweak(pubkey[1:], merkle_root), "big")
    tweaked = (d + t) % SECP256K1_N
    if tweaked == 0:
        raise InvalidScript("Tweaked private key is zero")
    return bytearray(tweaked.to_bytes(32, "big"))


@dataclass(frozen=True)
class TapLeaf:
    script: bytes
    leaf_version: int = TAPROOT_LEAF_TAPSCRIPT

    def __post_init__(self) -> None:
        if self.leaf_version & ~TAPROOT_LEAF_MASK or not 0 <= self.leaf_version <= 0xFF:
            raise InvalidScript(f"Leaf version must be even, got {self.leaf_version:#x}")

    @property
    def leaf_hash(self) -> bytes:
        return tap_leaf_hash(self.script, self.leaf_version)


@dataclass(frozen=True)
class ControlBlock:
    """Script-path proof: (leaf_version | parity) || internal key || merkle path"""

    leaf_version: int
    parity: int
    internal_key: bytes
    path: tuple[bytes, ...] = ()

    def __post_init__(self) -> None:
        if len(self.path) > MAX_TAPROOT_DEPTH:
            raise InvalidScript(f"Control block depth {len(self.path)} exceeds {MAX_TAPROOT_DEPTH}")
        if self.leaf_version & 1:
            raise InvalidScript(f"Leaf version must be even, got {self.leaf_version:#x}")

    def serialize(self) -> bytes:
        return bytes([self.leaf_version | self.parity]) + self.internal_key + b"".join(self.path)

    @classmethod
    def parse(cls, data: bytes) -> ControlBlock:
        if len(data) < TAPROOT_CONTROL_BASE_SIZE:
            raise EncodingError(f"Control block too short: {len(data)} bytes")
        if (len(data) - TAPROOT_CONTROL_BASE_SIZE) % TAPROOT_CONTROL_NODE_SIZE:
            raise EncodingError(f"Control block has invalid length {len(data)}")
        depth = (len(data) - TAPROOT_CONTROL_BASE_SIZE) // TAPROOT_CONTROL_NODE_SIZE
        if depth > MAX_TAPROOT_DEPTH:
            raise EncodingError(f"Control block depth {depth} exceeds {MAX_TAPROOT_DEPTH}")

        path = tuple(
            data[TAPROOT_CONTROL_BASE_SIZE + i * 32 : TAPROOT_CONTROL_BASE_SIZE + (i + 1) * 32]
            for i in range(depth)
        )
        return cls(
            leaf_version=data[0] & TAPROOT_LEAF_MASK,
            parity=data[0] & 1,
            internal_key=data[1:33],
            path=path,
        )


def verify_control_block(output_key: bytes, script: bytes | Script, control_block: ControlBlock) -> bool:
    """Recompute the commitment for `script` and check it against `output_key`."""
    k = tap_leaf_hash(script, control_block.leaf_version)
    for node in control_block.path:
        k = tap_branch_hash(k, node)
    try:
        expected, parity = taproot_tweak_pubkey(control_block.internal_key, k)
    except InvalidScript:
        return False
    return expected == output_key and parity == control_block.parity


@dataclass(frozen=True)
class TaprootTree:
    internal_key: bytes
    leaves: tuple[TapLeaf, ...]
    merkle_root: bytes
    output_key: bytes
    parity: int
    control_blocks: tuple[ControlBlock, ...] = field(default=())

    @property
    def tweak(self) -> bytes:
        return taproot_tweak(self.internal_key, self.merkle_root)

    def control_block_for(self, script: bytes | Script) -> ControlBlock:
        raw = bytes(script)
        for leaf, block in zip(self.leaves, self.control_blocks):
            if leaf.script == raw:
                return block
        raise InvalidScript("Script is not a leaf of this tree")

    def leaf_for(self, script: bytes | Script) -> TapLeaf:
        raw = bytes(script)
        for leaf in self.leaves:
            if leaf.script == raw:
                return leaf
        raise InvalidScript("Script is not a leaf of this tree")

    def script_pubkey(self) -> Script:
        return p2tr_script(self.output_key)

    def address(self, network: Network = Network.MAINNET):
        from walletcore.address import Address

        return Address(network, ScriptType.P2TR, self.output_key)


class TaprootTreeBuilder:
    """
    Assemble a Taproot output from an internal key and zero or more leaves.

    Example:
        tree = TaprootTreeBuilder(internal_key).add_leaf(script).finalize()
    """

    def __init__(self, internal_key: bytes):
        if len(internal_key) == 33:
            internal_key = internal_key[1:]
        lift_x(internal_key)
        self.internal_key = bytes(internal_key)
        self._leaves: list[TapLeaf] = []

    def add_leaf(self, script: bytes | Script, leaf_version: int = TAPROOT_LEAF_TAPSCRIPT) -> TaprootTreeBuilder:
        self._leaves.append(TapLeaf(bytes(script), leaf_version))
        return self

    def finalize(self) -> TaprootTree:
        leaves = tuple(self._leaves)
        paths: list[list[bytes]] = [[] for _ in leaves]

        # (node hash, indices of the leaves under it)
        level = [(leaf.leaf_hash, [i]) for i, leaf in enumerate(leaves)]
        while len(level) > 1:
            next_level = []
            for i in range(0, len(level), 2):
                if i + 1 == len(level):
                    next_level.append(level[i])
                    continue
                (left, left_leaves), (right, right_leaves) = level[i], level[i + 1]
                for j in left_leaves:
                    paths[j].append(right)
                for j in right_leaves:
                    paths[j].append(left)
                next_level.append((tap_branch_hash(left, right), left_leaves + right_leaves))
            level = next_level

        merkle_root = level[0][0] if level else b""
        output_key, parity = taproot_tweak_pubkey(self.internal_key, merkle_root)

        control_blocks = tuple(
            ControlBlock(leaf.leaf_version, parity, self.internal_key, tuple(path))
            for leaf, path in zip(leaves, paths)
        )
        return TaprootTree(
            internal_key=self.internal_key,
            leaves=leaves,
            merkle_root=merkle_root,
            output_key=output_key,
            parity=parity,
            control_blocks=control_blocks,
        )
