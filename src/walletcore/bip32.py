"""
BIP32 HD key derivation.

Implements BIP32 CKDpriv/CKDpub, extended key (de)serialization and the
BIP44/49/84/86 purpose paths. Private keys are held in KeyMaterial so that
every node (including intermediates of a path walk) can be erased.
"""

from __future__ import annotations

import hashlib
import hmac
import re
from collections.abc import Iterator
from dataclasses import dataclass
from enum import IntEnum

from coincurve import PublicKey
from loguru import logger

from walletcore.constants import HARDENED_OFFSET, MAX_DEPTH, MAX_INDEX, SECP256K1_N
from walletcore.encoding import base58check_decode, base58check_encode, hash160
from walletcore.errors import EncodingError, InvalidDerivationPath, InvalidSeedLength
from walletcore.keys import KeyMaterial, is_valid_secret, wipe_buffer
from walletcore.mnemonic import mnemonic_to_seed
from walletcore.models import Network, ScriptType

_PATH_COMPONENT = re.compile(r"^(\d+)(['hH]?)$")


@dataclass(frozen=True)
class DerivationPath:
    """An ordered sequence of child indices; hardened indices are >= 2^31."""

    indices: tuple[int, ...] = ()

    def __post_init__(self) -> None:
        for index in self.indices:
            if not 0 <= index <= MAX_INDEX:
                raise InvalidDerivationPath(f"Child index out of range: {index}")

    @classmethod
    def parse(cls, path: str) -> DerivationPath:
        """
        Parse path notation (e.g. "m/84'/0'/0'/0/0").

        ', h and H mark hardened components; the leading "m" is optional.
        """
        text = path.strip()
        if not text:
            raise InvalidDerivationPath("Empty derivation path")

        parts = text.split("/")
        if parts[0] in ("m", "M"):
            parts = parts[1:]

        indices = []
        for part in parts:
            match = _PATH_COMPONENT.match(part)
            if not match:
                raise InvalidDerivationPath(f"Malformed path component {part!r} in {path!r}")
            index = int(match.group(1))
            if index >= HARDENED_OFFSET:
                raise InvalidDerivationPath(f"Path component {part!r} out of range")
            if match.group(2):
                index += HARDENED_OFFSET
            indices.append(index)

        return cls(tuple(indices))

    def child(self, index: int) -> DerivationPath:
        return DerivationPath(self.indices + (index,))

    def __iter__(self) -> Iterator[int]:
        return iter(self.indices)

    def __len__(self) -> int:
        return len(self.indices)

    def __str__(self) -> str:
        parts = ["m"]
        for index in self.indices:
            if index >= HARDENED_OFFSET:
                parts.append(f"{index - HARDENED_OFFSET}'")
            else:
                parts.append(str(index))
        return "/".join(parts)


def hardened(index: int) -> int:
    return index + HARDENED_OFFSET


class Purpose(IntEnum):
    BIP44 = 44
    BIP49 = 49
    BIP84 = 84
    BIP86 = 86

    @property
    def script_type(self) -> ScriptType:
        return {
            Purpose.BIP44: ScriptType.P2PKH,
            Purpose.BIP49: ScriptType.P2SH_P2WPKH,
            Purpose.BIP84: ScriptType.P2WPKH,
            Purpose.BIP86: ScriptType.P2TR,
        }[self]


def purpose_path(
    purpose: Purpose | int,
    coin_type: int = 0,
    account: int = 0,
    change: int = 0,
    index: int = 0,
) -> tuple[DerivationPath, ScriptType]:
    """Return m/purpose'/coin_type'/account'/change/index and its address variant."""
    try:
        purpose = Purpose(purpose)
    except ValueError as e:
        raise InvalidDerivationPath(f"Unsupported purpose: {purpose}") from e
    if change not in (0, 1):
        raise InvalidDerivationPath(f"Change must be 0 or 1, got {change}")
    for value in (coin_type, account, index):
        if not 0 <= value < HARDENED_OFFSET:
            raise InvalidDerivationPath(f"Path component out of range: {value}")

    path = DerivationPath(
        (
            hardened(purpose.value),
            hardened(coin_type),
            hardened(account),
            change,
            index,
        )
    )
    return path, purpose.script_type


class ExtendedKey:
    """
    A BIP32 node: private (KeyMaterial) or public-only, plus chain code and
    the metadata needed for xprv/xpub serialization.
    """

    def __init__(
        self,
        chain_code: bytes | bytearray,
        *,
        key: KeyMaterial | None = None,
        public_key: bytes | None = None,
        depth: int = 0,
        parent_fingerprint: bytes = b"\x00\x00\x00\x00",
        child_number: int = 0,
        network: Network = Network.MAINNET,
    ):
        if key is None and public_key is None:
            raise ValueError("ExtendedKey needs a private or a public key")
        if len(chain_code) != 32:
            raise ValueError("Chain code must be 32 bytes")
        if not 0 <= depth <= MAX_DEPTH:
            raise InvalidDerivationPath(f"Depth out of range: {depth}")

        self._key = key
        self._public_key = key.public_key if key is not None else bytes(public_key)
        self._chain_code = bytearray(chain_code)
        self.depth = depth
        self.parent_fingerprint = bytes(parent_fingerprint)
        self.child_number = child_number
        self.network = network

    @classmethod
    def from_seed(cls, seed: bytes, network: Network = Network.MAINNET) -> ExtendedKey:
        """Create master HD key from seed"""
        if not 16 <= len(seed) <= 64:
            raise InvalidSeedLength(f"Seed must be 16-64 bytes, got {len(seed)}")

        hmac_result = bytearray(hmac.new(b"Bitcoin seed", seed, hashlib.sha512).digest())
        try:
            key_bytes = hmac_result[:32]
            if not is_valid_secret(key_bytes):
                raise InvalidSeedLength("Seed produces an invalid master key")
            key = KeyMaterial(key_bytes, network=network)
            return cls(hmac_result[32:], key=key, network=network)
        finally:
            wipe_buffer(hmac_result)

    @classmethod
    def from_mnemonic(
        cls, words: str | list[str], passphrase: str = "", network: Network = Network.MAINNET
    ) -> ExtendedKey:
        seed = bytearray(mnemonic_to_seed(words, passphrase))
        try:
            return cls.from_seed(bytes(seed), network=network)
        finally:
            wipe_buffer(seed)

    @property
    def is_private(self) -> bool:
        return self._key is not None

    @property
    def key(self) -> KeyMaterial:
        """The node's KeyMaterial (owned by this ExtendedKey)."""
        if self._key is None:
            raise InvalidDerivationPath("Public-only extended key has no private key")
        return self._key

    @property
    def public_key(self) -> bytes:
        return self._public_key

    @property
    def chain_code(self) -> bytes:
        return bytes(self._chain_code)

    @property
    def identifier(self) -> bytes:
        return hash160(self._public_key)

    @property
    def fingerprint(self) -> bytes:
        return self.identifier[:4]

    @property
    def is_hardened(self) -> bool:
        return self.child_number >= HARDENED_OFFSET

    def child(self, index: int) -> ExtendedKey:
        """Derive the child at `index` (CKDpriv for private nodes, CKDpub otherwise)."""
        if not 0 <= index <= MAX_INDEX:
            raise InvalidDerivationPath(f"Child index out of range: {index}")
        if self.depth >= MAX_DEPTH:
            raise InvalidDerivationPath("Cannot derive beyond depth 255")

        is_hardened = index >= HARDENED_OFFSET
        if is_hardened and self._key is None:
            raise InvalidDerivationPath("Hardened derivation requires a private key")

        while True:
            if index > MAX_INDEX or (index >= HARDENED_OFFSET) != is_hardened:
                raise InvalidDerivationPath("No valid child key left in this index range")

            child = self._derive_child(index, is_hardened)
            if child is not None:
                return child

            # BIP32: IL >= n or a zero/infinite child key; proceed with the next index
            logger.debug(f"Invalid child at index {index}, skipping to {index + 1}")
            index += 1

    def _derive_child(self, index: int, is_hardened: bool) -> ExtendedKey | None:
        if is_hardened:
            data = bytearray(b"\x00")
            with self.key.use() as secret:
                data += secret
        else:
            data = bytearray(self._public_key)
        data += index.to_bytes(4, "big")

        hmac_result = bytearray(hmac.new(self._chain_code, data, hashlib.sha512).digest())
        wipe_buffer(data)
        try:
            il = int.from_bytes(hmac_result[:32], "big")
            if il >= SECP256K1_N:
                return None

            meta = dict(
                depth=self.depth + 1,
                parent_fingerprint=self.fingerprint,
                child_number=index,
                network=self.network,
            )

            if self._key is not None:
                with self._key.use() as secret:
                    child_int = (int.from_bytes(secret, "big") + il) % SECP256K1_N
                if child_int == 0:
                    return None
                child_key = KeyMaterial(bytearray(child_int.to_bytes(32, "big")), network=self.network)
                return ExtendedKey(hmac_result[32:], key=child_key, **meta)

            try:
                child_pub = PublicKey(self._public_key).add(bytes(hmac_result[:32]))
            except ValueError:
                return None
            return ExtendedKey(hmac_result[32:], public_key=child_pub.format(compressed=True), **meta)
        finally:
            wipe_buffer(hmac_result)

    def derive_path(self, path: str | DerivationPath) -> ExtendedKey:
        return derive_path(self, path)

    def neuter(self) -> ExtendedKey:
        """Public-only copy of this node"""
        return ExtendedKey(
            self._chain_code,
            public_key=self._public_key,
            depth=self.depth,
            parent_fingerprint=self.parent_fingerprint,
            child_number=self.child_number,
            network=self.network,
        )

    def copy(self) -> ExtendedKey:
        if self._key is None:
            return self.neuter()
        with self._key.use() as secret:
            key = KeyMaterial(bytes(secret), network=self.network)
        return ExtendedKey(
            self._chain_code,
            key=key,
            depth=self.depth,
            parent_fingerprint=self.parent_fingerprint,
            child_number=self.child_number,
            network=self.network,
        )

    def serialize(self, private: bool | None = None) -> bytes:
        """78-byte BIP32 serialization"""
        if private is None:
            private = self.is_private
        params = self.network.params
        header = (
            (params.xprv_version if private else params.xpub_version)
            + bytes([self.depth])
            + self.parent_fingerprint
            + self.child_number.to_bytes(4, "big")
            + bytes(self._chain_code)
        )
        if not private:
            return header + self._public_key
        with self.key.use() as secret:
            return header + b"\x00" + bytes(secret)

    def to_string(self, private: bool | None = None) -> str:
        """xprv/xpub (tprv/tpub on test networks) Base58Check string"""
        return base58check_encode(self.serialize(private))

    def to_xpub(self) -> str:
        return self.to_string(private=False)

    @classmethod
    def deserialize(cls, data: bytes, network: Network | None = None) -> ExtendedKey:
        if len(data) != 78:
            raise EncodingError(f"Extended key must be 78 bytes, got {len(data)}")

        version = data[:4]
        detected, private = _lookup_version(version)
        if network is None:
            network = detected
        elif network.params.xprv_version[:4] != detected.params.xprv_version[:4]:
            raise EncodingError(f"Extended key version does not match network {network.value}")

        depth = data[4]
        parent_fingerprint = data[5:9]
        child_number = int.from_bytes(data[9:13], "big")
        chain_code = data[13:45]
        key_data = data[45:78]

        if depth == 0 and (parent_fingerprint != b"\x00\x00\x00\x00" or child_number != 0):
            raise EncodingError("Master key with non-zero parent fingerprint or index")

        meta = dict(
            depth=depth,
            parent_fingerprint=parent_fingerprint,
            child_number=child_number,
            network=network,
        )
        if private:
            if key_data[0] != 0x00 or not is_valid_secret(key_data[1:]):
                raise EncodingError("Invalid private key data in extended key")
            return cls(chain_code, key=KeyMaterial(key_data[1:], network=network), **meta)

        if key_data[0] not in (0x02, 0x03):
            raise EncodingError("Invalid public key prefix in extended key")
        try:
            PublicKey(key_data)
        except ValueError as e:
            raise EncodingError(f"Invalid public key in extended key: {e}") from e
        return cls(chain_code, public_key=key_data, **meta)

    @classmethod
    def from_string(cls, text: str, network: Network | None = None) -> ExtendedKey:
        return cls.deserialize(base58check_decode(text), network=network)

    def address(self, script_type: ScriptType = ScriptType.P2WPKH):
        """Single-key address of the given variant for this node"""
        from walletcore.address import Address

        return Address.from_public_key(self._public_key, script_type, self.network)

    def wipe(self) -> None:
        if self._key is not None:
            self._key.wipe()
        wipe_buffer(self._chain_code)

    def __enter__(self) -> ExtendedKey:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.wipe()

    def __repr__(self) -> str:
        kind = "private" if self.is_private else "public"
        return (
            f"ExtendedKey({kind}, depth={self.depth}, "
            f"fingerprint={self.fingerprint.hex()}, network={self.network.value})"
        )


def _lookup_version(version: bytes) -> tuple[Network, bool]:
    for network in (Network.MAINNET, Network.TESTNET):
        if version == network.params.xprv_version:
            return network, True
        if version == network.params.xpub_version:
            return network, False
    raise EncodingError(f"Unknown extended key version: {version.hex()}")


def master_from_seed(seed: bytes, network: Network = Network.MAINNET) -> ExtendedKey:
    return ExtendedKey.from_seed(seed, network=network)


def master_from_mnemonic(
    words: str | list[str], passphrase: str = "", network: Network = Network.MAINNET
) -> ExtendedKey:
    return ExtendedKey.from_mnemonic(words, passphrase, network=network)


def derive(parent: ExtendedKey, index: int) -> ExtendedKey:
    return parent.child(index)


def derive_path(parent: ExtendedKey, path: str | DerivationPath) -> ExtendedKey:
    """
    Walk `path` from `parent`. Intermediate nodes are wiped as soon as their
    child exists; `parent` itself is left untouched and the caller owns the
    returned node.
    """
    if isinstance(path, str):
        path = DerivationPath.parse(path)

    if parent.depth + len(path) > MAX_DEPTH:
        raise InvalidDerivationPath(f"Path {path} exceeds maximum depth from depth {parent.depth}")

    key = parent
    try:
        for index in path:
            child = key.child(index)
            if key is not parent:
                key.wipe()
            key = child
    except Exception:
        if key is not parent:
            key.wipe()
        raise

    logger.debug(f"Derived {path} (depth {key.depth})")
    return key if key is not parent else parent.copy()


def derive_address(
    master: ExtendedKey,
    purpose: Purpose | int,
    account: int = 0,
    change: int = 0,
    index: int = 0,
):
    """First-class BIP44/49/84/86 address derivation from a master node"""
    path, script_type = purpose_path(
        purpose, master.network.params.coin_type, account, change, index
    )
    with derive_path(master, path) as node:
        return node.address(script_type)
