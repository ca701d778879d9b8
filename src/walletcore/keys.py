"""
Private key material with a guaranteed-erasure lifecycle.

KeyMaterial owns the only mutable copy of a 32-byte secret scalar. The secret
lives in a bytearray that is overwritten with zeros in place by wipe(), which
runs on every exit path of the context manager and, as a last resort, from
__del__. Access is serialized per key through a lock.

coincurve keeps its own immutable copy of the scalar while a signature is
being produced; those objects are created inside use() and dropped right after.
"""

from __future__ import annotations

import secrets
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from coincurve import PrivateKey
from loguru import logger

from walletcore.constants import SECP256K1_N
from walletcore.encoding import base58check_decode, base58check_encode
from walletcore.errors import EncodingError, KeyErasedError
from walletcore.models import Network


def wipe_buffer(buf: bytearray) -> None:
    for i in range(len(buf)):
        buf[i] = 0


def is_valid_secret(secret: bytes | bytearray) -> bool:
    if len(secret) != 32:
        return False
    return 0 < int.from_bytes(secret, "big") < SECP256K1_N


class KeyMaterial:
    """
    A secp256k1 private key whose secret bytes are erased after use.

    The constructor copies `secret`; when the caller passes a bytearray it is
    zeroed so that KeyMaterial holds the only copy.
    """

    def __init__(
        self,
        secret: bytes | bytearray,
        network: Network = Network.MAINNET,
        compressed: bool = True,
    ):
        self._lock = threading.Lock()
        self._secret = bytearray(secret)
        if isinstance(secret, bytearray):
            wipe_buffer(secret)
        self._wiped = False

        if not is_valid_secret(self._secret):
            self.wipe()
            raise EncodingError("Private key must be a 32-byte scalar in [1, n-1]")

        self.network = network
        self.compressed = compressed
        self._public_key = PrivateKey(bytes(self._secret)).public_key.format(compressed=True)

    @classmethod
    def generate(cls, network: Network = Network.MAINNET) -> KeyMaterial:
        """Create a fresh random key from the OS CSPRNG"""
        while True:
            candidate = bytearray(secrets.token_bytes(32))
            if is_valid_secret(candidate):
                return cls(candidate, network=network)

    @classmethod
    def from_wif(cls, wif: str) -> KeyMaterial:
        payload = bytearray(base58check_decode(wif))
        try:
            prefix = payload[0] if payload else None
            network = _network_for_wif_prefix(prefix)
            if len(payload) == 34 and payload[33] == 0x01:
                compressed = True
            elif len(payload) == 33:
                compressed = False
            else:
                raise EncodingError(f"Invalid WIF payload length: {len(payload)}")
            return cls(payload[1:33], network=network, compressed=compressed)
        finally:
            wipe_buffer(payload)

    def to_wif(self, network: Network | None = None) -> str:
        network = network or self.network
        with self.use() as secret:
            payload = bytearray([network.params.wif_prefix]) + secret
            if self.compressed:
                payload.append(0x01)
            try:
                return base58check_encode(bytes(payload))
            finally:
                wipe_buffer(payload)

    @property
    def public_key(self) -> bytes:
        """33-byte compressed public key"""
        return self._public_key

    @property
    def xonly_public_key(self) -> bytes:
        return self._public_key[1:]

    @property
    def has_even_y(self) -> bool:
        return self._public_key[0] == 0x02

    @property
    def is_wiped(self) -> bool:
        return self._wiped

    @contextmanager
    def use(self) -> Iterator[bytearray]:
        """
        Yield the secret buffer inside this key's critical section.

        Raises KeyErasedError if the key has already been wiped.
        """
        with self._lock:
            if self._wiped:
                raise KeyErasedError("Key material has been wiped")
            yield self._secret

    def sign_ecdsa(self, digest: bytes) -> bytes:
        """DER-encoded, low-S ECDSA signature over a 32-byte digest"""
        with self.use() as secret:
            return PrivateKey(bytes(secret)).sign(digest, hasher=None)

    def sign_schnorr(self, digest: bytes, aux_rand: bytes) -> bytes:
        """BIP340 Schnorr signature over a 32-byte digest"""
        if len(aux_rand) != 32:
            raise ValueError("Auxiliary randomness must be 32 bytes")
        with self.use() as secret:
            return PrivateKey(bytes(secret)).sign_schnorr(digest, aux_rand)

    def taproot_tweaked(self, merkle_root: bytes = b"") -> KeyMaterial:
        """
        Return a new KeyMaterial holding the BIP341 tweaked secret.

        The caller owns the returned key and must wipe it.
        """
        from walletcore.taproot import taproot_tweak_seckey

        with self.use() as secret:
            tweaked = taproot_tweak_seckey(secret, merkle_root)
        return KeyMaterial(tweaked, network=self.network)

    def wipe(self) -> None:
        """Overwrite the secret with zeros in place. Idempotent."""
        with self._lock:
            if not self._wiped:
                wipe_buffer(self._secret)
                self._wiped = True

    def __enter__(self) -> KeyMaterial:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.wipe()

    def __del__(self) -> None:
        if getattr(self, "_secret", None) is not None and not getattr(self, "_wiped", True):
            wipe_buffer(self._secret)
            self._wiped = True

    def __repr__(self) -> str:
        state = "wiped" if self._wiped else "live"
        return f"KeyMaterial(pubkey={self._public_key.hex()}, {state})"


@contextmanager
def secret_scope(*keys: KeyMaterial | None) -> Iterator[tuple[KeyMaterial | None, ...]]:
    """Wipe every given key when the block exits, whatever the exit path."""
    try:
        yield keys
    finally:
        for key in keys:
            if key is not None:
                key.wipe()
        logger.debug(f"Wiped {sum(1 for k in keys if k is not None)} key(s) on scope exit")


def _network_for_wif_prefix(prefix: int | None) -> Network:
    if prefix == Network.MAINNET.params.wif_prefix:
        return Network.MAINNET
    if prefix == Network.TESTNET.params.wif_prefix:
        return Network.TESTNET
    raise EncodingError(f"Unknown WIF prefix: {prefix!r}")
