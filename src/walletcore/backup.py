"""
Encrypted backup record for extended private keys.

The 78-byte BIP32 serialization is sealed with XSalsa20-Poly1305 (NaCl
secretbox) under a key stretched from the password with PBKDF2-HMAC-SHA512.
A wrong password or a tampered record fails authentication before any key
material is created.
"""

from __future__ import annotations

import hashlib
from typing import Literal

import libnacl
import libnacl.secret
from loguru import logger
from pydantic import BaseModel, Field, field_validator

from walletcore.bip32 import ExtendedKey
from walletcore.errors import EncodingError
from walletcore.keys import wipe_buffer
from walletcore.models import Network

BACKUP_VERSION = 1
KDF_ALGORITHM = "pbkdf2-hmac-sha512"
DEFAULT_KDF_ITERATIONS = 210_000
SALT_BYTES = 16
TAG_BYTES = 16


def _hex_field(value: str, size: int | None = None) -> str:
    try:
        raw = bytes.fromhex(value)
    except ValueError as e:
        raise ValueError(f"not valid hex: {e}") from e
    if size is not None and len(raw) != size:
        raise ValueError(f"must be {size} bytes, got {len(raw)}")
    return value.lower()


class KdfParams(BaseModel):
    algorithm: Literal["pbkdf2-hmac-sha512"] = KDF_ALGORITHM
    salt: str
    iterations: int = Field(..., ge=1)

    @field_validator("salt")
    @classmethod
    def validate_salt(cls, v: str) -> str:
        return _hex_field(v)


class BackupRecord(BaseModel):
    """Serialized form of an encrypted extended private key (JSON, hex fields)."""

    version: int = BACKUP_VERSION
    network: Network = Network.MAINNET
    kdf: KdfParams
    nonce: str
    ciphertext: str
    authentication_tag: str

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: int) -> int:
        if v != BACKUP_VERSION:
            raise ValueError(f"unsupported backup version {v}")
        return v

    @field_validator("nonce")
    @classmethod
    def validate_nonce(cls, v: str) -> str:
        return _hex_field(v, libnacl.crypto_secretbox_NONCEBYTES)

    @field_validator("ciphertext")
    @classmethod
    def validate_ciphertext(cls, v: str) -> str:
        return _hex_field(v)

    @field_validator("authentication_tag")
    @classmethod
    def validate_tag(cls, v: str) -> str:
        return _hex_field(v, TAG_BYTES)

    def to_json(self) -> str:
        return self.model_dump_json(indent=2)

    @classmethod
    def from_json(cls, data: str) -> BackupRecord:
        return cls.model_validate_json(data)


def _derive_key(password: str, salt: bytes, iterations: int) -> bytearray:
    return bytearray(
        hashlib.pbkdf2_hmac(
            "sha512",
            password.encode("utf-8"),
            salt,
            iterations,
            dklen=libnacl.crypto_secretbox_KEYBYTES,
        )
    )


def encrypt_backup(
    key: ExtendedKey, password: str, iterations: int = DEFAULT_KDF_ITERATIONS
) -> BackupRecord:
    if not key.is_private:
        raise EncodingError("Only extended private keys can be backed up")
    if not password:
        raise ValueError("Backup password must not be empty")

    salt = libnacl.randombytes(SALT_BYTES)
    box_key = _derive_key(password, salt, iterations)
    plaintext = bytearray(key.serialize(private=True))
    try:
        box = libnacl.secret.SecretBox(bytes(box_key))
        nonce, sealed = box.encrypt(bytes(plaintext), pack_nonce=False)
    finally:
        wipe_buffer(box_key)
        wipe_buffer(plaintext)

    logger.debug(f"Encrypted backup of key {key.fingerprint.hex()} ({iterations} KDF iterations)")
    return BackupRecord(
        network=key.network,
        kdf=KdfParams(salt=salt.hex(), iterations=iterations),
        nonce=nonce.hex(),
        ciphertext=sealed[TAG_BYTES:].hex(),
        authentication_tag=sealed[:TAG_BYTES].hex(),
    )


def decrypt_backup(record: BackupRecord | str, password: str) -> ExtendedKey:
    """
    Open a backup record. Raises EncodingError on a wrong password or a
    tampered record.
    """
    if isinstance(record, str):
        record = BackupRecord.from_json(record)

    box_key = _derive_key(password, bytes.fromhex(record.kdf.salt), record.kdf.iterations)
    try:
        box = libnacl.secret.SecretBox(bytes(box_key))
        sealed = bytes.fromhex(record.authentication_tag) + bytes.fromhex(record.ciphertext)
        plaintext = bytearray(box.decrypt(sealed, bytes.fromhex(record.nonce)))
    except ValueError as e:
        raise EncodingError("Backup authentication failed: wrong password or corrupted record") from e
    finally:
        wipe_buffer(box_key)

    try:
        return ExtendedKey.deserialize(bytes(plaintext), network=record.network)
    finally:
        wipe_buffer(plaintext)
