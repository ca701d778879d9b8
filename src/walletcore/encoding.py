"""
Low-level encodings and hash functions.

- CompactSize (varint) read/write
- SHA256d, HASH160 and BIP340 tagged hashes
- Base58Check (via the base58 package)
- Bech32 (BIP173, via the bech32 package) and Bech32m (BIP350)
"""

from __future__ import annotations

import hashlib
from enum import Enum

import base58
import bech32
from Crypto.Hash import RIPEMD160

from walletcore.errors import EncodingError


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def hash256(data: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def hash160(data: bytes) -> bytes:
    """RIPEMD160(SHA256(data))"""
    return RIPEMD160.new(hashlib.sha256(data).digest()).digest()


def tagged_hash(tag: str, msg: bytes) -> bytes:
    """BIP-340 tagged hash: SHA-256(SHA-256(tag) || SHA-256(tag) || msg)"""
    tag_hash = hashlib.sha256(tag.encode()).digest()
    return hashlib.sha256(tag_hash + tag_hash + msg).digest()


def encode_varint(value: int) -> bytes:
    if value < 0:
        raise EncodingError(f"CompactSize cannot encode negative value {value}")
    if value < 0xFD:
        return bytes([value])
    if value <= 0xFFFF:
        return b"\xfd" + value.to_bytes(2, "little")
    if value <= 0xFFFFFFFF:
        return b"\xfe" + value.to_bytes(4, "little")
    if value <= 0xFFFFFFFFFFFFFFFF:
        return b"\xff" + value.to_bytes(8, "little")
    raise EncodingError(f"CompactSize value too large: {value}")


def read_varint(data: bytes, offset: int) -> tuple[int, int]:
    """Read a CompactSize at offset. Returns (value, new_offset)."""
    if offset >= len(data):
        raise EncodingError("Unexpected end of data reading CompactSize")
    first = data[offset]
    offset += 1

    if first < 0xFD:
        return first, offset
    width = {0xFD: 2, 0xFE: 4, 0xFF: 8}[first]
    if offset + width > len(data):
        raise EncodingError("Unexpected end of data reading CompactSize")
    value = int.from_bytes(data[offset : offset + width], "little")
    if value < {2: 0xFD, 4: 0x10000, 8: 0x100000000}[width]:
        raise EncodingError("Non-canonical CompactSize encoding")
    return value, offset + width


def push_prefixed(data: bytes) -> bytes:
    """CompactSize length prefix followed by data."""
    return encode_varint(len(data)) + data


# =============================================================================
# Base58Check
# =============================================================================


def base58check_encode(payload: bytes) -> str:
    return base58.b58encode_check(payload).decode("ascii")


def base58check_decode(text: str) -> bytes:
    try:
        return base58.b58decode_check(text)
    except ValueError as e:
        raise EncodingError(f"Invalid Base58Check string: {e}") from e


# =============================================================================
# Bech32 / Bech32m
# =============================================================================

BECH32_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
BECH32_MAX_LENGTH = 90


class Bech32Variant(int, Enum):
    BECH32 = 1
    BECH32M = 0x2BC830A3


def bech32_polymod(values: list[int]) -> int:
    """Bech32 checksum polymod"""
    gen = [0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3]
    chk = 1
    for v in values:
        b = chk >> 25
        chk = (chk & 0x1FFFFFF) << 5 ^ v
        for i in range(5):
            chk ^= gen[i] if ((b >> i) & 1) else 0
    return chk


def bech32_hrp_expand(hrp: str) -> list[int]:
    """Expand HRP for bech32"""
    return [ord(x) >> 5 for x in hrp] + [0] + [ord(x) & 31 for x in hrp]


def bech32_create_checksum(hrp: str, data: list[int], variant: Bech32Variant) -> list[int]:
    values = bech32_hrp_expand(hrp) + data
    polymod = bech32_polymod(values + [0, 0, 0, 0, 0, 0]) ^ variant.value
    return [(polymod >> 5 * (5 - i)) & 31 for i in range(6)]


def bech32_verify_checksum(hrp: str, data: list[int]) -> Bech32Variant | None:
    const = bech32_polymod(bech32_hrp_expand(hrp) + data)
    for variant in Bech32Variant:
        if const == variant.value:
            return variant
    return None


def bech32_encode(hrp: str, data: list[int], variant: Bech32Variant) -> str:
    combined = data + bech32_create_checksum(hrp, data, variant)
    return hrp + "1" + "".join(BECH32_CHARSET[d] for d in combined)


def bech32_decode(bech: str) -> tuple[str, list[int], Bech32Variant]:
    """Decode a bech32/bech32m string into (hrp, data without checksum, variant)."""
    if any(ord(x) < 33 or ord(x) > 126 for x in bech):
        raise EncodingError("Bech32 string contains invalid characters")
    if bech.lower() != bech and bech.upper() != bech:
        raise EncodingError("Bech32 string has mixed case")
    bech = bech.lower()
    pos = bech.rfind("1")
    if pos < 1 or pos + 7 > len(bech) or len(bech) > BECH32_MAX_LENGTH:
        raise EncodingError("Bech32 separator misplaced or string too long")
    if not all(x in BECH32_CHARSET for x in bech[pos + 1 :]):
        raise EncodingError("Bech32 data part contains invalid characters")

    hrp = bech[:pos]
    data = [BECH32_CHARSET.find(x) for x in bech[pos + 1 :]]
    variant = bech32_verify_checksum(hrp, data)
    if variant is None:
        raise EncodingError("Invalid bech32 checksum")
    return hrp, data[:-6], variant


def convertbits(data: bytes | list[int], frombits: int, tobits: int, pad: bool = True) -> list[int]:
    """Convert between bit groups"""
    acc = 0
    bits = 0
    ret = []
    maxv = (1 << tobits) - 1
    max_acc = (1 << (frombits + tobits - 1)) - 1

    for value in data:
        if value < 0 or (value >> frombits):
            raise ValueError("Invalid value for bit conversion")
        acc = ((acc << frombits) | value) & max_acc
        bits += frombits
        while bits >= tobits:
            bits -= tobits
            ret.append((acc >> bits) & maxv)

    if pad:
        if bits:
            ret.append((acc << (tobits - bits)) & maxv)
    elif bits >= frombits or ((acc << (tobits - bits)) & maxv):
        raise ValueError("Invalid bits")

    return ret


def encode_segwit_address(hrp: str, witver: int, witprog: bytes) -> str:
    """Encode a witness program; v0 uses bech32, v1+ bech32m (BIP350)."""
    if not 0 <= witver <= 16:
        raise EncodingError(f"Invalid witness version: {witver}")
    if not 2 <= len(witprog) <= 40:
        raise EncodingError(f"Invalid witness program length: {len(witprog)}")
    if witver == 0:
        address = bech32.encode(hrp, 0, witprog)
        if address is None:
            raise EncodingError(f"Failed to encode v0 witness program: {witprog.hex()}")
        return address
    return bech32_encode(hrp, [witver] + convertbits(witprog, 8, 5), Bech32Variant.BECH32M)


def decode_segwit_address(address: str) -> tuple[str, int, bytes]:
    """Decode a segwit address into (hrp, witness version, witness program)."""
    hrp = address[: address.rfind("1")].lower()

    # the bech32 package implements BIP173 only, so it settles v0 addresses
    witver, witprog = bech32.decode(hrp, address)
    if witver == 0:
        return hrp, 0, bytes(witprog)

    hrp, data, variant = bech32_decode(address)
    if not data:
        raise EncodingError("Empty witness data")

    witver = data[0]
    if witver > 16:
        raise EncodingError(f"Invalid witness version: {witver}")
    try:
        witprog = bytes(convertbits(data[1:], 5, 8, False))
    except ValueError as e:
        raise EncodingError(f"Invalid witness program padding: {e}") from e

    if not 2 <= len(witprog) <= 40:
        raise EncodingError(f"Invalid witness program length: {len(witprog)}")
    if witver == 0:
        raise EncodingError(f"Invalid v0 witness program: {address}")
    if variant != Bech32Variant.BECH32M:
        raise EncodingError(f"Witness v{witver} must use bech32m checksum")

    return hrp, witver, witprog
