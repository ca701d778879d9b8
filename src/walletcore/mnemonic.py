"""
BIP39 mnemonic handling on top of the python-mnemonic reference library.

The checksum (last ENT/32 bits of the word-list entropy) is always validated
before a seed is derived.
"""

from __future__ import annotations

import unicodedata

from mnemonic import Mnemonic

from walletcore.errors import InvalidMnemonicChecksum

VALID_STRENGTHS = (128, 160, 192, 224, 256)
VALID_WORD_COUNTS = (12, 15, 18, 21, 24)

_english = Mnemonic("english")


def normalize_mnemonic(words: str | list[str]) -> str:
    if isinstance(words, list):
        words = " ".join(words)
    return " ".join(unicodedata.normalize("NFKD", words).split())


def mnemonic_to_entropy(words: str | list[str]) -> bytes:
    """
    Recover the entropy encoded by a mnemonic, validating its checksum.

    Raises InvalidMnemonicChecksum for a bad word count, an unknown word or a
    checksum mismatch.
    """
    phrase = normalize_mnemonic(words)
    count = len(phrase.split())
    if count not in VALID_WORD_COUNTS:
        raise InvalidMnemonicChecksum(f"Invalid mnemonic word count: {count}")
    try:
        return bytes(_english.to_entropy(phrase))
    except LookupError as e:
        raise InvalidMnemonicChecksum(f"Unknown mnemonic word: {e}") from e
    except ValueError as e:
        raise InvalidMnemonicChecksum(f"Mnemonic checksum mismatch: {e}") from e


def validate_mnemonic(words: str | list[str]) -> bool:
    try:
        mnemonic_to_entropy(words)
    except InvalidMnemonicChecksum:
        return False
    return True


def mnemonic_to_seed(words: str | list[str], passphrase: str = "") -> bytes:
    """
    Convert a BIP39 mnemonic to its 64-byte seed.

    PBKDF2-HMAC-SHA512, 2048 iterations, salt "mnemonic" + passphrase,
    both NFKD normalized.
    """
    mnemonic_to_entropy(words)
    return Mnemonic.to_seed(normalize_mnemonic(words), passphrase=passphrase)


def entropy_to_mnemonic(entropy: bytes) -> str:
    if len(entropy) * 8 not in VALID_STRENGTHS:
        raise ValueError(f"Entropy must be 16-32 bytes in 4-byte steps, got {len(entropy)}")
    return _english.to_mnemonic(entropy)


def generate_mnemonic(strength: int = 256) -> str:
    """Generate a new mnemonic from OS randomness (128-256 bits of entropy)."""
    if strength not in VALID_STRENGTHS:
        raise ValueError(f"Invalid mnemonic strength: {strength}")
    return _english.generate(strength=strength)
