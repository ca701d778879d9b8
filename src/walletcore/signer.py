"""
Transaction signing.

Signer.sign() works on a copy of the transaction: it asks `key_for_input`
for the key of every input, computes the matching sighash, signs (ECDSA with
low-S for legacy/segwit v0, BIP340 Schnorr for taproot), verifies its own
signature and assembles scriptSig/witness. Every KeyMaterial obtained during
the call is wiped before returning, on success and on failure.
"""

from __future__ import annotations

import secrets
from collections.abc import Callable
from dataclasses import dataclass, field

from coincurve import PublicKey, PublicKeyXOnly
from loguru import logger

from walletcore.constants import (
    SECP256K1_N,
    SIGHASH_ALL,
    SIGHASH_DEFAULT,
    TAPROOT_LEAF_TAPSCRIPT,
)
from walletcore.encoding import hash160, sha256
from walletcore.errors import InvalidScript, SignatureFailure
from walletcore.keys import KeyMaterial
from walletcore.models import ScriptType
from walletcore.script import ScriptBuilder, classify_script, p2wpkh_script
from walletcore.sighash import (
    legacy_sighash,
    p2wpkh_script_code,
    segwit_v0_sighash,
    taproot_sighash,
)
from walletcore.taproot import ControlBlock, tap_leaf_hash, verify_control_block
from walletcore.transaction import Transaction, TxIn


@dataclass
class InputSpend:
    """
    Everything needed to sign one input beyond the prevout itself.

    Attributes:
        key: signing key (wiped by the signer once the call ends)
        sighash_type: defaults to ALL for ECDSA and DEFAULT for taproot
        redeem_script: P2SH redeem script (derived for P2SH-P2WPKH when omitted)
        witness_script: P2WSH / P2SH-P2WSH witness script
        leaf_script: taproot leaf to spend via the script path
        leaf_version: taproot leaf version
        control_block: proof for `leaf_script`
        merkle_root: script tree root for taproot key-path spends
        extra_witness: items placed between the signature and the script
        annex: optional taproot annex (must start with 0x50)
    """

    key: KeyMaterial
    sighash_type: int | None = None
    redeem_script: bytes | None = None
    witness_script: bytes | None = None
    leaf_script: bytes | None = None
    leaf_version: int = TAPROOT_LEAF_TAPSCRIPT
    control_block: ControlBlock | None = None
    merkle_root: bytes | None = None
    extra_witness: list[bytes] = field(default_factory=list)
    annex: bytes | None = None


KeyProvider = Callable[[int, TxIn], "KeyMaterial | InputSpend | None"]


@dataclass(frozen=True)
class SignedTransaction:
    tx: Transaction

    @property
    def raw(self) -> bytes:
        return self.tx.serialize()

    @property
    def hex(self) -> str:
        return self.raw.hex()

    @property
    def txid(self) -> str:
        return self.tx.txid

    @property
    def wtxid(self) -> str:
        return self.tx.wtxid


def _push(*items: bytes) -> bytes:
    builder = ScriptBuilder()
    for item in items:
        builder.push_bytes(item)
    return builder.finalize().raw


def _der_s_value(sig: bytes) -> int:
    """Extract S from a DER signature: 0x30 len 0x02 rlen R 0x02 slen S"""
    if len(sig) < 8 or sig[0] != 0x30 or sig[2] != 0x02:
        raise SignatureFailure("Malformed DER signature")
    rlen = sig[3]
    s_offset = 4 + rlen
    if sig[s_offset] != 0x02:
        raise SignatureFailure("Malformed DER signature")
    slen = sig[s_offset + 1]
    return int.from_bytes(sig[s_offset + 2 : s_offset + 2 + slen], "big")


class Signer:
    """
    Sign transactions with keys supplied per input.

    Args:
        aux_rand: source of 32-byte BIP340 auxiliary randomness; fresh
            random bytes by default, injectable for deterministic signatures.
    """

    def __init__(self, aux_rand: Callable[[], bytes] | None = None):
        self._aux_rand = aux_rand or (lambda: secrets.token_bytes(32))

    def sign(self, tx: Transaction, key_for_input: KeyProvider) -> SignedTransaction:
        work = tx.copy()
        obtained: list[KeyMaterial] = []

        try:
            for index, txin in enumerate(work.inputs):
                if txin.prevout is None:
                    raise SignatureFailure(f"Input {index} has no prevout metadata")

            for index, txin in enumerate(work.inputs):
                spend = key_for_input(index, txin)
                if spend is None:
                    raise SignatureFailure(f"No key available for input {index}")
                if isinstance(spend, KeyMaterial):
                    spend = InputSpend(key=spend)
                obtained.append(spend.key)
                self._sign_input(work, index, spend, obtained)
        except SignatureFailure:
            raise
        except (InvalidScript, ValueError) as e:
            raise SignatureFailure(f"Signing failed: {e}") from e
        finally:
            for key in obtained:
                key.wipe()

        logger.info(f"Signed transaction {work.txid} ({len(work.inputs)} inputs)")
        return SignedTransaction(work)

    def _sign_input(
        self, tx: Transaction, index: int, spend: InputSpend, obtained: list[KeyMaterial]
    ) -> None:
        txin = tx.inputs[index]
        prevout = txin.prevout
        script_type = classify_script(prevout.script_pubkey)
        logger.debug(f"Signing input {index} ({script_type.value})")

        if script_type == ScriptType.P2PKH:
            self._sign_p2pkh(tx, index, spend)
        elif script_type == ScriptType.P2WPKH:
            pubkey_hash = self._check_key_hash(spend.key, prevout.script_pubkey[2:22], index)
            sig = self._ecdsa(
                spend,
                segwit_v0_sighash(
                    tx, index, p2wpkh_script_code(pubkey_hash), prevout.value, self._ecdsa_type(spend)
                ),
            )
            txin.witness = [sig, spend.key.public_key]
        elif script_type == ScriptType.P2SH:
            self._sign_p2sh(tx, index, spend)
        elif script_type == ScriptType.P2WSH:
            witness_script = self._require_witness_script(spend, prevout.script_pubkey[2:34], index)
            sig = self._ecdsa(
                spend,
                segwit_v0_sighash(tx, index, witness_script, prevout.value, self._ecdsa_type(spend)),
            )
            txin.witness = [sig, *spend.extra_witness, witness_script]
        elif script_type == ScriptType.P2TR:
            self._sign_p2tr(tx, index, spend, obtained)
        else:
            raise SignatureFailure(f"Unsupported script type for input {index}: {script_type.value}")

    def _sign_p2pkh(self, tx: Transaction, index: int, spend: InputSpend) -> None:
        txin = tx.inputs[index]
        self._check_key_hash(spend.key, txin.prevout.script_pubkey[3:23], index)
        digest = legacy_sighash(tx, index, txin.prevout.script_pubkey, self._ecdsa_type(spend))
        sig = self._ecdsa(spend, digest)
        txin.script_sig = _push(sig, spend.key.public_key)

    def _sign_p2sh(self, tx: Transaction, index: int, spend: InputSpend) -> None:
        txin = tx.inputs[index]
        prevout = txin.prevout
        redeem = spend.redeem_script
        if redeem is None:
            redeem = p2wpkh_script(hash160(spend.key.public_key)).raw
        if hash160(redeem) != prevout.script_pubkey[2:22]:
            raise SignatureFailure(f"Redeem script does not match P2SH output of input {index}")

        nested = classify_script(redeem)
        if nested == ScriptType.P2WPKH:
            pubkey_hash = self._check_key_hash(spend.key, redeem[2:22], index)
            digest = segwit_v0_sighash(
                tx, index, p2wpkh_script_code(pubkey_hash), prevout.value, self._ecdsa_type(spend)
            )
            txin.witness = [self._ecdsa(spend, digest), spend.key.public_key]
            txin.script_sig = _push(redeem)
        elif nested == ScriptType.P2WSH:
            witness_script = self._require_witness_script(spend, redeem[2:34], index)
            digest = segwit_v0_sighash(
                tx, index, witness_script, prevout.value, self._ecdsa_type(spend)
            )
            txin.witness = [self._ecdsa(spend, digest), *spend.extra_witness, witness_script]
            txin.script_sig = _push(redeem)
        else:
            digest = legacy_sighash(tx, index, redeem, self._ecdsa_type(spend))
            txin.script_sig = _push(self._ecdsa(spend, digest), *spend.extra_witness, redeem)

    def _sign_p2tr(
        self, tx: Transaction, index: int, spend: InputSpend, obtained: list[KeyMaterial]
    ) -> None:
        txin = tx.inputs[index]
        output_key = txin.prevout.script_pubkey[2:34]
        prevouts = [inp.prevout for inp in tx.inputs]
        sighash_type = SIGHASH_DEFAULT if spend.sighash_type is None else spend.sighash_type

        if spend.leaf_script is None:
            tweaked = spend.key.taproot_tweaked(spend.merkle_root or b"")
            obtained.append(tweaked)
            if tweaked.xonly_public_key != output_key:
                raise SignatureFailure(f"Key does not match taproot output of input {index}")
            digest = taproot_sighash(tx, index, prevouts, sighash_type, annex=spend.annex)
            witness = [self._schnorr(tweaked, digest, sighash_type)]
        else:
            if spend.control_block is None:
                raise SignatureFailure(f"Script-path spend of input {index} needs a control block")
            if spend.control_block.leaf_version != spend.leaf_version:
                raise SignatureFailure(
                    f"Leaf version {spend.leaf_version:#x} of input {index} does not match "
                    f"control block version {spend.control_block.leaf_version:#x}"
                )
            if not verify_control_block(output_key, spend.leaf_script, spend.control_block):
                raise SignatureFailure(f"Control block does not commit to output of input {index}")
            leaf_hash = tap_leaf_hash(spend.leaf_script, spend.control_block.leaf_version)
            digest = taproot_sighash(
                tx, index, prevouts, sighash_type, annex=spend.annex, leaf_hash=leaf_hash
            )
            witness = [
                self._schnorr(spend.key, digest, sighash_type),
                *spend.extra_witness,
                spend.leaf_script,
                spend.control_block.serialize(),
            ]

        if spend.annex is not None:
            witness.append(spend.annex)
        txin.witness = witness

    @staticmethod
    def _ecdsa_type(spend: InputSpend) -> int:
        return SIGHASH_ALL if spend.sighash_type is None else spend.sighash_type

    @staticmethod
    def _check_key_hash(key: KeyMaterial, expected: bytes, index: int) -> bytes:
        pubkey_hash = hash160(key.public_key)
        if pubkey_hash != expected:
            raise SignatureFailure(f"Key does not match the output spent by input {index}")
        return pubkey_hash

    @staticmethod
    def _require_witness_script(spend: InputSpend, expected: bytes, index: int) -> bytes:
        if spend.witness_script is None:
            raise SignatureFailure(f"Input {index} needs a witness script")
        if sha256(spend.witness_script) != expected:
            raise SignatureFailure(f"Witness script does not match the output of input {index}")
        return spend.witness_script

    def _ecdsa(self, spend: InputSpend, digest: bytes) -> bytes:
        """Sign, enforce low-S, verify, and append the sighash type byte."""
        sig = spend.key.sign_ecdsa(digest)
        if _der_s_value(sig) > SECP256K1_N // 2:
            raise SignatureFailure("Signature has high S")
        try:
            valid = PublicKey(spend.key.public_key).verify(sig, digest, hasher=None)
        except ValueError as e:
            raise SignatureFailure(f"Signature verification failed: {e}") from e
        if not valid:
            raise SignatureFailure("Signature verification failed")
        return sig + bytes([self._ecdsa_type(spend)])

    def _schnorr(self, key: KeyMaterial, digest: bytes, sighash_type: int) -> bytes:
        sig = key.sign_schnorr(digest, self._aux_rand())
        if not PublicKeyXOnly(key.xonly_public_key).verify(sig, digest):
            raise SignatureFailure("Schnorr signature verification failed")
        if sighash_type == SIGHASH_DEFAULT:
            return sig
        return sig + bytes([sighash_type])
