"""
Signature hash algorithms.

- legacy: the original blanked-copy algorithm (pre-segwit inputs)
- BIP143: segwit v0 (P2WPKH, P2SH-P2WPKH, P2WSH)
- BIP341: taproot key path and script path (epoch 0)
"""

from __future__ import annotations

import struct
from collections.abc import Sequence

from walletcore.constants import (
    SIGHASH_ALL,
    SIGHASH_ANYONECANPAY,
    SIGHASH_DEFAULT,
    SIGHASH_NONE,
    SIGHASH_SINGLE,
    VALID_LEGACY_SIGHASH_TYPES,
    VALID_TAPROOT_SIGHASH_TYPES,
)
from walletcore.encoding import hash256, push_prefixed, sha256, tagged_hash
from walletcore.errors import SignatureFailure
from walletcore.script import Opcode, Script, p2pkh_script
from walletcore.transaction import Transaction, TxIn, TxOut

ZERO_HASH = b"\x00" * 32
# Returned for SIGHASH_SINGLE without a matching output (consensus quirk)
SIGHASH_SINGLE_BUG = (1).to_bytes(32, "little")
CODESEP_NONE = 0xFFFFFFFF


def p2wpkh_script_code(pubkey_hash: bytes) -> bytes:
    """BIP143 scriptCode for P2WPKH: the P2PKH script of the key hash"""
    return p2pkh_script(pubkey_hash).raw


def _check_index(tx: Transaction, index: int) -> None:
    if not 0 <= index < len(tx.inputs):
        raise SignatureFailure(f"Input index {index} out of range ({len(tx.inputs)} inputs)")


def _strip_codeseparators(script: bytes) -> bytes:
    """Remove OP_CODESEPARATOR opcodes, leaving pushed data untouched."""
    result = bytearray()
    i = 0
    while i < len(script):
        opcode = script[i]
        start = i
        i += 1
        if 0 < opcode < Opcode.OP_PUSHDATA1:
            i += opcode
        elif opcode == Opcode.OP_PUSHDATA1 and i < len(script):
            i += 1 + script[i]
        elif opcode == Opcode.OP_PUSHDATA2:
            i += 2 + int.from_bytes(script[i : i + 2], "little")
        elif opcode == Opcode.OP_PUSHDATA4:
            i += 4 + int.from_bytes(script[i : i + 4], "little")
        elif opcode == Opcode.OP_CODESEPARATOR:
            continue
        result += script[start:i]
    return bytes(result)


def legacy_sighash(
    tx: Transaction, index: int, script_code: bytes | Script, sighash_type: int = SIGHASH_ALL
) -> bytes:
    """Pre-segwit signature hash of input `index` against `script_code`."""
    _check_index(tx, index)
    if sighash_type not in VALID_LEGACY_SIGHASH_TYPES:
        raise SignatureFailure(f"Invalid sighash type {sighash_type:#04x}")

    base_type = sighash_type & 0x1F
    if base_type == SIGHASH_SINGLE and index >= len(tx.outputs):
        return SIGHASH_SINGLE_BUG

    script = _strip_codeseparators(bytes(script_code))
    inputs = [
        TxIn(
            txid=inp.txid,
            vout=inp.vout,
            script_sig=script if i == index else b"",
            sequence=inp.sequence,
        )
        for i, inp in enumerate(tx.inputs)
    ]
    outputs = list(tx.outputs)

    if base_type == SIGHASH_NONE:
        outputs = []
    elif base_type == SIGHASH_SINGLE:
        blank = TxOut(value=0xFFFFFFFFFFFFFFFF, script_pubkey=b"")
        outputs = [blank] * index + [tx.outputs[index]]

    if base_type in (SIGHASH_NONE, SIGHASH_SINGLE):
        for i, inp in enumerate(inputs):
            if i != index:
                inp.sequence = 0

    if sighash_type & SIGHASH_ANYONECANPAY:
        inputs = [inputs[index]]

    blanked = Transaction(version=tx.version, inputs=inputs, outputs=outputs, locktime=tx.locktime)
    return hash256(blanked.serialize_legacy() + struct.pack("<I", sighash_type))


def segwit_v0_sighash(
    tx: Transaction,
    index: int,
    script_code: bytes | Script,
    amount: int,
    sighash_type: int = SIGHASH_ALL,
) -> bytes:
    """
    Compute BIP143 sighash for SegWit v0 inputs.

    Args:
        tx: transaction being signed
        index: input index
        script_code: scriptCode (P2PKH script for P2WPKH, witness script for P2WSH)
        amount: value of the output being spent, in satoshis
        sighash_type: sighash flag
    """
    _check_index(tx, index)
    if sighash_type not in VALID_LEGACY_SIGHASH_TYPES:
        raise SignatureFailure(f"Invalid sighash type {sighash_type:#04x}")

    base_type = sighash_type & 0x1F
    anyone_can_pay = bool(sighash_type & SIGHASH_ANYONECANPAY)

    if not anyone_can_pay:
        hash_prevouts = hash256(b"".join(inp.serialize_outpoint() for inp in tx.inputs))
    else:
        hash_prevouts = ZERO_HASH

    if not anyone_can_pay and base_type not in (SIGHASH_SINGLE, SIGHASH_NONE):
        hash_sequence = hash256(b"".join(struct.pack("<I", inp.sequence) for inp in tx.inputs))
    else:
        hash_sequence = ZERO_HASH

    if base_type not in (SIGHASH_SINGLE, SIGHASH_NONE):
        hash_outputs = hash256(b"".join(out.serialize() for out in tx.outputs))
    elif base_type == SIGHASH_SINGLE and index < len(tx.outputs):
        hash_outputs = hash256(tx.outputs[index].serialize())
    else:
        hash_outputs = ZERO_HASH

    txin = tx.inputs[index]
    preimage = (
        struct.pack("<i", tx.version)
        + hash_prevouts
        + hash_sequence
        + txin.serialize_outpoint()
        + push_prefixed(bytes(script_code))
        + struct.pack("<Q", amount)
        + struct.pack("<I", txin.sequence)
        + hash_outputs
        + struct.pack("<I", tx.locktime)
        + struct.pack("<I", sighash_type)
    )
    return hash256(preimage)


def taproot_sighash(
    tx: Transaction,
    index: int,
    prevouts: Sequence[TxOut],
    sighash_type: int = SIGHASH_DEFAULT,
    annex: bytes | None = None,
    leaf_hash: bytes | None = None,
    codesep_pos: int = CODESEP_NONE,
) -> bytes:
    """
    BIP341 signature message hash (TaggedHash "TapSighash").

    `prevouts` are the outputs spent by every input of `tx`, in order.
    Passing `leaf_hash` selects the script-path extension (ext_flag = 1).
    """
    _check_index(tx, index)
    if sighash_type not in VALID_TAPROOT_SIGHASH_TYPES:
        raise SignatureFailure(f"Invalid taproot sighash type {sighash_type:#04x}")
    if len(prevouts) != len(tx.inputs):
        raise SignatureFailure("Taproot signing needs the prevout of every input")
    if annex is not None and (not annex or annex[0] != 0x50):
        raise SignatureFailure("Annex must start with 0x50")

    output_type = SIGHASH_ALL if sighash_type == SIGHASH_DEFAULT else sighash_type & 0x03
    anyone_can_pay = bool(sighash_type & SIGHASH_ANYONECANPAY)

    msg = bytes([0x00])  # epoch
    msg += bytes([sighash_type])
    msg += struct.pack("<i", tx.version)
    msg += struct.pack("<I", tx.locktime)

    if not anyone_can_pay:
        msg += sha256(b"".join(inp.serialize_outpoint() for inp in tx.inputs))
        msg += sha256(b"".join(struct.pack("<Q", p.value) for p in prevouts))
        msg += sha256(b"".join(push_prefixed(p.script_pubkey) for p in prevouts))
        msg += sha256(b"".join(struct.pack("<I", inp.sequence) for inp in tx.inputs))

    if output_type not in (SIGHASH_NONE, SIGHASH_SINGLE):
        msg += sha256(b"".join(out.serialize() for out in tx.outputs))

    ext_flag = 1 if leaf_hash is not None else 0
    spend_type = ext_flag * 2 + (1 if annex is not None else 0)
    msg += bytes([spend_type])

    if anyone_can_pay:
        txin = tx.inputs[index]
        prevout = prevouts[index]
        msg += txin.serialize_outpoint()
        msg += struct.pack("<Q", prevout.value)
        msg += push_prefixed(prevout.script_pubkey)
        msg += struct.pack("<I", txin.sequence)
    else:
        msg += struct.pack("<I", index)

    if annex is not None:
        msg += sha256(push_prefixed(annex))

    if output_type == SIGHASH_SINGLE:
        if index >= len(tx.outputs):
            raise SignatureFailure("SIGHASH_SINGLE without a matching output")
        msg += sha256(tx.outputs[index].serialize())

    if leaf_hash is not None:
        msg += leaf_hash
        msg += bytes([0x00])  # key_version
        msg += struct.pack("<I", codesep_pos)

    return tagged_hash("TapSighash", msg)
