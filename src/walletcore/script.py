"""
Script construction.

ScriptBuilder assembles opcodes and minimally-encoded data pushes into a
Script; nothing here executes scripts. Standard output templates and
scriptPubKey classification live here too.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

from walletcore.constants import MAX_SCRIPT_SIZE
from walletcore.errors import InvalidScript
from walletcore.models import ScriptType


class Opcode(IntEnum):
    OP_0 = 0x00
    OP_PUSHDATA1 = 0x4C
    OP_PUSHDATA2 = 0x4D
    OP_PUSHDATA4 = 0x4E
    OP_1NEGATE = 0x4F
    OP_1 = 0x51
    OP_2 = 0x52
    OP_3 = 0x53
    OP_4 = 0x54
    OP_5 = 0x55
    OP_6 = 0x56
    OP_7 = 0x57
    OP_8 = 0x58
    OP_9 = 0x59
    OP_10 = 0x5A
    OP_11 = 0x5B
    OP_12 = 0x5C
    OP_13 = 0x5D
    OP_14 = 0x5E
    OP_15 = 0x5F
    OP_16 = 0x60
    OP_NOP = 0x61
    OP_IF = 0x63
    OP_NOTIF = 0x64
    OP_ELSE = 0x67
    OP_ENDIF = 0x68
    OP_VERIFY = 0x69
    OP_RETURN = 0x6A
    OP_DROP = 0x75
    OP_DUP = 0x76
    OP_SWAP = 0x7C
    OP_SIZE = 0x82
    OP_EQUAL = 0x87
    OP_EQUALVERIFY = 0x88
    OP_ADD = 0x93
    OP_NUMEQUAL = 0x9C
    OP_RIPEMD160 = 0xA6
    OP_SHA256 = 0xA8
    OP_HASH160 = 0xA9
    OP_HASH256 = 0xAA
    OP_CODESEPARATOR = 0xAB
    OP_CHECKSIG = 0xAC
    OP_CHECKSIGVERIFY = 0xAD
    OP_CHECKMULTISIG = 0xAE
    OP_CHECKMULTISIGVERIFY = 0xAF
    OP_CHECKLOCKTIMEVERIFY = 0xB1
    OP_CHECKSEQUENCEVERIFY = 0xB2
    OP_CHECKSIGADD = 0xBA


@dataclass(frozen=True)
class ScriptOp:
    """One parsed script element: an opcode, with its data for pushes."""

    opcode: int
    data: bytes | None = None

    @property
    def is_push(self) -> bool:
        return self.data is not None


@dataclass(frozen=True)
class Script:
    """An immutable serialized script."""

    raw: bytes = b""

    @classmethod
    def from_hex(cls, hex_str: str) -> Script:
        return cls(bytes.fromhex(hex_str))

    def ops(self) -> list[ScriptOp]:
        """Parse into opcodes and pushes. Truncated pushes raise InvalidScript."""
        return parse_script(self.raw)

    def hex(self) -> str:
        return self.raw.hex()

    def __bytes__(self) -> bytes:
        return self.raw

    def __len__(self) -> int:
        return len(self.raw)


def parse_script(raw: bytes) -> list[ScriptOp]:
    ops = []
    i = 0
    while i < len(raw):
        opcode = raw[i]
        i += 1
        if opcode == Opcode.OP_0:
            ops.append(ScriptOp(opcode, b""))
            continue
        if opcode < Opcode.OP_PUSHDATA1:
            size = opcode
        elif opcode == Opcode.OP_PUSHDATA1:
            width = 1
        elif opcode == Opcode.OP_PUSHDATA2:
            width = 2
        elif opcode == Opcode.OP_PUSHDATA4:
            width = 4
        else:
            ops.append(ScriptOp(opcode))
            continue

        if opcode >= Opcode.OP_PUSHDATA1:
            if i + width > len(raw):
                raise InvalidScript(f"Truncated push length at offset {i}")
            size = int.from_bytes(raw[i : i + width], "little")
            i += width
        if i + size > len(raw):
            raise InvalidScript(f"Push of {size} bytes runs past end of script")
        ops.append(ScriptOp(opcode, raw[i : i + size]))
        i += size
    return ops


def encode_script_num(n: int) -> bytes:
    """Minimal CScriptNum encoding"""
    if n == 0:
        return b""
    negative = n < 0
    value = abs(n)
    result = bytearray()
    while value:
        result.append(value & 0xFF)
        value >>= 8
    if result[-1] & 0x80:
        result.append(0x80 if negative else 0x00)
    elif negative:
        result[-1] |= 0x80
    return bytes(result)


class ScriptBuilder:
    """
    Fluent script assembly.

    Example:
        script = ScriptBuilder().push_bytes(xonly).push_opcode(Opcode.OP_CHECKSIG).finalize()
    """

    def __init__(self) -> None:
        self._buf = bytearray()

    def push_opcode(self, op: Opcode | int) -> ScriptBuilder:
        if not 0 <= int(op) <= 0xFF:
            raise InvalidScript(f"Invalid opcode: {op}")
        self._buf.append(int(op))
        return self

    def push_bytes(self, data: bytes) -> ScriptBuilder:
        """Push data with the smallest encoding (BIP62 minimal push)."""
        size = len(data)
        if size == 0:
            self._buf.append(Opcode.OP_0)
        elif size == 1 and 1 <= data[0] <= 16:
            self._buf.append(Opcode.OP_1 + data[0] - 1)
        elif size == 1 and data[0] == 0x81:
            self._buf.append(Opcode.OP_1NEGATE)
        elif size <= 75:
            self._buf.append(size)
            self._buf += data
        elif size <= 0xFF:
            self._buf += bytes([Opcode.OP_PUSHDATA1, size])
            self._buf += data
        elif size <= 0xFFFF:
            self._buf.append(Opcode.OP_PUSHDATA2)
            self._buf += size.to_bytes(2, "little")
            self._buf += data
        elif size <= 0xFFFFFFFF:
            self._buf.append(Opcode.OP_PUSHDATA4)
            self._buf += size.to_bytes(4, "little")
            self._buf += data
        else:
            raise InvalidScript(f"Push of {size} bytes exceeds PUSHDATA4")
        return self

    def push_int(self, n: int) -> ScriptBuilder:
        if n == 0:
            self._buf.append(Opcode.OP_0)
        elif n == -1:
            self._buf.append(Opcode.OP_1NEGATE)
        elif 1 <= n <= 16:
            self._buf.append(Opcode.OP_1 + n - 1)
        else:
            self.push_bytes(encode_script_num(n))
        return self

    def push_script(self, script: Script | bytes) -> ScriptBuilder:
        """Append raw script bytes as-is (no push)."""
        self._buf += bytes(script)
        return self

    def finalize(self) -> Script:
        if len(self._buf) > MAX_SCRIPT_SIZE:
            raise InvalidScript(f"Script is {len(self._buf)} bytes, limit is {MAX_SCRIPT_SIZE}")
        return Script(bytes(self._buf))


# =============================================================================
# Templates
# =============================================================================


def _check_len(data: bytes, expected: int, what: str) -> None:
    if len(data) != expected:
        raise InvalidScript(f"{what} must be {expected} bytes, got {len(data)}")


def p2pkh_script(pubkey_hash: bytes) -> Script:
    """OP_DUP OP_HASH160 <20 bytes> OP_EQUALVERIFY OP_CHECKSIG"""
    _check_len(pubkey_hash, 20, "Public key hash")
    return (
        ScriptBuilder()
        .push_opcode(Opcode.OP_DUP)
        .push_opcode(Opcode.OP_HASH160)
        .push_bytes(pubkey_hash)
        .push_opcode(Opcode.OP_EQUALVERIFY)
        .push_opcode(Opcode.OP_CHECKSIG)
        .finalize()
    )


def p2sh_script(script_hash: bytes) -> Script:
    """OP_HASH160 <20 bytes> OP_EQUAL"""
    _check_len(script_hash, 20, "Script hash")
    return (
        ScriptBuilder()
        .push_opcode(Opcode.OP_HASH160)
        .push_bytes(script_hash)
        .push_opcode(Opcode.OP_EQUAL)
        .finalize()
    )


def p2wpkh_script(pubkey_hash: bytes) -> Script:
    """OP_0 <20 bytes>"""
    _check_len(pubkey_hash, 20, "Public key hash")
    return ScriptBuilder().push_opcode(Opcode.OP_0).push_bytes(pubkey_hash).finalize()


def p2wsh_script(script_hash: bytes) -> Script:
    """OP_0 <32 bytes>"""
    _check_len(script_hash, 32, "Witness script hash")
    return ScriptBuilder().push_opcode(Opcode.OP_0).push_bytes(script_hash).finalize()


def p2tr_script(output_key: bytes) -> Script:
    """OP_1 <32-byte x-only key>"""
    _check_len(output_key, 32, "Taproot output key")
    return ScriptBuilder().push_opcode(Opcode.OP_1).push_bytes(output_key).finalize()


def p2pk_script(pubkey: bytes) -> Script:
    if len(pubkey) not in (33, 65):
        raise InvalidScript(f"Public key must be 33 or 65 bytes, got {len(pubkey)}")
    return ScriptBuilder().push_bytes(pubkey).push_opcode(Opcode.OP_CHECKSIG).finalize()


def multisig_script(threshold: int, pubkeys: list[bytes]) -> Script:
    """Bare m-of-n OP_CHECKMULTISIG script (also used as P2SH/P2WSH redeem script)"""
    if not 1 <= len(pubkeys) <= 16:
        raise InvalidScript(f"Multisig needs 1-16 keys, got {len(pubkeys)}")
    if not 1 <= threshold <= len(pubkeys):
        raise InvalidScript(f"Invalid multisig threshold {threshold} of {len(pubkeys)}")

    builder = ScriptBuilder().push_int(threshold)
    for pubkey in pubkeys:
        if len(pubkey) != 33:
            raise InvalidScript("Multisig keys must be compressed (33 bytes)")
        builder.push_bytes(pubkey)
    return builder.push_int(len(pubkeys)).push_opcode(Opcode.OP_CHECKMULTISIG).finalize()


def tapscript_checksig(xonly_pubkey: bytes) -> Script:
    """<32-byte x-only key> OP_CHECKSIG leaf script"""
    _check_len(xonly_pubkey, 32, "X-only public key")
    return ScriptBuilder().push_bytes(xonly_pubkey).push_opcode(Opcode.OP_CHECKSIG).finalize()


def null_data_script(data: bytes) -> Script:
    """OP_RETURN <data>"""
    if len(data) > 80:
        raise InvalidScript(f"OP_RETURN payload is {len(data)} bytes, standard limit is 80")
    return ScriptBuilder().push_opcode(Opcode.OP_RETURN).push_bytes(data).finalize()


def classify_script(script_pubkey: bytes | Script) -> ScriptType:
    """Map a scriptPubKey to its ScriptType."""
    spk = bytes(script_pubkey)
    n = len(spk)

    if n == 25 and spk[:3] == b"\x76\xa9\x14" and spk[23:] == b"\x88\xac":
        return ScriptType.P2PKH
    if n == 23 and spk[:2] == b"\xa9\x14" and spk[22] == Opcode.OP_EQUAL:
        return ScriptType.P2SH
    if n == 22 and spk[:2] == b"\x00\x14":
        return ScriptType.P2WPKH
    if n == 34 and spk[:2] == b"\x00\x20":
        return ScriptType.P2WSH
    if n == 34 and spk[:2] == b"\x51\x20":
        return ScriptType.P2TR
    if n and spk[0] == Opcode.OP_RETURN:
        return ScriptType.NULL_DATA

    try:
        ops = parse_script(spk)
    except InvalidScript:
        return ScriptType.UNKNOWN
    if len(ops) == 2 and ops[0].is_push and ops[1].opcode == Opcode.OP_CHECKSIG:
        if len(ops[0].data) in (33, 65):
            return ScriptType.P2PK
    if (
        len(ops) >= 4
        and ops[-1].opcode == Opcode.OP_CHECKMULTISIG
        and Opcode.OP_1 <= ops[0].opcode <= Opcode.OP_16
        and Opcode.OP_1 <= ops[-2].opcode <= Opcode.OP_16
        and all(op.is_push for op in ops[1:-2])
        and len(ops) - 3 == ops[-2].opcode - Opcode.OP_1 + 1
    ):
        return ScriptType.MULTISIG
    return ScriptType.UNKNOWN
