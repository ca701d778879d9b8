"""
Transaction model and (de)serialization.

Serialization uses the legacy layout when no input carries witness data and
the BIP144 layout (marker, flag, one witness stack per input, empty stacks
included) otherwise.
"""

from __future__ import annotations

import copy
import struct
from dataclasses import dataclass, field
from typing import Any

from walletcore.constants import SEQUENCE_FINAL, WITNESS_SCALE_FACTOR
from walletcore.encoding import encode_varint, hash256, read_varint
from walletcore.errors import EncodingError


@dataclass
class TxOut:
    """Transaction output."""

    value: int
    script_pubkey: bytes

    def serialize(self) -> bytes:
        return struct.pack("<Q", self.value) + encode_varint(len(self.script_pubkey)) + self.script_pubkey


@dataclass
class TxIn:
    """
    Transaction input.

    txid is hex in RPC byte order. `prevout` (the output being spent) is
    signing metadata only; it is never serialized and is ignored by equality.
    """

    txid: str
    vout: int
    script_sig: bytes = b""
    sequence: int = SEQUENCE_FINAL
    witness: list[bytes] = field(default_factory=list)
    prevout: TxOut | None = field(default=None, compare=False)

    def serialize_outpoint(self) -> bytes:
        # txid is in RPC format (big-endian), need to reverse for raw tx
        return bytes.fromhex(self.txid)[::-1] + struct.pack("<I", self.vout)

    def serialize(self) -> bytes:
        return (
            self.serialize_outpoint()
            + encode_varint(len(self.script_sig))
            + self.script_sig
            + struct.pack("<I", self.sequence)
        )

    def serialize_witness(self) -> bytes:
        result = encode_varint(len(self.witness))
        for item in self.witness:
            result += encode_varint(len(item)) + item
        return result

    @property
    def outpoint(self) -> tuple[str, int]:
        return (self.txid, self.vout)


@dataclass
class Transaction:
    version: int = 2
    inputs: list[TxIn] = field(default_factory=list)
    outputs: list[TxOut] = field(default_factory=list)
    locktime: int = 0

    @property
    def has_witness(self) -> bool:
        return any(inp.witness for inp in self.inputs)

    def serialize(self, include_witness: bool = True) -> bytes:
        witness = include_witness and self.has_witness

        result = struct.pack("<i", self.version)
        if witness:
            result += bytes([0x00, 0x01])  # SegWit marker and flag

        result += encode_varint(len(self.inputs))
        for inp in self.inputs:
            result += inp.serialize()

        result += encode_varint(len(self.outputs))
        for out in self.outputs:
            result += out.serialize()

        if witness:
            for inp in self.inputs:
                result += inp.serialize_witness()

        result += struct.pack("<I", self.locktime)
        return result

    def serialize_legacy(self) -> bytes:
        return self.serialize(include_witness=False)

    def to_hex(self) -> str:
        return self.serialize().hex()

    @property
    def txid(self) -> str:
        """Double SHA256 of the non-witness serialization, RPC byte order"""
        return hash256(self.serialize_legacy())[::-1].hex()

    @property
    def wtxid(self) -> str:
        return hash256(self.serialize())[::-1].hex()

    @property
    def weight(self) -> int:
        base = len(self.serialize_legacy())
        total = len(self.serialize())
        return base * (WITNESS_SCALE_FACTOR - 1) + total

    @property
    def vsize(self) -> int:
        return -(-self.weight // WITNESS_SCALE_FACTOR)

    @property
    def fee(self) -> int | None:
        """inputs - outputs, when every input's prevout is known"""
        if any(inp.prevout is None for inp in self.inputs):
            return None
        return sum(inp.prevout.value for inp in self.inputs) - sum(o.value for o in self.outputs)

    def copy(self) -> Transaction:
        return copy.deepcopy(self)

    @classmethod
    def parse(cls, data: bytes) -> Transaction:
        """Parse a transaction from bytes."""
        try:
            tx, offset = _parse_tx(data)
        except (struct.error, IndexError, ValueError) as e:
            raise EncodingError(f"Failed to parse transaction: {e}") from e
        if offset != len(data):
            raise EncodingError(f"{len(data) - offset} trailing bytes after transaction")
        return tx

    @classmethod
    def from_hex(cls, hex_str: str) -> Transaction:
        try:
            data = bytes.fromhex(hex_str)
        except ValueError as e:
            raise EncodingError(f"Invalid transaction hex: {e}") from e
        return cls.parse(data)

    def to_dict(self) -> dict[str, Any]:
        return {
            "txid": self.txid,
            "wtxid": self.wtxid,
            "version": self.version,
            "locktime": self.locktime,
            "size": len(self.serialize()),
            "vsize": self.vsize,
            "weight": self.weight,
            "vin": [
                {
                    "txid": inp.txid,
                    "vout": inp.vout,
                    "script_sig": inp.script_sig.hex(),
                    "sequence": inp.sequence,
                    "witness": [item.hex() for item in inp.witness],
                }
                for inp in self.inputs
            ],
            "vout": [
                {"n": n, "value": out.value, "script_pubkey": out.script_pubkey.hex()}
                for n, out in enumerate(self.outputs)
            ],
        }


def _take(data: bytes, offset: int, size: int) -> tuple[bytes, int]:
    if offset + size > len(data):
        raise EncodingError(f"Unexpected end of transaction data at offset {offset}")
    return data[offset : offset + size], offset + size


def _parse_tx(data: bytes) -> tuple[Transaction, int]:
    offset = 0

    raw, offset = _take(data, offset, 4)
    version = struct.unpack("<i", raw)[0]

    # Check for SegWit marker
    has_witness = False
    if offset < len(data) and data[offset] == 0x00:
        flag, _ = _take(data, offset + 1, 1)
        if flag != b"\x01":
            raise EncodingError(f"Unsupported transaction flag {flag.hex()}")
        offset += 2
        has_witness = True

    input_count, offset = read_varint(data, offset)
    inputs = []
    for _ in range(input_count):
        txid, offset = _take(data, offset, 32)
        raw, offset = _take(data, offset, 4)
        vout = struct.unpack("<I", raw)[0]
        script_len, offset = read_varint(data, offset)
        script_sig, offset = _take(data, offset, script_len)
        raw, offset = _take(data, offset, 4)
        sequence = struct.unpack("<I", raw)[0]
        inputs.append(TxIn(txid=txid[::-1].hex(), vout=vout, script_sig=script_sig, sequence=sequence))

    output_count, offset = read_varint(data, offset)
    outputs = []
    for _ in range(output_count):
        raw, offset = _take(data, offset, 8)
        value = struct.unpack("<Q", raw)[0]
        script_len, offset = read_varint(data, offset)
        script_pubkey, offset = _take(data, offset, script_len)
        outputs.append(TxOut(value=value, script_pubkey=script_pubkey))

    if has_witness:
        for inp in inputs:
            item_count, offset = read_varint(data, offset)
            for _ in range(item_count):
                item_len, offset = read_varint(data, offset)
                item, offset = _take(data, offset, item_len)
                inp.witness.append(item)
        if not any(inp.witness for inp in inputs):
            raise EncodingError("Witness flag set but all witness stacks are empty")

    raw, offset = _take(data, offset, 4)
    locktime = struct.unpack("<I", raw)[0]

    return Transaction(version=version, inputs=inputs, outputs=outputs, locktime=locktime), offset
