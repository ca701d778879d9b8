"""
Transaction size, fee and dust policy.

Weight model (BIP141): every input and output type contributes a fixed
number of non-witness and witness bytes; weight = 4 * non-witness + witness,
vsize = ceil(weight / 4), fee = ceil(vsize * fee_rate).
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from decimal import Decimal

from walletcore.constants import (
    DEFAULT_DUST_RELAY_FEE,
    DUST_SPEND_SIZE_LEGACY,
    DUST_SPEND_SIZE_WITNESS,
    WITNESS_SCALE_FACTOR,
)
from walletcore.errors import InvalidScript
from walletcore.models import ScriptType
from walletcore.script import classify_script

# version (4) + input count (1) + output count (1) + locktime (4)
TX_OVERHEAD_BYTES = 10
# segwit marker + flag, counted as witness data
SEGWIT_MARKER_WEIGHT = 2

# (non-witness bytes, witness bytes) to spend one input of each type.
# Witness sizes include the item count; signatures assumed at their maximum.
INPUT_SIZES: dict[ScriptType, tuple[int, int]] = {
    # outpoint 36 + scriptSig len 1 + scriptSig 107 + sequence 4
    ScriptType.P2PKH: (148, 0),
    # outpoint 36 + len 1 + redeem push 23 + sequence 4 | witness [sig 72, pubkey 33]
    ScriptType.P2SH_P2WPKH: (64, 108),
    ScriptType.P2WPKH: (41, 108),
    # nominal single-sig witness script: [sig 72, script 34 + len]
    ScriptType.P2WSH: (41, 110),
    # key path: [64-byte schnorr sig]
    ScriptType.P2TR: (41, 66),
}

OUTPUT_SIZES: dict[ScriptType, int] = {
    ScriptType.P2PKH: 34,
    ScriptType.P2SH: 32,
    ScriptType.P2SH_P2WPKH: 32,
    ScriptType.P2WPKH: 31,
    ScriptType.P2WSH: 43,
    ScriptType.P2TR: 43,
}


def _input_size(script_type: ScriptType) -> tuple[int, int]:
    try:
        return INPUT_SIZES[script_type]
    except KeyError:
        raise InvalidScript(f"No size estimate for spending {script_type.value}") from None


def output_size(script_type: ScriptType) -> int:
    try:
        return OUTPUT_SIZES[script_type]
    except KeyError:
        raise InvalidScript(f"No size estimate for {script_type.value} output") from None


def script_output_size(script_pubkey: bytes) -> int:
    """value (8) + CompactSize length + script"""
    length = len(script_pubkey)
    return 8 + (1 if length < 0xFD else 3) + length


def has_input_estimate(script_type: ScriptType) -> bool:
    """Whether spending an output of `script_type` has a known size."""
    return script_type in INPUT_SIZES


def input_weight(script_type: ScriptType) -> int:
    non_witness, witness = _input_size(script_type)
    return non_witness * WITNESS_SCALE_FACTOR + witness


def input_vsize(script_type: ScriptType) -> float:
    return input_weight(script_type) / WITNESS_SCALE_FACTOR


def estimate_weight(
    input_types: Iterable[ScriptType],
    output_types: Iterable[ScriptType] = (),
    extra_output_bytes: int = 0,
) -> int:
    """
    Estimate the weight of a transaction spending `input_types` into
    `output_types`. `extra_output_bytes` covers outputs given as raw scripts.
    """
    input_types = list(input_types)
    non_witness = TX_OVERHEAD_BYTES + extra_output_bytes
    witness = 0
    for script_type in input_types:
        nw, w = _input_size(script_type)
        non_witness += nw
        witness += w
    for script_type in output_types:
        non_witness += output_size(script_type)

    weight = non_witness * WITNESS_SCALE_FACTOR + witness
    if any(t.is_segwit for t in input_types):
        weight += SEGWIT_MARKER_WEIGHT
    return weight


def weight_to_vsize(weight: int) -> int:
    return math.ceil(weight / WITNESS_SCALE_FACTOR)


def estimate_vsize(
    input_types: Iterable[ScriptType],
    output_types: Iterable[ScriptType] = (),
    extra_output_bytes: int = 0,
) -> int:
    return weight_to_vsize(estimate_weight(input_types, output_types, extra_output_bytes))


def fee_for_vsize(vsize: int | float, fee_rate: float | Decimal) -> int:
    """fee = ceil(vsize * fee_rate), fee_rate in sat/vB"""
    return math.ceil(Decimal(str(vsize)) * Decimal(str(fee_rate)))


def estimate_fee(
    input_types: Iterable[ScriptType],
    output_types: Iterable[ScriptType],
    fee_rate: float | Decimal,
    extra_output_bytes: int = 0,
) -> int:
    return fee_for_vsize(estimate_vsize(input_types, output_types, extra_output_bytes), fee_rate)


def dust_threshold(
    script_type: ScriptType, dust_relay_fee: float | Decimal = DEFAULT_DUST_RELAY_FEE
) -> int:
    """
    Smallest non-dust value for an output of `script_type`, following Bitcoin
    Core's GetDustThreshold(): (output size + spend size) * dust relay fee.
    """
    if script_type in (ScriptType.P2WPKH, ScriptType.P2WSH, ScriptType.P2TR):
        spend = DUST_SPEND_SIZE_WITNESS
    else:
        spend = DUST_SPEND_SIZE_LEGACY
    return fee_for_vsize(output_size(script_type) + spend, dust_relay_fee)


def _is_witness_program(script_pubkey: bytes) -> bool:
    if not 4 <= len(script_pubkey) <= 42:
        return False
    version = script_pubkey[0]
    if version != 0 and not 0x51 <= version <= 0x60:
        return False
    return script_pubkey[1] + 2 == len(script_pubkey)


def script_dust_threshold(
    script_pubkey: bytes, dust_relay_fee: float | Decimal = DEFAULT_DUST_RELAY_FEE
) -> int:
    """Dust threshold for an arbitrary scriptPubKey (OP_RETURN outputs are never dust)."""
    script_type = classify_script(script_pubkey)
    if script_type == ScriptType.NULL_DATA:
        return 0
    if script_type in OUTPUT_SIZES:
        return dust_threshold(script_type, dust_relay_fee)
    if _is_witness_program(script_pubkey):
        spend = DUST_SPEND_SIZE_WITNESS
    else:
        spend = DUST_SPEND_SIZE_LEGACY
    return fee_for_vsize(script_output_size(script_pubkey) + spend, dust_relay_fee)
