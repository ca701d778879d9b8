"""
Fluent transaction builder.

Calls accumulate into a PartialTransaction; nothing is validated until
build()/finalize(), which check everything at once and either return a
complete transaction or raise without leaving partial results behind.

Example:
    raw = (
        TransactionBuilder(Network.MAINNET)
        .add_input(utxo)
        .add_output("bc1q...", 90_000)
        .set_change("bc1q...")
        .estimate_fee(5)
        .sign(Signer(), key_for_input)
        .finalize()
    )
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from loguru import logger

from walletcore.address import Address
from walletcore.constants import (
    DEFAULT_DUST_RELAY_FEE,
    MAX_MONEY,
    SEQUENCE_FINAL,
    SEQUENCE_RBF,
    WITNESS_SCALE_FACTOR,
)
from walletcore.errors import (
    DustOutputError,
    InsufficientFunds,
    TransactionBuildError,
    UnbalancedTransaction,
)
from walletcore.models import Network, Utxo
from walletcore.policy import (
    SEGWIT_MARKER_WEIGHT,
    TX_OVERHEAD_BYTES,
    fee_for_vsize,
    input_weight,
    script_dust_threshold,
    script_output_size,
    weight_to_vsize,
)
from walletcore.script import Script
from walletcore.signer import KeyProvider, SignedTransaction, Signer
from walletcore.transaction import Transaction, TxIn, TxOut


@dataclass
class PartialTransaction:
    """Builder state; never serialized to network form until finalized."""

    inputs: list[tuple[Utxo, int | None]] = field(default_factory=list)
    outputs: list[TxOut] = field(default_factory=list)
    change: Address | None = None
    fee: int | None = None
    fee_rate: Decimal | None = None


class TransactionBuilder:
    def __init__(
        self,
        network: Network = Network.MAINNET,
        version: int = 2,
        locktime: int = 0,
        dust_relay_fee: float | Decimal = DEFAULT_DUST_RELAY_FEE,
        enable_rbf: bool = False,
    ):
        self.network = network
        self.version = version
        self.locktime = locktime
        self.dust_relay_fee = dust_relay_fee
        self.enable_rbf = enable_rbf
        self.state = PartialTransaction()
        self._signed: SignedTransaction | None = None

    def add_input(self, utxo: Utxo, sequence: int | None = None) -> TransactionBuilder:
        self.state.inputs.append((utxo, sequence))
        self._signed = None
        return self

    def add_inputs(self, utxos: list[Utxo]) -> TransactionBuilder:
        for utxo in utxos:
            self.add_input(utxo)
        return self

    def add_output(self, address: str | Address, amount: int) -> TransactionBuilder:
        if isinstance(address, str):
            address = Address.from_string(address, self.network)
        return self.add_output_script(address.script_pubkey(), amount)

    def add_output_script(self, script: Script | bytes, amount: int) -> TransactionBuilder:
        self.state.outputs.append(TxOut(value=amount, script_pubkey=bytes(script)))
        self._signed = None
        return self

    def set_change(self, address: str | Address) -> TransactionBuilder:
        if isinstance(address, str):
            address = Address.from_string(address, self.network)
        self.state.change = address
        self._signed = None
        return self

    def fee(self, amount: int) -> TransactionBuilder:
        """Use an absolute fee."""
        self.state.fee = amount
        self.state.fee_rate = None
        self._signed = None
        return self

    def estimate_fee(self, rate: float | Decimal) -> TransactionBuilder:
        """Derive the fee from `rate` (sat/vB) and the actual input/output types."""
        self.state.fee_rate = Decimal(str(rate))
        self.state.fee = None
        self._signed = None
        return self

    def _default_sequence(self) -> int:
        if self.enable_rbf:
            return SEQUENCE_RBF
        if self.locktime:
            return SEQUENCE_FINAL - 1
        return SEQUENCE_FINAL

    def _estimate(self, outputs: list[TxOut]) -> int:
        utxos = [utxo for utxo, _ in self.state.inputs]
        weight = (TX_OVERHEAD_BYTES + sum(script_output_size(o.script_pubkey) for o in outputs)) * (
            WITNESS_SCALE_FACTOR
        )
        weight += sum(input_weight(u.resolved_script_type) for u in utxos)
        if any(u.resolved_script_type.is_segwit for u in utxos):
            weight += SEGWIT_MARKER_WEIGHT
        return fee_for_vsize(weight_to_vsize(weight), self.state.fee_rate)

    def _validate_structure(self) -> None:
        state = self.state
        if not state.inputs:
            raise TransactionBuildError("Transaction needs at least one input")
        if not state.outputs:
            raise TransactionBuildError("Transaction needs at least one output")

        seen = set()
        for utxo, _ in state.inputs:
            if utxo.outpoint in seen:
                raise TransactionBuildError(f"Duplicate input {utxo.txid}:{utxo.vout}")
            seen.add(utxo.outpoint)

        for n, out in enumerate(state.outputs):
            if not 0 <= out.value <= MAX_MONEY:
                raise TransactionBuildError(f"Output {n} value {out.value} is out of range")
            threshold = script_dust_threshold(out.script_pubkey, self.dust_relay_fee)
            if out.value < threshold:
                raise DustOutputError(
                    f"Output {n} value {out.value} is below the dust threshold {threshold}"
                )

        if state.fee is None and state.fee_rate is None:
            raise TransactionBuildError("No fee set: call fee() or estimate_fee()")
        if state.fee is not None and state.fee < 0:
            raise TransactionBuildError(f"Fee must be non-negative, got {state.fee}")

    def _resolve_outputs(self) -> tuple[list[TxOut], int]:
        """Return the final outputs (change included) and the fee."""
        state = self.state
        total_in = sum(utxo.value for utxo, _ in state.inputs)
        total_out = sum(o.value for o in state.outputs)
        outputs = list(state.outputs)

        fee = state.fee if state.fee is not None else self._estimate(outputs)
        if total_out + fee > total_in:
            raise InsufficientFunds(
                f"Outputs ({total_out}) plus fee ({fee}) exceed inputs ({total_in})",
                required=total_out + fee,
                available=total_in,
            )

        excess = total_in - total_out - fee
        if excess == 0:
            return outputs, fee
        if state.change is None:
            raise UnbalancedTransaction(
                f"Inputs ({total_in}) != outputs ({total_out}) + fee ({fee}) and no change address"
            )

        change_script = state.change.script_pubkey().raw
        if state.fee_rate is not None:
            fee = self._estimate(outputs + [TxOut(0, change_script)])
        change = total_in - total_out - fee
        threshold = script_dust_threshold(change_script, self.dust_relay_fee)
        if change < threshold:
            logger.warning(f"Change of {max(change, 0)} sats is below dust, adding it to the fee")
            return outputs, total_in - total_out

        outputs.append(TxOut(value=change, script_pubkey=change_script))
        return outputs, fee

    def build(self) -> Transaction:
        """
        Validate and return the unsigned transaction, with each input's
        previous output attached for signing.
        """
        self._validate_structure()
        outputs, fee = self._resolve_outputs()

        default_sequence = self._default_sequence()
        inputs = [
            TxIn(
                txid=utxo.txid,
                vout=utxo.vout,
                sequence=default_sequence if sequence is None else sequence,
                prevout=TxOut(value=utxo.value, script_pubkey=utxo.script_pubkey),
            )
            for utxo, sequence in self.state.inputs
        ]
        tx = Transaction(version=self.version, inputs=inputs, outputs=outputs, locktime=self.locktime)
        logger.debug(
            f"Built transaction with {len(inputs)} inputs, {len(outputs)} outputs, fee {fee} sats"
        )
        return tx

    def sign(self, signer: Signer, key_for_input: KeyProvider) -> TransactionBuilder:
        self._signed = signer.sign(self.build(), key_for_input)
        return self

    @property
    def signed(self) -> SignedTransaction | None:
        return self._signed

    def finalize(self) -> bytes:
        """Serialized transaction: the signed one after sign(), otherwise unsigned."""
        if self._signed is not None:
            raw = self._signed.raw
            logger.info(f"Finalized signed transaction {self._signed.txid} ({len(raw)} bytes)")
            return raw
        return self.build().serialize()
