"""
Coin selection.

Two strategies:

- LARGEST_FIRST: spend the biggest coins first, re-estimating the fee after
  every added input until target + fee is covered.
- BRANCH_AND_BOUND: depth-first search for a change-less input set whose
  effective value lands in [target, target + cost_of_change], minimizing
  the excess. Falls back to LARGEST_FIRST when no such set exists.

Results are deterministic: candidates are ordered by value (or effective
value) descending, ties broken by (txid, vout).
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from loguru import logger

from walletcore.constants import DEFAULT_DUST_RELAY_FEE
from walletcore.errors import InsufficientFunds, TransactionBuildError
from walletcore.models import ScriptType, Utxo
from walletcore.policy import (
    SEGWIT_MARKER_WEIGHT,
    TX_OVERHEAD_BYTES,
    dust_threshold,
    estimate_fee,
    fee_for_vsize,
    has_input_estimate,
    input_weight,
    output_size,
)

DEFAULT_BNB_MAX_TRIES = 100_000


class SelectionStrategy(str, Enum):
    LARGEST_FIRST = "largest_first"
    BRANCH_AND_BOUND = "branch_and_bound"


@dataclass
class CoinSelection:
    """Result of coin selection"""

    utxos: list[Utxo]
    target: int
    total_value: int
    change_value: int
    fee: int
    strategy: SelectionStrategy
    waste: int = 0
    dropped_change: int = field(default=0)

    @property
    def has_change(self) -> bool:
        return self.change_value > 0

    def __post_init__(self) -> None:
        if self.total_value != self.target + self.fee + self.change_value:
            raise TransactionBuildError(
                f"Selection does not balance: {self.total_value} != "
                f"{self.target} + {self.fee} + {self.change_value}"
            )


class CoinSelector:
    """
    Select UTXOs to fund a payment.

    Args:
        output_types: script types of the recipient outputs (size estimation)
        change_type: script type of the change output
        dust_relay_fee: sat/vB used for dust thresholds
        min_change: change below this floor is dropped into the fee as well
        max_tries: BnB search budget
        long_term_fee_rate: fee rate assumed for spending change later
            (defaults to the selection fee rate)
    """

    def __init__(
        self,
        output_types: Sequence[ScriptType] = (ScriptType.P2WPKH,),
        change_type: ScriptType = ScriptType.P2WPKH,
        dust_relay_fee: float | Decimal = DEFAULT_DUST_RELAY_FEE,
        min_change: int = 0,
        max_tries: int = DEFAULT_BNB_MAX_TRIES,
        long_term_fee_rate: float | Decimal | None = None,
        extra_output_bytes: int = 0,
    ):
        self.output_types = list(output_types)
        self.change_type = change_type
        self.dust_relay_fee = dust_relay_fee
        self.min_change = min_change
        self.max_tries = max_tries
        self.long_term_fee_rate = long_term_fee_rate
        self.extra_output_bytes = extra_output_bytes

    @property
    def change_floor(self) -> int:
        return max(dust_threshold(self.change_type, self.dust_relay_fee), self.min_change)

    def select(
        self,
        utxos: Sequence[Utxo],
        target_amount: int,
        fee_rate: float | Decimal,
        strategy: SelectionStrategy = SelectionStrategy.BRANCH_AND_BOUND,
    ) -> CoinSelection:
        if target_amount <= 0:
            raise ValueError(f"Target amount must be positive, got {target_amount}")
        if fee_rate < 0:
            raise ValueError(f"Fee rate must be non-negative, got {fee_rate}")

        seen = set()
        for utxo in utxos:
            if utxo.outpoint in seen:
                raise TransactionBuildError(f"Duplicate UTXO {utxo.txid}:{utxo.vout}")
            seen.add(utxo.outpoint)

        candidates = []
        for utxo in utxos:
            if has_input_estimate(utxo.resolved_script_type):
                candidates.append(utxo)
            else:
                logger.warning(
                    f"Skipping UTXO {utxo.txid}:{utxo.vout}: no size estimate for "
                    f"spending {utxo.resolved_script_type.value}"
                )

        logger.debug(
            f"Selecting coins for {target_amount} sats at {fee_rate} sat/vB "
            f"from {len(candidates)} UTXOs ({strategy.value})"
        )

        if strategy == SelectionStrategy.BRANCH_AND_BOUND:
            selection = self._branch_and_bound(candidates, target_amount, fee_rate)
            if selection is not None:
                return selection
            logger.debug("Branch and bound found no change-less solution, using largest-first")

        return self._largest_first(candidates, target_amount, fee_rate)

    def _fee(self, chosen: Sequence[Utxo], fee_rate, with_change: bool) -> int:
        output_types = self.output_types + ([self.change_type] if with_change else [])
        return estimate_fee(
            [u.resolved_script_type for u in chosen],
            output_types,
            fee_rate,
            extra_output_bytes=self.extra_output_bytes,
        )

    def _largest_first(
        self, utxos: Sequence[Utxo], target: int, fee_rate: float | Decimal
    ) -> CoinSelection:
        ordered = sorted(utxos, key=lambda u: (-u.value, u.txid, u.vout))

        chosen: list[Utxo] = []
        total = 0
        fee = self._fee(chosen, fee_rate, with_change=False)
        for utxo in ordered:
            chosen.append(utxo)
            total += utxo.value

            fee = self._fee(chosen, fee_rate, with_change=False)
            if total < target + fee:
                continue

            fee_with_change = self._fee(chosen, fee_rate, with_change=True)
            change = total - target - fee_with_change
            if change >= self.change_floor:
                return CoinSelection(
                    utxos=chosen,
                    target=target,
                    total_value=total,
                    change_value=change,
                    fee=fee_with_change,
                    strategy=SelectionStrategy.LARGEST_FIRST,
                )

            dropped = total - target - fee
            if dropped > 0:
                logger.warning(f"Change of {dropped} sats is below dust, adding it to the fee")
            return CoinSelection(
                utxos=chosen,
                target=target,
                total_value=total,
                change_value=0,
                fee=total - target,
                strategy=SelectionStrategy.LARGEST_FIRST,
                waste=dropped,
                dropped_change=dropped,
            )

        raise InsufficientFunds(
            f"Insufficient funds: need {target + fee} sats, have {total} sats",
            required=target + fee,
            available=total,
        )

    def _branch_and_bound(
        self, utxos: Sequence[Utxo], target: int, fee_rate: float | Decimal
    ) -> CoinSelection | None:
        long_term = self.long_term_fee_rate if self.long_term_fee_rate is not None else fee_rate

        pool = []
        for utxo in utxos:
            input_fee = fee_for_vsize(input_weight(utxo.resolved_script_type) / 4, fee_rate)
            effective = utxo.value - input_fee
            if effective > 0:
                pool.append((effective, utxo))
        if not pool:
            return None
        pool.sort(key=lambda p: (-p[0], p[1].txid, p[1].vout))
        values = [p[0] for p in pool]

        base_weight = (
            TX_OVERHEAD_BYTES
            + self.extra_output_bytes
            + sum(output_size(t) for t in self.output_types)
        ) * 4
        if any(p[1].resolved_script_type.is_segwit for p in pool):
            base_weight += SEGWIT_MARKER_WEIGHT
        selection_target = target + fee_for_vsize(base_weight / 4, fee_rate)

        cost_of_change = fee_for_vsize(output_size(self.change_type), fee_rate) + fee_for_vsize(
            input_weight(self.change_type) / 4, long_term
        )

        best = self._bnb_search(values, selection_target, cost_of_change)
        if best is None:
            return None

        chosen = [pool[i][1] for i in best]
        total = sum(u.value for u in chosen)
        required_fee = self._fee(chosen, fee_rate, with_change=False)
        if total - target < required_fee:
            return None

        return CoinSelection(
            utxos=chosen,
            target=target,
            total_value=total,
            change_value=0,
            fee=total - target,
            strategy=SelectionStrategy.BRANCH_AND_BOUND,
            waste=total - target - required_fee,
        )

    def _bnb_search(
        self, values: list[int], selection_target: int, cost_of_change: int
    ) -> list[int] | None:
        """
        Iterative depth-first search over the inclusion/omission tree.

        `values` must be sorted descending. Returns the indices of the best
        selection or None.
        """
        available = sum(values)
        if available < selection_target:
            return None

        current: list[int] = []  # explicit stack of included indices
        current_value = 0
        best: list[int] | None = None
        best_waste = None
        index = 0

        for _ in range(self.max_tries):
            backtrack = False
            if (
                current_value + available < selection_target
                or current_value > selection_target + cost_of_change
            ):
                backtrack = True
            elif current_value >= selection_target:
                waste = current_value - selection_target
                if best_waste is None or waste < best_waste:
                    best = list(current)
                    best_waste = waste
                    if waste == 0:
                        break
                backtrack = True

            if backtrack:
                if not current:
                    break
                # put omitted values back before trying the omission branch
                index -= 1
                while index > current[-1]:
                    available += values[index]
                    index -= 1
                current_value -= values[index]
                current.pop()
            else:
                value = values[index]
                available -= value
                # skip an equal-valued coin whose predecessor was just omitted
                if not current or index - 1 == current[-1] or value != values[index - 1]:
                    current.append(index)
                    current_value += value
            index += 1
        else:
            logger.debug(f"Branch and bound exhausted {self.max_tries} tries")

        return best


def select(
    utxos: Sequence[Utxo],
    target_amount: int,
    fee_rate: float | Decimal,
    strategy: SelectionStrategy = SelectionStrategy.BRANCH_AND_BOUND,
    **options,
) -> CoinSelection:
    """Convenience wrapper: CoinSelector(**options).select(...)"""
    return CoinSelector(**options).select(utxos, target_amount, fee_rate, strategy)
