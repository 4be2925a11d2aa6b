"""
Module: royalty_engines.financial
Responsibility:
    Integer-cent money arithmetic for royalty calculation: rounding,
    basis-point shares, proration, exact largest-remainder splitting,
    rounding reconciliation and threshold/carryover balance decisions.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import royalty_kernel.domain, royalty_kernel.exceptions and
    royalty_kernel.logging_config.

Invariants enforced:
    - No cent is created or lost: split_amount_accurately returns amounts
      summing exactly to the input total for every non-negative total and
      every weight set summing to 10000 bps.
    - Exact intermediates: fractional cents are carried as Decimal or as
      integer remainders, never floats.
    - No partial payouts: calculate_accumulated_balance either pays the
      full accumulated balance or carries all of it forward.

Failure modes:
    - InvalidOwnershipSplitError when weights do not sum to 10000 bps.
    - ValueError on negative totals, negative weights, basis points
      outside 0..10000, or mismatched reconciliation inputs.

Audit relevance:
    Every payout traces back to split_amount_accurately.  Rounding
    reconciliation results are written into the run notes when drift
    exceeds tolerance, so auditors can see where fractional cents went.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_EVEN, ROUND_HALF_UP, Decimal
from typing import Hashable

from royalty_engines.tracer import traced_engine
from royalty_kernel.domain.values import RoundingMethod
from royalty_kernel.exceptions import InvalidOwnershipSplitError
from royalty_kernel.logging_config import get_logger

logger = get_logger("engines.financial")

BPS_DENOMINATOR = 10000

_ROUNDING_MODES = {
    RoundingMethod.BANKERS: ROUND_HALF_EVEN,
    RoundingMethod.STANDARD: ROUND_HALF_UP,
}


# ---------------------------------------------------------------------------
# Rounding
# ---------------------------------------------------------------------------


def round_amount(
    amount: Decimal | int,
    method: RoundingMethod = RoundingMethod.BANKERS,
) -> int:
    """
    Round a fractional cent amount to whole cents.

    BANKERS rounds half to even; STANDARD rounds half away from zero.
    The method is a process-wide setting taken from CalculationConfig.
    """
    mode = _ROUNDING_MODES[RoundingMethod(method)]
    return int(Decimal(amount).quantize(Decimal(1), rounding=mode))


def calculate_royalty_share(
    revenue_cents: int,
    share_bps: int,
    method: RoundingMethod = RoundingMethod.BANKERS,
) -> int:
    """revenue_cents * share_bps / 10000, rounded."""
    if share_bps < 0 or share_bps > BPS_DENOMINATOR:
        raise ValueError(
            f"share_bps must be between 0 and {BPS_DENOMINATOR}, got {share_bps}"
        )
    return round_amount(
        Decimal(revenue_cents * share_bps) / BPS_DENOMINATOR, method
    )


def prorate_revenue(
    total_revenue_cents: int,
    days_active: int,
    total_days: int,
    method: RoundingMethod = RoundingMethod.BANKERS,
) -> int:
    """
    Scale an amount by days_active / total_days.

    Returns 0 when either count is non-positive and the full amount when
    the entity covers the whole period.
    """
    if days_active <= 0 or total_days <= 0:
        return 0
    if days_active >= total_days:
        return total_revenue_cents
    return round_amount(
        Decimal(total_revenue_cents * days_active) / Decimal(total_days), method
    )


# ---------------------------------------------------------------------------
# Largest-remainder splitting
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Weight:
    """One party's share of a split, in basis points."""

    party_id: Hashable
    share_bps: int


@dataclass(frozen=True)
class ShareAllocation:
    """
    One party's allocation.

    ``exact_cents`` is the unrounded share (total * bps / 10000) kept for
    rounding reconciliation.
    """

    party_id: Hashable
    amount_cents: int
    exact_cents: Decimal


def validate_ownership_split(shares_bps: Iterable[int]) -> bool:
    """True when the shares sum to exactly 10000 bps."""
    return sum(shares_bps) == BPS_DENOMINATOR


@traced_engine("split", "1.0", fingerprint_fields=("total_cents", "weights"))
def split_amount_accurately(
    total_cents: int,
    weights: Sequence[Weight],
) -> list[ShareAllocation]:
    """
    Split an integer cent amount across weighted parties with no cent lost.

    Each party first receives floor(total * bps / 10000).  The cents left
    over are then handed out one at a time to the parties with the largest
    fractional remainder; equal remainders go to the party listed first.

    Args:
        total_cents: Non-negative amount to split.
        weights: Party weights summing to exactly 10000 bps.

    Returns:
        One ShareAllocation per weight, in input order.

    Raises:
        InvalidOwnershipSplitError: weights do not sum to 10000 bps.
        ValueError: negative total or negative weight.
    """
    if total_cents < 0:
        raise ValueError(f"total_cents must be non-negative, got {total_cents}")
    if any(w.share_bps < 0 for w in weights):
        raise ValueError("share_bps must be non-negative")
    total_bps = sum(w.share_bps for w in weights)
    if total_bps != BPS_DENOMINATOR:
        raise InvalidOwnershipSplitError(total_bps=total_bps)

    floors: list[int] = []
    remainders: list[int] = []
    for w in weights:
        quotient, remainder = divmod(total_cents * w.share_bps, BPS_DENOMINATOR)
        floors.append(quotient)
        remainders.append(remainder)

    leftover = total_cents - sum(floors)
    order = sorted(range(len(weights)), key=lambda i: (-remainders[i], i))
    for i in order[:leftover]:
        floors[i] += 1

    return [
        ShareAllocation(
            party_id=w.party_id,
            amount_cents=floors[i],
            exact_cents=Decimal(total_cents * w.share_bps) / BPS_DENOMINATOR,
        )
        for i, w in enumerate(weights)
    ]


# ---------------------------------------------------------------------------
# Rounding reconciliation (diagnostic only)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RoundingReconciliation:
    pre_rounded_total: Decimal
    post_rounded_total: int
    rounding_difference: Decimal
    item_count: int
    average_rounding_error: Decimal


def calculate_rounding_reconciliation(
    pre_rounded: Sequence[Decimal | int],
    post_rounded: Sequence[int],
) -> RoundingReconciliation:
    """Compare unrounded and rounded values item by item."""
    if len(pre_rounded) != len(post_rounded):
        raise ValueError(
            "pre-rounded and post-rounded sequences must have the same length"
        )
    pre_total = sum((Decimal(v) for v in pre_rounded), Decimal(0))
    post_total = sum(post_rounded)
    difference = abs(Decimal(post_total) - pre_total)
    count = len(pre_rounded)
    return RoundingReconciliation(
        pre_rounded_total=pre_total,
        post_rounded_total=post_total,
        rounding_difference=difference,
        item_count=count,
        average_rounding_error=difference / count if count else Decimal(0),
    )


def default_rounding_tolerance(item_count: int) -> int:
    """One cent per hundred items, never less than one cent."""
    return max(1, math.ceil(item_count / 100))


def is_rounding_within_tolerance(
    reconciliation: RoundingReconciliation,
    tolerance_cents: int | None = None,
) -> bool:
    if tolerance_cents is None:
        tolerance_cents = default_rounding_tolerance(reconciliation.item_count)
    return reconciliation.rounding_difference <= tolerance_cents


# ---------------------------------------------------------------------------
# Threshold and carryover
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccumulatedBalance:
    total_accumulated_cents: int
    should_payout: bool
    carryover_cents: int


@traced_engine(
    "accumulated_balance",
    "1.0",
    fingerprint_fields=("unpaid_carryover_cents", "current_period_cents", "threshold_cents"),
)
def calculate_accumulated_balance(
    unpaid_carryover_cents: int,
    current_period_cents: int,
    threshold_cents: int,
) -> AccumulatedBalance:
    """
    Decide whether the accumulated balance is paid out.

    The balance is paid in full when it reaches the threshold; otherwise
    all of it carries forward.  There is no partial payout.
    """
    total = unpaid_carryover_cents + current_period_cents
    should_payout = total >= threshold_cents
    return AccumulatedBalance(
        total_accumulated_cents=total,
        should_payout=should_payout,
        carryover_cents=0 if should_payout else total,
    )


def apply_minimum_threshold(value_cents: int, threshold_cents: int) -> int:
    """The value itself when it reaches the threshold, else 0."""
    return value_cents if value_cents >= threshold_cents else 0


def sum_cents(values: Iterable[int]) -> int:
    return sum(values)


# ---------------------------------------------------------------------------
# Percentages, basis points, formatting
# ---------------------------------------------------------------------------


def calculate_percentage(part: int | Decimal, whole: int | Decimal, decimals: int = 2) -> Decimal:
    if whole == 0:
        return Decimal(0)
    quantum = Decimal(1).scaleb(-decimals)
    return (Decimal(part) / Decimal(whole) * 100).quantize(quantum, rounding=ROUND_HALF_UP)


def bps_to_percentage(share_bps: int, decimals: int = 2) -> Decimal:
    quantum = Decimal(1).scaleb(-decimals)
    return (Decimal(share_bps) / 100).quantize(quantum, rounding=ROUND_HALF_UP)


def percentage_to_bps(percentage: Decimal | int | str) -> int:
    return int((Decimal(percentage) * 100).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def format_cents(cents: int, include_symbol: bool = True) -> str:
    """Render cents as dollars, e.g. -1234 -> '-$12.34'."""
    sign = "-" if cents < 0 else ""
    dollars, rem = divmod(abs(cents), 100)
    symbol = "$" if include_symbol else ""
    return f"{sign}{symbol}{dollars}.{rem:02d}"


def format_bps(share_bps: int) -> str:
    """Render basis points as a percentage, e.g. 1250 -> '12.5%'."""
    return f"{bps_to_percentage(share_bps).normalize():f}%"
