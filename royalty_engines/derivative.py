"""
Module: royalty_engines.derivative
Responsibility:
    Royalty cascades for derivative works.  A derivative asset owes its
    original creator a share of every royalty before the remainder is
    split among the derivative's own owners; chains of derivatives peel a
    share at each level.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Configuration (enabled flag, default share, rounding method) arrives
    as explicit arguments; this module never reads CalculationConfig.

Invariants enforced:
    - Conservation: for every non-negative total, the allocated cents sum
      exactly to the total.
    - Owner shares (and each chain level) sum to exactly 10000 bps.

Failure modes:
    - InvalidOwnershipSplitError when derivative owners do not sum to 10000.
    - InvalidDerivativeChainError when chain levels are not contiguous
      from 0 or a level does not sum to 10000.

Audit relevance:
    Each allocation records whether it went to the original creator, so
    statements can show the derivative cut separately.

Known asymmetry:
    calculate_multi_level_derivative_royalty hands any cents left after
    the cascade to the first creator of the final level instead of
    running them through largest-remainder.  Level 0 normally absorbs
    the whole residual, so this branch only fires for hand-built chains
    whose level 0 carries no weight.  Kept as documented behaviour.
"""

from __future__ import annotations

from collections.abc import Hashable, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from royalty_engines.financial import (
    BPS_DENOMINATOR,
    Weight,
    round_amount,
    split_amount_accurately,
)
from royalty_engines.tracer import traced_engine
from royalty_kernel.domain.values import RoundingMethod
from royalty_kernel.exceptions import (
    InvalidDerivativeChainError,
    InvalidOwnershipSplitError,
)
from royalty_kernel.logging_config import get_logger

logger = get_logger("engines.derivative")

_LEVEL_LABELS = ("Original", "Derivative", "2nd-Gen Derivative", "3rd-Gen Derivative")


@dataclass(frozen=True)
class DerivativeInfo:
    """What the split needs to know about an asset's lineage."""

    ip_asset_id: Hashable
    is_derivative: bool = False
    parent_asset_id: Hashable | None = None
    derivative_level: int = 0
    original_creator_id: Hashable | None = None
    original_creator_share_bps: int | None = None

    @classmethod
    def from_asset(cls, asset: Any) -> "DerivativeInfo":
        """Build from anything shaped like AssetInfo or IpAsset."""
        return cls(
            ip_asset_id=asset.id,
            is_derivative=bool(asset.is_derivative),
            parent_asset_id=asset.parent_asset_id,
            derivative_level=asset.derivative_level or 0,
            original_creator_id=asset.original_creator_id,
            original_creator_share_bps=asset.original_creator_share_bps,
        )


@dataclass(frozen=True)
class DerivativeAllocation:
    creator_id: Hashable
    is_original_creator: bool
    share_bps: int
    amount_cents: int
    exact_cents: Decimal
    metadata: dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class DerivativeSplit:
    original_creator_cents: int
    derivative_creators_cents: int
    allocations: tuple[DerivativeAllocation, ...]

    @property
    def total_cents(self) -> int:
        return sum(a.amount_cents for a in self.allocations)


@dataclass(frozen=True)
class ChainLink:
    """One creator at one level of a derivative chain (0 = original work)."""

    creator_id: Hashable
    share_bps: int
    level: int


@dataclass(frozen=True)
class ChainAllocation:
    creator_id: Hashable
    level: int
    share_bps: int
    amount_cents: int
    metadata: dict[str, Any] = field(default_factory=dict, compare=False)


def _plain_split(total_cents: int, owners: Sequence[Weight]) -> DerivativeSplit:
    shares = split_amount_accurately(total_cents, owners)
    return DerivativeSplit(
        original_creator_cents=0,
        derivative_creators_cents=total_cents,
        allocations=tuple(
            DerivativeAllocation(
                creator_id=s.party_id,
                is_original_creator=False,
                share_bps=w.share_bps,
                amount_cents=s.amount_cents,
                exact_cents=s.exact_cents,
                metadata={"type": "standard"},
            )
            for s, w in zip(shares, owners)
        ),
    )


@traced_engine(
    "derivative_split",
    "1.0",
    fingerprint_fields=("total_cents", "derivative_info", "owners"),
)
def calculate_derivative_royalty_split(
    total_cents: int,
    derivative_info: DerivativeInfo,
    owners: Sequence[Weight],
    derivatives_enabled: bool = True,
    default_original_share_bps: int = 1000,
    rounding_method: RoundingMethod = RoundingMethod.BANKERS,
) -> DerivativeSplit:
    """
    Split a royalty between an original creator and derivative owners.

    Non-derivative assets, or any asset while derivative splits are
    disabled, get a plain largest-remainder split across ``owners``.

    For a derivative, the original creator first receives
    round(total * original_bps / 10000), where original_bps is the
    asset's override or ``default_original_share_bps``.  The remainder is
    split across ``owners``, whose shares must sum to 10000 bps on their
    own.  With no recorded original creator the whole amount goes to the
    owners.
    """
    owners = list(owners)
    total_bps = sum(w.share_bps for w in owners)
    if total_bps != BPS_DENOMINATOR:
        raise InvalidOwnershipSplitError(
            total_bps=total_bps, asset_id=str(derivative_info.ip_asset_id)
        )

    if not derivative_info.is_derivative or not derivatives_enabled:
        return _plain_split(total_cents, owners)

    original_bps = derivative_info.original_creator_share_bps
    if original_bps is None:
        original_bps = default_original_share_bps
    if not 0 <= original_bps <= BPS_DENOMINATOR:
        raise ValueError(
            f"original creator share must be between 0 and {BPS_DENOMINATOR} bps, "
            f"got {original_bps}"
        )

    original_exact = Decimal(total_cents * original_bps) / BPS_DENOMINATOR
    original_cents = round_amount(original_exact, rounding_method)
    if derivative_info.original_creator_id is None:
        original_cents = 0

    remainder = total_cents - original_cents
    allocations: list[DerivativeAllocation] = []
    if original_cents > 0:
        allocations.append(
            DerivativeAllocation(
                creator_id=derivative_info.original_creator_id,
                is_original_creator=True,
                share_bps=original_bps,
                amount_cents=original_cents,
                exact_cents=original_exact,
                metadata={
                    "type": "original_creator_share",
                    "derivative_asset_id": str(derivative_info.ip_asset_id),
                    "derivative_level": derivative_info.derivative_level,
                },
            )
        )

    for share, weight in zip(split_amount_accurately(remainder, owners), owners):
        allocations.append(
            DerivativeAllocation(
                creator_id=share.party_id,
                is_original_creator=False,
                share_bps=weight.share_bps,
                amount_cents=share.amount_cents,
                exact_cents=share.exact_cents,
                metadata={
                    "type": "derivative_creator_share",
                    "original_creator_id": (
                        str(derivative_info.original_creator_id)
                        if derivative_info.original_creator_id is not None
                        else None
                    ),
                    "original_creator_share_bps": original_bps,
                    "derivative_level": derivative_info.derivative_level,
                },
            )
        )

    logger.debug(
        "derivative_split_calculated",
        extra={
            "ip_asset_id": str(derivative_info.ip_asset_id),
            "total_cents": total_cents,
            "original_creator_cents": original_cents,
            "original_share_bps": original_bps,
        },
    )
    return DerivativeSplit(
        original_creator_cents=original_cents,
        derivative_creators_cents=remainder,
        allocations=tuple(allocations),
    )


def validate_derivative_chain(chain: Sequence[ChainLink]) -> list[str]:
    """
    Check chain structure; returns a list of problems (empty when valid).

    Levels must run 0, 1, 2 ... with no gaps, and the shares at each
    level must sum to exactly 10000 bps.
    """
    errors: list[str] = []
    if not chain:
        return ["derivative chain is empty"]

    by_level: dict[int, int] = {}
    for link in chain:
        by_level[link.level] = by_level.get(link.level, 0) + link.share_bps

    for level in sorted(by_level):
        if by_level[level] != BPS_DENOMINATOR:
            errors.append(
                f"level {level} shares sum to {by_level[level]} bps, expected 10000"
            )

    for expected, level in enumerate(sorted(by_level)):
        if level != expected:
            errors.append(
                f"missing level {expected}; levels must be contiguous from 0"
            )
            break

    return errors


def _split_level(amount: int, links: Sequence[ChainLink]):
    weights = [Weight(link.creator_id, link.share_bps) for link in links]
    return split_amount_accurately(amount, weights)


@traced_engine(
    "multi_level_derivative",
    "1.0",
    fingerprint_fields=("total_cents", "chain", "derivative_share_bps"),
)
def calculate_multi_level_derivative_royalty(
    total_cents: int,
    chain: Sequence[ChainLink],
    derivatives_enabled: bool = True,
    derivative_share_bps: int = 1000,
    rounding_method: RoundingMethod = RoundingMethod.BANKERS,
) -> list[ChainAllocation]:
    """
    Cascade a royalty through a chain of derivative levels.

    Levels above 0 are processed in ascending order.  Each takes
    round(remaining * derivative_share_bps / 10000) of the pool still
    unallocated and splits it across its creators by largest remainder.
    Level 0 then receives whatever is left.

    With derivative splits disabled, only the highest level is paid and
    it receives the whole amount.

    Raises:
        InvalidDerivativeChainError: the chain fails validate_derivative_chain.
    """
    errors = validate_derivative_chain(chain)
    if errors:
        raise InvalidDerivativeChainError(errors)

    max_level = max(link.level for link in chain)
    links_by_level: dict[int, list[ChainLink]] = {}
    for link in chain:
        links_by_level.setdefault(link.level, []).append(link)

    if not derivatives_enabled:
        top = links_by_level[max_level]
        return [
            ChainAllocation(
                creator_id=link.creator_id,
                level=max_level,
                share_bps=link.share_bps,
                amount_cents=share.amount_cents,
                metadata={"type": "standard"},
            )
            for link, share in zip(top, _split_level(total_cents, top))
        ]

    results: list[ChainAllocation] = []
    remaining = total_cents

    for level in range(1, max_level + 1):
        links = links_by_level[level]
        level_cents = round_amount(
            Decimal(remaining * derivative_share_bps) / BPS_DENOMINATOR,
            rounding_method,
        )
        for link, share in zip(links, _split_level(level_cents, links)):
            results.append(
                ChainAllocation(
                    creator_id=link.creator_id,
                    level=level,
                    share_bps=link.share_bps,
                    amount_cents=share.amount_cents,
                    metadata={
                        "type": "derivative_creator",
                        "derivative_level": level,
                        "derivative_share_bps": derivative_share_bps,
                    },
                )
            )
        remaining -= level_cents

    originals = links_by_level[0]
    level_zero = _split_level(remaining, originals)
    for link, share in zip(originals, level_zero):
        results.append(
            ChainAllocation(
                creator_id=link.creator_id,
                level=0,
                share_bps=link.share_bps,
                amount_cents=share.amount_cents,
                metadata={"type": "original_creator", "derivative_level": 0},
            )
        )
    remaining -= sum(s.amount_cents for s in level_zero)

    if remaining > 0:
        for i, allocation in enumerate(results):
            if allocation.level == max_level:
                results[i] = ChainAllocation(
                    creator_id=allocation.creator_id,
                    level=allocation.level,
                    share_bps=allocation.share_bps,
                    amount_cents=allocation.amount_cents + remaining,
                    metadata={**allocation.metadata, "residual_cents": remaining},
                )
                break

    return results


def get_derivative_work_metadata(
    derivative_info: DerivativeInfo,
    default_original_share_bps: int = 1000,
    include_original_creator: bool = True,
) -> dict[str, Any]:
    """Display metadata for statements: lineage label and original creator cut."""
    if not derivative_info.is_derivative:
        return {
            "is_derivative": False,
            "derivative_level": 0,
            "display_label": "Original Work",
        }

    level = derivative_info.derivative_level
    label = _LEVEL_LABELS[level] if level < len(_LEVEL_LABELS) else f"{level}th-Gen Derivative"
    metadata: dict[str, Any] = {
        "is_derivative": True,
        "derivative_level": level,
        "display_label": label,
    }
    if include_original_creator and derivative_info.original_creator_id is not None:
        share = derivative_info.original_creator_share_bps
        metadata["original_creator"] = {
            "creator_id": str(derivative_info.original_creator_id),
            "share_bps": default_original_share_bps if share is None else share,
        }
    return metadata
