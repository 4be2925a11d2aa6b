"""
royalty_services.ownership_split -- Ownership validation and allocation.

Responsibility:
    Validates that an asset's ownership shares sum to exactly 10000 bps
    and allocates a license's revenue across the owners, routing
    derivative assets through the derivative cascade so the original
    creator's cut is taken first.

Architecture position:
    Services -- thin adapter between kernel DTOs (AssetInfo,
    OwnershipShare) and the pure engines in royalty_engines.derivative
    and royalty_engines.financial.  Configuration arrives through
    CalculationConfig and is passed down as explicit arguments.

Invariants enforced:
    - Ownership shares sum to exactly 10000 bps; any other sum is a hard
      failure naming the actual sum and the asset.
    - sum(amount_cents) == revenue_cents for every allocation.

Failure modes:
    - InvalidOwnershipSplitError (from ``validate`` or from the engines).
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from royalty_config.schema import CalculationConfig
from royalty_engines.derivative import DerivativeInfo, calculate_derivative_royalty_split
from royalty_engines.financial import BPS_DENOMINATOR, Weight, validate_ownership_split
from royalty_kernel.domain.dtos import AssetInfo, OwnershipShare
from royalty_kernel.exceptions import InvalidOwnershipSplitError
from royalty_kernel.logging_config import get_logger

logger = get_logger("services.ownership_split")


@dataclass(frozen=True)
class OwnerAllocation:
    """
    One creator's royalty from one license.

    ``exact_cents`` is the unrounded share kept for rounding
    reconciliation.
    """

    creator_id: UUID
    share_bps: int
    amount_cents: int
    exact_cents: Decimal
    is_original_creator: bool = False


class OwnershipSplitEngine:
    """Splits license revenue across an asset's owners."""

    def __init__(self, config: CalculationConfig):
        self._config = config

    def validate(self, asset_id: UUID, shares: Sequence[OwnershipShare]) -> None:
        """Raise InvalidOwnershipSplitError unless shares sum to 10000 bps."""
        if not validate_ownership_split(s.share_bps for s in shares):
            total = sum(s.share_bps for s in shares)
            logger.warning(
                "ownership_split_invalid",
                extra={
                    "ip_asset_id": str(asset_id),
                    "total_bps": total,
                    "expected_bps": BPS_DENOMINATOR,
                    "owner_count": len(shares),
                },
            )
            raise InvalidOwnershipSplitError(total_bps=total, asset_id=str(asset_id))

    def allocate(
        self,
        revenue_cents: int,
        asset: AssetInfo,
        ownerships: Sequence[OwnershipShare],
    ) -> list[OwnerAllocation]:
        """
        Allocate ``revenue_cents`` across ``ownerships``.

        Derivative assets pay the original creator first when derivative
        splits are enabled; everything else is a plain largest-remainder
        split.
        """
        self.validate(asset.id, ownerships)
        split = calculate_derivative_royalty_split(
            revenue_cents,
            DerivativeInfo.from_asset(asset),
            [Weight(o.creator_id, o.share_bps) for o in ownerships],
            derivatives_enabled=self._config.enable_derivative_royalty_splits,
            default_original_share_bps=self._config.derivative_original_creator_share_bps,
            rounding_method=self._config.rounding_method,
        )
        return [
            OwnerAllocation(
                creator_id=a.creator_id,
                share_bps=a.share_bps,
                amount_cents=a.amount_cents,
                exact_cents=a.exact_cents,
                is_original_creator=a.is_original_creator,
            )
            for a in split.allocations
        ]
