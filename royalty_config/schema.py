"""
CalculationConfig schema.

The frozen runtime configuration for royalty calculation.  Defaults live
in ``royalty_config/sets/default.yaml``; the loader parses that file,
applies ``ROYALTY_*`` environment overrides, validates the result, and
builds one of these.  Services receive the instance explicitly and never
read the environment themselves.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from royalty_kernel.domain.values import RoundingMethod


@dataclass(frozen=True)
class FiscalYearConfig:
    """Fiscal year start; January 1 means fiscal years are calendar years."""

    start_month: int = 1
    start_day: int = 1


@dataclass(frozen=True)
class CalculationConfig:
    """
    Process-wide royalty calculation settings.

    Contract:
        Read once at startup via ``royalty_config.get_active_config()``
        and passed to every service that needs it.

    Guarantees:
        - Immutable after construction.
        - ``checksum`` identifies the exact settings that produced a run;
          it is copied into run notes and the ROYALTY_CONFIG_TRACE record.
    """

    minimum_payout_threshold_cents: int = 5000
    vip_minimum_payout_threshold_cents: int = 2500
    rounding_method: RoundingMethod = RoundingMethod.BANKERS
    # None means max(1, ceil(item_count / 100))
    rounding_tolerance_cents: int | None = None
    enable_proration: bool = True
    enable_usage_revenue: bool = True
    calculation_timeout_ms: int = 300000
    adjustment_approval_threshold_cents: int = 10000
    enable_derivative_royalty_splits: bool = True
    derivative_original_creator_share_bps: int = 1000
    dispute_resolution_timeout_days: int = 30
    dispute_reason_min_length: int = 10
    calculation_workers: int = 1
    fiscal_year: FiscalYearConfig = field(default_factory=FiscalYearConfig)

    config_id: str = "default"
    config_version: int = 1
    checksum: str = ""

    def threshold_for(self, is_vip: bool) -> int:
        """Minimum payout threshold for a creator."""
        if is_vip:
            return self.vip_minimum_payout_threshold_cents
        return self.minimum_payout_threshold_cents

    def requires_approval(self, amount_cents: int) -> bool:
        """Adjustments at or above the ceiling (by magnitude) need approval."""
        return abs(amount_cents) >= self.adjustment_approval_threshold_cents
