"""
royalty_services.revenue_aggregator -- Chargeable revenue of one license.

Responsibility:
    For one license active in one period, compute the prorated flat fee
    plus the usage-based revenue reported by the usage billing
    collaborator.

Architecture position:
    Services -- called by RoyaltyCalculationService for every active
    license.  Day counts and proration come from royalty_engines; usage
    revenue comes from a UsageBillingClient.

Invariants enforced:
    - days_active <= total_days (overlap is clamped to the period).
    - The flat fee is prorated only when proration is enabled and the
      license does not cover the whole period.

Failure modes:
    - A UsageBillingClient failure is logged and counted as zero usage
      revenue.  It never aborts the enclosing run.
"""

from __future__ import annotations

from datetime import date

from royalty_config.schema import CalculationConfig
from royalty_engines.financial import prorate_revenue
from royalty_engines.periods import overlap_days, period_days
from royalty_kernel.domain.dtos import LicenseSnapshot, RevenueBreakdown
from royalty_kernel.logging_config import get_logger
from royalty_services.collaborators import NoUsageBillingClient, UsageBillingClient

logger = get_logger("services.revenue_aggregator")


class RevenueAggregator:
    """
    Revenue for one license over one period.

    Contract:
        ``aggregate`` is side-effect free apart from the usage billing
        call and logging, so the orchestrator may call it from worker
        threads.
    """

    def __init__(
        self,
        config: CalculationConfig,
        usage_client: UsageBillingClient | None = None,
    ):
        self._config = config
        self._usage_client = usage_client or NoUsageBillingClient()

    def aggregate(
        self,
        license: LicenseSnapshot,
        period_start: date,
        period_end: date,
    ) -> RevenueBreakdown:
        total_days = period_days(period_start, period_end)
        days_active = overlap_days(
            license.start_date, license.end_date, period_start, period_end
        )

        prorated = self._config.enable_proration and days_active < total_days
        if prorated:
            flat_fee = prorate_revenue(
                license.fee_cents,
                days_active,
                total_days,
                self._config.rounding_method,
            )
        else:
            flat_fee = license.fee_cents

        usage_revenue = 0
        if self._config.enable_usage_revenue and license.rev_share_bps > 0:
            usage_revenue = self._usage_revenue(license, period_start, period_end)

        breakdown = RevenueBreakdown(
            license_id=license.id,
            total_revenue_cents=flat_fee + usage_revenue,
            flat_fee_cents=flat_fee,
            usage_revenue_cents=usage_revenue,
            days_active=days_active,
            total_days=total_days,
            prorated=prorated,
        )
        logger.debug(
            "license_revenue_aggregated",
            extra={
                "license_id": str(license.id),
                "total_revenue_cents": breakdown.total_revenue_cents,
                "flat_fee_cents": flat_fee,
                "usage_revenue_cents": usage_revenue,
                "days_active": days_active,
                "total_days": total_days,
            },
        )
        return breakdown

    def _usage_revenue(
        self, license: LicenseSnapshot, period_start: date, period_end: date
    ) -> int:
        try:
            royalties = self._usage_client.usage_based_royalties(
                license.id, period_start, period_end
            )
            return sum(r.usage_revenue_cents for r in royalties)
        except Exception:
            logger.warning(
                "usage_revenue_unavailable",
                extra={
                    "license_id": str(license.id),
                    "period_start": period_start.isoformat(),
                    "period_end": period_end.isoformat(),
                },
                exc_info=True,
            )
            return 0
