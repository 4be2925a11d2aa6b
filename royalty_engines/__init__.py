"""
Module: royalty_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    calculation engines.  This is the canonical import surface for
    royalty_services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import royalty_kernel.domain, royalty_kernel.exceptions and
    royalty_kernel.logging_config (and sibling engine modules).
    MUST NOT import royalty_services or royalty_config.

Invariants enforced:
    - Purity: engines NEVER call ``datetime.now()`` or ``date.today()``.
      Dates are passed in by the services, which read them from a Clock.
    - Integer cents: money is int cents end to end; fractional cents only
      exist as Decimal intermediates.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Splits and cascades are traced via ``@traced_engine`` (see
    ``royalty_engines.tracer``), emitting ROYALTY_ENGINE_TRACE records.

Usage:
    from royalty_engines.financial import split_amount_accurately, Weight
    from royalty_engines.periods import validate_period, overlap_days
    from royalty_engines.derivative import calculate_derivative_royalty_split
"""

from royalty_kernel.logging_config import get_logger

logger = get_logger("engines")

from royalty_engines.derivative import (  # noqa: E402
    ChainAllocation,
    ChainLink,
    DerivativeAllocation,
    DerivativeInfo,
    DerivativeSplit,
    calculate_derivative_royalty_split,
    calculate_multi_level_derivative_royalty,
    get_derivative_work_metadata,
    validate_derivative_chain,
)
from royalty_engines.financial import (  # noqa: E402
    BPS_DENOMINATOR,
    AccumulatedBalance,
    RoundingReconciliation,
    ShareAllocation,
    Weight,
    apply_minimum_threshold,
    bps_to_percentage,
    calculate_accumulated_balance,
    calculate_percentage,
    calculate_rounding_reconciliation,
    calculate_royalty_share,
    default_rounding_tolerance,
    format_bps,
    format_cents,
    is_rounding_within_tolerance,
    percentage_to_bps,
    prorate_revenue,
    round_amount,
    split_amount_accurately,
    sum_cents,
    validate_ownership_split,
)
from royalty_engines.period_generator import (  # noqa: E402
    batch_create_periods_for_year,
    current_period,
    find_period_for_date,
    generate_periods_for_date_range,
    generate_trailing_periods,
    generate_year_to_date_periods,
    is_date_in_period,
    next_period,
    parse_period_identifier,
    period_identifier,
    previous_period,
    readable_period_name,
    sort_periods,
)
from royalty_engines.periods import (  # noqa: E402
    FiscalStart,
    Period,
    PeriodFrequency,
    PeriodType,
    add_months,
    check_no_overlap,
    detect_period_type,
    fiscal_year_start,
    generate_fiscal_periods,
    generate_monthly_periods,
    generate_quarterly_periods,
    overlap_days,
    period_days,
    period_display_name,
    periods_are_adjacent,
    periods_overlap,
    validate_period,
)
from royalty_engines.scope import (  # noqa: E402
    LicenseScope,
    ReportedUsage,
    ScopeValidationResult,
    ScopeViolation,
    ScopeWarning,
    allocate_revenue_by_scope_category,
    calculate_exclusivity_premium,
    is_scope_active,
    is_scope_expired,
    merge_scopes,
    parse_license_scope,
    scope_display_summary,
    validate_scope_compliance,
)
from royalty_engines.tracer import compute_input_fingerprint, traced_engine  # noqa: E402

__all__ = [
    # derivative
    "ChainAllocation",
    "ChainLink",
    "DerivativeAllocation",
    "DerivativeInfo",
    "DerivativeSplit",
    "calculate_derivative_royalty_split",
    "calculate_multi_level_derivative_royalty",
    "get_derivative_work_metadata",
    "validate_derivative_chain",
    # financial
    "BPS_DENOMINATOR",
    "AccumulatedBalance",
    "RoundingReconciliation",
    "ShareAllocation",
    "Weight",
    "apply_minimum_threshold",
    "bps_to_percentage",
    "calculate_accumulated_balance",
    "calculate_percentage",
    "calculate_rounding_reconciliation",
    "calculate_royalty_share",
    "default_rounding_tolerance",
    "format_bps",
    "format_cents",
    "is_rounding_within_tolerance",
    "percentage_to_bps",
    "prorate_revenue",
    "round_amount",
    "split_amount_accurately",
    "sum_cents",
    "validate_ownership_split",
    # period generator
    "batch_create_periods_for_year",
    "current_period",
    "find_period_for_date",
    "generate_periods_for_date_range",
    "generate_trailing_periods",
    "generate_year_to_date_periods",
    "is_date_in_period",
    "next_period",
    "parse_period_identifier",
    "period_identifier",
    "previous_period",
    "readable_period_name",
    "sort_periods",
    # periods
    "FiscalStart",
    "Period",
    "PeriodFrequency",
    "PeriodType",
    "add_months",
    "check_no_overlap",
    "detect_period_type",
    "fiscal_year_start",
    "generate_fiscal_periods",
    "generate_monthly_periods",
    "generate_quarterly_periods",
    "overlap_days",
    "period_days",
    "period_display_name",
    "periods_are_adjacent",
    "periods_overlap",
    "validate_period",
    # scope
    "LicenseScope",
    "ReportedUsage",
    "ScopeValidationResult",
    "ScopeViolation",
    "ScopeWarning",
    "allocate_revenue_by_scope_category",
    "calculate_exclusivity_premium",
    "is_scope_active",
    "is_scope_expired",
    "merge_scopes",
    "parse_license_scope",
    "scope_display_summary",
    "validate_scope_compliance",
    # tracer
    "compute_input_fingerprint",
    "traced_engine",
]
