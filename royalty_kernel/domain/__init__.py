"""
Pure domain layer.

This package contains value enums, DTOs, the line-kind tagged union and
the clock abstraction, with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O (except SystemClock)
"""

from royalty_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from royalty_kernel.domain.dtos import (
    AdjustmentInfo,
    AssetInfo,
    BatchAdjustmentFailure,
    BatchAdjustmentResult,
    CarryoverBalance,
    CreatorInfo,
    LicenseSnapshot,
    LineInfo,
    OverdueDispute,
    OwnershipShare,
    RevenueBreakdown,
    RollbackInfo,
    RunInfo,
    RunVerification,
    StatementInfo,
)
from royalty_kernel.domain.line_kind import (
    AdjustmentReversal,
    Carryover,
    DisputeResolution,
    LicenseLine,
    LineKindData,
    ManualAdjustment,
    ThresholdNote,
    kind_of,
    line_columns,
)
from royalty_kernel.domain.values import (
    AdjustmentType,
    ApprovalState,
    LicenseStatus,
    LineKind,
    RoundingMethod,
    RunStatus,
    StatementStatus,
)

__all__ = [
    # Clock
    "Clock",
    "SystemClock",
    "DeterministicClock",
    # Values
    "AdjustmentType",
    "ApprovalState",
    "LicenseStatus",
    "LineKind",
    "RoundingMethod",
    "RunStatus",
    "StatementStatus",
    # Line kinds
    "LineKindData",
    "LicenseLine",
    "Carryover",
    "ThresholdNote",
    "ManualAdjustment",
    "AdjustmentReversal",
    "DisputeResolution",
    "kind_of",
    "line_columns",
    # DTOs
    "RunInfo",
    "StatementInfo",
    "LineInfo",
    "AdjustmentInfo",
    "AssetInfo",
    "OwnershipShare",
    "LicenseSnapshot",
    "RevenueBreakdown",
    "CarryoverBalance",
    "CreatorInfo",
    "RollbackInfo",
    "OverdueDispute",
    "RunVerification",
    "BatchAdjustmentFailure",
    "BatchAdjustmentResult",
]
