"""Domain models for the royalty kernel."""

from royalty_kernel.domain.values import (
    APPROVAL_TRANSITIONS,
    EFFECTIVE_APPROVAL_STATES,
    LOCKED_RUN_STATUSES,
    PAYOUT_STARTED_STATUSES,
    RUN_TRANSITIONS,
    UNPAID_STATEMENT_STATUSES,
    AdjustmentType,
    ApprovalState,
    LicenseStatus,
    LineKind,
    RunStatus,
    StatementStatus,
)
from royalty_kernel.models.licensing import Creator, IpAsset, IpOwnership, License
from royalty_kernel.models.royalty_line import RoyaltyLine
from royalty_kernel.models.royalty_run import RoyaltyRun
from royalty_kernel.models.royalty_statement import RoyaltyStatement
from royalty_kernel.models.run_rollback import RunRollbackRecord

__all__ = [
    # Licensing read model
    "Creator",
    "IpAsset",
    "IpOwnership",
    "License",
    "LicenseStatus",
    # Runs
    "RoyaltyRun",
    "RunStatus",
    "RUN_TRANSITIONS",
    "LOCKED_RUN_STATUSES",
    "PAYOUT_STARTED_STATUSES",
    "RunRollbackRecord",
    # Statements
    "RoyaltyStatement",
    "StatementStatus",
    "UNPAID_STATEMENT_STATUSES",
    # Lines
    "RoyaltyLine",
    "LineKind",
    "AdjustmentType",
    "ApprovalState",
    "APPROVAL_TRANSITIONS",
    "EFFECTIVE_APPROVAL_STATES",
]
