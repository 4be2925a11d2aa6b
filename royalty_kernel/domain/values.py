"""
Value enums and state machines of the royalty domain.

Responsibility:
    Single definition of every closed vocabulary used by the royalty
    engine: run, statement and license statuses, ledger line kinds,
    adjustment types and approval states, and the rounding method.  The
    allowed-transition tables live beside the enums they govern.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Imported by models/, selectors/,
    services and engines alike so that no layer redefines a status string.

Invariants enforced:
    - RUN_TRANSITIONS and APPROVAL_TRANSITIONS are the only legal status
      moves; services and the immutability listener both consult them.
"""

from enum import Enum


class RoundingMethod(str, Enum):
    """How fractional cents are rounded (process-wide setting)."""

    BANKERS = "BANKERS"  # round half to even
    STANDARD = "STANDARD"  # round half away from zero


class RunStatus(str, Enum):
    """Lifecycle status of a royalty run.

    Contract: DRAFT -> CALCULATED -> LOCKED -> PROCESSING -> COMPLETED,
    FAILED from DRAFT/CALCULATED, and rollback back to DRAFT.
    """

    DRAFT = "DRAFT"
    CALCULATED = "CALCULATED"
    LOCKED = "LOCKED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


RUN_TRANSITIONS: dict[RunStatus, frozenset[RunStatus]] = {
    RunStatus.DRAFT: frozenset({RunStatus.CALCULATED, RunStatus.FAILED}),
    RunStatus.CALCULATED: frozenset(
        {RunStatus.LOCKED, RunStatus.FAILED, RunStatus.DRAFT}
    ),
    RunStatus.LOCKED: frozenset({RunStatus.PROCESSING, RunStatus.DRAFT}),
    RunStatus.PROCESSING: frozenset({RunStatus.COMPLETED}),
    RunStatus.COMPLETED: frozenset(),
    RunStatus.FAILED: frozenset({RunStatus.DRAFT}),
}

# Statuses in which adjustments and statement corrections are rejected.
LOCKED_RUN_STATUSES: frozenset[RunStatus] = frozenset(
    {RunStatus.LOCKED, RunStatus.PROCESSING, RunStatus.COMPLETED}
)

# Statuses in which payout processing has begun; rollback is forbidden.
PAYOUT_STARTED_STATUSES: frozenset[RunStatus] = frozenset(
    {RunStatus.PROCESSING, RunStatus.COMPLETED}
)


class StatementStatus(str, Enum):
    """Lifecycle status of a royalty statement.

    Contract: PENDING -> REVIEWED, PENDING|REVIEWED -> DISPUTED -> RESOLVED,
    and PENDING|REVIEWED|RESOLVED -> PAID when the run completes.
    """

    PENDING = "PENDING"
    REVIEWED = "REVIEWED"
    DISPUTED = "DISPUTED"
    RESOLVED = "RESOLVED"
    PAID = "PAID"


# Statement balances still owed to the creator and eligible for carryover.
UNPAID_STATEMENT_STATUSES: frozenset[StatementStatus] = frozenset(
    {StatementStatus.PENDING, StatementStatus.REVIEWED, StatementStatus.RESOLVED}
)

DISPUTABLE_STATEMENT_STATUSES: frozenset[StatementStatus] = frozenset(
    {StatementStatus.PENDING, StatementStatus.REVIEWED}
)

PAYABLE_STATEMENT_STATUSES: frozenset[StatementStatus] = frozenset(
    {StatementStatus.PENDING, StatementStatus.REVIEWED, StatementStatus.RESOLVED}
)


class LicenseStatus(str, Enum):
    DRAFT = "DRAFT"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    EXPIRED = "EXPIRED"
    TERMINATED = "TERMINATED"


class LineKind(str, Enum):
    """Closed set of ledger line kinds."""

    LICENSE = "LICENSE"
    CARRYOVER = "CARRYOVER"
    THRESHOLD_NOTE = "THRESHOLD_NOTE"
    MANUAL_ADJUSTMENT = "MANUAL_ADJUSTMENT"
    ADJUSTMENT_REVERSAL = "ADJUSTMENT_REVERSAL"
    DISPUTE_RESOLUTION = "DISPUTE_RESOLUTION"


class AdjustmentType(str, Enum):
    """Manual adjustment categories."""

    CREDIT = "CREDIT"
    DEBIT = "DEBIT"
    BONUS = "BONUS"
    CORRECTION = "CORRECTION"
    REFUND = "REFUND"


class ApprovalState(str, Enum):
    """Lifecycle of a manual adjustment line.

    Contract: PENDING_APPROVAL -> APPROVED | REJECTED, and
    APPROVED | APPLIED -> REVERSED.  APPLIED marks an adjustment below the
    approval ceiling that took effect on creation.
    """

    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    APPLIED = "APPLIED"
    REJECTED = "REJECTED"
    REVERSED = "REVERSED"


APPROVAL_TRANSITIONS: dict[ApprovalState, frozenset[ApprovalState]] = {
    ApprovalState.PENDING_APPROVAL: frozenset(
        {ApprovalState.APPROVED, ApprovalState.REJECTED}
    ),
    ApprovalState.APPROVED: frozenset({ApprovalState.REVERSED}),
    ApprovalState.APPLIED: frozenset({ApprovalState.REVERSED}),
    ApprovalState.REJECTED: frozenset(),
    ApprovalState.REVERSED: frozenset(),
}

# States whose amount is currently reflected in statement totals.
EFFECTIVE_APPROVAL_STATES: frozenset[ApprovalState] = frozenset(
    {ApprovalState.APPROVED, ApprovalState.APPLIED}
)
