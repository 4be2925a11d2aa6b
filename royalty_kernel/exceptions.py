"""
Typed Exception Hierarchy for the Royalty Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Royalty payouts must fail precisely. A caller that parses message strings
("shares sum to 9998") breaks the first time the wording changes. Every
error raised by the kernel, the engines, and the services therefore:

  1. Has its own exception CLASS (catch by type, not message)
  2. Carries a CODE class attribute (machine-readable, API-safe)
  3. Stores its context as ATTRIBUTES (not only in the message)

Example - WRONG way to handle errors:
    try:
        calculation.calculate_run(run_id, actor_id)
    except Exception as e:
        if "sum to" in str(e):  # FRAGILE
            ...

Example - RIGHT way:
    try:
        calculation.calculate_run(run_id, actor_id)
    except CalculationError as e:
        if isinstance(e.cause, InvalidOwnershipSplitError):
            flag_asset(e.cause.asset_id, e.cause.total_bps)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from RoyaltyEngineError:

    RoyaltyEngineError (base)
    |
    +-- NotFoundError
    |   +-- RunNotFoundError
    |   +-- StatementNotFoundError
    |   +-- AdjustmentNotFoundError
    |
    +-- InvalidStateError
    |   +-- RunLockedError
    |   +-- AdjustmentAlreadyReversedError
    |   +-- StatementCarriedForwardError
    |   +-- RunCarriedForwardError
    |
    +-- PeriodError
    |   +-- InvalidPeriodError
    |   +-- OverlappingRunError
    |
    +-- SplitError
    |   +-- InvalidOwnershipSplitError
    |   +-- InvalidDerivativeChainError
    |
    +-- CalculationError
    |   +-- CalculationTimeoutError
    |
    +-- RunLifecycleError
    |   +-- UnresolvedDisputesError
    |   +-- AlreadyPaidError
    |
    +-- AccessError
    |   +-- UnauthorizedAccessError
    |   +-- InsufficientPermissionsError
    |
    +-- AdjustmentError
    |   +-- ApprovalRequiredError
    |   +-- InvalidAdjustmentError
    |
    +-- DisputeError
    |   +-- InvalidDisputeReasonError
    |
    +-- LedgerError
    |   +-- InvalidLineKindError
    |   +-- LedgerIntegrityError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                         | When Raised
-------------|------------------------------|--------------------------------------
Not found    | RUN_NOT_FOUND                | Run ID doesn't exist
             | STATEMENT_NOT_FOUND          | Statement ID doesn't exist
             | ADJUSTMENT_NOT_FOUND         | Adjustment line ID doesn't exist
-------------|------------------------------|--------------------------------------
State        | INVALID_STATE                | Wrong status for the transition
             | RUN_LOCKED                   | Write against a locked run
             | ADJUSTMENT_ALREADY_REVERSED  | Second reversal of an adjustment
             | STATEMENT_CARRIED_FORWARD    | Money moved on an absorbed statement
             | RUN_CARRIED_FORWARD          | Rollback of a run a later run absorbed
-------------|------------------------------|--------------------------------------
Period       | INVALID_PERIOD               | period_end <= period_start
             | OVERLAPPING_RUN              | Candidate period overlaps a run
-------------|------------------------------|--------------------------------------
Split        | INVALID_OWNERSHIP_SPLIT      | Shares don't sum to 10000 bps
             | INVALID_DERIVATIVE_CHAIN     | Chain levels/shares malformed
-------------|------------------------------|--------------------------------------
Calculation  | CALCULATION_FAILED           | Any failure inside calculate_run
             | CALCULATION_TIMEOUT          | Calculation exceeded its deadline
-------------|------------------------------|--------------------------------------
Lifecycle    | UNRESOLVED_DISPUTES          | Lock attempted with disputes open
             | ALREADY_PAID                 | Rollback after payout began
-------------|------------------------------|--------------------------------------
Access       | UNAUTHORIZED_ACCESS          | Creator touches another's statement
             | INSUFFICIENT_PERMISSIONS     | Requester approves own adjustment
-------------|------------------------------|--------------------------------------
Adjustment   | APPROVAL_REQUIRED            | Direct apply above the ceiling
             | INVALID_ADJUSTMENT           | Zero amount, bad type or sign
-------------|------------------------------|--------------------------------------
Dispute      | INVALID_DISPUTE_REASON       | Reason shorter than the minimum
-------------|------------------------------|--------------------------------------
Ledger       | INVALID_LINE_KIND            | Line columns contradict its kind
             | LEDGER_INTEGRITY             | Line sums disagree with totals
-------------|------------------------------|--------------------------------------
Immutability | IMMUTABILITY_VIOLATION       | Ledger line modified or deleted
"""


def _plain(value) -> str:
    """Render enum members by their value."""
    return str(getattr(value, "value", value))


class RoyaltyEngineError(Exception):
    """
    Base exception for all royalty engine errors.

    All subclasses must have a `code` class attribute for
    machine-readable error identification.
    """

    code: str = "ROYALTY_ENGINE_ERROR"


# Not-found exceptions


class NotFoundError(RoyaltyEngineError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"


class RunNotFoundError(NotFoundError):
    """Royalty run with given ID was not found."""

    code: str = "RUN_NOT_FOUND"

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Royalty run not found: {run_id}")


class StatementNotFoundError(NotFoundError):
    """Royalty statement with given ID was not found."""

    code: str = "STATEMENT_NOT_FOUND"

    def __init__(self, statement_id: str):
        self.statement_id = statement_id
        super().__init__(f"Royalty statement not found: {statement_id}")


class AdjustmentNotFoundError(NotFoundError):
    """Adjustment line with given ID was not found."""

    code: str = "ADJUSTMENT_NOT_FOUND"

    def __init__(self, adjustment_id: str):
        self.adjustment_id = adjustment_id
        super().__init__(f"Adjustment not found: {adjustment_id}")


# State machine exceptions


class InvalidStateError(RoyaltyEngineError):
    """
    Entity is not in a status that permits the requested transition.

    `expected` lists every status from which the transition is legal.
    """

    code: str = "INVALID_STATE"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_status: str,
        expected: tuple[str, ...] | list[str],
        action: str | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current_status = _plain(current_status)
        self.expected = tuple(_plain(s) for s in expected)
        self.action = action
        verb = f" cannot {action}:" if action else ""
        super().__init__(
            f"{entity_type} {entity_id}{verb} status is {self.current_status}, "
            f"expected one of {', '.join(self.expected)}"
        )


class RunLockedError(InvalidStateError):
    """
    The parent run is locked; adjustments and corrections are rejected.

    Locked covers LOCKED, PROCESSING and COMPLETED.
    """

    code: str = "RUN_LOCKED"

    def __init__(self, run_id: str, current_status: str, action: str | None = None):
        super().__init__(
            entity_type="RoyaltyRun",
            entity_id=run_id,
            current_status=current_status,
            expected=("DRAFT", "CALCULATED", "FAILED"),
            action=action,
        )
        self.run_id = run_id


class AdjustmentAlreadyReversedError(InvalidStateError):
    """An adjustment can only be reversed once."""

    code: str = "ADJUSTMENT_ALREADY_REVERSED"

    def __init__(self, adjustment_id: str):
        super().__init__(
            entity_type="Adjustment",
            entity_id=adjustment_id,
            current_status="REVERSED",
            expected=("APPROVED", "APPLIED"),
            action="reverse",
        )
        self.adjustment_id = adjustment_id


class StatementCarriedForwardError(InvalidStateError):
    """
    A later run has absorbed this statement's balance as carryover.

    Money can no longer move on it; corrections go on the absorbing
    statement, which carries the balance forward.
    """

    code: str = "STATEMENT_CARRIED_FORWARD"

    def __init__(
        self,
        statement_id: str,
        absorbing_statement_id: str,
        action: str | None = None,
    ):
        self.entity_type = "RoyaltyStatement"
        self.entity_id = statement_id
        self.current_status = "CARRIED_FORWARD"
        self.expected = ()
        self.action = action
        self.statement_id = statement_id
        self.absorbing_statement_id = absorbing_statement_id
        verb = f" cannot {action}:" if action else ""
        RoyaltyEngineError.__init__(
            self,
            f"Statement {statement_id}{verb} its balance was carried forward to "
            f"statement {absorbing_statement_id}; adjust that statement instead",
        )


class RunCarriedForwardError(InvalidStateError):
    """
    A later run has absorbed some of this run's statements as carryover.

    The absorbing runs must be rolled back first.
    """

    code: str = "RUN_CARRIED_FORWARD"

    def __init__(
        self,
        run_id: str,
        current_status: str,
        absorbing_run_ids: tuple[str, ...] | list[str],
    ):
        self.entity_type = "RoyaltyRun"
        self.entity_id = run_id
        self.current_status = _plain(current_status)
        self.expected = ()
        self.action = "roll back"
        self.run_id = run_id
        self.absorbing_run_ids = tuple(absorbing_run_ids)
        RoyaltyEngineError.__init__(
            self,
            f"Run {run_id} cannot be rolled back: its balances were carried "
            f"forward into run(s) {', '.join(self.absorbing_run_ids)}; "
            "roll those back first",
        )


# Period exceptions


class PeriodError(RoyaltyEngineError):
    """Base exception for period-related errors."""

    code: str = "PERIOD_ERROR"


class InvalidPeriodError(PeriodError):
    """Period end must fall strictly after period start."""

    code: str = "INVALID_PERIOD"

    def __init__(self, period_start, period_end, reason: str | None = None):
        self.period_start = str(period_start)
        self.period_end = str(period_end)
        self.reason = reason or "period end must be after period start"
        super().__init__(
            f"Invalid period {self.period_start} to {self.period_end}: {self.reason}"
        )


class OverlappingRunError(PeriodError):
    """A run already exists whose period overlaps the candidate period."""

    code: str = "OVERLAPPING_RUN"

    def __init__(
        self,
        existing_run_id: str,
        existing_start,
        existing_end,
        requested_start,
        requested_end,
    ):
        self.existing_run_id = existing_run_id
        self.existing_start = str(existing_start)
        self.existing_end = str(existing_end)
        self.requested_start = str(requested_start)
        self.requested_end = str(requested_end)
        super().__init__(
            f"Period {self.requested_start} to {self.requested_end} overlaps "
            f"run {existing_run_id} ({self.existing_start} to {self.existing_end})"
        )


# Split exceptions


class SplitError(RoyaltyEngineError):
    """Base exception for ownership and derivative split errors."""

    code: str = "SPLIT_ERROR"


class InvalidOwnershipSplitError(SplitError):
    """
    Ownership shares must sum to exactly 10000 basis points.

    This is a hard calculation failure, never a warning.
    """

    code: str = "INVALID_OWNERSHIP_SPLIT"

    def __init__(self, total_bps: int, asset_id: str | None = None):
        self.total_bps = total_bps
        self.asset_id = asset_id
        subject = f"for asset {asset_id} " if asset_id else ""
        super().__init__(
            f"ownership shares {subject}sum to {total_bps} bps, expected 10000"
        )


class InvalidDerivativeChainError(SplitError):
    """Derivative chain levels are not contiguous or a level mis-sums."""

    code: str = "INVALID_DERIVATIVE_CHAIN"

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("Invalid derivative chain: " + "; ".join(self.errors))


# Calculation exceptions


class CalculationError(RoyaltyEngineError):
    """
    Wraps any failure raised while calculating a run.

    The run has already been marked FAILED when this is raised; `cause`
    holds the original exception (also chained as __cause__).
    """

    code: str = "CALCULATION_FAILED"

    def __init__(self, run_id: str, reason: str, cause: Exception | None = None):
        self.run_id = run_id
        self.reason = reason
        self.cause = cause
        super().__init__(f"Calculation failed for run {run_id}: {reason}")


class CalculationTimeoutError(CalculationError):
    """The calculation exceeded its configured deadline."""

    code: str = "CALCULATION_TIMEOUT"

    def __init__(self, run_id: str, timeout_ms: int, elapsed_ms: float):
        self.timeout_ms = timeout_ms
        self.elapsed_ms = elapsed_ms
        super().__init__(
            run_id=run_id,
            reason=(
                f"calculation exceeded timeout of {timeout_ms} ms "
                f"(elapsed {elapsed_ms:.0f} ms)"
            ),
        )


# Run lifecycle exceptions


class RunLifecycleError(RoyaltyEngineError):
    """Base exception for lock/rollback gating."""

    code: str = "RUN_LIFECYCLE_ERROR"


class UnresolvedDisputesError(RunLifecycleError):
    """A run cannot be locked while any statement is DISPUTED."""

    code: str = "UNRESOLVED_DISPUTES"

    def __init__(self, run_id: str, disputed_count: int):
        self.run_id = run_id
        self.disputed_count = disputed_count
        super().__init__(
            f"Run {run_id} has {disputed_count} unresolved disputed statement(s); "
            "all disputes must be resolved before locking"
        )


class AlreadyPaidError(RunLifecycleError):
    """Rollback is only possible before payout processing begins."""

    code: str = "ALREADY_PAID"

    def __init__(self, run_id: str, current_status: str, paid_statements: int = 0):
        self.run_id = run_id
        self.current_status = _plain(current_status)
        self.paid_statements = paid_statements
        super().__init__(
            f"Run {run_id} cannot be rolled back: payout already processed "
            f"(status {self.current_status}, {paid_statements} paid statement(s))"
        )


# Access exceptions


class AccessError(RoyaltyEngineError):
    """Base exception for authorization failures."""

    code: str = "ACCESS_ERROR"


class UnauthorizedAccessError(AccessError):
    """A creator may only act on their own statements."""

    code: str = "UNAUTHORIZED_ACCESS"

    def __init__(self, statement_id: str, creator_id: str):
        self.statement_id = statement_id
        self.creator_id = creator_id
        super().__init__(
            f"Creator {creator_id} does not own statement {statement_id}"
        )


class InsufficientPermissionsError(AccessError):
    """The actor may not perform this step of the approval workflow."""

    code: str = "INSUFFICIENT_PERMISSIONS"

    def __init__(self, actor_id: str, action: str, reason: str):
        self.actor_id = actor_id
        self.action = action
        self.reason = reason
        super().__init__(f"Actor {actor_id} cannot {action}: {reason}")


# Adjustment exceptions


class AdjustmentError(RoyaltyEngineError):
    """Base exception for adjustment workflow errors."""

    code: str = "ADJUSTMENT_ERROR"


class ApprovalRequiredError(AdjustmentError):
    """Amount is at or above the approval ceiling; route through approval."""

    code: str = "APPROVAL_REQUIRED"

    def __init__(self, amount_cents: int, threshold_cents: int):
        self.amount_cents = amount_cents
        self.threshold_cents = threshold_cents
        super().__init__(
            f"Adjustment of {amount_cents} cents requires approval "
            f"(ceiling {threshold_cents} cents)"
        )


class InvalidAdjustmentError(AdjustmentError):
    """Adjustment request is malformed."""

    code: str = "INVALID_ADJUSTMENT"

    def __init__(self, reason: str, adjustment_type: str | None = None):
        self.reason = reason
        self.adjustment_type = adjustment_type
        super().__init__(f"Invalid adjustment: {reason}")


# Dispute exceptions


class DisputeError(RoyaltyEngineError):
    """Base exception for dispute workflow errors."""

    code: str = "DISPUTE_ERROR"


class InvalidDisputeReasonError(DisputeError):
    """Dispute reason is shorter than the configured minimum."""

    code: str = "INVALID_DISPUTE_REASON"

    def __init__(self, statement_id: str, length: int, min_length: int):
        self.statement_id = statement_id
        self.length = length
        self.min_length = min_length
        super().__init__(
            f"Dispute reason for statement {statement_id} must be at least "
            f"{min_length} characters (got {length})"
        )


# Immutability exceptions


class ImmutabilityError(RoyaltyEngineError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable ledger record.

    Royalty lines are append-only; corrections are new lines.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Ledger exceptions


class LedgerError(RoyaltyEngineError):
    """Base exception for ledger structure and integrity errors."""

    code: str = "LEDGER_ERROR"


class InvalidLineKindError(LedgerError):
    """A line's typed columns contradict its kind."""

    code: str = "INVALID_LINE_KIND"

    def __init__(self, kind: str, errors: list[str]):
        self.kind = _plain(kind)
        self.errors = list(errors)
        super().__init__(
            f"Invalid {self.kind} line: " + "; ".join(self.errors)
        )


class LedgerIntegrityError(LedgerError):
    """
    Statement or run totals disagree with the lines beneath them.

    Raised by lock verification; `errors` lists every mismatch found.
    """

    code: str = "LEDGER_INTEGRITY"

    def __init__(self, run_id: str, errors: list[str]):
        self.run_id = run_id
        self.errors = list(errors)
        super().__init__(
            f"Ledger integrity check failed for run {run_id}: "
            + "; ".join(self.errors)
        )
