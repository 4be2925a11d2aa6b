"""
ORM-Level Ledger Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

Royalty statements are disputable. A creator who disputes a statement must
be able to see every cent that ever landed on it, including the ones that
were later corrected. That only works if ledger lines are append-only:
corrections are NEW lines (reversals, adjustments, dispute resolutions),
never edits of old ones.

The services never update line amounts. This module makes sure nothing
else does either, by intercepting flushes before SQL reaches the database.

===============================================================================
HOW IT WORKS
===============================================================================

SQLAlchemy fires mapper events before INSERT/UPDATE/DELETE statements are
emitted. We register listeners that check the ledger invariants:

    session.flush()
         |
         v
    [before_insert] --> _check_line_kind() ---------> InvalidLineKindError
         |
    [before_update] --> _check_line_immutability() -> ImmutabilityViolationError
         |
    [before_delete] --> _check_line_delete() -------> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

A failed check aborts the flush; the enclosing unit of work rolls back.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity            | Rule
------------------|------------------------------------------------------------
RoyaltyLine       | Typed columns must match the line kind on INSERT.
                  | Financial fields never change after INSERT.  The single
                  | exception: calculated_royalty_cents moves from 0 to
                  | pending_amount_cents in the same flush that moves
                  | approval_state PENDING_APPROVAL -> APPROVED.
                  | approval_state only follows APPROVAL_TRANSITIONS.
                  | No DELETE once the statement is PAID or the run has
                  | entered payout processing.
RoyaltyStatement  | No DELETE once PAID.
RunRollbackRecord | ALWAYS immutable (audit artifact).

===============================================================================
DESIGN DECISIONS
===============================================================================

1. updated_at/updated_by_id may change on any row.  They are audit metadata,
   not financial data.

2. Decision fields (decided_by_id, decided_at, decision_note) may be set on
   an adjustment line because approval and rejection record who decided.

3. Inline model imports avoid the models -> db -> models import cycle.

===============================================================================
USAGE
===============================================================================

    from royalty_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event, text
from sqlalchemy.orm.attributes import get_history

from royalty_kernel.domain.line_kind import TYPED_COLUMNS, validate_line_columns
from royalty_kernel.domain.values import (
    APPROVAL_TRANSITIONS,
    PAYOUT_STARTED_STATUSES,
    ApprovalState,
    StatementStatus,
)
from royalty_kernel.exceptions import ImmutabilityViolationError, InvalidLineKindError
from royalty_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

# Fields that may change on an existing line.
_LINE_MUTABLE_FIELDS = frozenset(
    {
        "updated_at",
        "updated_by_id",
        "approval_state",
        "decided_by_id",
        "decided_at",
        "decision_note",
        "calculated_royalty_cents",
        # relationships
        "statement",
        "reversal_of",
    }
)


def _blocked(entity_type: str, entity_id, operation: str, reason: str, **extra):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            "reason": reason,
            **extra,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _previous_column_value(connection, table: str, column: str, row_id):
    """Read the committed value of a column for rows whose history is unloaded."""
    return connection.execute(
        text(f"SELECT {column} FROM {table} WHERE id = :id"),
        {"id": str(row_id)},
    ).scalar()


def _check_line_kind(mapper, connection, target):
    """Typed columns on a new line must match its kind."""
    columns = {name: getattr(target, name) for name in TYPED_COLUMNS}
    errors = validate_line_columns(target.kind, columns)
    if errors:
        logger.error(
            "invalid_line_kind_blocked",
            extra={"kind": str(target.kind), "errors": errors},
        )
        raise InvalidLineKindError(target.kind, errors)


def _check_line_immutability(mapper, connection, target):
    """
    Block every change to an existing line except an approval decision.

    The approval decision may set approval_state along APPROVAL_TRANSITIONS
    and, for PENDING_APPROVAL -> APPROVED only, move
    calculated_royalty_cents from 0 to the pending amount.
    """
    from sqlalchemy import inspect

    insp = inspect(target)
    for attr in insp.attrs:
        if attr.key in _LINE_MUTABLE_FIELDS:
            continue
        if attr.history.has_changes():
            raise _blocked(
                "RoyaltyLine",
                target.id,
                "UPDATE",
                f"Cannot modify field '{attr.key}' on a ledger line",
                field=attr.key,
            )

    state_history = get_history(target, "approval_state")
    old_state = None
    new_state = None
    if state_history.added:
        new_state = state_history.added[0]
        if state_history.deleted:
            old_state = state_history.deleted[0]
        else:
            old_state = _previous_column_value(
                connection, "royalty_lines", "approval_state", target.id
            )
        if old_state is None or new_state is None:
            raise _blocked(
                "RoyaltyLine",
                target.id,
                "UPDATE",
                "approval_state can only change on a manual adjustment",
            )
        old_state = ApprovalState(old_state)
        new_state = ApprovalState(new_state)
        if old_state != new_state and new_state not in APPROVAL_TRANSITIONS[old_state]:
            raise _blocked(
                "RoyaltyLine",
                target.id,
                "UPDATE",
                f"approval_state cannot move from {old_state.value} "
                f"to {new_state.value}",
            )

    amount_history = get_history(target, "calculated_royalty_cents")
    if amount_history.added:
        if amount_history.deleted:
            old_amount = amount_history.deleted[0]
        else:
            old_amount = _previous_column_value(
                connection, "royalty_lines", "calculated_royalty_cents", target.id
            )
        new_amount = amount_history.added[0]
        if old_amount == new_amount:
            return
        is_approval = (
            old_state == ApprovalState.PENDING_APPROVAL
            and new_state == ApprovalState.APPROVED
        )
        if not (
            is_approval
            and old_amount == 0
            and new_amount == target.pending_amount_cents
        ):
            raise _blocked(
                "RoyaltyLine",
                target.id,
                "UPDATE",
                "calculated_royalty_cents is frozen; record corrections as new lines",
                field="calculated_royalty_cents",
            )


def _check_line_delete(mapper, connection, target):
    """Lines cannot be deleted once their statement is paid or payout began."""
    row = connection.execute(
        text(
            "SELECT s.status, r.status FROM royalty_statements s "
            "JOIN royalty_runs r ON r.id = s.run_id WHERE s.id = :id"
        ),
        {"id": str(target.statement_id)},
    ).first()
    if row is None:
        return
    statement_status, run_status = row
    if statement_status == StatementStatus.PAID.value:
        raise _blocked(
            "RoyaltyLine", target.id, "DELETE", "statement has been paid"
        )
    if run_status in {s.value for s in PAYOUT_STARTED_STATUSES}:
        raise _blocked(
            "RoyaltyLine",
            target.id,
            "DELETE",
            f"run payout processing has begun (status {run_status})",
        )


def _check_statement_delete(mapper, connection, target):
    status = _previous_column_value(
        connection, "royalty_statements", "status", target.id
    )
    if status == StatementStatus.PAID.value:
        raise _blocked(
            "RoyaltyStatement", target.id, "DELETE", "statement has been paid"
        )


def _check_rollback_record_immutability(mapper, connection, target):
    raise _blocked(
        "RunRollbackRecord", target.id, "UPDATE", "rollback records are immutable"
    )


def _check_rollback_record_delete(mapper, connection, target):
    raise _blocked(
        "RunRollbackRecord", target.id, "DELETE", "rollback records are immutable"
    )


def register_immutability_listeners():
    """
    Register all ledger immutability listeners.

    Call this after all models are imported but before any database
    operations begin.  Registration is idempotent.
    """
    from royalty_kernel.models.royalty_line import RoyaltyLine
    from royalty_kernel.models.royalty_statement import RoyaltyStatement
    from royalty_kernel.models.run_rollback import RunRollbackRecord

    listeners = (
        (RoyaltyLine, "before_insert", _check_line_kind),
        (RoyaltyLine, "before_update", _check_line_immutability),
        (RoyaltyLine, "before_delete", _check_line_delete),
        (RoyaltyStatement, "before_delete", _check_statement_delete),
        (RunRollbackRecord, "before_update", _check_rollback_record_immutability),
        (RunRollbackRecord, "before_delete", _check_rollback_record_delete),
    )
    for target, event_name, listener_fn in listeners:
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)

    logger.info("immutability_listeners_registered")


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove ledger immutability listeners.

    WARNING: Only use this in tests that intentionally violate the rules.
    """
    from royalty_kernel.models.royalty_line import RoyaltyLine
    from royalty_kernel.models.royalty_statement import RoyaltyStatement
    from royalty_kernel.models.run_rollback import RunRollbackRecord

    _safe_remove_listener(RoyaltyLine, "before_insert", _check_line_kind)
    _safe_remove_listener(RoyaltyLine, "before_update", _check_line_immutability)
    _safe_remove_listener(RoyaltyLine, "before_delete", _check_line_delete)
    _safe_remove_listener(RoyaltyStatement, "before_delete", _check_statement_delete)
    _safe_remove_listener(
        RunRollbackRecord, "before_update", _check_rollback_record_immutability
    )
    _safe_remove_listener(
        RunRollbackRecord, "before_delete", _check_rollback_record_delete
    )
