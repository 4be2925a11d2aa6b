"""
royalty_services.adjustment_service -- Manual adjustment workflow.

Responsibility:
    Credits, debits, bonuses, corrections and refunds on statements, with
    approval gating for large amounts, rejection, and reversal.  Every
    adjustment is a MANUAL_ADJUSTMENT ledger line; its lifecycle lives in
    the line's approval_state.

Architecture position:
    Services -- stateful orchestration over the kernel.  Owns transaction
    boundaries through RoyaltyUnitOfWork; all money moves through
    LedgerWriter.

Invariants enforced:
    - abs(amount) below adjustment_approval_threshold_cents applies at
      once (APPLIED); otherwise the line is PENDING_APPROVAL with no
      effect on totals until approved.
    - PENDING_APPROVAL -> APPROVED | REJECTED; APPROVED | APPLIED ->
      REVERSED.  An adjustment is reversed at most once, by a new line
      carrying the exact negated amount.
    - No adjustment is requested, approved or reversed on a locked run.
    - The requester never approves or rejects their own adjustment.
    - Writes lock the statement row (SELECT ... FOR UPDATE) so concurrent
      adjustments on one statement serialize and totals stay equal to
      the sum of lines.

Failure modes:
    - StatementNotFoundError, AdjustmentNotFoundError.
    - InvalidAdjustmentError for a bad type, sign or missing reason.
    - RunLockedError, InvalidStateError, AdjustmentAlreadyReversedError.
    - StatementCarriedForwardError once a later run absorbed the statement;
      the correction belongs on the absorbing statement.
    - InsufficientPermissionsError for self-approval.

Audit relevance:
    royalty.adjustment.requested / applied / approved / rejected /
    reversed records go to the AuditLog collaborator; cached statement and
    run views are invalidated after every write.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from royalty_config.schema import CalculationConfig
from royalty_kernel.db.unit_of_work import RoyaltyUnitOfWork
from royalty_kernel.domain.clock import Clock, SystemClock
from royalty_kernel.domain.dtos import (
    AdjustmentInfo,
    BatchAdjustmentFailure,
    BatchAdjustmentResult,
)
from royalty_kernel.domain.line_kind import AdjustmentReversal, ManualAdjustment
from royalty_kernel.domain.values import (
    EFFECTIVE_APPROVAL_STATES,
    AdjustmentType,
    ApprovalState,
)
from royalty_kernel.exceptions import (
    AdjustmentAlreadyReversedError,
    AdjustmentNotFoundError,
    InsufficientPermissionsError,
    InvalidAdjustmentError,
    InvalidStateError,
    RoyaltyEngineError,
    RunLockedError,
    StatementNotFoundError,
)
from royalty_kernel.logging_config import LogContext, get_logger
from royalty_kernel.models.royalty_line import RoyaltyLine
from royalty_kernel.models.royalty_statement import RoyaltyStatement
from royalty_kernel.selectors.statement_selector import StatementSelector
from royalty_kernel.services.ledger_writer import LedgerWriter
from royalty_services.collaborators import (
    AuditLog,
    AuditRecord,
    InMemoryViewCache,
    LoggingAuditLog,
    ViewCache,
    run_cache_key,
    statement_cache_key,
)

logger = get_logger("services.adjustment")

DEFAULT_PENDING_LIMIT = 50

_POSITIVE_TYPES = frozenset({AdjustmentType.CREDIT, AdjustmentType.BONUS})
_NEGATIVE_TYPES = frozenset({AdjustmentType.DEBIT})


def validate_adjustment_request(
    adjustment_type: AdjustmentType | str,
    amount_cents: int,
    reason: str | None,
) -> AdjustmentType:
    """
    Check type, sign and reason of an adjustment.

    CREDIT and BONUS must be positive, DEBIT negative, CORRECTION and
    REFUND any non-zero amount.

    Returns:
        The adjustment type as an enum member.

    Raises:
        InvalidAdjustmentError: describing the first problem found.
    """
    try:
        kind = AdjustmentType(adjustment_type)
    except ValueError:
        raise InvalidAdjustmentError(
            f"unknown adjustment type {adjustment_type!r}; expected one of "
            f"{', '.join(t.value for t in AdjustmentType)}",
            adjustment_type=str(adjustment_type),
        ) from None

    if amount_cents == 0:
        raise InvalidAdjustmentError("amount must be non-zero", kind.value)
    if kind in _POSITIVE_TYPES and amount_cents < 0:
        raise InvalidAdjustmentError(
            f"{kind.value} adjustments must be positive, got {amount_cents} cents",
            kind.value,
        )
    if kind in _NEGATIVE_TYPES and amount_cents > 0:
        raise InvalidAdjustmentError(
            f"{kind.value} adjustments must be negative, got {amount_cents} cents",
            kind.value,
        )
    if not reason or not reason.strip():
        raise InvalidAdjustmentError("a reason is required", kind.value)
    return kind


@dataclass(frozen=True)
class AdjustmentRequest:
    statement_id: UUID
    amount_cents: int
    adjustment_type: AdjustmentType | str
    reason: str
    requested_by_id: UUID
    metadata: dict[str, Any] = field(default_factory=dict)


class RoyaltyAdjustmentService:
    """
    Manual adjustment approval and reversal workflow.

    Contract:
        Receives a RoyaltyUnitOfWork, the CalculationConfig, and optional
        Clock, AuditLog and ViewCache through constructor injection.  Each
        public write is one short transaction.

    Guarantees:
        - A statement's total always equals the sum of its lines.
        - The original line's amount is never changed by a reversal.

    Non-goals:
        - Does NOT decide who may approve beyond the four-eyes rule;
          role checks belong to the caller.
    """

    def __init__(
        self,
        uow: RoyaltyUnitOfWork,
        config: CalculationConfig,
        clock: Clock | None = None,
        audit_log: AuditLog | None = None,
        view_cache: ViewCache | None = None,
    ):
        self._uow = uow
        self._config = config
        self._clock = clock or SystemClock()
        self._audit = audit_log or LoggingAuditLog()
        self._cache = view_cache or InMemoryViewCache()

    # ------------------------------------------------------------------
    # Request
    # ------------------------------------------------------------------

    def request_adjustment(self, request: AdjustmentRequest) -> AdjustmentInfo:
        """
        Record an adjustment, applying it at once when below the approval ceiling.

        Returns:
            The adjustment; ``approval_state`` is APPLIED or PENDING_APPROVAL.
        """
        kind = validate_adjustment_request(
            request.adjustment_type, request.amount_cents, request.reason
        )
        requires_approval = self._config.requires_approval(request.amount_cents)
        now = self._clock.now()

        with LogContext.bind(
            statement_id=str(request.statement_id),
            actor_id=str(request.requested_by_id),
        ), self._uow.begin("request_adjustment") as txn:
            session = txn.session
            statement = self._lock_statement(session, request.statement_id)
            run = statement.run
            if run.is_locked:
                raise RunLockedError(str(run.id), run.status, action="adjust statement")

            details = {
                "requested_at": now.isoformat(),
                "requires_approval": requires_approval,
                **({"request_metadata": dict(request.metadata)} if request.metadata else {}),
            }
            writer = LedgerWriter(session)
            if requires_approval:
                line = writer.append_line(
                    statement,
                    ManualAdjustment(kind, ApprovalState.PENDING_APPROVAL),
                    0,
                    request.requested_by_id,
                    description=f"{kind.value.title()} adjustment (pending approval)",
                    details=details,
                    pending_amount_cents=request.amount_cents,
                    reason=request.reason,
                    requested_by_id=request.requested_by_id,
                )
                action = "royalty.adjustment.requested"
            else:
                line = writer.append_line(
                    statement,
                    ManualAdjustment(kind, ApprovalState.APPLIED),
                    request.amount_cents,
                    request.requested_by_id,
                    description=f"{kind.value.title()} adjustment",
                    details={**details, "applied_at": now.isoformat()},
                    reason=request.reason,
                    requested_by_id=request.requested_by_id,
                )
                action = "royalty.adjustment.applied"

            self._record(
                action,
                line.id,
                request.requested_by_id,
                after={
                    "statement_id": str(statement.id),
                    "adjustment_type": kind.value,
                    "amount_cents": request.amount_cents,
                    "approval_state": line.approval_state,
                    "statement_total_cents": statement.total_earnings_cents,
                },
            )
            info = AdjustmentInfo.from_model(line)
            run_id = run.id

        self._invalidate(request.statement_id, run_id)
        logger.info(
            "adjustment_requested",
            extra={
                "adjustment_id": str(info.id),
                "statement_id": str(request.statement_id),
                "adjustment_type": kind.value,
                "amount_cents": request.amount_cents,
                "requires_approval": requires_approval,
            },
        )
        return info

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def approve_adjustment(
        self, adjustment_id: UUID, approver_id: UUID, note: str | None = None
    ) -> AdjustmentInfo:
        """Apply a PENDING_APPROVAL adjustment's amount and mark it APPROVED."""
        with self._uow.begin("approve_adjustment") as txn:
            session = txn.session
            line, statement = self._lock_adjustment(session, adjustment_id)
            self._require_pending(line, "approve")
            self._require_other_actor(line, approver_id, "approve adjustment")
            run = statement.run
            if run.is_locked:
                raise RunLockedError(str(run.id), run.status, action="approve adjustment")

            before_total = statement.total_earnings_cents
            LedgerWriter(session).approve_pending(
                line, approver_id, self._clock.now(), note
            )
            self._record(
                "royalty.adjustment.approved",
                line.id,
                approver_id,
                before={
                    "approval_state": ApprovalState.PENDING_APPROVAL.value,
                    "statement_total_cents": before_total,
                },
                after={
                    "approval_state": ApprovalState.APPROVED.value,
                    "amount_cents": line.calculated_royalty_cents,
                    "statement_total_cents": statement.total_earnings_cents,
                },
            )
            info = AdjustmentInfo.from_model(line)
            statement_id, run_id = statement.id, run.id

        self._invalidate(statement_id, run_id)
        logger.info(
            "adjustment_approved",
            extra={
                "adjustment_id": str(adjustment_id),
                "approver_id": str(approver_id),
                "amount_cents": info.applied_cents,
            },
        )
        return info

    def reject_adjustment(
        self, adjustment_id: UUID, rejecter_id: UUID, reason: str
    ) -> AdjustmentInfo:
        """Mark a PENDING_APPROVAL adjustment REJECTED.  Totals do not move."""
        with self._uow.begin("reject_adjustment") as txn:
            session = txn.session
            line, statement = self._lock_adjustment(session, adjustment_id)
            self._require_pending(line, "reject")
            self._require_other_actor(line, rejecter_id, "reject adjustment")

            LedgerWriter(session).record_decision(
                line, ApprovalState.REJECTED, rejecter_id, self._clock.now(), reason
            )
            self._record(
                "royalty.adjustment.rejected",
                line.id,
                rejecter_id,
                before={"approval_state": ApprovalState.PENDING_APPROVAL.value},
                after={"approval_state": ApprovalState.REJECTED.value, "reason": reason},
            )
            info = AdjustmentInfo.from_model(line)
            statement_id, run_id = statement.id, statement.run_id

        self._invalidate(statement_id, run_id)
        logger.info(
            "adjustment_rejected",
            extra={"adjustment_id": str(adjustment_id), "rejecter_id": str(rejecter_id)},
        )
        return info

    def reverse_adjustment(
        self, adjustment_id: UUID, actor_id: UUID, reason: str
    ) -> AdjustmentInfo:
        """
        Reverse an APPROVED or APPLIED adjustment with a negating line.

        Returns:
            The original adjustment, now REVERSED.  The reversal line's id
            is recorded in the audit record.

        Raises:
            AdjustmentAlreadyReversedError: reversed before.
            InvalidStateError: the adjustment never took effect.
            RunLockedError: the run is locked.
        """
        with self._uow.begin("reverse_adjustment") as txn:
            session = txn.session
            line, statement = self._lock_adjustment(session, adjustment_id)
            state = ApprovalState(line.approval_state)
            if state == ApprovalState.REVERSED:
                raise AdjustmentAlreadyReversedError(str(adjustment_id))
            if state not in EFFECTIVE_APPROVAL_STATES:
                raise InvalidStateError(
                    "Adjustment",
                    str(adjustment_id),
                    state,
                    tuple(sorted(s.value for s in EFFECTIVE_APPROVAL_STATES)),
                    action="reverse",
                )
            run = statement.run
            if run.is_locked:
                raise RunLockedError(str(run.id), run.status, action="reverse adjustment")

            writer = LedgerWriter(session)
            amount = -line.calculated_royalty_cents
            reversal = writer.append_line(
                statement,
                AdjustmentReversal(line.id),
                amount,
                actor_id,
                description=f"Reversal of adjustment #{line.sequence}",
                reason=reason,
                details={
                    "reversed_at": self._clock.now().isoformat(),
                    "original_adjustment_type": line.adjustment_type,
                    "original_amount_cents": line.calculated_royalty_cents,
                },
            )
            writer.mark_reversed(line, actor_id)
            self._record(
                "royalty.adjustment.reversed",
                line.id,
                actor_id,
                before={"approval_state": state.value},
                after={
                    "approval_state": ApprovalState.REVERSED.value,
                    "reversal_line_id": str(reversal.id),
                    "amount_cents": amount,
                    "reason": reason,
                },
            )
            info = AdjustmentInfo.from_model(line)
            statement_id, run_id = statement.id, run.id

        self._invalidate(statement_id, run_id)
        logger.info(
            "adjustment_reversed",
            extra={"adjustment_id": str(adjustment_id), "amount_cents": amount},
        )
        return info

    # ------------------------------------------------------------------
    # Batch and reads
    # ------------------------------------------------------------------

    def batch_apply_adjustments(
        self, requests: Sequence[AdjustmentRequest]
    ) -> BatchAdjustmentResult:
        """
        Request each adjustment in its own transaction.

        A failing request is reported in ``failed`` and does not stop the
        rest of the batch.
        """
        succeeded: list[AdjustmentInfo] = []
        failed: list[BatchAdjustmentFailure] = []
        for index, request in enumerate(requests):
            try:
                succeeded.append(self.request_adjustment(request))
            except RoyaltyEngineError as exc:
                failed.append(
                    BatchAdjustmentFailure(
                        index=index,
                        statement_id=request.statement_id,
                        error_code=exc.code,
                        message=str(exc),
                    )
                )
        logger.info(
            "adjustment_batch_processed",
            extra={"succeeded": len(succeeded), "failed": len(failed)},
        )
        return BatchAdjustmentResult(tuple(succeeded), tuple(failed))

    def get_statement_adjustments(self, statement_id: UUID) -> list[AdjustmentInfo]:
        with self._uow.begin("get_statement_adjustments") as txn:
            if txn.session.get(RoyaltyStatement, statement_id) is None:
                raise StatementNotFoundError(str(statement_id))
            adjustments = StatementSelector(txn.session).statement_adjustments(statement_id)
            txn.rollback()
        return adjustments

    def get_pending_adjustments(
        self, limit: int = DEFAULT_PENDING_LIMIT
    ) -> list[AdjustmentInfo]:
        """Adjustments awaiting a decision, oldest first."""
        with self._uow.begin("get_pending_adjustments") as txn:
            pending = StatementSelector(txn.session).pending_adjustments(limit)
            txn.rollback()
        return pending

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _lock_statement(session: Session, statement_id: UUID) -> RoyaltyStatement:
        statement = session.get(RoyaltyStatement, statement_id, with_for_update=True)
        if statement is None:
            raise StatementNotFoundError(str(statement_id))
        return statement

    def _lock_adjustment(
        self, session: Session, adjustment_id: UUID
    ) -> tuple[RoyaltyLine, RoyaltyStatement]:
        line = session.get(RoyaltyLine, adjustment_id)
        if line is None or not line.is_adjustment:
            raise AdjustmentNotFoundError(str(adjustment_id))
        statement = self._lock_statement(session, line.statement_id)
        session.refresh(line)
        return line, statement

    @staticmethod
    def _require_pending(line: RoyaltyLine, action: str) -> None:
        if ApprovalState(line.approval_state) != ApprovalState.PENDING_APPROVAL:
            raise InvalidStateError(
                "Adjustment",
                str(line.id),
                line.approval_state,
                (ApprovalState.PENDING_APPROVAL,),
                action=action,
            )

    @staticmethod
    def _require_other_actor(line: RoyaltyLine, actor_id: UUID, action: str) -> None:
        if line.requested_by_id is not None and line.requested_by_id == actor_id:
            raise InsufficientPermissionsError(
                str(actor_id), action, "the requester cannot decide their own adjustment"
            )

    def _record(
        self,
        action: str,
        adjustment_id: UUID,
        actor_id: UUID,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
    ) -> None:
        self._audit.log(
            AuditRecord(
                action=action,
                entity_type="RoyaltyAdjustment",
                entity_id=adjustment_id,
                actor_id=actor_id,
                occurred_at=self._clock.now(),
                before=before or {},
                after=after or {},
            )
        )

    def _invalidate(self, statement_id: UUID, run_id: UUID) -> None:
        self._cache.invalidate(statement_cache_key(statement_id))
        self._cache.invalidate(run_cache_key(run_id))
