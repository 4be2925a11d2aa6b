"""
royalty_services.statement_service -- Statement review and dispute workflow.

Responsibility:
    Creator-facing statement lifecycle: review, dispute, dispute
    resolution with an optional signed correction, ownership checks,
    "statement ready" notifications, and the overdue-dispute sweep.

Architecture position:
    Services -- owns its transactions through RoyaltyUnitOfWork.  Money
    moves only through LedgerWriter; email and PDF regeneration are
    delegated to the NotificationSender and StatementRenderer
    collaborators after the transaction commits.

Invariants enforced:
    - PENDING -> REVIEWED, PENDING | REVIEWED -> DISPUTED,
      DISPUTED -> RESOLVED.  Anything else is an InvalidStateError.
    - Only the owning creator may review or dispute a statement.
    - A dispute reason has at least dispute_reason_min_length characters
      after trimming.
    - Statements of locked runs cannot be disputed or corrected.

Failure modes:
    - StatementNotFoundError, UnauthorizedAccessError, InvalidStateError,
      InvalidDisputeReasonError, RunLockedError.
    - StatementCarriedForwardError for a correction on an absorbed statement.
    - Notification and renderer failures are logged as warnings and never
      undo the committed state change.

Audit relevance:
    royalty.statement.reviewed / disputed / dispute_resolved records go
    to the AuditLog collaborator; cached statement and run views are
    invalidated after every write.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from royalty_config.schema import CalculationConfig
from royalty_engines.financial import format_cents
from royalty_kernel.db.unit_of_work import RoyaltyUnitOfWork
from royalty_kernel.domain.clock import Clock, SystemClock
from royalty_kernel.domain.dtos import CreatorInfo, OverdueDispute, StatementInfo
from royalty_kernel.domain.line_kind import DisputeResolution
from royalty_kernel.domain.values import (
    DISPUTABLE_STATEMENT_STATUSES,
    StatementStatus,
)
from royalty_kernel.exceptions import (
    InvalidDisputeReasonError,
    InvalidStateError,
    RunLockedError,
    RunNotFoundError,
    StatementNotFoundError,
    UnauthorizedAccessError,
)
from royalty_kernel.logging_config import LogContext, get_logger
from royalty_kernel.models.royalty_run import RoyaltyRun
from royalty_kernel.models.royalty_statement import RoyaltyStatement
from royalty_kernel.selectors.licensing_selector import LicensingSelector
from royalty_kernel.selectors.statement_selector import StatementSelector
from royalty_kernel.services.ledger_writer import LedgerWriter
from royalty_services.collaborators import (
    AuditLog,
    AuditRecord,
    InMemoryViewCache,
    LoggingAuditLog,
    LoggingNotificationSender,
    LoggingStatementRenderer,
    Notification,
    NotificationSender,
    StatementRenderer,
    ViewCache,
    run_cache_key,
    statement_cache_key,
)

logger = get_logger("services.statement")

TEMPLATE_STATEMENT_READY = "royalty-statement-ready"
TEMPLATE_DISPUTE_ADMIN = "royalty-dispute-admin"
TEMPLATE_DISPUTE_CONFIRMATION = "royalty-dispute-confirmation"
TEMPLATE_DISPUTE_RESOLVED = "royalty-dispute-resolved"


@dataclass(frozen=True)
class _StatementContext:
    """What notifications need, captured before the session closes."""

    statement_id: UUID
    run_id: UUID
    period_start: date
    period_end: date
    total_earnings_cents: int
    creator: CreatorInfo | None


def _long_date(value: date) -> str:
    return f"{value:%B} {value.day}, {value.year}"


class RoyaltyStatementService:
    """
    Review, dispute and notification workflow for statements.

    Contract:
        Receives a RoyaltyUnitOfWork and CalculationConfig; clock, audit
        log, notifier, renderer and view cache are injectable and default
        to logging or in-memory implementations.

    Guarantees:
        - State changes are committed before any collaborator is called.
        - Dispute corrections keep statement and run totals equal to the
          sum of their lines.

    Non-goals:
        - Does NOT decide who may resolve disputes; the caller gates that.
    """

    def __init__(
        self,
        uow: RoyaltyUnitOfWork,
        config: CalculationConfig,
        clock: Clock | None = None,
        audit_log: AuditLog | None = None,
        notifier: NotificationSender | None = None,
        renderer: StatementRenderer | None = None,
        view_cache: ViewCache | None = None,
    ):
        self._uow = uow
        self._config = config
        self._clock = clock or SystemClock()
        self._audit = audit_log or LoggingAuditLog()
        self._notifier = notifier or LoggingNotificationSender()
        self._renderer = renderer or LoggingStatementRenderer()
        self._cache = view_cache or InMemoryViewCache()

    # ------------------------------------------------------------------
    # Review and dispute
    # ------------------------------------------------------------------

    def review_statement(self, statement_id: UUID, creator_id: UUID) -> StatementInfo:
        """Mark a PENDING statement REVIEWED on behalf of its owner."""
        now = self._clock.now()
        with self._uow.begin("review_statement") as txn:
            statement = self._lock_owned(txn.session, statement_id, creator_id)
            self._require_status(statement, (StatementStatus.PENDING,), "review")

            statement.status = StatementStatus.REVIEWED.value
            statement.reviewed_at = now
            statement.reviewed_by_id = creator_id
            statement.updated_by_id = creator_id
            txn.session.flush()

            self._record(
                "royalty.statement.reviewed",
                statement.id,
                creator_id,
                before={"status": StatementStatus.PENDING.value},
                after={"status": StatementStatus.REVIEWED.value},
            )
            info = StatementInfo.from_model(statement, include_lines=False)

        self._invalidate(info.id, info.run_id)
        logger.info(
            "statement_reviewed",
            extra={"statement_id": str(statement_id), "creator_id": str(creator_id)},
        )
        return info

    def dispute_statement(
        self, statement_id: UUID, reason: str, creator_id: UUID
    ) -> StatementInfo:
        """
        Dispute a PENDING or REVIEWED statement.

        Admins are notified and the creator receives a confirmation; a
        failed email is logged and does not undo the dispute.

        Raises:
            InvalidDisputeReasonError: reason shorter than the minimum.
            RunLockedError: the run is already locked.
        """
        reason = (reason or "").strip()
        min_length = self._config.dispute_reason_min_length
        if len(reason) < min_length:
            raise InvalidDisputeReasonError(str(statement_id), len(reason), min_length)

        now = self._clock.now()
        with LogContext.bind(
            statement_id=str(statement_id), actor_id=str(creator_id)
        ), self._uow.begin("dispute_statement") as txn:
            session = txn.session
            statement = self._lock_owned(session, statement_id, creator_id)
            self._require_status(
                statement, tuple(DISPUTABLE_STATEMENT_STATUSES), "dispute"
            )
            run = statement.run
            if run.is_locked:
                raise RunLockedError(str(run.id), run.status, action="dispute statement")

            previous = statement.status
            statement.status = StatementStatus.DISPUTED.value
            statement.disputed_at = now
            statement.disputed_by_id = creator_id
            statement.dispute_reason = reason
            statement.updated_by_id = creator_id
            session.flush()

            self._record(
                "royalty.statement.disputed",
                statement.id,
                creator_id,
                before={"status": previous},
                after={"status": StatementStatus.DISPUTED.value, "reason": reason},
            )
            context = self._context(session, statement)
            admins = LicensingSelector(session).admins()
            info = StatementInfo.from_model(statement, include_lines=False)

        self._invalidate(info.id, info.run_id)
        logger.info("statement_disputed", extra={"statement_id": str(statement_id)})

        creator = context.creator
        creator_name = creator.display_name if creator else "Creator"
        for admin in admins:
            if admin.email:
                self._send(
                    Notification(
                        recipient=admin.email,
                        template=TEMPLATE_DISPUTE_ADMIN,
                        subject="Royalty Statement Disputed",
                        variables={
                            "statement_id": str(statement_id),
                            "creator_name": creator_name,
                            "creator_email": creator.email if creator else None,
                            "reason": reason,
                        },
                    )
                )
        if not admins:
            logger.warning(
                "dispute_admin_unnotified", extra={"statement_id": str(statement_id)}
            )
        if creator and creator.email:
            self._send(
                Notification(
                    recipient=creator.email,
                    template=TEMPLATE_DISPUTE_CONFIRMATION,
                    subject="Dispute Submitted Successfully",
                    variables={
                        "creator_name": creator_name,
                        "statement_id": str(statement_id),
                    },
                )
            )
        return info

    def resolve_dispute(
        self,
        statement_id: UUID,
        resolution: str,
        actor_id: UUID,
        adjustment_cents: int | None = None,
    ) -> StatementInfo:
        """
        Resolve a DISPUTED statement, optionally with a signed correction.

        A non-zero ``adjustment_cents`` appends a DISPUTE_RESOLUTION line
        and moves the statement and run totals with it.  The statement PDF
        is regenerated and the creator notified afterwards.
        A correction on a statement a later run already absorbed raises
        StatementCarriedForwardError.
        """
        now = self._clock.now()
        with LogContext.bind(
            statement_id=str(statement_id), actor_id=str(actor_id)
        ), self._uow.begin("resolve_dispute") as txn:
            session = txn.session
            statement = self._lock(session, statement_id)
            self._require_status(statement, (StatementStatus.DISPUTED,), "resolve dispute")
            run = statement.run
            if adjustment_cents and run.is_locked:
                raise RunLockedError(str(run.id), run.status, action="correct statement")

            before_total = statement.total_earnings_cents
            if adjustment_cents:
                LedgerWriter(session).append_line(
                    statement,
                    DisputeResolution(),
                    adjustment_cents,
                    actor_id,
                    description="Dispute resolution adjustment",
                    reason=resolution,
                    details={
                        "resolution": resolution,
                        "applied_by": str(actor_id),
                        "applied_at": now.isoformat(),
                    },
                )

            statement.status = StatementStatus.RESOLVED.value
            statement.resolved_at = now
            statement.resolved_by_id = actor_id
            statement.resolution = resolution
            statement.updated_by_id = actor_id
            session.flush()

            self._record(
                "royalty.statement.dispute_resolved",
                statement.id,
                actor_id,
                before={
                    "status": StatementStatus.DISPUTED.value,
                    "total_earnings_cents": before_total,
                },
                after={
                    "status": StatementStatus.RESOLVED.value,
                    "resolution": resolution,
                    "adjustment_cents": adjustment_cents,
                    "total_earnings_cents": statement.total_earnings_cents,
                },
            )
            context = self._context(session, statement)
            info = StatementInfo.from_model(statement)

        self._invalidate(info.id, info.run_id)
        logger.info(
            "dispute_resolved",
            extra={
                "statement_id": str(statement_id),
                "adjustment_cents": adjustment_cents or 0,
            },
        )

        try:
            self._renderer.regenerate(statement_id)
        except Exception:
            logger.warning(
                "statement_regeneration_failed",
                extra={"statement_id": str(statement_id)},
                exc_info=True,
            )

        creator = context.creator
        if creator and creator.email:
            self._send(
                Notification(
                    recipient=creator.email,
                    template=TEMPLATE_DISPUTE_RESOLVED,
                    subject="Your Dispute Has Been Resolved",
                    variables={
                        "creator_name": creator.display_name,
                        "resolution": resolution,
                        "adjustment_amount": (
                            format_cents(adjustment_cents, include_symbol=False)
                            if adjustment_cents
                            else None
                        ),
                        "statement_id": str(statement_id),
                    },
                )
            )
        return info

    def verify_statement_ownership(self, statement_id: UUID, creator_id: UUID) -> None:
        """Raise UnauthorizedAccessError unless ``creator_id`` owns the statement."""
        with self._uow.begin("verify_statement_ownership") as txn:
            statement = txn.session.get(RoyaltyStatement, statement_id)
            owned = statement is not None and statement.creator_id == creator_id
            txn.rollback()
        if not owned:
            raise UnauthorizedAccessError(str(statement_id), str(creator_id))

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def notify_statement_ready(self, statement_id: UUID) -> bool:
        """
        Email the creator that a statement is available.

        Returns:
            True when a notification was handed to the sender.  Unknown
            statements, creators without an email address, and creators
            who opted out of statement emails return False.
        """
        with self._uow.begin("notify_statement_ready") as txn:
            statement = txn.session.get(RoyaltyStatement, statement_id)
            context = self._context(txn.session, statement) if statement else None
            txn.rollback()

        if context is None:
            logger.warning(
                "statement_notification_skipped",
                extra={"statement_id": str(statement_id), "skip_reason": "not_found"},
            )
            return False
        return self._notify_ready(context)

    def notify_run_statements(self, run_id: UUID) -> int:
        """Send "statement ready" to every creator in a run; returns the number sent."""
        with self._uow.begin("notify_run_statements") as txn:
            session = txn.session
            run = session.get(RoyaltyRun, run_id)
            if run is None:
                raise RunNotFoundError(str(run_id))
            contexts = [self._context(session, s) for s in run.statements]
            txn.rollback()

        sent = sum(1 for context in contexts if self._notify_ready(context))
        logger.info(
            "run_statements_notified",
            extra={"run_id": str(run_id), "statements": len(contexts), "sent": sent},
        )
        return sent

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find_overdue_disputes(self) -> list[OverdueDispute]:
        """Disputes open longer than dispute_resolution_timeout_days."""
        timeout_days = self._config.dispute_resolution_timeout_days
        with self._uow.begin("find_overdue_disputes") as txn:
            overdue = StatementSelector(txn.session).overdue_disputes(
                self._clock.now(), timeout_days
            )
            txn.rollback()
        if overdue:
            logger.warning(
                "overdue_disputes_found",
                extra={"count": len(overdue), "timeout_days": timeout_days},
            )
        return overdue

    def get_statement(
        self, statement_id: UUID, include_lines: bool = True
    ) -> StatementInfo:
        with self._uow.begin("get_statement") as txn:
            info = StatementSelector(txn.session).get_statement(
                statement_id, include_lines=include_lines
            )
            txn.rollback()
        if info is None:
            raise StatementNotFoundError(str(statement_id))
        return info

    def statements_for_creator(self, creator_id: UUID) -> list[StatementInfo]:
        with self._uow.begin("statements_for_creator") as txn:
            statements = StatementSelector(txn.session).statements_for_creator(creator_id)
            txn.rollback()
        return statements

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _lock(session: Session, statement_id: UUID) -> RoyaltyStatement:
        statement = session.get(RoyaltyStatement, statement_id, with_for_update=True)
        if statement is None:
            raise StatementNotFoundError(str(statement_id))
        return statement

    def _lock_owned(
        self, session: Session, statement_id: UUID, creator_id: UUID
    ) -> RoyaltyStatement:
        statement = self._lock(session, statement_id)
        if statement.creator_id != creator_id:
            raise UnauthorizedAccessError(str(statement_id), str(creator_id))
        return statement

    @staticmethod
    def _require_status(
        statement: RoyaltyStatement,
        allowed: tuple[StatementStatus, ...],
        action: str,
    ) -> None:
        if StatementStatus(statement.status) not in allowed:
            raise InvalidStateError(
                "RoyaltyStatement",
                str(statement.id),
                statement.status,
                sorted(s.value for s in allowed),
                action=action,
            )

    @staticmethod
    def _context(session: Session, statement: RoyaltyStatement) -> _StatementContext:
        run = statement.run
        return _StatementContext(
            statement_id=statement.id,
            run_id=run.id,
            period_start=run.period_start,
            period_end=run.period_end,
            total_earnings_cents=statement.total_earnings_cents,
            creator=LicensingSelector(session).get_creator(statement.creator_id),
        )

    def _notify_ready(self, context: _StatementContext) -> bool:
        creator = context.creator
        if creator is None or not creator.email:
            logger.info(
                "statement_notification_skipped",
                extra={"statement_id": str(context.statement_id), "skip_reason": "no_email"},
            )
            return False
        if not creator.statement_emails_enabled:
            logger.info(
                "statement_notification_skipped",
                extra={
                    "statement_id": str(context.statement_id),
                    "skip_reason": "preferences_disabled",
                },
            )
            return False
        return self._send(
            Notification(
                recipient=creator.email,
                template=TEMPLATE_STATEMENT_READY,
                subject="Your Royalty Statement is Ready",
                variables={
                    "creator_name": creator.display_name or "Creator",
                    "period_start": _long_date(context.period_start),
                    "period_end": _long_date(context.period_end),
                    "total_earnings": format_cents(
                        context.total_earnings_cents, include_symbol=False
                    ),
                    "statement_id": str(context.statement_id),
                },
            )
        )

    def _send(self, notification: Notification) -> bool:
        try:
            self._notifier.send(notification)
        except Exception:
            logger.warning(
                "notification_failed",
                extra={"template": notification.template},
                exc_info=True,
            )
            return False
        return True

    def _record(
        self,
        action: str,
        statement_id: UUID,
        actor_id: UUID,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
    ) -> None:
        self._audit.log(
            AuditRecord(
                action=action,
                entity_type="RoyaltyStatement",
                entity_id=statement_id,
                actor_id=actor_id,
                occurred_at=self._clock.now(),
                before=before or {},
                after=after or {},
            )
        )

    def _invalidate(self, statement_id: UUID, run_id: UUID) -> None:
        self._cache.invalidate(statement_cache_key(statement_id))
        self._cache.invalidate(run_cache_key(run_id))
