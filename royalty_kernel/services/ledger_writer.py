"""
LedgerWriter -- the single writer of royalty ledger lines and totals.

Responsibility:
    Opens statements, appends ledger lines with monotonically increasing
    per-statement sequence numbers, applies pending adjustment approvals,
    and keeps statement and run totals equal to the sum of the lines
    beneath them.

Architecture position:
    Kernel > Services -- imperative shell.  Called by every royalty_services
    orchestrator that moves money on a statement (calculation, adjustment
    workflow, dispute resolution).  Flush-only; never commits.

Invariants enforced:
    - sum(line.calculated_royalty_cents) == statement.total_earnings_cents
      after every call, because amounts and totals change together here
      and nowhere else.
    - run.total_royalties_cents moves by the same delta as the statement.
    - No amount reaches a statement that was carried forward.
    - Line kinds are written from the tagged union, so typed columns are
      always consistent with the kind.

Failure modes:
    - InvalidLineKindError from the immutability listener if a caller
      builds an inconsistent line by hand (cannot happen through this API).
    - ImmutabilityViolationError if ``approve_pending`` is used outside the
      PENDING_APPROVAL -> APPROVED transition.
    - StatementCarriedForwardError when money would move on a statement
      whose balance a later run already absorbed as carryover.

Audit relevance:
    Each append is logged as ``ledger_line_appended`` with the statement,
    kind, sequence and amount, giving a write-ahead trail of every cent.
"""

from datetime import date, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from royalty_kernel.domain.line_kind import LineKindData, line_columns
from royalty_kernel.domain.values import ApprovalState, StatementStatus
from royalty_kernel.exceptions import StatementCarriedForwardError
from royalty_kernel.logging_config import get_logger
from royalty_kernel.models.royalty_line import RoyaltyLine
from royalty_kernel.models.royalty_run import RoyaltyRun
from royalty_kernel.models.royalty_statement import RoyaltyStatement
from royalty_kernel.services.base import BaseService

logger = get_logger("services.ledger_writer")


class LedgerWriter(BaseService[RoyaltyLine]):
    """
    Append-only writer for statements and their lines.

    Contract:
        Every amount that reaches a statement total goes through
        ``append_line`` or ``approve_pending``.

    Guarantees:
        - Sequence numbers start at 1 and increase by 1 per statement.
        - Totals are updated in the same flush as the line.
    """

    def __init__(self, session: Session):
        super().__init__(session)

    def open_statement(
        self,
        run: RoyaltyRun,
        creator_id: UUID,
        actor_id: UUID,
        status: StatementStatus = StatementStatus.PENDING,
        payout_held: bool = False,
    ) -> RoyaltyStatement:
        """Create an empty statement for ``creator_id`` under ``run``."""
        statement = RoyaltyStatement(
            run_id=run.id,
            creator_id=creator_id,
            total_earnings_cents=0,
            status=status.value,
            payout_held=payout_held,
            created_by_id=actor_id,
        )
        run.statements.append(statement)
        self.session.add(statement)
        self.session.flush()
        return statement

    def next_sequence(self, statement: RoyaltyStatement) -> int:
        current = self.session.scalar(
            select(func.max(RoyaltyLine.sequence)).where(
                RoyaltyLine.statement_id == statement.id
            )
        )
        return (current or 0) + 1

    def append_line(
        self,
        statement: RoyaltyStatement,
        line_kind: LineKindData,
        amount_cents: int,
        actor_id: UUID,
        *,
        revenue_cents: int = 0,
        share_bps: int = 0,
        period_start: date | None = None,
        period_end: date | None = None,
        description: str | None = None,
        details: dict[str, Any] | None = None,
        pending_amount_cents: int | None = None,
        reason: str | None = None,
        requested_by_id: UUID | None = None,
    ) -> RoyaltyLine:
        """
        Append one line and move statement and run totals by ``amount_cents``.

        Period bounds default to the run's period.
        """
        self._require_open(statement, "append line")
        run = statement.run
        columns = line_columns(line_kind)
        kind = columns.pop("kind")
        line = RoyaltyLine(
            statement_id=statement.id,
            sequence=self.next_sequence(statement),
            kind=kind.value,
            revenue_cents=revenue_cents,
            share_bps=share_bps,
            calculated_royalty_cents=amount_cents,
            period_start=period_start or run.period_start,
            period_end=period_end or run.period_end,
            description=description,
            details=dict(details or {}),
            pending_amount_cents=pending_amount_cents,
            reason=reason,
            requested_by_id=requested_by_id,
            created_by_id=actor_id,
            **{k: getattr(v, "value", v) for k, v in columns.items()},
        )
        statement.lines.append(line)
        self.session.add(line)
        self._move_totals(statement, amount_cents, actor_id)
        self.session.flush()

        logger.debug(
            "ledger_line_appended",
            extra={
                "statement_id": str(statement.id),
                "line_id": str(line.id),
                "kind": kind.value,
                "sequence": line.sequence,
                "amount_cents": amount_cents,
            },
        )
        return line

    def approve_pending(
        self,
        line: RoyaltyLine,
        actor_id: UUID,
        decided_at: datetime,
        note: str | None = None,
    ) -> RoyaltyLine:
        """Apply a PENDING_APPROVAL adjustment's pending amount and mark it APPROVED."""
        self._require_open(line.statement, "approve adjustment")
        amount = line.pending_amount_cents or 0
        line.approval_state = ApprovalState.APPROVED.value
        line.calculated_royalty_cents = amount
        line.decided_by_id = actor_id
        line.decided_at = decided_at
        line.decision_note = note
        line.updated_by_id = actor_id
        self._move_totals(line.statement, amount, actor_id)
        self.session.flush()
        return line

    def record_decision(
        self,
        line: RoyaltyLine,
        state: ApprovalState,
        actor_id: UUID,
        decided_at: datetime,
        note: str | None = None,
    ) -> RoyaltyLine:
        """Move an adjustment to a state with no financial effect of its own."""
        line.approval_state = state.value
        line.decided_by_id = actor_id
        line.decided_at = decided_at
        line.decision_note = note
        line.updated_by_id = actor_id
        self.session.flush()
        return line

    def mark_reversed(self, line: RoyaltyLine, actor_id: UUID) -> RoyaltyLine:
        """Flag an effective adjustment as REVERSED, keeping who approved it."""
        line.approval_state = ApprovalState.REVERSED.value
        line.updated_by_id = actor_id
        self.session.flush()
        return line

    @staticmethod
    def _require_open(statement: RoyaltyStatement, action: str) -> None:
        if statement.carried_forward_to_id is not None:
            logger.warning(
                "ledger_write_on_carried_statement",
                extra={
                    "statement_id": str(statement.id),
                    "carried_forward_to_id": str(statement.carried_forward_to_id),
                },
            )
            raise StatementCarriedForwardError(
                str(statement.id), str(statement.carried_forward_to_id), action=action
            )

    def _move_totals(
        self, statement: RoyaltyStatement, amount_cents: int, actor_id: UUID
    ) -> None:
        if amount_cents == 0:
            return
        statement.total_earnings_cents += amount_cents
        statement.updated_by_id = actor_id
        run = statement.run
        run.total_royalties_cents += amount_cents
        run.updated_by_id = actor_id
