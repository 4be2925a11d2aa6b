"""
Statement and adjustment selector.

Read-only access to statements, their ledger lines and the adjustment
queue.

Key design decisions:
- Returns DTOs (frozen dataclasses), not ORM models.
- Carryover is the sum of a creator's unpaid (PENDING/REVIEWED/RESOLVED)
  statement totals from runs that ended before the new run starts and that
  no later statement has absorbed yet.
- Overdue disputes are filtered in Python so that timezone handling is the
  same on PostgreSQL and SQLite.
"""

from collections import defaultdict
from datetime import date, datetime, timezone
from typing import Iterable
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from royalty_kernel.domain.dtos import (
    AdjustmentInfo,
    CarryoverBalance,
    OverdueDispute,
    StatementInfo,
)
from royalty_kernel.domain.values import (
    UNPAID_STATEMENT_STATUSES,
    ApprovalState,
    LineKind,
    StatementStatus,
)
from royalty_kernel.models.royalty_line import RoyaltyLine
from royalty_kernel.models.royalty_run import RoyaltyRun
from royalty_kernel.models.royalty_statement import RoyaltyStatement
from royalty_kernel.selectors.base import BaseSelector


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class StatementSelector(BaseSelector[RoyaltyStatement]):
    """
    Selector for statement, line and adjustment queries.

    Uses the caller's Session; never flushes.
    """

    def __init__(self, session: Session):
        super().__init__(session)

    def get_statement(
        self, statement_id: UUID, include_lines: bool = True
    ) -> StatementInfo | None:
        statement = self.session.get(RoyaltyStatement, statement_id)
        if statement is None:
            return None
        return StatementInfo.from_model(statement, include_lines=include_lines)

    def statements_for_run(
        self, run_id: UUID, include_lines: bool = False
    ) -> list[StatementInfo]:
        query = (
            select(RoyaltyStatement)
            .where(RoyaltyStatement.run_id == run_id)
            .order_by(RoyaltyStatement.creator_id)
        )
        if include_lines:
            query = query.options(selectinload(RoyaltyStatement.lines))
        return [
            StatementInfo.from_model(s, include_lines=include_lines)
            for s in self.session.scalars(query).all()
        ]

    def statements_for_creator(self, creator_id: UUID) -> list[StatementInfo]:
        statements = self.session.scalars(
            select(RoyaltyStatement)
            .join(RoyaltyRun, RoyaltyRun.id == RoyaltyStatement.run_id)
            .where(RoyaltyStatement.creator_id == creator_id)
            .order_by(RoyaltyRun.period_start)
        ).all()
        return [StatementInfo.from_model(s, include_lines=False) for s in statements]

    def unpaid_carryover(
        self, creator_ids: Iterable[UUID], before: date
    ) -> dict[UUID, CarryoverBalance]:
        """
        Unpaid balances owed to each creator from runs ending before ``before``.

        Only creators with a positive balance appear in the result.
        """
        ids = list(creator_ids)
        if not ids:
            return {}
        rows = self.session.execute(
            select(
                RoyaltyStatement.creator_id,
                RoyaltyStatement.id,
                RoyaltyStatement.total_earnings_cents,
            )
            .join(RoyaltyRun, RoyaltyRun.id == RoyaltyStatement.run_id)
            .where(
                RoyaltyStatement.creator_id.in_(ids),
                RoyaltyStatement.status.in_(
                    [s.value for s in UNPAID_STATEMENT_STATUSES]
                ),
                RoyaltyStatement.carried_forward_to_id.is_(None),
                RoyaltyRun.period_end < before,
            )
            .order_by(RoyaltyRun.period_start, RoyaltyStatement.id)
        ).all()

        totals: dict[UUID, int] = defaultdict(int)
        sources: dict[UUID, list[UUID]] = defaultdict(list)
        for creator_id, statement_id, amount in rows:
            totals[creator_id] += amount
            sources[creator_id].append(statement_id)

        return {
            creator_id: CarryoverBalance(
                creator_id=creator_id,
                amount_cents=amount,
                statement_ids=tuple(sources[creator_id]),
            )
            for creator_id, amount in totals.items()
            if amount > 0
        }

    def disputed_count(self, run_id: UUID) -> int:
        return self.session.scalar(
            select(func.count(RoyaltyStatement.id)).where(
                RoyaltyStatement.run_id == run_id,
                RoyaltyStatement.status == StatementStatus.DISPUTED.value,
            )
        ) or 0

    def overdue_disputes(self, now: datetime, timeout_days: int) -> list[OverdueDispute]:
        """Disputes open longer than ``timeout_days`` as of ``now``."""
        now = as_utc(now)
        disputed = self.session.scalars(
            select(RoyaltyStatement)
            .where(RoyaltyStatement.status == StatementStatus.DISPUTED.value)
            .order_by(RoyaltyStatement.disputed_at)
        ).all()

        overdue = []
        for statement in disputed:
            if statement.disputed_at is None:
                continue
            days_open = (now - as_utc(statement.disputed_at)).days
            if days_open > timeout_days:
                overdue.append(
                    OverdueDispute(
                        statement_id=statement.id,
                        run_id=statement.run_id,
                        creator_id=statement.creator_id,
                        disputed_at=as_utc(statement.disputed_at),
                        days_open=days_open,
                    )
                )
        return overdue

    def statement_adjustments(self, statement_id: UUID) -> list[AdjustmentInfo]:
        lines = self.session.scalars(
            select(RoyaltyLine)
            .where(
                RoyaltyLine.statement_id == statement_id,
                RoyaltyLine.kind == LineKind.MANUAL_ADJUSTMENT.value,
            )
            .order_by(RoyaltyLine.sequence)
        ).all()
        return [AdjustmentInfo.from_model(line) for line in lines]

    def pending_adjustments(self, limit: int | None = None) -> list[AdjustmentInfo]:
        """Adjustments awaiting a decision, oldest first."""
        query = (
            select(RoyaltyLine)
            .where(
                RoyaltyLine.kind == LineKind.MANUAL_ADJUSTMENT.value,
                RoyaltyLine.approval_state == ApprovalState.PENDING_APPROVAL.value,
            )
            .order_by(RoyaltyLine.created_at, RoyaltyLine.statement_id, RoyaltyLine.sequence)
        )
        if limit is not None:
            query = query.limit(limit)
        return [AdjustmentInfo.from_model(line) for line in self.session.scalars(query)]
