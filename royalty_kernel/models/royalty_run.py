"""
Module: royalty_kernel.models.royalty_run
Responsibility: ORM persistence for royalty runs -- one calculation batch over
    a fixed accounting period -- and the run status state machine.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/values.py only.

Invariants enforced:
    - period_end > period_start (ck_royalty_run_period_order, plus service
      validation).
    - Status transitions follow RUN_TRANSITIONS; the orchestrator checks
      can_transition_to() before every status write.
    - Runs are never hard-deleted; rollback resets a run to DRAFT.

Failure modes:
    - IntegrityError on a CHECK violation if the service layer is bypassed.
    - InvalidStateError (raised by services) on an illegal transition.

Audit relevance:
    The run row carries the aggregate totals of its statements and a
    chronological notes trail (calculation summary, rounding warnings,
    failure diagnostics, rollback reasons).
"""

from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, Date, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from royalty_kernel.db.base import TrackedBase, UUID, UUIDString
from royalty_kernel.domain.values import (
    LOCKED_RUN_STATUSES,
    PAYOUT_STARTED_STATUSES,
    RUN_TRANSITIONS,
    RunStatus,
)

if TYPE_CHECKING:
    from royalty_kernel.models.royalty_statement import RoyaltyStatement


class RoyaltyRun(TrackedBase):
    """
    One royalty calculation batch for a fixed period.

    Contract:
        A run owns its statements (cascade delete on rollback).  No two
        runs may have overlapping periods; this is checked by the
        orchestrator at creation time using an inclusive test.

    Guarantees:
        - period_end > period_start (CHECK constraint).
        - total_royalties_cents equals the sum of its statements'
          total_earnings_cents after every service operation.

    Non-goals:
        - This model does NOT enforce non-overlap in the database; that is
          checked by RoyaltyCalculationService.create_run().
    """

    __tablename__ = "royalty_runs"

    __table_args__ = (
        CheckConstraint("period_end > period_start", name="ck_royalty_run_period_order"),
        Index("idx_royalty_run_period", "period_start", "period_end"),
        Index("idx_royalty_run_status", "status"),
    )

    period_start: Mapped[date] = mapped_column(Date, nullable=False)

    period_end: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[RunStatus] = mapped_column(
        String(20),
        default=RunStatus.DRAFT,
        nullable=False,
    )

    total_revenue_cents: Mapped[int] = mapped_column(default=0, nullable=False)

    total_royalties_cents: Mapped[int] = mapped_column(default=0, nullable=False)

    # Chronological free-text trail, one entry per line
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    locked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    locked_by_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    # When calculation finished
    processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # When payout processing was recorded as finished
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    statements: Mapped[list["RoyaltyStatement"]] = relationship(
        back_populates="run",
        cascade="all, delete-orphan",
        order_by="RoyaltyStatement.creator_id",
    )

    def __repr__(self) -> str:
        return (
            f"<RoyaltyRun {self.period_start}..{self.period_end}: "
            f"{RunStatus(self.status).value}>"
        )

    @property
    def is_locked(self) -> bool:
        """Locked, processing and completed runs reject adjustments."""
        return RunStatus(self.status) in LOCKED_RUN_STATUSES

    @property
    def payout_started(self) -> bool:
        return RunStatus(self.status) in PAYOUT_STARTED_STATUSES

    def can_transition_to(self, target: RunStatus) -> bool:
        return target in RUN_TRANSITIONS[RunStatus(self.status)]

    def append_note(self, note: str) -> None:
        """Append one line to the notes trail."""
        self.notes = f"{self.notes}\n{note}" if self.notes else note
