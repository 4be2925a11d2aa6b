"""
Module: royalty_kernel.models.royalty_statement
Responsibility: ORM persistence for per-creator royalty statements and the
    statement review/dispute lifecycle.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/values.py only.

Invariants enforced:
    - One statement per (run, creator) (uq_statement_run_creator).
    - total_earnings_cents equals the sum of the statement's lines'
      calculated_royalty_cents.  Maintained by LedgerWriter, the only
      writer of statement totals.

Failure modes:
    - IntegrityError on a duplicate (run, creator) pair.

Audit relevance:
    Statements are what creators see and dispute.  Review, dispute and
    resolution timestamps and actors are retained on the row; the ledger
    lines beneath it hold the financial history.
"""

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from royalty_kernel.db.base import TrackedBase, UUID, UUIDString
from royalty_kernel.domain.values import StatementStatus

if TYPE_CHECKING:
    from royalty_kernel.models.royalty_line import RoyaltyLine
    from royalty_kernel.models.royalty_run import RoyaltyRun


class RoyaltyStatement(TrackedBase):
    """
    One creator's earnings summary within a run.

    Contract:
        Owned by its run (deleted with it on rollback) and logically by one
        creator.  Lines are appended through LedgerWriter, which keeps
        total_earnings_cents equal to the sum of the lines.

    Guarantees:
        - payout_held is True when the accumulated balance was below the
          minimum payout threshold at calculation time.
        - carried_forward_to_id, once set, names the later statement that
          absorbed this statement's unpaid balance as a CARRYOVER line.
    """

    __tablename__ = "royalty_statements"

    __table_args__ = (
        UniqueConstraint("run_id", "creator_id", name="uq_statement_run_creator"),
        Index("idx_statement_creator_status", "creator_id", "status"),
        Index("idx_statement_run", "run_id"),
    )

    run_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("royalty_runs.id"),
        nullable=False,
    )

    creator_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("creators.id"),
        nullable=False,
    )

    total_earnings_cents: Mapped[int] = mapped_column(default=0, nullable=False)

    status: Mapped[StatementStatus] = mapped_column(
        String(20),
        default=StatementStatus.PENDING,
        nullable=False,
    )

    payout_held: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    reviewed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    reviewed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    disputed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    disputed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    dispute_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    resolved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    resolution: Mapped[str | None] = mapped_column(Text, nullable=True)

    paid_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    carried_forward_to_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("royalty_statements.id"),
        nullable=True,
    )

    run: Mapped["RoyaltyRun"] = relationship(back_populates="statements")

    lines: Mapped[list["RoyaltyLine"]] = relationship(
        back_populates="statement",
        cascade="all, delete-orphan",
        order_by="RoyaltyLine.sequence",
    )

    def __repr__(self) -> str:
        return (
            f"<RoyaltyStatement creator={self.creator_id} "
            f"{self.total_earnings_cents}c {StatementStatus(self.status).value}>"
        )
