"""
Module: royalty_kernel.models.royalty_line
Responsibility: ORM persistence for append-only royalty ledger lines.  Every
    cent on a statement is explained by exactly one line.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/values.py only.

Invariants enforced:
    - Append-only: financial fields never change after insert (enforced by
      db/immutability.py).  Corrections are new lines: a reversal line
      carries the exact negated amount and points at the original through
      reversal_of_id.
    - Closed kinds: every line has exactly one LineKind and only the typed
      columns that kind allows (checked on insert by db/immutability.py
      against domain/line_kind.py).
    - sum(calculated_royalty_cents) over a statement's lines equals the
      statement's total_earnings_cents.

Failure modes:
    - ImmutabilityViolationError on UPDATE of a frozen field, on an illegal
      approval_state transition, or on DELETE once payout has started.

Audit relevance:
    The full history of a statement -- license royalties, carryover,
    threshold holds, manual adjustments and their approvals, reversals and
    dispute resolutions -- is reconstructable from its lines alone.
"""

from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import JSON, Date, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from royalty_kernel.db.base import TrackedBase, UUID, UUIDString
from royalty_kernel.domain.values import AdjustmentType, ApprovalState, LineKind

if TYPE_CHECKING:
    from royalty_kernel.models.royalty_statement import RoyaltyStatement


class RoyaltyLine(TrackedBase):
    """
    One immutable ledger entry under a statement.

    Contract:
        The typed columns present on a line are determined by its kind:
        LICENSE lines carry license_id/ip_asset_id, MANUAL_ADJUSTMENT lines
        carry adjustment_type/approval_state, ADJUSTMENT_REVERSAL lines
        carry reversal_of_id.  ``details`` holds display context only and
        is never read for financial decisions.

    Guarantees:
        - sequence is unique within a statement and gives stable ordering.
        - calculated_royalty_cents is frozen after insert, except that a
          PENDING_APPROVAL adjustment takes its pending amount when it is
          approved.
    """

    __tablename__ = "royalty_lines"

    __table_args__ = (
        Index("idx_royalty_line_statement", "statement_id", "sequence"),
        Index("idx_royalty_line_kind_state", "kind", "approval_state"),
        Index("idx_royalty_line_reversal_of", "reversal_of_id"),
    )

    statement_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("royalty_statements.id"),
        nullable=False,
    )

    # Position within the statement, starting at 1
    sequence: Mapped[int] = mapped_column(nullable=False)

    kind: Mapped[LineKind] = mapped_column(String(30), nullable=False)

    license_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    ip_asset_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    revenue_cents: Mapped[int] = mapped_column(default=0, nullable=False)

    share_bps: Mapped[int] = mapped_column(default=0, nullable=False)

    calculated_royalty_cents: Mapped[int] = mapped_column(default=0, nullable=False)

    period_start: Mapped[date] = mapped_column(Date, nullable=False)

    period_end: Mapped[date] = mapped_column(Date, nullable=False)

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # MANUAL_ADJUSTMENT only
    adjustment_type: Mapped[AdjustmentType | None] = mapped_column(
        String(20), nullable=True
    )

    approval_state: Mapped[ApprovalState | None] = mapped_column(
        String(20), nullable=True
    )

    # Requested amount held while PENDING_APPROVAL
    pending_amount_cents: Mapped[int | None] = mapped_column(nullable=True)

    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    requested_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    decided_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    decided_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    decision_note: Mapped[str | None] = mapped_column(Text, nullable=True)

    # ADJUSTMENT_REVERSAL only
    reversal_of_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("royalty_lines.id"),
        nullable=True,
    )

    details: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)

    statement: Mapped["RoyaltyStatement"] = relationship(back_populates="lines")

    reversal_of: Mapped["RoyaltyLine | None"] = relationship(
        remote_side="RoyaltyLine.id",
        foreign_keys=[reversal_of_id],
    )

    def __repr__(self) -> str:
        return (
            f"<RoyaltyLine #{self.sequence} {LineKind(self.kind).value} "
            f"{self.calculated_royalty_cents}c>"
        )

    @property
    def is_adjustment(self) -> bool:
        return LineKind(self.kind) == LineKind.MANUAL_ADJUSTMENT
