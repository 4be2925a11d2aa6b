"""
Module: royalty_kernel.models.run_rollback
Responsibility: Append-only audit snapshot written whenever a calculated,
    locked or failed run is rolled back to DRAFT.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Always immutable: rows are never updated or deleted (enforced by
      db/immutability.py).

Audit relevance:
    Rollback deletes the run's statements and lines.  This record keeps the
    prior status, totals and a per-statement snapshot so the discarded
    calculation remains reconstructable.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from royalty_kernel.db.base import TrackedBase, UUID, UUIDString


class RunRollbackRecord(TrackedBase):
    """Snapshot of a run's state immediately before rollback."""

    __tablename__ = "royalty_run_rollbacks"

    __table_args__ = (Index("idx_run_rollback_run", "run_id"),)

    run_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("royalty_runs.id"),
        nullable=False,
    )

    rolled_back_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    reason: Mapped[str] = mapped_column(Text, nullable=False)

    previous_status: Mapped[str] = mapped_column(String(20), nullable=False)

    previous_total_revenue_cents: Mapped[int] = mapped_column(nullable=False)

    previous_total_royalties_cents: Mapped[int] = mapped_column(nullable=False)

    statement_count: Mapped[int] = mapped_column(nullable=False)

    line_count: Mapped[int] = mapped_column(nullable=False)

    # [{statement_id, creator_id, status, total_earnings_cents, line_count}]
    snapshot: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    def __repr__(self) -> str:
        return f"<RunRollbackRecord run={self.run_id} from={self.previous_status}>"
