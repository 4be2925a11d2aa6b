"""Royalty run selector: run lookups, period listings and rollback history."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from royalty_kernel.domain.dtos import RollbackInfo, RunInfo
from royalty_kernel.domain.values import RunStatus
from royalty_kernel.models.royalty_run import RoyaltyRun
from royalty_kernel.models.run_rollback import RunRollbackRecord
from royalty_kernel.selectors.base import BaseSelector


class RunSelector(BaseSelector[RoyaltyRun]):
    def __init__(self, session: Session):
        super().__init__(session)

    def get_run(self, run_id: UUID) -> RunInfo | None:
        run = self.session.get(RoyaltyRun, run_id)
        return RunInfo.from_model(run) if run else None

    def list_runs(self, status: RunStatus | None = None) -> list[RunInfo]:
        """All runs ordered by period start, optionally filtered by status."""
        query = select(RoyaltyRun).order_by(RoyaltyRun.period_start)
        if status is not None:
            query = query.where(RoyaltyRun.status == RunStatus(status).value)
        return [RunInfo.from_model(run) for run in self.session.scalars(query)]

    def rollback_history(self, run_id: UUID) -> list[RollbackInfo]:
        records = self.session.scalars(
            select(RunRollbackRecord)
            .where(RunRollbackRecord.run_id == run_id)
            .order_by(RunRollbackRecord.rolled_back_at)
        ).all()
        return [RollbackInfo.from_model(r) for r in records]
