"""
Ledger immutability listeners.

These tests go around the services and poke the ORM directly, the way a
careless script or migration would, and check that the flush is refused.
"""

import pytest
from sqlalchemy import select

from royalty_kernel.domain.values import AdjustmentType, ApprovalState
from royalty_kernel.exceptions import ImmutabilityViolationError, InvalidLineKindError
from royalty_kernel.models.royalty_line import RoyaltyLine
from royalty_kernel.models.royalty_statement import RoyaltyStatement
from royalty_kernel.models.run_rollback import RunRollbackRecord
from tests.conftest import JAN_2025, TEST_ACTOR_ID


@pytest.fixture
def statement(two_owner_run, statements_of):
    run, alice, _ = two_owner_run
    return statements_of(run.id)[alice.id]


def _paid_run(calculation_service, run_id):
    for step in (
        calculation_service.lock_run,
        calculation_service.begin_processing,
        calculation_service.complete_run,
    ):
        step(run_id, TEST_ACTOR_ID)


class TestLineKindOnInsert:

    def _line(self, statement, **columns):
        return RoyaltyLine(
            statement_id=statement.id,
            sequence=99,
            revenue_cents=0,
            share_bps=0,
            calculated_royalty_cents=100,
            period_start=JAN_2025[0],
            period_end=JAN_2025[1],
            details={},
            created_by_id=TEST_ACTOR_ID,
            **columns,
        )

    def test_license_line_needs_license(self, statement, session_factory):
        with session_factory() as session:
            session.add(self._line(statement, kind="LICENSE"))
            with pytest.raises(InvalidLineKindError) as exc_info:
                session.flush()
        assert "license_id is required" in exc_info.value.errors

    def test_carryover_rejects_adjustment_columns(self, statement, session_factory):
        with session_factory() as session:
            session.add(
                self._line(
                    statement,
                    kind="CARRYOVER",
                    adjustment_type=AdjustmentType.CREDIT.value,
                )
            )
            with pytest.raises(InvalidLineKindError) as exc_info:
                session.flush()
        assert "adjustment_type must be empty" in exc_info.value.errors

    def test_unknown_kind(self, statement, session_factory):
        with session_factory() as session:
            session.add(self._line(statement, kind="BONUS_POOL"))
            with pytest.raises(InvalidLineKindError):
                session.flush()


class TestLineUpdates:

    def test_amount_frozen(self, statement, session_factory, captured_logs):
        with session_factory() as session:
            line = session.get(RoyaltyLine, statement.lines[0].id)
            line.calculated_royalty_cents += 1
            with pytest.raises(ImmutabilityViolationError):
                session.flush()

        blocked = [r for r in captured_logs() if r["message"] == "immutability_violation_blocked"]
        assert blocked[0]["field"] == "calculated_royalty_cents"

    def test_description_frozen(self, statement, session_factory):
        with session_factory() as session:
            line = session.get(RoyaltyLine, statement.lines[0].id)
            line.description = "Royalty for something else"
            with pytest.raises(ImmutabilityViolationError):
                session.flush()

    def test_illegal_approval_transition(self, statement, calculation_service, session_factory):
        applied = calculation_service.apply_adjustment(
            statement.id, 500, AdjustmentType.CREDIT, "Late usage report", TEST_ACTOR_ID
        )
        with session_factory() as session:
            line = session.get(RoyaltyLine, applied.id)
            line.approval_state = ApprovalState.PENDING_APPROVAL.value
            with pytest.raises(ImmutabilityViolationError) as exc_info:
                session.flush()
        assert "APPLIED to PENDING_APPROVAL" in exc_info.value.reason

    def test_audit_metadata_may_change(self, statement, session_factory):
        with session_factory() as session:
            line = session.get(RoyaltyLine, statement.lines[0].id)
            line.updated_by_id = TEST_ACTOR_ID
            session.commit()


class TestDeletes:

    def test_line_delete_allowed_before_payout(self, statement, session_factory):
        with session_factory() as session:
            session.delete(session.get(RoyaltyLine, statement.lines[0].id))
            session.flush()
            session.rollback()

    def test_line_delete_blocked_when_paid(self, two_owner_run, statement, calculation_service, session_factory):
        run, _, _ = two_owner_run
        _paid_run(calculation_service, run.id)

        with session_factory() as session:
            session.delete(session.get(RoyaltyLine, statement.lines[0].id))
            with pytest.raises(ImmutabilityViolationError):
                session.flush()

    def test_line_delete_blocked_during_processing(
        self, two_owner_run, statement, calculation_service, session_factory
    ):
        run, _, _ = two_owner_run
        calculation_service.lock_run(run.id, TEST_ACTOR_ID)
        calculation_service.begin_processing(run.id, TEST_ACTOR_ID)

        with session_factory() as session:
            session.delete(session.get(RoyaltyLine, statement.lines[0].id))
            with pytest.raises(ImmutabilityViolationError) as exc_info:
                session.flush()
        assert "PROCESSING" in exc_info.value.reason

    def test_paid_statement_delete_blocked(
        self, two_owner_run, statement, calculation_service, session_factory
    ):
        run, _, _ = two_owner_run
        _paid_run(calculation_service, run.id)

        with session_factory() as session:
            session.delete(session.get(RoyaltyStatement, statement.id))
            with pytest.raises(ImmutabilityViolationError):
                session.flush()


class TestRollbackRecords:

    @pytest.fixture
    def record_id(self, two_owner_run, calculation_service, session_factory):
        run, _, _ = two_owner_run
        calculation_service.rollback_run(run.id, TEST_ACTOR_ID, "wrong fees")
        with session_factory() as session:
            return session.scalar(
                select(RunRollbackRecord.id).where(RunRollbackRecord.run_id == run.id)
            )

    def test_update_blocked(self, record_id, session_factory):
        with session_factory() as session:
            record = session.get(RunRollbackRecord, record_id)
            record.reason = "a nicer reason"
            with pytest.raises(ImmutabilityViolationError):
                session.flush()

    def test_delete_blocked(self, record_id, session_factory):
        with session_factory() as session:
            session.delete(session.get(RunRollbackRecord, record_id))
            with pytest.raises(ImmutabilityViolationError):
                session.flush()
