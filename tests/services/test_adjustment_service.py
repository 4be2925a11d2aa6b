"""
Tests for RoyaltyAdjustmentService.

The approval ceiling in the test config is $100 (10,000 cents): smaller
adjustments are applied immediately, larger ones wait for a second
person.
"""

from uuid import uuid4

import pytest

from royalty_kernel.domain.values import AdjustmentType, ApprovalState, LineKind
from royalty_kernel.exceptions import (
    AdjustmentAlreadyReversedError,
    AdjustmentNotFoundError,
    InsufficientPermissionsError,
    InvalidAdjustmentError,
    InvalidStateError,
    RunLockedError,
    StatementCarriedForwardError,
    StatementNotFoundError,
)
from royalty_services.adjustment_service import AdjustmentRequest, validate_adjustment_request
from royalty_services.collaborators import run_cache_key, statement_cache_key
from tests.conftest import APPROVER_ID, TEST_ACTOR_ID, carryover_cents


@pytest.fixture
def statement(two_owner_run, statements_of):
    run, alice, _ = two_owner_run
    return statements_of(run.id)[alice.id]


@pytest.fixture
def request_for(statement):
    def _request(amount_cents, adjustment_type=AdjustmentType.CREDIT, reason="Late usage report", **kw):
        return AdjustmentRequest(
            statement_id=kw.pop("statement_id", statement.id),
            amount_cents=amount_cents,
            adjustment_type=adjustment_type,
            reason=reason,
            requested_by_id=kw.pop("requested_by_id", TEST_ACTOR_ID),
            **kw,
        )

    return _request


class TestValidateAdjustmentRequest:

    @pytest.mark.parametrize(
        "adjustment_type, amount",
        [
            ("CREDIT", 100),
            ("BONUS", 100),
            ("DEBIT", -100),
            ("CORRECTION", 100),
            ("CORRECTION", -100),
            ("REFUND", -100),
        ],
    )
    def test_accepted(self, adjustment_type, amount):
        assert validate_adjustment_request(adjustment_type, amount, "reason") == AdjustmentType(
            adjustment_type
        )

    @pytest.mark.parametrize(
        "adjustment_type, amount, reason, fragment",
        [
            ("CREDIT", -100, "reason", "must be positive"),
            ("BONUS", -1, "reason", "must be positive"),
            ("DEBIT", 100, "reason", "must be negative"),
            ("CREDIT", 0, "reason", "non-zero"),
            ("CREDIT", 100, "   ", "reason is required"),
            ("CREDIT", 100, None, "reason is required"),
            ("GIFT", 100, "reason", "unknown adjustment type"),
        ],
    )
    def test_rejected(self, adjustment_type, amount, reason, fragment):
        with pytest.raises(InvalidAdjustmentError) as exc_info:
            validate_adjustment_request(adjustment_type, amount, reason)
        assert fragment in str(exc_info.value)
        assert exc_info.value.code == "INVALID_ADJUSTMENT"


class TestRequestAdjustment:

    def test_below_ceiling_applied(
        self, adjustment_service, request_for, statement, statements_of, audit_log, view_cache
    ):
        adjustment = adjustment_service.request_adjustment(request_for(9_999))

        assert adjustment.approval_state == ApprovalState.APPLIED
        assert adjustment.amount_cents == 9_999
        assert adjustment.applied_cents == 9_999
        assert statements_of(statement.run_id)[statement.creator_id].total_earnings_cents == 69_999
        assert audit_log.actions[-1] == "royalty.adjustment.applied"
        assert statement_cache_key(statement.id) in view_cache.invalidated
        assert run_cache_key(statement.run_id) in view_cache.invalidated

    def test_at_ceiling_waits_for_approval(self, adjustment_service, request_for, statement, statements_of):
        adjustment = adjustment_service.request_adjustment(request_for(10_000))

        assert adjustment.approval_state == ApprovalState.PENDING_APPROVAL
        assert adjustment.amount_cents == 10_000
        assert adjustment.applied_cents == 0
        current = statements_of(statement.run_id)[statement.creator_id]
        assert current.total_earnings_cents == 60_000
        assert current.lines[-1].kind == LineKind.MANUAL_ADJUSTMENT

    def test_large_debit_waits_for_approval(self, adjustment_service, request_for):
        adjustment = adjustment_service.request_adjustment(
            request_for(-25_000, AdjustmentType.DEBIT, "Duplicate usage report")
        )
        assert adjustment.approval_state == ApprovalState.PENDING_APPROVAL

    def test_metadata_recorded(self, adjustment_service, request_for, statement_service):
        adjustment = adjustment_service.request_adjustment(
            request_for(500, metadata={"ticket": "SUP-1042"})
        )
        line = statement_service.get_statement(adjustment.statement_id).lines[-1]
        assert line.details["request_metadata"] == {"ticket": "SUP-1042"}

    def test_invalid_request(self, adjustment_service, request_for):
        with pytest.raises(InvalidAdjustmentError):
            adjustment_service.request_adjustment(request_for(-500))

    def test_unknown_statement(self, adjustment_service, request_for):
        with pytest.raises(StatementNotFoundError):
            adjustment_service.request_adjustment(request_for(500, statement_id=uuid4()))

    def test_locked_run(self, two_owner_run, adjustment_service, calculation_service, request_for):
        run, _, _ = two_owner_run
        calculation_service.lock_run(run.id, TEST_ACTOR_ID)
        with pytest.raises(RunLockedError):
            adjustment_service.request_adjustment(request_for(500))


class TestApprovalDecisions:

    @pytest.fixture
    def pending(self, adjustment_service, request_for):
        return adjustment_service.request_adjustment(
            request_for(15_000, AdjustmentType.BONUS, "Anniversary bonus")
        )

    def test_approve(
        self, pending, statement, adjustment_service, calculation_service, statements_of,
        deterministic_clock,
    ):
        approved = adjustment_service.approve_adjustment(pending.id, APPROVER_ID, "ok by finance")

        assert approved.approval_state == ApprovalState.APPROVED
        assert approved.applied_cents == 15_000
        assert approved.decided_by_id == APPROVER_ID
        assert approved.decided_at == deterministic_clock.now()
        assert approved.decision_note == "ok by finance"
        current = statements_of(statement.run_id)[statement.creator_id]
        assert current.total_earnings_cents == 75_000
        assert calculation_service.get_run(statement.run_id).total_royalties_cents == 115_000
        assert calculation_service.verify_run(statement.run_id).is_valid

    def test_requester_cannot_approve(self, pending, adjustment_service):
        with pytest.raises(InsufficientPermissionsError):
            adjustment_service.approve_adjustment(pending.id, TEST_ACTOR_ID)

    def test_approve_twice(self, pending, adjustment_service):
        adjustment_service.approve_adjustment(pending.id, APPROVER_ID)
        with pytest.raises(InvalidStateError):
            adjustment_service.approve_adjustment(pending.id, APPROVER_ID)

    def test_reject(self, pending, adjustment_service, calculation_service, audit_log):
        rejected = adjustment_service.reject_adjustment(pending.id, APPROVER_ID, "outside this quarter's allowance")

        assert rejected.approval_state == ApprovalState.REJECTED
        assert rejected.applied_cents == 0
        assert rejected.decision_note == "outside this quarter's allowance"
        assert calculation_service.list_runs()[0].total_royalties_cents == 100_000
        assert audit_log.last("royalty.adjustment.rejected").after["reason"] == "outside this quarter's allowance"

    def test_requester_cannot_reject(self, pending, adjustment_service):
        with pytest.raises(InsufficientPermissionsError):
            adjustment_service.reject_adjustment(pending.id, TEST_ACTOR_ID, "changed my mind")

    def test_reject_on_locked_run(self, two_owner_run, pending, adjustment_service, calculation_service):
        run, _, _ = two_owner_run
        calculation_service.lock_run(run.id, TEST_ACTOR_ID)

        rejected = adjustment_service.reject_adjustment(pending.id, APPROVER_ID, "run closed")

        assert rejected.approval_state == ApprovalState.REJECTED

    def test_approve_on_locked_run(self, two_owner_run, pending, adjustment_service, calculation_service):
        run, _, _ = two_owner_run
        calculation_service.lock_run(run.id, TEST_ACTOR_ID)
        with pytest.raises(RunLockedError):
            adjustment_service.approve_adjustment(pending.id, APPROVER_ID)

    def test_unknown_adjustment(self, adjustment_service):
        with pytest.raises(AdjustmentNotFoundError):
            adjustment_service.approve_adjustment(uuid4(), APPROVER_ID)

    def test_license_line_is_not_an_adjustment(self, statement, adjustment_service):
        with pytest.raises(AdjustmentNotFoundError):
            adjustment_service.approve_adjustment(statement.lines[0].id, APPROVER_ID)


class TestReversal:

    def test_reverse_applied(self, adjustment_service, request_for, statement_service, calculation_service):
        applied = adjustment_service.request_adjustment(request_for(750))

        reversed_ = adjustment_service.reverse_adjustment(applied.id, APPROVER_ID, "entered twice")

        assert reversed_.approval_state == ApprovalState.REVERSED
        assert reversed_.applied_cents == 750
        info = statement_service.get_statement(applied.statement_id)
        reversal = info.lines[-1]
        assert reversal.kind == LineKind.ADJUSTMENT_REVERSAL
        assert reversal.calculated_royalty_cents == -750
        assert info.total_earnings_cents == 60_000
        assert info.lines_total_cents == 60_000
        assert calculation_service.verify_run(info.run_id).is_valid

    def test_reverse_approved_keeps_decision(self, adjustment_service, request_for, audit_log):
        pending = adjustment_service.request_adjustment(request_for(20_000))
        adjustment_service.approve_adjustment(pending.id, APPROVER_ID, "approved")

        reversed_ = adjustment_service.reverse_adjustment(pending.id, TEST_ACTOR_ID, "customer refunded")

        assert reversed_.approval_state == ApprovalState.REVERSED
        assert reversed_.decided_by_id == APPROVER_ID
        assert audit_log.last("royalty.adjustment.reversed").after["amount_cents"] == -20_000

    def test_reverse_twice(self, adjustment_service, request_for):
        applied = adjustment_service.request_adjustment(request_for(750))
        adjustment_service.reverse_adjustment(applied.id, APPROVER_ID, "entered twice")
        with pytest.raises(AdjustmentAlreadyReversedError):
            adjustment_service.reverse_adjustment(applied.id, APPROVER_ID, "entered twice")

    def test_reverse_pending(self, adjustment_service, request_for):
        pending = adjustment_service.request_adjustment(request_for(20_000))
        with pytest.raises(InvalidStateError):
            adjustment_service.reverse_adjustment(pending.id, APPROVER_ID, "never applied")

    def test_reverse_on_locked_run(self, two_owner_run, adjustment_service, calculation_service, request_for):
        run, _, _ = two_owner_run
        applied = adjustment_service.request_adjustment(request_for(750))
        calculation_service.lock_run(run.id, TEST_ACTOR_ID)
        with pytest.raises(RunLockedError):
            adjustment_service.reverse_adjustment(applied.id, APPROVER_ID, "too late")


class TestBatchAndReads:

    def test_batch_continues_past_failures(self, adjustment_service, request_for):
        result = adjustment_service.batch_apply_adjustments(
            [
                request_for(100),
                request_for(-100),
                request_for(200, statement_id=uuid4()),
                request_for(30_000),
            ]
        )

        assert not result.all_succeeded
        assert [a.approval_state for a in result.succeeded] == [
            ApprovalState.APPLIED,
            ApprovalState.PENDING_APPROVAL,
        ]
        assert [(f.index, f.error_code) for f in result.failed] == [
            (1, "INVALID_ADJUSTMENT"),
            (2, "STATEMENT_NOT_FOUND"),
        ]

    def test_empty_batch(self, adjustment_service):
        assert adjustment_service.batch_apply_adjustments([]).all_succeeded

    def test_pending_queue(self, adjustment_service, request_for):
        adjustment_service.request_adjustment(request_for(100))
        first = adjustment_service.request_adjustment(request_for(10_000))
        second = adjustment_service.request_adjustment(request_for(20_000))

        assert {a.id for a in adjustment_service.get_pending_adjustments()} == {first.id, second.id}
        assert len(adjustment_service.get_pending_adjustments(limit=1)) == 1

        adjustment_service.approve_adjustment(first.id, APPROVER_ID)
        assert [a.id for a in adjustment_service.get_pending_adjustments()] == [second.id]

    def test_statement_adjustments(self, adjustment_service, request_for, statement):
        applied = adjustment_service.request_adjustment(request_for(100))
        pending = adjustment_service.request_adjustment(request_for(10_000))

        adjustments = adjustment_service.get_statement_adjustments(statement.id)

        assert [a.id for a in adjustments] == [applied.id, pending.id]

    def test_statement_adjustments_unknown(self, adjustment_service):
        with pytest.raises(StatementNotFoundError):
            adjustment_service.get_statement_adjustments(uuid4())


def _credit(statement_id, amount_cents, reason="Late usage report"):
    return AdjustmentRequest(
        statement_id=statement_id,
        amount_cents=amount_cents,
        adjustment_type=AdjustmentType.CREDIT,
        reason=reason,
        requested_by_id=TEST_ACTOR_ID,
    )


class TestCarriedForwardStatements:
    """Once January absorbs December's held balance, December is closed."""

    def test_request_on_absorbed_statement(
        self, absorbed_statement, adjustment_service, statements_of
    ):
        dec, jan, hal = absorbed_statement()

        with pytest.raises(StatementCarriedForwardError) as exc_info:
            adjustment_service.request_adjustment(_credit(dec.id, 500))

        assert exc_info.value.absorbing_statement_id == str(jan.id)
        assert str(jan.id) in str(exc_info.value)
        assert statements_of(dec.run_id)[hal.id].total_earnings_cents == 3_000
        current_jan = statements_of(jan.run_id)[hal.id]
        assert carryover_cents(current_jan) == [3_000]
        assert current_jan.total_earnings_cents == 6_000

    def test_large_request_on_absorbed_statement(self, absorbed_statement, adjustment_service):
        dec, _, _ = absorbed_statement()
        with pytest.raises(StatementCarriedForwardError):
            adjustment_service.request_adjustment(_credit(dec.id, 20_000))
        assert adjustment_service.get_statement_adjustments(dec.id) == []

    def test_absorbing_statement_takes_the_correction(
        self, absorbed_statement, adjustment_service, calculation_service, statements_of
    ):
        _, jan, hal = absorbed_statement()

        adjustment_service.request_adjustment(_credit(jan.id, 500))

        assert statements_of(jan.run_id)[hal.id].total_earnings_cents == 6_500
        assert calculation_service.verify_run(jan.run_id).is_valid

    def test_pending_approval_after_absorption(
        self, absorbed_statement, adjustment_service, calculation_service, statements_of
    ):
        requested = []

        def request_bonus(dec_statement, hal):
            requested.append(
                adjustment_service.request_adjustment(_credit(dec_statement.id, 15_000))
            )

        dec, jan, hal = absorbed_statement(before_january=request_bonus)
        pending = requested[0]
        assert dec.carried_forward_to_id == jan.id

        with pytest.raises(StatementCarriedForwardError):
            adjustment_service.approve_adjustment(pending.id, APPROVER_ID)

        assert statements_of(dec.run_id)[hal.id].total_earnings_cents == 3_000
        assert calculation_service.get_run(dec.run_id).total_royalties_cents == 3_000
        [still_pending] = adjustment_service.get_statement_adjustments(dec.id)
        assert still_pending.approval_state == ApprovalState.PENDING_APPROVAL

        rejected = adjustment_service.reject_adjustment(pending.id, APPROVER_ID, "carried into January")
        assert rejected.approval_state == ApprovalState.REJECTED

    def test_reverse_after_absorption(self, absorbed_statement, adjustment_service, statements_of):
        applied = []

        def credit(dec_statement, hal):
            applied.append(adjustment_service.request_adjustment(_credit(dec_statement.id, 500)))

        dec, jan, hal = absorbed_statement(before_january=credit)
        assert carryover_cents(jan) == [3_500]

        with pytest.raises(StatementCarriedForwardError):
            adjustment_service.reverse_adjustment(applied[0].id, APPROVER_ID, "entered twice")

        assert statements_of(dec.run_id)[hal.id].total_earnings_cents == 3_500
        [adjustment] = adjustment_service.get_statement_adjustments(dec.id)
        assert adjustment.approval_state == ApprovalState.APPLIED

    def test_batch_reports_absorbed_statement(self, absorbed_statement, adjustment_service):
        dec, jan, _ = absorbed_statement()

        result = adjustment_service.batch_apply_adjustments(
            [_credit(dec.id, 500), _credit(jan.id, 500)]
        )

        assert len(result.succeeded) == 1
        assert [(f.index, f.error_code) for f in result.failed] == [
            (0, "STATEMENT_CARRIED_FORWARD")
        ]
