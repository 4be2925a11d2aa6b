"""
Tests for RoyaltyStatementService: creator review, disputes, resolution,
statement-ready notifications and overdue dispute reporting.
"""

from uuid import uuid4

import pytest

from royalty_kernel.domain.values import LineKind, StatementStatus
from royalty_kernel.exceptions import (
    InvalidDisputeReasonError,
    InvalidStateError,
    RunLockedError,
    RunNotFoundError,
    StatementCarriedForwardError,
    StatementNotFoundError,
    UnauthorizedAccessError,
)
from royalty_services.collaborators import run_cache_key, statement_cache_key
from tests.conftest import TEST_ACTOR_ID, carryover_cents

REASON = "Usage numbers are missing the EU channel"


@pytest.fixture
def alice_statement(two_owner_run, statements_of):
    run, alice, bob = two_owner_run
    return statements_of(run.id)[alice.id], alice, bob


class TestReview:

    def test_owner_reviews(self, alice_statement, statement_service, deterministic_clock, audit_log):
        statement, alice, _ = alice_statement

        reviewed = statement_service.review_statement(statement.id, alice.id)

        assert reviewed.status == StatementStatus.REVIEWED
        assert reviewed.reviewed_at == deterministic_clock.now()
        assert audit_log.actions[-1] == "royalty.statement.reviewed"

    def test_non_owner_rejected(self, alice_statement, statement_service):
        statement, _, bob = alice_statement
        with pytest.raises(UnauthorizedAccessError):
            statement_service.review_statement(statement.id, bob.id)

    def test_review_twice(self, alice_statement, statement_service):
        statement, alice, _ = alice_statement
        statement_service.review_statement(statement.id, alice.id)
        with pytest.raises(InvalidStateError):
            statement_service.review_statement(statement.id, alice.id)

    def test_unknown_statement(self, statement_service):
        with pytest.raises(StatementNotFoundError):
            statement_service.review_statement(uuid4(), TEST_ACTOR_ID)


class TestDispute:

    def test_dispute_notifies_admins_and_creator(
        self, licensing, alice_statement, statement_service, notifier, view_cache
    ):
        licensing.creator("Ops Admin", is_admin=True)
        statement, alice, _ = alice_statement

        disputed = statement_service.dispute_statement(statement.id, f"  {REASON}  ", alice.id)

        assert disputed.status == StatementStatus.DISPUTED
        assert disputed.dispute_reason == REASON
        assert notifier.templates() == [
            "royalty-dispute-admin",
            "royalty-dispute-confirmation",
        ]
        admin_mail, confirmation = notifier.sent
        assert admin_mail.recipient == "ops.admin@example.com"
        assert admin_mail.variables["creator_name"] == "Alice"
        assert admin_mail.variables["reason"] == REASON
        assert confirmation.recipient == "alice@example.com"
        assert statement_cache_key(statement.id) in view_cache.invalidated
        assert run_cache_key(statement.run_id) in view_cache.invalidated

    def test_dispute_reviewed_statement(self, alice_statement, statement_service):
        statement, alice, _ = alice_statement
        statement_service.review_statement(statement.id, alice.id)
        disputed = statement_service.dispute_statement(statement.id, REASON, alice.id)
        assert disputed.status == StatementStatus.DISPUTED

    def test_no_admins_logged(self, alice_statement, statement_service, notifier, captured_logs):
        statement, alice, _ = alice_statement

        statement_service.dispute_statement(statement.id, REASON, alice.id)

        assert notifier.templates() == ["royalty-dispute-confirmation"]
        assert "dispute_admin_unnotified" in [r["message"] for r in captured_logs()]

    def test_short_reason(self, alice_statement, statement_service):
        statement, alice, _ = alice_statement
        with pytest.raises(InvalidDisputeReasonError) as exc_info:
            statement_service.dispute_statement(statement.id, "  too low ", alice.id)
        assert exc_info.value.min_length == 10

    def test_non_owner_cannot_dispute(self, alice_statement, statement_service):
        statement, _, bob = alice_statement
        with pytest.raises(UnauthorizedAccessError):
            statement_service.dispute_statement(statement.id, REASON, bob.id)

    def test_locked_run(self, two_owner_run, alice_statement, statement_service, calculation_service):
        run, _, _ = two_owner_run
        statement, alice, _ = alice_statement
        calculation_service.lock_run(run.id, TEST_ACTOR_ID)
        with pytest.raises(RunLockedError):
            statement_service.dispute_statement(statement.id, REASON, alice.id)

    def test_mail_failure_keeps_dispute(self, alice_statement, statement_service, notifier, captured_logs):
        statement, alice, _ = alice_statement
        notifier.fail = True

        disputed = statement_service.dispute_statement(statement.id, REASON, alice.id)

        assert disputed.status == StatementStatus.DISPUTED
        assert statement_service.get_statement(statement.id).status == StatementStatus.DISPUTED
        failures = [r for r in captured_logs() if r["message"] == "notification_failed"]
        assert failures[0]["template"] == "royalty-dispute-confirmation"


class TestResolveDispute:

    @pytest.fixture
    def disputed(self, alice_statement, statement_service, notifier):
        statement, alice, _ = alice_statement
        statement_service.dispute_statement(statement.id, REASON, alice.id)
        notifier.sent.clear()
        return statement

    def test_resolve_with_adjustment(
        self, disputed, statement_service, calculation_service, renderer, notifier, audit_log
    ):
        resolved = statement_service.resolve_dispute(
            disputed.id, "Added the EU usage", TEST_ACTOR_ID, adjustment_cents=2_500
        )

        assert resolved.status == StatementStatus.RESOLVED
        assert resolved.resolution == "Added the EU usage"
        assert resolved.total_earnings_cents == 62_500
        assert resolved.lines[-1].kind == LineKind.DISPUTE_RESOLUTION
        assert resolved.lines[-1].calculated_royalty_cents == 2_500
        assert resolved.lines_total_cents == resolved.total_earnings_cents
        assert calculation_service.get_run(disputed.run_id).total_royalties_cents == 102_500
        assert calculation_service.verify_run(disputed.run_id).is_valid

        assert renderer.regenerated == [disputed.id]
        (mail,) = notifier.sent
        assert mail.template == "royalty-dispute-resolved"
        assert mail.variables["adjustment_amount"] == "25.00"
        assert audit_log.last("royalty.statement.dispute_resolved").after["adjustment_cents"] == 2_500

    def test_resolve_without_adjustment(self, disputed, statement_service, notifier):
        resolved = statement_service.resolve_dispute(disputed.id, "Numbers confirmed", TEST_ACTOR_ID)

        assert resolved.total_earnings_cents == 60_000
        assert [line.kind for line in resolved.lines] == [LineKind.LICENSE]
        assert notifier.sent[0].variables["adjustment_amount"] is None

    def test_renderer_failure_logged(self, disputed, statement_service, renderer, captured_logs):
        renderer.fail = True

        resolved = statement_service.resolve_dispute(disputed.id, "Numbers confirmed", TEST_ACTOR_ID)

        assert resolved.status == StatementStatus.RESOLVED
        assert "statement_regeneration_failed" in [r["message"] for r in captured_logs()]

    def test_only_disputed_statements(self, alice_statement, statement_service):
        statement, _, _ = alice_statement
        with pytest.raises(InvalidStateError):
            statement_service.resolve_dispute(statement.id, "Nothing to resolve", TEST_ACTOR_ID)

    def test_correction_on_absorbed_statement(
        self, absorbed_statement, statement_service, renderer, statements_of
    ):
        dec, jan, hal = absorbed_statement()
        statement_service.dispute_statement(dec.id, REASON, hal.id)

        with pytest.raises(StatementCarriedForwardError) as exc_info:
            statement_service.resolve_dispute(
                dec.id, "Added the EU usage", TEST_ACTOR_ID, adjustment_cents=500
            )

        assert exc_info.value.absorbing_statement_id == str(jan.id)
        current = statements_of(dec.run_id)[hal.id]
        assert current.status == StatementStatus.DISPUTED
        assert current.total_earnings_cents == 3_000
        assert carryover_cents(statements_of(jan.run_id)[hal.id]) == [3_000]
        assert renderer.regenerated == []

    def test_absorbed_statement_resolves_without_correction(
        self, absorbed_statement, statement_service
    ):
        dec, _, hal = absorbed_statement()
        statement_service.dispute_statement(dec.id, REASON, hal.id)

        resolved = statement_service.resolve_dispute(dec.id, "Numbers confirmed", TEST_ACTOR_ID)

        assert resolved.status == StatementStatus.RESOLVED
        assert resolved.total_earnings_cents == 3_000


class TestNotifications:

    def test_statement_ready(self, alice_statement, statement_service, notifier):
        statement, _, _ = alice_statement

        assert statement_service.notify_statement_ready(statement.id) is True

        (mail,) = notifier.sent
        assert mail.template == "royalty-statement-ready"
        assert mail.recipient == "alice@example.com"
        assert mail.variables == {
            "creator_name": "Alice",
            "period_start": "January 1, 2025",
            "period_end": "January 31, 2025",
            "total_earnings": "600.00",
            "statement_id": str(statement.id),
        }

    def test_unknown_statement(self, statement_service, notifier):
        assert statement_service.notify_statement_ready(uuid4()) is False
        assert notifier.sent == []

    def test_no_email(self, licensing, calculated_run, statements_of, statement_service, captured_logs):
        quiet = licensing.creator("Quiet", email=None)
        licensing.license(licensing.owned_asset([(quiet, 10000)]), 50_000)
        statement = statements_of(calculated_run().id)[quiet.id]

        assert statement_service.notify_statement_ready(statement.id) is False
        skipped = [r for r in captured_logs() if r["message"] == "statement_notification_skipped"]
        assert skipped[-1]["skip_reason"] == "no_email"

    def test_opted_out(self, licensing, calculated_run, statements_of, statement_service, captured_logs):
        optout = licensing.creator("Opt Out", statement_emails_enabled=False)
        licensing.license(licensing.owned_asset([(optout, 10000)]), 50_000)
        statement = statements_of(calculated_run().id)[optout.id]

        assert statement_service.notify_statement_ready(statement.id) is False
        skipped = [r for r in captured_logs() if r["message"] == "statement_notification_skipped"]
        assert skipped[-1]["skip_reason"] == "preferences_disabled"

    def test_notifier_failure(self, alice_statement, statement_service, notifier, captured_logs):
        statement, _, _ = alice_statement
        notifier.fail = True

        assert statement_service.notify_statement_ready(statement.id) is False
        assert "notification_failed" in [r["message"] for r in captured_logs()]

    def test_notify_run(self, licensing, two_owner_run, statement_service, notifier):
        run, _, _ = two_owner_run
        assert statement_service.notify_run_statements(run.id) == 2
        assert sorted(n.recipient for n in notifier.sent) == [
            "alice@example.com",
            "bob@example.com",
        ]

    def test_notify_unknown_run(self, statement_service):
        with pytest.raises(RunNotFoundError):
            statement_service.notify_run_statements(uuid4())


class TestOverdueDisputes:

    def test_overdue_after_timeout(
        self, alice_statement, statement_service, deterministic_clock, captured_logs
    ):
        statement, alice, _ = alice_statement
        statement_service.dispute_statement(statement.id, REASON, alice.id)

        deterministic_clock.advance_days(30)
        assert statement_service.find_overdue_disputes() == []

        deterministic_clock.advance_days(1)
        (overdue,) = statement_service.find_overdue_disputes()
        assert overdue.statement_id == statement.id
        assert overdue.creator_id == alice.id
        assert overdue.days_open == 31
        assert "overdue_disputes_found" in [r["message"] for r in captured_logs()]


class TestReads:

    def test_get_statement(self, alice_statement, statement_service):
        statement, alice, _ = alice_statement

        info = statement_service.get_statement(statement.id)

        assert info.creator_id == alice.id
        assert info.lines[0].description == "Royalty for Sunrise"
        assert statement_service.get_statement(statement.id, include_lines=False).lines == ()

    def test_get_unknown(self, statement_service):
        with pytest.raises(StatementNotFoundError):
            statement_service.get_statement(uuid4())

    def test_statements_for_creator(self, alice_statement, statement_service):
        statement, alice, bob = alice_statement
        assert [s.id for s in statement_service.statements_for_creator(alice.id)] == [statement.id]
        assert statement_service.statements_for_creator(uuid4()) == []

    def test_verify_ownership(self, alice_statement, statement_service):
        statement, alice, bob = alice_statement
        statement_service.verify_statement_ownership(statement.id, alice.id)
        with pytest.raises(UnauthorizedAccessError):
            statement_service.verify_statement_ownership(statement.id, bob.id)
        with pytest.raises(UnauthorizedAccessError):
            statement_service.verify_statement_ownership(uuid4(), alice.id)
