"""
RoyaltyCalculationService: run creation and the calculation itself.

Scenarios:
- Basic ownership split
- Proration for licenses active part of the period
- Payout threshold, VIP threshold and carryover across runs
- Derivative works paying their original creator
- Invalid ownership failing the run, then recovering
- Usage revenue from the billing collaborator, including its failure
- Timeout, parallel workers, zero-revenue licenses
"""

import itertools
from datetime import date, datetime, timezone
from types import SimpleNamespace
from uuid import uuid4

import pytest

import royalty_services.royalty_calculation_service as calculation_module
from royalty_kernel.domain.values import LicenseStatus, LineKind, RunStatus, StatementStatus
from royalty_kernel.exceptions import (
    CalculationError,
    CalculationTimeoutError,
    InvalidOwnershipSplitError,
    InvalidPeriodError,
    InvalidStateError,
    OverlappingRunError,
    RunNotFoundError,
)
from royalty_services.collaborators import UsageRoyalty, run_cache_key
from tests.conftest import DEC_2024, FEB_2025, JAN_2025, TEST_ACTOR_ID


def _kinds(statement):
    return [line.kind for line in statement.lines]


class TestCreateRun:

    def test_creates_draft_run(self, calculation_service, audit_log):
        run = calculation_service.create_run(*JAN_2025, TEST_ACTOR_ID, notes="January")

        assert run.status == RunStatus.DRAFT
        assert run.total_revenue_cents == 0
        assert run.notes == "January"
        assert audit_log.actions == ["royalty.run.created"]

    def test_rejects_inverted_period(self, calculation_service):
        with pytest.raises(InvalidPeriodError):
            calculation_service.create_run(date(2025, 1, 31), date(2025, 1, 1), TEST_ACTOR_ID)

    def test_rejects_overlapping_period(self, calculation_service):
        calculation_service.create_run(*JAN_2025, TEST_ACTOR_ID)
        with pytest.raises(OverlappingRunError):
            calculation_service.create_run(date(2025, 1, 31), date(2025, 2, 27), TEST_ACTOR_ID)

    def test_adjacent_periods_allowed(self, calculation_service):
        calculation_service.create_run(*JAN_2025, TEST_ACTOR_ID)
        run = calculation_service.create_run(*FEB_2025, TEST_ACTOR_ID)
        assert run.period_start == FEB_2025[0]
        assert len(calculation_service.list_runs()) == 2


class TestBasicSplit:

    def test_two_owners(self, two_owner_run, statements_of, audit_log, view_cache):
        run, alice, bob = two_owner_run

        assert run.status == RunStatus.CALCULATED
        assert run.total_revenue_cents == 100_000
        assert run.total_royalties_cents == 100_000
        assert run.statement_count == 2

        statements = statements_of(run.id)
        assert statements[alice.id].total_earnings_cents == 60_000
        assert statements[bob.id].total_earnings_cents == 40_000
        for statement in statements.values():
            assert statement.status == StatementStatus.PENDING
            assert not statement.payout_held
            assert statement.lines_total_cents == statement.total_earnings_cents

        (line,) = statements[alice.id].lines
        assert line.kind == LineKind.LICENSE
        assert line.description == "Royalty for Sunrise"
        assert line.share_bps == 6000
        assert line.revenue_cents == 100_000
        assert line.sequence == 1

        assert audit_log.actions == ["royalty.run.created", "royalty.run.calculated"]
        assert run_cache_key(run.id) in view_cache.invalidated

    def test_notes_record_summary_and_config(self, two_owner_run):
        run, _, _ = two_owner_run
        assert (
            "Calculation completed: 2 creators, 1 licenses, $1000.00 revenue, "
            "$1000.00 royalties"
        ) in run.notes
        assert "Configuration default v1 (checksum test-checksu)" in run.notes

    def test_cannot_calculate_twice(self, two_owner_run, calculation_service):
        run, _, _ = two_owner_run
        with pytest.raises(InvalidStateError):
            calculation_service.calculate_run(run.id, TEST_ACTOR_ID)

    def test_unknown_run(self, calculation_service):
        with pytest.raises(RunNotFoundError):
            calculation_service.calculate_run(uuid4(), TEST_ACTOR_ID)

    def test_owner_split_sums_exactly(self, licensing, calculated_run, statements_of):
        owners = [licensing.creator() for _ in range(3)]
        asset = licensing.owned_asset([(owners[0], 3334), (owners[1], 3333), (owners[2], 3333)])
        licensing.license(asset, 1_000_001)

        run = calculated_run()
        statements = statements_of(run.id)
        assert [statements[o.id].total_earnings_cents for o in owners] == [
            333_401,
            333_300,
            333_300,
        ]
        assert run.total_royalties_cents == 1_000_001

    def test_emits_structured_logs(self, licensing, calculated_run, captured_logs):
        creator = licensing.creator()
        licensing.license(licensing.owned_asset([(creator, 10000)]), 10_000)

        calculated_run()

        messages = [r["message"] for r in captured_logs()]
        assert "run_calculation_started" in messages
        assert "run_calculated" in messages
        started = next(r for r in captured_logs() if r["message"] == "run_calculation_started")
        assert started["run_id"]


class TestLicenseSelection:

    def test_inactive_and_deleted_licenses_ignored(
        self, licensing, calculated_run, statements_of, session_factory
    ):
        creator = licensing.creator()
        asset = licensing.owned_asset([(creator, 10000)])
        licensing.license(asset, 10_000)
        licensing.license(asset, 50_000, status=LicenseStatus.SUSPENDED)
        deleted = licensing.license(asset, 70_000)
        with session_factory() as session:
            row = session.get(type(deleted), deleted.id)
            row.deleted_at = datetime(2025, 1, 1, tzinfo=timezone.utc)
            session.commit()

        run = calculated_run()
        assert statements_of(run.id)[creator.id].total_earnings_cents == 10_000

    def test_license_outside_period_ignored(self, licensing, calculated_run):
        creator = licensing.creator()
        licensing.license(
            licensing.owned_asset([(creator, 10000)]),
            10_000,
            start=date(2025, 3, 1),
            end=date(2025, 12, 31),
        )
        run = calculated_run()
        assert run.statement_count == 0
        assert run.total_revenue_cents == 0

    def test_zero_revenue_license_skipped(self, licensing, calculated_run, captured_logs):
        creator = licensing.creator()
        licensing.license(licensing.owned_asset([(creator, 10000)]), 0)

        run = calculated_run()

        assert run.status == RunStatus.CALCULATED
        assert run.statement_count == 0
        assert "license_skipped_zero_revenue" in [r["message"] for r in captured_logs()]

    def test_ownership_ended_before_period_not_paid(
        self, licensing, calculated_run, statements_of
    ):
        old, new = licensing.creator("Old Owner"), licensing.creator("New Owner")
        asset = licensing.asset("Transferred")
        licensing.ownership(asset, old, 10000, start=date(2020, 1, 1), end=date(2024, 12, 31))
        licensing.ownership(asset, new, 10000, start=date(2025, 1, 1))
        licensing.license(asset, 10_000)

        statements = statements_of(calculated_run().id)
        assert set(statements) == {new.id}


class TestProration:

    def test_partial_month_prorated(self, licensing, calculated_run, statements_of):
        creator = licensing.creator()
        licensing.license(
            licensing.owned_asset([(creator, 10000)]),
            31_000,
            start=date(2025, 1, 17),
            end=date(2025, 6, 30),
        )
        run = calculated_run()

        (line,) = statements_of(run.id)[creator.id].lines
        assert line.calculated_royalty_cents == 15_000
        assert line.details["days_active"] == 15
        assert line.details["total_days"] == 31
        assert line.details["prorated"] is True
        assert run.total_revenue_cents == 15_000

    def test_proration_disabled(
        self, licensing, make_config, make_calculation_service, calculated_run, statements_of
    ):
        creator = licensing.creator()
        licensing.license(
            licensing.owned_asset([(creator, 10000)]),
            31_000,
            start=date(2025, 1, 17),
            end=date(2025, 6, 30),
        )
        service = make_calculation_service(make_config(enable_proration=False))
        run = calculated_run(service=service)

        (line,) = statements_of(run.id)[creator.id].lines
        assert line.calculated_royalty_cents == 31_000
        assert line.details["prorated"] is False


class TestThresholdAndCarryover:

    def test_below_threshold_is_held(self, licensing, calculated_run, statements_of):
        creator = licensing.creator()
        licensing.license(licensing.owned_asset([(creator, 10000)]), 2_000)

        statement = statements_of(calculated_run().id)[creator.id]

        assert statement.payout_held
        assert statement.status == StatementStatus.REVIEWED
        assert statement.total_earnings_cents == 2_000
        assert _kinds(statement) == [LineKind.LICENSE, LineKind.THRESHOLD_NOTE]
        note = statement.lines[-1]
        assert note.calculated_royalty_cents == 0
        assert note.description == (
            "Total earnings below minimum payout threshold of $50.00. "
            "Balance will carry forward to next period."
        )

    def test_vip_threshold(self, licensing, calculated_run, statements_of):
        vip = licensing.creator("Vip", is_vip=True)
        regular = licensing.creator("Regular")
        licensing.license(licensing.owned_asset([(vip, 10000)]), 3_000)
        licensing.license(licensing.owned_asset([(regular, 10000)]), 3_000)

        statements = statements_of(calculated_run().id)

        assert not statements[vip.id].payout_held
        assert statements[regular.id].payout_held

    def test_threshold_is_inclusive(self, licensing, calculated_run, statements_of):
        creator = licensing.creator()
        licensing.license(licensing.owned_asset([(creator, 10000)]), 5_000)
        assert not statements_of(calculated_run().id)[creator.id].payout_held

    def test_balance_carries_until_threshold_met(
        self, licensing, calculated_run, statements_of
    ):
        creator = licensing.creator()
        licensing.license(licensing.owned_asset([(creator, 10000)]), 2_000)

        dec = statements_of(calculated_run(DEC_2024).id)[creator.id]
        jan_run = calculated_run(JAN_2025)
        jan = statements_of(jan_run.id)[creator.id]
        feb = statements_of(calculated_run(FEB_2025).id)[creator.id]

        assert jan.payout_held
        assert jan.total_earnings_cents == 4_000
        assert _kinds(jan) == [LineKind.LICENSE, LineKind.CARRYOVER, LineKind.THRESHOLD_NOTE]
        assert jan_run.total_royalties_cents == 4_000
        assert "$20.00 royalties" in jan_run.notes

        assert not feb.payout_held
        assert feb.status == StatementStatus.PENDING
        assert feb.total_earnings_cents == 6_000
        carryover = feb.lines[1]
        assert carryover.kind == LineKind.CARRYOVER
        assert carryover.calculated_royalty_cents == 4_000
        assert carryover.details["source_statement_ids"] == [str(jan.id)]

        refreshed = statements_of(dec.run_id)[creator.id]
        assert refreshed.carried_forward_to_id == jan.id
        assert statements_of(jan_run.id)[creator.id].carried_forward_to_id == feb.id

    def test_carryover_only_for_creators_earning_this_period(
        self, licensing, calculated_run, statements_of
    ):
        creator = licensing.creator()
        licensing.license(
            licensing.owned_asset([(creator, 10000)]),
            2_000,
            start=date(2024, 12, 1),
            end=date(2024, 12, 31),
        )
        calculated_run(DEC_2024)
        jan = calculated_run(JAN_2025)
        assert jan.statement_count == 0
        assert statements_of(jan.id) == {}


class TestDerivativeWorks:

    @pytest.fixture
    def remix(self, licensing):
        olivia = licensing.creator("Olivia")
        dana = licensing.creator("Dana")
        original = licensing.owned_asset([(olivia, 10000)], title="Original")
        remix = licensing.asset(
            "Remix",
            is_derivative=True,
            parent_asset_id=original.id,
            derivative_level=1,
            original_creator_id=olivia.id,
        )
        licensing.ownership(remix, dana, 10000)
        return remix, olivia, dana

    def test_original_creator_paid_first(self, remix, licensing, calculated_run, statements_of):
        asset, olivia, dana = remix
        licensing.license(asset, 100_000)

        statements = statements_of(calculated_run().id)

        assert statements[olivia.id].total_earnings_cents == 10_000
        assert statements[dana.id].total_earnings_cents == 90_000
        (line,) = statements[olivia.id].lines
        assert line.description == "Original creator share of Remix"
        assert line.details["is_original_creator"] is True

    def test_asset_override_share(self, licensing, calculated_run, statements_of):
        olivia, dana = licensing.creator("Olivia"), licensing.creator("Dana")
        asset = licensing.asset(
            "Cover",
            is_derivative=True,
            derivative_level=1,
            original_creator_id=olivia.id,
            original_creator_share_bps=2500,
        )
        licensing.ownership(asset, dana, 10000)
        licensing.license(asset, 100_000)

        statements = statements_of(calculated_run().id)
        assert statements[olivia.id].total_earnings_cents == 25_000

    def test_disabled(
        self, remix, licensing, make_config, make_calculation_service, calculated_run, statements_of
    ):
        asset, olivia, dana = remix
        licensing.license(asset, 100_000)
        service = make_calculation_service(make_config(enable_derivative_royalty_splits=False))

        statements = statements_of(calculated_run(service=service).id)

        assert olivia.id not in statements
        assert statements[dana.id].total_earnings_cents == 100_000


class TestFailure:

    def test_invalid_ownership_fails_run(
        self, licensing, calculation_service, audit_log, captured_logs
    ):
        a, b = licensing.creator(), licensing.creator()
        asset = licensing.owned_asset([(a, 6000), (b, 3000)])
        licensing.license(asset, 10_000)
        run = calculation_service.create_run(*JAN_2025, TEST_ACTOR_ID)

        with pytest.raises(CalculationError) as exc_info:
            calculation_service.calculate_run(run.id, TEST_ACTOR_ID)

        assert isinstance(exc_info.value.cause, InvalidOwnershipSplitError)
        assert exc_info.value.cause.total_bps == 9000
        failed = calculation_service.get_run(run.id)
        assert failed.status == RunStatus.FAILED
        assert failed.statement_count == 0
        assert failed.total_royalties_cents == 0
        assert "Calculation failed:" in failed.notes
        assert "9000" in failed.notes
        assert audit_log.actions[-1] == "royalty.run.failed"
        error = next(r for r in captured_logs() if r["message"] == "run_calculation_failed")
        assert error["error_type"] == "InvalidOwnershipSplitError"

    def test_failed_run_recovers_after_fix(self, licensing, calculation_service):
        a, b, c = licensing.creator(), licensing.creator(), licensing.creator()
        asset = licensing.owned_asset([(a, 6000), (b, 3000)])
        licensing.license(asset, 10_000)
        run = calculation_service.create_run(*JAN_2025, TEST_ACTOR_ID)
        with pytest.raises(CalculationError):
            calculation_service.calculate_run(run.id, TEST_ACTOR_ID)

        licensing.ownership(asset, c, 1000)
        calculation_service.rollback_run(run.id, TEST_ACTOR_ID, "ownership corrected")
        recalculated = calculation_service.calculate_run(run.id, TEST_ACTOR_ID)

        assert recalculated.status == RunStatus.CALCULATED
        assert recalculated.total_royalties_cents == 10_000

    def test_timeout(self, licensing, calculation_service, monkeypatch):
        creator = licensing.creator()
        licensing.license(licensing.owned_asset([(creator, 10000)]), 10_000)
        run = calculation_service.create_run(*JAN_2025, TEST_ACTOR_ID)

        ticks = itertools.count(start=0, step=1_000)
        monkeypatch.setattr(
            calculation_module, "time", SimpleNamespace(monotonic=lambda: next(ticks))
        )

        with pytest.raises(CalculationTimeoutError) as exc_info:
            calculation_service.calculate_run(run.id, TEST_ACTOR_ID)

        assert exc_info.value.code == "CALCULATION_TIMEOUT"
        assert exc_info.value.timeout_ms == 300_000
        failed = calculation_service.get_run(run.id)
        assert failed.status == RunStatus.FAILED
        assert failed.statement_count == 0


class TestUsageRevenue:

    @pytest.fixture
    def shared_license(self, licensing):
        alice, bob = licensing.creator("Alice"), licensing.creator("Bob")
        asset = licensing.owned_asset([(alice, 6000), (bob, 4000)])
        license = licensing.license(asset, 10_000, rev_share_bps=2000)
        return license, alice, bob

    def test_usage_revenue_added(self, shared_license, usage_client, calculated_run, statements_of):
        license, alice, bob = shared_license
        usage_client.royalties[license.id] = [
            UsageRoyalty(alice.id, 5_000, 2000),
            UsageRoyalty(bob.id, 3_000, 2000),
        ]

        run = calculated_run()

        assert run.total_revenue_cents == 18_000
        statements = statements_of(run.id)
        assert statements[alice.id].total_earnings_cents == 10_800
        assert statements[bob.id].total_earnings_cents == 7_200
        assert statements[alice.id].lines[0].details["usage_revenue_cents"] == 8_000
        assert usage_client.calls == [(license.id, *JAN_2025)]

    def test_usage_failure_counts_as_zero(
        self, shared_license, usage_client, calculated_run, captured_logs
    ):
        usage_client.fail = True

        run = calculated_run()

        assert run.status == RunStatus.CALCULATED
        assert run.total_revenue_cents == 10_000
        assert "usage_revenue_unavailable" in [r["message"] for r in captured_logs()]

    def test_usage_disabled(
        self, shared_license, usage_client, make_config, make_calculation_service, calculated_run
    ):
        service = make_calculation_service(make_config(enable_usage_revenue=False))
        run = calculated_run(service=service)
        assert run.total_revenue_cents == 10_000
        assert usage_client.calls == []


class TestParallelWorkers:

    def test_workers_match_sequential_results(
        self, licensing, make_config, make_calculation_service, calculated_run, statements_of
    ):
        creators = [licensing.creator() for _ in range(4)]
        fees = [12_345, 67_890, 5_555, 99_999]
        for i, fee in enumerate(fees):
            asset = licensing.owned_asset(
                [(creators[i], 5000), (creators[(i + 1) % 4], 5000)], title=f"Work {i}"
            )
            licensing.license(asset, fee)

        service = make_calculation_service(make_config(calculation_workers=4))
        run = calculated_run(service=service)

        statements = statements_of(run.id)
        assert run.total_royalties_cents == sum(fees)
        assert sum(s.total_earnings_cents for s in statements.values()) == sum(fees)
        for statement in statements.values():
            assert statement.lines_total_cents == statement.total_earnings_cents
            assert [line.sequence for line in statement.lines] == list(
                range(1, len(statement.lines) + 1)
            )
