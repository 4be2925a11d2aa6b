"""
royalty_services.royalty_calculation_service -- Run orchestrator.

Responsibility:
    Drives a royalty run through its lifecycle: creation with period
    validation, the atomic calculation that turns active licenses into
    per-creator statements, locking, rollback, payout bookkeeping and
    integrity verification.  Also offers the direct adjustment path and
    license scope validation used by operators.

Architecture position:
    Services -- stateful orchestration over engines + kernel.
    Owns transaction boundaries through RoyaltyUnitOfWork; everything it
    calls below (LedgerWriter, selectors) only flushes.

Invariants enforced:
    - Status moves follow RUN_TRANSITIONS:
      DRAFT -> CALCULATED -> LOCKED -> PROCESSING -> COMPLETED, FAILED
      from DRAFT/CALCULATED, rollback to DRAFT before payout.
    - No two runs have overlapping periods (inclusive test).
    - A calculation is one transaction bounded by calculation_timeout_ms;
      a failed calculation leaves no statements behind and the run FAILED
      with a diagnostic note.
    - Every statement total equals the sum of its lines, and the run's
      total_royalties_cents equals the sum of its statements.
    - No partial payouts: a creator's accumulated balance is paid in full
      or held in full.

Failure modes:
    - RunNotFoundError, InvalidStateError for unknown runs and illegal
      transitions.
    - InvalidPeriodError, OverlappingRunError from create_run.
    - CalculationError (wrapping the cause) or CalculationTimeoutError
      from calculate_run, after the run has been marked FAILED.
    - UnresolvedDisputesError, LedgerIntegrityError from lock_run.
    - AlreadyPaidError from rollback_run.
    - RunLockedError, ApprovalRequiredError from apply_adjustment.

Audit relevance:
    Each state change is written to the AuditLog collaborator
    (royalty.run.created, royalty.run.calculated, royalty.run.locked,
    royalty.run.rolled_back, ...) and the cached run view is invalidated.
    Run notes carry the calculation summary, the config checksum and any
    rounding drift beyond tolerance.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from royalty_config.schema import CalculationConfig
from royalty_engines.financial import (
    calculate_accumulated_balance,
    calculate_rounding_reconciliation,
    format_cents,
    is_rounding_within_tolerance,
)
from royalty_engines.periods import check_no_overlap, period_display_name, validate_period
from royalty_engines.scope import (
    ReportedUsage,
    ScopeValidationResult,
    parse_license_scope,
    validate_scope_compliance,
)
from royalty_kernel.db.unit_of_work import RoyaltyUnitOfWork
from royalty_kernel.domain.clock import Clock, SystemClock
from royalty_kernel.domain.dtos import (
    AdjustmentInfo,
    CarryoverBalance,
    CreatorInfo,
    LicenseSnapshot,
    RevenueBreakdown,
    RollbackInfo,
    RunInfo,
    RunVerification,
)
from royalty_kernel.domain.line_kind import (
    Carryover,
    LicenseLine,
    ManualAdjustment,
    ThresholdNote,
)
from royalty_kernel.domain.values import (
    AdjustmentType,
    ApprovalState,
    RunStatus,
    StatementStatus,
)
from royalty_kernel.exceptions import (
    ApprovalRequiredError,
    AlreadyPaidError,
    CalculationError,
    CalculationTimeoutError,
    InvalidStateError,
    LedgerIntegrityError,
    NotFoundError,
    RunCarriedForwardError,
    RunLockedError,
    RunNotFoundError,
    StatementNotFoundError,
    UnresolvedDisputesError,
)
from royalty_kernel.logging_config import LogContext, get_logger
from royalty_kernel.models.licensing import License
from royalty_kernel.models.royalty_run import RoyaltyRun
from royalty_kernel.models.royalty_statement import RoyaltyStatement
from royalty_kernel.models.run_rollback import RunRollbackRecord
from royalty_kernel.selectors.licensing_selector import LicensingSelector
from royalty_kernel.selectors.run_selector import RunSelector
from royalty_kernel.selectors.statement_selector import StatementSelector
from royalty_kernel.services.ledger_writer import LedgerWriter
from royalty_services.adjustment_service import validate_adjustment_request
from royalty_services.collaborators import (
    AuditLog,
    AuditRecord,
    InMemoryViewCache,
    LoggingAuditLog,
    UsageBillingClient,
    ViewCache,
    run_cache_key,
    statement_cache_key,
)
from royalty_services.ownership_split import OwnerAllocation, OwnershipSplitEngine
from royalty_services.revenue_aggregator import RevenueAggregator

logger = get_logger("services.royalty_calculation")


@dataclass(frozen=True)
class LicenseResult:
    """Revenue and per-owner allocations computed for one license."""

    license: LicenseSnapshot
    revenue: RevenueBreakdown
    allocations: tuple[OwnerAllocation, ...]


@dataclass
class _CreatorEarnings:
    creator_id: UUID
    total_cents: int = 0
    items: list[tuple[LicenseResult, OwnerAllocation]] = field(default_factory=list)


class RoyaltyCalculationService:
    """
    Orchestrates royalty runs.

    Contract:
        Receives a RoyaltyUnitOfWork, the CalculationConfig, and optional
        Clock and collaborators through constructor injection.  Every
        public method opens and finishes its own transaction.

    Guarantees:
        - Calculation is all-or-nothing.
        - Public methods return DTOs, never ORM rows.

    Non-goals:
        - Does NOT move money; complete_run only records that payout
          happened.
        - Does NOT send notifications (see RoyaltyStatementService).
    """

    def __init__(
        self,
        uow: RoyaltyUnitOfWork,
        config: CalculationConfig,
        clock: Clock | None = None,
        usage_client: UsageBillingClient | None = None,
        audit_log: AuditLog | None = None,
        view_cache: ViewCache | None = None,
    ):
        self._uow = uow
        self._config = config
        self._clock = clock or SystemClock()
        self._audit = audit_log or LoggingAuditLog()
        self._cache = view_cache or InMemoryViewCache()
        self._aggregator = RevenueAggregator(config, usage_client)
        self._splitter = OwnershipSplitEngine(config)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_run(
        self,
        period_start: date,
        period_end: date,
        actor_id: UUID,
        notes: str | None = None,
    ) -> RunInfo:
        """
        Create a DRAFT run for a period that overlaps no existing run.

        Raises:
            InvalidPeriodError: period_end is not after period_start.
            OverlappingRunError: another run covers any day of the period.
        """
        validate_period(period_start, period_end)

        with self._uow.begin("create_run") as txn:
            session = txn.session
            existing = session.scalars(select(RoyaltyRun)).all()
            check_no_overlap(existing, period_start, period_end)

            run = RoyaltyRun(
                period_start=period_start,
                period_end=period_end,
                status=RunStatus.DRAFT.value,
                total_revenue_cents=0,
                total_royalties_cents=0,
                notes=notes,
                created_by_id=actor_id,
            )
            session.add(run)
            session.flush()

            self._record(
                "royalty.run.created",
                run.id,
                actor_id,
                after={
                    "period_start": period_start.isoformat(),
                    "period_end": period_end.isoformat(),
                    "status": RunStatus.DRAFT.value,
                },
            )
            info = RunInfo.from_model(run)

        logger.info(
            "run_created",
            extra={
                "run_id": str(info.id),
                "period": period_display_name(period_start, period_end),
                "actor_id": str(actor_id),
            },
        )
        return info

    # ------------------------------------------------------------------
    # Calculation
    # ------------------------------------------------------------------

    def calculate_run(self, run_id: UUID, actor_id: UUID) -> RunInfo:
        """
        Calculate a DRAFT run in one transaction.

        Steps: fetch licenses active in the period, compute each license's
        revenue, validate and allocate ownership splits, aggregate per
        creator, apply carryover and the payout threshold, write statements
        and lines, and move the run to CALCULATED.

        Raises:
            RunNotFoundError: unknown run.
            InvalidStateError: run is not DRAFT.
            CalculationTimeoutError: the deadline passed.
            CalculationError: anything else; ``cause`` holds the original.
        """
        timeout_ms = self._config.calculation_timeout_ms
        deadline = time.monotonic() + timeout_ms / 1000

        with LogContext.bind(run_id=str(run_id), actor_id=str(actor_id)):
            txn = self._uow.begin_royalty_calculation_txn(timeout_ms)
            try:
                run = self._get_run_for_update(txn.session, run_id)
                if RunStatus(run.status) != RunStatus.DRAFT:
                    raise InvalidStateError(
                        "RoyaltyRun",
                        str(run_id),
                        run.status,
                        (RunStatus.DRAFT,),
                        action="calculate",
                    )
                logger.info(
                    "run_calculation_started",
                    extra={
                        "period_start": run.period_start.isoformat(),
                        "period_end": run.period_end.isoformat(),
                        "timeout_ms": timeout_ms,
                    },
                )
                info = self._calculate(txn.session, run, actor_id, deadline, txn.elapsed_ms)
                txn.commit()
            except (RunNotFoundError, InvalidStateError):
                if not txn.is_finished:
                    txn.rollback()
                raise
            except Exception as exc:
                if not txn.is_finished:
                    txn.rollback()
                self._mark_failed(run_id, actor_id, exc)
                if isinstance(exc, CalculationError):
                    raise
                raise CalculationError(str(run_id), str(exc), cause=exc) from exc

        self._cache.invalidate(run_cache_key(run_id))
        logger.info(
            "run_calculated",
            extra={
                "run_id": str(run_id),
                "statement_count": info.statement_count,
                "total_revenue_cents": info.total_revenue_cents,
                "total_royalties_cents": info.total_royalties_cents,
            },
        )
        return info

    def _calculate(
        self,
        session: Session,
        run: RoyaltyRun,
        actor_id: UUID,
        deadline: float,
        elapsed_ms: Callable[[], float],
    ) -> RunInfo:
        run_id = str(run.id)

        def check_deadline() -> None:
            if time.monotonic() > deadline:
                raise CalculationTimeoutError(
                    run_id, self._config.calculation_timeout_ms, elapsed_ms()
                )

        # 1. Licenses active in the period
        licenses = LicensingSelector(session).active_licenses(
            run.period_start, run.period_end
        )

        # 2. Revenue and ownership allocation per license
        results: list[LicenseResult] = []
        for result in self._compute_licenses(licenses, run.period_start, run.period_end):
            check_deadline()
            if result is not None:
                results.append(result)

        # 3. Aggregate per creator, remembering pre/post rounding values
        earnings: dict[UUID, _CreatorEarnings] = {}
        pre_rounded: list[Decimal] = []
        post_rounded: list[int] = []
        for result in results:
            for allocation in result.allocations:
                entry = earnings.setdefault(
                    allocation.creator_id,
                    _CreatorEarnings(allocation.creator_id),
                )
                entry.total_cents += allocation.amount_cents
                entry.items.append((result, allocation))
                pre_rounded.append(allocation.exact_cents)
                post_rounded.append(allocation.amount_cents)

        # 4. Statements with carryover and threshold policy
        creator_ids = sorted(earnings)
        creators = LicensingSelector(session).get_creators(creator_ids)
        carryovers = StatementSelector(session).unpaid_carryover(
            creator_ids, before=run.period_start
        )
        writer = LedgerWriter(session)
        for creator_id in creator_ids:
            check_deadline()
            self._write_statement(
                session,
                writer,
                run,
                earnings[creator_id],
                creators.get(creator_id),
                carryovers.get(creator_id),
                actor_id,
            )

        # 5. Run totals, notes and status
        total_revenue = sum(r.revenue.total_revenue_cents for r in results)
        period_royalties = sum(e.total_cents for e in earnings.values())
        run.total_revenue_cents = total_revenue
        run.status = RunStatus.CALCULATED.value
        run.processed_at = self._clock.now()
        run.updated_by_id = actor_id
        run.append_note(
            f"Calculation completed: {len(creator_ids)} creators, "
            f"{len(results)} licenses, {format_cents(total_revenue)} revenue, "
            f"{format_cents(period_royalties)} royalties"
        )
        run.append_note(
            f"Configuration {self._config.config_id} v{self._config.config_version} "
            f"(checksum {self._config.checksum[:12] or 'n/a'})"
        )

        reconciliation = calculate_rounding_reconciliation(pre_rounded, post_rounded)
        if not is_rounding_within_tolerance(
            reconciliation, self._config.rounding_tolerance_cents
        ):
            run.append_note(
                f"Warning: rounding difference of "
                f"{reconciliation.rounding_difference} cents across "
                f"{reconciliation.item_count} allocations exceeds tolerance"
            )
            logger.warning(
                "rounding_tolerance_exceeded",
                extra={
                    "rounding_difference": reconciliation.rounding_difference,
                    "item_count": reconciliation.item_count,
                    "tolerance_cents": self._config.rounding_tolerance_cents,
                },
            )
        session.flush()

        self._record(
            "royalty.run.calculated",
            run.id,
            actor_id,
            before={"status": RunStatus.DRAFT.value},
            after={
                "status": RunStatus.CALCULATED.value,
                "statement_count": len(creator_ids),
                "license_count": len(results),
                "total_revenue_cents": total_revenue,
                "total_royalties_cents": run.total_royalties_cents,
            },
        )
        return RunInfo.from_model(run)

    def _compute_licenses(
        self,
        licenses: list[LicenseSnapshot],
        period_start: date,
        period_end: date,
    ) -> Iterator[LicenseResult | None]:
        """Yield a LicenseResult (or None for zero revenue) per license, in order."""

        def compute(license: LicenseSnapshot) -> LicenseResult | None:
            revenue = self._aggregator.aggregate(license, period_start, period_end)
            if revenue.total_revenue_cents == 0:
                logger.debug(
                    "license_skipped_zero_revenue",
                    extra={"license_id": str(license.id)},
                )
                return None
            allocations = self._splitter.allocate(
                revenue.total_revenue_cents, license.ip_asset, license.ownerships
            )
            return LicenseResult(license, revenue, tuple(allocations))

        workers = self._config.calculation_workers
        if workers <= 1 or len(licenses) <= 1:
            for license in licenses:
                yield compute(license)
            return

        with ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="royalty-calc"
        ) as pool:
            yield from pool.map(compute, licenses)

    def _write_statement(
        self,
        session: Session,
        writer: LedgerWriter,
        run: RoyaltyRun,
        earnings: _CreatorEarnings,
        creator: CreatorInfo | None,
        carryover: CarryoverBalance | None,
        actor_id: UUID,
    ) -> RoyaltyStatement:
        carryover_cents = carryover.amount_cents if carryover else 0
        threshold = self._config.threshold_for(bool(creator and creator.is_vip))
        balance = calculate_accumulated_balance(
            carryover_cents, earnings.total_cents, threshold
        )
        held = not balance.should_payout

        statement = writer.open_statement(
            run,
            earnings.creator_id,
            actor_id,
            status=StatementStatus.REVIEWED if held else StatementStatus.PENDING,
            payout_held=held,
        )

        for result, allocation in earnings.items:
            revenue = result.revenue
            writer.append_line(
                statement,
                LicenseLine(result.license.id, result.license.ip_asset_id),
                allocation.amount_cents,
                actor_id,
                revenue_cents=revenue.total_revenue_cents,
                share_bps=allocation.share_bps,
                description=(
                    f"Original creator share of {result.license.ip_asset.title}"
                    if allocation.is_original_creator
                    else f"Royalty for {result.license.ip_asset.title}"
                ),
                details={
                    "license_type": result.license.license_type,
                    "flat_fee_cents": revenue.flat_fee_cents,
                    "usage_revenue_cents": revenue.usage_revenue_cents,
                    "days_active": revenue.days_active,
                    "total_days": revenue.total_days,
                    "prorated": revenue.prorated,
                    "exact_royalty_cents": str(allocation.exact_cents),
                    "is_original_creator": allocation.is_original_creator,
                },
            )

        if carryover_cents > 0:
            writer.append_line(
                statement,
                Carryover(),
                carryover_cents,
                actor_id,
                description="Unpaid balance carried forward from previous periods",
                details={
                    "source_statement_ids": [str(s) for s in carryover.statement_ids],
                },
            )
            for source_id in carryover.statement_ids:
                source = session.get(RoyaltyStatement, source_id)
                source.carried_forward_to_id = statement.id
                source.updated_by_id = actor_id

        if held:
            writer.append_line(
                statement,
                ThresholdNote(),
                0,
                actor_id,
                description=(
                    "Total earnings below minimum payout threshold of "
                    f"{format_cents(threshold)}. "
                    "Balance will carry forward to next period."
                ),
                details={
                    "threshold_cents": threshold,
                    "accumulated_cents": balance.total_accumulated_cents,
                    "is_vip": bool(creator and creator.is_vip),
                },
            )

        logger.debug(
            "statement_written",
            extra={
                "statement_id": str(statement.id),
                "creator_id": str(earnings.creator_id),
                "period_cents": earnings.total_cents,
                "carryover_cents": carryover_cents,
                "payout_held": held,
            },
        )
        return statement

    def _mark_failed(self, run_id: UUID, actor_id: UUID, exc: Exception) -> None:
        """Record the failure in its own transaction; the calculation was rolled back."""
        logger.error(
            "run_calculation_failed",
            extra={
                "run_id": str(run_id),
                "error_type": type(exc).__name__,
                "error": str(exc),
            },
        )
        try:
            with self._uow.begin("mark_run_failed") as txn:
                run = txn.session.get(RoyaltyRun, run_id)
                if run is None or not run.can_transition_to(RunStatus.FAILED):
                    return
                previous = run.status
                run.status = RunStatus.FAILED.value
                run.updated_by_id = actor_id
                run.append_note(f"Calculation failed: {exc}")
                self._record(
                    "royalty.run.failed",
                    run.id,
                    actor_id,
                    before={"status": previous},
                    after={"status": RunStatus.FAILED.value, "error": str(exc)},
                )
        except Exception:
            logger.exception("run_failure_not_recorded", extra={"run_id": str(run_id)})
        self._cache.invalidate(run_cache_key(run_id))

    # ------------------------------------------------------------------
    # Lock, payout bookkeeping, rollback
    # ------------------------------------------------------------------

    def lock_run(self, run_id: UUID, actor_id: UUID) -> RunInfo:
        """
        Lock a CALCULATED run.  Locked runs reject adjustments and corrections.

        Raises:
            InvalidStateError: run is not CALCULATED.
            UnresolvedDisputesError: a statement is still DISPUTED.
            LedgerIntegrityError: totals do not match the ledger lines.
        """
        with self._uow.begin("lock_run") as txn:
            session = txn.session
            run = self._get_run_for_update(session, run_id)
            self._require_status(run, RunStatus.CALCULATED, "lock")

            disputed = StatementSelector(session).disputed_count(run.id)
            if disputed:
                raise UnresolvedDisputesError(str(run_id), disputed)

            verification = self._verify(run)
            if not verification.is_valid:
                raise LedgerIntegrityError(str(run_id), list(verification.errors))

            now = self._clock.now()
            run.status = RunStatus.LOCKED.value
            run.locked_at = now
            run.locked_by_id = actor_id
            run.updated_by_id = actor_id
            session.flush()

            self._record(
                "royalty.run.locked",
                run.id,
                actor_id,
                before={"status": RunStatus.CALCULATED.value},
                after={"status": RunStatus.LOCKED.value, "locked_at": now.isoformat()},
            )
            info = RunInfo.from_model(run)

        self._cache.invalidate(run_cache_key(run_id))
        logger.info("run_locked", extra={"run_id": str(run_id), "actor_id": str(actor_id)})
        return info

    def begin_processing(self, run_id: UUID, actor_id: UUID) -> RunInfo:
        """Record that payout processing started for a LOCKED run."""
        with self._uow.begin("begin_processing") as txn:
            run = self._get_run_for_update(txn.session, run_id)
            self._require_status(run, RunStatus.LOCKED, "begin processing")
            run.status = RunStatus.PROCESSING.value
            run.updated_by_id = actor_id
            txn.session.flush()
            self._record(
                "royalty.run.processing",
                run.id,
                actor_id,
                before={"status": RunStatus.LOCKED.value},
                after={"status": RunStatus.PROCESSING.value},
            )
            info = RunInfo.from_model(run)

        self._cache.invalidate(run_cache_key(run_id))
        logger.info("run_processing_started", extra={"run_id": str(run_id)})
        return info

    def complete_run(self, run_id: UUID, actor_id: UUID) -> RunInfo:
        """
        Mark a PROCESSING run COMPLETED and its paid statements PAID.

        Held statements are not paid; they stay unpaid so their balance
        carries into the next run.  Statements already absorbed by a later
        run's carryover are not paid here either.
        """
        with self._uow.begin("complete_run") as txn:
            session = txn.session
            run = self._get_run_for_update(session, run_id)
            self._require_status(run, RunStatus.PROCESSING, "complete")

            now = self._clock.now()
            paid = 0
            for statement in run.statements:
                status = StatementStatus(statement.status)
                if statement.payout_held or statement.carried_forward_to_id is not None:
                    continue
                if status in (
                    StatementStatus.PENDING,
                    StatementStatus.REVIEWED,
                    StatementStatus.RESOLVED,
                ):
                    statement.status = StatementStatus.PAID.value
                    statement.paid_at = now
                    statement.updated_by_id = actor_id
                    paid += 1

            run.status = RunStatus.COMPLETED.value
            run.completed_at = now
            run.updated_by_id = actor_id
            run.append_note(f"Payout recorded for {paid} statements")
            session.flush()

            self._record(
                "royalty.run.completed",
                run.id,
                actor_id,
                before={"status": RunStatus.PROCESSING.value},
                after={"status": RunStatus.COMPLETED.value, "paid_statements": paid},
            )
            info = RunInfo.from_model(run)
            statement_ids = [s.id for s in run.statements]

        self._invalidate_run_views(run_id, statement_ids)
        logger.info(
            "run_completed", extra={"run_id": str(run_id), "paid_statements": paid}
        )
        return info

    def rollback_run(self, run_id: UUID, actor_id: UUID, reason: str) -> RunInfo:
        """
        Discard a run's statements and return it to DRAFT.

        A RunRollbackRecord keeps the prior status, totals and a
        per-statement snapshot.  Statements this run absorbed as carryover
        become unpaid balances again.

        Raises:
            AlreadyPaidError: payout processing began or a statement is PAID.
            RunCarriedForwardError: a later run absorbed some of its statements
                as carryover; that run must be rolled back first.
            InvalidStateError: the run is already DRAFT.
        """
        with self._uow.begin("rollback_run") as txn:
            session = txn.session
            run = self._get_run_for_update(session, run_id)

            paid = sum(
                1 for s in run.statements
                if StatementStatus(s.status) == StatementStatus.PAID
            )
            if run.payout_started or paid:
                raise AlreadyPaidError(str(run_id), run.status, paid_statements=paid)
            if not run.can_transition_to(RunStatus.DRAFT):
                raise InvalidStateError(
                    "RoyaltyRun",
                    str(run_id),
                    run.status,
                    (RunStatus.CALCULATED, RunStatus.LOCKED, RunStatus.FAILED),
                    action="roll back",
                )

            carried = [
                s.carried_forward_to_id
                for s in run.statements
                if s.carried_forward_to_id is not None
            ]
            if carried:
                absorbing_runs = session.scalars(
                    select(RoyaltyStatement.run_id)
                    .where(RoyaltyStatement.id.in_(carried))
                    .distinct()
                ).all()
                raise RunCarriedForwardError(
                    str(run_id), run.status, sorted(str(r) for r in absorbing_runs)
                )

            previous_status = run.status
            snapshot = [
                {
                    "statement_id": str(s.id),
                    "creator_id": str(s.creator_id),
                    "status": StatementStatus(s.status).value,
                    "total_earnings_cents": s.total_earnings_cents,
                    "line_count": len(s.lines),
                }
                for s in run.statements
            ]
            line_count = sum(len(s.lines) for s in run.statements)
            statement_ids = [s.id for s in run.statements]
            now = self._clock.now()

            session.add(
                RunRollbackRecord(
                    run_id=run.id,
                    rolled_back_at=now,
                    reason=reason,
                    previous_status=RunStatus(previous_status).value,
                    previous_total_revenue_cents=run.total_revenue_cents,
                    previous_total_royalties_cents=run.total_royalties_cents,
                    statement_count=len(snapshot),
                    line_count=line_count,
                    snapshot={"statements": snapshot},
                    created_by_id=actor_id,
                )
            )

            if statement_ids:
                absorbed = session.scalars(
                    select(RoyaltyStatement).where(
                        RoyaltyStatement.carried_forward_to_id.in_(statement_ids)
                    )
                ).all()
                for source in absorbed:
                    source.carried_forward_to_id = None
                    source.updated_by_id = actor_id
                session.flush()

            run.statements.clear()
            run.status = RunStatus.DRAFT.value
            run.total_revenue_cents = 0
            run.total_royalties_cents = 0
            run.locked_at = None
            run.locked_by_id = None
            run.processed_at = None
            run.updated_by_id = actor_id
            run.append_note(f"Rolled back from {RunStatus(previous_status).value}: {reason}")
            session.flush()

            self._record(
                "royalty.run.rolled_back",
                run.id,
                actor_id,
                before={
                    "status": RunStatus(previous_status).value,
                    "statement_count": len(snapshot),
                    "line_count": line_count,
                },
                after={"status": RunStatus.DRAFT.value, "reason": reason},
            )
            info = RunInfo.from_model(run)

        self._invalidate_run_views(run_id, statement_ids)
        logger.info(
            "run_rolled_back",
            extra={
                "run_id": str(run_id),
                "previous_status": RunStatus(previous_status).value,
                "statement_count": len(statement_ids),
            },
        )
        return info

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify_run(self, run_id: UUID) -> RunVerification:
        """Check statement totals against their lines and the run total."""
        with self._uow.begin("verify_run") as txn:
            run = txn.session.get(RoyaltyRun, run_id)
            if run is None:
                raise RunNotFoundError(str(run_id))
            verification = self._verify(run)
            txn.rollback()
        if not verification.is_valid:
            logger.warning(
                "run_verification_failed",
                extra={"run_id": str(run_id), "errors": list(verification.errors)},
            )
        return verification

    @staticmethod
    def _verify(run: RoyaltyRun) -> RunVerification:
        errors: list[str] = []
        line_count = 0
        statements_total = 0
        for statement in run.statements:
            lines_total = sum(line.calculated_royalty_cents for line in statement.lines)
            line_count += len(statement.lines)
            statements_total += statement.total_earnings_cents
            if lines_total != statement.total_earnings_cents:
                errors.append(
                    f"statement {statement.id}: lines sum to {lines_total} cents, "
                    f"total is {statement.total_earnings_cents}"
                )
        if statements_total != run.total_royalties_cents:
            errors.append(
                f"run {run.id}: statements sum to {statements_total} cents, "
                f"total_royalties_cents is {run.total_royalties_cents}"
            )
        return RunVerification(
            run_id=run.id,
            statement_count=len(run.statements),
            line_count=line_count,
            errors=tuple(errors),
        )

    # ------------------------------------------------------------------
    # Direct adjustment and scope validation
    # ------------------------------------------------------------------

    def apply_adjustment(
        self,
        statement_id: UUID,
        amount_cents: int,
        adjustment_type: AdjustmentType | str,
        reason: str,
        actor_id: UUID,
    ) -> AdjustmentInfo:
        """
        Apply a small adjustment immediately, without the approval queue.

        Raises:
            StatementNotFoundError: unknown statement.
            RunLockedError: the run is locked.
            StatementCarriedForwardError: a later run absorbed the statement.
            ApprovalRequiredError: amount at or above the approval ceiling;
                use RoyaltyAdjustmentService.request_adjustment instead.
            InvalidAdjustmentError: type, sign or reason is invalid.
        """
        adjustment_type = validate_adjustment_request(adjustment_type, amount_cents, reason)
        if self._config.requires_approval(amount_cents):
            raise ApprovalRequiredError(
                amount_cents, self._config.adjustment_approval_threshold_cents
            )

        with self._uow.begin("apply_adjustment") as txn:
            session = txn.session
            statement = session.get(RoyaltyStatement, statement_id, with_for_update=True)
            if statement is None:
                raise StatementNotFoundError(str(statement_id))
            run = statement.run
            if run.is_locked:
                raise RunLockedError(str(run.id), run.status, action="adjust statement")

            before_total = statement.total_earnings_cents
            line = LedgerWriter(session).append_line(
                statement,
                ManualAdjustment(adjustment_type, ApprovalState.APPLIED),
                amount_cents,
                actor_id,
                description=f"{adjustment_type.value.title()} adjustment",
                reason=reason,
                requested_by_id=actor_id,
                details={"applied_at": self._clock.now().isoformat()},
            )
            self._record(
                "royalty.statement.adjusted",
                statement.id,
                actor_id,
                entity_type="RoyaltyStatement",
                before={"total_earnings_cents": before_total},
                after={
                    "total_earnings_cents": statement.total_earnings_cents,
                    "adjustment_id": str(line.id),
                    "adjustment_type": adjustment_type.value,
                    "amount_cents": amount_cents,
                },
            )
            info = AdjustmentInfo.from_model(line)
            run_id = run.id

        self._invalidate_run_views(run_id, [statement_id])
        logger.info(
            "adjustment_applied_directly",
            extra={
                "statement_id": str(statement_id),
                "adjustment_id": str(info.id),
                "amount_cents": amount_cents,
            },
        )
        return info

    def validate_license_scope(
        self, license_id: UUID, usage: ReportedUsage
    ) -> ScopeValidationResult:
        """Check reported usage against the scope recorded on a license."""
        with self._uow.begin("validate_license_scope") as txn:
            license = txn.session.get(License, license_id)
            if license is None:
                raise NotFoundError(f"License not found: {license_id}")
            scope = parse_license_scope(license.scope)
            txn.rollback()

        result = validate_scope_compliance(scope, usage)
        if not result.is_valid:
            logger.warning(
                "license_scope_violations",
                extra={
                    "license_id": str(license_id),
                    "violations": [v.message for v in result.violations],
                },
            )
        return result

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_run(self, run_id: UUID) -> RunInfo:
        with self._uow.begin("get_run") as txn:
            info = RunSelector(txn.session).get_run(run_id)
            txn.rollback()
        if info is None:
            raise RunNotFoundError(str(run_id))
        return info

    def list_runs(self, status: RunStatus | None = None) -> list[RunInfo]:
        with self._uow.begin("list_runs") as txn:
            runs = RunSelector(txn.session).list_runs(status)
            txn.rollback()
        return runs

    def rollback_history(self, run_id: UUID) -> list[RollbackInfo]:
        with self._uow.begin("rollback_history") as txn:
            history = RunSelector(txn.session).rollback_history(run_id)
            txn.rollback()
        return history

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _get_run_for_update(session: Session, run_id: UUID) -> RoyaltyRun:
        run = session.get(RoyaltyRun, run_id, with_for_update=True)
        if run is None:
            raise RunNotFoundError(str(run_id))
        return run

    @staticmethod
    def _require_status(run: RoyaltyRun, expected: RunStatus, action: str) -> None:
        if RunStatus(run.status) != expected:
            raise InvalidStateError(
                "RoyaltyRun", str(run.id), run.status, (expected,), action=action
            )

    def _record(
        self,
        action: str,
        entity_id: UUID,
        actor_id: UUID,
        *,
        entity_type: str = "RoyaltyRun",
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
    ) -> None:
        self._audit.log(
            AuditRecord(
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                actor_id=actor_id,
                occurred_at=self._clock.now(),
                before=before or {},
                after=after or {},
            )
        )

    def _invalidate_run_views(self, run_id: UUID, statement_ids: list[UUID]) -> None:
        self._cache.invalidate(run_cache_key(run_id))
        for statement_id in statement_ids:
            self._cache.invalidate(statement_cache_key(statement_id))
