"""
DTOs -- Typed read models for the royalty engine.

Responsibility:
    Immutable data structures returned by selectors and services in place of
    raw ORM rows: runs, statements, lines, adjustments, licenses with their
    ownerships, revenue breakdowns and verification results.

Architecture position:
    Kernel > Domain -- pure, zero I/O.
    from_model() class methods are boundary converters invoked from the
    selector and service layers (never from engine logic).

Invariants enforced:
    - Statuses and kinds are converted to their enums at the boundary, so a
      DTO never carries an unknown status string.
    - ``details`` and ``scope`` mappings are copied and frozen.

Audit relevance:
    Statement DTOs carry their lines in sequence order; auditors can check
    that total_earnings_cents equals the sum of line amounts from the DTO
    alone.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Mapping
from uuid import UUID

from royalty_kernel.domain.line_kind import LineKindData, TYPED_COLUMNS, from_columns
from royalty_kernel.domain.values import (
    AdjustmentType,
    ApprovalState,
    LicenseStatus,
    LineKind,
    RunStatus,
    StatementStatus,
)

if TYPE_CHECKING:
    from royalty_kernel.models.licensing import Creator, IpAsset, IpOwnership, License
    from royalty_kernel.models.royalty_line import RoyaltyLine
    from royalty_kernel.models.royalty_run import RoyaltyRun
    from royalty_kernel.models.royalty_statement import RoyaltyStatement
    from royalty_kernel.models.run_rollback import RunRollbackRecord


def _freeze(mapping: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class RunInfo:
    id: UUID
    period_start: date
    period_end: date
    status: RunStatus
    total_revenue_cents: int
    total_royalties_cents: int
    notes: str | None
    created_by_id: UUID
    locked_at: datetime | None = None
    locked_by_id: UUID | None = None
    processed_at: datetime | None = None
    completed_at: datetime | None = None
    statement_count: int = 0

    @classmethod
    def from_model(cls, model: RoyaltyRun) -> RunInfo:
        return cls(
            id=model.id,
            period_start=model.period_start,
            period_end=model.period_end,
            status=RunStatus(model.status),
            total_revenue_cents=model.total_revenue_cents,
            total_royalties_cents=model.total_royalties_cents,
            notes=model.notes,
            created_by_id=model.created_by_id,
            locked_at=model.locked_at,
            locked_by_id=model.locked_by_id,
            processed_at=model.processed_at,
            completed_at=model.completed_at,
            statement_count=len(model.statements),
        )


@dataclass(frozen=True)
class LineInfo:
    """
    One ledger line with its kind decoded.

    ``line_kind`` is the tagged-union variant; ``kind`` is kept alongside
    it for filtering and display.
    """

    id: UUID
    statement_id: UUID
    sequence: int
    kind: LineKind
    line_kind: LineKindData
    revenue_cents: int
    share_bps: int
    calculated_royalty_cents: int
    period_start: date
    period_end: date
    description: str | None = None
    details: Mapping[str, Any] = field(default_factory=lambda: _freeze(None))

    @classmethod
    def from_model(cls, model: RoyaltyLine) -> LineInfo:
        columns = {name: getattr(model, name) for name in TYPED_COLUMNS}
        return cls(
            id=model.id,
            statement_id=model.statement_id,
            sequence=model.sequence,
            kind=LineKind(model.kind),
            line_kind=from_columns(model.kind, columns),
            revenue_cents=model.revenue_cents,
            share_bps=model.share_bps,
            calculated_royalty_cents=model.calculated_royalty_cents,
            period_start=model.period_start,
            period_end=model.period_end,
            description=model.description,
            details=_freeze(model.details),
        )


@dataclass(frozen=True)
class StatementInfo:
    id: UUID
    run_id: UUID
    creator_id: UUID
    total_earnings_cents: int
    status: StatementStatus
    payout_held: bool
    reviewed_at: datetime | None = None
    disputed_at: datetime | None = None
    dispute_reason: str | None = None
    resolved_at: datetime | None = None
    resolution: str | None = None
    paid_at: datetime | None = None
    carried_forward_to_id: UUID | None = None
    lines: tuple[LineInfo, ...] = ()

    @property
    def lines_total_cents(self) -> int:
        return sum(line.calculated_royalty_cents for line in self.lines)

    @classmethod
    def from_model(
        cls, model: RoyaltyStatement, include_lines: bool = True
    ) -> StatementInfo:
        lines: tuple[LineInfo, ...] = ()
        if include_lines:
            lines = tuple(LineInfo.from_model(line) for line in model.lines)
        return cls(
            id=model.id,
            run_id=model.run_id,
            creator_id=model.creator_id,
            total_earnings_cents=model.total_earnings_cents,
            status=StatementStatus(model.status),
            payout_held=model.payout_held,
            reviewed_at=model.reviewed_at,
            disputed_at=model.disputed_at,
            dispute_reason=model.dispute_reason,
            resolved_at=model.resolved_at,
            resolution=model.resolution,
            paid_at=model.paid_at,
            carried_forward_to_id=model.carried_forward_to_id,
            lines=lines,
        )


@dataclass(frozen=True)
class AdjustmentInfo:
    """
    A MANUAL_ADJUSTMENT line viewed as an adjustment.

    ``amount_cents`` is the requested signed amount; ``applied_cents`` is
    what currently counts toward the statement total on this line.
    """

    id: UUID
    statement_id: UUID
    adjustment_type: AdjustmentType
    approval_state: ApprovalState
    amount_cents: int
    applied_cents: int
    reason: str | None
    requested_by_id: UUID | None
    decided_by_id: UUID | None = None
    decided_at: datetime | None = None
    decision_note: str | None = None
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, model: RoyaltyLine) -> AdjustmentInfo:
        amount = model.pending_amount_cents
        if amount is None:
            amount = model.calculated_royalty_cents
        return cls(
            id=model.id,
            statement_id=model.statement_id,
            adjustment_type=AdjustmentType(model.adjustment_type),
            approval_state=ApprovalState(model.approval_state),
            amount_cents=amount,
            applied_cents=model.calculated_royalty_cents,
            reason=model.reason,
            requested_by_id=model.requested_by_id,
            decided_by_id=model.decided_by_id,
            decided_at=model.decided_at,
            decision_note=model.decision_note,
            created_at=model.created_at,
        )


@dataclass(frozen=True)
class OwnershipShare:
    creator_id: UUID
    share_bps: int

    @classmethod
    def from_model(cls, model: IpOwnership) -> OwnershipShare:
        return cls(creator_id=model.creator_id, share_bps=model.share_bps)


@dataclass(frozen=True)
class AssetInfo:
    """Derivative metadata of the licensed asset."""

    id: UUID
    title: str
    is_derivative: bool = False
    parent_asset_id: UUID | None = None
    derivative_level: int = 0
    original_creator_id: UUID | None = None
    original_creator_share_bps: int | None = None

    @classmethod
    def from_model(cls, model: IpAsset) -> AssetInfo:
        return cls(
            id=model.id,
            title=model.title,
            is_derivative=model.is_derivative,
            parent_asset_id=model.parent_asset_id,
            derivative_level=model.derivative_level,
            original_creator_id=model.original_creator_id,
            original_creator_share_bps=model.original_creator_share_bps,
        )


@dataclass(frozen=True)
class LicenseSnapshot:
    """
    A license active in a period, with the ownerships active in that period.

    Contract:
        Produced by LicenseSelector.active_licenses(); ownerships are
        already filtered to the period and ordered by creator id.
    """

    id: UUID
    ip_asset: AssetInfo
    status: LicenseStatus
    license_type: str
    start_date: date
    end_date: date
    fee_cents: int
    rev_share_bps: int
    scope: Mapping[str, Any] = field(default_factory=lambda: _freeze(None))
    ownerships: tuple[OwnershipShare, ...] = ()

    @property
    def ip_asset_id(self) -> UUID:
        return self.ip_asset.id

    @classmethod
    def from_model(
        cls, model: License, ownerships: list[IpOwnership]
    ) -> LicenseSnapshot:
        return cls(
            id=model.id,
            ip_asset=AssetInfo.from_model(model.ip_asset),
            status=LicenseStatus(model.status),
            license_type=model.license_type,
            start_date=model.start_date,
            end_date=model.end_date,
            fee_cents=model.fee_cents,
            rev_share_bps=model.rev_share_bps,
            scope=_freeze(model.scope),
            ownerships=tuple(OwnershipShare.from_model(o) for o in ownerships),
        )


@dataclass(frozen=True)
class RevenueBreakdown:
    """Chargeable revenue of one license in one period."""

    license_id: UUID
    total_revenue_cents: int
    flat_fee_cents: int
    usage_revenue_cents: int
    days_active: int
    total_days: int
    prorated: bool


@dataclass(frozen=True)
class CarryoverBalance:
    """Unpaid balance a creator brings into a new run."""

    creator_id: UUID
    amount_cents: int
    statement_ids: tuple[UUID, ...] = ()


@dataclass(frozen=True)
class OverdueDispute:
    statement_id: UUID
    run_id: UUID
    creator_id: UUID
    disputed_at: datetime
    days_open: int


@dataclass(frozen=True)
class RunVerification:
    """Outcome of checking a run's totals against its ledger lines."""

    run_id: UUID
    statement_count: int
    line_count: int
    errors: tuple[str, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class BatchAdjustmentFailure:
    index: int
    statement_id: UUID
    error_code: str
    message: str


@dataclass(frozen=True)
class BatchAdjustmentResult:
    succeeded: tuple[AdjustmentInfo, ...] = ()
    failed: tuple[BatchAdjustmentFailure, ...] = ()

    @property
    def all_succeeded(self) -> bool:
        return not self.failed


@dataclass(frozen=True)
class CreatorInfo:
    id: UUID
    display_name: str
    email: str | None
    is_vip: bool
    statement_emails_enabled: bool
    is_admin: bool = False

    @classmethod
    def from_model(cls, model: Creator) -> CreatorInfo:
        return cls(
            id=model.id,
            display_name=model.display_name,
            email=model.email,
            is_vip=model.is_vip,
            statement_emails_enabled=model.statement_emails_enabled,
            is_admin=model.is_admin,
        )


@dataclass(frozen=True)
class RollbackInfo:
    id: UUID
    run_id: UUID
    rolled_back_at: datetime
    rolled_back_by_id: UUID
    reason: str
    previous_status: RunStatus
    previous_total_revenue_cents: int
    previous_total_royalties_cents: int
    statement_count: int
    line_count: int

    @classmethod
    def from_model(cls, model: RunRollbackRecord) -> RollbackInfo:
        return cls(
            id=model.id,
            run_id=model.run_id,
            rolled_back_at=model.rolled_back_at,
            rolled_back_by_id=model.created_by_id,
            reason=model.reason,
            previous_status=RunStatus(model.previous_status),
            previous_total_revenue_cents=model.previous_total_revenue_cents,
            previous_total_royalties_cents=model.previous_total_royalties_cents,
            statement_count=model.statement_count,
            line_count=model.line_count,
        )
