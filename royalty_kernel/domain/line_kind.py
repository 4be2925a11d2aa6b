"""
Line kinds -- closed tagged union over royalty ledger lines.

Responsibility:
    Every RoyaltyLine is exactly one of six kinds.  Each kind is a frozen
    dataclass carrying only the typed data that kind needs, so a LICENSE
    line cannot carry an approval state and a reversal cannot exist without
    the line it reverses.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  db/immutability.py calls
    ``validate_line_columns`` before every line INSERT; DTOs expose the
    decoded variant as ``LineInfo.line_kind``.

Invariants enforced:
    - Columns outside a kind's variant are NULL.
    - MANUAL_ADJUSTMENT lines always carry an adjustment type and an
      approval state; ADJUSTMENT_REVERSAL lines always name the original.

Failure modes:
    - InvalidLineKindError from ``from_columns`` when the stored columns
      contradict the kind.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union
from uuid import UUID

from royalty_kernel.domain.values import AdjustmentType, ApprovalState, LineKind
from royalty_kernel.exceptions import InvalidLineKindError


@dataclass(frozen=True)
class LicenseLine:
    """Royalty derived from one license's revenue."""

    license_id: UUID
    ip_asset_id: UUID


@dataclass(frozen=True)
class Carryover:
    """Unpaid balance absorbed from earlier statements."""


@dataclass(frozen=True)
class ThresholdNote:
    """Zero-amount marker recording that payout was withheld."""


@dataclass(frozen=True)
class ManualAdjustment:
    adjustment_type: AdjustmentType
    approval_state: ApprovalState


@dataclass(frozen=True)
class AdjustmentReversal:
    original_id: UUID


@dataclass(frozen=True)
class DisputeResolution:
    """Signed correction attached when a dispute is resolved."""


LineKindData = Union[
    LicenseLine,
    Carryover,
    ThresholdNote,
    ManualAdjustment,
    AdjustmentReversal,
    DisputeResolution,
]

_KIND_BY_TYPE: dict[type, LineKind] = {
    LicenseLine: LineKind.LICENSE,
    Carryover: LineKind.CARRYOVER,
    ThresholdNote: LineKind.THRESHOLD_NOTE,
    ManualAdjustment: LineKind.MANUAL_ADJUSTMENT,
    AdjustmentReversal: LineKind.ADJUSTMENT_REVERSAL,
    DisputeResolution: LineKind.DISPUTE_RESOLUTION,
}

# Typed columns each kind is allowed (and required) to set.
_KIND_COLUMNS: dict[LineKind, frozenset[str]] = {
    LineKind.LICENSE: frozenset({"license_id", "ip_asset_id"}),
    LineKind.CARRYOVER: frozenset(),
    LineKind.THRESHOLD_NOTE: frozenset(),
    LineKind.MANUAL_ADJUSTMENT: frozenset({"adjustment_type", "approval_state"}),
    LineKind.ADJUSTMENT_REVERSAL: frozenset({"reversal_of_id"}),
    LineKind.DISPUTE_RESOLUTION: frozenset(),
}

TYPED_COLUMNS: tuple[str, ...] = (
    "license_id",
    "ip_asset_id",
    "adjustment_type",
    "approval_state",
    "reversal_of_id",
)


def kind_of(data: LineKindData) -> LineKind:
    return _KIND_BY_TYPE[type(data)]


def line_columns(data: LineKindData) -> dict[str, Any]:
    """
    Flatten a variant into RoyaltyLine column values.

    Returns the ``kind`` plus every typed column, None where the variant
    does not use it.
    """
    columns: dict[str, Any] = {name: None for name in TYPED_COLUMNS}
    columns["kind"] = kind_of(data)
    if isinstance(data, LicenseLine):
        columns["license_id"] = data.license_id
        columns["ip_asset_id"] = data.ip_asset_id
    elif isinstance(data, ManualAdjustment):
        columns["adjustment_type"] = data.adjustment_type
        columns["approval_state"] = data.approval_state
    elif isinstance(data, AdjustmentReversal):
        columns["reversal_of_id"] = data.original_id
    return columns


def validate_line_columns(kind: LineKind | str, columns: dict[str, Any]) -> list[str]:
    """Return every way ``columns`` contradicts ``kind`` (empty when valid)."""
    try:
        line_kind = LineKind(kind)
    except ValueError:
        return [f"unknown line kind {kind!r}"]

    errors: list[str] = []
    allowed = _KIND_COLUMNS[line_kind]
    for name in TYPED_COLUMNS:
        present = columns.get(name) is not None
        if name in allowed and not present:
            errors.append(f"{name} is required")
        elif name not in allowed and present:
            errors.append(f"{name} must be empty")

    if line_kind == LineKind.MANUAL_ADJUSTMENT and not errors:
        try:
            AdjustmentType(columns["adjustment_type"])
        except ValueError:
            errors.append(f"unknown adjustment type {columns['adjustment_type']!r}")
        try:
            ApprovalState(columns["approval_state"])
        except ValueError:
            errors.append(f"unknown approval state {columns['approval_state']!r}")
    return errors


def from_columns(kind: LineKind | str, columns: dict[str, Any]) -> LineKindData:
    """Decode stored columns into the variant for ``kind``."""
    errors = validate_line_columns(kind, columns)
    if errors:
        raise InvalidLineKindError(kind, errors)

    line_kind = LineKind(kind)
    if line_kind == LineKind.LICENSE:
        return LicenseLine(columns["license_id"], columns["ip_asset_id"])
    if line_kind == LineKind.MANUAL_ADJUSTMENT:
        return ManualAdjustment(
            AdjustmentType(columns["adjustment_type"]),
            ApprovalState(columns["approval_state"]),
        )
    if line_kind == LineKind.ADJUSTMENT_REVERSAL:
        return AdjustmentReversal(columns["reversal_of_id"])
    if line_kind == LineKind.CARRYOVER:
        return Carryover()
    if line_kind == LineKind.THRESHOLD_NOTE:
        return ThresholdNote()
    return DisputeResolution()
