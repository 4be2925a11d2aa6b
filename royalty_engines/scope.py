"""
Module: royalty_engines.scope
Responsibility:
    Interpret the scope JSON stored on a license: parse it into a typed
    LicenseScope, check reported usage against it, price the exclusivity
    premium, allocate revenue across scope categories, and summarise or
    merge scopes for display and amendments.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - allocate_revenue_by_scope_category conserves cents exactly.
    - Parsing accepts both camelCase and snake_case keys; the licensing
      system has written both over time.

Failure modes:
    - ValueError when category percentages do not sum to 100.
    - Unparseable time restrictions are treated as absent.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

from royalty_engines.financial import BPS_DENOMINATOR, round_amount
from royalty_kernel.domain.values import RoundingMethod

APPROACHING_LIMIT_RATIO = Decimal("0.9")


class ViolationType(str, Enum):
    MEDIA_TYPE = "MEDIA_TYPE"
    GEOGRAPHY = "GEOGRAPHY"
    CHANNEL = "CHANNEL"
    USAGE_LIMIT = "USAGE_LIMIT"
    CUTDOWN = "CUTDOWN"
    TIME_RESTRICTION = "TIME_RESTRICTION"


class Severity(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


@dataclass(frozen=True)
class Exclusivity:
    exclusive: bool = False
    scope: str | None = None
    premium_bps: int = 0


@dataclass(frozen=True)
class Cutdowns:
    permitted: bool = False
    max_versions: int | None = None
    restrictions: tuple[str, ...] = ()


@dataclass(frozen=True)
class TimeRestrictions:
    start_time: str | None = None
    end_time: str | None = None
    timezone: str = "UTC"


@dataclass(frozen=True)
class UsageRestrictions:
    max_impressions: int | None = None
    max_views: int | None = None
    max_downloads: int | None = None


@dataclass(frozen=True)
class DerivativeRights:
    permitted: bool = False
    original_creator_share_bps: int | None = None


@dataclass(frozen=True)
class LicenseScope:
    media_types: tuple[str, ...] | None = None
    geographies: tuple[str, ...] | None = None
    channels: tuple[str, ...] | None = None
    exclusivity: Exclusivity | None = None
    cutdowns: Cutdowns | None = None
    time_restrictions: TimeRestrictions | None = None
    usage_restrictions: UsageRestrictions | None = None
    derivative_rights: DerivativeRights | None = None


@dataclass(frozen=True)
class ReportedUsage:
    media_types: tuple[str, ...] = ()
    geographies: tuple[str, ...] = ()
    channels: tuple[str, ...] = ()
    impressions: int = 0
    views: int = 0
    downloads: int = 0
    cutdown_versions: int = 0


@dataclass(frozen=True)
class ScopeViolation:
    type: ViolationType
    severity: Severity
    message: str
    details: dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class ScopeWarning:
    type: str
    message: str
    details: dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class ScopeValidationResult:
    violations: tuple[ScopeViolation, ...]
    warnings: tuple[ScopeWarning, ...]

    @property
    def is_valid(self) -> bool:
        return not self.violations


@dataclass(frozen=True)
class CategoryAllocation:
    category: str
    revenue_cents: int
    percentage: Decimal
    metadata: dict[str, Any] | None = field(default=None, compare=False)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _first(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value:
            return value
    return None


def _strings(value: Any) -> tuple[str, ...] | None:
    if value is None:
        return None
    return tuple(str(v) for v in value)


def parse_license_scope(scope_json: Any) -> LicenseScope:
    """Parse a scope mapping (or JSON string) into a LicenseScope."""
    if not scope_json:
        return LicenseScope()
    data = json.loads(scope_json) if isinstance(scope_json, str) else scope_json

    exclusivity = None
    if data.get("exclusivity"):
        raw = data["exclusivity"]
        exclusivity = Exclusivity(
            exclusive=bool(raw.get("exclusive", False)),
            scope=raw.get("scope"),
            premium_bps=int(_first(raw, "premium", "premiumBps", "premium_bps") or 0),
        )

    cutdowns = None
    raw = _first(data, "cutdowns", "edits")
    if raw:
        cutdowns = Cutdowns(
            permitted=bool(raw.get("permitted", False)),
            max_versions=_first(raw, "maxVersions", "max_versions"),
            restrictions=tuple(raw.get("restrictions") or ()),
        )

    time_restrictions = None
    raw = _first(data, "timeRestrictions", "time_restrictions")
    if raw:
        time_restrictions = TimeRestrictions(
            start_time=_first(raw, "startTime", "start_time"),
            end_time=_first(raw, "endTime", "end_time"),
            timezone=raw.get("timezone") or "UTC",
        )

    usage_restrictions = None
    raw = _first(data, "usageRestrictions", "usage_restrictions")
    if raw:
        usage_restrictions = UsageRestrictions(
            max_impressions=_first(raw, "maxImpressions", "max_impressions"),
            max_views=_first(raw, "maxViews", "max_views"),
            max_downloads=_first(raw, "maxDownloads", "max_downloads"),
        )

    derivative_rights = None
    raw = _first(data, "derivativeRights", "derivative_rights")
    if raw:
        derivative_rights = DerivativeRights(
            permitted=bool(raw.get("permitted", False)),
            original_creator_share_bps=_first(
                raw, "originalCreatorShareBps", "original_creator_share_bps"
            ),
        )

    return LicenseScope(
        media_types=_strings(_first(data, "mediaTypes", "media_types", "media")),
        geographies=_strings(_first(data, "geographies", "regions", "territories")),
        channels=_strings(_first(data, "channels", "platforms")),
        exclusivity=exclusivity,
        cutdowns=cutdowns,
        time_restrictions=time_restrictions,
        usage_restrictions=usage_restrictions,
        derivative_rights=derivative_rights,
    )


# ---------------------------------------------------------------------------
# Compliance
# ---------------------------------------------------------------------------


def _unauthorized(
    violation_type: ViolationType,
    label: str,
    allowed: tuple[str, ...] | None,
    reported: tuple[str, ...],
) -> ScopeViolation | None:
    if not allowed or not reported:
        return None
    permitted = {a.lower() for a in allowed}
    outside = [r for r in reported if r.lower() not in permitted]
    if not outside:
        return None
    return ScopeViolation(
        type=violation_type,
        severity=Severity.CRITICAL,
        message=f"Usage reported in unauthorized {label}: {', '.join(outside)}",
        details={
            "authorized": list(allowed),
            "reported": list(reported),
            "unauthorized": outside,
        },
    )


def _check_limit(
    label: str,
    limit: int | None,
    actual: int,
    violations: list[ScopeViolation],
    warnings: list[ScopeWarning],
) -> None:
    if not limit or not actual:
        return
    if actual > limit:
        violations.append(
            ScopeViolation(
                type=ViolationType.USAGE_LIMIT,
                severity=Severity.HIGH,
                message=f"{label.capitalize()} limit exceeded: {actual:,} / {limit:,}",
                details={"limit": limit, "actual": actual, "overage": actual - limit},
            )
        )
    elif actual > limit * APPROACHING_LIMIT_RATIO:
        percent = round(actual * 100 / limit)
        warnings.append(
            ScopeWarning(
                type="APPROACHING_LIMIT",
                message=f"Approaching {label} limit: {actual:,} / {limit:,} ({percent}%)",
                details={"limit": limit, "actual": actual, "remaining": limit - actual},
            )
        )


def validate_scope_compliance(
    scope: LicenseScope,
    usage: ReportedUsage,
) -> ScopeValidationResult:
    """
    Compare reported usage against a license scope.

    Media types, geographies and channels outside the scope are CRITICAL
    violations (case-insensitive).  Usage over a limit is a HIGH
    violation; usage above 90% of a limit is a warning.
    """
    violations: list[ScopeViolation] = []
    warnings: list[ScopeWarning] = []

    for violation in (
        _unauthorized(ViolationType.MEDIA_TYPE, "media types", scope.media_types, usage.media_types),
        _unauthorized(ViolationType.GEOGRAPHY, "geographies", scope.geographies, usage.geographies),
        _unauthorized(ViolationType.CHANNEL, "channels", scope.channels, usage.channels),
    ):
        if violation is not None:
            violations.append(violation)

    limits = scope.usage_restrictions
    if limits is not None:
        _check_limit("impression", limits.max_impressions, usage.impressions, violations, warnings)
        _check_limit("view", limits.max_views, usage.views, violations, warnings)
        _check_limit("download", limits.max_downloads, usage.downloads, violations, warnings)

    cutdowns = scope.cutdowns
    if cutdowns is not None and usage.cutdown_versions > 0:
        if not cutdowns.permitted:
            violations.append(
                ScopeViolation(
                    type=ViolationType.CUTDOWN,
                    severity=Severity.HIGH,
                    message=(
                        "Cutdown versions created without permission: "
                        f"{usage.cutdown_versions} versions reported"
                    ),
                    details={"permitted": False, "versions_created": usage.cutdown_versions},
                )
            )
        elif cutdowns.max_versions and usage.cutdown_versions > cutdowns.max_versions:
            violations.append(
                ScopeViolation(
                    type=ViolationType.CUTDOWN,
                    severity=Severity.MEDIUM,
                    message=(
                        "Maximum cutdown versions exceeded: "
                        f"{usage.cutdown_versions} / {cutdowns.max_versions}"
                    ),
                    details={
                        "max_versions": cutdowns.max_versions,
                        "actual_versions": usage.cutdown_versions,
                        "overage": usage.cutdown_versions - cutdowns.max_versions,
                    },
                )
            )

    return ScopeValidationResult(violations=tuple(violations), warnings=tuple(warnings))


# ---------------------------------------------------------------------------
# Money
# ---------------------------------------------------------------------------


def calculate_exclusivity_premium(
    base_royalty_cents: int,
    scope: LicenseScope,
    method: RoundingMethod = RoundingMethod.BANKERS,
) -> int:
    """Premium owed on top of the base royalty for an exclusive license."""
    exclusivity = scope.exclusivity
    if exclusivity is None or not exclusivity.exclusive or not exclusivity.premium_bps:
        return 0
    return round_amount(
        Decimal(base_royalty_cents * exclusivity.premium_bps) / BPS_DENOMINATOR, method
    )


def allocate_revenue_by_scope_category(
    total_revenue_cents: int,
    categories: Sequence[tuple[str, Decimal | int | str]],
    metadata: Mapping[str, dict[str, Any]] | None = None,
) -> list[CategoryAllocation]:
    """
    Split revenue across scope categories by percentage (0-100).

    Largest remainder: each category gets the floor of its exact share,
    then leftover cents go to the largest fractional parts, ties to the
    category listed first.
    """
    percentages = [(name, Decimal(str(pct))) for name, pct in categories]
    total_pct = sum((pct for _, pct in percentages), Decimal(0))
    if total_pct != 100:
        raise ValueError(f"allocation percentages must sum to 100, got {total_pct}")

    exact = [Decimal(total_revenue_cents) * pct / 100 for _, pct in percentages]
    floors = [int(e // 1) for e in exact]
    leftover = total_revenue_cents - sum(floors)
    order = sorted(range(len(exact)), key=lambda i: (-(exact[i] - floors[i]), i))
    for i in order[:leftover]:
        floors[i] += 1

    metadata = metadata or {}
    return [
        CategoryAllocation(
            category=name,
            revenue_cents=floors[i],
            percentage=pct,
            metadata=metadata.get(name),
        )
        for i, (name, pct) in enumerate(percentages)
    ]


# ---------------------------------------------------------------------------
# Time window, display, merge
# ---------------------------------------------------------------------------


def _parse_instant(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_scope_expired(scope: LicenseScope, now: datetime) -> bool:
    restrictions = scope.time_restrictions
    if restrictions is None:
        return False
    end = _parse_instant(restrictions.end_time)
    return end is not None and now > end


def is_scope_active(scope: LicenseScope, now: datetime) -> bool:
    restrictions = scope.time_restrictions
    if restrictions is None:
        return True
    start = _parse_instant(restrictions.start_time)
    if start is not None and now < start:
        return False
    return not is_scope_expired(scope, now)


def scope_display_summary(scope: LicenseScope) -> str:
    parts: list[str] = []
    if scope.media_types:
        parts.append(f"Media: {', '.join(scope.media_types)}")
    if scope.geographies:
        parts.append(f"Regions: {', '.join(scope.geographies)}")
    if scope.channels:
        parts.append(f"Channels: {', '.join(scope.channels)}")
    if scope.exclusivity is not None and scope.exclusivity.exclusive:
        suffix = f" ({scope.exclusivity.scope})" if scope.exclusivity.scope else ""
        parts.append(f"Exclusive{suffix}")
    if scope.cutdowns is not None and scope.cutdowns.permitted:
        suffix = f" (max {scope.cutdowns.max_versions})" if scope.cutdowns.max_versions else ""
        parts.append(f"Cutdowns permitted{suffix}")
    return " | ".join(parts) if parts else "Standard license"


def merge_scopes(base: LicenseScope, extension: LicenseScope) -> LicenseScope:
    """Fields set on the extension replace the base's; unset fields are kept."""
    changes = {
        name: getattr(extension, name)
        for name in LicenseScope.__dataclass_fields__
        if getattr(extension, name)
    }
    return replace(base, **changes)
