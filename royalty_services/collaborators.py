"""
royalty_services.collaborators -- Narrow interfaces to external systems.

Responsibility:
    Declares the protocols the royalty services call out through: usage
    billing, audit log, notifications, statement rendering and the view
    cache.  Ships default implementations that log instead of calling a
    real system, so the services run standalone and in tests.

Architecture position:
    Services -- imported by every orchestrator in royalty_services.
    Real implementations live in the hosting application and are passed
    in through constructor injection.

Failure modes:
    - Usage billing, notification and rendering failures are caught by
      the calling service, logged, and degraded (zero revenue, skipped
      email, stale PDF).  They never abort a financial transaction.
    - Audit log failures propagate: an unaudited write is not allowed to
      commit.

Audit relevance:
    Every state change in the services produces exactly one AuditRecord.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from royalty_kernel.logging_config import get_logger

logger = get_logger("services.collaborators")


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UsageRoyalty:
    """One creator's usage-based revenue for a license over a period."""

    creator_id: UUID
    usage_revenue_cents: int
    share_bps: int


@dataclass(frozen=True)
class AuditRecord:
    """
    One audited action.

    ``action`` uses dotted names such as ``royalty.run.calculated`` or
    ``royalty.adjustment.approved``.
    """

    action: str
    entity_type: str
    entity_id: UUID
    actor_id: UUID
    occurred_at: datetime
    before: dict[str, Any] = field(default_factory=dict)
    after: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Notification:
    recipient: str
    template: str
    subject: str
    variables: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class UsageBillingClient(Protocol):
    """Usage-based royalties reported by the usage tracking system."""

    def usage_based_royalties(
        self, license_id: UUID, period_start: date, period_end: date
    ) -> list[UsageRoyalty]: ...


@runtime_checkable
class AuditLog(Protocol):
    def log(self, record: AuditRecord) -> None: ...


@runtime_checkable
class NotificationSender(Protocol):
    """Fire-and-forget transactional email."""

    def send(self, notification: Notification) -> None: ...


@runtime_checkable
class StatementRenderer(Protocol):
    """Regenerates the PDF or export of a statement after it changes."""

    def regenerate(self, statement_id: UUID) -> None: ...


@runtime_checkable
class ViewCache(Protocol):
    """Cache of computed statement and run views.  Entries are only invalidated."""

    def invalidate(self, key: str) -> None: ...


def run_cache_key(run_id: UUID) -> str:
    return f"royalty_run:{run_id}"


def statement_cache_key(statement_id: UUID) -> str:
    return f"royalty_statement:{statement_id}"


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------


class NoUsageBillingClient:
    """Reports no usage revenue.  Used where usage tracking is not deployed."""

    def usage_based_royalties(
        self, license_id: UUID, period_start: date, period_end: date
    ) -> list[UsageRoyalty]:
        return []


class LoggingAuditLog:
    """Writes audit records to the structured log."""

    def log(self, record: AuditRecord) -> None:
        logger.info(
            "audit_record",
            extra={
                "action": record.action,
                "entity_type": record.entity_type,
                "entity_id": str(record.entity_id),
                "actor_id": str(record.actor_id),
                "occurred_at": record.occurred_at.isoformat(),
                "before": record.before,
                "after": record.after,
            },
        )


class LoggingNotificationSender:
    def send(self, notification: Notification) -> None:
        logger.info(
            "notification_sent",
            extra={
                "recipient": notification.recipient,
                "template": notification.template,
                "subject": notification.subject,
            },
        )


class LoggingStatementRenderer:
    def regenerate(self, statement_id: UUID) -> None:
        logger.info(
            "statement_render_requested",
            extra={"statement_id": str(statement_id)},
        )


class InMemoryViewCache:
    """
    Process-local view cache.

    Guarantees:
        - ``invalidate`` removes the entry and records the key in
          ``invalidated`` so callers can observe what was dropped.
    """

    def __init__(self) -> None:
        self._entries: dict[str, Any] = {}
        self._lock = threading.Lock()
        self.invalidated: list[str] = []

    def get(self, key: str) -> Any:
        with self._lock:
            return self._entries.get(key)

    def put(self, key: str, value: Any) -> None:
        with self._lock:
            self._entries[key] = value

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)
            self.invalidated.append(key)
        logger.debug("view_cache_invalidated", extra={"key": key})
