"""
royalty_services -- Package init and public API.

Responsibility:
    Stateful orchestration services that compose the pure calculation
    engines (royalty_engines/) with database sessions, the clock, and the
    external collaborators (usage billing, audit log, notifications,
    statement rendering, view cache).  This is the **only** layer that
    owns transactions or reads wall-clock time.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction (enforced by tests/architecture/test_layer_boundaries.py):
        royalty_services/ -> royalty_engines/  (allowed)
        royalty_services/ -> royalty_kernel/   (allowed)
        royalty_engines/  -> royalty_services/ (FORBIDDEN)
        royalty_kernel/   -> royalty_services/ (FORBIDDEN)

Invariants enforced:
    - Layer isolation: royalty_kernel and royalty_engines never import
      from this package.
    - DI transparency: collaborators are constructor-injected; defaults
      are logging or in-memory implementations.

Audit relevance:
    - This package is the canonical import surface for external consumers.
      Changes to __all__ must be reviewed for backwards-compatibility.
"""

from royalty_kernel.logging_config import get_logger

logger = get_logger("services")

from royalty_services.adjustment_service import (  # noqa: E402
    AdjustmentRequest,
    RoyaltyAdjustmentService,
    validate_adjustment_request,
)
from royalty_services.collaborators import (  # noqa: E402
    AuditLog,
    AuditRecord,
    InMemoryViewCache,
    LoggingAuditLog,
    LoggingNotificationSender,
    LoggingStatementRenderer,
    NoUsageBillingClient,
    Notification,
    NotificationSender,
    StatementRenderer,
    UsageBillingClient,
    UsageRoyalty,
    ViewCache,
)
from royalty_services.ownership_split import OwnerAllocation, OwnershipSplitEngine  # noqa: E402
from royalty_services.revenue_aggregator import RevenueAggregator  # noqa: E402
from royalty_services.royalty_calculation_service import (  # noqa: E402
    LicenseResult,
    RoyaltyCalculationService,
)
from royalty_services.statement_service import RoyaltyStatementService  # noqa: E402

__all__ = [
    "AdjustmentRequest",
    "AuditLog",
    "AuditRecord",
    "InMemoryViewCache",
    "LicenseResult",
    "LoggingAuditLog",
    "LoggingNotificationSender",
    "LoggingStatementRenderer",
    "NoUsageBillingClient",
    "Notification",
    "NotificationSender",
    "OwnerAllocation",
    "OwnershipSplitEngine",
    "RevenueAggregator",
    "RoyaltyAdjustmentService",
    "RoyaltyCalculationService",
    "RoyaltyStatementService",
    "StatementRenderer",
    "UsageBillingClient",
    "UsageRoyalty",
    "ViewCache",
    "validate_adjustment_request",
]
