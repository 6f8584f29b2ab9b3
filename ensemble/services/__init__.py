"""Business logic services for Ensemble."""

from .audit import AuditService
from .itsm_engine import (
    ApplicationMatcher,
    BulkImportResult,
    CmdbCiMapping,
    ItsmEngine,
    ItsmSettingsInput,
    ItsmSettingsView,
    ProcessResult,
    QueueAction,
    ReviewQueueItemView,
    SyncResult,
    WorkgroupMapping,
)
from .link_service import (
    BulkLinkUpdate,
    LinkInput,
    LinkPage,
    LinkService,
    LinkStats,
    LinkUpdate,
)
from .scorecard_engine import (
    EntryInput,
    EntryUpdate,
    GlobalScorecardData,
    ScorecardEngine,
    ScorecardStats,
    TeamScorecardData,
)
from .turnover_engine import (
    FinalizeCheck,
    TurnoverEngine,
    TurnoverEntryInput,
    TurnoverEntryUpdate,
    TurnoverMetrics,
)

__all__ = [
    "AuditService",
    # Scorecard (publish/staleness)
    "ScorecardEngine",
    "EntryInput",
    "EntryUpdate",
    "GlobalScorecardData",
    "TeamScorecardData",
    "ScorecardStats",
    # ITSM reconciliation
    "ItsmEngine",
    "ApplicationMatcher",
    "QueueAction",
    "SyncResult",
    "ReviewQueueItemView",
    "ProcessResult",
    "BulkImportResult",
    "ItsmSettingsInput",
    "ItsmSettingsView",
    "WorkgroupMapping",
    "CmdbCiMapping",
    # Turnover
    "TurnoverEngine",
    "TurnoverEntryInput",
    "TurnoverEntryUpdate",
    "FinalizeCheck",
    "TurnoverMetrics",
    # Links
    "LinkService",
    "LinkInput",
    "LinkUpdate",
    "BulkLinkUpdate",
    "LinkPage",
    "LinkStats",
]
