"""SQLAlchemy ORM Models for Ensemble."""

from .base import Base, JSONType, TimestampMixin, UUIDMixin, as_utc, utcnow
from .models import (
    # Enums
    ApplicationStatus,
    AuditAction,
    ImportMode,
    ItsmRecordType,
    LinkVisibility,
    MatchSource,
    QueueItemStatus,
    TurnoverSection,
    TurnoverStatus,
    # Directory
    Application,
    Team,
    # Scorecard
    ScorecardAvailability,
    ScorecardEntry,
    ScorecardPublishStatus,
    ScorecardVolume,
    # Turnover & ITSM
    CommsDetails,
    FinalizedTurnover,
    IncDetails,
    ItsmReviewQueueItem,
    MimDetails,
    RfcDetails,
    TurnoverAppCmdbCi,
    TurnoverAppWorkgroup,
    TurnoverEntry,
    TurnoverSettings,
    # Links
    Link,
    LinkCategory,
    # Audit
    AuditLog,
)

__all__ = [
    # Base
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    "JSONType",
    "utcnow",
    "as_utc",
    # Enums
    "ApplicationStatus",
    "AuditAction",
    "ImportMode",
    "ItsmRecordType",
    "LinkVisibility",
    "MatchSource",
    "QueueItemStatus",
    "TurnoverSection",
    "TurnoverStatus",
    # Directory
    "Team",
    "Application",
    # Scorecard
    "ScorecardEntry",
    "ScorecardAvailability",
    "ScorecardVolume",
    "ScorecardPublishStatus",
    # Turnover & ITSM
    "TurnoverSettings",
    "TurnoverAppWorkgroup",
    "TurnoverAppCmdbCi",
    "ItsmReviewQueueItem",
    "TurnoverEntry",
    "RfcDetails",
    "IncDetails",
    "MimDetails",
    "CommsDetails",
    "FinalizedTurnover",
    # Links
    "LinkCategory",
    "Link",
    # Audit
    "AuditLog",
]
