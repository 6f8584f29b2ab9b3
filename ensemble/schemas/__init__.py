"""Ensemble API Schemas.

Schemas are organized by domain:
- base: common config, pagination, errors
- scorecard: entries, monthly values, publish state, read views
- itsm: settings, sync, review queue
- turnover: entries, finalize, metrics
- links: link manager
"""

from .base import (
    AuditEventResponse,
    EnsembleBaseModel,
    ErrorResponse,
    PaginatedResponse,
    TeamRef,
    TimestampMixin,
)
from .itsm import (
    BulkImportRequest,
    BulkImportResponse,
    CmdbCiMappingSchema,
    ItsmSettingsResponse,
    ItsmSettingsUpdate,
    ProcessQueueItemRequest,
    ProcessQueueItemResponse,
    ReviewQueueItemResponse,
    SyncRequest,
    SyncResponse,
    WorkgroupMappingSchema,
)
from .links import (
    BulkUpdateResponse,
    CategoryCreate,
    CategoryResponse,
    LinkBreakdownResponse,
    LinkBulkCreate,
    LinkBulkUpdateRequest,
    LinkCreate,
    LinkPageResponse,
    LinkResponse,
    LinkStatsResponse,
    LinkUpdateRequest,
    UsageResponse,
)
from .scorecard import (
    ApplicationResponse,
    AvailabilityResponse,
    AvailabilityUpsert,
    GlobalScorecardResponse,
    IdentifierAvailabilityResponse,
    PublishRequest,
    PublishStatusResponse,
    ScorecardEntryCreate,
    ScorecardEntryResponse,
    ScorecardEntryUpdate,
    ScorecardStatsResponse,
    TeamScorecardResponse,
    VolumeResponse,
    VolumeUpsert,
)
from .turnover import (
    CommsDetailsResponse,
    FinalizeCheckResponse,
    FinalizedTurnoverListResponse,
    FinalizedTurnoverResponse,
    FinalizedTurnoverSummary,
    FinalizeRequest,
    IncDetailsResponse,
    MimDetailsResponse,
    RfcDetailsResponse,
    TurnoverEntryCreate,
    TurnoverEntryListResponse,
    TurnoverEntryResponse,
    TurnoverEntryUpdateRequest,
    TurnoverMetricsResponse,
)

__all__ = [
    # Base
    "EnsembleBaseModel",
    "TimestampMixin",
    "PaginatedResponse",
    "ErrorResponse",
    "TeamRef",
    "AuditEventResponse",
    # Scorecard
    "ScorecardEntryCreate",
    "ScorecardEntryUpdate",
    "ScorecardEntryResponse",
    "IdentifierAvailabilityResponse",
    "AvailabilityUpsert",
    "VolumeUpsert",
    "AvailabilityResponse",
    "VolumeResponse",
    "PublishRequest",
    "PublishStatusResponse",
    "ApplicationResponse",
    "ScorecardStatsResponse",
    "TeamScorecardResponse",
    "GlobalScorecardResponse",
    # ITSM
    "WorkgroupMappingSchema",
    "CmdbCiMappingSchema",
    "ItsmSettingsUpdate",
    "ItsmSettingsResponse",
    "SyncRequest",
    "SyncResponse",
    "ReviewQueueItemResponse",
    "ProcessQueueItemRequest",
    "ProcessQueueItemResponse",
    "BulkImportRequest",
    "BulkImportResponse",
    # Turnover
    "TurnoverEntryCreate",
    "TurnoverEntryUpdateRequest",
    "RfcDetailsResponse",
    "IncDetailsResponse",
    "MimDetailsResponse",
    "CommsDetailsResponse",
    "TurnoverEntryResponse",
    "TurnoverEntryListResponse",
    "FinalizeRequest",
    "FinalizeCheckResponse",
    "FinalizedTurnoverSummary",
    "FinalizedTurnoverResponse",
    "FinalizedTurnoverListResponse",
    "TurnoverMetricsResponse",
    # Links
    "LinkCreate",
    "LinkBulkCreate",
    "LinkUpdateRequest",
    "LinkBulkUpdateRequest",
    "LinkResponse",
    "LinkPageResponse",
    "BulkUpdateResponse",
    "UsageResponse",
    "LinkBreakdownResponse",
    "LinkStatsResponse",
    "CategoryCreate",
    "CategoryResponse",
]
