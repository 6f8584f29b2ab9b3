"""ITSM settings, sync and review-queue schemas."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import Field

from ..models import ImportMode, ItsmRecordType, MatchSource, QueueItemStatus
from ..services.itsm_engine import QueueAction
from .base import EnsembleBaseModel


# =============================================================================
# SETTINGS
# =============================================================================


class WorkgroupMappingSchema(EnsembleBaseModel):
    """Assignment group whose tickets belong to an application."""

    application_id: UUID
    type: ItsmRecordType
    group_name: str = Field(..., min_length=1, max_length=255)


class CmdbCiMappingSchema(EnsembleBaseModel):
    application_id: UUID
    cmdb_ci_name: str = Field(..., min_length=1, max_length=255)


class ItsmSettingsUpdate(EnsembleBaseModel):
    max_search_days: int = Field(default=30, ge=1, le=365)
    rfc_import_mode: ImportMode = ImportMode.REVIEW
    inc_import_mode: ImportMode = ImportMode.REVIEW
    app_workgroups: list[WorkgroupMappingSchema] = Field(default_factory=list)
    app_cmdb_cis: list[CmdbCiMappingSchema] = Field(default_factory=list)


class ItsmSettingsResponse(ItsmSettingsUpdate):
    team_id: UUID


# =============================================================================
# SYNC
# =============================================================================


class SyncRequest(EnsembleBaseModel):
    fallback_application_id: UUID | None = None


class SyncResponse(EnsembleBaseModel):
    success: bool
    message: str
    queued: int = 0
    auto_imported: int = 0
    skipped: int = 0
    errors: list[str] = Field(default_factory=list)


# =============================================================================
# REVIEW QUEUE
# =============================================================================


class ReviewQueueItemResponse(EnsembleBaseModel):
    id: UUID
    team_id: UUID
    external_id: str
    type: ItsmRecordType
    status: QueueItemStatus
    application_id: UUID | None = None
    effective_application_id: UUID | None = None
    match_source: MatchSource
    is_closed: bool = False
    raw_data: dict[str, Any]
    resolved_by: str | None = None
    resolved_at: datetime | None = None
    created_at: datetime


class ProcessQueueItemRequest(EnsembleBaseModel):
    action: QueueAction
    application_id: UUID | None = Field(
        default=None,
        description="Manual application override for IMPORT",
    )


class ProcessQueueItemResponse(EnsembleBaseModel):
    item: ReviewQueueItemResponse
    entry_id: UUID | None = None


class BulkImportRequest(EnsembleBaseModel):
    ids: list[UUID] = Field(..., min_length=1, max_length=500)
    fallback_application_id: UUID | None = None


class BulkImportResponse(EnsembleBaseModel):
    count: int
    skipped: int
    failed: int
    message: str
    errors: list[str] = Field(default_factory=list)
