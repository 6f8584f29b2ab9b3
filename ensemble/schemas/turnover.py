"""Turnover entry, finalize and metrics schemas."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import Field

from ..models import TurnoverSection, TurnoverStatus
from .base import EnsembleBaseModel, TimestampMixin


# =============================================================================
# ENTRIES
# =============================================================================


class TurnoverEntryCreate(EnsembleBaseModel):
    """Request to create a turnover entry. Detail fields apply per section."""

    team_id: UUID
    application_id: UUID
    section: TurnoverSection
    title: str | None = Field(default=None, max_length=500)
    description: str | None = None
    comments: str | None = None
    is_important: bool = False
    rfc_number: str | None = Field(default=None, max_length=50)
    rfc_status: str | None = Field(default=None, max_length=50)
    validated_by: str | None = None
    cmdb_ci: str | None = None
    incident_number: str | None = Field(default=None, max_length=50)
    mim_link: str | None = None
    mim_slack_link: str | None = None
    email_subject: str | None = Field(default=None, max_length=500)
    slack_link: str | None = None


class TurnoverEntryUpdateRequest(EnsembleBaseModel):
    title: str | None = Field(default=None, max_length=500)
    description: str | None = None
    comments: str | None = None
    is_important: bool | None = None
    rfc_number: str | None = Field(default=None, max_length=50)
    rfc_status: str | None = Field(default=None, max_length=50)
    validated_by: str | None = None
    cmdb_ci: str | None = None
    incident_number: str | None = Field(default=None, max_length=50)
    mim_link: str | None = None
    mim_slack_link: str | None = None
    email_subject: str | None = Field(default=None, max_length=500)
    slack_link: str | None = None


class RfcDetailsResponse(EnsembleBaseModel):
    rfc_number: str
    rfc_status: str
    validated_by: str
    cmdb_ci: str | None = None


class IncDetailsResponse(EnsembleBaseModel):
    incident_number: str


class MimDetailsResponse(EnsembleBaseModel):
    mim_link: str
    mim_slack_link: str | None = None


class CommsDetailsResponse(EnsembleBaseModel):
    email_subject: str | None = None
    slack_link: str | None = None


class TurnoverEntryResponse(EnsembleBaseModel, TimestampMixin):
    id: UUID
    team_id: UUID
    application_id: UUID
    section: TurnoverSection
    title: str
    description: str | None = None
    comments: str | None = None
    is_important: bool
    status: TurnoverStatus
    created_by: str
    updated_by: str | None = None
    resolved_by: str | None = None
    resolved_at: datetime | None = None
    rfc_details: RfcDetailsResponse | None = None
    inc_details: IncDetailsResponse | None = None
    mim_details: MimDetailsResponse | None = None
    comms_details: CommsDetailsResponse | None = None


class TurnoverEntryListResponse(EnsembleBaseModel):
    items: list[TurnoverEntryResponse]
    total: int
    limit: int
    offset: int


# =============================================================================
# FINALIZE
# =============================================================================


class FinalizeRequest(EnsembleBaseModel):
    notes: str | None = Field(default=None, max_length=5000)


class FinalizeCheckResponse(EnsembleBaseModel):
    can_finalize: bool
    message: str
    last_finalized_at: datetime | None = None
    remaining_minutes: int = 0


class FinalizedTurnoverSummary(EnsembleBaseModel):
    id: UUID
    team_id: UUID
    total_applications: int
    total_entries: int
    important_count: int
    notes: str | None = None
    finalized_by: str
    finalized_at: datetime


class FinalizedTurnoverResponse(FinalizedTurnoverSummary):
    snapshot_data: list[dict[str, Any]]


class FinalizedTurnoverListResponse(EnsembleBaseModel):
    items: list[FinalizedTurnoverSummary]
    total: int
    limit: int
    offset: int


# =============================================================================
# METRICS
# =============================================================================


class TurnoverMetricsResponse(EnsembleBaseModel):
    total_entries: int
    resolved_entries: int
    open_entries: int
    critical_items: int
    resolution_rate: int
    section_distribution: dict[str, int]
    activity_trend: list[dict[str, Any]]
