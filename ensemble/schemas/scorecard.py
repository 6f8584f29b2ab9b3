"""Scorecard request/response schemas."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import Field

from ..models import ApplicationStatus
from .base import EnsembleBaseModel, TeamRef, TimestampMixin


# =============================================================================
# ENTRIES
# =============================================================================


class ScorecardEntryCreate(EnsembleBaseModel):
    """Request to create a scorecard entry for an application."""

    application_id: UUID
    name: str = Field(..., min_length=1, max_length=255)
    scorecard_identifier: str | None = Field(
        default=None,
        max_length=100,
        description="Leave empty to generate one from the name",
    )
    availability_threshold: Decimal = Field(default=Decimal("98.00"), ge=0, le=100)
    volume_change_threshold: Decimal = Field(default=Decimal("20.00"), ge=0)


class ScorecardEntryUpdate(EnsembleBaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    scorecard_identifier: str | None = Field(default=None, max_length=100)
    availability_threshold: Decimal | None = Field(default=None, ge=0, le=100)
    volume_change_threshold: Decimal | None = Field(default=None, ge=0)


class ScorecardEntryResponse(EnsembleBaseModel, TimestampMixin):
    id: UUID
    application_id: UUID
    scorecard_identifier: str
    name: str
    availability_threshold: Decimal
    volume_change_threshold: Decimal
    created_by: str
    updated_by: str | None = None


class IdentifierAvailabilityResponse(EnsembleBaseModel):
    identifier: str
    available: bool


# =============================================================================
# MONTHLY VALUES
# =============================================================================


class AvailabilityUpsert(EnsembleBaseModel):
    year: int = Field(..., ge=2000, le=2100)
    month: int = Field(..., ge=1, le=12)
    availability: Decimal = Field(..., ge=0, le=100)
    reason: str | None = None


class VolumeUpsert(EnsembleBaseModel):
    year: int = Field(..., ge=2000, le=2100)
    month: int = Field(..., ge=1, le=12)
    volume: int = Field(..., ge=0)
    reason: str | None = None


class AvailabilityResponse(EnsembleBaseModel, TimestampMixin):
    id: UUID
    scorecard_entry_id: UUID
    year: int
    month: int
    availability: Decimal
    reason: str | None = None
    created_by: str
    updated_by: str | None = None
    is_breach: bool = False


class VolumeResponse(EnsembleBaseModel, TimestampMixin):
    id: UUID
    scorecard_entry_id: UUID
    year: int
    month: int
    volume: int
    reason: str | None = None
    created_by: str
    updated_by: str | None = None


# =============================================================================
# PUBLISH
# =============================================================================


class PublishRequest(EnsembleBaseModel):
    year: int = Field(..., ge=2000, le=2100)
    month: int = Field(..., ge=1, le=12)


class PublishStatusResponse(EnsembleBaseModel):
    team_id: UUID
    year: int
    month: int
    is_published: bool
    published_by: str | None = None
    published_at: datetime | None = None
    unpublished_by: str | None = None
    unpublished_at: datetime | None = None


# =============================================================================
# READ VIEWS
# =============================================================================


class ApplicationResponse(EnsembleBaseModel):
    id: UUID
    team_id: UUID
    application_name: str
    tla: str | None = None
    tier: str | None = None
    status: ApplicationStatus
    owner_svp_name: str | None = None
    vp_name: str | None = None
    director_name: str | None = None
    application_owner_name: str | None = None
    application_manager_name: str | None = None
    unit_cio_name: str | None = None


class ScorecardStatsResponse(EnsembleBaseModel):
    total_teams: int
    total_applications: int
    total_entries: int
    availability_records: int
    volume_records: int
    breach_count: int


class TeamScorecardResponse(EnsembleBaseModel):
    """Team editing view: always the latest values."""

    applications: list[ApplicationResponse]
    entries: list[ScorecardEntryResponse]
    availability: list[AvailabilityResponse]
    volume: list[VolumeResponse]
    publish_status: list[PublishStatusResponse]
    stats: ScorecardStatsResponse


class GlobalScorecardResponse(EnsembleBaseModel):
    """Enterprise view: published, non-stale values only."""

    teams: list[TeamRef]
    applications: list[ApplicationResponse]
    entries: list[ScorecardEntryResponse]
    availability: list[AvailabilityResponse]
    volume: list[VolumeResponse]
    leadership_options: dict[str, list[str]]
    publish_timestamps: dict[str, dict[str, datetime]]
    stats: ScorecardStatsResponse
