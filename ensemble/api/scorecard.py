"""
Scorecard API Routes: metric definitions, monthly values and publishing.

Two read endpoints:
1. GET /scorecard/teams/{team_id} - team editing view (latest values)
2. GET /scorecard/global - enterprise view (published, non-stale values)
"""

from typing import Annotated, Sequence
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from ..core import CallerDep, SessionDep
from ..models import ScorecardAvailability
from ..schemas import (
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
from ..services.scorecard_engine import (
    EntryInput,
    EntryUpdate,
    ScorecardEngine,
    ScorecardStats,
)

router = APIRouter(prefix="/scorecard", tags=["scorecard"])


# =============================================================================
# DEPENDENCIES
# =============================================================================


def get_scorecard_engine(session: SessionDep, caller: CallerDep) -> ScorecardEngine:
    return ScorecardEngine(session, caller)


ScorecardEngineDep = Annotated[ScorecardEngine, Depends(get_scorecard_engine)]


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================


def build_stats_response(stats: ScorecardStats) -> ScorecardStatsResponse:
    return ScorecardStatsResponse(
        total_teams=stats.total_teams,
        total_applications=stats.total_applications,
        total_entries=stats.total_entries,
        availability_records=stats.availability_records,
        volume_records=stats.volume_records,
        breach_count=stats.breach_count,
    )


def build_availability_responses(
    records: Sequence[ScorecardAvailability],
    stats: ScorecardStats,
) -> list[AvailabilityResponse]:
    """Availability rows with their breach flag set from the stats pass."""
    responses = []
    for record in records:
        response = AvailabilityResponse.model_validate(record)
        response.is_breach = stats.is_breach(record.scorecard_entry_id, record.year, record.month)
        responses.append(response)
    return responses


# =============================================================================
# ENTRIES
# =============================================================================


@router.post(
    "/entries",
    response_model=ScorecardEntryResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a scorecard entry",
)
async def create_entry(request: ScorecardEntryCreate, engine: ScorecardEngineDep):
    """Create a metric definition. Team admin only."""
    entry = await engine.create_entry(
        request.application_id,
        EntryInput(
            name=request.name,
            scorecard_identifier=request.scorecard_identifier,
            availability_threshold=request.availability_threshold,
            volume_change_threshold=request.volume_change_threshold,
        ),
    )
    return ScorecardEntryResponse.model_validate(entry)


@router.patch("/entries/{entry_id}", response_model=ScorecardEntryResponse)
async def update_entry(
    entry_id: UUID,
    request: ScorecardEntryUpdate,
    engine: ScorecardEngineDep,
):
    entry = await engine.update_entry(
        entry_id,
        EntryUpdate(**request.model_dump(exclude_unset=True)),
    )
    return ScorecardEntryResponse.model_validate(entry)


@router.delete("/entries/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_entry(entry_id: UUID, engine: ScorecardEngineDep):
    await engine.delete_entry(entry_id)


@router.get(
    "/identifiers/{identifier}",
    response_model=IdentifierAvailabilityResponse,
    summary="Check whether a scorecard identifier is free",
)
async def check_identifier(
    identifier: str,
    engine: ScorecardEngineDep,
    exclude_entry_id: UUID | None = Query(default=None),
):
    available = await engine.is_identifier_available(identifier, exclude_entry_id)
    return IdentifierAvailabilityResponse(identifier=identifier, available=available)


# =============================================================================
# MONTHLY VALUES
# =============================================================================


@router.put("/entries/{entry_id}/availability", response_model=AvailabilityResponse)
async def upsert_availability(
    entry_id: UUID,
    request: AvailabilityUpsert,
    engine: ScorecardEngineDep,
):
    """Insert or replace one month's availability."""
    record = await engine.upsert_availability(
        entry_id, request.year, request.month, request.availability, request.reason
    )
    return AvailabilityResponse.model_validate(record)


@router.put("/entries/{entry_id}/volume", response_model=VolumeResponse)
async def upsert_volume(
    entry_id: UUID,
    request: VolumeUpsert,
    engine: ScorecardEngineDep,
):
    record = await engine.upsert_volume(
        entry_id, request.year, request.month, request.volume, request.reason
    )
    return VolumeResponse.model_validate(record)


# =============================================================================
# PUBLISH
# =============================================================================


@router.post(
    "/teams/{team_id}/publish",
    response_model=PublishStatusResponse,
    summary="Publish a month",
    description="""
    Make a team's month visible in the enterprise view.

    Publishing again resets the watermark: every record edited since the
    previous publish becomes visible again.
    """,
)
async def publish(team_id: UUID, request: PublishRequest, engine: ScorecardEngineDep):
    row = await engine.publish(team_id, request.year, request.month)
    return PublishStatusResponse.model_validate(row)


@router.post(
    "/teams/{team_id}/unpublish",
    response_model=PublishStatusResponse | None,
    summary="Unpublish a month",
)
async def unpublish(team_id: UUID, request: PublishRequest, engine: ScorecardEngineDep):
    """Returns null when the month was never published."""
    row = await engine.unpublish(team_id, request.year, request.month)
    return PublishStatusResponse.model_validate(row) if row else None


@router.get("/teams/{team_id}/publish-status", response_model=list[PublishStatusResponse])
async def get_publish_status(
    team_id: UUID,
    engine: ScorecardEngineDep,
    year: int = Query(..., ge=2000, le=2100),
):
    rows = await engine.get_publish_status(team_id, year)
    return [PublishStatusResponse.model_validate(r) for r in rows]


# =============================================================================
# READ VIEWS
# =============================================================================


@router.get("/teams/{team_id}", response_model=TeamScorecardResponse)
async def get_team_scorecard(
    team_id: UUID,
    engine: ScorecardEngineDep,
    year: int = Query(..., ge=2000, le=2100),
):
    """Team editing view. Always the latest values."""
    data = await engine.get_team_scorecard_data(team_id, year)
    return TeamScorecardResponse(
        applications=data.applications,
        entries=data.entries,
        availability=build_availability_responses(data.availability, data.stats),
        volume=data.volume,
        publish_status=data.publish_status,
        stats=build_stats_response(data.stats),
    )


@router.get("/global", response_model=GlobalScorecardResponse)
async def get_global_scorecard(
    engine: ScorecardEngineDep,
    year: int = Query(..., ge=2000, le=2100),
    leadership_filter: str | None = Query(default=None, description="Name substring"),
    leadership_type: str | None = Query(
        default=None,
        description="svp, vp, director, app_owner, app_manager or unit_cio",
    ),
):
    """Enterprise view. Only published records not edited since publish."""
    data = await engine.get_global_scorecard_data(year, leadership_filter, leadership_type)
    return GlobalScorecardResponse(
        teams=data.teams,
        applications=data.applications,
        entries=data.entries,
        availability=build_availability_responses(data.availability, data.stats),
        volume=data.volume,
        leadership_options=data.leadership_options,
        publish_timestamps=data.publish_timestamps,
        stats=build_stats_response(data.stats),
    )
