"""Turnover API Routes: handover entries, dispatch, finalize and history."""

from datetime import date
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from ..core import CallerDep, SessionDep
from ..models import TurnoverSection, TurnoverStatus
from ..schemas import (
    FinalizeCheckResponse,
    FinalizedTurnoverListResponse,
    FinalizedTurnoverResponse,
    FinalizedTurnoverSummary,
    FinalizeRequest,
    TurnoverEntryCreate,
    TurnoverEntryListResponse,
    TurnoverEntryResponse,
    TurnoverEntryUpdateRequest,
    TurnoverMetricsResponse,
)
from ..services.turnover_engine import (
    TurnoverEngine,
    TurnoverEntryInput,
    TurnoverEntryUpdate,
)

router = APIRouter(prefix="/turnover", tags=["turnover"])


def get_turnover_engine(session: SessionDep, caller: CallerDep) -> TurnoverEngine:
    return TurnoverEngine(session, caller)


TurnoverEngineDep = Annotated[TurnoverEngine, Depends(get_turnover_engine)]


# =============================================================================
# ENTRIES
# =============================================================================


@router.post(
    "/entries",
    response_model=TurnoverEntryResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_entry(request: TurnoverEntryCreate, engine: TurnoverEngineDep):
    entry = await engine.create_entry(TurnoverEntryInput(**request.model_dump()))
    return TurnoverEntryResponse.model_validate(entry)


@router.get("/teams/{team_id}/entries", response_model=TurnoverEntryListResponse)
async def list_entries(
    team_id: UUID,
    engine: TurnoverEngineDep,
    application_id: UUID | None = None,
    section: TurnoverSection | None = None,
    entry_status: TurnoverStatus | None = Query(default=None, alias="status"),
    include_recently_resolved: bool = False,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
):
    """Important entries first, then newest first."""
    entries, total = await engine.list_entries(
        team_id,
        application_id=application_id,
        section=section,
        status=entry_status,
        include_recently_resolved=include_recently_resolved,
        limit=limit,
        offset=offset,
    )
    return TurnoverEntryListResponse(
        items=[TurnoverEntryResponse.model_validate(e) for e in entries],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/teams/{team_id}/dispatch", response_model=list[TurnoverEntryResponse])
async def get_dispatch_entries(team_id: UUID, engine: TurnoverEngineDep):
    """What the next finalize would snapshot: open entries and today's resolutions."""
    entries = await engine.get_dispatch_entries(team_id)
    return [TurnoverEntryResponse.model_validate(e) for e in entries]


@router.patch("/entries/{entry_id}", response_model=TurnoverEntryResponse)
async def update_entry(
    entry_id: UUID,
    request: TurnoverEntryUpdateRequest,
    engine: TurnoverEngineDep,
):
    entry = await engine.update_entry(
        entry_id,
        TurnoverEntryUpdate(**request.model_dump(exclude_unset=True)),
    )
    return TurnoverEntryResponse.model_validate(entry)


@router.post("/entries/{entry_id}/important", response_model=TurnoverEntryResponse)
async def toggle_important(entry_id: UUID, engine: TurnoverEngineDep):
    return TurnoverEntryResponse.model_validate(await engine.toggle_important(entry_id))


@router.post("/entries/{entry_id}/resolve", response_model=TurnoverEntryResponse)
async def resolve_entry(entry_id: UUID, engine: TurnoverEngineDep):
    return TurnoverEntryResponse.model_validate(await engine.resolve_entry(entry_id))


@router.delete("/entries/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_entry(entry_id: UUID, engine: TurnoverEngineDep):
    await engine.delete_entry(entry_id)


# =============================================================================
# FINALIZE & HISTORY
# =============================================================================


@router.get("/teams/{team_id}/finalize", response_model=FinalizeCheckResponse)
async def can_finalize(team_id: UUID, engine: TurnoverEngineDep):
    check = await engine.can_finalize(team_id)
    return FinalizeCheckResponse(
        can_finalize=check.can_finalize,
        message=check.message,
        last_finalized_at=check.last_finalized_at,
        remaining_minutes=check.remaining_minutes,
    )


@router.post(
    "/teams/{team_id}/finalize",
    response_model=FinalizedTurnoverResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Finalize the turnover",
    description="""
    Store an immutable snapshot of the dispatch entries.

    Returns 409 while the cooldown after the previous finalize is running.
    """,
)
async def finalize(team_id: UUID, request: FinalizeRequest, engine: TurnoverEngineDep):
    finalized = await engine.finalize(team_id, request.notes)
    return FinalizedTurnoverResponse.model_validate(finalized)


@router.get("/teams/{team_id}/history", response_model=FinalizedTurnoverListResponse)
async def list_finalized(
    team_id: UUID,
    engine: TurnoverEngineDep,
    from_date: date | None = None,
    to_date: date | None = None,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
):
    items, total = await engine.list_finalized(team_id, from_date, to_date, limit, offset)
    return FinalizedTurnoverListResponse(
        items=[FinalizedTurnoverSummary.model_validate(f) for f in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/history/{finalized_id}", response_model=FinalizedTurnoverResponse)
async def get_finalized(finalized_id: UUID, engine: TurnoverEngineDep):
    return FinalizedTurnoverResponse.model_validate(await engine.get_finalized(finalized_id))


@router.get("/teams/{team_id}/metrics", response_model=TurnoverMetricsResponse)
async def get_metrics(
    team_id: UUID,
    engine: TurnoverEngineDep,
    start_date: date = Query(...),
    end_date: date = Query(...),
):
    metrics = await engine.get_metrics(team_id, start_date, end_date)
    return TurnoverMetricsResponse(
        total_entries=metrics.total_entries,
        resolved_entries=metrics.resolved_entries,
        open_entries=metrics.open_entries,
        critical_items=metrics.critical_items,
        resolution_rate=metrics.resolution_rate,
        section_distribution=metrics.section_distribution,
        activity_trend=metrics.activity_trend,
    )
