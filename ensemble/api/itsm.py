"""
ITSM API Routes: settings, sync and the review queue.

The UI calls POST /sync every time the queue is opened and then reads the
queue regardless of the sync outcome.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from ..core import CallerDep, SessionDep
from ..integrations import ItsmClient, ItsmSource
from ..models import ItsmRecordType
from ..schemas import (
    BulkImportRequest,
    BulkImportResponse,
    ItsmSettingsResponse,
    ItsmSettingsUpdate,
    ProcessQueueItemRequest,
    ProcessQueueItemResponse,
    ReviewQueueItemResponse,
    SyncRequest,
    SyncResponse,
)
from ..services.itsm_engine import (
    CmdbCiMapping,
    ItsmEngine,
    ItsmSettingsInput,
    ItsmSettingsView,
    ReviewQueueItemView,
    WorkgroupMapping,
    is_closed,
)

router = APIRouter(prefix="/itsm", tags=["itsm"])


# =============================================================================
# DEPENDENCIES
# =============================================================================


def get_itsm_source() -> ItsmSource:
    return ItsmClient.from_settings()


def get_itsm_engine(
    session: SessionDep,
    caller: CallerDep,
    source: Annotated[ItsmSource, Depends(get_itsm_source)],
) -> ItsmEngine:
    return ItsmEngine(session, caller, source)


ItsmEngineDep = Annotated[ItsmEngine, Depends(get_itsm_engine)]


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================


def build_settings_response(view: ItsmSettingsView) -> ItsmSettingsResponse:
    return ItsmSettingsResponse(
        team_id=view.team_id,
        max_search_days=view.max_search_days,
        rfc_import_mode=view.rfc_import_mode,
        inc_import_mode=view.inc_import_mode,
        app_workgroups=[
            {"application_id": wg.application_id, "type": wg.type, "group_name": wg.group_name}
            for wg in view.app_workgroups
        ],
        app_cmdb_cis=[
            {"application_id": ci.application_id, "cmdb_ci_name": ci.cmdb_ci_name}
            for ci in view.app_cmdb_cis
        ],
    )


def build_queue_item_response(view: ReviewQueueItemView) -> ReviewQueueItemResponse:
    item = view.item
    return ReviewQueueItemResponse(
        id=item.id,
        team_id=item.team_id,
        external_id=item.external_id,
        type=item.type,
        status=item.status,
        application_id=item.application_id,
        effective_application_id=view.effective_application_id,
        match_source=view.match_source,
        is_closed=view.is_closed,
        raw_data=item.raw_data or {},
        resolved_by=item.resolved_by,
        resolved_at=item.resolved_at,
        created_at=item.created_at,
    )


# =============================================================================
# SETTINGS
# =============================================================================


@router.get("/teams/{team_id}/settings", response_model=ItsmSettingsResponse)
async def get_settings_route(team_id: UUID, engine: ItsmEngineDep):
    return build_settings_response(await engine.get_settings(team_id))


@router.put(
    "/teams/{team_id}/settings",
    response_model=ItsmSettingsResponse,
    summary="Replace ITSM settings",
    description="""
    Replace import modes, the lookback window and every workgroup and
    CMDB CI mapping for the team's applications. Team admin only.
    """,
)
async def update_settings_route(
    team_id: UUID,
    request: ItsmSettingsUpdate,
    engine: ItsmEngineDep,
):
    view = await engine.update_settings(
        team_id,
        ItsmSettingsInput(
            max_search_days=request.max_search_days,
            rfc_import_mode=request.rfc_import_mode,
            inc_import_mode=request.inc_import_mode,
            app_workgroups=[
                WorkgroupMapping(wg.application_id, ItsmRecordType(wg.type), wg.group_name)
                for wg in request.app_workgroups
            ],
            app_cmdb_cis=[
                CmdbCiMapping(ci.application_id, ci.cmdb_ci_name)
                for ci in request.app_cmdb_cis
            ],
        ),
    )
    return build_settings_response(view)


# =============================================================================
# SYNC & REVIEW QUEUE
# =============================================================================


@router.post("/teams/{team_id}/sync", response_model=SyncResponse)
async def sync_items(team_id: UUID, request: SyncRequest, engine: ItsmEngineDep):
    """
    Pull recent tickets into the review queue.

    ITSM outages come back as ``success=true`` with ``errors`` filled in;
    the existing queue is untouched.
    """
    result = await engine.sync_itsm_items(team_id, request.fallback_application_id)
    return SyncResponse(
        success=result.success,
        message=result.message,
        queued=result.queued,
        auto_imported=result.auto_imported,
        skipped=result.skipped,
        errors=result.errors,
    )


@router.get("/teams/{team_id}/queue", response_model=list[ReviewQueueItemResponse])
async def get_review_queue(
    team_id: UUID,
    engine: ItsmEngineDep,
    type: ItsmRecordType | None = Query(default=None),
    include_recently_resolved: bool = Query(default=False),
):
    views = await engine.get_review_queue(team_id, type, include_recently_resolved)
    return [build_queue_item_response(v) for v in views]


@router.post("/queue/bulk-import", response_model=BulkImportResponse)
async def bulk_import(request: BulkImportRequest, engine: ItsmEngineDep):
    """Import many items. Per-item failures are reported, not raised."""
    result = await engine.bulk_import_itsm_records(
        request.ids, request.fallback_application_id
    )
    return BulkImportResponse(
        count=result.count,
        skipped=result.skipped,
        failed=result.failed,
        message=result.message,
        errors=result.errors,
    )


@router.post("/queue/{item_id}", response_model=ProcessQueueItemResponse)
async def process_queue_item(
    item_id: UUID,
    request: ProcessQueueItemRequest,
    engine: ItsmEngineDep,
):
    """Import or reject one pending item. 404 when it is already resolved."""
    result = await engine.process_review_queue_item(
        item_id, request.action, request.application_id
    )
    view = ReviewQueueItemView(
        item=result.item,
        effective_application_id=result.item.application_id,
        match_source=result.item.match_source,
        is_closed=is_closed(result.item),
    )
    return ProcessQueueItemResponse(
        item=build_queue_item_response(view),
        entry_id=result.entry.id if result.entry else None,
    )


@router.delete(
    "/entries/{entry_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Untrack an imported turnover entry",
)
async def untrack_entry(entry_id: UUID, engine: ItsmEngineDep):
    await engine.untrack_entry(entry_id)
