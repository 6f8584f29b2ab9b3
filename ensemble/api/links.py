"""Link manager API Routes."""

from typing import Annotated, Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from ..core import CallerDep, SessionDep
from ..schemas import (
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
from ..services.link_service import (
    BulkLinkUpdate,
    LinkCursor,
    LinkInput,
    LinkService,
    LinkUpdate,
)

router = APIRouter(prefix="/links", tags=["links"])


def get_link_service(session: SessionDep, caller: CallerDep) -> LinkService:
    return LinkService(session, caller)


LinkServiceDep = Annotated[LinkService, Depends(get_link_service)]


def to_input(request: LinkCreate) -> LinkInput:
    return LinkInput(**request.model_dump())


# =============================================================================
# LINKS
# =============================================================================


@router.get("/teams/{team_id}", response_model=LinkPageResponse)
async def list_links(
    team_id: UUID,
    service: LinkServiceDep,
    search: str | None = None,
    visibility: Literal["all", "private", "public"] = "all",
    application_id: UUID | None = None,
    category_id: UUID | None = None,
    limit: int = Query(default=30, ge=1, le=100),
    cursor: str | None = Query(default=None, description="next_cursor of the previous page"),
):
    """Public links of the team plus the caller's private links, newest first."""
    page = await service.list_links(
        team_id,
        search=search,
        visibility=visibility,
        application_id=application_id,
        category_id=category_id,
        limit=limit,
        cursor=LinkCursor.decode(cursor) if cursor else None,
    )
    return LinkPageResponse(
        items=[LinkResponse.from_link(link) for link in page.items],
        next_cursor=page.next_cursor.encode() if page.next_cursor else None,
        total_count=page.total_count,
    )


@router.get("/teams/{team_id}/stats", response_model=LinkStatsResponse)
async def get_link_stats(team_id: UUID, service: LinkServiceDep):
    stats = await service.get_link_stats(team_id)
    return LinkStatsResponse(
        total_links=stats.total_links,
        total_clicks=stats.total_clicks,
        top_links=[LinkResponse.from_link(link) for link in stats.top_links],
        by_category=[LinkBreakdownResponse.model_validate(b) for b in stats.by_category],
        by_application=[LinkBreakdownResponse.model_validate(b) for b in stats.by_application],
        by_visibility=[LinkBreakdownResponse.model_validate(b) for b in stats.by_visibility],
    )


@router.post(
    "/teams/{team_id}",
    response_model=LinkResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_link(team_id: UUID, request: LinkCreate, service: LinkServiceDep):
    """Create a link. Public links need a team admin."""
    link = await service.create_link(team_id, to_input(request))
    return LinkResponse.from_link(link)


@router.post(
    "/bulk",
    response_model=list[LinkResponse],
    status_code=status.HTTP_201_CREATED,
)
async def bulk_create_links(request: LinkBulkCreate, service: LinkServiceDep):
    links = await service.bulk_create_links(
        request.team_id, [to_input(link) for link in request.links]
    )
    return [LinkResponse.from_link(link) for link in links]


@router.patch("/bulk", response_model=BulkUpdateResponse)
async def bulk_update_links(request: LinkBulkUpdateRequest, service: LinkServiceDep):
    """Same change applied to many links. 403 if any one of them is off-limits."""
    count = await service.bulk_update_links(
        request.team_id,
        BulkLinkUpdate(
            link_ids=request.link_ids,
            visibility=request.visibility,
            category_id=request.category_id,
            application_id=request.application_id,
            tags_to_add=request.tags_to_add,
            replace_tags=request.replace_tags,
        ),
    )
    return BulkUpdateResponse(count=count)


@router.patch("/{link_id}", response_model=LinkResponse)
async def update_link(link_id: UUID, request: LinkUpdateRequest, service: LinkServiceDep):
    """Partial update. An explicit ``null`` application or category clears it."""
    fields = request.model_dump(exclude_unset=True)
    link = await service.update_link(
        link_id,
        LinkUpdate(
            **fields,
            clear_application="application_id" in fields and fields["application_id"] is None,
            clear_category="category_id" in fields and fields["category_id"] is None,
        ),
    )
    return LinkResponse.from_link(link)


@router.delete("/{link_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_link(link_id: UUID, service: LinkServiceDep):
    await service.delete_link(link_id)


@router.post("/{link_id}/usage", response_model=UsageResponse)
async def track_usage(link_id: UUID, service: LinkServiceDep):
    return UsageResponse(usage_count=await service.track_usage(link_id))


# =============================================================================
# CATEGORIES
# =============================================================================


@router.get("/teams/{team_id}/categories", response_model=list[CategoryResponse])
async def list_categories(team_id: UUID, service: LinkServiceDep):
    categories = await service.list_categories(team_id)
    return [CategoryResponse.model_validate(c) for c in categories]


@router.post(
    "/categories",
    response_model=CategoryResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_category(request: CategoryCreate, service: LinkServiceDep):
    category = await service.create_category(
        request.team_id, request.name, request.description
    )
    return CategoryResponse.model_validate(category)
