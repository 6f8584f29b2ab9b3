"""Link manager schemas."""

from uuid import UUID

from pydantic import Field

from ..models import Link, LinkVisibility
from .base import EnsembleBaseModel, TimestampMixin


class LinkCreate(EnsembleBaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    url: str = Field(..., min_length=1, max_length=2048)
    description: str | None = None
    visibility: LinkVisibility = LinkVisibility.PRIVATE
    application_id: UUID | None = None
    category_id: UUID | None = None
    tags: list[str] = Field(default_factory=list, max_length=20)


class LinkBulkCreate(EnsembleBaseModel):
    team_id: UUID
    links: list[LinkCreate] = Field(..., min_length=1, max_length=200)


class LinkUpdateRequest(EnsembleBaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    url: str | None = Field(default=None, min_length=1, max_length=2048)
    description: str | None = None
    visibility: LinkVisibility | None = None
    application_id: UUID | None = None
    category_id: UUID | None = None
    tags: list[str] | None = Field(default=None, max_length=20)


class LinkBulkUpdateRequest(EnsembleBaseModel):
    team_id: UUID
    link_ids: list[UUID] = Field(..., min_length=1, max_length=500)
    visibility: LinkVisibility | None = None
    category_id: UUID | None = None
    application_id: UUID | None = None
    tags_to_add: list[str] | None = None
    replace_tags: bool = False


class LinkResponse(EnsembleBaseModel, TimestampMixin):
    id: UUID
    team_id: UUID
    title: str
    url: str
    description: str | None = None
    visibility: LinkVisibility
    tags: list[str]
    usage_count: int
    user_email: str
    created_by: str
    updated_by: str | None = None
    application_id: UUID | None = None
    application_name: str | None = None
    category_id: UUID | None = None
    category_name: str | None = None

    @classmethod
    def from_link(cls, link: Link) -> "LinkResponse":
        return cls(
            id=link.id,
            team_id=link.team_id,
            title=link.title,
            url=link.url,
            description=link.description,
            visibility=link.visibility,
            tags=link.tags or [],
            usage_count=link.usage_count,
            user_email=link.user_email,
            created_by=link.created_by,
            updated_by=link.updated_by,
            created_at=link.created_at,
            updated_at=link.updated_at,
            application_id=link.application_id,
            application_name=link.application.application_name if link.application else None,
            category_id=link.category_id,
            category_name=link.category.name if link.category else None,
        )


class LinkPageResponse(EnsembleBaseModel):
    items: list[LinkResponse]
    next_cursor: str | None = None
    total_count: int


class BulkUpdateResponse(EnsembleBaseModel):
    count: int


class UsageResponse(EnsembleBaseModel):
    usage_count: int


class LinkBreakdownResponse(EnsembleBaseModel):
    name: str
    count: int
    clicks: int


class LinkStatsResponse(EnsembleBaseModel):
    total_links: int
    total_clicks: int
    top_links: list[LinkResponse]
    by_category: list[LinkBreakdownResponse]
    by_application: list[LinkBreakdownResponse]
    by_visibility: list[LinkBreakdownResponse]


class CategoryCreate(EnsembleBaseModel):
    team_id: UUID
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = None


class CategoryResponse(EnsembleBaseModel):
    id: UUID
    team_id: UUID
    name: str
    description: str | None = None
    created_by: str
