"""
Link manager: team bookmarks with private/public visibility.

A caller sees every public link of the team plus their own private links.
Public links are curated by admins; private links belong to their creator
(admins may still fix them up).
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Sequence
from urllib.parse import urlparse
from uuid import UUID

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import ConflictError, NotFoundError, ValidationError
from ..core.rbac import Caller, Policy, authorize
from ..models import (
    Application,
    AuditAction,
    Link,
    LinkCategory,
    LinkVisibility,
    utcnow,
)
from .audit import AuditService

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

DEFAULT_PAGE_SIZE = 30
MAX_PAGE_SIZE = 100
TOP_LINKS = 5


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class LinkInput:
    title: str
    url: str
    description: str | None = None
    visibility: LinkVisibility = LinkVisibility.PRIVATE
    application_id: UUID | None = None
    category_id: UUID | None = None
    tags: list[str] = field(default_factory=list)


@dataclass
class LinkUpdate:
    """Partial update. None means unchanged."""
    title: str | None = None
    url: str | None = None
    description: str | None = None
    visibility: LinkVisibility | None = None
    application_id: UUID | None = None
    category_id: UUID | None = None
    tags: list[str] | None = None
    clear_application: bool = False
    clear_category: bool = False


@dataclass
class BulkLinkUpdate:
    link_ids: list[UUID]
    visibility: LinkVisibility | None = None
    category_id: UUID | None = None
    application_id: UUID | None = None
    tags_to_add: list[str] | None = None
    replace_tags: bool = False


@dataclass(frozen=True)
class LinkCursor:
    """Position after the last link of a page: ``(created_at, id)``.

    ``created_at`` alone is not unique; links written on the same clock
    tick share it.
    """
    created_at: datetime
    id: UUID

    def encode(self) -> str:
        return f"{self.created_at.isoformat()}|{self.id}"

    @classmethod
    def decode(cls, token: str) -> "LinkCursor":
        try:
            created_at, link_id = token.split("|")
            return cls(created_at=datetime.fromisoformat(created_at), id=UUID(link_id))
        except ValueError:
            raise ValidationError(f"Invalid cursor: {token!r}")


@dataclass
class LinkPage:
    items: list[Link]
    next_cursor: LinkCursor | None
    total_count: int


@dataclass
class LinkBreakdown:
    name: str
    count: int = 0
    clicks: int = 0


@dataclass
class LinkStats:
    total_links: int
    total_clicks: int
    top_links: list[Link]
    by_category: list[LinkBreakdown]
    by_application: list[LinkBreakdown]
    by_visibility: list[LinkBreakdown]


def normalize_tags(tags: Sequence[str] | None) -> list[str]:
    """Trim, drop blanks and de-duplicate, keeping first-seen order."""
    seen: dict[str, None] = {}
    for tag in tags or []:
        tag = tag.strip()
        if tag:
            seen.setdefault(tag, None)
    return list(seen)


def _validate_url(url: str) -> str:
    url = url.strip()
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError(f"Invalid URL: {url!r}")
    return url


def _breakdown(links: Sequence[Link], key: Callable[[Link], str]) -> list[LinkBreakdown]:
    groups: dict[str, LinkBreakdown] = {}
    for link in links:
        name = key(link)
        group = groups.setdefault(name, LinkBreakdown(name=name))
        group.count += 1
        group.clicks += link.usage_count
    return sorted(groups.values(), key=lambda g: (-g.count, g.name))


# =============================================================================
# LINK SERVICE
# =============================================================================


class LinkService:
    """Link CRUD, bulk operations and usage stats, all gated by the RBAC helper."""

    def __init__(self, session: AsyncSession, caller: Caller, clock: Clock = utcnow):
        self._session = session
        self._caller = caller
        self._clock = clock
        self._audit = AuditService(session)

    # =========================================================================
    # READS
    # =========================================================================

    async def list_links(
        self,
        team_id: UUID,
        search: str | None = None,
        visibility: str = "all",
        application_id: UUID | None = None,
        category_id: UUID | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        cursor: LinkCursor | None = None,
    ) -> LinkPage:
        """
        Newest-first page of links visible to the caller.

        ``cursor`` is the ``next_cursor`` of the previous page. Order is
        ``(created_at, id)`` descending. ``total_count`` ignores the cursor.
        """
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        filters = [Link.team_id == team_id, self._visibility_filter(visibility)]

        if application_id:
            filters.append(Link.application_id == application_id)
        if category_id:
            filters.append(Link.category_id == category_id)
        if search and search.strip():
            term = f"%{search.strip()}%"
            filters.append(
                or_(
                    Link.title.ilike(term),
                    Link.description.ilike(term),
                    Link.url.ilike(term),
                )
            )

        count_result = await self._session.execute(
            select(func.count()).select_from(Link).where(*filters)
        )
        total_count = count_result.scalar_one()

        query = select(Link).where(*filters)
        if cursor:
            query = query.where(
                or_(
                    Link.created_at < cursor.created_at,
                    and_(Link.created_at == cursor.created_at, Link.id < cursor.id),
                )
            )
        query = query.order_by(Link.created_at.desc(), Link.id.desc()).limit(limit + 1)

        result = await self._session.execute(query)
        items = list(result.scalars().all())

        next_cursor = None
        if len(items) > limit:
            items = items[:limit]
            next_cursor = LinkCursor(created_at=items[-1].created_at, id=items[-1].id)

        return LinkPage(items=items, next_cursor=next_cursor, total_count=total_count)

    async def get_link_stats(self, team_id: UUID) -> LinkStats:
        """Totals and breakdowns over the links the caller can see."""
        result = await self._session.execute(
            select(Link).where(Link.team_id == team_id, self._visibility_filter("all")),
            execution_options={"populate_existing": True},
        )
        links = list(result.scalars().all())

        top_links = sorted(links, key=lambda l: (-l.usage_count, l.title))[:TOP_LINKS]

        return LinkStats(
            total_links=len(links),
            total_clicks=sum(l.usage_count for l in links),
            top_links=top_links,
            by_category=_breakdown(
                links, lambda l: l.category.name if l.category else "Uncategorized"
            ),
            by_application=_breakdown(
                links,
                lambda l: l.application.application_name if l.application else "No Application",
            ),
            by_visibility=_breakdown(links, lambda l: LinkVisibility(l.visibility).value),
        )

    # =========================================================================
    # WRITES
    # =========================================================================

    async def create_link(self, team_id: UUID, input: LinkInput) -> Link:
        authorize(self._caller, team_id, Policy.MEMBER)
        if input.visibility == LinkVisibility.PUBLIC:
            authorize(
                self._caller, team_id, Policy.ADMIN,
                action="create", resource="Public links",
            )

        link = await self._build_link(team_id, input)
        self._session.add(link)
        await self._session.flush()
        await self._session.refresh(link, ["category", "application"])

        await self._audit.log_event(
            actor=self._caller.email,
            action=AuditAction.CREATE,
            resource_type="link",
            resource_id=link.id,
            team_id=team_id,
            details={"title": link.title, "visibility": LinkVisibility(link.visibility).value},
        )
        return link

    async def bulk_create_links(self, team_id: UUID, inputs: list[LinkInput]) -> list[Link]:
        """All-or-nothing: every input is validated before anything is written."""
        authorize(self._caller, team_id, Policy.MEMBER)
        if any(i.visibility == LinkVisibility.PUBLIC for i in inputs):
            authorize(
                self._caller, team_id, Policy.ADMIN,
                action="create", resource="Public links",
            )

        links = [await self._build_link(team_id, i) for i in inputs]
        self._session.add_all(links)
        await self._session.flush()
        for link in links:
            await self._session.refresh(link, ["category", "application"])

        logger.info(f"{self._caller.email} created {len(links)} links in team {team_id}")
        return links

    async def update_link(self, link_id: UUID, update_data: LinkUpdate) -> Link:
        link = await self._get_link_or_raise(link_id)
        self._authorize_link(link, action="update", target_visibility=update_data.visibility)

        if update_data.title is not None:
            if not update_data.title.strip():
                raise ValidationError("Title is required")
            link.title = update_data.title.strip()
        if update_data.url is not None:
            link.url = _validate_url(update_data.url)
        if update_data.description is not None:
            link.description = update_data.description
        if update_data.visibility is not None:
            link.visibility = update_data.visibility
        if update_data.clear_application:
            link.application_id = None
        elif update_data.application_id is not None:
            await self._check_application(link.team_id, update_data.application_id)
            link.application_id = update_data.application_id
        if update_data.clear_category:
            link.category_id = None
        elif update_data.category_id is not None:
            await self._check_category(link.team_id, update_data.category_id)
            link.category_id = update_data.category_id
        if update_data.tags is not None:
            link.tags = normalize_tags(update_data.tags)

        link.updated_by = self._caller.email
        link.updated_at = self._clock()
        await self._session.flush()
        # Relationships follow the new foreign keys on next access
        await self._session.refresh(link, ["category", "application"])

        await self._audit.log_event(
            actor=self._caller.email,
            action=AuditAction.UPDATE,
            resource_type="link",
            resource_id=link.id,
            team_id=link.team_id,
        )
        return link

    async def delete_link(self, link_id: UUID) -> None:
        link = await self._get_link_or_raise(link_id)
        self._authorize_link(link, action="delete")

        await self._audit.log_event(
            actor=self._caller.email,
            action=AuditAction.DELETE,
            resource_type="link",
            resource_id=link.id,
            team_id=link.team_id,
            details={"title": link.title},
        )
        await self._session.delete(link)
        await self._session.flush()

    async def bulk_update_links(self, team_id: UUID, data: BulkLinkUpdate) -> int:
        """
        Apply the same change to many links. Returns how many were updated.

        Permission is checked for every link before anything is written, so
        one forbidden link fails the whole request. Tag merges need each
        row's current tags and run row by row, each in its own savepoint;
        a row that fails is logged and left out of the count. Everything
        else is one UPDATE statement.
        """
        authorize(self._caller, team_id, Policy.MEMBER)

        result = await self._session.execute(
            select(Link).where(Link.id.in_(data.link_ids), Link.team_id == team_id)
        )
        links = list(result.scalars().all())
        if not links:
            raise NotFoundError("No links found to update")

        for link in links:
            self._authorize_link(link, action="update", target_visibility=data.visibility)

        values: dict[str, Any] = {
            "updated_by": self._caller.email,
            "updated_at": self._clock(),
        }
        if data.visibility is not None:
            values["visibility"] = data.visibility
        if data.category_id is not None:
            await self._check_category(team_id, data.category_id)
            values["category_id"] = data.category_id
        if data.application_id is not None:
            await self._check_application(team_id, data.application_id)
            values["application_id"] = data.application_id

        if data.tags_to_add is not None:
            new_tags = normalize_tags(data.tags_to_add)
            updated = 0
            for link in links:
                link_id = link.id
                try:
                    async with self._session.begin_nested():
                        for key, value in values.items():
                            setattr(link, key, value)
                        link.tags = (
                            new_tags
                            if data.replace_tags
                            else normalize_tags([*(link.tags or []), *new_tags])
                        )
                except SQLAlchemyError as e:
                    logger.error(f"Bulk tag update failed for link {link_id}: {e}")
                    continue
                updated += 1
        else:
            await self._session.execute(
                update(Link)
                .where(Link.id.in_([link.id for link in links]))
                .values(**values)
                .execution_options(synchronize_session="fetch")
            )
            updated = len(links)

        logger.info(f"{self._caller.email} bulk-updated {updated} links in team {team_id}")
        return updated

    async def track_usage(self, link_id: UUID) -> int:
        """Count one click on a link the caller can see. Returns the new usage count."""
        link = await self._get_link_or_raise(link_id)
        authorize(self._caller, link.team_id, Policy.MEMBER)
        if (
            LinkVisibility(link.visibility) == LinkVisibility.PRIVATE
            and link.user_email != self._caller.email
        ):
            # Someone else's private link is invisible, same as in list_links
            raise NotFoundError(f"Link {link_id} not found")

        result = await self._session.execute(
            update(Link)
            .where(Link.id == link_id)
            .values(usage_count=Link.usage_count + 1)
            .returning(Link.usage_count)
        )
        count = result.scalar_one_or_none()
        if count is None:
            raise NotFoundError(f"Link {link_id} not found")
        return count

    # =========================================================================
    # CATEGORIES
    # =========================================================================

    async def list_categories(self, team_id: UUID) -> list[LinkCategory]:
        result = await self._session.execute(
            select(LinkCategory)
            .where(LinkCategory.team_id == team_id)
            .order_by(LinkCategory.name)
        )
        return list(result.scalars().all())

    async def create_category(
        self,
        team_id: UUID,
        name: str,
        description: str | None = None,
    ) -> LinkCategory:
        authorize(self._caller, team_id, Policy.MEMBER)
        name = name.strip()
        if not name:
            raise ValidationError("Category name is required")

        category = LinkCategory(
            team_id=team_id,
            name=name,
            description=description,
            created_by=self._caller.email,
            created_at=self._clock(),
        )
        try:
            async with self._session.begin_nested():
                self._session.add(category)
        except IntegrityError:
            raise ConflictError(f'Category "{name}" already exists')
        return category

    # =========================================================================
    # HELPER METHODS
    # =========================================================================

    def _visibility_filter(self, visibility: str):
        own_private = and_(
            Link.visibility == LinkVisibility.PRIVATE,
            Link.user_email == self._caller.email,
        )
        if visibility == "private":
            return own_private
        if visibility == "public":
            return Link.visibility == LinkVisibility.PUBLIC
        if visibility == "all":
            return or_(Link.visibility == LinkVisibility.PUBLIC, own_private)
        raise ValidationError(f"Unknown visibility filter: {visibility}")

    def _authorize_link(
        self,
        link: Link,
        action: str,
        target_visibility: LinkVisibility | None = None,
    ) -> None:
        authorize(
            self._caller,
            link.team_id,
            Policy.OWNER_OR_ADMIN,
            owner=link.user_email,
            visibility=LinkVisibility(link.visibility).value,
            target_visibility=LinkVisibility(target_visibility).value if target_visibility else None,
            action=action,
            resource="links",
        )

    async def _build_link(self, team_id: UUID, input: LinkInput) -> Link:
        if not input.title or not input.title.strip():
            raise ValidationError("Title is required")
        if input.application_id:
            await self._check_application(team_id, input.application_id)
        if input.category_id:
            await self._check_category(team_id, input.category_id)

        return Link(
            team_id=team_id,
            title=input.title.strip(),
            url=_validate_url(input.url),
            description=input.description,
            visibility=input.visibility,
            application_id=input.application_id,
            category_id=input.category_id,
            tags=normalize_tags(input.tags),
            usage_count=0,
            user_email=self._caller.email,
            created_by=self._caller.display_name,
            created_at=self._clock(),
        )

    async def _get_link_or_raise(self, link_id: UUID) -> Link:
        link = await self._session.get(Link, link_id)
        if not link:
            raise NotFoundError(f"Link {link_id} not found")
        return link

    async def _check_application(self, team_id: UUID, application_id: UUID) -> None:
        application = await self._session.get(Application, application_id)
        if not application or application.team_id != team_id:
            raise ValidationError("Application does not belong to this team")

    async def _check_category(self, team_id: UUID, category_id: UUID) -> None:
        category = await self._session.get(LinkCategory, category_id)
        if not category or category.team_id != team_id:
            raise ValidationError("Category does not belong to this team")
