"""
Scorecard Engine: monthly metrics and the publish/staleness watermark.

Two read paths share the same tables:

- The team view always shows the latest values (operators edit drafts here).
- The enterprise view only shows a record when its month is published AND
  the record has not been touched since the publish timestamp.

A late edit therefore hides that one record enterprise-wide until the month
is published again. Publishing is idempotent and always resets the watermark.
"""

import logging
import re
import secrets
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Sequence
from uuid import UUID, uuid4

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import dialect_insert
from ..core.exceptions import ConflictError, NotFoundError, ValidationError
from ..core.rbac import Caller, Policy, authorize
from ..models import (
    Application,
    ApplicationStatus,
    AuditAction,
    ScorecardAvailability,
    ScorecardEntry,
    ScorecardPublishStatus,
    ScorecardVolume,
    Team,
    as_utc,
    utcnow,
)
from .audit import AuditService

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

# Filter key -> Application column holding the person's name
LEADERSHIP_FIELDS: dict[str, str] = {
    "svp": "owner_svp_name",
    "vp": "vp_name",
    "director": "director_name",
    "app_owner": "application_owner_name",
    "app_manager": "application_manager_name",
    "unit_cio": "unit_cio_name",
}

DEFAULT_AVAILABILITY_THRESHOLD = Decimal("98.00")
DEFAULT_VOLUME_CHANGE_THRESHOLD = Decimal("20.00")


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class EntryInput:
    """Input for creating a scorecard entry."""
    name: str
    scorecard_identifier: str | None = None  # None -> generated slug
    availability_threshold: Decimal = DEFAULT_AVAILABILITY_THRESHOLD
    volume_change_threshold: Decimal = DEFAULT_VOLUME_CHANGE_THRESHOLD


@dataclass
class EntryUpdate:
    """Partial update of a scorecard entry. None means unchanged."""
    name: str | None = None
    scorecard_identifier: str | None = None
    availability_threshold: Decimal | None = None
    volume_change_threshold: Decimal | None = None


@dataclass
class AvailabilityBreach:
    """An availability record below its entry's SLA floor."""
    scorecard_entry_id: UUID
    year: int
    month: int
    availability: Decimal
    threshold: Decimal


@dataclass
class ScorecardStats:
    total_teams: int
    total_applications: int
    total_entries: int
    availability_records: int
    volume_records: int
    breaches: list[AvailabilityBreach] = field(default_factory=list)

    @property
    def breach_count(self) -> int:
        return len(self.breaches)

    def is_breach(self, entry_id: UUID, year: int, month: int) -> bool:
        return any(
            b.scorecard_entry_id == entry_id and b.year == year and b.month == month
            for b in self.breaches
        )


@dataclass
class GlobalScorecardData:
    """Enterprise view: only published, non-stale records."""
    teams: list[Team]
    applications: list[Application]
    entries: list[ScorecardEntry]
    availability: list[ScorecardAvailability]
    volume: list[ScorecardVolume]
    leadership_options: dict[str, list[str]]
    publish_timestamps: dict[str, dict[str, datetime]]
    stats: ScorecardStats


@dataclass
class TeamScorecardData:
    """Team-internal editing view: latest values, regardless of publish state."""
    applications: list[Application]
    entries: list[ScorecardEntry]
    availability: list[ScorecardAvailability]
    volume: list[ScorecardVolume]
    publish_status: list[ScorecardPublishStatus]
    stats: ScorecardStats


# =============================================================================
# PURE HELPERS
# =============================================================================


def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug or "entry"


def generate_identifier(name: str) -> str:
    """Slug of the entry name plus a random suffix, e.g. ``payments-api-3f9a1c``."""
    return f"{slugify(name)[:90]}-{secrets.token_hex(3)}"


def is_record_visible(
    record: ScorecardAvailability | ScorecardVolume,
    team_id: UUID,
    watermarks: dict[tuple[UUID, int, int], datetime],
) -> bool:
    """Staleness rule: visible iff the month is live and the record predates publish."""
    published_at = watermarks.get((team_id, record.year, record.month))
    if published_at is None:
        return False
    modified_at = as_utc(record.updated_at or record.created_at)
    return modified_at <= published_at


def matches_leadership(
    application: Application,
    needle: str,
    leadership_type: str | None = None,
) -> bool:
    """Case-insensitive substring match on one leadership field, or on all of them."""
    needle = needle.strip().lower()
    if not needle:
        return True

    if leadership_type and leadership_type != "all":
        columns = [LEADERSHIP_FIELDS[leadership_type]]
    else:
        columns = list(LEADERSHIP_FIELDS.values())

    return any(
        needle in (getattr(application, column) or "").lower()
        for column in columns
    )


def leadership_options(applications: Sequence[Application]) -> dict[str, list[str]]:
    """Deduplicated, sorted names per leadership role for filter dropdowns."""
    options: dict[str, list[str]] = {}
    for key, column in LEADERSHIP_FIELDS.items():
        names = {
            getattr(app, column).strip()
            for app in applications
            if getattr(app, column) and getattr(app, column).strip()
        }
        options[key] = sorted(names)
    return options


def compute_stats(
    teams: Sequence[Team],
    applications: Sequence[Application],
    entries: Sequence[ScorecardEntry],
    availability: Sequence[ScorecardAvailability],
    volume: Sequence[ScorecardVolume],
) -> ScorecardStats:
    """Aggregate counts and flag availability below each entry's threshold."""
    thresholds = {e.id: Decimal(e.availability_threshold) for e in entries}

    breaches = []
    for record in availability:
        threshold = thresholds.get(record.scorecard_entry_id)
        if threshold is not None and Decimal(record.availability) < threshold:
            breaches.append(
                AvailabilityBreach(
                    scorecard_entry_id=record.scorecard_entry_id,
                    year=record.year,
                    month=record.month,
                    availability=Decimal(record.availability),
                    threshold=threshold,
                )
            )

    return ScorecardStats(
        total_teams=len(teams),
        total_applications=len(applications),
        total_entries=len(entries),
        availability_records=len(availability),
        volume_records=len(volume),
        breaches=breaches,
    )


def _to_decimal(value, label: str) -> Decimal:
    try:
        return Decimal(str(value)).quantize(Decimal("0.01"))
    except InvalidOperation:
        raise ValidationError(f"{label} must be a number")


def _validate_period(year: int, month: int) -> None:
    if not 1 <= month <= 12:
        raise ValidationError(f"Month must be between 1 and 12, got {month}")
    if not 2000 <= year <= 2100:
        raise ValidationError(f"Year {year} is out of range")


# =============================================================================
# SCORECARD ENGINE
# =============================================================================


class ScorecardEngine:
    """
    Scorecard entries, monthly upserts, and the publish workflow.

    Guarantees:
    1. At most one availability/volume row per (entry, year, month), enforced
       by a unique constraint and written with INSERT .. ON CONFLICT
    2. Identifier uniqueness enforced by the database, not a pre-check
    3. Publish rows are flipped, never deleted
    """

    def __init__(
        self,
        session: AsyncSession,
        caller: Caller,
        clock: Clock = utcnow,
    ):
        self._session = session
        self._caller = caller
        self._clock = clock
        self._audit = AuditService(session)

    # =========================================================================
    # ENTRIES
    # =========================================================================

    async def create_entry(
        self,
        application_id: UUID,
        input: EntryInput,
    ) -> ScorecardEntry:
        """Create a metric definition. Caller must be admin of the app's team."""
        application = await self._get_application_or_raise(application_id)
        authorize(
            self._caller, application.team_id, Policy.ADMIN,
            action="create", resource="scorecard entries",
        )

        if not input.name or not input.name.strip():
            raise ValidationError("Entry name is required")

        if input.scorecard_identifier is None:
            identifier = generate_identifier(input.name)
        else:
            identifier = self._clean_identifier(input.scorecard_identifier)

        entry = ScorecardEntry(
            id=uuid4(),
            application_id=application.id,
            scorecard_identifier=identifier,
            name=input.name.strip(),
            availability_threshold=_to_decimal(
                input.availability_threshold, "Availability threshold"
            ),
            volume_change_threshold=_to_decimal(
                input.volume_change_threshold, "Volume change threshold"
            ),
            created_by=self._caller.email,
            created_at=self._clock(),
        )

        await self._flush_identifier(entry, identifier)

        await self._audit.log_event(
            actor=self._caller.email,
            action=AuditAction.CREATE,
            resource_type="scorecard_entry",
            resource_id=entry.id,
            team_id=application.team_id,
            details={"scorecard_identifier": identifier, "name": entry.name},
        )
        logger.info(f"Created scorecard entry {identifier} for application {application.id}")
        return entry

    async def update_entry(self, entry_id: UUID, update: EntryUpdate) -> ScorecardEntry:
        entry, application = await self._get_entry_with_application(entry_id)
        authorize(
            self._caller, application.team_id, Policy.ADMIN,
            action="update", resource="scorecard entries",
        )

        changes: dict[str, str] = {}
        if update.name is not None:
            if not update.name.strip():
                raise ValidationError("Entry name is required")
            entry.name = update.name.strip()
            changes["name"] = entry.name
        if update.availability_threshold is not None:
            entry.availability_threshold = _to_decimal(
                update.availability_threshold, "Availability threshold"
            )
            changes["availability_threshold"] = str(entry.availability_threshold)
        if update.volume_change_threshold is not None:
            entry.volume_change_threshold = _to_decimal(
                update.volume_change_threshold, "Volume change threshold"
            )
            changes["volume_change_threshold"] = str(entry.volume_change_threshold)

        entry.updated_by = self._caller.email
        entry.updated_at = self._clock()

        if (
            update.scorecard_identifier is not None
            and update.scorecard_identifier != entry.scorecard_identifier
        ):
            identifier = self._clean_identifier(update.scorecard_identifier)
            changes["scorecard_identifier"] = identifier
            await self._flush_identifier(entry, identifier)
        else:
            await self._session.flush()

        await self._audit.log_event(
            actor=self._caller.email,
            action=AuditAction.UPDATE,
            resource_type="scorecard_entry",
            resource_id=entry.id,
            team_id=application.team_id,
            details=changes,
        )
        return entry

    async def delete_entry(self, entry_id: UUID) -> None:
        """Delete an entry together with all of its monthly records."""
        entry, application = await self._get_entry_with_application(entry_id)
        authorize(
            self._caller, application.team_id, Policy.ADMIN,
            action="delete", resource="scorecard entries",
        )

        await self._session.execute(
            delete(ScorecardAvailability).where(
                ScorecardAvailability.scorecard_entry_id == entry.id
            )
        )
        await self._session.execute(
            delete(ScorecardVolume).where(ScorecardVolume.scorecard_entry_id == entry.id)
        )
        await self._session.delete(entry)
        await self._session.flush()

        await self._audit.log_event(
            actor=self._caller.email,
            action=AuditAction.DELETE,
            resource_type="scorecard_entry",
            resource_id=entry_id,
            team_id=application.team_id,
            details={"scorecard_identifier": entry.scorecard_identifier},
        )

    async def is_identifier_available(
        self,
        identifier: str,
        exclude_entry_id: UUID | None = None,
    ) -> bool:
        """Advisory check for forms. The unique constraint is the real guard."""
        query = select(ScorecardEntry.id).where(
            ScorecardEntry.scorecard_identifier == identifier.strip()
        )
        if exclude_entry_id:
            query = query.where(ScorecardEntry.id != exclude_entry_id)
        result = await self._session.execute(query.limit(1))
        return result.scalar_one_or_none() is None

    # =========================================================================
    # MONTHLY VALUES (ATOMIC UPSERT)
    # =========================================================================

    async def upsert_availability(
        self,
        entry_id: UUID,
        year: int,
        month: int,
        value: Decimal | float | str,
        reason: str | None = None,
    ) -> ScorecardAvailability:
        """Insert or replace one month's availability. Caller must be a team member."""
        entry, application = await self._get_entry_with_application(entry_id)
        authorize(self._caller, application.team_id, Policy.MEMBER)
        _validate_period(year, month)

        availability = _to_decimal(value, "Availability")
        if not Decimal("0") <= availability <= Decimal("100"):
            raise ValidationError("Availability must be between 0 and 100")

        now = self._clock()
        stmt = dialect_insert(self._session, ScorecardAvailability).values(
            id=uuid4(),
            scorecard_entry_id=entry.id,
            year=year,
            month=month,
            availability=availability,
            reason=reason,
            created_by=self._caller.email,
            created_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["scorecard_entry_id", "year", "month"],
            set_={
                "availability": stmt.excluded.availability,
                "reason": stmt.excluded.reason,
                "updated_by": self._caller.email,
                "updated_at": now,
            },
        ).returning(ScorecardAvailability)

        result = await self._session.execute(
            stmt, execution_options={"populate_existing": True}
        )
        return result.scalar_one()

    async def upsert_volume(
        self,
        entry_id: UUID,
        year: int,
        month: int,
        value: int,
        reason: str | None = None,
    ) -> ScorecardVolume:
        """Insert or replace one month's volume. Caller must be a team member."""
        entry, application = await self._get_entry_with_application(entry_id)
        authorize(self._caller, application.team_id, Policy.MEMBER)
        _validate_period(year, month)

        if isinstance(value, bool) or int(value) != value or value < 0:
            raise ValidationError("Volume must be a non-negative whole number")

        now = self._clock()
        stmt = dialect_insert(self._session, ScorecardVolume).values(
            id=uuid4(),
            scorecard_entry_id=entry.id,
            year=year,
            month=month,
            volume=int(value),
            reason=reason,
            created_by=self._caller.email,
            created_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["scorecard_entry_id", "year", "month"],
            set_={
                "volume": stmt.excluded.volume,
                "reason": stmt.excluded.reason,
                "updated_by": self._caller.email,
                "updated_at": now,
            },
        ).returning(ScorecardVolume)

        result = await self._session.execute(
            stmt, execution_options={"populate_existing": True}
        )
        return result.scalar_one()

    # =========================================================================
    # PUBLISH WORKFLOW
    # =========================================================================

    async def publish(self, team_id: UUID, year: int, month: int) -> ScorecardPublishStatus:
        """
        Publish a team's month. Idempotent: re-publishing moves the watermark
        forward, which makes edits since the previous publish visible again.
        """
        await self._get_team_or_raise(team_id)
        authorize(
            self._caller, team_id, Policy.ADMIN,
            action="publish", resource="scorecards",
        )
        _validate_period(year, month)

        now = self._clock()
        stmt = dialect_insert(self._session, ScorecardPublishStatus).values(
            id=uuid4(),
            team_id=team_id,
            year=year,
            month=month,
            is_published=True,
            published_by=self._caller.email,
            published_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["team_id", "year", "month"],
            set_={
                "is_published": True,
                "published_by": self._caller.email,
                "published_at": now,
            },
        ).returning(ScorecardPublishStatus)

        result = await self._session.execute(
            stmt, execution_options={"populate_existing": True}
        )
        status = result.scalar_one()

        await self._audit.log_event(
            actor=self._caller.email,
            action=AuditAction.PUBLISH,
            resource_type="scorecard_month",
            resource_id=status.id,
            team_id=team_id,
            details={"year": year, "month": month},
        )
        logger.info(f"Published scorecard {year}-{month:02d} for team {team_id}")
        return status

    async def unpublish(
        self,
        team_id: UUID,
        year: int,
        month: int,
    ) -> ScorecardPublishStatus | None:
        """
        Withdraw a month from the enterprise view.

        Silent no-op when the month was never published: callers may
        unpublish without knowing the prior state.
        """
        await self._get_team_or_raise(team_id)
        authorize(
            self._caller, team_id, Policy.ADMIN,
            action="unpublish", resource="scorecards",
        )

        status = await self._get_publish_row(team_id, year, month)
        if status is None:
            logger.info(f"Unpublish {year}-{month:02d} for team {team_id}: nothing to do")
            return None

        status.is_published = False
        status.unpublished_by = self._caller.email
        status.unpublished_at = self._clock()
        await self._session.flush()

        await self._audit.log_event(
            actor=self._caller.email,
            action=AuditAction.UNPUBLISH,
            resource_type="scorecard_month",
            resource_id=status.id,
            team_id=team_id,
            details={"year": year, "month": month},
        )
        logger.info(f"Unpublished scorecard {year}-{month:02d} for team {team_id}")
        return status

    async def get_publish_status(
        self,
        team_id: UUID,
        year: int,
    ) -> Sequence[ScorecardPublishStatus]:
        result = await self._session.execute(
            select(ScorecardPublishStatus)
            .where(
                ScorecardPublishStatus.team_id == team_id,
                ScorecardPublishStatus.year == year,
            )
            .order_by(ScorecardPublishStatus.month)
        )
        return result.scalars().all()

    # =========================================================================
    # READ VIEWS
    # =========================================================================

    async def get_global_scorecard_data(
        self,
        year: int,
        leadership_filter: str | None = None,
        leadership_type: str | None = None,
    ) -> GlobalScorecardData:
        """
        Enterprise-wide read, gated by publish state.

        Covers ``year`` and ``year - 1`` so rolling views can span January.
        """
        if leadership_type and leadership_type != "all" and leadership_type not in LEADERSHIP_FIELDS:
            raise ValidationError(f"Unknown leadership type '{leadership_type}'")

        teams = list(
            (
                await self._session.execute(
                    select(Team).where(Team.is_active.is_(True)).order_by(Team.team_name)
                )
            ).scalars().all()
        )
        team_ids = [t.id for t in teams]

        all_apps = list(
            (
                await self._session.execute(
                    select(Application)
                    .where(
                        Application.team_id.in_(team_ids),
                        Application.status == ApplicationStatus.ACTIVE,
                    )
                    .order_by(Application.application_name)
                )
            ).scalars().all()
        )
        options = leadership_options(all_apps)

        applications = all_apps
        if leadership_filter:
            applications = [
                a for a in all_apps
                if matches_leadership(a, leadership_filter, leadership_type)
            ]
            matched_teams = {a.team_id for a in applications}
            teams = [t for t in teams if t.id in matched_teams]

        years = (year - 1, year)
        entries, availability, volume = await self._load_metrics(
            [a.id for a in applications], years
        )

        publish_rows = (
            await self._session.execute(
                select(ScorecardPublishStatus).where(
                    ScorecardPublishStatus.team_id.in_([t.id for t in teams]),
                    ScorecardPublishStatus.year.in_(years),
                    ScorecardPublishStatus.is_published.is_(True),
                )
            )
        ).scalars().all()

        watermarks: dict[tuple[UUID, int, int], datetime] = {}
        publish_timestamps: dict[str, dict[str, datetime]] = {}
        for row in publish_rows:
            if not row.is_live:
                continue
            published_at = as_utc(row.published_at)
            watermarks[(row.team_id, row.year, row.month)] = published_at
            publish_timestamps.setdefault(str(row.team_id), {})[
                f"{row.year}-{row.month}"
            ] = published_at

        app_team = {a.id: a.team_id for a in applications}
        entry_team = {e.id: app_team[e.application_id] for e in entries}

        visible_availability = [
            r for r in availability
            if is_record_visible(r, entry_team[r.scorecard_entry_id], watermarks)
        ]
        visible_volume = [
            r for r in volume
            if is_record_visible(r, entry_team[r.scorecard_entry_id], watermarks)
        ]

        return GlobalScorecardData(
            teams=teams,
            applications=applications,
            entries=entries,
            availability=visible_availability,
            volume=visible_volume,
            leadership_options=options,
            publish_timestamps=publish_timestamps,
            stats=compute_stats(
                teams, applications, entries, visible_availability, visible_volume
            ),
        )

    async def get_team_scorecard_data(self, team_id: UUID, year: int) -> TeamScorecardData:
        """Team editing view. Always the latest values, publish state ignored."""
        team = await self._get_team_or_raise(team_id)

        applications = list(
            (
                await self._session.execute(
                    select(Application)
                    .where(Application.team_id == team_id)
                    .order_by(Application.application_name)
                )
            ).scalars().all()
        )
        entries, availability, volume = await self._load_metrics(
            [a.id for a in applications], (year - 1, year)
        )
        publish_status = list(await self.get_publish_status(team_id, year))

        return TeamScorecardData(
            applications=applications,
            entries=entries,
            availability=availability,
            volume=volume,
            publish_status=publish_status,
            stats=compute_stats([team], applications, entries, availability, volume),
        )

    # =========================================================================
    # HELPER METHODS
    # =========================================================================

    async def _load_metrics(
        self,
        application_ids: list[UUID],
        years: tuple[int, ...],
    ) -> tuple[list[ScorecardEntry], list[ScorecardAvailability], list[ScorecardVolume]]:
        entries = list(
            (
                await self._session.execute(
                    select(ScorecardEntry)
                    .where(ScorecardEntry.application_id.in_(application_ids))
                    .order_by(ScorecardEntry.name)
                )
            ).scalars().all()
        )
        entry_ids = [e.id for e in entries]

        availability = list(
            (
                await self._session.execute(
                    select(ScorecardAvailability)
                    .where(
                        ScorecardAvailability.scorecard_entry_id.in_(entry_ids),
                        ScorecardAvailability.year.in_(years),
                    )
                    .order_by(ScorecardAvailability.year, ScorecardAvailability.month)
                )
            ).scalars().all()
        )
        volume = list(
            (
                await self._session.execute(
                    select(ScorecardVolume)
                    .where(
                        ScorecardVolume.scorecard_entry_id.in_(entry_ids),
                        ScorecardVolume.year.in_(years),
                    )
                    .order_by(ScorecardVolume.year, ScorecardVolume.month)
                )
            ).scalars().all()
        )
        return entries, availability, volume

    async def _flush_identifier(self, entry: ScorecardEntry, identifier: str) -> None:
        """
        Assign the identifier and flush inside a savepoint, so a duplicate
        leaves the rest of the transaction usable.

        begin_nested() flushes pending state before the SAVEPOINT, so the
        identifier must only be set inside the block.
        """
        try:
            async with self._session.begin_nested():
                entry.scorecard_identifier = identifier
                self._session.add(entry)
                await self._session.flush()
        except IntegrityError:
            raise ConflictError(f'Scorecard identifier "{identifier}" is already in use')

    @staticmethod
    def _clean_identifier(identifier: str) -> str:
        identifier = identifier.strip()
        if not identifier:
            raise ValidationError("Scorecard identifier cannot be empty")
        return identifier

    async def _get_publish_row(
        self,
        team_id: UUID,
        year: int,
        month: int,
    ) -> ScorecardPublishStatus | None:
        result = await self._session.execute(
            select(ScorecardPublishStatus).where(
                ScorecardPublishStatus.team_id == team_id,
                ScorecardPublishStatus.year == year,
                ScorecardPublishStatus.month == month,
            )
        )
        return result.scalar_one_or_none()

    async def _get_team_or_raise(self, team_id: UUID) -> Team:
        team = await self._session.get(Team, team_id)
        if not team:
            raise NotFoundError(f"Team {team_id} not found")
        return team

    async def _get_application_or_raise(self, application_id: UUID) -> Application:
        application = await self._session.get(Application, application_id)
        if not application:
            raise NotFoundError(f"Application {application_id} not found")
        return application

    async def _get_entry_with_application(
        self,
        entry_id: UUID,
    ) -> tuple[ScorecardEntry, Application]:
        entry = await self._session.get(ScorecardEntry, entry_id)
        if not entry:
            raise NotFoundError(f"Scorecard entry {entry_id} not found")
        application = await self._session.get(Application, entry.application_id)
        if not application:
            raise NotFoundError(
                f"Application {entry.application_id} for scorecard entry {entry_id} not found"
            )
        return entry, application
