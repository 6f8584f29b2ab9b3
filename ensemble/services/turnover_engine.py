"""
Turnover Engine: shift handover entries and finalized snapshots.

Flow:
1. Operators (or the ITSM import) create entries per application/section
2. The dispatch view shows everything still open plus what was resolved today
3. Finalize freezes the dispatch view into an immutable JSON snapshot
   (at most once per cooldown window)
"""

import logging
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Sequence
from uuid import UUID, uuid4

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..core.exceptions import ConflictError, NotFoundError, ValidationError
from ..core.rbac import Caller, Policy, authorize
from ..models import (
    Application,
    AuditAction,
    CommsDetails,
    FinalizedTurnover,
    IncDetails,
    MimDetails,
    RfcDetails,
    Team,
    TurnoverEntry,
    TurnoverSection,
    TurnoverStatus,
    as_utc,
    utcnow,
)
from .audit import AuditService

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class TurnoverEntryInput:
    """Input for creating a turnover entry. Detail fields apply per section."""
    team_id: UUID
    application_id: UUID
    section: TurnoverSection
    title: str | None = None
    description: str | None = None
    comments: str | None = None
    is_important: bool = False
    # RFC
    rfc_number: str | None = None
    rfc_status: str | None = None
    validated_by: str | None = None
    cmdb_ci: str | None = None
    # INC
    incident_number: str | None = None
    # MIM
    mim_link: str | None = None
    mim_slack_link: str | None = None
    # COMMS
    email_subject: str | None = None
    slack_link: str | None = None


@dataclass
class TurnoverEntryUpdate:
    """Partial update. None means unchanged."""
    title: str | None = None
    description: str | None = None
    comments: str | None = None
    is_important: bool | None = None
    rfc_number: str | None = None
    rfc_status: str | None = None
    validated_by: str | None = None
    cmdb_ci: str | None = None
    incident_number: str | None = None
    mim_link: str | None = None
    mim_slack_link: str | None = None
    email_subject: str | None = None
    slack_link: str | None = None


@dataclass
class FinalizeCheck:
    can_finalize: bool
    message: str
    last_finalized_at: datetime | None = None
    remaining_minutes: int = 0


@dataclass
class TurnoverMetrics:
    total_entries: int
    resolved_entries: int
    open_entries: int
    critical_items: int
    resolution_rate: int  # percent, rounded
    section_distribution: dict[str, int] = field(default_factory=dict)
    activity_trend: list[dict[str, Any]] = field(default_factory=list)


# =============================================================================
# ENTRY CONSTRUCTION (shared with the ITSM import)
# =============================================================================


def default_title(input: TurnoverEntryInput) -> str:
    """Title used when the operator leaves it blank."""
    section = TurnoverSection(input.section)
    if section == TurnoverSection.RFC:
        return input.rfc_number or "RFC Entry"
    if section == TurnoverSection.INC:
        return input.incident_number or "Incident Entry"
    if section == TurnoverSection.ALERTS:
        return "Alert Entry"
    if section == TurnoverSection.MIM:
        return "MIM Entry"
    if section == TurnoverSection.COMMS:
        return input.email_subject or "Communication"
    return (input.description or "")[:50] or "FYI Entry"


def build_entry(
    *,
    team_id: UUID,
    application_id: UUID,
    section: TurnoverSection,
    title: str,
    created_by: str,
    created_at: datetime,
    description: str | None = None,
    comments: str | None = None,
    is_important: bool = False,
    rfc_details: RfcDetails | None = None,
    inc_details: IncDetails | None = None,
    mim_details: MimDetails | None = None,
    comms_details: CommsDetails | None = None,
) -> TurnoverEntry:
    """
    Construct an entry with every detail relationship populated (possibly
    None), so nothing is lazy-loaded later on the async session.
    """
    return TurnoverEntry(
        id=uuid4(),
        team_id=team_id,
        application_id=application_id,
        section=section,
        title=title[:500],
        description=description,
        comments=comments,
        is_important=is_important,
        status=TurnoverStatus.OPEN,
        created_by=created_by,
        created_at=created_at,
        rfc_details=rfc_details,
        inc_details=inc_details,
        mim_details=mim_details,
        comms_details=comms_details,
    )


def _iso(value: datetime | None) -> str | None:
    value = as_utc(value)
    return value.isoformat() if value else None


def serialize_entry(entry: TurnoverEntry, application: Application | None) -> dict[str, Any]:
    """Plain-JSON copy of an entry for snapshots. No live references."""
    data: dict[str, Any] = {
        "id": str(entry.id),
        "team_id": str(entry.team_id),
        "application_id": str(entry.application_id),
        "application": None,
        "section": TurnoverSection(entry.section).value,
        "title": entry.title,
        "description": entry.description,
        "comments": entry.comments,
        "is_important": entry.is_important,
        "status": TurnoverStatus(entry.status).value,
        "created_by": entry.created_by,
        "created_at": _iso(entry.created_at),
        "updated_by": entry.updated_by,
        "updated_at": _iso(entry.updated_at),
        "resolved_by": entry.resolved_by,
        "resolved_at": _iso(entry.resolved_at),
        "rfc_details": None,
        "inc_details": None,
        "mim_details": None,
        "comms_details": None,
    }
    if application is not None:
        data["application"] = {
            "id": str(application.id),
            "application_name": application.application_name,
            "tla": application.tla,
            "tier": application.tier,
        }
    if entry.rfc_details:
        data["rfc_details"] = {
            "rfc_number": entry.rfc_details.rfc_number,
            "rfc_status": entry.rfc_details.rfc_status,
            "validated_by": entry.rfc_details.validated_by,
            "cmdb_ci": entry.rfc_details.cmdb_ci,
        }
    if entry.inc_details:
        data["inc_details"] = {"incident_number": entry.inc_details.incident_number}
    if entry.mim_details:
        data["mim_details"] = {
            "mim_link": entry.mim_details.mim_link,
            "mim_slack_link": entry.mim_details.mim_slack_link,
        }
    if entry.comms_details:
        data["comms_details"] = {
            "email_subject": entry.comms_details.email_subject,
            "slack_link": entry.comms_details.slack_link,
        }
    return data


# =============================================================================
# TURNOVER ENGINE
# =============================================================================


class TurnoverEngine:
    """Turnover entries, dispatch, finalize and history."""

    def __init__(
        self,
        session: AsyncSession,
        caller: Caller,
        clock: Clock = utcnow,
        cooldown_hours: int | None = None,
        recently_resolved_hours: int | None = None,
    ):
        settings = get_settings()
        self._session = session
        self._caller = caller
        self._clock = clock
        self._cooldown = timedelta(
            hours=settings.finalize_cooldown_hours if cooldown_hours is None else cooldown_hours
        )
        self._recent_window = timedelta(
            hours=recently_resolved_hours or settings.recently_resolved_hours
        )
        self._audit = AuditService(session)

    # =========================================================================
    # ENTRIES
    # =========================================================================

    async def create_entry(self, input: TurnoverEntryInput) -> TurnoverEntry:
        authorize(self._caller, input.team_id, Policy.MEMBER)
        await self._get_team_application_or_raise(input.team_id, input.application_id)

        section = TurnoverSection(input.section)
        title = input.title.strip() if input.title and input.title.strip() else default_title(input)

        rfc = inc = mim = comms = None
        if section == TurnoverSection.RFC:
            if input.rfc_number and input.rfc_status and input.validated_by:
                rfc = RfcDetails(
                    rfc_number=input.rfc_number,
                    rfc_status=input.rfc_status,
                    validated_by=input.validated_by,
                    cmdb_ci=input.cmdb_ci,
                )
        elif section == TurnoverSection.INC:
            if input.incident_number:
                inc = IncDetails(incident_number=input.incident_number)
        elif section == TurnoverSection.MIM:
            if input.mim_link:
                mim = MimDetails(mim_link=input.mim_link, mim_slack_link=input.mim_slack_link)
        elif section == TurnoverSection.COMMS:
            comms = CommsDetails(email_subject=input.email_subject, slack_link=input.slack_link)

        entry = build_entry(
            team_id=input.team_id,
            application_id=input.application_id,
            section=section,
            title=title,
            description=input.description,
            comments=input.comments,
            is_important=input.is_important,
            created_by=self._caller.display_name,
            created_at=self._clock(),
            rfc_details=rfc,
            inc_details=inc,
            mim_details=mim,
            comms_details=comms,
        )
        self._session.add(entry)
        await self._session.flush()

        await self._log(AuditAction.CREATE, entry, {"section": section.value, "title": title})
        return entry

    async def update_entry(self, entry_id: UUID, update: TurnoverEntryUpdate) -> TurnoverEntry:
        entry = await self._get_entry_or_raise(entry_id)
        authorize(self._caller, entry.team_id, Policy.MEMBER)

        if update.title is not None:
            if not update.title.strip():
                raise ValidationError("Title cannot be empty")
            entry.title = update.title.strip()[:500]
        if update.description is not None:
            entry.description = update.description
        if update.comments is not None:
            entry.comments = update.comments
        if update.is_important is not None:
            entry.is_important = update.is_important

        self._apply_detail_update(entry, update)

        entry.updated_by = self._caller.display_name
        entry.updated_at = self._clock()
        await self._session.flush()

        await self._log(AuditAction.UPDATE, entry)
        return entry

    async def toggle_important(self, entry_id: UUID) -> TurnoverEntry:
        entry = await self._get_entry_or_raise(entry_id)
        authorize(self._caller, entry.team_id, Policy.MEMBER)

        entry.is_important = not entry.is_important
        entry.updated_by = self._caller.display_name
        entry.updated_at = self._clock()
        await self._session.flush()
        return entry

    async def resolve_entry(self, entry_id: UUID) -> TurnoverEntry:
        entry = await self._get_entry_or_raise(entry_id)
        authorize(self._caller, entry.team_id, Policy.MEMBER)

        now = self._clock()
        entry.status = TurnoverStatus.RESOLVED
        entry.resolved_by = self._caller.display_name
        entry.resolved_at = now
        entry.updated_by = self._caller.display_name
        entry.updated_at = now
        await self._session.flush()

        await self._log(AuditAction.UPDATE, entry, {"status": TurnoverStatus.RESOLVED.value})
        return entry

    async def delete_entry(self, entry_id: UUID) -> None:
        entry = await self._get_entry_or_raise(entry_id)
        authorize(self._caller, entry.team_id, Policy.MEMBER)

        await self._log(AuditAction.DELETE, entry, {"title": entry.title})
        await self._session.delete(entry)
        await self._session.flush()

    async def list_entries(
        self,
        team_id: UUID,
        application_id: UUID | None = None,
        section: TurnoverSection | None = None,
        status: TurnoverStatus | None = None,
        include_recently_resolved: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[Sequence[TurnoverEntry], int]:
        """Entries for a team, important first, newest first. Returns (entries, total)."""
        filters = [TurnoverEntry.team_id == team_id]
        if application_id:
            filters.append(TurnoverEntry.application_id == application_id)
        if section:
            filters.append(TurnoverEntry.section == section)

        if status:
            filters.append(TurnoverEntry.status == status)
        elif include_recently_resolved:
            cutoff = self._clock() - self._recent_window
            filters.append(
                or_(
                    TurnoverEntry.status == TurnoverStatus.OPEN,
                    and_(
                        TurnoverEntry.status == TurnoverStatus.RESOLVED,
                        TurnoverEntry.resolved_at >= cutoff,
                    ),
                )
            )
        else:
            filters.append(TurnoverEntry.status == TurnoverStatus.OPEN)

        total = (
            await self._session.execute(
                select(func.count()).select_from(TurnoverEntry).where(*filters)
            )
        ).scalar() or 0

        result = await self._session.execute(
            select(TurnoverEntry)
            .where(*filters)
            .order_by(TurnoverEntry.is_important.desc(), TurnoverEntry.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return result.scalars().all(), total

    async def get_dispatch_entries(self, team_id: UUID) -> Sequence[TurnoverEntry]:
        """Everything still open plus entries resolved since midnight UTC."""
        start_of_day = datetime.combine(self._clock().date(), time.min, tzinfo=timezone.utc)
        result = await self._session.execute(
            select(TurnoverEntry)
            .where(
                TurnoverEntry.team_id == team_id,
                or_(
                    TurnoverEntry.status == TurnoverStatus.OPEN,
                    and_(
                        TurnoverEntry.status == TurnoverStatus.RESOLVED,
                        TurnoverEntry.resolved_at >= start_of_day,
                    ),
                ),
            )
            .order_by(TurnoverEntry.is_important.desc(), TurnoverEntry.created_at.desc())
        )
        return result.scalars().all()

    # =========================================================================
    # FINALIZE
    # =========================================================================

    async def can_finalize(self, team_id: UUID) -> FinalizeCheck:
        now = self._clock()
        result = await self._session.execute(
            select(FinalizedTurnover.finalized_at)
            .where(
                FinalizedTurnover.team_id == team_id,
                FinalizedTurnover.finalized_at >= now - self._cooldown,
            )
            .order_by(FinalizedTurnover.finalized_at.desc())
            .limit(1)
        )
        last = result.scalar_one_or_none()
        if last is None:
            return FinalizeCheck(can_finalize=True, message="Ready to finalize")

        last = as_utc(last)
        remaining = last + self._cooldown - now
        remaining_minutes = max(1, -(-int(remaining.total_seconds()) // 60))
        return FinalizeCheck(
            can_finalize=False,
            message=f"Cooldown active. Try again in {remaining_minutes} minutes.",
            last_finalized_at=last,
            remaining_minutes=remaining_minutes,
        )

    async def finalize(self, team_id: UUID, notes: str | None = None) -> FinalizedTurnover:
        """Freeze the current dispatch view into an immutable snapshot."""
        await self._get_team_or_raise(team_id)
        authorize(self._caller, team_id, Policy.MEMBER)

        check = await self.can_finalize(team_id)
        if not check.can_finalize:
            raise ConflictError(check.message)

        entries = await self.get_dispatch_entries(team_id)
        app_ids = {e.application_id for e in entries}
        applications = {}
        if app_ids:
            result = await self._session.execute(
                select(Application).where(Application.id.in_(app_ids))
            )
            applications = {a.id: a for a in result.scalars().all()}

        snapshot = [serialize_entry(e, applications.get(e.application_id)) for e in entries]

        finalized = FinalizedTurnover(
            id=uuid4(),
            team_id=team_id,
            snapshot_data=snapshot,
            total_applications=len(app_ids),
            total_entries=len(entries),
            important_count=sum(1 for e in entries if e.is_important),
            notes=notes,
            finalized_by=self._caller.display_name,
            finalized_at=self._clock(),
        )
        self._session.add(finalized)
        await self._session.flush()

        await self._audit.log_event(
            actor=self._caller.email,
            action=AuditAction.FINALIZE,
            resource_type="finalized_turnover",
            resource_id=finalized.id,
            team_id=team_id,
            details={"total_entries": finalized.total_entries},
        )
        logger.info(
            f"Finalized turnover for team {team_id}: "
            f"{finalized.total_entries} entries across {finalized.total_applications} applications"
        )
        return finalized

    async def list_finalized(
        self,
        team_id: UUID,
        from_date: date | None = None,
        to_date: date | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[Sequence[FinalizedTurnover], int]:
        filters = [FinalizedTurnover.team_id == team_id]
        if from_date:
            filters.append(
                FinalizedTurnover.finalized_at
                >= datetime.combine(from_date, time.min, tzinfo=timezone.utc)
            )
        if to_date:
            filters.append(
                FinalizedTurnover.finalized_at
                < datetime.combine(to_date + timedelta(days=1), time.min, tzinfo=timezone.utc)
            )

        total = (
            await self._session.execute(
                select(func.count()).select_from(FinalizedTurnover).where(*filters)
            )
        ).scalar() or 0

        result = await self._session.execute(
            select(FinalizedTurnover)
            .where(*filters)
            .order_by(FinalizedTurnover.finalized_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return result.scalars().all(), total

    async def get_finalized(self, finalized_id: UUID) -> FinalizedTurnover:
        finalized = await self._session.get(FinalizedTurnover, finalized_id)
        if not finalized:
            raise NotFoundError(f"Finalized turnover {finalized_id} not found")
        return finalized

    # =========================================================================
    # METRICS
    # =========================================================================

    async def get_metrics(
        self,
        team_id: UUID,
        start_date: date,
        end_date: date,
    ) -> TurnoverMetrics:
        """KPIs, section distribution and a daily created/resolved trend."""
        if end_date < start_date:
            raise ValidationError("end_date must not be before start_date")

        start = datetime.combine(start_date, time.min, tzinfo=timezone.utc)
        end = datetime.combine(end_date + timedelta(days=1), time.min, tzinfo=timezone.utc)
        result = await self._session.execute(
            select(TurnoverEntry).where(
                TurnoverEntry.team_id == team_id,
                TurnoverEntry.created_at >= start,
                TurnoverEntry.created_at < end,
            )
        )
        entries = result.scalars().all()

        total = len(entries)
        resolved = sum(1 for e in entries if e.status == TurnoverStatus.RESOLVED)
        sections = Counter(TurnoverSection(e.section).value for e in entries)

        daily: dict[str, dict[str, int]] = {}
        for e in entries:
            day = as_utc(e.created_at).date().isoformat()
            daily.setdefault(day, {"created": 0, "resolved": 0})["created"] += 1
            if e.status == TurnoverStatus.RESOLVED and e.resolved_at:
                day = as_utc(e.resolved_at).date().isoformat()
                daily.setdefault(day, {"created": 0, "resolved": 0})["resolved"] += 1

        return TurnoverMetrics(
            total_entries=total,
            resolved_entries=resolved,
            open_entries=total - resolved,
            critical_items=sum(1 for e in entries if e.is_important),
            resolution_rate=round(resolved / total * 100) if total else 0,
            section_distribution=dict(sections),
            activity_trend=[
                {"date": day, **counts} for day, counts in sorted(daily.items())
            ],
        )

    # =========================================================================
    # HELPER METHODS
    # =========================================================================

    @staticmethod
    def _apply_detail_update(entry: TurnoverEntry, update: TurnoverEntryUpdate) -> None:
        section = TurnoverSection(entry.section)

        if section == TurnoverSection.RFC:
            if entry.rfc_details:
                if update.rfc_number is not None:
                    entry.rfc_details.rfc_number = update.rfc_number
                if update.rfc_status is not None:
                    entry.rfc_details.rfc_status = update.rfc_status
                if update.validated_by is not None:
                    entry.rfc_details.validated_by = update.validated_by
                if update.cmdb_ci is not None:
                    entry.rfc_details.cmdb_ci = update.cmdb_ci
            elif update.rfc_number and update.rfc_status and update.validated_by:
                entry.rfc_details = RfcDetails(
                    rfc_number=update.rfc_number,
                    rfc_status=update.rfc_status,
                    validated_by=update.validated_by,
                    cmdb_ci=update.cmdb_ci,
                )

        elif section == TurnoverSection.INC and update.incident_number is not None:
            if entry.inc_details:
                entry.inc_details.incident_number = update.incident_number
            else:
                entry.inc_details = IncDetails(incident_number=update.incident_number)

        elif section == TurnoverSection.MIM:
            if entry.mim_details:
                if update.mim_link is not None:
                    entry.mim_details.mim_link = update.mim_link
                if update.mim_slack_link is not None:
                    entry.mim_details.mim_slack_link = update.mim_slack_link
            elif update.mim_link:
                entry.mim_details = MimDetails(
                    mim_link=update.mim_link, mim_slack_link=update.mim_slack_link
                )

        elif section == TurnoverSection.COMMS:
            if entry.comms_details is None:
                entry.comms_details = CommsDetails()
            if update.email_subject is not None:
                entry.comms_details.email_subject = update.email_subject
            if update.slack_link is not None:
                entry.comms_details.slack_link = update.slack_link

    async def _log(
        self,
        action: AuditAction,
        entry: TurnoverEntry,
        details: dict[str, Any] | None = None,
    ) -> None:
        await self._audit.log_event(
            actor=self._caller.email,
            action=action,
            resource_type="turnover_entry",
            resource_id=entry.id,
            team_id=entry.team_id,
            details=details,
        )

    async def _get_team_or_raise(self, team_id: UUID) -> Team:
        team = await self._session.get(Team, team_id)
        if not team:
            raise NotFoundError(f"Team {team_id} not found")
        return team

    async def _get_team_application_or_raise(
        self,
        team_id: UUID,
        application_id: UUID,
    ) -> Application:
        application = await self._session.get(Application, application_id)
        if not application:
            raise NotFoundError(f"Application {application_id} not found")
        if application.team_id != team_id:
            raise ValidationError("Application does not belong to this team")
        return application

    async def _get_entry_or_raise(self, entry_id: UUID) -> TurnoverEntry:
        entry = await self._session.get(TurnoverEntry, entry_id)
        if not entry:
            raise NotFoundError(f"Turnover entry {entry_id} not found")
        return entry
