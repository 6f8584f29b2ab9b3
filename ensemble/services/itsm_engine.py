"""
ITSM Reconciliation Engine: external tickets -> review queue -> turnover.

Queue item lifecycle:
    PENDING -> IMPORTED  (terminal, creates a TurnoverEntry)
    PENDING -> REJECTED  (terminal)

Sync is safe to re-run at any time (the UI fires it whenever the queue is
opened): it never duplicates a queue item and never touches a terminal one.

Application matching, strongest signal first:
    1. application id carried by the source record itself
    2. assignment group -> application mapping
    3. CMDB CI name -> application mapping (exact, case-insensitive)
    4. caller-supplied fallback application
The winning signal is stored on the item as ``match_source`` so operators can
see why a ticket landed where it did, and can override it at import time.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum as PyEnum
from typing import Any, Sequence
from uuid import UUID, uuid4

from sqlalchemy import delete, or_, and_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..core.database import dialect_insert
from ..core.exceptions import (
    EnsembleError,
    ExternalSyncError,
    NotFoundError,
    ValidationError,
)
from ..core.rbac import Caller, Policy, authorize
from ..integrations.itsm_client import ItsmSource
from ..models import (
    Application,
    AuditAction,
    ImportMode,
    IncDetails,
    ItsmRecordType,
    ItsmReviewQueueItem,
    MatchSource,
    QueueItemStatus,
    RfcDetails,
    Team,
    TurnoverAppCmdbCi,
    TurnoverAppWorkgroup,
    TurnoverEntry,
    TurnoverSection,
    TurnoverSettings,
    utcnow,
)
from .audit import AuditService
from .turnover_engine import build_entry

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

AUTO_IMPORT_ACTOR = "SYSTEM-AUTO"


class QueueAction(str, PyEnum):
    IMPORT = "IMPORT"
    REJECT = "REJECT"


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class WorkgroupMapping:
    application_id: UUID
    type: ItsmRecordType
    group_name: str


@dataclass
class CmdbCiMapping:
    application_id: UUID
    cmdb_ci_name: str


@dataclass
class ItsmSettingsInput:
    """Full replacement of a team's ITSM configuration."""
    max_search_days: int = 30
    rfc_import_mode: ImportMode = ImportMode.REVIEW
    inc_import_mode: ImportMode = ImportMode.REVIEW
    app_workgroups: list[WorkgroupMapping] = field(default_factory=list)
    app_cmdb_cis: list[CmdbCiMapping] = field(default_factory=list)


@dataclass
class ItsmSettingsView:
    team_id: UUID
    max_search_days: int
    rfc_import_mode: ImportMode
    inc_import_mode: ImportMode
    app_workgroups: list[WorkgroupMapping]
    app_cmdb_cis: list[CmdbCiMapping]


@dataclass
class SyncResult:
    success: bool
    message: str = ""
    queued: int = 0
    auto_imported: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class ReviewQueueItemView:
    """A queue item plus the application it would import into, and why."""
    item: ItsmReviewQueueItem
    effective_application_id: UUID | None
    match_source: MatchSource
    is_closed: bool


@dataclass
class ProcessResult:
    item: ItsmReviewQueueItem
    entry: TurnoverEntry | None = None


@dataclass
class BulkImportResult:
    count: int
    skipped: int
    failed: int
    message: str
    errors: list[str] = field(default_factory=list)


# =============================================================================
# APPLICATION MATCHING
# =============================================================================


def _normalize(value: Any) -> str:
    return str(value).strip().lower() if value else ""


def is_closed(item: ItsmReviewQueueItem) -> bool:
    """Whether the ticket is closed in the source system."""
    raw = item.raw_data or {}
    state = raw.get("incident_state") if item.type == ItsmRecordType.INC else raw.get("state")
    return _normalize(state) == "closed"


def sort_review_queue(items: Sequence[ItsmReviewQueueItem]) -> list[ItsmReviewQueueItem]:
    """Closed incidents sink below everything else; order is otherwise kept."""
    return sorted(
        items,
        key=lambda i: 1 if i.type == ItsmRecordType.INC and is_closed(i) else 0,
    )


class ApplicationMatcher:
    """Resolves a raw ticket to one of a team's applications."""

    def __init__(
        self,
        team_application_ids: set[UUID],
        workgroups: Sequence[TurnoverAppWorkgroup],
        cmdb_cis: Sequence[TurnoverAppCmdbCi],
    ):
        self.team_application_ids = team_application_ids
        self._by_group: dict[str, list[UUID]] = {}
        self._by_ci: dict[str, list[UUID]] = {}

        for wg in workgroups:
            self._by_group.setdefault(_normalize(wg.group_name), []).append(wg.application_id)
        for ci in cmdb_cis:
            self._by_ci.setdefault(_normalize(ci.cmdb_ci_name), []).append(ci.application_id)

    def resolve(
        self,
        record: dict[str, Any],
        fallback_application_id: UUID | None = None,
    ) -> tuple[UUID | None, MatchSource]:
        explicit = record.get("application_id") or record.get("applicationId")
        if explicit:
            try:
                explicit_id = UUID(str(explicit))
            except ValueError:
                explicit_id = None
            if explicit_id in self.team_application_ids:
                return explicit_id, MatchSource.EXPLICIT
            logger.debug(f"Ignoring application id {explicit!r} not owned by this team")

        group = _normalize(record.get("assignment_group"))
        if group and group in self._by_group:
            return self._by_group[group][0], MatchSource.ASSIGNMENT_GROUP

        ci = _normalize(record.get("cmdb_ci"))
        if ci and ci in self._by_ci:
            return self._by_ci[ci][0], MatchSource.CMDB_CI

        if fallback_application_id and fallback_application_id in self.team_application_ids:
            return fallback_application_id, MatchSource.FALLBACK

        return None, MatchSource.NONE


# =============================================================================
# ITSM ENGINE
# =============================================================================


class ItsmEngine:
    """
    Pulls tickets from the ITSM source into the review queue and turns
    accepted ones into turnover entries.

    Failure semantics:
    - Fetch failures are logged and reported in SyncResult.errors; the queue
      is left as it was
    - Bulk import isolates every item in its own savepoint and reports
      failures in the result instead of raising
    - Only structural problems (unknown team/item, permission) raise
    """

    def __init__(
        self,
        session: AsyncSession,
        caller: Caller,
        source: ItsmSource,
        clock: Clock = utcnow,
    ):
        self._session = session
        self._caller = caller
        self._source = source
        self._clock = clock
        self._audit = AuditService(session)

    # =========================================================================
    # SETTINGS
    # =========================================================================

    async def get_settings(self, team_id: UUID) -> ItsmSettingsView:
        await self._get_team_or_raise(team_id)
        row = await self._session.get(TurnoverSettings, team_id)
        workgroups, cmdb_cis = await self._load_mappings(team_id)

        return ItsmSettingsView(
            team_id=team_id,
            max_search_days=row.max_search_days if row else get_settings().itsm_default_max_search_days,
            rfc_import_mode=ImportMode(row.rfc_import_mode) if row else ImportMode.REVIEW,
            inc_import_mode=ImportMode(row.inc_import_mode) if row else ImportMode.REVIEW,
            app_workgroups=[
                WorkgroupMapping(wg.application_id, ItsmRecordType(wg.type), wg.group_name)
                for wg in workgroups
            ],
            app_cmdb_cis=[CmdbCiMapping(ci.application_id, ci.cmdb_ci_name) for ci in cmdb_cis],
        )

    async def update_settings(self, team_id: UUID, input: ItsmSettingsInput) -> ItsmSettingsView:
        """Replace import modes, lookback window and all matching rules. Admin only."""
        await self._get_team_or_raise(team_id)
        authorize(
            self._caller, team_id, Policy.ADMIN,
            action="change", resource="turnover settings",
        )

        if not 1 <= input.max_search_days <= 365:
            raise ValidationError("Max search days must be between 1 and 365")

        team_app_ids = await self._team_application_ids(team_id)
        for mapping in [*input.app_workgroups, *input.app_cmdb_cis]:
            if mapping.application_id not in team_app_ids:
                raise ValidationError(
                    f"Application {mapping.application_id} does not belong to this team"
                )

        row = await self._session.get(TurnoverSettings, team_id)
        if row is None:
            row = TurnoverSettings(team_id=team_id)
            self._session.add(row)
        row.max_search_days = input.max_search_days
        row.rfc_import_mode = input.rfc_import_mode
        row.inc_import_mode = input.inc_import_mode
        row.updated_by = self._caller.email
        row.updated_at = self._clock()

        if team_app_ids:
            await self._session.execute(
                delete(TurnoverAppWorkgroup).where(
                    TurnoverAppWorkgroup.application_id.in_(team_app_ids)
                )
            )
            await self._session.execute(
                delete(TurnoverAppCmdbCi).where(
                    TurnoverAppCmdbCi.application_id.in_(team_app_ids)
                )
            )

        for wg in input.app_workgroups:
            if wg.group_name.strip():
                self._session.add(
                    TurnoverAppWorkgroup(
                        application_id=wg.application_id,
                        type=wg.type,
                        group_name=wg.group_name.strip(),
                    )
                )
        for ci in input.app_cmdb_cis:
            if ci.cmdb_ci_name.strip():
                self._session.add(
                    TurnoverAppCmdbCi(
                        application_id=ci.application_id,
                        cmdb_ci_name=ci.cmdb_ci_name.strip(),
                    )
                )
        await self._session.flush()

        await self._audit.log_event(
            actor=self._caller.email,
            action=AuditAction.UPDATE,
            resource_type="turnover_settings",
            resource_id=team_id,
            team_id=team_id,
            details={
                "rfc_import_mode": ImportMode(input.rfc_import_mode).value,
                "inc_import_mode": ImportMode(input.inc_import_mode).value,
                "workgroups": len(input.app_workgroups),
                "cmdb_cis": len(input.app_cmdb_cis),
            },
        )
        return await self.get_settings(team_id)

    # =========================================================================
    # SYNC
    # =========================================================================

    async def sync_itsm_items(
        self,
        team_id: UUID,
        fallback_application_id: UUID | None = None,
    ) -> SyncResult:
        """
        Pull recent RFCs and incidents for the team's workgroups into the
        review queue (or straight into turnover for AUTO import modes).
        """
        await self._get_team_or_raise(team_id)
        authorize(self._caller, team_id, Policy.MEMBER)

        team_app_ids = await self._team_application_ids(team_id)
        if fallback_application_id and fallback_application_id not in team_app_ids:
            raise ValidationError("Fallback application does not belong to this team")

        logger.info(f"[SYNC] Starting sync for team {team_id}. Fallback: {fallback_application_id}")

        settings_row = await self._session.get(TurnoverSettings, team_id)
        workgroups, cmdb_cis = await self._load_mappings(team_id)
        if not workgroups:
            return SyncResult(
                success=False,
                message="No ITSM assignment groups configured for this team.",
            )

        max_days = (
            settings_row.max_search_days
            if settings_row
            else get_settings().itsm_default_max_search_days
        )
        rfc_mode = ImportMode(settings_row.rfc_import_mode) if settings_row else ImportMode.REVIEW
        inc_mode = ImportMode(settings_row.inc_import_mode) if settings_row else ImportMode.REVIEW

        now = self._clock()
        min_date = (now - timedelta(days=max_days)).date()
        max_date = now.date()
        logger.info(f"[SYNC] Fetching since {min_date.isoformat()} (max days: {max_days})")

        known_ids = await self._known_external_ids(team_id)
        logger.info(f"[SYNC] Initial exclusion set size: {len(known_ids)}")

        matcher = ApplicationMatcher(team_app_ids, workgroups, cmdb_cis)
        rfc_groups = sorted({wg.group_name for wg in workgroups if wg.type == ItsmRecordType.RFC})
        inc_groups = sorted({wg.group_name for wg in workgroups if wg.type == ItsmRecordType.INC})
        all_cis = sorted({ci.cmdb_ci_name for ci in cmdb_cis})

        result = SyncResult(success=True)

        if rfc_groups:
            try:
                changes = await self._source.get_changes(
                    rfc_groups, min_date, max_date, all_cis or None
                )
            except ExternalSyncError as e:
                logger.error(f"[SYNC] [RFC] Fetch failed for team {team_id}: {e.message}")
                result.errors.append(f"RFC sync failed: {e.message}")
            else:
                await self._process_records(
                    team_id, ItsmRecordType.RFC, changes, rfc_mode,
                    known_ids, matcher, fallback_application_id, result,
                )

        if inc_groups:
            try:
                incidents = await self._source.get_incidents(inc_groups, min_date, max_date)
            except ExternalSyncError as e:
                logger.error(f"[SYNC] [INC] Fetch failed for team {team_id}: {e.message}")
                result.errors.append(f"INC sync failed: {e.message}")
            else:
                await self._process_records(
                    team_id, ItsmRecordType.INC, incidents, inc_mode,
                    known_ids, matcher, fallback_application_id, result,
                )

        result.message = (
            f"Queued {result.queued} records, auto-imported {result.auto_imported}, "
            f"skipped {result.skipped}."
        )
        if result.errors:
            result.message += " Some ITSM requests failed; showing the existing queue."
        logger.info(f"[SYNC] Completed for team {team_id}: {result.message}")
        return result

    async def _process_records(
        self,
        team_id: UUID,
        record_type: ItsmRecordType,
        records: list[dict[str, Any]],
        mode: ImportMode,
        known_ids: set[str],
        matcher: ApplicationMatcher,
        fallback_application_id: UUID | None,
        result: SyncResult,
    ) -> None:
        logger.info(f"[SYNC] [{record_type.value}] Processing {len(records)} items. Mode: {mode.value}")

        for record in records:
            external_id = str(record.get("number") or "").strip()
            if not external_id or external_id in known_ids:
                result.skipped += 1
                continue
            known_ids.add(external_id)

            application_id, match_source = matcher.resolve(record, fallback_application_id)
            if application_id is None:
                logger.info(
                    f"[SYNC] [{record_type.value}] {external_id} has no mapped application. "
                    f"Group: {record.get('assignment_group')!r}"
                )

            item = await self._upsert_pending(
                team_id, record_type, external_id, record, application_id, match_source
            )
            if item is None:
                # Became terminal since the exclusion set was read
                result.skipped += 1
                continue

            if mode == ImportMode.AUTO and application_id is not None:
                await self._import_item(item, application_id, created_by=AUTO_IMPORT_ACTOR)
                result.auto_imported += 1
            else:
                result.queued += 1

    async def _upsert_pending(
        self,
        team_id: UUID,
        record_type: ItsmRecordType,
        external_id: str,
        record: dict[str, Any],
        application_id: UUID | None,
        match_source: MatchSource,
    ) -> ItsmReviewQueueItem | None:
        """
        Insert a PENDING item, or refresh an existing PENDING one.

        Terminal rows are left alone by the conflict WHERE clause; in that
        case nothing is returned.
        """
        now = self._clock()
        stmt = dialect_insert(self._session, ItsmReviewQueueItem).values(
            id=uuid4(),
            team_id=team_id,
            external_id=external_id,
            type=record_type,
            application_id=application_id,
            match_source=match_source,
            raw_data=record,
            status=QueueItemStatus.PENDING,
            created_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["team_id", "external_id"],
            set_={
                "raw_data": stmt.excluded.raw_data,
                "application_id": stmt.excluded.application_id,
                "match_source": stmt.excluded.match_source,
                "updated_at": now,
            },
            where=ItsmReviewQueueItem.status == QueueItemStatus.PENDING,
        ).returning(ItsmReviewQueueItem)

        result = await self._session.execute(
            stmt, execution_options={"populate_existing": True}
        )
        return result.scalar_one_or_none()

    # =========================================================================
    # REVIEW QUEUE
    # =========================================================================

    async def get_review_queue(
        self,
        team_id: UUID,
        record_type: ItsmRecordType | None = None,
        include_recently_resolved: bool = False,
    ) -> list[ReviewQueueItemView]:
        """Pending items (optionally plus recently resolved), open incidents first."""
        filters = [ItsmReviewQueueItem.team_id == team_id]
        if record_type:
            filters.append(ItsmReviewQueueItem.type == record_type)

        if include_recently_resolved:
            cutoff = self._clock() - timedelta(hours=get_settings().recently_resolved_hours)
            filters.append(
                or_(
                    ItsmReviewQueueItem.status == QueueItemStatus.PENDING,
                    and_(
                        ItsmReviewQueueItem.status != QueueItemStatus.PENDING,
                        ItsmReviewQueueItem.resolved_at >= cutoff,
                    ),
                )
            )
        else:
            filters.append(ItsmReviewQueueItem.status == QueueItemStatus.PENDING)

        result = await self._session.execute(
            select(ItsmReviewQueueItem)
            .where(*filters)
            .order_by(ItsmReviewQueueItem.created_at.desc(), ItsmReviewQueueItem.external_id)
        )
        items = sort_review_queue(result.scalars().all())

        matcher = await self._matcher_for(team_id)
        views = []
        for item in items:
            application_id = item.application_id
            source = MatchSource(item.match_source)
            if application_id is None and not item.is_terminal:
                # Advisory: mappings may have changed since the last sync
                application_id, source = matcher.resolve(item.raw_data or {})
            views.append(
                ReviewQueueItemView(
                    item=item,
                    effective_application_id=application_id,
                    match_source=source,
                    is_closed=is_closed(item),
                )
            )
        return views

    async def process_review_queue_item(
        self,
        item_id: UUID,
        action: QueueAction,
        application_id: UUID | None = None,
    ) -> ProcessResult:
        """
        Import or reject one pending item.

        Raises NotFoundError for a missing or already-resolved item so that
        double submissions surface instead of silently succeeding.
        ``application_id`` is the operator's manual override for IMPORT.
        """
        item = await self._get_pending_item_or_raise(item_id)
        authorize(self._caller, item.team_id, Policy.MEMBER)

        if QueueAction(action) == QueueAction.REJECT:
            now = self._clock()
            item.status = QueueItemStatus.REJECTED
            item.resolved_by = self._caller.display_name
            item.resolved_at = now
            item.updated_at = now
            await self._session.flush()

            await self._audit.log_event(
                actor=self._caller.email,
                action=AuditAction.REJECT,
                resource_type="itsm_review_queue_item",
                resource_id=item.id,
                team_id=item.team_id,
                details={"external_id": item.external_id},
            )
            return ProcessResult(item=item)

        if application_id is not None:
            team_app_ids = await self._team_application_ids(item.team_id)
            if application_id not in team_app_ids:
                raise ValidationError("Application does not belong to this team")
            source = MatchSource.MANUAL
        elif item.application_id is not None:
            application_id, source = item.application_id, MatchSource(item.match_source)
        else:
            matcher = await self._matcher_for(item.team_id)
            application_id, source = matcher.resolve(item.raw_data or {})
            if application_id is None:
                raise ValidationError(
                    f"Select an application before importing {item.external_id}"
                )

        entry = await self._import_item(
            item, application_id,
            created_by=self._caller.display_name,
            match_source=source,
        )
        return ProcessResult(item=item, entry=entry)

    async def bulk_import_itsm_records(
        self,
        ids: list[UUID],
        fallback_application_id: UUID | None = None,
    ) -> BulkImportResult:
        """
        Import many pending items. Each item is its own unit of work; a bad
        item is counted and reported, never raised.
        """
        created_by = f"AUTO-{self._caller.display_name}"
        matchers: dict[UUID, ApplicationMatcher] = {}
        imported = unassigned = failed = 0
        errors: list[str] = []

        for item_id in ids:
            try:
                async with self._session.begin_nested():
                    done = await self._bulk_import_one(
                        item_id, fallback_application_id, created_by, matchers
                    )
            except EnsembleError as e:
                failed += 1
                errors.append(f"{item_id}: {e.message}")
                continue
            except SQLAlchemyError as e:
                logger.error(f"Bulk import of queue item {item_id} failed: {e}")
                failed += 1
                errors.append(f"{item_id}: database error")
                continue

            if done:
                imported += 1
            else:
                unassigned += 1

        message = f"Successfully imported {imported} records."
        if unassigned:
            message += f" Skipped {unassigned} unassigned records."
        if failed:
            message += f" {failed} records could not be imported."
        logger.info(f"Bulk import by {self._caller.email}: {message}")

        return BulkImportResult(
            count=imported,
            skipped=unassigned,
            failed=failed,
            message=message,
            errors=errors,
        )

    async def _bulk_import_one(
        self,
        item_id: UUID,
        fallback_application_id: UUID | None,
        created_by: str,
        matchers: dict[UUID, ApplicationMatcher],
    ) -> bool:
        item = await self._get_pending_item_or_raise(item_id)
        authorize(self._caller, item.team_id, Policy.MEMBER)

        application_id = item.application_id
        source = MatchSource(item.match_source)
        if application_id is None:
            if item.team_id not in matchers:
                matchers[item.team_id] = await self._matcher_for(item.team_id)
            application_id, source = matchers[item.team_id].resolve(
                item.raw_data or {}, fallback_application_id
            )
        if application_id is None:
            return False

        await self._import_item(item, application_id, created_by=created_by, match_source=source)
        return True

    # =========================================================================
    # UNTRACK
    # =========================================================================

    async def untrack_entry(self, entry_id: UUID) -> None:
        """
        Delete an imported turnover entry and mark its ticket REJECTED so the
        next sync does not bring it back.
        """
        entry = await self._session.get(TurnoverEntry, entry_id)
        if not entry:
            raise NotFoundError(f"Turnover entry {entry_id} not found")
        authorize(self._caller, entry.team_id, Policy.MEMBER)

        external_id, record_type = None, None
        if entry.rfc_details:
            external_id, record_type = entry.rfc_details.rfc_number, ItsmRecordType.RFC
        elif entry.inc_details:
            external_id, record_type = entry.inc_details.incident_number, ItsmRecordType.INC

        if external_id:
            now = self._clock()
            stmt = dialect_insert(self._session, ItsmReviewQueueItem).values(
                id=uuid4(),
                team_id=entry.team_id,
                external_id=external_id,
                type=record_type,
                application_id=entry.application_id,
                match_source=MatchSource.MANUAL,
                raw_data={"number": external_id},
                status=QueueItemStatus.REJECTED,
                resolved_by=self._caller.display_name,
                resolved_at=now,
                created_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["team_id", "external_id"],
                set_={
                    "status": QueueItemStatus.REJECTED,
                    "resolved_by": self._caller.display_name,
                    "resolved_at": now,
                    "updated_at": now,
                },
            )
            await self._session.execute(stmt)

        await self._audit.log_event(
            actor=self._caller.email,
            action=AuditAction.UNTRACK,
            resource_type="turnover_entry",
            resource_id=entry.id,
            team_id=entry.team_id,
            details={"external_id": external_id},
        )
        await self._session.delete(entry)
        await self._session.flush()

    # =========================================================================
    # HELPER METHODS
    # =========================================================================

    async def _import_item(
        self,
        item: ItsmReviewQueueItem,
        application_id: UUID,
        created_by: str,
        match_source: MatchSource | None = None,
    ) -> TurnoverEntry:
        """Create the turnover entry for a queue item and mark it IMPORTED."""
        raw = item.raw_data or {}
        record_type = ItsmRecordType(item.type)
        now = self._clock()

        rfc_details = inc_details = None
        if record_type == ItsmRecordType.RFC:
            rfc_details = RfcDetails(
                rfc_number=item.external_id,
                rfc_status=raw.get("state") or "Approved",
                validated_by=raw.get("assignment_group") or "Unknown",
                cmdb_ci=raw.get("cmdb_ci") or None,
            )
        else:
            inc_details = IncDetails(incident_number=item.external_id)

        entry = build_entry(
            team_id=item.team_id,
            application_id=application_id,
            section=TurnoverSection(record_type.value),
            title=item.external_id,
            description=raw.get("short_description") or raw.get("description") or "",
            created_by=created_by,
            created_at=now,
            rfc_details=rfc_details,
            inc_details=inc_details,
        )
        self._session.add(entry)

        item.status = QueueItemStatus.IMPORTED
        item.application_id = application_id
        if match_source is not None:
            item.match_source = match_source
        item.resolved_by = created_by
        item.resolved_at = now
        item.updated_at = now
        await self._session.flush()

        await self._audit.log_event(
            actor=self._caller.email,
            action=AuditAction.IMPORT,
            resource_type="itsm_review_queue_item",
            resource_id=item.id,
            team_id=item.team_id,
            details={
                "external_id": item.external_id,
                "entry_id": str(entry.id),
                "match_source": MatchSource(item.match_source).value,
            },
        )
        logger.info(f"Imported {item.external_id} into application {application_id} as {created_by}")
        return entry

    async def _get_pending_item_or_raise(self, item_id: UUID) -> ItsmReviewQueueItem:
        item = await self._session.get(ItsmReviewQueueItem, item_id, with_for_update=True)
        if not item:
            raise NotFoundError(f"Review queue item {item_id} not found")
        if item.is_terminal:
            raise NotFoundError(
                f"Review queue item {item.external_id} was already "
                f"{QueueItemStatus(item.status).value.lower()}"
            )
        return item

    async def _get_team_or_raise(self, team_id: UUID) -> Team:
        team = await self._session.get(Team, team_id)
        if not team:
            raise NotFoundError(f"Team {team_id} not found")
        return team

    async def _team_application_ids(self, team_id: UUID) -> set[UUID]:
        result = await self._session.execute(
            select(Application.id).where(Application.team_id == team_id)
        )
        return set(result.scalars().all())

    async def _load_mappings(
        self,
        team_id: UUID,
    ) -> tuple[Sequence[TurnoverAppWorkgroup], Sequence[TurnoverAppCmdbCi]]:
        workgroups = (
            await self._session.execute(
                select(TurnoverAppWorkgroup)
                .join(Application, TurnoverAppWorkgroup.application_id == Application.id)
                .where(Application.team_id == team_id)
                .order_by(TurnoverAppWorkgroup.group_name)
            )
        ).scalars().all()
        cmdb_cis = (
            await self._session.execute(
                select(TurnoverAppCmdbCi)
                .join(Application, TurnoverAppCmdbCi.application_id == Application.id)
                .where(Application.team_id == team_id)
                .order_by(TurnoverAppCmdbCi.cmdb_ci_name)
            )
        ).scalars().all()
        return workgroups, cmdb_cis

    async def _matcher_for(self, team_id: UUID) -> ApplicationMatcher:
        team_app_ids = await self._team_application_ids(team_id)
        workgroups, cmdb_cis = await self._load_mappings(team_id)
        return ApplicationMatcher(team_app_ids, workgroups, cmdb_cis)

    async def _known_external_ids(self, team_id: UUID) -> set[str]:
        """Ticket numbers sync must skip: already in turnover, or already decided."""
        rfc_numbers = await self._session.execute(
            select(RfcDetails.rfc_number)
            .join(TurnoverEntry, RfcDetails.entry_id == TurnoverEntry.id)
            .where(TurnoverEntry.team_id == team_id)
        )
        inc_numbers = await self._session.execute(
            select(IncDetails.incident_number)
            .join(TurnoverEntry, IncDetails.entry_id == TurnoverEntry.id)
            .where(TurnoverEntry.team_id == team_id)
        )
        decided = await self._session.execute(
            select(ItsmReviewQueueItem.external_id).where(
                ItsmReviewQueueItem.team_id == team_id,
                ItsmReviewQueueItem.status.in_(
                    [QueueItemStatus.IMPORTED, QueueItemStatus.REJECTED]
                ),
            )
        )
        return {
            *rfc_numbers.scalars().all(),
            *inc_numbers.scalars().all(),
            *decided.scalars().all(),
        }
