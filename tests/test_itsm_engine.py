"""
Tests for the ITSM Reconciliation Engine.

These tests verify:
1. SYNC: idempotent, never duplicates, never touches decided tickets
2. MATCHING: explicit id > assignment group > CMDB CI > fallback
3. QUEUE: terminal items cannot be processed twice
4. BULK: one bad item never aborts the batch
5. UNTRACK: a deleted entry does not come back on the next sync
"""

from datetime import date
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ensemble.core.exceptions import (
    ExternalSyncError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from ensemble.models import (
    ImportMode,
    ItsmRecordType,
    ItsmReviewQueueItem,
    MatchSource,
    QueueItemStatus,
    TurnoverAppCmdbCi,
    TurnoverAppWorkgroup,
    TurnoverEntry,
    TurnoverSection,
)
from ensemble.services.itsm_engine import (
    AUTO_IMPORT_ACTOR,
    ApplicationMatcher,
    CmdbCiMapping,
    ItsmEngine,
    ItsmSettingsInput,
    QueueAction,
    WorkgroupMapping,
)
from ensemble.services.turnover_engine import TurnoverEngine, TurnoverEntryInput


# =============================================================================
# HELPERS & FIXTURES
# =============================================================================


def change(number: str, group: str = "Payments-Change-Board", **extra) -> dict:
    return {
        "number": number,
        "assignment_group": group,
        "short_description": f"Deploy {number}",
        "state": "Scheduled",
        **extra,
    }


def incident(number: str, group: str = "Ledger-Ops", **extra) -> dict:
    return {
        "number": number,
        "assignment_group": group,
        "short_description": f"Errors on {number}",
        "incident_state": "In Progress",
        **extra,
    }


def settings_input(app_a, app_b, **overrides) -> ItsmSettingsInput:
    values = dict(
        app_workgroups=[
            WorkgroupMapping(app_a.id, ItsmRecordType.RFC, "Payments-Change-Board"),
            WorkgroupMapping(app_b.id, ItsmRecordType.INC, "Ledger-Ops"),
        ],
        app_cmdb_cis=[CmdbCiMapping(app_a.id, "paymentsgw")],
    )
    values.update(overrides)
    return ItsmSettingsInput(**values)


@pytest.fixture
def admin_engine(session, admin, itsm_source, clock) -> ItsmEngine:
    return ItsmEngine(session, admin, itsm_source, clock=clock)


@pytest.fixture
def engine(session, member, itsm_source, clock) -> ItsmEngine:
    return ItsmEngine(session, member, itsm_source, clock=clock)


@pytest.fixture
async def configured(admin_engine: ItsmEngine, team, app_a, app_b):
    return await admin_engine.update_settings(team.id, settings_input(app_a, app_b))


async def queue_items(session: AsyncSession, team_id) -> dict[str, ItsmReviewQueueItem]:
    result = await session.execute(
        select(ItsmReviewQueueItem)
        .where(ItsmReviewQueueItem.team_id == team_id)
        .execution_options(populate_existing=True)
    )
    return {item.external_id: item for item in result.scalars().all()}


async def count_entries(session: AsyncSession, team_id) -> int:
    result = await session.execute(
        select(func.count()).select_from(TurnoverEntry).where(TurnoverEntry.team_id == team_id)
    )
    return result.scalar_one()


# =============================================================================
# TEST: APPLICATION MATCHING
# =============================================================================


class TestApplicationMatcher:
    @pytest.fixture
    def ids(self):
        return {"a": uuid4(), "b": uuid4(), "foreign": uuid4()}

    @pytest.fixture
    def matcher(self, ids) -> ApplicationMatcher:
        return ApplicationMatcher(
            {ids["a"], ids["b"]},
            [TurnoverAppWorkgroup(application_id=ids["a"], type=ItsmRecordType.RFC, group_name="Payments-CAB")],
            [TurnoverAppCmdbCi(application_id=ids["b"], cmdb_ci_name="LedgerDB")],
        )

    def test_explicit_application_wins(self, matcher, ids):
        record = {"application_id": str(ids["b"]), "assignment_group": "Payments-CAB"}
        assert matcher.resolve(record) == (ids["b"], MatchSource.EXPLICIT)

    def test_explicit_application_outside_team_is_ignored(self, matcher, ids):
        record = {"applicationId": str(ids["foreign"]), "assignment_group": "Payments-CAB"}
        assert matcher.resolve(record) == (ids["a"], MatchSource.ASSIGNMENT_GROUP)

    def test_group_match_ignores_case_and_whitespace(self, matcher, ids):
        assert matcher.resolve({"assignment_group": "  payments-cab "}) == (
            ids["a"], MatchSource.ASSIGNMENT_GROUP,
        )

    def test_group_beats_cmdb_ci(self, matcher, ids):
        record = {"assignment_group": "Payments-CAB", "cmdb_ci": "LedgerDB"}
        assert matcher.resolve(record) == (ids["a"], MatchSource.ASSIGNMENT_GROUP)

    def test_cmdb_ci_match(self, matcher, ids):
        record = {"assignment_group": "Somebody Else", "cmdb_ci": "ledgerdb"}
        assert matcher.resolve(record) == (ids["b"], MatchSource.CMDB_CI)

    def test_fallback(self, matcher, ids):
        assert matcher.resolve({"assignment_group": "x"}, ids["b"]) == (
            ids["b"], MatchSource.FALLBACK,
        )

    def test_fallback_outside_team_is_ignored(self, matcher, ids):
        assert matcher.resolve({}, ids["foreign"]) == (None, MatchSource.NONE)


# =============================================================================
# TEST: SETTINGS
# =============================================================================


class TestSettings:
    async def test_defaults_without_a_row(self, engine: ItsmEngine, team):
        view = await engine.get_settings(team.id)

        assert view.max_search_days == 30
        assert view.rfc_import_mode == ImportMode.REVIEW
        assert view.inc_import_mode == ImportMode.REVIEW
        assert view.app_workgroups == []

    async def test_update_replaces_all_mappings(
        self,
        admin_engine: ItsmEngine,
        configured,
        team,
        app_a,
        app_b,
    ):
        assert len(configured.app_workgroups) == 2

        view = await admin_engine.update_settings(
            team.id,
            settings_input(
                app_a, app_b,
                max_search_days=7,
                inc_import_mode=ImportMode.AUTO,
                app_workgroups=[WorkgroupMapping(app_b.id, ItsmRecordType.RFC, " Ledger-CAB ")],
                app_cmdb_cis=[],
            ),
        )

        assert view.max_search_days == 7
        assert view.inc_import_mode == ImportMode.AUTO
        assert view.app_workgroups == [
            WorkgroupMapping(app_b.id, ItsmRecordType.RFC, "Ledger-CAB")
        ]
        assert view.app_cmdb_cis == []

    async def test_member_cannot_change_settings(self, engine: ItsmEngine, team, app_a, app_b):
        with pytest.raises(PermissionDeniedError):
            await engine.update_settings(team.id, settings_input(app_a, app_b))

    async def test_mapping_to_foreign_application_is_rejected(
        self,
        admin_engine: ItsmEngine,
        team,
        app_a,
        other_app,
    ):
        with pytest.raises(ValidationError):
            await admin_engine.update_settings(
                team.id,
                ItsmSettingsInput(
                    app_workgroups=[WorkgroupMapping(other_app.id, ItsmRecordType.RFC, "X")]
                ),
            )

    @pytest.mark.parametrize("days", [0, 366])
    async def test_search_window_bounds(self, admin_engine: ItsmEngine, team, days):
        with pytest.raises(ValidationError):
            await admin_engine.update_settings(team.id, ItsmSettingsInput(max_search_days=days))


# =============================================================================
# TEST: SYNC
# =============================================================================


class TestSync:
    async def test_without_workgroups_reports_failure(self, engine: ItsmEngine, team, itsm_source):
        result = await engine.sync_itsm_items(team.id)

        assert result.success is False
        assert result.message == "No ITSM assignment groups configured for this team."
        assert itsm_source.calls == []

    async def test_queues_records_with_match_source(
        self,
        session: AsyncSession,
        engine: ItsmEngine,
        configured,
        itsm_source,
        team,
        app_a,
        app_b,
    ):
        itsm_source.changes = [change("CHG001"), change("CHG002", group="Unknown-Group")]
        itsm_source.incidents = [incident("INC001")]

        result = await engine.sync_itsm_items(team.id)

        assert result.success is True
        assert (result.queued, result.auto_imported, result.skipped) == (3, 0, 0)
        assert result.message == "Queued 3 records, auto-imported 0, skipped 0."

        items = await queue_items(session, team.id)
        assert items["CHG001"].application_id == app_a.id
        assert items["CHG001"].match_source == MatchSource.ASSIGNMENT_GROUP
        assert items["CHG002"].application_id is None
        assert items["CHG002"].match_source == MatchSource.NONE
        assert items["INC001"].application_id == app_b.id
        assert all(i.status == QueueItemStatus.PENDING for i in items.values())

    async def test_fetch_window_and_filters(
        self,
        engine: ItsmEngine,
        configured,
        itsm_source,
        team,
    ):
        await engine.sync_itsm_items(team.id)

        rfc_call, inc_call = itsm_source.calls
        assert rfc_call == {
            "type": "RFC",
            "assignment_groups": ["Payments-Change-Board"],
            "opened_at_min": date(2025, 3, 2),
            "opened_at_max": date(2025, 4, 1),
            "cmdb_cis": ["paymentsgw"],
        }
        assert inc_call["assignment_groups"] == ["Ledger-Ops"]

    async def test_resync_never_duplicates(
        self,
        session: AsyncSession,
        engine: ItsmEngine,
        configured,
        itsm_source,
        team,
    ):
        itsm_source.changes = [change("CHG001")]

        await engine.sync_itsm_items(team.id)
        itsm_source.changes = [change("CHG001", short_description="Deploy, take two")]
        await engine.sync_itsm_items(team.id)

        items = await queue_items(session, team.id)
        assert list(items) == ["CHG001"]
        assert items["CHG001"].raw_data["short_description"] == "Deploy, take two"

    async def test_decided_tickets_are_skipped(
        self,
        session: AsyncSession,
        engine: ItsmEngine,
        configured,
        itsm_source,
        team,
    ):
        itsm_source.changes = [change("CHG001"), {"number": ""}]
        await engine.sync_itsm_items(team.id)
        items = await queue_items(session, team.id)
        await engine.process_review_queue_item(items["CHG001"].id, QueueAction.REJECT)

        result = await engine.sync_itsm_items(team.id)

        assert result.queued == 0
        assert result.skipped == 2
        items = await queue_items(session, team.id)
        assert items["CHG001"].status == QueueItemStatus.REJECTED

    async def test_fetch_failure_is_not_fatal(
        self,
        session: AsyncSession,
        engine: ItsmEngine,
        configured,
        itsm_source,
        team,
    ):
        itsm_source.changes_error = ExternalSyncError("ITSM returned 503")
        itsm_source.incidents = [incident("INC001")]

        result = await engine.sync_itsm_items(team.id)

        assert result.success is True
        assert result.errors == ["RFC sync failed: ITSM returned 503"]
        assert result.queued == 1
        assert result.message.endswith("Some ITSM requests failed; showing the existing queue.")
        assert list(await queue_items(session, team.id)) == ["INC001"]

    async def test_auto_mode_imports_matched_records_only(
        self,
        session: AsyncSession,
        admin_engine: ItsmEngine,
        engine: ItsmEngine,
        itsm_source,
        team,
        app_a,
        app_b,
    ):
        await admin_engine.update_settings(
            team.id, settings_input(app_a, app_b, rfc_import_mode=ImportMode.AUTO)
        )
        itsm_source.changes = [change("CHG001"), change("CHG002", group="Unknown-Group")]

        result = await engine.sync_itsm_items(team.id)

        assert (result.queued, result.auto_imported) == (1, 1)
        items = await queue_items(session, team.id)
        assert items["CHG001"].status == QueueItemStatus.IMPORTED
        assert items["CHG001"].resolved_by == AUTO_IMPORT_ACTOR
        assert items["CHG002"].status == QueueItemStatus.PENDING

        entries = (
            await session.execute(select(TurnoverEntry).where(TurnoverEntry.team_id == team.id))
        ).scalars().all()
        assert [(e.title, e.created_by) for e in entries] == [("CHG001", AUTO_IMPORT_ACTOR)]

    async def test_fallback_fills_unmatched_records(
        self,
        session: AsyncSession,
        engine: ItsmEngine,
        configured,
        itsm_source,
        team,
        app_b,
    ):
        itsm_source.changes = [change("CHG002", group="Unknown-Group")]

        await engine.sync_itsm_items(team.id, fallback_application_id=app_b.id)

        item = (await queue_items(session, team.id))["CHG002"]
        assert item.application_id == app_b.id
        assert item.match_source == MatchSource.FALLBACK

    async def test_fallback_must_belong_to_team(
        self,
        engine: ItsmEngine,
        configured,
        team,
        other_app,
    ):
        with pytest.raises(ValidationError):
            await engine.sync_itsm_items(team.id, fallback_application_id=other_app.id)

    async def test_unknown_team(self, engine: ItsmEngine):
        with pytest.raises(NotFoundError):
            await engine.sync_itsm_items(uuid4())

    async def test_outsider_cannot_sync(
        self,
        session,
        outsider,
        itsm_source,
        clock,
        configured,
        team,
    ):
        engine = ItsmEngine(session, outsider, itsm_source, clock=clock)
        with pytest.raises(PermissionDeniedError):
            await engine.sync_itsm_items(team.id)


# =============================================================================
# TEST: REVIEW QUEUE
# =============================================================================


class TestReviewQueue:
    async def test_closed_incidents_sink_to_the_bottom(
        self,
        engine: ItsmEngine,
        configured,
        itsm_source,
        team,
    ):
        itsm_source.incidents = [
            incident("INC001", incident_state="Closed"),
            incident("INC002"),
        ]
        await engine.sync_itsm_items(team.id)

        views = await engine.get_review_queue(team.id)

        assert [v.item.external_id for v in views] == ["INC002", "INC001"]
        assert [v.is_closed for v in views] == [False, True]

    async def test_filter_by_type(self, engine: ItsmEngine, configured, itsm_source, team):
        itsm_source.changes = [change("CHG001")]
        itsm_source.incidents = [incident("INC001")]
        await engine.sync_itsm_items(team.id)

        views = await engine.get_review_queue(team.id, record_type=ItsmRecordType.RFC)
        assert [v.item.external_id for v in views] == ["CHG001"]

    async def test_recently_resolved_window(
        self,
        session: AsyncSession,
        engine: ItsmEngine,
        configured,
        itsm_source,
        team,
        clock,
    ):
        itsm_source.changes = [change("CHG001"), change("CHG002")]
        await engine.sync_itsm_items(team.id)
        items = await queue_items(session, team.id)
        await engine.process_review_queue_item(items["CHG001"].id, QueueAction.REJECT)

        pending = await engine.get_review_queue(team.id)
        assert [v.item.external_id for v in pending] == ["CHG002"]

        recent = await engine.get_review_queue(team.id, include_recently_resolved=True)
        assert {v.item.external_id for v in recent} == {"CHG001", "CHG002"}

        clock.advance(hours=25)
        recent = await engine.get_review_queue(team.id, include_recently_resolved=True)
        assert [v.item.external_id for v in recent] == ["CHG002"]

    async def test_unmatched_item_is_resolved_against_current_mappings(
        self,
        admin_engine: ItsmEngine,
        engine: ItsmEngine,
        configured,
        itsm_source,
        team,
        app_a,
        app_b,
    ):
        itsm_source.changes = [change("CHG002", group="Late-Group")]
        await engine.sync_itsm_items(team.id)

        await admin_engine.update_settings(
            team.id,
            settings_input(
                app_a, app_b,
                app_workgroups=[
                    WorkgroupMapping(app_a.id, ItsmRecordType.RFC, "Payments-Change-Board"),
                    WorkgroupMapping(app_b.id, ItsmRecordType.RFC, "Late-Group"),
                ],
            ),
        )

        [view] = await engine.get_review_queue(team.id)
        assert view.item.application_id is None
        assert view.effective_application_id == app_b.id
        assert view.match_source == MatchSource.ASSIGNMENT_GROUP


# =============================================================================
# TEST: PROCESSING ONE ITEM
# =============================================================================


class TestProcessItem:
    async def test_import_creates_turnover_entry(
        self,
        session: AsyncSession,
        engine: ItsmEngine,
        configured,
        itsm_source,
        team,
        app_a,
    ):
        itsm_source.changes = [change("CHG001", cmdb_ci="PaymentsGW")]
        await engine.sync_itsm_items(team.id)
        item = (await queue_items(session, team.id))["CHG001"]

        result = await engine.process_review_queue_item(item.id, QueueAction.IMPORT)

        assert result.item.status == QueueItemStatus.IMPORTED
        assert result.item.resolved_by == "member"
        entry = result.entry
        assert entry.application_id == app_a.id
        assert entry.section == TurnoverSection.RFC
        assert entry.title == "CHG001"
        assert entry.description == "Deploy CHG001"
        assert entry.rfc_details.rfc_status == "Scheduled"
        assert entry.rfc_details.validated_by == "Payments-Change-Board"
        assert entry.rfc_details.cmdb_ci == "PaymentsGW"

    async def test_terminal_item_cannot_be_processed_again(
        self,
        session: AsyncSession,
        engine: ItsmEngine,
        configured,
        itsm_source,
        team,
    ):
        itsm_source.changes = [change("CHG001")]
        await engine.sync_itsm_items(team.id)
        item = (await queue_items(session, team.id))["CHG001"]
        await engine.process_review_queue_item(item.id, QueueAction.IMPORT)

        with pytest.raises(NotFoundError, match="already imported"):
            await engine.process_review_queue_item(item.id, QueueAction.IMPORT)
        with pytest.raises(NotFoundError):
            await engine.process_review_queue_item(item.id, QueueAction.REJECT)

        assert await count_entries(session, team.id) == 1

    async def test_reject_is_terminal(
        self,
        session: AsyncSession,
        engine: ItsmEngine,
        configured,
        itsm_source,
        team,
    ):
        itsm_source.changes = [change("CHG001")]
        await engine.sync_itsm_items(team.id)
        item = (await queue_items(session, team.id))["CHG001"]

        result = await engine.process_review_queue_item(item.id, QueueAction.REJECT)
        assert result.item.status == QueueItemStatus.REJECTED
        assert result.entry is None

        with pytest.raises(NotFoundError, match="already rejected"):
            await engine.process_review_queue_item(item.id, QueueAction.IMPORT)
        assert await count_entries(session, team.id) == 0

    async def test_manual_override(
        self,
        session: AsyncSession,
        engine: ItsmEngine,
        configured,
        itsm_source,
        team,
        app_b,
    ):
        itsm_source.changes = [change("CHG001")]
        await engine.sync_itsm_items(team.id)
        item = (await queue_items(session, team.id))["CHG001"]

        result = await engine.process_review_queue_item(
            item.id, QueueAction.IMPORT, application_id=app_b.id
        )

        assert result.entry.application_id == app_b.id
        assert result.item.match_source == MatchSource.MANUAL

    async def test_override_outside_team_is_rejected(
        self,
        session: AsyncSession,
        engine: ItsmEngine,
        configured,
        itsm_source,
        team,
        other_app,
    ):
        itsm_source.changes = [change("CHG001")]
        await engine.sync_itsm_items(team.id)
        item = (await queue_items(session, team.id))["CHG001"]

        with pytest.raises(ValidationError):
            await engine.process_review_queue_item(
                item.id, QueueAction.IMPORT, application_id=other_app.id
            )

    async def test_unmatched_item_needs_an_application(
        self,
        session: AsyncSession,
        engine: ItsmEngine,
        configured,
        itsm_source,
        team,
    ):
        itsm_source.changes = [change("CHG002", group="Unknown-Group")]
        await engine.sync_itsm_items(team.id)
        item = (await queue_items(session, team.id))["CHG002"]

        with pytest.raises(ValidationError) as exc_info:
            await engine.process_review_queue_item(item.id, QueueAction.IMPORT)
        assert exc_info.value.message == "Select an application before importing CHG002"

    async def test_incident_matched_by_cmdb_ci_imports_without_fallback(
        self,
        session: AsyncSession,
        engine: ItsmEngine,
        configured,
        itsm_source,
        team,
        app_a,
    ):
        itsm_source.incidents = [
            incident("INC0042", group="Unmapped Group", cmdb_ci="PaymentsGW")
        ]
        await engine.sync_itsm_items(team.id)
        item = (await queue_items(session, team.id))["INC0042"]

        assert item.application_id == app_a.id
        assert item.match_source == MatchSource.CMDB_CI

        result = await engine.process_review_queue_item(item.id, QueueAction.IMPORT)
        assert result.entry.application_id == app_a.id
        assert result.entry.section == TurnoverSection.INC
        assert result.entry.inc_details.incident_number == "INC0042"

    async def test_outsider_cannot_process(
        self,
        session,
        engine: ItsmEngine,
        outsider,
        itsm_source,
        clock,
        configured,
        team,
    ):
        itsm_source.changes = [change("CHG001")]
        await engine.sync_itsm_items(team.id)
        item = (await queue_items(session, team.id))["CHG001"]

        outsider_engine = ItsmEngine(session, outsider, itsm_source, clock=clock)
        with pytest.raises(PermissionDeniedError):
            await outsider_engine.process_review_queue_item(item.id, QueueAction.REJECT)


# =============================================================================
# TEST: BULK IMPORT
# =============================================================================


class TestBulkImport:
    async def test_one_terminal_item_does_not_abort_the_batch(
        self,
        session: AsyncSession,
        engine: ItsmEngine,
        configured,
        itsm_source,
        team,
    ):
        itsm_source.changes = [change("CHG001"), change("CHG002"), change("CHG003")]
        await engine.sync_itsm_items(team.id)
        items = await queue_items(session, team.id)
        await engine.process_review_queue_item(items["CHG002"].id, QueueAction.REJECT)

        result = await engine.bulk_import_itsm_records(
            [items["CHG001"].id, items["CHG002"].id, items["CHG003"].id]
        )

        assert (result.count, result.skipped, result.failed) == (2, 0, 1)
        assert result.message == "Successfully imported 2 records. 1 records could not be imported."
        assert result.errors[0].endswith("was already rejected")
        assert await count_entries(session, team.id) == 2

        items = await queue_items(session, team.id)
        assert items["CHG001"].status == QueueItemStatus.IMPORTED
        assert items["CHG002"].status == QueueItemStatus.REJECTED
        assert items["CHG003"].status == QueueItemStatus.IMPORTED

    async def test_unassigned_items_are_skipped(
        self,
        session: AsyncSession,
        engine: ItsmEngine,
        configured,
        itsm_source,
        team,
    ):
        itsm_source.changes = [change("CHG002", group="Unknown-Group")]
        await engine.sync_itsm_items(team.id)
        item = (await queue_items(session, team.id))["CHG002"]

        result = await engine.bulk_import_itsm_records([item.id])

        assert (result.count, result.skipped, result.failed) == (0, 1, 0)
        assert result.message == "Successfully imported 0 records. Skipped 1 unassigned records."

    async def test_fallback_assigns_unmatched_items(
        self,
        session: AsyncSession,
        engine: ItsmEngine,
        configured,
        itsm_source,
        team,
        app_b,
    ):
        itsm_source.changes = [change("CHG002", group="Unknown-Group")]
        await engine.sync_itsm_items(team.id)
        item = (await queue_items(session, team.id))["CHG002"]

        result = await engine.bulk_import_itsm_records([item.id], fallback_application_id=app_b.id)

        assert result.count == 1
        entry = (
            await session.execute(select(TurnoverEntry).where(TurnoverEntry.team_id == team.id))
        ).scalar_one()
        assert entry.application_id == app_b.id
        assert entry.created_by == "AUTO-member"

        item = (await queue_items(session, team.id))["CHG002"]
        assert item.match_source == MatchSource.FALLBACK

    async def test_unknown_id_counts_as_failed(self, engine: ItsmEngine):
        result = await engine.bulk_import_itsm_records([uuid4()])

        assert (result.count, result.failed) == (0, 1)
        assert "not found" in result.errors[0]


# =============================================================================
# TEST: UNTRACK
# =============================================================================


class TestUntrack:
    async def test_untracked_ticket_does_not_come_back(
        self,
        session: AsyncSession,
        engine: ItsmEngine,
        configured,
        itsm_source,
        team,
    ):
        itsm_source.changes = [change("CHG001")]
        await engine.sync_itsm_items(team.id)
        item = (await queue_items(session, team.id))["CHG001"]
        imported = await engine.process_review_queue_item(item.id, QueueAction.IMPORT)
        entry_id = imported.entry.id

        await engine.untrack_entry(entry_id)

        assert await session.get(TurnoverEntry, entry_id) is None
        item = (await queue_items(session, team.id))["CHG001"]
        assert item.status == QueueItemStatus.REJECTED

        result = await engine.sync_itsm_items(team.id)
        assert (result.queued, result.skipped) == (0, 1)

    async def test_untrack_manual_entry_leaves_rejected_marker(
        self,
        session: AsyncSession,
        engine: ItsmEngine,
        member,
        clock,
        team,
        app_a,
    ):
        turnover = TurnoverEngine(session, member, clock=clock)
        entry = await turnover.create_entry(
            TurnoverEntryInput(
                team_id=team.id,
                application_id=app_a.id,
                section=TurnoverSection.RFC,
                rfc_number="CHG9999",
                rfc_status="Scheduled",
                validated_by="CAB",
            )
        )

        await engine.untrack_entry(entry.id)

        item = (await queue_items(session, team.id))["CHG9999"]
        assert item.status == QueueItemStatus.REJECTED
        assert item.type == ItsmRecordType.RFC
        assert item.match_source == MatchSource.MANUAL

    async def test_missing_entry(self, engine: ItsmEngine):
        with pytest.raises(NotFoundError):
            await engine.untrack_entry(uuid4())
