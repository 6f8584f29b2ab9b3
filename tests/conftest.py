"""Shared fixtures: in-memory SQLite database, seeded directory, callers."""

from datetime import date, datetime, timedelta, timezone
from typing import Any
from uuid import UUID

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from ensemble.core.exceptions import ExternalSyncError
from ensemble.core.rbac import Caller, TeamPermission, TeamRole
from ensemble.models import Application, Base, Team


# =============================================================================
# DATABASE
# =============================================================================


@pytest.fixture
def db_engine():
    """In-memory SQLite engine. Each test gets a fresh database.

    pysqlite's own transaction handling breaks SAVEPOINT; the two listeners
    hand BEGIN over to SQLAlchemy so begin_nested() works.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        echo=False,
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


@pytest_asyncio.fixture
async def session(db_engine):
    """Create tables and provide a session configured like the app's."""
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with factory() as session:
        yield session

    await db_engine.dispose()


# =============================================================================
# CLOCK & ITSM SOURCE
# =============================================================================


class FakeClock:
    """Injectable clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 4, 1, 12, 0, tzinfo=timezone.utc))


class FakeItsmSource:
    """In-memory ItsmSource. Set ``*_error`` to make a fetch fail."""

    def __init__(
        self,
        changes: list[dict[str, Any]] | None = None,
        incidents: list[dict[str, Any]] | None = None,
    ):
        self.changes = changes or []
        self.incidents = incidents or []
        self.changes_error: ExternalSyncError | None = None
        self.incidents_error: ExternalSyncError | None = None
        self.calls: list[dict[str, Any]] = []

    async def get_changes(
        self,
        assignment_groups: list[str],
        opened_at_min: date,
        opened_at_max: date,
        cmdb_cis: list[str] | None = None,
    ) -> list[dict[str, Any]]:
        self.calls.append({
            "type": "RFC",
            "assignment_groups": assignment_groups,
            "opened_at_min": opened_at_min,
            "opened_at_max": opened_at_max,
            "cmdb_cis": cmdb_cis,
        })
        if self.changes_error:
            raise self.changes_error
        return [dict(r) for r in self.changes]

    async def get_incidents(
        self,
        assignment_groups: list[str],
        opened_at_min: date,
        opened_at_max: date,
    ) -> list[dict[str, Any]]:
        self.calls.append({
            "type": "INC",
            "assignment_groups": assignment_groups,
            "opened_at_min": opened_at_min,
            "opened_at_max": opened_at_max,
        })
        if self.incidents_error:
            raise self.incidents_error
        return [dict(r) for r in self.incidents]


@pytest.fixture
def itsm_source() -> FakeItsmSource:
    return FakeItsmSource()


# =============================================================================
# DIRECTORY
# =============================================================================


@pytest_asyncio.fixture
async def team(session: AsyncSession) -> Team:
    team = Team(team_name="Payments Platform", is_active=True)
    session.add(team)
    await session.flush()
    return team


@pytest_asyncio.fixture
async def other_team(session: AsyncSession) -> Team:
    team = Team(team_name="Card Issuing", is_active=True)
    session.add(team)
    await session.flush()
    return team


@pytest_asyncio.fixture
async def app_a(session: AsyncSession, team: Team) -> Application:
    application = Application(
        team_id=team.id,
        application_name="Payments Gateway",
        tla="PGW",
        owner_svp_name="Dana Whitfield",
        vp_name="Ravi Menon",
        director_name="Alex Chen",
        application_owner_name="Sam Ortiz",
    )
    session.add(application)
    await session.flush()
    return application


@pytest_asyncio.fixture
async def app_b(session: AsyncSession, team: Team) -> Application:
    application = Application(
        team_id=team.id,
        application_name="Ledger Service",
        tla="LGR",
        owner_svp_name="Dana Whitfield",
        vp_name="Priya Natarajan",
        director_name="Jordan Blake",
    )
    session.add(application)
    await session.flush()
    return application


@pytest_asyncio.fixture
async def other_app(session: AsyncSession, other_team: Team) -> Application:
    application = Application(
        team_id=other_team.id,
        application_name="Card Authorizer",
        tla="CAU",
        owner_svp_name="Morgan Lee",
    )
    session.add(application)
    await session.flush()
    return application


# =============================================================================
# CALLERS
# =============================================================================


def make_caller(email: str, *grants: tuple[UUID, TeamRole]) -> Caller:
    return Caller(
        email=email,
        name=email.split("@")[0],
        permissions=[TeamPermission(team_id=t, role=r) for t, r in grants],
    )


@pytest.fixture
def admin(team: Team) -> Caller:
    return make_caller("admin@example.com", (team.id, TeamRole.ADMIN))


@pytest.fixture
def member(team: Team) -> Caller:
    return make_caller("member@example.com", (team.id, TeamRole.MEMBER))


@pytest.fixture
def second_member(team: Team) -> Caller:
    return make_caller("second.member@example.com", (team.id, TeamRole.MEMBER))


@pytest.fixture
def outsider(other_team: Team) -> Caller:
    return make_caller("outsider@example.com", (other_team.id, TeamRole.ADMIN))
