"""SQLAlchemy ORM Models for Ensemble.

Tables are grouped by feature: directory (teams, applications), scorecard,
turnover/ITSM, links, and audit.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, JSONType, TimestampMixin, UUIDMixin, utcnow


def _enum(enum_cls: type[PyEnum], name: str) -> Enum:
    return Enum(enum_cls, name=name, values_callable=lambda x: [e.value for e in x])


# =============================================================================
# ENUMS
# =============================================================================


class ApplicationStatus(str, PyEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    DEPRECATED = "deprecated"
    ARCHIVED = "archived"


class ItsmRecordType(str, PyEnum):
    """Ticket kinds pulled from the ITSM system."""
    RFC = "RFC"
    INC = "INC"


class ImportMode(str, PyEnum):
    AUTO = "AUTO"
    REVIEW = "REVIEW"


class QueueItemStatus(str, PyEnum):
    PENDING = "PENDING"
    IMPORTED = "IMPORTED"  # terminal
    REJECTED = "REJECTED"  # terminal


class MatchSource(str, PyEnum):
    """Which signal resolved a queue item's application."""
    EXPLICIT = "EXPLICIT"  # source record carried an application id
    ASSIGNMENT_GROUP = "ASSIGNMENT_GROUP"
    CMDB_CI = "CMDB_CI"
    FALLBACK = "FALLBACK"
    MANUAL = "MANUAL"  # operator override at import time
    NONE = "NONE"


class TurnoverSection(str, PyEnum):
    RFC = "RFC"
    INC = "INC"
    ALERTS = "ALERTS"
    MIM = "MIM"
    COMMS = "COMMS"
    FYI = "FYI"


class TurnoverStatus(str, PyEnum):
    OPEN = "OPEN"
    RESOLVED = "RESOLVED"


class LinkVisibility(str, PyEnum):
    PRIVATE = "private"
    PUBLIC = "public"


class AuditAction(str, PyEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    PUBLISH = "publish"
    UNPUBLISH = "unpublish"
    IMPORT = "import"
    REJECT = "reject"
    UNTRACK = "untrack"
    FINALIZE = "finalize"


# Shared by more than one table
IMPORT_MODE_ENUM = _enum(ImportMode, "import_mode")
ITSM_RECORD_TYPE_ENUM = _enum(ItsmRecordType, "itsm_record_type")


# =============================================================================
# DIRECTORY
# =============================================================================


class Team(Base, UUIDMixin, TimestampMixin):
    """A registered, approved team."""

    __tablename__ = "teams"

    team_name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    contact_name: Mapped[str | None] = mapped_column(String(255))
    contact_email: Mapped[str | None] = mapped_column(String(255))


class Application(Base, UUIDMixin, TimestampMixin):
    """An application owned by a team, with its leadership chain."""

    __tablename__ = "applications"

    team_id: Mapped[UUID] = mapped_column(
        ForeignKey("teams.id", ondelete="CASCADE"), nullable=False
    )
    application_name: Mapped[str] = mapped_column(String(255), nullable=False)
    tla: Mapped[str | None] = mapped_column(String(12))
    tier: Mapped[str | None] = mapped_column(String(50))
    status: Mapped[ApplicationStatus] = mapped_column(
        _enum(ApplicationStatus, "application_status"),
        default=ApplicationStatus.ACTIVE,
        nullable=False,
    )

    # Leadership chain (used by the enterprise scorecard filters)
    owner_svp_name: Mapped[str | None] = mapped_column(String(255))
    owner_svp_email: Mapped[str | None] = mapped_column(String(255))
    vp_name: Mapped[str | None] = mapped_column(String(255))
    vp_email: Mapped[str | None] = mapped_column(String(255))
    director_name: Mapped[str | None] = mapped_column(String(255))
    director_email: Mapped[str | None] = mapped_column(String(255))
    application_owner_name: Mapped[str | None] = mapped_column(String(255))
    application_owner_email: Mapped[str | None] = mapped_column(String(255))
    application_manager_name: Mapped[str | None] = mapped_column(String(255))
    application_manager_email: Mapped[str | None] = mapped_column(String(255))
    unit_cio_name: Mapped[str | None] = mapped_column(String(255))
    unit_cio_email: Mapped[str | None] = mapped_column(String(255))

    __table_args__ = (
        Index("idx_applications_team", "team_id"),
    )


# =============================================================================
# SCORECARD
# =============================================================================


class ScorecardEntry(Base, UUIDMixin, TimestampMixin):
    """A tracked metric definition for an application."""

    __tablename__ = "scorecard_entries"

    application_id: Mapped[UUID] = mapped_column(
        ForeignKey("applications.id", ondelete="CASCADE"), nullable=False
    )
    scorecard_identifier: Mapped[str] = mapped_column(
        String(100), unique=True, nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    availability_threshold: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), default=Decimal("98.00"), nullable=False
    )
    volume_change_threshold: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), default=Decimal("20.00"), nullable=False
    )
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    updated_by: Mapped[str | None] = mapped_column(String(255))

    __table_args__ = (
        Index("idx_scorecard_entries_app", "application_id"),
    )


class ScorecardAvailability(Base, UUIDMixin, TimestampMixin):
    """Monthly availability percentage. One row per (entry, year, month)."""

    __tablename__ = "scorecard_availability"

    scorecard_entry_id: Mapped[UUID] = mapped_column(
        ForeignKey("scorecard_entries.id", ondelete="CASCADE"), nullable=False
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    availability: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    updated_by: Mapped[str | None] = mapped_column(String(255))

    __table_args__ = (
        UniqueConstraint(
            "scorecard_entry_id", "year", "month",
            name="uq_scorecard_availability_entry_period",
        ),
        Index("idx_scorecard_availability_year", "year"),
    )


class ScorecardVolume(Base, UUIDMixin, TimestampMixin):
    """Monthly transaction volume. One row per (entry, year, month)."""

    __tablename__ = "scorecard_volume"

    scorecard_entry_id: Mapped[UUID] = mapped_column(
        ForeignKey("scorecard_entries.id", ondelete="CASCADE"), nullable=False
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    volume: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    updated_by: Mapped[str | None] = mapped_column(String(255))

    __table_args__ = (
        UniqueConstraint(
            "scorecard_entry_id", "year", "month",
            name="uq_scorecard_volume_entry_period",
        ),
        Index("idx_scorecard_volume_year", "year"),
    )


class ScorecardPublishStatus(Base, UUIDMixin):
    """Publish state of one team's month. Rows are flipped, never deleted."""

    __tablename__ = "scorecard_publish_status"

    team_id: Mapped[UUID] = mapped_column(
        ForeignKey("teams.id", ondelete="CASCADE"), nullable=False
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    is_published: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    published_by: Mapped[str | None] = mapped_column(String(255))
    published_at: Mapped[datetime | None] = mapped_column()
    unpublished_by: Mapped[str | None] = mapped_column(String(255))
    unpublished_at: Mapped[datetime | None] = mapped_column()

    __table_args__ = (
        UniqueConstraint(
            "team_id", "year", "month",
            name="uq_scorecard_publish_status_team_period",
        ),
    )

    @property
    def is_live(self) -> bool:
        return self.is_published and self.published_at is not None


# =============================================================================
# TURNOVER SETTINGS & ITSM
# =============================================================================


class TurnoverSettings(Base):
    """Per-team ITSM sync configuration."""

    __tablename__ = "turnover_settings"

    team_id: Mapped[UUID] = mapped_column(
        ForeignKey("teams.id", ondelete="CASCADE"), primary_key=True
    )
    max_search_days: Mapped[int] = mapped_column(Integer, default=30, nullable=False)
    rfc_import_mode: Mapped[ImportMode] = mapped_column(
        IMPORT_MODE_ENUM, default=ImportMode.REVIEW, nullable=False
    )
    inc_import_mode: Mapped[ImportMode] = mapped_column(
        IMPORT_MODE_ENUM, default=ImportMode.REVIEW, nullable=False
    )
    updated_by: Mapped[str | None] = mapped_column(String(255))
    updated_at: Mapped[datetime | None] = mapped_column()


class TurnoverAppWorkgroup(Base, UUIDMixin):
    """Assignment group that routes ITSM tickets to an application."""

    __tablename__ = "turnover_app_workgroups"

    application_id: Mapped[UUID] = mapped_column(
        ForeignKey("applications.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[ItsmRecordType] = mapped_column(
        ITSM_RECORD_TYPE_ENUM, nullable=False
    )
    group_name: Mapped[str] = mapped_column(String(255), nullable=False)

    __table_args__ = (
        Index("idx_turnover_app_workgroups_app", "application_id"),
    )


class TurnoverAppCmdbCi(Base, UUIDMixin):
    """CMDB configuration item name mapped to an application."""

    __tablename__ = "turnover_app_cmdb_cis"

    application_id: Mapped[UUID] = mapped_column(
        ForeignKey("applications.id", ondelete="CASCADE"), nullable=False
    )
    cmdb_ci_name: Mapped[str] = mapped_column(String(255), nullable=False)

    __table_args__ = (
        Index("idx_turnover_app_cmdb_cis_app", "application_id"),
    )


class ItsmReviewQueueItem(Base, UUIDMixin, TimestampMixin):
    """An external ticket staged for an operator decision."""

    __tablename__ = "itsm_review_queue"

    team_id: Mapped[UUID] = mapped_column(
        ForeignKey("teams.id", ondelete="CASCADE"), nullable=False
    )
    application_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("applications.id", ondelete="SET NULL")
    )
    external_id: Mapped[str] = mapped_column(String(50), nullable=False)
    type: Mapped[ItsmRecordType] = mapped_column(
        ITSM_RECORD_TYPE_ENUM, nullable=False
    )
    status: Mapped[QueueItemStatus] = mapped_column(
        _enum(QueueItemStatus, "queue_item_status"),
        default=QueueItemStatus.PENDING,
        nullable=False,
    )
    match_source: Mapped[MatchSource] = mapped_column(
        _enum(MatchSource, "match_source"),
        default=MatchSource.NONE,
        nullable=False,
    )
    raw_data: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    resolved_by: Mapped[str | None] = mapped_column(String(255))
    resolved_at: Mapped[datetime | None] = mapped_column()

    __table_args__ = (
        UniqueConstraint(
            "team_id", "external_id", name="uq_itsm_review_queue_team_external"
        ),
        Index("idx_itsm_review_queue_team_status", "team_id", "status"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status != QueueItemStatus.PENDING


# =============================================================================
# TURNOVER ENTRIES
# =============================================================================


class TurnoverEntry(Base, UUIDMixin, TimestampMixin):
    """An operator-visible handover item."""

    __tablename__ = "turnover_entries"

    team_id: Mapped[UUID] = mapped_column(
        ForeignKey("teams.id", ondelete="CASCADE"), nullable=False
    )
    application_id: Mapped[UUID] = mapped_column(
        ForeignKey("applications.id", ondelete="CASCADE"), nullable=False
    )
    section: Mapped[TurnoverSection] = mapped_column(
        _enum(TurnoverSection, "turnover_section"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    comments: Mapped[str | None] = mapped_column(Text)
    is_important: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    status: Mapped[TurnoverStatus] = mapped_column(
        _enum(TurnoverStatus, "turnover_status"),
        default=TurnoverStatus.OPEN,
        nullable=False,
    )
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    updated_by: Mapped[str | None] = mapped_column(String(255))
    resolved_by: Mapped[str | None] = mapped_column(String(255))
    resolved_at: Mapped[datetime | None] = mapped_column()

    rfc_details: Mapped["RfcDetails | None"] = relationship(
        cascade="all, delete-orphan", lazy="selectin"
    )
    inc_details: Mapped["IncDetails | None"] = relationship(
        cascade="all, delete-orphan", lazy="selectin"
    )
    mim_details: Mapped["MimDetails | None"] = relationship(
        cascade="all, delete-orphan", lazy="selectin"
    )
    comms_details: Mapped["CommsDetails | None"] = relationship(
        cascade="all, delete-orphan", lazy="selectin"
    )

    __table_args__ = (
        Index("idx_turnover_entries_team_status", "team_id", "status"),
        Index("idx_turnover_entries_team_created", "team_id", "created_at"),
    )


class RfcDetails(Base):
    __tablename__ = "turnover_rfc_details"

    entry_id: Mapped[UUID] = mapped_column(
        ForeignKey("turnover_entries.id", ondelete="CASCADE"), primary_key=True
    )
    rfc_number: Mapped[str] = mapped_column(String(50), nullable=False)
    rfc_status: Mapped[str] = mapped_column(String(50), nullable=False)
    validated_by: Mapped[str] = mapped_column(String(255), nullable=False)
    cmdb_ci: Mapped[str | None] = mapped_column(String(255))


class IncDetails(Base):
    __tablename__ = "turnover_inc_details"

    entry_id: Mapped[UUID] = mapped_column(
        ForeignKey("turnover_entries.id", ondelete="CASCADE"), primary_key=True
    )
    incident_number: Mapped[str] = mapped_column(String(50), nullable=False)


class MimDetails(Base):
    __tablename__ = "turnover_mim_details"

    entry_id: Mapped[UUID] = mapped_column(
        ForeignKey("turnover_entries.id", ondelete="CASCADE"), primary_key=True
    )
    mim_link: Mapped[str] = mapped_column(Text, nullable=False)
    mim_slack_link: Mapped[str | None] = mapped_column(Text)


class CommsDetails(Base):
    __tablename__ = "turnover_comms_details"

    entry_id: Mapped[UUID] = mapped_column(
        ForeignKey("turnover_entries.id", ondelete="CASCADE"), primary_key=True
    )
    email_subject: Mapped[str | None] = mapped_column(String(500))
    slack_link: Mapped[str | None] = mapped_column(Text)


class FinalizedTurnover(Base, UUIDMixin):
    """Immutable snapshot of the dispatch view. Never updated after insert."""

    __tablename__ = "finalized_turnovers"

    team_id: Mapped[UUID] = mapped_column(
        ForeignKey("teams.id", ondelete="CASCADE"), nullable=False
    )
    snapshot_data: Mapped[list] = mapped_column(JSONType, nullable=False)
    total_applications: Mapped[int] = mapped_column(Integer, nullable=False)
    total_entries: Mapped[int] = mapped_column(Integer, nullable=False)
    important_count: Mapped[int] = mapped_column(Integer, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)
    finalized_by: Mapped[str] = mapped_column(String(255), nullable=False)
    finalized_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_finalized_turnovers_team_time", "team_id", "finalized_at"),
    )


# =============================================================================
# LINKS
# =============================================================================


class LinkCategory(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "link_categories"

    team_id: Mapped[UUID] = mapped_column(
        ForeignKey("teams.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)

    __table_args__ = (
        UniqueConstraint("team_id", "name", name="uq_link_categories_team_name"),
    )


class Link(Base, UUIDMixin, TimestampMixin):
    """A bookmarked URL, private to its owner or public to the team."""

    __tablename__ = "links"

    team_id: Mapped[UUID] = mapped_column(
        ForeignKey("teams.id", ondelete="CASCADE"), nullable=False
    )
    application_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("applications.id", ondelete="SET NULL")
    )
    category_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("link_categories.id", ondelete="SET NULL")
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    visibility: Mapped[LinkVisibility] = mapped_column(
        _enum(LinkVisibility, "link_visibility"),
        default=LinkVisibility.PRIVATE,
        nullable=False,
    )
    tags: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    user_email: Mapped[str] = mapped_column(String(255), nullable=False)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    updated_by: Mapped[str | None] = mapped_column(String(255))

    category: Mapped["LinkCategory | None"] = relationship(lazy="selectin")
    application: Mapped["Application | None"] = relationship(lazy="selectin")

    __table_args__ = (
        Index("idx_links_team_created", "team_id", "created_at"),
        Index("idx_links_owner", "user_email"),
    )


# =============================================================================
# AUDIT LOG
# =============================================================================


class AuditLog(Base, UUIDMixin):
    """Append-only audit trail."""

    __tablename__ = "audit_log"

    team_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("teams.id", ondelete="SET NULL")
    )
    actor: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[AuditAction] = mapped_column(
        _enum(AuditAction, "audit_action"), nullable=False
    )
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_id: Mapped[UUID] = mapped_column(nullable=False)
    details: Mapped[dict] = mapped_column(JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_audit_log_team_time", "team_id", "created_at"),
        Index("idx_audit_log_resource", "resource_type", "resource_id"),
    )
