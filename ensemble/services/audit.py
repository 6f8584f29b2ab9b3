"""Audit service: append-only trail of every mutation."""

from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import AuditAction, AuditLog, utcnow


class AuditService:
    """Writes and reads AuditLog rows. Rows are never updated."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def log_event(
        self,
        actor: str,
        action: AuditAction,
        resource_type: str,
        resource_id: UUID,
        team_id: UUID | None = None,
        details: dict[str, Any] | None = None,
    ) -> AuditLog:
        entry = AuditLog(
            team_id=team_id,
            actor=actor,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            details=details or {},
            created_at=utcnow(),
        )
        self.session.add(entry)
        return entry

    async def list_events(
        self,
        team_id: UUID,
        resource_type: str | None = None,
        limit: int = 100,
    ) -> Sequence[AuditLog]:
        """Most recent events for a team, newest first."""
        query = select(AuditLog).where(AuditLog.team_id == team_id)
        if resource_type:
            query = query.where(AuditLog.resource_type == resource_type)
        query = query.order_by(AuditLog.created_at.desc()).limit(limit)

        result = await self.session.execute(query)
        return result.scalars().all()
