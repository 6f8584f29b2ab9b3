"""API routes for the audit trail."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from ..core import CallerDep, Policy, SessionDep, authorize
from ..schemas import AuditEventResponse
from ..services import AuditService

router = APIRouter(prefix="/audit", tags=["audit"])


def get_audit_service(session: SessionDep) -> AuditService:
    return AuditService(session)


AuditServiceDep = Annotated[AuditService, Depends(get_audit_service)]


@router.get("/teams/{team_id}", response_model=list[AuditEventResponse])
async def get_team_audit_log(
    team_id: UUID,
    caller: CallerDep,
    service: AuditServiceDep,
    resource_type: str | None = None,
    limit: int = Query(100, ge=1, le=500),
):
    """Recent audit events for a team. Requires admin privileges."""
    authorize(caller, team_id, Policy.ADMIN, action="view", resource="the audit log")
    events = await service.list_events(team_id, resource_type=resource_type, limit=limit)
    return [AuditEventResponse.model_validate(e) for e in events]
