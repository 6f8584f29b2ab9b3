"""FastAPI dependencies for authentication and request context."""

import logging
from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from .rbac import Caller, TeamPermission, TeamRole
from .database import get_session
from .security import decode_token

logger = logging.getLogger(__name__)

# Security scheme
bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_caller(
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(bearer_scheme)
    ],
) -> Caller:
    """Dependency to get the authenticated caller and their team permissions."""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    permissions = []
    for claim in payload.permissions:
        try:
            permissions.append(
                TeamPermission(team_id=UUID(claim.team_id), role=TeamRole(claim.role))
            )
        except ValueError:
            logger.warning(f"Ignoring malformed permission claim for {payload.sub}: {claim}")

    return Caller(email=payload.sub, name=payload.name, permissions=permissions)


# Type aliases for cleaner dependency injection
CallerDep = Annotated[Caller, Depends(get_current_caller)]
SessionDep = Annotated[AsyncSession, Depends(get_session)]
