"""Security utilities: bearer token encode/decode.

Tokens are minted by the upstream SSO gateway. Ensemble only needs the
caller identity and the per-team permission list carried in the claims.
"""

from datetime import datetime, timedelta, timezone
import logging

import jwt
from pydantic import BaseModel, EmailStr

from .config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


class PermissionClaim(BaseModel):
    """One team role granted to the caller."""

    team_id: str
    role: str  # "ADMIN" | "MEMBER"


class TokenPayload(BaseModel):
    """JWT token payload."""

    sub: EmailStr
    name: str | None = None
    permissions: list[PermissionClaim] = []
    exp: datetime
    iat: datetime


def create_access_token(
    email: str,
    name: str | None = None,
    permissions: list[dict] | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a JWT access token (used by tests and local tooling)."""
    now = datetime.now(timezone.utc)
    expire = now + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )

    payload = {
        "sub": email,
        "name": name,
        "permissions": permissions or [],
        "exp": expire,
        "iat": now,
    }

    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> TokenPayload | None:
    """Decode and validate a JWT token. Returns None when invalid."""
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
        return TokenPayload(**payload)
    except jwt.ExpiredSignatureError:
        logger.info("Rejected expired access token")
        return None
    except (jwt.PyJWTError, ValueError) as e:
        logger.warning(f"Rejected invalid access token: {e}")
        return None
