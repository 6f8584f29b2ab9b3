"""
RBAC gate: the one authorization rule used by every mutating operation.

A caller is a *team admin* when any of their permissions names the team
with role ADMIN, and a *team member* when any permission names the team at
all. Every mutation resolves the owning team first, then asks for exactly
one policy:

- MEMBER          any permission for the team
- ADMIN           an ADMIN permission for the team
- OWNER_OR_ADMIN  the resource's creator or a team admin; public resources
                  always need an admin

Making something public additionally requires admin, whatever the policy.
"""

from dataclasses import dataclass, field
from enum import Enum as PyEnum
from uuid import UUID

from .exceptions import PermissionDeniedError


class TeamRole(str, PyEnum):
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"


class Policy(str, PyEnum):
    MEMBER = "member"
    ADMIN = "admin"
    OWNER_OR_ADMIN = "owner_or_admin"


PUBLIC = "public"


@dataclass(frozen=True)
class TeamPermission:
    team_id: UUID
    role: TeamRole


@dataclass
class Caller:
    """Identity and team permissions of whoever is invoking an operation."""
    email: str
    name: str | None = None
    permissions: list[TeamPermission] = field(default_factory=list)

    @property
    def display_name(self) -> str:
        return self.name or self.email

    def is_member(self, team_id: UUID) -> bool:
        return any(p.team_id == team_id for p in self.permissions)

    def is_admin(self, team_id: UUID) -> bool:
        return any(
            p.team_id == team_id and p.role == TeamRole.ADMIN
            for p in self.permissions
        )


def authorize(
    caller: Caller,
    team_id: UUID,
    policy: Policy,
    *,
    owner: str | None = None,
    visibility: str | None = None,
    target_visibility: str | None = None,
    action: str = "modify",
    resource: str = "resources",
) -> None:
    """
    Allow or deny one operation. Raises PermissionDeniedError on deny.

    Args:
        owner: creator email of the resource (OWNER_OR_ADMIN only)
        visibility: current visibility of the resource, if it has one
        target_visibility: visibility the caller is asking for, if changing
        action / resource: wording used in the error message
    """
    is_admin = caller.is_admin(team_id)

    if policy == Policy.ADMIN:
        if not is_admin:
            raise PermissionDeniedError(
                f"Only Admins can {action} {resource}"
            )

    elif policy == Policy.MEMBER:
        if not caller.is_member(team_id):
            raise PermissionDeniedError(
                "You are not a member of this team"
            )

    elif policy == Policy.OWNER_OR_ADMIN:
        if visibility == PUBLIC:
            if not is_admin:
                raise PermissionDeniedError(
                    f"Only Admins can {action} Public {resource}"
                )
        elif not (is_admin or owner == caller.email):
            raise PermissionDeniedError(
                f"You can only {action} your own private {resource}"
            )

    if target_visibility == PUBLIC and visibility != PUBLIC and not is_admin:
        raise PermissionDeniedError(f"Only Admins can make {resource} public")
