"""Tests for the RBAC gate shared by every mutating operation."""

from uuid import uuid4

import pytest

from ensemble.core.exceptions import PermissionDeniedError
from ensemble.core.rbac import Caller, Policy, TeamPermission, TeamRole, authorize

TEAM = uuid4()
OTHER_TEAM = uuid4()

ADMIN = Caller(
    email="admin@example.com",
    permissions=[TeamPermission(TEAM, TeamRole.ADMIN)],
)
MEMBER = Caller(
    email="member@example.com",
    permissions=[TeamPermission(TEAM, TeamRole.MEMBER)],
)
ADMIN_ELSEWHERE = Caller(
    email="elsewhere@example.com",
    permissions=[
        TeamPermission(OTHER_TEAM, TeamRole.ADMIN),
        TeamPermission(TEAM, TeamRole.MEMBER),
    ],
)
STRANGER = Caller(email="stranger@example.com")


class TestRoles:
    def test_admin_is_also_member(self):
        assert ADMIN.is_admin(TEAM)
        assert ADMIN.is_member(TEAM)

    def test_admin_role_is_scoped_to_its_team(self):
        assert ADMIN_ELSEWHERE.is_admin(OTHER_TEAM)
        assert not ADMIN_ELSEWHERE.is_admin(TEAM)
        assert ADMIN_ELSEWHERE.is_member(TEAM)

    def test_display_name_falls_back_to_email(self):
        assert STRANGER.display_name == "stranger@example.com"
        assert Caller(email="a@example.com", name="Ada").display_name == "Ada"


class TestPolicies:
    def test_member_policy(self):
        authorize(MEMBER, TEAM, Policy.MEMBER)
        authorize(ADMIN, TEAM, Policy.MEMBER)

        with pytest.raises(PermissionDeniedError, match="not a member"):
            authorize(STRANGER, TEAM, Policy.MEMBER)

    def test_admin_policy_message_names_the_action(self):
        authorize(ADMIN, TEAM, Policy.ADMIN)

        with pytest.raises(PermissionDeniedError) as exc_info:
            authorize(MEMBER, TEAM, Policy.ADMIN, action="create", resource="Public links")
        assert exc_info.value.message == "Only Admins can create Public links"

    def test_admin_of_another_team_is_not_admin_here(self):
        with pytest.raises(PermissionDeniedError):
            authorize(ADMIN_ELSEWHERE, TEAM, Policy.ADMIN)

    def test_owner_may_touch_own_private_resource(self):
        authorize(
            MEMBER, TEAM, Policy.OWNER_OR_ADMIN,
            owner=MEMBER.email, visibility="private",
        )

    def test_member_may_not_touch_someone_elses_private_resource(self):
        with pytest.raises(PermissionDeniedError) as exc_info:
            authorize(
                MEMBER, TEAM, Policy.OWNER_OR_ADMIN,
                owner="someone@example.com", visibility="private",
                action="update", resource="links",
            )
        assert exc_info.value.message == "You can only update your own private links"

    def test_admin_may_touch_any_private_resource(self):
        authorize(
            ADMIN, TEAM, Policy.OWNER_OR_ADMIN,
            owner="someone@example.com", visibility="private",
        )

    def test_public_resource_needs_admin_even_for_its_owner(self):
        with pytest.raises(PermissionDeniedError) as exc_info:
            authorize(
                MEMBER, TEAM, Policy.OWNER_OR_ADMIN,
                owner=MEMBER.email, visibility="public",
                action="delete", resource="links",
            )
        assert exc_info.value.message == "Only Admins can delete Public links"

        authorize(
            ADMIN, TEAM, Policy.OWNER_OR_ADMIN,
            owner=MEMBER.email, visibility="public",
        )


class TestVisibilityEscalation:
    def test_owner_cannot_make_own_resource_public(self):
        with pytest.raises(PermissionDeniedError, match="Only Admins can make links public"):
            authorize(
                MEMBER, TEAM, Policy.OWNER_OR_ADMIN,
                owner=MEMBER.email, visibility="private", target_visibility="public",
                resource="links",
            )

    def test_admin_can_make_resource_public(self):
        authorize(
            ADMIN, TEAM, Policy.OWNER_OR_ADMIN,
            owner=MEMBER.email, visibility="private", target_visibility="public",
        )

    def test_keeping_a_resource_private_is_not_an_escalation(self):
        authorize(
            MEMBER, TEAM, Policy.OWNER_OR_ADMIN,
            owner=MEMBER.email, visibility="private", target_visibility="private",
        )
