"""
Tests for role-based access control.
"""

import pytest

from yield_router.access import AccessControl, Role
from yield_router.core.exceptions import (
    AuthorizationError,
    NotAdminError,
    NotModeratorError,
    NotOperatorError,
)


@pytest.fixture
def acl():
    return AccessControl(owner="owner")


class TestRoles:
    """Test cases for role checks."""

    def test_owner_implies_admin_and_moderator(self, acl):
        """Test implied roles of the owner."""
        assert acl.has_role("owner", Role.ADMIN)
        assert acl.has_role("owner", Role.MODERATOR)
        assert not acl.has_role("owner", Role.OPERATOR)

    def test_require_raises_matching_error(self, acl):
        """Test the denial error matches the required role."""
        with pytest.raises(NotAdminError):
            acl.require("mallory", Role.ADMIN)
        with pytest.raises(NotModeratorError):
            acl.require("mallory", Role.MODERATOR)
        with pytest.raises(NotOperatorError):
            acl.require("mallory", Role.OPERATOR)

    def test_require_any_of(self, acl):
        """Test that holding one of several roles is enough."""
        acl.grant_role("owner", Role.MODERATOR, "mod")
        acl.require("mod", Role.ADMIN, Role.MODERATOR)

    def test_denied_callback(self, acl):
        """Test denial callbacks and unsubscribe."""
        denied = []
        unsubscribe = acl.on_access_denied(lambda account, roles: denied.append((account, roles)))

        with pytest.raises(AuthorizationError):
            acl.require("mallory", Role.ADMIN)
        unsubscribe()
        with pytest.raises(AuthorizationError):
            acl.require("mallory", Role.ADMIN)

        assert denied == [("mallory", [Role.ADMIN])]


class TestRoleManagement:
    """Test cases for granting and revoking roles."""

    def test_admin_granted_by_owner_only(self, acl):
        """Test that admins cannot create admins."""
        acl.grant_role("owner", Role.ADMIN, "admin")

        with pytest.raises(AuthorizationError):
            acl.grant_role("admin", Role.ADMIN, "other")
        assert acl.members(Role.ADMIN) == {"admin"}

    def test_admin_grants_moderator(self, acl):
        """Test that admins manage moderators."""
        acl.grant_role("owner", Role.ADMIN, "admin")
        acl.grant_role("admin", Role.MODERATOR, "mod")

        assert acl.has_role("mod", Role.MODERATOR)
        acl.revoke_role("admin", Role.MODERATOR, "mod")
        assert not acl.has_role("mod", Role.MODERATOR)

    def test_owner_not_grantable(self, acl):
        """Test ownership cannot be granted."""
        with pytest.raises(AuthorizationError):
            acl.grant_role("owner", Role.OWNER, "bob")

    def test_transfer_ownership(self, acl):
        """Test ownership transfer moves all implied roles."""
        acl.transfer_ownership("owner", "new_owner")

        assert acl.owner == "new_owner"
        assert acl.has_role("new_owner", Role.ADMIN)
        assert not acl.has_role("owner", Role.ADMIN)

    def test_roles_of(self, acl):
        """Test explicit plus implied roles."""
        acl.grant_role("owner", Role.OPERATOR, "engine")
        assert acl.roles_of("engine") == {Role.OPERATOR}
        assert acl.roles_of("owner") == {Role.OWNER, Role.ADMIN, Role.MODERATOR}
