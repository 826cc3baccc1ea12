"""
Role registry.

One fixed set of roles and one authorization check reused by every
privileged operation.
"""

from enum import Enum
from typing import Callable, Dict, List, Set

from ..core import get_audit_logger, get_logger
from ..core.exceptions import (
    AuthorizationError,
    NotAdminError,
    NotModeratorError,
    NotOperatorError,
)

logger = get_logger(__name__)


class Role(Enum):
    """Privileged roles."""

    OWNER = "owner"  # Grants admins, transfers ownership
    ADMIN = "admin"  # Registry, fee and route settings
    MODERATOR = "moderator"  # Rebalancing, settlement, delegated redemption
    OPERATOR = "operator"  # Direct share mint/burn/transfer (engine components)


# Roles implied by holding a role; operator is never implied
IMPLIED_ROLES: Dict[Role, Set[Role]] = {
    Role.OWNER: {Role.ADMIN, Role.MODERATOR},
    Role.ADMIN: set(),
    Role.MODERATOR: set(),
    Role.OPERATOR: set(),
}

DENIAL_ERRORS = {
    Role.OWNER: NotAdminError,
    Role.ADMIN: NotAdminError,
    Role.MODERATOR: NotModeratorError,
    Role.OPERATOR: NotOperatorError,
}

# Role required to grant or revoke each role
GRANTING_ROLE = {
    Role.ADMIN: Role.OWNER,
    Role.MODERATOR: Role.ADMIN,
    Role.OPERATOR: Role.ADMIN,
}


class AccessControl:
    """
    Account-to-role registry.

    Example:
        >>> acl = AccessControl(owner="alice")
        >>> acl.grant_role("alice", Role.MODERATOR, "bob")
        >>> acl.require("bob", Role.MODERATOR)
    """

    def __init__(self, owner: str):
        self._owner = owner
        self._members: Dict[Role, Set[str]] = {role: set() for role in Role}
        self._members[Role.OWNER].add(owner)
        self._denied_callbacks: List[Callable[[str, List[Role]], None]] = []
        self._audit = get_audit_logger("access")

    @property
    def owner(self) -> str:
        return self._owner

    def roles_of(self, account: str) -> Set[Role]:
        """Explicit and implied roles of an account."""
        roles: Set[Role] = set()
        for role, members in self._members.items():
            if account in members:
                roles.add(role)
                roles |= IMPLIED_ROLES[role]
        return roles

    def has_role(self, account: str, role: Role) -> bool:
        return role in self.roles_of(account)

    def require(self, account: str, *roles: Role) -> None:
        """
        Authorize ``account`` if it holds any of ``roles``.

        Raises:
            AuthorizationError: the subclass matching the first required role
        """
        held = self.roles_of(account)
        if any(role in held for role in roles):
            return

        self._audit.authorization_denied(account, [r.value for r in roles])
        for callback in self._denied_callbacks:
            callback(account, list(roles))

        error_cls = DENIAL_ERRORS.get(roles[0], AuthorizationError) if roles else AuthorizationError
        raise error_cls(details={"account": account, "required": [r.value for r in roles]})

    def grant_role(self, caller: str, role: Role, account: str) -> None:
        if role is Role.OWNER:
            raise AuthorizationError("Ownership is transferred, not granted")
        self.require(caller, GRANTING_ROLE[role])
        if account in self._members[role]:
            return
        self._members[role].add(account)
        self._audit.role_changed(role.value, account, granted=True, changed_by=caller)
        logger.info(f"Role {role.value} granted to {account}")

    def revoke_role(self, caller: str, role: Role, account: str) -> None:
        if role is Role.OWNER:
            raise AuthorizationError("Ownership is transferred, not revoked")
        self.require(caller, GRANTING_ROLE[role])
        if account not in self._members[role]:
            return
        self._members[role].discard(account)
        self._audit.role_changed(role.value, account, granted=False, changed_by=caller)
        logger.info(f"Role {role.value} revoked from {account}")

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        self.require(caller, Role.OWNER)
        self._members[Role.OWNER] = {new_owner}
        self._owner = new_owner
        self._audit.role_changed(Role.OWNER.value, new_owner, granted=True, changed_by=caller)
        logger.info(f"Ownership transferred from {caller} to {new_owner}")

    def members(self, role: Role) -> Set[str]:
        return set(self._members[role])

    def on_access_denied(
        self,
        callback: Callable[[str, List[Role]], None],
    ) -> Callable[[], None]:
        """Register a denial callback; returns an unsubscribe function."""
        self._denied_callbacks.append(callback)

        def unsubscribe():
            if callback in self._denied_callbacks:
                self._denied_callbacks.remove(callback)

        return unsubscribe
