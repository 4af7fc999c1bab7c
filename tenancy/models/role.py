"""Role enum for role-based access control."""

from enum import Enum as PyEnum

from tenancy.core.exceptions import InvalidArgument


class Role(str, PyEnum):
    """
    Tenant membership roles with hierarchical permissions.

    Role Hierarchy (lower level = more privileged):
    1. OWNER - Full control, the only role that can transfer ownership
    2. ADMIN - Manage users and settings; invite members, guests, viewers
    3. MEMBER - Create and edit tenant data
    4. GUEST - Access limited to the documents listed in resource_permissions
    5. VIEWER - Read-only access

    This is the single place the hierarchy is encoded. Every authorization
    check compares roles through ``level`` / ``at_least``.
    """

    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"
    GUEST = "guest"
    VIEWER = "viewer"

    @property
    def level(self) -> int:
        return _ROLE_LEVELS[self]

    def at_least(self, required: "Role") -> bool:
        """True if this role is as privileged as ``required`` or more."""
        return self.level <= required.level

    def can_manage_users(self) -> bool:
        """Only owner and admin can invite, remove, or change roles."""
        return self.at_least(Role.ADMIN)

    def can_edit_data(self) -> bool:
        return self.at_least(Role.MEMBER)

    @classmethod
    def parse(cls, value: "str | Role | None") -> "Role":
        """
        Convert a raw value into a Role.

        Raises:
            InvalidArgument: If the value is not one of the five roles
        """
        if isinstance(value, Role):
            return value
        try:
            return cls(value)
        except ValueError:
            allowed = ", ".join(r.value for r in cls)
            raise InvalidArgument(f"Role must be one of: {allowed}")


_ROLE_LEVELS = {
    Role.OWNER: 1,
    Role.ADMIN: 2,
    Role.MEMBER: 3,
    Role.GUEST: 4,
    Role.VIEWER: 5,
}

# Roles an invitation may carry
INVITABLE_ROLES = (Role.ADMIN, Role.MEMBER, Role.GUEST, Role.VIEWER)
