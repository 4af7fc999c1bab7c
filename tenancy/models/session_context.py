"""Session context for request authorization."""

from dataclasses import dataclass, field

from tenancy.models.role import Role


@dataclass(frozen=True)
class SessionContext:
    """
    Minimal trusted context produced by the session verification pipeline.

    Built only from a verified credential and the claims store; downstream
    code receives it through request state and never re-derives it from
    client-controlled values.

    Attributes:
        user_id: Identity uid
        tenant_id: The tenant the user belongs to
        role: The user's role within this tenant
        email: Identity email
        resource_permissions: Guest allow-list (collection -> document ids)
    """

    user_id: str
    tenant_id: str
    role: Role
    email: str
    resource_permissions: dict[str, list[str]] = field(default_factory=dict)

    def has_permission(self, required_role: Role) -> bool:
        """Check if user's role meets or exceeds required role."""
        return self.role.at_least(required_role)

    def can_manage_users(self) -> bool:
        """Check if user is admin or owner."""
        return self.role.can_manage_users()

    def can_write(self) -> bool:
        """Check if user has write permissions (MEMBER or higher)."""
        return self.role.can_edit_data()

    def can_access_document(self, collection: str, document_id: str) -> bool:
        """Guests only see the documents listed for them; other roles see the tenant."""
        if self.role is not Role.GUEST:
            return True
        return document_id in self.resource_permissions.get(collection, [])

    def __repr__(self) -> str:
        return (
            f"<SessionContext(user_id={self.user_id}, tenant_id={self.tenant_id}, "
            f"role={self.role.value})>"
        )
