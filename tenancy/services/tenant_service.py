from tenancy.core.exceptions import PermissionDenied
from tenancy.models.audit_log import AuditLog
from tenancy.models.session_context import SessionContext
from tenancy.models.tenant import Tenant
from tenancy.repositories.tenant_store import TenantScopedStore
from tenancy.schemas.tenant_schemas import TenantUpdate


class TenantService:
    """Service layer for the caller's own tenant record and audit trail"""

    def __init__(self, store: TenantScopedStore):
        self.store = store

    def get_current_tenant(self, ctx: SessionContext) -> Tenant:
        return self.store.get_tenant()

    def update_tenant(self, tenant_update: TenantUpdate, ctx: SessionContext) -> Tenant:
        """
        Rename the tenant.

        Raises:
            PermissionDenied: If caller is not admin/owner
        """
        if not ctx.can_manage_users():
            raise PermissionDenied("Only Admins and Owners can update tenant details")
        return self.store.update_tenant({"name": tenant_update.name})

    def list_audit_logs(self, ctx: SessionContext, limit: int = 100) -> list[AuditLog]:
        """
        Most recent audit entries of the tenant.

        Raises:
            PermissionDenied: If caller is not admin/owner
        """
        if not ctx.can_manage_users():
            raise PermissionDenied("Only Admins and Owners can view the audit trail")
        return self.store.query("audit_logs", order_by="timestamp", descending=True, limit=limit)
