from fastapi import APIRouter, Depends, Query, status

from tenancy.config import settings
from tenancy.dependencies import (
    enforce_rate_limits,
    get_invitation_service,
    get_membership_service,
    get_tenant_service,
)
from tenancy.models.session_context import SessionContext
from tenancy.schemas.tenant_schemas import (
    AuditLogResponse,
    GuestPermissionsUpdate,
    InvitationCreate,
    InvitationCreatedResponse,
    InvitationResponse,
    MemberRemoveResponse,
    MemberResponse,
    OwnershipTransferRequest,
    RoleUpdate,
    TenantResponse,
    TenantUpdate,
)
from tenancy.services.invitation_service import InvitationService
from tenancy.services.membership_service import MembershipService
from tenancy.services.tenant_service import TenantService

router = APIRouter()


@router.get("/me", response_model=TenantResponse)
async def get_current_tenant(
    ctx: SessionContext = Depends(enforce_rate_limits),
    service: TenantService = Depends(get_tenant_service),
):
    """Tenant details of the authenticated user."""
    return service.get_current_tenant(ctx)


@router.patch("/me", response_model=TenantResponse)
async def update_tenant(
    tenant_update: TenantUpdate,
    ctx: SessionContext = Depends(enforce_rate_limits),
    service: TenantService = Depends(get_tenant_service),
):
    """
    Rename the tenant.

    - **Requires ADMIN or OWNER**
    """
    return service.update_tenant(tenant_update, ctx)


@router.get("/me/members", response_model=list[MemberResponse])
async def list_members(
    ctx: SessionContext = Depends(enforce_rate_limits),
    service: MembershipService = Depends(get_membership_service),
):
    """Active members of the tenant. Available to all members."""
    return service.list_members(ctx)


@router.patch("/me/members/{user_id}/role", response_model=MemberResponse)
async def update_member_role(
    user_id: str,
    role_update: RoleUpdate,
    ctx: SessionContext = Depends(enforce_rate_limits),
    service: MembershipService = Depends(get_membership_service),
):
    """
    Change a member's role.

    - **Requires ADMIN or OWNER**
    - Cannot change your own role
    - Owner role moves only through ownership transfer
    - Promoting to or demoting from ADMIN requires the OWNER
    """
    return service.update_user_role(ctx, user_id, role_update.role)


@router.put("/me/members/{user_id}/permissions", response_model=MemberResponse)
async def update_guest_permissions(
    user_id: str,
    permissions: GuestPermissionsUpdate,
    ctx: SessionContext = Depends(enforce_rate_limits),
    service: MembershipService = Depends(get_membership_service),
):
    """Replace a guest's document allow-list. **Requires ADMIN or OWNER**"""
    return service.update_guest_permissions(ctx, user_id, permissions.resource_permissions)


@router.delete("/me/members/{user_id}", response_model=MemberRemoveResponse)
async def remove_member(
    user_id: str,
    hard: bool = Query(default=False),
    ctx: SessionContext = Depends(enforce_rate_limits),
    service: MembershipService = Depends(get_membership_service),
):
    """
    Remove a member from the tenant (soft delete).

    - **Requires ADMIN or OWNER**; removing an ADMIN requires the OWNER
    - Claims are revoked immediately
    - Permanent deletion happens in the retention sweep, not here
    """
    service.delete_user_from_tenant(ctx, user_id, hard=hard)
    return MemberRemoveResponse(
        message="User removed from organization",
        removed_user_id=user_id,
        recoverable_for_days=settings.SOFT_DELETE_RETENTION_DAYS,
    )


@router.post("/me/ownership-transfer", response_model=TenantResponse)
async def transfer_ownership(
    data: OwnershipTransferRequest,
    ctx: SessionContext = Depends(enforce_rate_limits),
    service: MembershipService = Depends(get_membership_service),
):
    """
    Hand ownership to an existing admin; the caller becomes admin.

    - **Requires the current OWNER**
    """
    return service.transfer_ownership(ctx, data.new_owner_uid)


@router.get("/me/invitations", response_model=list[InvitationResponse])
async def list_invitations(
    ctx: SessionContext = Depends(enforce_rate_limits),
    service: InvitationService = Depends(get_invitation_service),
):
    """Pending invitations. **Requires ADMIN or OWNER**"""
    return service.list_invitations(ctx)


@router.post(
    "/me/invitations",
    response_model=InvitationCreatedResponse,
    status_code=status.HTTP_201_CREATED,
)
async def invite_user(
    invite: InvitationCreate,
    ctx: SessionContext = Depends(enforce_rate_limits),
    service: InvitationService = Depends(get_invitation_service),
):
    """
    Invite an email address to the tenant.

    - **Requires ADMIN or OWNER**; inviting an ADMIN requires the OWNER
    - Guests need resource_permissions
    - Rejected when the tenant is at its seat limit
    """
    return service.invite_user(ctx, invite.email, invite.role, invite.resource_permissions)


@router.delete("/me/invitations/{invitation_id}", response_model=InvitationResponse)
async def revoke_invitation(
    invitation_id: str,
    ctx: SessionContext = Depends(enforce_rate_limits),
    service: InvitationService = Depends(get_invitation_service),
):
    """Revoke a pending invitation. **Requires ADMIN or OWNER**"""
    return service.revoke_invitation(ctx, invitation_id)


@router.get("/me/audit-logs", response_model=list[AuditLogResponse])
async def list_audit_logs(
    limit: int = Query(default=100, ge=1, le=500),
    ctx: SessionContext = Depends(enforce_rate_limits),
    service: TenantService = Depends(get_tenant_service),
):
    """Most recent audit entries. **Requires ADMIN or OWNER**"""
    return service.list_audit_logs(ctx, limit)
