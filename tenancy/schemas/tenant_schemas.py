from datetime import datetime

from pydantic import BaseModel, EmailStr, Field

from tenancy.models.audit_log import AuditAction
from tenancy.models.invitation import InvitationStatus
from tenancy.models.role import Role
from tenancy.models.tenant import TenantStatus
from tenancy.models.user import UserStatus


class TenantResponse(BaseModel):
    """Tenant details response"""

    id: str
    name: str
    owner_id: str | None
    status: TenantStatus
    settings: dict
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class TenantUpdate(BaseModel):
    """Rename tenant (admin or owner)"""

    name: str = Field(..., min_length=1, max_length=255)


class MemberResponse(BaseModel):
    """Member profile within the tenant"""

    id: str
    email: str
    display_name: str | None
    role: Role
    status: UserStatus
    resource_permissions: dict[str, list[str]] | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class InvitationCreate(BaseModel):
    """Invite an email address to the tenant"""

    email: EmailStr
    role: Role = Field(default=Role.MEMBER, description="Role to assign (default: member)")
    resource_permissions: dict[str, list[str]] | None = Field(
        default=None, description="Guest only: collection -> allowed document ids"
    )


class InvitationResponse(BaseModel):
    id: str
    email: str
    role: Role
    status: InvitationStatus
    invited_by: str
    invited_at: datetime
    expires_at: datetime
    resource_permissions: dict[str, list[str]] | None = None

    model_config = {"from_attributes": True}


class InvitationCreatedResponse(InvitationResponse):
    """Returned once, to the inviter; carries the single-use token"""

    invite_token: str
    invite_link: str | None


class RoleUpdate(BaseModel):
    """Change a member's role"""

    role: Role = Field(..., description="New role to assign")


class GuestPermissionsUpdate(BaseModel):
    resource_permissions: dict[str, list[str]]


class OwnershipTransferRequest(BaseModel):
    new_owner_uid: str = Field(..., min_length=1)


class MemberRemoveResponse(BaseModel):
    """Response after removing a member"""

    message: str
    removed_user_id: str
    recoverable_for_days: int


class AuditLogResponse(BaseModel):
    id: str
    user_id: str
    action: AuditAction
    collection: str
    document_id: str | None
    timestamp: datetime
    changes: dict

    model_config = {"from_attributes": True}
