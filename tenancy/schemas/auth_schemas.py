from pydantic import BaseModel, EmailStr, Field

from tenancy.models.role import Role


class SignupRequest(BaseModel):
    """Create an identity and provision it (new tenant, or the invited one)"""

    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    display_name: str | None = Field(default=None, max_length=255)
    invite_token: str | None = Field(
        default=None, description="Invitation token from the invite link"
    )


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class AcceptInvitationRequest(BaseModel):
    """Redeem an invitation for the signed-in, not yet provisioned account"""

    token: str = Field(..., min_length=1)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class SessionResponse(BaseModel):
    """The verified session context of the caller"""

    user_id: str
    tenant_id: str
    role: Role
    email: str
    resource_permissions: dict[str, list[str]] = Field(default_factory=dict)

    model_config = {"from_attributes": True}
