import os

# Settings are read at import time; provide the required values first
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key-do-not-use-in-production")

import secrets
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from tenancy.database import get_db
from tenancy.dependencies import get_clock
from tenancy.models.audit_log import AuditAction, AuditLog
from tenancy.models.base import Base, utcnow
from tenancy.models.invitation import InvitationStatus
from tenancy.models.role import Role
from tenancy.models.session_context import SessionContext
from tenancy.repositories.audit_repository import AuditRepository
from tenancy.repositories.document_store import DocumentStore
from tenancy.repositories.tenant_store import PrivilegedStore, TenantScopedStore
from tenancy.services.identity_provider import IdentityProvider
from tenancy.services.invitation_service import InvitationService
from tenancy.services.membership_service import MembershipService
from tenancy.services.provisioning_service import ProvisioningService
from tenancy.services.rate_limiter import RateLimiter
from tenancy.services.session_verifier import SessionVerifier

# Import FastAPI app AFTER model imports
from tenancy.main import app

DEFAULT_PASSWORD = "correct-horse-battery"

# Test database (SQLite in-memory for speed)
# Use StaticPool to ensure all connections share the same in-memory database
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"
engine = create_engine(
    SQLALCHEMY_TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FakeClock:
    """
    Controllable time source.

    Starts at the real current time because token expiry is checked
    against the wall clock by the JWT library.
    """

    def __init__(self, start: datetime | None = None):
        self.now = start or utcnow().replace(microsecond=0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class TenancyWorld:
    """Services wired against the test database, plus shortcuts for common setups."""

    def __init__(self, db, clock: FakeClock):
        self.db = db
        self.clock = clock
        self.store = DocumentStore(db)
        self.audit = AuditRepository(self.store)
        self.privileged = PrivilegedStore(self.store, self.audit)
        self.identity = IdentityProvider(db, clock)
        self.provisioning = ProvisioningService(self.privileged, self.identity, clock)
        self.rate_limiter = RateLimiter(self.store, clock)

    def signup(self, email: str, display_name: str | None = None) -> str:
        """Create an identity and provision it; returns the uid."""
        account = self.identity.create_user(email, DEFAULT_PASSWORD, display_name)
        self.provisioning.on_account_create(account.uid, account.email, display_name)
        return account.uid

    def create_owned_tenant(self, email: str = "owner@example.com") -> tuple[str, str]:
        """New tenant whose first user has been elevated to owner. Returns (tenant_id, uid)."""
        uid = self.signup(email)
        tenant_id = self.identity.get_claims(uid)["tenant_id"]
        self.provisioning.elevate_to_owner(tenant_id, uid)
        return tenant_id, uid

    def create_invitation(
        self,
        tenant_id: str,
        email: str,
        role: Role = Role.MEMBER,
        resource_permissions: dict | None = None,
        invited_by: str = "system",
        expires_in: timedelta = timedelta(days=7),
    ) -> str:
        """Insert a pending invitation directly; returns its token."""
        token = secrets.token_hex(32)
        now = self.clock()
        self.privileged.create(
            "invitations",
            {
                "tenant_id": tenant_id,
                "email": email,
                "role": role,
                "invited_by": invited_by,
                "invited_at": now,
                "expires_at": now + expires_in,
                "status": InvitationStatus.PENDING,
                "invite_token": token,
                "token_used": False,
                "resource_permissions": resource_permissions,
            },
        )
        return token

    def add_member(
        self,
        tenant_id: str,
        email: str,
        role: Role = Role.MEMBER,
        resource_permissions: dict | None = None,
    ) -> str:
        """Invite and accept in one step; returns the new member's uid."""
        token = self.create_invitation(tenant_id, email, role, resource_permissions)
        account = self.identity.create_user(email, DEFAULT_PASSWORD)
        self.provisioning.accept_invitation(token, account.uid)
        return account.uid

    def session(self, uid: str) -> SessionContext:
        """Session context exactly as the request pipeline would build it."""
        return SessionVerifier(self.identity, self.store).resolve({"sub": uid}).context

    def scoped(self, ctx: SessionContext) -> TenantScopedStore:
        return TenantScopedStore(self.store, ctx.tenant_id, ctx.user_id, self.audit)

    def invitations(self, ctx: SessionContext) -> InvitationService:
        return InvitationService(self.scoped(ctx), self.clock)

    def membership(self, ctx: SessionContext) -> MembershipService:
        return MembershipService(self.scoped(ctx), self.identity, self.clock)

    def token(self, uid: str) -> str:
        return self.identity.mint_token(self.identity.get_user(uid))

    def headers(self, uid: str) -> dict:
        return {"Authorization": f"Bearer {self.token(uid)}"}

    def audit_actions(self, tenant_id: str) -> list[AuditAction]:
        stmt = (
            select(AuditLog)
            .where(AuditLog.tenant_id == tenant_id)
            .order_by(AuditLog.timestamp)
        )
        return [entry.action for entry in self.db.scalars(stmt).all()]


@pytest.fixture(scope="function")
def db_session():
    """Create fresh database for each test"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def world(db_session, clock):
    return TenancyWorld(db_session, clock)


@pytest.fixture(scope="function")
def client(db_session, clock):
    """FastAPI test client with test database and controllable clock"""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def owned_tenant(world):
    """(tenant_id, owner_uid) for a tenant with an explicit owner"""
    return world.create_owned_tenant()
