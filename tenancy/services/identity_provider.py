from datetime import datetime, UTC
from typing import Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from tenancy.core.exceptions import AlreadyExists, InvalidArgument, NotFound, Unauthenticated
from tenancy.core.security import decode_jwt, encode_jwt, hash_password, verify_password
from tenancy.logger import get_logger
from tenancy.models.base import utcnow
from tenancy.models.identity import Identity

logger = get_logger(__name__)


class IdentityProvider:
    """
    Claims store: credentials, per-user custom claims and bearer tokens.

    custom_claims is the authoritative source of tenant_id and role for
    request authorization. Writers always assign a fresh dict so the JSON
    column is flagged dirty.
    """

    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    def create_user(
        self, email: str, password: str, display_name: str | None = None
    ) -> Identity:
        """
        Register a new identity with no claims.

        Raises:
            InvalidArgument: If email or password is missing
            AlreadyExists: If the email is already registered
        """
        if not email or not password:
            raise InvalidArgument("Email and password are required")

        email = email.strip().lower()
        if self.get_user_by_email(email) is not None:
            raise AlreadyExists("An account with this email already exists")

        identity = Identity(
            email=email,
            password_hash=hash_password(password),
            display_name=display_name,
        )
        self.db.add(identity)
        self.db.commit()
        self.db.refresh(identity)

        logger.info("identity_created", uid=identity.uid)
        return identity

    def get_user(self, uid: str) -> Identity:
        """
        Raises:
            NotFound: If no identity has this uid
        """
        identity = self.db.get(Identity, uid)
        if identity is None:
            raise NotFound("User not found")
        return identity

    def get_user_by_email(self, email: str) -> Identity | None:
        stmt = select(Identity).where(Identity.email == email.strip().lower())
        return self.db.scalars(stmt).first()

    def authenticate(self, email: str, password: str) -> Identity:
        """
        Check a password login.

        Raises:
            Unauthenticated: On unknown email, wrong password or disabled account
        """
        identity = self.get_user_by_email(email)
        if identity is None or not verify_password(password, identity.password_hash):
            raise Unauthenticated("Invalid email or password")
        if identity.disabled:
            raise Unauthenticated("Account is disabled")
        return identity

    def get_claims(self, uid: str) -> dict:
        return dict(self.get_user(uid).custom_claims or {})

    def set_claims(self, uid: str, claims: dict | None) -> Identity:
        """Replace the custom claims; None clears them."""
        identity = self.get_user(uid)
        identity.custom_claims = dict(claims) if claims is not None else None
        self.db.commit()
        self.db.refresh(identity)
        return identity

    def revoke_tokens(self, uid: str) -> None:
        """Invalidate every token issued before now."""
        identity = self.get_user(uid)
        identity.tokens_valid_after = self.clock()
        self.db.commit()
        logger.info("tokens_revoked", uid=uid)

    def delete_user(self, uid: str) -> None:
        """
        Permanently remove the identity.

        Raises:
            NotFound: If it was already removed
        """
        identity = self.get_user(uid)
        self.db.delete(identity)
        self.db.commit()
        logger.info("identity_deleted", uid=uid)

    def mint_token(self, identity: Identity) -> str:
        """Issue a bearer token embedding the identity's current claims."""
        payload = {"sub": identity.uid, "email": identity.email}
        payload.update(identity.custom_claims or {})
        return encode_jwt(payload, issued_at=self.clock())

    def verify_token(self, token: str) -> dict:
        """
        Full credential check: signature, expiry, identity state and revocation.

        Returns:
            Decoded token payload

        Raises:
            Unauthenticated: If any check fails
        """
        payload = decode_jwt(token)

        identity = self.db.get(Identity, payload["sub"])
        if identity is None or identity.disabled:
            raise Unauthenticated("User not found or disabled")

        if identity.tokens_valid_after is not None:
            valid_after = int(
                identity.tokens_valid_after.replace(tzinfo=UTC).timestamp()
            )
            if int(payload.get("iat", 0)) < valid_after:
                raise Unauthenticated("Token has been revoked")

        return payload
