from datetime import datetime

from sqlalchemy import String, JSON, Boolean, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from tenancy.models.base import Base, TimestampMixin, new_id


class Identity(Base, TimestampMixin):
    """
    Identity provider record: credentials plus the signed claim set.

    custom_claims holds tenant_id, role and (guests only)
    resource_permissions. It is null until provisioning commits, and is
    cleared again when the user is removed from their tenant.

    Tokens issued before tokens_valid_after are rejected.
    """

    __tablename__ = "identities"

    uid: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    custom_claims: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    disabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    tokens_valid_after: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<Identity(uid='{self.uid}', email='{self.email}')>"
