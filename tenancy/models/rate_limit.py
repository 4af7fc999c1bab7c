from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import String, Integer, Enum, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from tenancy.models.base import Base, TimestampMixin


class RateLimitType(str, PyEnum):
    AUTH = "auth"
    API = "api"
    TENANT = "tenant"


class RateLimitRecord(Base, TimestampMixin):
    """
    Counter for one rate-limit subject and window.

    id is the document key (e.g. ``api_<uid>_<minute>``); key is the bare
    subject. Records are never referenced after expires_at and are removed
    by the cleanup sweep.
    """

    __tablename__ = "rate_limits"

    id: Mapped[str] = mapped_column(String(400), primary_key=True)
    key: Mapped[str] = mapped_column(String(320), nullable=False)
    type: Mapped[RateLimitType] = mapped_column(
        Enum(RateLimitType, native_enum=False, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    window_start: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    blocked_until: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
