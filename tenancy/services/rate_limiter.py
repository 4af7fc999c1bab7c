import math
from datetime import datetime, timedelta
from typing import Callable

from tenancy.config import settings
from tenancy.core.exceptions import ResourceExhausted
from tenancy.logger import get_logger
from tenancy.models.base import utcnow
from tenancy.models.rate_limit import RateLimitRecord, RateLimitType
from tenancy.repositories.document_store import DocumentStore, Filter

logger = get_logger(__name__)

COLLECTION = "rate_limits"


def minute_key(moment: datetime) -> str:
    """Window suffix for the per-minute counters, e.g. 202403051742."""
    return moment.strftime("%Y%m%d%H%M")


class RateLimiter:
    """
    Three independent counters kept in the rate_limits collection.

    1. Login: per email, LOGIN_MAX_ATTEMPTS per LOGIN_WINDOW_SECONDS, then
       blocked for the same duration.
    2. API: per user, API_USER_LIMIT_PER_MINUTE in the current clock minute.
    3. Tenant: per tenant, API_TENANT_LIMIT_PER_MINUTE in the current minute.

    Each check reads the counter and then conditionally writes it, with no
    transaction in between. Concurrent requests can undercount; limiting is
    approximate.
    """

    def __init__(self, store: DocumentStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock
        self.login_max_attempts = settings.LOGIN_MAX_ATTEMPTS
        self.login_window = timedelta(seconds=settings.LOGIN_WINDOW_SECONDS)
        self.user_limit = settings.API_USER_LIMIT_PER_MINUTE
        self.tenant_limit = settings.API_TENANT_LIMIT_PER_MINUTE
        self.record_ttl = timedelta(seconds=settings.RATE_LIMIT_RECORD_TTL_SECONDS)

    @staticmethod
    def login_key(email: str) -> str:
        return f"auth_{email.strip().lower()}"

    def check_login_rate_limit(self, email: str) -> None:
        """
        Count one login attempt for the email.

        Raises:
            ResourceExhausted: While blocked, or when this attempt exceeds the limit
        """
        doc_id = self.login_key(email)
        now = self.clock()
        record = self.store.get(COLLECTION, doc_id)

        if record is None:
            self._reset_login_window(doc_id, email, now)
            return

        if record.blocked_until is not None and record.blocked_until > now:
            remaining = math.ceil((record.blocked_until - now).total_seconds())
            raise ResourceExhausted(
                f"Too many failed login attempts. Try again in {remaining} seconds.",
                retry_after=remaining,
            )

        if record.window_start is None or now - record.window_start > self.login_window:
            self._reset_login_window(doc_id, email, now)
            return

        new_count = record.count + 1
        if new_count > self.login_max_attempts:
            blocked_until = now + self.login_window
            self.store.update(
                COLLECTION,
                doc_id,
                {"count": new_count, "blocked_until": blocked_until, "expires_at": blocked_until},
            )
            logger.warning("login_rate_limit_blocked", key=doc_id, attempts=new_count)
            raise ResourceExhausted(
                "Too many failed login attempts. Account temporarily locked for 15 minutes.",
                retry_after=int(self.login_window.total_seconds()),
            )

        self.store.update(COLLECTION, doc_id, {"count": new_count})

    def _reset_login_window(self, doc_id: str, email: str, now: datetime) -> RateLimitRecord:
        return self.store.set(
            COLLECTION,
            doc_id,
            {
                "key": email.strip().lower(),
                "type": RateLimitType.AUTH,
                "count": 1,
                "window_start": now,
                "blocked_until": None,
                "expires_at": now + self.login_window,
            },
        )

    def clear_login_rate_limit(self, email: str) -> None:
        """Forget failed attempts after a successful login."""
        self.store.delete(COLLECTION, self.login_key(email))

    def check_api_rate_limit(self, user_id: str) -> None:
        """
        Raises:
            ResourceExhausted: If the user already made the maximum requests this minute
        """
        self._check_minute_counter(
            f"api_{user_id}_{minute_key(self.clock())}",
            user_id,
            RateLimitType.API,
            self.user_limit,
            f"Rate limit exceeded. Maximum {self.user_limit} requests per minute allowed.",
        )

    def check_tenant_rate_limit(self, tenant_id: str) -> None:
        """
        Raises:
            ResourceExhausted: If the tenant already made the maximum requests this minute
        """
        self._check_minute_counter(
            f"tenant_{tenant_id}_{minute_key(self.clock())}",
            tenant_id,
            RateLimitType.TENANT,
            self.tenant_limit,
            "Tenant rate limit exceeded. Please contact support if you need higher limits.",
        )

    def _check_minute_counter(
        self,
        doc_id: str,
        subject: str,
        limit_type: RateLimitType,
        limit: int,
        message: str,
    ) -> None:
        now = self.clock()
        record = self.store.get(COLLECTION, doc_id)

        if record is None:
            self.store.set(
                COLLECTION,
                doc_id,
                {
                    "key": subject,
                    "type": limit_type,
                    "count": 1,
                    "window_start": now.replace(second=0, microsecond=0),
                    "expires_at": now + self.record_ttl,
                },
            )
            return

        if record.count >= limit:
            # Retry at the start of the next clock minute
            retry_after = 60 - now.second
            logger.warning("api_rate_limit_exceeded", key=doc_id, type=limit_type.value)
            raise ResourceExhausted(message, retry_after=retry_after)

        self.store.update(COLLECTION, doc_id, {"count": record.count + 1})

    def cleanup_expired(self, batch_size: int | None = None) -> int:
        """
        Delete one batch of records whose expires_at has passed.

        Returns:
            Number of records deleted
        """
        batch_size = batch_size or settings.CLEANUP_BATCH_SIZE
        expired = self.store.query(
            COLLECTION,
            [Filter("expires_at", "<", self.clock())],
            limit=batch_size,
        )
        if not expired:
            logger.info("rate_limit_cleanup_nothing_to_do")
            return 0

        deleted = self.store.batch_delete(COLLECTION, [record.id for record in expired])
        logger.info("rate_limit_cleanup_done", deleted=deleted)
        if deleted == batch_size:
            logger.info("rate_limit_cleanup_batch_full", batch_size=batch_size)
        return deleted
