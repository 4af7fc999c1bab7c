"""
Maintenance entry point, run by an external scheduler (cron).

    python -m tenancy.jobs
"""

from tenancy.database import SessionLocal
from tenancy.logger import get_logger, setup_logging
from tenancy.repositories.audit_repository import AuditRepository
from tenancy.repositories.document_store import DocumentStore
from tenancy.repositories.tenant_store import PrivilegedStore
from tenancy.services.identity_provider import IdentityProvider
from tenancy.services.maintenance_service import MaintenanceService
from tenancy.services.rate_limiter import RateLimiter

logger = get_logger(__name__)


def run_maintenance() -> dict:
    """Run every sweep once with its own database session."""
    db = SessionLocal()
    try:
        store = DocumentStore(db)
        service = MaintenanceService(
            PrivilegedStore(store, AuditRepository(store)),
            IdentityProvider(db),
            RateLimiter(store),
        )
        result = service.run()
        logger.info("maintenance_completed", **result)
        return result
    except Exception:
        db.rollback()
        logger.exception("maintenance_failed")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    setup_logging()
    run_maintenance()
