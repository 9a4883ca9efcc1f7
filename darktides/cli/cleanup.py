"""Release expired inventory holds once; meant for cron.

    darktides-cleanup-reservations
"""

from darktides.core import setup_logging, get_logger
from darktides.core_settings import get_settings

def main():
    settings = get_settings()
    setup_logging(
        service_name="darktides-cleanup",
        level=settings.LOG_LEVEL,
        environment=settings.ENVIRONMENT,
        version=settings.SERVICE_VERSION,
    )
    logger = get_logger(__name__)

    from darktides.infrastructure.db import SessionLocal
    from darktides.application.inventory import InventoryService

    db = SessionLocal()
    try:
        removed = InventoryService(db, settings).cleanup_expired()
    finally:
        db.close()
    logger.info(f"Cleanup finished, {removed} expired reservations released")
    print(f"Released {removed} expired reservations")

if __name__ == "__main__":
    main()
