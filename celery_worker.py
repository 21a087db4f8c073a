import asyncio
import logging

from celery import Celery
from celery.schedules import crontab

from music_portal.core.config import settings
from music_portal.core.database import AsyncSessionLocal, engine
from music_portal.core.logging import setup_logging

setup_logging()
logger = logging.getLogger(__name__)

# Celery configuration
celery_app = Celery(
    "music_portal",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    beat_schedule={
        "drive-sync-all-schools": {
            "task": "music_portal.sync_drive_folders",
            "schedule": crontab(minute="*/30"),
        },
        "invoices-mark-overdue": {
            "task": "music_portal.mark_overdue_invoices",
            "schedule": crontab(hour=1, minute=0),
        },
        "students-refresh-age-groups": {
            "task": "music_portal.refresh_age_groups",
            "schedule": crontab(hour=2, minute=0),
        },
    },
)


def _run(coro_factory):
    """Run one async job on a fresh event loop; the pool is disposed so no connection crosses loops"""
    async def runner():
        try:
            async with AsyncSessionLocal() as db:
                return await coro_factory(db)
        finally:
            await engine.dispose()
    return asyncio.run(runner())


@celery_app.task(name="music_portal.sync_drive_folders")
def sync_drive_folders():
    from music_portal.services.drive_sync_service import sync_all_schools

    results = _run(sync_all_schools)
    synced = sum(r["synced_folders"] for r in results)
    failed = sum(r["failed_folders"] for r in results)
    logger.info(f"Scheduled Drive sync: {len(results)} schools, {synced} folders synced, {failed} failed")
    return {"schools": len(results), "synced_folders": synced, "failed_folders": failed}


@celery_app.task(name="music_portal.mark_overdue_invoices")
def mark_overdue_invoices():
    from music_portal.services.invoice_service import InvoiceService

    count = _run(lambda db: InvoiceService(db, None).mark_overdue())
    return {"marked_overdue": count}


@celery_app.task(name="music_portal.refresh_age_groups")
def refresh_age_groups():
    from music_portal.services.student_service import StudentService

    count = _run(lambda db: StudentService(db, None).update_all_age_groups())
    logger.info(f"Scheduled age group refresh updated {count} students")
    return {"updated": count}
