"""Background task scheduler using APScheduler."""

import logging
from datetime import datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.exc import SQLAlchemyError

from licence_admin.config import get_settings
from licence_admin.exceptions import LicenceAdminError
from licence_admin.utils.secure_logging import log_error

logger = logging.getLogger(__name__)

# Global scheduler instance
_scheduler: AsyncIOScheduler | None = None


async def reconcile_provider_job() -> None:
    """Background job to reconcile the provider feed."""
    from licence_admin.database import async_session_maker
    from licence_admin.providers.external_api import ExternalLicenseApiProvider
    from licence_admin.services.reconciliation_service import ReconciliationService

    logger.info("Starting scheduled provider reconciliation")

    async with async_session_maker() as session:
        try:
            service = ReconciliationService(session)
            summary = await service.run(ExternalLicenseApiProvider())
            await session.commit()
            logger.info(
                f"Scheduled reconciliation completed: {summary.synced} synced, "
                f"{summary.failed} failed"
            )
        except (LicenceAdminError, SQLAlchemyError) as e:
            log_error(logger, "Scheduled reconciliation failed", e)
            await session.rollback()


async def lifecycle_policy_job() -> None:
    """Background job to send renewal reminders and suspend lapsed licenses."""
    from licence_admin.database import async_session_maker
    from licence_admin.services.lifecycle_service import LifecyclePolicyEngine

    logger.info("Starting scheduled lifecycle policy pass")

    async with async_session_maker() as session:
        try:
            engine = LifecyclePolicyEngine(session)
            summary = await engine.run_policy_pass()
            await session.commit()
            logger.info(
                f"Lifecycle pass completed: {summary.reminders_scheduled} reminders, "
                f"{summary.suspended} suspended"
            )
        except (LicenceAdminError, SQLAlchemyError) as e:
            log_error(logger, "Scheduled lifecycle pass failed", e)
            await session.rollback()


async def start_scheduler() -> None:
    """Start the background task scheduler."""
    global _scheduler

    settings = get_settings()
    _scheduler = AsyncIOScheduler()

    _scheduler.add_job(
        reconcile_provider_job,
        trigger=IntervalTrigger(minutes=settings.sync_interval_minutes),
        id="reconcile_provider",
        name="Reconcile provider licenses",
        replace_existing=True,
        max_instances=1,
        next_run_time=datetime.now(),  # Run immediately on startup
    )

    # Daily, before the working day starts
    _scheduler.add_job(
        lifecycle_policy_job,
        trigger=CronTrigger(hour=settings.lifecycle_run_hour, minute=0),
        id="lifecycle_policy",
        name="Lifecycle policy pass",
        replace_existing=True,
        max_instances=1,
    )

    _scheduler.start()
    logger.info("Background scheduler started")


async def stop_scheduler() -> None:
    """Stop the background task scheduler."""
    global _scheduler

    if _scheduler:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("Background scheduler stopped")
