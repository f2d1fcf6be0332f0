"""
APScheduler job runner for periodic maintenance.
"""

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from obra_erp.config import settings
from obra_erp.core.logging import get_logger

log = get_logger(__name__)

# Global scheduler instance
_scheduler: BackgroundScheduler | None = None


def outbox_cleanup_job():
    """Scheduled job to purge COMPLETED outbox events past their TTL.

    FAILED events are never deleted so they can be inspected and retried.
    """
    from obra_erp.services.outbox import cleanup_outbox

    log.info("scheduled_job_starting", job="outbox_cleanup")
    try:
        stats = cleanup_outbox()
        log.info("scheduled_job_complete", job="outbox_cleanup", **stats)
    except Exception as e:
        log.error("scheduled_job_error", job="outbox_cleanup", error=str(e))


def start_scheduler() -> BackgroundScheduler:
    """
    Start the background scheduler.

    The outbox cleanup runs daily at `outbox_cleanup_hour` (UTC).

    Returns:
        The scheduler instance
    """
    global _scheduler

    if _scheduler is not None:
        log.warning("scheduler_already_running")
        return _scheduler

    _scheduler = BackgroundScheduler(timezone="UTC")

    _scheduler.add_job(
        outbox_cleanup_job,
        trigger=CronTrigger(hour=settings.outbox_cleanup_hour, minute=0, timezone="UTC"),
        id="outbox_cleanup",
        name="Purge completed outbox events",
        replace_existing=True,
    )

    _scheduler.start()
    log.info("scheduler_started", outbox_cleanup_hour=settings.outbox_cleanup_hour)

    return _scheduler


def stop_scheduler():
    """Stop the background scheduler."""
    global _scheduler

    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        log.info("scheduler_stopped")


def get_scheduler() -> BackgroundScheduler | None:
    """Get the current scheduler instance."""
    return _scheduler


def run_now():
    """Manually trigger the outbox cleanup job."""
    outbox_cleanup_job()
