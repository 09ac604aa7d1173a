import logging

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger
from django.db import close_old_connections

from inventory.conf import engine_setting
from inventory.services.reservation_service import ReservationService

logger = logging.getLogger(__name__)


def run_expiry_sweep():
    logger.info("Executing reservation expiry sweep")
    reports = ReservationService.sweep_all_tenants()

    expired = sum(r.total_expired for r in reports.values())
    failed = sum(r.total_failed for r in reports.values())

    if failed:
        logger.warning(f"Expiry sweep: {expired} expired, {failed} failed across {len(reports)} tenants")
    else:
        logger.info(f"Expiry sweep: {expired} expired across {len(reports)} tenants")
    return reports


def expiry_job():
    # long-running process: drop connections the database may have closed
    close_old_connections()
    try:
        run_expiry_sweep()
    finally:
        close_old_connections()


def build_scheduler(interval_minutes: int = None) -> BlockingScheduler:
    interval_minutes = interval_minutes or engine_setting("EXPIRY_SWEEP_INTERVAL_MINUTES")

    scheduler = BlockingScheduler()
    scheduler.add_job(
        expiry_job,
        IntervalTrigger(minutes=interval_minutes),
        id='reservation_expiry',
        name='Expire overdue reservations',
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    return scheduler
