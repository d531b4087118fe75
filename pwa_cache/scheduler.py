from __future__ import annotations

from typing import Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from pwa_cache.config import ScheduleConfig
from pwa_cache.logging import get_logger
from pwa_cache.models import AlertSchedule

logger = get_logger(__name__)

ALERT_JOB_ID = "daily-alert"


def log_alert() -> None:
    logger.info("alert.due")


def _trigger(schedule: AlertSchedule) -> CronTrigger:
    return CronTrigger(hour=schedule.hour, minute=schedule.minute)


def build_scheduler(
    job: Callable[[], None],
    config: ScheduleConfig,
    schedule: Optional[AlertSchedule] = None,
) -> Optional[AsyncIOScheduler]:
    if not config.enabled:
        logger.info("scheduler.disabled")
        return None

    scheduler = AsyncIOScheduler()
    if schedule is not None:
        scheduler.add_job(
            job, trigger=_trigger(schedule), id=ALERT_JOB_ID, max_instances=1, coalesce=True
        )
        logger.info("scheduler.configured", time=str(schedule))
    else:
        logger.info("scheduler.no_schedule")
    return scheduler


def reschedule(
    scheduler: Optional[AsyncIOScheduler],
    job: Callable[[], None],
    schedule: Optional[AlertSchedule],
) -> None:
    if scheduler is None:
        return
    if scheduler.get_job(ALERT_JOB_ID) is not None:
        scheduler.remove_job(ALERT_JOB_ID)
    if schedule is None:
        logger.info("scheduler.cleared")
        return
    scheduler.add_job(
        job, trigger=_trigger(schedule), id=ALERT_JOB_ID, max_instances=1, coalesce=True
    )
    logger.info("scheduler.rescheduled", time=str(schedule))
