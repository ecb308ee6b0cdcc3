import logging
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings, local_now
from database import session_scope
from services import RecurringTemplateService


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self) -> None:
        settings = get_settings()
        # A single worker keeps the daily and hourly jobs from overlapping.
        self.scheduler = BackgroundScheduler(
            timezone=settings.timezone,
            executors={"default": ThreadPoolExecutor(max_workers=1)},
        )

    def _run_job(self, source: str = "manual") -> None:
        now = local_now()
        logger.info(f"scheduler_run: source={source} now={now.isoformat()}")
        with session_scope() as session:
            report = RecurringTemplateService(session).process_due(now)
            logger.info(
                f"scheduler_run: source={source} "
                f"templates={len(report.runs)} "
                f"entries_created={len(report.created)} "
                f"failures={len(report.failures)}"
            )

    def _add_job(self, trigger, job_id: str, source: str, grace: int) -> None:
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=[source],
            id=job_id,
            replace_existing=True,
            misfire_grace_time=grace,
            max_instances=1,
            coalesce=True,
        )

    def start(self) -> None:
        self._run_job("startup")
        self._add_job(
            CronTrigger(hour=3, minute=15), "recurring_daily", "daily_03:15", 3600
        )
        self._add_job(
            IntervalTrigger(hours=1), "recurring_hourly_safety", "hourly_safety_net", 300
        )
        self.scheduler.start()
        logger.info("Scheduler started with daily 03:15 and hourly safety net")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
