import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from alerts import run_notification_job
from config import get_settings
from database import SessionLocal


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self) -> None:
        settings = get_settings()
        self.interval_minutes = settings.alert_interval_minutes
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_job(self, source: str = "manual") -> None:
        logger.info(f"alert_job_run: source={source}")
        try:
            users = run_notification_job(SessionLocal)
        except Exception:
            logger.exception(f"alert_job_failed: source={source}")
            return
        logger.info(f"alert_job_run: source={source} users_processed={users}")

    def start(self) -> None:
        self._run_job("startup")

        trigger = IntervalTrigger(minutes=self.interval_minutes)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["interval"],
            id="alerts_interval",
            replace_existing=True,
            misfire_grace_time=300,
            max_instances=1,
            coalesce=True,
        )

        trigger = CronTrigger(hour=8, minute=0)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["daily_08:00"],
            id="alerts_daily",
            replace_existing=True,
            misfire_grace_time=3600,
            max_instances=1,
            coalesce=True,
        )

        self.scheduler.start()
        logger.info(
            f"Scheduler started with {self.interval_minutes} minute alert checks "
            "and a daily 08:00 run"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
