import logging
from datetime import timedelta

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import sessionmaker

from config import get_settings
from database import SessionLocal, session_scope
from models import utcnow
from services import LogService


logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self, session_factory: sessionmaker = SessionLocal) -> None:
        settings = get_settings()
        self.session_factory = session_factory
        self.retention_days = settings.log_retention_days
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_job(self, source: str = "manual") -> None:
        if self.retention_days <= 0:
            logger.info(f"log_prune: source={source} skipped retention disabled")
            return
        cutoff = utcnow() - timedelta(days=self.retention_days)
        with session_scope(self.session_factory) as session:
            count = LogService(session).prune(cutoff)
        logger.info(f"log_prune: source={source} deleted={count}")

    def start(self) -> None:
        self._run_job("startup")

        trigger = CronTrigger(hour=3, minute=15)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["daily_03:15"],
            id="log_prune_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        self.scheduler.start()
        logger.info("Scheduler started with daily 03:15 log pruning")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
