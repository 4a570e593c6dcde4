import logging
from datetime import date
from typing import Callable, ContextManager, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from config import get_settings
from database import session_scope
from recurrence import RecurringEngine, local_today


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    """Owns the cadence of generation cycles; the engine never schedules itself."""

    def __init__(
        self,
        session_factory: Callable[[], ContextManager[Session]] = session_scope,
        today: Callable[[], date] = local_today,
    ) -> None:
        settings = get_settings()
        self.settings = settings
        self.session_factory = session_factory
        self.today = today
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def run_cycle(self, source: str = "manual", as_of: Optional[date] = None) -> None:
        as_of = as_of or self.today()
        logger.info(f"scheduler_run: source={source} as_of={as_of}")
        with self.session_factory() as session:
            engine = RecurringEngine(session)
            engine.run_generation_cycle(as_of)
            stats = engine.last_cycle
        logger.info(
            f"scheduler_run: source={source} created={stats.created} "
            f"failed={stats.failed}"
        )

    def _run_job(self, source: str) -> None:
        try:
            self.run_cycle(source)
        except Exception:
            logger.exception(f"scheduler_run: source={source} aborted")

    def start(self) -> None:
        if not self.settings.scheduler_enabled:
            logger.info("Scheduler disabled by configuration")
            return

        self._run_job("startup")

        trigger = CronTrigger(
            hour=self.settings.generation_hour,
            minute=self.settings.generation_minute,
        )
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["daily"],
            id="recurring_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        trigger = IntervalTrigger(hours=self.settings.safety_net_hours)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["safety_net"],
            id="recurring_safety_net",
            replace_existing=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info(
            f"Scheduler started: daily {self.settings.generation_hour:02d}:"
            f"{self.settings.generation_minute:02d}, safety net every "
            f"{self.settings.safety_net_hours}h"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
