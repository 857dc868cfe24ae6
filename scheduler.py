import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from auth import AuthService
from config import get_auth_settings, get_settings
from database import session_scope


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self) -> None:
        settings = get_settings()
        self.enabled = settings.scheduler_enabled
        self.purge_minutes = settings.session_purge_minutes
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _purge_sessions(self, source: str = "manual") -> int:
        with session_scope() as session:
            service = AuthService(session, get_auth_settings())
            count = service.purge_expired_sessions()
        logger.info(f"scheduler_run: source={source} sessions_purged={count}")
        return count

    def start(self) -> None:
        if not self.enabled:
            logger.info("Scheduler disabled")
            return
        self._purge_sessions("startup")

        trigger = IntervalTrigger(minutes=self.purge_minutes)
        self.scheduler.add_job(
            self._purge_sessions,
            trigger,
            args=["interval"],
            id="session_purge",
            replace_existing=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info(f"Scheduler started with session purge every {self.purge_minutes} min")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
