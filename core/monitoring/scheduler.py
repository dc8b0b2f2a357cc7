import asyncio
import logging
from datetime import timedelta
from typing import List, Optional, Set

import sqlalchemy.exc
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from config.settings import get_settings
from core.database.models import WatchTask, utcnow
from core.database.operations import SessionLocal, get_latest_check, list_enabled_tasks
from core.monitoring.origins import OriginTable
from core.monitoring.runner import CheckRunner
from core.notifications.sink import NotificationSink
from core.scrapers.base import BaseRenderer
from core.scrapers.renderer_factory import RendererFactory

logger = logging.getLogger("pricewatch.scheduler")


class DueTaskScheduler:
    """Decides on every tick which enabled tasks to check, and starts them.

    A task is dispatched when its origin is not in cooldown, its interval has
    elapsed since its latest result of any status (never-checked tasks are
    always due) and no other check was dispatched to the same origin within
    the minimum interval. Dispatched checks run as independent asyncio tasks;
    tick() never waits for them.
    """

    def __init__(self, runner: CheckRunner, origins: OriginTable = None, session_factory=SessionLocal,
                 clock=utcnow):
        self.runner = runner
        # Shared with the runner, which records blocks into it
        self.origins = origins or runner.origins
        self.runner.origins = self.origins
        self.session_factory = session_factory
        self.clock = clock
        self._in_flight: Set[asyncio.Task] = set()

    def select_due_tasks(self, now) -> List[WatchTask]:
        """Apply the cooldown, due-time and origin-throttle gates.

        Origins of selected tasks are marked as dispatched at now, so a later
        task on the same origin in the same pass is throttled.
        """
        selected = []
        db = self.session_factory()
        try:
            for task in list_enabled_tasks(db):
                origin = task.store_domain

                if self.origins.is_blocked(origin, now):
                    logger.debug("Skipping %s: %s blocked until %s", task.name, origin,
                                 self.origins.blocked_until(origin))
                    continue

                latest = get_latest_check(db, task.id)
                if latest is not None:
                    due_at = latest.created_at + timedelta(minutes=task.check_frequency_minutes)
                    if now < due_at:
                        continue

                if self.origins.is_throttled(origin, now):
                    logger.debug("Skipping %s: %s checked less than %s ago", task.name, origin,
                                 self.origins.min_interval)
                    continue

                self.origins.mark_dispatched(origin, now)
                selected.append(task)
        finally:
            db.close()
        return selected

    async def tick(self) -> List[asyncio.Task]:
        """Run one scheduling pass and return the checks it dispatched."""
        now = self.clock()
        try:
            # Session work blocks; checks already in flight keep running meanwhile
            due = await asyncio.to_thread(self.select_due_tasks, now)
        except sqlalchemy.exc.SQLAlchemyError as e:
            logger.error("Could not load tasks for this tick: %s", e)
            return []

        if due:
            logger.info("Dispatching %d due checks", len(due))
        return [self.dispatch(task) for task in due]

    def dispatch(self, task: WatchTask) -> asyncio.Task:
        check = asyncio.create_task(self._run_guarded(task), name=f"check-{task.id}")
        self._in_flight.add(check)
        check.add_done_callback(self._in_flight.discard)
        return check

    async def _run_guarded(self, task: WatchTask):
        try:
            await self.runner.run_task_check(task)
        except Exception:  # pylint: disable=broad-exception-caught
            # One task's failure must never reach the tick or its siblings
            logger.exception("Check for %s crashed", task.name)

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def drain(self):
        """Wait until every dispatched check has finished."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight))

    def start(self, interval_seconds: Optional[int] = None) -> AsyncIOScheduler:
        """Schedule tick() on a fixed period. Must be called with a running event loop."""
        interval_seconds = interval_seconds or get_settings().SCHEDULER_TICK_SECONDS
        scheduler = AsyncIOScheduler()
        # One pass at a time: selection marks origins as dispatched
        scheduler.add_job(self.tick, "interval", seconds=interval_seconds, max_instances=1, coalesce=True)
        scheduler.start()
        logger.info("Scheduler started with interval=%s seconds", interval_seconds)
        return scheduler


def build_scheduler(renderer: BaseRenderer = None, session_factory=SessionLocal,
                    sink: NotificationSink = None) -> DueTaskScheduler:
    """Wire a scheduler and its runner from the application settings."""
    origins = OriginTable.from_settings()
    runner = CheckRunner(
        renderer or RendererFactory.create_renderer(),
        session_factory=session_factory,
        origins=origins,
        sink=sink,
    )
    return DueTaskScheduler(runner, origins=origins, session_factory=session_factory)
