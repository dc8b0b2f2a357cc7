import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from config.settings import get_settings
from core.database.models import CheckStatus, DeliveryStatus, utcnow
from core.database.operations import SessionLocal, add_check_result, add_notification, get_latest_ok_check
from core.monitoring.alerts import Alert, evaluate_alerts
from core.monitoring.origins import OriginTable
from core.notifications.sink import NotificationSink, create_sink
from core.scrapers.base import BaseRenderer
from core.scrapers.extraction import ExtractionOutcome, ExtractionRule, PriceExtractor

logger = logging.getLogger("pricewatch.runner")


class CheckRunner:
    """Runs one watch task's check: render, extract, retry, persist, alert.

    Every attempt is stored as its own CheckResult. FAILED attempts are
    retried with linear backoff (attempt number x backoff). OK and BLOCKED end
    the run; BLOCKED also puts the task's origin in cooldown.
    """

    def __init__(self, renderer: BaseRenderer, extractor: PriceExtractor = None, session_factory=SessionLocal,
                 origins: OriginTable = None, sink: NotificationSink = None, max_attempts: int = None,
                 backoff_seconds: float = None, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                 clock=utcnow):
        settings = get_settings()
        self.renderer = renderer
        self.extractor = extractor or PriceExtractor()
        self.session_factory = session_factory
        self.origins = origins or OriginTable.from_settings(settings)
        self.sink = sink or create_sink(settings)
        self.max_attempts = max_attempts or settings.CHECK_MAX_ATTEMPTS
        self.backoff_seconds = settings.CHECK_BACKOFF_MS / 1000 if backoff_seconds is None else backoff_seconds
        self.sleep = sleep
        self.clock = clock

    async def check(self, rule: ExtractionRule, url: str) -> ExtractionOutcome:
        """One attempt against url. Never raises: any error becomes FAILED."""
        start = time.monotonic()
        try:
            async with self.renderer.render(url) as page:
                outcome = await self.extractor.extract(page, rule)
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.error("Check of %s raised %s: %s", url, type(e).__name__, e)
            outcome = ExtractionOutcome.failed(str(e))
        outcome.response_time_ms = int((time.monotonic() - start) * 1000)
        return outcome

    async def run_task_check(self, task) -> Optional[ExtractionOutcome]:
        """Check task until OK, BLOCKED or max_attempts FAILED attempts.

        Returns:
            The last attempt's outcome
        """
        logger.info("Running check for %s...", task.name)
        rule = ExtractionRule.from_task(task)
        outcome = None

        for attempt in range(1, self.max_attempts + 1):
            outcome = await self.check(rule, task.url)
            # The session work is blocking; keep other checks running meanwhile
            previous_ok = await asyncio.to_thread(self._record_attempt, task.id, outcome, self.clock())

            if outcome.status == CheckStatus.BLOCKED:
                until = self.origins.block(task.store_domain, self.clock())
                logger.warning(
                    "Check blocked for %s: %s. Domain %s marked as BLOCKED until %s",
                    task.name, outcome.error_message, task.store_domain, until.isoformat(),
                )
                return outcome

            if outcome.ok:
                logger.info("Check OK for %s: price=%s in_stock=%s", task.name, outcome.price_value, outcome.in_stock)
                await self.notify(task, outcome, previous_ok)
                return outcome

            logger.warning("Attempt %d/%d failed for %s: %s", attempt, self.max_attempts, task.name,
                           outcome.error_message)
            if attempt < self.max_attempts:
                await self.sleep(attempt * self.backoff_seconds)

        logger.warning("Final failed check for %s: %s", task.name, outcome.error_message if outcome else None)
        return outcome

    def _record_attempt(self, task_id: str, outcome: ExtractionOutcome, created_at):
        """Store one attempt and return the OK result that preceded it."""
        db = self.session_factory()
        try:
            # Read before writing so the comparison sees the preceding OK result
            previous_ok = get_latest_ok_check(db, task_id)
            add_check_result(db, task_id, created_at=created_at, **outcome.as_record())
            return previous_ok
        finally:
            db.close()

    def _record_notification(self, task_id: str, alert: Alert, delivered: bool):
        db = self.session_factory()
        try:
            add_notification(
                db,
                task_id,
                alert.type,
                self.sink.channel,
                DeliveryStatus.SENT if delivered else DeliveryStatus.FAILED,
                alert.message,
            )
        finally:
            db.close()

    async def notify(self, task, outcome: ExtractionOutcome, previous_ok):
        for alert in evaluate_alerts(task, outcome, previous_ok):
            delivered = await self._deliver(task, alert)
            await asyncio.to_thread(self._record_notification, task.id, alert, delivered)

    async def _deliver(self, task, alert: Alert) -> bool:
        try:
            # Sinks may do blocking I/O
            return bool(await asyncio.to_thread(self.sink.send, task, alert.type, alert.message))
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.error("Failed to send %s notification for %s: %s", alert.type.value, task.name, e)
            return False
