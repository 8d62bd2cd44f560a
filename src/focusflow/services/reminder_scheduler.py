"""Background polling for due task reminders."""

import asyncio

from focusflow.domain.models import now_ms
from focusflow.infrastructure.database import DUE_REMINDER_BATCH, Database
from focusflow.infrastructure.exceptions import FocusFlowError
from focusflow.infrastructure.logger import get_logger
from focusflow.services.events import EventBus, ReminderDue

logger = get_logger(__name__)


class ReminderScheduler:
    """Fires reminders whose time has come.

    Each tick claims the due tasks (select and mark in one transaction) and
    only then publishes a ``ReminderDue`` per claimed task, so a lost
    notification is never re-delivered and a failed claim leaves the batch due
    for the next tick.
    """

    def __init__(
        self,
        database: Database,
        event_bus: EventBus,
        interval_seconds: float = 15.0,
        batch_size: int = DUE_REMINDER_BATCH,
    ) -> None:
        self.database = database
        self.event_bus = event_bus
        self.interval_seconds = interval_seconds
        self.batch_size = batch_size
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start background polling."""
        if not self.running:
            self._task = asyncio.create_task(self._loop())
            logger.info("reminder_scheduler_started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        """Stop background polling."""
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            logger.info("reminder_scheduler_stopped")
        self._task = None

    async def tick(self, now: int | None = None) -> list[ReminderDue]:
        """Run one poll.

        Returns:
            The reminders published on this tick
        """
        now = now if now is not None else now_ms()
        due = await self.database.claim_due_reminders(now, limit=self.batch_size)
        if not due:
            return []

        fired: list[ReminderDue] = []
        for task in due:
            event = ReminderDue(task_id=task.id, title=task.title, deadline=task.deadline)
            try:
                self.event_bus.publish(event)
            except Exception as e:
                logger.warning("reminder_publish_failed", task_id=task.id, error=str(e))
                continue
            fired.append(event)

        logger.info("reminders_fired", count=len(fired))
        return fired

    async def _loop(self) -> None:
        try:
            while True:
                try:
                    await self.tick()
                except FocusFlowError as e:
                    logger.error("reminder_tick_error", error=str(e), retryable=e.retryable)
                except Exception:
                    logger.exception("reminder_tick_error", retryable=False)
                await asyncio.sleep(self.interval_seconds)

        except asyncio.CancelledError:
            logger.info("reminder_scheduler_cancelled")
            raise
