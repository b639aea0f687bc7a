"""
Polling checker

Three questions, three timers:
  - notifications created since the last successful check (every 10s)
  - overdue-task sweep (every 5 minutes)
  - new chat message sweep (every 30s)

Each question runs in its own task so a slow or hung request only delays
its own next tick. Failures are logged and retried on the next tick.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional

from worktrack.exceptions import WorkTrackError
from worktrack.logging_config import logger, set_channel
from worktrack.models import Notification


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PollSchedule:
    """Seconds between ticks for each question"""
    notification_interval: float = 10.0
    overdue_interval: float = 300.0
    message_interval: float = 30.0
    initial_delay: float = 5.0

    @classmethod
    def from_config(cls, config) -> "PollSchedule":
        return cls(
            notification_interval=config.notification_poll_interval,
            overdue_interval=config.overdue_check_interval,
            message_interval=config.message_check_interval,
            initial_delay=config.initial_check_delay,
        )


class PollingChecker:
    """
    Usage:
        checker = PollingChecker(api, store, presenter)
        checker.start()
        ...
        await checker.stop()
    """

    def __init__(
        self,
        api,
        store,
        presenter,
        schedule: Optional[PollSchedule] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.api = api
        self.store = store
        self.presenter = presenter
        self.schedule = schedule or PollSchedule()
        self._clock = clock

        # High-water mark for the notification poll
        self.last_checked: Optional[datetime] = None
        self.last_success: Dict[str, datetime] = {}

        self._tasks: List[asyncio.Task] = []
        self._stopped = False

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    # ==================== Lifetime ====================

    def start(self) -> None:
        if self._tasks or self._stopped:
            return
        if self.last_checked is None:
            self.last_checked = self._clock()

        self._tasks = [
            asyncio.create_task(
                self._every("notifications", self.schedule.notification_interval, self.check_notifications),
                name="worktrack-poll-notifications",
            ),
            asyncio.create_task(
                self._every("overdue", self.schedule.overdue_interval, self.check_overdue_tasks,
                            first_delay=self.schedule.initial_delay),
                name="worktrack-poll-overdue",
            ),
            asyncio.create_task(
                self._every("messages", self.schedule.message_interval, self.check_new_messages,
                            first_delay=self.schedule.initial_delay),
                name="worktrack-poll-messages",
            ),
        ]
        logger.debug("Polling timers started")

    async def stop(self) -> None:
        self._stopped = True
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.debug("Polling timers stopped")

    async def _every(
        self,
        name: str,
        interval: float,
        check: Callable[[], Awaitable[object]],
        first_delay: Optional[float] = None
    ) -> None:
        set_channel("poll")
        await asyncio.sleep(interval if first_delay is None else first_delay)
        while not self._stopped:
            try:
                await check()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # Keep this timer alive whatever the check did
                logger.log_error_with_context(e, f"poll {name}")
            await asyncio.sleep(interval)

    # ==================== Questions ====================

    async def check_notifications(self) -> List[Notification]:
        """
        Fetch records created since the high-water mark and present the new
        ones. The mark only advances after a successful fetch.
        """
        if self._stopped:
            return []

        tick = self._clock()
        try:
            records = await self.api.list_notifications(since=self.last_checked)
        except WorkTrackError as e:
            logger.warning(f"Notification poll failed: {e.message}")
            return []
        if self._stopped:
            return []

        self.store.merge(records)
        fresh = [
            record for record in records
            if not record.is_read
            and self._created_since_mark(record)
            and not self.presenter.was_presented(record.key)
        ]
        for record in fresh:
            self.presenter.present(record, channel="poll")

        self.last_checked = tick
        self.last_success["notifications"] = tick
        return fresh

    def _created_since_mark(self, record: Notification) -> bool:
        # The server may hand back older rows; only newer ones are arrivals
        if self.last_checked is None or record.created_at is None:
            return True
        return record.created_at > self.last_checked

    async def check_overdue_tasks(self) -> int:
        return await self._sweep("overdue", self.api.check_overdue_tasks)

    async def check_new_messages(self) -> int:
        return await self._sweep("messages", self.api.check_new_messages)

    async def _sweep(self, kind: str, call: Callable[[], Awaitable[int]]) -> int:
        if self._stopped:
            return 0

        tick = self._clock()
        try:
            created = await call()
        except WorkTrackError as e:
            logger.warning(f"{kind.capitalize()} check failed: {e.message}")
            return 0
        if self._stopped:
            return 0

        self.last_success[kind] = tick
        if created > 0:
            logger.info(f"{kind.capitalize()} check created {created} notification(s)")
            self.presenter.present_aggregate(kind, created, channel="poll")
            self.store.invalidate()
        return created
