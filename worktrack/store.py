"""
Client-side notification store

Holds every notification the client has observed, keyed by id. The
authoritative list comes from a full refetch of ``GET /notifications``;
the stream and the poll merge fully-observed records in between refetches.

Read-state only changes after the server confirms it, and a confirmed read
is never undone by a stale refetch.
"""

import asyncio
import time
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from worktrack.exceptions import MutationError, WorkTrackError
from worktrack.logging_config import logger
from worktrack.models import Notification, notification_key


_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class NotificationStore:
    """
    Usage:
        store = NotificationStore(api)
        await store.refresh()
        store.unread_count
        await store.mark_read(42)
    """

    def __init__(
        self,
        api,
        refetch_interval: float = 30.0,
        stale_time: float = 5.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.api = api
        self.refetch_interval = refetch_interval
        self.stale_time = stale_time
        self._clock = clock

        self._records: Dict[str, Notification] = {}
        self._confirmed_read: Set[str] = set()
        self._merge_seq: Dict[str, int] = {}
        self._seq = 0
        self._last_fetched: Optional[float] = None

        self._lock = asyncio.Lock()
        self._refresh_task: Optional[asyncio.Task] = None
        self._in_flight = False
        self._dirty = False
        self._closed = False

    # ==================== Read access ====================

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, notification_id: Any) -> bool:
        return notification_key(notification_id) in self._records

    def get(self, notification_id: Any) -> Optional[Notification]:
        return self._records.get(notification_key(notification_id))

    def snapshot(self) -> List[Notification]:
        """All records, newest first"""
        return sorted(
            self._records.values(),
            key=lambda n: n.created_at or _EPOCH,
            reverse=True
        )

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self._records.values() if not n.is_read)

    @property
    def is_stale(self) -> bool:
        if self._last_fetched is None:
            return True
        return self._clock() - self._last_fetched >= self.stale_time

    @property
    def closed(self) -> bool:
        return self._closed

    # ==================== Reconciliation ====================

    def _apply_read_state(self, record: Notification, previous: Optional[Notification] = None) -> Notification:
        if record.is_read:
            return record
        if record.key in self._confirmed_read or (previous is not None and previous.is_read):
            return replace(record, is_read=True)
        return record

    def merge(self, records: Iterable[Notification]) -> List[Notification]:
        """
        Upsert fully-observed records.

        Returns the records whose id was not known before.
        """
        if self._closed:
            return []

        added = []
        for record in records:
            previous = self._records.get(record.key)
            self._seq += 1
            self._merge_seq[record.key] = self._seq
            self._records[record.key] = self._apply_read_state(record, previous)
            if previous is None:
                added.append(record)
        return added

    async def refresh(self, force: bool = True) -> bool:
        """
        Replace the store with the server's list.

        With ``force=False`` the fetch is skipped while the data is younger
        than ``stale_time``. Returns True when a fetch was applied.
        """
        async with self._lock:
            if self._closed:
                return False
            if not force and not self.is_stale:
                return False

            started_seq = self._seq
            records = await self.api.list_notifications()
            if self._closed:
                return False

            fresh: Dict[str, Notification] = {}
            for record in records:
                fresh[record.key] = self._apply_read_state(record)

            # Keep stream/poll arrivals the request could not have seen yet
            for key, record in self._records.items():
                if key not in fresh and self._merge_seq.get(key, 0) > started_seq:
                    fresh[key] = record

            self._records = fresh
            # Later refreshes start at or after the current sequence
            self._merge_seq.clear()
            self._last_fetched = self._clock()
            logger.debug(f"Store refreshed: {len(fresh)} notifications, {self.unread_count} unread")
            return True

    def invalidate(self) -> Optional[asyncio.Task]:
        """
        Ask for a refetch.

        Invalidations that land inside the staleness window share a single
        refetch; one that lands while a request is in flight queues exactly
        one follow-up.
        """
        if self._closed:
            return None

        if self._refresh_task is not None and not self._refresh_task.done():
            if self._in_flight:
                self._dirty = True
            return self._refresh_task

        delay = 0.0
        if self._last_fetched is not None:
            delay = max(0.0, self.stale_time - (self._clock() - self._last_fetched))
        self._refresh_task = asyncio.create_task(self._deferred_refresh(delay))
        return self._refresh_task

    async def _deferred_refresh(self, delay: float) -> None:
        while not self._closed:
            if delay > 0:
                await asyncio.sleep(delay)
            self._dirty = False
            self._in_flight = True
            try:
                await self.refresh()
            except WorkTrackError as e:
                logger.warning(f"Notification refetch failed: {e.message}")
            finally:
                self._in_flight = False
            if not self._dirty:
                return
            delay = self.stale_time

    async def run_background_refetch(self) -> None:
        """Periodic refetch, owned and cancelled by the session"""
        while not self._closed:
            await asyncio.sleep(self.refetch_interval)
            try:
                await self.refresh(force=False)
            except WorkTrackError as e:
                logger.warning(f"Background refetch failed: {e.message}")

    # ==================== Mutations ====================

    async def mark_read(self, notification_id: Any) -> None:
        """Mark one notification read once the server confirms it"""
        if self._closed:
            raise MutationError("mark notification as read", "session closed")

        key = notification_key(notification_id)
        try:
            await self.api.mark_read(notification_id)
        except WorkTrackError as e:
            raise MutationError("mark notification as read", e.message) from e

        self._confirmed_read.add(key)
        record = self._records.get(key)
        if record is not None and not record.is_read:
            self._records[key] = replace(record, is_read=True)

    async def mark_all_read(self) -> int:
        """
        Mark every currently-unread notification read.

        Records that arrive while the request is in flight stay unread.
        Returns how many records were flipped.
        """
        if self._closed:
            raise MutationError("mark all notifications as read", "session closed")

        pending = [key for key, record in self._records.items() if not record.is_read]
        try:
            await self.api.mark_all_read()
        except WorkTrackError as e:
            raise MutationError("mark all notifications as read", e.message) from e

        flipped = 0
        for key in pending:
            self._confirmed_read.add(key)
            record = self._records.get(key)
            if record is not None and not record.is_read:
                self._records[key] = replace(record, is_read=True)
                flipped += 1
        return flipped

    # ==================== Lifetime ====================

    async def close(self) -> None:
        """Stop pending refetches; later calls become no-ops"""
        self._closed = True
        task, self._refresh_task = self._refresh_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
