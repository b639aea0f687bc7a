"""
Notification session

Owns every timer and connection for one authenticated user:
  API client, store, presenter, polling checker, streaming receiver,
  background refetch.

``start()`` acquires them, ``close()`` releases them. ``close()`` is
idempotent and reached from every exit path (``async with``, logout,
error during start). After it returns nothing fires again.
A watcher closes the session once the stored token is removed or expires.
"""

import asyncio
from typing import Optional

import httpx
from rich.console import Console

from worktrack.api import NotificationsApi
from worktrack.auth import CredentialStore
from worktrack.config import WorkTrackConfig
from worktrack.exceptions import MissingTokenError, WorkTrackError
from worktrack.logging_config import logger
from worktrack.polling import PollingChecker, PollSchedule
from worktrack.presenter import ConsoleToaster, DeliveryPresenter, PlatformNotifier, NullNotifier
from worktrack.store import NotificationStore
from worktrack.streaming import StreamReceiver


class NotificationSession:
    """
    Usage:
        async with NotificationSession(config, credentials, platform=notifier) as session:
            await session.wait_closed()
    """

    def __init__(
        self,
        config: WorkTrackConfig,
        credentials: CredentialStore,
        platform: Optional[PlatformNotifier] = None,
        toaster=None,
        console: Optional[Console] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.config = config
        self.credentials = credentials
        self.console = console or Console()

        self.api = NotificationsApi(config, credentials.get_token, transport=transport)
        self.store = NotificationStore(
            self.api,
            refetch_interval=config.refetch_interval,
            stale_time=config.stale_time,
        )
        self.presenter = DeliveryPresenter(
            toaster or ConsoleToaster(self.console),
            platform or NullNotifier(),
            auto_dismiss_seconds=config.auto_dismiss_seconds,
        )
        self.poller = PollingChecker(
            self.api,
            self.store,
            self.presenter,
            schedule=PollSchedule.from_config(config),
        )
        self.stream = StreamReceiver(
            self.api,
            self.store,
            self.presenter,
            credentials.get_token,
            reconnect_delay=config.reconnect_delay,
            reconnect_backoff=config.reconnect_backoff,
            max_reconnect_delay=config.max_reconnect_delay,
        )

        self._refetch_task: Optional[asyncio.Task] = None
        self._credentials_task: Optional[asyncio.Task] = None
        self._closed = asyncio.Event()
        self._started = False

    @property
    def active(self) -> bool:
        return self._started and not self._closed.is_set()

    async def start(self) -> None:
        """Load the inbox, then start every producer"""
        if self._started:
            return
        if not self.credentials.is_authenticated():
            raise MissingTokenError()
        self._started = True

        try:
            try:
                await self.store.refresh()
            except WorkTrackError as e:
                # Polling and the background refetch will catch up
                logger.warning(f"Initial notification load failed: {e.message}")

            self.poller.start()
            if self.config.stream_enabled:
                self.stream.start()
            self._refetch_task = asyncio.create_task(
                self.store.run_background_refetch(), name="worktrack-refetch"
            )
            self._credentials_task = asyncio.create_task(
                self._watch_credentials(), name="worktrack-credentials"
            )
        except BaseException:
            await self.close()
            raise

        logger.info("Notification session started")

    async def close(self) -> None:
        """Release every timer and the stream connection"""
        if self._closed.is_set():
            return
        self._closed.set()

        self.presenter.shutdown()
        await self.stream.close()
        await self.poller.stop()

        for task in (self._refetch_task, self._credentials_task):
            if task is None or task.done() or task is asyncio.current_task():
                continue
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self._refetch_task = self._credentials_task = None

        await self.store.close()
        await self.api.aclose()
        logger.info("Notification session closed")

    async def _watch_credentials(self) -> None:
        """Close the session once the token is gone, e.g. `worktrack logout` in another shell"""
        while not self._closed.is_set():
            await asyncio.sleep(self.config.notification_poll_interval)
            if self.credentials.get_token() is None:
                logger.info("Stored token removed or expired, closing notification session")
                await self.close()
                return

    async def logout(self) -> None:
        """End the session and forget the stored token"""
        await self.close()
        self.credentials.logout()

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def __aenter__(self) -> "NotificationSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False
