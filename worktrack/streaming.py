"""
Streaming receiver

Keeps one long-lived push connection to ``/sse/stream`` open and forwards
``notification`` events to the presenter and the store.

State machine:
    disconnected -> connecting -> connected -> (error) -> disconnected
    -> connecting (after delay) -> ...
    closed is terminal (logout / teardown): no reconnect is scheduled.

At most one reconnect is ever pending; scheduling a new one cancels the old.
"""

import asyncio
import json
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional

from worktrack.auth import looks_like_jwt
from worktrack.exceptions import MalformedEventError, StreamError, WorkTrackError
from worktrack.logging_config import logger, set_channel
from worktrack.models import Notification


class StreamState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"


def decode_event(raw: str) -> Dict[str, Any]:
    """Decode one stream message; raises MalformedEventError"""
    try:
        event = json.loads(raw)
    except ValueError as e:
        raise MalformedEventError(raw, str(e)) from e
    if not isinstance(event, dict):
        raise MalformedEventError(raw, "event is not an object")
    return event


class StreamReceiver:
    """
    Usage:
        receiver = StreamReceiver(api, store, presenter, credentials.get_token)
        receiver.start()
        ...
        await receiver.close()
    """

    def __init__(
        self,
        api,
        store,
        presenter,
        token_provider: Callable[[], Optional[str]],
        reconnect_delay: float = 5.0,
        reconnect_backoff: float = 1.0,
        max_reconnect_delay: float = 30.0
    ):
        self.api = api
        self.store = store
        self.presenter = presenter
        self._token_provider = token_provider
        self.reconnect_delay = reconnect_delay
        self.reconnect_backoff = reconnect_backoff
        self.max_reconnect_delay = max_reconnect_delay

        self.state = StreamState.DISCONNECTED
        self.last_heartbeat: Optional[float] = None
        self.reconnect_attempts = 0

        self._task: Optional[asyncio.Task] = None
        self._reconnect: Optional[asyncio.TimerHandle] = None

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect is not None and not self._reconnect.cancelled()

    def _set_state(self, state: StreamState) -> None:
        if self.state != state:
            logger.debug(f"Stream {self.state.value} -> {state.value}")
        self.state = state

    # ==================== Connection ====================

    def start(self) -> None:
        if self.state == StreamState.CLOSED:
            return
        self._connect()

    def _connect(self) -> None:
        self._reconnect = None
        if self.state == StreamState.CLOSED:
            return

        token = self._token_provider()
        if not token:
            logger.error("No auth token available for stream connection")
            self._set_state(StreamState.DISCONNECTED)
            return
        if not looks_like_jwt(token):
            logger.error("Invalid token format for stream connection")
            self._set_state(StreamState.DISCONNECTED)
            return

        if self._task is not None and not self._task.done():
            self._task.cancel()

        self._set_state(StreamState.CONNECTING)
        self._task = asyncio.create_task(self._run(), name="worktrack-stream")

    async def _run(self) -> None:
        set_channel("stream")
        try:
            async with self.api.open_stream() as response:
                self._set_state(StreamState.CONNECTED)
                self.reconnect_attempts = 0
                logger.info("Real-time notification stream connected")

                async for line in response.aiter_lines():
                    if self.state == StreamState.CLOSED:
                        return
                    self.handle_line(line)

            raise StreamError("Stream closed by server")
        except WorkTrackError as e:
            self.handle_error(e)

    def handle_error(self, error: Exception) -> None:
        """Drop the connection and schedule one reconnect"""
        if self.state == StreamState.CLOSED:
            return
        logger.warning(f"Stream connection error: {error}")
        self._set_state(StreamState.DISCONNECTED)
        self._schedule_reconnect()

    def _backoff_delay(self) -> float:
        delay = self.reconnect_delay * (self.reconnect_backoff ** self.reconnect_attempts)
        return min(delay, self.max_reconnect_delay)

    def _schedule_reconnect(self) -> None:
        if self._reconnect is not None:
            self._reconnect.cancel()
            self._reconnect = None

        if self.state == StreamState.CLOSED:
            return
        if not self._token_provider():
            logger.info("Session ended, not reconnecting stream")
            return

        delay = self._backoff_delay()
        self.reconnect_attempts += 1
        logger.info(f"Reconnecting stream in {delay:.1f}s (attempt {self.reconnect_attempts})")
        self._reconnect = asyncio.get_running_loop().call_later(delay, self._connect)

    async def close(self) -> None:
        """Terminal: close the connection and cancel any pending reconnect"""
        self._set_state(StreamState.CLOSED)
        if self._reconnect is not None:
            self._reconnect.cancel()
            self._reconnect = None

        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    # ==================== Messages ====================

    def handle_line(self, line: str) -> Optional[str]:
        """
        Accept either an SSE ``data:`` line or a bare JSON line.
        Returns the event type that was handled, if any.
        """
        line = line.strip()
        if not line or line.startswith(":"):
            return None
        if line.startswith("data:"):
            line = line[5:].strip()
        elif line.startswith(("event:", "id:", "retry:")):
            return None

        try:
            event = decode_event(line)
        except MalformedEventError as e:
            logger.warning(f"{e.message}; message dropped")
            return None
        return self.handle_event(event)

    def handle_event(self, event: Dict[str, Any]) -> Optional[str]:
        if self.state == StreamState.CLOSED:
            return None

        kind = event.get("type")
        if kind == "connected":
            logger.debug("Stream handshake received")
        elif kind == "heartbeat":
            self.last_heartbeat = time.monotonic()
        elif kind == "notification":
            try:
                record = Notification.from_dict(event.get("notification") or {})
            except (TypeError, ValueError) as e:
                logger.warning(f"Dropping notification event: {e}")
                return None
            self.store.merge([record])
            self.presenter.present(record, channel="stream")
            self.store.invalidate()
        else:
            logger.debug(f"Unknown stream message: {event}")
        return kind
