"""
Async client for the work-tracker notification endpoints

Endpoints consumed:
  GET  /notifications[?since=<ISO8601>]
  POST /notifications/check-overdue-tasks
  POST /notifications/check-new-messages
  PUT  /notifications/{id}/read
  PUT  /notifications/read-all
  POST /notifications/test
  GET  /sse/stream?token=<bearer>
"""

import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import httpx

from worktrack.config import WorkTrackConfig
from worktrack.exceptions import ApiError, MissingTokenError, StreamError
from worktrack.logging_config import logger
from worktrack.models import Notification


TokenProvider = Callable[[], Optional[str]]

# 304 is "nothing new", not a failure
OK_STATUSES = (200, 304)


def _unwrap_list(payload: Any) -> List[Dict[str, Any]]:
    """Accept both a bare list and a {"data": [...]} envelope"""
    if isinstance(payload, dict):
        payload = payload.get("data", payload.get("notifications", []))
    if not isinstance(payload, list):
        return []
    return [item for item in payload if isinstance(item, dict)]


class NotificationsApi:
    """
    Thin wrapper over httpx.AsyncClient.

    Usage:
        api = NotificationsApi(config, token_provider=store.get_token)
        notifications = await api.list_notifications()
        await api.aclose()
    """

    def __init__(
        self,
        config: WorkTrackConfig,
        token_provider: TokenProvider,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.config = config
        self._token_provider = token_provider

        client_kwargs: Dict[str, Any] = {"base_url": config.api_base_url.rstrip("/") + "/"}
        if config.timeout is not None:
            client_kwargs["timeout"] = config.timeout
        if transport is not None:
            client_kwargs["transport"] = transport
        self._client = httpx.AsyncClient(**client_kwargs)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "NotificationsApi":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
        return False

    # ==================== Internals ====================

    def _token(self) -> str:
        token = self._token_provider()
        if not token:
            raise MissingTokenError()
        return token

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._token()}",
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, str]] = None
    ) -> httpx.Response:
        headers = self._headers()
        started = time.perf_counter()
        try:
            response = await self._client.request(
                method, path.lstrip("/"), params=params, headers=headers
            )
        except httpx.HTTPError as e:
            raise ApiError(f"{method} {path} failed: {e}", path=path) from e

        logger.log_request(
            method, path, response.status_code,
            (time.perf_counter() - started) * 1000
        )

        if response.status_code not in OK_STATUSES:
            raise ApiError(
                f"{method} {path} returned {response.status_code}",
                status_code=response.status_code,
                path=path
            )
        return response

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        if response.status_code == 304 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise ApiError(
                f"Invalid JSON from {response.request.url.path}",
                status_code=response.status_code,
                path=response.request.url.path
            ) from e

    # ==================== Notifications ====================

    async def list_notifications(self, since: Optional[datetime] = None) -> List[Notification]:
        """Full list, or only records created after ``since``"""
        params = {"since": since.isoformat()} if since else None
        response = await self._request("GET", "notifications", params=params)
        records = []
        for item in _unwrap_list(self._json(response)):
            try:
                records.append(Notification.from_dict(item))
            except ValueError as e:
                logger.warning(f"Skipping notification without id: {e}")
        return records

    async def _sweep(self, path: str) -> int:
        response = await self._request("POST", path)
        payload = self._json(response) or {}
        try:
            return int(payload.get("notificationsCreated", 0) or 0)
        except (TypeError, ValueError, AttributeError):
            return 0

    async def check_overdue_tasks(self) -> int:
        """Materialize notifications for newly overdue tasks; returns how many"""
        return await self._sweep("notifications/check-overdue-tasks")

    async def check_new_messages(self) -> int:
        """Materialize notifications for unread chat messages; returns how many"""
        return await self._sweep("notifications/check-new-messages")

    async def mark_read(self, notification_id: Any) -> Optional[Notification]:
        response = await self._request("PUT", f"notifications/{notification_id}/read")
        payload = self._json(response)
        if isinstance(payload, dict) and payload.get("id") is not None:
            return Notification.from_dict(payload)
        return None

    async def mark_all_read(self) -> None:
        await self._request("PUT", "notifications/read-all")

    async def send_test_notification(self) -> None:
        await self._request("POST", "notifications/test")

    # ==================== Stream ====================

    @asynccontextmanager
    async def open_stream(self) -> AsyncIterator[httpx.Response]:
        """
        Open the server-push connection.

        The token travels in the query string because the push endpoint
        cannot receive custom headers.
        """
        token = self._token()
        try:
            async with self._client.stream(
                "GET",
                "sse/stream",
                params={"token": token},
                headers={"Accept": "text/event-stream", "Cache-Control": "no-cache"},
                timeout=None,
            ) as response:
                if response.status_code != 200:
                    await response.aread()
                    raise StreamError(
                        f"Stream rejected with status {response.status_code}",
                        status_code=response.status_code
                    )
                yield response
        except httpx.HTTPError as e:
            raise StreamError(f"Stream connection failed: {e}") from e
