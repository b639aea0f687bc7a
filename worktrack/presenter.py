"""
Delivery presenter

Turns a newly observed notification into user-visible side effects:
  - an in-app toast, always
  - a platform (desktop) notification, only when permission was granted

Each notification id is presented at most once no matter how many channels
observe it. Platform notifications are tagged so a repeated tag replaces
the previous entry instead of stacking.
"""

import asyncio
import shutil
import subprocess
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

from rich.console import Console

from worktrack.logging_config import logger
from worktrack.models import Notification, NotificationType, icon_for


class ToastLevel(str, Enum):
    ERROR = "error"
    SUCCESS = "success"
    NEUTRAL = "neutral"


@dataclass
class Toast:
    """Transient in-app message"""
    message: str
    level: ToastLevel = ToastLevel.NEUTRAL
    icon: str = ""
    duration: float = 4.0


class ConsoleToaster:
    """Prints toasts to the terminal"""

    STYLES = {
        ToastLevel.ERROR: "bold red",
        ToastLevel.SUCCESS: "green",
        ToastLevel.NEUTRAL: "cyan",
    }

    def __init__(self, console: Console):
        self.console = console

    def show(self, toast: Toast) -> None:
        style = self.STYLES.get(toast.level, "cyan")
        prefix = f"{toast.icon} " if toast.icon else ""
        self.console.print(f"{prefix}{toast.message}", style=style, markup=False)


# ==================== Platform notifications ====================

class PermissionState(str, Enum):
    DEFAULT = "default"
    GRANTED = "granted"
    DENIED = "denied"


class PlatformHandle:
    """A shown platform notification"""

    def __init__(self, tag: str, on_close: Optional[Callable[["PlatformHandle"], None]] = None):
        self.tag = tag
        self.closed = False
        self.on_click: Optional[Callable[[], None]] = None
        self._on_close = on_close

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._on_close:
            self._on_close(self)

    def click(self) -> None:
        if self.on_click:
            self.on_click()


class PlatformNotifier(ABC):
    """Capability interface over the host notification subsystem"""

    @property
    @abstractmethod
    def permission_state(self) -> PermissionState:
        pass

    @abstractmethod
    async def request_permission(self) -> PermissionState:
        """Only called from an explicit user opt-in"""
        pass

    @abstractmethod
    def show(self, title: str, body: str, tag: str, sticky: bool) -> PlatformHandle:
        pass

    def focus(self) -> None:
        """Bring the application to the foreground"""
        pass


class NullNotifier(PlatformNotifier):
    """Used when the host has no notification support"""

    @property
    def permission_state(self) -> PermissionState:
        return PermissionState.DENIED

    async def request_permission(self) -> PermissionState:
        return PermissionState.DENIED

    def show(self, title: str, body: str, tag: str, sticky: bool) -> PlatformHandle:
        return PlatformHandle(tag)


class DesktopNotifier(PlatformNotifier):
    """
    Desktop notifications via notify-send (Linux) or osascript (macOS).

    Desktops have no permission prompt of their own, so the user's answer
    to the opt-in flow is kept by ``permission_store``.
    """

    def __init__(
        self,
        app_name: str,
        expire_seconds: float,
        permission_store: "PermissionFile",
        console: Optional[Console] = None
    ):
        self.app_name = app_name
        self.expire_seconds = expire_seconds
        self.permission_store = permission_store
        self.console = console
        self.command_timeout = 2.0
        self._command = self._detect_command()

    @staticmethod
    def _detect_command() -> Optional[str]:
        if sys.platform == "darwin":
            return shutil.which("osascript")
        return shutil.which("notify-send")

    @property
    def available(self) -> bool:
        return self._command is not None

    @property
    def permission_state(self) -> PermissionState:
        if not self.available:
            return PermissionState.DENIED
        return self.permission_store.permission

    async def request_permission(self) -> PermissionState:
        state = PermissionState.GRANTED if self.available else PermissionState.DENIED
        self.permission_store.permission = state
        return state

    def revoke(self) -> None:
        self.permission_store.permission = PermissionState.DENIED

    def _build_command(self, title: str, body: str, tag: str, sticky: bool) -> List[str]:
        if sys.platform == "darwin":
            script = 'display notification {} with title {}'.format(
                _applescript_string(body), _applescript_string(title)
            )
            return [self._command, "-e", script]

        command = [self._command, "-a", self.app_name]
        # Same tag replaces the previous bubble on servers that support it
        command += ["-h", f"string:x-canonical-private-synchronous:{tag}"]
        if sticky:
            command += ["-u", "critical", "-t", "0"]
        else:
            command += ["-t", str(int(self.expire_seconds * 1000))]
        command += [title, body]
        return command

    def show(self, title: str, body: str, tag: str, sticky: bool) -> PlatformHandle:
        if not self.available:
            raise RuntimeError("no desktop notification command available")
        # notify-send and osascript return once the bubble is queued
        subprocess.run(
            self._build_command(title, body, tag, sticky),
            capture_output=True,
            timeout=self.command_timeout,
        )
        # Neither command reports clicks back, so click() never fires on
        # this handle and focus() is unused on these desktops
        return PlatformHandle(tag)

    def focus(self) -> None:
        if self.console is not None:
            self.console.bell()


def _applescript_string(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


# ==================== Presenter ====================

AGGREGATE_MESSAGES = {
    "overdue": ("overdue task", ToastLevel.ERROR, "⚠️", 5.0),
    "messages": ("new message", ToastLevel.SUCCESS, "💬", 4.0),
}


class DeliveryPresenter:
    """
    Usage:
        presenter = DeliveryPresenter(ConsoleToaster(console), DesktopNotifier(...))
        presenter.present(notification, channel="stream")
        presenter.present_aggregate("overdue", 3)
    """

    def __init__(
        self,
        toaster,
        platform: PlatformNotifier,
        auto_dismiss_seconds: float = 5.0,
        tag_prefix: str = "worktrack",
        max_remembered: int = 5000
    ):
        self.toaster = toaster
        self.platform = platform
        self.auto_dismiss_seconds = auto_dismiss_seconds
        self.tag_prefix = tag_prefix
        self.max_remembered = max_remembered

        # Insertion ordered, oldest ids are forgotten first
        self._presented: Dict[str, None] = {}
        self._active: Dict[str, PlatformHandle] = {}
        self._dismiss_timers: Dict[str, asyncio.TimerHandle] = {}
        self._enabled = True

    @property
    def enabled(self) -> bool:
        return self._enabled

    def was_presented(self, notification_id) -> bool:
        return str(notification_id) in self._presented

    def active_tags(self) -> List[str]:
        return list(self._active)

    # ==================== Public API ====================

    def present(self, notification: Notification, channel: str = "stream") -> bool:
        """Present a single record once; returns False for repeats"""
        if not self._enabled:
            return False
        if notification.key in self._presented:
            logger.debug(f"Notification {notification.key} already presented, skipping ({channel})")
            return False
        self._remember(notification.key)

        self.toast(self._toast_for(notification))
        shown = self._show_platform(
            notification.title or "Notification",
            notification.message,
            tag=f"{self.tag_prefix}-{notification.key}",
            sticky=notification.is_sticky,
        )
        logger.log_delivery(notification.key, channel, shown, notification_type=notification.type)
        return True

    def present_aggregate(self, kind: str, count: int, channel: str = "poll") -> bool:
        """One alert summarizing ``count`` notifications created by a sweep"""
        if not self._enabled or count <= 0:
            return False

        phrase, level, icon, duration = AGGREGATE_MESSAGES.get(
            kind, ("new notification", ToastLevel.NEUTRAL, "🔔", 4.0)
        )
        message = f"You have {count} {phrase}{'s' if count > 1 else ''}!"
        self.toast(Toast(message, level=level, icon=icon, duration=duration))
        shown = self._show_platform(
            "WorkTrack",
            message,
            tag=f"{self.tag_prefix}-{channel}-{kind}",
            sticky=False,
        )
        logger.log_delivery(f"{kind}x{count}", channel, shown)
        return True

    def toast(self, toast: Toast) -> None:
        """Fire-and-forget toast; failures are logged"""
        if not self._enabled:
            return
        try:
            self.toaster.show(toast)
        except Exception as e:
            logger.log_error_with_context(e, "toast")

    def show_confirmation(self, title: str, body: str) -> bool:
        """Platform notification outside the per-record flow (opt-in confirmation)"""
        return self._show_platform(title, body, tag=f"{self.tag_prefix}-test-notification", sticky=False)

    def shutdown(self) -> None:
        """Drop pending timers; nothing is presented afterwards"""
        self._enabled = False
        for timer in self._dismiss_timers.values():
            timer.cancel()
        self._dismiss_timers.clear()

    # ==================== Internals ====================

    @staticmethod
    def _toast_for(notification: Notification) -> Toast:
        if notification.type == NotificationType.TASK_OVERDUE.value:
            level, duration = ToastLevel.ERROR, 5.0
        elif notification.type == NotificationType.TASK_COMPLETED.value:
            level, duration = ToastLevel.SUCCESS, 4.0
        else:
            level, duration = ToastLevel.NEUTRAL, 4.0
        return Toast(notification.message, level=level, icon=icon_for(notification.type), duration=duration)

    def _remember(self, key: str) -> None:
        self._presented[key] = None
        while len(self._presented) > self.max_remembered:
            del self._presented[next(iter(self._presented))]

    def _show_platform(self, title: str, body: str, tag: str, sticky: bool) -> bool:
        try:
            if self.platform.permission_state != PermissionState.GRANTED:
                return False
            handle = self.platform.show(title, body, tag, sticky)
        except Exception as e:
            logger.log_error_with_context(e, "platform notification", tag=tag)
            return False

        previous = self._active.get(tag)
        if previous is not None and previous is not handle:
            self._forget(tag)
            previous.close()

        self._active[tag] = handle
        handle.on_click = lambda: self._on_click(tag, handle)

        if not sticky:
            self._schedule_dismiss(tag, handle)
        return True

    def _schedule_dismiss(self, tag: str, handle: PlatformHandle) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return  # no loop: the platform's own expiry applies
        self._dismiss_timers[tag] = loop.call_later(
            self.auto_dismiss_seconds, self._dismiss, tag, handle
        )

    def _dismiss(self, tag: str, handle: PlatformHandle) -> None:
        if self._active.get(tag) is handle:
            self._forget(tag)
        try:
            handle.close()
        except Exception as e:
            logger.log_error_with_context(e, "platform dismiss", tag=tag)

    def _on_click(self, tag: str, handle: PlatformHandle) -> None:
        try:
            self.platform.focus()
        except Exception as e:
            logger.log_error_with_context(e, "platform focus", tag=tag)
        self._dismiss(tag, handle)

    def _forget(self, tag: str) -> None:
        self._active.pop(tag, None)
        timer = self._dismiss_timers.pop(tag, None)
        if timer is not None:
            timer.cancel()
