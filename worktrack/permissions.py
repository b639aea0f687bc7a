"""
Desktop notification opt-in

Permission is only ever requested here, in response to the user answering
the prompt or running ``worktrack enable-notifications``. Background
delivery never asks.
"""

import json
from pathlib import Path
from typing import Any, Dict, Optional

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm

from worktrack.logging_config import logger
from worktrack.presenter import DeliveryPresenter, PermissionState, PlatformNotifier, Toast, ToastLevel


class PermissionFile:
    """Persists the permission answer and the prompt dismissal"""

    def __init__(self, path: str):
        self.path = Path(path)
        self._data: Dict[str, Any] = {"permission": PermissionState.DEFAULT.value, "dismissed": False}
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            with open(self.path, 'r') as f:
                self._data.update(json.load(f))
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read notification prompt state: {e}")

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w') as f:
            json.dump(self._data, f, indent=2)

    @property
    def permission(self) -> PermissionState:
        try:
            return PermissionState(self._data.get("permission", PermissionState.DEFAULT.value))
        except ValueError:
            return PermissionState.DEFAULT

    @permission.setter
    def permission(self, state: PermissionState) -> None:
        self._data["permission"] = PermissionState(state).value
        self._save()

    @property
    def dismissed(self) -> bool:
        return bool(self._data.get("dismissed", False))

    @dismissed.setter
    def dismissed(self, value: bool) -> None:
        self._data["dismissed"] = bool(value)
        self._save()


class PermissionPrompt:
    """
    Usage:
        prompt = PermissionPrompt(presenter, platform, permission_file, console)
        if prompt.should_prompt():
            await prompt.ask()
    """

    def __init__(
        self,
        presenter: DeliveryPresenter,
        platform: PlatformNotifier,
        permission_file: PermissionFile,
        console: Optional[Console] = None
    ):
        self.presenter = presenter
        self.platform = platform
        self.permission_file = permission_file
        self.console = console or Console()

    def should_prompt(self) -> bool:
        return (
            self.platform.permission_state == PermissionState.DEFAULT
            and not self.permission_file.dismissed
        )

    async def request(self) -> PermissionState:
        """Explicit opt-in: ask the platform and report the outcome"""
        state = await self.platform.request_permission()

        if state == PermissionState.GRANTED:
            self.presenter.toast(Toast(
                "Desktop notifications enabled! You'll now get real-time alerts.",
                level=ToastLevel.SUCCESS,
                icon="🔔",
            ))
            self.presenter.show_confirmation(
                "WorkTrack",
                "Desktop notifications are now enabled for real-time updates!"
            )
        elif state == PermissionState.DENIED:
            self.presenter.toast(Toast(
                "Desktop notifications disabled. Run 'worktrack enable-notifications' to turn them on later.",
                level=ToastLevel.ERROR,
                icon="🔕",
                duration=5.0,
            ))

        logger.info(f"Desktop notification permission: {state.value}")
        return state

    def dismiss(self) -> None:
        """'Not now': stop asking on later runs"""
        self.permission_file.dismissed = True

    async def ask(self) -> PermissionState:
        """Interactive prompt shown before watching starts"""
        self.console.print(Panel(
            "[bold]Enable Real-time Notifications[/bold]\n\n"
            "Get desktop alerts for task updates, comments and deadlines\n"
            "even when this terminal is in the background.",
            border_style="cyan"
        ))
        if Confirm.ask("Enable desktop notifications?", default=True, console=self.console):
            return await self.request()
        self.dismiss()
        return self.platform.permission_state
