"""
Bell / inbox view

Renders the store's current snapshot and runs the two read-state actions.
Mutation failures are shown to the user as an error toast.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from worktrack.exceptions import MutationError
from worktrack.logging_config import logger
from worktrack.presenter import DeliveryPresenter, Toast, ToastLevel
from worktrack.store import NotificationStore


LONG_MESSAGE = 100
PREVIEW_LENGTH = 80


def format_age(created_at: Optional[datetime], now: Optional[datetime] = None) -> str:
    """'5m ago', '3h ago', '2d ago'"""
    if created_at is None:
        return ""
    now = now or datetime.now(timezone.utc)
    hours = (now - created_at).total_seconds() / 3600

    if hours < 1:
        return f"{max(0, int(hours * 60))}m ago"
    elif hours < 24:
        return f"{int(hours)}h ago"
    return f"{int(hours / 24)}d ago"


def preview(message: str) -> str:
    if len(message) > LONG_MESSAGE:
        return message[:PREVIEW_LENGTH] + "..."
    return message


def unread_badge(count: int) -> str:
    if count <= 0:
        return ""
    return "9+" if count > 9 else str(count)


class InboxView:
    """
    Usage:
        inbox = InboxView(store, presenter, console)
        inbox.render()
        await inbox.mark_one(42)
        await inbox.mark_all()
    """

    def __init__(self, store: NotificationStore, presenter: DeliveryPresenter, console: Optional[Console] = None):
        self.store = store
        self.presenter = presenter
        self.console = console or Console()

    def build_table(self, now: Optional[datetime] = None, expand: bool = False) -> Table:
        table = Table(show_header=True, header_style="bold", expand=True)
        table.add_column("", width=2)
        table.add_column("ID", style="dim", no_wrap=True)
        table.add_column("Title")
        table.add_column("Message")
        table.add_column("When", style="dim", no_wrap=True)
        table.add_column("Related", style="dim", no_wrap=True)

        for notification in self.store.snapshot():
            style = "bold" if not notification.is_read else "dim"
            related = ""
            if notification.related_type and notification.related_id:
                related = f"{notification.related_type} #{notification.related_id}"
            table.add_row(
                notification.icon,
                str(notification.id),
                Text(notification.title, style=style),
                notification.message if expand else preview(notification.message),
                format_age(notification.created_at, now),
                related,
            )
        return table

    def render(self, now: Optional[datetime] = None, expand: bool = False) -> None:
        unread = self.store.unread_count
        badge = unread_badge(unread)
        title = "[bold cyan]Notifications[/bold cyan]"
        if badge:
            title += f" [bold white on red] {badge} [/bold white on red]"

        if len(self.store) == 0:
            self.console.print(Panel("No notifications yet", title=title, border_style="cyan"))
            return

        self.console.print(Panel(self.build_table(now, expand), title=title, border_style="cyan"))

    async def mark_one(self, notification_id: Any) -> bool:
        try:
            await self.store.mark_read(notification_id)
        except MutationError as e:
            logger.warning(e.message)
            self.presenter.toast(Toast("Failed to mark notification as read", level=ToastLevel.ERROR))
            return False
        return True

    async def mark_all(self) -> bool:
        if self.store.unread_count == 0:
            return False
        try:
            await self.store.mark_all_read()
        except MutationError as e:
            logger.warning(e.message)
            self.presenter.toast(Toast("Failed to mark all notifications as read", level=ToastLevel.ERROR))
            return False
        self.presenter.toast(Toast("All notifications marked as read", level=ToastLevel.SUCCESS))
        return True
