"""
Notification record as served by the work-tracker API
"""

from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class NotificationType(str, Enum):
    """Known notification types"""
    TASK_OVERDUE = "task_overdue"
    TASK_ASSIGNED = "task_assigned"
    TASK_COMPLETED = "task_completed"
    TASK_UPDATED = "task_updated"
    COMMENT_ADDED = "comment_added"
    REVIEW_WRITTEN = "review_written"
    CHAT_MESSAGE = "chat_message"
    PROJECT_UPDATE = "project_update"
    TEST = "test"


NOTIFICATION_ICONS = {
    NotificationType.TASK_OVERDUE.value: "⚠️",
    NotificationType.TASK_ASSIGNED.value: "📋",
    NotificationType.TASK_COMPLETED.value: "✅",
    NotificationType.TASK_UPDATED.value: "🔄",
    NotificationType.COMMENT_ADDED.value: "💬",
    NotificationType.REVIEW_WRITTEN.value: "📝",
    NotificationType.CHAT_MESSAGE.value: "💬",
    NotificationType.PROJECT_UPDATE.value: "📊",
    NotificationType.TEST.value: "🧪",
}
DEFAULT_ICON = "🔔"


def icon_for(notification_type: str) -> str:
    """Icon shown next to a notification of the given type"""
    return NOTIFICATION_ICONS.get(notification_type, DEFAULT_ICON)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def notification_key(notification_id: Any) -> str:
    """Stable key for an id that may arrive as an int or a string"""
    return str(notification_id)


@dataclass
class Notification:
    """A user-facing event record"""
    id: Any
    type: str
    title: str
    message: str
    created_at: Optional[datetime] = None
    is_read: bool = False
    related_type: Optional[str] = None
    related_id: Optional[Any] = None

    @property
    def key(self) -> str:
        return notification_key(self.id)

    @property
    def icon(self) -> str:
        return icon_for(self.type)

    @property
    def is_sticky(self) -> bool:
        """Overdue alerts stay on screen until the user acts on them"""
        return self.type == NotificationType.TASK_OVERDUE.value

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat() if self.created_at else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Notification":
        if "id" not in data or data["id"] is None:
            raise ValueError("notification payload has no id")
        return cls(
            id=data["id"],
            type=str(data.get("type") or ""),
            title=str(data.get("title") or ""),
            message=str(data.get("message") or ""),
            created_at=parse_timestamp(data.get("created_at")),
            is_read=bool(data.get("is_read", False)),
            related_type=data.get("related_type"),
            related_id=data.get("related_id"),
        )
