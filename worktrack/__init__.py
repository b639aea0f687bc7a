"""
WorkTrack Notify - real-time notification client for the work tracker
"""

from worktrack.config import WorkTrackConfig
from worktrack.models import Notification, NotificationType
from worktrack.session import NotificationSession

__version__ = "1.0.0"

__all__ = [
    "Notification",
    "NotificationSession",
    "NotificationType",
    "WorkTrackConfig",
    "__version__",
]
