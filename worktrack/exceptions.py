"""
Custom Exceptions for WorkTrack Notify
======================================

Use these instead of generic Exception so that callers can tell a
transient delivery failure (log and retry on the next tick) apart from a
failed user action (show it to the user).

Usage:
    from worktrack.exceptions import ApiError, MutationError

    try:
        await store.mark_read(notification_id)
    except MutationError as e:
        console.print(f"[red]{e.message}[/red]")
"""

from typing import Optional, Any, Dict


class WorkTrackError(Exception):
    """Base exception for all WorkTrack errors"""

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details
        }


# ============================================
# Authentication Errors
# ============================================

class AuthenticationError(WorkTrackError):
    """User authentication failed"""

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message, code="AUTH_FAILED")


class MissingTokenError(AuthenticationError):
    """No bearer token is available in the credential store"""

    def __init__(self):
        super().__init__("No auth token available")
        self.code = "MISSING_TOKEN"


# ============================================
# Collaborator API Errors
# ============================================

class ApiError(WorkTrackError):
    """The collaborator API answered with an unexpected status or failed"""

    def __init__(self, message: str, status_code: Optional[int] = None, path: str = ""):
        super().__init__(
            message,
            code="API_ERROR",
            details={"status_code": status_code, "path": path}
        )
        self.status_code = status_code
        self.path = path


class StreamError(WorkTrackError):
    """The notification stream could not be opened or broke mid-flight"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, code="STREAM_ERROR", details={"status_code": status_code})
        self.status_code = status_code


class MalformedEventError(WorkTrackError):
    """A single stream message could not be decoded"""

    def __init__(self, raw: str, reason: str = "invalid JSON"):
        super().__init__(
            f"Malformed stream event: {reason}",
            code="MALFORMED_EVENT",
            details={"raw": raw[:200]}
        )
        self.raw = raw


# ============================================
# User Action Errors
# ============================================

class MutationError(WorkTrackError):
    """A read-state change was rejected; local state was left untouched"""

    def __init__(self, action: str, reason: str = ""):
        message = f"Failed to {action}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, code="MUTATION_FAILED", details={"action": action})
        self.action = action
