"""
WorkTrack Credential Store
==========================

  worktrack login            Interactive email/password login
  worktrack login --token    Store a token copied from the dashboard
  worktrack logout           Forget the stored token

The bearer token is kept in ~/.worktrack/credentials.json (mode 0600) and
read back by every API call and by the notification stream.
"""

import os
import json
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict, Any, Tuple

import httpx
from rich.console import Console

from worktrack.config import WorkTrackConfig
from worktrack.logging_config import logger, set_user_id
from worktrack.models import parse_timestamp


def looks_like_jwt(token: str) -> bool:
    """The stream endpoint only accepts three-part JWTs"""
    parts = token.split(".")
    return len(parts) == 3 and all(parts)


@dataclass
class UserCredentials:
    """Stored user credentials"""
    user_id: str
    email: str
    name: str
    access_token: str
    role: Optional[str] = None
    token_expiry: Optional[str] = None
    last_login: str = ""


class CredentialStore:
    """
    Loads, saves and clears the session token.

    ``get_token`` is handed to the API client and the stream so that a
    logout is observed on their very next call.
    """

    def __init__(self, config: WorkTrackConfig, console: Optional[Console] = None):
        self.config = config
        self.console = console or Console()
        self.credentials_path = Path(config.credentials_file)
        self.credentials: Optional[UserCredentials] = None
        self._file_stamp: Optional[Tuple[int, int]] = None

        self._load_credentials()

    def _stat_credentials(self) -> Optional[Tuple[int, int]]:
        try:
            stat = self.credentials_path.stat()
        except FileNotFoundError:
            return None
        return stat.st_mtime_ns, stat.st_size

    def _load_credentials(self) -> bool:
        """Load credentials from file"""
        self._file_stamp = self._stat_credentials()
        if self._file_stamp is None:
            return False
        try:
            with open(self.credentials_path, 'r') as f:
                data = json.load(f)
            self.credentials = UserCredentials(**data)
            set_user_id(self.credentials.user_id)
            return True
        except (OSError, ValueError, TypeError) as e:
            logger.warning(f"Could not load credentials: {e}")
            return False

    def _save_credentials(self) -> None:
        """Save credentials to file"""
        if not self.credentials:
            return
        self.credentials_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.credentials_path, 'w') as f:
            json.dump(asdict(self.credentials), f, indent=2)
        # Secure the file (Unix only)
        try:
            os.chmod(self.credentials_path, 0o600)
        except OSError:
            pass
        self._file_stamp = self._stat_credentials()

    def _clear_credentials(self) -> None:
        """Clear stored credentials"""
        self.credentials = None
        set_user_id("")
        if self.credentials_path.exists():
            self.credentials_path.unlink()
        self._file_stamp = None

    def _sync_with_file(self) -> None:
        """Pick up a login or logout done by another worktrack process"""
        stamp = self._stat_credentials()
        if stamp == self._file_stamp:
            return
        if stamp is None:
            if self.credentials:
                logger.info("Credentials file removed, treating as logged out")
            self.credentials = None
            self._file_stamp = None
            set_user_id("")
            return
        self.credentials = None
        self._load_credentials()

    def is_authenticated(self) -> bool:
        """Check if a usable, unexpired token is stored"""
        self._sync_with_file()
        if not self.credentials or not self.credentials.access_token:
            return False

        if self.credentials.token_expiry:
            try:
                expiry = parse_timestamp(self.credentials.token_expiry)
            except ValueError:
                expiry = None
            if expiry and datetime.now(timezone.utc) > expiry:
                return False

        return True

    def get_token(self) -> Optional[str]:
        """Bearer token for API calls, or None when logged out or expired"""
        if not self.is_authenticated():
            return None
        return self.credentials.access_token

    def get_user_info(self) -> Optional[Dict[str, Any]]:
        if self.credentials:
            return {
                "user_id": self.credentials.user_id,
                "email": self.credentials.email,
                "name": self.credentials.name,
                "role": self.credentials.role,
            }
        return None

    def _store_user(self, token: str, user: Dict[str, Any], expiry: Optional[str] = None) -> None:
        self.credentials = UserCredentials(
            user_id=str(user.get("id", "")),
            email=user.get("email", ""),
            name=user.get("full_name") or user.get("name", ""),
            access_token=token,
            role=user.get("role"),
            token_expiry=expiry,
            last_login=datetime.now(timezone.utc).isoformat(),
        )
        set_user_id(self.credentials.user_id)
        self._save_credentials()

    async def login_with_token(self, token: str, transport: Optional[httpx.AsyncBaseTransport] = None) -> bool:
        """Validate a token against /auth/me and store it"""
        try:
            async with httpx.AsyncClient(transport=transport) as client:
                response = await client.get(
                    self.config.url("auth/me"),
                    headers={"Authorization": f"Bearer {token}"}
                )
        except httpx.ConnectError:
            self.console.print("[red]Cannot connect to server. Is the backend running?[/red]")
            return False
        except httpx.HTTPError as e:
            self.console.print(f"[red]Login error: {e}[/red]")
            return False

        if response.status_code != 200:
            self.console.print(f"[red]Authentication failed: {_error_detail(response, 'Invalid token')}[/red]")
            return False

        self._store_user(token, response.json().get("user", {}))
        return True

    async def login_with_credentials(
        self,
        email: str,
        password: str,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> bool:
        """Login using email and password"""
        try:
            async with httpx.AsyncClient(transport=transport) as client:
                response = await client.post(
                    self.config.url("auth/login"),
                    json={"email": email, "password": password}
                )
        except httpx.ConnectError:
            self.console.print("[red]Cannot connect to server. Is the backend running?[/red]")
            return False
        except httpx.HTTPError as e:
            self.console.print(f"[red]Login error: {e}[/red]")
            return False

        if response.status_code != 200:
            self.console.print(f"[red]Login failed: {_error_detail(response, 'Invalid credentials')}[/red]")
            return False

        data = response.json()
        token = data.get("token") or data.get("access_token", "")
        if not token:
            self.console.print("[red]Login failed: server returned no token[/red]")
            return False

        user = data.get("user") or {"email": email, "full_name": email.split("@")[0]}
        self._store_user(token, user, data.get("expires_at"))
        return True

    def logout(self) -> None:
        """Forget the stored token"""
        self._clear_credentials()


def _error_detail(response: httpx.Response, fallback: str) -> str:
    try:
        payload = response.json()
    except ValueError:
        return fallback
    if isinstance(payload, dict):
        return payload.get("error") or payload.get("detail") or fallback
    return fallback
