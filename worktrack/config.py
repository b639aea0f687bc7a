"""
WorkTrack Notify Configuration Management
"""

import os
import json
from pathlib import Path
from dataclasses import dataclass, field, asdict
from typing import Optional, Dict, Any


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class WorkTrackConfig:
    """Configuration for the notification client"""

    # API settings
    api_base_url: str = "http://localhost:5000/api"
    timeout: Optional[float] = None  # None = httpx default

    # Polling cadence (seconds), one timer per question
    notification_poll_interval: float = 10.0
    overdue_check_interval: float = 300.0
    message_check_interval: float = 30.0
    initial_check_delay: float = 5.0

    # Store refresh
    refetch_interval: float = 30.0
    stale_time: float = 5.0

    # Stream settings
    stream_enabled: bool = True
    reconnect_delay: float = 5.0
    reconnect_backoff: float = 1.0  # 1.0 = fixed delay
    max_reconnect_delay: float = 30.0

    # Presentation
    auto_dismiss_seconds: float = 5.0
    desktop_notifications: bool = True
    app_name: str = "WorkTrack"

    # Logging
    log_level: str = "INFO"
    json_logs: bool = False
    log_file: Optional[str] = None

    # Paths
    config_dir: str = field(default_factory=lambda: str(Path.home() / ".worktrack"))
    credentials_file: str = "credentials.json"
    prompt_state_file: str = "notification-prompt.json"

    def __post_init__(self):
        """Initialize paths and directories"""
        Path(self.config_dir).mkdir(parents=True, exist_ok=True)

        if not os.path.isabs(self.credentials_file):
            self.credentials_file = str(Path(self.config_dir) / self.credentials_file)
        if not os.path.isabs(self.prompt_state_file):
            self.prompt_state_file = str(Path(self.config_dir) / self.prompt_state_file)

    def load_from_file(self, config_path: str) -> None:
        """Load configuration from JSON file"""
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = json.load(f)
                for key, value in data.items():
                    if hasattr(self, key):
                        setattr(self, key, value)

    def save_to_file(self, config_path: Optional[str] = None) -> None:
        """Save configuration to JSON file"""
        path = Path(config_path or (Path(self.config_dir) / "config.json"))
        with open(path, 'w') as f:
            json.dump(asdict(self), f, indent=2)

    @classmethod
    def load_default(cls, config_dir: Optional[str] = None) -> "WorkTrackConfig":
        """Load default configuration from user config directory"""
        config = cls(config_dir=config_dir) if config_dir else cls()
        default_config_path = Path(config.config_dir) / "config.json"
        if default_config_path.exists():
            config.load_from_file(str(default_config_path))

        # Override with environment variables
        config._load_from_env()

        return config

    def _load_from_env(self) -> None:
        """Load configuration from environment variables"""
        env_mappings = {
            "WORKTRACK_API_URL": "api_base_url",
            "WORKTRACK_POLL_INTERVAL": ("notification_poll_interval", float),
            "WORKTRACK_OVERDUE_INTERVAL": ("overdue_check_interval", float),
            "WORKTRACK_MESSAGE_INTERVAL": ("message_check_interval", float),
            "WORKTRACK_RECONNECT_DELAY": ("reconnect_delay", float),
            "WORKTRACK_STREAM": ("stream_enabled", _as_bool),
            "WORKTRACK_DESKTOP_NOTIFICATIONS": ("desktop_notifications", _as_bool),
            "WORKTRACK_LOG_LEVEL": "log_level",
            "WORKTRACK_JSON_LOGS": ("json_logs", _as_bool),
            "WORKTRACK_LOG_FILE": "log_file",
        }

        for env_var, mapping in env_mappings.items():
            value = os.environ.get(env_var)
            if value:
                if isinstance(mapping, tuple):
                    attr, converter = mapping
                    setattr(self, attr, converter(value))
                else:
                    setattr(self, mapping, value)

    def url(self, path: str) -> str:
        """Join an API path onto the base URL"""
        return f"{self.api_base_url.rstrip('/')}/{path.lstrip('/')}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary"""
        return asdict(self)
