"""
Unit Tests for the CLI entry point
"""
import pytest

from worktrack.logging_config import logger
from worktrack.main import build_config, create_parser, main


@pytest.fixture
def home(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))
    for name in ("WORKTRACK_API_URL", "WORKTRACK_STREAM", "WORKTRACK_LOG_FILE"):
        monkeypatch.delenv(name, raising=False)
    handlers, propagate = list(logger.handlers), logger.propagate
    yield tmp_path
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    for handler in handlers:
        logger.addHandler(handler)
    logger.propagate = propagate


class TestParser:
    """Test argument parsing"""

    def test_commands(self):
        parser = create_parser()

        assert parser.parse_args(["read", "42"]).id == "42"
        assert parser.parse_args(["inbox", "--expand"]).expand is True
        assert parser.parse_args(["login", "-t", "a.b.c"]).token == "a.b.c"
        assert parser.parse_args([]).command is None

    def test_flags_applied_to_config(self, home):
        args = create_parser().parse_args(
            ["--api-url", "http://tracker/api", "--no-stream", "--no-desktop", "-v", "watch"]
        )

        config = build_config(args)

        assert config.api_base_url == "http://tracker/api"
        assert config.stream_enabled is False
        assert config.desktop_notifications is False
        assert config.log_level == "DEBUG"


class TestMain:
    """Test command dispatch"""

    def test_requires_login(self, home, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--no-desktop", "inbox"])

        assert exc_info.value.code == 1
        assert "Authentication required" in capsys.readouterr().out

    def test_status_when_logged_out(self, home, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--no-desktop", "status"])

        assert exc_info.value.code == 0
        assert "Not logged in" in capsys.readouterr().out
