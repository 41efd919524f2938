"""Tests for console and structured logging."""

import io
import json
import logging
import logging.handlers
from collections.abc import Iterator
from pathlib import Path
from unittest.mock import patch

import pytest
import structlog
from rich.console import Console

from cyber_watchdog import logging as cw_log
from cyber_watchdog.config import Config
from cyber_watchdog.models import Severity
from tests.conftest import make_alert


@pytest.fixture
def console_output() -> Iterator[io.StringIO]:
    """Capture Rich console output as plain text."""
    buffer = io.StringIO()
    console = Console(file=buffer, force_terminal=False, color_system=None, width=200)
    with patch.object(cw_log, "_console", console):
        yield buffer


class TestConsoleHelpers:
    def test_info_has_level_and_icon(self, console_output: io.StringIO) -> None:
        cw_log.info("hello", cw_log.Icon.OK)
        out = console_output.getvalue()
        assert "[info]" in out
        assert "✓" in out
        assert "hello" in out

    def test_alert_raised(self, console_output: io.StringIO) -> None:
        cw_log.alert_raised(
            make_alert(raw="nvme0: I/O error", subsystem="Storage", severity=Severity.CRITICAL)
        )
        out = console_output.getvalue()
        assert "CRT" in out
        assert "Storage" in out
        assert "(kmsg)" in out
        assert "nvme0: I/O error" in out

    def test_threshold_breach_levels(self, console_output: io.StringIO) -> None:
        cw_log.threshold_breach("memory", "warn", "90%")
        cw_log.threshold_breach("temp", "crit", "cpu 99C")
        lines = console_output.getvalue().splitlines()
        assert "[warn]" in lines[0] and "memory high" in lines[0]
        assert "[err]" in lines[1] and "temp critical" in lines[1]

    def test_severity_style(self) -> None:
        assert cw_log.severity_style(Severity.EMERGENCY) == "bold white on red"
        assert cw_log.severity_style(Severity.WARNING) == "yellow"


@pytest.mark.usefixtures("patched_config_paths", "restore_logging")
def test_configure_writes_json_lines() -> None:
    config = Config()
    cw_log.configure(config, source="test")

    structlog.get_logger().info("sample_event", answer=42)
    for handler in logging.getLogger().handlers:
        handler.flush()

    lines = config.log_path.read_text().splitlines()
    record = json.loads(lines[-1])
    assert record["event"] == "sample_event"
    assert record["answer"] == 42
    assert record["source"] == "test"
    assert record["level"] == "info"
    assert "ts" in record


@pytest.mark.usefixtures("patched_config_paths", "restore_logging")
def test_configure_drops_debug() -> None:
    config = Config()
    cw_log.configure(config)

    structlog.get_logger().debug("too_chatty")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert "too_chatty" not in config.log_path.read_text()


def test_configure_uses_rotation_settings(patched_config_paths: Path, restore_logging) -> None:
    config = Config()
    config.daemon.log_max_bytes = 1234
    config.daemon.log_backup_count = 7
    cw_log.configure(config)

    handler = logging.getLogger().handlers[0]
    assert isinstance(handler, logging.handlers.RotatingFileHandler)
    assert handler.maxBytes == 1234
    assert handler.backupCount == 7
