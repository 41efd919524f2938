"""Centralized console logging with Rich formatting.

This module provides:
1. Icon vocabulary (Icon class namespace)
2. Level-based styling
3. Core log functions (log, info, warn, error)
4. Domain-specific helpers (daemon_started, alert_raised, report, etc.)
5. Structlog configuration (configure, get_structlog)

Console output uses Rich markup for colors. JSON file output via structlog
remains separate (machine-parseable, no colors).
"""

from __future__ import annotations

import logging
import logging.handlers
from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from rich.console import Console

from cyber_watchdog.models import Severity

if TYPE_CHECKING:
    from cyber_watchdog.config import Config
    from cyber_watchdog.models import AlertRecord

# Rich console for colorful human-readable output
_console = Console(highlight=False)


# ─────────────────────────────────────────────────────────────────────────────
# Icons
# ─────────────────────────────────────────────────────────────────────────────


class Icon:
    """Icon vocabulary for console output.

    Use via autocomplete: Icon.<TAB> to see all available icons.
    """

    OK = "[bold green]✓[/]"
    FAIL = "[bold red]✗[/]"
    WAIT = "⏳"
    ALERT = "[bright_red]▲[/]"
    THRESHOLD = "[yellow]◆[/]"
    REPORT = "📋"
    HEARTBEAT = "[magenta]♡[/]"
    SIGNAL = "⚡"


# ─────────────────────────────────────────────────────────────────────────────
# Level Styles
# ─────────────────────────────────────────────────────────────────────────────

_LEVEL_STYLES = {
    "info": "[bright_blue]\\[info][/]",
    "warn": "[yellow]\\[warn][/]",
    "error": "[bold red]\\[err][/] ",
}

_SEVERITY_STYLES = {
    Severity.DEBUG: "dim",
    Severity.INFO: "bright_blue",
    Severity.NOTICE: "cyan",
    Severity.WARNING: "yellow",
    Severity.ERROR: "bright_red",
    Severity.CRITICAL: "bold red",
    Severity.EMERGENCY: "bold white on red",
}


# ─────────────────────────────────────────────────────────────────────────────
# Core Functions
# ─────────────────────────────────────────────────────────────────────────────


def log(level: str, msg: str, icon: str = "") -> None:
    """Print a log message with timestamp and level.

    Args:
        level: Log level (info, warn, error)
        msg: Message to print (can include Rich markup)
        icon: Optional icon to show after level (e.g., Icon.OK)
    """
    ts = datetime.now().strftime("%H:%M:%S")
    lvl = _LEVEL_STYLES.get(level, f"[{level}]")
    icon_part = f" {icon}" if icon else ""
    _console.print(f"[dim]{ts}[/] {lvl}{icon_part} {msg}")


def info(msg: str, icon: str = "") -> None:
    """Log an info message."""
    log("info", msg, icon)


def warn(msg: str, icon: str = "") -> None:
    """Log a warning message."""
    log("warn", msg, icon)


def error(msg: str, icon: str = "") -> None:
    """Log an error message."""
    log("error", msg, icon)


# ─────────────────────────────────────────────────────────────────────────────
# Styling Helpers
# ─────────────────────────────────────────────────────────────────────────────


def severity_style(severity: Severity) -> str:
    """Return Rich style for an alert severity."""
    return _SEVERITY_STYLES.get(severity, "white")


# ─────────────────────────────────────────────────────────────────────────────
# Domain Helpers
# ─────────────────────────────────────────────────────────────────────────────


def daemon_started() -> None:
    """Log daemon startup complete."""
    info("Daemon started", Icon.OK)


def daemon_stopping() -> None:
    """Log daemon shutdown initiated."""
    info("Daemon stopping...", Icon.WAIT)


def daemon_stopped() -> None:
    """Log daemon shutdown complete."""
    info("Daemon stopped", Icon.OK)


def signal_received(name: str) -> None:
    """Log signal received."""
    info(f"Received [bold]{name}[/]", Icon.SIGNAL)


def alert_raised(alert: AlertRecord) -> None:
    """Log a newly accepted alert."""
    style = severity_style(alert.severity)
    info(
        f"[{style}]{alert.severity.tag}[/] [cyan]{alert.subsystem}[/] "
        f"[dim]({alert.source})[/] {alert.message}",
        Icon.ALERT,
    )


def threshold_breach(kind: str, level: str, detail: str) -> None:
    """Log a threshold check that crossed warn or crit."""
    if level == "crit":
        error(f"[bold]{kind}[/] critical [dim]({detail})[/]", Icon.THRESHOLD)
    else:
        warn(f"[bold]{kind}[/] high [dim]({detail})[/]", Icon.THRESHOLD)


def report(line: str) -> None:
    """Log a periodic status report."""
    info(f"[dim]{line}[/]", Icon.REPORT)


def heartbeat(ticks: int, alert_count: int, rss_mb: float) -> None:
    """Log periodic heartbeat stats."""
    info(
        f"[cyan]{ticks}[/] ticks, [cyan]{alert_count}[/] alerts [dim]{round(rss_mb, 1)}MB RSS[/]",
        Icon.HEARTBEAT,
    )


def kmsg_unavailable() -> None:
    """Log that the kernel ring buffer could not be opened."""
    warn("Kernel ring buffer unavailable, scanning dmesg/journal only")


def already_running(pid: int | None = None) -> None:
    """Log daemon already running error."""
    if pid:
        error(f"Another daemon already running [dim](PID {pid})[/]", Icon.FAIL)
    else:
        error("Another daemon already running", Icon.FAIL)


def stale_pid_file(pid: int, actual_process: str) -> None:
    """Log stale PID file (different process)."""
    info(f"[dim]Stale PID file: PID {pid} is {actual_process}[/]")


def stale_pid_not_found(pid: int) -> None:
    """Log stale PID file (process not found)."""
    info(f"[dim]Stale PID file: PID {pid} not found[/]")


def pid_verify_failed(pid: int) -> None:
    """Log PID verification failed (access denied)."""
    warn(f"Can't verify PID {pid}, assuming running")


def config_created(path: str) -> None:
    """Log config file created."""
    info(f"Created config at [cyan]{path}[/]")


def version_info(name: str, version: str) -> None:
    """Log version info."""
    info(f"[bold cyan]{name}[/] v{version}")


def config_summary(tick: float, scan: float, capacity: int) -> None:
    """Log config summary."""
    info(f"Config: tick=[cyan]{tick}s[/], scan=[cyan]{scan}s[/], alerts≤[cyan]{capacity}[/]")


# ─────────────────────────────────────────────────────────────────────────────
# Structlog Configuration
# ─────────────────────────────────────────────────────────────────────────────


def _add_source(source: str) -> structlog.types.Processor:
    """Create a processor that adds a source field to log events."""

    def processor(
        logger: structlog.types.WrappedLogger,
        method_name: str,
        event_dict: structlog.types.EventDict,
    ) -> structlog.types.EventDict:
        event_dict["source"] = source
        return event_dict

    return processor


def configure(config: Config, source: str = "daemon") -> None:
    """Configure structlog to write JSON Lines to the rotating daemon log.

    Console output is handled by Rich (see log functions above); structlog
    only writes to the file for machine parsing.

    Args:
        config: Application config with paths and rotation limits
        source: Value of the ``source`` field on every record
    """
    config.state_dir.mkdir(parents=True, exist_ok=True)

    file_handler = logging.handlers.RotatingFileHandler(
        config.log_path,
        maxBytes=config.daemon.log_max_bytes,
        backupCount=config.daemon.log_backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.INFO)

    stdlib_root = logging.getLogger()
    stdlib_root.setLevel(logging.INFO)
    stdlib_root.handlers.clear()

    file_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
            foreign_pre_chain=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
                structlog.processors.add_log_level,
                _add_source(source),
                structlog.processors.format_exc_info,
            ],
        )
    )
    stdlib_root.addHandler(file_handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
            structlog.processors.add_log_level,
            _add_source(source),
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_structlog() -> structlog.stdlib.BoundLogger:
    """Get a structlog logger instance for JSON file output."""
    return structlog.get_logger()
