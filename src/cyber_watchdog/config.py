"""Configuration system for cyber-watchdog."""

from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path

import tomlkit

from cyber_watchdog.models import Severity


@dataclass
class SamplingConfig:
    """Metric and log-scan cadence."""

    tick_interval: float = 0.8  # Seconds between metric ticks
    scan_interval: float = 5.0  # Seconds between log scans
    sleep_slice: float = 0.1  # Granularity of interruptible sleeps
    command_timeout: float = 10.0  # Max seconds for any external command
    history_size: int = 120  # Values kept per tracked metric


@dataclass
class AlertsConfig:
    """Alert store and alert log configuration."""

    capacity: int = 500  # Max alerts held in memory
    min_severity: str = "warning"  # Classified lines below this are dropped
    journal_lines: int = 50  # journalctl -n
    log_max_bytes: int = 50 * 1024 * 1024  # Alert log rotation threshold (50MB)


@dataclass
class ThresholdsConfig:
    """Daemon threshold checks.

    Load thresholds are per logical CPU (load_warn=2.0 on 4 CPUs warns at 8.0).
    """

    memory_warn: float = 85.0
    memory_crit: float = 95.0
    load_warn: float = 2.0
    load_crit: float = 5.0
    temp_warn: float = 80.0
    temp_crit: float = 95.0


@dataclass
class DaemonConfig:
    """Daemon reporting and structured log rotation."""

    report_interval: int = 3600  # Seconds between periodic reports
    log_max_bytes: int = 5 * 1024 * 1024  # Structured JSON log size (5MB)
    log_backup_count: int = 3


@dataclass
class TUIColors:
    """Colors for TUI severity and gauges. Default palette: Dracula."""

    ok: str = "#50fa7b"
    warn: str = "#f1fa8c"
    high: str = "#ffb86c"
    critical: str = "#ff5555"
    accent: str = "#8be9fd"
    dim: str = "#6272a4"


@dataclass
class TUIConfig:
    """TUI-specific configuration."""

    colors: TUIColors = field(default_factory=TUIColors)
    refresh_interval: float = 0.5  # Seconds between screen refreshes
    sparkline_height: int = 1  # Rows per sparkline (1-4)
    message_truncate_length: int = 120


def _dataclass_to_table(obj: object) -> tomlkit.items.Table:
    """Convert a dataclass instance to a tomlkit Table recursively."""
    table = tomlkit.table()
    for f in fields(obj):  # type: ignore[arg-type]
        value = getattr(obj, f.name)
        if is_dataclass(value) and not isinstance(value, type):
            table.add(f.name, _dataclass_to_table(value))
        else:
            table.add(f.name, value)
    return table


@dataclass
class Config:
    """Main configuration container."""

    sampling: SamplingConfig = field(default_factory=SamplingConfig)
    alerts: AlertsConfig = field(default_factory=AlertsConfig)
    thresholds: ThresholdsConfig = field(default_factory=ThresholdsConfig)
    daemon: DaemonConfig = field(default_factory=DaemonConfig)
    tui: TUIConfig = field(default_factory=TUIConfig)

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "cyber-watchdog"

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return self.config_dir / "config.toml"

    @property
    def state_dir(self) -> Path:
        """State directory for logs and other expendable persistent state."""
        return Path.home() / ".local" / "state" / "cyber-watchdog"

    @property
    def runtime_dir(self) -> Path:
        """Runtime directory for ephemeral files (PID)."""
        return Path("/tmp/cyber-watchdog")

    @property
    def log_path(self) -> Path:
        """Structured (JSON Lines) daemon log."""
        return self.state_dir / "daemon.log"

    @property
    def alert_log_path(self) -> Path:
        """Append-only human-readable alert log."""
        return self.state_dir / "watchdog.log"

    @property
    def pid_path(self) -> Path:
        """PID file path."""
        return self.runtime_dir / "daemon.pid"

    @property
    def min_severity(self) -> Severity:
        """Parsed alerts.min_severity."""
        return Severity.from_name(self.alerts.min_severity)

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        for name in ("sampling", "alerts", "thresholds", "daemon", "tui"):
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        All defaults come from the dataclass definitions, so Config() and
        Config.load() of an empty file are identical.

        Raises:
            ValueError: If the file cannot be parsed or a value is invalid.
        """
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f)
        except tomlkit.exceptions.TOMLKitError as e:
            raise ValueError(f"Failed to parse config file {path}: {e}") from e

        return cls(
            sampling=_load_sampling_config(data.get("sampling", {})),
            alerts=_load_alerts_config(data.get("alerts", {})),
            thresholds=_load_thresholds_config(data.get("thresholds", {})),
            daemon=_load_daemon_config(data.get("daemon", {})),
            tui=_load_tui_config(data.get("tui", {})),
        )


def _load_sampling_config(data: dict) -> SamplingConfig:
    """Load sampling config, validating intervals and history size."""
    d = SamplingConfig()
    config = SamplingConfig(
        tick_interval=data.get("tick_interval", d.tick_interval),
        scan_interval=data.get("scan_interval", d.scan_interval),
        sleep_slice=data.get("sleep_slice", d.sleep_slice),
        command_timeout=data.get("command_timeout", d.command_timeout),
        history_size=data.get("history_size", d.history_size),
    )
    for name in ("tick_interval", "scan_interval", "sleep_slice", "command_timeout"):
        value = getattr(config, name)
        if value <= 0:
            raise ValueError(f"{name} must be > 0, got {value}")
    if config.history_size < 1:
        raise ValueError(f"history_size must be >= 1, got {config.history_size}")
    return config


def _load_alerts_config(data: dict) -> AlertsConfig:
    """Load alerts config."""
    d = AlertsConfig()
    config = AlertsConfig(
        capacity=data.get("capacity", d.capacity),
        min_severity=data.get("min_severity", d.min_severity),
        journal_lines=data.get("journal_lines", d.journal_lines),
        log_max_bytes=data.get("log_max_bytes", d.log_max_bytes),
    )
    if config.capacity < 1:
        raise ValueError(f"capacity must be >= 1, got {config.capacity}")
    Severity.from_name(config.min_severity)
    return config


def _load_thresholds_config(data: dict) -> ThresholdsConfig:
    """Load thresholds, requiring warn <= crit for each pair."""
    d = ThresholdsConfig()
    config = ThresholdsConfig(
        memory_warn=data.get("memory_warn", d.memory_warn),
        memory_crit=data.get("memory_crit", d.memory_crit),
        load_warn=data.get("load_warn", d.load_warn),
        load_crit=data.get("load_crit", d.load_crit),
        temp_warn=data.get("temp_warn", d.temp_warn),
        temp_crit=data.get("temp_crit", d.temp_crit),
    )
    for kind in ("memory", "load", "temp"):
        warn = getattr(config, f"{kind}_warn")
        crit = getattr(config, f"{kind}_crit")
        if warn > crit:
            raise ValueError(f"{kind}_warn ({warn}) must be <= {kind}_crit ({crit})")
    return config


def _load_daemon_config(data: dict) -> DaemonConfig:
    """Load daemon config."""
    d = DaemonConfig()
    return DaemonConfig(
        report_interval=data.get("report_interval", d.report_interval),
        log_max_bytes=data.get("log_max_bytes", d.log_max_bytes),
        log_backup_count=data.get("log_backup_count", d.log_backup_count),
    )


def _load_tui_config(data: dict) -> TUIConfig:
    """Load TUI config, including the nested [tui.colors] table."""
    d = TUIConfig()
    colors_data = data.get("colors", {})
    c = TUIColors()
    return TUIConfig(
        colors=TUIColors(
            ok=colors_data.get("ok", c.ok),
            warn=colors_data.get("warn", c.warn),
            high=colors_data.get("high", c.high),
            critical=colors_data.get("critical", c.critical),
            accent=colors_data.get("accent", c.accent),
            dim=colors_data.get("dim", c.dim),
        ),
        refresh_interval=data.get("refresh_interval", d.refresh_interval),
        sparkline_height=data.get("sparkline_height", d.sparkline_height),
        message_truncate_length=data.get("message_truncate_length", d.message_truncate_length),
    )
