"""Background daemon for cyber-watchdog."""

import os
import signal
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

import psutil
import structlog

from cyber_watchdog import logging as cw_log
from cyber_watchdog.alerts import AlertLog
from cyber_watchdog.config import Config, ThresholdsConfig
from cyber_watchdog.models import MetricsSnapshot
from cyber_watchdog.monitor import Monitor, RequestChannel, ShutdownContext
from cyber_watchdog.publisher import SnapshotPublisher

log = structlog.get_logger()

HEARTBEAT_EVERY = 60  # Threshold checks between heartbeats


@dataclass(frozen=True)
class ThresholdBreach:
    """A metric at or above its warn or crit threshold."""

    kind: str  # "memory", "load" or "temp"
    key: str  # Distinguishes temp sensors; equals kind otherwise
    level: str  # "warn" or "crit"
    value: float
    limit: float

    @property
    def detail(self) -> str:
        if self.kind == "temp":
            return f"{self.key} {self.value:.0f}C"
        if self.kind == "load":
            return f"{self.value:.2f} (limit {self.limit:.2f})"
        return f"{self.value:.0f}%"


def _level(value: float, warn: float, crit: float) -> str | None:
    if value >= crit:
        return "crit"
    if value >= warn:
        return "warn"
    return None


def check_thresholds(
    snapshot: MetricsSnapshot, thresholds: ThresholdsConfig
) -> list[ThresholdBreach]:
    """Return every breach in a snapshot.

    Load thresholds scale with the logical CPU count.
    """
    breaches = []

    level = _level(snapshot.mem_pct, thresholds.memory_warn, thresholds.memory_crit)
    if level:
        limit = thresholds.memory_crit if level == "crit" else thresholds.memory_warn
        breaches.append(ThresholdBreach("memory", "memory", level, snapshot.mem_pct, limit))

    cpus = max(snapshot.cpu_count, 1)
    load_warn = cpus * thresholds.load_warn
    load_crit = cpus * thresholds.load_crit
    level = _level(snapshot.load1, load_warn, load_crit)
    if level:
        limit = load_crit if level == "crit" else load_warn
        breaches.append(ThresholdBreach("load", "load", level, snapshot.load1, limit))

    for reading in snapshot.temps:
        level = _level(reading.celsius, thresholds.temp_warn, thresholds.temp_crit)
        if level:
            limit = thresholds.temp_crit if level == "crit" else thresholds.temp_warn
            breaches.append(ThresholdBreach("temp", reading.label, level, reading.celsius, limit))

    return breaches


def format_report(snapshot: MetricsSnapshot, alert_count: int) -> str:
    """One-line periodic status report."""
    return (
        f"RPT cpu:{snapshot.cpu_pct:.0f} ram:{snapshot.mem_pct:.0f} "
        f"ld:{snapshot.load1:.2f} al:{alert_count} t:0x{snapshot.taint:x}"
    )


@dataclass
class DaemonState:
    """Runtime state of the daemon."""

    running: bool = False
    check_count: int = 0
    report_count: int = 0
    last_check_time: datetime | None = None


class Daemon:
    """Runs the monitor loops plus threshold checks and periodic reports."""

    def __init__(
        self,
        config: Config,
        monitor: Monitor | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.state = DaemonState()
        self.shutdown = ShutdownContext(config.sampling.sleep_slice)
        self.report_requests = RequestChannel()
        self.alert_log = AlertLog(config.alert_log_path, config.alerts.log_max_bytes)

        if monitor is None:
            publisher = SnapshotPublisher(
                history_size=config.sampling.history_size,
                alert_capacity=config.alerts.capacity,
                alert_log=self.alert_log,
            )
            monitor = Monitor.from_config(config, shutdown=self.shutdown, publisher=publisher)
        else:
            monitor.shutdown = self.shutdown
        self.monitor = monitor

        self._clock = clock
        self._last_report = 0.0
        self._active_breaches: dict[tuple[str, str], str] = {}
        self._echoed: set[str] = set()

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    def start(self) -> None:
        """Start the monitor threads and write the PID file.

        Raises:
            RuntimeError: If another daemon is already running.
        """
        from importlib.metadata import PackageNotFoundError, version

        try:
            ver = version("cyber-watchdog")
        except PackageNotFoundError:
            ver = "unknown"
        log.info("daemon_starting", version=ver)
        cw_log.version_info("cyber-watchdog", ver)
        log.info(
            "daemon_config",
            tick_interval=self.config.sampling.tick_interval,
            scan_interval=self.config.sampling.scan_interval,
            alert_capacity=self.config.alerts.capacity,
            report_interval=self.config.daemon.report_interval,
        )
        cw_log.config_summary(
            self.config.sampling.tick_interval,
            self.config.sampling.scan_interval,
            self.config.alerts.capacity,
        )

        if self._check_already_running():
            log.error("daemon_already_running")
            raise RuntimeError("Daemon is already running")

        self._write_pid_file()
        self.alert_log.note("INF", f"Daemon v{ver}")

        self.monitor.start()
        if self.monitor.scanner.kmsg is not None and not self.monitor.scanner.kmsg.is_open:
            cw_log.kmsg_unavailable()

        self._last_report = self._clock()
        self.state.running = True
        log.info("daemon_started")
        cw_log.daemon_started()

    def stop(self) -> None:
        """Stop the monitor threads and remove the PID file."""
        log.info("daemon_stopping")
        cw_log.daemon_stopping()
        self.state.running = False
        self.monitor.stop(timeout=5.0)
        self.alert_log.note("INF", "Stop")
        self.alert_log.close()
        self._remove_pid_file()
        log.info("daemon_stopped")
        cw_log.daemon_stopped()

    def install_signal_handlers(self) -> None:
        """SIGTERM/SIGINT stop the daemon; SIGUSR1 requests a report."""
        for sig in (signal.SIGTERM, signal.SIGINT, signal.SIGUSR1):
            signal.signal(sig, self._handle_signal)

    def _handle_signal(self, signum: int, frame: object) -> None:
        sig = signal.Signals(signum)
        log.info("signal_received", signal=sig.name)
        cw_log.signal_received(sig.name)
        if sig == signal.SIGUSR1:
            self.request_report()
        else:
            self.shutdown.request()

    def request_report(self) -> None:
        """Write a report line at the next wake instead of waiting out the interval."""
        self.report_requests.request()

    def run(self) -> None:
        """Check thresholds every scan interval until shutdown."""
        interval = self.config.sampling.scan_interval
        while not self.shutdown.requested:
            self.check_once()
            if not self.shutdown.sleep(interval, wake=self.report_requests):
                break

    # ─────────────────────────────────────────────────────────────────────────
    # Consumer iteration
    # ─────────────────────────────────────────────────────────────────────────

    def check_once(self) -> list[ThresholdBreach]:
        """Run threshold checks, echo new alerts, and report if due.

        Breaches are logged when their level changes, not on every check.
        """
        snapshot = self.monitor.publisher.read_metrics()
        view = self.monitor.publisher.read_alerts()

        breaches = check_thresholds(snapshot, self.config.thresholds)
        current: dict[tuple[str, str], str] = {}
        for breach in breaches:
            key = (breach.kind, breach.key)
            current[key] = breach.level
            if self._active_breaches.get(key) != breach.level:
                tag = "CRT" if breach.level == "crit" else "WRN"
                self.alert_log.note(tag, f"{breach.kind.capitalize()} {breach.detail}")
                log.warning(
                    "threshold_breach",
                    kind=breach.kind,
                    key=breach.key,
                    level=breach.level,
                    value=breach.value,
                    limit=breach.limit,
                )
                cw_log.threshold_breach(breach.kind, breach.level, breach.detail)
        for key in self._active_breaches.keys() - current.keys():
            log.info("threshold_cleared", kind=key[0], key=key[1])
        self._active_breaches = current

        for alert in view.alerts:
            if alert.raw not in self._echoed:
                cw_log.alert_raised(alert)
        self._echoed = {a.raw for a in view.alerts}

        now = self._clock()
        requested = self.report_requests.consume()
        if requested or now - self._last_report >= self.config.daemon.report_interval:
            self.report(snapshot, view.count)
            self._last_report = now

        self.state.check_count += 1
        self.state.last_check_time = datetime.now()
        if self.state.check_count % HEARTBEAT_EVERY == 0:
            self._heartbeat(view.count)
        return breaches

    def report(self, snapshot: MetricsSnapshot, alert_count: int) -> str:
        line = format_report(snapshot, alert_count)
        self.alert_log.note("INF", line)
        log.info("report", line=line)
        cw_log.report(line)
        self.state.report_count += 1
        return line

    def _heartbeat(self, alert_count: int) -> None:
        rss_mb = psutil.Process().memory_info().rss / (1024 * 1024)
        log.info(
            "heartbeat",
            checks=self.state.check_count,
            ticks=self.monitor.publisher.tick_count,
            alerts=alert_count,
            rss_mb=round(rss_mb, 1),
        )
        cw_log.heartbeat(self.monitor.publisher.tick_count, alert_count, rss_mb)

    # ─────────────────────────────────────────────────────────────────────────
    # PID file
    # ─────────────────────────────────────────────────────────────────────────

    def _write_pid_file(self) -> None:
        """Write PID file."""
        self.config.pid_path.parent.mkdir(parents=True, exist_ok=True)
        self.config.pid_path.write_text(str(os.getpid()))
        log.debug("pid_file_written", path=str(self.config.pid_path))

    def _remove_pid_file(self) -> None:
        """Remove PID file."""
        if self.config.pid_path.exists():
            self.config.pid_path.unlink()
            log.debug("pid_file_removed")

    def _check_already_running(self) -> bool:
        """Check if daemon is already running.

        Verifies the PID belongs to a cyber-watchdog process, so a PID reused
        after a reboot doesn't block startup.
        """
        if not self.config.pid_path.exists():
            return False

        try:
            pid = int(self.config.pid_path.read_text().strip())
        except ValueError:
            log.warning("pid_file_invalid", reason="not a number")
            self._remove_pid_file()
            return False

        if pid == os.getpid():
            return False

        try:
            proc = psutil.Process(pid)
            cmdline_str = " ".join(proc.cmdline()).lower()
            if "cyber-watchdog" in cmdline_str or "cyber_watchdog" in cmdline_str:
                log.info("daemon_already_running_verified", pid=pid)
                cw_log.already_running(pid)
                return True
            log.warning("pid_file_stale", reason="different process", pid=pid)
            cw_log.stale_pid_file(pid, proc.name())
            self._remove_pid_file()
            return False
        except psutil.NoSuchProcess:
            log.warning("pid_file_stale", reason="process not found", pid=pid)
            cw_log.stale_pid_not_found(pid)
            self._remove_pid_file()
            return False
        except psutil.AccessDenied:
            log.warning("pid_check_access_denied", pid=pid)
            cw_log.pid_verify_failed(pid)
            return True


def read_daemon_pid(config: Config) -> int | None:
    """Return the running daemon's PID from the PID file, or None."""
    try:
        pid = int(config.pid_path.read_text().strip())
    except (OSError, ValueError):
        return None
    return pid if psutil.pid_exists(pid) else None


def run_daemon(config: Config | None = None) -> None:
    """Run the daemon until SIGTERM/SIGINT.

    Args:
        config: Optional config, loads from file if not provided
    """
    if config is None:
        config = Config.load()
    if not config.config_path.exists():
        config.save()
        cw_log.config_created(str(config.config_path))

    cw_log.configure(config)

    daemon = Daemon(config)
    daemon.install_signal_handlers()
    daemon.start()
    try:
        daemon.run()
    except Exception as e:
        log.exception("daemon_crashed", error=str(e))
        raise
    finally:
        daemon.stop()
