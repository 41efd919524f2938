"""Metrics and log-scan loops.

Two worker threads feed the SnapshotPublisher:

- metrics loop: sample() then publish_tick(), every tick_interval
- scan loop: drain log sources, classify, publish_scan(), every scan_interval

Cancellation is cooperative. Each loop checks the ShutdownContext at the
top of every iteration and sleeps in short slices, so stop() returns within
roughly one slice plus whatever the current iteration is doing.
"""

import threading
import time
from collections.abc import Sequence

import structlog

from cyber_watchdog.alerts import AlertLog
from cyber_watchdog.classifier import LogClassifier
from cyber_watchdog.config import Config
from cyber_watchdog.models import AlertRecord, MetricsSnapshot, Severity, now_stamp
from cyber_watchdog.publisher import SnapshotPublisher
from cyber_watchdog.readers import (
    CommandRunner,
    CommandSource,
    KmsgReader,
    Runner,
    default_command_sources,
)
from cyber_watchdog.sampler import MetricSampler

log = structlog.get_logger()

MIN_LINE_LENGTH = 10


class ShutdownContext:
    """Shared run flag with interruptible sleeps."""

    def __init__(self, sleep_slice: float = 0.1) -> None:
        self.sleep_slice = sleep_slice
        self._event = threading.Event()

    @property
    def requested(self) -> bool:
        return self._event.is_set()

    def request(self) -> None:
        """Ask every loop sharing this context to stop."""
        self._event.set()

    def sleep(self, seconds: float, wake: "RequestChannel | None" = None) -> bool:
        """Sleep in slices until ``seconds`` pass, shutdown, or ``wake`` is pending.

        Returns:
            False if shutdown was requested, True otherwise.
        """
        deadline = time.monotonic() + seconds
        while not self._event.is_set():
            if wake is not None and wake.pending:
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return True
            self._event.wait(min(self.sleep_slice, remaining))
        return False


class RequestChannel:
    """One-shot out-of-band request. Repeated requests before consumption coalesce."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pending = False

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._pending

    def request(self) -> None:
        with self._lock:
            self._pending = True

    def consume(self) -> bool:
        """Clear the request. Returns whether one was pending."""
        with self._lock:
            was_pending = self._pending
            self._pending = False
            return was_pending


class LogScanner:
    """Collects and classifies new log lines from every source."""

    def __init__(
        self,
        classifier: LogClassifier | None = None,
        kmsg: KmsgReader | None = None,
        sources: Sequence[CommandSource] = (),
        runner: Runner | None = None,
        min_severity: Severity = Severity.WARNING,
    ) -> None:
        self.classifier = classifier or LogClassifier()
        self.kmsg = kmsg
        self.sources = tuple(sources)
        self._runner = runner or CommandRunner()
        self.min_severity = min_severity

    def start(self) -> None:
        if self.kmsg is not None:
            self.kmsg.start()

    def stop(self) -> None:
        if self.kmsg is not None:
            self.kmsg.stop()

    def scan(self) -> list[AlertRecord]:
        """Read every source once and return candidate alerts.

        Lines shorter than MIN_LINE_LENGTH, unmatched command lines, and
        results below min_severity are dropped.
        """
        candidates: list[AlertRecord] = []

        if self.kmsg is not None:
            for entry in self.kmsg.drain():
                alert = self._classify(entry.message, "kmsg", entry.level)
                if alert is not None:
                    candidates.append(alert)

        for source in self.sources:
            for line in source.read_lines(self._runner):
                alert = self._classify(line, source.name, None)
                if alert is not None:
                    candidates.append(alert)
        return candidates

    def _classify(self, line: str, source: str, level: int | None) -> AlertRecord | None:
        if len(line) < MIN_LINE_LENGTH:
            return None
        result = self.classifier.classify(line, level)
        if result is None or result.severity < self.min_severity:
            return None
        return AlertRecord(
            timestamp=now_stamp(),
            source=source,
            subsystem=result.subsystem,
            message=line.strip(),
            raw=line,
            severity=result.severity,
        )


class Monitor:
    """Owns the sampler, scanner and publisher, and runs both loops."""

    def __init__(
        self,
        sampler: MetricSampler,
        scanner: LogScanner,
        publisher: SnapshotPublisher,
        shutdown: ShutdownContext | None = None,
        tick_interval: float = 0.8,
        scan_interval: float = 5.0,
    ) -> None:
        self.sampler = sampler
        self.scanner = scanner
        self.publisher = publisher
        self.shutdown = shutdown or ShutdownContext()
        self.tick_interval = tick_interval
        self.scan_interval = scan_interval

        self.tick_requests = RequestChannel()
        self.scan_requests = RequestChannel()
        self._threads: list[threading.Thread] = []

    @classmethod
    def from_config(
        cls,
        config: Config,
        shutdown: ShutdownContext | None = None,
        publisher: SnapshotPublisher | None = None,
    ) -> "Monitor":
        """Build a monitor wired to the real kernel interfaces."""
        runner = CommandRunner(timeout=config.sampling.command_timeout)
        if publisher is None:
            publisher = SnapshotPublisher(
                history_size=config.sampling.history_size,
                alert_capacity=config.alerts.capacity,
                alert_log=AlertLog(config.alert_log_path, config.alerts.log_max_bytes),
            )
        return cls(
            sampler=MetricSampler(runner=runner),
            scanner=LogScanner(
                kmsg=KmsgReader(),
                sources=default_command_sources(config.alerts.journal_lines),
                runner=runner,
                min_severity=config.min_severity,
            ),
            publisher=publisher,
            shutdown=shutdown or ShutdownContext(config.sampling.sleep_slice),
            tick_interval=config.sampling.tick_interval,
            scan_interval=config.sampling.scan_interval,
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Single iterations
    # ─────────────────────────────────────────────────────────────────────────

    def tick_once(self) -> MetricsSnapshot:
        """Sample and publish. Sampling happens outside the publisher's locks."""
        snapshot = self.sampler.sample()
        self.publisher.publish_tick(snapshot)
        return snapshot

    def scan_once(self) -> list[AlertRecord]:
        """Scan and publish. Returns newly accepted alerts."""
        candidates = self.scanner.scan()
        return self.publisher.publish_scan(candidates)

    def trigger_tick_now(self) -> None:
        self.tick_requests.request()

    def trigger_scan_now(self) -> None:
        self.scan_requests.request()

    # ─────────────────────────────────────────────────────────────────────────
    # Loops
    # ─────────────────────────────────────────────────────────────────────────

    def start(self) -> None:
        """Open log sources and start both worker threads."""
        if self._threads:
            return
        self.scanner.start()
        self._threads = [
            threading.Thread(target=self._metrics_loop, name="metrics", daemon=True),
            threading.Thread(target=self._scan_loop, name="scan", daemon=True),
        ]
        for t in self._threads:
            t.start()
        log.info("monitor_started", tick=self.tick_interval, scan=self.scan_interval)

    def stop(self, timeout: float | None = None) -> None:
        """Request shutdown and join the threads.

        Log sources are closed by the scan thread as it exits, so a thread that
        outlives ``timeout`` never reads from a closed descriptor.
        """
        self.shutdown.request()
        for t in self._threads:
            t.join(timeout)
        alive = [t for t in self._threads if t.is_alive()]
        if alive:
            log.warning("monitor_threads_still_running", threads=[t.name for t in alive])
        self._threads = alive
        log.info("monitor_stopped")

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def _metrics_loop(self) -> None:
        while not self.shutdown.requested:
            self.tick_requests.consume()
            try:
                self.tick_once()
            except Exception:
                log.exception("tick_failed")
            if not self.shutdown.sleep(self.tick_interval, wake=self.tick_requests):
                break

    def _scan_loop(self) -> None:
        try:
            while not self.shutdown.requested:
                self.scan_requests.consume()
                try:
                    self.scan_once()
                except Exception:
                    log.exception("scan_failed")
                if not self.shutdown.sleep(self.scan_interval, wake=self.scan_requests):
                    break
        finally:
            self.scanner.stop()
