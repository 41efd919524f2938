"""Snapshot publisher: the shared state between loops and consumers.

Two independently locked regions:

- metrics: the latest MetricsSnapshot and the rolling history
- alerts: the AlertStore

A tick never waits on a scan and vice versa. Readers get copies, so a
consumer that reads both regions may see metrics and alerts from different
cycles.
"""

import threading
import time
from dataclasses import dataclass

import structlog

from cyber_watchdog.alerts import AlertLog, AlertStore
from cyber_watchdog.history import MetricHistory
from cyber_watchdog.models import AlertRecord, MetricsSnapshot

log = structlog.get_logger()


@dataclass(frozen=True)
class AlertsView:
    """Copy-out view of the alert store."""

    alerts: tuple[AlertRecord, ...]
    count: int
    last_scan: float  # Epoch seconds, 0 before the first scan


class SnapshotPublisher:
    """Owns the metrics snapshot, history, and alert store."""

    def __init__(
        self,
        history_size: int = 120,
        alert_capacity: int = 500,
        alert_log: AlertLog | None = None,
    ) -> None:
        self._metrics_lock = threading.Lock()
        self._snapshot = MetricsSnapshot()
        self._history = MetricHistory(capacity=history_size)
        self._ticks = 0

        self._alerts_lock = threading.Lock()
        self._store = AlertStore(capacity=alert_capacity)
        self._last_scan = 0.0

        self._alert_log = alert_log

    # ─────────────────────────────────────────────────────────────────────────
    # Writers
    # ─────────────────────────────────────────────────────────────────────────

    def publish_tick(self, snapshot: MetricsSnapshot) -> None:
        """Swap in a new snapshot and append it to history."""
        with self._metrics_lock:
            self._snapshot = snapshot
            self._history.record(snapshot)
            self._ticks += 1

    def publish_scan(self, candidates: list[AlertRecord]) -> list[AlertRecord]:
        """Offer candidates to the store.

        The alert log is written after the lock is released.

        Returns:
            The candidates that were accepted, in offer order.
        """
        with self._alerts_lock:
            accepted = [c for c in candidates if self._store.offer(c)]
            self._last_scan = time.time()

        for alert in accepted:
            log.info(
                "alert_accepted",
                origin=alert.source,
                subsystem=alert.subsystem,
                severity=alert.severity.name.lower(),
                message=alert.message,
            )
        if accepted and self._alert_log is not None:
            self._alert_log.write(accepted)
        return accepted

    # ─────────────────────────────────────────────────────────────────────────
    # Readers
    # ─────────────────────────────────────────────────────────────────────────

    def read_metrics(self) -> MetricsSnapshot:
        """Latest snapshot (immutable, so safe to hand out)."""
        with self._metrics_lock:
            return self._snapshot

    def read_history(self, metric: str) -> list[float]:
        with self._metrics_lock:
            return self._history.get(metric)

    @property
    def tick_count(self) -> int:
        with self._metrics_lock:
            return self._ticks

    def read_alerts(self) -> AlertsView:
        with self._alerts_lock:
            return AlertsView(
                alerts=tuple(self._store.snapshot()),
                count=self._store.count(),
                last_scan=self._last_scan,
            )

    def alert_count(self) -> int:
        with self._alerts_lock:
            return self._store.count()
