"""Rolling per-metric history for trend displays.

Each tracked metric keeps up to ``capacity`` recent values (default 120,
about 96 seconds at the default tick).
"""

from collections import deque

from cyber_watchdog.models import MetricsSnapshot

TRACKED_METRICS = ("cpu", "ram", "gpu", "rx", "tx", "load")


class MetricHistory:
    """Fixed-capacity FIFO series keyed by metric name.

    Not thread-safe; the publisher guards it with the metrics lock.
    """

    def __init__(self, capacity: int = 120, metrics: tuple[str, ...] = TRACKED_METRICS) -> None:
        self._capacity = capacity
        self._series: dict[str, deque[float]] = {m: deque(maxlen=capacity) for m in metrics}

    def __len__(self) -> int:
        """Return number of tracked metrics."""
        return len(self._series)

    @property
    def capacity(self) -> int:
        """Return maximum number of values kept per metric."""
        return self._capacity

    @property
    def metrics(self) -> list[str]:
        return list(self._series)

    def append(self, metric: str, value: float) -> None:
        """Push a value, evicting the oldest when the series is full.

        Unknown metric names start a new series.
        """
        series = self._series.get(metric)
        if series is None:
            series = self._series[metric] = deque(maxlen=self._capacity)
        series.append(value)

    def get(self, metric: str) -> list[float]:
        """Return a copy of the series (oldest first), empty if unknown."""
        return list(self._series.get(metric, ()))

    def record(self, snapshot: MetricsSnapshot) -> None:
        """Append one value per tracked metric from a snapshot."""
        self.append("cpu", snapshot.cpu_pct)
        self.append("ram", snapshot.mem_pct)
        self.append("gpu", snapshot.gpu.utilization)
        self.append("rx", snapshot.rx_kbs)
        self.append("tx", snapshot.tx_kbs)
        self.append("load", snapshot.load1)

    def clear(self) -> None:
        """Empty every series."""
        for series in self._series.values():
            series.clear()
