"""Alert store and the persistent alert log."""

import logging
import logging.handlers
from collections import deque
from collections.abc import Iterator
from pathlib import Path

import structlog

from cyber_watchdog.models import AlertRecord, now_stamp

log = structlog.get_logger()


class AlertStore:
    """Deduplicated, capacity-bounded, insertion-ordered alerts.

    No two stored records share raw text. When full, accepting a new record
    evicts the oldest, whose raw text may then be accepted again.
    Not thread-safe; the publisher guards it with the alerts lock.
    """

    def __init__(self, capacity: int = 500) -> None:
        self._records: deque[AlertRecord] = deque()
        self._keys: set[str] = set()
        self._capacity = capacity

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[AlertRecord]:
        return iter(list(self._records))

    def __contains__(self, raw: object) -> bool:
        return raw in self._keys

    @property
    def capacity(self) -> int:
        return self._capacity

    def count(self) -> int:
        """Return the number of stored alerts."""
        return len(self._records)

    def offer(self, candidate: AlertRecord) -> bool:
        """Store a candidate unless its raw text is already present.

        Returns:
            True if the candidate was accepted.
        """
        if candidate.raw in self._keys:
            return False
        self._records.append(candidate)
        self._keys.add(candidate.raw)
        while len(self._records) > self._capacity:
            evicted = self._records.popleft()
            self._keys.discard(evicted.raw)
        return True

    def snapshot(self) -> list[AlertRecord]:
        """Return a copy of the stored alerts, oldest first."""
        return list(self._records)

    def clear(self) -> None:
        self._records.clear()
        self._keys.clear()


def format_alert_line(alert: AlertRecord) -> str:
    """Render one alert log line: ``<timestamp> [TAG] [Subsystem] message``."""
    return f"{alert.timestamp} [{alert.severity.tag}] [{alert.subsystem}] {alert.message}"


class _AlertLogHandler(logging.handlers.RotatingFileHandler):
    """Single-backup rotation that renames the full file to ``<name>.old``."""

    def __init__(self, path: Path, max_bytes: int) -> None:
        super().__init__(path, maxBytes=max_bytes, backupCount=1, encoding="utf-8", delay=True)
        self.namer = lambda name: name.removesuffix(".1") + ".old"
        self.setFormatter(logging.Formatter("%(message)s"))

    def doRollover(self) -> None:
        super().doRollover()
        log.info("alert_log_rotated", path=self.baseFilename)


class AlertLog:
    """Append-only text log of accepted alerts.

    When the file grows past ``max_bytes`` it is renamed to ``<name>.old``
    (replacing any previous one) and a fresh file is started.
    """

    def __init__(self, path: Path, max_bytes: int = 50 * 1024 * 1024) -> None:
        self.path = Path(path)
        self.max_bytes = max_bytes
        self._handler = _AlertLogHandler(self.path, max_bytes)

    @property
    def rotated_path(self) -> Path:
        return self.path.with_name(self.path.name + ".old")

    def write(self, alerts: list[AlertRecord]) -> None:
        """Append alerts, rotating first if the file is over the threshold."""
        self._append([format_alert_line(a) for a in alerts])

    def note(self, tag: str, text: str) -> None:
        """Append a non-alert line (threshold breaches, reports)."""
        self._append([f"{now_stamp()} [{tag}] {text}"])

    def close(self) -> None:
        self._handler.close()

    def _append(self, lines: list[str]) -> None:
        # Write failures are logged, not raised.
        if not lines:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            log.warning("alert_log_write_failed", path=str(self.path), error=str(e))
            return
        for line in lines:
            self._handler.handle(logging.makeLogRecord({"msg": line, "levelno": logging.INFO}))
