"""Shared test fixtures for cyber-watchdog."""

import logging
from collections.abc import Iterator
from contextlib import ExitStack
from pathlib import Path
from unittest.mock import patch

import pytest
import structlog

from cyber_watchdog.config import Config
from cyber_watchdog.models import AlertRecord, MetricsSnapshot, Severity, TempReading


def make_alert(
    raw: str = "usb 1-1: device descriptor read error",
    subsystem: str = "USB",
    severity: Severity = Severity.ERROR,
    source: str = "kmsg",
    timestamp: str = "2024-01-01 12:00:00",
    message: str | None = None,
) -> AlertRecord:
    """Create an AlertRecord for testing. message defaults to raw."""
    return AlertRecord(
        timestamp=timestamp,
        source=source,
        subsystem=subsystem,
        message=message if message is not None else raw,
        raw=raw,
        severity=severity,
    )


def make_snapshot(
    cpu_pct: float = 10.0,
    mem_pct: float = 40.0,
    load1: float = 0.5,
    cpu_count: int = 4,
    temps: tuple[TempReading, ...] = (),
    **kwargs,
) -> MetricsSnapshot:
    """Create a MetricsSnapshot with the fields tests usually care about."""
    return MetricsSnapshot(
        cpu_pct=cpu_pct,
        mem_pct=mem_pct,
        load1=load1,
        cpu_count=cpu_count,
        temps=temps,
        **kwargs,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Fake /proc and /sys trees
# ─────────────────────────────────────────────────────────────────────────────

PROC_STAT = """\
cpu  100 0 50 800 50 0 0 0 0 0
cpu0 50 0 25 400 25 0 0 0 0 0
cpu1 50 0 25 400 25 0 0 0 0 0
intr 12345
ctxt 67890
"""

MEMINFO = """\
MemTotal:        8000000 kB
MemFree:         1000000 kB
MemAvailable:    4000000 kB
Buffers:          200000 kB
Cached:          2048000 kB
Slab:             102400 kB
SwapTotal:       2048000 kB
SwapFree:        1024000 kB
"""

NET_DEV = """\
Inter-|   Receive                                                |  Transmit
 face |bytes    packets errs drop fifo frame compressed multicast|bytes    packets errs drop fifo colls carrier compressed
    lo: 999999     100    0    0    0     0          0         0   999999     100    0    0    0     0       0          0
  eth0: 1024000    500    0    0    0     0          0         0   512000     300    0    0    0     0       0          0
"""

PSI_CPU = "some avg10=1.50 avg60=0.80 avg300=0.20 total=123456\n"
PSI_MEMORY = (
    "some avg10=2.25 avg60=1.00 avg300=0.50 total=1000\n"
    "full avg10=0.75 avg60=0.30 avg300=0.10 total=500\n"
)
PSI_IO = (
    "some avg10=4.00 avg60=2.00 avg300=1.00 total=2000\n"
    "full avg10=3.00 avg60=1.00 avg300=0.50 total=1500\n"
)


def write_file(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


@pytest.fixture
def fake_proc(tmp_path: Path) -> Path:
    """A minimal /proc tree with every file the sampler reads."""
    proc = tmp_path / "proc"
    write_file(proc / "stat", PROC_STAT)
    write_file(proc / "meminfo", MEMINFO)
    write_file(proc / "net" / "dev", NET_DEV)
    write_file(proc / "loadavg", "0.50 0.40 0.30 2/345 6789\n")
    write_file(proc / "uptime", "7200.00 14000.00\n")
    write_file(proc / "pressure" / "cpu", PSI_CPU)
    write_file(proc / "pressure" / "memory", PSI_MEMORY)
    write_file(proc / "pressure" / "io", PSI_IO)
    write_file(proc / "sys" / "kernel" / "tainted", "4097\n")
    for pid in ("1", "42", "1234"):
        (proc / pid).mkdir()
    (proc / "self-not-a-pid").mkdir()
    return proc


@pytest.fixture
def fake_sys(tmp_path: Path) -> Path:
    """A /sys tree with two hwmon controllers."""
    sys_root = tmp_path / "sys"
    hwmon0 = sys_root / "class" / "hwmon" / "hwmon0"
    write_file(hwmon0 / "name", "coretemp\n")
    write_file(hwmon0 / "temp1_input", "45000\n")
    write_file(hwmon0 / "temp1_label", "Package id 0\n")
    write_file(hwmon0 / "temp2_input", "47500\n")
    hwmon2 = sys_root / "class" / "hwmon" / "hwmon2"
    write_file(hwmon2 / "name", "nvme\n")
    write_file(hwmon2 / "temp1_input", "38000\n")
    return sys_root


# ─────────────────────────────────────────────────────────────────────────────
# Config paths
# ─────────────────────────────────────────────────────────────────────────────


def _patch_config_paths(stack: ExitStack, base_path: Path) -> None:
    """Point every Config path property at base_path."""
    # fmt: off
    stack.enter_context(patch.object(
        Config, "config_dir",
        new_callable=lambda: property(lambda self: base_path / "config")
    ))
    stack.enter_context(patch.object(
        Config, "state_dir",
        new_callable=lambda: property(lambda self: base_path / "state")
    ))
    stack.enter_context(patch.object(
        Config, "runtime_dir",
        new_callable=lambda: property(lambda self: base_path / "run")
    ))
    # fmt: on


@pytest.fixture
def patched_config_paths(tmp_path: Path) -> Iterator[Path]:
    """Patch Config path properties to live under tmp_path.

    Yields the base path for tests that need to reference it directly.
    """
    with ExitStack() as stack:
        _patch_config_paths(stack, tmp_path)
        yield tmp_path


@pytest.fixture
def restore_logging() -> Iterator[None]:
    """Undo structlog and root-logger configuration made by the test."""
    yield
    structlog.reset_defaults()
    root = logging.getLogger()
    for handler in list(root.handlers):
        handler.close()
        root.removeHandler(handler)


# ─────────────────────────────────────────────────────────────────────────────
# Fakes
# ─────────────────────────────────────────────────────────────────────────────


class FakeClock:
    """Monotonic clock the test advances by hand."""

    def __init__(self, now: float = 100.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeKmsg:
    """Stands in for KmsgReader, handing out queued lines."""

    def __init__(self, lines: list | None = None) -> None:
        self.pending = list(lines or [])
        self.started = False
        self.stopped = False

    @property
    def is_open(self) -> bool:
        return self.started and not self.stopped

    def start(self) -> bool:
        self.started = True
        return True

    def stop(self) -> None:
        self.stopped = True

    def drain(self) -> list:
        lines, self.pending = self.pending, []
        return lines


class FakeSampler:
    """Returns snapshots whose cpu_pct counts the calls."""

    def __init__(self) -> None:
        self.calls = 0

    def sample(self) -> MetricsSnapshot:
        self.calls += 1
        return make_snapshot(cpu_pct=float(self.calls))
