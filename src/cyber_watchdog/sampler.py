"""Metric sampler reading /proc and /sys.

sample() never raises: each reader catches its own failures and leaves its
fields at their zero defaults, so one missing file costs one field set,
not the whole tick.

Rates (CPU %, network KB/s) are deltas against the previous sample; the
first sample after construction reports 0 for all of them.
"""

import os
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import structlog

from cyber_watchdog.models import GpuState, MetricsSnapshot, Pressure, TempReading
from cyber_watchdog.readers import CommandRunner, Runner, read_first_line, read_text

log = structlog.get_logger()

HWMON_MAX_CONTROLLERS = 20
HWMON_MAX_CHANNELS = 20


# ─────────────────────────────────────────────────────────────────────────────
# CPU
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class CpuCounters:
    """Jiffy counters from one ``cpu`` line of /proc/stat."""

    user: int = 0
    nice: int = 0
    system: int = 0
    idle: int = 0
    iowait: int = 0
    irq: int = 0
    softirq: int = 0
    steal: int = 0

    @property
    def total(self) -> int:
        return (
            self.user
            + self.nice
            + self.system
            + self.idle
            + self.iowait
            + self.irq
            + self.softirq
            + self.steal
        )

    @property
    def active(self) -> int:
        return self.total - self.idle - self.iowait


def parse_cpu_line(line: str) -> CpuCounters | None:
    """Parse a ``cpu``/``cpuN`` line. Missing trailing fields count as 0."""
    parts = line.split()
    if not parts or not parts[0].startswith("cpu"):
        return None
    try:
        values = [int(v) for v in parts[1:9]]
    except ValueError:
        return None
    values += [0] * (8 - len(values))
    return CpuCounters(*values)


def parse_proc_stat(text: str) -> tuple[CpuCounters | None, list[CpuCounters]]:
    """Return (aggregate, per-core) counters from /proc/stat contents."""
    aggregate = None
    cores: list[CpuCounters] = []
    for line in text.splitlines():
        if line.startswith("cpu "):
            aggregate = parse_cpu_line(line)
        elif line.startswith("cpu") and len(line) > 3 and line[3].isdigit():
            counters = parse_cpu_line(line)
            if counters is not None:
                cores.append(counters)
    return aggregate, cores


def cpu_percent(prev: CpuCounters | None, cur: CpuCounters) -> float:
    """Utilization between two samples: 100 × Δactive / Δtotal.

    Returns 0 without a previous sample or when no time elapsed. Clamped to
    0-100 so a counter reset (CPU hotplug) can't produce nonsense.
    """
    if prev is None:
        return 0.0
    d_total = cur.total - prev.total
    if d_total <= 0:
        return 0.0
    d_active = cur.active - prev.active
    return max(0.0, min(100.0, 100.0 * d_active / d_total))


# ─────────────────────────────────────────────────────────────────────────────
# Memory
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class MemoryUsage:
    """Memory figures in the units /proc/meminfo uses (kB)."""

    total: int
    available: int
    used: int
    percent: float


def parse_meminfo(text: str) -> dict[str, int]:
    """Parse /proc/meminfo into {field: kB}."""
    info: dict[str, int] = {}
    for line in text.splitlines():
        key, sep, rest = line.partition(":")
        if not sep:
            continue
        fields = rest.split()
        if not fields:
            continue
        try:
            info[key.strip()] = int(fields[0])
        except ValueError:
            continue
    return info


def memory_usage(info: dict[str, int]) -> MemoryUsage:
    """Compute used/available memory.

    ``MemAvailable`` is preferred; older kernels without it fall back to
    free + buffers + cached.
    """
    total = info.get("MemTotal", 0)
    available = info.get("MemAvailable")
    if not available:
        available = info.get("MemFree", 0) + info.get("Buffers", 0) + info.get("Cached", 0)
    percent = 100.0 * (1.0 - available / total) if total > 0 else 0.0
    return MemoryUsage(total=total, available=available, used=total - available, percent=percent)


def swap_usage(info: dict[str, int]) -> MemoryUsage:
    """Compute swap usage from SwapTotal/SwapFree."""
    total = info.get("SwapTotal", 0)
    free = info.get("SwapFree", 0)
    used = total - free
    percent = 100.0 * used / total if total > 0 else 0.0
    return MemoryUsage(total=total, available=free, used=used, percent=percent)


# ─────────────────────────────────────────────────────────────────────────────
# Network
# ─────────────────────────────────────────────────────────────────────────────


def parse_net_dev(text: str) -> tuple[int, int]:
    """Sum rx/tx byte counters over all non-loopback interfaces."""
    total_rx = 0
    total_tx = 0
    for line in text.splitlines():
        name, sep, rest = line.partition(":")
        if not sep or name.strip() == "lo":
            continue
        fields = rest.split()
        if len(fields) < 9:
            continue
        try:
            total_rx += int(fields[0])
            total_tx += int(fields[8])
        except ValueError:
            continue
    return total_rx, total_tx


# ─────────────────────────────────────────────────────────────────────────────
# Pressure stall
# ─────────────────────────────────────────────────────────────────────────────


def parse_psi(text: str) -> tuple[float, float]:
    """Return (some avg10, full avg10) from a /proc/pressure file."""
    some = 0.0
    full = 0.0
    for line in text.splitlines():
        parts = line.split()
        if not parts or parts[0] not in ("some", "full"):
            continue
        for item in parts[1:]:
            key, _, value = item.partition("=")
            if key == "avg10":
                try:
                    if parts[0] == "some":
                        some = float(value)
                    else:
                        full = float(value)
                except ValueError:
                    pass
                break
    return some, full


# ─────────────────────────────────────────────────────────────────────────────
# GPU queries
# ─────────────────────────────────────────────────────────────────────────────


class GpuQuery(Protocol):
    """A GPU query strategy. Returns None when it can't report."""

    def query(self) -> GpuState | None: ...


class NvidiaSmiQuery:
    """Query utilization, memory, temperature and name via nvidia-smi."""

    ARGS = [
        "nvidia-smi",
        "--query-gpu=utilization.gpu,utilization.memory,temperature.gpu,name",
        "--format=csv,noheader,nounits",
    ]

    def __init__(self, runner: Runner) -> None:
        self._runner = runner

    def query(self) -> GpuState | None:
        output = self._runner(list(self.ARGS)).strip()
        if not output or "Failed" in output or "not found" in output:
            return None
        first = output.splitlines()[0]
        parts = [p.strip() for p in first.split(",", 3)]
        if len(parts) < 3:
            return None
        try:
            util, mem, temp = (float(p) for p in parts[:3])
        except ValueError:
            return None
        name = parts[3] if len(parts) > 3 else "NVIDIA GPU"
        return GpuState(present=True, name=name, utilization=util, memory=mem, temperature=temp)


class SysfsBusyQuery:
    """Read a DRM card's gpu_busy_percent (amdgpu)."""

    def __init__(self, sys_root: str = "/sys", card: str = "card0") -> None:
        self.path = Path(sys_root) / "class" / "drm" / card / "device" / "gpu_busy_percent"

    def query(self) -> GpuState | None:
        value = read_first_line(self.path)
        if not value:
            return None
        try:
            busy = float(value)
        except ValueError:
            return None
        return GpuState(present=True, name="AMD GPU", utilization=busy)


def first_gpu_state(queries: Sequence[GpuQuery]) -> GpuState:
    """Return the first successful query's result, or an absent GpuState."""
    for p in queries:
        result = p.query()
        if result is not None:
            return result
    return GpuState()


# ─────────────────────────────────────────────────────────────────────────────
# Sampler
# ─────────────────────────────────────────────────────────────────────────────


class MetricSampler:
    """Builds one MetricsSnapshot per call from kernel interfaces.

    Holds the counters needed for delta rates, so a single instance must be
    used by a single loop.
    """

    def __init__(
        self,
        proc_root: str = "/proc",
        sys_root: str = "/sys",
        disk_path: str = "/",
        gpu_queries: Sequence[GpuQuery] | None = None,
        runner: Runner | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.proc_root = Path(proc_root)
        self.sys_root = Path(sys_root)
        self.disk_path = disk_path
        self._runner = runner or CommandRunner()
        self.gpu_queries: tuple[GpuQuery, ...] = tuple(
            gpu_queries
            if gpu_queries is not None
            else (NvidiaSmiQuery(self._runner), SysfsBusyQuery(str(sys_root)))
        )
        self._clock = clock

        self._prev_cpu: CpuCounters | None = None
        self._prev_cores: list[CpuCounters] = []
        self._prev_net: tuple[int, int] | None = None
        self._prev_net_time = 0.0

    def sample(self) -> MetricsSnapshot:
        """Read every source and assemble a snapshot."""
        fields: dict = {"timestamp": time.time()}
        for reader in (
            self._read_cpu,
            self._read_memory,
            self._read_gpu,
            self._read_disk,
            self._read_network,
            self._read_host,
            self._read_temps,
            self._read_pressure,
            self._read_taint,
        ):
            try:
                fields.update(reader())
            except (OSError, ValueError, IndexError) as e:
                log.debug("reader_failed", reader=reader.__name__, error=str(e))
        return MetricsSnapshot(**fields)

    def _read_cpu(self) -> dict:
        text = read_text(self.proc_root / "stat")
        aggregate, cores = parse_proc_stat(text)
        if aggregate is None:
            return {}

        cpu = cpu_percent(self._prev_cpu, aggregate)
        if len(self._prev_cores) == len(cores):
            cores_pct = tuple(cpu_percent(p, c) for p, c in zip(self._prev_cores, cores))
        else:
            cores_pct = tuple(0.0 for _ in cores)

        self._prev_cpu = aggregate
        self._prev_cores = cores
        return {"cpu_pct": cpu, "cores_pct": cores_pct}

    def _read_memory(self) -> dict:
        info = parse_meminfo(read_text(self.proc_root / "meminfo"))
        if not info:
            return {}
        mem = memory_usage(info)
        swap = swap_usage(info)
        return {
            "mem_total_mb": mem.total // 1024,
            "mem_available_mb": mem.available // 1024,
            "mem_used_mb": mem.total // 1024 - mem.available // 1024,
            "mem_pct": mem.percent,
            "mem_cache_mb": info.get("Cached", 0) // 1024,
            "mem_slab_mb": info.get("Slab", 0) // 1024,
            "swap_total_mb": swap.total // 1024,
            "swap_used_mb": swap.used // 1024,
            "swap_pct": swap.percent,
        }

    def _read_gpu(self) -> dict:
        return {"gpu": first_gpu_state(self.gpu_queries)}

    def _read_disk(self) -> dict:
        st = os.statvfs(self.disk_path)
        total = st.f_blocks * st.f_frsize
        avail = st.f_bavail * st.f_frsize
        if total <= 0:
            return {}
        return {"disk_pct": 100.0 * (1.0 - avail / total)}

    def _read_network(self) -> dict:
        text = read_text(self.proc_root / "net" / "dev")
        if not text:
            return {}
        rx, tx = parse_net_dev(text)
        now = self._clock()
        result = {}
        if self._prev_net is not None:
            dt = now - self._prev_net_time
            if dt > 0:
                result = {
                    "rx_kbs": max(0.0, (rx - self._prev_net[0]) / dt / 1024.0),
                    "tx_kbs": max(0.0, (tx - self._prev_net[1]) / dt / 1024.0),
                }
        self._prev_net = (rx, tx)
        self._prev_net_time = now
        return result

    def _read_host(self) -> dict:
        uname = os.uname()
        result: dict = {
            "kernel": uname.release,
            "hostname": uname.nodename,
            "cpu_count": os.cpu_count() or 1,
        }

        uptime = read_text(self.proc_root / "uptime").split()
        try:
            result["uptime_hours"] = float(uptime[0]) / 3600.0
        except (IndexError, ValueError):
            pass

        loadavg = read_text(self.proc_root / "loadavg").split()
        try:
            load1, load5, load15 = (float(v) for v in loadavg[:3])
        except ValueError:
            pass
        else:
            result.update(load1=load1, load5=load5, load15=load15)

        try:
            result["process_count"] = sum(
                1 for entry in os.scandir(self.proc_root) if entry.name.isdigit() and entry.is_dir()
            )
        except OSError:
            pass
        return result

    def _read_temps(self) -> dict:
        temps: list[TempReading] = []
        hwmon = self.sys_root / "class" / "hwmon"
        for h in range(HWMON_MAX_CONTROLLERS):
            base = hwmon / f"hwmon{h}"
            if not base.is_dir():
                continue
            controller = read_first_line(base / "name")
            for channel in range(1, HWMON_MAX_CHANNELS + 1):
                input_path = base / f"temp{channel}_input"
                if not input_path.exists():
                    break
                # A sensor can exist but fail to read (EIO); skip just that channel.
                try:
                    celsius = int(read_first_line(input_path)) / 1000.0
                except ValueError:
                    continue
                label = read_first_line(base / f"temp{channel}_label")
                if label:
                    name = f"{controller}/{label}"
                else:
                    name = f"{controller}/t{channel}"
                temps.append(TempReading(label=name, celsius=celsius))
        return {"temps": tuple(temps)}

    def _read_pressure(self) -> dict:
        pressure_dir = self.proc_root / "pressure"
        cpu_some, _ = parse_psi(read_text(pressure_dir / "cpu"))
        mem_some, mem_full = parse_psi(read_text(pressure_dir / "memory"))
        io_some, _ = parse_psi(read_text(pressure_dir / "io"))
        return {
            "pressure": Pressure(cpu=cpu_some, mem_some=mem_some, mem_full=mem_full, io=io_some)
        }

    def _read_taint(self) -> dict:
        value = read_first_line(self.proc_root / "sys" / "kernel" / "tainted")
        if not value:
            return {}
        return {"taint": int(value)}
