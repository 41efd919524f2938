"""Data model for cyber-watchdog.

Snapshots and alerts are immutable: the sampler builds a fresh
MetricsSnapshot every tick and the publisher swaps it in wholesale.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum


class Severity(IntEnum):
    """Ordered alert severity taxonomy (higher is more severe)."""

    DEBUG = 0
    INFO = 1
    NOTICE = 2
    WARNING = 3
    ERROR = 4
    CRITICAL = 5
    EMERGENCY = 6

    @property
    def tag(self) -> str:
        """Three-letter tag used in the alert log and displays."""
        return SEVERITY_TAGS[self]

    @classmethod
    def from_name(cls, name: str) -> "Severity":
        """Look up a severity by case-insensitive name.

        Raises:
            ValueError: If the name is not a known severity.
        """
        try:
            return cls[name.strip().upper()]
        except KeyError:
            valid = [s.name.lower() for s in cls]
            raise ValueError(f"Unknown severity: {name!r}. Valid: {valid}") from None


SEVERITY_TAGS = {
    Severity.DEBUG: "DBG",
    Severity.INFO: "INF",
    Severity.NOTICE: "NOT",
    Severity.WARNING: "WRN",
    Severity.ERROR: "ERR",
    Severity.CRITICAL: "CRT",
    Severity.EMERGENCY: "EMG",
}

SUBSYSTEMS = ("GPU", "Network", "USB", "Kernel", "Storage", "Thermal", "Memory")


@dataclass(frozen=True)
class TempReading:
    """One hardware-monitor temperature channel."""

    label: str
    celsius: float


@dataclass(frozen=True)
class GpuState:
    """GPU query result. present=False means every field is zero."""

    present: bool = False
    name: str = ""
    utilization: float = 0.0
    memory: float = 0.0
    temperature: float = 0.0


@dataclass(frozen=True)
class Pressure:
    """Pressure-stall avg10 percentages."""

    cpu: float = 0.0
    mem_some: float = 0.0
    mem_full: float = 0.0
    io: float = 0.0


@dataclass(frozen=True)
class MetricsSnapshot:
    """Point-in-time host health record.

    Memory figures are MB, network rates KB/s, everything ending in
    ``_pct`` is 0-100.
    """

    timestamp: float = 0.0
    # CPU
    cpu_pct: float = 0.0
    cores_pct: tuple[float, ...] = ()
    # Memory
    mem_total_mb: int = 0
    mem_used_mb: int = 0
    mem_available_mb: int = 0
    mem_cache_mb: int = 0
    mem_slab_mb: int = 0
    mem_pct: float = 0.0
    swap_total_mb: int = 0
    swap_used_mb: int = 0
    swap_pct: float = 0.0
    # Disk / network
    disk_pct: float = 0.0
    rx_kbs: float = 0.0
    tx_kbs: float = 0.0
    # GPU / sensors
    gpu: GpuState = field(default_factory=GpuState)
    temps: tuple[TempReading, ...] = ()
    # Host
    kernel: str = ""
    hostname: str = ""
    uptime_hours: float = 0.0
    load1: float = 0.0
    load5: float = 0.0
    load15: float = 0.0
    process_count: int = 0
    cpu_count: int = 1
    taint: int = 0
    pressure: Pressure = field(default_factory=Pressure)

    @property
    def taint_flags(self) -> list[str]:
        """Human-readable taint flags for this snapshot."""
        return decode_taint(self.taint)


@dataclass(frozen=True)
class AlertRecord:
    """A classified log line.

    ``raw`` is the dedup key: two alerts are duplicates iff their raw text
    is identical.
    """

    timestamp: str
    source: str
    subsystem: str
    message: str
    raw: str
    severity: Severity

    def to_dict(self) -> dict:
        """Serialize to a dictionary."""
        return {
            "timestamp": self.timestamp,
            "source": self.source,
            "subsystem": self.subsystem,
            "message": self.message,
            "raw": self.raw,
            "severity": self.severity.name.lower(),
        }


@dataclass(frozen=True)
class NetInterface:
    """A non-loopback network interface with an IPv4 address."""

    name: str
    ip: str
    mac: str
    state: str


@dataclass(frozen=True)
class MountInfo:
    """A mounted filesystem as reported by df."""

    mountpoint: str
    fstype: str
    percent: float
    total_gb: int
    used_gb: int


# Bit i of /proc/sys/kernel/tainted
TAINT_FLAGS = (
    "Proprietary(P)",
    "ForceLoad(F)",
    "SMP(S)",
    "ForceUnload(R)",
    "MCE(M)",
    "BadPage(B)",
    "UserTaint(U)",
    "OOPS(D)",
    "ACPI(A)",
    "Warning(W)",
    "Staging(C)",
    "Workaround(I)",
    "ExtMod(O)",
    "Unsigned(E)",
    "SoftLockup(L)",
    "LivePatch(K)",
    "Aux(X)",
    "Randstruct(T)",
)


def decode_taint(taint: int) -> list[str]:
    """Decode a kernel taint bitmask into flag names.

    Returns ["clean"] for 0. Bits beyond the known flag table are ignored.
    """
    if not taint:
        return ["clean"]
    return [name for bit, name in enumerate(TAINT_FLAGS) if taint & (1 << bit)]


def now_stamp() -> str:
    """Local wall-clock timestamp used on alert records."""
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")
