"""Source readers: virtual filesystem files, the kernel ring buffer, and
external commands.

Every reader degrades to an empty result instead of raising. Missing files,
failed commands and malformed records all look the same to the caller:
nothing to report this time.
"""

import os
import shutil
import subprocess
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import structlog

from cyber_watchdog.models import MountInfo, NetInterface

log = structlog.get_logger()

# Runs an argv list and returns captured stdout, or "" on any failure.
Runner = Callable[[list[str]], str]

KMSG_PATH = "/dev/kmsg"
KMSG_READ_SIZE = 8192


def read_text(path: str | Path) -> str:
    """Return file contents, or "" if the file can't be read."""
    try:
        return Path(path).read_text(errors="replace")
    except OSError:
        return ""


def read_first_line(path: str | Path) -> str:
    """Return the stripped first line of a file, or ""."""
    lines = read_text(path).strip().splitlines()
    return lines[0].strip() if lines else ""


class CommandRunner:
    """Run external commands with a bounded wall-clock timeout.

    A non-zero exit, a missing binary or a timeout all yield "".
    """

    def __init__(self, timeout: float = 10.0) -> None:
        self.timeout = timeout

    def __call__(self, args: list[str]) -> str:
        try:
            result = subprocess.run(
                args,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=self.timeout,
                stdin=subprocess.DEVNULL,
            )
        except FileNotFoundError:
            log.debug("command_not_found", command=args[0])
            return ""
        except subprocess.TimeoutExpired:
            log.warning("command_timeout", command=args[0], timeout=self.timeout)
            return ""
        except (OSError, subprocess.SubprocessError) as e:
            log.debug("command_failed", command=args[0], error=str(e))
            return ""

        if result.returncode != 0:
            log.debug("command_nonzero_exit", command=args[0], returncode=result.returncode)
            return ""
        return result.stdout


# ─────────────────────────────────────────────────────────────────────────────
# Kernel ring buffer
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class KmsgLine:
    """One ring-buffer record: syslog level (0 = most severe) and message."""

    level: int
    message: str


def parse_kmsg_record(record: str) -> KmsgLine | None:
    """Parse ``priority,sequence,timestamp,flags;message``.

    Continuation lines (after the first newline) are dropped. Returns None
    for records without a ``;`` or with a non-numeric priority.
    """
    header, sep, rest = record.partition(";")
    if not sep:
        return None
    try:
        priority = int(header.split(",", 1)[0])
    except ValueError:
        return None
    message = rest.split("\n", 1)[0]
    return KmsgLine(level=priority & 7, message=message)


class KmsgReader:
    """Non-blocking reader for /dev/kmsg, positioned at end-of-buffer.

    Only messages logged after start() are returned; each drain() reads
    until the device reports no more data.
    """

    def __init__(self, path: str = KMSG_PATH) -> None:
        self.path = path
        self._fd: int | None = None

    @property
    def is_open(self) -> bool:
        return self._fd is not None

    def start(self) -> bool:
        """Open the device and seek to its end. Returns False if unavailable."""
        try:
            fd = os.open(self.path, os.O_RDONLY | os.O_NONBLOCK)
        except OSError as e:
            log.info("kmsg_unavailable", path=self.path, error=str(e))
            return False
        os.lseek(fd, 0, os.SEEK_END)
        self._fd = fd
        return True

    def stop(self) -> None:
        if self._fd is not None:
            os.close(self._fd)
            self._fd = None

    def drain(self) -> list[KmsgLine]:
        """Read every pending record without blocking."""
        if self._fd is None:
            return []

        lines: list[KmsgLine] = []
        while True:
            try:
                data = os.read(self._fd, KMSG_READ_SIZE)
            except BlockingIOError:
                break  # EAGAIN: no more records
            except BrokenPipeError:
                # EPIPE: records were overwritten before we read them; the
                # next read resumes at the oldest surviving record.
                continue
            except OSError as e:
                log.warning("kmsg_read_failed", error=str(e))
                break
            if not data:
                break
            for record in _split_records(data.decode("utf-8", errors="replace")):
                parsed = parse_kmsg_record(record)
                if parsed is not None:
                    lines.append(parsed)
        return lines

    def __enter__(self) -> "KmsgReader":
        self.start()
        return self

    def __exit__(self, *exc: object) -> None:
        self.stop()


def _split_records(chunk: str) -> list[str]:
    """Split a read chunk into records.

    /dev/kmsg returns one record per read, but plain files (and tests) hand
    back several. Continuation lines start with a space and stay attached
    to the record before them.
    """
    records: list[str] = []
    for line in chunk.split("\n"):
        if not line:
            continue
        if line.startswith(" ") and records:
            records[-1] += "\n" + line
        else:
            records.append(line)
    return records


# ─────────────────────────────────────────────────────────────────────────────
# Command-based log sources
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class CommandSource:
    """A log source backed by an external command's stdout."""

    name: str
    args: tuple[str, ...]
    requires: str | None = None  # Binary that must be on PATH to try at all

    def available(self) -> bool:
        return self.requires is None or shutil.which(self.requires) is not None

    def read_lines(self, runner: Runner) -> list[str]:
        if not self.available():
            return []
        return runner(list(self.args)).splitlines()


def default_command_sources(journal_lines: int = 50) -> tuple[CommandSource, ...]:
    """Kernel log dump and journal, both filtered to error-and-above."""
    return (
        CommandSource("dmesg", ("dmesg", "--level=err,crit,alert,emerg", "-T")),
        CommandSource(
            "journal",
            ("journalctl", "-p", "err..emerg", "--no-pager", "-n", str(journal_lines)),
            requires="journalctl",
        ),
    )


# ─────────────────────────────────────────────────────────────────────────────
# Interface and mount enumeration
# ─────────────────────────────────────────────────────────────────────────────


def parse_ip_addr(output: str) -> list[tuple[str, str]]:
    """Parse ``ip -o addr show`` into (interface, ipv4/prefix) pairs, skipping lo."""
    pairs: list[tuple[str, str]] = []
    for line in output.splitlines():
        parts = line.split()
        # "2: eth0    inet 10.0.0.5/24 brd ..." -> ["2:", "eth0", "inet", "10.0.0.5/24", ...]
        if len(parts) < 4 or "inet" not in parts:
            continue
        idx = parts.index("inet")
        if idx + 1 >= len(parts):
            continue
        name = parts[1].rstrip(":")
        if not name or name == "lo":
            continue
        pairs.append((name, parts[idx + 1]))
    return pairs


def list_interfaces(runner: Runner, sys_root: str = "/sys") -> list[NetInterface]:
    """Non-loopback interfaces with IPv4 addresses, state and MAC from sysfs."""
    interfaces = []
    for name, ip in parse_ip_addr(runner(["ip", "-o", "addr", "show"])):
        base = Path(sys_root) / "class" / "net" / name
        interfaces.append(
            NetInterface(
                name=name,
                ip=ip,
                mac=read_first_line(base / "address"),
                state=read_first_line(base / "operstate"),
            )
        )
    return interfaces


DF_ARGS = [
    "df",
    "-T",
    "-x",
    "devtmpfs",
    "-x",
    "tmpfs",
    "-x",
    "squashfs",
    "-x",
    "efivarfs",
]


def parse_df(output: str) -> list[MountInfo]:
    """Parse ``df -T`` output (1K blocks). Malformed rows are skipped."""
    mounts = []
    for line in output.splitlines()[1:]:
        parts = line.split()
        if len(parts) < 7:
            continue
        try:
            size_kb = int(parts[2])
            used_kb = int(parts[3])
            percent = float(parts[5].rstrip("%"))
        except ValueError:
            continue
        mounts.append(
            MountInfo(
                mountpoint=" ".join(parts[6:]),
                fstype=parts[1],
                percent=percent,
                total_gb=size_kb // (1024 * 1024),
                used_gb=used_kb // (1024 * 1024),
            )
        )
    return mounts


def list_mounts(runner: Runner) -> list[MountInfo]:
    """Mounted real filesystems."""
    return parse_df(runner(list(DF_ARGS)))
