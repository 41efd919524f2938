"""Formatting utilities for consistent output across CLI and TUI."""

from cyber_watchdog.models import AlertRecord, MetricsSnapshot

REPORT_ALERT_LIMIT = 20
REPORT_MESSAGE_WIDTH = 100


def format_rate(kbs: float) -> str:
    """Format a KB/s network rate compactly.

    Returns:
        "512K", "1.5M" (MB/s), or "2.1G" (GB/s)
    """
    if kbs >= 1024 * 1024:
        return f"{kbs / (1024 * 1024):.1f}G"
    if kbs >= 1024:
        return f"{kbs / 1024:.1f}M"
    return f"{kbs:.0f}K"


def format_mb(mb: int) -> str:
    """Format a MB amount, switching to GB above 1024."""
    if mb >= 1024:
        return f"{mb / 1024:.1f}G"
    return f"{mb}M"


def format_uptime(hours: float) -> str:
    """Format uptime as "3d 4h" or "4.2h"."""
    if hours >= 24:
        days = int(hours // 24)
        return f"{days}d {int(hours - days * 24)}h"
    return f"{hours:.1f}h"


def truncate(text: str, width: int) -> str:
    """Cut text to width, marking the cut with "…"."""
    if width <= 0 or len(text) <= width:
        return text
    return text[: width - 1] + "…"


def format_alert(alert: AlertRecord, width: int = REPORT_MESSAGE_WIDTH) -> str:
    """Short alert line: ``[TAG][Subsystem] message``."""
    return f"[{alert.severity.tag}][{alert.subsystem}] {alert.message[:width]}"


def render_report(
    snapshot: MetricsSnapshot,
    alerts: tuple[AlertRecord, ...] | list[AlertRecord],
    alert_count: int,
    limit: int = REPORT_ALERT_LIMIT,
) -> list[str]:
    """Plain-text health report, one entry per output line.

    Lists at most ``limit`` alerts (oldest first); the count line always
    shows the full total.
    """
    s = snapshot
    lines = [
        "=== HEALTH REPORT ===",
        f"Host:{s.hostname} Kern:{s.kernel} Up:{s.uptime_hours:.1f}h CPUs:{s.cpu_count}",
        f"CPU:{s.cpu_pct:.1f}% RAM:{s.mem_used_mb}/{s.mem_total_mb}MB({s.mem_pct:.1f}%) "
        f"Disk:{s.disk_pct:.1f}%",
        f"Load:{s.load1:.2f} {s.load5:.2f} {s.load15:.2f} P:{s.process_count}",
    ]
    if s.swap_total_mb:
        lines.append(f"Swap:{s.swap_used_mb}/{s.swap_total_mb}MB({s.swap_pct:.1f}%)")
    if s.gpu.present:
        lines.append(f"GPU:{s.gpu.name} {s.gpu.utilization:.1f}% T:{s.gpu.temperature:.0f}C")
    lines.append(f"Taint:0x{s.taint:x} {' '.join(s.taint_flags)}")
    p = s.pressure
    lines.append(f"PSI cpu:{p.cpu:.1f}% mem:{p.mem_some:.1f}%(f:{p.mem_full:.1f}%) io:{p.io:.1f}%")
    if s.temps:
        lines.append("Temps:")
        for reading in s.temps:
            lines.append(f"  {reading.label:<30} {reading.celsius:.0f}C")
    lines.append(f"Alerts:{alert_count}")
    for alert in list(alerts)[:limit]:
        lines.append(f"  {format_alert(alert)}")
    return lines
