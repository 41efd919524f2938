"""Real-time dashboard for cyber-watchdog.

The TUI runs its own Monitor in-process and polls the publisher on a timer;
it never blocks on sampling or log scans.
"""

import time
from typing import Any

from rich.text import Text
from textual.app import App, ComposeResult
from textual.containers import Horizontal, Vertical
from textual.css.query import NoMatches
from textual.reactive import reactive
from textual.widgets import DataTable, Footer, Label, Static

from cyber_watchdog.config import Config
from cyber_watchdog.formatting import format_mb, format_rate, format_uptime, truncate
from cyber_watchdog.history import TRACKED_METRICS
from cyber_watchdog.logging import severity_style
from cyber_watchdog.models import SUBSYSTEMS, AlertRecord, MetricsSnapshot, Severity
from cyber_watchdog.monitor import Monitor
from cyber_watchdog.publisher import AlertsView
from cyber_watchdog.tui.sparkline import GradientColor, Sparkline

# Severity floors cycled by the "v" key
FILTER_LEVELS = (Severity.WARNING, Severity.ERROR, Severity.CRITICAL, Severity.EMERGENCY)

# Subsystem filters cycled by the "f" key
SUBSYSTEM_FILTERS = ("All", *SUBSYSTEMS)


def filter_alerts(
    alerts: tuple[AlertRecord, ...],
    floor: Severity,
    subsystem: str = "All",
) -> list[AlertRecord]:
    """Alerts at or above ``floor`` in ``subsystem``, newest first for display."""
    return [
        a
        for a in reversed(alerts)
        if a.severity >= floor and (subsystem == "All" or a.subsystem == subsystem)
    ]


def _cycle(options: tuple, current: object) -> object:
    try:
        idx = options.index(current)
    except ValueError:
        return options[0]
    return options[(idx + 1) % len(options)]


def next_filter(current: Severity) -> Severity:
    """The next severity floor in FILTER_LEVELS, wrapping around."""
    return _cycle(FILTER_LEVELS, current)


def next_subsystem(current: str) -> str:
    """The next entry in SUBSYSTEM_FILTERS, wrapping around."""
    return _cycle(SUBSYSTEM_FILTERS, current)


def format_cores(cores: tuple[float, ...], per_line: int = 8) -> list[str]:
    """Per-core utilization as rows of ``N:pct`` cells."""
    cells = [f"{i}:{pct:3.0f}%" for i, pct in enumerate(cores)]
    return [" ".join(cells[i : i + per_line]) for i in range(0, len(cells), per_line)]


class HeaderBar(Static):
    """Host identity, uptime, taint, and alert count."""

    DEFAULT_CSS = """
    HeaderBar {
        height: 3;
        padding: 0 1;
        border: solid green;
        border-title-align: left;
    }

    HeaderBar Horizontal {
        height: 1;
        width: 100%;
    }

    HeaderBar #header-left {
        width: auto;
    }

    HeaderBar #header-right {
        width: 1fr;
        text-align: right;
    }
    """

    worst: reactive[int] = reactive(-1)
    status: reactive[str] = reactive("")

    def compose(self) -> ComposeResult:
        yield Horizontal(
            Label("", id="header-left"),
            Label("", id="header-right"),
        )

    def on_mount(self) -> None:
        self.border_title = "CYBER-WATCHDOG"

    def watch_worst(self, worst: int) -> None:
        colors = self.app.config.tui.colors
        if worst >= Severity.CRITICAL:
            color = colors.critical
        elif worst >= Severity.ERROR:
            color = colors.high
        elif worst >= Severity.WARNING:
            color = colors.warn
        else:
            color = colors.ok
        self.styles.border = ("solid", color)

    def update_from(self, snapshot: MetricsSnapshot, view: AlertsView) -> None:
        try:
            left = self.query_one("#header-left", Label)
            right = self.query_one("#header-right", Label)
        except NoMatches:
            return

        flags = " ".join(snapshot.taint_flags)
        left.update(
            f"{snapshot.hostname or '?'}  {snapshot.kernel}  "
            f"up {format_uptime(snapshot.uptime_hours)}  "
            f"{snapshot.cpu_count} CPUs  {snapshot.process_count} procs  "
            f"taint 0x{snapshot.taint:x} ({flags})"
        )
        scanned = "--"
        if view.last_scan:
            scanned = time.strftime("%H:%M:%S", time.localtime(view.last_scan))
        self.status = f"alerts {view.count}" if view.count else "NOMINAL"
        right.update(f"{self.status}   scan {scanned}")
        self.worst = max((a.severity for a in view.alerts), default=-1)


class MetricRow(Horizontal):
    """Label with current value followed by its history sparkline."""

    DEFAULT_CSS = """
    MetricRow {
        height: auto;
    }

    MetricRow Label {
        width: 16;
    }
    """

    def __init__(
        self,
        metric: str,
        title: str,
        max_value: float | None,
        height: int,
        color_func: Any = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.metric = metric
        self.caption = title
        self._max_value = max_value
        self._height = height
        self._color_func = color_func

    def compose(self) -> ComposeResult:
        yield Label(self.caption, id=f"label-{self.metric}")
        yield Sparkline(
            height=self._height,
            max_value=self._max_value,
            color_func=self._color_func,
            id=f"spark-{self.metric}",
        )

    def set_values(self, current: str, history: list[float]) -> None:
        try:
            self.query_one(f"#label-{self.metric}", Label).update(f"{self.caption} {current}")
            self.query_one(f"#spark-{self.metric}", Sparkline).data = history
        except NoMatches:
            pass


class MetricsPanel(Static):
    """Sparklines for every tracked metric."""

    DEFAULT_CSS = """
    MetricsPanel {
        height: auto;
        border: solid $primary;
        border-title-align: left;
    }
    """

    def compose(self) -> ComposeResult:
        config = self.app.config
        colors = config.tui.colors
        gradient = GradientColor(
            [(0, colors.ok), (50, colors.warn), (75, colors.high), (90, colors.critical)]
        )
        height = config.tui.sparkline_height
        yield MetricRow("cpu", "CPU", 100, height, gradient)
        yield MetricRow("ram", "RAM", 100, height, gradient)
        yield MetricRow("gpu", "GPU", 100, height, gradient)
        yield MetricRow("rx", "RX", None, height, lambda v: colors.accent)
        yield MetricRow("tx", "TX", None, height, lambda v: colors.accent)
        yield MetricRow("load", "LOAD", None, height, lambda v: colors.dim)

    def on_mount(self) -> None:
        self.border_title = "METRICS"

    def update_from(self, snapshot: MetricsSnapshot, histories: dict[str, list[float]]) -> None:
        current = {
            "cpu": f"{snapshot.cpu_pct:5.1f}%",
            "ram": f"{snapshot.mem_pct:5.1f}%",
            "gpu": f"{snapshot.gpu.utilization:5.1f}%" if snapshot.gpu.present else "  n/a",
            "rx": f"{format_rate(snapshot.rx_kbs):>6}",
            "tx": f"{format_rate(snapshot.tx_kbs):>6}",
            "load": f"{snapshot.load1:5.2f}",
        }
        for row in self.query(MetricRow):
            row.set_values(current.get(row.metric, ""), histories.get(row.metric, []))


class SystemPanel(Static):
    """Memory, disk, pressure, GPU and temperature details."""

    DEFAULT_CSS = """
    SystemPanel {
        height: 100%;
        padding: 0 1;
        border: solid $primary;
        border-title-align: left;
    }
    """

    def on_mount(self) -> None:
        self.border_title = "SYSTEM"

    def update_from(self, snapshot: MetricsSnapshot) -> None:
        s = snapshot
        thresholds = self.app.config.thresholds
        colors = self.app.config.tui.colors
        text = Text()
        text.append(
            f"Mem  {format_mb(s.mem_used_mb)}/{format_mb(s.mem_total_mb)}  "
            f"cache {format_mb(s.mem_cache_mb)}  slab {format_mb(s.mem_slab_mb)}\n"
        )
        text.append(
            f"Swap {format_mb(s.swap_used_mb)}/{format_mb(s.swap_total_mb)} ({s.swap_pct:.0f}%)\n"
        )
        for row in format_cores(s.cores_pct, per_line=4):
            text.append(f"Cores {row}\n")
        text.append(f"Disk / {s.disk_pct:.1f}%\n")
        text.append(f"Load {s.load1:.2f} {s.load5:.2f} {s.load15:.2f}\n")
        p = s.pressure
        text.append(f"PSI  cpu {p.cpu:.1f}  mem {p.mem_some:.1f}/{p.mem_full:.1f}  io {p.io:.1f}\n")
        if s.gpu.present:
            text.append(
                f"GPU  {s.gpu.name} {s.gpu.utilization:.0f}% mem {s.gpu.memory:.0f}% "
                f"{s.gpu.temperature:.0f}C\n"
            )
        for reading in s.temps:
            if reading.celsius >= thresholds.temp_crit:
                style = colors.critical
            elif reading.celsius >= thresholds.temp_warn:
                style = colors.warn
            else:
                style = colors.ok
            text.append(f"{truncate(reading.label, 24):<24} ")
            text.append(f"{reading.celsius:.0f}C\n", style=style)
        self.update(text)


class AlertTable(Static):
    """Alerts, newest first, filtered by subsystem and severity floor."""

    DEFAULT_CSS = """
    AlertTable {
        height: 100%;
        border: solid $primary;
        border-title-align: left;
    }

    AlertTable DataTable {
        width: 100%;
        height: 100%;
    }
    """

    floor: reactive[Severity] = reactive(Severity.WARNING)
    subsystem: reactive[str] = reactive("All")

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._alerts: tuple[AlertRecord, ...] = ()
        self._shown_key: tuple[int, str | None] | None = None

    def compose(self) -> ComposeResult:
        yield DataTable(id="alert-table", zebra_stripes=True, cursor_type="row")

    def on_mount(self) -> None:
        table = self.query_one("#alert-table", DataTable)
        table.add_columns("Time", "Sev", "Subsystem", "Source", "Message")
        self._update_title()

    def watch_floor(self, floor: Severity) -> None:
        self._update_title()
        self._render_rows()

    def watch_subsystem(self, subsystem: str) -> None:
        self._update_title()
        self._render_rows()

    def _update_title(self) -> None:
        self.border_title = f"ALERTS {self.subsystem} ≥ {self.floor.tag}"

    def update_alerts(self, view: AlertsView) -> None:
        self._alerts = view.alerts
        # Skip redraw when count and newest entry are unchanged.
        newest = view.alerts[-1].raw if view.alerts else None
        key = (view.count, newest)
        if key == self._shown_key:
            return
        self._shown_key = key
        self._render_rows()

    def _render_rows(self) -> None:
        try:
            table = self.query_one("#alert-table", DataTable)
        except NoMatches:
            return
        width = self.app.config.tui.message_truncate_length
        table.clear()
        for alert in filter_alerts(self._alerts, self.floor, self.subsystem):
            style = severity_style(alert.severity)
            table.add_row(
                alert.timestamp[-8:],
                Text(alert.severity.tag, style=style),
                alert.subsystem,
                alert.source,
                truncate(alert.message, width),
            )


class WatchdogApp(App):
    """Real-time dashboard for cyber-watchdog."""

    CSS = """
    Screen {
        layout: vertical;
    }

    #bottom-panels {
        height: 1fr;
    }

    #system {
        width: 45;
    }

    #alerts {
        width: 1fr;
    }
    """

    BINDINGS = [
        ("s", "scan_now", "Scan now"),
        ("r", "tick_now", "Refresh"),
        ("f", "cycle_subsystem", "Subsystem"),
        ("v", "cycle_severity", "Severity"),
        ("q", "quit", "Quit"),
    ]

    def __init__(self, config: Config | None = None, monitor: Monitor | None = None):
        super().__init__()
        self.config = config or Config.load()
        if not self.config.config_path.exists():
            self.config.save()
        self.monitor = monitor or Monitor.from_config(self.config)

    def compose(self) -> ComposeResult:
        yield HeaderBar(id="header")
        yield MetricsPanel(id="metrics")
        yield Horizontal(
            Vertical(SystemPanel(id="system-panel"), id="system"),
            AlertTable(id="alerts"),
            id="bottom-panels",
        )
        yield Footer()

    def on_mount(self) -> None:
        self.title = "cyber-watchdog"
        self.sub_title = "Kernel & Host Monitor"
        self.monitor.start()
        self.set_interval(self.config.tui.refresh_interval, self.refresh_view)

    def on_unmount(self) -> None:
        self.monitor.stop(timeout=2.0)

    def refresh_view(self) -> None:
        """Pull copies from the publisher and update every panel."""
        publisher = self.monitor.publisher
        snapshot = publisher.read_metrics()
        histories = {m: publisher.read_history(m) for m in TRACKED_METRICS}
        view = publisher.read_alerts()

        try:
            self.query_one("#header", HeaderBar).update_from(snapshot, view)
            self.query_one("#metrics", MetricsPanel).update_from(snapshot, histories)
            self.query_one("#system-panel", SystemPanel).update_from(snapshot)
            self.query_one("#alerts", AlertTable).update_alerts(view)
        except NoMatches:
            pass

    def action_scan_now(self) -> None:
        self.monitor.trigger_scan_now()
        self.notify("Log scan requested")

    def action_tick_now(self) -> None:
        self.monitor.trigger_tick_now()

    def action_cycle_subsystem(self) -> None:
        table = self.query_one("#alerts", AlertTable)
        table.subsystem = next_subsystem(table.subsystem)

    def action_cycle_severity(self) -> None:
        table = self.query_one("#alerts", AlertTable)
        table.floor = next_filter(table.floor)


def run_tui(config: Config | None = None) -> None:
    """Run the TUI application."""
    app = WatchdogApp(config)
    app.run()
