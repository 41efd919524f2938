"""Tests for the TUI app."""

from pathlib import Path

import pytest

from cyber_watchdog.config import Config
from cyber_watchdog.models import Severity
from cyber_watchdog.monitor import LogScanner, Monitor, ShutdownContext
from cyber_watchdog.publisher import SnapshotPublisher
from cyber_watchdog.readers import KmsgLine
from cyber_watchdog.tui.app import (
    FILTER_LEVELS,
    AlertTable,
    HeaderBar,
    WatchdogApp,
    SUBSYSTEM_FILTERS,
    filter_alerts,
    format_cores,
    next_filter,
    next_subsystem,
)
from tests.conftest import FakeKmsg, FakeSampler, make_alert


def make_app(kmsg: FakeKmsg | None = None) -> WatchdogApp:
    config = Config()
    config.tui.refresh_interval = 0.05
    monitor = Monitor(
        sampler=FakeSampler(),
        scanner=LogScanner(kmsg=kmsg or FakeKmsg(), runner=lambda args: ""),
        publisher=SnapshotPublisher(),
        shutdown=ShutdownContext(sleep_slice=0.01),
        tick_interval=0.05,
        scan_interval=0.05,
    )
    return WatchdogApp(config=config, monitor=monitor)


def test_filter_alerts_newest_first():
    alerts = (
        make_alert(raw="a", severity=Severity.WARNING),
        make_alert(raw="b", severity=Severity.CRITICAL),
        make_alert(raw="c", severity=Severity.ERROR),
    )
    assert [a.raw for a in filter_alerts(alerts, Severity.WARNING)] == ["c", "b", "a"]
    assert [a.raw for a in filter_alerts(alerts, Severity.ERROR)] == ["c", "b"]
    assert filter_alerts(alerts, Severity.EMERGENCY) == []


def test_filter_alerts_by_subsystem():
    alerts = (
        make_alert(raw="a", subsystem="USB"),
        make_alert(raw="b", subsystem="Storage"),
        make_alert(raw="c", subsystem="USB", severity=Severity.WARNING),
    )
    assert [a.raw for a in filter_alerts(alerts, Severity.WARNING, "USB")] == ["c", "a"]
    assert [a.raw for a in filter_alerts(alerts, Severity.ERROR, "USB")] == ["a"]
    assert [a.raw for a in filter_alerts(alerts, Severity.WARNING, "All")] == ["c", "b", "a"]
    assert filter_alerts(alerts, Severity.WARNING, "Thermal") == []


def test_next_subsystem_wraps():
    assert SUBSYSTEM_FILTERS[0] == "All"
    assert next_subsystem("All") == "GPU"
    assert next_subsystem(SUBSYSTEM_FILTERS[-1]) == "All"
    assert next_subsystem("Bogus") == "All"


def test_format_cores_rows():
    rows = format_cores((1.0, 50.0, 99.6), per_line=2)
    assert rows == ["0:  1% 1: 50%", "2:100%"]
    assert format_cores(()) == []


def test_next_filter_wraps():
    assert next_filter(Severity.WARNING) is Severity.ERROR
    assert next_filter(FILTER_LEVELS[-1]) is FILTER_LEVELS[0]
    assert next_filter(Severity.DEBUG) is FILTER_LEVELS[0]


def test_app_saves_default_config(patched_config_paths: Path):
    """First launch writes a default config file."""
    app = make_app()
    assert app.config.config_path.exists()


@pytest.mark.usefixtures("patched_config_paths")
class TestWatchdogApp:
    async def test_runs_monitor_and_shows_alerts(self):
        kmsg = FakeKmsg([KmsgLine(2, "Out of memory: Killed process 42 (java)")])
        app = make_app(kmsg)
        async with app.run_test() as pilot:
            for _ in range(40):
                await pilot.pause(0.05)
                if app.monitor.publisher.alert_count():
                    break
            await pilot.pause(0.1)

            assert app.monitor.running
            table = app.query_one("#alert-table")
            assert table.row_count == 1
            assert app.query_one("#header", HeaderBar).worst == Severity.CRITICAL

        assert not app.monitor.running

    async def test_cycle_subsystem_key(self):
        app = make_app()
        async with app.run_test() as pilot:
            alerts = app.query_one("#alerts", AlertTable)
            assert alerts.subsystem == "All"
            await pilot.press("f")
            assert alerts.subsystem == "GPU"
            assert alerts.border_title.startswith("ALERTS GPU")

    async def test_cycle_severity_key(self):
        app = make_app()
        async with app.run_test() as pilot:
            alerts = app.query_one("#alerts", AlertTable)
            assert alerts.floor is Severity.WARNING
            await pilot.press("v")
            assert alerts.floor is Severity.ERROR

    async def test_header_nominal_without_alerts(self):
        app = make_app()
        async with app.run_test() as pilot:
            await pilot.pause(0.2)
            assert app.query_one("#header", HeaderBar).status == "NOMINAL"

    async def test_scan_now_key(self):
        app = make_app()
        async with app.run_test() as pilot:
            app.monitor.shutdown.request()  # stop the loops so nothing consumes the request
            await pilot.pause(0.1)
            await pilot.press("s")
            assert app.monitor.scan_requests.pending
