"""Tests for the metrics and scan loops."""

import threading
import time

from cyber_watchdog.config import AlertsConfig, Config, SamplingConfig
from cyber_watchdog.models import Severity
from cyber_watchdog.monitor import (
    LogScanner,
    Monitor,
    RequestChannel,
    ShutdownContext,
)
from cyber_watchdog.publisher import SnapshotPublisher
from cyber_watchdog.readers import CommandSource, KmsgLine, KmsgReader
from tests.conftest import FakeKmsg, FakeSampler, make_snapshot


def make_monitor(scanner: LogScanner | None = None, **kwargs) -> Monitor:
    return Monitor(
        sampler=FakeSampler(),
        scanner=scanner or LogScanner(kmsg=FakeKmsg(), runner=lambda args: ""),
        publisher=SnapshotPublisher(),
        shutdown=ShutdownContext(sleep_slice=0.01),
        **kwargs,
    )


class TestShutdownContext:
    def test_sleep_runs_to_deadline(self):
        ctx = ShutdownContext(sleep_slice=0.01)
        start = time.monotonic()
        assert ctx.sleep(0.05) is True
        assert time.monotonic() - start >= 0.04

    def test_sleep_returns_false_after_request(self):
        ctx = ShutdownContext(sleep_slice=0.01)
        ctx.request()
        assert ctx.requested
        assert ctx.sleep(10.0) is False

    def test_request_from_other_thread_interrupts_sleep(self):
        ctx = ShutdownContext(sleep_slice=0.01)
        threading.Timer(0.05, ctx.request).start()
        start = time.monotonic()
        assert ctx.sleep(5.0) is False
        assert time.monotonic() - start < 1.0

    def test_pending_wake_ends_sleep_early(self):
        ctx = ShutdownContext(sleep_slice=0.01)
        wake = RequestChannel()
        wake.request()
        start = time.monotonic()
        assert ctx.sleep(5.0, wake=wake) is True
        assert time.monotonic() - start < 1.0
        # Sleeping doesn't consume the request
        assert wake.pending


class TestRequestChannel:
    def test_consume_clears(self):
        channel = RequestChannel()
        assert channel.consume() is False
        channel.request()
        channel.request()
        assert channel.pending
        assert channel.consume() is True
        assert channel.consume() is False


class TestLogScanner:
    def test_kmsg_lines_classified(self):
        kmsg = FakeKmsg([KmsgLine(3, "usb 1-1: device descriptor read error")])
        scanner = LogScanner(kmsg=kmsg, runner=lambda args: "")
        alerts = scanner.scan()

        assert len(alerts) == 1
        alert = alerts[0]
        assert alert.source == "kmsg"
        assert alert.subsystem == "USB"
        assert alert.severity is Severity.ERROR
        assert alert.raw == "usb 1-1: device descriptor read error"

    def test_level_fallback_filtered_by_min_severity(self):
        kmsg = FakeKmsg(
            [
                KmsgLine(6, "eth0: renamed from veth1234"),
                KmsgLine(4, "ACPI Warning: SystemIO range conflicts"),
            ]
        )
        alerts = LogScanner(kmsg=kmsg, runner=lambda args: "").scan()
        assert [a.severity for a in alerts] == [Severity.WARNING]

    def test_short_lines_skipped(self):
        kmsg = FakeKmsg([KmsgLine(0, "panic")])
        assert LogScanner(kmsg=kmsg, runner=lambda args: "").scan() == []

    def test_command_sources(self):
        output = (
            "[Mon Jan  1 10:00:00 2024] nvme0n1: I/O error, dev nvme0n1\n"
            "[Mon Jan  1 10:00:01 2024] random chatter that matches nothing\n"
        )
        source = CommandSource("dmesg", ("dmesg",))
        scanner = LogScanner(sources=[source], runner=lambda args: output)
        alerts = scanner.scan()

        assert len(alerts) == 1
        assert alerts[0].source == "dmesg"
        assert alerts[0].subsystem == "Storage"

    def test_message_is_stripped_raw_is_not(self):
        source = CommandSource("journal", ("journalctl",))
        scanner = LogScanner(sources=[source], runner=lambda args: "  Kernel panic - oh no  \n")
        alert = scanner.scan()[0]
        assert alert.message == "Kernel panic - oh no"
        assert alert.raw == "  Kernel panic - oh no  "

    def test_start_stop_manage_kmsg(self):
        kmsg = FakeKmsg()
        scanner = LogScanner(kmsg=kmsg, runner=lambda args: "")
        scanner.start()
        assert kmsg.started
        scanner.stop()
        assert kmsg.stopped

    def test_no_kmsg(self):
        assert LogScanner(kmsg=None, runner=lambda args: "").scan() == []


class TestMonitor:
    def test_tick_once_publishes(self):
        monitor = make_monitor()
        snapshot = monitor.tick_once()
        assert monitor.publisher.read_metrics() is snapshot
        assert monitor.publisher.read_history("cpu") == [1.0]

    def test_scan_once_returns_new_alerts(self):
        kmsg = FakeKmsg([KmsgLine(2, "Out of memory: Killed process 42 (java)")])
        monitor = make_monitor(LogScanner(kmsg=kmsg, runner=lambda args: ""))
        accepted = monitor.scan_once()
        assert [a.subsystem for a in accepted] == ["Memory"]
        assert monitor.scan_once() == []
        assert monitor.publisher.alert_count() == 1

    def test_threads_start_and_stop(self):
        kmsg = FakeKmsg()
        monitor = make_monitor(
            LogScanner(kmsg=kmsg, runner=lambda args: ""),
            tick_interval=0.02,
            scan_interval=0.02,
        )
        monitor.start()
        try:
            deadline = time.monotonic() + 2.0
            while monitor.publisher.tick_count < 3 and time.monotonic() < deadline:
                time.sleep(0.01)
            assert monitor.running
            assert kmsg.started
        finally:
            monitor.stop(timeout=2.0)

        assert monitor.publisher.tick_count >= 3
        assert not monitor.running
        assert kmsg.stopped

    def test_trigger_scan_wakes_loop(self):
        kmsg = FakeKmsg()
        monitor = make_monitor(
            LogScanner(kmsg=kmsg, runner=lambda args: ""),
            tick_interval=60.0,
            scan_interval=60.0,
        )
        monitor.start()
        try:
            time.sleep(0.05)
            kmsg.pending.append(KmsgLine(0, "Kernel panic - not syncing"))
            monitor.trigger_scan_now()
            deadline = time.monotonic() + 2.0
            while monitor.publisher.alert_count() == 0 and time.monotonic() < deadline:
                time.sleep(0.01)
        finally:
            monitor.stop(timeout=2.0)

        assert monitor.publisher.alert_count() == 1

    def test_stuck_scan_keeps_kmsg_open_until_it_exits(self):
        kmsg = FakeKmsg()
        entered = threading.Event()
        release = threading.Event()

        def slow_runner(args):
            entered.set()
            release.wait(5.0)
            return ""

        monitor = make_monitor(
            LogScanner(
                kmsg=kmsg,
                sources=[CommandSource("dmesg", ("dmesg",))],
                runner=slow_runner,
            ),
            tick_interval=60.0,
            scan_interval=60.0,
        )
        monitor.start()
        assert entered.wait(2.0)

        monitor.stop(timeout=0.05)
        assert monitor.running
        assert not kmsg.stopped

        release.set()
        (scan_thread,) = [t for t in monitor._threads if t.name == "scan"]
        scan_thread.join(2.0)
        assert kmsg.stopped

    def test_trigger_tick_wakes_loop(self):
        monitor = make_monitor(tick_interval=60.0, scan_interval=60.0)
        monitor.start()
        try:
            deadline = time.monotonic() + 2.0
            while monitor.publisher.tick_count < 1 and time.monotonic() < deadline:
                time.sleep(0.01)
            monitor.trigger_tick_now()
            while monitor.publisher.tick_count < 2 and time.monotonic() < deadline:
                time.sleep(0.01)
        finally:
            monitor.stop(timeout=2.0)

        assert monitor.publisher.tick_count == 2

    def test_sampler_failure_does_not_kill_loop(self):
        class FlakySampler(FakeSampler):
            def sample(self):
                self.calls += 1
                if self.calls == 1:
                    raise RuntimeError("boom")
                return make_snapshot()

        monitor = make_monitor(tick_interval=0.01, scan_interval=60.0)
        monitor.sampler = FlakySampler()
        monitor.start()
        try:
            deadline = time.monotonic() + 2.0
            while monitor.publisher.tick_count < 1 and time.monotonic() < deadline:
                time.sleep(0.01)
        finally:
            monitor.stop(timeout=2.0)
        assert monitor.publisher.tick_count >= 1

    def test_from_config(self, patched_config_paths):
        config = Config(
            sampling=SamplingConfig(tick_interval=1.5, scan_interval=7.0),
            alerts=AlertsConfig(min_severity="error", journal_lines=10),
        )
        monitor = Monitor.from_config(config)
        assert monitor.tick_interval == 1.5
        assert monitor.scan_interval == 7.0
        assert monitor.scanner.min_severity is Severity.ERROR
        assert isinstance(monitor.scanner.kmsg, KmsgReader)
        assert [s.name for s in monitor.scanner.sources] == ["dmesg", "journal"]
