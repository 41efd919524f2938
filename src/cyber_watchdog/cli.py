"""CLI commands for cyber-watchdog."""

import click

from cyber_watchdog.models import SUBSYSTEMS

SERVICE_NAME = "cyber-watchdog"
UNIT_PATH = "/etc/systemd/system/cyber-watchdog.service"


@click.group()
@click.version_option(package_name="cyber-watchdog")
def main() -> None:
    """Watch kernel logs and host resources for trouble."""
    pass


@main.command()
def daemon() -> None:
    """Run the background monitor."""
    from cyber_watchdog.daemon import run_daemon

    try:
        run_daemon()
    except RuntimeError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)


@main.command()
def tui() -> None:
    """Launch interactive dashboard."""
    from cyber_watchdog.config import Config
    from cyber_watchdog.tui import run_tui

    config = Config.load()
    run_tui(config)


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Emit the snapshot and alerts as JSON")
@click.option("--settle", default=1.0, type=float, help="Seconds between the two samples")
def report(as_json: bool, settle: float) -> None:
    """Print a one-shot health report.

    Samples twice so CPU and network rates are meaningful, then scans logs
    once.
    """
    import dataclasses
    import json
    import time

    from cyber_watchdog import logging as cw_log
    from cyber_watchdog.config import Config
    from cyber_watchdog.formatting import render_report
    from cyber_watchdog.monitor import Monitor
    from cyber_watchdog.publisher import SnapshotPublisher

    config = Config.load()
    # Structured events go to the JSON log so stdout carries only the report.
    cw_log.configure(config, source="cli")
    publisher = SnapshotPublisher(
        history_size=config.sampling.history_size,
        alert_capacity=config.alerts.capacity,
    )
    monitor = Monitor.from_config(config, publisher=publisher)

    monitor.scanner.start()
    try:
        monitor.tick_once()
        time.sleep(settle)
        snapshot = monitor.tick_once()
        monitor.scan_once()
    finally:
        monitor.scanner.stop()
    view = publisher.read_alerts()

    if as_json:
        data = {
            "metrics": dataclasses.asdict(snapshot),
            "taint_flags": snapshot.taint_flags,
            "alert_count": view.count,
            "alerts": [a.to_dict() for a in view.alerts],
        }
        click.echo(json.dumps(data, indent=2))
        return

    for line in render_report(snapshot, view.alerts, view.count):
        click.echo(line)


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Emit alerts as JSON lines")
@click.option(
    "--subsystem",
    "-s",
    type=click.Choice(SUBSYSTEMS, case_sensitive=False),
    help="Only show alerts from this subsystem",
)
def scan(as_json: bool, subsystem: str | None) -> None:
    """Scan kernel and system logs once and print alerts."""
    import json

    from cyber_watchdog import logging as cw_log
    from cyber_watchdog.config import Config
    from cyber_watchdog.formatting import format_alert
    from cyber_watchdog.monitor import Monitor
    from cyber_watchdog.publisher import SnapshotPublisher

    config = Config.load()
    # Structured events go to the JSON log so stdout carries only the report.
    cw_log.configure(config, source="cli")
    publisher = SnapshotPublisher(alert_capacity=config.alerts.capacity)
    monitor = Monitor.from_config(config, publisher=publisher)

    monitor.scanner.start()
    try:
        accepted = monitor.scan_once()
    finally:
        monitor.scanner.stop()

    if subsystem:
        accepted = [a for a in accepted if a.subsystem.lower() == subsystem.lower()]
    if not accepted:
        if not as_json:
            click.echo("No alerts found.")
        return

    for alert in accepted:
        if as_json:
            click.echo(json.dumps(alert.to_dict()))
        else:
            click.echo(format_alert(alert))


@main.command()
def status() -> None:
    """Quick health check."""
    from cyber_watchdog.config import Config
    from cyber_watchdog.daemon import read_daemon_pid

    config = Config.load()

    pid = read_daemon_pid(config)
    if pid:
        click.echo(f"Daemon: running (PID {pid})")
    else:
        click.echo("Daemon: stopped")

    source = "exists" if config.config_path.exists() else "defaults"
    click.echo(f"Config: {config.config_path} ({source})")
    log_path = config.alert_log_path
    if log_path.exists():
        size_kb = log_path.stat().st_size / 1024
        click.echo(f"Alert log: {log_path} ({size_kb:.1f} KB)")
    else:
        click.echo(f"Alert log: {log_path} (not created)")


@main.command("alerts")
@click.option("--limit", "-n", default=20, help="Number of lines to show")
def alerts_cmd(limit: int) -> None:
    """Show the most recent alert log lines."""
    from collections import deque

    from cyber_watchdog.config import Config

    config = Config.load()
    path = config.alert_log_path
    if not path.exists():
        click.echo("No alerts logged.")
        return

    with open(path, encoding="utf-8", errors="replace") as f:
        tail = deque(f, maxlen=limit)
    for line in tail:
        click.echo(line.rstrip("\n"))


@main.command("report-now")
def report_now() -> None:
    """Ask the running daemon for an immediate report (SIGUSR1)."""
    import os
    import signal

    from cyber_watchdog.config import Config
    from cyber_watchdog.daemon import read_daemon_pid

    config = Config.load()
    pid = read_daemon_pid(config)
    if not pid:
        click.echo("Error: daemon is not running", err=True)
        raise SystemExit(1)
    os.kill(pid, signal.SIGUSR1)
    click.echo(f"Report requested from PID {pid}")


@main.command()
def net() -> None:
    """List network interfaces with IPv4 addresses."""
    from cyber_watchdog.readers import CommandRunner, list_interfaces

    interfaces = list_interfaces(CommandRunner())
    if not interfaces:
        click.echo("No interfaces found.")
        return

    click.echo(f"{'IFACE':<12} {'ADDRESS':<20} {'STATE':<8} MAC")
    for iface in interfaces:
        click.echo(f"{iface.name:<12} {iface.ip:<20} {iface.state:<8} {iface.mac}")


@main.command()
def disks() -> None:
    """List mounted filesystems and their usage."""
    from cyber_watchdog.readers import CommandRunner, list_mounts

    mounts = list_mounts(CommandRunner())
    if not mounts:
        click.echo("No filesystems found.")
        return

    click.echo(f"{'MOUNT':<24} {'TYPE':<8} {'USE%':>5} {'USED':>7} {'SIZE':>7}")
    for m in mounts:
        click.echo(
            f"{m.mountpoint:<24} {m.fstype:<8} {m.percent:>4.0f}% "
            f"{m.used_gb:>6}G {m.total_gb:>6}G"
        )


@main.command()
def temps() -> None:
    """List hardware-monitor temperature sensors."""
    from cyber_watchdog.config import Config
    from cyber_watchdog.sampler import MetricSampler

    thresholds = Config.load().thresholds
    readings = MetricSampler(gpu_queries=()).sample().temps
    if not readings:
        click.echo("No temperature sensors found.")
        return

    for r in readings:
        mark = ""
        if r.celsius >= thresholds.temp_crit:
            mark = "  CRIT"
        elif r.celsius >= thresholds.temp_warn:
            mark = "  WARN"
        click.echo(f"{r.label:<30} {r.celsius:>5.0f}C{mark}")


@main.command()
def taint() -> None:
    """Decode the kernel taint bitmask."""
    from cyber_watchdog.models import decode_taint
    from cyber_watchdog.readers import read_first_line

    raw = read_first_line("/proc/sys/kernel/tainted")
    try:
        value = int(raw) if raw else 0
    except ValueError:
        value = 0
    click.echo(f"Taint: 0x{value:x}")
    for flag in decode_taint(value):
        click.echo(f"  {flag}")


# ─────────────────────────────────────────────────────────────────────────────
# Config
# ─────────────────────────────────────────────────────────────────────────────


@main.group()
def config() -> None:
    """Manage configuration."""
    pass


@config.command("show")
def config_show() -> None:
    """Display current configuration."""
    from cyber_watchdog.config import Config

    cfg = Config.load()

    click.echo(f"Config file: {cfg.config_path}")
    click.echo(f"Exists: {cfg.config_path.exists()}")
    click.echo()
    click.echo("[sampling]")
    click.echo(f"  tick_interval = {cfg.sampling.tick_interval}")
    click.echo(f"  scan_interval = {cfg.sampling.scan_interval}")
    click.echo(f"  command_timeout = {cfg.sampling.command_timeout}")
    click.echo(f"  history_size = {cfg.sampling.history_size}")
    click.echo()
    click.echo("[alerts]")
    click.echo(f"  capacity = {cfg.alerts.capacity}")
    click.echo(f"  min_severity = {cfg.alerts.min_severity}")
    click.echo(f"  journal_lines = {cfg.alerts.journal_lines}")
    click.echo()
    click.echo("[thresholds]")
    t = cfg.thresholds
    click.echo(f"  memory = {t.memory_warn}/{t.memory_crit}")
    click.echo(f"  load = {t.load_warn}/{t.load_crit} (per CPU)")
    click.echo(f"  temp = {t.temp_warn}/{t.temp_crit}")
    click.echo()
    click.echo("[daemon]")
    click.echo(f"  report_interval = {cfg.daemon.report_interval}")


@config.command("edit")
def config_edit() -> None:
    """Open config file in editor."""
    import os
    import subprocess

    from cyber_watchdog.config import Config

    cfg = Config.load()

    if not cfg.config_path.exists():
        cfg.save()
        click.echo(f"Created default config at {cfg.config_path}")

    editor = os.environ.get("EDITOR", "nano")
    subprocess.run([editor, str(cfg.config_path)])


@config.command("reset")
@click.confirmation_option(prompt="Reset config to defaults?")
def config_reset() -> None:
    """Reset configuration to defaults."""
    from cyber_watchdog.config import Config

    cfg = Config()
    cfg.save()
    click.echo(f"Config reset to defaults at {cfg.config_path}")


# ─────────────────────────────────────────────────────────────────────────────
# Service install
# ─────────────────────────────────────────────────────────────────────────────


def _unit_content(python_path: str) -> str:
    """systemd unit running the daemon early in boot."""
    return f"""[Unit]
Description=Cyber-Watchdog Kernel Monitor
DefaultDependencies=no
After=sysinit.target
Before=basic.target
Wants=sysinit.target

[Service]
Type=simple
ExecStart={python_path} -m cyber_watchdog.cli daemon
Restart=always
RestartSec=3
StandardOutput=journal
SyslogIdentifier={SERVICE_NAME}
OOMScoreAdjust=-900

[Install]
WantedBy=multi-user.target
"""


@main.command()
@click.option("--force", is_flag=True, help="Overwrite existing unit without prompting")
def install(force: bool) -> None:
    """Install and start the systemd service (requires root)."""
    import os
    import shutil
    import subprocess
    import sys
    from pathlib import Path

    if os.getuid() != 0:
        click.echo("Error: install requires root privileges. Use sudo.", err=True)
        raise SystemExit(1)

    if shutil.which("systemctl") is None:
        click.echo("Error: systemctl not found; only systemd is supported.", err=True)
        raise SystemExit(1)

    unit_path = Path(UNIT_PATH)
    if unit_path.exists() and not force:
        if not click.confirm(f"Unit already exists at {unit_path}. Overwrite?"):
            click.echo("Service not modified.")
            return

    unit_path.write_text(_unit_content(sys.executable))
    click.echo(f"Created {unit_path}")

    for args in (
        ["systemctl", "daemon-reload"],
        ["systemctl", "enable", SERVICE_NAME],
        ["systemctl", "start", SERVICE_NAME],
    ):
        try:
            subprocess.run(args, check=True, capture_output=True)
        except subprocess.CalledProcessError as e:
            click.echo(f"Warning: {' '.join(args)} failed: {e.stderr.decode().strip()}")

    click.echo("Service installed and started")
    click.echo(f"\nTo check status: systemctl status {SERVICE_NAME}")
    click.echo(f"To view logs: journalctl -u {SERVICE_NAME} -f")


@main.command()
@click.option("--keep-data", is_flag=True, help="Keep logs and config files")
@click.option("--force", is_flag=True, help="Skip confirmation prompts")
def uninstall(keep_data: bool, force: bool) -> None:
    """Stop and remove the systemd service (requires root)."""
    import os
    import shutil
    import subprocess
    from pathlib import Path

    if os.getuid() != 0:
        click.echo("Error: uninstall requires root privileges. Use sudo.", err=True)
        raise SystemExit(1)

    unit_path = Path(UNIT_PATH)
    if unit_path.exists():
        for args in (
            ["systemctl", "stop", SERVICE_NAME],
            ["systemctl", "disable", SERVICE_NAME],
        ):
            try:
                subprocess.run(args, check=True, capture_output=True)
            except subprocess.CalledProcessError as e:
                click.echo(f"Warning: {' '.join(args)} failed: {e.stderr.decode().strip()}")
        unit_path.unlink()
        subprocess.run(["systemctl", "daemon-reload"], capture_output=True)
        click.echo(f"Removed {unit_path}")
    else:
        click.echo("Service was not installed")

    if not keep_data:
        from cyber_watchdog.config import Config

        config = Config()

        if config.state_dir.exists():
            if force or click.confirm(f"Delete state directory {config.state_dir}?"):
                shutil.rmtree(config.state_dir)
                click.echo(f"Removed {config.state_dir}")

        if config.config_dir.exists():
            if force or click.confirm(f"Delete config directory {config.config_dir}?"):
                shutil.rmtree(config.config_dir)
                click.echo(f"Removed {config.config_dir}")

    click.echo("Uninstall complete")


if __name__ == "__main__":
    main()
