"""TUI package for cyber-watchdog."""

from cyber_watchdog.tui.app import WatchdogApp, run_tui

__all__ = ["WatchdogApp", "run_tui"]
