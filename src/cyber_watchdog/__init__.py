"""Kernel and host health watchdog for Linux."""
