"""
Scheduler Module
Installs and removes the daily run as a line in the user's crontab

Each line we own ends with a marker comment ("# receipt-filer:<name>"), so
installing is idempotent and removal never touches the user's other jobs.
"""

import logging
import subprocess
from typing import Callable, List

MARKER_PREFIX = "# receipt-filer:"


class SchedulerError(Exception):
    """Raised when the crontab cannot be read or written"""


def trigger_marker(name: str) -> str:
    return f"{MARKER_PREFIX}{name}"


def build_cron_line(name: str, command: str, hour: int, minute: int) -> str:
    """
    Example:
        >>> build_cron_line("collect", "receipt-filer collect", 6, 0)
        '0 6 * * * receipt-filer collect # receipt-filer:collect'
    """
    if not 0 <= hour <= 23 or not 0 <= minute <= 59:
        raise ValueError(f"Invalid trigger time {hour:02d}:{minute:02d}")
    if "\n" in command or "\r" in command:
        raise ValueError("Trigger command must be a single line")
    return f"{minute} {hour} * * * {command} {trigger_marker(name)}"


class CronScheduler:
    """Manages receipt-filer entries in the crontab"""

    def __init__(self, runner: Callable = subprocess.run):
        """
        Args:
            runner: subprocess.run compatible callable; injectable for tests
        """
        self.runner = runner
        self.logger = logging.getLogger("CronScheduler")

    def _read_crontab(self) -> List[str]:
        result = self.runner(
            ["crontab", "-l"],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
        )
        if result.returncode != 0:
            # crontab -l exits 1 with "no crontab for <user>" when there is none yet
            if "no crontab" in (result.stderr or "").lower():
                return []
            raise SchedulerError(f"crontab -l failed: {(result.stderr or '').strip()}")
        return result.stdout.splitlines()

    def _write_crontab(self, lines: List[str]) -> None:
        content = "\n".join(lines) + "\n" if lines else ""
        result = self.runner(
            ["crontab", "-"],
            input=content,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
        )
        if result.returncode != 0:
            raise SchedulerError(f"crontab install failed: {(result.stderr or '').strip()}")

    @staticmethod
    def _without(lines: List[str], name: str) -> List[str]:
        marker = trigger_marker(name)
        return [line for line in lines if not line.rstrip().endswith(marker)]

    def setup_daily_trigger(self, name: str, command: str, hour: int, minute: int) -> str:
        """
        Install (or replace) a daily trigger

        Args:
            name: Trigger name used in the marker comment
            command: Shell command cron runs
            hour: Hour of day, 0-23 (system timezone)
            minute: Minute, 0-59

        Returns:
            The installed crontab line
        """
        line = build_cron_line(name, command, hour, minute)
        current = self._read_crontab()
        updated = self._without(current, name)
        if len(updated) != len(current):
            self.logger.info(f"Replacing existing trigger '{name}'")
        updated.append(line)
        self._write_crontab(updated)
        self.logger.info(f"Installed daily trigger: {line}")
        return line

    def remove_trigger(self, name: str) -> bool:
        """
        Remove a trigger

        Returns:
            True if a line was removed
        """
        current = self._read_crontab()
        updated = self._without(current, name)
        if len(updated) == len(current):
            self.logger.info(f"No trigger named '{name}' installed")
            return False
        self._write_crontab(updated)
        self.logger.info(f"Removed trigger '{name}'")
        return True
