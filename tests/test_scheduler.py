"""
Tests for the crontab scheduler

subprocess.run is replaced by a fake that keeps the crontab in memory.
"""

import subprocess
import unittest
from unittest.mock import MagicMock

from receipt_filer.modules.scheduler import (
    CronScheduler,
    SchedulerError,
    build_cron_line,
)


class FakeCrontab:
    def __init__(self, content=None, read_error=None):
        self.content = content
        self.read_error = read_error
        self.writes = []

    def __call__(self, args, input=None, **kwargs):
        if args == ["crontab", "-l"]:
            if self.read_error:
                return subprocess.CompletedProcess(args, 1, "", self.read_error)
            if self.content is None:
                return subprocess.CompletedProcess(args, 1, "", "no crontab for alice\n")
            return subprocess.CompletedProcess(args, 0, self.content, "")
        if args == ["crontab", "-"]:
            self.content = input
            self.writes.append(input)
            return subprocess.CompletedProcess(args, 0, "", "")
        raise AssertionError(f"unexpected command {args}")


class TestBuildCronLine(unittest.TestCase):

    def test_line(self):
        self.assertEqual(
            build_cron_line("collect", "receipt-filer collect", 6, 5),
            "5 6 * * * receipt-filer collect # receipt-filer:collect",
        )

    def test_invalid_time(self):
        with self.assertRaises(ValueError):
            build_cron_line("collect", "x", 24, 0)

    def test_multiline_command_rejected(self):
        with self.assertRaises(ValueError):
            build_cron_line("collect", "x\n* * * * * evil", 6, 0)


class TestCronScheduler(unittest.TestCase):

    def test_install_into_empty_crontab(self):
        crontab = FakeCrontab()
        CronScheduler(crontab).setup_daily_trigger("collect", "run", 6, 0)
        self.assertEqual(crontab.content, "0 6 * * * run # receipt-filer:collect\n")

    def test_install_keeps_other_jobs_and_replaces_own(self):
        crontab = FakeCrontab(
            "MAILTO=me\n"
            "30 2 * * * backup\n"
            "0 5 * * * old # receipt-filer:collect\n"
        )

        CronScheduler(crontab).setup_daily_trigger("collect", "new", 7, 15)

        self.assertEqual(crontab.content.splitlines(), [
            "MAILTO=me",
            "30 2 * * * backup",
            "15 7 * * * new # receipt-filer:collect",
        ])

    def test_install_twice_is_idempotent(self):
        crontab = FakeCrontab()
        scheduler = CronScheduler(crontab)
        scheduler.setup_daily_trigger("collect", "run", 6, 0)
        scheduler.setup_daily_trigger("collect", "run", 6, 0)
        self.assertEqual(crontab.content.count("# receipt-filer:collect"), 1)

    def test_other_trigger_names_untouched(self):
        crontab = FakeCrontab("0 1 * * * other # receipt-filer:backfill\n")
        CronScheduler(crontab).setup_daily_trigger("collect", "run", 6, 0)
        self.assertIn("# receipt-filer:backfill", crontab.content)

    def test_remove(self):
        crontab = FakeCrontab("30 2 * * * backup\n0 6 * * * run # receipt-filer:collect\n")
        self.assertTrue(CronScheduler(crontab).remove_trigger("collect"))
        self.assertEqual(crontab.content, "30 2 * * * backup\n")

    def test_remove_missing(self):
        crontab = FakeCrontab("30 2 * * * backup\n")
        self.assertFalse(CronScheduler(crontab).remove_trigger("collect"))
        self.assertEqual(crontab.writes, [])

    def test_read_error(self):
        crontab = FakeCrontab(read_error="permission denied")
        with self.assertRaises(SchedulerError):
            CronScheduler(crontab).setup_daily_trigger("collect", "run", 6, 0)

    def test_write_error(self):
        runner = MagicMock(side_effect=[
            subprocess.CompletedProcess([], 0, "", ""),
            subprocess.CompletedProcess([], 1, "", "bad crontab"),
        ])
        with self.assertRaises(SchedulerError):
            CronScheduler(runner).setup_daily_trigger("collect", "run", 6, 0)


if __name__ == '__main__':
    unittest.main()
