"""
Receipt Filer
Pipeline that wires configuration, mailbox, storage and collector together
"""

import logging
import os
import shlex
import sys
from typing import Optional

from .modules.collector import ReceiptCollector
from .modules.drive_storage import DriveStorage
from .modules.email_parser import EmailParser
from .modules.imap_connection import IMAPConnection
from .modules.mailbox import GmailMailbox
from .modules.run_report import RunReport
from .modules.scheduler import CronScheduler
from .modules.storage import LocalStorage, Storage
from .modules.summary_notifier import SummaryNotifier
from .utils.config import Config
from .utils.logging_utils import setup_logging

COLLECT = "collect"
BACKFILL_MONTH = "backfill-month"
SETUP_DAILY_TRIGGER = "setup-daily-trigger"
REMOVE_DAILY_TRIGGER = "remove-daily-trigger"
RESET_PROCESSED = "reset-processed"

COMMANDS = (COLLECT, BACKFILL_MONTH, SETUP_DAILY_TRIGGER, REMOVE_DAILY_TRIGGER, RESET_PROCESSED)


class ReceiptFilerPipeline:
    """Main pipeline orchestrator"""

    def __init__(self, config_file: str = ".env"):
        """
        Initialize pipeline

        Args:
            config_file: Path to configuration file
        """
        self.config_file = config_file
        self.config = Config(config_file)

        setup_logging(self.config.system)

        self.logger = logging.getLogger("ReceiptFilerPipeline")
        self.notifier = SummaryNotifier(self.config.summary)
        self.scheduler = CronScheduler()

    def run(self, command: str) -> Optional[RunReport]:
        """
        Run one command and exit non-zero if it fails

        Args:
            command: One of COMMANDS

        Returns:
            The run report for collect/backfill-month, otherwise None
        """
        try:
            self.config.validate()
            self.logger.info(f"Starting receipt filer: {command}")

            if command == COLLECT:
                return self.collect()
            if command == BACKFILL_MONTH:
                return self.backfill_month()
            if command == RESET_PROCESSED:
                self.reset_processed()
            elif command == SETUP_DAILY_TRIGGER:
                self.setup_daily_trigger()
            elif command == REMOVE_DAILY_TRIGGER:
                self.remove_daily_trigger()
            else:
                raise ValueError(f"Unknown command: {command}")
            return None

        except KeyboardInterrupt:
            self.logger.info("Received shutdown signal; stopping")
            sys.exit(130)
        except Exception as e:
            self.logger.error(f"Fatal error: {e}", exc_info=True)
            sys.exit(1)

    def collect(self) -> RunReport:
        with self._build_mailbox() as mailbox:
            collector = self._build_collector(mailbox)
            report = collector.collect()
        self.notifier.send_summary(report)
        return report

    def backfill_month(self) -> RunReport:
        with self._build_mailbox() as mailbox:
            collector = self._build_collector(mailbox)
            report = collector.backfill_month()
        self.notifier.send_summary(report)
        return report

    def reset_processed(self) -> int:
        with self._build_mailbox() as mailbox:
            collector = self._build_collector(mailbox)
            return collector.reset_processed_markers()

    def setup_daily_trigger(self) -> str:
        schedule = self.config.schedule
        return self.scheduler.setup_daily_trigger(
            schedule.trigger_name,
            self.trigger_command(),
            schedule.hour,
            schedule.minute,
        )

    def remove_daily_trigger(self) -> bool:
        return self.scheduler.remove_trigger(self.config.schedule.trigger_name)

    def trigger_command(self) -> str:
        """
        Shell command cron runs for the daily collect

        Absolute paths throughout: cron starts with a minimal environment
        and the user's home as working directory.
        """
        workdir = os.getcwd()
        env_file = os.path.abspath(self.config_file)
        return (
            f"cd {shlex.quote(workdir)} && "
            f"{shlex.quote(sys.executable)} -m receipt_filer "
            f"--env-file {shlex.quote(env_file)} {COLLECT}"
        )

    def _build_mailbox(self) -> GmailMailbox:
        connection = IMAPConnection(self.config.mailbox)
        return GmailMailbox(
            connection,
            EmailParser(),
            folder=self.config.mailbox.all_mail_folder,
        )

    def _build_storage(self) -> Storage:
        storage = self.config.storage
        if storage.backend == "drive":
            self.logger.info("Using Google Drive storage")
            return DriveStorage.from_files(storage.drive_credentials_file, storage.drive_token_file)
        self.logger.info(f"Using local storage at {storage.local_path}")
        return LocalStorage(storage.local_path)

    def _build_collector(self, mailbox: GmailMailbox) -> ReceiptCollector:
        return ReceiptCollector(
            self.config.filing,
            self.config.backfill,
            mailbox,
            self._build_storage(),
        )
