"""
Receipt Collector
Sweeps the mailbox for ticket emails and files their PDFs by travel date

Three operations:
- collect(): daily run. Unlabeled threads from the sender are filed and then
  labeled processed so the next run skips them.
- backfill_month(): repair run for one calendar month. Ignores the label,
  never falls back to the received date, and only files dates inside the
  target month. Safe to repeat: duplicates get " (2)" names, never overwrites.
- reset_processed_markers(): removes the processed label everywhere.

PATTERN RECOGNITION: This is the orchestrator of a classic ETL loop. Pull a
page from the source, filter, transform (resolve date, build name), load
(create folder path and file), then mark the source item done.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Callable, Optional, Set, Tuple

from .file_namer import (
    build_canonical_name,
    month_folder_name,
    resolve_unique_name,
    year_folder_name,
)
from .mail_data import MailAttachment, MailMessage
from .mailbox import GmailMailbox, Label, MailThread, build_search_query
from .run_report import (
    SKIP_ATTACHMENT_KEYWORD,
    SKIP_NO_TRAVEL_DATE,
    SKIP_NOT_PDF,
    SKIP_OUTSIDE_MONTH,
    SKIP_ROUTE_KEYWORDS,
    SKIP_SAVE_FAILED,
    RunReport,
)
from .storage import Storage, StorageError, ensure_folder_path
from .travel_date import received_day, resolve_travel_date
from ..utils.config import ALL_PDFS, CURRENT_MONTH, BackfillConfig, FilingConfig
from ..utils.sanitization import collapse_whitespace, sanitize_for_logging

BODY_SNIPPET_LENGTH = 300

# (year, month) a backfill is restricted to
TargetMonth = Tuple[int, int]


class ReceiptCollector:
    """Files ticket PDFs from a Gmail mailbox into dated storage folders"""

    def __init__(
        self,
        filing: FilingConfig,
        backfill: BackfillConfig,
        mailbox: GmailMailbox,
        storage: Storage,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Args:
            filing: Filters, folder and label settings
            backfill: Backfill target and window
            mailbox: Open mailbox
            storage: Storage backend receipts are written to
            clock: Returns the current time; injectable for tests
        """
        self.filing = filing
        self.backfill = backfill
        self.mailbox = mailbox
        self.storage = storage
        self.tz = filing.tzinfo()
        self.clock = clock or (lambda: datetime.now(self.tz))
        self.logger = logging.getLogger("ReceiptCollector")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def collect(self) -> RunReport:
        """
        File every unprocessed ticket thread and label it processed

        Labeled threads drop out of the search, so the offset only moves on
        when a page holds nothing new. ``handled`` guarantees a thread is
        labeled at most once per run even if the label does not stick.
        """
        report = RunReport(mode="collect")
        label = self.mailbox.get_or_create_label(self.filing.processed_label)
        query = build_search_query(self.filing.sender_address, exclude_label=label.name)
        self.logger.info(f"Collecting with query: {query}")

        page_size = self.filing.page_size
        handled: Set[str] = set()
        offset = 0
        page_number = 0

        while True:
            threads = self.mailbox.search(query, offset, page_size)
            if not threads:
                break

            page_number += 1
            new_threads = [thread for thread in threads if thread.thread_id not in handled]
            self.logger.info(
                f"=== Page {page_number}: {len(threads)} threads, "
                f"{len(new_threads)} new (offset {offset}) ==="
            )

            for thread in new_threads:
                handled.add(thread.thread_id)
                self._process_thread(thread, report)
                self._mark_processed(thread, label)

            if len(threads) < page_size:
                break
            if not new_threads:
                offset += page_size

        report.finish()
        return report

    def backfill_month(self, today: Optional[date] = None) -> RunReport:
        """
        Re-scan recent mail and file receipts for one calendar month

        Args:
            today: Reference day for PREVIOUS_MONTH/CURRENT_MONTH
                (default: today in the configured timezone)
        """
        target = self.target_month(today or self.clock().date())
        report = RunReport(mode="backfill")
        query = build_search_query(
            self.filing.sender_address,
            newer_than_days=self.backfill.lookback_days,
        )
        self.logger.info(
            f"Backfilling {target[0]:04d}-{target[1]:02d} "
            f"({self.backfill.attachment_mode}) with query: {query}"
        )

        page_size = self.filing.page_size
        offset = 0
        page_number = 0

        while True:
            threads = self.mailbox.search(query, offset, page_size)
            if not threads:
                break

            page_number += 1
            self.logger.info(f"=== Page {page_number}: {len(threads)} threads (offset {offset}) ===")

            for thread in threads:
                self._process_thread(thread, report, target)

            if len(threads) < page_size:
                break
            offset += page_size

        report.finish()
        return report

    def reset_processed_markers(self) -> int:
        """
        Remove the processed label from every thread carrying it

        The search is repeated from offset 0 because cleared threads drop
        out of it. A page made only of threads already cleared means the
        label did not come off; the reset stops there instead of looping.

        Returns:
            Number of threads cleared
        """
        label = Label(self.filing.processed_label)
        query = build_search_query("", label=label.name, has_attachment=False)
        self.logger.info(f"Resetting processed markers with query: {query}")

        cleared: Set[str] = set()
        while True:
            threads = self.mailbox.search(query, 0, self.filing.page_size)
            if not threads:
                break

            remaining = [thread for thread in threads if thread.thread_id not in cleared]
            if not remaining:
                self.logger.error(
                    f"Label {sanitize_for_logging(label.name)} could not be removed from "
                    f"{len(threads)} threads; stopping reset"
                )
                break

            for thread in remaining:
                thread.remove_label(label)
                cleared.add(thread.thread_id)
            self.logger.info(f"Cleared {len(cleared)} threads so far")

        self.logger.info(f"Reset complete: {len(cleared)} threads cleared")
        return len(cleared)

    def target_month(self, today: date) -> TargetMonth:
        """
        Month a backfill files into

        Example:
            >>> collector.target_month(date(2026, 1, 15))   # PREVIOUS_MONTH
            (2025, 12)
        """
        if self.backfill.target == CURRENT_MONTH:
            return today.year, today.month
        last_of_previous = today.replace(day=1) - timedelta(days=1)
        return last_of_previous.year, last_of_previous.month

    # ------------------------------------------------------------------
    # Per-item processing
    # ------------------------------------------------------------------

    def _mark_processed(self, thread: MailThread, label: Label):
        thread.add_label(label)
        self.logger.debug(f"Labeled thread {thread.thread_id} as processed")

    def _process_thread(self, thread: MailThread, report: RunReport, target: Optional[TargetMonth] = None):
        report.record_thread()
        for message in thread.get_messages():
            self._process_message(message, report, target)

    def _process_message(self, message: MailMessage, report: RunReport, target: Optional[TargetMonth]):
        received = received_day(message.received_at, self.tz)
        report.record_message(message.message_id, message.subject, received.isoformat())
        safe_subject = sanitize_for_logging(message.subject, max_length=100)
        self.logger.info(f"Message {received.isoformat()}: {safe_subject}")

        if self.filing.verbose_body_logging:
            snippet = collapse_whitespace(message.body)[:BODY_SNIPPET_LENGTH]
            self.logger.info(f"  body: {sanitize_for_logging(snippet, max_length=BODY_SNIPPET_LENGTH)}")

        if self.filing.route_filter_enabled:
            text = message.text.lower()
            if not all(keyword in text for keyword in self.filing.route_keywords):
                report.record_skip(message.message_id, SKIP_ROUTE_KEYWORDS)
                self.logger.info(f"Skipped message ({SKIP_ROUTE_KEYWORDS}): {safe_subject}")
                return

        for attachment in message.attachments:
            self._process_attachment(message, attachment, report, target)

    def _keyword_required(self, target: Optional[TargetMonth]) -> bool:
        if not self.filing.attachment_keyword:
            return False
        if target is not None and self.backfill.attachment_mode == ALL_PDFS:
            return False
        return True

    def _process_attachment(
        self,
        message: MailMessage,
        attachment: MailAttachment,
        report: RunReport,
        target: Optional[TargetMonth],
    ):
        safe_name = sanitize_for_logging(attachment.filename)

        if not attachment.is_pdf:
            self._skip(report, message, SKIP_NOT_PDF, attachment.filename)
            return

        if self._keyword_required(target) and self.filing.attachment_keyword not in attachment.filename.lower():
            self._skip(report, message, SKIP_ATTACHMENT_KEYWORD, attachment.filename)
            return

        resolved = resolve_travel_date(
            attachment.filename,
            message.text,
            message.received_at,
            allow_sent_date_fallback=target is None,
            tz=self.tz,
        )
        if not resolved.found:
            self._skip(report, message, SKIP_NO_TRAVEL_DATE, attachment.filename)
            return

        travel_date = resolved.date
        if target is not None and (travel_date.year, travel_date.month) != target:
            self._skip(
                report, message, SKIP_OUTSIDE_MONTH,
                f"{attachment.filename} ({travel_date.isoformat()})"
            )
            return

        self.logger.debug(f"Travel date for {safe_name}: {resolved}")
        self._save(message, attachment, travel_date, report)

    def _save(self, message: MailMessage, attachment: MailAttachment, travel_date: date, report: RunReport):
        """
        Write one receipt to Root/YYYY/Month/

        Folder problems propagate and stop the run. A failed file write is
        recorded against the message and the sweep moves on.
        """
        year_label = year_folder_name(travel_date)
        month_label = month_folder_name(travel_date)
        folder = ensure_folder_path(self.storage, self.filing.root_folder_name, year_label, month_label)

        try:
            name, renamed = resolve_unique_name(folder.file_exists, build_canonical_name(travel_date))
            stored = folder.create_file(name, attachment.data, attachment.mime_type)
        except (StorageError, OSError) as e:
            self.logger.error(f"Failed to save {sanitize_for_logging(attachment.filename)}: {e}")
            report.record_skip(message.message_id, SKIP_SAVE_FAILED, attachment.filename)
            return

        report.record_saved(message.message_id, stored.name, renamed)
        path = f"{self.filing.root_folder_name}/{year_label}/{month_label}/{stored.name}"
        suffix = " (renamed, name was taken)" if renamed else ""
        self.logger.info(f"Saved {sanitize_for_logging(path)}{suffix}")

    def _skip(self, report: RunReport, message: MailMessage, reason: str, filename: str):
        report.record_skip(message.message_id, reason, filename)
        self.logger.info(f"Skipped {sanitize_for_logging(filename)} ({reason})")
