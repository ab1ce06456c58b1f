"""
Run Report Module
Counters and per-message log for one filing run
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

SKIP_ROUTE_KEYWORDS = "route keywords missing"
SKIP_NOT_PDF = "not a pdf"
SKIP_ATTACHMENT_KEYWORD = "attachment keyword missing"
SKIP_NO_TRAVEL_DATE = "no travel date"
SKIP_OUTSIDE_MONTH = "outside target month"
SKIP_SAVE_FAILED = "save failed"


@dataclass
class MessageLog:
    """What happened to one message"""
    subject: str
    date: str
    saved: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


@dataclass
class RunReport:
    """
    Everything a run did, for the end-of-run summary.

    PATTERN RECOGNITION: This is the same shape as a metrics collector in a
    long-running service, scoped to one run. Counters answer "how much",
    the message log answers "which ones", which is what you want when a
    receipt is missing from the month folder.

    MAINTENANCE WISDOM: Skip reasons are fixed strings (the SKIP_* constants)
    so the breakdown groups cleanly. Put the variable part (a filename, a
    date) in the detail instead.
    """

    mode: str = "collect"
    threads_scanned: int = 0
    messages_scanned: int = 0
    files_saved: int = 0
    duplicates_renamed: int = 0

    # Counter so skip_reasons['not a pdf'] += 1 works on first use
    skip_reasons: Counter = field(default_factory=Counter)

    # Keyed by message id; dicts keep insertion order, so this reads in scan order
    messages: Dict[str, MessageLog] = field(default_factory=dict)

    start_time: datetime = field(default_factory=datetime.now)
    end_time: Optional[datetime] = None

    def record_thread(self):
        self.threads_scanned += 1

    def record_message(self, message_id: str, subject: str, date: str) -> MessageLog:
        """
        Record that a message was looked at.

        Returns:
            The message's log entry (existing one if the id was seen before)
        """
        self.messages_scanned += 1
        entry = self.messages.get(message_id)
        if entry is None:
            entry = MessageLog(subject=subject, date=date)
            self.messages[message_id] = entry
        return entry

    def record_saved(self, message_id: str, file_name: str, renamed: bool = False):
        """
        Record a file written to storage.

        Args:
            message_id: Message the attachment came from
            file_name: Name the file was stored under
            renamed: True if the canonical name was taken and a suffix was added
        """
        self.files_saved += 1
        if renamed:
            self.duplicates_renamed += 1
        self._entry(message_id).saved.append(file_name)

    def record_skip(self, message_id: str, reason: str, detail: str = ""):
        """
        Record a skipped message or attachment.

        Example:
            report.record_skip(msg_id, SKIP_NOT_PDF, "seat-map.png")
        """
        self.skip_reasons[reason] += 1
        self._entry(message_id).skipped.append(f"{reason}: {detail}" if detail else reason)

    def _entry(self, message_id: str) -> MessageLog:
        entry = self.messages.get(message_id)
        if entry is None:
            entry = MessageLog(subject="", date="")
            self.messages[message_id] = entry
        return entry

    def finish(self):
        self.end_time = datetime.now()

    @property
    def files_skipped(self) -> int:
        return sum(self.skip_reasons.values())

    def get_summary(self) -> Dict:
        """
        Get the run summary as plain data.

        Returns:
            Dictionary suitable for logging or posting as JSON
        """
        end = self.end_time or datetime.now()
        return {
            "mode": self.mode,
            "started_at": self.start_time.isoformat(),
            "duration_seconds": round((end - self.start_time).total_seconds(), 3),
            "threads_scanned": self.threads_scanned,
            "messages_scanned": self.messages_scanned,
            "files_saved": self.files_saved,
            "duplicates_renamed": self.duplicates_renamed,
            "skip_reasons": dict(self.skip_reasons),
            "messages": {
                message_id: {
                    "subject": entry.subject,
                    "date": entry.date,
                    "saved": list(entry.saved),
                    "skipped": list(entry.skipped),
                }
                for message_id, entry in self.messages.items()
            },
        }
