"""
Mailbox Module
Thread-level view of a Gmail account: paged search, messages, labels

Gmail exposes conversations over IMAP through X-GM-THRID. A search returns
message UIDs; they are grouped into threads, ordered newest first (the order
Gmail's own search uses) and sliced into pages.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional

from .email_parser import EmailParser
from .imap_connection import IMAPConnection, MailboxError
from .mail_data import MailMessage
from ..utils.sanitization import sanitize_for_logging

GMAIL_LABEL_SEARCH_PATTERN = re.compile(r"[\s/]+")


def gmail_label_term(name: str) -> str:
    """
    Render a label name the way Gmail search expects it

    Example:
        >>> gmail_label_term("Train Tickets/Processed")
        'train-tickets-processed'
    """
    return GMAIL_LABEL_SEARCH_PATTERN.sub("-", name.strip()).lower()


def build_search_query(
    sender: str,
    exclude_label: Optional[str] = None,
    newer_than_days: Optional[int] = None,
    label: Optional[str] = None,
    has_attachment: bool = True,
) -> str:
    """
    Build a Gmail search expression

    Example:
        >>> build_search_query("tickets@rail.example", exclude_label="Processed")
        'from:tickets@rail.example -label:processed has:attachment'
    """
    terms = []
    if sender:
        terms.append(f"from:{sender}")
    if label:
        terms.append(f"label:{gmail_label_term(label)}")
    if exclude_label:
        terms.append(f"-label:{gmail_label_term(exclude_label)}")
    if newer_than_days:
        terms.append(f"newer_than:{newer_than_days}d")
    if has_attachment:
        terms.append("has:attachment")
    return " ".join(terms)


@dataclass(frozen=True)
class Label:
    """A Gmail label"""
    name: str


class MailThread:
    """
    One Gmail conversation

    Messages are downloaded on first access and cached.
    """

    def __init__(self, thread_id: str, uids: List[bytes], mailbox: "GmailMailbox"):
        self.thread_id = thread_id
        self.uids = uids
        self._mailbox = mailbox
        self._messages: Optional[List[MailMessage]] = None

    def get_messages(self) -> List[MailMessage]:
        if self._messages is None:
            self._messages = self._mailbox.load_messages(self.uids)
        return self._messages

    def add_label(self, label: Label) -> None:
        self._mailbox.change_label(self.uids, label, add=True)

    def remove_label(self, label: Label) -> None:
        self._mailbox.change_label(self.uids, label, add=False)

    def __repr__(self) -> str:
        return f"MailThread({self.thread_id!r}, messages={len(self.uids)})"


class GmailMailbox:
    """
    Gmail account accessed over IMAP

    Usable as a context manager: the connection is opened on entry and
    always closed on exit.
    """

    def __init__(
        self,
        connection: IMAPConnection,
        parser: Optional[EmailParser] = None,
        folder: str = "[Gmail]/All Mail",
    ):
        """
        Args:
            connection: IMAP connection (not yet connected)
            parser: Parser for downloaded messages
            folder: Folder searched for threads; All Mail holds every
                message of every conversation
        """
        self.connection = connection
        self.parser = parser or EmailParser()
        self.folder = folder
        self.logger = logging.getLogger("GmailMailbox")

    def open(self) -> "GmailMailbox":
        if not self.connection.connect():
            raise MailboxError("Could not connect to the mailbox")
        self.connection.select_folder(self.folder)
        return self

    def close(self) -> None:
        self.connection.disconnect()

    def __enter__(self) -> "GmailMailbox":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _ensure_ready(self) -> None:
        if not self.connection.ensure_connection():
            raise MailboxError("Mailbox connection lost and reconnect failed")

    def search(self, query: str, page_offset: int, page_size: int) -> List[MailThread]:
        """
        Return one page of threads matching a Gmail search

        Args:
            query: Gmail search expression (see build_search_query)
            page_offset: Number of threads to skip
            page_size: Maximum threads returned

        Returns:
            Threads, newest first
        """
        self._ensure_ready()
        uids = self.connection.search_raw(query)
        if not uids:
            return []

        thread_ids = self.connection.fetch_thread_ids(uids)
        newest: Dict[str, int] = {}
        for uid, thread_id in thread_ids.items():
            newest[thread_id] = max(newest.get(thread_id, 0), int(uid))

        ordered = sorted(newest, key=newest.get, reverse=True)
        page = ordered[page_offset:page_offset + page_size]

        self.logger.debug(
            f"Search matched {len(uids)} messages in {len(ordered)} threads; "
            f"returning {len(page)} from offset {page_offset}"
        )

        return [
            MailThread(thread_id, self.connection.search_thread(thread_id), self)
            for thread_id in page
        ]

    def load_messages(self, uids: List[bytes]) -> List[MailMessage]:
        """Download and parse messages, oldest first; unparseable ones are dropped"""
        self._ensure_ready()
        messages = []
        for uid, internal_date, raw in self.connection.fetch_messages(uids):
            message = self.parser.parse_email(uid, raw, internal_date)
            if message is not None:
                messages.append(message)
        return messages

    def change_label(self, uids: List[bytes], label: Label, add: bool = True) -> None:
        self._ensure_ready()
        self.connection.store_label(uids, label.name, add=add)

    def get_or_create_label(self, name: str) -> Label:
        """
        Return the label, creating it when Gmail does not have it yet
        """
        self._ensure_ready()
        wanted = name.strip()
        for existing in self.connection.list_folders():
            if existing == wanted:
                return Label(existing)

        self.logger.info(f"Label {sanitize_for_logging(wanted)} not found; creating it")
        self.connection.create_folder(wanted)
        return Label(wanted)
