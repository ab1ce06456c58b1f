"""
IMAP Connection Module
Handles the Gmail IMAP connection and the Gmail-specific commands we rely on

PATTERN RECOGNITION: This follows the Adapter pattern - it wraps Python's
imaplib and exposes the handful of operations the filer needs:
- X-GM-RAW: run a Gmail search ("from:x -label:y has:attachment") server-side
- X-GM-THRID: group messages into conversations
- X-GM-LABELS: add and remove labels on messages

SECURITY STORY: credentials travel over this connection (TLS 1.2+ enforced),
and message sizes are checked before anything is downloaded.

Command failures raise MailboxError. The sweep cannot continue without the
mailbox, so these are not swallowed here.
"""

import imaplib
import logging
import re
import ssl
import time
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from ..utils.config import MailboxConfig
from ..utils.sanitization import sanitize_for_logging
from ..utils.security_validators import (
    calculate_max_email_size,
    create_secure_ssl_context,
)

LIST_RESPONSE_PATTERN = re.compile(
    rb'\((?P<flags>[^)]*)\) (?P<delimiter>"(?:[^"\\]|\\.)*"|NIL) (?P<name>.+)$'
)
UID_PATTERN = re.compile(rb"\bUID (\d+)")
THREAD_ID_PATTERN = re.compile(rb"\bX-GM-THRID (\d+)")
SIZE_PATTERN = re.compile(rb"\bRFC822\.SIZE (\d+)")

FETCH_BATCH_SIZE = 10


class MailboxError(Exception):
    """Raised when the mailbox cannot be reached or a command fails"""


def quote_imap_string(value: str) -> str:
    """
    Quote a string argument for an IMAP command

    imaplib sends arguments verbatim, so folder names with spaces and search
    expressions have to be quoted by the caller.

    Example:
        >>> quote_imap_string('[Gmail]/All Mail')
        '"[Gmail]/All Mail"'
    """
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _unquote(value: str) -> str:
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        return value[1:-1].replace('\\"', '"').replace("\\\\", "\\")
    return value


def _apply_ssl_overrides(
    context: ssl.SSLContext,
    verify_ssl: bool,
    log_warning: Callable[[str], None]
) -> None:
    """
    Disable certificate validation when verify_ssl is False

    Only meant for test servers with self-signed certificates.
    """
    if not verify_ssl:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        log_warning("SSL verification disabled - use only for testing!")


class IMAPConnection:
    """
    Manages the IMAP connection and Gmail extension commands

    MAINTENANCE WISDOM: Keep connection management separate from parsing.
    This class only moves bytes; EmailParser turns them into messages.
    """

    def __init__(
        self,
        config: MailboxConfig,
        rate_limit_delay: float = 1,
        max_total_attachment_bytes: int = 100 * 1024 * 1024
    ):
        """
        Initialize IMAP connection manager

        Args:
            config: Mailbox configuration
            rate_limit_delay: Delay between fetch batches (seconds)
            max_total_attachment_bytes: Used to derive the per-message size ceiling
        """
        self.config = config
        self.rate_limit_delay = rate_limit_delay
        self.max_email_size = calculate_max_email_size(max_total_attachment_bytes)
        self.connection: Optional[imaplib.IMAP4_SSL] = None
        self.selected_folder: Optional[str] = None
        self.logger = logging.getLogger(f"IMAPConnection.{config.provider}")

    def connect(self) -> bool:
        """
        Establish connection to IMAP server with secure TLS

        Returns:
            True if connection successful, False otherwise
        """
        try:
            self.logger.info(f"Connecting to {self.config.imap_server}:{self.config.imap_port} over TLS")

            context = create_secure_ssl_context()
            _apply_ssl_overrides(context, self.config.verify_ssl, self.logger.warning)

            # Gmail only offers implicit TLS on 993
            self.connection = imaplib.IMAP4_SSL(
                self.config.imap_server,
                self.config.imap_port,
                ssl_context=context,
                timeout=30
            )

            self.connection.login(self.config.email, self.config.app_password)
            self.logger.info("Successfully connected to mailbox")
            return True

        except imaplib.IMAP4.error as e:
            self.logger.error(f"IMAP connection error: {e}")
            tip = self._get_auth_tip(str(e))
            if tip:
                self.logger.warning(tip)
            return False
        except Exception as e:
            self.logger.error(f"Unexpected connection error: {e}")
            return False

    def ensure_connection(self) -> bool:
        """
        Ensure the IMAP connection is alive, reconnecting if necessary

        A reconnect loses the selected folder, so it is selected again.

        Returns:
            True if connection is ready, False if reconnection failed
        """
        if not self.connection:
            return self.connect()

        try:
            self.connection.noop()
            return True
        except Exception as exc:
            self.logger.warning(f"IMAP connection lost ({exc}), attempting reconnect")
            folder = self.selected_folder
            self.disconnect()
            if not self.connect():
                return False
            if folder:
                self.select_folder(folder)
            return True

    def disconnect(self):
        """
        Close IMAP connection gracefully
        """
        if not self.connection:
            return

        try:
            self.connection.logout()
            self.logger.info("Disconnected from IMAP server")
        except Exception:
            self.logger.debug("Connection was already closed or logout failed")
        finally:
            self.connection = None
            self.selected_folder = None

    def _require_connection(self) -> imaplib.IMAP4:
        if not self.connection:
            raise MailboxError("Not connected to the IMAP server")
        return self.connection

    def _run(self, description: str, command: Callable[[], Tuple[str, list]]) -> list:
        """
        Run one IMAP command, turning failures into MailboxError

        Args:
            description: Short text used in the error message
            command: Zero-argument callable issuing the command

        Returns:
            The untagged response data
        """
        try:
            status, data = command()
        except (imaplib.IMAP4.error, OSError) as e:
            raise MailboxError(f"{description} failed: {e}") from e

        if status != "OK":
            raise MailboxError(f"{description} failed: {status} {data!r}")
        return data or []

    def list_folders(self) -> List[str]:
        """
        List mailbox folders (Gmail labels appear here as folders)

        Returns:
            Folder names, unquoted
        """
        connection = self._require_connection()
        data = self._run("LIST", connection.list)

        names = []
        for line in data:
            if not isinstance(line, bytes):
                continue
            match = LIST_RESPONSE_PATTERN.match(line.strip())
            if match:
                names.append(_unquote(match.group("name").decode("utf-8", errors="replace")))
        return names

    def create_folder(self, name: str) -> None:
        """Create a folder, which in Gmail creates a label of the same name"""
        connection = self._require_connection()
        self._run(f"CREATE {sanitize_for_logging(name)}",
                  lambda: connection.create(quote_imap_string(name)))
        self.logger.info(f"Created label {sanitize_for_logging(name)}")

    def select_folder(self, folder: str) -> None:
        """
        Select a folder read-write (labels are changed through STORE)

        Args:
            folder: Folder name, e.g. "[Gmail]/All Mail"
        """
        connection = self._require_connection()
        safe_folder = sanitize_for_logging(folder)
        self._run(f"SELECT {safe_folder}", lambda: connection.select(quote_imap_string(folder)))
        self.selected_folder = folder
        self.logger.debug(f"Selected folder: {safe_folder}")

    def search_raw(self, query: str) -> List[bytes]:
        """
        Run a Gmail search expression in the selected folder

        Args:
            query: Gmail search grammar, e.g. "from:a@b.com has:attachment"

        Returns:
            Matching UIDs, oldest first
        """
        connection = self._require_connection()
        data = self._run(
            "X-GM-RAW search",
            lambda: connection.uid("SEARCH", None, "X-GM-RAW", quote_imap_string(query))
        )
        return data[0].split() if data and data[0] else []

    def search_thread(self, thread_id: str) -> List[bytes]:
        """UIDs of every message in a conversation, oldest first"""
        connection = self._require_connection()
        data = self._run(
            f"X-GM-THRID search {thread_id}",
            lambda: connection.uid("SEARCH", None, "X-GM-THRID", thread_id)
        )
        return data[0].split() if data and data[0] else []

    def fetch_thread_ids(self, uids: Sequence[bytes]) -> Dict[bytes, str]:
        """
        Look up the conversation id of each UID

        Returns:
            Mapping of UID to X-GM-THRID
        """
        if not uids:
            return {}

        connection = self._require_connection()
        data = self._run(
            "X-GM-THRID fetch",
            lambda: connection.uid("FETCH", b",".join(uids), "(X-GM-THRID)")
        )

        thread_ids: Dict[bytes, str] = {}
        for item in data:
            info = item[0] if isinstance(item, tuple) else item
            if not isinstance(info, bytes):
                continue
            uid_match = UID_PATTERN.search(info)
            thread_match = THREAD_ID_PATTERN.search(info)
            if uid_match and thread_match:
                thread_ids[uid_match.group(1)] = thread_match.group(1).decode()
        return thread_ids

    def fetch_messages(
        self,
        uids: Sequence[bytes]
    ) -> List[Tuple[str, Optional[datetime], bytes]]:
        """
        Download messages with size pre-checking

        Two steps: RFC822.SIZE first (cheap), then the full message for the
        UIDs under the size ceiling. Batches are spaced by rate_limit_delay.

        Returns:
            List of (uid, internal_date, raw_bytes)
        """
        messages = []
        uids = list(uids)
        for start in range(0, len(uids), FETCH_BATCH_SIZE):
            if start > 0 and self.rate_limit_delay:
                time.sleep(self.rate_limit_delay)
            batch = self._check_email_sizes(uids[start:start + FETCH_BATCH_SIZE])
            if batch:
                messages.extend(self._fetch_batch(batch))
        return messages

    def _check_email_sizes(self, uids: List[bytes]) -> List[bytes]:
        """
        Return the UIDs whose RFC822.SIZE is within the limit
        """
        connection = self._require_connection()
        data = self._run(
            "RFC822.SIZE fetch",
            lambda: connection.uid("FETCH", b",".join(uids), "(RFC822.SIZE)")
        )

        safe_uids = []
        for item in data:
            info = item[0] if isinstance(item, tuple) else item
            if not isinstance(info, bytes):
                continue
            uid_match = UID_PATTERN.search(info)
            size_match = SIZE_PATTERN.search(info)
            if not uid_match or not size_match:
                continue
            size = int(size_match.group(1))
            if size > self.max_email_size:
                self.logger.warning(
                    f"Skipping oversized email UID {uid_match.group(1).decode()} "
                    f"({size} bytes > {self.max_email_size})"
                )
                continue
            safe_uids.append(uid_match.group(1))
        return safe_uids

    def _fetch_batch(self, uids: List[bytes]) -> List[Tuple[str, Optional[datetime], bytes]]:
        connection = self._require_connection()
        data = self._run(
            "RFC822 fetch",
            lambda: connection.uid("FETCH", b",".join(uids), "(INTERNALDATE RFC822)")
        )

        messages = []
        for index, item in enumerate(data):
            trailer = data[index + 1] if index + 1 < len(data) else None
            parsed = self._parse_email_payload(item, trailer)
            if parsed:
                messages.append(parsed)
        return messages

    def _parse_email_payload(
        self,
        item,
        trailer=None
    ) -> Optional[Tuple[str, Optional[datetime], bytes]]:
        """
        Parse one (header, body) pair from a FETCH response

        The header looks like b'12 (UID 345 INTERNALDATE "..." RFC822 {6789}'.
        Servers may also send the UID after the literal, in the trailing
        b' UID 345)' element, so that is checked too.
        """
        if not isinstance(item, tuple) or len(item) < 2:
            return None

        header, raw_bytes = item[0], item[1]
        uid_match = UID_PATTERN.search(header) if isinstance(header, bytes) else None
        if uid_match is None and isinstance(trailer, bytes):
            uid_match = UID_PATTERN.search(trailer)
        if uid_match is None or not isinstance(raw_bytes, bytes):
            self.logger.warning(f"Unexpected FETCH payload: {sanitize_for_logging(repr(header))}")
            return None

        internal_date = None
        time_tuple = imaplib.Internaldate2tuple(header)
        if time_tuple is not None:
            internal_date = datetime.fromtimestamp(time.mktime(time_tuple), timezone.utc)

        return uid_match.group(1).decode(), internal_date, raw_bytes

    def store_label(self, uids: Sequence[bytes], label: str, add: bool = True) -> None:
        """
        Add or remove a Gmail label on messages

        Args:
            uids: Messages to change
            label: Label name
            add: True to add, False to remove
        """
        if not uids:
            return
        connection = self._require_connection()
        operation = "+X-GM-LABELS" if add else "-X-GM-LABELS"
        self._run(
            f"STORE {operation}",
            lambda: connection.uid(
                "STORE", b",".join(uids), operation, f"({quote_imap_string(label)})"
            )
        )

    def _get_auth_tip(self, error_msg: str) -> Optional[str]:
        """
        Get actionable tip for authentication failures

        Returns:
            User-friendly tip or None
        """
        msg_lower = error_msg.lower()
        auth_keywords = [
            "authentication failed", "login failed", "invalid credentials",
            "authenticate"
        ]
        if not any(k in msg_lower for k in auth_keywords):
            return None

        if "gmail" in self.config.imap_server.lower():
            return (
                "Gmail requires 2-Step Verification enabled and an App Password "
                "to use IMAP."
            )

        return (
            "Check your email and password. If using 2FA, you likely need "
            "an App Password."
        )
