"""
Email Parser Module
Turns raw RFC822 bytes fetched over IMAP into MailMessage objects

Receipt emails come from a third party, so parsing enforces the same limits
a mail client would:
- MIME part count (MIME bombs)
- attachment count and size (memory)
- attachment filename sanitization (path components, control characters)

Oversized attachments are dropped rather than truncated: a cut-off PDF is
worse than a missing one, because the missing one shows up in the run summary.
"""

import email
import logging
from datetime import datetime, timezone
from email.header import decode_header, make_header
from email.message import Message
from email.utils import parsedate_to_datetime
from typing import List, Optional, Tuple

from bs4 import BeautifulSoup

from .mail_data import MailAttachment, MailMessage
from ..utils.sanitization import collapse_whitespace, sanitize_for_logging
from ..utils.security_validators import (
    MAX_MIME_PARTS,
    MAX_SUBJECT_LENGTH,
    sanitize_filename,
)

NON_CONTENT_TAGS = ["script", "style", "head", "meta", "noscript"]


def html_to_text(markup: str) -> str:
    """
    Reduce an HTML body to plain text for keyword and date matching

    Text nodes are joined with spaces so dates laid out across table cells
    ("<td>Sat,</td><td>Feb 21, 2026</td>") still read as one phrase.

    Example:
        >>> html_to_text("<td>Sat,</td><td>Feb 21, 2026</td>")
        'Sat, Feb 21, 2026'
    """
    if not markup:
        return ""
    soup = BeautifulSoup(markup, "html.parser")
    for element in soup(NON_CONTENT_TAGS):
        element.decompose()
    return collapse_whitespace(soup.get_text(separator=" "))


class EmailParser:
    """
    Parses raw email bytes into MailMessage objects

    Parsing is kept apart from the IMAP connection so it can be tested with
    hand-built messages and no server.
    """

    def __init__(
        self,
        max_body_size: int = 1024 * 1024,
        max_attachment_bytes: int = 25 * 1024 * 1024,
        max_attachment_count: int = 10,
    ):
        """
        Initialize email parser

        Args:
            max_body_size: Maximum characters kept from the body
            max_attachment_bytes: Attachments larger than this are dropped
            max_attachment_count: Maximum number of attachments kept per message
        """
        self.max_body_size = max_body_size
        self.max_attachment_bytes = max_attachment_bytes
        self.max_attachment_count = max_attachment_count
        self.logger = logging.getLogger("EmailParser")

    def parse_email(
        self,
        email_id: str,
        raw_email: bytes,
        internal_date: Optional[datetime] = None,
    ) -> Optional[MailMessage]:
        """
        Parse raw email into a MailMessage

        Args:
            email_id: Identifier used when the message has no Message-ID
            raw_email: Raw RFC822 bytes
            internal_date: Server-side arrival time, used when the Date header is unusable

        Returns:
            MailMessage, or None if the bytes cannot be parsed
        """
        safe_email_id = sanitize_for_logging(email_id)
        try:
            msg = email.message_from_bytes(raw_email)

            subject = self._extract_subject(msg, safe_email_id)
            received_at = self._extract_date(msg, internal_date)
            body, attachments = self._extract_content(msg, safe_email_id)

            return MailMessage(
                message_id=(msg.get("Message-ID") or email_id).strip(),
                subject=subject,
                body=body,
                received_at=received_at,
                attachments=tuple(attachments),
            )
        except Exception as e:
            self.logger.error(f"Error parsing email {safe_email_id}: {e}")
            return None

    def _extract_subject(self, msg: Message, safe_email_id: str) -> str:
        subject = self._decode_header_value(msg.get("Subject", ""))
        if len(subject) > MAX_SUBJECT_LENGTH:
            self.logger.warning(
                f"Subject truncated to {MAX_SUBJECT_LENGTH} chars for email {safe_email_id}"
            )
            subject = subject[:MAX_SUBJECT_LENGTH]
        return subject

    def _extract_date(self, msg: Message, internal_date: Optional[datetime]) -> datetime:
        """
        Date header, then the server arrival time, then now

        Naive results are assumed to be UTC so every received_at is aware.
        """
        date_str = msg.get("Date", "")
        try:
            parsed = parsedate_to_datetime(date_str)
        except (TypeError, ValueError, IndexError):
            parsed = None

        if parsed is None:
            parsed = internal_date or datetime.now(timezone.utc)

        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    def _extract_content(
        self,
        msg: Message,
        safe_email_id: str
    ) -> Tuple[str, List[MailAttachment]]:
        """
        Walk the MIME tree collecting the body and the attachments

        Returns:
            Tuple of (body_text, attachments)
        """
        text_parts: List[str] = []
        html_parts: List[str] = []
        attachments: List[MailAttachment] = []

        part_count = 0
        for part in msg.walk():
            part_count += 1
            if part_count > MAX_MIME_PARTS:
                self.logger.warning(
                    f"Email {safe_email_id} exceeds max MIME parts ({MAX_MIME_PARTS}). "
                    f"Ignoring remaining parts."
                )
                break

            if part.is_multipart():
                continue

            content_type = part.get_content_type()
            disposition = str(part.get("Content-Disposition", "")).lower()

            if part.get_filename() or "attachment" in disposition:
                attachment = self._extract_attachment(part, attachments, safe_email_id)
                if attachment:
                    attachments.append(attachment)
            elif content_type == "text/plain":
                text_parts.append(self._decode_part_payload(part))
            elif content_type == "text/html":
                html_parts.append(self._decode_part_payload(part))

        body = "".join(text_parts)
        if not body.strip() and html_parts:
            body = html_to_text("".join(html_parts))

        if len(body) > self.max_body_size:
            self.logger.warning(
                f"Body truncated to {self.max_body_size} chars for email {safe_email_id}"
            )
            body = body[:self.max_body_size]

        return body, attachments

    def _extract_attachment(
        self,
        part: Message,
        attachments: List[MailAttachment],
        safe_email_id: str
    ) -> Optional[MailAttachment]:
        """
        Build a MailAttachment from a MIME part, or None if it is rejected
        """
        if len(attachments) >= self.max_attachment_count:
            self.logger.warning(
                f"Max attachment count ({self.max_attachment_count}) reached "
                f"for email {safe_email_id}. Skipping remaining attachments."
            )
            return None

        raw_filename = self._decode_header_value(part.get_filename() or "")
        filename = sanitize_filename(raw_filename)
        safe_filename = sanitize_for_logging(filename)

        payload = part.get_payload(decode=True) or b""
        if self.max_attachment_bytes > 0 and len(payload) > self.max_attachment_bytes:
            self.logger.warning(
                "Attachment %s in email %s exceeds max size (%d bytes); skipping",
                safe_filename,
                safe_email_id,
                len(payload),
            )
            return None

        return MailAttachment(
            filename=filename,
            mime_type=part.get_content_type(),
            data=payload,
        )

    @staticmethod
    def _decode_header_value(value: str) -> str:
        """Decode an RFC 2047 encoded header, falling back to the raw value"""
        if not value:
            return ""
        try:
            return str(make_header(decode_header(value)))
        except Exception:
            return str(value)

    @staticmethod
    def _decode_part_payload(part: Message) -> str:
        payload = part.get_payload(decode=True)
        if not payload:
            return ""
        return EmailParser._decode_bytes(payload, part.get_content_charset())

    @staticmethod
    def _decode_bytes(data: bytes, charset: Optional[str]) -> str:
        """Decode with the declared charset, falling back to UTF-8 for unknown ones"""
        encoding = charset or "utf-8"
        try:
            return data.decode(encoding, errors="replace")
        except LookupError:
            return data.decode("utf-8", errors="replace")
