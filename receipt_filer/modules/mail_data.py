"""
Mail Data Model
Immutable containers for the messages and attachments read from the mailbox
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Tuple

PDF_MIME_TYPE = "application/pdf"


@dataclass(frozen=True)
class MailAttachment:
    """A single attachment taken from a message"""
    filename: str
    mime_type: str
    data: bytes = field(repr=False)

    @property
    def is_pdf(self) -> bool:
        return self.mime_type == PDF_MIME_TYPE


@dataclass(frozen=True)
class MailMessage:
    """
    A parsed message

    ``body`` is plain text. When the message only had an HTML part it has
    already been reduced to text by the parser.
    """
    message_id: str
    subject: str
    body: str
    received_at: datetime
    attachments: Tuple[MailAttachment, ...] = ()

    @property
    def text(self) -> str:
        """Subject and body together, as searched by the filters and the date parser"""
        return f"{self.subject} {self.body}"
