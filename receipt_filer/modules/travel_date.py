"""
Travel Date Module
Works out which day a ticket is for, so the receipt can be filed under it

Three sources are tried in a fixed order and the first hit wins:

1. The attachment filename ("ticket_07_Feb_0900_receipt.pdf")
2. The email subject and body ("Sat, Feb 21, 2026" or "21 Feb 2026")
3. The day the email was received

Every result is tagged with where it came from (DateSource) so run logs
explain each filing decision.

KNOWN LIMITATION: filenames carry no year. The year is taken from the
received date and nudged across a year boundary only for the December to
January and January to December cases. A ticket booked in March for the
following February is filed under the booking year. Bookings are assumed
to be made close to the travel date.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime, tzinfo
from enum import Enum
from typing import Iterator, Optional, Tuple

from ..utils.sanitization import collapse_whitespace

MONTH_ABBREVIATIONS = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)
MONTH_NUMBERS = {name: index for index, name in enumerate(MONTH_ABBREVIATIONS, 1)}

# "07_Feb_", "7-feb-", "07 FEB " (separator required on both sides of the month)
FILENAME_DATE_PATTERN = re.compile(r"(\d{1,2})[ _-]([A-Za-z]{3})[ _-]")

# "Sat, Feb 21, 2026"
WEEKDAY_DATE_PATTERN = re.compile(
    r"\b(?:Mon|Tue|Wed|Thu|Fri|Sat|Sun),\s+([A-Za-z]{3})\s+(\d{1,2}),\s+(\d{4})\b",
    re.IGNORECASE,
)

# "21 Feb 2026"
DAY_MONTH_YEAR_PATTERN = re.compile(r"\b(\d{1,2})\s+([A-Za-z]{3})\s+(\d{4})\b")


class DateSource(Enum):
    """Where a travel date was found"""
    ATTACHMENT_NAME = "AttachmentName"
    EMAIL_BODY = "EmailBody"
    EMAIL_SENT_DATE = "EmailSentDate"
    NONE = "None"


@dataclass(frozen=True)
class ResolvedDate:
    """A travel date plus its provenance; date is None only for DateSource.NONE"""
    date: Optional[date]
    source: DateSource

    @property
    def found(self) -> bool:
        return self.date is not None

    def __str__(self) -> str:
        if self.date is None:
            return "no travel date"
        return f"{self.date.isoformat()} ({self.source.value})"


NO_DATE = ResolvedDate(None, DateSource.NONE)


def month_number(token: str) -> Optional[int]:
    """
    Look up a three-letter month abbreviation, ignoring case

    Example:
        >>> month_number("FEB")
        2
        >>> month_number("Foo") is None
        True
    """
    return MONTH_NUMBERS.get(token[:1].upper() + token[1:].lower())


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def received_day(received_at: datetime, tz: Optional[tzinfo] = None) -> date:
    """
    Calendar day of a received timestamp in the configured timezone

    Aware timestamps are converted first so a message received at 00:30 local
    time (23:30 UTC the day before) lands on the local day. Naive timestamps
    are taken as they are.
    """
    if received_at.tzinfo is not None:
        received_at = received_at.astimezone(tz)
    return received_at.date()


def infer_year(month: int, received: date) -> int:
    """
    Pick the year for a day/month that came without one

    Received in December, travelling in January: next year.
    Received in January, travelling in December: previous year.
    Anything else: the received year.
    """
    if received.month == 12 and month == 1:
        return received.year + 1
    if received.month == 1 and month == 12:
        return received.year - 1
    return received.year


def _filename_candidates(filename: str) -> Iterator[Tuple[int, int]]:
    for match in FILENAME_DATE_PATTERN.finditer(filename):
        month = month_number(match.group(2))
        if month is not None:
            yield int(match.group(1)), month


def date_from_filename(filename: str, received: date) -> Optional[date]:
    """
    Extract a travel date from an attachment filename

    Args:
        filename: Attachment filename
        received: Calendar day the message was received (drives the year)

    Returns:
        The first valid date in the name, or None
    """
    if not filename:
        return None

    for day, month in _filename_candidates(filename):
        found = _safe_date(infer_year(month, received), month, day)
        if found is not None:
            return found
    return None


def date_from_text(text: str) -> Optional[date]:
    """
    Extract a travel date with an explicit year from free text

    "Sat, Feb 21, 2026" style dates are looked for first; only when none is
    present is "21 Feb 2026" tried. Within each style the first valid date
    in the text wins.
    """
    text = collapse_whitespace(text)
    if not text:
        return None

    for match in WEEKDAY_DATE_PATTERN.finditer(text):
        month = month_number(match.group(1))
        if month is not None:
            found = _safe_date(int(match.group(3)), month, int(match.group(2)))
            if found is not None:
                return found

    for match in DAY_MONTH_YEAR_PATTERN.finditer(text):
        month = month_number(match.group(2))
        if month is not None:
            found = _safe_date(int(match.group(3)), month, int(match.group(1)))
            if found is not None:
                return found

    return None


def resolve_travel_date(
    attachment_filename: str,
    message_text: str,
    received_at: datetime,
    allow_sent_date_fallback: bool = True,
    tz: Optional[tzinfo] = None,
) -> ResolvedDate:
    """
    Resolve the travel date for one attachment

    Args:
        attachment_filename: Name of the PDF attachment
        message_text: Subject and body of the message
        received_at: When the message was received
        allow_sent_date_fallback: Fall back to the received day when nothing
            parses. Backfill turns this off so an unparsed ticket is skipped
            rather than filed under the wrong month.
        tz: Timezone for reading received_at (None = system local)

    Returns:
        ResolvedDate tagged with its source
    """
    received = received_day(received_at, tz)

    found = date_from_filename(attachment_filename, received)
    if found is not None:
        return ResolvedDate(found, DateSource.ATTACHMENT_NAME)

    found = date_from_text(message_text)
    if found is not None:
        return ResolvedDate(found, DateSource.EMAIL_BODY)

    if allow_sent_date_fallback:
        return ResolvedDate(received, DateSource.EMAIL_SENT_DATE)

    return NO_DATE
