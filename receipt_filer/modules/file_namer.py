"""
File Namer Module
Canonical receipt names and collision-free renaming

Names are built from fixed English tables rather than strftime so the output
does not depend on the machine's locale.
"""

from datetime import date
from typing import Callable, Tuple

from .travel_date import MONTH_ABBREVIATIONS

MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)
WEEKDAY_ABBREVIATIONS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")

PDF_SUFFIX = ".pdf"


def build_canonical_name(travel_date: date) -> str:
    """
    Build the receipt filename for a travel date

    Example:
        >>> build_canonical_name(date(2026, 2, 7))
        'Feb - Sat - 07-02-2026.pdf'
    """
    return (
        f"{MONTH_ABBREVIATIONS[travel_date.month - 1]} - "
        f"{WEEKDAY_ABBREVIATIONS[travel_date.weekday()]} - "
        f"{travel_date.day:02d}-{travel_date.month:02d}-{travel_date.year:04d}{PDF_SUFFIX}"
    )


def year_folder_name(travel_date: date) -> str:
    return f"{travel_date.year:04d}"


def month_folder_name(travel_date: date) -> str:
    return MONTH_NAMES[travel_date.month - 1]


def resolve_unique_name(exists: Callable[[str], bool], candidate_name: str) -> Tuple[str, bool]:
    """
    Find the first unused name for a receipt

    Probes the candidate itself, then "<base> (2).pdf", "<base> (3).pdf" and
    so on, one at a time, until ``exists`` reports the name is free. Nothing
    is ever overwritten.

    Args:
        exists: Callable answering "is there already a file with this name?"
        candidate_name: Name produced by build_canonical_name

    Returns:
        Tuple of (unused_name, renamed)
    """
    if not exists(candidate_name):
        return candidate_name, False

    if candidate_name.lower().endswith(PDF_SUFFIX):
        base = candidate_name[:-len(PDF_SUFFIX)]
    else:
        base = candidate_name

    counter = 2
    while True:
        name = f"{base} ({counter}){PDF_SUFFIX}"
        if not exists(name):
            return name, True
        counter += 1
