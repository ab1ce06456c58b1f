"""
Sanitization Utility Module
Provides functions to sanitize inputs for safe logging and display.
"""

import re
import unicodedata

ANSI_ESCAPE_PATTERN = re.compile(r'\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])')
WHITESPACE_PATTERN = re.compile(r'\s+')


def sanitize_for_logging(text: str, max_length: int = 255) -> str:
    """
    Sanitize text for safe logging to prevent Log Injection (CRLF) and terminal manipulation.

    Subjects, attachment names and folder names all come from the sender of
    the email, so anything we log about them goes through here first.

    Args:
        text: The input string to sanitize.
        max_length: Maximum allowed length for the log entry (truncates if longer).

    Returns:
        Sanitized string safe for logging.
    """
    if not text:
        return ""

    # 1. Normalize unicode characters
    text = unicodedata.normalize('NFKC', text)

    # 2. Replace newlines and carriage returns with escaped versions
    text = text.replace('\n', '\\n').replace('\r', '\\r')

    # 3. Remove ANSI escape sequences (terminal colors/cursor movement)
    text = ANSI_ESCAPE_PATTERN.sub('', text)

    # 4. Remove other non-printable control characters (ASCII 0-31 except tab)
    text = "".join(ch for ch in text if ch == '\t' or ord(ch) >= 32)

    # 5. Truncate to prevent log flooding
    if len(text) > max_length:
        text = text[:max_length] + "..."

    return text


def collapse_whitespace(text: str) -> str:
    """
    Collapse every run of whitespace to a single space and strip the ends

    Example:
        >>> collapse_whitespace("  Sat,\\n Feb   21, 2026 ")
        'Sat, Feb 21, 2026'
    """
    if not text:
        return ""
    return WHITESPACE_PATTERN.sub(" ", text).strip()
