"""
Security Validators Module
Centralizes security limits and validation helpers for mailbox and webhook access

SECURITY STORY: Receipts arrive from the outside world, so the mail we read
is untrusted input:
- MAX_SUBJECT_LENGTH: keeps absurd subjects out of logs and summaries
- MAX_MIME_PARTS: stops MIME bombs before they cost us a whole run
- DEFAULT_MAX_EMAIL_SIZE: never download an unbounded message
"""

import ipaddress
import logging
import re
import socket
import ssl
from typing import Optional, Tuple, Union
from urllib.parse import urlparse

MAX_SUBJECT_LENGTH = 1024
MAX_MIME_PARTS = 100

# Fallback ceiling when no attachment limit is configured
DEFAULT_MAX_EMAIL_SIZE = 500 * 1024 * 1024

# Whitelist of characters allowed in attachment names (CWE-22)
FILENAME_SANITIZE_PATTERN = re.compile(r"[^\w\s\-_\.]")
FILENAME_COLLAPSE_DOTS_PATTERN = re.compile(r"\.{2,}")

WINDOWS_RESERVED_NAMES = {
    "CON", "PRN", "AUX", "NUL",
    "COM1", "COM2", "COM3", "COM4", "COM5", "COM6", "COM7", "COM8", "COM9",
    "LPT1", "LPT2", "LPT3", "LPT4", "LPT5", "LPT6", "LPT7", "LPT8", "LPT9"
}

WEBHOOK_SCHEMES = {"https": 443, "http": 80}

# Address properties that rule a webhook host out, checked in order
NON_PUBLIC_CHECKS = (
    ("is_loopback", "loopback"),
    ("is_private", "private IP"),
    ("is_link_local", "link-local"),
    ("is_multicast", "multicast"),
    ("is_reserved", "reserved"),
    ("is_unspecified", "unspecified"),
)

logger = logging.getLogger(__name__)


def sanitize_filename(filename: str) -> str:
    """
    Sanitize an attachment filename (CWE-22)

    Attachment names only feed the date parser and the keyword filter, but
    they also end up in logs and run summaries, so path components and
    unusual characters are removed up front.

    Args:
        filename: Original filename from the MIME part

    Returns:
        Sanitized filename

    Example:
        >>> sanitize_filename("../../etc/ticket_07_Feb.pdf")
        'ticket_07_Feb.pdf'
    """
    if not filename:
        return "unnamed_attachment"

    # Drop path components before character filtering
    filename = filename.split("/")[-1].split("\\")[-1]

    sanitized = FILENAME_SANITIZE_PATTERN.sub("", filename)
    sanitized = FILENAME_COLLAPSE_DOTS_PATTERN.sub(".", sanitized)
    sanitized = sanitized.strip(". ")

    if not sanitized:
        return "unnamed_attachment"

    base_name = sanitized.split('.')[0].strip().upper()
    if base_name in WINDOWS_RESERVED_NAMES:
        sanitized = "_" + sanitized

    return sanitized[:255]


def create_secure_ssl_context() -> ssl.SSLContext:
    """
    Create an SSL context with TLS 1.2+ and certificate verification

    Returns:
        Configured SSL context
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    context.check_hostname = True
    context.verify_mode = ssl.CERT_REQUIRED
    context.load_default_certs()

    logger.debug("Created secure SSL context with TLS 1.2+ enforcement")
    return context


def calculate_max_email_size(max_total_attachment_bytes: int) -> int:
    """
    Derive the per-message download ceiling from the attachment limit

    Args:
        max_total_attachment_bytes: Maximum total attachment size (0 = unlimited)

    Returns:
        Maximum message size in bytes (5MB overhead for headers and body)
    """
    if max_total_attachment_bytes > 0:
        return max_total_attachment_bytes + (5 * 1024 * 1024)
    return DEFAULT_MAX_EMAIL_SIZE


def _non_public_reason(ip: Union[ipaddress.IPv4Address, ipaddress.IPv6Address]) -> Optional[str]:
    """Describe why an address must not receive webhook traffic, or None"""
    for attribute, label in NON_PUBLIC_CHECKS:
        if getattr(ip, attribute):
            return label
    return None


def is_safe_webhook_url(url: str) -> Tuple[bool, str]:
    """
    Check a summary webhook URL against SSRF

    Run summaries list subjects and filenames from the mailbox, so they must
    only ever be posted to a public host. The hostname is resolved at
    configuration validation time and every address it resolves to has to
    be public.

    Args:
        url: Webhook URL from SUMMARY_WEBHOOK_URL

    Returns:
        Tuple of (is_safe, reason); reason is empty when the URL is safe
    """
    if not url:
        return False, "URL is empty"

    try:
        parsed = urlparse(url)
        port = parsed.port
    except ValueError as e:
        return False, f"Failed to parse URL: {e}"

    if parsed.scheme not in WEBHOOK_SCHEMES:
        return False, f"URL scheme must be http or https, got: {parsed.scheme}"
    if not parsed.hostname:
        return False, "URL must contain a valid hostname"

    host = parsed.hostname
    try:
        resolved = socket.getaddrinfo(
            host, port or WEBHOOK_SCHEMES[parsed.scheme], socket.AF_UNSPEC, socket.SOCK_STREAM
        )
    except socket.gaierror as e:
        return False, f"Could not resolve hostname '{host}': {e}"

    for address in {entry[4][0] for entry in resolved}:
        try:
            ip = ipaddress.ip_address(address)
        except ValueError:
            return False, f"Resolved to an invalid IP address: {address}"
        reason = _non_public_reason(ip)
        if reason:
            return False, f"'{host}' resolves to {reason} ({address})"

    return True, ""
