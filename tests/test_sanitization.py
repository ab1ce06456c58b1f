"""
Tests for log sanitization and filename hygiene

SECURITY STORY: subjects and attachment names are chosen by whoever sent the
email. These tests make sure they cannot forge log lines, drive the terminal,
or smuggle path components into anything we print.
"""

import socket
import unittest
from unittest.mock import patch

from receipt_filer.utils.sanitization import collapse_whitespace, sanitize_for_logging
from receipt_filer.utils.security_validators import (
    calculate_max_email_size,
    DEFAULT_MAX_EMAIL_SIZE,
    is_safe_webhook_url,
    sanitize_filename,
)


class TestSanitizeForLogging(unittest.TestCase):

    def test_newlines_escaped(self):
        self.assertEqual(
            sanitize_for_logging("Ticket\nERROR - forged line"),
            "Ticket\\nERROR - forged line",
        )

    def test_ansi_removed(self):
        self.assertEqual(sanitize_for_logging("\x1b[31mred\x1b[0m"), "red")

    def test_control_characters_removed(self):
        self.assertEqual(sanitize_for_logging("a\x00b\x07c"), "abc")

    def test_truncated(self):
        result = sanitize_for_logging("x" * 300, max_length=10)
        self.assertEqual(result, "x" * 10 + "...")

    def test_empty(self):
        self.assertEqual(sanitize_for_logging(""), "")
        self.assertEqual(sanitize_for_logging(None), "")


class TestCollapseWhitespace(unittest.TestCase):

    def test_collapse(self):
        self.assertEqual(collapse_whitespace("  Sat,\n Feb   21, 2026 "), "Sat, Feb 21, 2026")

    def test_empty(self):
        self.assertEqual(collapse_whitespace(""), "")


class TestSanitizeFilename(unittest.TestCase):

    def test_path_components_dropped(self):
        self.assertEqual(sanitize_filename("../../etc/ticket_07_Feb.pdf"), "ticket_07_Feb.pdf")
        self.assertEqual(sanitize_filename("C:\\tmp\\ticket.pdf"), "ticket.pdf")

    def test_keeps_date_separators(self):
        self.assertEqual(
            sanitize_filename("ticket 07-Feb_0900 receipt.pdf"),
            "ticket 07-Feb_0900 receipt.pdf",
        )

    def test_unsafe_characters_removed(self):
        self.assertEqual(sanitize_filename("tick<et>|.pdf"), "ticket.pdf")

    def test_empty_name(self):
        self.assertEqual(sanitize_filename(""), "unnamed_attachment")
        self.assertEqual(sanitize_filename("..."), "unnamed_attachment")

    def test_reserved_windows_name(self):
        self.assertEqual(sanitize_filename("CON.pdf"), "_CON.pdf")


class TestMaxEmailSize(unittest.TestCase):

    def test_derived_from_attachment_limit(self):
        self.assertEqual(calculate_max_email_size(10), 10 + 5 * 1024 * 1024)

    def test_unlimited(self):
        self.assertEqual(calculate_max_email_size(0), DEFAULT_MAX_EMAIL_SIZE)


class TestWebhookSSRF(unittest.TestCase):

    def test_invalid_scheme(self):
        is_safe, msg = is_safe_webhook_url("ftp://example.com")
        self.assertFalse(is_safe)
        self.assertIn("scheme must be http or https", msg)

    @patch('socket.getaddrinfo')
    def test_private_ip_rejected(self, mock_getaddrinfo):
        mock_getaddrinfo.return_value = [
            (socket.AF_INET, socket.SOCK_STREAM, 6, '', ('192.168.1.10', 443))
        ]
        is_safe, msg = is_safe_webhook_url("https://router.example")
        self.assertFalse(is_safe)
        self.assertIn("private", msg)

    @patch('socket.getaddrinfo')
    def test_public_ip_accepted(self, mock_getaddrinfo):
        mock_getaddrinfo.return_value = [
            (socket.AF_INET, socket.SOCK_STREAM, 6, '', ('8.8.8.8', 443))
        ]
        self.assertEqual(is_safe_webhook_url("https://hooks.example.com/x"), (True, ""))


if __name__ == '__main__':
    unittest.main()
