"""
Unit tests for IMAPConnection

PATTERN RECOGNITION: imaplib is mocked throughout, so these tests pin down the
exact Gmail extension commands sent (X-GM-RAW, X-GM-THRID, X-GM-LABELS) and
how server responses are parsed, without network access or credentials.
"""

import imaplib
import unittest
from unittest.mock import MagicMock, patch

from receipt_filer.modules.imap_connection import (
    IMAPConnection,
    MailboxError,
    quote_imap_string,
)
from receipt_filer.utils.config import MailboxConfig


def _make_config(**overrides) -> MailboxConfig:
    """Return a minimal MailboxConfig suitable for unit tests."""
    defaults = dict(
        email="test@gmail.com",
        app_password="secret",
        imap_server="imap.gmail.com",
        imap_port=993,
        all_mail_folder="[Gmail]/All Mail",
    )
    defaults.update(overrides)
    return MailboxConfig(**defaults)


def _connected(**overrides) -> IMAPConnection:
    conn = IMAPConnection(_make_config(**overrides), rate_limit_delay=0)
    conn.logger = MagicMock()
    conn.connection = MagicMock()
    return conn


class TestQuoting(unittest.TestCase):

    def test_quote(self):
        self.assertEqual(quote_imap_string("[Gmail]/All Mail"), '"[Gmail]/All Mail"')
        self.assertEqual(quote_imap_string('a "b"'), '"a \\"b\\""')


class TestConnect(unittest.TestCase):

    def setUp(self):
        self.conn = IMAPConnection(_make_config())
        self.conn.logger = MagicMock()

    @patch("receipt_filer.modules.imap_connection.create_secure_ssl_context")
    @patch("receipt_filer.modules.imap_connection.imaplib.IMAP4_SSL")
    def test_connect_success(self, mock_imap4_ssl, mock_ssl_ctx):
        result = self.conn.connect()

        self.assertTrue(result)
        mock_imap4_ssl.assert_called_once_with(
            "imap.gmail.com", 993, ssl_context=mock_ssl_ctx.return_value, timeout=30
        )
        mock_imap4_ssl.return_value.login.assert_called_once_with("test@gmail.com", "secret")

    @patch("receipt_filer.modules.imap_connection.create_secure_ssl_context")
    @patch("receipt_filer.modules.imap_connection.imaplib.IMAP4_SSL")
    def test_auth_failure_returns_false_with_tip(self, mock_imap4_ssl, mock_ssl_ctx):
        mock_imap4_ssl.return_value.login.side_effect = imaplib.IMAP4.error(
            "[AUTHENTICATIONFAILED] Invalid credentials"
        )

        self.assertFalse(self.conn.connect())
        tip = self.conn.logger.warning.call_args[0][0]
        self.assertIn("App Password", tip)

    @patch("receipt_filer.modules.imap_connection.create_secure_ssl_context")
    @patch("receipt_filer.modules.imap_connection.imaplib.IMAP4")
    @patch("receipt_filer.modules.imap_connection.imaplib.IMAP4_SSL")
    def test_always_implicit_tls(self, mock_imap4_ssl, mock_imap4, mock_ssl_ctx):
        self.assertTrue(self.conn.connect())
        mock_imap4.assert_not_called()
        self.assertFalse(hasattr(self.conn.config, "use_ssl"))

    def test_password_not_in_repr(self):
        self.assertNotIn("secret", repr(self.conn.config))


class TestCommands(unittest.TestCase):

    def setUp(self):
        self.conn = _connected()
        self.imap = self.conn.connection

    def test_search_raw(self):
        self.imap.uid.return_value = ("OK", [b"3 7 9"])

        uids = self.conn.search_raw("from:a@b.com has:attachment")

        self.assertEqual(uids, [b"3", b"7", b"9"])
        self.imap.uid.assert_called_once_with(
            "SEARCH", None, "X-GM-RAW", '"from:a@b.com has:attachment"'
        )

    def test_search_no_results(self):
        self.imap.uid.return_value = ("OK", [b""])
        self.assertEqual(self.conn.search_raw("x"), [])

    def test_failed_command_raises(self):
        self.imap.uid.return_value = ("NO", [b"bad search"])
        with self.assertRaises(MailboxError):
            self.conn.search_raw("x")

    def test_socket_error_raises(self):
        self.imap.uid.side_effect = OSError("reset")
        with self.assertRaises(MailboxError):
            self.conn.search_raw("x")

    def test_not_connected(self):
        self.conn.connection = None
        with self.assertRaises(MailboxError):
            self.conn.search_raw("x")

    def test_fetch_thread_ids(self):
        self.imap.uid.return_value = ("OK", [
            b"1 (X-GM-THRID 1001 UID 3)",
            b"2 (X-GM-THRID 1001 UID 7)",
            b"3 (X-GM-THRID 2002 UID 9)",
        ])

        result = self.conn.fetch_thread_ids([b"3", b"7", b"9"])

        self.assertEqual(result, {b"3": "1001", b"7": "1001", b"9": "2002"})

    def test_search_thread(self):
        self.imap.uid.return_value = ("OK", [b"3 7"])
        self.assertEqual(self.conn.search_thread("1001"), [b"3", b"7"])
        self.imap.uid.assert_called_once_with("SEARCH", None, "X-GM-THRID", "1001")

    def test_fetch_messages_skips_oversized(self):
        self.conn.max_email_size = 1000
        self.imap.uid.side_effect = [
            ("OK", [b"1 (UID 3 RFC822.SIZE 500)", b"2 (UID 7 RFC822.SIZE 5000)"]),
            ("OK", [
                (b'1 (UID 3 INTERNALDATE "01-Feb-2026 09:30:00 +0000" RFC822 {5}', b"hello"),
                b")",
            ]),
        ]

        messages = self.conn.fetch_messages([b"3", b"7"])

        self.assertEqual(len(messages), 1)
        uid, internal_date, raw = messages[0]
        self.assertEqual(uid, "3")
        self.assertEqual(raw, b"hello")
        self.assertEqual((internal_date.year, internal_date.month, internal_date.day), (2026, 2, 1))
        fetch_call = self.imap.uid.call_args_list[1]
        self.assertEqual(fetch_call.args, ("FETCH", b"3", "(INTERNALDATE RFC822)"))

    def test_uid_after_literal(self):
        item = (b'1 (INTERNALDATE "01-Feb-2026 09:30:00 +0000" RFC822 {5}', b"hello")
        parsed = self.conn._parse_email_payload(item, b" UID 42)")
        self.assertEqual(parsed[0], "42")

    def test_store_label(self):
        self.imap.uid.return_value = ("OK", [])

        self.conn.store_label([b"3", b"7"], "Train Tickets/Processed")
        self.imap.uid.assert_called_with(
            "STORE", b"3,7", "+X-GM-LABELS", '("Train Tickets/Processed")'
        )

        self.conn.store_label([b"3"], "Train Tickets/Processed", add=False)
        self.imap.uid.assert_called_with(
            "STORE", b"3", "-X-GM-LABELS", '("Train Tickets/Processed")'
        )

    def test_store_label_nothing_to_do(self):
        self.conn.store_label([], "x")
        self.imap.uid.assert_not_called()

    def test_list_folders(self):
        self.imap.list.return_value = ("OK", [
            b'(\\HasNoChildren) "/" "INBOX"',
            b'(\\HasNoChildren) "/" "Train Tickets/Processed"',
            b'(\\All \\HasNoChildren) "/" "[Gmail]/All Mail"',
        ])

        self.assertEqual(
            self.conn.list_folders(),
            ["INBOX", "Train Tickets/Processed", "[Gmail]/All Mail"],
        )

    def test_create_and_select_folder(self):
        self.imap.create.return_value = ("OK", [])
        self.imap.select.return_value = ("OK", [b"12"])

        self.conn.create_folder("Train Tickets/Processed")
        self.conn.select_folder("[Gmail]/All Mail")

        self.imap.create.assert_called_once_with('"Train Tickets/Processed"')
        self.imap.select.assert_called_once_with('"[Gmail]/All Mail"')
        self.assertEqual(self.conn.selected_folder, "[Gmail]/All Mail")


class TestConnectionLifecycle(unittest.TestCase):

    def test_ensure_connection_reselects_folder(self):
        conn = _connected()
        old = conn.connection
        old.noop.side_effect = OSError("gone")
        conn.selected_folder = "[Gmail]/All Mail"
        new = MagicMock()
        new.select.return_value = ("OK", [b"1"])

        def reconnect():
            conn.connection = new
            return True

        with patch.object(conn, "connect", side_effect=reconnect):
            self.assertTrue(conn.ensure_connection())

        new.select.assert_called_once_with('"[Gmail]/All Mail"')

    def test_disconnect_clears_state(self):
        conn = _connected()
        imap = conn.connection
        conn.disconnect()
        imap.logout.assert_called_once()
        self.assertIsNone(conn.connection)


if __name__ == '__main__':
    unittest.main()
