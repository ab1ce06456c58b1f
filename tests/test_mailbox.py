"""
Tests for the thread-level mailbox view and Gmail query building
"""

import unittest
from datetime import datetime, timezone
from unittest.mock import MagicMock

from receipt_filer.modules.imap_connection import MailboxError
from receipt_filer.modules.mail_data import MailMessage
from receipt_filer.modules.mailbox import (
    GmailMailbox,
    Label,
    build_search_query,
    gmail_label_term,
)


class TestSearchQuery(unittest.TestCase):

    def test_label_term(self):
        self.assertEqual(gmail_label_term("Train Tickets/Processed"), "train-tickets-processed")
        self.assertEqual(gmail_label_term("Receipts"), "receipts")

    def test_collection_query(self):
        self.assertEqual(
            build_search_query("tickets@rail.example", exclude_label="Train Tickets/Processed"),
            "from:tickets@rail.example -label:train-tickets-processed has:attachment",
        )

    def test_backfill_query(self):
        self.assertEqual(
            build_search_query("tickets@rail.example", newer_than_days=60),
            "from:tickets@rail.example newer_than:60d has:attachment",
        )

    def test_label_only_query(self):
        self.assertEqual(
            build_search_query("", label="Train Tickets/Processed", has_attachment=False),
            "label:train-tickets-processed",
        )


class TestGmailMailbox(unittest.TestCase):

    def setUp(self):
        self.connection = MagicMock()
        self.connection.connect.return_value = True
        self.connection.ensure_connection.return_value = True
        self.parser = MagicMock()
        self.mailbox = GmailMailbox(self.connection, self.parser)

    def test_context_manager_opens_and_closes(self):
        with self.mailbox as mailbox:
            self.assertIs(mailbox, self.mailbox)
            self.connection.select_folder.assert_called_once_with("[Gmail]/All Mail")
        self.connection.disconnect.assert_called_once()

    def test_open_failure(self):
        self.connection.connect.return_value = False
        with self.assertRaises(MailboxError):
            self.mailbox.open()

    def test_closed_even_on_error(self):
        with self.assertRaises(RuntimeError):
            with self.mailbox:
                raise RuntimeError("boom")
        self.connection.disconnect.assert_called_once()

    def test_search_groups_threads_newest_first(self):
        self.connection.search_raw.return_value = [b"3", b"5", b"7", b"9"]
        self.connection.fetch_thread_ids.return_value = {
            b"3": "A", b"5": "B", b"7": "A", b"9": "C",
        }
        self.connection.search_thread.side_effect = lambda thread_id: {
            "A": [b"3", b"7"], "B": [b"5"], "C": [b"9"],
        }[thread_id]

        page = self.mailbox.search("q", 0, 2)

        self.assertEqual([t.thread_id for t in page], ["C", "A"])
        self.assertEqual(page[1].uids, [b"3", b"7"])

        next_page = self.mailbox.search("q", 2, 2)
        self.assertEqual([t.thread_id for t in next_page], ["B"])

    def test_search_empty(self):
        self.connection.search_raw.return_value = []
        self.assertEqual(self.mailbox.search("q", 0, 50), [])
        self.connection.fetch_thread_ids.assert_not_called()

    def test_search_reconnect_failure(self):
        self.connection.ensure_connection.return_value = False
        with self.assertRaises(MailboxError):
            self.mailbox.search("q", 0, 50)

    def test_thread_messages_loaded_once(self):
        self.connection.search_raw.return_value = [b"3"]
        self.connection.fetch_thread_ids.return_value = {b"3": "A"}
        self.connection.search_thread.return_value = [b"3"]
        self.connection.fetch_messages.return_value = [("3", None, b"raw"), ("4", None, b"bad")]
        message = MailMessage("id", "s", "b", datetime(2026, 2, 1, tzinfo=timezone.utc))
        self.parser.parse_email.side_effect = [message, None]

        thread = self.mailbox.search("q", 0, 50)[0]

        self.assertEqual(thread.get_messages(), [message])
        self.assertEqual(thread.get_messages(), [message])
        self.connection.fetch_messages.assert_called_once_with([b"3"])

    def test_thread_labels(self):
        self.connection.search_raw.return_value = [b"3"]
        self.connection.fetch_thread_ids.return_value = {b"3": "A"}
        self.connection.search_thread.return_value = [b"3", b"4"]
        thread = self.mailbox.search("q", 0, 50)[0]
        label = Label("Train Tickets/Processed")

        thread.add_label(label)
        thread.remove_label(label)

        self.connection.store_label.assert_any_call([b"3", b"4"], label.name, add=True)
        self.connection.store_label.assert_any_call([b"3", b"4"], label.name, add=False)

    def test_existing_label_reused(self):
        self.connection.list_folders.return_value = ["INBOX", "Train Tickets/Processed"]
        label = self.mailbox.get_or_create_label("Train Tickets/Processed")
        self.assertEqual(label, Label("Train Tickets/Processed"))
        self.connection.create_folder.assert_not_called()

    def test_missing_label_created(self):
        self.connection.list_folders.return_value = ["INBOX"]
        label = self.mailbox.get_or_create_label("Train Tickets/Processed")
        self.assertEqual(label.name, "Train Tickets/Processed")
        self.connection.create_folder.assert_called_once_with("Train Tickets/Processed")


if __name__ == '__main__':
    unittest.main()
