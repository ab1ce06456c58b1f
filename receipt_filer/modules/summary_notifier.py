"""
Summary Notifier
Delivers the end-of-run summary to the console, a webhook and Slack
"""

import logging
from datetime import datetime

import requests

from .run_report import RunReport
from ..utils.colors import Colors
from ..utils.config import SummaryConfig
from ..utils.sanitization import sanitize_for_logging

MAX_CONSOLE_MESSAGES = 50


class SummaryNotifier:
    """Sends the run summary through the configured channels"""

    def __init__(self, config: SummaryConfig):
        """
        Initialize summary notifier

        Args:
            config: SummaryConfig object
        """
        self.config = config
        self.logger = logging.getLogger("SummaryNotifier")

    def send_summary(self, report: RunReport):
        """
        Send the summary through every enabled channel

        Delivery problems are logged; the run's outcome does not depend on them.
        """
        self.log_summary(report)

        if self.config.console:
            self._console_summary(report)

        if self.config.webhook_enabled and self.config.webhook_url:
            self._webhook_summary(report)

        if self.config.slack_enabled and self.config.slack_webhook:
            self._slack_summary(report)

    def log_summary(self, report: RunReport):
        """Write the counters to the log so unattended runs keep a record"""
        summary = report.get_summary()
        self.logger.info(
            f"Run complete ({summary['mode']}): "
            f"threads={summary['threads_scanned']} "
            f"messages={summary['messages_scanned']} "
            f"saved={summary['files_saved']} "
            f"renamed={summary['duplicates_renamed']} "
            f"skipped={report.files_skipped}"
        )
        for reason, count in sorted(summary["skip_reasons"].items()):
            self.logger.info(f"  skipped ({reason}): {count}")

    def _console_summary(self, report: RunReport):
        """Print the summary to the console"""
        bar = Colors.colorize("=" * 80, Colors.CYAN)

        print("\n" + bar)
        print(Colors.header(f"RUN SUMMARY - {report.mode.upper()}"))
        print(bar)

        rows = [
            ("Threads scanned", report.threads_scanned, False),
            ("Messages scanned", report.messages_scanned, False),
            ("Files saved", report.files_saved, False),
            ("Duplicates renamed", report.duplicates_renamed, True),
            ("Skipped", report.files_skipped, True),
        ]
        for label, count, bad in rows:
            value = Colors.colorize(str(count), Colors.for_count(count, bad))
            print(f"{Colors.BOLD}{label + ':':<20}{Colors.RESET} {value}")

        if report.skip_reasons:
            print(f"\n{Colors.BOLD}--- SKIP REASONS ---{Colors.RESET}")
            for reason, count in report.skip_reasons.most_common():
                print(f"  {Colors.colorize('•', Colors.YELLOW)} {reason}: {count}")

        if report.messages:
            print(f"\n{Colors.BOLD}--- MESSAGES ---{Colors.RESET}")
            for entry in list(report.messages.values())[:MAX_CONSOLE_MESSAGES]:
                print(f"  {entry.date}  {sanitize_for_logging(entry.subject, max_length=80)}")
                for name in entry.saved:
                    print(f"    {Colors.colorize('►', Colors.GREEN)} {sanitize_for_logging(name)}")
                for reason in entry.skipped:
                    print(f"    {Colors.colorize('·', Colors.GREY)} {sanitize_for_logging(reason)}")
            hidden = len(report.messages) - MAX_CONSOLE_MESSAGES
            if hidden > 0:
                print(f"  ... and {hidden} more (see log file)")

        print(bar + "\n")

    def _webhook_summary(self, report: RunReport):
        """Post the summary as JSON"""
        try:
            response = requests.post(
                self.config.webhook_url,
                json=report.get_summary(),
                headers={'Content-Type': 'application/json'},
                timeout=10
            )

            if response.status_code == 200:
                self.logger.info("Webhook summary sent successfully")
            else:
                self.logger.warning(f"Webhook summary failed: {response.status_code}")

        except requests.RequestException as e:
            self.logger.error(f"Failed to send webhook summary: {e}")

    @staticmethod
    def _escape_for_slack(text: str) -> str:
        """
        Escape &, <, > so subjects cannot inject Slack links or mentions
        """
        # https://api.slack.com/reference/surfaces/formatting#escaping
        text = sanitize_for_logging(text)
        return text.replace('&', '&amp;').replace('<', '&lt;').replace('>', '&gt;')

    def _slack_summary(self, report: RunReport):
        """Send the summary to Slack"""
        try:
            color = "#ff9900" if report.skip_reasons.get("save failed") else "#36a64f"

            fields = [
                {"title": "Files saved", "value": str(report.files_saved), "short": True},
                {"title": "Duplicates renamed", "value": str(report.duplicates_renamed), "short": True},
                {"title": "Threads scanned", "value": str(report.threads_scanned), "short": True},
                {"title": "Messages scanned", "value": str(report.messages_scanned), "short": True},
            ]
            if report.skip_reasons:
                breakdown = "\n".join(
                    f"{self._escape_for_slack(reason)}: {count}"
                    for reason, count in report.skip_reasons.most_common()
                )
                fields.append({"title": "Skipped", "value": breakdown, "short": False})

            saved_names = [name for entry in report.messages.values() for name in entry.saved]
            if saved_names:
                fields.append({
                    "title": "New files",
                    "value": "\n".join(self._escape_for_slack(name) for name in saved_names[:10]),
                    "short": False
                })

            payload = {
                "text": f"Receipt filer run finished ({report.mode})",
                "attachments": [{
                    "color": color,
                    "fields": fields,
                    "footer": "Receipt Filer",
                    "ts": int(datetime.now().timestamp())
                }]
            }

            response = requests.post(
                self.config.slack_webhook,
                json=payload,
                headers={'Content-Type': 'application/json'},
                timeout=10
            )

            if response.status_code == 200:
                self.logger.info("Slack summary sent successfully")
            else:
                self.logger.warning(f"Slack summary failed: {response.status_code}")

        except requests.RequestException as e:
            self.logger.error(f"Failed to send Slack summary: {e}")
