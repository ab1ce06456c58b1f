"""
Configuration Management Module
Handles loading and validation of environment variables and settings

The configuration is read once at start-up into frozen dataclasses and handed
to every component that needs it. Nothing mutates it during a run.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

from .security_validators import is_safe_webhook_url

PREVIOUS_MONTH = "PREVIOUS_MONTH"
CURRENT_MONTH = "CURRENT_MONTH"
BACKFILL_TARGETS = (PREVIOUS_MONTH, CURRENT_MONTH)

RECEIPTS_ONLY = "RECEIPTS_ONLY"
ALL_PDFS = "ALL_PDFS"
ATTACHMENT_MODES = (RECEIPTS_ONLY, ALL_PDFS)

STORAGE_BACKENDS = ("local", "drive")
LOG_FORMATS = ("text", "json")


class ConfigurationError(ValueError):
    """Raised when the configuration is invalid; args[0] is the list of problems"""


@dataclass(frozen=True)
class MailboxConfig:
    """Gmail IMAP account settings"""
    email: str
    app_password: str = field(repr=False)
    imap_server: str
    imap_port: int
    all_mail_folder: str
    verify_ssl: bool = True
    provider: str = "gmail"


@dataclass(frozen=True)
class FilingConfig:
    """What to pick out of the mailbox and where to file it"""
    sender_address: str
    root_folder_name: str
    processed_label: str
    route_keywords: Tuple[str, str]
    attachment_keyword: str
    page_size: int
    verbose_body_logging: bool
    timezone: Optional[str] = None

    @property
    def route_filter_enabled(self) -> bool:
        """The pair filter only applies when both keywords are configured"""
        return all(keyword.strip() for keyword in self.route_keywords)

    def tzinfo(self) -> Optional[ZoneInfo]:
        """Timezone used to read received dates (None = system local)"""
        return ZoneInfo(self.timezone) if self.timezone else None


@dataclass(frozen=True)
class BackfillConfig:
    """Settings for the one-month repair sweep"""
    target: str
    lookback_days: int
    attachment_mode: str


@dataclass(frozen=True)
class StorageConfig:
    """Where receipts are written"""
    backend: str
    local_path: str
    drive_credentials_file: str
    drive_token_file: str


@dataclass(frozen=True)
class ScheduleConfig:
    """Daily trigger settings"""
    trigger_name: str
    hour: int
    minute: int


@dataclass(frozen=True)
class SummaryConfig:
    """End-of-run summary delivery"""
    console: bool
    webhook_enabled: bool
    webhook_url: Optional[str] = field(repr=False)
    slack_enabled: bool
    slack_webhook: Optional[str] = field(repr=False)


@dataclass(frozen=True)
class SystemConfig:
    """Logging settings"""
    log_level: str
    log_file: str
    log_format: str


class Config:
    """Main configuration class"""

    def __init__(self, env_file: str = ".env"):
        """
        Initialize configuration from environment file

        Args:
            env_file: Path to environment file (default: .env)
        """
        load_dotenv(env_file)

        self.mailbox = self._load_mailbox_config()
        self.filing = self._load_filing_config()
        self.backfill = self._load_backfill_config()
        self.storage = self._load_storage_config()
        self.schedule = self._load_schedule_config()
        self.summary = self._load_summary_config()
        self.system = self._load_system_config()

    def _load_mailbox_config(self) -> MailboxConfig:
        return MailboxConfig(
            email=os.getenv("GMAIL_EMAIL", "").strip(),
            app_password=os.getenv("GMAIL_APP_PASSWORD", ""),
            imap_server=os.getenv("GMAIL_IMAP_SERVER", "imap.gmail.com"),
            imap_port=self._get_int("GMAIL_IMAP_PORT", 993),
            all_mail_folder=os.getenv("GMAIL_ALL_MAIL_FOLDER", "[Gmail]/All Mail"),
            verify_ssl=self._get_bool("IMAP_VERIFY_SSL", True),
        )

    def _load_filing_config(self) -> FilingConfig:
        return FilingConfig(
            sender_address=os.getenv("SENDER_ADDRESS", "").strip(),
            root_folder_name=os.getenv("ROOT_FOLDER_NAME", "Train Tickets").strip(),
            processed_label=os.getenv("PROCESSED_LABEL", "Train Tickets/Processed").strip(),
            route_keywords=(
                os.getenv("ROUTE_KEYWORD_1", "").strip().lower(),
                os.getenv("ROUTE_KEYWORD_2", "").strip().lower(),
            ),
            attachment_keyword=os.getenv("ATTACHMENT_KEYWORD", "").strip().lower(),
            page_size=self._get_int("PAGE_SIZE", 50),
            verbose_body_logging=self._get_bool("VERBOSE_BODY_LOGGING", False),
            timezone=os.getenv("TIMEZONE", "").strip() or None,
        )

    def _load_backfill_config(self) -> BackfillConfig:
        return BackfillConfig(
            target=os.getenv("BACKFILL_TARGET", PREVIOUS_MONTH).strip().upper(),
            lookback_days=self._get_int("BACKFILL_LOOKBACK_DAYS", 60),
            attachment_mode=os.getenv("BACKFILL_ATTACHMENT_MODE", RECEIPTS_ONLY).strip().upper(),
        )

    def _load_storage_config(self) -> StorageConfig:
        return StorageConfig(
            backend=os.getenv("STORAGE_BACKEND", "local").strip().lower(),
            local_path=os.path.expanduser(
                os.getenv("LOCAL_STORAGE_PATH", "~/Google Drive/My Drive")
            ),
            drive_credentials_file=os.getenv("DRIVE_CREDENTIALS_FILE", "credentials.json"),
            drive_token_file=os.getenv("DRIVE_TOKEN_FILE", "token.json"),
        )

    def _load_schedule_config(self) -> ScheduleConfig:
        return ScheduleConfig(
            trigger_name=os.getenv("TRIGGER_NAME", "collect").strip(),
            hour=self._get_int("TRIGGER_HOUR", 6),
            minute=self._get_int("TRIGGER_MINUTE", 0),
        )

    def _load_summary_config(self) -> SummaryConfig:
        return SummaryConfig(
            console=self._get_bool("SUMMARY_CONSOLE", True),
            webhook_enabled=self._get_bool("SUMMARY_WEBHOOK_ENABLED", False),
            webhook_url=os.getenv("SUMMARY_WEBHOOK_URL"),
            slack_enabled=self._get_bool("SUMMARY_SLACK_ENABLED", False),
            slack_webhook=os.getenv("SUMMARY_SLACK_WEBHOOK"),
        )

    def _load_system_config(self) -> SystemConfig:
        return SystemConfig(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_file=os.getenv("LOG_FILE", "logs/receipt_filer.log"),
            log_format=os.getenv("LOG_FORMAT", "text").strip().lower(),
        )

    @staticmethod
    def _get_bool(key: str, default: bool = False) -> bool:
        """Convert environment variable to boolean"""
        value = os.getenv(key, str(default)).lower()
        return value in ('true', '1', 'yes', 'on')

    @staticmethod
    def _get_int(key: str, default: int) -> int:
        """Convert environment variable to int, naming the variable on failure"""
        value = os.getenv(key)
        if value is None or not value.strip():
            return default
        try:
            return int(value.strip())
        except ValueError:
            raise ConfigurationError([f"{key} must be an integer, got {value!r}"])

    def validate(self) -> bool:
        """
        Validate configuration

        Every problem is collected so the user can fix the .env file in one go.

        Returns:
            True if configuration is valid

        Raises:
            ConfigurationError: If configuration is invalid (args[0] lists the problems)
        """
        errors: List[str] = []

        if not self.mailbox.email or not self.mailbox.app_password:
            errors.append("Missing Gmail credentials (GMAIL_EMAIL / GMAIL_APP_PASSWORD)")

        if not self.filing.sender_address:
            errors.append("SENDER_ADDRESS is required")
        if not self.filing.root_folder_name:
            errors.append("ROOT_FOLDER_NAME must not be blank")
        if not self.filing.processed_label:
            errors.append("PROCESSED_LABEL must not be blank")
        if self.filing.page_size <= 0:
            errors.append("PAGE_SIZE must be positive")
        if self.filing.timezone:
            try:
                ZoneInfo(self.filing.timezone)
            except (ZoneInfoNotFoundError, ValueError):
                errors.append(f"Unknown TIMEZONE: {self.filing.timezone}")

        if self.backfill.target not in BACKFILL_TARGETS:
            errors.append(
                f"BACKFILL_TARGET must be one of {', '.join(BACKFILL_TARGETS)}"
            )
        if self.backfill.attachment_mode not in ATTACHMENT_MODES:
            errors.append(
                f"BACKFILL_ATTACHMENT_MODE must be one of {', '.join(ATTACHMENT_MODES)}"
            )
        if self.backfill.lookback_days <= 0:
            errors.append("BACKFILL_LOOKBACK_DAYS must be positive")

        if self.storage.backend not in STORAGE_BACKENDS:
            errors.append(f"STORAGE_BACKEND must be one of {', '.join(STORAGE_BACKENDS)}")

        if not 0 <= self.schedule.hour <= 23 or not 0 <= self.schedule.minute <= 59:
            errors.append("TRIGGER_HOUR/TRIGGER_MINUTE out of range")

        if self.system.log_format not in LOG_FORMATS:
            errors.append(f"LOG_FORMAT must be one of {', '.join(LOG_FORMATS)}")

        if self.summary.webhook_enabled:
            if not self.summary.webhook_url:
                errors.append("Summary webhook enabled but no URL provided")
            else:
                is_safe, reason = is_safe_webhook_url(self.summary.webhook_url)
                if not is_safe:
                    errors.append(f"Summary webhook SSRF check failed: {reason}")

        if self.summary.slack_enabled and not self.summary.slack_webhook:
            errors.append("Slack summary enabled but no webhook URL provided")

        if errors:
            raise ConfigurationError(errors)

        return True
