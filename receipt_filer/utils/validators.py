from typing import List

from .config import Config

# Values shipped in .env.example
DEFAULT_EMAILS = ["your-email@gmail.com"]
DEFAULT_PASSWORDS = ["your-app-password-here"]
DEFAULT_SENDERS = ["tickets@example-rail.com"]
DEFAULT_WEBHOOK = "https://your-webhook-url.com/summary"
DEFAULT_SLACK = "https://hooks.slack.com/services/YOUR/WEBHOOK/URL"


def check_default_credentials(config: Config) -> List[str]:
    """
    Check if the configuration uses default example values.
    Returns a list of error messages.
    """
    errors = []

    if config.mailbox.email in DEFAULT_EMAILS:
        errors.append(f"Gmail account uses default email: {config.mailbox.email}")
    if config.mailbox.app_password in DEFAULT_PASSWORDS:
        errors.append("Gmail account uses default app password")
    if config.filing.sender_address in DEFAULT_SENDERS:
        errors.append(f"SENDER_ADDRESS is still the example sender: {config.filing.sender_address}")

    if config.summary.webhook_enabled and config.summary.webhook_url == DEFAULT_WEBHOOK:
        errors.append("Summary webhook enabled but uses default URL")

    if config.summary.slack_enabled and config.summary.slack_webhook == DEFAULT_SLACK:
        errors.append("Slack summary enabled but uses default Webhook URL")

    return errors
