import argparse
import os
import shutil
import signal
import sys
from pathlib import Path
from typing import List, NoReturn, Optional

from .main import COLLECT, COMMANDS, ReceiptFilerPipeline
from .utils.colors import Colors
from .utils.config import Config, ConfigurationError
from .utils.validators import check_default_credentials


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="receipt-filer",
        description="File PDF train tickets from Gmail into dated storage folders",
    )
    parser.add_argument(
        "--env-file",
        default=".env",
        help="Configuration file (default: .env)",
    )
    parser.add_argument(
        "command",
        nargs="?",
        default=COLLECT,
        choices=COMMANDS,
        help=f"What to run (default: {COLLECT})",
    )
    return parser


class AppRunner:
    """Encapsulates the startup, configuration verification, and execution logic of the Receipt Filer."""

    def __init__(self, args: Optional[List[str]] = None) -> None:
        """
        Initialize the runner with CLI arguments.

        Args:
            args: Command line arguments, without the program name (defaults to sys.argv[1:])
        """
        options = build_parser().parse_args(args if args is not None else sys.argv[1:])
        self.config_file = options.env_file
        self.command = options.command

    def run(self) -> None:
        """Execute the main application flow."""
        self.setup_signal_handlers()
        self.print_banner()
        self.ensure_config_exists()
        self.validate_config()
        self.start_pipeline()

    def setup_signal_handlers(self) -> None:
        """Register handlers for graceful shutdown."""
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    @staticmethod
    def _signal_handler(signum, frame) -> NoReturn:
        """Handle shutdown signals."""
        print("\nReceived shutdown signal, stopping gracefully...")
        raise KeyboardInterrupt

    def print_banner(self) -> None:
        """Print the application startup banner."""
        print(Colors.colorize("=" * 80, Colors.CYAN))
        print(Colors.colorize("Receipt Filer", Colors.BOLD + Colors.CYAN))
        print(Colors.colorize("Train tickets from Gmail, filed by travel date", Colors.GREY))
        print(Colors.colorize("=" * 80, Colors.CYAN))
        print()

    def ensure_config_exists(self) -> None:
        """Check if the configuration file exists, and offer to create it from the template if not."""
        if Path(self.config_file).exists():
            return

        if Path(".env.example").exists() and sys.stdin.isatty():
            self._handle_missing_config_interactive()
        else:
            self._handle_missing_config_non_interactive()

    def _handle_missing_config_interactive(self) -> None:
        """Offer to copy .env.example into place."""
        print(f"Configuration file '{self.config_file}' not found.")
        try:
            response = input(f"Create '{self.config_file}' from template? [Y/n] ").strip().lower()
        except EOFError:
            self._handle_missing_config_non_interactive()

        if response not in ('', 'y', 'yes'):
            print("Please create a .env file based on .env.example")
            sys.exit(1)

        try:
            shutil.copy(".env.example", self.config_file)
            os.chmod(self.config_file, 0o600)
        except OSError as e:
            print(f"Error creating file: {e}")
            sys.exit(1)

        print(f"Created '{self.config_file}' from '.env.example'.")
        print("IMPORTANT: Please edit it with your Gmail app password and sender address before running.")
        sys.exit(0)

    def _handle_missing_config_non_interactive(self) -> NoReturn:
        """Handle missing configuration when non-interactive or template is missing."""
        print(f"Error: Configuration file '{self.config_file}' not found")
        print("Please create a .env file based on .env.example")
        print("You can run: cp .env.example .env")
        sys.exit(1)

    def validate_config(self) -> None:
        """Refuse to start with example values or an invalid configuration."""
        try:
            config = Config(self.config_file)
        except ConfigurationError as e:
            self._print_errors("Invalid configuration", e.args[0])
            sys.exit(1)

        errors = check_default_credentials(config)
        if errors:
            self._print_errors("Default credentials detected", errors)
            sys.exit(1)

        try:
            config.validate()
        except ConfigurationError as e:
            self._print_errors("Invalid configuration", e.args[0])
            sys.exit(1)

    def _print_errors(self, title: str, errors: List[str]) -> None:
        print(f"\n{Colors.RED}❌ Configuration Error: {title}{Colors.RESET}")
        print(f"{Colors.GREY}The following issues must be resolved in your .env file before starting:{Colors.RESET}\n")
        for error in errors:
            print(f"  • {Colors.YELLOW}{error}{Colors.RESET}")
        print(f"\nPlease edit {Colors.BOLD}{self.config_file}{Colors.RESET}.")

    def start_pipeline(self) -> None:
        """Instantiate the pipeline and run the requested command."""
        print(f"{Colors.GREEN}🚀 Running {self.command}...{Colors.RESET}")
        pipeline = ReceiptFilerPipeline(self.config_file)
        pipeline.run(self.command)


def main() -> None:
    """Console entry point"""
    AppRunner().run()


if __name__ == "__main__":
    main()
