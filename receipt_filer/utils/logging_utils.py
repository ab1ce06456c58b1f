import copy
import logging
import sys
from pathlib import Path

from .colors import Colors
from .config import SystemConfig
from .structured_logging import JSONFormatter

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class ColoredFormatter(logging.Formatter):
    """
    Custom formatter to add colors to log levels and specific messages.
    Page boundaries and saved receipts stand out; skips are dimmed.
    """

    LEVEL_COLORS = {
        logging.DEBUG: Colors.GREY,
        logging.INFO: Colors.BLUE,
        logging.WARNING: Colors.YELLOW,
        logging.ERROR: Colors.RED,
        logging.CRITICAL: Colors.BOLD + Colors.RED
    }

    def format(self, record):
        # Copy so the file handler never sees ANSI codes
        record = copy.copy(record)

        color = self.LEVEL_COLORS.get(record.levelno, Colors.RESET)
        record.levelname = f"{color}{record.levelname}{Colors.RESET}"

        if isinstance(record.msg, str):
            if record.msg.startswith("=== "):
                record.msg = f"{Colors.MAGENTA}{Colors.BOLD}{record.msg}{Colors.RESET}"
            elif record.msg.startswith("Saved "):
                record.msg = f"{Colors.GREEN}{record.msg}{Colors.RESET}"
            elif record.msg.startswith("Skipped "):
                record.msg = f"{Colors.GREY}{record.msg}{Colors.RESET}"

        return super().format(record)


def setup_logging(system: SystemConfig) -> None:
    """
    Configure the root logger once for the whole process

    A file handler and a stdout handler are installed. With LOG_FORMAT=json
    both emit JSON lines; otherwise the console gets colors when it is a TTY.
    """
    log_path = Path(system.log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    level_name = str(system.log_level).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    file_handler = logging.FileHandler(log_path)
    console_handler = logging.StreamHandler(sys.stdout)

    if system.log_format == "json":
        file_handler.setFormatter(JSONFormatter(datefmt=DATE_FORMAT))
        console_handler.setFormatter(JSONFormatter(datefmt=DATE_FORMAT))
    else:
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        if Colors.enabled():
            console_handler.setFormatter(ColoredFormatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        else:
            console_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))

    logging.basicConfig(level=level, handlers=[file_handler, console_handler], force=True)

    if level_name != logging.getLevelName(level):
        logging.getLogger("ReceiptFiler").warning(
            "Invalid log level '%s'; defaulting to INFO", system.log_level
        )
