"""
ANSI color codes for console output formatting
"""

import os
import sys


class Colors:
    """ANSI color codes and helper methods"""
    RESET = "\033[0m"
    BOLD = "\033[1m"

    # Text Colors
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    MAGENTA = "\033[35m"
    CYAN = "\033[36m"
    GREY = "\033[90m"

    @staticmethod
    def enabled() -> bool:
        """Colors are used only on a TTY and when NO_COLOR is unset"""
        return sys.stdout.isatty() and "NO_COLOR" not in os.environ

    @classmethod
    def colorize(cls, text: str, color: str) -> str:
        """Wrap text in color codes"""
        return f"{color}{text}{cls.RESET}"

    @classmethod
    def header(cls, text: str) -> str:
        """Format as a header (Bold Cyan)"""
        return f"{cls.BOLD}{cls.CYAN}{text}{cls.RESET}"

    @classmethod
    def for_count(cls, count: int, bad: bool = False) -> str:
        """
        Pick a color for a summary counter

        Zero counts are dimmed. Non-zero counts are green, or yellow when
        the counter tracks something the user may want to look at (skips).
        """
        if count == 0:
            return cls.GREY
        return cls.YELLOW if bad else cls.GREEN
