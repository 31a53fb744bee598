"""
ANSI color helpers for console log output.

Colors are disabled when the log stream is not a TTY, when ``NO_COLOR``
is set (https://no-color.org/), or when ``KOKO_MS_NO_COLOR=1``.
"""
from __future__ import annotations

import os
import sys
from typing import IO, Optional


class Colors:
    RESET = "\033[0m"

    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    MAGENTA = "\033[35m"
    CYAN = "\033[36m"
    WHITE = "\033[37m"
    GRAY = "\033[90m"

    BRIGHT_RED = "\033[91m"
    BRIGHT_GREEN = "\033[92m"
    BRIGHT_YELLOW = "\033[93m"
    BRIGHT_BLUE = "\033[94m"
    BRIGHT_CYAN = "\033[96m"


def supports_color(stream: Optional[IO[str]] = None) -> bool:
    """
    Check whether ANSI colors should be written to ``stream``.

    Args:
        stream: Stream the console handler writes to. Defaults to stderr,
            where the CLI sends its logs.
    """
    if os.getenv("KOKO_MS_NO_COLOR", "0") == "1":
        return False
    if os.getenv("NO_COLOR"):
        return False

    stream = stream if stream is not None else sys.stderr
    isatty = getattr(stream, "isatty", None)
    if isatty is None or not isatty():
        return False

    if sys.platform == "win32":
        try:
            import ctypes
            kernel32 = ctypes.windll.kernel32
            # STD_ERROR_HANDLE = -12, enable virtual terminal processing
            kernel32.SetConsoleMode(kernel32.GetStdHandle(-12), 7)
            return True
        except Exception:
            return False

    return True


def get_tag_color(tag: str) -> str:
    """Color for a log tag (SUCCESS, FAIL, WARN, INFO, DEBUG, TRACE)."""
    tag_colors = {
        "SUCCESS": Colors.BRIGHT_GREEN,
        "FAIL": Colors.BRIGHT_RED,
        "ERROR": Colors.BRIGHT_RED,
        "WARN": Colors.BRIGHT_YELLOW,
        "WARNING": Colors.BRIGHT_YELLOW,
        "INFO": Colors.BRIGHT_CYAN,
        "DEBUG": Colors.GRAY,
        "TRACE": Colors.DIM,
    }
    return tag_colors.get(tag.upper(), Colors.WHITE)
