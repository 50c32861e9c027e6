"""
Terminal Utilities Module for cross-platform terminal handling.

Provides:
- Terminal capability detection (Unicode, colors, size)
- ASCII fallbacks for the status symbols used in log output
- format_size() for the "Saved to" messages
"""

import locale
import logging
import os
import sys
from dataclasses import dataclass
from typing import Optional, TextIO, Tuple

# Import centralized constants - single source of truth for configuration values
from snag.config import (
    BYTES_PER_KB,
    DEFAULT_TERMINAL_WIDTH,
)

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"


@dataclass
class TerminalCapabilities:
    """Detected terminal capabilities"""

    supports_unicode: bool = True
    supports_colors: bool = True
    is_interactive: bool = True
    width: int = DEFAULT_TERMINAL_WIDTH


class Symbols:
    """
    Terminal symbols with ASCII fallbacks.

    Use Symbols.get() to get the appropriate symbol based on terminal capabilities.
    """

    SUCCESS = ("✓", "[OK]")
    WARNING = ("⚠", "[!]")
    ERROR = ("✗", "[X]")

    _use_ascii: bool = False

    @classmethod
    def set_ascii_mode(cls, use_ascii: bool) -> None:
        """Set whether to use ASCII fallbacks"""
        cls._use_ascii = use_ascii

    @classmethod
    def get(cls, symbol_tuple: Tuple[str, str]) -> str:
        """Get the appropriate symbol based on current mode"""
        return symbol_tuple[1] if cls._use_ascii else symbol_tuple[0]


def stream_supports_color(stream: Optional[TextIO] = None) -> bool:
    """
    True when ANSI colors should be written to ``stream``.

    Requires a TTY, NO_COLOR unset and a non-dumb TERM.
    """
    stream = sys.stderr if stream is None else stream
    if "NO_COLOR" in os.environ:
        return False
    if os.environ.get("TERM", "").lower() == "dumb":
        return False
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())


def detect_terminal_capabilities(stream: Optional[TextIO] = None) -> TerminalCapabilities:
    """
    Detect what the current terminal supports.

    Returns:
        TerminalCapabilities with detected values
    """
    stream = sys.stderr if stream is None else stream
    caps = TerminalCapabilities()

    isatty = getattr(stream, "isatty", None)
    caps.is_interactive = bool(isatty and isatty())

    try:
        caps.width = os.get_terminal_size().columns
    except OSError:
        # Not a terminal or size unavailable
        caps.width = DEFAULT_TERMINAL_WIDTH

    caps.supports_colors = stream_supports_color(stream)
    caps.supports_unicode = _check_unicode_support(stream)

    Symbols.set_ascii_mode(not caps.supports_unicode)

    logger.debug(
        f"Terminal capabilities: unicode={caps.supports_unicode}, "
        f"colors={caps.supports_colors}, width={caps.width}"
    )

    return caps


def _check_unicode_support(stream: TextIO) -> bool:
    """Check if terminal supports Unicode"""
    encoding = getattr(stream, "encoding", None)
    if encoding and "utf" in encoding.lower():
        return True

    try:
        if "utf" in locale.getpreferredencoding(False).lower():
            return True
    except (LookupError, ValueError) as e:
        logger.debug(f"Could not get preferred encoding: {e}")

    lang = os.environ.get("LANG", "").lower()
    if "utf" in lang:
        return True

    if IS_WINDOWS:
        # Windows Terminal and ConEmu render Unicode, the legacy console does not
        return bool(os.environ.get("WT_SESSION") or os.environ.get("ConEmuANSI"))

    return True


def format_size(bytes_size: int) -> str:
    """
    Format a size in bytes to human-readable form.

    Args:
        bytes_size: Size in bytes

    Returns:
        Formatted string like "1.5 KB" or "2.3 MB"

    Raises:
        ValueError: If bytes_size is negative
    """
    if bytes_size < 0:
        raise ValueError(f"format_size received negative bytes_size={bytes_size}")
    if bytes_size < BYTES_PER_KB:
        return f"{bytes_size} B"
    size = bytes_size / BYTES_PER_KB
    for unit in ("KB", "MB"):
        if size < BYTES_PER_KB:
            return f"{size:.1f} {unit}"
        size /= BYTES_PER_KB
    return f"{size:.1f} GB"
