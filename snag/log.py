"""
Logging setup for the snag command line.

Provides:
- VERBOSE (15) and SUCCESS (25) levels between the stdlib ones
- SymbolFormatter: "✓ done", "⚠ careful", "✗ failed", "[DEBUG] detail"
- configure_logging(verbosity) installing a single stderr handler
- verbose() / success() / log_suggestion() helpers

DESIGN NOTES:
- Page content is written to stdout by the converter; every diagnostic
  goes through logging to stderr so pipes stay clean
- The handler lives on the "snag" package logger, records still propagate
  to the root logger

DO NOT:
- print() diagnostics - use the module logger
- Add a second stderr handler; configure_logging() replaces its own
"""

import logging
import sys
from typing import Dict, Final, Optional, TextIO

from snag.errors import ConfigurationError
from snag.terminal import Symbols, detect_terminal_capabilities

VERBOSE: Final[int] = 15
SUCCESS: Final[int] = 25

logging.addLevelName(VERBOSE, "VERBOSE")
logging.addLevelName(SUCCESS, "SUCCESS")

PACKAGE_LOGGER: Final[str] = "snag"

LEVELS: Final[Dict[str, int]] = {
    "quiet": logging.ERROR,
    "normal": logging.INFO,
    "verbose": VERBOSE,
    "debug": logging.DEBUG,
}

_RESET = "\033[0m"
_COLORS: Final[Dict[int, str]] = {
    logging.DEBUG: "\033[2m",  # dim
    SUCCESS: "\033[32m",  # green
    logging.WARNING: "\033[33m",  # yellow
    logging.ERROR: "\033[31m",  # red
    logging.CRITICAL: "\033[1;31m",
}


class SymbolFormatter(logging.Formatter):
    """Prefix records with a status symbol and optionally colour them."""

    def __init__(self, use_color: bool = False) -> None:
        super().__init__("%(message)s")
        self.use_color = use_color

    def _prefix(self, levelno: int) -> str:
        if levelno >= logging.ERROR:
            return Symbols.get(Symbols.ERROR) + " "
        if levelno >= logging.WARNING:
            return Symbols.get(Symbols.WARNING) + " "
        if levelno == SUCCESS:
            return Symbols.get(Symbols.SUCCESS) + " "
        if levelno < VERBOSE:
            return "[DEBUG] "
        return ""

    def format(self, record: logging.LogRecord) -> str:
        text = self._prefix(record.levelno) + super().format(record)
        if not self.use_color:
            return text

        color = _COLORS.get(record.levelno)
        if color is None and record.levelno >= logging.ERROR:
            color = _COLORS[logging.ERROR]
        return f"{color}{text}{_RESET}" if color else text


def configure_logging(
    verbosity: str = "normal", stream: Optional[TextIO] = None
) -> logging.Logger:
    """
    Install the stderr handler on the package logger.

    Args:
        verbosity: quiet | normal | verbose | debug
        stream: Destination stream (defaults to sys.stderr)

    Returns:
        The configured package logger
    """
    if verbosity not in LEVELS:
        raise ConfigurationError(f"unknown verbosity: {verbosity!r}")

    stream = sys.stderr if stream is None else stream
    caps = detect_terminal_capabilities(stream)

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in package_logger.handlers[:]:
        if getattr(handler, "_snag_handler", False):
            package_logger.removeHandler(handler)

    handler = logging.StreamHandler(stream)
    handler.setFormatter(SymbolFormatter(use_color=caps.supports_colors))
    handler._snag_handler = True  # type: ignore[attr-defined]
    package_logger.addHandler(handler)
    package_logger.setLevel(LEVELS[verbosity])

    # Library chatter only shows up in debug mode
    library_level = logging.DEBUG if verbosity == "debug" else logging.WARNING
    for name in ("urllib3", "asyncio"):
        logging.getLogger(name).setLevel(library_level)

    return package_logger


def verbose(log: logging.Logger, message: str) -> None:
    log.log(VERBOSE, message)


def success(log: logging.Logger, message: str) -> None:
    log.log(SUCCESS, message)


def log_suggestion(log: logging.Logger, message: str, suggestion: Optional[str]) -> None:
    """Log an error followed by a "Try:" hint in a single record."""
    if suggestion:
        log.error(f"{message}\n\nTry: {suggestion}")
    else:
        log.error(message)
