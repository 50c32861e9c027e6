"""
Centralized error taxonomy for snag.

Provides:
- ErrorCategory enum for classifying failures
- SnagError base class and one subclass per failure kind
- ERROR_DESCRIPTIONS table for user-facing summaries
- exit_code_for() to map exceptions to process exit codes

DESIGN NOTES:
- Resolver and filename errors abort the single enclosing operation
- Browser session errors are fatal to the whole invocation and never retried
- The batch executor is the only place that contains errors per item;
  it reports the aggregate through BatchFailed

DO NOT:
- Raise bare Exception for user-correctable problems - pick a subclass
- Duplicate description strings elsewhere - use get_error_description()
"""

from enum import Enum, auto
from typing import Dict, Final, Optional


class ErrorCategory(Enum):
    """Classification of snag failures for summaries and exit codes."""

    BROWSER_NOT_FOUND = auto()
    BROWSER_CONNECTION = auto()
    NO_BROWSER_RUNNING = auto()
    TAB_INDEX_INVALID = auto()
    RANGE_OUT_OF_BOUNDS = auto()
    NO_TAB_MATCH = auto()
    INVALID_PATTERN = auto()
    CONFLICT_EXHAUSTED = auto()
    PAGE_LOAD_TIMEOUT = auto()
    NAVIGATION_FAILED = auto()
    AUTH_REQUIRED = auto()
    CONVERSION_FAILED = auto()
    INVALID_URL = auto()
    NO_VALID_URLS = auto()
    PROCESS_KILL_FAILED = auto()
    BATCH_FAILED = auto()
    CONFIGURATION = auto()
    UNKNOWN = auto()


ERROR_DESCRIPTIONS: Final[Dict[ErrorCategory, str]] = {
    ErrorCategory.BROWSER_NOT_FOUND: "No Chromium-based browser found",
    ErrorCategory.BROWSER_CONNECTION: "Failed to connect to browser",
    ErrorCategory.NO_BROWSER_RUNNING: "No browser instance running with remote debugging",
    ErrorCategory.TAB_INDEX_INVALID: "Tab index out of range",
    ErrorCategory.RANGE_OUT_OF_BOUNDS: "Tab range out of bounds",
    ErrorCategory.NO_TAB_MATCH: "No tab matches pattern",
    ErrorCategory.INVALID_PATTERN: "Invalid tab pattern",
    ErrorCategory.CONFLICT_EXHAUSTED: "Too many filename conflicts",
    ErrorCategory.PAGE_LOAD_TIMEOUT: "Page load timeout exceeded",
    ErrorCategory.NAVIGATION_FAILED: "Page navigation failed",
    ErrorCategory.AUTH_REQUIRED: "Authentication required",
    ErrorCategory.CONVERSION_FAILED: "Content conversion failed",
    ErrorCategory.INVALID_URL: "Invalid URL",
    ErrorCategory.NO_VALID_URLS: "No valid URLs provided",
    ErrorCategory.PROCESS_KILL_FAILED: "Failed to terminate browser process",
    ErrorCategory.BATCH_FAILED: "Batch processing completed with failures",
    ErrorCategory.CONFIGURATION: "Invalid configuration",
    ErrorCategory.UNKNOWN: "Unknown error occurred",
}

EXIT_FAILURE: Final[int] = 1
EXIT_SIGINT: Final[int] = 130  # 128 + SIGINT
EXIT_SIGTERM: Final[int] = 143  # 128 + SIGTERM


class SnagError(Exception):
    """Base class for all snag errors."""

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(self, message: str = "", suggestion: Optional[str] = None) -> None:
        super().__init__(message or get_error_description(self.category))
        self.suggestion = suggestion


class BrowserNotFound(SnagError):
    category = ErrorCategory.BROWSER_NOT_FOUND


class BrowserConnectionFailed(SnagError):
    category = ErrorCategory.BROWSER_CONNECTION


class NoBrowserRunning(SnagError):
    category = ErrorCategory.NO_BROWSER_RUNNING


class TabSelectionError(SnagError):
    """Resolver errors after which the tab catalog is shown to the user."""


class TabIndexInvalid(TabSelectionError):
    category = ErrorCategory.TAB_INDEX_INVALID


class RangeOutOfBounds(TabSelectionError):
    category = ErrorCategory.RANGE_OUT_OF_BOUNDS


class NoTabMatch(TabSelectionError):
    category = ErrorCategory.NO_TAB_MATCH

    def __init__(self, pattern: str, detail: str = "") -> None:
        message = f"no tab matches pattern '{pattern}'"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)
        self.pattern = pattern


class InvalidPattern(SnagError):
    category = ErrorCategory.INVALID_PATTERN

    def __init__(self, pattern: str, reason: str) -> None:
        super().__init__(f"invalid regex pattern '{pattern}': {reason}")
        self.pattern = pattern


class ConflictResolutionExhausted(SnagError):
    category = ErrorCategory.CONFLICT_EXHAUSTED


class PageLoadTimeout(SnagError):
    category = ErrorCategory.PAGE_LOAD_TIMEOUT


class NavigationFailed(SnagError):
    category = ErrorCategory.NAVIGATION_FAILED


class AuthRequired(SnagError):
    category = ErrorCategory.AUTH_REQUIRED


class ConversionFailed(SnagError):
    category = ErrorCategory.CONVERSION_FAILED


class InvalidURL(SnagError):
    category = ErrorCategory.INVALID_URL


class NoValidURLs(SnagError):
    category = ErrorCategory.NO_VALID_URLS


class ProcessKillFailed(SnagError):
    category = ErrorCategory.PROCESS_KILL_FAILED


class ConfigurationError(SnagError, ValueError):
    category = ErrorCategory.CONFIGURATION


class BatchFailed(SnagError):
    """Aggregate failure of a batch; individual errors were already logged."""

    category = ErrorCategory.BATCH_FAILED

    def __init__(self, success_count: int, failure_count: int) -> None:
        super().__init__(
            f"batch processing completed with {failure_count} failure"
            f"{'' if failure_count == 1 else 's'} "
            f"({success_count} succeeded)"
        )
        self.success_count = success_count
        self.failure_count = failure_count


def get_error_description(category: ErrorCategory) -> str:
    """Get a human-readable description for an error category."""
    return ERROR_DESCRIPTIONS.get(category, "Unknown error")


def exit_code_for(exc: BaseException) -> int:
    """Map an exception that ended the run to a process exit code."""
    if isinstance(exc, KeyboardInterrupt):
        return EXIT_SIGINT
    if isinstance(exc, SystemExit) and isinstance(exc.code, int):
        return exc.code
    return EXIT_FAILURE
