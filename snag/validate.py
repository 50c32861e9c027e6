"""
Input validation for command line values.

Validators return the normalized value or raise a SnagError subclass that
carries a suggestion; rendering the error is the CLI's job. Empty optional
strings (user agent, wait-for selector, profile dir) are warnings, not
errors, and normalize to None.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Final, List, Optional
from urllib.parse import urlparse

from snag.config import MAX_PORT, MIN_PORT
from snag.errors import ConfigurationError, InvalidURL, NoValidURLs
from snag.log import verbose

logger = logging.getLogger(__name__)

VALID_SCHEMES: Final[frozenset[str]] = frozenset({"http", "https", "file"})

NON_FETCHABLE_PREFIXES: Final[tuple[str, ...]] = (
    "chrome://",
    "about:",
    "devtools://",
    "chrome-extension://",
    "edge://",
    "brave://",
)

URL_FILE_COMMENT_PREFIXES: Final[tuple[str, ...]] = ("#", "//")
URL_FILE_INLINE_MARKERS: Final[tuple[str, ...]] = (" #", " //")
WRITE_PROBE_PREFIX: Final[str] = ".snag-write-test-"


def validate_url(url: str) -> str:
    """
    Normalize and check a URL, prefixing https:// when no scheme is given.

    Raises:
        InvalidURL: unsupported scheme or missing host
    """
    url = url.strip()
    if not url:
        raise InvalidURL("URL cannot be empty", suggestion="snag https://example.com")

    if "://" not in url:
        url = f"https://{url}"
        verbose(logger, f"No scheme provided, using: {url}")

    try:
        parsed = urlparse(url)
    except ValueError as e:
        raise InvalidURL(
            f"URL parsing failed: {e}", suggestion="snag https://example.com"
        ) from e

    if parsed.scheme not in VALID_SCHEMES:
        raise InvalidURL(
            f"unsupported URL scheme: {parsed.scheme} "
            "(URL must use http://, https://, or file://)",
            suggestion="snag https://example.com",
        )

    if parsed.scheme != "file" and not parsed.netloc:
        raise InvalidURL(
            f"invalid URL, missing host: {url}",
            suggestion="snag https://example.com",
        )

    return url


def is_non_fetchable_url(url: str) -> bool:
    """Browser-internal pages (chrome://, about:, devtools://...) cannot be fetched."""
    return url.lower().startswith(NON_FETCHABLE_PREFIXES)


def validate_timeout(timeout: int) -> int:
    if timeout <= 0:
        raise ConfigurationError(
            f"invalid timeout: {timeout} (must be a positive number of seconds)",
            suggestion="snag <url> --timeout 30",
        )
    return timeout


def validate_port(port: int) -> int:
    if not MIN_PORT <= port <= MAX_PORT:
        raise ConfigurationError(
            f"invalid port: {port} (must be between {MIN_PORT} and {MAX_PORT})",
            suggestion="snag <url> --port 9222",
        )
    return port


def _check_writable_dir(directory: str, suggestion: str) -> None:
    try:
        fd, probe = tempfile.mkstemp(prefix=WRITE_PROBE_PREFIX, dir=directory)
    except OSError as e:
        raise ConfigurationError(
            f"directory not writable: {directory} ({e.strerror})",
            suggestion=suggestion,
        ) from e
    os.close(fd)
    os.remove(probe)


def validate_output_path(path: str) -> str:
    """
    Check that ``path`` can be written as a file.

    Raises:
        ConfigurationError: empty, a directory, read-only, or its parent is
            missing or not writable
    """
    path = path.strip()
    if not path:
        raise ConfigurationError(
            "output file path cannot be empty",
            suggestion="snag <url> -o /path/to/output.md",
        )

    target = Path(path)
    if target.is_dir():
        raise ConfigurationError(
            f"output path is a directory, not a file: {path}",
            suggestion="snag <url> -o /path/to/file.md",
        )
    if target.exists() and not os.access(target, os.W_OK):
        raise ConfigurationError(
            f"cannot write to read-only file: {path}",
            suggestion=f"chmod u+w {path}",
        )

    parent = str(target.parent)
    if not os.path.isdir(parent):
        raise ConfigurationError(
            f"output directory does not exist: {parent}",
            suggestion="snag <url> -o /path/to/existing/dir/output.md",
        )
    _check_writable_dir(parent, "snag <url> -o /path/to/writable/dir/output.md")
    return path


def validate_directory(directory: str) -> str:
    """
    Check that ``directory`` exists, is a directory and is writable.
    """
    directory = directory.strip() or "."
    if not os.path.exists(directory):
        raise ConfigurationError(
            f"directory does not exist: {directory}",
            suggestion=f"mkdir -p {directory} && snag <url> -d {directory}",
        )
    if not os.path.isdir(directory):
        raise ConfigurationError(f"not a directory: {directory}")
    _check_writable_dir(directory, f"chmod u+w {directory}")
    return directory


def validate_wait_for(selector: Optional[str]) -> Optional[str]:
    """Trimmed selector; an empty one is ignored with a warning."""
    if selector is None:
        return None
    selector = selector.strip()
    if not selector:
        logger.warning("--wait-for is empty, ignoring")
        return None
    return selector


def validate_user_agent(user_agent: Optional[str]) -> Optional[str]:
    """Trimmed user agent with CR/LF replaced by spaces; empty means default."""
    if user_agent is None:
        return None
    user_agent = user_agent.strip()
    if not user_agent:
        logger.warning("--user-agent is empty, using default user agent")
        return None
    return user_agent.replace("\n", " ").replace("\r", " ")


def validate_user_data_dir(path: Optional[str]) -> Optional[str]:
    """
    Expand ``~`` and check the profile directory exists and is read/writable.

    Raises:
        ConfigurationError: missing, not a directory, or no permission
    """
    if path is None:
        return None
    path = path.strip()
    if not path:
        logger.warning("--user-data-dir is empty, using default profile")
        return None

    path = os.path.expanduser(path)
    if not os.path.exists(path):
        raise ConfigurationError(
            f"user data directory does not exist: {path}",
            suggestion=f"mkdir -p {path} && snag --user-data-dir {path} <url>",
        )
    if not os.path.isdir(path):
        raise ConfigurationError(
            f"path is not a directory: {path}",
            suggestion="snag --user-data-dir /path/to/directory <url>",
        )
    if not os.access(path, os.R_OK | os.W_OK):
        raise ConfigurationError(
            f"permission denied accessing user data directory: {path}",
            suggestion=f"chmod u+rw {path}",
        )
    return path


def _strip_inline_comment(line: str) -> tuple[str, bool]:
    for marker in URL_FILE_INLINE_MARKERS:
        cut = line.find(marker)
        if cut != -1:
            return line[:cut].strip(), True
    return line, False


def load_urls_from_file(filename: str) -> List[str]:
    """
    Read URLs from a text file, one per line.

    Supports full-line comments (# or //), inline comments (" #" / " //"),
    blank lines, and scheme-less entries (https:// is prepended). Bad lines
    are skipped with a warning.

    Raises:
        FileNotFoundError / OSError: the file cannot be read
        NoValidURLs: nothing usable was found
    """
    urls: List[str] = []
    with open(filename, "r", encoding="utf-8") as f:
        for line_num, raw in enumerate(f, start=1):
            line = raw.strip()
            if not line or line.startswith(URL_FILE_COMMENT_PREFIXES):
                continue

            line, had_comment = _strip_inline_comment(line)
            if not had_comment and " " in line:
                logger.warning(
                    f"Line {line_num}: URL contains space without comment marker "
                    f"- skipping: {line}"
                )
                continue

            try:
                urls.append(validate_url(line))
            except InvalidURL as e:
                logger.warning(f"Line {line_num}: Invalid URL - skipping: {raw.strip()} ({e})")

    if not urls:
        raise NoValidURLs(f"no valid URLs found in {filename}")

    verbose(logger, f"Loaded {len(urls)} URLs from {filename}")
    return urls
