"""
Page navigation and HTML extraction.

Navigation is bounded by the configured timeout; the follow-up network-idle
wait is best effort and only warns. Authentication walls are detected from
the navigation's HTTP status (401/403 is an error) and from login-form
heuristics (warning only).
"""

import logging
from typing import Any, Final, Optional

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from snag.config import DEFAULT_TIMEOUT, STABILIZE_TIMEOUT
from snag.errors import AuthRequired, NavigationFailed, PageLoadTimeout
from snag.log import log_suggestion, success, verbose

logger = logging.getLogger(__name__)

AUTH_STATUS_CODES: Final[frozenset[int]] = frozenset({401, 403})

NAVIGATION_STATUS_JS: Final[str] = (
    "() => window.performance?.getEntriesByType?.('navigation')?.[0]"
    "?.responseStatus || 0"
)

PASSWORD_SELECTOR: Final[str] = "input[type='password']"
USERNAME_SELECTOR: Final[str] = (
    "input[type='text'], input[type='email'], input[name*='user'], input[name*='login']"
)
SUBMIT_SELECTOR: Final[str] = "button[type='submit'], input[type='submit']"
LOGIN_TITLE_KEYWORDS: Final[tuple[str, ...]] = ("login", "sign in")
LOGIN_URL_KEYWORDS: Final[tuple[str, ...]] = ("/login", "/signin", "/auth")


def wait_for_selector(page: Any, selector: str, timeout: int = DEFAULT_TIMEOUT) -> None:
    """
    Block until ``selector`` is visible on ``page``.

    Raises:
        PageLoadTimeout: not visible within ``timeout`` seconds
        NavigationFailed: the selector could not be evaluated
    """
    verbose(logger, f"Waiting for selector: {selector}")
    try:
        page.wait_for_selector(selector, state="visible", timeout=timeout * 1000)
    except PlaywrightTimeoutError as e:
        raise PageLoadTimeout(
            f"selector {selector} not visible within {timeout}s",
            suggestion=f"increase --timeout or check the selector '{selector}'",
        ) from e
    except PlaywrightError as e:
        raise NavigationFailed(f"failed to find selector {selector}: {e}") from e
    verbose(logger, f"Selector found: {selector}")


class PageFetcher:
    """Navigate a page to a URL and return its rendered HTML."""

    def __init__(self, page: Any, timeout: int = DEFAULT_TIMEOUT) -> None:
        self.page = page
        self.timeout = timeout

    def fetch(self, url: str, wait_for: Optional[str] = None) -> str:
        """
        Navigate to ``url`` and return the page HTML.

        Raises:
            PageLoadTimeout: navigation or wait-for exceeded the timeout
            NavigationFailed: navigation failed outright
            AuthRequired: the server answered 401/403
        """
        logger.info(f"Fetching {url}...")
        verbose(logger, f"Navigating to {url} (timeout: {self.timeout}s)...")
        try:
            self.page.goto(url, timeout=self.timeout * 1000, wait_until="load")
        except PlaywrightTimeoutError as e:
            logger.error(f"Page load timeout exceeded ({self.timeout}s)")
            raise PageLoadTimeout(
                "the page took too long to load",
                suggestion=f"snag {url} --timeout {self.timeout * 2}",
            ) from e
        except PlaywrightError as e:
            raise NavigationFailed(f"navigation to {url} failed: {e}") from e

        self.stabilize()

        if wait_for:
            wait_for_selector(self.page, wait_for, self.timeout)

        self.detect_auth()

        verbose(logger, "Extracting HTML content...")
        html = self.extract_html()
        logger.debug(f"Extracted {len(html)} bytes of HTML")
        success(logger, "Fetched successfully")
        return html

    def stabilize(self) -> None:
        """Best-effort wait for network idle; never fails the fetch."""
        verbose(logger, "Waiting for page to stabilize...")
        try:
            self.page.wait_for_load_state("networkidle", timeout=STABILIZE_TIMEOUT * 1000)
        except PlaywrightError as e:
            logger.warning(f"Page did not stabilize: {e}")

    def extract_html(self) -> str:
        try:
            return self.page.content()
        except PlaywrightError as e:
            raise NavigationFailed(f"failed to extract HTML: {e}") from e

    def detect_auth(self) -> None:
        """
        Raise AuthRequired on HTTP 401/403; warn on pages that look like logins.
        """
        try:
            status = int(self.page.evaluate(NAVIGATION_STATUS_JS) or 0)
        except (PlaywrightError, TypeError, ValueError) as e:
            logger.debug(f"Could not read navigation status: {e}")
            status = 0

        if status:
            logger.debug(f"HTTP status code: {status}")
        if status in AUTH_STATUS_CODES:
            logger.error(f"Authentication required (HTTP {status})")
            raise AuthRequired(
                "this page requires authentication",
                suggestion=f"snag --open-browser {self.page.url}",
            )

        if self._looks_like_login_page():
            logger.warning("This appears to be a login page")
            log_suggestion(
                logger,
                "Authentication may be required",
                f"snag --open-browser {self.page.url}",
            )

    def _looks_like_login_page(self) -> bool:
        try:
            if self.page.query_selector(PASSWORD_SELECTOR) is None:
                return False
            if self.page.query_selector(USERNAME_SELECTOR) is None:
                return False
            if self.page.query_selector(SUBMIT_SELECTOR) is None:
                return False
            title = (self.page.title() or "").lower()
        except PlaywrightError as e:
            logger.debug(f"Login form check failed: {e}")
            return False

        logger.debug("Detected login form on page")
        url = (self.page.url or "").lower()
        return any(k in title for k in LOGIN_TITLE_KEYWORDS) or any(
            k in url for k in LOGIN_URL_KEYWORDS
        )
