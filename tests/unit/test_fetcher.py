"""
Tests for page navigation, auth detection and selector waits.
"""

import logging
from typing import Any, Callable

import pytest
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from snag.errors import AuthRequired, NavigationFailed, PageLoadTimeout
from snag.fetcher import PageFetcher, wait_for_selector


class TestPageFetcher:
    """Tests for PageFetcher.fetch."""

    def test_fetch_returns_html(self, page_factory: Callable[..., Any], sample_html: str) -> None:
        page = page_factory()
        html = PageFetcher(page, timeout=5).fetch("https://example.com")
        assert html == sample_html
        assert page.goto_calls == ["https://example.com"]
        assert page.url == "https://example.com"

    def test_navigation_timeout(self, page_factory: Callable[..., Any]) -> None:
        """A navigation timeout suggests doubling --timeout."""
        page = page_factory()
        page.goto_error = PlaywrightTimeoutError("Timeout 5000ms exceeded")
        with pytest.raises(PageLoadTimeout) as exc_info:
            PageFetcher(page, timeout=5).fetch("https://slow.example")
        assert exc_info.value.suggestion == "snag https://slow.example --timeout 10"

    def test_navigation_error(self, page_factory: Callable[..., Any]) -> None:
        page = page_factory()
        page.goto_error = PlaywrightError("net::ERR_NAME_NOT_RESOLVED")
        with pytest.raises(NavigationFailed, match="ERR_NAME_NOT_RESOLVED"):
            PageFetcher(page).fetch("https://nope.invalid")

    @pytest.mark.parametrize("status", [401, 403])
    def test_auth_status(self, page_factory: Callable[..., Any], status: int) -> None:
        """401 and 403 raise AuthRequired pointing at --open-browser."""
        page = page_factory(status=status)
        with pytest.raises(AuthRequired) as exc_info:
            PageFetcher(page).fetch("https://private.example")
        assert exc_info.value.suggestion == "snag --open-browser https://private.example"

    def test_login_page_only_warns(
        self, page_factory: Callable[..., Any], caplog: pytest.LogCaptureFixture
    ) -> None:
        """A page that looks like a login form is fetched with a warning."""
        caplog.set_level(logging.DEBUG)
        page = page_factory(title="Sign in to continue")
        page.login_form = True
        html = PageFetcher(page).fetch("https://app.example/dashboard")
        assert html
        assert "This appears to be a login page" in caplog.text

    def test_login_form_without_keywords(
        self, page_factory: Callable[..., Any], caplog: pytest.LogCaptureFixture
    ) -> None:
        caplog.set_level(logging.DEBUG)
        page = page_factory(title="Dashboard")
        page.login_form = True
        PageFetcher(page).fetch("https://app.example/home")
        assert "login page" not in caplog.text

    def test_wait_for_selector(self, page_factory: Callable[..., Any]) -> None:
        page = page_factory()
        PageFetcher(page).fetch("https://example.com", wait_for="#main")
        assert page.waited_for == ["#main"]


class TestWaitForSelector:
    def test_missing_selector_times_out(self, page_factory: Callable[..., Any]) -> None:
        page = page_factory()
        page.missing_selectors.append(".never")
        with pytest.raises(PageLoadTimeout, match=r"\.never not visible within 3s"):
            wait_for_selector(page, ".never", timeout=3)
