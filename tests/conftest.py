"""
Pytest configuration for snag tests.

This conftest.py provides:
1. In-memory stand-ins for Playwright pages, contexts and browsers
2. A real BrowserSession wired to those fakes (no browser, no network)
3. Logging reset between tests so configure_logging() does not leak
"""

import base64
import logging
from collections.abc import Callable, Generator
from typing import Any, Dict, List, Optional, Sequence

import pytest
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from snag.browser import BrowserOptions, BrowserSession
from snag.log import PACKAGE_LOGGER
from snag.terminal import Symbols

FAKE_WS_URL = "ws://127.0.0.1:9222/devtools/browser/fake"
FAKE_PDF = b"%PDF-1.4 fake document"
FAKE_PNG = b"\x89PNG\r\n\x1a\nfake image"

SAMPLE_HTML = """<html>
<head><title>Example Domain</title><style>body { color: red; }</style></head>
<body>
<h1>Example Domain</h1>
<p>This domain is for use in <a href="https://example.com/docs">examples</a>.</p>
<script>console.log("hidden");</script>
<ul><li>First</li><li>Second</li></ul>
</body>
</html>"""


class FakeCDPSession:
    """Answers the two protocol calls snag makes directly."""

    def __init__(self, page: "FakePage") -> None:
        self.page = page
        self.detached = False

    def send(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if method == "Target.getTargetInfo":
            if self.page.info_error:
                raise PlaywrightError("Target closed")
            return {
                "targetInfo": {
                    "targetId": self.page.target_id,
                    "url": self.page.url,
                    "title": self.page.page_title,
                    "type": "page",
                }
            }
        if method == "Page.printToPDF":
            return {"data": base64.b64encode(FAKE_PDF).decode("ascii")}
        raise PlaywrightError(f"unexpected method {method}")

    def detach(self) -> None:
        self.detached = True


class FakePage:
    """Enough of playwright's sync Page for fetch, convert and tab code."""

    def __init__(
        self,
        url: str = "about:blank",
        title: str = "",
        target_id: str = "",
        html: str = SAMPLE_HTML,
        status: int = 200,
    ) -> None:
        self.url = url
        self.page_title = title
        self.target_id = target_id or f"target-{id(self)}"
        self.html = html
        self.status = status
        self.context: Any = None
        self.closed = False
        self.info_error = False
        self.goto_error: Optional[Exception] = None
        self.missing_selectors: List[str] = []
        self.login_form = False
        self.goto_calls: List[str] = []
        self.waited_for: List[str] = []

    def goto(self, url: str, timeout: float = 0, wait_until: str = "load") -> None:
        self.goto_calls.append(url)
        if self.goto_error is not None:
            raise self.goto_error
        self.url = url

    def wait_for_load_state(self, state: str = "load", timeout: float = 0) -> None:
        return None

    def wait_for_selector(self, selector: str, state: str = "visible", timeout: float = 0) -> None:
        self.waited_for.append(selector)
        if selector in self.missing_selectors:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for {selector}")

    def evaluate(self, expression: str) -> Any:
        return self.status

    def query_selector(self, selector: str) -> Any:
        return object() if self.login_form else None

    def title(self) -> str:
        return self.page_title

    def content(self) -> str:
        return self.html

    def screenshot(self, full_page: bool = False, type: str = "png") -> bytes:
        return FAKE_PNG

    def close(self) -> None:
        self.closed = True
        if self.context is not None and self in self.context.pages:
            self.context.pages.remove(self)


class FakeContext:
    def __init__(self, pages: Optional[List[FakePage]] = None) -> None:
        self.pages: List[FakePage] = []
        for page in pages or []:
            self.add(page)

    def add(self, page: FakePage) -> FakePage:
        page.context = self
        self.pages.append(page)
        return page

    def new_page(self) -> FakePage:
        return self.add(FakePage())

    def new_cdp_session(self, page: FakePage) -> FakeCDPSession:
        return FakeCDPSession(page)


class FakeBrowser:
    def __init__(self, contexts: Optional[List[FakeContext]] = None) -> None:
        self.contexts = contexts if contexts is not None else [FakeContext()]
        self.closed = False

    def new_context(self) -> FakeContext:
        context = FakeContext()
        self.contexts.append(context)
        return context

    def close(self) -> None:
        self.closed = True


def make_tab_pages(entries: Sequence[Any]) -> List[FakePage]:
    """Pages from FakePage objects or (url, title[, target_id]) tuples."""
    pages = []
    for n, entry in enumerate(entries, start=1):
        if isinstance(entry, FakePage):
            pages.append(entry)
            continue
        url, title = entry[0], entry[1]
        target_id = entry[2] if len(entry) > 2 else f"T{n}"
        pages.append(FakePage(url=url, title=title, target_id=target_id))
    return pages


@pytest.fixture
def fake_browser() -> FakeBrowser:
    """An empty browser with one default context."""
    return FakeBrowser()


@pytest.fixture
def page_factory() -> Callable[..., FakePage]:
    """Build a FakePage that already belongs to a context (CDP calls work)."""

    def _factory(**kwargs: Any) -> FakePage:
        return FakeContext().add(FakePage(**kwargs))

    return _factory


@pytest.fixture
def attached_session_factory() -> Callable[..., BrowserSession]:
    """
    Build an attached BrowserSession over a FakeBrowser holding ``entries``.

    Usage:
        session = attached_session_factory([("https://a.com", "A")])
    """

    def _factory(entries: Sequence[Any] = (), **options: Any) -> BrowserSession:
        browser = FakeBrowser([FakeContext(make_tab_pages(entries))])
        session = BrowserSession(
            BrowserOptions(**options),
            resolver=lambda port: FAKE_WS_URL,
            connector=lambda ws_url: browser,
        )
        session.attach()
        return session

    return _factory


@pytest.fixture
def sample_html() -> str:
    return SAMPLE_HTML


@pytest.fixture(autouse=True)
def reset_snag_logging() -> Generator[None, None, None]:
    """Drop handlers installed by configure_logging() and restore symbols."""
    yield
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in package_logger.handlers[:]:
        if getattr(handler, "_snag_handler", False):
            package_logger.removeHandler(handler)
    package_logger.setLevel(logging.NOTSET)
    Symbols.set_ascii_mode(False)
