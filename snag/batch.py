"""
Sequential batch processing of tabs and URLs.

Provides:
- BatchItem: one target, an existing tab or a URL to open
- BatchOutcome / BatchResult: per-item path-or-error and the aggregate
- BatchExecutor: wait / allocate filename / convert per item, continue on error
- fetchable_tabs(): drop browser-internal tabs before building a batch

DESIGN NOTES:
- Items run strictly in the order given; nothing is re-sorted
- One timestamp is captured at batch start and shared by every filename
- A failing item is logged with its [i/total] prefix and tallied, it never
  aborts the batch and never rolls back files already written
- success_count + failure_count == len(items) always holds
- KeyboardInterrupt is not contained; an interrupt ends the whole run

DO NOT:
- Process items concurrently - the session and converter are single-caller
- Raise per-item errors out of execute(); use BatchResult.error
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, List, Optional, Sequence

from snag.browser import SessionMode
from snag.config import DEFAULT_TIMEOUT
from snag.converter import ContentConverter
from snag.errors import BatchFailed
from snag.fetcher import PageFetcher, wait_for_selector
from snag.filenames import allocate_output_path
from snag.formats import Format
from snag.log import success
from snag.tabs import TabDescriptor
from snag.validate import is_non_fetchable_url

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchItem:
    """A tab already open in the browser, or a URL to open in a new page."""

    tab: Optional[TabDescriptor] = None
    url: Optional[str] = None

    def __post_init__(self) -> None:
        if (self.tab is None) == (self.url is None):
            raise ValueError("BatchItem needs exactly one of tab or url")

    @classmethod
    def for_tab(cls, tab: TabDescriptor) -> "BatchItem":
        return cls(tab=tab)

    @classmethod
    def for_url(cls, url: str) -> "BatchItem":
        return cls(url=url)

    @property
    def label(self) -> str:
        return self.tab.url if self.tab is not None else str(self.url)


@dataclass
class BatchOutcome:
    item: BatchItem
    path: Optional[str] = None
    error: Optional[BaseException] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass
class BatchResult:
    outcomes: List[BatchOutcome] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return sum(1 for o in self.outcomes if o.succeeded)

    @property
    def failure_count(self) -> int:
        return len(self.outcomes) - self.success_count

    @property
    def paths(self) -> List[str]:
        return [o.path for o in self.outcomes if o.path]

    @property
    def error(self) -> Optional[BatchFailed]:
        """Aggregate error, present exactly when at least one item failed."""
        if self.failure_count == 0:
            return None
        return BatchFailed(self.success_count, self.failure_count)

    def raise_for_failures(self) -> None:
        error = self.error
        if error is not None:
            raise error


def fetchable_tabs(tabs: Sequence[TabDescriptor]) -> List[TabDescriptor]:
    """Tabs whose URL can be fetched; chrome://, about: and friends are skipped."""
    kept = []
    for tab in tabs:
        if is_non_fetchable_url(tab.url):
            logger.warning(f"Skipping tab [{tab.index}]: {tab.url} (not fetchable)")
            continue
        kept.append(tab)
    return kept


class BatchExecutor:
    """Run the fetch/convert/save pipeline over a list of BatchItems."""

    def __init__(
        self,
        session: Any,
        fmt: Format,
        output_dir: str = ".",
        timeout: int = DEFAULT_TIMEOUT,
        wait_for: Optional[str] = None,
        close_pages: bool = False,
        clock: Callable[[], datetime] = datetime.now,
        converter_factory: Callable[[Format], ContentConverter] = ContentConverter,
        fetcher_factory: Callable[[Any, int], PageFetcher] = PageFetcher,
    ) -> None:
        self.session = session
        self.format = fmt
        self.output_dir = output_dir or "."
        self.timeout = timeout
        self.wait_for = wait_for
        self.close_pages = close_pages
        self._clock = clock
        self._converter = converter_factory(fmt)
        self._fetcher_factory = fetcher_factory

    @classmethod
    def closes_pages_for(cls, session: Any, close_tab: bool) -> bool:
        """Pages opened in a throwaway headless browser are always closed."""
        return close_tab or session.mode is SessionMode.LAUNCHED_HEADLESS

    def execute(self, items: Sequence[BatchItem]) -> BatchResult:
        """Process every item in order; see BatchResult.error for the verdict."""
        timestamp = self._clock()
        total = len(items)
        result = BatchResult()

        for current, item in enumerate(items, start=1):
            prefix = f"[{current}/{total}]"
            try:
                if item.tab is not None:
                    path = self._process_tab(item.tab, timestamp, prefix, current == total)
                else:
                    path = self._process_url(str(item.url), timestamp, prefix)
            except Exception as e:
                # Per-item containment: log, tally, keep going
                logger.error(f"{prefix} Failed: {item.label}: {e}")
                result.outcomes.append(BatchOutcome(item=item, error=e))
                continue
            result.outcomes.append(BatchOutcome(item=item, path=path))

        success(
            logger,
            f"Batch complete: {result.success_count} succeeded, "
            f"{result.failure_count} failed",
        )
        return result

    def _process_tab(
        self, tab: TabDescriptor, timestamp: datetime, prefix: str, is_last: bool
    ) -> str:
        logger.info(f"{prefix} Processing: {tab.url}")
        page = tab.page
        try:
            if self.wait_for:
                wait_for_selector(page, self.wait_for, self.timeout)
            path = allocate_output_path(
                self.output_dir, tab.title, tab.url, timestamp, self.format
            )
            self._converter.process_page(page, path)
        finally:
            if self.close_pages:
                if is_last:
                    logger.info("Closing last tab, browser will close")
                self.session.close_page(page)
        return path

    def _process_url(self, url: str, timestamp: datetime, prefix: str) -> str:
        logger.info(f"{prefix} Fetching: {url}")
        page = self.session.new_page()
        try:
            html = self._fetcher_factory(page, self.timeout).fetch(url, self.wait_for)
            path = allocate_output_path(
                self.output_dir, page.title(), url, timestamp, self.format
            )
            self._converter.process_page(page, path, html=html)
        except Exception:
            self.session.close_page(page)
            raise
        if self.close_pages:
            self.session.close_page(page)
        return path
