"""
Tab catalog and tab selector resolution.

Provides:
- TabDescriptor: one open tab with a 1-based index from the sorted catalog
- TabCatalog: enumerates pages of a BrowserSession in a deterministic order
- TabResolver: maps "3", "2-4", a URL, a substring or a regex to tabs
- format_tab_line() / render_tab_list() for --list-tabs and error output

DESIGN NOTES:
- Indices are positions in the catalog sorted by (url, title, target_id),
  assigned fresh on every enumeration - they are not tab identities
- Resolution is an ordered list of stage functions; the first stage with
  at least one hit wins and later stages never run
- Numeric selectors are always interpreted as index/range, even when a tab's
  URL is literally that number
- Tabs whose metadata cannot be read are excluded and counted with a warning

DO NOT:
- Re-sort or de-duplicate a MatchResult; ties on exact URL are all returned
- Fall back to substring/regex when an index or range is out of bounds
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterator, List, Optional, Sequence, Tuple

from playwright.sync_api import Error as PlaywrightError

from snag.config import MAX_DISPLAY_URL_LENGTH, MAX_TAB_LINE_LENGTH
from snag.errors import (
    InvalidPattern,
    NoTabMatch,
    RangeOutOfBounds,
    TabIndexInvalid,
)
from snag.log import verbose

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TabDescriptor:
    """An open tab as seen by one enumeration."""

    index: int
    url: str
    title: str
    target_id: str
    page: Any = field(default=None, compare=False, repr=False, hash=False)


class TabCatalog:
    """Deterministically ordered view of a session's open tabs."""

    def __init__(self, session: Any) -> None:
        self.session = session
        self.excluded_count = 0

    def enumerate(self) -> List[TabDescriptor]:
        """
        List all tabs sorted by (url, title, target_id) with fresh indices.

        Raises:
            NoBrowserRunning: the session is not connected
        """
        pages = self.session.pages()

        entries: List[Tuple[str, str, str, Any]] = []
        seen_ids = set()
        excluded = 0
        for position, page in enumerate(pages, start=1):
            try:
                url, title, target_id = self.session.page_info(page)
            except (PlaywrightError, KeyError) as e:
                logger.warning(
                    f"Failed to get info for tab at position {position} "
                    f"(will be excluded from list): {e}"
                )
                excluded += 1
                continue
            if target_id in seen_ids:
                logger.debug(f"Tab {target_id} reported twice, keeping the first")
                continue
            seen_ids.add(target_id)
            entries.append((url, title, target_id, page))

        if excluded:
            logger.warning(f"Excluded {excluded} tab(s) due to inaccessible page info")
        self.excluded_count = excluded

        entries.sort(key=lambda entry: (entry[0], entry[1], entry[2]))
        return [
            TabDescriptor(index=i, url=url, title=title, target_id=target_id, page=page)
            for i, (url, title, target_id, page) in enumerate(entries, start=1)
        ]


# =============================================================================
# Resolution
# =============================================================================


class MatchStage(Enum):
    """Cascade stage that produced a MatchResult."""

    INDEX = "index"
    RANGE = "range"
    EXACT_URL = "exact URL"
    SUBSTRING = "substring"
    REGEX = "regex"


@dataclass(frozen=True)
class MatchResult:
    """Non-empty, ordered set of tabs produced by exactly one stage."""

    stage: MatchStage
    tabs: Tuple[TabDescriptor, ...]

    def __post_init__(self) -> None:
        if not self.tabs:
            raise ValueError("MatchResult cannot be empty")

    def __len__(self) -> int:
        return len(self.tabs)

    def __iter__(self) -> Iterator[TabDescriptor]:
        return iter(self.tabs)

    @property
    def first(self) -> TabDescriptor:
        return self.tabs[0]

    @property
    def is_multiple(self) -> bool:
        return len(self.tabs) > 1


@dataclass(frozen=True)
class TabSelector:
    """Parsed numeric selector: a single index or an inclusive range."""

    start: int
    end: int
    is_range: bool = False


_INDEX_RE = re.compile(r"^\s*(-?\d+)\s*$")
_RANGE_RE = re.compile(r"^\s*(\d+)\s*-\s*(\d+)\s*$")


def parse_tab_selector(pattern: str) -> Optional[TabSelector]:
    """
    Parse "N" or "A-B" into a TabSelector; None for anything else.

    Bounds are not checked here, "0" and "5-2" still parse. A range with an
    end below 1 ("0-3") is not numeric and is left to the text stages.
    """
    match = _INDEX_RE.match(pattern)
    if match:
        index = int(match.group(1))
        return TabSelector(start=index, end=index)

    match = _RANGE_RE.match(pattern)
    if match:
        start, end = int(match.group(1)), int(match.group(2))
        if start < 1 or end < 1:
            return None
        return TabSelector(start=start, end=end, is_range=True)
    return None


def select_by_index(selector: TabSelector, tabs: Sequence[TabDescriptor]) -> List[TabDescriptor]:
    """
    Apply a numeric selector to the sorted catalog.

    Raises:
        TabIndexInvalid: single index outside 1..len(tabs)
        RangeOutOfBounds: range starting below 1, reversed, or past the end
    """
    count = len(tabs)
    if not selector.is_range:
        index = selector.start
        if index < 1 or index > count:
            valid = f"valid range: 1-{count}" if count else "no tabs open"
            raise TabIndexInvalid(
                f"tab index {index} out of range ({valid})",
                suggestion="snag --list-tabs",
            )
        verbose(logger, f"Selected tab [{index}] from sorted order: {tabs[index - 1].url}")
        return [tabs[index - 1]]

    start, end = selector.start, selector.end
    if start < 1:
        raise RangeOutOfBounds(f"tab range must start from 1 (got {start})")
    if start > end:
        raise RangeOutOfBounds(
            f"invalid range: start must be <= end (got {start}-{end})"
        )
    for bound in (start, end):
        if bound > count:
            raise RangeOutOfBounds(
                f"tab index {bound} out of range in range {start}-{end} "
                f"(only {count} tabs open)",
                suggestion="snag --list-tabs",
            )

    selected = list(tabs[start - 1 : end])
    verbose(logger, f"Selected {len(selected)} tabs from sorted range [{start}-{end}]")
    return selected


def match_exact_url(pattern: str, tabs: Sequence[TabDescriptor]) -> List[TabDescriptor]:
    wanted = pattern.casefold()
    return [tab for tab in tabs if tab.url.casefold() == wanted]


def match_substring(pattern: str, tabs: Sequence[TabDescriptor]) -> List[TabDescriptor]:
    wanted = pattern.lower()
    return [tab for tab in tabs if wanted in tab.url.lower()]


def match_regex(pattern: str, tabs: Sequence[TabDescriptor]) -> List[TabDescriptor]:
    """
    Raises:
        InvalidPattern: pattern does not compile
    """
    try:
        compiled = re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        raise InvalidPattern(pattern, str(e)) from e
    return [tab for tab in tabs if compiled.search(tab.url)]


StageFunction = Callable[[str, Sequence[TabDescriptor]], List[TabDescriptor]]

TEXT_STAGES: Tuple[Tuple[MatchStage, StageFunction], ...] = (
    (MatchStage.EXACT_URL, match_exact_url),
    (MatchStage.SUBSTRING, match_substring),
    (MatchStage.REGEX, match_regex),
)


class TabResolver:
    """Resolve a user selector against a TabCatalog."""

    def __init__(
        self,
        catalog: TabCatalog,
        stages: Sequence[Tuple[MatchStage, StageFunction]] = TEXT_STAGES,
    ) -> None:
        self.catalog = catalog
        self.stages = tuple(stages)

    def resolve(
        self, pattern: str, tabs: Optional[Sequence[TabDescriptor]] = None
    ) -> MatchResult:
        """
        Resolve ``pattern`` to one or more tabs.

        Cascade: index/range -> exact URL -> substring -> regex.

        Args:
            pattern: "3", "2-4", a URL, a URL fragment or a regex
            tabs: Pre-enumerated catalog (enumerated fresh when omitted)

        Raises:
            TabIndexInvalid, RangeOutOfBounds: numeric selector out of bounds
            InvalidPattern: empty pattern, or regex stage could not compile it
            NoTabMatch: no stage matched
        """
        if not pattern or not pattern.strip():
            raise InvalidPattern(pattern, "pattern cannot be empty")

        if tabs is None:
            tabs = self.catalog.enumerate()

        selector = parse_tab_selector(pattern)
        if selector is not None:
            stage = MatchStage.RANGE if selector.is_range else MatchStage.INDEX
            return MatchResult(stage, tuple(select_by_index(selector, tabs)))

        if not tabs:
            raise NoTabMatch(pattern, "no tabs open")

        logger.debug(f"Matching pattern '{pattern}' against {len(tabs)} tabs")
        for stage, stage_fn in self.stages:
            matches = stage_fn(pattern, tabs)
            if matches:
                for tab in matches:
                    verbose(logger, f"Matched tab [{tab.index}] via {stage.value}: {tab.url}")
                return MatchResult(stage, tuple(matches))

        raise NoTabMatch(pattern)


# =============================================================================
# Display
# =============================================================================


def strip_url_params(url: str) -> str:
    """Drop the query string and fragment for compact display."""
    for marker in ("?", "#"):
        cut = url.find(marker)
        if cut != -1:
            url = url[:cut]
    return url


def format_tab_line(
    index: int,
    title: str,
    url: str,
    max_length: int = MAX_TAB_LINE_LENGTH,
    verbose_mode: bool = False,
) -> str:
    """
    One line of the tab list.

    Normal mode: "  [N] url (title)" with query/fragment removed, the URL cut
    at MAX_DISPLAY_URL_LENGTH and the title cut to fit ``max_length``.
    Verbose mode: "  [N] full-url - full-title".
    """
    prefix = f"  [{index}] "
    if verbose_mode:
        return f"{prefix}{url} - {title}" if title else f"{prefix}{url}"

    display_url = strip_url_params(url)
    if len(display_url) > MAX_DISPLAY_URL_LENGTH:
        display_url = display_url[: MAX_DISPLAY_URL_LENGTH - 3] + "..."

    if not title:
        return f"{prefix}{display_url}"

    title_budget = max_length - len(prefix) - len(display_url) - 3
    if len(title) > title_budget and title_budget > 3:
        title = title[: title_budget - 3] + "..."
    return f"{prefix}{display_url} ({title})"


def render_tab_list(tabs: Sequence[TabDescriptor], verbose_mode: bool = False) -> List[str]:
    """Header plus one formatted line per tab."""
    if not tabs:
        return ["No tabs open in browser"]
    lines = [f"Available tabs in browser ({len(tabs)} tabs, sorted by URL):"]
    lines.extend(
        format_tab_line(tab.index, tab.title, tab.url, verbose_mode=verbose_mode)
        for tab in tabs
    )
    return lines
