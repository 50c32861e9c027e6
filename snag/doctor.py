"""
Environment diagnostics for `snag --doctor`.

Provides:
- run_with_deadline(): bounded first-to-finish race for probes
- check_port_connection(): is a debugging browser on this port, how many tabs
- check_latest_version(): latest released version (empty on any failure)
- collect_doctor_info() -> DoctorReport, rendered with rich

DESIGN NOTES:
- Local port probes get PORT_PROBE_TIMEOUT, the release lookup gets
  RELEASE_LOOKUP_TIMEOUT
- A probe that loses the race is abandoned, not cancelled; its own
  request timeout bounds how long the worker thread lingers
- Collection never raises: missing pieces are reported as unknown
"""

import logging
import os
import platform
import subprocess
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, TypeVar

import requests
from rich import box
from rich.console import Console
from rich.table import Table

from snag._version import version as snag_version
from snag.browser import (
    EXECUTABLE_ENV_VARS,
    browser_version,
    detect_browser_family,
    find_browser_executable,
    profile_path_for,
)
from snag.config import (
    DEBUG_HOST,
    DEFAULT_PORT,
    PORT_PROBE_TIMEOUT,
    RELEASE_LOOKUP_TIMEOUT,
    RELEASES_API_URL,
)
from snag.errors import BrowserNotFound
from snag.terminal import Symbols

logger = logging.getLogger(__name__)

T = TypeVar("T")

PROJECT_URL = "https://github.com/grantcarthew/snag"


def run_with_deadline(fn: Callable[[], T], timeout: float) -> T:
    """
    Run ``fn`` in a background thread and wait at most ``timeout`` seconds.

    Raises:
        TimeoutError: the deadline passed first (``fn`` keeps running)
        Exception: whatever ``fn`` raised, if it finished in time
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="snag-probe")
    future = executor.submit(fn)
    try:
        return future.result(timeout=timeout)
    except FuturesTimeout as e:
        raise TimeoutError(f"no answer within {timeout:.0f}s") from e
    finally:
        executor.shutdown(wait=False)


@dataclass
class PortStatus:
    port: int
    running: bool = False
    tab_count: int = 0
    error: Optional[str] = None


def _count_pages(port: int, timeout: float) -> int:
    response = requests.get(f"http://{DEBUG_HOST}:{port}/json/list", timeout=timeout)
    response.raise_for_status()
    targets = response.json()
    return sum(1 for t in targets if isinstance(t, dict) and t.get("type") == "page")


def check_port_connection(port: int, timeout: float = PORT_PROBE_TIMEOUT) -> PortStatus:
    """Probe a debugging port; never raises."""
    status = PortStatus(port=port)
    try:
        status.tab_count = run_with_deadline(lambda: _count_pages(port, timeout), timeout)
    except TimeoutError:
        status.error = "connection timeout"
    except (requests.RequestException, ValueError, TypeError) as e:
        status.error = str(e)
    else:
        status.running = True
    logger.debug(f"Port {port}: running={status.running} error={status.error}")
    return status


def _fetch_latest_tag(url: str, timeout: float) -> str:
    response = requests.get(url, timeout=timeout, headers={"Accept": "application/vnd.github+json"})
    if response.status_code != 200:
        return ""
    tag = response.json().get("tag_name", "")
    return tag[1:] if tag.startswith("v") else tag


def check_latest_version(
    url: str = RELEASES_API_URL, timeout: float = RELEASE_LOOKUP_TIMEOUT
) -> str:
    """Latest released version without the "v" prefix; "" when unknown."""
    try:
        return run_with_deadline(lambda: _fetch_latest_tag(url, timeout), timeout)
    except (TimeoutError, requests.RequestException, ValueError, AttributeError) as e:
        logger.debug(f"Latest version lookup failed: {e}")
        return ""


@dataclass
class DoctorReport:
    """Everything --doctor prints."""

    snag_version: str = snag_version
    latest_version: str = ""
    python_version: str = field(default_factory=platform.python_version)
    os_name: str = field(default_factory=lambda: platform.system().lower())
    arch: str = field(default_factory=platform.machine)
    working_dir: str = ""

    browser_name: str = ""
    browser_path: str = ""
    browser_version: str = ""
    browser_error: Optional[str] = None

    profile_path: Optional[str] = None
    profile_exists: bool = False

    default_port_status: Optional[PortStatus] = None
    custom_port_status: Optional[PortStatus] = None

    env_vars: Dict[str, str] = field(default_factory=dict)

    @property
    def update_available(self) -> bool:
        return bool(self.latest_version) and self.latest_version != self.snag_version

    def render(self, console: Optional[Console] = None) -> None:
        console = console or Console(highlight=False)
        ok_mark = Symbols.get(Symbols.SUCCESS)
        bad_mark = Symbols.get(Symbols.ERROR)

        console.print("snag Doctor Report", style="bold")
        console.print("==================")
        console.print(PROJECT_URL)

        def section(title: str, rows: List[tuple]) -> None:
            console.print()
            console.print(title, style="bold cyan")
            console.print("─" * len(title))
            table = Table(show_header=False, box=box.SIMPLE, padding=(0, 1), pad_edge=True)
            table.add_column("Label", style="dim", min_width=20)
            table.add_column("Value")
            for label, value in rows:
                table.add_row(f"{label}:", value)
            console.print(table)

        def check(ok: bool, value: str) -> str:
            return f"[green]{ok_mark}[/green] {value}" if ok else f"[red]{bad_mark}[/red] {value}"

        latest = self.latest_version or "(unknown)"
        if self.update_available:
            latest = f"{self.latest_version} (update available)"
        section(
            "Version Information",
            [
                ("snag version", self.snag_version),
                ("Latest version", latest),
                ("Python version", self.python_version),
                ("OS/Arch", f"{self.os_name}/{self.arch}"),
            ],
        )

        section("Working Directory", [("Path", self.working_dir)])

        if self.browser_error:
            browser_rows = [
                ("Detected", check(False, "No Chromium-based browser found")),
                ("Path", "(none)"),
                ("Version", "(none)"),
            ]
        else:
            browser_rows = [
                ("Detected", self.browser_name),
                ("Path", self.browser_path),
                ("Version", self.browser_version or "(unknown)"),
            ]
        section("Browser Detection", browser_rows)

        if self.profile_path:
            section(
                "Profile Location",
                [(self.browser_name, check(self.profile_exists, self.profile_path))],
            )

        port_rows = []
        for status in (self.default_port_status, self.custom_port_status):
            if status is None:
                continue
            if status.running:
                value = check(True, f"Running ({status.tab_count} tabs open)")
            else:
                value = check(False, "Not running")
            port_rows.append((f"Port {status.port}", value))
        section("Connection Status", port_rows)

        section(
            "Environment Variables",
            [(name, value or "(not set)") for name, value in self.env_vars.items()],
        )


def collect_doctor_info(
    custom_port: int = DEFAULT_PORT,
    executable_finder: Callable[[], str] = find_browser_executable,
    port_checker: Callable[[int], PortStatus] = check_port_connection,
    version_checker: Callable[[], str] = check_latest_version,
    environ: Optional[Dict[str, Any]] = None,
) -> DoctorReport:
    """Gather the report; individual failures are recorded, never raised."""
    environ = dict(os.environ) if environ is None else environ
    report = DoctorReport()

    try:
        report.working_dir = os.getcwd()
    except OSError:
        report.working_dir = "(unknown)"

    report.env_vars = {name: environ.get(name, "") for name in EXECUTABLE_ENV_VARS}

    try:
        path = executable_finder()
    except BrowserNotFound as e:
        report.browser_error = str(e)
    else:
        report.browser_path = path
        report.browser_name = detect_browser_family(path)
        try:
            report.browser_version = browser_version(path)
        except (OSError, subprocess.SubprocessError) as e:
            logger.debug(f"Browser version lookup failed: {e}")
        report.profile_path, report.profile_exists = profile_path_for(path)

    report.default_port_status = port_checker(DEFAULT_PORT)
    if custom_port != DEFAULT_PORT:
        report.custom_port_status = port_checker(custom_port)

    report.latest_version = version_checker()
    return report
