"""
Browser session lifecycle: attach to a running browser or launch one.

Provides:
- SessionMode state machine (DISCONNECTED -> ATTACHED | LAUNCHED_* -> CLOSED)
- BrowserOptions, built from SnagConfig
- Executable discovery and browser family detection (rule table)
- BrowserLauncher: spawns a Chromium-family process with remote debugging
- BrowserSession: connect/attach/open_visible, page helpers, close policy

DESIGN NOTES:
- Remote debugging protocol is handled by Playwright (connect_over_cdp);
  this module only resolves http://127.0.0.1:{port} to its websocket URL
- Attaching preserves the user's profile, cookies and logins; launch-only
  overrides (user agent, profile dir) are ignored with a warning
- Only a headless browser launched by us is terminated on close; its
  temporary profile is removed, an explicit --user-data-dir never is
- One BrowserSession per invocation, owned by the CLI handler and closed in
  a finally block (or via the context manager protocol)

DO NOT:
- Keep a module-level "current session"
- Retry a failed attach/launch handshake automatically
- Call browser.close() on an attached browser - it belongs to the user
"""

import logging
import os
import shutil
import subprocess
import sys
import tempfile
import time
from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple

import requests
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import sync_playwright

from snag.config import (
    CONNECT_TIMEOUT,
    DEBUG_HOST,
    DEFAULT_PORT,
    LAUNCH_POLL_INTERVAL,
    PROCESS_EXIT_TIMEOUT,
    TEMP_PROFILE_PREFIX,
)
from snag.errors import (
    BrowserConnectionFailed,
    BrowserNotFound,
    NoBrowserRunning,
    SnagError,
)
from snag.log import success, verbose

if TYPE_CHECKING:
    from snag.config import SnagConfig

logger = logging.getLogger(__name__)


class SessionMode(Enum):
    """
    Lifecycle states of a BrowserSession.

    State transitions:
        DISCONNECTED -> ATTACHED | LAUNCHED_HEADLESS | LAUNCHED_VISIBLE
        any state -> CLOSED (terminal, nothing leaves CLOSED)
    """

    DISCONNECTED = auto()
    ATTACHED = auto()
    LAUNCHED_HEADLESS = auto()
    LAUNCHED_VISIBLE = auto()
    CLOSED = auto()


@dataclass
class BrowserOptions:
    """Connection and launch settings for a BrowserSession."""

    port: int = DEFAULT_PORT
    force_headless: bool = False
    open_browser: bool = False
    user_agent: Optional[str] = None
    user_data_dir: Optional[str] = None

    @classmethod
    def from_config(cls, config: "SnagConfig") -> "BrowserOptions":
        return cls(
            port=config.port,
            force_headless=config.force_headless,
            open_browser=config.open_browser,
            user_agent=config.user_agent,
            user_data_dir=config.user_data_dir,
        )


# =============================================================================
# Executable discovery
# =============================================================================


@dataclass(frozen=True)
class BrowserRule:
    """Maps an executable basename fragment to a family and profile location."""

    pattern: str
    name: str
    exclude: str = ""
    profile_mac: str = ""  # relative to ~/Library/Application Support
    profile_linux: str = ""  # relative to ~/.config


# Order matters: "ungoogled-chromium" must hit before "chromium",
# "google-chrome" must not be mistaken for "chromium"
BROWSER_RULES: Tuple[BrowserRule, ...] = (
    BrowserRule("ungoogled", "Ungoogled-Chromium", "", "Chromium", "chromium"),
    BrowserRule("chrome", "Chrome", "chromium", "Google/Chrome", "google-chrome"),
    BrowserRule("chromium", "Chromium", "", "Chromium", "chromium"),
    BrowserRule("msedge", "Edge", "", "Microsoft Edge", "microsoft-edge"),
    BrowserRule("edge", "Edge", "", "Microsoft Edge", "microsoft-edge"),
    BrowserRule(
        "brave",
        "Brave",
        "",
        "BraveSoftware/Brave-Browser",
        "BraveSoftware/Brave-Browser",
    ),
    BrowserRule("opera", "Opera", "", "com.operasoftware.Opera", "opera"),
    BrowserRule("vivaldi", "Vivaldi", "", "Vivaldi", "vivaldi"),
    BrowserRule("arc", "Arc", "", "Arc", ""),
    BrowserRule("yandex", "Yandex", "", "Yandex/YandexBrowser", "yandex-browser"),
    BrowserRule("thorium", "Thorium", "", "Thorium", "thorium"),
    BrowserRule("slimjet", "Slimjet", "", "Slimjet", "slimjet"),
    BrowserRule("cent", "Cent", "", "CentBrowser", "cent-browser"),
)

EXECUTABLE_ENV_VARS: Tuple[str, ...] = ("CHROME_PATH", "CHROMIUM_PATH")

EXECUTABLE_NAMES: Tuple[str, ...] = (
    "google-chrome",
    "google-chrome-stable",
    "chromium",
    "chromium-browser",
    "microsoft-edge",
    "microsoft-edge-stable",
    "brave-browser",
    "vivaldi",
    "opera",
    "chrome",
    "msedge",
)

PLATFORM_LOCATIONS: Dict[str, Tuple[str, ...]] = {
    "darwin": (
        "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
        "/Applications/Chromium.app/Contents/MacOS/Chromium",
        "/Applications/Microsoft Edge.app/Contents/MacOS/Microsoft Edge",
        "/Applications/Brave Browser.app/Contents/MacOS/Brave Browser",
        "/Applications/Vivaldi.app/Contents/MacOS/Vivaldi",
        "/Applications/Arc.app/Contents/MacOS/Arc",
    ),
    "linux": (
        "/usr/bin/google-chrome",
        "/usr/bin/chromium",
        "/usr/bin/chromium-browser",
        "/snap/bin/chromium",
        "/usr/bin/microsoft-edge",
        "/usr/bin/brave-browser",
    ),
    "win32": (
        r"C:\Program Files\Google\Chrome\Application\chrome.exe",
        r"C:\Program Files (x86)\Google\Chrome\Application\chrome.exe",
        r"C:\Program Files (x86)\Microsoft\Edge\Application\msedge.exe",
        r"C:\Program Files\Microsoft\Edge\Application\msedge.exe",
    ),
}


def find_browser_executable(environ: Optional[Dict[str, str]] = None) -> str:
    """
    Locate a Chromium-family browser executable.

    Search order: CHROME_PATH / CHROMIUM_PATH, known names on PATH, then
    the platform's standard install locations.

    Raises:
        BrowserNotFound: if nothing usable is found
    """
    environ = dict(os.environ) if environ is None else environ

    for var in EXECUTABLE_ENV_VARS:
        candidate = environ.get(var)
        if not candidate:
            continue
        if os.path.isfile(candidate):
            logger.debug(f"Found browser via {var}: {candidate}")
            return candidate
        logger.warning(f"{var} points to a missing file: {candidate}")

    for name in EXECUTABLE_NAMES:
        found = shutil.which(name, path=environ.get("PATH"))
        if found:
            logger.debug(f"Found browser at: {found}")
            return found

    for candidate in PLATFORM_LOCATIONS.get(_platform_key(), ()):
        if os.path.isfile(candidate):
            logger.debug(f"Found browser at: {candidate}")
            return candidate

    raise BrowserNotFound(
        "no Chromium-based browser found",
        suggestion="Install Chrome or Chromium, or set CHROME_PATH",
    )


def _platform_key() -> str:
    if sys.platform.startswith("linux"):
        return "linux"
    return sys.platform


def _executable_stem(path: str) -> str:
    base = os.path.basename(path)
    for suffix in (".exe", ".app"):
        if base.endswith(suffix):
            base = base[: -len(suffix)]
    return base


def match_browser_rule(path: str) -> Optional[BrowserRule]:
    """First rule whose pattern is in the lowercased basename (minus exclusions)."""
    lower = _executable_stem(path).lower()
    for rule in BROWSER_RULES:
        if rule.pattern in lower and not (rule.exclude and rule.exclude in lower):
            return rule
    return None


def detect_browser_family(path: str) -> str:
    """Human-readable browser name for an executable path."""
    rule = match_browser_rule(path)
    if rule is not None:
        return rule.name

    stem = _executable_stem(path)
    if stem:
        return stem[:1].upper() + stem[1:]
    return "Browser"


def profile_path_for(path: str, home: Optional[str] = None) -> Tuple[Optional[str], bool]:
    """
    Default profile directory of the browser family at ``path``.

    Returns:
        (profile_path, exists); (None, False) when the family or the
        platform has no known profile location
    """
    rule = match_browser_rule(path)
    if rule is None:
        return None, False

    home = home or os.path.expanduser("~")
    platform = _platform_key()
    if platform == "darwin":
        if not rule.profile_mac:
            return None, False
        profile = os.path.join(home, "Library", "Application Support", rule.profile_mac)
    elif platform == "linux":
        if not rule.profile_linux:
            return None, False
        profile = os.path.join(home, ".config", rule.profile_linux)
    else:
        return None, False

    return profile, os.path.isdir(profile)


def browser_version(path: str, timeout: float = CONNECT_TIMEOUT) -> str:
    """
    Run ``<path> --version``.

    Raises:
        OSError / subprocess.SubprocessError: if the executable cannot run
    """
    result = subprocess.run(
        [path, "--version"],
        capture_output=True,
        text=True,
        timeout=timeout,
        check=True,
    )
    return result.stdout.strip()


# =============================================================================
# Remote debugging endpoint
# =============================================================================


def resolve_debugger_url(port: int, timeout: float = CONNECT_TIMEOUT) -> str:
    """
    Resolve http://127.0.0.1:{port} to the browser's websocket debugger URL.

    Raises:
        BrowserConnectionFailed: nothing answers, or the answer is not a
            remote debugging endpoint
    """
    url = f"http://{DEBUG_HOST}:{port}/json/version"
    logger.debug(f"Attempting connection to: {url}")
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
        data = response.json()
    except (requests.RequestException, ValueError) as e:
        raise BrowserConnectionFailed(
            f"no remote debugging endpoint on port {port}: {e}"
        ) from e

    ws_url = data.get("webSocketDebuggerUrl") if isinstance(data, dict) else None
    if not ws_url:
        raise BrowserConnectionFailed(
            f"port {port} did not report a webSocketDebuggerUrl"
        )
    logger.debug(f"Resolved WebSocket URL: {ws_url}")
    return ws_url


class BrowserLauncher:
    """
    Spawns and tears down a browser process with remote debugging enabled.

    The launcher owns the process handle and, when no profile directory was
    supplied, the temporary profile it created.
    """

    def __init__(
        self,
        executable: str,
        port: int,
        headless: bool,
        user_agent: Optional[str] = None,
        user_data_dir: Optional[str] = None,
    ) -> None:
        self.executable = executable
        self.port = port
        self.headless = headless
        self.user_agent = user_agent
        self.user_data_dir = user_data_dir
        self.process: Optional[subprocess.Popen] = None
        self.temp_profile: Optional[str] = None

    @property
    def profile_dir(self) -> Optional[str]:
        return self.user_data_dir or self.temp_profile

    def build_args(self) -> List[str]:
        """Command line for the browser process."""
        args = [
            self.executable,
            f"--remote-debugging-port={self.port}",
            f"--user-data-dir={self.profile_dir}",
            "--no-first-run",
            "--no-default-browser-check",
            "--disable-blink-features=AutomationControlled",
        ]
        if self.headless:
            args.append("--headless=new")
        if self.user_agent:
            args.append(f"--user-agent={self.user_agent}")
        args.append("about:blank")
        return args

    def launch(self, timeout: float = CONNECT_TIMEOUT) -> str:
        """
        Start the browser and wait for its debugging endpoint.

        Returns:
            The websocket debugger URL

        Raises:
            BrowserConnectionFailed: the port already belongs to another
                browser, or the process died or never answered
        """
        try:
            existing = resolve_debugger_url(self.port, timeout=LAUNCH_POLL_INTERVAL * 10)
        except BrowserConnectionFailed:
            pass
        else:
            # The endpoint polled below must belong to the process spawned here
            logger.debug(f"Port {self.port} already answers with {existing}")
            raise BrowserConnectionFailed(
                f"port {self.port} is already in use by another browser",
                suggestion=f"snag -p {self.port + 1} ...",
            )

        if self.user_data_dir:
            verbose(logger, f"Using custom user data directory: {self.user_data_dir}")
        else:
            self.temp_profile = tempfile.mkdtemp(prefix=TEMP_PROFILE_PREFIX)
        if self.user_agent:
            verbose(logger, f"Using custom user agent: {self.user_agent}")

        args = self.build_args()
        logger.debug(f"Launching: {' '.join(args)}")
        try:
            self.process = subprocess.Popen(
                args,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as e:
            self.cleanup()
            raise BrowserConnectionFailed(f"failed to launch browser: {e}") from e

        deadline = time.monotonic() + timeout
        last_error: Optional[SnagError] = None
        while time.monotonic() < deadline:
            code = self.process.poll()
            if code is not None:
                self.cleanup()
                raise BrowserConnectionFailed(
                    f"browser exited during startup (exit code {code})"
                )
            try:
                ws_url = resolve_debugger_url(self.port, timeout=LAUNCH_POLL_INTERVAL * 10)
            except BrowserConnectionFailed as e:
                last_error = e
                time.sleep(LAUNCH_POLL_INTERVAL)
                continue
            logger.debug(f"Browser launched (PID {self.process.pid})")
            return ws_url

        self.kill()
        self.cleanup()
        raise BrowserConnectionFailed(
            f"browser did not open its debugging port within {timeout:.0f}s"
            + (f": {last_error}" if last_error else "")
        )

    def kill(self) -> None:
        """Terminate the process, escalating to SIGKILL if it lingers."""
        if self.process is None or self.process.poll() is not None:
            return
        self.process.terminate()
        try:
            self.process.wait(timeout=PROCESS_EXIT_TIMEOUT)
        except subprocess.TimeoutExpired:
            logger.debug(f"Browser PID {self.process.pid} ignored SIGTERM, killing")
            self.process.kill()
            self.process.wait(timeout=PROCESS_EXIT_TIMEOUT)

    def cleanup(self) -> None:
        """Remove the temporary profile (never a user-supplied one)."""
        if not self.temp_profile:
            return
        try:
            shutil.rmtree(self.temp_profile)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove temporary profile {self.temp_profile}: {e}")
        self.temp_profile = None


# =============================================================================
# Session
# =============================================================================


class BrowserSession:
    """
    One connection to a browser's remote debugging endpoint.

    Collaborators are injectable so the state machine can be exercised
    without a real browser:
        resolver(port) -> websocket URL
        connector(ws_url) -> Playwright Browser
        launcher_factory(executable, port, headless, user_agent, user_data_dir)
        executable_finder() -> executable path
    """

    def __init__(
        self,
        options: Optional[BrowserOptions] = None,
        resolver: Callable[[int], str] = resolve_debugger_url,
        connector: Optional[Callable[[str], Any]] = None,
        launcher_factory: Callable[..., BrowserLauncher] = BrowserLauncher,
        executable_finder: Callable[[], str] = find_browser_executable,
    ) -> None:
        self.options = options or BrowserOptions()
        self.mode = SessionMode.DISCONNECTED
        self.browser: Any = None
        self.executable_path: Optional[str] = None
        self.browser_family: Optional[str] = None

        self._resolver = resolver
        self._connector = connector or self._connect_over_cdp
        self._launcher_factory = launcher_factory
        self._executable_finder = executable_finder
        self._launcher: Optional[BrowserLauncher] = None
        self._playwright: Any = None

    @property
    def port(self) -> int:
        return self.options.port

    @property
    def was_launched(self) -> bool:
        return self.mode in (SessionMode.LAUNCHED_HEADLESS, SessionMode.LAUNCHED_VISIBLE)

    @property
    def is_connected(self) -> bool:
        return self.mode in (
            SessionMode.ATTACHED,
            SessionMode.LAUNCHED_HEADLESS,
            SessionMode.LAUNCHED_VISIBLE,
        )

    def __enter__(self) -> "BrowserSession":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    # --- connection -------------------------------------------------------

    def connect(self) -> Any:
        """
        Attach to a running browser, or launch one.

        Attach is skipped when force_headless is set. A launched browser is
        headless unless open_browser was requested.

        Raises:
            BrowserNotFound: no executable to launch
            BrowserConnectionFailed: attach/launch handshake failed
        """
        self._check_open()
        if self.is_connected:
            return self.browser

        if not self.options.force_headless:
            verbose(logger, f"Checking for existing browser instance on port {self.port}...")
            try:
                self._attach_existing()
            except BrowserConnectionFailed as e:
                logger.debug(f"Attach failed: {e}")
                verbose(logger, "No existing browser instance found")
            else:
                if self.options.open_browser:
                    success(logger, "Connected to existing browser (visible mode)")
                else:
                    success(logger, "Connected to existing browser instance")
                self._warn_ignored_overrides()
                return self.browser

        headless = self.options.force_headless or not self.options.open_browser
        if headless:
            verbose(logger, "Launching browser in headless mode...")
        else:
            logger.info("Launching browser in visible mode...")

        self._launch(headless)
        success(
            logger,
            f"{self.browser_family} launched in {'headless' if headless else 'visible'} mode",
        )
        return self.browser

    def attach(self) -> Any:
        """
        Attach to an existing browser only, never launching one.

        Raises:
            NoBrowserRunning: nothing is listening on the configured port
        """
        self._check_open()
        if self.is_connected:
            return self.browser

        verbose(logger, f"Checking for existing browser instance on port {self.port}...")
        try:
            self._attach_existing()
        except BrowserConnectionFailed as e:
            logger.debug(f"Attach failed: {e}")
            raise NoBrowserRunning(
                f"no browser instance running with remote debugging on port {self.port}",
                suggestion="snag --open-browser",
            ) from e
        success(logger, "Connected to existing browser instance")
        return self.browser

    def open_visible(self) -> Any:
        """
        Make sure a visible browser is listening on the port and leave it running.

        An already-running browser is reused as is.
        """
        self._check_open()
        if self.is_connected:
            return self.browser

        verbose(logger, f"Checking for existing browser instance on port {self.port}...")
        try:
            self._attach_existing()
        except BrowserConnectionFailed as e:
            logger.debug(f"Attach failed: {e}")
        else:
            success(logger, f"Browser already running on port {self.port}")
            self._warn_ignored_overrides()
            logger.info("You can connect to it using: snag <url>")
            return self.browser

        self._launch(headless=False)
        success(logger, f"Browser opened on port {self.port}")
        logger.info("Browser is running with remote debugging enabled")
        logger.info("You can now connect to it using: snag <url>")
        return self.browser

    def _attach_existing(self) -> None:
        ws_url = self._resolver(self.port)
        self.browser = self._connector(ws_url)
        self.mode = SessionMode.ATTACHED
        logger.debug("Successfully connected to browser")

    def _launch(self, headless: bool) -> None:
        self.executable_path = self._executable_finder()
        self.browser_family = detect_browser_family(self.executable_path)
        logger.debug(f"Using {self.browser_family} at {self.executable_path}")

        launcher = self._launcher_factory(
            self.executable_path,
            self.port,
            headless,
            self.options.user_agent,
            self.options.user_data_dir,
        )
        self._launcher = launcher
        ws_url = launcher.launch()
        try:
            self.browser = self._connector(ws_url)
        except BrowserConnectionFailed:
            launcher.kill()
            launcher.cleanup()
            self._launcher = None
            raise

        self.mode = SessionMode.LAUNCHED_HEADLESS if headless else SessionMode.LAUNCHED_VISIBLE

    def _connect_over_cdp(self, ws_url: str) -> Any:
        try:
            if self._playwright is None:
                self._playwright = sync_playwright().start()
            return self._playwright.chromium.connect_over_cdp(
                ws_url, timeout=CONNECT_TIMEOUT * 1000
            )
        except PlaywrightError as e:
            raise BrowserConnectionFailed(f"failed to connect to {ws_url}: {e}") from e

    def _warn_ignored_overrides(self) -> None:
        if self.options.user_data_dir:
            logger.warning(
                "--user-data-dir ignored (browser already running with its own profile)"
            )
        if self.options.user_agent:
            logger.warning(
                "--user-agent ignored (browser already running with its own user agent)"
            )

    def _check_open(self) -> None:
        if self.mode is SessionMode.CLOSED:
            raise BrowserConnectionFailed("browser session is already closed")

    def _require_browser(self) -> Any:
        if not self.is_connected or self.browser is None:
            raise NoBrowserRunning("browser not connected")
        return self.browser

    # --- pages ------------------------------------------------------------

    def pages(self) -> List[Any]:
        """All pages across the browser's contexts, in protocol order."""
        browser = self._require_browser()
        return [page for context in browser.contexts for page in context.pages]

    def new_page(self) -> Any:
        """Open a tab in the default context (keeps the browser's cookies)."""
        browser = self._require_browser()
        try:
            contexts = browser.contexts
            context = contexts[0] if contexts else browser.new_context()
            return context.new_page()
        except PlaywrightError as e:
            raise BrowserConnectionFailed(f"failed to create page: {e}") from e

    def close_page(self, page: Any) -> None:
        if page is None:
            return
        verbose(logger, "Closing page...")
        try:
            page.close()
        except PlaywrightError as e:
            logger.warning(f"Failed to close page: {e}")

    def page_info(self, page: Any) -> Tuple[str, str, str]:
        """
        Read (url, title, target_id) of a page over the debugging protocol.

        Raises:
            playwright Error: when the target cannot be queried
        """
        cdp = page.context.new_cdp_session(page)
        try:
            info = cdp.send("Target.getTargetInfo")["targetInfo"]
        finally:
            cdp.detach()
        return info.get("url", ""), info.get("title", ""), info["targetId"]

    # --- shutdown ---------------------------------------------------------

    def close(self) -> None:
        """
        Release the session. Safe to call more than once.

        Only a headless browser we launched is terminated.
        """
        if self.mode is SessionMode.CLOSED:
            return

        mode = self.mode
        self.mode = SessionMode.CLOSED
        try:
            if mode is SessionMode.LAUNCHED_HEADLESS:
                verbose(logger, "Closing headless browser...")
                if self.browser is not None:
                    try:
                        self.browser.close()
                    except PlaywrightError as e:
                        logger.warning(f"Failed to close browser: {e}")
                if self._launcher is not None:
                    self._launcher.kill()
                    self._launcher.cleanup()
            elif mode is SessionMode.LAUNCHED_VISIBLE:
                verbose(logger, "Leaving visible browser running")
            elif mode is SessionMode.ATTACHED:
                verbose(logger, "Leaving existing browser instance running")
        finally:
            self.browser = None
            self._launcher = None
            if self._playwright is not None:
                try:
                    self._playwright.stop()
                except PlaywrightError as e:
                    logger.debug(f"Playwright shutdown error: {e}")
                self._playwright = None
