"""
Tests for browser discovery, launching and the BrowserSession state machine.

No real browser is started: resolver, connector and launcher are replaced
with in-memory stand-ins.
"""

import logging
import os
import stat
from pathlib import Path
from typing import Any, List, Optional

import pytest
import requests

from snag import browser as browser_module
from snag.browser import (
    BrowserLauncher,
    BrowserOptions,
    BrowserSession,
    SessionMode,
    detect_browser_family,
    find_browser_executable,
    profile_path_for,
    resolve_debugger_url,
)
from snag.config import SnagConfig
from snag.errors import BrowserConnectionFailed, BrowserNotFound, NoBrowserRunning

WS_URL = "ws://127.0.0.1:9222/devtools/browser/abc"
USER_WS_URL = "ws://127.0.0.1:9222/devtools/browser/user"


class StubBrowser:
    def __init__(self) -> None:
        self.contexts: List[Any] = []
        self.closed = False

    def close(self) -> None:
        self.closed = True


class StubLauncher:
    """Records how it was built and whether it was torn down."""

    instances: List["StubLauncher"] = []

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
        self.killed = False
        self.cleaned = False
        StubLauncher.instances.append(self)

    def launch(self) -> str:
        return WS_URL

    def kill(self) -> None:
        self.killed = True

    def cleanup(self) -> None:
        self.cleaned = True


def no_browser(port: int) -> str:
    raise BrowserConnectionFailed(f"no remote debugging endpoint on port {port}")


def make_session(
    options: Optional[BrowserOptions] = None,
    resolver: Any = no_browser,
    browser: Optional[StubBrowser] = None,
) -> BrowserSession:
    target = browser or StubBrowser()
    return BrowserSession(
        options or BrowserOptions(),
        resolver=resolver,
        connector=lambda ws_url: target,
        launcher_factory=StubLauncher,
        executable_finder=lambda: "/usr/bin/chromium",
    )


@pytest.fixture(autouse=True)
def reset_launchers() -> None:
    StubLauncher.instances = []


class TestBrowserOptions:
    def test_from_config(self) -> None:
        config = SnagConfig(port=9333, force_headless=True, user_agent="Bot/1.0")
        options = BrowserOptions.from_config(config)
        assert options.port == 9333
        assert options.force_headless is True
        assert options.user_agent == "Bot/1.0"


class TestSessionConnect:
    """Tests for BrowserSession.connect."""

    def test_attaches_to_running_browser(self) -> None:
        """A responding port is attached to and nothing is launched."""
        session = make_session(resolver=lambda port: WS_URL)
        session.connect()
        assert session.mode is SessionMode.ATTACHED
        assert StubLauncher.instances == []

    def test_attach_warns_about_launch_only_flags(self, caplog: pytest.LogCaptureFixture) -> None:
        """User agent and profile dir cannot be applied to a running browser."""
        caplog.set_level(logging.DEBUG)
        options = BrowserOptions(user_agent="Bot/1.0", user_data_dir="/tmp/profile")
        make_session(options, resolver=lambda port: WS_URL).connect()
        assert "--user-agent ignored" in caplog.text
        assert "--user-data-dir ignored" in caplog.text

    def test_launches_headless_when_nothing_running(self) -> None:
        """Without a running browser a headless one is launched."""
        session = make_session()
        session.connect()
        assert session.mode is SessionMode.LAUNCHED_HEADLESS
        assert session.browser_family == "Chromium"
        assert StubLauncher.instances[0].headless is True

    def test_open_browser_launches_visible(self) -> None:
        session = make_session(BrowserOptions(open_browser=True))
        session.connect()
        assert session.mode is SessionMode.LAUNCHED_VISIBLE
        assert StubLauncher.instances[0].headless is False

    def test_force_headless_skips_attach(self) -> None:
        """force_headless never probes the port for an existing browser."""
        probed: List[int] = []

        def resolver(port: int) -> str:
            probed.append(port)
            return WS_URL

        session = make_session(BrowserOptions(force_headless=True), resolver=resolver)
        session.connect()
        assert probed == []
        assert session.mode is SessionMode.LAUNCHED_HEADLESS

    def test_launch_options_passed_to_launcher(self) -> None:
        options = BrowserOptions(port=9333, user_agent="Bot/1.0", user_data_dir="/tmp/p")
        make_session(options).connect()
        launcher = StubLauncher.instances[0]
        assert (launcher.port, launcher.user_agent, launcher.user_data_dir) == (
            9333,
            "Bot/1.0",
            "/tmp/p",
        )

    def test_connector_failure_tears_down_launch(self) -> None:
        """A browser that cannot be connected to after launch is killed."""

        def refuse(ws_url: str) -> Any:
            raise BrowserConnectionFailed("handshake failed")

        session = BrowserSession(
            BrowserOptions(),
            resolver=no_browser,
            connector=refuse,
            launcher_factory=StubLauncher,
            executable_finder=lambda: "/usr/bin/chromium",
        )
        with pytest.raises(BrowserConnectionFailed):
            session.connect()
        assert StubLauncher.instances[0].killed
        assert StubLauncher.instances[0].cleaned

    def test_no_executable(self) -> None:
        def finder() -> str:
            raise BrowserNotFound("no Chromium-based browser found")

        session = BrowserSession(BrowserOptions(), resolver=no_browser, executable_finder=finder)
        with pytest.raises(BrowserNotFound):
            session.connect()
        assert session.mode is SessionMode.DISCONNECTED


class TestSessionAttach:
    """Tests for attach-only and open_visible."""

    def test_attach_failure_is_no_browser_running(self) -> None:
        """attach() never launches; it points the user at --open-browser."""
        with pytest.raises(NoBrowserRunning) as exc_info:
            make_session().attach()
        assert exc_info.value.suggestion == "snag --open-browser"
        assert StubLauncher.instances == []

    def test_open_visible_reuses_running_browser(self) -> None:
        session = make_session(resolver=lambda port: WS_URL)
        session.open_visible()
        assert session.mode is SessionMode.ATTACHED
        assert StubLauncher.instances == []

    def test_open_visible_launches(self) -> None:
        session = make_session()
        session.open_visible()
        assert session.mode is SessionMode.LAUNCHED_VISIBLE


class TestSessionClose:
    """Tests for the close policy."""

    def test_headless_browser_is_terminated(self) -> None:
        target = StubBrowser()
        session = make_session(browser=target)
        session.connect()
        session.close()
        assert target.closed
        assert StubLauncher.instances[0].killed
        assert StubLauncher.instances[0].cleaned
        assert session.mode is SessionMode.CLOSED

    def test_attached_browser_is_left_running(self) -> None:
        target = StubBrowser()
        session = make_session(resolver=lambda port: WS_URL, browser=target)
        session.attach()
        session.close()
        assert not target.closed

    def test_visible_browser_is_left_running(self) -> None:
        target = StubBrowser()
        session = make_session(BrowserOptions(open_browser=True), browser=target)
        session.connect()
        session.close()
        assert not target.closed
        assert not StubLauncher.instances[0].killed

    def test_close_is_idempotent(self) -> None:
        session = make_session()
        session.connect()
        session.close()
        session.close()
        assert session.mode is SessionMode.CLOSED

    def test_closed_session_cannot_reconnect(self) -> None:
        session = make_session()
        session.close()
        with pytest.raises(BrowserConnectionFailed, match="already closed"):
            session.connect()

    def test_context_manager_closes(self) -> None:
        target = StubBrowser()
        with make_session(browser=target) as session:
            session.connect()
        assert target.closed


class TestSessionPages:
    """Tests for page helpers."""

    def test_pages_require_connection(self) -> None:
        with pytest.raises(NoBrowserRunning):
            make_session().pages()

    def test_new_page_and_close_page(self, attached_session_factory: Any) -> None:
        session = attached_session_factory([("https://a.com", "A")])
        page = session.new_page()
        assert len(session.pages()) == 2
        session.close_page(page)
        assert page.closed
        assert len(session.pages()) == 1

    def test_page_info(self, attached_session_factory: Any) -> None:
        session = attached_session_factory([("https://a.com", "A", "T42")])
        assert session.page_info(session.pages()[0]) == ("https://a.com", "A", "T42")


class TestExecutableDiscovery:
    """Tests for find_browser_executable."""

    @staticmethod
    def make_executable(path: Path) -> Path:
        path.write_text("#!/bin/sh\n")
        path.chmod(path.stat().st_mode | stat.S_IXUSR)
        return path

    def test_chrome_path_env(self, tmp_path: Path) -> None:
        exe = self.make_executable(tmp_path / "my-chrome")
        assert find_browser_executable({"CHROME_PATH": str(exe)}) == str(exe)

    def test_missing_env_path_falls_through(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        """A stale CHROME_PATH is warned about and the PATH search continues."""
        caplog.set_level(logging.DEBUG)
        exe = self.make_executable(tmp_path / "chromium")
        found = find_browser_executable(
            {"CHROME_PATH": str(tmp_path / "gone"), "PATH": str(tmp_path)}
        )
        assert found == str(exe)
        assert "CHROME_PATH points to a missing file" in caplog.text

    def test_nothing_found(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(browser_module, "_platform_key", lambda: "plan9")
        with pytest.raises(BrowserNotFound) as exc_info:
            find_browser_executable({"PATH": str(tmp_path)})
        assert "CHROME_PATH" in (exc_info.value.suggestion or "")


class TestBrowserFamily:
    """Tests for detect_browser_family and profile_path_for."""

    @pytest.mark.parametrize(
        "path,name",
        [
            ("/usr/bin/google-chrome", "Chrome"),
            ("/usr/bin/chromium-browser", "Chromium"),
            ("/usr/bin/ungoogled-chromium", "Ungoogled-Chromium"),
            ("msedge.exe", "Edge"),
            ("/usr/bin/brave-browser", "Brave"),
            ("/Applications/Vivaldi.app", "Vivaldi"),
            ("/usr/local/bin/mybrowser", "Mybrowser"),
        ],
    )
    def test_detect(self, path: str, name: str) -> None:
        assert detect_browser_family(path) == name

    def test_linux_profile(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(browser_module, "_platform_key", lambda: "linux")
        (tmp_path / ".config" / "google-chrome").mkdir(parents=True)
        profile, exists = profile_path_for("/usr/bin/google-chrome", home=str(tmp_path))
        assert profile == os.path.join(str(tmp_path), ".config", "google-chrome")
        assert exists is True

    def test_missing_profile(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(browser_module, "_platform_key", lambda: "darwin")
        profile, exists = profile_path_for("/Applications/Arc.app", home=str(tmp_path))
        assert profile is not None and profile.endswith("Arc")
        assert exists is False

    def test_unsupported_platform(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(browser_module, "_platform_key", lambda: "win32")
        assert profile_path_for("chrome.exe") == (None, False)

    def test_unknown_family(self) -> None:
        assert profile_path_for("/usr/local/bin/mybrowser") == (None, False)


class TestLauncher:
    """Tests for BrowserLauncher command lines and cleanup."""

    def test_headless_args(self) -> None:
        launcher = BrowserLauncher("/usr/bin/chromium", 9333, headless=True, user_data_dir="/tmp/p")
        args = launcher.build_args()
        assert args[0] == "/usr/bin/chromium"
        assert "--remote-debugging-port=9333" in args
        assert "--user-data-dir=/tmp/p" in args
        assert "--headless=new" in args
        assert args[-1] == "about:blank"

    def test_visible_args_with_user_agent(self) -> None:
        launcher = BrowserLauncher("chrome", 9222, headless=False, user_agent="Bot/1.0")
        args = launcher.build_args()
        assert "--headless=new" not in args
        assert "--user-agent=Bot/1.0" in args

    def test_cleanup_removes_only_temp_profile(self, tmp_path: Path) -> None:
        temp = tmp_path / "snag-profile"
        temp.mkdir()
        launcher = BrowserLauncher("chrome", 9222, headless=True)
        launcher.temp_profile = str(temp)
        launcher.cleanup()
        assert not temp.exists()

        user_dir = tmp_path / "mine"
        user_dir.mkdir()
        launcher = BrowserLauncher("chrome", 9222, headless=True, user_data_dir=str(user_dir))
        launcher.cleanup()
        assert user_dir.exists()

    def test_refuses_port_owned_by_another_browser(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """A port that already answers is never launched on or polled as ours."""
        spawned: List[Any] = []
        monkeypatch.setattr(
            requests, "get", lambda url, timeout=0: FakeResponse({"webSocketDebuggerUrl": USER_WS_URL})
        )
        monkeypatch.setattr(browser_module.subprocess, "Popen", lambda *a, **kw: spawned.append(a))
        launcher = BrowserLauncher("chrome", 9222, headless=True)
        with pytest.raises(BrowserConnectionFailed, match="already in use"):
            launcher.launch()
        assert spawned == []
        assert launcher.temp_profile is None

    def test_forced_headless_leaves_user_browser_alone(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """--force-headless next to the user's browser fails without touching it."""
        user_browser = StubBrowser()
        connected: List[str] = []

        def connector(ws_url: str) -> StubBrowser:
            connected.append(ws_url)
            return user_browser

        monkeypatch.setattr(
            requests, "get", lambda url, timeout=0: FakeResponse({"webSocketDebuggerUrl": USER_WS_URL})
        )
        monkeypatch.setattr(browser_module.subprocess, "Popen", lambda *a, **kw: pytest.fail("spawned"))
        session = BrowserSession(
            BrowserOptions(port=9222, force_headless=True),
            connector=connector,
            executable_finder=lambda: "/usr/bin/chromium",
        )
        with pytest.raises(BrowserConnectionFailed):
            session.connect()
        assert session.mode is SessionMode.DISCONNECTED
        session.close()
        assert connected == []
        assert user_browser.closed is False


class FakeResponse:
    def __init__(self, payload: Any, status_code: int = 200) -> None:
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self) -> Any:
        return self.payload


class TestResolveDebuggerUrl:
    """Tests for resolve_debugger_url."""

    def test_resolves(self, monkeypatch: pytest.MonkeyPatch) -> None:
        seen: List[str] = []

        def fake_get(url: str, timeout: float = 0) -> FakeResponse:
            seen.append(url)
            return FakeResponse({"webSocketDebuggerUrl": WS_URL})

        monkeypatch.setattr(requests, "get", fake_get)
        assert resolve_debugger_url(9333) == WS_URL
        assert seen == ["http://127.0.0.1:9333/json/version"]

    def test_connection_refused(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def fake_get(url: str, timeout: float = 0) -> FakeResponse:
            raise requests.ConnectionError("refused")

        monkeypatch.setattr(requests, "get", fake_get)
        with pytest.raises(BrowserConnectionFailed, match="port 9222"):
            resolve_debugger_url(9222)

    def test_not_a_debugging_endpoint(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(requests, "get", lambda url, timeout=0: FakeResponse({"ok": True}))
        with pytest.raises(BrowserConnectionFailed, match="webSocketDebuggerUrl"):
            resolve_debugger_url(9222)
