"""
Tests for logging setup and the symbol formatter.
"""

import io
import logging

import pytest

from snag.errors import ConfigurationError
from snag.log import (
    PACKAGE_LOGGER,
    SUCCESS,
    VERBOSE,
    SymbolFormatter,
    configure_logging,
    log_suggestion,
    success,
    verbose,
)
from snag.terminal import Symbols


def make_record(level: int, message: str) -> logging.LogRecord:
    return logging.LogRecord("snag.test", level, __file__, 1, message, None, None)


class TestSymbolFormatter:
    """Tests for SymbolFormatter prefixes."""

    @pytest.mark.parametrize(
        "level,expected",
        [
            (logging.DEBUG, "[DEBUG] msg"),
            (VERBOSE, "msg"),
            (logging.INFO, "msg"),
            (SUCCESS, "✓ msg"),
            (logging.WARNING, "⚠ msg"),
            (logging.ERROR, "✗ msg"),
        ],
    )
    def test_prefixes(self, level: int, expected: str) -> None:
        assert SymbolFormatter().format(make_record(level, "msg")) == expected

    def test_ascii_fallback(self) -> None:
        Symbols.set_ascii_mode(True)
        assert SymbolFormatter().format(make_record(logging.ERROR, "msg")) == "[X] msg"

    def test_color(self) -> None:
        text = SymbolFormatter(use_color=True).format(make_record(logging.WARNING, "msg"))
        assert text.startswith("\033[33m")
        assert text.endswith("\033[0m")

    def test_info_uncolored(self) -> None:
        assert SymbolFormatter(use_color=True).format(make_record(logging.INFO, "msg")) == "msg"


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_levels(self) -> None:
        stream = io.StringIO()
        log = configure_logging("quiet", stream)
        assert log.name == PACKAGE_LOGGER
        assert log.level == logging.ERROR
        assert configure_logging("verbose", stream).level == VERBOSE
        assert configure_logging("debug", stream).level == logging.DEBUG

    def test_single_handler(self) -> None:
        """Reconfiguring replaces the handler instead of stacking another."""
        stream = io.StringIO()
        configure_logging("normal", stream)
        log = configure_logging("verbose", stream)
        owned = [h for h in log.handlers if getattr(h, "_snag_handler", False)]
        assert len(owned) == 1

    def test_messages_reach_stream(self) -> None:
        stream = io.StringIO()
        configure_logging("verbose", stream)
        child = logging.getLogger("snag.fetcher")
        verbose(child, "Navigating...")
        success(child, "Fetched successfully")
        child.debug("hidden")
        output = stream.getvalue()
        assert "Navigating..." in output
        assert "Fetched successfully" in output
        assert "hidden" not in output

    def test_quiet_hides_warnings(self) -> None:
        stream = io.StringIO()
        configure_logging("quiet", stream)
        logging.getLogger("snag.batch").warning("careful")
        assert stream.getvalue() == ""

    def test_unknown_verbosity(self) -> None:
        with pytest.raises(ConfigurationError):
            configure_logging("chatty", io.StringIO())


class TestLogSuggestion:
    def test_with_suggestion(self, caplog: pytest.LogCaptureFixture) -> None:
        log_suggestion(logging.getLogger("snag.cli"), "no browser", "snag --open-browser")
        assert caplog.records[-1].getMessage() == "no browser\n\nTry: snag --open-browser"
        assert caplog.records[-1].levelno == logging.ERROR

    def test_without_suggestion(self, caplog: pytest.LogCaptureFixture) -> None:
        log_suggestion(logging.getLogger("snag.cli"), "boom", None)
        assert caplog.records[-1].getMessage() == "boom"
