"""
Command line front end.

Provides:
- build_parser(): every flag of the snag command
- main(argv) -> exit code, the console script entry point
- One handler per mode: single URL, URL batch, list tabs, tab fetch,
  all tabs, open browser (with or without URLs), kill browser, doctor

DESIGN NOTES:
- Flags resolve through load_config(): CLI > SNAG_* env > --config file >
  defaults. Options left unset on the command line are None so lower
  layers can fill them
- Every handler owns exactly one BrowserSession and closes it in a
  finally block; SIGTERM is turned into SystemExit(143) so those blocks
  run on termination too
- SnagError is rendered once, here, as "✗ message / Try: suggestion"
- Page content goes to stdout, everything else goes to stderr

DO NOT:
- Keep a module-level session for the signal handler to reach
- Print content through logging
"""

import argparse
import logging
import signal
import sys
from datetime import datetime
from typing import Any, List, Optional, Sequence

from playwright.sync_api import Error as PlaywrightError
from rich.console import Console

from snag._version import version as VERSION
from snag.batch import BatchExecutor, BatchItem, fetchable_tabs
from snag.browser import BrowserOptions, BrowserSession, SessionMode
from snag.config import SnagConfig, generate_example_config, load_config
from snag.converter import ContentConverter
from snag.doctor import collect_doctor_info
from snag.errors import (
    EXIT_FAILURE,
    EXIT_SIGTERM,
    ConfigurationError,
    InvalidURL,
    NoValidURLs,
    SnagError,
    TabSelectionError,
    exit_code_for,
)
from snag.fetcher import PageFetcher, wait_for_selector
from snag.filenames import allocate_output_path
from snag.formats import Format, check_extension_mismatch
from snag.log import configure_logging, log_suggestion, success, verbose
from snag.reaper import ProcessReaper
from snag.tabs import TabCatalog, TabResolver, parse_tab_selector, render_tab_list
from snag.validate import (
    load_urls_from_file,
    validate_directory,
    validate_output_path,
    validate_url,
    validate_user_agent,
    validate_user_data_dir,
    validate_wait_for,
)

logger = logging.getLogger(__name__)

EXAMPLE_CONFIG_PATH = "snag_config.yaml"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="snag",
        description="snag - fetch web page content through a Chromium-based browser",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
EXAMPLES:
  Fetch a page as Markdown to stdout:
    snag https://example.com

  Save several pages with generated filenames:
    snag -d ./pages https://example.com https://example.org
    snag --url-file urls.txt -d ./pages

  Work with tabs of a browser you already have open:
    snag --open-browser
    snag --list-tabs
    snag --tab 2
    snag --tab github.com -f pdf
    snag --tab 1-3 -d ./tabs
    snag --all-tabs -d ./tabs

  Diagnostics and cleanup:
    snag --doctor
    snag --kill-browser
""",
    )

    parser.add_argument("urls", nargs="*", metavar="URL", help="URL(s) to fetch")
    parser.add_argument(
        "--url-file",
        type=str,
        default=None,
        help="Read URLs from a file (one per line, # and // comments allowed)",
        metavar="FILE",
    )

    # Output
    parser.add_argument(
        "-o",
        "--output",
        type=str,
        default=None,
        help="Save output to FILE instead of stdout",
        metavar="FILE",
    )
    parser.add_argument(
        "-d",
        "--output-dir",
        type=str,
        default=None,
        help="Save files with generated names in DIR",
        metavar="DIR",
    )
    parser.add_argument(
        "-f",
        "--format",
        type=str,
        default=None,
        help="Output format: md, html, text, pdf, png (default: md)",
        metavar="FORMAT",
    )
    parser.add_argument(
        "-s",
        "--screenshot",
        action="store_true",
        default=False,
        help="Capture a full-page screenshot (same as --format png)",
    )

    # Page loading
    parser.add_argument(
        "--timeout",
        type=int,
        default=None,
        help="Page load timeout in seconds (default: 30)",
        metavar="SECONDS",
    )
    parser.add_argument(
        "-w",
        "--wait-for",
        type=str,
        default=None,
        help="Wait until SELECTOR is visible before extracting content",
        metavar="SELECTOR",
    )

    # Browser
    parser.add_argument(
        "-p",
        "--port",
        type=int,
        default=None,
        help="Remote debugging port (default: 9222)",
        metavar="PORT",
    )
    parser.add_argument(
        "-c",
        "--close-tab",
        action="store_true",
        default=False,
        help="Close the tab after fetching",
    )
    parser.add_argument(
        "--force-headless",
        action="store_true",
        default=False,
        help="Always launch a new headless browser, never attach",
    )
    parser.add_argument(
        "-b",
        "--open-browser",
        action="store_true",
        default=False,
        help="Open a visible browser (and the given URLs) and leave it running",
    )
    parser.add_argument(
        "--user-agent",
        type=str,
        default=None,
        help="Custom user agent for a launched browser",
        metavar="STRING",
    )
    parser.add_argument(
        "--user-data-dir",
        type=str,
        default=None,
        help="Browser profile directory for a launched browser",
        metavar="DIR",
    )

    # Tabs
    parser.add_argument(
        "-l",
        "--list-tabs",
        action="store_true",
        default=False,
        help="List the tabs of the running browser",
    )
    parser.add_argument(
        "-t",
        "--tab",
        type=str,
        default=None,
        help="Fetch from existing tab(s): index, range (2-4), URL, substring or regex",
        metavar="PATTERN",
    )
    parser.add_argument(
        "-a",
        "--all-tabs",
        action="store_true",
        default=False,
        help="Fetch every open tab into files with generated names",
    )

    # Maintenance
    parser.add_argument(
        "-k",
        "--kill-browser",
        action="store_true",
        default=False,
        help="Kill browsers started with remote debugging (only --port if given)",
    )
    parser.add_argument(
        "--doctor",
        action="store_true",
        default=False,
        help="Print diagnostic information and exit",
    )

    # Configuration
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to YAML/JSON configuration file (see --generate-config)",
        metavar="FILE",
    )
    parser.add_argument(
        "--generate-config",
        action="store_true",
        default=False,
        help=f"Generate example configuration file ({EXAMPLE_CONFIG_PATH}) and exit",
    )

    # Logging
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument(
        "--verbose",
        action="store_true",
        default=False,
        help="Verbose progress output",
    )
    verbosity.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        default=False,
        help="Only errors and content",
    )
    verbosity.add_argument(
        "--debug",
        action="store_true",
        default=False,
        help="Debug output",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"snag version {VERSION}",
    )
    return parser


def _verbosity(args: argparse.Namespace) -> Optional[str]:
    if args.quiet:
        return "quiet"
    if args.debug:
        return "debug"
    if args.verbose:
        return "verbose"
    return None


def _cli_overrides(args: argparse.Namespace) -> dict:
    fmt = args.format
    if args.screenshot:
        if fmt and fmt.strip().lower() != Format.PNG.value:
            logger.warning(f"--screenshot overrides --format {fmt}")
        fmt = Format.PNG.value

    overrides = {
        "port": args.port,
        "timeout": args.timeout,
        "wait_for": args.wait_for,
        "format": fmt,
        "output_dir": args.output_dir,
        "close_tab": True if args.close_tab else None,
        "force_headless": True if args.force_headless else None,
        "open_browser": True if args.open_browser else None,
        "user_agent": args.user_agent,
        "user_data_dir": args.user_data_dir,
        "verbosity": _verbosity(args),
    }
    # Remove None values to let config file values take precedence
    return {k: v for k, v in overrides.items() if v is not None}


def _open_session(config: SnagConfig, **overrides: Any) -> BrowserSession:
    options = BrowserOptions.from_config(config)
    for name, value in overrides.items():
        setattr(options, name, value)
    return BrowserSession(options)


def _print_tab_list_on_error(tabs: Sequence[Any], config: SnagConfig) -> None:
    logger.info("Run 'snag --list-tabs' to see available tabs")
    for line in render_tab_list(tabs, verbose_mode=config.verbosity in ("verbose", "debug")):
        print(line, file=sys.stderr)


def _warn_attach_only_flags(args: argparse.Namespace, mode_flag: str) -> None:
    if args.user_agent is not None:
        logger.warning(f"--user-agent is ignored with {mode_flag} (cannot change existing tabs' user agents)")
    if args.user_data_dir is not None:
        logger.warning("--user-data-dir ignored when connecting to existing browser")
    if args.timeout is not None and not args.wait_for:
        logger.warning(f"--timeout is ignored without --wait-for when using {mode_flag}")


def _validate_urls(raw_urls: Sequence[str]) -> List[str]:
    """Validate several URLs, skipping bad ones with a warning."""
    urls = []
    for raw in raw_urls:
        try:
            urls.append(validate_url(raw))
        except InvalidURL as e:
            logger.warning(f"Skipping invalid URL '{raw}': {e}")
    if not urls:
        raise NoValidURLs("no valid URLs to process")
    return urls


def _check_flag_conflicts(args: argparse.Namespace, urls: Sequence[str]) -> None:
    if args.output and args.output_dir:
        raise ConfigurationError(
            "cannot use --output and --output-dir together",
            suggestion="use --output for a specific filename OR --output-dir for generated names",
        )
    if args.tab is not None and args.all_tabs:
        raise ConfigurationError("cannot use --tab and --all-tabs together")
    if args.tab is not None and urls:
        raise ConfigurationError(
            "cannot use --tab with URL arguments",
            suggestion="use --tab to fetch an existing tab OR give URLs to fetch new pages",
        )
    if args.all_tabs and urls:
        raise ConfigurationError(
            "cannot use --all-tabs with URL arguments",
            suggestion="snag --all-tabs -d ./tabs",
        )
    if args.force_headless and args.open_browser:
        raise ConfigurationError("cannot use --force-headless and --open-browser together")
    if args.output and (len(urls) > 1 or args.all_tabs):
        raise ConfigurationError(
            "cannot use --output with multiple targets",
            suggestion="use --output-dir instead",
        )
    if args.output and args.tab is not None:
        selector = parse_tab_selector(args.tab)
        if selector is not None and selector.is_range:
            raise ConfigurationError(
                "cannot use --output with multiple tabs",
                suggestion=f"snag --tab {args.tab.strip()} --output-dir ./tabs",
            )


# =============================================================================
# Handlers
# =============================================================================


def handle_doctor(args: argparse.Namespace, config: SnagConfig) -> int:
    report = collect_doctor_info(custom_port=config.port)
    report.render(Console(highlight=False))
    return 0


def handle_kill_browser(args: argparse.Namespace, config: SnagConfig) -> int:
    reaper = ProcessReaper()
    reaper.kill(port=args.port)
    return 0


def handle_list_tabs(args: argparse.Namespace, config: SnagConfig) -> int:
    with _open_session(config) as session:
        session.attach()
        tabs = TabCatalog(session).enumerate()
        for line in render_tab_list(tabs, verbose_mode=config.verbosity in ("verbose", "debug")):
            print(line)
    return 0


def handle_open_browser(args: argparse.Namespace, config: SnagConfig) -> int:
    logger.info("Opening browser...")
    user_data_dir = validate_user_data_dir(config.user_data_dir)
    user_agent = validate_user_agent(config.user_agent)
    session = _open_session(config, user_data_dir=user_data_dir, user_agent=user_agent)
    try:
        session.open_visible()
    finally:
        session.close()
    return 0


def handle_open_urls(args: argparse.Namespace, config: SnagConfig, urls: Sequence[str]) -> int:
    """Open each URL in a visible browser and leave it running, no fetching."""
    for flag, given in (
        ("--output", args.output),
        ("--output-dir", args.output_dir),
        ("--format", args.format or args.screenshot),
        ("--timeout", args.timeout is not None),
        ("--wait-for", args.wait_for),
        ("--close-tab", args.close_tab),
    ):
        if given:
            logger.warning(f"{flag} ignored with --open-browser (no content fetching)")

    urls = _validate_urls(urls)
    logger.info(f"Opening {len(urls)} URL{'s' if len(urls) != 1 else ''} in browser...")

    user_data_dir = validate_user_data_dir(config.user_data_dir)
    user_agent = validate_user_agent(config.user_agent)
    session = _open_session(config, user_data_dir=user_data_dir, user_agent=user_agent)
    try:
        session.open_visible()
        total = len(urls)
        for current, url in enumerate(urls, start=1):
            prefix = f"[{current}/{total}]"
            logger.info(f"{prefix} Opening: {url}")
            try:
                page = session.new_page()
                page.goto(url, timeout=config.timeout * 1000)
            except (SnagError, PlaywrightError) as e:
                logger.error(f"{prefix} Failed to open: {e}")
                continue
            success(logger, f"{prefix} Opened: {url}")
    finally:
        session.close()

    success(logger, f"Browser will remain open with {len(urls)} tabs")
    logger.info("Use 'snag --list-tabs' to see opened tabs")
    logger.info("Use 'snag --tab <index>' to fetch content from a tab")
    return 0


def handle_single_url(args: argparse.Namespace, config: SnagConfig, url: str) -> int:
    url = validate_url(url)
    verbose(logger, f"Target URL: {url}")

    fmt = config.output_format
    output_file = validate_output_path(args.output) if args.output else None
    output_dir = validate_directory(config.output_dir) if config.output_dir is not None else None
    if output_file:
        check_extension_mismatch(output_file, fmt)
    wait_for = validate_wait_for(config.wait_for)
    user_data_dir = validate_user_data_dir(config.user_data_dir)
    user_agent = validate_user_agent(config.user_agent)

    session = _open_session(config, user_data_dir=user_data_dir, user_agent=user_agent)
    try:
        session.connect()
        page = session.new_page()
        try:
            html = PageFetcher(page, config.timeout).fetch(url, wait_for)

            if output_dir is not None:
                output_file = allocate_output_path(output_dir, page.title(), url, datetime.now(), fmt)
            elif output_file is None and fmt.is_binary:
                output_file = allocate_output_path(".", page.title(), url, datetime.now(), fmt)
                logger.info(f"Auto-generated filename: {output_file}")

            ContentConverter(fmt).process_page(page, output_file, html=html)
        finally:
            if config.close_tab:
                session.close_page(page)
    finally:
        session.close()
    return 0


def handle_multiple_urls(args: argparse.Namespace, config: SnagConfig, urls: Sequence[str]) -> int:
    urls = _validate_urls(urls)
    output_dir = validate_directory(config.output_dir or ".")
    wait_for = validate_wait_for(config.wait_for)
    user_data_dir = validate_user_data_dir(config.user_data_dir)
    user_agent = validate_user_agent(config.user_agent)

    logger.info(f"Processing {len(urls)} URL{'s' if len(urls) != 1 else ''}...")

    session = _open_session(config, user_data_dir=user_data_dir, user_agent=user_agent)
    try:
        session.connect()
        if config.close_tab and session.mode is SessionMode.LAUNCHED_HEADLESS:
            logger.warning("--close-tab is ignored in headless mode (tabs close automatically)")

        executor = BatchExecutor(
            session,
            config.output_format,
            output_dir=output_dir,
            timeout=config.timeout,
            wait_for=wait_for,
            close_pages=BatchExecutor.closes_pages_for(session, config.close_tab),
        )
        result = executor.execute([BatchItem.for_url(u) for u in urls])
    finally:
        session.close()

    result.raise_for_failures()
    return 0


def handle_all_tabs(args: argparse.Namespace, config: SnagConfig) -> int:
    _warn_attach_only_flags(args, "--all-tabs")
    output_dir = validate_directory(config.output_dir or ".")
    wait_for = validate_wait_for(config.wait_for)

    with _open_session(config) as session:
        session.attach()
        tabs = TabCatalog(session).enumerate()
        if not tabs:
            logger.info("No tabs open in browser")
            return 0

        tabs = fetchable_tabs(tabs)
        logger.info(f"Processing {len(tabs)} tabs...")
        executor = BatchExecutor(
            session,
            config.output_format,
            output_dir=output_dir,
            timeout=config.timeout,
            wait_for=wait_for,
            close_pages=config.close_tab,
        )
        result = executor.execute([BatchItem.for_tab(t) for t in tabs])

    result.raise_for_failures()
    return 0


def handle_tab_fetch(args: argparse.Namespace, config: SnagConfig) -> int:
    pattern = args.tab.strip()
    if not pattern:
        raise ConfigurationError("tab pattern cannot be empty", suggestion="snag --tab 1")
    _warn_attach_only_flags(args, "--tab")

    fmt = config.output_format
    wait_for = validate_wait_for(config.wait_for)
    output_file = validate_output_path(args.output) if args.output else None
    if output_file:
        check_extension_mismatch(output_file, fmt)

    with _open_session(config) as session:
        session.attach()
        catalog = TabCatalog(session)
        tabs = catalog.enumerate()
        try:
            match = TabResolver(catalog).resolve(pattern, tabs)
        except TabSelectionError:
            _print_tab_list_on_error(tabs, config)
            raise

        if match.is_multiple:
            if output_file:
                raise ConfigurationError(
                    "cannot use --output with multiple tabs",
                    suggestion=f"pattern '{pattern}' matched {len(match)} tabs, use --output-dir instead",
                )
            output_dir = validate_directory(config.output_dir or ".")
            logger.info(f"Processing {len(match)} tabs matching '{pattern}' ({match.stage.value})...")
            executor = BatchExecutor(
                session,
                fmt,
                output_dir=output_dir,
                timeout=config.timeout,
                wait_for=wait_for,
                close_pages=config.close_tab,
            )
            result = executor.execute([BatchItem.for_tab(t) for t in match])
            result.raise_for_failures()
            return 0

        tab = match.first
        success(logger, f"Connected to tab [{tab.index}] ({match.stage.value} match)")
        logger.info(f"Fetching content from: {tab.url}")
        if wait_for:
            wait_for_selector(tab.page, wait_for, config.timeout)

        if config.output_dir is not None and not output_file:
            output_dir = validate_directory(config.output_dir)
            output_file = allocate_output_path(output_dir, tab.title, tab.url, datetime.now(), fmt)
        elif output_file is None and fmt.is_binary:
            output_file = allocate_output_path(".", tab.title, tab.url, datetime.now(), fmt)
            logger.info(f"Auto-generated filename: {output_file}")

        try:
            ContentConverter(fmt).process_page(tab.page, output_file)
        finally:
            if config.close_tab:
                session.close_page(tab.page)
    return 0


def dispatch(args: argparse.Namespace, config: SnagConfig) -> int:
    """Pick the handler for the parsed flags."""
    if args.doctor:
        return handle_doctor(args, config)
    if args.kill_browser:
        return handle_kill_browser(args, config)

    urls = list(args.urls)
    if args.url_file:
        urls.extend(load_urls_from_file(args.url_file))

    _check_flag_conflicts(args, urls)

    if args.list_tabs:
        return handle_list_tabs(args, config)
    if args.all_tabs:
        return handle_all_tabs(args, config)
    if args.tab is not None:
        return handle_tab_fetch(args, config)
    if config.open_browser and not urls:
        return handle_open_browser(args, config)
    if config.open_browser:
        return handle_open_urls(args, config, urls)
    if not urls:
        raise InvalidURL("URL argument is required", suggestion="snag <url>")
    if len(urls) == 1 and not args.url_file:
        return handle_single_url(args, config, urls[0])
    return handle_multiple_urls(args, config, urls)


def _raise_on_sigterm(signum: int, frame: Any) -> None:
    raise SystemExit(EXIT_SIGTERM)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point for the snag CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(_verbosity(args) or "normal")

    # Handle --generate-config first
    if args.generate_config:
        generate_example_config(EXAMPLE_CONFIG_PATH)
        print(f"Generated example configuration: {EXAMPLE_CONFIG_PATH}")
        print(f"Edit the file and use with: snag --config {EXAMPLE_CONFIG_PATH} <url>")
        return 0

    try:
        config = load_config(config_path=args.config, cli_overrides=_cli_overrides(args))
    except SnagError as e:
        log_suggestion(logger, str(e), e.suggestion)
        return exit_code_for(e)
    except OSError as e:
        logger.error(f"{e}")
        return EXIT_FAILURE
    configure_logging(config.verbosity)
    logger.debug(
        f"Config: format={config.format}, timeout={config.timeout}, port={config.port}"
    )

    previous_handler = signal.signal(signal.SIGTERM, _raise_on_sigterm)
    try:
        return dispatch(args, config)
    except KeyboardInterrupt as e:
        logger.warning("Interrupted")
        return exit_code_for(e)
    except SystemExit as e:
        if e.code == EXIT_SIGTERM:
            logger.warning("Terminated")
        return exit_code_for(e)
    except SnagError as e:
        log_suggestion(logger, str(e), e.suggestion)
        return exit_code_for(e)
    except (PlaywrightError, OSError) as e:
        logger.error(f"{e}")
        return EXIT_FAILURE
    finally:
        signal.signal(signal.SIGTERM, previous_handler)


if __name__ == "__main__":
    sys.exit(main())
