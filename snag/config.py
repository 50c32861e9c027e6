"""
Configuration Module for snag.

Provides:
- YAML/JSON configuration file support
- Environment variable overrides (SNAG_*)
- Default settings management and validation
- Centralized constants for all timeouts, ports and limits

DESIGN NOTES:
- All magic numbers are defined here as constants
- Constants are organized by category (browser, network, filenames, display)
- Precedence when loading: CLI overrides > environment > config file > defaults

DO NOT:
- Scatter timeout/limit values throughout the codebase
- Remove constants without updating all references
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Final, Optional

import yaml

from snag.errors import ConfigurationError
from snag.formats import Format, normalize_format

logger = logging.getLogger(__name__)


# =============================================================================
# CENTRALIZED CONSTANTS - Single source of truth for all configuration values
# =============================================================================

# --- Browser / remote debugging ---
DEFAULT_PORT: Final[int] = 9222  # Chrome remote debugging port
MIN_PORT: Final[int] = 1024  # Privileged ports need root
MAX_PORT: Final[int] = 65535
DEBUG_HOST: Final[str] = "127.0.0.1"
CONNECT_TIMEOUT: Final[float] = 10.0  # seconds - attach/launch handshake
LAUNCH_POLL_INTERVAL: Final[float] = 0.1  # seconds between endpoint polls after launch
PROCESS_EXIT_TIMEOUT: Final[float] = 5.0  # seconds to wait for a killed browser to exit
TEMP_PROFILE_PREFIX: Final[str] = "snag-profile-"

# --- Page loading ---
DEFAULT_TIMEOUT: Final[int] = 30  # seconds - page navigation / wait-for
STABILIZE_TIMEOUT: Final[float] = 3.0  # seconds - best-effort network idle wait

# --- Diagnostics ---
PORT_PROBE_TIMEOUT: Final[float] = 3.0  # seconds - local port liveness race
RELEASE_LOOKUP_TIMEOUT: Final[float] = 10.0  # seconds - latest version lookup
RELEASES_API_URL: Final[str] = os.environ.get(
    "SNAG_RELEASES_URL",
    "https://api.github.com/repos/grantcarthew/snag/releases/latest",
)

# --- Filenames ---
SLUG_MAX_LENGTH: Final[int] = 80  # Max chars of the slug part of generated names
MAX_CONFLICT_ATTEMPTS: Final[int] = 10000  # Hard cap on "-N" suffix probing
FILENAME_TIMESTAMP_FORMAT: Final[str] = "%Y-%m-%d-%H%M%S"

# --- Display ---
MAX_TAB_LINE_LENGTH: Final[int] = 120  # Width of one tab line in --list-tabs
MAX_DISPLAY_URL_LENGTH: Final[int] = 80  # URL part of a tab line before "..."
COMMAND_LINE_DISPLAY_LENGTH: Final[int] = 80  # Process command lines in verbose logs
DEFAULT_TERMINAL_WIDTH: Final[int] = 80

# --- Output ---
DEFAULT_FILE_MODE: Final[int] = 0o644
BYTES_PER_KB: Final[float] = 1024.0

VERBOSITY_LEVELS: Final[tuple[str, ...]] = ("quiet", "normal", "verbose", "debug")

# Environment variables that override file values (but not CLI flags)
ENV_OVERRIDES: Final[Dict[str, str]] = {
    "SNAG_PORT": "port",
    "SNAG_TIMEOUT": "timeout",
    "SNAG_FORMAT": "format",
    "SNAG_OUTPUT_DIR": "output_dir",
}

_INT_FIELDS: Final[frozenset[str]] = frozenset({"port", "timeout"})


@dataclass
class SnagConfig:
    """
    Main configuration class for snag.

    Supports loading from YAML files, JSON files, environment variables,
    or direct instantiation.
    """

    # Browser settings
    port: int = DEFAULT_PORT
    force_headless: bool = False
    open_browser: bool = False
    user_agent: Optional[str] = None  # Launch-only, ignored when attaching
    user_data_dir: Optional[str] = None  # Launch-only, ignored when attaching
    close_tab: bool = False

    # Page settings
    timeout: int = DEFAULT_TIMEOUT
    wait_for: Optional[str] = None

    # Output settings
    format: str = Format.MARKDOWN.value
    output_dir: Optional[str] = None

    # Logging
    verbosity: str = "normal"

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        self._validate()

    def _validate(self) -> None:
        if not MIN_PORT <= self.port <= MAX_PORT:
            raise ConfigurationError(
                f"port must be between {MIN_PORT} and {MAX_PORT} (got {self.port})"
            )
        if self.timeout <= 0:
            raise ConfigurationError(
                f"timeout must be a positive number of seconds (got {self.timeout})"
            )

        self.format = normalize_format(self.format)
        Format.parse(self.format)

        if self.verbosity not in VERBOSITY_LEVELS:
            raise ConfigurationError(
                f"verbosity must be one of {', '.join(VERBOSITY_LEVELS)} "
                f"(got {self.verbosity!r})"
            )

    @property
    def output_format(self) -> Format:
        return Format.parse(self.format)

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return {
            "port": self.port,
            "force_headless": self.force_headless,
            "open_browser": self.open_browser,
            "user_agent": self.user_agent,
            "user_data_dir": self.user_data_dir,
            "close_tab": self.close_tab,
            "timeout": self.timeout,
            "wait_for": self.wait_for,
            "format": self.format,
            "output_dir": self.output_dir,
            "verbosity": self.verbosity,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SnagConfig":
        """Create config from dictionary, ignoring unknown keys."""
        known_fields = set(cls.__dataclass_fields__)
        filtered = {k: v for k, v in data.items() if k in known_fields}
        return cls(**filtered)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "SnagConfig":
        """
        Load configuration from a YAML file.

        Raises:
            FileNotFoundError: If config file doesn't exist
            ConfigurationError: If YAML is invalid or not a mapping
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in configuration file: {e}"
            ) from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigurationError(
                "Configuration file must contain a YAML mapping/dictionary"
            )

        return cls.from_dict(data)

    @classmethod
    def from_json(cls, path: str | Path) -> "SnagConfig":
        """Load configuration from a JSON file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, "r", encoding="utf-8") as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigurationError(
                    f"Invalid JSON in configuration file: {e}"
                ) from e

        if not isinstance(data, dict):
            raise ConfigurationError("Configuration file must contain a JSON object")

        return cls.from_dict(data)

    def save_yaml(self, path: str | Path) -> None:
        """Save configuration to a YAML file."""
        with open(Path(path), "w", encoding="utf-8") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)

    def save_json(self, path: str | Path) -> None:
        """Save configuration to a JSON file."""
        with open(Path(path), "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)


def env_overrides(environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """
    Collect SNAG_* environment overrides.

    Integer fields that fail to parse are reported as ConfigurationError
    instead of being dropped.
    """
    environ = dict(os.environ) if environ is None else environ
    overrides: Dict[str, Any] = {}
    for env_name, field_name in ENV_OVERRIDES.items():
        raw = environ.get(env_name)
        if raw is None or raw.strip() == "":
            continue
        if field_name in _INT_FIELDS:
            try:
                overrides[field_name] = int(raw)
            except ValueError as e:
                raise ConfigurationError(
                    f"{env_name} must be an integer (got {raw!r})"
                ) from e
        else:
            overrides[field_name] = raw.strip()
    return overrides


def load_config(
    config_path: str | Path | None = None,
    cli_overrides: Dict[str, Any] | None = None,
    environ: Optional[Dict[str, str]] = None,
) -> SnagConfig:
    """
    Load configuration with precedence: CLI args > environment > config file > defaults.

    Args:
        config_path: Optional path to YAML or JSON config file
        cli_overrides: Optional dictionary of CLI argument overrides
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Merged SnagConfig instance
    """
    config_dict: Dict[str, Any] = {}

    if config_path:
        path = Path(config_path)
        if path.suffix in (".yml", ".yaml"):
            file_config = SnagConfig.from_yaml(path)
        elif path.suffix == ".json":
            file_config = SnagConfig.from_json(path)
        else:
            raise ConfigurationError(
                f"Unsupported config file format: {path.suffix}. "
                "Use .yaml, .yml, or .json"
            )
        config_dict = file_config.to_dict()
        logger.debug(f"Loaded configuration from {path}")

    config_dict.update(env_overrides(environ))

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:  # Only override if explicitly set
                config_dict[key] = value

    return SnagConfig.from_dict(config_dict)


def generate_example_config(path: str | Path = "snag_config.yaml") -> None:
    """Generate an example configuration file with comments."""
    example_yaml = f"""# snag Configuration File
# ========================
# All settings are optional - defaults are used when not specified.
# Command-line flags always win over values in this file.

# Browser Settings
# ----------------
# port: Chrome remote debugging port to attach to (or launch on)
port: {DEFAULT_PORT}

# force_headless: Always launch a new headless browser, never attach
force_headless: false

# open_browser: Launch a visible browser when none is running
open_browser: false

# user_agent / user_data_dir: Only honoured when snag launches the browser
user_agent: null
user_data_dir: null

# close_tab: Close the tab after fetching its content
close_tab: false

# Page Settings
# -------------
# timeout: Page load / wait-for timeout in seconds
timeout: {DEFAULT_TIMEOUT}

# wait_for: CSS selector to wait for before extracting content
wait_for: null

# Output Settings
# ---------------
# format: md | html | text | pdf | png
format: md

# output_dir: Directory for auto-named output files (null = stdout)
output_dir: null

# Logging
# -------
# verbosity: quiet | normal | verbose | debug
verbosity: normal
"""

    path = Path(path)
    with open(path, "w", encoding="utf-8") as f:
        f.write(example_yaml)
    logger.info(f"Example configuration saved to: {path}")
