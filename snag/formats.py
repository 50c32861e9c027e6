"""
Output formats.

Format is a closed enum: every call site that cares about extensions or
binary-vs-text handling switches on it instead of comparing strings.
"""

import logging
import os
from enum import Enum
from typing import Dict, Final, Union

from snag.errors import ConfigurationError

logger = logging.getLogger(__name__)


class Format(Enum):
    """Supported output formats with their file extension and binary flag."""

    MARKDOWN = "md"
    HTML = "html"
    TEXT = "text"
    PDF = "pdf"
    PNG = "png"

    @property
    def extension(self) -> str:
        return _EXTENSIONS[self]

    @property
    def is_binary(self) -> bool:
        return self in (Format.PDF, Format.PNG)

    @classmethod
    def parse(cls, value: Union[str, "Format"]) -> "Format":
        """Parse a user-supplied format name (aliases and case allowed)."""
        if isinstance(value, Format):
            return value
        normalized = normalize_format(value)
        if not normalized:
            raise ConfigurationError("format cannot be empty")
        try:
            return cls(normalized)
        except ValueError:
            supported = ", ".join(f.value for f in cls)
            raise ConfigurationError(
                f"invalid format '{value}'. Supported: {supported}",
                suggestion="snag <url> --format md",
            ) from None


_EXTENSIONS: Final[Dict[Format, str]] = {
    Format.MARKDOWN: ".md",
    Format.HTML: ".html",
    Format.TEXT: ".txt",
    Format.PDF: ".pdf",
    Format.PNG: ".png",
}

FORMAT_ALIASES: Final[Dict[str, str]] = {
    "markdown": Format.MARKDOWN.value,
    "txt": Format.TEXT.value,
}


def normalize_format(value: str) -> str:
    """Lowercase, trim and resolve aliases ("markdown" -> "md", "txt" -> "text")."""
    value = value.strip().lower()
    return FORMAT_ALIASES.get(value, value)


def extension_for(value: Union[str, Format]) -> str:
    """File extension for a format; unknown formats fall back to markdown."""
    try:
        return Format.parse(value).extension
    except ConfigurationError:
        return Format.MARKDOWN.extension


def check_extension_mismatch(output_file: str, fmt: Format) -> bool:
    """
    Warn when an explicit output file's extension does not match the format.

    Returns True on mismatch. Never raises: writing markdown to "notes.txt"
    is allowed, it is just worth a warning.
    """
    if not output_file:
        return False

    ext = os.path.splitext(output_file)[1].lower()
    if ext == fmt.extension:
        return False

    if ext == "":
        logger.warning(
            f"Writing {fmt.value} format to file with no extension: {output_file}"
        )
    else:
        logger.warning(
            f"Writing {fmt.value} format to file with {ext} extension: {output_file}"
        )
    return True
