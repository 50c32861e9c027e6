"""
Output filename generation and collision handling.

Generated names look like ``2025-10-21-143045-page-title.md``:
a timestamp prefix, a slug of the page title (or the URL host when the
title is empty) and the extension of the output format.

Collision resolution only probes the filesystem. Nothing is locked or
reserved; the caller writes the file right after resolution.
"""

import logging
import os
import re
from datetime import datetime
from typing import Final, Union
from urllib.parse import urlparse

from snag.config import (
    FILENAME_TIMESTAMP_FORMAT,
    MAX_CONFLICT_ATTEMPTS,
    SLUG_MAX_LENGTH,
)
from snag.errors import ConflictResolutionExhausted
from snag.formats import Format, extension_for

logger = logging.getLogger(__name__)

SLUG_SEPARATOR: Final[str] = "-"
FALLBACK_SLUG: Final[str] = "page"

# Everything outside a-z0-9 collapses into one separator
_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def slugify(text: str, max_len: int = SLUG_MAX_LENGTH) -> str:
    """
    Convert free text into a lowercase, filesystem-safe slug.

    Runs of characters outside ``[a-z0-9]`` become a single ``-``,
    leading/trailing separators are trimmed, and the result is cut to
    ``max_len`` without leaving a dangling separator.
    """
    slug = _NON_ALNUM.sub(SLUG_SEPARATOR, text.lower())
    slug = slug.strip(SLUG_SEPARATOR)

    if len(slug) > max_len:
        slug = slug[:max_len].rstrip(SLUG_SEPARATOR)

    return slug


def generate_url_slug(url: str) -> str:
    """Slug of the URL's host[:port]; "page" when there is no usable host."""
    try:
        parsed = urlparse(url)
        hostname = parsed.hostname
        port = parsed.port
    except ValueError:
        return FALLBACK_SLUG

    if not hostname:
        # file:// URLs and friends
        return FALLBACK_SLUG

    host = f"{hostname}:{port}" if port else hostname
    return slugify(host) or FALLBACK_SLUG


def generate_base_name(
    title: str,
    url: str,
    timestamp: datetime,
    fmt: Union[Format, str],
) -> str:
    """Compose ``{yyyy-mm-dd-HHMMSS}-{slug}{ext}`` for a page."""
    slug = slugify(title or "")
    if not slug:
        slug = generate_url_slug(url)

    prefix = timestamp.strftime(FILENAME_TIMESTAMP_FORMAT)
    return f"{prefix}-{slug}{extension_for(fmt)}"


def resolve_conflict(
    directory: Union[str, os.PathLike],
    candidate: str,
    max_attempts: int = MAX_CONFLICT_ATTEMPTS,
) -> str:
    """
    Return a filename that does not exist yet in ``directory``.

    The counter goes before the last extension only:
    ``a.b.md`` -> ``a.b-1.md`` -> ``a.b-2.md``.

    Raises:
        ConflictResolutionExhausted: after ``max_attempts`` taken names
    """
    if not os.path.exists(os.path.join(directory, candidate)):
        return candidate

    stem, ext = os.path.splitext(candidate)
    for counter in range(1, max_attempts + 1):
        name = f"{stem}-{counter}{ext}"
        if not os.path.exists(os.path.join(directory, name)):
            logger.debug(f"Filename conflict resolved: {candidate} -> {name}")
            return name

    raise ConflictResolutionExhausted(
        f"too many conflicts for filename: {candidate} "
        f"({max_attempts} suffixes already taken)"
    )


def allocate_output_path(
    directory: Union[str, os.PathLike],
    title: str,
    url: str,
    timestamp: datetime,
    fmt: Union[Format, str],
) -> str:
    """Generate a name for the page and resolve collisions in ``directory``."""
    candidate = generate_base_name(title, url, timestamp, fmt)
    final_name = resolve_conflict(directory, candidate)
    return os.path.join(directory, final_name)
