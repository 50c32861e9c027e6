"""
Content conversion and output.

Provides:
- html_to_markdown(): markdownify with ATX headings and inline links
- html_to_text(): BeautifulSoup/lxml visible text with scripts/styles removed
- ContentConverter: render a page or its HTML in one Format and write it
  to a file or stdout

DESIGN NOTES:
- Text formats (md/html/text) can go to stdout; binary formats (pdf/png)
  always need a file, callers generate one when the user gave none
- PDF uses the debugging protocol's Page.printToPDF so it works for
  visible and attached browsers, not only headless ones
- Content goes to stdout, status lines go to logging (stderr)
"""

import base64
import logging
import os
import sys
from typing import Any, Final, Optional, TextIO, Union

import markdownify
from bs4 import BeautifulSoup
from playwright.sync_api import Error as PlaywrightError

from snag.config import DEFAULT_FILE_MODE
from snag.errors import ConversionFailed
from snag.formats import Format
from snag.log import success, verbose
from snag.terminal import format_size

logger = logging.getLogger(__name__)

# Elements that never carry readable text
NON_CONTENT_TAGS: Final[tuple[str, ...]] = ("head", "script", "style", "noscript", "template")


def html_to_markdown(html: str) -> str:
    """Convert HTML to Markdown (tables, lists, links and images preserved)."""
    soup = BeautifulSoup(html, "lxml")
    for tag in soup(NON_CONTENT_TAGS):
        tag.decompose()

    markdown = markdownify.markdownify(
        str(soup),
        heading_style="ATX",
        bullets="-*+",
    )
    # Collapse the blank-line runs markdownify leaves between blocks
    lines = [line.rstrip() for line in markdown.splitlines()]
    collapsed = []
    for line in lines:
        if not line and collapsed and not collapsed[-1]:
            continue
        collapsed.append(line)
    return "\n".join(collapsed).strip() + "\n"


def html_to_text(html: str) -> str:
    """Extract visible text, one block per line."""
    soup = BeautifulSoup(html, "lxml")
    for tag in soup(NON_CONTENT_TAGS):
        tag.decompose()
    body = soup.body or soup
    lines = (line.strip() for line in body.get_text(separator="\n").splitlines())
    return "\n".join(line for line in lines if line) + "\n"


class ContentConverter:
    """Render content in one output format and write it out."""

    def __init__(self, fmt: Union[Format, str], stdout: Optional[TextIO] = None) -> None:
        self.format = Format.parse(fmt)
        self._stdout = stdout

    @property
    def stdout(self) -> TextIO:
        return self._stdout if self._stdout is not None else sys.stdout

    def convert_html(self, html: str) -> str:
        """
        Convert HTML to the text format of this converter.

        Raises:
            ConversionFailed: binary format, or the conversion itself failed
        """
        if self.format is Format.HTML:
            verbose(logger, "Output format: HTML (passthrough)")
            return html
        if self.format is Format.MARKDOWN:
            verbose(logger, "Converting HTML to Markdown...")
            try:
                content = html_to_markdown(html)
            except (ValueError, TypeError, RecursionError) as e:
                raise ConversionFailed(f"markdown conversion failed: {e}") from e
            logger.debug(f"Converted to {len(content)} bytes of Markdown")
            return content
        if self.format is Format.TEXT:
            verbose(logger, "Extracting plain text...")
            try:
                return html_to_text(html)
            except (ValueError, TypeError, RecursionError) as e:
                raise ConversionFailed(f"text extraction failed: {e}") from e
        raise ConversionFailed(
            f"format {self.format.value} needs the page, not extracted HTML"
        )

    def process_html(self, html: str, output_file: Optional[str] = None) -> None:
        """Convert ``html`` and write it to ``output_file`` or stdout."""
        content = self.convert_html(html)
        if output_file:
            self.write_file(content.encode("utf-8"), output_file)
        else:
            self.write_stdout(content)

    def process_page(
        self, page: Any, output_file: Optional[str] = None, html: Optional[str] = None
    ) -> None:
        """
        Render ``page`` in this format and write it out.

        Text formats use ``html`` when the caller already extracted it and
        only read ``page.content()`` otherwise.

        Raises:
            ConversionFailed: rendering failed, or a binary format had no file
        """
        if not self.format.is_binary:
            if html is None:
                try:
                    html = page.content()
                except PlaywrightError as e:
                    raise ConversionFailed(f"failed to extract HTML: {e}") from e
            self.process_html(html, output_file)
            return

        if not output_file:
            raise ConversionFailed(
                f"{self.format.value} output cannot be written to stdout",
                suggestion=f"snag <url> --format {self.format.value} -o page{self.format.extension}",
            )

        if self.format is Format.PDF:
            data = self.render_pdf(page)
        else:
            data = self.render_png(page)
        self.write_file(data, output_file)

    def render_pdf(self, page: Any) -> bytes:
        verbose(logger, "Rendering page to PDF...")
        try:
            cdp = page.context.new_cdp_session(page)
            try:
                result = cdp.send("Page.printToPDF", {"printBackground": True})
            finally:
                cdp.detach()
            return base64.b64decode(result["data"])
        except (PlaywrightError, KeyError, ValueError) as e:
            raise ConversionFailed(f"PDF rendering failed: {e}") from e

    def render_png(self, page: Any) -> bytes:
        verbose(logger, "Capturing full-page screenshot...")
        try:
            return page.screenshot(full_page=True, type="png")
        except PlaywrightError as e:
            raise ConversionFailed(f"screenshot failed: {e}") from e

    def write_stdout(self, content: str) -> None:
        verbose(logger, "Writing to stdout...")
        self.stdout.write(content)
        self.stdout.flush()
        logger.debug(f"Wrote {len(content)} bytes to stdout")

    def write_file(self, data: bytes, filename: str) -> None:
        verbose(logger, f"Writing to file: {filename}")
        if os.path.exists(filename):
            verbose(logger, f"Overwriting existing file: {filename}")

        try:
            fd = os.open(filename, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, DEFAULT_FILE_MODE)
            with os.fdopen(fd, "wb") as f:
                f.write(data)
        except OSError as e:
            raise ConversionFailed(f"failed to write to file {filename}: {e}") from e

        success(logger, f"Saved to {filename} ({format_size(len(data))})")
