"""HTML to PDF conversion of downloaded filings."""

import html
import logging
from pathlib import Path
from typing import Protocol

from bs4 import BeautifulSoup

log = logging.getLogger(__name__)

PRINT_CSS = """
@page { size: Letter; margin: 0.5in; }
body { font-family: 'Helvetica Neue', Arial, sans-serif; font-size: 11pt; line-height: 1.5;
       color: #000; background: #fff; margin: 0; padding: 20px; max-width: 100%; }
h1, h2, h3, h4, h5, h6 { margin-top: 1em; margin-bottom: 0.5em; font-weight: bold; page-break-after: avoid; }
h1 { font-size: 18pt; } h2 { font-size: 16pt; } h3 { font-size: 14pt; } h4 { font-size: 12pt; }
p { margin: 0.5em 0; }
table { border-collapse: collapse; width: 100%; margin: 1em 0; font-size: 10pt; }
td, th { border: 1px solid #ccc; padding: 6px 8px; text-align: left; }
th { background-color: #f0f0f0; font-weight: bold; }
tr { page-break-inside: avoid; }
img { max-width: 100%; height: auto; }
pre { white-space: pre-wrap; word-wrap: break-word; font-family: Menlo, 'Courier New', monospace; font-size: 9pt; }
"""


class DocumentRenderer(Protocol):
    """Anything that can turn a downloaded document into a PDF."""

    def render(self, source: Path, target: Path) -> bool:
        """Write `target` from `source`; return False instead of raising."""
        ...


def prepare_html(document: str, plain_text: bool = False) -> str:
    """Replace embedded styles with print CSS, wrapping fragments and plain text in a page."""
    if plain_text:
        document = f"<pre>{html.escape(document)}</pre>"

    soup = BeautifulSoup(document, "lxml")
    for style in soup.find_all("style"):
        style.decompose()

    if soup.html is None:
        soup.append(soup.new_tag("html"))
    head = soup.head
    if head is None:
        head = soup.new_tag("head")
        soup.html.insert(0, head)
    if head.find("meta", charset=True) is None:
        head.insert(0, soup.new_tag("meta", charset="UTF-8"))

    style = soup.new_tag("style")
    style.string = PRINT_CSS
    head.append(style)
    return str(soup)


class WeasyPrintRenderer:
    """Renders HTML (or plain text) documents to PDF with WeasyPrint."""

    def render(self, source: Path, target: Path) -> bool:
        from weasyprint import HTML

        try:
            document = source.read_text(encoding='utf-8', errors='replace')
            prepared = prepare_html(document, plain_text=source.suffix.lower() == ".txt")
            HTML(string=prepared, base_url=str(source.parent)).write_pdf(str(target))
        except Exception as e:
            # WeasyPrint raises a wide range of parser/layout errors
            log.warning("Failed to convert %s to PDF: %s", source.name, e)
            target.unlink(missing_ok=True)
            return False

        log.debug("Converted %s to %s", source.name, target.name)
        return True
