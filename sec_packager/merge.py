"""Combine several downloaded filing documents into one navigable HTML file."""

import html
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Callable

from bs4 import BeautifulSoup

from sec_packager.models import Filing

log = logging.getLogger(__name__)

MERGEABLE_SUFFIXES = {".htm", ".html", ".txt"}
MERGED_MARKER = "_MERGED_"

# Filing dates appear in file names in these layouts
FILENAME_DATE_FORMATS = ("%Y-%m-%d", "%d.%m.%Y", "%Y.%m.%d")

MERGED_CSS = """
body { font-family: 'Helvetica Neue', Arial, sans-serif; line-height: 1.6; color: #333;
       max-width: 1200px; margin: 0 auto; padding: 20px; background-color: #f5f5f5; }
.header { background-color: #003366; color: white; padding: 30px; border-radius: 8px; margin-bottom: 30px; }
.header h1 { margin: 0; font-size: 28px; }
.header p { margin: 10px 0 0 0; opacity: 0.9; }
.toc { background-color: white; border: 1px solid #ddd; border-radius: 8px; padding: 20px; margin-bottom: 30px; }
.toc h2 { margin-top: 0; color: #003366; font-size: 20px; }
.toc ul { list-style-type: none; padding-left: 0; }
.toc li { margin: 10px 0; padding: 10px; background-color: #f8f9fa; border-radius: 4px; }
.toc a { text-decoration: none; color: #003366; display: block; font-weight: 500; }
.toc .filing-date { color: #666; font-size: 14px; margin-left: 10px; }
.filing-separator { background-color: #003366; color: white; padding: 20px; margin: 40px 0;
                    border-radius: 8px; page-break-before: always; }
.filing-separator h2 { margin: 0; font-size: 22px; }
.filing-separator .meta { margin-top: 10px; font-size: 14px; opacity: 0.9; }
.filing-content { background-color: white; padding: 30px; border-radius: 8px; margin-bottom: 40px; }
.filing-content table { border-collapse: collapse; width: 100%; margin: 20px 0; }
.filing-content td, .filing-content th { border: 1px solid #ddd; padding: 8px; text-align: left; }
.filing-content table table { margin: 0; }
@media print {
  body { background-color: white; }
  .toc { page-break-after: always; }
  .filing-separator { page-break-before: always; }
}
"""


def match_filing(filename: str, filings: list[Filing]) -> Filing | None:
    """
    Find the filing whose date appears in `filename`.

    When several filings share that date, one whose form also appears in
    the name (spaces removed) wins.
    """
    candidates = [
        filing for filing in filings
        if any(filing.filing_date.strftime(fmt) in filename for fmt in FILENAME_DATE_FORMATS)
    ]
    name_key = _alnum(filename)
    for filing in candidates:
        if _alnum(filing.form) in name_key:
            return filing
    return candidates[0] if candidates else None


def _alnum(text: str) -> str:
    return re.sub(r"[^A-Z0-9]", "", text.upper())


def pair_documents(files: list[Path], filings: list[Filing]) -> list[tuple[Path, Filing | None]]:
    return [(path, match_filing(path.name, filings)) for path in files]


def extract_body(document: str) -> str:
    """Contents of the document body without embedded styles or scripts, else the whole document."""
    soup = BeautifulSoup(document, "lxml")
    for tag in soup.find_all(["style", "script"]):
        tag.decompose()
    if soup.body is None:
        return document
    return soup.body.decode_contents()


def order_documents(documents: list[tuple[Path, Filing | None]]) -> list[tuple[Path, Filing | None]]:
    """Newest filing first; unmatched documents last, keeping their order."""
    matched = [pair for pair in documents if pair[1] is not None]
    unmatched = [pair for pair in documents if pair[1] is None]
    matched.sort(key=lambda pair: pair[1].filing_date, reverse=True)
    return matched + unmatched


class DocumentMerger:
    """Writes one HTML file with a banner, a table of contents and one section per document."""

    def __init__(self, clock: Callable[[], datetime] = datetime.now):
        self._clock = clock

    def merged_path(self, directory: Path, category_label: str, ticker: str) -> Path:
        label = re.sub(r"[^A-Za-z0-9-]+", "", category_label)
        return directory / f"{ticker.upper()}_{label}{MERGED_MARKER}{self._clock():%Y-%m-%d}.html"

    def merge(
        self,
        documents: list[tuple[Path, Filing | None]],
        category_label: str,
        ticker: str,
        output_path: Path | None = None,
    ) -> Path | None:
        """
        Merge documents into one file and delete the originals.

        Returns None without touching anything when fewer than two documents
        are given. Failures are logged and also return None; the original
        documents are then left in place.
        """
        if len(documents) < 2:
            return None

        ordered = order_documents(documents)
        output_path = output_path or self.merged_path(ordered[0][0].parent, category_label, ticker)

        try:
            content = self.build_html(ordered, category_label, ticker)
            output_path.write_text(content, encoding='utf-8')
        except OSError as e:
            log.warning("Could not merge %d %s documents for %s: %s", len(documents), category_label, ticker, e)
            output_path.unlink(missing_ok=True)
            return None

        for path, _ in ordered:
            if path == output_path:
                continue
            try:
                path.unlink()
            except OSError as e:
                log.warning("Could not remove merged original %s: %s", path, e)

        log.info("Merged %d %s documents into %s", len(ordered), category_label, output_path.name)
        return output_path

    def merge_directory(self, directory: Path, category_label: str, ticker: str, filings: list[Filing]) -> Path | None:
        """Merge every HTML/TXT document of a directory, pairing files to filings by date."""
        if not directory.is_dir():
            return None
        files = sorted(
            (p for p in directory.iterdir()
             if p.is_file() and p.suffix.lower() in MERGEABLE_SUFFIXES and MERGED_MARKER not in p.name),
            key=lambda p: p.name,
            reverse=True,
        )
        return self.merge(pair_documents(files, filings), category_label, ticker)

    def build_html(self, documents: list[tuple[Path, Filing | None]], category_label: str, ticker: str) -> str:
        ticker = html.escape(ticker.upper())
        label = html.escape(category_label)
        parts = [
            "<!DOCTYPE html>",
            "<html>",
            "<head>",
            '<meta charset="UTF-8">',
            f"<title>{ticker} - {label} Merged Filings</title>",
            f"<style>{MERGED_CSS}</style>",
            "</head>",
            "<body>",
            '<div class="header">',
            f"<h1>{ticker} - {label} Filings</h1>",
            "<p>Combined SEC EDGAR Filings</p>",
            f"<p>Generated: {self._clock():%B %d, %Y %H:%M}</p>",
            f"<p>Total Filings: {len(documents)}</p>",
            "</div>",
            '<div class="toc">',
            "<h2>Table of Contents</h2>",
            "<ul>",
        ]

        for index, (path, filing) in enumerate(documents, start=1):
            form = html.escape(filing.form if filing else category_label)
            filed = filing.filing_date.isoformat() if filing else "Unknown Date"
            period = (f" <span class='filing-date'>Period: {filing.report_date.isoformat()}</span>"
                      if filing and filing.report_date else "")
            parts.append(f'<li><a href="#filing-{index}">{form} - Filed: {filed}{period}</a></li>')
        parts += ["</ul>", "</div>"]

        for index, (path, filing) in enumerate(documents, start=1):
            parts += [
                f'<div class="filing-separator" id="filing-{index}">',
                f"<h2>{html.escape(filing.form if filing else label)} Filing #{index}</h2>",
                '<div class="meta">',
                f"<p><strong>Filing Date:</strong> {filing.filing_date.isoformat() if filing else 'Unknown Date'}</p>",
            ]
            if filing:
                parts.append(f"<p><strong>Accession Number:</strong> {html.escape(filing.accession_number)}</p>")
                if filing.report_date:
                    parts.append(f"<p><strong>Report Period:</strong> {filing.report_date.isoformat()}</p>")
            parts += [
                f"<p><strong>Original File:</strong> {html.escape(path.name)}</p>",
                "</div>",
                "</div>",
                '<div class="filing-content">',
                self._section_body(path),
                "</div>",
            ]

        parts += ["</body>", "</html>"]
        return "\n".join(parts)

    @staticmethod
    def _section_body(path: Path) -> str:
        text = path.read_text(encoding='utf-8', errors='replace')
        if path.suffix.lower() == ".txt":
            return f"<pre>{html.escape(text)}</pre>"
        return extract_body(text)
