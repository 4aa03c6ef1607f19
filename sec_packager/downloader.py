"""Download filings of selected form types within a date range.

Also holds the document helpers shared with the package assembler: file
naming, PDF conversion and per-group merge/convert consolidation.
"""

import logging
import re
import threading
from pathlib import Path

import httpx

from sec_packager.client import SECClient, filter_filings, pad_cik
from sec_packager.errors import CompanyNotFoundError, DocumentTimeoutError, GenerationCancelled
from sec_packager.merge import DocumentMerger
from sec_packager.models import DownloadOptions, DownloadResult, Filing
from sec_packager.progress import DOWNLOAD_PLAN, ProgressReporter, ProgressSink
from sec_packager.render import DocumentRenderer

log = logging.getLogger(__name__)

DOWNLOADABLE_EXTENSIONS = {"htm", "html", "txt"}
HTML_EXTENSIONS = {"htm", "html"}

_UNSAFE_CHARS = re.compile(r'[:/\\?%*|"<>]')


def sanitize_filename(name: str) -> str:
    """Replace characters that are invalid in file names with '-'."""
    return _UNSAFE_CHARS.sub('-', name)


def unique_path(path: Path, taken: set[Path], suffix: str) -> Path:
    """Return `path`, or a variant tagged with `suffix` if it is already used."""
    if path not in taken and not path.exists():
        taken.add(path)
        return path
    candidate = path.with_name(f"{path.stem}_{sanitize_filename(suffix)}{path.suffix}")
    taken.add(candidate)
    return candidate


def check_cancelled(cancel_event: threading.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise GenerationCancelled("Generation cancelled")


def convert_document(renderer: DocumentRenderer, source: Path, keep_original: bool) -> Path:
    """Render `source` to a sibling PDF; the original is removed unless kept or conversion failed."""
    target = source.with_suffix(".pdf")
    if not renderer.render(source, target):
        log.warning("Keeping %s, PDF conversion failed", source.name)
        return source
    if not keep_original:
        source.unlink(missing_ok=True)
    return target


def consolidate(
    documents: list[tuple[Path, Filing]],
    label: str,
    ticker: str,
    renderer: DocumentRenderer | None,
    merger: DocumentMerger | None,
    keep_original: bool = False,
    convertible: set[str] = DOWNLOADABLE_EXTENSIONS,
) -> dict[tuple[str, str], Path]:
    """
    Merge and/or convert one group of downloaded documents.

    With a merger, the group is merged first and only the merged file is
    converted. Without one (or when the merge was skipped or failed), each
    document is converted on its own.

    Returns:
        Final file of every filing, keyed by Filing.key
    """
    final = {filing.key: path for path, filing in documents}

    merged = merger.merge(documents, label, ticker) if merger is not None else None
    if merged is not None:
        if renderer is not None:
            merged = convert_document(renderer, merged, keep_original)
        return {key: merged for key in final}

    if renderer is not None:
        for path, filing in documents:
            if path.suffix.lower().lstrip('.') in convertible:
                final[filing.key] = convert_document(renderer, path, keep_original)
    return final


class FilingDownloader:
    """Downloads every filing that matches a set of form types and a date range."""

    def __init__(
        self,
        sec_client: SECClient,
        renderer: DocumentRenderer | None = None,
        merger: DocumentMerger | None = None,
        progress: ProgressSink | None = None,
    ):
        self.sec_client = sec_client
        self.renderer = renderer
        self.merger = merger or DocumentMerger()
        self.progress = ProgressReporter(DOWNLOAD_PLAN, progress)

    def resolve(self, ticker_or_cik: str) -> str:
        """Return the padded CIK for a ticker, or pad a numeric CIK as-is."""
        value = ticker_or_cik.strip()
        if value.isdigit():
            return pad_cik(value)
        cik = self.sec_client.resolve_cik(value)
        if cik is None:
            raise CompanyNotFoundError(f"Could not find CIK for ticker {value}")
        return cik

    def run(self, options: DownloadOptions, cancel_event: threading.Event | None = None) -> DownloadResult:
        """
        Download matching filings into `{output_dir}/{TICKER}/{FORM}/`.

        Returns:
            DownloadResult with (successful, total); (0, 0) when nothing matched

        Raises:
            CompanyNotFoundError: If the ticker cannot be resolved
            GenerationCancelled: If `cancel_event` is set while running
        """
        self.progress.report("resolve", f"Resolving {options.ticker}...")
        cik = self.resolve(options.ticker)
        check_cancelled(cancel_event)

        self.progress.report("filter", "Fetching company submissions...")
        history = self.sec_client.fetch_filing_history(cik)
        ticker = options.ticker.strip().upper()
        if ticker.isdigit():
            ticker = (history.tickers[0] if history.tickers else cik).upper()

        filings = filter_filings(history.filings, options.form_types, options.start_date, options.end_date)
        if not filings:
            self.progress.finish("No filings found matching your criteria")
            return DownloadResult(successful=0, total=0)

        company_dir = options.output_dir / ticker
        groups: dict[Path, list[tuple[Path, Filing]]] = {}
        taken: set[Path] = set()
        successful = 0

        for index, filing in enumerate(filings):
            check_cancelled(cancel_event)
            self.progress.report("download", f"Downloading {filing.form} from {filing.filing_date.isoformat()}...",
                                 index, len(filings))

            form_dir = company_dir / sanitize_filename(filing.form.replace(' ', '_'))
            extension = filing.extension or "htm"
            filename = sanitize_filename(
                f"{ticker} {filing.form.replace(' ', '')} {filing.filing_date:%d.%m.%Y}.{extension}"
            )
            destination = unique_path(form_dir / filename, taken, filing.accession_number)
            url = self.sec_client.build_document_url(cik, filing.accession_number, filing.primary_document)

            try:
                self.sec_client.download_filing(url, destination)
            except (httpx.HTTPError, DocumentTimeoutError, OSError) as e:
                log.warning("Failed to download %s (%s): %s", filing.form, filing.accession_number, e)
                continue
            successful += 1
            groups.setdefault(form_dir, []).append((destination, filing))

        for form_dir, documents in groups.items():
            check_cancelled(cancel_event)
            renderer = self.renderer if options.convert_to_pdf else None
            if renderer is not None:
                self.progress.report("download", f"Converting {form_dir.name} to PDF...",
                                     len(filings), len(filings))
            if options.merge_by_type:
                # Files in the form folder are paired with filings by the date in their name
                merged = self.merger.merge_directory(
                    form_dir, documents[0][1].form, ticker, [filing for _, filing in documents]
                )
                if merged is not None:
                    if renderer is not None:
                        convert_document(renderer, merged, options.keep_original)
                    continue
            consolidate(
                documents,
                label=documents[0][1].form,
                ticker=ticker,
                renderer=renderer,
                merger=None,
                keep_original=options.keep_original,
                convertible=HTML_EXTENSIONS,
            )

        self.progress.finish(f"Successfully downloaded {successful} of {len(filings)} filings")
        return DownloadResult(successful=successful, total=len(filings), company_dir=company_dir)
