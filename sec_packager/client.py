"""Core SEC client for company lookup, filing history and document retrieval."""

import logging
import time
from datetime import date
from pathlib import Path
from typing import Any, Callable

import httpx

from sec_packager.errors import CompanyNotFoundError, DocumentTimeoutError, InvalidResponseError
from sec_packager.http import (
    DOCUMENT_TIMEOUT_SECONDS,
    RateLimiter,
    RetryClient,
    build_http_client,
)
from sec_packager.models import Company, Filing, FilingFilter, FilingHistory

log = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "SECFilingsDownloader user@example.com"


def pad_cik(cik: str | int) -> str:
    """Return the 10-digit zero-padded CIK used by every EDGAR endpoint."""
    return str(int(cik)).zfill(10)


def filter_filings(
    filings: list[Filing],
    form_types: list[str] | None,
    start_date: date | None,
    end_date: date | None,
) -> list[Filing]:
    """
    Select filings by form type and filing date, newest first.

    A filing matches when its form contains any requested form type as a
    case-insensitive substring, so "424B" selects "424B2" and "424B5", and
    "8-K" also selects "8-K/A". Both date bounds are inclusive.

    Args:
        filings: Filings to filter
        form_types: Requested form types; None or empty keeps every form
        start_date: Earliest filing date kept
        end_date: Latest filing date kept

    Returns:
        Matching filings sorted by filing date descending
    """
    wanted = [ft.upper() for ft in form_types or [] if ft.strip()]

    selected = []
    for filing in filings:
        form = filing.form.upper()
        if wanted and not any(ft in form for ft in wanted):
            continue
        if start_date and filing.filing_date < start_date:
            continue
        if end_date and filing.filing_date > end_date:
            continue
        selected.append(filing)

    selected.sort(key=lambda f: f.filing_date, reverse=True)
    return selected


class SECClient:
    """Client for the SEC EDGAR company registry and archives."""

    def __init__(
        self,
        user_agent: str = DEFAULT_USER_AGENT,
        http_client: httpx.Client | None = None,
        rate_limiter: RateLimiter | None = None,
        retry: RetryClient | None = None,
        base_url: str = "https://www.sec.gov",
        data_url: str = "https://data.sec.gov",
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the client.

        Args:
            user_agent: User agent string for SEC API requests (required by SEC,
                        should name the application and a contact email)
            http_client: Optional httpx client to reuse
            rate_limiter: Limiter shared by every request (defaults to 10/second)
            retry: Retry policy for transient network failures
            base_url: Host of the ticker table and the archives
            data_url: Host of the submissions API
            clock: Monotonic clock bounding document downloads
        """
        self._user_agent = user_agent
        self._http = http_client or build_http_client(user_agent)
        self._limiter = rate_limiter or RateLimiter(10, period=1.0)
        self._retry = retry or RetryClient()
        self._base_url = base_url.rstrip('/')
        self._data_url = data_url.rstrip('/')
        self._companies: dict[str, dict[str, Any]] | None = None
        self._clock = clock
        self._headers = {
            "User-Agent": user_agent,
            "Accept-Encoding": "gzip, deflate",
            "Accept": "application/json, text/plain, */*",
        }

    def _get(self, url: str) -> httpx.Response:
        def send() -> httpx.Response:
            self._limiter.acquire()
            response = self._http.get(url, headers=self._headers)
            response.raise_for_status()
            return response

        return self._retry.execute(send)

    def _get_json(self, url: str) -> Any:
        response = self._get(url)
        try:
            return response.json()
        except ValueError as e:
            raise InvalidResponseError(f"Invalid JSON from {url}") from e

    def _load_companies(self) -> dict[str, dict[str, Any]]:
        """Fetch the ticker table once and index it by upper-case ticker."""
        if self._companies is None:
            data = self._get_json(f"{self._base_url}/files/company_tickers.json")
            if not isinstance(data, dict):
                raise InvalidResponseError("Ticker table is not a JSON object")

            companies: dict[str, dict[str, Any]] = {}
            for entry in data.values():
                if not isinstance(entry, dict) or not entry.get('ticker'):
                    continue
                companies.setdefault(str(entry['ticker']).upper(), entry)
            self._companies = companies
            log.debug("Loaded %d tickers", len(companies))
        return self._companies

    def resolve_cik(self, ticker: str) -> str | None:
        """
        Resolve a ticker symbol to its zero-padded CIK.

        Args:
            ticker: Stock ticker symbol (case-insensitive)

        Returns:
            10-digit CIK string, or None when the ticker is unknown
        """
        if not ticker or not ticker.strip():
            return None

        entry = self._load_companies().get(ticker.strip().upper())
        if entry is None or entry.get('cik_str') in (None, ''):
            return None
        return pad_cik(entry['cik_str'])

    def lookup_company(self, ticker: str) -> Company:
        """
        Find company by ticker symbol.

        Args:
            ticker: Stock ticker symbol (case-insensitive)

        Returns:
            Company object with ticker, CIK, and name

        Raises:
            ValueError: If ticker is empty
            CompanyNotFoundError: If ticker is not found
        """
        if not ticker or not ticker.strip():
            raise ValueError("Ticker cannot be empty")

        ticker = ticker.strip().upper()
        cik = self.resolve_cik(ticker)
        if cik is None:
            raise CompanyNotFoundError(f"Company with ticker '{ticker}' not found")

        name = self._load_companies()[ticker].get('title', '')
        return Company(ticker=ticker, cik=cik, name=name or ticker)

    def fetch_filing_history(self, cik: str) -> FilingHistory:
        """
        Fetch and decode the recent filings of a company.

        Args:
            cik: Company CIK number (padded or not)

        Returns:
            FilingHistory with company name, tickers and parsed filings

        Raises:
            ValueError: If CIK is empty or not numeric
            InvalidResponseError: If the submissions document is malformed
        """
        if not cik or not cik.strip():
            raise ValueError("CIK cannot be empty")
        if not cik.strip().isdigit():
            raise ValueError(f"Invalid CIK '{cik}'")

        cik = pad_cik(cik.strip())
        data = self._get_json(f"{self._data_url}/submissions/CIK{cik}.json")

        try:
            recent = data['filings']['recent']
            name = data['name']
        except (KeyError, TypeError) as e:
            raise InvalidResponseError(f"Submissions for CIK {cik} are missing {e}") from e

        return FilingHistory(
            cik=cik,
            company_name=name or '',
            tickers=list(data.get('tickers') or []),
            filings=self._parse_recent_filings(recent),
        )

    @staticmethod
    def _parse_recent_filings(recent: dict[str, Any]) -> list[Filing]:
        """Zip the parallel arrays of `filings.recent` into Filing objects."""
        forms = recent.get('form') or []
        dates = recent.get('filingDate') or []
        accessions = recent.get('accessionNumber') or []
        documents = recent.get('primaryDocument') or []
        report_dates = recent.get('reportDate') or []
        items = recent.get('items') or []

        filings: list[Filing] = []
        for i, form in enumerate(forms):
            try:
                raw_items = (items[i] if i < len(items) else '') or ''
                filings.append(Filing(
                    form=form,
                    filing_date=date.fromisoformat(dates[i]),
                    accession_number=accessions[i],
                    primary_document=documents[i],
                    report_date=report_dates[i] if i < len(report_dates) else None,
                    items=tuple(item.strip() for item in raw_items.split(',') if item.strip()),
                ))
            except (ValueError, IndexError, TypeError, AttributeError):
                # Skip invalid filings
                log.debug("Skipping malformed filing row %d (%s)", i, form)
                continue
        return filings

    def list_filings(self, cik: str, filters: FilingFilter) -> list[Filing]:
        """
        Get filings for a CIK, applying filters.

        Applies the following filters in order:
        - Filter by form_types (substring match, if provided)
        - Filter by date range (if provided)
        - Sort by date descending
        - Limit results (if provided)

        Args:
            cik: Company CIK number
            filters: FilingFilter object with filtering criteria

        Returns:
            List of Filing objects matching the criteria
        """
        history = self.fetch_filing_history(cik)
        filings = filter_filings(history.filings, filters.form_types, filters.date_from, filters.date_to)
        if filters.limit is not None:
            filings = filings[:filters.limit]
        return filings

    def build_document_url(self, cik: str, accession_number: str, primary_document: str) -> str:
        """
        Build the archive URL of a filing's primary document.

        Format: {base}/Archives/edgar/data/{10-digit cik}/{accession without dashes}/{document}
        """
        if not accession_number or not accession_number.strip():
            raise ValueError("Accession number cannot be empty")
        if not cik or not cik.strip():
            raise ValueError("CIK cannot be empty")

        accession_no_dashes = accession_number.strip().replace('-', '')
        return f"{self._base_url}/Archives/edgar/data/{pad_cik(cik.strip())}/{accession_no_dashes}/{primary_document}"

    def download_filing(self, url: str, destination: Path) -> Path:
        """
        Stream a filing document to disk.

        Reads are bounded by the request timeout. The download as a whole,
        retries included, is bounded by DOCUMENT_TIMEOUT_SECONDS.

        Args:
            url: Document URL (see build_document_url)
            destination: File to write; parent directories are created

        Returns:
            The destination path

        Raises:
            httpx.HTTPStatusError: If the archive answers with an error status
            httpx.TimeoutException, httpx.NetworkError: After retries run out
            DocumentTimeoutError: If the overall bound is exceeded (never retried)
        """
        destination.parent.mkdir(parents=True, exist_ok=True)
        deadline = self._clock() + DOCUMENT_TIMEOUT_SECONDS

        def check_deadline() -> None:
            if self._clock() > deadline:
                raise DocumentTimeoutError(f"Download of {url} exceeded {DOCUMENT_TIMEOUT_SECONDS:.0f}s")

        def send() -> Path:
            self._limiter.acquire()
            check_deadline()
            with self._http.stream("GET", url, headers=self._headers) as response:
                response.raise_for_status()
                with open(destination, 'wb') as f:
                    for chunk in response.iter_bytes():
                        check_deadline()
                        f.write(chunk)
            return destination

        try:
            return self._retry.execute(send)
        except Exception:
            destination.unlink(missing_ok=True)
            raise

    def close(self) -> None:
        self._http.close()
