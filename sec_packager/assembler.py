"""Intelligence package workflow.

Resolves a company, gathers optional market and short interest data,
classifies the filing history, downloads each category's documents and
writes `manifest.json`, the data snapshots and a README into one folder:

    {TICKER}_AI_Package_{yyyy-mm-dd_HHMM}/
        manifest.json
        market_data.json        (optional)
        short_interest.json     (optional)
        README.txt
        filings/{financials,events,capital,ownership,governance}/
"""

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

import httpx
from pydantic import BaseModel

from sec_packager.classifier import classify
from sec_packager.client import SECClient, pad_cik
from sec_packager.downloader import (
    DOWNLOADABLE_EXTENSIONS,
    check_cancelled,
    consolidate,
    sanitize_filename,
    unique_path,
)
from sec_packager.errors import CompanyNotFoundError, DocumentTimeoutError, PackagerError
from sec_packager.market import MarketDataClient
from sec_packager.merge import DocumentMerger
from sec_packager.models import (
    EIGHT_K_ITEMS,
    CategorizedFilings,
    CompanyInfo,
    CompanyOverview,
    DataSnapshot,
    DataSource,
    DataSources,
    Filing,
    FilingCategories,
    FilingHistory,
    FilingCategory,
    FilingReference,
    FilingsManifest,
    KeyMetrics,
    MarketDataExport,
    MarketSnapshot,
    PackageManifest,
    PackageOptions,
    PackageResult,
    ShortInterestRecord,
)
from sec_packager.progress import PACKAGE_PLAN, ProgressReporter, ProgressSink
from sec_packager.render import DocumentRenderer
from sec_packager.short_interest import ShortInterestClient

log = logging.getLogger(__name__)

SHORT_INTEREST_DELAY_DAYS = 14


def write_json(path: Path, model: BaseModel) -> None:
    """Pretty-printed, key-sorted JSON with camelCase keys and ISO-8601 dates."""
    data = model.model_dump(mode='json', by_alias=True)
    path.write_text(json.dumps(data, indent=2, sort_keys=True) + "\n", encoding='utf-8')


def describe_items(items: tuple[str, ...]) -> str | None:
    descriptions = [f"Item {item}: {EIGHT_K_ITEMS[item]}" for item in items if item in EIGHT_K_ITEMS]
    return "; ".join(descriptions) or None


class PackageAssembler:
    """Builds an intelligence package for one ticker.

    Clients are injected so one configured instance (and its rate limiter
    and token cache) can serve several runs.
    """

    def __init__(
        self,
        sec_client: SECClient,
        market_client: MarketDataClient | None = None,
        short_interest_client: ShortInterestClient | None = None,
        renderer: DocumentRenderer | None = None,
        merger: DocumentMerger | None = None,
        progress: ProgressSink | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.sec_client = sec_client
        self.market_client = market_client
        self.short_interest_client = short_interest_client
        self.renderer = renderer
        self.merger = merger or DocumentMerger()
        self.progress = ProgressReporter(PACKAGE_PLAN, progress)
        self._clock = clock

    def run(self, options: PackageOptions, cancel_event: threading.Event | None = None) -> PackageResult:
        """
        Generate the package.

        Market data, short interest and individual documents are optional:
        their failures are logged and the run continues. Resolution of the
        company and of its filing history are not.

        Raises:
            CompanyNotFoundError: If the ticker cannot be resolved
            GenerationCancelled: If `cancel_event` is set while running
            PackagerError, httpx.HTTPError: If the filing history cannot be fetched
        """
        self.progress.report("resolve", "Looking up company information...")
        company, history = self.get_company_info(options.ticker)
        check_cancelled(cancel_event)

        market = None
        overview = None
        if options.include_market_data or options.include_key_metrics:
            self.progress.report("market_data", "Fetching market data...")
            market, overview = self.fetch_market_data(company.ticker, options)
            if overview is not None:
                company = company.model_copy(update={"sector": overview.sector, "industry": overview.industry})
        check_cancelled(cancel_event)

        short_interest = None
        if options.include_short_interest:
            self.progress.report("short_interest", "Fetching short interest data...")
            short_interest = self.fetch_short_interest(company.ticker)
        check_cancelled(cancel_event)

        self.progress.report("filings", "Retrieving SEC filings...")
        categorized = classify(history.filings, options.as_of)
        log.info("Classified %d of %d filings for %s",
                 categorized.total_count, len(history.filings), company.ticker)
        check_cancelled(cancel_event)

        generated_at = self._clock()
        package_dir = self.create_package_dir(options.output_dir, company.ticker, generated_at)
        locations, downloaded = self.download_categories(package_dir, company, categorized, options, cancel_event)

        self.progress.report("manifest", "Creating package manifest...")
        manifest = self.build_manifest(
            generated_at, company, market, short_interest,
            overview.key_metrics if overview and options.include_key_metrics else None,
            categorized, locations,
        )
        self.write_package_files(package_dir, manifest, market, short_interest)

        total = categorized.total_count
        self.progress.finish(f"Package generation complete! Downloaded {downloaded} of {total} filings")
        return PackageResult(package_dir=package_dir, downloaded=downloaded, total=total, manifest=manifest)

    def get_company_info(self, ticker: str) -> tuple[CompanyInfo, FilingHistory]:
        """Resolve ticker (or numeric CIK) to the company and its submissions history."""
        if ticker.isdigit():
            cik = pad_cik(ticker)
        else:
            cik = self.sec_client.resolve_cik(ticker)
            if cik is None:
                raise CompanyNotFoundError(f"Could not find company with ticker {ticker}")

        history = self.sec_client.fetch_filing_history(cik)
        if ticker.isdigit():
            ticker = (history.tickers[0] if history.tickers else cik).upper()
        return CompanyInfo(ticker=ticker, cik=cik, name=history.company_name), history

    def fetch_market_data(
        self, symbol: str, options: PackageOptions
    ) -> tuple[MarketSnapshot | None, CompanyOverview | None]:
        if self.market_client is None:
            log.warning("Market data requested but no market data client is configured")
            return None, None

        snapshot = None
        overview = None
        if options.include_market_data:
            try:
                snapshot = self.market_client.fetch_snapshot(symbol)
            except (PackagerError, httpx.HTTPError) as e:
                log.warning("Failed to fetch market data for %s: %s", symbol, e)
        if options.include_key_metrics:
            try:
                overview = self.market_client.fetch_overview(symbol)
            except (PackagerError, httpx.HTTPError) as e:
                log.warning("Failed to fetch company overview for %s: %s", symbol, e)
        return snapshot, overview

    def fetch_short_interest(self, ticker: str) -> ShortInterestRecord | None:
        if self.short_interest_client is None:
            log.warning("Short interest requested but no short interest client is configured")
            return None
        try:
            record = self.short_interest_client.fetch_short_interest(ticker)
        except (PackagerError, httpx.HTTPError) as e:
            log.warning("Could not fetch short interest data for %s: %s", ticker, e)
            return None
        if record is None:
            log.warning("No short interest data available for %s", ticker)
        return record

    @staticmethod
    def create_package_dir(output_dir: Path, ticker: str, generated_at: datetime) -> Path:
        package_dir = output_dir / f"{ticker}_AI_Package_{generated_at:%Y-%m-%d_%H%M}"
        filings_dir = package_dir / "filings"
        for category in FilingCategory:
            (filings_dir / category.directory).mkdir(parents=True, exist_ok=True)
        return package_dir

    def download_categories(
        self,
        package_dir: Path,
        company: CompanyInfo,
        categorized: CategorizedFilings,
        options: PackageOptions,
        cancel_event: threading.Event | None,
    ) -> tuple[dict[tuple[str, str], Path], int]:
        """
        Download every categorized filing, category by category.

        Returns:
            (final file of each downloaded filing keyed by Filing.key, downloaded count)
        """
        by_category = categorized.by_category()
        total = categorized.total_count
        done = 0
        downloaded = 0
        locations: dict[tuple[str, str], Path] = {}
        taken: set[Path] = set()

        for category, filings in by_category.items():
            directory = package_dir / "filings" / category.directory
            documents: list[tuple[Path, Filing]] = []

            for filing in filings:
                check_cancelled(cancel_event)
                self.progress.report("download", f"Downloading {category.label}: {filing.form}...", done, total)
                done += 1
                path = self.download_filing(directory, company, filing, taken)
                if path is not None:
                    documents.append((path, filing))
                    downloaded += 1

            if documents:
                check_cancelled(cancel_event)
                if options.convert_to_pdf:
                    self.progress.report("download", f"Converting {category.label} to PDF...", done, total)
                locations.update(consolidate(
                    documents,
                    label=category.label,
                    ticker=company.ticker,
                    renderer=self.renderer if options.convert_to_pdf else None,
                    merger=self.merger if options.merge_by_type else None,
                    keep_original=options.keep_original,
                ))

        return locations, downloaded

    def download_filing(self, directory: Path, company: CompanyInfo, filing: Filing, taken: set[Path]) -> Path | None:
        """Download one primary document; None when skipped or failed."""
        if filing.extension not in DOWNLOADABLE_EXTENSIONS:
            log.info("Skipping %s %s: %s is not an HTML or text document",
                     filing.form, filing.accession_number, filing.primary_document)
            return None

        filename = sanitize_filename(
            f"{company.ticker}_{filing.form.replace(' ', '')}_{filing.filing_date.isoformat()}.{filing.extension}"
        )
        destination = unique_path(directory / filename, taken, filing.accession_number)
        url = self.sec_client.build_document_url(company.cik, filing.accession_number, filing.primary_document)
        try:
            return self.sec_client.download_filing(url, destination)
        except (httpx.HTTPError, DocumentTimeoutError, OSError) as e:
            log.warning("Failed to download %s (%s): %s", filing.form, filing.accession_number, e)
            return None

    def build_manifest(
        self,
        generated_at: datetime,
        company: CompanyInfo,
        market: MarketSnapshot | None,
        short_interest: ShortInterestRecord | None,
        key_metrics: KeyMetrics | None,
        categorized: CategorizedFilings,
        locations: dict[tuple[str, str], Path],
    ) -> PackageManifest:
        references = {
            category: [self.filing_reference(filing, company.ticker, locations) for filing in filings]
            for category, filings in categorized.by_category().items()
        }
        filings_manifest = FilingsManifest(
            total_count=sum(len(refs) for refs in references.values()),
            categories=FilingCategories(
                financials=references[FilingCategory.FINANCIALS],
                material_events=references[FilingCategory.MATERIAL_EVENTS],
                capital_structure=references[FilingCategory.CAPITAL_STRUCTURE],
                ownership=references[FilingCategory.OWNERSHIP],
                governance=references[FilingCategory.GOVERNANCE],
            ),
        )

        return PackageManifest(
            generated_at=generated_at,
            company=company,
            data_snapshot=DataSnapshot(
                market_data=MarketDataExport.from_snapshot(market) if market else None,
                short_interest=short_interest,
                key_metrics=key_metrics,
            ),
            filings_included=filings_manifest,
            data_sources=DataSources(
                sec_filings=DataSource(source="SEC EDGAR", last_updated=generated_at,
                                       filing_count=categorized.total_count),
                market_data=DataSource(source="Alpha Vantage", last_updated=market.as_of) if market else None,
                short_interest=DataSource(
                    source="FINRA", last_updated=generated_at,
                    is_delayed=True, delay_days=SHORT_INTEREST_DELAY_DAYS,
                ) if short_interest else None,
            ),
        )

    @staticmethod
    def filing_reference(filing: Filing, ticker: str, locations: dict[tuple[str, str], Path]) -> FilingReference:
        location = locations.get(filing.key)
        if location is not None:
            filename = location.name
        else:
            # Not downloaded; name it as a converted document would be
            filename = sanitize_filename(f"{ticker}_{filing.form.replace(' ', '')}_{filing.filing_date.isoformat()}.pdf")
        is_eight_k = filing.form.upper().startswith("8-K")
        return FilingReference(
            type=filing.form,
            date=filing.filing_date,
            filename=filename,
            accession_number=filing.accession_number,
            description=describe_items(filing.items) if is_eight_k else None,
            items=list(filing.items) if is_eight_k and filing.items else None,
        )

    def write_package_files(
        self,
        package_dir: Path,
        manifest: PackageManifest,
        market: MarketSnapshot | None,
        short_interest: ShortInterestRecord | None,
    ) -> None:
        write_json(package_dir / "manifest.json", manifest)
        if market is not None:
            write_json(package_dir / "market_data.json", market)
        if short_interest is not None:
            write_json(package_dir / "short_interest.json", short_interest)
        (package_dir / "README.txt").write_text(render_readme(manifest), encoding='utf-8')


def render_readme(manifest: PackageManifest) -> str:
    company = manifest.company
    categories = manifest.filings_included.categories
    has_market = manifest.data_snapshot.market_data is not None
    has_short = manifest.data_snapshot.short_interest is not None

    lines = [
        f"SEC Intelligence Package for {company.name} ({company.ticker})",
        f"CIK: {company.cik}",
        f"Generated: {manifest.generated_at.isoformat()}",
        "",
        "This package contains:",
        "",
        f"1. SEC Filings ({manifest.filings_included.total_count} total):",
        f"   - Financials: {len(categories.financials)} (latest 10-K, 2 most recent 10-Qs)",
        f"   - Material Events: {len(categories.material_events)} (8-Ks, last 12 months)",
        f"   - Capital Structure: {len(categories.capital_structure)} (S-3/S-1 and 424B, last 2 years)",
        f"   - Ownership: {len(categories.ownership)} (Forms 3/4/5 last 12 months, 13D/13G)",
        f"   - Governance: {len(categories.governance)} (latest proxy statement, SC 13D/A amendments)",
        "",
        "2. Market Data:",
    ]
    if has_market:
        lines += [
            "   - Technical indicators and moving averages (see market_data.json)",
            "   - 20/50/200-day moving averages",
            "   - 52-week high/low",
            "   - Average volume (20-day)",
        ]
    else:
        lines.append("   - Not included")

    lines += ["", "3. Short Interest Data:"]
    if has_short:
        lines += [
            "   - FINRA short interest data (see short_interest.json)",
            "   - Note: Data is typically delayed by 2 weeks",
        ]
    else:
        lines.append("   - Not included")

    lines += ["", "4. Data Sources:", "   - SEC EDGAR Database"]
    if has_market:
        lines.append("   - Alpha Vantage Market Data API")
    if has_short:
        lines.append("   - FINRA Short Interest")

    lines += [
        "",
        "Files are organized by category in the 'filings' directory:",
        "- /financials - 10-K and 10-Q reports",
        "- /events - 8-K material event filings",
        "- /capital - S-3/S-1 and 424B filings",
        "- /ownership - Insider and major shareholder filings",
        "- /governance - Proxy statements and activist filings",
        "",
        "For detailed metadata, see manifest.json",
    ]
    return "\n".join(lines) + "\n"
