"""Command-line interface for SEC Packager."""

import argparse
import json
import logging
import sys
import threading
from datetime import date
from pathlib import Path

import httpx

from sec_packager.assembler import PackageAssembler
from sec_packager.client import SECClient
from sec_packager.config import Settings, get_settings
from sec_packager.downloader import FilingDownloader
from sec_packager.errors import GenerationCancelled, PackagerError
from sec_packager.logging_config import configure_logging
from sec_packager.market import MarketDataClient
from sec_packager.models import DownloadOptions, Filing, FilingFilter, PackageOptions
from sec_packager.render import WeasyPrintRenderer
from sec_packager.short_interest import ShortInterestClient

log = logging.getLogger(__name__)


def format_table(filings: list[Filing]) -> str:
    """
    Format filings as a simple text table.

    Args:
        filings: List of Filing objects

    Returns:
        Formatted table string
    """
    if not filings:
        return "No filings found."

    lines = []
    lines.append("-" * 100)
    lines.append(f"{'Form Type':<12} {'Filing Date':<15} {'Primary Document':<45} {'Accession #':<25}")
    lines.append("-" * 100)

    for filing in filings:
        lines.append(
            f"{filing.form:<12} "
            f"{filing.filing_date.isoformat():<15} "
            f"{filing.primary_document[:43]:<45} "
            f"{filing.accession_number:<25}"
        )

    lines.append("-" * 100)
    lines.append(f"Total: {len(filings)} filing(s)")

    return "\n".join(lines)


def parse_date(value: str) -> date:
    """argparse type for YYYY-MM-DD dates."""
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid date '{value}', use YYYY-MM-DD format")


def print_progress(fraction: float, message: str) -> None:
    print(f"[{fraction:4.0%}] {message}", file=sys.stderr)


def build_parser(settings: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sec-packager",
        description="SEC Packager - Download SEC EDGAR filings and build company intelligence packages",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s list AAPL --form 10-K --limit 5
  %(prog)s download MSFT --form 10-Q --form 8-K --start 2023-01-01 --merge
  %(prog)s package TSLA --market-data --short-interest --key-metrics
        """
    )
    parser.add_argument('--log-file', type=Path, help='Also write logs to this file')
    subparsers = parser.add_subparsers(dest='command', required=True)

    list_parser = subparsers.add_parser('list', help='List filings of a company')
    list_parser.add_argument('ticker', type=str, help='Company ticker symbol (e.g., AAPL, MSFT, TSLA)')
    list_parser.add_argument(
        '--form', type=str, action='append', dest='form_types',
        help='Filter by form type (can be specified multiple times). Example: --form 10-K --form 10-Q'
    )
    list_parser.add_argument('--date-from', type=parse_date, help='Filter filings from this date (YYYY-MM-DD)')
    list_parser.add_argument('--date-to', type=parse_date, help='Filter filings until this date (YYYY-MM-DD)')
    list_parser.add_argument('--limit', type=int, default=10,
                             help='Maximum number of results to return (default: 10)')
    list_parser.add_argument('--json', action='store_true', help='Output results as JSON instead of table')

    output_help = f'Output directory (default: {settings.output_dir})'

    download_parser = subparsers.add_parser('download', help='Download filings by form type and date range')
    download_parser.add_argument('ticker', type=str, help='Company ticker symbol or CIK')
    download_parser.add_argument(
        '--form', type=str, action='append', dest='form_types', required=True,
        help='Form type to download (up to 4, can be specified multiple times)'
    )
    download_parser.add_argument('--start', type=parse_date, required=True, help='First filing date (YYYY-MM-DD)')
    download_parser.add_argument('--end', type=parse_date, default=date.today(),
                                 help='Last filing date (YYYY-MM-DD, default: today)')
    download_parser.add_argument('--output', type=Path, default=settings.output_dir, help=output_help)
    add_document_options(download_parser)

    package_parser = subparsers.add_parser('package', help='Build an intelligence package for a company')
    package_parser.add_argument('ticker', type=str, help='Company ticker symbol or CIK')
    package_parser.add_argument('--output', type=Path, default=settings.output_dir, help=output_help)
    package_parser.add_argument('--market-data', action='store_true',
                                help='Include quote, moving averages and 52-week range (needs ALPHA_VANTAGE_API_KEY)')
    package_parser.add_argument('--key-metrics', action='store_true',
                                help='Include sector, industry and valuation metrics (needs ALPHA_VANTAGE_API_KEY)')
    package_parser.add_argument('--short-interest', action='store_true', help='Include FINRA short interest')
    package_parser.add_argument('--as-of', type=parse_date, default=date.today(),
                                help='Reference date of the retention windows (default: today)')
    package_parser.add_argument('--json', action='store_true', help='Print the manifest as JSON when done')
    add_document_options(package_parser)

    return parser


def add_document_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument('--no-pdf', action='store_false', dest='convert_to_pdf',
                        help='Keep downloaded HTML/TXT instead of converting to PDF')
    parser.add_argument('--keep-original', action='store_true',
                        help='Keep the HTML/TXT next to the converted PDF')
    parser.add_argument('--merge', action='store_true', dest='merge_by_type',
                        help='Merge the documents of each form type or category into one file')


def run_list(args: argparse.Namespace, settings: Settings) -> None:
    client = SECClient(settings.sec_user_agent)
    try:
        company = client.lookup_company(args.ticker)
        filing_filter = FilingFilter(
            form_types=args.form_types,
            date_from=args.date_from,
            date_to=args.date_to,
            limit=args.limit
        )
        filings = client.list_filings(company.cik, filing_filter)
    finally:
        client.close()

    if args.json:
        output = {
            "company": company.model_dump(),
            "filings": [f.model_dump(mode='json') for f in filings],
            "count": len(filings)
        }
        print(json.dumps(output, indent=2, default=str))
    else:
        print(f"Company: {company.name} ({company.ticker})")
        print(f"CIK: {company.cik}")
        print()
        print(format_table(filings))


def run_download(args: argparse.Namespace, settings: Settings, cancel_event: threading.Event) -> None:
    options = DownloadOptions(
        ticker=args.ticker,
        form_types=args.form_types,
        start_date=args.start,
        end_date=args.end,
        output_dir=args.output,
        convert_to_pdf=args.convert_to_pdf,
        keep_original=args.keep_original,
        merge_by_type=args.merge_by_type,
    )
    client = SECClient(settings.sec_user_agent)
    try:
        downloader = FilingDownloader(client, renderer=WeasyPrintRenderer(), progress=print_progress)
        result = downloader.run(options, cancel_event)
    finally:
        client.close()

    if result.total == 0:
        print("No filings found matching your criteria")
    else:
        print(f"Successfully downloaded {result.successful} of {result.total} filings to: {result.company_dir}")


def run_package(args: argparse.Namespace, settings: Settings, cancel_event: threading.Event) -> None:
    options = PackageOptions(
        ticker=args.ticker,
        output_dir=args.output,
        include_market_data=args.market_data,
        include_key_metrics=args.key_metrics,
        alpha_vantage_api_key=settings.alpha_vantage_api_key,
        include_short_interest=args.short_interest,
        finra_client_id=settings.finra_client_id,
        finra_client_secret=settings.finra_client_secret,
        convert_to_pdf=args.convert_to_pdf,
        keep_original=args.keep_original,
        merge_by_type=args.merge_by_type,
        as_of=args.as_of,
    )

    sec_client = SECClient(settings.sec_user_agent)
    market_client = None
    if options.alpha_vantage_api_key and (options.include_market_data or options.include_key_metrics):
        market_client = MarketDataClient(options.alpha_vantage_api_key)
    short_client = None
    if options.include_short_interest:
        short_client = ShortInterestClient(options.finra_client_id, options.finra_client_secret)

    try:
        assembler = PackageAssembler(
            sec_client,
            market_client=market_client,
            short_interest_client=short_client,
            renderer=WeasyPrintRenderer(),
            progress=print_progress,
        )
        result = assembler.run(options, cancel_event)
    finally:
        for client in (sec_client, market_client, short_client):
            if client is not None:
                client.close()

    if args.json:
        print(json.dumps(result.manifest.model_dump(mode='json', by_alias=True), indent=2, sort_keys=True))
    else:
        print(f"Package created: {result.package_dir}")
        print(f"Downloaded {result.downloaded} of {result.total} filings")


def main(argv: list[str] | None = None):
    """
    Main CLI entry point.

    Usage:
        sec-packager list AAPL --form 10-K --limit 5
        sec-packager download MSFT --form 10-Q --start 2023-01-01
        sec-packager package TSLA --market-data --short-interest
    """
    try:
        settings = get_settings()
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    parser = build_parser(settings)
    args = parser.parse_args(argv)
    configure_logging(args.log_file, settings.log_level)

    cancel_event = threading.Event()
    try:
        if args.command == 'list':
            run_list(args, settings)
        elif args.command == 'download':
            run_download(args, settings, cancel_event)
        else:
            run_package(args, settings, cancel_event)
    except KeyboardInterrupt:
        cancel_event.set()
        print("Cancelled", file=sys.stderr)
        sys.exit(130)
    except GenerationCancelled:
        print("Cancelled", file=sys.stderr)
        sys.exit(130)
    except (PackagerError, ValueError, httpx.HTTPError, OSError) as e:
        log.debug("Command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
