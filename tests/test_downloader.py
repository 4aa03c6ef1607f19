"""Tests for the form-type / date-range download workflow."""

import threading
from datetime import date, datetime
from pathlib import Path

import pytest
from pydantic import ValidationError

from sec_packager.downloader import FilingDownloader, sanitize_filename, unique_path
from sec_packager.errors import CompanyNotFoundError, GenerationCancelled
from sec_packager.merge import DocumentMerger
from sec_packager.models import DownloadOptions


def make_options(output_dir: Path, **overrides) -> DownloadOptions:
    values = {
        "ticker": "acme",
        "form_types": ["10-Q", "8-K"],
        "start_date": date(2023, 9, 1),
        "end_date": date(2024, 6, 30),
        "output_dir": output_dir,
    }
    values.update(overrides)
    return DownloadOptions(**values)


def names(directory: Path) -> list[str]:
    return sorted(p.name for p in directory.iterdir())


@pytest.fixture
def downloader(sec_client, renderer):
    return FilingDownloader(
        sec_client,
        renderer=renderer,
        merger=DocumentMerger(clock=lambda: datetime(2024, 6, 30, 12, 0)),
    )


class TestHelpers:
    """Tests for file naming helpers."""

    def test_sanitize_filename(self):
        """Test that path and shell characters are replaced."""
        assert sanitize_filename('ACME 8-K/A 01.03.2024.htm') == "ACME 8-K-A 01.03.2024.htm"
        assert sanitize_filename('a:b*c?d"e<f>g|h%i\\j') == "a-b-c-d-e-f-g-h-i-j"

    def test_unique_path(self, tmp_path):
        """Test that a taken name is suffixed with the accession number."""
        taken: set[Path] = set()
        first = unique_path(tmp_path / "ACME_8-K_2024-04-25.htm", taken, "0001-24-000001")
        second = unique_path(tmp_path / "ACME_8-K_2024-04-25.htm", taken, "0001-24-000002")

        assert first == tmp_path / "ACME_8-K_2024-04-25.htm"
        assert second == tmp_path / "ACME_8-K_2024-04-25_0001-24-000002.htm"


class TestDownloadOptions:
    """Tests for download option validation."""

    def test_at_most_four_form_types(self, tmp_path):
        """Test the form type limit."""
        with pytest.raises(ValidationError):
            make_options(tmp_path, form_types=["10-K", "10-Q", "8-K", "4", "S-1"])

    def test_duplicate_form_types_collapse(self, tmp_path):
        """Test that repeated form types count once."""
        options = make_options(tmp_path, form_types=["10-K", "10-k", " 10-K ", "10-Q", "8-K", "4"])
        assert options.form_types == ["10-K", "10-Q", "8-K", "4"]

    def test_requires_form_type(self, tmp_path):
        """Test that at least one form type is needed."""
        with pytest.raises(ValidationError):
            make_options(tmp_path, form_types=[" "])

    def test_start_after_end(self, tmp_path):
        """Test that an inverted date range is rejected."""
        with pytest.raises(ValidationError):
            make_options(tmp_path, start_date=date(2024, 6, 30), end_date=date(2024, 1, 1))


class TestFilingDownloader:
    """Tests for the download workflow against the in-memory EDGAR."""

    def test_downloads_and_converts(self, downloader, renderer, tmp_path):
        """Test one folder per form with converted documents."""
        result = downloader.run(make_options(tmp_path))

        assert (result.successful, result.total) == (4, 4)
        assert result.company_dir == tmp_path / "ACME"
        assert names(tmp_path / "ACME") == ["10-Q", "8-K", "8-K-A"]
        assert names(tmp_path / "ACME" / "10-Q") == ["ACME 10-Q 01.11.2023.pdf", "ACME 10-Q 02.05.2024.pdf"]
        assert names(tmp_path / "ACME" / "8-K-A") == ["ACME 8-K-A 01.03.2024.pdf"]
        assert len(renderer.rendered) == 4

    def test_keep_original(self, downloader, tmp_path):
        """Test that originals stay next to the PDFs when asked."""
        downloader.run(make_options(tmp_path, form_types=["10-K"], keep_original=True))

        assert names(tmp_path / "ACME" / "10-K") == ["ACME 10-K 15.02.2024.htm", "ACME 10-K 15.02.2024.pdf"]

    def test_without_conversion(self, downloader, renderer, tmp_path):
        """Test that documents are kept as downloaded."""
        downloader.run(make_options(tmp_path, form_types=["10-K"], convert_to_pdf=False))

        assert names(tmp_path / "ACME" / "10-K") == ["ACME 10-K 15.02.2024.htm"]
        assert renderer.rendered == []

    def test_text_documents_are_not_converted(self, downloader, renderer, tmp_path):
        """Test that only HTML documents are rendered."""
        downloader.run(make_options(tmp_path, form_types=["SC 13G"]))

        assert names(tmp_path / "ACME" / "SC_13G") == ["ACME SC13G 10.02.2024.txt"]
        assert renderer.rendered == []

    def test_failed_conversion_keeps_original(self, downloader, renderer, tmp_path):
        """Test that a document that cannot be rendered stays as HTML."""
        renderer.fail_for.add("ACME 10-K 15.02.2024.htm")
        downloader.run(make_options(tmp_path, form_types=["10-K"]))

        assert names(tmp_path / "ACME" / "10-K") == ["ACME 10-K 15.02.2024.htm"]

    def test_merge_by_type(self, downloader, renderer, tmp_path):
        """Test that each form folder is merged and only the merged file converted."""
        result = downloader.run(make_options(tmp_path, form_types=["10-Q"], merge_by_type=True))

        assert result.successful == 2
        assert names(tmp_path / "ACME" / "10-Q") == ["ACME_10-Q_MERGED_2024-06-30.pdf"]
        assert renderer.rendered == ["ACME_10-Q_MERGED_2024-06-30.html"]

    def test_merge_pairs_files_by_name(self, downloader, tmp_path):
        """Test that merged sections carry the filing matched from each file name."""
        downloader.run(make_options(tmp_path, form_types=["10-Q"], merge_by_type=True, convert_to_pdf=False))

        merged = tmp_path / "ACME" / "10-Q" / "ACME_10-Q_MERGED_2024-06-30.html"
        content = merged.read_text()
        assert names(tmp_path / "ACME" / "10-Q") == [merged.name]
        assert content.index("0001234567-24-000015") < content.index("0001234567-23-000040")
        assert "Unknown Date" not in content

    def test_failed_download_is_skipped(self, downloader, fake_edgar, tmp_path):
        """Test that one failing document does not stop the others."""
        fake_edgar.failing_documents.add("acme-20240331.htm")
        result = downloader.run(make_options(tmp_path))

        assert (result.successful, result.total) == (3, 4)
        assert names(tmp_path / "ACME" / "10-Q") == ["ACME 10-Q 01.11.2023.pdf"]

    def test_no_matching_filings(self, downloader, tmp_path):
        """Test that nothing is created when no filing matches."""
        result = downloader.run(make_options(tmp_path, form_types=["20-F"]))

        assert (result.successful, result.total) == (0, 0)
        assert list(tmp_path.iterdir()) == []

    def test_unknown_ticker(self, downloader, tmp_path):
        """Test that an unknown ticker fails before anything is downloaded."""
        with pytest.raises(CompanyNotFoundError):
            downloader.run(make_options(tmp_path, ticker="NOPE"))

    def test_numeric_cik(self, downloader, fake_edgar, tmp_path):
        """Test that a CIK is used directly and the folder named by ticker."""
        result = downloader.run(make_options(tmp_path, ticker="1234567", form_types=["10-K"]))

        assert result.company_dir == tmp_path / "ACME"
        assert "/files/company_tickers.json" not in fake_edgar.paths()

    def test_cancellation(self, downloader, tmp_path):
        """Test that a set cancel event stops the run."""
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(GenerationCancelled):
            downloader.run(make_options(tmp_path), cancel)

    def test_progress(self, sec_client, renderer, tmp_path):
        """Test that progress ends at 100% with a summary."""
        updates = []
        downloader = FilingDownloader(sec_client, renderer=renderer,
                                      progress=lambda fraction, message: updates.append((fraction, message)))
        downloader.run(make_options(tmp_path, form_types=["10-K"]))

        fractions = [fraction for fraction, _ in updates]
        assert fractions == sorted(fractions)
        assert updates[-1] == (1.0, "Successfully downloaded 1 of 1 filings")
