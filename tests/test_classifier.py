"""Tests for the filing classifier."""

from datetime import date, timedelta

import pytest

from sec_packager.classifier import (
    assign_categories,
    classify,
    is_major_shareholder_form,
    is_proxy_form,
    months_before,
)
from sec_packager.client import SECClient
from sec_packager.models import Filing, FilingCategory, FilingHistory

AS_OF = date(2024, 6, 30)


def make_filing(form: str, filed: date, n: int = 0) -> Filing:
    return Filing(
        form=form,
        filing_date=filed,
        accession_number=f"0000000000-{filed:%y}-{n:06d}",
        primary_document=f"{form.replace(' ', '').replace('/', '')}-{filed.isoformat()}-{n}.htm",
    )


@pytest.fixture
def acme_history(submissions_data):
    return FilingHistory(
        cik="0001234567",
        company_name="Acme Corp",
        filings=SECClient._parse_recent_filings(submissions_data["filings"]["recent"]),
    )


class TestHelpers:
    """Tests for date arithmetic and form predicates."""

    def test_months_before(self):
        """Test calendar-month subtraction."""
        assert months_before(date(2024, 6, 30), 12) == date(2023, 6, 30)
        assert months_before(date(2024, 6, 30), 24) == date(2022, 6, 30)
        assert months_before(date(2024, 1, 15), 1) == date(2023, 12, 15)

    def test_months_before_clamps_to_month_end(self):
        """Test that missing days fall back to the last day of the month."""
        assert months_before(date(2024, 3, 31), 1) == date(2024, 2, 29)
        assert months_before(date(2024, 2, 29), 12) == date(2023, 2, 28)

    def test_major_shareholder_forms(self):
        """Test 13D/13G detection with the activist amendment excluded."""
        assert is_major_shareholder_form("SC 13G")
        assert is_major_shareholder_form("SC 13G/A")
        assert is_major_shareholder_form("SC 13D")
        assert not is_major_shareholder_form("SC 13D/A")
        assert not is_major_shareholder_form("10-K")

    def test_proxy_forms(self):
        """Test proxy detection excluding fund forms."""
        assert is_proxy_form("DEF 14A")
        assert is_proxy_form("DEFA14A")
        assert not is_proxy_form("N-14A")
        assert not is_proxy_form("8-K")


class TestClassify:
    """Tests for slot assignment, retention windows and caps."""

    def test_acme_history(self, acme_history):
        """Test the categorized view of a realistic history."""
        result = classify(acme_history.filings, AS_OF)

        assert result.latest_ten_k.filing_date == date(2024, 2, 15)
        assert [f.filing_date for f in result.recent_ten_qs] == [date(2024, 5, 2), date(2023, 11, 1)]
        assert [f.form for f in result.recent_eight_ks] == ["8-K"]
        assert result.registration_statements == []
        assert [f.form for f in result.prospectus_supplements] == ["424B5"]
        assert [f.form for f in result.insider_transactions] == ["4"]
        assert [f.form for f in result.major_shareholder_filings] == ["SC 13G"]
        assert result.latest_proxy_statement.form == "DEF 14A"
        assert [f.form for f in result.activist_amendments] == ["SC 13D/A"]
        assert result.total_count == 9

    def test_by_category_order_and_contents(self, acme_history):
        """Test grouping of slots into categories in download order."""
        grouped = classify(acme_history.filings, AS_OF).by_category()

        assert list(grouped) == list(FilingCategory)
        assert [f.form for f in grouped[FilingCategory.FINANCIALS]] == ["10-K", "10-Q", "10-Q"]
        assert [f.form for f in grouped[FilingCategory.GOVERNANCE]] == ["DEF 14A", "SC 13D/A"]

    def test_window_boundary_is_inclusive(self):
        """Test that a filing exactly N months old is kept and one a day older is not."""
        boundary = make_filing("8-K", date(2023, 6, 30), 1)
        too_old = make_filing("8-K", date(2023, 6, 29), 2)

        result = classify([boundary, too_old], AS_OF)
        assert result.recent_eight_ks == [boundary]

    def test_two_year_window(self):
        """Test the capital structure retention window."""
        inside = make_filing("S-3", date(2022, 6, 30), 1)
        outside = make_filing("S-1", date(2022, 6, 29), 2)
        amendment = make_filing("S-3/A", date(2023, 1, 5), 3)

        result = classify([inside, outside, amendment], AS_OF)
        assert result.registration_statements == [amendment, inside]

    def test_caps(self):
        """Test that slots keep only their newest filings."""
        eight_ks = [make_filing("8-K", AS_OF - timedelta(days=i), i) for i in range(15)]
        forms = [make_filing("4", AS_OF - timedelta(days=i), 100 + i) for i in range(25)]

        result = classify(eight_ks + forms, AS_OF)

        assert len(result.recent_eight_ks) == 10
        assert result.recent_eight_ks[0].filing_date == AS_OF
        assert len(result.insider_transactions) == 20

    def test_financials_have_no_window(self):
        """Test that old annual and quarterly reports are still selected."""
        old_ten_k = make_filing("10-K", date(2015, 3, 1), 1)
        result = classify([old_ten_k], AS_OF)
        assert result.latest_ten_k == old_ten_k

    def test_unmatched_forms_are_dropped(self):
        """Test that forms outside every slot are not classified."""
        result = classify([make_filing("8-K/A", AS_OF), make_filing("4/A", AS_OF, 1),
                           make_filing("CORRESP", AS_OF, 2)], AS_OF)
        assert result.total_count == 0

    def test_empty_history(self):
        """Test that nothing in gives nothing out."""
        result = classify([], AS_OF)
        assert result.latest_ten_k is None
        assert result.latest_proxy_statement is None
        assert result.total_count == 0


class TestPartition:
    """Tests for the one-category-per-filing rule."""

    def test_each_filing_in_one_category(self, acme_history):
        """Test that no filing is assigned twice."""
        assigned = assign_categories(acme_history.filings)
        keys = [f.key for slots in assigned.values() for filings in slots.values() for f in filings]
        assert len(keys) == len(set(keys))

    def test_activist_amendment_only_in_governance(self):
        """Test that SC 13D/A reaches governance and SC 13D stays in ownership."""
        amendment = make_filing("SC 13D/A", AS_OF, 1)
        original = make_filing("SC 13D", AS_OF, 2)

        assigned = assign_categories([amendment, original])

        assert assigned[FilingCategory.GOVERNANCE]["activist_amendments"] == [amendment]
        assert assigned[FilingCategory.OWNERSHIP]["major_shareholder_filings"] == [original]

    def test_duplicates_kept_once(self):
        """Test that repeated filings are classified once."""
        filing = make_filing("10-Q", AS_OF, 1)
        result = classify([filing, filing], AS_OF)
        assert result.recent_ten_qs == [filing]
