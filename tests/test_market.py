"""Tests for the Alpha Vantage market data client."""

from datetime import date, timedelta

import httpx
import pytest

from sec_packager.errors import (
    DataNotFoundError,
    InvalidResponseError,
    ProviderError,
    RateLimitExceededError,
)
from sec_packager.http import RateLimiter, RetryClient
from sec_packager.market import MarketDataClient, average_volume, high_52_week, low_52_week


def daily_bar(high: float, low: float, volume: int) -> dict[str, str]:
    return {
        "1. open": f"{low:.2f}",
        "2. high": f"{high:.2f}",
        "3. low": f"{low:.2f}",
        "4. close": f"{high:.2f}",
        "5. volume": str(volume),
    }


class FakeAlphaVantage:
    """MockTransport handler answering by `function` parameter."""

    def __init__(self):
        today = date.today()
        self.responses = {
            "GLOBAL_QUOTE": {"Global Quote": {
                "01. symbol": "ACME",
                "05. price": "101.50",
                "08. previous close": "100.00",
            }},
            "SMA:20": {"Technical Analysis: SMA": {
                "2024-06-27": {"SMA": "98.0000"},
                "2024-06-28": {"SMA": "99.5000"},
            }},
            "SMA:50": {"Technical Analysis: SMA": {"2024-06-28": {"SMA": "95.2500"}}},
            "SMA:200": {"Technical Analysis: SMA": {"2024-06-28": {"SMA": "90.1000"}}},
            "TIME_SERIES_DAILY": {"Time Series (Daily)": {
                (today - timedelta(days=3)).isoformat(): daily_bar(110.0, 100.0, 1000),
                (today - timedelta(days=120)).isoformat(): daily_bar(130.0, 80.0, 3000),
                (today - timedelta(days=400)).isoformat(): daily_bar(500.0, 5.0, 9000),
            }},
            "OVERVIEW": {
                "Symbol": "ACME",
                "Sector": "TECHNOLOGY",
                "Industry": "SOFTWARE",
                "MarketCapitalization": "2500000000",
                "PERatio": "25.4",
                "PEGRatio": "None",
                "PriceToBookRatio": "-",
            },
        }
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        function = request.url.params["function"]
        key = f"SMA:{request.url.params['time_period']}" if function == "SMA" else function
        body = self.responses.get(key, {})
        if isinstance(body, httpx.Response):
            return body
        return httpx.Response(200, json=body)


@pytest.fixture
def alpha_vantage():
    return FakeAlphaVantage()


@pytest.fixture
def market_client(alpha_vantage):
    client = MarketDataClient(
        "demo-key",
        http_client=httpx.Client(transport=httpx.MockTransport(alpha_vantage)),
        rate_limiter=RateLimiter(1000, period=1.0),
        retry=RetryClient(sleep=lambda seconds: None),
    )
    yield client
    client.close()


class TestSeriesStatistics:
    """Tests for statistics derived from the daily series."""

    def test_average_volume_uses_latest_twenty_days(self):
        """Test that only the most recent 20 sessions are averaged."""
        start = date(2024, 1, 1)
        daily = {
            (start + timedelta(days=i)).isoformat(): {"5. volume": str(100 if i < 5 else 200)}
            for i in range(25)
        }
        assert average_volume(daily) == 200

    def test_average_volume_truncates(self):
        """Test that the mean is truncated to an integer."""
        daily = {"2024-01-01": {"5. volume": "1"}, "2024-01-02": {"5. volume": "2"}}
        assert average_volume(daily) == 1

    def test_average_volume_empty(self):
        """Test that an empty series averages to 0."""
        assert average_volume({}) == 0

    def test_52_week_range_excludes_older_sessions(self):
        """Test that sessions older than a year are ignored."""
        today = date(2024, 6, 30)
        daily = {
            "2024-06-28": daily_bar(110.0, 100.0, 1),
            "2023-07-01": daily_bar(130.0, 80.0, 1),
            "2023-06-30": daily_bar(500.0, 5.0, 1),
        }
        assert high_52_week(daily, today) == 130.0
        assert low_52_week(daily, today) == 80.0

    def test_52_week_range_defaults_to_zero(self):
        """Test that an empty series yields 0 for both bounds."""
        assert high_52_week({}, date(2024, 6, 30)) == 0.0
        assert low_52_week({}, date(2024, 6, 30)) == 0.0


class TestMarketDataClient:
    """Tests for Alpha Vantage requests and error mapping."""

    def test_requires_api_key(self):
        """Test that an empty API key is rejected."""
        with pytest.raises(ValueError):
            MarketDataClient("  ")

    def test_fetch_snapshot(self, market_client, alpha_vantage):
        """Test a complete snapshot from five provider calls."""
        snapshot = market_client.fetch_snapshot("acme")

        assert snapshot.symbol == "ACME"
        assert snapshot.current_price == 101.5
        assert snapshot.previous_close == 100.0
        assert snapshot.moving_average_20 == 99.5
        assert snapshot.moving_average_50 == 95.25
        assert snapshot.moving_average_200 == 90.1
        assert snapshot.high_52_week == 130.0
        assert snapshot.low_52_week == 80.0
        assert snapshot.average_volume_20d == 4333
        assert len(alpha_vantage.requests) == 5
        assert all(r.url.params["apikey"] == "demo-key" for r in alpha_vantage.requests)

    def test_missing_moving_average_defaults_to_zero(self, market_client, alpha_vantage):
        """Test that a missing indicator does not fail the snapshot."""
        alpha_vantage.responses["SMA:200"] = {"Technical Analysis: SMA": {}}
        snapshot = market_client.fetch_snapshot("ACME")

        assert snapshot.moving_average_200 == 0.0
        assert snapshot.moving_average_20 == 99.5

    def test_missing_daily_series_defaults_to_zero(self, market_client, alpha_vantage):
        """Test that a missing daily series leaves derived fields at 0."""
        alpha_vantage.responses["TIME_SERIES_DAILY"] = {}
        snapshot = market_client.fetch_snapshot("ACME")

        assert snapshot.average_volume_20d == 0
        assert snapshot.high_52_week == 0.0

    def test_missing_quote_fails(self, market_client, alpha_vantage):
        """Test that the quote is required."""
        alpha_vantage.responses["GLOBAL_QUOTE"] = {"Global Quote": {}}
        with pytest.raises(DataNotFoundError):
            market_client.fetch_snapshot("ACME")

    def test_provider_error_message(self, market_client, alpha_vantage):
        """Test that a body error message becomes ProviderError."""
        alpha_vantage.responses["GLOBAL_QUOTE"] = {"Error Message": "Invalid API call."}
        with pytest.raises(ProviderError, match="Alpha Vantage API Error: Invalid API call."):
            market_client.fetch_quote("ACME")

    @pytest.mark.parametrize("key", ["Note", "Information"])
    def test_throttling(self, market_client, alpha_vantage, key):
        """Test that throttling notices become RateLimitExceededError."""
        alpha_vantage.responses["GLOBAL_QUOTE"] = {key: "Thank you for using Alpha Vantage! 5 calls per minute."}
        with pytest.raises(RateLimitExceededError):
            market_client.fetch_quote("ACME")

    def test_http_error_status(self, market_client, alpha_vantage):
        """Test that an error status without a body message propagates."""
        alpha_vantage.responses["GLOBAL_QUOTE"] = httpx.Response(503, text="unavailable")
        with pytest.raises(httpx.HTTPStatusError):
            market_client.fetch_quote("ACME")

    def test_non_object_body(self, market_client, alpha_vantage):
        """Test that a JSON array is rejected."""
        alpha_vantage.responses["GLOBAL_QUOTE"] = httpx.Response(200, json=[1, 2, 3])
        with pytest.raises(InvalidResponseError):
            market_client.fetch_quote("ACME")

    def test_fetch_overview(self, market_client):
        """Test sector, industry and metrics, with placeholders read as missing."""
        overview = market_client.fetch_overview("acme")

        assert overview.symbol == "ACME"
        assert overview.sector == "TECHNOLOGY"
        assert overview.industry == "SOFTWARE"
        assert overview.key_metrics.market_cap == 2_500_000_000
        assert overview.key_metrics.pe_ratio == 25.4
        assert overview.key_metrics.peg_ratio is None
        assert overview.key_metrics.price_to_book is None

    def test_empty_overview(self, market_client, alpha_vantage):
        """Test that an unknown symbol has no overview."""
        alpha_vantage.responses["OVERVIEW"] = {}
        with pytest.raises(DataNotFoundError):
            market_client.fetch_overview("ACME")
