"""Alpha Vantage client for quotes, moving averages and daily price history."""

import logging
import math
from datetime import date, datetime, timezone
from typing import Any

import httpx

from sec_packager.errors import (
    DataNotFoundError,
    InvalidResponseError,
    MarketDataError,
    ProviderError,
    RateLimitExceededError,
)
from sec_packager.http import RateLimiter, RetryClient, build_http_client
from sec_packager.models import CompanyOverview, KeyMetrics, MarketSnapshot

log = logging.getLogger(__name__)

BASE_URL = "https://www.alphavantage.co/query"
SMA_PERIODS = (20, 50, 200)
AVERAGE_VOLUME_DAYS = 20


def _to_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        number = float(str(value).replace(',', ''))
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def _one_year_before(day: date) -> date:
    try:
        return day.replace(year=day.year - 1)
    except ValueError:
        # Feb 29
        return day.replace(year=day.year - 1, day=28)


def average_volume(daily: dict[str, dict[str, str]], days: int = AVERAGE_VOLUME_DAYS) -> int:
    """Mean volume of the most recent `days` entries, truncated to an int."""
    volumes = []
    for day in sorted(daily)[-days:]:
        try:
            volumes.append(int(daily[day]["5. volume"]))
        except (KeyError, TypeError, ValueError):
            continue
    return sum(volumes) // len(volumes) if volumes else 0


def _recent_values(daily: dict[str, dict[str, str]], field: str, today: date) -> list[float]:
    cutoff = _one_year_before(today)
    values = []
    for day, fields in daily.items():
        try:
            if date.fromisoformat(day) <= cutoff:
                continue
        except ValueError:
            continue
        value = _to_float(fields.get(field)) if isinstance(fields, dict) else None
        if value is not None:
            values.append(value)
    return values


def high_52_week(daily: dict[str, dict[str, str]], today: date) -> float:
    """Highest daily high strictly within the last year, 0 when there is none."""
    return max(_recent_values(daily, "2. high", today), default=0.0)


def low_52_week(daily: dict[str, dict[str, str]], today: date) -> float:
    """Lowest daily low strictly within the last year, 0 when there is none."""
    return min(_recent_values(daily, "3. low", today), default=0.0)


class MarketDataClient:
    """Client for the Alpha Vantage query endpoint.

    The free tier allows five calls per minute, so every call goes through
    one shared RateLimiter; a full snapshot costs five calls.
    """

    def __init__(
        self,
        api_key: str,
        http_client: httpx.Client | None = None,
        rate_limiter: RateLimiter | None = None,
        retry: RetryClient | None = None,
        base_url: str = BASE_URL,
    ):
        if not api_key or not api_key.strip():
            raise ValueError("API key cannot be empty")
        self._api_key = api_key.strip()
        self._http = http_client or build_http_client()
        self._limiter = rate_limiter or RateLimiter(5, period=60.0)
        self._retry = retry or RetryClient()
        self._base_url = base_url

    def _query(self, function: str, symbol: str, **params: Any) -> dict[str, Any]:
        query = {"function": function, "symbol": symbol, **params, "apikey": self._api_key}

        def send() -> httpx.Response:
            self._limiter.acquire()
            return self._http.get(self._base_url, params=query)

        response = self._retry.execute(send)
        try:
            data = response.json()
        except ValueError:
            data = None

        # Errors are reported in the body, sometimes with a 200 status
        if isinstance(data, dict):
            if "Error Message" in data:
                raise ProviderError(str(data["Error Message"]))
            throttled = data.get("Note") or data.get("Information")
            if throttled:
                raise RateLimitExceededError(str(throttled))
        response.raise_for_status()
        if not isinstance(data, dict):
            raise InvalidResponseError(f"Invalid response from Alpha Vantage for {function}")
        return data

    def fetch_quote(self, symbol: str) -> dict[str, str]:
        data = self._query("GLOBAL_QUOTE", symbol)
        quote = data.get("Global Quote")
        if not isinstance(quote, dict) or not quote:
            raise DataNotFoundError(f"No quote returned for {symbol}")
        return quote

    def fetch_sma(self, symbol: str, period: int) -> float:
        """
        Latest simple moving average of daily closes.

        Raises:
            DataNotFoundError: If the indicator series is empty
        """
        data = self._query("SMA", symbol, interval="daily", time_period=str(period), series_type="close")
        series = data.get("Technical Analysis: SMA")
        if isinstance(series, dict) and series:
            latest = series[max(series)]
            value = _to_float(latest.get("SMA")) if isinstance(latest, dict) else None
            if value is not None:
                return value
        raise DataNotFoundError(f"No {period}-day SMA for {symbol}")

    def fetch_daily_series(self, symbol: str) -> dict[str, dict[str, str]]:
        data = self._query("TIME_SERIES_DAILY", symbol, outputsize="full")
        series = data.get("Time Series (Daily)")
        if not isinstance(series, dict):
            raise DataNotFoundError(f"No daily series for {symbol}")
        return series

    def fetch_snapshot(self, symbol: str) -> MarketSnapshot:
        """
        Fetch a quote, the 20/50/200-day SMAs and the daily series.

        Only the quote is mandatory: a missing moving average or daily series
        leaves the derived fields at 0.
        """
        symbol = symbol.strip().upper()
        quote = self.fetch_quote(symbol)

        averages: dict[int, float] = {}
        for period in SMA_PERIODS:
            try:
                averages[period] = self.fetch_sma(symbol, period)
            except (MarketDataError, InvalidResponseError, httpx.HTTPError) as e:
                log.warning("Using 0 for %d-day SMA of %s: %s", period, symbol, e)
                averages[period] = 0.0

        try:
            daily = self.fetch_daily_series(symbol)
        except (MarketDataError, InvalidResponseError, httpx.HTTPError) as e:
            log.warning("Daily series unavailable for %s: %s", symbol, e)
            daily = {}

        now = datetime.now(timezone.utc)
        return MarketSnapshot(
            symbol=symbol,
            previous_close=_to_float(quote.get("08. previous close")) or 0.0,
            current_price=_to_float(quote.get("05. price")),
            average_volume_20d=average_volume(daily),
            moving_average_20=averages[20],
            moving_average_50=averages[50],
            moving_average_200=averages[200],
            high_52_week=high_52_week(daily, now.date()),
            low_52_week=low_52_week(daily, now.date()),
            as_of=now,
        )

    def fetch_overview(self, symbol: str) -> CompanyOverview:
        """Sector, industry and valuation metrics from the OVERVIEW function."""
        symbol = symbol.strip().upper()
        data = self._query("OVERVIEW", symbol)
        if not data:
            raise DataNotFoundError(f"No company overview for {symbol}")

        def text(key: str) -> str | None:
            value = data.get(key)
            return value if value not in (None, "", "None", "-") else None

        def number(key: str) -> float | None:
            return _to_float(text(key))

        return CompanyOverview(
            symbol=symbol,
            sector=text("Sector"),
            industry=text("Industry"),
            key_metrics=KeyMetrics(
                market_cap=number("MarketCapitalization"),
                pe_ratio=number("PERatio"),
                peg_ratio=number("PEGRatio"),
                price_to_book=number("PriceToBookRatio"),
            ),
        )

    def close(self) -> None:
        self._http.close()
