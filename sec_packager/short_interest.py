"""FINRA short interest client.

With API credentials, records come from the FINRA Query API behind an OAuth
client-credentials token. Without them, the client falls back to the public
daily Reg SHO short-volume files, which carry less information.
"""

import base64
import calendar
import logging
import threading
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable

import httpx

from sec_packager.errors import AuthenticationError, ShortInterestError
from sec_packager.http import RetryClient, build_http_client
from sec_packager.models import AccessToken, ShortInterestRecord

log = logging.getLogger(__name__)

TOKEN_URL = "https://ews.fip.finra.org/fip/rest/ews/oauth2/access_token"
DATA_ENDPOINTS = (
    "https://api.finra.org/data/group/otcMarket/name/consolidatedShortInterest",
    "https://api.finra.org/data/group/otcMarket/name/equityShortInterest",
)
LEGACY_FEED_URLS = (
    "https://cdn.finra.org/equity/regsho/daily/CNMSshvol{date}.txt",
    "https://regsho.finra.org/CNMSshvol{date}.txt",
)
LEGACY_MONTHS = 3
RECORD_LIMIT = 5

_FIELDS = {
    "symbol": ("symbol", "symbolCode", "issueSymbolIdentifier"),
    "short_interest_shares": ("shortInterest", "shortInterestShares", "currentShortPositionQuantity"),
    "short_interest_ratio": ("shortInterestRatio",),
    "percent_of_float": ("percentOfFloat", "shortPercentOfFloat"),
    "days_to_cover": ("daysToCover", "daysToCoverQuantity"),
    "previous_short_interest_shares": ("previousShortInterest", "previousShortInterestShares",
                                       "previousShortPositionQuantity"),
    "change_percent": ("changePercent", "changePreviousPercent"),
    "record_date": ("recordDate", "tradeReportDate", "reportDate"),
    "settlement_date": ("settlementDate",),
}


def parse_number(value: Any) -> float:
    """Accept native numbers or numeric strings with thousands separators; 0 otherwise."""
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.replace(',', '').strip())
        except ValueError:
            return 0.0
    return 0.0


def parse_date(value: Any) -> date | None:
    if not isinstance(value, str) or not value.strip():
        return None
    value = value.strip()
    try:
        if len(value) == 8 and value.isdigit():
            return datetime.strptime(value, "%Y%m%d").date()
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def _pick(record: dict[str, Any], field: str) -> Any:
    for key in _FIELDS[field]:
        if key in record and record[key] is not None:
            return record[key]
    return None


def decode_records(payload: Any) -> list[dict[str, Any]]:
    """
    Normalize the three response shapes to a list of records.

    Shapes are tried in order: a bare array, an object wrapping the array
    under "data" or "records", and finally a single record object.
    """
    if isinstance(payload, list):
        return [r for r in payload if isinstance(r, dict)]
    if isinstance(payload, dict):
        for key in ("data", "records"):
            if isinstance(payload.get(key), list):
                return [r for r in payload[key] if isinstance(r, dict)]
        return [payload]
    return []


def record_from_api(raw: dict[str, Any], symbol: str) -> ShortInterestRecord | None:
    """Build a record from one API row; None when the row carries no date at all."""
    settlement = parse_date(_pick(raw, "settlement_date"))
    record_date = parse_date(_pick(raw, "record_date"))
    if record_date is None:
        if settlement is None:
            log.warning("Skipping %s short interest row without a record or settlement date", symbol)
            return None
        record_date = settlement - timedelta(days=2)

    return ShortInterestRecord(
        symbol=symbol,
        short_interest_shares=int(parse_number(_pick(raw, "short_interest_shares"))),
        short_interest_ratio=parse_number(_pick(raw, "short_interest_ratio")),
        percent_of_float=parse_number(_pick(raw, "percent_of_float")),
        days_to_cover=parse_number(_pick(raw, "days_to_cover")),
        previous_short_interest_shares=int(parse_number(_pick(raw, "previous_short_interest_shares"))),
        change_percent=parse_number(_pick(raw, "change_percent")),
        record_date=record_date,
        settlement_date=settlement,
    )


def legacy_feed_dates(today: date, months: int = LEGACY_MONTHS) -> list[date]:
    """Mid-month and month-end dates of the last `months` months that are already past."""
    dates = []
    year, month = today.year, today.month
    for _ in range(months):
        last_day = calendar.monthrange(year, month)[1]
        for day in (15, last_day):
            candidate = date(year, month, day)
            if candidate < today:
                dates.append(candidate)
        year, month = (year - 1, 12) if month == 1 else (year, month - 1)
    return sorted(set(dates), reverse=True)


def parse_legacy_feed(content: str, symbol: str, record_date: date) -> ShortInterestRecord | None:
    """Find `symbol` in a pipe-delimited Date|Symbol|ShortVolume|TotalVolume|Market file."""
    for line in content.splitlines():
        fields = line.split('|')
        if len(fields) < 4 or fields[1] != symbol:
            continue
        try:
            short_volume = int(fields[2].replace(',', '').split('.')[0])
            total_volume = int(fields[3].replace(',', '').split('.')[0])
        except ValueError:
            continue

        return ShortInterestRecord(
            symbol=symbol,
            short_interest_shares=short_volume,
            short_interest_ratio=short_volume / total_volume if total_volume else 0.0,
            record_date=record_date,
        )
    return None


class ShortInterestClient:
    """Fetches the latest short interest record for a symbol."""

    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        http_client: httpx.Client | None = None,
        retry: RetryClient | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        token_url: str = TOKEN_URL,
        data_endpoints: tuple[str, ...] = DATA_ENDPOINTS,
        legacy_urls: tuple[str, ...] = LEGACY_FEED_URLS,
    ):
        self.client_id = (client_id or '').strip() or None
        self.client_secret = (client_secret or '').strip() or None
        self._http = http_client or build_http_client()
        self._retry = retry or RetryClient()
        self._clock = clock
        self._token_url = token_url
        self._data_endpoints = data_endpoints
        self._legacy_urls = legacy_urls
        self._tokens: dict[tuple[str, str], AccessToken] = {}
        self._token_lock = threading.Lock()

    @property
    def has_credentials(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def fetch_short_interest(self, symbol: str) -> ShortInterestRecord | None:
        """
        Latest record for `symbol`, or None when no source has it.

        Raises:
            AuthenticationError: If the token request is rejected
            ShortInterestError: If a data endpoint answers with a hard error
        """
        symbol = symbol.strip().upper()
        if self.has_credentials:
            return self.fetch_from_api(symbol)
        log.info("No FINRA credentials, using the daily short volume files")
        return self.fetch_legacy(symbol)

    # OAuth

    def get_access_token(self) -> str:
        """Return a cached token, requesting a new one within 60s of expiry."""
        if not self.has_credentials:
            raise AuthenticationError("FINRA client credentials are not configured")

        key = (self.client_id, self.client_secret)
        with self._token_lock:
            token = self._tokens.get(key)
            if token is None or not token.is_valid(self._clock()):
                token = self._request_token()
                self._tokens[key] = token
            return token.value

    def invalidate_token(self) -> None:
        with self._token_lock:
            self._tokens.pop((self.client_id, self.client_secret), None)

    def _request_token(self) -> AccessToken:
        credentials = base64.b64encode(f"{self.client_id}:{self.client_secret}".encode()).decode()
        headers = {"Authorization": f"Basic {credentials}", "Accept": "application/json"}

        requested_at = self._clock()
        response = self._retry.execute(lambda: self._http.post(
            self._token_url, params={"grant_type": "client_credentials"}, headers=headers,
        ))
        if response.status_code == 401:
            raise AuthenticationError("FINRA rejected the client credentials (HTTP 401)")
        if response.status_code != 200:
            raise AuthenticationError(f"FINRA token request failed: HTTP {response.status_code}")

        try:
            body = response.json()
            value = body["access_token"]
            expires_in = float(body["expires_in"])
        except (ValueError, KeyError, TypeError) as e:
            raise AuthenticationError("Malformed FINRA token response") from e
        if not isinstance(value, str) or not value:
            raise AuthenticationError("Malformed FINRA token response")

        log.debug("Obtained FINRA access token valid for %.0fs", expires_in)
        return AccessToken(value=value, expires_at=requested_at + timedelta(seconds=expires_in))

    # Query API

    def fetch_from_api(self, symbol: str) -> ShortInterestRecord | None:
        """Try each data endpoint in order; the first non-404 answer decides."""
        for endpoint in self._data_endpoints:
            headers = {"Authorization": f"Bearer {self.get_access_token()}", "Accept": "application/json"}
            response = self._retry.execute(lambda: self._http.get(
                endpoint, params={"symbol": symbol, "limit": RECORD_LIMIT}, headers=headers,
            ))

            if response.status_code == 404:
                log.debug("No short interest for %s at %s", symbol, endpoint)
                continue
            if response.status_code == 401:
                self.invalidate_token()
                raise AuthenticationError("FINRA rejected the access token (HTTP 401)")
            if response.status_code != 200:
                raise ShortInterestError(f"FINRA request failed: HTTP {response.status_code}")

            try:
                payload = response.json()
            except ValueError as e:
                raise ShortInterestError("FINRA returned invalid JSON") from e

            for raw in decode_records(payload):
                if str(_pick(raw, "symbol") or '').upper() != symbol:
                    continue
                record = record_from_api(raw, symbol)
                if record is not None:
                    return record
            return None
        return None

    # Legacy files

    def fetch_legacy(self, symbol: str) -> ShortInterestRecord | None:
        """Scan recent daily short volume files, newest first."""
        for feed_date in legacy_feed_dates(self._clock().date()):
            content = self._fetch_legacy_file(feed_date)
            if content is None:
                continue
            record = parse_legacy_feed(content, symbol, feed_date)
            if record is not None:
                log.info("Found short volume for %s on %s", symbol, feed_date.isoformat())
                return record

        log.info("No short interest data found for %s", symbol)
        return None

    def _fetch_legacy_file(self, feed_date: date) -> str | None:
        stamp = feed_date.strftime("%Y%m%d")
        for template in self._legacy_urls:
            url = template.format(date=stamp)
            try:
                response = self._retry.execute(lambda: self._http.get(url))
            except httpx.TransportError as e:
                log.warning("Failed to fetch %s: %s", url, e)
                continue
            if response.status_code == 200:
                return response.text
            log.debug("%s answered HTTP %d", url, response.status_code)
        return None

    def close(self) -> None:
        self._http.close()
