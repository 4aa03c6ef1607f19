"""Exception hierarchy shared by the clients and workflows."""


class PackagerError(Exception):
    """Base class for every error raised by sec_packager."""


class CompanyNotFoundError(PackagerError, ValueError):
    """Ticker or CIK could not be resolved by the filings registry."""


class InvalidResponseError(PackagerError, ValueError):
    """A provider returned a body that does not have the expected structure."""


class RetriesExhaustedError(PackagerError):
    """Raised when a retried operation never produced a result or an error."""


class MarketDataError(PackagerError):
    """Base class for market data provider failures."""


class ProviderError(MarketDataError):
    """The provider reported an error in the response body."""

    def __init__(self, message: str):
        super().__init__(f"Alpha Vantage API Error: {message}")
        self.provider_message = message


class RateLimitExceededError(MarketDataError):
    """The provider throttled the request."""


class DataNotFoundError(MarketDataError):
    """Required data not found in response."""


class ShortInterestError(PackagerError):
    """Short interest provider returned a hard error."""


class AuthenticationError(ShortInterestError):
    """Token request was rejected or returned a malformed token."""


class GenerationCancelled(PackagerError):
    """The caller cancelled a running workflow."""


class DocumentTimeoutError(PackagerError):
    """A document download ran past its overall time bound."""
