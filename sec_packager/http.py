"""Request gating shared by the provider clients.

`RateLimiter` bounds how many requests may start inside a sliding window and
`RetryClient` re-runs a request when the network (not the server) failed.
"""

import logging
import threading
import time
from collections import deque
from typing import Callable, TypeVar

import httpx

from sec_packager.errors import RetriesExhaustedError

log = logging.getLogger(__name__)

T = TypeVar("T")

REQUEST_TIMEOUT = httpx.Timeout(30.0)
DOCUMENT_TIMEOUT_SECONDS = 300.0
DEFAULT_MAX_RETRIES = 3
BACKOFF_STEP_SECONDS = 2.0

# Failures worth another attempt: the request never got a response
TRANSIENT_ERRORS = (httpx.TimeoutException, httpx.NetworkError)


class RateLimiter:
    """Sliding-window limiter: at most `max_requests` per `period` seconds.

    A single instance may be shared by several threads; the
    evict/wait/record sequence runs under one lock so callers are admitted
    in arrival order and can never overshoot the limit together.
    """

    def __init__(
        self,
        max_requests: int,
        period: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_requests <= 0:
            raise ValueError("max_requests must be greater than 0")
        if period <= 0:
            raise ValueError("period must be greater than 0")
        self.max_requests = max_requests
        self.period = period
        self._clock = clock
        self._sleep = sleep
        self._issued: deque[float] = deque()
        self._lock = threading.Lock()

    def acquire(self) -> None:
        """Block until another request may be issued, then record it."""
        with self._lock:
            self._evict(self._clock())
            while len(self._issued) >= self.max_requests:
                wait = self._issued[0] + self.period - self._clock()
                if wait > 0:
                    log.debug("Rate limit reached (%d/%.0fs), waiting %.2fs",
                              self.max_requests, self.period, wait)
                    self._sleep(wait)
                self._evict(self._clock())
            self._issued.append(self._clock())

    def _evict(self, now: float) -> None:
        # A request issued exactly `period` ago has left the window
        cutoff = now - self.period
        while self._issued and self._issued[0] <= cutoff:
            self._issued.popleft()


class RetryClient:
    """Runs a request-producing callable with linear backoff on network failures."""

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff: float = BACKOFF_STEP_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_retries <= 0:
            raise ValueError("max_retries must be greater than 0")
        self.max_retries = max_retries
        self.backoff = backoff
        self._sleep = sleep

    def execute(self, operation: Callable[[], T]) -> T:
        """
        Call `operation` until it succeeds or retries run out.

        Only timeouts and lost connections are retried; any other exception
        (including httpx.HTTPStatusError) propagates from the first attempt.

        Raises:
            The last transient error once every attempt failed.
            RetriesExhaustedError: If no attempt ever ran.
        """
        last_error: Exception | None = None
        for attempt in range(1, self.max_retries + 1):
            try:
                return operation()
            except TRANSIENT_ERRORS as e:
                last_error = e
                if attempt < self.max_retries:
                    delay = attempt * self.backoff
                    log.warning("Transient network error (%s), retry %d/%d in %.0fs",
                                e, attempt + 1, self.max_retries, delay)
                    self._sleep(delay)
        if last_error is not None:
            raise last_error
        raise RetriesExhaustedError("Request retries exhausted")


def build_http_client(user_agent: str | None = None, **kwargs) -> httpx.Client:
    """Create the shared httpx client with the default request timeout."""
    headers = kwargs.pop("headers", {})
    if user_agent:
        headers.setdefault("User-Agent", user_agent)
    return httpx.Client(headers=headers, timeout=kwargs.pop("timeout", REQUEST_TIMEOUT),
                        follow_redirects=True, **kwargs)
