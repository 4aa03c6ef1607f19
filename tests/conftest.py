"""Shared fixtures: an in-memory EDGAR and clients wired to it."""

import json
from pathlib import Path

import httpx
import pytest

from sec_packager.client import SECClient
from sec_packager.http import RateLimiter, RetryClient

FIXTURES_DIR = Path(__file__).parent / "fixtures"


def load_fixture(name: str):
    with open(FIXTURES_DIR / name, 'r') as f:
        return json.load(f)


class FakeEdgar:
    """MockTransport handler serving the ticker table, submissions and archive documents."""

    def __init__(self, companies: dict, submissions: dict[str, dict]):
        self.companies = companies
        self.submissions = submissions
        self.failing_documents: set[str] = set()
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/files/company_tickers.json":
            return httpx.Response(200, json=self.companies)

        if path.startswith("/submissions/CIK") and path.endswith(".json"):
            cik = path[len("/submissions/CIK"):-len(".json")]
            if cik in self.submissions:
                return httpx.Response(200, json=self.submissions[cik])
            return httpx.Response(404)

        if path.startswith("/Archives/edgar/data/"):
            name = path.rsplit("/", 1)[-1]
            if name in self.failing_documents:
                return httpx.Response(500)
            if name.endswith(".txt"):
                return httpx.Response(200, text=f"PLAIN TEXT FILING {name}")
            return httpx.Response(
                200,
                text=f"<html><head><title>{name}</title></head><body><p>Document {name}</p></body></html>",
            )

        return httpx.Response(404)

    def paths(self) -> list[str]:
        return [request.url.path for request in self.requests]


class FakeRenderer:
    """Renderer that writes a stub PDF, or fails for chosen file names."""

    def __init__(self):
        self.rendered: list[str] = []
        self.fail_for: set[str] = set()

    def render(self, source: Path, target: Path) -> bool:
        self.rendered.append(source.name)
        if source.name in self.fail_for:
            return False
        target.write_bytes(b"%PDF-1.4 stub")
        return True


@pytest.fixture
def companies_data():
    """Load company ticker data from fixture."""
    return load_fixture("company_tickers.json")


@pytest.fixture
def submissions_data():
    """Load the ACME submissions document from fixture."""
    return load_fixture("submissions_acme.json")


@pytest.fixture
def fake_edgar(companies_data, submissions_data):
    return FakeEdgar(companies_data, {"0001234567": submissions_data})


@pytest.fixture
def no_retry_wait():
    return RetryClient(sleep=lambda seconds: None)


@pytest.fixture
def sec_client(fake_edgar, no_retry_wait):
    """SECClient backed by the in-memory EDGAR, without rate limiting delays."""
    client = SECClient(
        user_agent="Test Agent test@example.com",
        http_client=httpx.Client(transport=httpx.MockTransport(fake_edgar)),
        rate_limiter=RateLimiter(1000, period=1.0),
        retry=no_retry_wait,
    )
    yield client
    client.close()


@pytest.fixture
def renderer():
    return FakeRenderer()
