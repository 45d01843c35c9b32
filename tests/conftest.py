"""Shared fixtures: fake HTTP layer, signing keys and sample reports."""

import gzip
import json

import pytest
import requests
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from finance_ingest.calculators.currency import CurrencyNormalizer, ExchangeRateCache
from finance_ingest.config import Settings
from finance_ingest.fetchers.exchange_rates import RateProvider
from finance_ingest.pipeline import Credentials


SAMPLE_HEADER = (
    "Transaction Date\tSettlement Date\tPartner Share Currency\t"
    "Extended Partner Share\tVendor Identifier"
)
SAMPLE_ROW = "01/15/2024\t02/05/2024\tEUR\t10.00\torg.acme.App"


def finance_report(*rows):
    """A finance detail report with the standard header and a summary footer."""
    return "\n".join([
        "Start Date\tEnd Date",
        "",
        SAMPLE_HEADER,
        *rows,
        "",
        "Country Of Sale\tPartner Share Currency\tQuantity",
        "US\tUSD\t1",
    ])


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, status_code=200, content=b"", json_body=None):
        self.status_code = status_code
        if json_body is not None:
            content = json.dumps(json_body).encode("utf-8")
        self.content = content
        self.text = content.decode("utf-8", errors="replace")

    @property
    def ok(self):
        return 200 <= self.status_code < 400

    def json(self):
        return json.loads(self.text)


class FakeHttp:
    """
    Routes requests.get calls to handlers by URL substring.

    Handlers take (url, params) and return a FakeResponse or raise a
    requests exception. Every call is recorded in `calls`.
    """

    def __init__(self):
        self.routes = []
        self.calls = []

    def add(self, url_part, handler):
        self.routes.append((url_part, handler))

    def get(self, url, params=None, headers=None, timeout=None, **kwargs):
        self.calls.append({"url": url, "params": params or {}, "headers": headers or {}, "timeout": timeout})
        for url_part, handler in self.routes:
            if url_part in url:
                return handler(url, params or {})
        raise requests.ConnectionError(f"No route for {url}")

    def urls(self, url_part=""):
        return [c["url"] for c in self.calls if url_part in c["url"]]


@pytest.fixture
def fake_http(monkeypatch):
    http = FakeHttp()
    monkeypatch.setattr(requests, "get", http.get)
    return http


def gzip_text(text):
    return gzip.compress(text.encode("utf-8"))


def report_response(text):
    return FakeResponse(200, content=gzip_text(text))


@pytest.fixture
def ec_private_key():
    key = ec.generate_private_key(ec.SECP256R1())
    pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")
    return key, pem


@pytest.fixture
def credentials(ec_private_key):
    _key, pem = ec_private_key
    return Credentials(private_key=pem, key_id="KEY123", issuer_id="issuer-uuid")


@pytest.fixture
def settings():
    return Settings(pipeline_deadline=30.0, max_workers=8)


@pytest.fixture
def rate_cache():
    return ExchangeRateCache()


@pytest.fixture
def eur_provider():
    """A single provider that quotes EUR at 1.10 USD on any date."""
    return RateProvider(
        name="stub.rates",
        build_url=lambda currency, date, ref: f"https://stub.rates/{date}?from={currency}&to={ref}",
        parse=lambda data, currency, ref: data.get("rates", {}).get(ref),
    )


@pytest.fixture
def stub_rates(fake_http):
    """Serve 1.10 for EUR from stub.rates and count the calls."""
    def handler(url, params):
        if "from=EUR" in url:
            return FakeResponse(200, json_body={"rates": {"USD": 1.10}})
        return FakeResponse(404, json_body={"message": "not found"})

    fake_http.add("stub.rates", handler)
    return fake_http


@pytest.fixture
def normalizer(eur_provider, rate_cache):
    return CurrencyNormalizer(reference_currency="USD", providers=[eur_provider], cache=rate_cache)
