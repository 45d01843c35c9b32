"""Historical exchange rate fetching with multiple provider fallbacks."""

import logging
from dataclasses import dataclass
from typing import Any, Callable

import requests

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateProvider:
    """
    One exchange-rate API.

    build_url(currency, iso_date, reference) returns the request URL.
    parse(data, currency, reference) returns units of the reference currency
    per one unit of `currency`, or None if the response lacks the currency.
    """
    name: str
    build_url: Callable[[str, str, str], str]
    parse: Callable[[Any, str, str], float | None]


def _positive(value: Any) -> float | None:
    try:
        rate = float(value)
    except (TypeError, ValueError):
        return None
    if rate <= 0 or rate != rate:  # NaN check
        return None
    return rate


def _inverse(value: Any) -> float | None:
    """Providers quoted per reference unit give currency-per-reference; invert it."""
    rate = _positive(value)
    return 1.0 / rate if rate else None


def _rates(data: Any) -> dict:
    if isinstance(data, dict) and isinstance(data.get("rates"), dict):
        return data["rates"]
    return {}


# exchangerate.host returns { rates: { EUR: 0.92, ... } } for base=USD
EXCHANGERATE_HOST = RateProvider(
    name="exchangerate.host",
    build_url=lambda currency, date, ref: f"https://api.exchangerate.host/{date}?base={ref}",
    parse=lambda data, currency, ref: _inverse(_rates(data).get(currency)),
)

# frankfurter.app returns { rates: { USD: 1.08 } } for from=EUR&to=USD
FRANKFURTER = RateProvider(
    name="frankfurter.app",
    build_url=lambda currency, date, ref: f"https://api.frankfurter.app/{date}?from={currency}&to={ref}",
    parse=lambda data, currency, ref: _positive(_rates(data).get(ref)),
)

# exchangerate-api.com returns { rates: { EUR: 0.92, ... } } relative to the base
EXCHANGERATE_API = RateProvider(
    name="exchangerate-api.com",
    build_url=lambda currency, date, ref: f"https://api.exchangerate-api.com/v4/historical/{date}?base={ref}",
    parse=lambda data, currency, ref: _inverse(_rates(data).get(currency)),
)

# Order matters - most reliable/cheapest first
DEFAULT_PROVIDERS = [EXCHANGERATE_HOST, FRANKFURTER, EXCHANGERATE_API]


def fetch_rate(
    provider: RateProvider,
    currency: str,
    iso_date: str,
    reference: str = "USD",
    timeout: float = 5.0,
) -> float | None:
    """
    Ask a single provider for a historical rate.

    Args:
        provider: The provider to query
        currency: ISO currency code to convert from (upper case)
        iso_date: Date in YYYY-MM-DD format
        reference: ISO currency code to convert to
        timeout: Request timeout in seconds

    Returns:
        Reference-currency units per one unit of `currency`, or None on any failure
    """
    url = provider.build_url(currency, iso_date, reference)

    try:
        response = requests.get(url, timeout=timeout)
    except requests.RequestException as e:
        logger.warning("Error fetching from %s for %s on %s: %s", provider.name, currency, iso_date, e)
        return None

    if not response.ok:
        logger.warning(
            "%s failed for %s (status: %s), trying next provider",
            provider.name, iso_date, response.status_code,
        )
        return None

    try:
        data = response.json()
    except ValueError:
        logger.warning("%s returned invalid JSON for %s", provider.name, iso_date)
        return None

    rate = provider.parse(data, currency, reference)
    if rate is None:
        logger.warning("Currency %s not found in %s for %s", currency, provider.name, iso_date)
    return rate


def lookup_rate(
    providers: list[RateProvider],
    currency: str,
    iso_date: str,
    reference: str = "USD",
    timeout: float = 5.0,
) -> tuple[float, str] | None:
    """
    Try providers in order and stop at the first that returns a rate.

    Returns:
        (rate, provider name), or None if every provider failed
    """
    for provider in providers:
        rate = fetch_rate(provider, currency, iso_date, reference=reference, timeout=timeout)
        if rate is not None:
            logger.info("Exchange rate for %s on %s from %s: %s", currency, iso_date, provider.name, rate)
            return rate, provider.name
    return None
