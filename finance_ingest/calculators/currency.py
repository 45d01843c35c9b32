"""
Currency normalization to a single reference currency.

Conversion order for a non-reference amount:
1. Cached rate for (currency, date)
2. Exchange-rate providers, in priority order, first success wins and is cached
3. Static approximate rates
4. Parity (1.0) for currencies missing even from the static table

Steps 3 and 4 are recorded as normalization_fallback diagnostics, since the
static table is only an approximation of the historical rate.
"""

import logging
import re
import threading

from finance_ingest.fetchers.exchange_rates import DEFAULT_PROVIDERS, RateProvider, lookup_rate
from finance_ingest.models.report import NORMALIZATION_FALLBACK, Diagnostic

logger = logging.getLogger(__name__)

_NON_NUMERIC = re.compile(r"[^0-9.\-]")

# Approximate USD value of one unit of each currency
FALLBACK_RATES_USD = {
    "USD": 1.0,
    "CNY": 0.14,
    "JPY": 0.0067,
    "GBP": 1.27,
    "EUR": 1.08,
    "AUD": 0.66,
    "CAD": 0.73,
    "KRW": 0.00075,
    "INR": 0.012,
    "BRL": 0.19,
    "MXN": 0.059,
    "TWD": 0.031,
    "HKD": 0.128,
    "SGD": 0.74,
    "THB": 0.027,
    "MYR": 0.21,
    "PHP": 0.018,
    "IDR": 0.000064,
    "VND": 0.000041,
    "NZD": 0.61,
    "ZAR": 0.054,
    "AED": 0.27,
    "SAR": 0.27,
    "ILS": 0.27,
    "CHF": 1.11,
    "SEK": 0.095,
    "NOK": 0.093,
    "DKK": 0.14,
    "PLN": 0.25,
    "TRY": 0.031,
    "RUB": 0.011,
    "CZK": 0.043,
    "HUF": 0.0028,
    "RON": 0.22,
    "CLP": 0.0011,
    "ARS": 0.0012,
    "COP": 0.00025,
    "PEN": 0.27,
    "VES": 0.000028,
}


def parse_amount(amount) -> float:
    """
    Parse a report amount, keeping only digits, sign and decimal point.

    Malformed or empty values parse to 0.0. That includes values with more than
    one decimal point: "1.2.3" is 0.0, not its numeric prefix 1.2.
    """
    if amount is None:
        return 0.0
    if isinstance(amount, (int, float)):
        value = float(amount)
    else:
        cleaned = _NON_NUMERIC.sub("", str(amount))
        try:
            value = float(cleaned)
        except ValueError:
            return 0.0
    if value != value:  # NaN
        return 0.0
    return value


class ExchangeRateCache:
    """Thread-safe (currency, date) -> rate map. Entries never expire."""

    def __init__(self):
        self._rates: dict[tuple[str, str], float] = {}
        self._lock = threading.Lock()

    def get(self, currency: str, iso_date: str) -> float | None:
        with self._lock:
            return self._rates.get((currency, iso_date))

    def set(self, currency: str, iso_date: str, rate: float) -> None:
        # Last write wins; concurrent lookups of the same date agree anyway
        with self._lock:
            self._rates[(currency, iso_date)] = rate

    def __len__(self) -> int:
        with self._lock:
            return len(self._rates)

    def __contains__(self, key: tuple[str, str]) -> bool:
        with self._lock:
            return key in self._rates

    def clear(self) -> None:
        with self._lock:
            self._rates.clear()


class CurrencyNormalizer:
    """Converts amounts into the reference currency."""

    def __init__(
        self,
        reference_currency: str = "USD",
        providers: list[RateProvider] | None = None,
        cache: ExchangeRateCache | None = None,
        timeout: float = 5.0,
    ):
        self.reference_currency = reference_currency.upper()
        self.providers = list(DEFAULT_PROVIDERS if providers is None else providers)
        self.cache = cache if cache is not None else ExchangeRateCache()
        self.timeout = timeout

    def fallback_rate(self, currency: str) -> float | None:
        """Static approximate rate to the reference currency, or None if unknown."""
        rate_usd = FALLBACK_RATES_USD.get(currency)
        reference_usd = FALLBACK_RATES_USD.get(self.reference_currency)
        if rate_usd is None or reference_usd is None:
            return None
        return rate_usd / reference_usd

    def rate(self, currency_code: str, iso_date: str | None = None, diagnostics: list | None = None) -> float:
        """
        Rate to the reference currency for one unit of `currency_code`.

        Args:
            currency_code: ISO currency code (any case)
            iso_date: YYYY-MM-DD date for a historical rate, or None
            diagnostics: Optional list collecting Diagnostic entries

        Returns:
            Reference-currency units per one unit of `currency_code`
        """
        currency = (currency_code or "").strip().upper() or self.reference_currency
        if currency == self.reference_currency:
            return 1.0

        if iso_date:
            cached = self.cache.get(currency, iso_date)
            if cached is not None:
                return cached

            found = lookup_rate(
                self.providers, currency, iso_date,
                reference=self.reference_currency, timeout=self.timeout,
            )
            if found is not None:
                rate, _provider = found
                self.cache.set(currency, iso_date, rate)
                return rate

            reason = f"All exchange rate providers failed for {currency} on {iso_date}"
        else:
            reason = f"No transaction date for {currency} amount"

        fallback = self.fallback_rate(currency)
        if fallback is None:
            message = f"{reason}; unknown currency {currency}, assuming parity with {self.reference_currency}"
            fallback = 1.0
        else:
            message = f"{reason}; using static approximate rate {fallback:g}"

        logger.warning(message)
        if diagnostics is not None:
            diagnostics.append(Diagnostic(kind=NORMALIZATION_FALLBACK, message=message))
        return fallback

    def normalize(
        self,
        amount,
        currency_code: str,
        iso_date: str | None = None,
        diagnostics: list | None = None,
    ) -> float:
        """Convert `amount` in `currency_code` to the reference currency."""
        value = parse_amount(amount)
        currency = (currency_code or "").strip().upper()
        if not currency or currency == self.reference_currency:
            return value
        return value * self.rate(currency, iso_date, diagnostics=diagnostics)
