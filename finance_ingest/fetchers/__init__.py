"""Network fetchers for finance reports and exchange rates."""

from finance_ingest.fetchers.app_store import issue_token, ReportFetcher
from finance_ingest.fetchers.exchange_rates import (
    RateProvider,
    DEFAULT_PROVIDERS,
    fetch_rate,
    lookup_rate,
)

__all__ = [
    "issue_token",
    "ReportFetcher",
    "RateProvider",
    "DEFAULT_PROVIDERS",
    "fetch_rate",
    "lookup_rate",
]
