"""Currency conversion and aggregation."""

from finance_ingest.calculators.currency import (
    CurrencyNormalizer,
    ExchangeRateCache,
    parse_amount,
)
from finance_ingest.calculators.aggregation import aggregate_monthly

__all__ = [
    "CurrencyNormalizer",
    "ExchangeRateCache",
    "parse_amount",
    "aggregate_monthly",
]
