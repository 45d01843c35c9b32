"""Row filtering and financial record extraction."""

from finance_ingest.extractors.product_filter import (
    filter_by_products,
    distinct_identifiers,
    parse_identifiers,
)
from finance_ingest.extractors.financial_extractor import (
    extract_financial_records,
    parse_us_date,
)

__all__ = [
    "filter_by_products",
    "distinct_identifiers",
    "parse_identifiers",
    "extract_financial_records",
    "parse_us_date",
]
