"""Report text parsing."""

from finance_ingest.parsers.tsv_parser import (
    parse_report,
    find_header_index,
    find_footer_index,
)

__all__ = ["parse_report", "find_header_index", "find_footer_index"]
