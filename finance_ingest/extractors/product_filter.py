"""
Product filtering for parsed finance reports.

A developer account's reports cover every app it sells. Rows are narrowed to
the caller's products by matching one identifier column against a
comma-separated list of identifiers (bundle ids, SKUs, in-app product ids).
"""

import logging

from finance_ingest.models.report import ParsedTable

logger = logging.getLogger(__name__)

# The leftmost header containing any of these wins. "Product Type Identifier"
# is a product type code and must not match.
PRODUCT_COLUMN_CANDIDATES = (
    "vendor identifier",
    "sku",
    "app sku",
    "product identifier",
    "bundle id",
)


def parse_identifiers(product_identifiers: str) -> list[str]:
    """Split a comma-separated identifier string into trimmed, lower-cased ids."""
    return [
        part.strip().lower()
        for part in (product_identifiers or "").split(",")
        if part.strip()
    ]


def find_product_column(table: ParsedTable) -> int | None:
    """Index of the product identifier column, or None."""
    return table.find_column(*PRODUCT_COLUMN_CANDIDATES)


def identifier_matches(value: str, identifier: str) -> bool:
    """
    Whether a cell value belongs to an identifier.

    Matches on equality, containment in either direction, or a dot-segment
    prefix in either direction ("org.acme.app" vs "org.acme.app.coins").
    A blank cell is contained in every identifier and so matches; rows are
    over-included rather than dropped.
    """
    value = value.strip().lower()
    if not identifier:
        return False
    if value == identifier:
        return True
    if identifier in value or value in identifier:
        return True
    return value.startswith(identifier + ".") or identifier.startswith(value + ".")


def filter_by_products(table: ParsedTable, product_identifiers: str) -> ParsedTable:
    """
    Keep only rows that belong to any of the given products.

    Args:
        table: Parsed report
        product_identifiers: Comma-separated identifiers (case-insensitive)

    Returns:
        New ParsedTable with the same headers. If the report has no product
        identifier column the table is returned unfiltered.
    """
    identifiers = parse_identifiers(product_identifiers)
    column = find_product_column(table)

    if column is None:
        logger.info("No product identifier column found, keeping all %d rows", len(table.rows))
        return table

    rows = [
        row for row in table.rows
        if any(identifier_matches(row[column], identifier) for identifier in identifiers)
    ]

    logger.debug(
        "Filtered on column %r from %d to %d rows",
        table.headers[column], len(table.rows), len(rows),
    )
    return ParsedTable(headers=list(table.headers), rows=rows)


def distinct_identifiers(table: ParsedTable) -> list[str]:
    """Unique non-blank values of the product identifier column, sorted."""
    column = find_product_column(table)
    if column is None:
        return []
    return sorted({row[column].strip() for row in table.rows if row[column].strip()})
