"""
Financial record extraction from filtered report tables.

Column roles are resolved by fuzzy header matching because header names vary
between report types. Only one amount column is read per table, preferring
"Extended Partner Share" (quantity x partner share) and otherwise the leftmost
amount-like header, so overlapping revenue columns are never summed together.
"""

import logging
import re
from datetime import date

from finance_ingest.calculators.currency import CurrencyNormalizer, parse_amount
from finance_ingest.models.report import (
    EXTRACT_DEGRADED,
    Diagnostic,
    FinancialRecord,
    ParsedTable,
)

logger = logging.getLogger(__name__)

TRANSACTION_DATE_COLUMN = "transaction date"
PARTNER_CURRENCY_COLUMN = "partner share currency"

AMOUNT_COLUMN_CANDIDATES = (
    "extended partner share",
    "partner share",
    "proceeds",
    "revenue",
    "sales",
    "amount",
    "total",
)

_US_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")


def parse_us_date(value: str | None) -> date | None:
    """Parse a strict MM/DD/YYYY date, rejecting impossible calendar dates."""
    if not value:
        return None
    match = _US_DATE.match(value.strip())
    if not match:
        return None
    month, day, year = (int(g) for g in match.groups())
    try:
        return date(year, month, day)
    except ValueError:
        return None


def find_currency_column(table: ParsedTable) -> int | None:
    """Partner Share Currency (exact, then partial), then any currency column."""
    for index, header in enumerate(table.headers):
        if header.strip().lower() == PARTNER_CURRENCY_COLUMN:
            return index
    index = table.find_column(PARTNER_CURRENCY_COLUMN)
    if index is None:
        index = table.find_column("currency")
    return index


def find_amount_column(table: ParsedTable) -> int | None:
    """
    Extended Partner Share if present, else the first amount header from the left.

    Headers naming a currency are never amounts.
    """
    lowered = [h.strip().lower() for h in table.headers]
    amount_indices = [
        index for index, header in enumerate(lowered)
        if "currency" not in header and any(c in header for c in AMOUNT_COLUMN_CANDIDATES)
    ]
    for index in amount_indices:
        if AMOUNT_COLUMN_CANDIDATES[0] in lowered[index]:
            return index
    return amount_indices[0] if amount_indices else None


def _emit(diagnostics: list | None, message: str, context: str) -> None:
    logger.warning("%s (%s)", message, context)
    if diagnostics is not None:
        diagnostics.append(Diagnostic(kind=EXTRACT_DEGRADED, message=message, context=context))


def extract_financial_records(
    table: ParsedTable,
    fallback_month: str,
    normalizer: CurrencyNormalizer,
    diagnostics: list | None = None,
) -> list[FinancialRecord]:
    """
    Turn table rows into FinancialRecords in the reference currency.

    Args:
        table: Product-filtered report table
        fallback_month: The report's nominal month (YYYY-MM), used when a row
            has no valid transaction date
        normalizer: Currency normalizer (rows are converted one at a time)
        diagnostics: Optional list collecting Diagnostic entries

    Returns:
        One record per row with a non-zero amount
    """
    if not table.rows:
        return []

    date_index = table.find_column(TRANSACTION_DATE_COLUMN)
    if date_index is None:
        _emit(diagnostics, "Transaction Date column not found, using report month for every row", fallback_month)

    currency_index = find_currency_column(table)
    amount_index = find_amount_column(table)
    if amount_index is None:
        _emit(diagnostics, "No amount column found, report yields no records", fallback_month)
        return []

    record_type = table.headers[amount_index].strip()
    reference = normalizer.reference_currency
    if currency_index is None:
        logger.info("No currency column found, assuming %s for %r", reference, record_type)

    fallback_iso = f"{fallback_month}-01"
    records = []
    invalid_dates = 0

    for row in table.rows:
        amount_str = row[amount_index] or "0"
        amount = parse_amount(amount_str)
        if amount == 0:
            continue

        currency = reference
        if currency_index is not None:
            currency = row[currency_index].strip().upper() or reference

        raw_date = row[date_index].strip() if date_index is not None else ""
        transaction_date = parse_us_date(raw_date)
        if transaction_date is not None:
            month_key = transaction_date.strftime("%Y-%m")
            iso_date = transaction_date.isoformat()
        else:
            if date_index is not None:
                invalid_dates += 1
            month_key = fallback_month
            iso_date = fallback_iso

        amount_normalized = normalizer.normalize(amount_str, currency, iso_date, diagnostics=diagnostics)

        records.append(FinancialRecord(
            month_key=month_key,
            display_date=raw_date or fallback_month,
            amount_original=amount,
            currency_original=currency,
            amount_normalized=amount_normalized,
            record_type=record_type,
        ))

    if invalid_dates:
        _emit(diagnostics, f"{invalid_dates} rows had a missing or invalid Transaction Date", fallback_month)

    logger.debug("Extracted %d records from %d rows", len(records), len(table.rows))
    return records
