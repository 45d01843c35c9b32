"""
Tab-separated finance report parsing.

Detailed finance reports wrap the transaction table in vendor metadata: a few
lines before the real header and a country-of-sale summary block after the
data. The layout is not stable across report types, so the table boundaries
are found by two independent scans instead of fixed offsets:

- find_header_index: the first line naming both "Transaction Date" and "Settlement Date"
- find_footer_index: the first summary line after the data

Either scan may come back empty. A missing header falls back to line 0, a
missing footer means the data runs to the end of the file.
"""

import logging

from finance_ingest.models.report import PARSE_DEGRADED, Diagnostic, ParsedTable

logger = logging.getLogger(__name__)

HEADER_MARKERS = ("transaction date", "settlement date")
FOOTER_MARKERS = ("country of sale", "partner share currency")
FOOTER_SECTION_MARKER = "country of sale"


def find_header_index(lines: list[str]) -> int | None:
    """Index of the header row, or None if no line carries both header markers."""
    for index, line in enumerate(lines):
        lower = line.lower()
        if all(marker in lower for marker in HEADER_MARKERS):
            return index
    return None


def find_footer_index(lines: list[str], start: int) -> int | None:
    """
    Index where the data block ends, searching from `start`.

    The block ends at a summary header line, or at a blank line whose next
    non-blank line opens a summary section.
    """
    for index in range(start, len(lines)):
        lower = lines[index].lower()
        if all(marker in lower for marker in FOOTER_MARKERS):
            return index
        if not lower.strip() and index > start:
            for next_line in lines[index + 1:]:
                if not next_line.strip():
                    continue
                if FOOTER_SECTION_MARKER in next_line.lower():
                    return index
                break
    return None


def parse_report(raw_text: str, diagnostics: list | None = None) -> ParsedTable:
    """
    Parse raw report text into a header row and data rows.

    Args:
        raw_text: Decompressed report text
        diagnostics: Optional list collecting Diagnostic entries

    Returns:
        ParsedTable. Rows whose column count differs from the header are dropped.
    """
    # Only blank lines are trimmed; trailing tabs are empty cells
    lines = (raw_text or "").splitlines()
    while lines and not lines[0].strip():
        lines.pop(0)
    while lines and not lines[-1].strip():
        lines.pop()
    if not lines:
        return ParsedTable()

    header_index = find_header_index(lines)
    if header_index is None:
        message = "No header row with 'Transaction Date' and 'Settlement Date', using first line"
        logger.warning(message)
        if diagnostics is not None:
            diagnostics.append(Diagnostic(kind=PARSE_DEGRADED, message=message))
        header_index = 0

    headers = lines[header_index].split("\t")
    data_start = header_index + 1
    footer_index = find_footer_index(lines, data_start)
    data_end = footer_index if footer_index is not None else len(lines)

    rows = []
    dropped = 0
    for line in lines[data_start:data_end]:
        if not line.strip():
            continue
        cells = line.split("\t")
        if len(cells) != len(headers):
            dropped += 1
            continue
        rows.append(cells)

    if dropped:
        logger.debug("Dropped %d rows with a column count other than %d", dropped, len(headers))
    logger.debug(
        "Parsed report: header at line %d, data lines %d-%d, %d rows",
        header_index, data_start, data_end, len(rows),
    )
    return ParsedTable(headers=headers, rows=rows)
