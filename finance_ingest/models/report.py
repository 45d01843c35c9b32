"""Data models for report fetch tasks, parsed tables and financial records."""

from dataclasses import dataclass, field

from finance_ingest.exceptions import FinanceIngestError, NormalizationFallback, ParseDegraded


# Diagnostic kinds (non-fatal signals collected during a run)
PARSE_DEGRADED = "parse_degraded"
NORMALIZATION_FALLBACK = "normalization_fallback"
EXTRACT_DEGRADED = "extract_degraded"
FILTER_EMPTY = "filter_empty"

_DIAGNOSTIC_ERRORS = {
    PARSE_DEGRADED: ParseDegraded,
    NORMALIZATION_FALLBACK: NormalizationFallback,
}


@dataclass(frozen=True)
class ReportRequest:
    """One (report type, region, month) fetch task."""
    report_type: str     # e.g., "FINANCE_DETAIL"
    region_code: str     # e.g., "Z1"
    report_month: str    # YYYY-MM

    @property
    def label(self) -> str:
        return f"{self.report_type}/{self.region_code}/{self.report_month}"


@dataclass(frozen=True)
class FetchSuccess:
    """Decompressed report text."""
    raw_text: str
    ok = True


@dataclass(frozen=True)
class FetchFailure:
    """Human-readable reason a report could not be fetched."""
    reason: str
    ok = False


FetchOutcome = FetchSuccess | FetchFailure


@dataclass
class ParsedTable:
    """Header row plus data rows of a tab-separated report."""
    headers: list[str] = field(default_factory=list)
    rows: list[list[str]] = field(default_factory=list)

    def find_column(self, *candidates: str) -> int | None:
        """
        Index of the first header, left to right, containing any candidate
        (case-insensitive).
        """
        needles = [c.lower() for c in candidates]
        for index, header in enumerate(self.headers):
            lower = header.strip().lower()
            if any(needle in lower for needle in needles):
                return index
        return None

    def to_dict(self) -> dict:
        return {"headers": list(self.headers), "rows": [list(r) for r in self.rows]}


@dataclass(frozen=True)
class FinancialRecord:
    """A single revenue line converted to the reference currency."""
    month_key: str            # YYYY-MM, used for grouping
    display_date: str         # Original transaction date (MM/DD/YYYY) or the report month
    amount_original: float
    currency_original: str
    amount_normalized: float  # In the reference currency
    record_type: str          # Source column label, e.g. "Extended Partner Share"

    def to_dict(self) -> dict:
        return {
            "month_key": self.month_key,
            "display_date": self.display_date,
            "amount_original": self.amount_original,
            "currency_original": self.currency_original,
            "amount_normalized": self.amount_normalized,
            "record_type": self.record_type,
        }


@dataclass
class MonthlyBucket:
    """All records of one month with their normalized total."""
    month_key: str
    total_normalized: float
    record_count: int
    records: list[FinancialRecord] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "month_key": self.month_key,
            "total_normalized": self.total_normalized,
            "record_count": self.record_count,
            "records": [r.to_dict() for r in self.records],
        }


@dataclass(frozen=True)
class Diagnostic:
    """A degraded-mode signal that did not stop processing."""
    kind: str
    message: str
    context: str = ""     # Usually the ReportRequest label

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message, "context": self.context}

    def to_exception(self) -> FinanceIngestError:
        """The matching exception, for callers that treat degraded modes as errors."""
        error_class = _DIAGNOSTIC_ERRORS.get(self.kind, FinanceIngestError)
        return error_class(f"{self.message} ({self.context})" if self.context else self.message)


@dataclass
class ReportResult:
    """A fetched report that still had rows after product filtering."""
    request: ReportRequest
    raw_text: str
    parsed: ParsedTable
    filtered: ParsedTable
    records: list[FinancialRecord] = field(default_factory=list)


@dataclass(frozen=True)
class TaskFailure:
    """A report task that could not be fetched."""
    report_type: str
    region_code: str
    report_month: str
    reason: str

    @classmethod
    def for_request(cls, request: ReportRequest, reason: str) -> "TaskFailure":
        return cls(
            report_type=request.report_type,
            region_code=request.region_code,
            report_month=request.report_month,
            reason=reason,
        )

    def to_dict(self) -> dict:
        return {
            "report_type": self.report_type,
            "region_code": self.region_code,
            "report_month": self.report_month,
            "reason": self.reason,
        }


@dataclass
class PipelineResult:
    """Envelope returned by a pipeline run."""
    reports: list[ReportResult] = field(default_factory=list)
    failures: list[TaskFailure] = field(default_factory=list)
    filtered_out: list[ReportRequest] = field(default_factory=list)
    buckets: list[MonthlyBucket] = field(default_factory=list)
    diagnostics: list[Diagnostic] = field(default_factory=list)
    available_identifiers: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.reports) + len(self.failures) + len(self.filtered_out)

    @property
    def records(self) -> list[FinancialRecord]:
        return [record for report in self.reports for record in report.records]

    @property
    def summary(self) -> dict:
        return {
            "total": self.total,
            "success": len(self.reports),
            "failed": len(self.failures),
            "filtered_out": len(self.filtered_out),
        }
