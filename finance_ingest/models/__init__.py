"""Data models for the finance ingestion pipeline."""

from finance_ingest.models.report import (
    ReportRequest,
    FetchSuccess,
    FetchFailure,
    FetchOutcome,
    ParsedTable,
    FinancialRecord,
    MonthlyBucket,
    Diagnostic,
    ReportResult,
    TaskFailure,
    PipelineResult,
)

__all__ = [
    "ReportRequest",
    "FetchSuccess",
    "FetchFailure",
    "FetchOutcome",
    "ParsedTable",
    "FinancialRecord",
    "MonthlyBucket",
    "Diagnostic",
    "ReportResult",
    "TaskFailure",
    "PipelineResult",
]
