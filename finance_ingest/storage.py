"""
Storage for pipeline results.

Durable persistence is an external collaborator. This module defines the
interface the API layer talks to and an in-memory implementation (for local
use and tests - swap in a database-backed store in production).
"""

import threading
from dataclasses import dataclass, field
from typing import Protocol

from finance_ingest.calculators.aggregation import aggregate_monthly
from finance_ingest.models.report import FinancialRecord, MonthlyBucket, ReportRequest, ReportResult


@dataclass
class StoredReport:
    """A saved report with its parsed/filtered tables and records."""
    request: ReportRequest
    raw_text: str
    parsed: dict
    filtered: dict
    records: list[FinancialRecord] = field(default_factory=list)

    @classmethod
    def from_result(cls, report: ReportResult) -> "StoredReport":
        return cls(
            request=report.request,
            raw_text=report.raw_text,
            parsed=report.parsed.to_dict(),
            filtered=report.filtered.to_dict(),
            records=list(report.records),
        )


@dataclass
class StoredFinanceData:
    """Everything saved for one vendor."""
    reports: list[StoredReport] = field(default_factory=list)

    @property
    def records(self) -> list[FinancialRecord]:
        return [record for report in self.reports for record in report.records]

    @property
    def buckets(self) -> list[MonthlyBucket]:
        return aggregate_monthly(self.records)

    @property
    def latest_month(self) -> str | None:
        buckets = self.buckets
        return buckets[-1].month_key if buckets else None


class FinanceStore(Protocol):
    def save(self, vendor_id: str, reports: list[ReportResult], *, replace: bool = True) -> None: ...

    def load(self, vendor_id: str) -> StoredFinanceData | None: ...

    def latest_month(self, vendor_id: str) -> str | None: ...

    def delete(self, vendor_id: str) -> bool: ...


class InMemoryFinanceStore:
    """Process-local FinanceStore keyed by vendor id."""

    def __init__(self):
        self._data: dict[str, StoredFinanceData] = {}
        self._lock = threading.Lock()

    def save(self, vendor_id: str, reports: list[ReportResult], *, replace: bool = True) -> None:
        """
        Save reports and their records.

        With replace=False the reports are merged into existing data; a report
        for a (type, region, month) that is already stored replaces the old one.
        """
        incoming = [StoredReport.from_result(r) for r in reports]
        with self._lock:
            kept = []
            if not replace and vendor_id in self._data:
                new_requests = {r.request for r in incoming}
                kept = [r for r in self._data[vendor_id].reports if r.request not in new_requests]
            self._data[vendor_id] = StoredFinanceData(reports=kept + incoming)

    def load(self, vendor_id: str) -> StoredFinanceData | None:
        with self._lock:
            return self._data.get(vendor_id)

    def latest_month(self, vendor_id: str) -> str | None:
        data = self.load(vendor_id)
        return data.latest_month if data else None

    def delete(self, vendor_id: str) -> bool:
        with self._lock:
            return self._data.pop(vendor_id, None) is not None
