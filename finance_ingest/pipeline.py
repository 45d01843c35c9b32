"""
Finance report pipeline orchestration.

Runs the full (report type x region x month) matrix concurrently:

1. Issue one bearer token (a CredentialError aborts the run)
2. Fetch every report in a thread pool and wait for all of them to settle
3. Parse -> filter -> extract each fetched report inside its worker
4. Fold all records into monthly buckets

A failed task never cancels its siblings. Failures, filtered-out reports and
diagnostics are returned next to whatever data the other tasks produced.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import date

from finance_ingest.calculators.aggregation import aggregate_monthly
from finance_ingest.calculators.currency import CurrencyNormalizer
from finance_ingest.config import Settings, region_codes_for
from finance_ingest.extractors.financial_extractor import extract_financial_records
from finance_ingest.extractors.product_filter import distinct_identifiers, filter_by_products
from finance_ingest.fetchers.app_store import ReportFetcher, issue_token
from finance_ingest.models.report import (
    FILTER_EMPTY,
    Diagnostic,
    FetchFailure,
    PipelineResult,
    ReportRequest,
    ReportResult,
    TaskFailure,
)
from finance_ingest.parsers.tsv_parser import parse_report

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credentials:
    """API key material used to sign the bearer token."""
    private_key: str
    key_id: str
    issuer_id: str

    def __repr__(self) -> str:
        return f"Credentials(key_id={self.key_id!r}, issuer_id={self.issuer_id!r})"


@dataclass
class TaskOutcome:
    """Settled result of one report task. Exactly one of failure/report/filtered_out applies."""
    request: ReportRequest
    failure: str | None = None
    report: ReportResult | None = None
    filtered_out: bool = False
    identifiers: list[str] = field(default_factory=list)
    diagnostics: list[Diagnostic] = field(default_factory=list)


def _shift_month(year: int, month: int, offset: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + offset
    return index // 12, index % 12 + 1


def report_months(latest_month: str | None = None, today: date | None = None, count: int = 12) -> list[str]:
    """
    Report months to request, newest first.

    Args:
        latest_month: Last month already stored (YYYY-MM). When given, only the
            months after it up to the current month are returned.
        today: Reference date (defaults to today)
        count: Number of trailing months when latest_month is None

    Returns:
        List of YYYY-MM strings
    """
    today = today or date.today()

    if latest_month:
        year, month = (int(part) for part in latest_month.split("-")[:2])
        months = []
        year, month = _shift_month(year, month, 1)
        while (year, month) <= (today.year, today.month):
            months.append(f"{year:04d}-{month:02d}")
            year, month = _shift_month(year, month, 1)
        return list(reversed(months))

    months = []
    for offset in range(count):
        year, month = _shift_month(today.year, today.month, -offset)
        months.append(f"{year:04d}-{month:02d}")
    return months


def build_requests(report_types: list[str], months: list[str]) -> list[ReportRequest]:
    """Cartesian product of report types, their region codes and months."""
    return [
        ReportRequest(report_type=report_type, region_code=region_code, report_month=month)
        for report_type in report_types
        for region_code in region_codes_for(report_type)
        for month in months
    ]


class FinancePipeline:
    """Fetches, normalizes and aggregates finance reports for one vendor."""

    def __init__(
        self,
        settings: Settings | None = None,
        fetcher: ReportFetcher | None = None,
        normalizer: CurrencyNormalizer | None = None,
    ):
        self.settings = settings or Settings()
        self.fetcher = fetcher or ReportFetcher(
            base_url=self.settings.api_base_url,
            timeout=self.settings.report_timeout,
        )
        self.normalizer = normalizer or CurrencyNormalizer(
            reference_currency=self.settings.reference_currency,
            timeout=self.settings.rate_timeout,
        )

    def process_report(self, request: ReportRequest, raw_text: str, product_identifiers: str) -> TaskOutcome:
        """Parse, filter and extract one fetched report."""
        outcome = TaskOutcome(request=request)
        diagnostics: list[Diagnostic] = []

        parsed = parse_report(raw_text, diagnostics=diagnostics)
        outcome.identifiers = distinct_identifiers(parsed)
        filtered = filter_by_products(parsed, product_identifiers)

        if not filtered.rows:
            logger.info("No rows after filtering for %s", request.label)
            outcome.filtered_out = True
        else:
            records = extract_financial_records(
                filtered, request.report_month, self.normalizer, diagnostics=diagnostics,
            )
            outcome.report = ReportResult(
                request=request,
                raw_text=raw_text,
                parsed=parsed,
                filtered=filtered,
                records=records,
            )

        # Tag diagnostics with the task that raised them
        outcome.diagnostics = [
            Diagnostic(kind=d.kind, message=d.message, context=d.context or request.label)
            for d in diagnostics
        ]
        return outcome

    def run_task(self, token: str, vendor_id: str, request: ReportRequest, product_identifiers: str) -> TaskOutcome:
        """Fetch and process one report. Always returns, never raises."""
        try:
            fetched = self.fetcher.fetch(
                token, vendor_id, request.report_type, request.region_code, request.report_month,
            )
            if isinstance(fetched, FetchFailure):
                return TaskOutcome(request=request, failure=fetched.reason)
            return self.process_report(request, fetched.raw_text, product_identifiers)
        except Exception as e:
            logger.exception("Unexpected error processing %s", request.label)
            return TaskOutcome(request=request, failure=str(e) or e.__class__.__name__)

    def run(
        self,
        credentials: Credentials,
        vendor_id: str,
        product_identifiers: str,
        *,
        months: list[str] | None = None,
    ) -> PipelineResult:
        """
        Run the full pipeline.

        Args:
            credentials: Key material for the bearer token
            vendor_id: Vendor number of the developer account
            product_identifiers: Comma-separated product identifiers
            months: Report months (YYYY-MM) to fetch; defaults to the trailing
                settings.months_back months

        Returns:
            PipelineResult with reports, failures, filtered-out tasks, buckets
            and diagnostics

        Raises:
            CredentialError: If the token cannot be signed
        """
        if months is None:
            months = report_months(count=self.settings.months_back)
        requests_ = build_requests(self.settings.report_types, months)
        logger.info(
            "Fetching %d reports across %d report type(s) for vendor %s",
            len(requests_), len(self.settings.report_types), vendor_id,
        )

        token = issue_token(
            credentials.private_key,
            credentials.key_id,
            credentials.issuer_id,
            lifetime=self.settings.token_lifetime,
            audience=self.settings.token_audience,
        )

        outcomes = self._run_all(token, vendor_id, requests_, product_identifiers)
        return self._collect(outcomes, product_identifiers)

    def _run_all(
        self, token: str, vendor_id: str, requests_: list[ReportRequest], product_identifiers: str,
    ) -> list[TaskOutcome]:
        if not requests_:
            return []

        deadline = self.settings.pipeline_deadline
        workers = max(1, min(self.settings.max_workers, len(requests_)))
        executor = ThreadPoolExecutor(max_workers=workers)
        try:
            futures = {
                executor.submit(self.run_task, token, vendor_id, request, product_identifiers): request
                for request in requests_
            }
            done, _pending = wait(futures, timeout=deadline)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        # Keep matrix order so results are deterministic
        outcomes = []
        for future, request in futures.items():
            if future in done:
                outcomes.append(future.result())
            else:
                logger.warning("Report %s did not finish within %ss", request.label, deadline)
                outcomes.append(TaskOutcome(request=request, failure=f"Timed out after {deadline:g}s"))
        return outcomes

    def _collect(self, outcomes: list[TaskOutcome], product_identifiers: str) -> PipelineResult:
        result = PipelineResult()
        identifiers: set[str] = set()

        for outcome in outcomes:
            identifiers.update(outcome.identifiers)
            result.diagnostics.extend(outcome.diagnostics)
            if outcome.failure is not None:
                result.failures.append(TaskFailure.for_request(outcome.request, outcome.failure))
            elif outcome.filtered_out:
                result.filtered_out.append(outcome.request)
            else:
                result.reports.append(outcome.report)

        result.available_identifiers = sorted(identifiers)
        result.buckets = aggregate_monthly(result.records)

        if not result.records and identifiers:
            message = (
                f"No data found for product identifiers {product_identifiers!r}; "
                f"identifiers present in reports: {', '.join(result.available_identifiers)}"
            )
            logger.warning(message)
            result.diagnostics.append(Diagnostic(kind=FILTER_EMPTY, message=message))

        logger.info(
            "Processing summary: %d total, %d success, %d failed, %d filtered out, %d records",
            result.total, len(result.reports), len(result.failures),
            len(result.filtered_out), len(result.records),
        )
        return result
