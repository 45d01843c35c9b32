"""
Finance report API routes.

Handles:
- POST /api/finance/reports - Fetch, normalize and aggregate finance reports
- GET /api/finance/{vendor_id} - Stored reports and monthly chart data
- DELETE /api/finance/{vendor_id} - Remove stored data
"""

import logging

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from finance_ingest.calculators.currency import CurrencyNormalizer, ExchangeRateCache
from finance_ingest.config import Settings
from finance_ingest.exceptions import CredentialError
from finance_ingest.models.report import MonthlyBucket, PipelineResult
from finance_ingest.pipeline import Credentials, FinancePipeline, report_months
from finance_ingest.storage import FinanceStore, InMemoryFinanceStore, StoredFinanceData

logger = logging.getLogger(__name__)

router = APIRouter()

# Process-wide state (use a database-backed store in production)
_store = InMemoryFinanceStore()
_rate_cache = ExchangeRateCache()


# ============== Request/Response Models ==============

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FinanceReportRequest(CamelModel):
    """Credentials and product filter for a pipeline run. All string fields are required."""
    vendor_id: str | None = None
    private_key: str | None = None
    key_id: str | None = None
    issuer_id: str | None = None
    product_identifiers: str | None = None  # Comma-separated
    incremental: bool = False               # Only fetch months after the stored data


REQUIRED_FIELDS = ["vendor_id", "private_key", "key_id", "issuer_id", "product_identifiers"]


class FinancialRecordResponse(CamelModel):
    month_key: str
    display_date: str
    amount_original: float
    currency_original: str
    amount_normalized: float
    record_type: str


class MonthlyBucketResponse(CamelModel):
    month_key: str
    total_normalized: float
    record_count: int
    records: list[FinancialRecordResponse]


class TableResponse(CamelModel):
    headers: list[str]
    rows: list[list[str]]


class ReportResponse(CamelModel):
    report_type: str
    region_code: str
    report_month: str
    raw_data: str
    parsed: TableResponse | None = None
    filtered: TableResponse | None = None
    records: list[FinancialRecordResponse] = Field(default_factory=list)


class TaskErrorResponse(CamelModel):
    report_type: str
    region_code: str
    report_month: str
    reason: str


class SummaryResponse(CamelModel):
    total: int
    success: int
    failed: int
    filtered_out: int


class DiagnosticResponse(CamelModel):
    kind: str
    message: str
    context: str


class FinanceReportResponse(CamelModel):
    """Pipeline envelope. Sub-task failures are reported even on HTTP 200."""
    success: bool
    reports: list[ReportResponse]
    errors: list[TaskErrorResponse]
    summary: SummaryResponse
    chart_data: list[MonthlyBucketResponse]
    diagnostics: list[DiagnosticResponse] = Field(default_factory=list)
    available_identifiers: list[str] = Field(default_factory=list)


class StoredFinanceResponse(CamelModel):
    vendor_id: str
    reports: list[ReportResponse]
    chart_data: list[MonthlyBucketResponse]


# ============== Dependencies ==============

def get_settings() -> Settings:
    return Settings.from_env()


def get_store() -> FinanceStore:
    return _store


def get_pipeline(settings: Settings = Depends(get_settings)) -> FinancePipeline:
    normalizer = CurrencyNormalizer(
        reference_currency=settings.reference_currency,
        cache=_rate_cache,
        timeout=settings.rate_timeout,
    )
    return FinancePipeline(settings=settings, normalizer=normalizer)


def require_api_token(
    authorization: str | None = Header(None),
    settings: Settings = Depends(get_settings),
) -> None:
    """Reject calls without the configured bearer token (no-op when unset)."""
    if not settings.api_token:
        return
    if authorization != f"Bearer {settings.api_token}":
        raise HTTPException(status_code=401, detail="Unauthorized")


# ============== Helper Functions ==============

def _table_response(table: dict | None) -> TableResponse | None:
    if not table or not table.get("headers"):
        return None
    return TableResponse(**table)


def _buckets_to_response(buckets: list[MonthlyBucket]) -> list[MonthlyBucketResponse]:
    return [MonthlyBucketResponse(**bucket.to_dict()) for bucket in buckets]


def _result_to_response(result: PipelineResult) -> FinanceReportResponse:
    """Convert a PipelineResult to the API envelope."""
    reports = [
        ReportResponse(
            report_type=report.request.report_type,
            region_code=report.request.region_code,
            report_month=report.request.report_month,
            raw_data=report.raw_text,
            parsed=_table_response(report.parsed.to_dict()),
            filtered=_table_response(report.filtered.to_dict()),
            records=[FinancialRecordResponse(**r.to_dict()) for r in report.records],
        )
        for report in result.reports
    ]
    return FinanceReportResponse(
        success=True,
        reports=reports,
        errors=[TaskErrorResponse(**f.to_dict()) for f in result.failures],
        summary=SummaryResponse(**result.summary),
        chart_data=_buckets_to_response(result.buckets),
        diagnostics=[DiagnosticResponse(**d.to_dict()) for d in result.diagnostics],
        available_identifiers=result.available_identifiers,
    )


def _stored_to_response(vendor_id: str, data: StoredFinanceData) -> StoredFinanceResponse:
    reports = [
        ReportResponse(
            report_type=stored.request.report_type,
            region_code=stored.request.region_code,
            report_month=stored.request.report_month,
            raw_data=stored.raw_text,
            parsed=_table_response(stored.parsed),
            filtered=_table_response(stored.filtered),
            records=[FinancialRecordResponse(**r.to_dict()) for r in stored.records],
        )
        for stored in data.reports
    ]
    return StoredFinanceResponse(
        vendor_id=vendor_id,
        reports=reports,
        chart_data=_buckets_to_response(data.buckets),
    )


# ============== API Endpoints ==============

@router.post(
    "/finance/reports",
    response_model=FinanceReportResponse,
    dependencies=[Depends(require_api_token)],
)
def fetch_finance_reports(
    request: FinanceReportRequest,
    pipeline: FinancePipeline = Depends(get_pipeline),
    store: FinanceStore = Depends(get_store),
) -> FinanceReportResponse:
    """
    Fetch the trailing months of finance reports and aggregate them.

    This endpoint:
    1. Signs a bearer token from the submitted key
    2. Fetches every (report type, region, month) report concurrently
    3. Parses, filters by product and converts each report to the reference currency
    4. Returns monthly chart data plus per-report errors

    Declared as a plain function so FastAPI runs the blocking pipeline in its
    worker threadpool.
    """
    missing = [
        to_camel(name) for name in REQUIRED_FIELDS
        if not (getattr(request, name) or "").strip()
    ]
    if missing:
        raise HTTPException(
            status_code=400,
            detail={"error": "Missing required fields", "missing": missing},
        )

    vendor_id = request.vendor_id.strip()
    credentials = Credentials(
        private_key=request.private_key,
        key_id=request.key_id.strip(),
        issuer_id=request.issuer_id.strip(),
    )

    months = None
    if request.incremental:
        # latest is a transaction month; the fetch list is of report months, and
        # a report can carry transactions dated in an earlier month
        latest = store.latest_month(vendor_id)
        if latest:
            months = report_months(latest_month=latest)
            logger.info("Incremental fetch for vendor %s after %s: %d month(s)", vendor_id, latest, len(months))

    try:
        result = pipeline.run(credentials, vendor_id, request.product_identifiers, months=months)
    except CredentialError as e:
        raise HTTPException(status_code=400, detail=str(e))

    # The caller still gets the data if saving fails
    try:
        store.save(vendor_id, result.reports, replace=not request.incremental)
    except Exception:
        logger.exception("Error saving finance data for vendor %s", vendor_id)

    return _result_to_response(result)


@router.get(
    "/finance/{vendor_id}",
    response_model=StoredFinanceResponse,
    dependencies=[Depends(require_api_token)],
)
def get_finance_data(vendor_id: str, store: FinanceStore = Depends(get_store)) -> StoredFinanceResponse:
    """Get stored finance reports and monthly chart data for a vendor."""
    data = store.load(vendor_id)
    if data is None:
        raise HTTPException(status_code=404, detail=f"No finance data for vendor: {vendor_id}")
    return _stored_to_response(vendor_id, data)


@router.delete("/finance/{vendor_id}", dependencies=[Depends(require_api_token)])
def delete_finance_data(vendor_id: str, store: FinanceStore = Depends(get_store)) -> dict:
    """Remove stored finance data for a vendor."""
    if not store.delete(vendor_id):
        raise HTTPException(status_code=404, detail=f"No finance data for vendor: {vendor_id}")
    return {"success": True}
