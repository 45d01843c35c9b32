"""End-to-end pipeline tests against a fake reporting API."""

import threading
from datetime import date

import pytest

from conftest import SAMPLE_ROW, FakeResponse, finance_report, report_response
from finance_ingest.calculators.currency import CurrencyNormalizer
from finance_ingest.config import Settings
from finance_ingest.exceptions import CredentialError
from finance_ingest.models.report import (
    FILTER_EMPTY,
    PARSE_DEGRADED,
    FetchSuccess,
    ReportRequest,
    TaskFailure,
)
from finance_ingest.pipeline import Credentials, FinancePipeline, build_requests, report_months


VENDOR = "8912345"


def _usd_row(day, amount, product="org.acme.App"):
    return f"{day}\t{day}\tUSD\t{amount}\t{product}"


@pytest.fixture
def pipeline(settings, normalizer):
    return FinancePipeline(settings, normalizer=normalizer)


class TestReportMonths:
    def test_trailing_months_newest_first(self):
        assert report_months(today=date(2024, 3, 10), count=3) == ["2024-03", "2024-02", "2024-01"]

    def test_trailing_months_cross_year(self):
        assert report_months(today=date(2024, 1, 5), count=2) == ["2024-01", "2023-12"]

    def test_incremental_months_after_latest(self):
        assert report_months("2023-12", today=date(2024, 2, 1)) == ["2024-02", "2024-01"]

    def test_incremental_up_to_date_is_empty(self):
        assert report_months("2024-02", today=date(2024, 2, 20)) == []

    def test_build_requests_matrix(self):
        requests_ = build_requests(["FINANCIAL", "FINANCE_DETAIL"], ["2024-01", "2024-02"])
        assert [r.label for r in requests_] == [
            "FINANCIAL/ZZ/2024-01",
            "FINANCIAL/ZZ/2024-02",
            "FINANCE_DETAIL/Z1/2024-01",
            "FINANCE_DETAIL/Z1/2024-02",
        ]


class TestPipelineRun:
    def test_single_eur_report(self, fake_http, stub_rates, pipeline, credentials):
        fake_http.add("financeReports", lambda url, params: report_response(finance_report(SAMPLE_ROW)))

        result = pipeline.run(credentials, VENDOR, "org.acme.App", months=["2024-01"])

        assert result.summary == {"total": 1, "success": 1, "failed": 0, "filtered_out": 0}
        assert len(result.buckets) == 1
        bucket = result.buckets[0]
        assert bucket.month_key == "2024-01"
        assert bucket.total_normalized == pytest.approx(11.0)
        assert bucket.record_count == 1
        assert bucket.records[0].currency_original == "EUR"
        assert result.diagnostics == []
        assert result.available_identifiers == ["org.acme.App"]

        report = result.reports[0]
        assert report.request == ReportRequest("FINANCE_DETAIL", "Z1", "2024-01")
        assert len(report.parsed.rows) == 1
        assert report.filtered.rows == report.parsed.rows

    def test_non_matching_product_is_filtered_out(self, fake_http, stub_rates, pipeline, credentials):
        fake_http.add("financeReports", lambda url, params: report_response(finance_report(SAMPLE_ROW)))

        result = pipeline.run(credentials, VENDOR, "org.other.App", months=["2024-01"])

        assert result.summary == {"total": 1, "success": 0, "failed": 0, "filtered_out": 1}
        assert result.filtered_out == [ReportRequest("FINANCE_DETAIL", "Z1", "2024-01")]
        assert result.buckets == []
        assert [d.kind for d in result.diagnostics] == [FILTER_EMPTY]
        assert "org.acme.App" in result.diagnostics[0].message
        assert result.available_identifiers == ["org.acme.App"]

    def test_one_failed_month_does_not_affect_others(self, fake_http, pipeline, credentials):
        def handler(url, params):
            month = params["filter[reportDate]"]
            if month == "2024-02":
                return FakeResponse(403, json_body={"errors": [{"detail": "Not authorized"}]})
            if month == "2024-03":
                return report_response(finance_report(_usd_row("03/10/2024", "4.00")))
            return report_response(finance_report(_usd_row("01/15/2024", "5.00"), _usd_row("01/20/2024", "1.50")))

        fake_http.add("financeReports", handler)

        result = pipeline.run(credentials, VENDOR, "org.acme.App", months=["2024-03", "2024-02", "2024-01"])

        assert result.summary == {"total": 3, "success": 2, "failed": 1, "filtered_out": 0}
        assert result.failures == [TaskFailure("FINANCE_DETAIL", "Z1", "2024-02", "Not authorized")]
        assert [r.request.report_month for r in result.reports] == ["2024-03", "2024-01"]
        assert [(b.month_key, b.total_normalized) for b in result.buckets] == [
            ("2024-01", pytest.approx(6.5)),
            ("2024-03", pytest.approx(4.0)),
        ]

    def test_every_task_is_counted_once(self, fake_http, credentials, normalizer):
        def handler(url, params):
            month = params["filter[reportDate]"]
            if params["filter[reportType]"] == "FINANCIAL":
                return FakeResponse(404, json_body={"errors": [{"detail": "No report"}]})
            if month == "2024-01":
                return report_response(finance_report(_usd_row("01/15/2024", "2.00", "com.else")))
            return report_response(finance_report(_usd_row("02/15/2024", "2.00")))

        fake_http.add("financeReports", handler)
        settings = Settings(report_types=["FINANCIAL", "FINANCE_DETAIL"], pipeline_deadline=30.0)

        result = FinancePipeline(settings, normalizer=normalizer).run(
            credentials, VENDOR, "org.acme.App", months=["2024-02", "2024-01"],
        )

        assert result.total == 4
        assert len(result.failures) + len(result.reports) + len(result.filtered_out) == 4
        assert result.summary == {"total": 4, "success": 1, "failed": 2, "filtered_out": 1}
        assert len(fake_http.urls("financeReports")) == 4

    def test_report_records_sum_to_bucket_totals(self, fake_http, pipeline, credentials):
        fake_http.add("financeReports", lambda url, params: report_response(finance_report(
            _usd_row("01/15/2024", "5.00"), _usd_row("02/01/2024", "2.00"),
        )))

        result = pipeline.run(credentials, VENDOR, "org.acme.App", months=["2024-02", "2024-01"])

        assert sum(b.record_count for b in result.buckets) == len(result.records) == 4
        assert sum(b.total_normalized for b in result.buckets) == pytest.approx(14.0)

    def test_bad_credentials_abort_before_any_fetch(self, fake_http, pipeline):
        bad = Credentials(private_key="not a key", key_id="KEY123", issuer_id="issuer-uuid")

        with pytest.raises(CredentialError):
            pipeline.run(bad, VENDOR, "org.acme.App", months=["2024-01"])

        assert fake_http.calls == []

    def test_credentials_repr_hides_key(self, credentials):
        assert "PRIVATE KEY" not in repr(credentials)

    def test_no_months_means_no_tasks(self, fake_http, pipeline, credentials):
        result = pipeline.run(credentials, VENDOR, "org.acme.App", months=[])
        assert result.total == 0
        assert result.buckets == []


class FailingFetcher:
    def fetch(self, token, vendor_id, report_type, region_code, report_month):
        raise RuntimeError("boom")


class BlockingFetcher:
    """Blocks the 2024-02 task until released, answers the rest immediately."""

    def __init__(self, text):
        self.text = text
        self.release = threading.Event()

    def fetch(self, token, vendor_id, report_type, region_code, report_month):
        if report_month == "2024-02":
            self.release.wait(10)
        return FetchSuccess(raw_text=self.text)


class TestTaskIsolation:
    def test_unexpected_exception_becomes_failure(self, settings, normalizer, credentials):
        pipeline = FinancePipeline(settings, fetcher=FailingFetcher(), normalizer=normalizer)

        result = pipeline.run(credentials, VENDOR, "org.acme.App", months=["2024-01"])

        assert result.failures[0].reason == "boom"

    def test_deadline_fails_unfinished_tasks(self, normalizer, credentials):
        fetcher = BlockingFetcher(finance_report(_usd_row("01/15/2024", "3.00")))
        settings = Settings(pipeline_deadline=0.5)
        pipeline = FinancePipeline(settings, fetcher=fetcher, normalizer=normalizer)

        try:
            result = pipeline.run(credentials, VENDOR, "org.acme.App", months=["2024-02", "2024-01"])
        finally:
            fetcher.release.set()

        assert result.failures == [TaskFailure("FINANCE_DETAIL", "Z1", "2024-02", "Timed out after 0.5s")]
        assert [r.request.report_month for r in result.reports] == ["2024-01"]

    def test_diagnostics_are_tagged_with_task_label(self, pipeline):
        request = ReportRequest("FINANCE_DETAIL", "Z1", "2024-01")

        outcome = pipeline.process_report(request, "Vendor Identifier\tProceeds\norg.acme.App\t1.00", "org.acme.App")

        kinds = {d.kind for d in outcome.diagnostics}
        assert PARSE_DEGRADED in kinds
        assert all(d.context for d in outcome.diagnostics)
        assert any(d.context == request.label for d in outcome.diagnostics)
        assert outcome.report.records[0].month_key == "2024-01"


class TestSharedRateCache:
    def test_concurrent_tasks_share_one_rate(self, fake_http, stub_rates, eur_provider, rate_cache, credentials):
        months = ["2024-04", "2024-03", "2024-02", "2024-01"]
        fake_http.add("financeReports", lambda url, params: report_response(finance_report(SAMPLE_ROW)))
        settings = Settings(max_workers=len(months), pipeline_deadline=30.0)
        normalizer = CurrencyNormalizer(providers=[eur_provider], cache=rate_cache)

        result = FinancePipeline(settings, normalizer=normalizer).run(
            credentials, VENDOR, "org.acme.App", months=months,
        )

        assert result.summary["success"] == len(months)
        [bucket] = result.buckets
        assert bucket.month_key == "2024-01"
        assert bucket.record_count == len(months)
        assert bucket.total_normalized == pytest.approx(11.0 * len(months))
        assert len(rate_cache) == 1
        assert ("EUR", "2024-01-15") in rate_cache
        assert 1 <= len(fake_http.urls("stub.rates")) <= len(months)
