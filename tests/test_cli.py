"""CLI smoke tests."""

import pytest
from click.testing import CliRunner

from conftest import SAMPLE_ROW, finance_report, gzip_text, report_response
from finance_ingest.cli import cli


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("FINANCE_REFERENCE_CURRENCY", "FINANCE_REPORT_TYPES", "FINANCE_PIPELINE_DEADLINE"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def runner():
    return CliRunner()


def _usd_report():
    return finance_report(SAMPLE_ROW.replace("EUR", "USD"))


def test_parse_plain_report(runner, tmp_path, fake_http):
    path = tmp_path / "report.txt"
    path.write_text(_usd_report())

    result = runner.invoke(cli, ["parse", str(path), "-p", "org.acme.App"])

    assert result.exit_code == 0, result.output
    assert "Parsed 1 rows, 5 columns" in result.output
    assert "2024-01: 10.00 USD (1 records)" in result.output
    assert fake_http.calls == []


def test_parse_gzip_report_with_no_matches(runner, tmp_path, fake_http):
    path = tmp_path / "report.txt.gz"
    path.write_bytes(gzip_text(_usd_report()))

    result = runner.invoke(cli, ["parse", str(path), "-p", "com.nobody"])

    assert result.exit_code == 0, result.output
    assert "0 rows match" in result.output
    assert "Identifiers in this report: org.acme.App" in result.output
    assert "No financial records." in result.output


def test_rate_command_reports_static_fallback(runner, fake_http):
    result = runner.invoke(cli, ["rate", "eur", "2024-01-15"])

    assert result.exit_code == 0, result.output
    assert "1 EUR = 1.080000 USD on 2024-01-15" in result.output
    assert "approximate" in result.output


def test_fetch_command(runner, tmp_path, fake_http, ec_private_key, monkeypatch):
    _key, pem = ec_private_key
    key_file = tmp_path / "AuthKey.p8"
    key_file.write_text(pem)
    monkeypatch.setenv("FINANCE_REPORT_TYPES", "FINANCE_DETAIL")
    fake_http.add("financeReports", lambda url, params: report_response(_usd_report()))

    result = runner.invoke(cli, [
        "fetch",
        "--vendor", "8912345",
        "--key-file", str(key_file),
        "--key-id", "KEY123",
        "--issuer-id", "issuer-uuid",
        "--products", "org.acme.App",
        "--month", "2024-01",
    ])

    assert result.exit_code == 0, result.output
    assert "Reports: 1 total, 1 with data, 0 failed, 0 filtered out" in result.output
    assert "2024-01: 10.00 USD" in result.output


def test_fetch_with_bad_key_fails_cleanly(runner, tmp_path, fake_http):
    key_file = tmp_path / "AuthKey.p8"
    key_file.write_text("not a key")

    result = runner.invoke(cli, [
        "fetch", "--vendor", "1", "--key-file", str(key_file),
        "--key-id", "K", "--issuer-id", "I", "--products", "x", "--month", "2024-01",
    ])

    assert result.exit_code == 1
    assert "Failed to generate token" in result.output
    assert fake_http.calls == []


def test_parse_strict_fails_on_degraded_parse(runner, tmp_path, fake_http):
    path = tmp_path / "report.txt"
    path.write_text("Vendor Identifier\tProceeds\norg.acme.App\t1.00")

    result = runner.invoke(cli, ["parse", str(path), "--strict", "--month", "2024-01"])

    assert result.exit_code == 1
    assert "ParseDegraded" in result.output
