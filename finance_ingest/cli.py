"""
CLI entry point for finance report ingestion.

NOTE: This is for DEVELOPMENT/TESTING only.
The production interface is the FastAPI backend.
This CLI exists to exercise the pipeline without spinning up the web stack.
"""

import gzip
import logging
import os
from pathlib import Path

import click
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _print_buckets(buckets, currency: str) -> None:
    if not buckets:
        click.echo("No financial records.")
        return
    for bucket in buckets:
        click.echo(f"  {bucket.month_key}: {bucket.total_normalized:,.2f} {currency} ({bucket.record_count} records)")


def _print_diagnostics(diagnostics, limit: int = 10) -> None:
    for diagnostic in diagnostics[:limit]:
        context = f" [{diagnostic.context}]" if diagnostic.context else ""
        click.echo(f"  {diagnostic.kind}{context}: {diagnostic.message}")
    if len(diagnostics) > limit:
        click.echo(f"  ... {len(diagnostics) - limit} more")


@click.group()
@click.version_option(version="0.1.0")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose):
    """Finance report ingestion - fetch, normalize and aggregate finance reports."""
    level = logging.DEBUG if verbose else os.environ.get("LOG_LEVEL", "WARNING").upper()
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


@cli.command()
@click.option("--vendor", envvar="FINANCE_VENDOR_ID", required=True, help="Vendor number")
@click.option("--key-file", envvar="FINANCE_PRIVATE_KEY_FILE", required=True,
              type=click.Path(exists=True, dir_okay=False), help="Path to the .p8 private key")
@click.option("--key-id", envvar="FINANCE_KEY_ID", required=True, help="API key ID")
@click.option("--issuer-id", envvar="FINANCE_ISSUER_ID", required=True, help="API issuer ID")
@click.option("--products", envvar="FINANCE_PRODUCT_IDENTIFIERS", required=True,
              help="Comma-separated product identifiers")
@click.option("--month", "months", multiple=True, help="Report month (YYYY-MM); repeatable")
def fetch(vendor, key_file, key_id, issuer_id, products, months):
    """Fetch and aggregate finance reports for the trailing 12 months.

    Example: finance-ingest fetch --vendor 85012345 --key-file AuthKey.p8 --key-id ABC --issuer-id 69a6... --products com.acme.app
    """
    from finance_ingest.config import Settings
    from finance_ingest.exceptions import CredentialError
    from finance_ingest.pipeline import Credentials, FinancePipeline

    settings = Settings.from_env()
    pipeline = FinancePipeline(settings=settings)
    credentials = Credentials(
        private_key=Path(key_file).read_text(),
        key_id=key_id,
        issuer_id=issuer_id,
    )

    click.echo(f"Fetching finance reports for vendor {vendor}...")
    try:
        result = pipeline.run(credentials, vendor, products, months=list(months) or None)
    except CredentialError as e:
        raise click.ClickException(str(e))

    summary = result.summary
    click.echo(
        f"Reports: {summary['total']} total, {summary['success']} with data, "
        f"{summary['failed']} failed, {summary['filtered_out']} filtered out"
    )
    for failure in result.failures:
        click.echo(f"  FAILED {failure.report_type}/{failure.region_code}/{failure.report_month}: {failure.reason}")

    click.echo(f"\nMonthly totals ({settings.reference_currency}):")
    _print_buckets(result.buckets, settings.reference_currency)

    if result.diagnostics:
        click.echo("\nDiagnostics:")
        _print_diagnostics(result.diagnostics)


@cli.command()
@click.argument("report_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--products", "-p", default="", help="Comma-separated product identifiers to filter on")
@click.option("--month", default=None, help="Report month (YYYY-MM) used for rows without a date")
@click.option("--strict", is_flag=True, help="Fail on a degraded parse or an approximate exchange rate")
def parse(report_file, products, month, strict):
    """Parse a downloaded report file (.txt or .gz) offline.

    Exchange rates are still looked up online for non-reference currencies.

    Example: finance-ingest parse finance_detail_2024-01.txt.gz -p com.acme.app
    """
    from datetime import date

    from finance_ingest.calculators.aggregation import aggregate_monthly
    from finance_ingest.calculators.currency import CurrencyNormalizer
    from finance_ingest.config import Settings
    from finance_ingest.extractors.financial_extractor import extract_financial_records
    from finance_ingest.extractors.product_filter import distinct_identifiers, filter_by_products
    from finance_ingest.parsers.tsv_parser import parse_report

    settings = Settings.from_env()
    content = Path(report_file).read_bytes()
    if content[:2] == b"\x1f\x8b":
        content = gzip.decompress(content)
    raw_text = content.decode("utf-8")

    diagnostics = []
    parsed = parse_report(raw_text, diagnostics=diagnostics)
    click.echo(f"Parsed {len(parsed.rows)} rows, {len(parsed.headers)} columns")

    table = filter_by_products(parsed, products) if products else parsed
    if products:
        click.echo(f"{len(table.rows)} rows match {products!r}")
        if not table.rows:
            click.echo(f"Identifiers in this report: {', '.join(distinct_identifiers(parsed)) or '(none)'}")

    normalizer = CurrencyNormalizer(
        reference_currency=settings.reference_currency,
        timeout=settings.rate_timeout,
    )
    fallback_month = month or date.today().strftime("%Y-%m")
    records = extract_financial_records(table, fallback_month, normalizer, diagnostics=diagnostics)

    if strict and diagnostics:
        error = diagnostics[0].to_exception()
        raise click.ClickException(f"{type(error).__name__}: {error}")

    click.echo(f"\nMonthly totals ({settings.reference_currency}):")
    _print_buckets(aggregate_monthly(records), settings.reference_currency)

    if diagnostics:
        click.echo("\nDiagnostics:")
        _print_diagnostics(diagnostics)


@cli.command()
@click.argument("currency")
@click.argument("iso_date")
def rate(currency, iso_date):
    """Look up the exchange rate of CURRENCY on ISO_DATE (YYYY-MM-DD).

    Example: finance-ingest rate EUR 2024-01-15
    """
    from finance_ingest.calculators.currency import CurrencyNormalizer
    from finance_ingest.config import Settings

    settings = Settings.from_env()
    normalizer = CurrencyNormalizer(
        reference_currency=settings.reference_currency,
        timeout=settings.rate_timeout,
    )
    diagnostics = []
    value = normalizer.rate(currency, iso_date, diagnostics=diagnostics)
    click.echo(f"1 {currency.upper()} = {value:.6f} {settings.reference_currency} on {iso_date}")
    if diagnostics:
        click.echo("(approximate: no provider returned a rate)")


if __name__ == "__main__":
    cli()
