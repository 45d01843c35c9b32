"""
App Store Connect finance report fetching.

Two pieces live here:
- issue_token: builds the short-lived ES256 bearer token the reporting API expects
- ReportFetcher: downloads one gzip-compressed finance report per call

The fetcher never raises. Every call settles to a FetchSuccess or FetchFailure
so the pipeline can keep going when individual months fail.
"""

import gzip
import logging
import time
import zlib

import jwt
import requests

from finance_ingest.config import DEFAULT_API_BASE_URL
from finance_ingest.exceptions import CredentialError, FetchError
from finance_ingest.models.report import FetchFailure, FetchOutcome, FetchSuccess

logger = logging.getLogger(__name__)

FINANCE_REPORTS_PATH = "/v1/financeReports"
TOKEN_ALGORITHM = "ES256"
GZIP_MAGIC = b"\x1f\x8b"


def _clean_private_key(private_key: str) -> str:
    """Strip whitespace and expand literal \\n sequences from pasted keys."""
    cleaned = private_key.strip()
    if "\\n" in cleaned and "\n" not in cleaned:
        cleaned = cleaned.replace("\\n", "\n")
    return cleaned


def issue_token(
    private_key: str,
    key_id: str,
    issuer_id: str,
    *,
    now: int | None = None,
    lifetime: int = 20 * 60,
    audience: str = "appstoreconnect-v1",
) -> str:
    """
    Sign a bearer token for the reporting API.

    Args:
        private_key: PEM-encoded EC private key (the .p8 file contents)
        key_id: Key ID, embedded as the "kid" header
        issuer_id: Issuer ID, used as the "iss" claim
        now: Issued-at time as a Unix timestamp (defaults to the current time)
        lifetime: Token validity in seconds
        audience: "aud" claim

    Returns:
        Encoded JWT string

    Raises:
        CredentialError: If the key is malformed or signing fails
    """
    cleaned_key = _clean_private_key(private_key or "")

    if "-----BEGIN" not in cleaned_key or "-----END" not in cleaned_key:
        # Signing is still attempted; a raw base64 key is the usual culprit
        logger.warning(
            "Private key for key id %s has no PEM BEGIN/END markers; "
            "it is probably misconfigured", key_id,
        )

    issued_at = int(time.time()) if now is None else int(now)
    payload = {
        "iss": issuer_id,
        "iat": issued_at,
        "exp": issued_at + lifetime,
        "aud": audience,
    }

    try:
        token = jwt.encode(
            payload,
            cleaned_key,
            algorithm=TOKEN_ALGORITHM,
            headers={"kid": key_id},
        )
    except (jwt.PyJWTError, ValueError, TypeError) as e:
        logger.error("Failed to sign token for key id %s: %s", key_id, e)
        raise CredentialError(f"Failed to generate token: {e}") from e

    logger.debug("Issued token for key id %s (length %d)", key_id, len(token))
    return token


def _error_reason(response: requests.Response) -> str:
    """Best human-readable message from a failed reporting API response."""
    fallback = f"HTTP {response.status_code}"
    text = response.text or ""
    try:
        body = response.json()
    except ValueError:
        return text or fallback

    errors = body.get("errors") if isinstance(body, dict) else None
    if errors and isinstance(errors, list) and isinstance(errors[0], dict):
        return errors[0].get("detail") or fallback
    return fallback


def _decode_report(content: bytes) -> str:
    """Gunzip (when compressed) and decode a report body as UTF-8."""
    if content[:2] == GZIP_MAGIC:
        try:
            content = gzip.decompress(content)
        except (OSError, EOFError, zlib.error) as e:
            raise FetchError(f"Failed to decompress report: {e}") from e
    else:
        logger.debug("Report body is not gzip-compressed, decoding as plain text")
    try:
        return content.decode("utf-8")
    except UnicodeDecodeError as e:
        raise FetchError(f"Report is not valid UTF-8: {e}") from e


class ReportFetcher:
    """Downloads finance reports from the reporting API."""

    def __init__(self, base_url: str = DEFAULT_API_BASE_URL, timeout: float = 60.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def build_params(self, vendor_id: str, report_type: str, region_code: str, report_month: str) -> dict:
        return {
            "filter[vendorNumber]": vendor_id,
            "filter[reportType]": report_type,
            "filter[regionCode]": region_code,
            "filter[reportDate]": report_month,
        }

    def fetch(
        self,
        token: str,
        vendor_id: str,
        report_type: str,
        region_code: str,
        report_month: str,
    ) -> FetchOutcome:
        """
        Fetch one finance report.

        Args:
            token: Bearer token from issue_token
            vendor_id: Vendor number of the developer account
            report_type: e.g. "FINANCE_DETAIL"
            region_code: e.g. "Z1"
            report_month: Report month in YYYY-MM format

        Returns:
            FetchSuccess with the report text, or FetchFailure with a reason
        """
        label = f"{report_type}/{region_code}/{report_month}"
        url = f"{self.base_url}{FINANCE_REPORTS_PATH}"
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/a-gzip",
        }

        try:
            response = requests.get(
                url,
                params=self.build_params(vendor_id, report_type, region_code, report_month),
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning("Request failed for %s: %s", label, e)
            return FetchFailure(reason=str(e) or e.__class__.__name__)

        logger.debug("Response status for %s: %s", label, response.status_code)

        if not response.ok:
            reason = _error_reason(response)
            logger.info("Report %s unavailable: %s", label, reason)
            return FetchFailure(reason=reason)

        try:
            text = _decode_report(response.content)
        except FetchError as e:
            logger.warning("Could not decode report %s: %s", label, e)
            return FetchFailure(reason=str(e))

        logger.info("Fetched %s (%d characters)", label, len(text))
        return FetchSuccess(raw_text=text)
