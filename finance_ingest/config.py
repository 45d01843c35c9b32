"""
Runtime settings for the finance ingestion pipeline.

Values come from environment variables (optionally loaded from a .env file by
the entry points via python-dotenv). Every setting has a default so the
pipeline runs with no configuration at all.
"""

import os
from dataclasses import dataclass, field


DEFAULT_API_BASE_URL = "https://api.appstoreconnect.apple.com"

# FINANCIAL reports use "ZZ" for the aggregated summary,
# FINANCE_DETAIL uses "Z1" for all countries/regions in one file.
REGION_CODES = {
    "FINANCIAL": ["ZZ"],
    "FINANCE_DETAIL": ["Z1"],
}
DEFAULT_REGION_CODES = ["ZZ"]


def region_codes_for(report_type: str) -> list[str]:
    """Region codes to request for a report type."""
    return list(REGION_CODES.get(report_type, DEFAULT_REGION_CODES))


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_list(name: str, default: list[str]) -> list[str]:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class Settings:
    """Pipeline configuration."""
    api_base_url: str = DEFAULT_API_BASE_URL
    reference_currency: str = "USD"
    report_types: list[str] = field(default_factory=lambda: ["FINANCE_DETAIL"])
    months_back: int = 12
    report_timeout: float = 60.0         # Seconds per report download
    rate_timeout: float = 5.0            # Seconds per exchange-rate provider attempt
    max_workers: int = 32
    pipeline_deadline: float | None = 300.0  # None = wait for every task
    token_audience: str = "appstoreconnect-v1"
    token_lifetime: int = 20 * 60        # Seconds
    api_token: str | None = None         # Bearer token guarding the HTTP API

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from FINANCE_* environment variables."""
        deadline = _env_float("FINANCE_PIPELINE_DEADLINE", 300.0)
        return cls(
            api_base_url=os.environ.get("FINANCE_API_BASE_URL", DEFAULT_API_BASE_URL).rstrip("/"),
            reference_currency=os.environ.get("FINANCE_REFERENCE_CURRENCY", "USD").strip().upper(),
            report_types=_env_list("FINANCE_REPORT_TYPES", ["FINANCE_DETAIL"]),
            months_back=_env_int("FINANCE_MONTHS_BACK", 12),
            report_timeout=_env_float("FINANCE_REPORT_TIMEOUT", 60.0),
            rate_timeout=_env_float("FINANCE_RATE_TIMEOUT", 5.0),
            max_workers=_env_int("FINANCE_MAX_WORKERS", 32),
            pipeline_deadline=deadline if deadline > 0 else None,
            token_audience=os.environ.get("FINANCE_TOKEN_AUDIENCE", "appstoreconnect-v1"),
            api_token=os.environ.get("FINANCE_API_TOKEN") or None,
        )
