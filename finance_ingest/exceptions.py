"""Exception classes for the finance ingestion pipeline."""


class FinanceIngestError(Exception):
    """Base exception for finance_ingest."""
    pass


class CredentialError(FinanceIngestError):
    """The signing credentials could not produce a token. Fatal for a run."""
    pass


class FetchError(FinanceIngestError):
    """A single report fetch failed. Converted to a FetchFailure by the fetcher."""
    pass


class ParseDegraded(FinanceIngestError):
    """Header/footer detection fell back to defaults."""
    pass


class NormalizationFallback(FinanceIngestError):
    """Static or parity exchange rate used instead of a provider rate."""
    pass
