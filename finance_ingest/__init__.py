"""Finance report ingestion and normalization pipeline."""

__version__ = "0.1.0"
