"""Book ingestion and retrieval core."""

__version__ = "0.1.0"
