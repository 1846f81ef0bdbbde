"""Knowledge base ingestion, extraction and profile merge pipeline."""

__version__ = "1.0.0"
