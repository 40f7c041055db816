"""Queue-to-store ingestion."""

from relay.ingestion.pipeline import IngestionPipeline, Resolution

__all__ = ["IngestionPipeline", "Resolution"]
