"""Batch ingestion of scraped articles."""

from .pipeline import BatchResult, IngestionPipeline, ItemError, ingest_articles, read_articles_file

__all__ = [
    "BatchResult",
    "IngestionPipeline",
    "ItemError",
    "ingest_articles",
    "read_articles_file",
]
