"""Shared content store."""

from .database import AdmitResult, ContentStore, LinkUpsert, PurgeResult

__all__ = ["AdmitResult", "ContentStore", "LinkUpsert", "PurgeResult"]
