"""Batch ingestion: admission, canonical storage, scoring and tenant linking."""

import json
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Mapping

from structlog.contextvars import bound_contextvars

from ..config import Settings, get_settings
from ..errors import InputError, StorageError, UnknownTenantError
from ..logging import PerformanceLogger, get_logger, log_error, log_processing_stage
from ..processing.admission import AdmissionFilter, RejectionReason
from ..processing.relevance import RelevanceScorer, keyword_matches
from ..processing.scoring import QualityScorer, processing_gate
from ..records import ProcessingStatus, RawArticle, ScrapeProvenance, Source
from ..storage.database import ContentStore
from ..tenants import Tenant, TenantRegistry
from ..utils import utcnow

logger = get_logger(__name__)

DEFAULT_IMPORT_METHOD = "import"

_REJECTION_COUNTERS = {
    RejectionReason.TOO_SHORT: "rejected_short",
    RejectionReason.SNIPPET: "rejected_snippet",
    RejectionReason.TRUNCATED: "rejected_snippet",
    RejectionReason.STALE: "rejected_stale",
    RejectionReason.INVALID_DATE: "rejected_invalid_date",
}


@dataclass
class ItemError:
    """A single article that failed without stopping the batch."""
    index: int
    url: str | None
    category: str
    message: str


@dataclass
class BatchResult:
    """Counters for one ingested batch."""
    tenant_id: str
    source_id: int | None = None
    received: int = 0
    admitted: int = 0
    new_content: int = 0
    links_created: int = 0
    links_updated: int = 0
    processed: int = 0
    duplicates_skipped: int = 0
    suppressed: int = 0
    rejected_short: int = 0
    rejected_snippet: int = 0
    rejected_stale: int = 0
    rejected_invalid_date: int = 0
    rejected_negative: int = 0
    rejected_competing: int = 0
    errors: list[ItemError] = field(default_factory=list)

    @property
    def rejected(self) -> int:
        return (
            self.rejected_short
            + self.rejected_snippet
            + self.rejected_stale
            + self.rejected_invalid_date
            + self.rejected_negative
            + self.rejected_competing
        )

    @property
    def succeeded(self) -> bool:
        """Whether the batch counts as a successful scrape for the source.

        A batch succeeds when at least one item could be parsed; an empty
        batch or one made only of malformed items is a failed scrape.
        """
        return self.received > len(self.errors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "source_id": self.source_id,
            "received": self.received,
            "admitted": self.admitted,
            "new_content": self.new_content,
            "links_created": self.links_created,
            "links_updated": self.links_updated,
            "processed": self.processed,
            "duplicates_skipped": self.duplicates_skipped,
            "suppressed": self.suppressed,
            "rejected_short": self.rejected_short,
            "rejected_snippet": self.rejected_snippet,
            "rejected_stale": self.rejected_stale,
            "rejected_invalid_date": self.rejected_invalid_date,
            "rejected_negative": self.rejected_negative,
            "rejected_competing": self.rejected_competing,
            "errors": [error.__dict__ for error in self.errors],
        }


class IngestionPipeline:
    """Runs scraped articles through admission, storage, scoring and linking.

    Articles of one batch are processed sequentially. A failure on one
    article is recorded in the batch result and the batch moves on.
    """

    def __init__(
        self,
        store: ContentStore,
        registry: TenantRegistry,
        settings: Settings | None = None,
    ):
        self.store = store
        self.registry = registry
        self.settings = settings or get_settings()
        self.admission = AdmissionFilter(self.settings)
        self.quality = QualityScorer(self.settings)
        self.relevance = RelevanceScorer(self.settings)

    def _resolve_tenant(self, tenant_id: str) -> Tenant:
        tenant = self.registry.get(tenant_id)
        if not tenant.is_active:
            raise UnknownTenantError(f"Tenant '{tenant_id}' is not active")
        return tenant

    async def ingest_batch(
        self,
        raw_articles: Iterable[Mapping[str, Any] | RawArticle],
        tenant_id: str,
        source_id: int | None = None,
        now: datetime | None = None,
    ) -> BatchResult:
        """Ingest one scraped batch for a tenant.

        Args:
            raw_articles: Producer output, mappings or ``RawArticle`` objects
            tenant_id: Tenant the batch was scraped for
            source_id: Source the batch came from, used for health accounting
            now: Discovery time (defaults to the current time)

        Returns:
            Batch counters and per-item errors

        Raises:
            UnknownTenantError: If the tenant is unknown or inactive
            UnknownSourceError: If the source id is unknown
        """
        tenant = self._resolve_tenant(tenant_id)
        competitors = self.registry.competitors_of(tenant_id)
        source = await self.store.get_source(source_id) if source_id is not None else None
        now = now or utcnow()

        result = BatchResult(tenant_id=tenant_id, source_id=source_id)
        seen_urls: set[str] = set()

        with (
            bound_contextvars(tenant_id=tenant_id, source_id=source_id),
            PerformanceLogger("ingest_batch", logger),
        ):
            for index, item in enumerate(raw_articles):
                result.received += 1
                url = item.source_url if isinstance(item, RawArticle) else _item_url(item)
                try:
                    await self._ingest_one(item, tenant, competitors, source, now, seen_urls, result)
                except InputError as e:
                    result.errors.append(ItemError(index, url, "input", str(e)))
                    logger.warning("Skipping malformed article", index=index, url=url, field=e.field)
                except StorageError as e:
                    result.errors.append(ItemError(index, url, "storage", str(e)))
                    logger.error(**log_error(e, context="ingest_article", index=index, url=url))
                except Exception as e:
                    result.errors.append(ItemError(index, url, "unknown", str(e)))
                    logger.error(**log_error(e, context="ingest_article", index=index, url=url))

        if source is not None:
            await self._account_source(source, result, now)

        logger.info(
            **log_processing_stage(
                stage="ingest",
                input_count=result.received,
                output_count=result.links_created + result.links_updated,
                tenant_id=tenant_id,
                source_id=source_id,
                admitted=result.admitted,
                rejected=result.rejected,
                duplicates=result.duplicates_skipped,
                suppressed=result.suppressed,
                errors=len(result.errors),
            )
        )
        return result

    async def _ingest_one(
        self,
        item: Mapping[str, Any] | RawArticle,
        tenant: Tenant,
        competitors: list[Tenant],
        source: Source | None,
        now: datetime,
        seen_urls: set[str],
        result: BatchResult,
    ) -> None:
        raw = item if isinstance(item, RawArticle) else RawArticle.from_mapping(item)

        normalized = raw.normalized_url
        if normalized in seen_urls:
            result.duplicates_skipped += 1
            return
        seen_urls.add(normalized)

        # Discarded links stay discarded
        if await self.store.link_status_for_url(raw.source_url, tenant.id) == ProcessingStatus.DISCARDED:
            logger.debug("Suppressing previously discarded article", url=normalized, tenant_id=tenant.id)
            result.suppressed += 1
            return

        decision = self.admission.evaluate(raw, tenant, now)
        if not decision.admitted:
            counter = _REJECTION_COUNTERS[decision.primary_reason]
            setattr(result, counter, getattr(result, counter) + 1)
            return

        # Keyword feeds store a repaired date; a missing date stays missing
        if (
            not tenant.is_regional
            and raw.published_at is not None
            and decision.effective_published_at != raw.published_at
        ):
            raw = replace(raw, published_at=decision.effective_published_at)

        admitted = await self.store.admit(raw, now)
        result.admitted += 1
        if admitted.created:
            result.new_content += 1

        relevance = self.relevance.score_relevance(raw, tenant, competitors)
        if relevance.disqualified:
            logger.debug(
                "Article disqualified by negative keyword",
                url=normalized,
                tenant_id=tenant.id,
                keyword=relevance.disqualified_by,
            )
            result.rejected_negative += 1
            return
        if relevance.rejected_competing:
            logger.debug(
                "Article belongs to a competing region",
                url=normalized,
                tenant_id=tenant.id,
                competing_region=relevance.competing_region,
            )
            result.rejected_competing += 1
            return

        quality = self.quality.quality(raw)
        status = processing_gate(quality, relevance.score, raw.word_count, self.settings)

        provenance = ScrapeProvenance(
            scrape_method=source.scraping_method if source else DEFAULT_IMPORT_METHOD,
            source_id=source.id if source else None,
            source_domain=raw.source_domain,
            scraped_at=now,
        )
        upsert = await self.store.upsert_link(
            admitted.article.id,
            tenant.id,
            relevance=relevance.score,
            quality=quality,
            keyword_matches=keyword_matches(raw, tenant),
            status=status,
            source_id=source.id if source else None,
            metadata=provenance,
            now=now,
        )

        if upsert.skipped_discarded:
            result.suppressed += 1
            return
        if upsert.created:
            result.links_created += 1
        else:
            result.links_updated += 1
        if upsert.link.processing_status == ProcessingStatus.PROCESSED:
            result.processed += 1

    async def _account_source(self, source: Source, result: BatchResult, now: datetime) -> None:
        error = None
        if not result.succeeded:
            error = result.errors[0].message if result.errors else "No articles in batch"
        try:
            await self.store.record_scrape_outcome(
                source.id,
                success=result.succeeded,
                articles=result.admitted,
                error=error,
                now=now,
            )
        except StorageError as e:
            logger.warning("Failed to update source counters", source_id=source.id, error=str(e))


def _item_url(item: Any) -> str | None:
    if isinstance(item, Mapping):
        return item.get("source_url") or item.get("url")
    return None


def read_articles_file(path: str | Path) -> list[dict[str, Any]]:
    """Load producer output from a JSON array, ``{"articles": [...]}`` or JSON lines.

    Raises:
        InputError: If the file cannot be decoded
    """
    path = Path(path)
    text = path.read_text(encoding="utf-8")

    try:
        if path.suffix == ".jsonl":
            return [json.loads(line) for line in text.splitlines() if line.strip()]
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise InputError(f"Invalid JSON in {path}: {e}") from e

    if isinstance(data, dict):
        data = data.get("articles", [])
    if not isinstance(data, list):
        raise InputError(f"Expected a list of articles in {path}")
    return data


async def ingest_articles(
    store: ContentStore,
    registry: TenantRegistry,
    raw_articles: Iterable[Mapping[str, Any] | RawArticle],
    tenant_id: str,
    source_id: int | None = None,
    settings: Settings | None = None,
) -> BatchResult:
    """Convenience function for batch ingestion."""
    pipeline = IngestionPipeline(store, registry, settings)
    return await pipeline.ingest_batch(raw_articles, tenant_id, source_id)
