"""Record types shared by the store, the scorer and the health monitor."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Mapping, Union

from pydantic import BaseModel, Field, TypeAdapter

from .errors import InputError
from .processing.canonicalize import extract_domain, normalize_url
from .utils import count_words, ensure_aware, parse_date_string


class ProcessingStatus(str, Enum):
    """Lifecycle of a tenant article link."""
    NEW = "new"
    PROCESSED = "processed"
    DISCARDED = "discarded"


class TopicType(str, Enum):
    """How a tenant decides relevance."""
    REGIONAL = "regional"
    KEYWORD = "keyword"


class StoryStatus(str, Enum):
    DRAFT = "draft"
    READY = "ready"
    PUBLISHED = "published"
    ARCHIVED = "archived"


# Allowed link status transitions; anything else is rejected by the store.
LINK_TRANSITIONS: dict[ProcessingStatus, set[ProcessingStatus]] = {
    ProcessingStatus.NEW: {ProcessingStatus.PROCESSED, ProcessingStatus.DISCARDED},
    ProcessingStatus.PROCESSED: {ProcessingStatus.DISCARDED},
    ProcessingStatus.DISCARDED: set(),
}


@dataclass
class RawArticle:
    """An already-extracted article as handed over by a scraper."""
    title: str
    body: str
    source_url: str
    author: str | None = None
    image_url: str | None = None
    published_at: datetime | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "RawArticle":
        """Build a raw article from producer output.

        Raises:
            InputError: If a required field is missing or malformed
        """
        if not isinstance(data, Mapping):
            raise InputError(f"Article must be a mapping, got {type(data).__name__}")

        title = data.get("title") or ""
        source_url = data.get("source_url") or data.get("url") or ""
        if not isinstance(title, str):
            raise InputError("Field title must be text", field="title")
        if not isinstance(source_url, str):
            raise InputError("Field source_url must be text", field="source_url")
        title = title.strip()
        source_url = source_url.strip()
        if not title:
            raise InputError("Missing required field: title", field="title")
        if not source_url:
            raise InputError("Missing required field: source_url", field="source_url")
        if not normalize_url(source_url):
            raise InputError(f"Unusable source_url: {source_url!r}", field="source_url")

        body = data.get("body") or data.get("content") or ""
        if not isinstance(body, str):
            raise InputError("Field body must be text", field="body")

        published = data.get("published_at")
        if isinstance(published, datetime):
            published_at = ensure_aware(published)
        elif isinstance(published, str) and published.strip():
            published_at = parse_date_string(published)
        else:
            published_at = None

        return cls(
            title=title,
            body=body,
            source_url=source_url,
            author=(data.get("author") or None),
            image_url=(data.get("image_url") or None),
            published_at=published_at,
        )

    @property
    def normalized_url(self) -> str:
        return normalize_url(self.source_url)

    @property
    def source_domain(self) -> str:
        return extract_domain(self.source_url)

    @property
    def word_count(self) -> int:
        return count_words(self.body)


@dataclass
class CanonicalArticle:
    """One deduplicated article in the shared content store."""
    id: int
    normalized_url: str
    url: str
    title: str
    body: str
    author: str | None
    image_url: str | None
    published_at: datetime | None
    word_count: int
    source_domain: str
    content_checksum: str
    first_seen_at: datetime
    last_seen_at: datetime


@dataclass
class TenantArticleLink:
    """A tenant's scored view of a canonical article."""
    id: int
    canonical_article_id: int
    tenant_id: str
    source_id: int | None
    regional_relevance_score: int
    content_quality_score: int
    keyword_matches: list[str]
    processing_status: ProcessingStatus
    import_metadata: "ImportMetadata | None"
    created_at: datetime
    updated_at: datetime


@dataclass
class Source:
    """A scraped feed and its health counters."""
    id: int
    name: str
    feed_url: str
    scraping_method: str
    success_rate: float | None = None
    consecutive_failures: int = 0
    is_active: bool = True
    is_critical: bool = False
    last_scraped_at: datetime | None = None
    last_error: str | None = None
    last_probe_ok: bool | None = None
    articles_scraped: int = 0
    success_count: int = 0
    failure_count: int = 0


@dataclass
class Story:
    """A tenant-facing story produced by the external story generator."""
    id: int
    tenant_id: str
    title: str
    is_published: bool
    status: StoryStatus
    created_at: datetime
    canonical_article_id: int | None = None


# ── import_metadata variants ───────────────────────────────────────────────

class ScrapeProvenance(BaseModel):
    """Where and how an article link was imported."""
    kind: Literal["scrape"] = "scrape"
    scrape_method: str
    source_id: int | None = None
    source_domain: str = ""
    scraped_at: datetime


class RetentionDiscard(BaseModel):
    """Link discarded by the retention policy."""
    kind: Literal["retention"] = "retention"
    discarded_at: datetime
    reason: str


class ManualTriage(BaseModel):
    """Status change made by an operator or queue consumer."""
    kind: Literal["manual"] = "manual"
    actor: str
    note: str = ""
    at: datetime


ImportMetadata = Annotated[
    Union[ScrapeProvenance, RetentionDiscard, ManualTriage],
    Field(discriminator="kind"),
]
IMPORT_METADATA_ADAPTER = TypeAdapter(ImportMetadata)


# ── health audit variants ──────────────────────────────────────────────────

class DeactivationReason(BaseModel):
    kind: Literal["deactivate"] = "deactivate"
    success_rate: float
    threshold: float
    last_error: str | None = None


class MethodChangeReason(BaseModel):
    kind: Literal["method_change"] = "method_change"
    from_method: str
    to_method: str
    current_rate: float
    alternative_average: float
    sample_size: int
    opportunistic: bool = False


HealthActionReason = Annotated[
    Union[DeactivationReason, MethodChangeReason],
    Field(discriminator="kind"),
]
HEALTH_REASON_ADAPTER = TypeAdapter(HealthActionReason)


@dataclass
class AuditEntry:
    """One logged automatic mutation of a source."""
    id: int
    source_id: int
    action: str
    before: str
    after: str
    reason: HealthActionReason
    created_at: datetime
