"""
Shared content store backed by SQLite (aiosqlite).

Holds the cross-tenant canonical articles, the per-tenant links, the source
health counters with their audit log, the tenant-facing stories read by the
duplicate resolver, and a small key-value table for limiters and caches.

Admission of a URL is a single ``INSERT ... ON CONFLICT DO UPDATE`` statement:
the UNIQUE constraint on ``normalized_url`` is what serializes concurrent
callers, there is no check-then-insert anywhere.
"""

import asyncio
import json
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, AsyncIterator, Callable

import aiosqlite

from ..errors import InvalidTransitionError, StorageError, UnknownSourceError
from ..logging import get_logger
from ..processing.canonicalize import content_checksum, normalize_url
from ..records import (
    HEALTH_REASON_ADAPTER,
    IMPORT_METADATA_ADAPTER,
    LINK_TRANSITIONS,
    AuditEntry,
    CanonicalArticle,
    DeactivationReason,
    ImportMetadata,
    MethodChangeReason,
    ProcessingStatus,
    RawArticle,
    RetentionDiscard,
    Source,
    Story,
    StoryStatus,
    TenantArticleLink,
)
from ..utils import ensure_directory, format_datetime_iso, utcnow
from .schema import PRAGMAS, SCHEMA

logger = get_logger(__name__)


def _ts(dt: datetime | None) -> str | None:
    return format_datetime_iso(dt) if dt is not None else None


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@dataclass
class AdmitResult:
    """Outcome of admitting one raw article."""
    article: CanonicalArticle
    created: bool
    content_changed: bool = False


@dataclass
class LinkUpsert:
    """Outcome of writing a tenant link."""
    link: TenantArticleLink | None
    created: bool
    skipped_discarded: bool = False


@dataclass
class PurgeResult:
    links_deleted: int
    articles_deleted: int


class ContentStore:
    """Async SQLite content store.

    Use as an async context manager::

        async with ContentStore(path) as store:
            result = await store.admit(article)
    """

    def __init__(self, database_path: str | Path):
        self.database_path = Path(database_path)
        self._conn: aiosqlite.Connection | None = None
        # One connection is shared by every coroutine of this process
        self._write_lock = asyncio.Lock()

    async def __aenter__(self) -> "ContentStore":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def connect(self) -> None:
        """Open the connection and make sure the schema exists."""
        if self._conn is not None:
            return

        ensure_directory(self.database_path.parent)
        # Autocommit mode; multi-statement writes open explicit transactions
        self._conn = await aiosqlite.connect(self.database_path, isolation_level=None)
        self._conn.row_factory = aiosqlite.Row
        for pragma in PRAGMAS:
            await self._conn.execute(pragma)
        await self._conn.executescript(SCHEMA)
        logger.debug("Content store opened", path=str(self.database_path))

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise StorageError("Content store not connected. Use async context manager.")
        return self._conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Write transaction that takes the database write lock up front."""
        conn = self.conn
        async with self._write_lock:
            try:
                await conn.execute("BEGIN IMMEDIATE")
            except aiosqlite.Error as e:
                raise StorageError(f"Could not start transaction: {e}") from e
            try:
                yield conn
            except aiosqlite.Error as e:
                await conn.execute("ROLLBACK")
                raise StorageError(str(e)) from e
            except BaseException:
                await conn.execute("ROLLBACK")
                raise
            else:
                await conn.execute("COMMIT")

    async def _fetchone(self, sql: str, params: Any = ()) -> aiosqlite.Row | None:
        async with self.conn.execute(sql, params) as cursor:
            return await cursor.fetchone()

    async def _fetchall(self, sql: str, params: Any = ()) -> list[aiosqlite.Row]:
        async with self.conn.execute(sql, params) as cursor:
            return list(await cursor.fetchall())

    # ── Canonical articles ────────────────────────────────────────────────

    @staticmethod
    def _article_from_row(row: aiosqlite.Row) -> CanonicalArticle:
        return CanonicalArticle(
            id=row["id"],
            normalized_url=row["normalized_url"],
            url=row["url"],
            title=row["title"],
            body=row["body"],
            author=row["author"],
            image_url=row["image_url"],
            published_at=_dt(row["published_at"]),
            word_count=row["word_count"],
            source_domain=row["source_domain"],
            content_checksum=row["content_checksum"],
            first_seen_at=_dt(row["first_seen_at"]),
            last_seen_at=_dt(row["last_seen_at"]),
        )

    async def admit(self, raw: RawArticle, now: datetime | None = None) -> AdmitResult:
        """Insert a canonical article or record another sighting of it.

        Idempotent per normalized URL: a second call for the same URL only
        moves ``last_seen_at`` forward (and refreshes the content when the
        checksum changed).
        """
        now_ts = _ts(now or utcnow())
        normalized = normalize_url(raw.source_url)
        if not normalized:
            raise StorageError(f"Cannot admit article without a usable URL: {raw.source_url!r}")

        params = {
            "normalized_url": normalized,
            "url": raw.source_url,
            "title": raw.title,
            "body": raw.body or "",
            "author": raw.author,
            "image_url": raw.image_url,
            "published_at": _ts(raw.published_at),
            "word_count": raw.word_count,
            "source_domain": raw.source_domain,
            "content_checksum": content_checksum(raw.title, raw.body),
            "now": now_ts,
        }

        sql = """
            INSERT INTO canonical_articles (
                normalized_url, url, title, body, author, image_url, published_at,
                word_count, source_domain, content_checksum, first_seen_at, last_seen_at
            ) VALUES (
                :normalized_url, :url, :title, :body, :author, :image_url, :published_at,
                :word_count, :source_domain, :content_checksum, :now, :now
            )
            ON CONFLICT(normalized_url) DO UPDATE SET
                last_seen_at = excluded.last_seen_at,
                sightings = canonical_articles.sightings + 1,
                content_updated_at = CASE
                    WHEN canonical_articles.content_checksum != excluded.content_checksum
                    THEN excluded.last_seen_at ELSE canonical_articles.content_updated_at END,
                title = CASE
                    WHEN canonical_articles.content_checksum != excluded.content_checksum
                    THEN excluded.title ELSE canonical_articles.title END,
                body = CASE
                    WHEN canonical_articles.content_checksum != excluded.content_checksum
                    THEN excluded.body ELSE canonical_articles.body END,
                word_count = CASE
                    WHEN canonical_articles.content_checksum != excluded.content_checksum
                    THEN excluded.word_count ELSE canonical_articles.word_count END,
                content_checksum = excluded.content_checksum
            RETURNING *
        """

        try:
            row = await self._fetchone(sql, params)
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to admit {normalized}: {e}") from e

        created = row["sightings"] == 1
        content_changed = not created and row["content_updated_at"] == now_ts
        if content_changed:
            logger.info("Canonical article content changed", normalized_url=normalized)

        return AdmitResult(
            article=self._article_from_row(row),
            created=created,
            content_changed=content_changed,
        )

    async def get_article(self, url: str) -> CanonicalArticle | None:
        """Look up a canonical article by any URL variant."""
        row = await self._fetchone(
            "SELECT * FROM canonical_articles WHERE normalized_url = ?",
            (normalize_url(url),),
        )
        return self._article_from_row(row) if row else None

    async def content_exists(self, url: str) -> bool:
        return await self.get_article(url) is not None

    async def count_articles(self) -> int:
        row = await self._fetchone("SELECT COUNT(*) AS n FROM canonical_articles")
        return row["n"]

    # ── Tenant article links ──────────────────────────────────────────────

    @staticmethod
    def _link_from_row(row: aiosqlite.Row) -> TenantArticleLink:
        metadata = None
        if row["import_metadata"]:
            metadata = IMPORT_METADATA_ADAPTER.validate_json(row["import_metadata"])
        return TenantArticleLink(
            id=row["id"],
            canonical_article_id=row["canonical_article_id"],
            tenant_id=row["tenant_id"],
            source_id=row["source_id"],
            regional_relevance_score=row["regional_relevance_score"],
            content_quality_score=row["content_quality_score"],
            keyword_matches=json.loads(row["keyword_matches"]),
            processing_status=ProcessingStatus(row["processing_status"]),
            import_metadata=metadata,
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
        )

    @staticmethod
    def _metadata_json(metadata: ImportMetadata | None) -> str | None:
        if metadata is None:
            return None
        return IMPORT_METADATA_ADAPTER.dump_json(metadata).decode("utf-8")

    async def upsert_link(
        self,
        canonical_article_id: int,
        tenant_id: str,
        *,
        relevance: int,
        quality: int,
        keyword_matches: list[str],
        status: ProcessingStatus = ProcessingStatus.NEW,
        source_id: int | None = None,
        metadata: ImportMetadata | None = None,
        now: datetime | None = None,
    ) -> LinkUpsert:
        """Create or refresh the link for (article, tenant).

        An existing link keeps its status, except that ``new`` may be
        promoted to ``processed``. A discarded link is left untouched.
        """
        now_ts = _ts(now or utcnow())
        sql = """
            INSERT INTO tenant_article_links (
                canonical_article_id, tenant_id, source_id, regional_relevance_score,
                content_quality_score, keyword_matches, processing_status, import_metadata,
                created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(canonical_article_id, tenant_id) DO UPDATE SET
                regional_relevance_score = excluded.regional_relevance_score,
                content_quality_score = excluded.content_quality_score,
                keyword_matches = excluded.keyword_matches,
                processing_status = CASE
                    WHEN tenant_article_links.processing_status = 'new'
                         AND excluded.processing_status = 'processed'
                    THEN 'processed' ELSE tenant_article_links.processing_status END,
                revision = tenant_article_links.revision + 1,
                updated_at = excluded.updated_at
            WHERE tenant_article_links.processing_status != 'discarded'
            RETURNING *
        """
        params = (
            canonical_article_id,
            tenant_id,
            source_id,
            relevance,
            quality,
            json.dumps(keyword_matches),
            ProcessingStatus(status).value,
            self._metadata_json(metadata),
            now_ts,
            now_ts,
        )

        try:
            row = await self._fetchone(sql, params)
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to write link for tenant {tenant_id}: {e}") from e

        if row is None:
            logger.debug(
                "Skipping discarded link",
                canonical_article_id=canonical_article_id,
                tenant_id=tenant_id,
            )
            return LinkUpsert(link=None, created=False, skipped_discarded=True)

        return LinkUpsert(link=self._link_from_row(row), created=row["revision"] == 1)

    async def get_link(self, link_id: int) -> TenantArticleLink | None:
        row = await self._fetchone("SELECT * FROM tenant_article_links WHERE id = ?", (link_id,))
        return self._link_from_row(row) if row else None

    async def link_status_for_url(self, url: str, tenant_id: str) -> ProcessingStatus | None:
        """Status of a tenant's link to the article behind a URL, if any."""
        row = await self._fetchone(
            """
            SELECT l.processing_status FROM tenant_article_links l
            JOIN canonical_articles a ON a.id = l.canonical_article_id
            WHERE a.normalized_url = ? AND l.tenant_id = ?
            """,
            (normalize_url(url), tenant_id),
        )
        return ProcessingStatus(row["processing_status"]) if row else None

    async def list_links(
        self,
        tenant_id: str,
        status: ProcessingStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[TenantArticleLink]:
        """Links for a tenant, newest first."""
        sql = "SELECT * FROM tenant_article_links WHERE tenant_id = ?"
        params: list[Any] = [tenant_id]
        if status is not None:
            sql += " AND processing_status = ?"
            params.append(ProcessingStatus(status).value)
        sql += " ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        return [self._link_from_row(row) for row in await self._fetchall(sql, params)]

    async def set_link_status(
        self,
        link_id: int,
        status: ProcessingStatus,
        metadata: ImportMetadata | None = None,
        now: datetime | None = None,
    ) -> TenantArticleLink:
        """Advance a link through ``new -> processed | discarded``.

        Raises:
            InvalidTransitionError: If the state machine forbids the move
            StorageError: If the link does not exist
        """
        status = ProcessingStatus(status)
        now_ts = _ts(now or utcnow())

        async with self.transaction() as conn:
            async with conn.execute(
                "SELECT processing_status FROM tenant_article_links WHERE id = ?", (link_id,)
            ) as cursor:
                row = await cursor.fetchone()
            if row is None:
                raise StorageError(f"Link {link_id} not found")

            current = ProcessingStatus(row["processing_status"])
            if status not in LINK_TRANSITIONS[current]:
                raise InvalidTransitionError(current.value, status.value)

            sql = "UPDATE tenant_article_links SET processing_status = ?, updated_at = ?"
            params: list[Any] = [status.value, now_ts]
            if metadata is not None:
                sql += ", import_metadata = ?"
                params.append(self._metadata_json(metadata))
            sql += " WHERE id = ?"
            params.append(link_id)
            await conn.execute(sql, params)

        logger.info("Link status changed", link_id=link_id, before=current.value, after=status.value)
        link = await self.get_link(link_id)
        if link is None:
            raise StorageError(f"Link {link_id} disappeared after status change")
        return link

    async def discard_stale_links(self, older_than: timedelta, now: datetime | None = None) -> int:
        """Retention: discard links that stayed ``new`` past the window."""
        now = now or utcnow()
        cutoff = _ts(now - older_than)
        metadata = RetentionDiscard(
            discarded_at=now,
            reason=f"still new after {older_than.days} days",
        )
        async with self.conn.execute(
            """
            UPDATE tenant_article_links
            SET processing_status = 'discarded', import_metadata = ?, updated_at = ?
            WHERE processing_status = 'new' AND created_at < ?
            """,
            (self._metadata_json(metadata), _ts(now), cutoff),
        ) as cursor:
            count = cursor.rowcount
        logger.info("Stale links discarded", count=count, cutoff=cutoff)
        return count

    async def count_stale_links(self, older_than: timedelta, now: datetime | None = None) -> int:
        """Links that ``discard_stale_links`` would discard."""
        row = await self._fetchone(
            "SELECT COUNT(*) AS n FROM tenant_article_links "
            "WHERE processing_status = 'new' AND created_at < ?",
            (_ts((now or utcnow()) - older_than),),
        )
        return row["n"]

    async def purge_discarded(self, older_than: timedelta, now: datetime | None = None) -> PurgeResult:
        """Hard-delete old discarded links and articles nothing references."""
        cutoff = _ts((now or utcnow()) - older_than)
        async with self.transaction() as conn:
            async with conn.execute(
                "DELETE FROM tenant_article_links WHERE processing_status = 'discarded' AND updated_at < ?",
                (cutoff,),
            ) as cursor:
                links_deleted = cursor.rowcount
            async with conn.execute(
                """
                DELETE FROM canonical_articles
                WHERE last_seen_at < ?
                  AND id NOT IN (SELECT canonical_article_id FROM tenant_article_links)
                  AND id NOT IN (
                      SELECT canonical_article_id FROM stories WHERE canonical_article_id IS NOT NULL
                  )
                """,
                (cutoff,),
            ) as cursor:
                articles_deleted = cursor.rowcount

        logger.info("Retention purge", links_deleted=links_deleted, articles_deleted=articles_deleted)
        return PurgeResult(links_deleted=links_deleted, articles_deleted=articles_deleted)

    # ── Sources ───────────────────────────────────────────────────────────

    @staticmethod
    def _source_from_row(row: aiosqlite.Row) -> Source:
        probe = row["last_probe_ok"]
        return Source(
            id=row["id"],
            name=row["name"],
            feed_url=row["feed_url"],
            scraping_method=row["scraping_method"],
            success_rate=row["success_rate"],
            consecutive_failures=row["consecutive_failures"],
            is_active=bool(row["is_active"]),
            is_critical=bool(row["is_critical"]),
            last_scraped_at=_dt(row["last_scraped_at"]),
            last_error=row["last_error"],
            last_probe_ok=None if probe is None else bool(probe),
            articles_scraped=row["articles_scraped"],
            success_count=row["success_count"],
            failure_count=row["failure_count"],
        )

    async def add_source(
        self,
        name: str,
        feed_url: str,
        scraping_method: str,
        *,
        is_critical: bool = False,
        is_active: bool = True,
        success_rate: float | None = None,
        now: datetime | None = None,
    ) -> Source:
        row = await self._fetchone(
            """
            INSERT INTO sources (name, feed_url, scraping_method, success_rate,
                                 is_active, is_critical, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            RETURNING *
            """,
            (name, feed_url, scraping_method, success_rate, int(is_active), int(is_critical),
             _ts(now or utcnow())),
        )
        return self._source_from_row(row)

    async def get_source(self, source_id: int) -> Source:
        row = await self._fetchone("SELECT * FROM sources WHERE id = ?", (source_id,))
        if row is None:
            raise UnknownSourceError(f"Source {source_id} not found")
        return self._source_from_row(row)

    async def list_sources(self, active_only: bool = False) -> list[Source]:
        sql = "SELECT * FROM sources"
        if active_only:
            sql += " WHERE is_active = 1"
        sql += " ORDER BY last_scraped_at IS NOT NULL, last_scraped_at, id"
        return [self._source_from_row(row) for row in await self._fetchall(sql)]

    async def record_scrape_outcome(
        self,
        source_id: int,
        *,
        success: bool,
        articles: int = 0,
        error: str | None = None,
        now: datetime | None = None,
    ) -> Source:
        """Fold one scrape attempt into the source counters."""
        now_ts = _ts(now or utcnow())
        ok = 1 if success else 0
        row = await self._fetchone(
            """
            UPDATE sources SET
                success_count = success_count + :ok,
                failure_count = failure_count + (1 - :ok),
                success_rate = ROUND(100.0 * (success_count + :ok)
                                     / (success_count + failure_count + 1), 1),
                consecutive_failures = CASE WHEN :ok = 1 THEN 0 ELSE consecutive_failures + 1 END,
                articles_scraped = articles_scraped + :articles,
                last_scraped_at = CASE WHEN :ok = 1 THEN :now ELSE last_scraped_at END,
                last_error = CASE WHEN :ok = 1 THEN last_error ELSE :error END,
                updated_at = :now
            WHERE id = :id
            RETURNING *
            """,
            {"ok": ok, "articles": articles, "error": error, "now": now_ts, "id": source_id},
        )
        if row is None:
            raise UnknownSourceError(f"Source {source_id} not found")
        return self._source_from_row(row)

    async def record_probe(
        self,
        source_id: int,
        *,
        accessible: bool,
        error: str | None = None,
        now: datetime | None = None,
    ) -> None:
        """Store the outcome of an accessibility probe."""
        await self.conn.execute(
            """
            UPDATE sources SET
                last_probe_ok = :ok,
                consecutive_failures = CASE WHEN :ok = 1 THEN consecutive_failures
                                            ELSE consecutive_failures + 1 END,
                last_error = CASE WHEN :ok = 1 THEN last_error ELSE :error END,
                updated_at = :now
            WHERE id = :id
            """,
            {"ok": int(accessible), "error": error, "now": _ts(now or utcnow()), "id": source_id},
        )

    async def _write_audit(
        self,
        conn: aiosqlite.Connection,
        source_id: int,
        action: str,
        before: str,
        after: str,
        reason: DeactivationReason | MethodChangeReason,
        now_ts: str,
    ) -> None:
        await conn.execute(
            """
            INSERT INTO source_audit_log (source_id, action, before, after, reason, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (source_id, action, before, after,
             HEALTH_REASON_ADAPTER.dump_json(reason).decode("utf-8"), now_ts),
        )

    async def update_source_method(
        self,
        source_id: int,
        expected_method: str,
        reason: MethodChangeReason,
        now: datetime | None = None,
    ) -> bool:
        """Switch a source's scraping method and audit the change.

        Compare-and-set on ``expected_method``: returns False when someone
        else already changed the method.
        """
        now_ts = _ts(now or utcnow())
        async with self.transaction() as conn:
            async with conn.execute(
                """
                UPDATE sources SET scraping_method = ?, updated_at = ?
                WHERE id = ? AND scraping_method = ?
                """,
                (reason.to_method, now_ts, source_id, expected_method),
            ) as cursor:
                changed = cursor.rowcount == 1
            if changed:
                await self._write_audit(
                    conn, source_id, "method_change", expected_method, reason.to_method, reason, now_ts
                )
        return changed

    async def deactivate_source(
        self,
        source_id: int,
        reason: DeactivationReason,
        now: datetime | None = None,
    ) -> bool:
        """Flip ``is_active`` off and audit it. False if already inactive."""
        now_ts = _ts(now or utcnow())
        last_error = f"Auto-deactivated: {reason.last_error or 'consistently failing'}"
        async with self.transaction() as conn:
            async with conn.execute(
                """
                UPDATE sources SET is_active = 0, last_error = ?, updated_at = ?
                WHERE id = ? AND is_active = 1
                """,
                (last_error, now_ts, source_id),
            ) as cursor:
                changed = cursor.rowcount == 1
            if changed:
                await self._write_audit(conn, source_id, "deactivate", "active", "inactive", reason, now_ts)
        return changed

    async def audit_log(self, source_id: int | None = None) -> list[AuditEntry]:
        sql = "SELECT * FROM source_audit_log"
        params: tuple = ()
        if source_id is not None:
            sql += " WHERE source_id = ?"
            params = (source_id,)
        sql += " ORDER BY id"
        return [
            AuditEntry(
                id=row["id"],
                source_id=row["source_id"],
                action=row["action"],
                before=row["before"],
                after=row["after"],
                reason=HEALTH_REASON_ADAPTER.validate_json(row["reason"]),
                created_at=_dt(row["created_at"]),
            )
            for row in await self._fetchall(sql, params)
        ]

    # ── Stories ───────────────────────────────────────────────────────────

    @staticmethod
    def _story_from_row(row: aiosqlite.Row) -> Story:
        return Story(
            id=row["id"],
            tenant_id=row["tenant_id"],
            title=row["title"],
            is_published=bool(row["is_published"]),
            status=StoryStatus(row["status"]),
            created_at=_dt(row["created_at"]),
            canonical_article_id=row["canonical_article_id"],
        )

    async def add_story(
        self,
        tenant_id: str,
        title: str,
        *,
        is_published: bool = False,
        status: StoryStatus = StoryStatus.DRAFT,
        canonical_article_id: int | None = None,
        created_at: datetime | None = None,
    ) -> Story:
        row = await self._fetchone(
            """
            INSERT INTO stories (tenant_id, canonical_article_id, title, is_published, status, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            RETURNING *
            """,
            (tenant_id, canonical_article_id, title, int(is_published),
             StoryStatus(status).value, _ts(created_at or utcnow())),
        )
        return self._story_from_row(row)

    async def list_stories(self, tenant_id: str, include_archived: bool = False) -> list[Story]:
        sql = "SELECT * FROM stories WHERE tenant_id = ?"
        if not include_archived:
            sql += " AND status != 'archived'"
        sql += " ORDER BY created_at DESC, id DESC"
        return [self._story_from_row(row) for row in await self._fetchall(sql, (tenant_id,))]

    async def archive_stories(self, story_ids: list[int]) -> int:
        """Archive (never delete) stories; returns how many changed."""
        if not story_ids:
            return 0
        placeholders = ", ".join("?" for _ in story_ids)
        async with self.conn.execute(
            f"""
            UPDATE stories SET status = 'archived', is_published = 0
            WHERE id IN ({placeholders}) AND status != 'archived'
            """,
            list(story_ids),
        ) as cursor:
            return cursor.rowcount

    # ── Key-value entries ─────────────────────────────────────────────────

    async def kv_get(self, key: str, now: datetime | None = None) -> Any | None:
        """Read a non-expired value."""
        row = await self._fetchone(
            "SELECT value FROM kv_entries WHERE key = ? AND (expires_at IS NULL OR expires_at > ?)",
            (key, _ts(now or utcnow())),
        )
        return json.loads(row["value"]) if row else None

    async def kv_set(
        self,
        key: str,
        value: Any,
        ttl: timedelta | None = None,
        now: datetime | None = None,
    ) -> None:
        now = now or utcnow()
        expires = _ts(now + ttl) if ttl is not None else None
        await self.conn.execute(
            """
            INSERT INTO kv_entries (key, value, expires_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value, expires_at = excluded.expires_at
            """,
            (key, json.dumps(value), expires),
        )

    async def kv_update(
        self,
        key: str,
        update: Callable[[Any | None], Any],
        ttl: timedelta | None = None,
        now: datetime | None = None,
    ) -> Any:
        """Atomic read-modify-write of one entry.

        ``update`` receives the current (non-expired) value or None and
        returns the value to store. Runs under the database write lock so
        concurrent processes cannot interleave.
        """
        now = now or utcnow()
        now_ts = _ts(now)
        async with self.transaction() as conn:
            async with conn.execute(
                "SELECT value FROM kv_entries WHERE key = ? AND (expires_at IS NULL OR expires_at > ?)",
                (key, now_ts),
            ) as cursor:
                row = await cursor.fetchone()
            current = json.loads(row["value"]) if row else None
            new_value = update(current)
            expires = _ts(now + ttl) if ttl is not None else None
            await conn.execute(
                """
                INSERT INTO kv_entries (key, value, expires_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, expires_at = excluded.expires_at
                """,
                (key, json.dumps(new_value), expires),
            )
        return new_value

    async def kv_delete_expired(self, now: datetime | None = None) -> int:
        async with self.conn.execute(
            "DELETE FROM kv_entries WHERE expires_at IS NOT NULL AND expires_at <= ?",
            (_ts(now or utcnow()),),
        ) as cursor:
            return cursor.rowcount
