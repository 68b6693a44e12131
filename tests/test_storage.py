"""Tests for the shared content store."""

import asyncio
from dataclasses import replace
from datetime import timedelta

import pytest
from conftest import NOW, make_article

from topicfeed.errors import InvalidTransitionError, StorageError, UnknownSourceError
from topicfeed.records import (
    DeactivationReason,
    ManualTriage,
    MethodChangeReason,
    ProcessingStatus,
    RetentionDiscard,
    ScrapeProvenance,
    StoryStatus,
)
from topicfeed.storage.database import ContentStore


async def _link(store, article_id, tenant_id="eastbourne", status=ProcessingStatus.NEW, now=NOW):
    return await store.upsert_link(
        article_id,
        tenant_id,
        relevance=40,
        quality=80,
        keyword_matches=["council"],
        status=status,
        metadata=ScrapeProvenance(scrape_method="rss", scraped_at=now),
        now=now,
    )


@pytest.mark.asyncio
async def test_idempotent_admission(store):
    """Admitting the same URL twice leaves one row and moves last_seen_at."""
    article = make_article()

    first = await store.admit(article, NOW)
    second = await store.admit(article, NOW + timedelta(hours=1))

    assert first.created
    assert not second.created
    assert not second.content_changed
    assert second.article.id == first.article.id
    assert second.article.first_seen_at == NOW
    assert second.article.last_seen_at == NOW + timedelta(hours=1)
    assert await store.count_articles() == 1


@pytest.mark.asyncio
async def test_url_variants_share_one_row(store):
    await store.admit(make_article(url="https://www.example.com/a/?utm_source=x"), NOW)
    result = await store.admit(make_article(url="http://example.com/a"), NOW)

    assert not result.created
    assert await store.count_articles() == 1
    assert await store.content_exists("https://EXAMPLE.com/a/")


@pytest.mark.asyncio
async def test_concurrent_admission_from_two_connections(settings):
    """Racing writers on the same URL serialize on the unique key."""
    article = make_article()
    async with ContentStore(settings.database_path) as one, ContentStore(settings.database_path) as two:
        results = await asyncio.gather(*[
            (one if i % 2 else two).admit(article, NOW) for i in range(10)
        ])
        assert sum(1 for r in results if r.created) == 1
        assert await one.count_articles() == 1


@pytest.mark.asyncio
async def test_content_change_refreshes_fields(store):
    article = make_article()
    await store.admit(article, NOW)

    edited = replace(article, body=article.body + " A correction was added later.")
    result = await store.admit(edited, NOW + timedelta(hours=2))

    assert result.content_changed
    assert result.article.body.endswith("added later.")
    assert result.article.first_seen_at == NOW


@pytest.mark.asyncio
async def test_get_article_missing(store):
    assert await store.get_article("https://example.com/none") is None


@pytest.mark.asyncio
async def test_link_upsert_preserves_status(store):
    admitted = await store.admit(make_article(), NOW)

    created = await _link(store, admitted.article.id, status=ProcessingStatus.PROCESSED)
    again = await _link(store, admitted.article.id, status=ProcessingStatus.NEW)

    assert created.created
    assert not again.created
    assert again.link.id == created.link.id
    assert again.link.processing_status == ProcessingStatus.PROCESSED
    assert isinstance(again.link.import_metadata, ScrapeProvenance)


@pytest.mark.asyncio
async def test_link_upsert_promotes_new_to_processed(store):
    admitted = await store.admit(make_article(), NOW)
    await _link(store, admitted.article.id)
    again = await _link(store, admitted.article.id, status=ProcessingStatus.PROCESSED)
    assert again.link.processing_status == ProcessingStatus.PROCESSED


@pytest.mark.asyncio
async def test_discarded_link_is_not_resurrected(store):
    admitted = await store.admit(make_article(), NOW)
    created = await _link(store, admitted.article.id)
    await store.set_link_status(created.link.id, ProcessingStatus.DISCARDED)

    again = await _link(store, admitted.article.id, status=ProcessingStatus.PROCESSED)

    assert again.skipped_discarded
    assert again.link is None
    status = await store.link_status_for_url(make_article().source_url, "eastbourne")
    assert status == ProcessingStatus.DISCARDED


@pytest.mark.asyncio
async def test_links_are_per_tenant(store):
    admitted = await store.admit(make_article(), NOW)
    await _link(store, admitted.article.id, tenant_id="eastbourne")
    await _link(store, admitted.article.id, tenant_id="ai-safety")

    assert len(await store.list_links("eastbourne")) == 1
    assert len(await store.list_links("ai-safety")) == 1
    assert await store.list_links("eastbourne", ProcessingStatus.PROCESSED) == []


@pytest.mark.asyncio
async def test_status_transitions(store):
    admitted = await store.admit(make_article(), NOW)
    link = (await _link(store, admitted.article.id)).link

    triage = ManualTriage(actor="editor", note="approved", at=NOW)
    processed = await store.set_link_status(link.id, ProcessingStatus.PROCESSED, triage)
    assert processed.processing_status == ProcessingStatus.PROCESSED
    assert isinstance(processed.import_metadata, ManualTriage)

    with pytest.raises(InvalidTransitionError):
        await store.set_link_status(link.id, ProcessingStatus.NEW)

    await store.set_link_status(link.id, ProcessingStatus.DISCARDED)
    with pytest.raises(InvalidTransitionError):
        await store.set_link_status(link.id, ProcessingStatus.PROCESSED)


@pytest.mark.asyncio
async def test_set_status_on_missing_link(store):
    with pytest.raises(StorageError):
        await store.set_link_status(999, ProcessingStatus.DISCARDED)


@pytest.mark.asyncio
async def test_retention_discards_and_purges(store):
    old = await store.admit(make_article(url="https://example.com/old"), NOW - timedelta(days=60))
    fresh = await store.admit(make_article(url="https://example.com/fresh"), NOW)
    await _link(store, old.article.id, now=NOW - timedelta(days=60))
    await _link(store, fresh.article.id, now=NOW)

    assert await store.count_stale_links(timedelta(days=14), now=NOW - timedelta(days=31)) == 1
    discarded = await store.discard_stale_links(timedelta(days=14), now=NOW - timedelta(days=31))
    assert discarded == 1

    links = await store.list_links("eastbourne", ProcessingStatus.DISCARDED)
    assert isinstance(links[0].import_metadata, RetentionDiscard)

    purged = await store.purge_discarded(timedelta(days=30), now=NOW)
    assert purged.links_deleted == 1
    assert purged.articles_deleted == 1
    assert await store.count_articles() == 1
    assert await store.content_exists("https://example.com/fresh")


@pytest.mark.asyncio
async def test_record_scrape_outcome(store):
    source = await store.add_source("Herald", "https://herald.example/feed", "rss")

    await store.record_scrape_outcome(source.id, success=True, articles=5, now=NOW)
    await store.record_scrape_outcome(source.id, success=False, error="HTTP 503", now=NOW)
    updated = await store.record_scrape_outcome(source.id, success=False, error="timeout", now=NOW)

    assert updated.success_count == 1
    assert updated.failure_count == 2
    assert updated.success_rate == pytest.approx(33.3)
    assert updated.consecutive_failures == 2
    assert updated.articles_scraped == 5
    assert updated.last_error == "timeout"
    assert updated.last_scraped_at == NOW


@pytest.mark.asyncio
async def test_unknown_source(store):
    with pytest.raises(UnknownSourceError):
        await store.get_source(42)


@pytest.mark.asyncio
async def test_method_change_is_audited(store):
    source = await store.add_source("Herald", "https://herald.example/feed", "rss", success_rate=20)
    reason = MethodChangeReason(
        from_method="rss", to_method="html", current_rate=20,
        alternative_average=75, sample_size=3,
    )

    assert await store.update_source_method(source.id, "rss", reason)
    # Second writer expected the old method and loses
    assert not await store.update_source_method(source.id, "rss", reason)

    assert (await store.get_source(source.id)).scraping_method == "html"
    audit = await store.audit_log(source.id)
    assert len(audit) == 1
    assert audit[0].before == "rss"
    assert audit[0].after == "html"
    assert isinstance(audit[0].reason, MethodChangeReason)


@pytest.mark.asyncio
async def test_deactivation_is_audited(store):
    source = await store.add_source("Herald", "https://herald.example/feed", "rss", success_rate=5)
    reason = DeactivationReason(success_rate=5, threshold=10, last_error="HTTP 404")

    assert await store.deactivate_source(source.id, reason)
    assert not await store.deactivate_source(source.id, reason)

    updated = await store.get_source(source.id)
    assert not updated.is_active
    assert (await store.list_sources(active_only=True)) == []
    assert [entry.action for entry in await store.audit_log()] == ["deactivate"]


@pytest.mark.asyncio
async def test_record_probe(store):
    source = await store.add_source("Herald", "https://herald.example/feed", "rss")
    await store.record_probe(source.id, accessible=False, error="DNS failure")
    updated = await store.get_source(source.id)
    assert updated.last_probe_ok is False
    assert updated.consecutive_failures == 1
    assert updated.last_error == "DNS failure"


@pytest.mark.asyncio
async def test_archive_stories(store):
    story = await store.add_story("eastbourne", "Pier reopens")
    assert await store.archive_stories([story.id]) == 1
    assert await store.archive_stories([story.id]) == 0
    assert await store.list_stories("eastbourne") == []
    archived = await store.list_stories("eastbourne", include_archived=True)
    assert archived[0].status == StoryStatus.ARCHIVED
    assert not archived[0].is_published


@pytest.mark.asyncio
async def test_kv_entries_expire(store):
    await store.kv_set("greeting", {"hello": "world"}, ttl=timedelta(minutes=5), now=NOW)
    assert await store.kv_get("greeting", now=NOW) == {"hello": "world"}
    assert await store.kv_get("greeting", now=NOW + timedelta(minutes=6)) is None
    assert await store.kv_delete_expired(now=NOW + timedelta(minutes=6)) == 1


@pytest.mark.asyncio
async def test_kv_update_is_read_modify_write(store):
    for _ in range(3):
        await store.kv_update("counter", lambda value: (value or 0) + 1)
    assert await store.kv_get("counter") == 3


@pytest.mark.asyncio
async def test_status_change_on_vanished_link(store, monkeypatch):
    admitted = await store.admit(make_article(), NOW)
    link = (await _link(store, admitted.article.id)).link

    async def vanished(link_id):
        return None

    monkeypatch.setattr(store, "get_link", vanished)
    with pytest.raises(StorageError, match="disappeared"):
        await store.set_link_status(link.id, ProcessingStatus.PROCESSED)
