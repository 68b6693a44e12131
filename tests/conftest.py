"""Pytest configuration and fixtures."""

import os
import tempfile
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Generator

import pytest
import pytest_asyncio

# Set test environment
os.environ["LOG_LEVEL"] = "DEBUG"
os.environ["JSON_LOGGING"] = "false"

from topicfeed.config import Settings  # noqa: E402
from topicfeed.records import RawArticle, TopicType  # noqa: E402
from topicfeed.storage.database import ContentStore  # noqa: E402
from topicfeed.tenants import Tenant, TenantRegistry  # noqa: E402

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)


def make_body(sentence: str, words: int = 220) -> str:
    """Repeat a sentence until the body has at least ``words`` words."""
    parts = []
    count = 0
    while count < words:
        parts.append(sentence)
        count += len(sentence.split())
    return " ".join(parts)


def make_article(
    title: str = "Eastbourne council approves seafront plan",
    sentence: str = "Eastbourne council members debated the seafront budget on Tuesday evening.",
    url: str = "https://www.example.com/news/seafront-plan",
    words: int = 220,
    **kwargs,
) -> RawArticle:
    """Full, admissible article unless overridden."""
    defaults = {
        "author": "Jane Reporter",
        "image_url": "https://example.com/img/seafront.jpg",
        "published_at": NOW - timedelta(hours=3),
    }
    defaults.update(kwargs)
    return RawArticle(title=title, body=make_body(sentence, words), source_url=url, **defaults)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmp_dir:
        yield Path(tmp_dir)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def settings(temp_dir) -> Settings:
    """Settings pointing at a throwaway database."""
    return Settings(
        database_path=temp_dir / "data" / "topicfeed.db",
        tenants_file=temp_dir / "tenants.yaml",
        json_logging=False,
    )


@pytest_asyncio.fixture
async def store(settings):
    """Connected content store on a fresh SQLite file."""
    async with ContentStore(settings.database_path) as content_store:
        yield content_store


@pytest.fixture
def eastbourne() -> Tenant:
    return Tenant(
        id="eastbourne",
        name="Eastbourne",
        topic_type=TopicType.REGIONAL,
        region="Eastbourne",
        keywords=["council", "seafront"],
        negative_keywords=["horoscope"],
        landmarks=["Beachy Head", "Eastbourne Pier"],
        postcodes=["BN21", "BN22"],
        organizations=["Eastbourne Borough Council"],
    )


@pytest.fixture
def brighton() -> Tenant:
    return Tenant(
        id="brighton",
        name="Brighton",
        topic_type=TopicType.REGIONAL,
        region="Brighton",
        keywords=["council", "seafront"],
        landmarks=["Royal Pavilion", "Palace Pier"],
        postcodes=["BN1", "BN2"],
    )


@pytest.fixture
def ai_safety() -> Tenant:
    return Tenant(
        id="ai-safety",
        name="AI Safety",
        topic_type=TopicType.KEYWORD,
        keywords=["AI safety", "alignment"],
        negative_keywords=["sponsored"],
        freshness_sensitive=False,
    )


@pytest.fixture
def registry(eastbourne, brighton, ai_safety) -> TenantRegistry:
    return TenantRegistry([eastbourne, brighton, ai_safety])


@pytest.fixture
def sample_article() -> RawArticle:
    """Sample admissible article for the Eastbourne tenant."""
    return make_article()
