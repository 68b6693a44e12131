"""
Content quality scoring and the processed-status gate.

Quality is tenant independent: it only looks at the article itself.
Factors:
- Body length (word count tiers)
- Byline and publication date present
- Title length
- Lead image present
- Snippet heuristic (penalty)

Every ingestion path calls into this module; nothing here touches storage.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from ..config import Settings
from ..records import ProcessingStatus
from ..utils import count_words
from .admission import is_snippet

logger = logging.getLogger(__name__)

# (minimum words, points) from longest to shortest
WORD_COUNT_TIERS: list[tuple[int, int]] = [
    (500, 50),
    (300, 40),
    (200, 35),
    (150, 30),
    (100, 25),
    (50, 15),
]
MIN_WORD_POINTS = 10

AUTHOR_POINTS = 15
DATE_POINTS = 15
LONG_TITLE_POINTS = 15
SHORT_TITLE_POINTS = 10
IMAGE_POINTS = 5
SNIPPET_PENALTY = 30


class ScorableArticle(Protocol):
    title: str
    body: str
    author: str | None
    image_url: str | None
    published_at: datetime | None


@dataclass
class QualityScore:
    """Complete quality breakdown for an article."""
    total: int
    length_points: int
    metadata_points: int
    title_points: int
    snippet_penalty: int
    word_count: int
    reasoning: str


def word_count_points(word_count: int) -> int:
    """Points for body length; never decreases as the body grows."""
    for minimum, points in WORD_COUNT_TIERS:
        if word_count >= minimum:
            return points
    return MIN_WORD_POINTS


def title_points(title: str | None) -> int:
    length = len((title or "").strip())
    if length >= 20:
        return LONG_TITLE_POINTS
    if length >= 10:
        return SHORT_TITLE_POINTS
    return 0


class QualityScorer:
    """Tenant-independent quality scoring for admitted articles."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.indicators = settings.snippet_indicators
        self.min_periods = settings.min_sentence_periods

    def score_article(self, article: ScorableArticle) -> QualityScore:
        """Calculate the 0-100 quality score for an article."""
        words = count_words(article.body)
        length = word_count_points(words)

        metadata = 0
        if article.author:
            metadata += AUTHOR_POINTS
        if article.published_at:
            metadata += DATE_POINTS
        if article.image_url:
            metadata += IMAGE_POINTS

        title = title_points(article.title)
        penalty = SNIPPET_PENALTY if is_snippet(article.body, self.indicators, self.min_periods) else 0

        total = max(0, min(100, length + metadata + title - penalty))

        reasoning = " | ".join([
            f"Length ({words} words): +{length}",
            f"Metadata: +{metadata}",
            f"Title: +{title}",
            f"Snippet: -{penalty}",
        ])

        return QualityScore(
            total=total,
            length_points=length,
            metadata_points=metadata,
            title_points=title,
            snippet_penalty=penalty,
            word_count=words,
            reasoning=reasoning,
        )

    def quality(self, article: ScorableArticle) -> int:
        return self.score_article(article).total


def processing_gate(
    quality: int,
    relevance: int,
    word_count: int,
    settings: Settings,
) -> ProcessingStatus:
    """Status a freshly scored link starts in.

    A link is ``processed`` only when quality, relevance and length all clear
    their thresholds; everything else waits as ``new`` for triage.
    """
    if (
        quality >= settings.processed_min_quality
        and relevance >= settings.processed_min_relevance
        and word_count >= settings.processed_min_words
    ):
        return ProcessingStatus.PROCESSED
    return ProcessingStatus.NEW


def score_quality(article: ScorableArticle, settings: Settings) -> int:
    """Convenience function for quality scoring."""
    return QualityScorer(settings).quality(article)
