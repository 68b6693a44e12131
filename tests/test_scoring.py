"""Tests for quality scoring and the processed gate."""

import pytest
from conftest import make_article

from topicfeed.processing.scoring import (
    QualityScorer,
    processing_gate,
    score_quality,
    title_points,
    word_count_points,
)
from topicfeed.records import ProcessingStatus, RawArticle


@pytest.fixture
def scorer(settings):
    return QualityScorer(settings)


def test_full_article_quality(scorer):
    score = scorer.score_article(make_article())

    assert score.length_points == 35
    assert score.metadata_points == 35
    assert score.title_points == 15
    assert score.snippet_penalty == 0
    assert score.total == 85


@pytest.mark.parametrize("words,points", [
    (0, 10), (49, 10), (50, 15), (99, 15), (100, 25), (150, 30),
    (200, 35), (299, 35), (300, 40), (500, 50), (5000, 50),
])
def test_word_count_tiers(words, points):
    assert word_count_points(words) == points


def test_quality_monotonic_in_word_count(scorer):
    """Adding body text never lowers the score when nothing else changes."""
    previous = -1
    for words in range(20, 700, 20):
        quality = scorer.quality(make_article(words=words))
        assert quality >= previous
        previous = quality


def test_title_points():
    assert title_points("A twenty character title") == 15
    assert title_points("Short one!") == 10
    assert title_points("Tiny") == 0
    assert title_points(None) == 0


def test_snippet_penalty_applied(scorer):
    article = make_article()
    article.body += " Continue reading on our website."
    score = scorer.score_article(article)
    assert score.snippet_penalty == 30
    assert score.total == 55


def test_quality_is_clamped(scorer):
    empty = RawArticle(title="", body="", source_url="https://example.com/x")
    assert scorer.quality(empty) == 0


def test_score_quality_convenience(settings):
    assert score_quality(make_article(), settings) == 85


def test_processed_gating(settings):
    """Quality 70 with relevance 4 stays new."""
    assert processing_gate(70, 4, 400, settings) == ProcessingStatus.NEW
    assert processing_gate(70, 5, 400, settings) == ProcessingStatus.PROCESSED
    assert processing_gate(59, 80, 400, settings) == ProcessingStatus.NEW
    assert processing_gate(90, 80, 149, settings) == ProcessingStatus.NEW
