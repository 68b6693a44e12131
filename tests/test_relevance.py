"""Tests for tenant relevance scoring."""

from types import SimpleNamespace

import pytest

from topicfeed.processing.relevance import RelevanceScorer, keyword_matches, score_relevance
from topicfeed.records import TopicType
from topicfeed.tenants import Tenant


def article(title: str, body: str) -> SimpleNamespace:
    return SimpleNamespace(title=title, body=body)


@pytest.fixture
def scorer():
    return RelevanceScorer()


def test_negative_keyword_takes_precedence(scorer, eastbourne, brighton):
    """Strong regional signal cannot outweigh a negative keyword."""
    item = article(
        "Eastbourne council seafront horoscope",
        "Eastbourne council met at Beachy Head in BN21 about the seafront.",
    )
    result = scorer.score_relevance(item, eastbourne, [brighton])

    assert result.score == 0
    assert result.disqualified
    assert result.disqualified_by == "horoscope"


def test_keyword_tenant_scoring(scorer, ai_safety):
    item = article("New AI safety institute opens", "Researchers discussed alignment methods.")
    result = scorer.score_relevance(item, ai_safety)

    assert result.score == 30
    assert result.keyword_matches == ["AI safety", "alignment"]


def test_regional_signals(scorer, eastbourne, brighton):
    item = article(
        "Council votes on Beachy Head parking",
        "The council vote covers BN21 residents.",
    )
    result = scorer.score_relevance(item, eastbourne, [brighton])

    # council 20 + 10, landmark 25, postcode 20
    assert result.score == 75
    assert result.competing_penalty == 0
    assert result.own_strength == 2


def test_region_name_and_organization(scorer, eastbourne):
    item = article(
        "Eastbourne plans approved",
        "Eastbourne Borough Council approved the plans.",
    )
    # region title 30 + body 15, council body 10, organization 12
    assert scorer.relevance(item, eastbourne) == 67


def test_competing_region_rejects_story(scorer, eastbourne, brighton):
    item = article(
        "Brighton council backs seafront plan",
        "Brighton council met near the Royal Pavilion. The seafront plan was approved.",
    )
    result = scorer.score_relevance(item, eastbourne, [brighton])

    assert result.positive_score == 60
    assert result.competing_region == "Brighton"
    assert result.competing_strength == 5
    assert result.competing_penalty == 100
    assert result.score == 0
    assert result.rejected_competing


def test_partial_competing_penalty(scorer, eastbourne, brighton):
    item = article(
        "Eastbourne council backs seafront plan",
        "The Eastbourne council will work with Brighton council. "
        "Brighton officials welcomed it. Brighton agreed.",
    )
    result = scorer.score_relevance(item, eastbourne, [brighton])

    assert result.own_strength == 4
    assert result.competing_strength == 6
    assert result.competing_penalty == 50
    assert result.score == 45
    assert not result.rejected_competing


def test_linked_mentions_do_not_compete(scorer, eastbourne, brighton):
    item = article(
        "Eastbourne to Brighton rail line closes",
        "Trains from Eastbourne to Brighton stop. Services between Brighton and Eastbourne resume Monday.",
    )
    result = scorer.score_relevance(item, eastbourne, [brighton])

    assert result.competing_strength == 0
    assert result.competing_penalty == 0


def test_configured_competing_region_names(scorer):
    tenant = Tenant(
        id="eastbourne",
        name="Eastbourne",
        topic_type=TopicType.REGIONAL,
        keywords=["pier"],
        competing_regions=["Hastings"],
    )
    item = article("Hastings pier reopens", "Hastings pier reopened in Hastings today.")
    result = scorer.score_relevance(item, tenant)

    assert result.competing_region == "Hastings"
    assert result.rejected_competing


def test_keyword_tenant_ignores_regions(scorer, ai_safety, eastbourne):
    item = article("AI safety in Eastbourne", "Eastbourne hosts an alignment workshop.")
    result = scorer.score_relevance(item, ai_safety, [eastbourne])
    assert result.competing_penalty == 0
    assert result.score == 30


def test_keyword_matches_in_config_order(eastbourne):
    item = article("Seafront works", "The council approved the works.")
    assert keyword_matches(item, eastbourne) == ["council", "seafront"]


def test_score_relevance_convenience(eastbourne):
    item = article("Seafront works", "The council approved the works.")
    assert score_relevance(item, eastbourne).score == 30
