"""
Per-tenant relevance scoring.

Keyword tenants score on keyword hits alone. Regional tenants add region,
landmark, postcode and organization hits, and are checked against every other
regional tenant so that a story clearly about a neighbouring region does not
leak in on a shared keyword.
"""

import logging
from dataclasses import dataclass, field
from typing import Protocol

from ..config import Settings
from ..tenants import Tenant
from .text_utils import contains_phrase, count_linked_mentions, count_term, find_phrases

logger = logging.getLogger(__name__)

KEYWORD_TITLE_POINTS = 20
KEYWORD_BODY_POINTS = 10
REGION_TITLE_POINTS = 30
REGION_BODY_POINTS = 15
LANDMARK_POINTS = 25
POSTCODE_POINTS = 20
ORGANIZATION_POINTS = 12

# Weight of a region-name mention relative to a landmark/postcode hit when
# comparing regional strength.
REGION_STRENGTH_WEIGHT = 2
COMPETING_PENALTY_PER_POINT = 25
MAX_COMPETING_PENALTY = 100


class TextArticle(Protocol):
    title: str
    body: str


@dataclass
class CompetingRegion:
    """A region that competes with the tenant being scored."""
    name: str
    landmarks: list[str] = field(default_factory=list)
    postcodes: list[str] = field(default_factory=list)

    @classmethod
    def from_tenant(cls, tenant: Tenant) -> "CompetingRegion":
        return cls(name=tenant.region_name, landmarks=tenant.landmarks, postcodes=tenant.postcodes)


@dataclass
class RelevanceScore:
    """Relevance scoring result."""
    score: int
    positive_score: int
    keyword_matches: list[str]
    disqualified_by: str | None = None
    competing_region: str | None = None
    competing_penalty: int = 0
    own_strength: int = 0
    competing_strength: int = 0

    @property
    def disqualified(self) -> bool:
        return self.disqualified_by is not None

    @property
    def rejected_competing(self) -> bool:
        """The competing-region penalty alone pushed the score to zero."""
        return self.competing_penalty > 0 and self.positive_score - self.competing_penalty <= 0


def keyword_matches(article: TextArticle, tenant: Tenant) -> list[str]:
    """Tenant keywords found in title or body, in configured order."""
    text = f"{article.title or ''}\n{article.body or ''}"
    return find_phrases(text, tenant.keywords)


def _term_hits(text: str, terms: list[str]) -> int:
    return sum(1 for term in terms if contains_phrase(text, term))


def _postcode_hits(text: str, postcodes: list[str]) -> int:
    # Whole-word only: "BN2" must not match inside "BN21"
    return sum(1 for code in postcodes if count_term(text, code))


class RelevanceScorer:
    """Tenant relevance scoring with negative keywords and competing regions."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings

    def _positive_score(self, title: str, body: str, tenant: Tenant) -> int:
        score = 0
        for keyword in tenant.keywords:
            if contains_phrase(title, keyword):
                score += KEYWORD_TITLE_POINTS
            if contains_phrase(body, keyword):
                score += KEYWORD_BODY_POINTS

        if tenant.is_regional:
            region = tenant.region_name
            if region:
                if count_term(title, region):
                    score += REGION_TITLE_POINTS
                if count_term(body, region):
                    score += REGION_BODY_POINTS

            text = f"{title}\n{body}"
            score += LANDMARK_POINTS * _term_hits(text, tenant.landmarks)
            score += POSTCODE_POINTS * _postcode_hits(text, tenant.postcodes)
            score += ORGANIZATION_POINTS * _term_hits(text, tenant.organizations)

        return score

    def _own_strength(self, text: str, tenant: Tenant) -> int:
        strength = _term_hits(text, tenant.landmarks) + _postcode_hits(text, tenant.postcodes)
        if tenant.region_name:
            strength += REGION_STRENGTH_WEIGHT * count_term(text, tenant.region_name)
        return strength

    def _competitor_strength(self, text: str, competitor: CompetingRegion, tenant: Tenant) -> int:
        own_terms = {t.lower() for t in tenant.landmarks + tenant.postcodes}
        landmarks = [t for t in competitor.landmarks if t.lower() not in own_terms]
        postcodes = [t for t in competitor.postcodes if t.lower() not in own_terms]

        mentions = count_term(text, competitor.name)
        if tenant.region_name:
            # "Leeds and York" or "York to Leeds" is about both places
            mentions -= count_linked_mentions(text, competitor.name, tenant.region_name)
        mentions = max(0, mentions)

        return REGION_STRENGTH_WEIGHT * mentions + _term_hits(text, landmarks) + _postcode_hits(text, postcodes)

    def competing_regions(self, tenant: Tenant, competitors: list[Tenant]) -> list[CompetingRegion]:
        """Other regional tenants plus the tenant's own competing region names."""
        own = tenant.region_name.lower()
        regions: dict[str, CompetingRegion] = {}

        for other in competitors:
            if other.id == tenant.id or not other.region_name:
                continue
            regions.setdefault(other.region_name.lower(), CompetingRegion.from_tenant(other))

        for name in tenant.competing_regions:
            regions.setdefault(name.lower(), CompetingRegion(name=name))

        regions.pop(own, None)
        return list(regions.values())

    def score_relevance(
        self,
        article: TextArticle,
        tenant: Tenant,
        competitors: list[Tenant] | None = None,
    ) -> RelevanceScore:
        """Score an article for one tenant (0-100)."""
        title = article.title or ""
        body = article.body or ""
        text = f"{title}\n{body}"
        matches = keyword_matches(article, tenant)

        negatives = find_phrases(text, tenant.negative_keywords)
        if negatives:
            logger.debug(f"Negative keyword '{negatives[0]}' disqualifies article for tenant {tenant.id}")
            return RelevanceScore(
                score=0,
                positive_score=0,
                keyword_matches=matches,
                disqualified_by=negatives[0],
            )

        positive = self._positive_score(title, body, tenant)
        result = RelevanceScore(score=0, positive_score=positive, keyword_matches=matches)

        if tenant.is_regional:
            rivals = self.competing_regions(tenant, competitors or [])
            if rivals:
                own_strength = self._own_strength(text, tenant)
                strongest, best = None, 0
                for rival in rivals:
                    strength = self._competitor_strength(text, rival, tenant)
                    if strength > best:
                        strongest, best = rival, strength

                result.own_strength = own_strength
                result.competing_strength = best
                if strongest is not None and best > own_strength:
                    penalty = min(MAX_COMPETING_PENALTY, COMPETING_PENALTY_PER_POINT * (best - own_strength))
                    result.competing_region = strongest.name
                    result.competing_penalty = penalty
                    logger.debug(
                        f"Competing region '{strongest.name}' outweighs '{tenant.region_name}' "
                        f"({best} vs {own_strength}), penalty {penalty}"
                    )

        result.score = max(0, min(100, positive - result.competing_penalty))
        return result

    def relevance(
        self,
        article: TextArticle,
        tenant: Tenant,
        competitors: list[Tenant] | None = None,
    ) -> int:
        return self.score_relevance(article, tenant, competitors).score


def score_relevance(
    article: TextArticle,
    tenant: Tenant,
    competitors: list[Tenant] | None = None,
) -> RelevanceScore:
    """Convenience function for relevance scoring."""
    return RelevanceScorer().score_relevance(article, tenant, competitors)
