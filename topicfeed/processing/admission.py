"""
Admission filter: decide whether a scraped item is a genuine full article.

Runs before anything is written to the shared content store. The filter is
deliberately strict; a real but very short article may be rejected, and a
snippet that slips through is penalised again by quality scoring.
"""

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum

from ..config import Settings
from ..records import RawArticle
from ..tenants import Tenant
from ..utils import count_words, utcnow
from .text_utils import count_periods, find_phrases

logger = logging.getLogger(__name__)

# Dates before this are scraper bugs (epoch defaults, template dates).
EARLIEST_PLAUSIBLE_DATE = datetime(2020, 1, 1, tzinfo=UTC)
CLOCK_SKEW = timedelta(minutes=5)


class RejectionReason(Enum):
    """Why an item was filtered out before storage."""
    TOO_SHORT = "too_short"
    SNIPPET = "snippet"
    TRUNCATED = "truncated"
    STALE = "stale"
    INVALID_DATE = "invalid_date"


@dataclass
class AdmissionDecision:
    """Outcome of the admission filter."""
    admitted: bool
    reasons: list[RejectionReason] = field(default_factory=list)
    word_count: int = 0
    matched_indicators: list[str] = field(default_factory=list)
    effective_published_at: datetime | None = None

    @property
    def primary_reason(self) -> RejectionReason | None:
        return self.reasons[0] if self.reasons else None


def has_ellipsis_ending(body: str | None) -> bool:
    stripped = (body or "").rstrip()
    return stripped.endswith("...") or stripped.endswith("…")


def is_snippet(body: str | None, indicators: list[str], min_periods: int = 3) -> bool:
    """Snippet heuristic shared by admission and quality scoring.

    A body is a snippet when it carries a teaser phrase ("read more",
    "continue reading", ...), ends with an ellipsis, or has fewer than
    ``min_periods`` sentence-ending periods.
    """
    if not body:
        return True
    if find_phrases(body, indicators):
        return True
    return has_ellipsis_ending(body) or count_periods(body) < min_periods


class AdmissionFilter:
    """Rejects snippets, stale items and low-substance bodies."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.min_word_count = settings.min_word_count
        self.min_periods = settings.min_sentence_periods
        self.max_age = timedelta(days=settings.recency_days)
        self.indicators = settings.snippet_indicators

    def _check_date(
        self,
        article: RawArticle,
        tenant: Tenant | None,
        now: datetime,
        reasons: list[RejectionReason],
    ) -> datetime:
        """Return the date the recency window is measured from."""
        # Keyword feeds repair bad dates instead of rejecting the item
        lenient = tenant is not None and not tenant.is_regional
        published = article.published_at

        if published is None:
            # No date: fall back to discovery time
            return now

        if published > now + CLOCK_SKEW or published < EARLIEST_PLAUSIBLE_DATE:
            if lenient:
                logger.debug(f"Replacing implausible date {published.isoformat()} with discovery time")
                return now
            reasons.append(RejectionReason.INVALID_DATE)
            return published

        if tenant is None or tenant.freshness_sensitive:
            if now - published > self.max_age:
                reasons.append(RejectionReason.STALE)

        return published

    def evaluate(
        self,
        article: RawArticle,
        tenant: Tenant | None = None,
        now: datetime | None = None,
    ) -> AdmissionDecision:
        """Decide whether an article may enter the content store."""
        now = now or utcnow()
        body = article.body or ""
        reasons: list[RejectionReason] = []

        word_count = count_words(body)
        if word_count < self.min_word_count:
            reasons.append(RejectionReason.TOO_SHORT)

        matched = find_phrases(body, self.indicators)
        if matched:
            reasons.append(RejectionReason.SNIPPET)

        if has_ellipsis_ending(body) or count_periods(body) < self.min_periods:
            reasons.append(RejectionReason.TRUNCATED)

        effective_date = self._check_date(article, tenant, now, reasons)

        decision = AdmissionDecision(
            admitted=not reasons,
            reasons=reasons,
            word_count=word_count,
            matched_indicators=matched,
            effective_published_at=effective_date,
        )

        if not decision.admitted:
            logger.debug(
                f"Admission rejected {article.source_url}: "
                f"{', '.join(r.value for r in reasons)} ({word_count} words)"
            )

        return decision

    def is_snippet(self, body: str | None) -> bool:
        return is_snippet(body, self.indicators, self.min_periods)
