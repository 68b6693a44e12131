"""
Source health monitor and adaptive scraping-method selector.

Each evaluation compares a source's success rate with the average success
rate of every other source grouped by scraping method, and recommends one of:

- ``deactivate``: the source almost never yields usable content
- ``method_change``: another method does clearly better on other sources
- ``investigate``: below average, needs a human look
- ``none``: healthy enough

Method changes and deactivations are applied automatically and every applied
action is written to the source audit log with its numeric justification.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

import aiohttp
from structlog.contextvars import bound_contextvars

from ..config import Settings, get_settings
from ..errors import HealthActionError, StorageError
from ..logging import LoggingMixin, PerformanceLogger, log_error, log_processing_stage
from ..ratelimit import SharedCache, SharedRateLimiter
from ..records import DeactivationReason, MethodChangeReason, Source
from ..storage.database import ContentStore
from ..utils import utcnow
from .errors import ErrorCategory, guidance_for
from .probe import ProbeResult, probe_source


class HealthAction(str, Enum):
    NONE = "none"
    INVESTIGATE = "investigate"
    METHOD_CHANGE = "method_change"
    DEACTIVATE = "deactivate"


@dataclass
class MethodStats:
    """Average success rate of one scraping method across sources."""
    method: str
    average_rate: float
    sample_size: int


@dataclass
class HealthAssessment:
    """Recommendation for a single source."""
    source_id: int
    source_name: str
    current_method: str
    success_rate: float | None
    action: HealthAction
    health_score: int
    reason: str
    alternative_method: str | None = None
    alternative_average: float | None = None
    sample_size: int = 0
    opportunistic: bool = False
    is_critical: bool = False
    probe: ProbeResult | None = None
    guidance: str | None = None
    applied: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "source_id": self.source_id,
            "source_name": self.source_name,
            "current_method": self.current_method,
            "success_rate": self.success_rate,
            "action": self.action.value,
            "health_score": self.health_score,
            "reason": self.reason,
            "alternative_method": self.alternative_method,
            "alternative_average": self.alternative_average,
            "sample_size": self.sample_size,
            "opportunistic": self.opportunistic,
            "applied": self.applied,
            "guidance": self.guidance,
            "error": self.error,
        }
        if self.probe is not None:
            data["probe"] = {
                "accessible": self.probe.accessible,
                "status_code": self.probe.status_code,
                "response_time": self.probe.response_time,
                "category": self.probe.category.value if self.probe.category else None,
            }
        return data


@dataclass
class HealthReport:
    """Outcome of evaluating every active source."""
    generated_at: datetime
    assessments: list[HealthAssessment] = field(default_factory=list)

    def count(self, action: HealthAction) -> int:
        return sum(1 for a in self.assessments if a.action == action)

    @property
    def applied(self) -> list[HealthAssessment]:
        return [a for a in self.assessments if a.applied]

    def summary(self) -> dict[str, int]:
        return {
            "total": len(self.assessments),
            **{action.value: self.count(action) for action in HealthAction},
            "applied": len(self.applied),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.generated_at.isoformat(),
            "summary": self.summary(),
            "sources": [a.to_dict() for a in self.assessments],
        }


class MethodSelector:
    """Per-method success averages over sibling sources."""

    def __init__(self, min_sample: int = 3):
        self.min_sample = min_sample

    def method_performance(
        self,
        sources: list[Source],
        exclude_id: int | None = None,
    ) -> dict[str, MethodStats]:
        """Average success rate per scraping method.

        Sources without a known rate and the excluded source are ignored;
        methods used by fewer than ``min_sample`` sources are dropped.
        """
        totals: dict[str, list[float]] = {}
        for source in sources:
            if source.id == exclude_id or source.success_rate is None:
                continue
            totals.setdefault(source.scraping_method, []).append(source.success_rate)

        return {
            method: MethodStats(
                method=method,
                average_rate=round(sum(rates) / len(rates), 2),
                sample_size=len(rates),
            )
            for method, rates in totals.items()
            if len(rates) >= self.min_sample
        }

    def best_alternative(self, source: Source, sources: list[Source]) -> MethodStats | None:
        """Best performing method other than the source's current one."""
        performance = self.method_performance(sources, exclude_id=source.id)
        candidates = [
            stats for method, stats in performance.items()
            if method != source.scraping_method
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda s: (s.average_rate, s.sample_size))


def health_score(source: Source, now: datetime | None = None, probe: ProbeResult | None = None) -> int:
    """0-100 health score combining rate, failure streak, recency and reachability."""
    now = now or utcnow()
    score = 0.5 * (source.success_rate or 0)
    if source.consecutive_failures == 0:
        score += 20
    if source.last_scraped_at and now - source.last_scraped_at < timedelta(days=1):
        score += 10
    accessible = probe.accessible if probe is not None else source.last_probe_ok
    if accessible:
        score += 20
    return int(round(min(100, score)))


class SourceHealthMonitor(LoggingMixin):
    """Evaluates sources and applies method changes and deactivations."""

    def __init__(
        self,
        store: ContentStore,
        settings: Settings | None = None,
        selector: MethodSelector | None = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.selector = selector or MethodSelector(self.settings.min_method_sample)
        self.probe_limiter = SharedRateLimiter(
            store, "health_probe", self.settings.probe_max_calls, self.settings.probe_time_window
        )
        self.probe_cache = SharedCache(store, "probe", timedelta(seconds=self.settings.probe_cache_seconds))

    def assess(
        self,
        source: Source,
        siblings: list[Source],
        now: datetime | None = None,
        probe: ProbeResult | None = None,
    ) -> HealthAssessment:
        """Recommend an action for one source. Pure; does not touch the store."""
        s = self.settings
        rate = source.success_rate
        assessment = HealthAssessment(
            source_id=source.id,
            source_name=source.name,
            current_method=source.scraping_method,
            success_rate=rate,
            action=HealthAction.NONE,
            health_score=health_score(source, now, probe),
            reason="Source performing adequately",
            is_critical=source.is_critical,
            probe=probe,
        )

        if probe is not None and not probe.accessible:
            category = probe.category or ErrorCategory.UNKNOWN
            assessment.guidance = guidance_for(category)

        if rate is None:
            assessment.reason = "No success rate recorded yet"
            if probe is not None and not probe.accessible:
                assessment.action = HealthAction.INVESTIGATE
                assessment.reason = f"Source not accessible ({probe.error})"
            return assessment

        alternative = self.selector.best_alternative(source, siblings)
        if alternative is not None:
            assessment.alternative_method = alternative.method
            assessment.alternative_average = alternative.average_rate
            assessment.sample_size = alternative.sample_size
        lead = alternative.average_rate - rate if alternative is not None else None

        if rate < s.deactivate_below:
            if source.is_critical:
                assessment.action = HealthAction.INVESTIGATE
                assessment.reason = (
                    f"Extremely low success rate ({rate}%) on a critical source - manual review required"
                )
            else:
                assessment.action = HealthAction.DEACTIVATE
                assessment.reason = f"Extremely low success rate ({rate}%) - deactivating"
        elif rate < s.method_change_below and lead is not None and lead >= s.method_change_margin:
            assessment.action = HealthAction.METHOD_CHANGE
            assessment.reason = (
                f"Low success rate ({rate}%) - {alternative.method} averages "
                f"{alternative.average_rate}% over {alternative.sample_size} sources"
            )
        elif lead is not None and lead >= s.opportunistic_margin:
            assessment.action = HealthAction.METHOD_CHANGE
            assessment.opportunistic = True
            assessment.reason = (
                f"Significantly better method available: {alternative.method} "
                f"({alternative.average_rate}% vs {rate}%)"
            )
        elif rate < s.investigate_below:
            assessment.action = HealthAction.INVESTIGATE
            assessment.reason = f"Below-average success rate ({rate}%) - manual review recommended"
        elif probe is not None and not probe.accessible:
            assessment.action = HealthAction.INVESTIGATE
            assessment.reason = f"Source not accessible ({probe.error})"

        return assessment

    async def apply(self, assessment: HealthAssessment, source: Source | None = None) -> bool:
        """Write a method change or deactivation with its audit row.

        A failed write is logged and left for the next evaluation cycle.

        Returns:
            True when the store was changed
        """
        if assessment.action not in (HealthAction.METHOD_CHANGE, HealthAction.DEACTIVATE):
            return False

        try:
            if assessment.action == HealthAction.METHOD_CHANGE:
                changed = await self._apply_method_change(assessment)
            else:
                changed = await self._apply_deactivation(assessment, source)
        except (StorageError, HealthActionError) as e:
            assessment.error = str(e)
            self.logger.warning(
                "Health action failed, will retry next cycle",
                source_id=assessment.source_id,
                action=assessment.action.value,
                error=str(e),
            )
            return False

        assessment.applied = changed
        return changed

    async def _apply_method_change(self, assessment: HealthAssessment) -> bool:
        if not assessment.alternative_method or assessment.alternative_average is None:
            raise HealthActionError(
                f"Method change for source {assessment.source_id} has no alternative method"
            )

        reason = MethodChangeReason(
            from_method=assessment.current_method,
            to_method=assessment.alternative_method,
            current_rate=assessment.success_rate,
            alternative_average=assessment.alternative_average,
            sample_size=assessment.sample_size,
            opportunistic=assessment.opportunistic,
        )
        changed = await self.store.update_source_method(
            assessment.source_id, assessment.current_method, reason
        )
        if changed:
            self.logger.warning(
                "Scraping method changed",
                source_id=assessment.source_id,
                source_name=assessment.source_name,
                before=reason.from_method,
                after=reason.to_method,
                success_rate=reason.current_rate,
                alternative_average=reason.alternative_average,
                sample_size=reason.sample_size,
                opportunistic=reason.opportunistic,
            )
        else:
            self.logger.info(
                "Scraping method already changed elsewhere",
                source_id=assessment.source_id,
                expected=assessment.current_method,
            )
        return changed

    async def _apply_deactivation(self, assessment: HealthAssessment, source: Source | None) -> bool:
        reason = DeactivationReason(
            success_rate=assessment.success_rate,
            threshold=self.settings.deactivate_below,
            last_error=source.last_error if source else None,
        )
        changed = await self.store.deactivate_source(assessment.source_id, reason)
        if changed:
            self.logger.warning(
                "Source deactivated",
                source_id=assessment.source_id,
                source_name=assessment.source_name,
                before="active",
                after="inactive",
                success_rate=reason.success_rate,
                threshold=reason.threshold,
            )
        return changed

    async def _probe(
        self,
        source: Source,
        session: aiohttp.ClientSession,
        now: datetime | None = None,
    ) -> ProbeResult:
        """Probe a feed URL, reusing a recent result from any process."""
        async def fresh_probe() -> dict[str, Any]:
            await self.probe_limiter.acquire()
            probe = await probe_source(source.feed_url, session=session)
            return probe.to_dict()

        data = await self.probe_cache.get_or_set(source.feed_url, fresh_probe, now=now)
        return ProbeResult.from_dict(data)

    async def evaluate_source(
        self,
        source: Source,
        siblings: list[Source],
        apply: bool = True,
        session: aiohttp.ClientSession | None = None,
        now: datetime | None = None,
    ) -> HealthAssessment:
        """Probe (optionally), assess and apply for one source."""
        with bound_contextvars(source_id=source.id):
            probe = None
            if session is not None:
                probe = await self._probe(source, session, now)
                await self.store.record_probe(
                    source.id, accessible=probe.accessible, error=probe.error, now=now
                )

            assessment = self.assess(source, siblings, now, probe)
            if assessment.action != HealthAction.NONE:
                self.logger.info(
                    "Source health assessed",
                    action=assessment.action.value,
                    success_rate=assessment.success_rate,
                    health_score=assessment.health_score,
                    reason=assessment.reason,
                )
            if apply:
                await self.apply(assessment, source)
            return assessment

    async def evaluate_all(
        self,
        apply: bool = True,
        probe: bool = False,
        now: datetime | None = None,
    ) -> HealthReport:
        """Evaluate every active source concurrently.

        A failing evaluation does not affect the others; it is reported as
        ``investigate`` with the error message.
        """
        now = now or utcnow()
        all_sources = await self.store.list_sources()
        active = [source for source in all_sources if source.is_active]
        report = HealthReport(generated_at=now)

        session = None
        if probe:
            session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.settings.probe_timeout_seconds),
                headers={"User-Agent": self.settings.user_agent},
            )

        try:
            with PerformanceLogger("evaluate_sources", self.logger):
                results = await asyncio.gather(
                    *[
                        self.evaluate_source(source, all_sources, apply, session, now)
                        for source in active
                    ],
                    return_exceptions=True,
                )
        finally:
            if session is not None:
                await session.close()

        for source, result in zip(active, results):
            if isinstance(result, HealthAssessment):
                report.assessments.append(result)
                continue

            self.logger.error(**log_error(result, context="evaluate_source", source_id=source.id))
            report.assessments.append(
                HealthAssessment(
                    source_id=source.id,
                    source_name=source.name,
                    current_method=source.scraping_method,
                    success_rate=source.success_rate,
                    action=HealthAction.INVESTIGATE,
                    health_score=health_score(source, now),
                    reason=f"Evaluation failed: {result}",
                    is_critical=source.is_critical,
                    error=str(result),
                )
            )

        self.logger.info(
            **log_processing_stage(
                stage="source_health",
                input_count=len(active),
                output_count=len(report.applied),
                **{action.value: report.count(action) for action in HealthAction},
            )
        )
        return report


async def evaluate_sources(
    store: ContentStore,
    apply: bool = True,
    probe: bool = False,
    settings: Settings | None = None,
) -> HealthReport:
    """Convenience function for a full health evaluation cycle."""
    return await SourceHealthMonitor(store, settings).evaluate_all(apply=apply, probe=probe)
