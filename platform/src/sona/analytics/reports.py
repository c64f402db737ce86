"""Aggregate reports over the daily generation stats.

Every report reads the persisted rows; nothing here writes. Results are
memoized per report and argument for ``cache_seconds``.
"""

from __future__ import annotations

import json
import logging
import math
import threading
import time
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, TypeVar

from sona.analytics.period import DateRange
from sona.storage.gateway import PersistenceGateway
from sona.storage.models import GenerationStatRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_WINDOW_DAYS = 30
RETRY_SAMPLE_SIZE = 1000
LOW_QUALITY_THRESHOLD = 70
TREND_TAIL_DAYS = 3
TREND_MARGIN = 2


@dataclass
class TemplateUsage:
    template_id: str
    usage_count: int
    avg_quality_score: float


@dataclass
class CategoryStats:
    category: str
    count: int
    percentage: float
    avg_quality_score: float


@dataclass
class QualityTrendPoint:
    date: str
    avg_quality_score: float
    total_generations: int


@dataclass
class TemplateQuality:
    template_id: str
    avg_quality_score: float
    usage_count: int
    recommendation: str  # keep | improve | remove


@dataclass
class AnalyticsSummary:
    total_generations: int
    successful_generations: int
    failed_generations: int
    avg_quality_score: float
    avg_generation_time: int
    top_categories: list[CategoryStats] = field(default_factory=list)
    top_templates: list[TemplateUsage] = field(default_factory=list)
    recent_trend: str = "stable"  # improving | stable | declining


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


class SonaAnalytics:
    def __init__(self, gateway: PersistenceGateway, cache_seconds: float = 300) -> None:
        self._gateway = gateway
        self._cache_seconds = cache_seconds
        self._cache: dict[str, tuple[float, Any]] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Generation statistics
    # ------------------------------------------------------------------

    def total_generations(self, period: DateRange | None = None) -> int:
        def compute() -> int:
            if period is None:
                return self._gateway.total_generations()
            return sum(s.total_generations for s in self._stats(period))

        return self._cached(f"total:{period}", compute)

    def average_quality_score(self, period: DateRange | None = None) -> float:
        """Average over the window, weighted by each day's generation count."""

        def compute() -> float:
            stats = self._stats(period)
            count = sum(s.total_generations for s in stats)
            if not count:
                return 0.0
            quality = sum((s.avg_quality_score or 0) * s.total_generations for s in stats)
            return round(quality / count, 2)

        return self._cached(f"avg_quality:{period}", compute)

    def most_used_templates(self, limit: int = 10) -> list[TemplateUsage]:
        return self._cached(f"most_used:{limit}", lambda: self._template_usage()[:limit])

    def least_used_templates(self, limit: int = 10) -> list[TemplateUsage]:
        usage = self._template_usage()
        return list(reversed(usage[-limit:])) if limit else []

    def category_distribution(self) -> list[CategoryStats]:
        def compute() -> list[CategoryStats]:
            counts: Counter[str] = Counter()
            qualities: defaultdict[str, list[float]] = defaultdict(list)
            for stat in self._stats():
                for category, count in _breakdown(stat.category_breakdown_json).items():
                    counts[category] += count
                    if stat.avg_quality_score:
                        qualities[category].append(stat.avg_quality_score)
            total = sum(counts.values())
            return [
                CategoryStats(
                    category=category,
                    count=count,
                    percentage=count / total * 100 if total else 0.0,
                    avg_quality_score=_mean(qualities[category]),
                )
                for category, count in counts.most_common()
            ]

        return self._cached("category_distribution", compute)

    # ------------------------------------------------------------------
    # Performance
    # ------------------------------------------------------------------

    def average_generation_time(self) -> int:
        def compute() -> int:
            stats = self._stats()
            count = sum(s.total_generations for s in stats)
            if not count:
                return 0
            total = sum((s.avg_generation_time or 0) * s.total_generations for s in stats)
            return round(total / count)

        return self._cached("avg_generation_time", compute)

    def error_rate(self) -> float:
        """Failed generations as a percentage of all generations in the window."""

        def compute() -> float:
            stats = self._stats()
            count = sum(s.total_generations for s in stats)
            if not count:
                return 0.0
            return round(sum(s.failed_generations for s in stats) / count * 100, 2)

        return self._cached("error_rate", compute)

    def retry_rate(self) -> float:
        """Percentage of recent attempts that needed at least one retry."""
        logs = self._gateway.generation_logs(RETRY_SAMPLE_SIZE)
        if not logs:
            return 0.0
        retried = sum(1 for log in logs if (log.retries or 0) > 0)
        return round(retried / len(logs) * 100, 2)

    # ------------------------------------------------------------------
    # Quality
    # ------------------------------------------------------------------

    def quality_trend(self, period: DateRange) -> list[QualityTrendPoint]:
        """Daily quality points, oldest first."""
        return [
            QualityTrendPoint(s.date, s.avg_quality_score or 0.0, s.total_generations)
            for s in reversed(self._stats(period))
        ]

    def low_quality_templates(self) -> list[TemplateQuality]:
        result = []
        for usage in self.most_used_templates(100):
            if usage.avg_quality_score >= LOW_QUALITY_THRESHOLD:
                continue
            if usage.avg_quality_score < 50:
                recommendation = "remove"
            elif usage.avg_quality_score < 60:
                recommendation = "improve"
            else:
                recommendation = "keep"
            result.append(
                TemplateQuality(
                    usage.template_id, usage.avg_quality_score, usage.usage_count, recommendation
                )
            )
        return result

    def diversity_score(self) -> float:
        """Shannon entropy of template usage normalized to 0-100."""
        usage = self.most_used_templates(100)
        total = sum(u.usage_count for u in usage)
        if not usage or not total:
            return 0.0
        entropy = -sum(
            (u.usage_count / total) * math.log2(u.usage_count / total)
            for u in usage
            if u.usage_count > 0
        )
        max_entropy = math.log2(len(usage))
        return round(entropy / max_entropy * 100, 2) if max_entropy > 0 else 0.0

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    def summary(self, period: DateRange | None = None) -> AnalyticsSummary:
        stats = self._stats(period)
        trend = self.quality_trend(period) if period is not None else []
        return AnalyticsSummary(
            total_generations=self.total_generations(period),
            successful_generations=sum(s.successful_generations for s in stats),
            failed_generations=sum(s.failed_generations for s in stats),
            avg_quality_score=self.average_quality_score(period),
            avg_generation_time=self.average_generation_time(),
            top_categories=self.category_distribution()[:5],
            top_templates=self.most_used_templates(5),
            recent_trend=_trend(trend),
        )

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _stats(self, period: DateRange | None = None) -> list[GenerationStatRecord]:
        period = period or DateRange.last_days(DEFAULT_WINDOW_DAYS)
        return self._gateway.generation_stats(period.start_iso, period.end_iso)

    def _template_usage(self) -> list[TemplateUsage]:
        """Every template in the window, most used first."""
        counts: Counter[str] = Counter()
        qualities: defaultdict[str, list[float]] = defaultdict(list)
        for stat in self._stats():
            for template_id, count in _breakdown(stat.template_usage_json).items():
                counts[template_id] += count
                if stat.avg_quality_score:
                    qualities[template_id].append(stat.avg_quality_score)
        return [
            TemplateUsage(template_id, count, _mean(qualities[template_id]))
            for template_id, count in counts.most_common()
        ]

    def _cached(self, key: str, compute: Callable[[], T]) -> T:
        now = time.monotonic()
        with self._lock:
            hit = self._cache.get(key)
            if hit is not None and hit[0] > now:
                return hit[1]
        logger.debug("Computing report %s", key)
        value = compute()
        with self._lock:
            self._cache[key] = (now + self._cache_seconds, value)
        return value


def _breakdown(raw: str | None) -> dict[str, int]:
    return json.loads(raw or "{}")


def _trend(points: list[QualityTrendPoint]) -> str:
    """Compare the last three days against everything before them."""
    if len(points) <= TREND_TAIL_DAYS:
        return "stable"
    recent = _mean([p.avg_quality_score for p in points[-TREND_TAIL_DAYS:]])
    older = _mean([p.avg_quality_score for p in points[:-TREND_TAIL_DAYS]])
    if recent > older + TREND_MARGIN:
        return "improving"
    if recent < older - TREND_MARGIN:
        return "declining"
    return "stable"
