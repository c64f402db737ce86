"""Track generated content: fingerprints, duplicate detection and daily stats."""

from __future__ import annotations

import hashlib
import json
import logging
import re
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from sona.content.cache import BoundedCache
from sona.storage.gateway import PersistenceGateway, dumps
from sona.storage.models import GenerationStatRecord

logger = logging.getLogger(__name__)

# Arabic block, ASCII letters, digits and whitespace survive normalization
_STRIP_PATTERN = re.compile(r"[^\u0600-\u06FFa-zA-Z0-9\s]")
_WHITESPACE = re.compile(r"\s+")

STATS_WINDOW_DAYS = 30
TOP_TEMPLATES = 10


def normalize_content(content: str) -> str:
    """Lower-case, drop characters outside the target alphabets, collapse whitespace."""
    text = _STRIP_PATTERN.sub("", content.lower())
    return _WHITESPACE.sub(" ", text).strip()


@dataclass
class ContentMetadata:
    """What the generation pipeline knows about one article."""

    topic: str
    category: str
    used_templates: list[str] = field(default_factory=list)
    word_count: int = 0
    quality_score: float = 0.0
    keywords: list[str] = field(default_factory=list)
    generated_at: datetime = field(default_factory=datetime.now)


@dataclass
class SimilarityResult:
    is_similar: bool
    similarity_score: float
    matching_hash: str | None = None


@dataclass
class TrackingResult:
    tracked: bool
    hash: str
    is_duplicate: bool


@dataclass
class TemplateCount:
    template: str
    count: int


@dataclass
class TrackerStats:
    total_generations: int
    today_generations: int
    average_quality_score: float
    category_breakdown: dict[str, int]
    most_used_templates: list[TemplateCount]


class ContentTracker:
    """Fingerprints generated articles and keeps generation statistics.

    Hash equality is the only authoritative duplicate signal. The in-memory
    cache holds the most recent hashes this process has recorded; the
    gateway holds everything ever recorded.
    """

    def __init__(self, gateway: PersistenceGateway, cache_size: int = 1000) -> None:
        self._gateway = gateway
        self._recent: BoundedCache[str, float] = BoundedCache(cache_size)

    def hash(self, content: str) -> str:
        return hashlib.sha256(normalize_content(content).encode("utf-8")).hexdigest()

    @staticmethod
    def similarity(text1: str, text2: str) -> float:
        """Jaccard similarity of the normalized token sets.

        Two empty texts are identical and score 1.0.
        """
        words1 = set(normalize_content(text1).split())
        words2 = set(normalize_content(text2).split())
        union = words1 | words2
        if not union:
            return 1.0
        return len(words1 & words2) / len(union)

    def check_duplicate(self, content: str) -> SimilarityResult:
        content_hash = self.hash(content)

        if content_hash in self._recent or self._gateway.content_hash_exists(content_hash):
            return SimilarityResult(True, 1.0, content_hash)

        return SimilarityResult(False, 0.0)

    def record(self, content: str, metadata: ContentMetadata) -> TrackingResult:
        """Persist the fingerprint of new content; duplicates are reported, not stored."""
        content_hash = self.hash(content)

        if content_hash in self._recent or self._gateway.content_hash_exists(content_hash):
            logger.debug("Duplicate content for topic %r (%s)", metadata.topic, content_hash[:12])
            return TrackingResult(tracked=False, hash=content_hash, is_duplicate=True)

        self._gateway.save_content_hash(
            content_hash,
            metadata.topic,
            metadata.category,
            metadata.word_count,
            metadata.quality_score,
            metadata.used_templates,
            metadata.keywords,
        )
        self._recent.put(content_hash, time.time())
        return TrackingResult(tracked=True, hash=content_hash, is_duplicate=False)

    def record_generation_event(
        self,
        metadata: ContentMetadata,
        duration: float,
        success: bool,
        retries: int = 0,
        error: str | None = None,
    ) -> None:
        """Append a log row and fold the event into today's stat row."""
        self._gateway.log_generation(
            metadata.topic,
            metadata.category,
            duration,
            metadata.quality_score,
            metadata.used_templates,
            metadata.word_count,
            success,
            retries,
            error,
        )
        self._update_daily_stat(metadata, duration, success)

    def _update_daily_stat(self, metadata: ContentMetadata, duration: float, success: bool) -> None:
        today = date.today().isoformat()
        stat = self._gateway.stat_for_day(today)

        if stat is None:
            stat = GenerationStatRecord(
                date=today,
                total_generations=1,
                successful_generations=1 if success else 0,
                failed_generations=0 if success else 1,
                avg_quality_score=metadata.quality_score,
                avg_generation_time=duration,
                category_breakdown_json=dumps({metadata.category: 1}),
                template_usage_json=dumps(dict(Counter(metadata.used_templates))),
            )
            self._gateway.save_stat(stat)
            return

        categories = Counter(json.loads(stat.category_breakdown_json or "{}"))
        categories[metadata.category] += 1
        templates = Counter(json.loads(stat.template_usage_json or "{}"))
        templates.update(metadata.used_templates)

        old_total = stat.total_generations
        new_total = old_total + 1
        old_quality = (stat.avg_quality_score or 0) * old_total
        old_time = (stat.avg_generation_time or 0) * old_total

        stat.total_generations = new_total
        stat.successful_generations += 1 if success else 0
        stat.failed_generations += 0 if success else 1
        stat.avg_quality_score = (old_quality + metadata.quality_score) / new_total
        stat.avg_generation_time = round((old_time + duration) / new_total)
        stat.category_breakdown_json = dumps(dict(categories))
        stat.template_usage_json = dumps(dict(templates))
        self._gateway.save_stat(stat)

    def stats(self) -> TrackerStats:
        total = self._gateway.total_generations()

        today = date.today()
        today_iso = today.isoformat()
        window_start = (today - timedelta(days=STATS_WINDOW_DAYS)).isoformat()
        recent = self._gateway.generation_stats(window_start, today_iso)

        total_quality = 0.0
        quality_count = 0
        categories: Counter[str] = Counter()
        templates: Counter[str] = Counter()
        today_count = 0

        for stat in recent:
            if stat.date == today_iso:
                today_count = stat.total_generations
            if stat.avg_quality_score:
                total_quality += stat.avg_quality_score * stat.total_generations
                quality_count += stat.total_generations
            categories.update(json.loads(stat.category_breakdown_json or "{}"))
            templates.update(json.loads(stat.template_usage_json or "{}"))

        return TrackerStats(
            total_generations=total,
            today_generations=today_count,
            average_quality_score=total_quality / quality_count if quality_count else 0.0,
            category_breakdown=dict(categories),
            most_used_templates=[
                TemplateCount(name, count) for name, count in templates.most_common(TOP_TEMPLATES)
            ],
        )

    def is_unique_enough(self, content: str, threshold: float = 0.5) -> bool:
        """Gate for the generation pipeline: reject duplicates of known content."""
        result = self.check_duplicate(content)
        return not result.is_similar or result.similarity_score < threshold

    def clear_cache(self) -> None:
        self._recent.clear()

    @property
    def cache_size(self) -> int:
        return len(self._recent)
