"""Operational log: a bounded in-memory feed plus the persisted generation log."""

from __future__ import annotations

import csv
import io
import itertools
import json
import logging
import threading
import traceback
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sona.analytics.period import DateRange
from sona.storage.gateway import PersistenceGateway
from sona.storage.models import GenerationLogRecord

logger = logging.getLogger(__name__)

EXPORT_SAMPLE_SIZE = 10_000

LOG_CSV_HEADERS = {
    "ar": [
        "التاريخ",
        "الموضوع",
        "الفئة",
        "المدة (مللي ثانية)",
        "درجة الجودة",
        "عدد الكلمات",
        "النجاح",
        "المحاولات",
        "رسالة الخطأ",
    ],
    "en": [
        "Timestamp",
        "Topic",
        "Category",
        "Duration (ms)",
        "Quality score",
        "Word count",
        "Success",
        "Retries",
        "Error message",
    ],
}
_YES_NO = {"ar": ("نعم", "لا"), "en": ("yes", "no")}

_LEVELS = {"info": logging.INFO, "warning": logging.WARNING, "error": logging.ERROR}


@dataclass
class LogEntry:
    id: int
    timestamp: datetime
    level: str  # info | warning | error
    message: str
    context: dict[str, Any] = field(default_factory=dict)


class OperationLogger:
    """Keeps the last ``capacity`` entries; older ones drop off as new ones arrive.

    Every entry is also forwarded to this module's stdlib logger, so hosts
    that configure logging see the same feed.
    """

    def __init__(self, gateway: PersistenceGateway, capacity: int = 1000, csv_locale: str = "ar") -> None:
        self._gateway = gateway
        self._entries: deque[LogEntry] = deque(maxlen=capacity)
        self._ids = itertools.count(1)
        self._csv_locale = csv_locale
        self._lock = threading.Lock()

    def log_generation(
        self,
        topic: str,
        category: str,
        duration: float,
        quality_score: float | None,
        templates_used: list[str],
        word_count: int,
        success: bool,
        retries: int = 0,
        error_message: str | None = None,
    ) -> LogEntry:
        """Persist the attempt, then record it in the feed."""
        self._gateway.log_generation(
            topic,
            category,
            duration,
            quality_score,
            templates_used,
            word_count,
            success,
            retries,
            error_message,
        )
        context = {
            "topic": topic,
            "category": category,
            "duration": duration,
            "quality_score": quality_score,
            "templates_used": list(templates_used),
            "word_count": word_count,
            "success": success,
            "retries": retries,
            "error_message": error_message,
        }
        if success:
            return self._add("info", f'Generated content for "{topic}"', context)
        return self._add("error", f'Failed to generate content for "{topic}"', context)

    def log_error(self, error: BaseException, context: dict[str, Any] | None = None) -> LogEntry:
        """Record an exception; with a topic in the context it also becomes a failed log row."""
        context = dict(context or {})
        context["stack"] = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        entry = self._add("error", str(error), context)

        topic = context.get("topic")
        if topic:
            self._gateway.log_generation(
                topic,
                context.get("category") or "general",
                0,
                0,
                [],
                0,
                False,
                0,
                str(error),
            )
        return entry

    def log_template_usage(self, template_id: str) -> LogEntry:
        return self._add("info", f"Template used: {template_id}", {"template_id": template_id})

    def recent(self, limit: int = 100) -> list[LogEntry]:
        """Newest ``limit`` entries, oldest first."""
        with self._lock:
            entries = list(self._entries)
        return entries[-limit:] if limit else []

    def database_logs(self, limit: int = 100) -> list[GenerationLogRecord]:
        return self._gateway.generation_logs(limit)

    def error_logs(self, limit: int = 50) -> list[GenerationLogRecord]:
        return self._gateway.error_logs(limit)

    def export_logs(self, period: DateRange, fmt: str = "json", locale: str | None = None) -> str:
        """Persisted log rows inside the period as JSON or localized CSV."""
        rows = [
            row
            for row in self._gateway.generation_logs(EXPORT_SAMPLE_SIZE)
            if period.contains(row.timestamp)
        ]
        if fmt == "csv":
            return _logs_to_csv(rows, locale or self._csv_locale)
        if fmt != "json":
            raise ValueError(f"Unsupported log export format: {fmt}")
        return json.dumps(
            [row.model_dump(mode="json") for row in rows], ensure_ascii=False, indent=2
        )

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _add(self, level: str, message: str, context: dict[str, Any]) -> LogEntry:
        with self._lock:
            entry = LogEntry(next(self._ids), datetime.now(), level, message, context)
            self._entries.append(entry)
        logger.log(_LEVELS[level], message)
        return entry


def _logs_to_csv(rows: list[GenerationLogRecord], locale: str) -> str:
    headers = LOG_CSV_HEADERS.get(locale, LOG_CSV_HEADERS["en"])
    yes, no = _YES_NO.get(locale, _YES_NO["en"])
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(headers)
    for row in rows:
        writer.writerow(
            [
                row.timestamp.isoformat(),
                row.topic,
                row.category,
                row.duration,
                row.quality_score or 0,
                row.word_count,
                yes if row.success else no,
                row.retries or 0,
                row.error_message or "",
            ]
        )
    return buffer.getvalue()
