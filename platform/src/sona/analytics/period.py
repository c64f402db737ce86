"""Inclusive date ranges used by reports and log exports."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from dateutil import parser as dateparser


@dataclass(frozen=True)
class DateRange:
    start_date: date
    end_date: date

    @classmethod
    def parse(cls, start: str, end: str) -> DateRange:
        """Accept any date text dateutil understands ("2024-05-01", "May 1 2024", ...)."""
        return cls(dateparser.parse(start).date(), dateparser.parse(end).date())

    @classmethod
    def last_days(cls, days: int, today: date | None = None) -> DateRange:
        today = today or date.today()
        return cls(today - timedelta(days=days), today)

    @property
    def start_iso(self) -> str:
        return self.start_date.isoformat()

    @property
    def end_iso(self) -> str:
        return self.end_date.isoformat()

    def contains(self, moment: datetime) -> bool:
        start = datetime.combine(self.start_date, time.min)
        end = datetime.combine(self.end_date, time.max)
        return start <= moment <= end
