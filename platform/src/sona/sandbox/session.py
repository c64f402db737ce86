"""Sandbox session records and the values that flow through them."""

from __future__ import annotations

import secrets
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from sona.settings.schema import DEFAULT_SETTINGS


def new_session_id() -> str:
    """64 hex characters from the OS CSPRNG."""
    return secrets.token_hex(32)


def new_content_id() -> str:
    return secrets.token_hex(16)


@dataclass
class SandboxGenerationRequest:
    topic: str
    length: str | None = None  # short | medium | long | comprehensive
    style: str | None = None  # formal | casual | seo
    category: str = "general"
    include_keywords: list[str] = field(default_factory=list)


@dataclass
class SandboxContent:
    """One article generated inside a sandbox (or supplied as the production baseline)."""

    id: str
    topic: str
    category: str
    content: str
    title: str
    word_count: int
    quality_score: float
    generated_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["generated_at"] = self.generated_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SandboxContent:
        data = dict(data)
        generated_at = data.get("generated_at")
        if isinstance(generated_at, str):
            data["generated_at"] = datetime.fromisoformat(generated_at)
        return cls(**data)


@dataclass
class SandboxSession:
    """Arena slot for one trial session.

    ``overrides`` holds only what the caller changed; ``settings`` is the
    overrides laid over the production defaults and is what generation sees.
    """

    session_id: str
    created_at: datetime
    expires_at: datetime | None
    overrides: dict[str, Any] = field(default_factory=dict)
    content: list[SandboxContent] = field(default_factory=list)
    is_active: bool = True
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def settings(self) -> dict[str, Any]:
        merged = DEFAULT_SETTINGS.model_dump(mode="json")
        for key, value in self.overrides.items():
            # Partial word_count_targets keep the remaining defaults
            if isinstance(value, dict) and isinstance(merged.get(key), dict):
                merged[key] = {**merged[key], **value}
            else:
                merged[key] = value
        return merged

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at is not None and (now or datetime.now()) > self.expires_at


@dataclass
class StructureCounts:
    h1: int
    h2: int
    p: int
    ul: int


@dataclass
class ContentDifferences:
    quality_score_diff: float
    word_count_diff: int
    keyword_density_diff: float
    structure_diff: list[str] = field(default_factory=list)


@dataclass
class ComparisonResult:
    sandbox: SandboxContent
    production: SandboxContent
    differences: ContentDifferences
    recommendation: str  # promote | keep_production | needs_review


@dataclass
class PromotionResult:
    success: bool
    promoted_settings: dict[str, Any] | None = None
    errors: list[str] = field(default_factory=list)


@dataclass
class SessionStats:
    content_count: int
    avg_quality_score: float
    total_word_count: int
