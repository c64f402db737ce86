"""Sandbox manager: isolated trial sessions with their own settings and content.

Sessions live in an in-process arena keyed by a random id. When a gateway is
attached, each session is mirrored to a row so another process can pick it
up with get(); the arena stays the source of truth for this process.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from datetime import datetime, timedelta
from typing import Any

from bs4 import BeautifulSoup

from sona.exceptions import SandboxLimitError
from sona.sandbox.generator import PlaceholderGenerator, SandboxGenerator
from sona.sandbox.session import (
    ComparisonResult,
    ContentDifferences,
    PromotionResult,
    SandboxContent,
    SandboxGenerationRequest,
    SandboxSession,
    SessionStats,
    StructureCounts,
    new_session_id,
)
from sona.settings.manager import SettingsManager
from sona.settings.schema import plain_value
from sona.storage.gateway import PersistenceGateway
from sona.storage.models import SandboxSessionRecord

logger = logging.getLogger(__name__)

PROMOTE_THRESHOLD = 5

_STRUCTURE_LABELS = {
    "h1": "عدد العناوين الرئيسية",
    "h2": "عدد العناوين الفرعية",
    "p": "عدد الفقرات",
    "ul": "عدد القوائم",
}
_WORD = re.compile(r"\w+")


def count_structure(html: str) -> StructureCounts:
    soup = BeautifulSoup(html, "html.parser")
    return StructureCounts(*(len(soup.find_all(tag)) for tag in _STRUCTURE_LABELS))


def keyword_density(html: str, keyword: str) -> float:
    """Share of words (percent) in the text that belong to the keyword's words."""
    words = [w.lower() for w in _WORD.findall(BeautifulSoup(html, "html.parser").get_text(" "))]
    if not words:
        return 0.0
    targets = {w.lower() for w in _WORD.findall(keyword)}
    hits = sum(1 for w in words if w in targets)
    return round(hits / len(words) * 100, 2)


def compare_structure(sandbox_html: str, production_html: str) -> list[str]:
    sandbox = count_structure(sandbox_html)
    production = count_structure(production_html)
    diffs = []
    for tag, label in _STRUCTURE_LABELS.items():
        left, right = getattr(sandbox, tag), getattr(production, tag)
        if left != right:
            diffs.append(f"{label}: {left} vs {right}")
    return diffs


class SandboxManager:
    """Creates, runs, compares and promotes sandbox sessions.

    The registry lock guards the arena itself. Each session has its own lock
    so concurrent calls on one id cannot lose content updates, while calls on
    different ids never wait on each other.
    """

    def __init__(
        self,
        *,
        generator: SandboxGenerator | None = None,
        settings_manager: SettingsManager | None = None,
        gateway: PersistenceGateway | None = None,
        max_age_hours: int = 24,
        max_content: int = 50,
    ) -> None:
        self._generator = generator or PlaceholderGenerator()
        self._settings_manager = settings_manager
        self._gateway = gateway
        self._max_age = timedelta(hours=max_age_hours)
        self._max_content = max_content
        self._sessions: dict[str, SandboxSession] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def create(self, settings_override: dict[str, Any] | None = None) -> SandboxSession:
        now = datetime.now()
        session = SandboxSession(
            session_id=new_session_id(),
            created_at=now,
            expires_at=now + self._max_age,
            overrides={k: plain_value(v) for k, v in (settings_override or {}).items()},
        )
        with self._lock:
            self._sessions[session.session_id] = session

        if self._gateway is not None:
            self._gateway.create_sandbox_row(
                session.session_id, session.overrides, session.expires_at
            )
        logger.info("Created sandbox %s", session.session_id[:12])
        return session

    def get(self, session_id: str) -> SandboxSession | None:
        """Live session for the id; expired sessions are destroyed on sight."""
        with self._lock:
            session = self._sessions.get(session_id)

        if session is None:
            session = self._load(session_id)
            if session is None:
                return None

        if session.is_expired():
            self.destroy(session_id)
            return None
        return session

    def destroy(self, session_id: str) -> bool:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is not None:
            session.is_active = False
        if self._gateway is not None:
            self._gateway.close_sandbox_row(session_id)
        if session is not None:
            logger.info("Destroyed sandbox %s", session_id[:12])
        return session is not None

    def is_valid(self, session_id: str) -> bool:
        with self._lock:
            session = self._sessions.get(session_id)
        return session is not None and session.is_active and not session.is_expired()

    def list_active(self) -> list[SandboxSession]:
        now = datetime.now()
        with self._lock:
            return [s for s in self._sessions.values() if s.is_active and not s.is_expired(now)]

    def count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def cleanup_expired(self) -> int:
        """Destroy expired sessions here and deactivate expired rows elsewhere."""
        now = datetime.now()
        with self._lock:
            expired = [sid for sid, s in self._sessions.items() if s.is_expired(now)]
        for session_id in expired:
            self.destroy(session_id)

        cleaned = len(expired)
        if self._gateway is not None:
            cleaned += self._gateway.cleanup_expired_sandbox_rows(now)
        if cleaned:
            logger.info("Cleaned up %d expired sandbox sessions", cleaned)
        return cleaned

    def clear_all(self) -> None:
        with self._lock:
            self._sessions.clear()

    # ------------------------------------------------------------------
    # Content
    # ------------------------------------------------------------------

    def generate(
        self, session_id: str, request: SandboxGenerationRequest
    ) -> SandboxContent | None:
        """Generate into one session; None when the session is unknown or closed."""
        session = self.get(session_id)
        if session is None:
            return None

        with session.lock:
            if not session.is_active:
                return None
            if len(session.content) >= self._max_content:
                raise SandboxLimitError(self._max_content)
            content = self._generator.generate(request, session.settings)
            session.content.append(content)
            snapshot = [item.to_dict() for item in session.content]

        if self._gateway is not None:
            self._gateway.update_sandbox_row(session_id, generated_content=snapshot)
        logger.debug("Sandbox %s generated %r", session_id[:12], request.topic)
        return content

    def get_content(self, session_id: str) -> list[SandboxContent]:
        session = self.get(session_id)
        if session is None:
            return []
        with session.lock:
            return list(session.content)

    def clear_content(self, session_id: str) -> bool:
        session = self.get(session_id)
        if session is None:
            return False
        with session.lock:
            session.content.clear()
        if self._gateway is not None:
            self._gateway.update_sandbox_row(session_id, generated_content=[])
        return True

    def compare_with_production(
        self, session_id: str, content_id: str, production: SandboxContent
    ) -> ComparisonResult | None:
        session = self.get(session_id)
        if session is None:
            return None
        with session.lock:
            sandbox = next((c for c in session.content if c.id == content_id), None)
        if sandbox is None:
            return None

        quality_diff = round(sandbox.quality_score - production.quality_score, 2)
        density_diff = round(
            keyword_density(sandbox.content, sandbox.topic)
            - keyword_density(production.content, production.topic),
            2,
        )

        if quality_diff > PROMOTE_THRESHOLD:
            recommendation = "promote"
        elif quality_diff < -PROMOTE_THRESHOLD:
            recommendation = "keep_production"
        else:
            recommendation = "needs_review"

        return ComparisonResult(
            sandbox=sandbox,
            production=production,
            differences=ContentDifferences(
                quality_score_diff=quality_diff,
                word_count_diff=sandbox.word_count - production.word_count,
                keyword_density_diff=density_diff,
                structure_diff=compare_structure(sandbox.content, production.content),
            ),
            recommendation=recommendation,
        )

    # ------------------------------------------------------------------
    # Settings and promotion
    # ------------------------------------------------------------------

    def update_settings(self, session_id: str, partial: dict[str, Any]) -> bool:
        session = self.get(session_id)
        if session is None:
            return False
        with session.lock:
            session.overrides.update({k: plain_value(v) for k, v in partial.items()})
            overrides = dict(session.overrides)
        if self._gateway is not None:
            self._gateway.update_sandbox_row(session_id, settings=overrides)
        return True

    def promote_to_production(self, session_id: str) -> PromotionResult:
        """Apply the session's overrides to production and close the session.

        The result carries the full settings the session was running with. A
        validation failure leaves both production and the session untouched.
        """
        session = self.get(session_id)
        if session is None:
            return PromotionResult(success=False, errors=["Session not found"])

        with session.lock:
            promoted = session.settings
            # Nested overrides go out whole so partial word-count targets validate
            overrides = {key: promoted[key] for key in session.overrides}
            if self._settings_manager is not None:
                result = self._settings_manager.update_settings(
                    overrides, updated_by=f"sandbox:{session_id[:12]}"
                )
                if not result.valid:
                    logger.warning("Promotion of sandbox %s rejected", session_id[:12])
                    return PromotionResult(success=False, errors=result.errors)

        self.destroy(session_id)
        logger.info("Promoted sandbox %s (%d settings)", session_id[:12], len(overrides))
        return PromotionResult(success=True, promoted_settings=promoted)

    def stats(self, session_id: str) -> SessionStats | None:
        session = self.get(session_id)
        if session is None:
            return None
        with session.lock:
            content = list(session.content)
        if not content:
            return SessionStats(0, 0.0, 0)
        return SessionStats(
            content_count=len(content),
            avg_quality_score=round(sum(c.quality_score for c in content) / len(content), 2),
            total_word_count=sum(c.word_count for c in content),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load(self, session_id: str) -> SandboxSession | None:
        """Adopt a session row written by another process."""
        if self._gateway is None:
            return None
        row = self._gateway.get_sandbox_row(session_id)
        if row is None:
            return None

        session = _session_from_row(row)
        with self._lock:
            # Another thread may have adopted it first
            return self._sessions.setdefault(session_id, session)


def _session_from_row(row: SandboxSessionRecord) -> SandboxSession:
    return SandboxSession(
        session_id=row.session_id,
        created_at=row.created_at,
        expires_at=row.expires_at,
        overrides=json.loads(row.settings_json or "{}"),
        content=[SandboxContent.from_dict(c) for c in json.loads(row.generated_content_json or "[]")],
        is_active=row.is_active,
    )
