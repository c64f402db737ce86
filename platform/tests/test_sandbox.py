"""Tests for isolated sandbox sessions, comparison and promotion."""

from __future__ import annotations

import random
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

from sona.exceptions import SandboxLimitError
from sona.sandbox.generator import PlaceholderGenerator, SandboxGenerator
from sona.sandbox.manager import SandboxManager, count_structure, keyword_density
from sona.sandbox.session import SandboxContent, SandboxGenerationRequest
from sona.settings.manager import SettingsManager
from sona.storage.gateway import PersistenceGateway


@pytest.fixture
def sandbox() -> SandboxManager:
    return SandboxManager(generator=PlaceholderGenerator(random.Random(7)))


def _request(topic: str = "الشاي الأخضر", length: str | None = None) -> SandboxGenerationRequest:
    return SandboxGenerationRequest(topic=topic, length=length, category="health")


def _production(quality: float, html: str = "<h1>Tea</h1><p>Tea is nice</p>") -> SandboxContent:
    return SandboxContent(
        id="prod-1",
        topic="Tea",
        category="health",
        content=html,
        title="Tea",
        word_count=900,
        quality_score=quality,
    )


def test_sessions_get_distinct_ids(sandbox: SandboxManager) -> None:
    first = sandbox.create()
    second = sandbox.create()
    assert first.session_id != second.session_id
    assert len(first.session_id) == 64
    assert sandbox.count() == 2
    assert sandbox.is_valid(first.session_id)


def test_override_is_laid_over_defaults(sandbox: SandboxManager) -> None:
    session = sandbox.create({"keyword_density": 4, "word_count_targets": {"short": 300}})
    assert session.settings["keyword_density"] == 4
    assert session.settings["max_retries"] == 3
    assert session.settings["word_count_targets"] == {
        "short": 300,
        "medium": 1000,
        "long": 2000,
        "comprehensive": 3000,
    }


def test_generate_uses_session_settings(sandbox: SandboxManager) -> None:
    session = sandbox.create({"word_count_targets": {"short": 300}})
    content = sandbox.generate(session.session_id, _request(length="short"))

    assert content is not None
    assert content.word_count == 300
    assert 70 <= content.quality_score <= 95
    assert "الشاي الأخضر" in content.content
    assert content.title == "مقال عن الشاي الأخضر"


def test_placeholder_article_structure(sandbox: SandboxManager) -> None:
    session = sandbox.create()
    content = sandbox.generate(session.session_id, _request())
    structure = count_structure(content.content)
    # 1000 words at 100 per paragraph
    assert structure.h1 == 1
    assert structure.p == 10
    assert structure.ul == 0


def test_sessions_are_isolated(sandbox: SandboxManager) -> None:
    a = sandbox.create()
    b = sandbox.create()
    before = sandbox.count()

    made = sandbox.generate(a.session_id, _request())

    assert sandbox.count() == before
    assert [c.id for c in sandbox.get_content(a.session_id)] == [made.id]
    assert sandbox.get_content(b.session_id) == []

    sandbox.update_settings(a.session_id, {"keyword_density": 5})
    assert b.settings["keyword_density"] == 3


def test_generate_unknown_session_returns_none(sandbox: SandboxManager) -> None:
    assert sandbox.generate("nope", _request()) is None
    assert sandbox.get_content("nope") == []
    assert sandbox.clear_content("nope") is False
    assert sandbox.update_settings("nope", {}) is False
    assert sandbox.stats("nope") is None


def test_content_limit() -> None:
    manager = SandboxManager(max_content=2)
    session = manager.create()
    manager.generate(session.session_id, _request())
    manager.generate(session.session_id, _request())

    with pytest.raises(SandboxLimitError) as excinfo:
        manager.generate(session.session_id, _request())
    assert "Maximum content limit (2) reached for this session" in str(excinfo.value)

    assert manager.clear_content(session.session_id) is True
    assert manager.generate(session.session_id, _request()) is not None


def test_expired_sessions_disappear(sandbox: SandboxManager) -> None:
    session = sandbox.create()
    session.expires_at = datetime.now() - timedelta(seconds=1)

    assert sandbox.is_valid(session.session_id) is False
    assert sandbox.list_active() == []
    assert sandbox.get(session.session_id) is None
    assert sandbox.count() == 0


def test_cleanup_expired(sandbox: SandboxManager) -> None:
    stale = sandbox.create()
    fresh = sandbox.create()
    stale.expires_at = datetime.now() - timedelta(minutes=5)

    assert sandbox.cleanup_expired() == 1
    assert [s.session_id for s in sandbox.list_active()] == [fresh.session_id]


def test_destroy_and_clear_all(sandbox: SandboxManager) -> None:
    session = sandbox.create()
    assert sandbox.destroy(session.session_id) is True
    assert sandbox.destroy(session.session_id) is False
    assert sandbox.get(session.session_id) is None

    sandbox.create()
    sandbox.create()
    sandbox.clear_all()
    assert sandbox.count() == 0


def test_compare_with_production(sandbox: SandboxManager) -> None:
    session = sandbox.create()
    content = sandbox.generate(session.session_id, _request())

    better = sandbox.compare_with_production(session.session_id, content.id, _production(50))
    assert better.recommendation == "promote"
    assert better.differences.word_count_diff == 100
    assert "عدد الفقرات: 10 vs 1" in better.differences.structure_diff

    worse = sandbox.compare_with_production(session.session_id, content.id, _production(100))
    assert worse.recommendation == "keep_production"

    close = sandbox.compare_with_production(
        session.session_id, content.id, _production(content.quality_score - 1)
    )
    assert close.recommendation == "needs_review"


def test_compare_missing_content(sandbox: SandboxManager) -> None:
    session = sandbox.create()
    assert sandbox.compare_with_production(session.session_id, "missing", _production(80)) is None
    assert sandbox.compare_with_production("missing", "missing", _production(80)) is None


def test_keyword_density() -> None:
    assert keyword_density("<p>apple pie and apple</p>", "apple") == 50.0
    assert keyword_density("", "apple") == 0.0


def test_session_stats(sandbox: SandboxManager) -> None:
    session = sandbox.create()
    assert sandbox.stats(session.session_id).content_count == 0
    assert sandbox.stats(session.session_id).avg_quality_score == 0.0

    sandbox.generate(session.session_id, _request())
    sandbox.generate(session.session_id, _request(length="long"))

    stats = sandbox.stats(session.session_id)
    assert stats.content_count == 2
    assert stats.total_word_count == 3000
    assert 70 <= stats.avg_quality_score <= 95


def test_promote_applies_settings_and_closes(gateway: PersistenceGateway) -> None:
    production = SettingsManager(gateway)
    manager = SandboxManager(settings_manager=production)
    session = manager.create({"keyword_density": 4})

    result = manager.promote_to_production(session.session_id)

    assert result.success is True
    assert result.promoted_settings["keyword_density"] == 4
    assert result.promoted_settings["max_retries"] == 3
    assert production.get_setting("keyword_density") == 4
    assert manager.get(session.session_id) is None


def test_promote_partial_word_count_targets(gateway: PersistenceGateway) -> None:
    """A partial nested override is promoted together with its defaults."""
    production = SettingsManager(gateway)
    manager = SandboxManager(settings_manager=production)
    session = manager.create({"word_count_targets": {"short": 300}})

    result = manager.promote_to_production(session.session_id)

    assert result.success is True
    targets = production.get_setting("word_count_targets")
    assert targets.short == 300
    assert targets.medium == 1000
    assert targets.comprehensive == 3000


def test_promote_invalid_settings_keeps_session(gateway: PersistenceGateway) -> None:
    production = SettingsManager(gateway)
    manager = SandboxManager(settings_manager=production)
    session = manager.create({"keyword_density": 9})

    result = manager.promote_to_production(session.session_id)

    assert result.success is False
    assert result.errors == ["keyword_density must be between 1 and 5"]
    assert production.get_setting("keyword_density") == 3
    assert manager.get(session.session_id) is not None


def test_promote_unknown_session(sandbox: SandboxManager) -> None:
    result = sandbox.promote_to_production("missing")
    assert result.success is False
    assert result.errors == ["Session not found"]


def test_sessions_are_mirrored_to_the_gateway(gateway: PersistenceGateway) -> None:
    first = SandboxManager(gateway=gateway)
    session = first.create({"max_retries": 5})
    made = first.generate(session.session_id, _request())

    # A second process adopts the session from its row
    second = SandboxManager(gateway=gateway)
    adopted = second.get(session.session_id)
    assert adopted is not None
    assert adopted.settings["max_retries"] == 5
    assert [c.id for c in adopted.content] == [made.id]

    first.destroy(session.session_id)
    assert gateway.get_sandbox_row(session.session_id) is None


def test_custom_generator_receives_merged_settings() -> None:
    generator = MagicMock(spec=SandboxGenerator)
    generator.generate.return_value = _production(80)
    manager = SandboxManager(generator=generator)
    session = manager.create({"max_retries": 6})
    request = _request()

    content = manager.generate(session.session_id, request)

    assert content is generator.generate.return_value
    passed_request, passed_settings = generator.generate.call_args.args
    assert passed_request is request
    assert passed_settings["max_retries"] == 6
    assert passed_settings["keyword_density"] == 3
