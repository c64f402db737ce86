"""Tests for template versioning, diffing, rollback and archiving."""

from __future__ import annotations

import pytest

from sona.exceptions import VersionNotFoundError
from sona.storage.gateway import PersistenceGateway
from sona.versioning.versions import (
    DiffType,
    MergeStrategy,
    VersionManager,
    extract_template_variables,
    generate_template_id,
    validate_template_content,
)


@pytest.fixture
def versions(gateway: PersistenceGateway) -> VersionManager:
    return VersionManager(gateway)


def _save(manager: VersionManager, content: str, template_id: str = "t", **kwargs):
    return manager.save_version(template_id, "intro", content, category="health", **kwargs)


def test_versions_are_gap_free_and_listed_descending(versions: VersionManager) -> None:
    saved = [_save(versions, f"content {i}").version for i in range(5)]
    assert saved == [1, 2, 3, 4, 5]
    assert [v.version for v in versions.get_versions("t")] == [5, 4, 3, 2, 1]
    assert versions.get_latest_version("t").content == "content 4"


def test_versions_are_numbered_per_template(versions: VersionManager) -> None:
    _save(versions, "a", template_id="one")
    _save(versions, "b", template_id="two")
    assert versions.get_latest_version("two").version == 1


def test_rollback_restores_original_content(versions: VersionManager) -> None:
    """Rollback appends a copy of the target instead of rewriting history."""
    _save(versions, "Original content that we want to restore", variables={"name": ""})
    _save(versions, "Modified content")
    _save(versions, "Another modification")

    restored = versions.rollback("t", 1)

    assert restored.version == 4
    assert restored.content == "Original content that we want to restore"
    assert restored.change_description == "Rollback to version 1"
    assert restored.variables_json == versions.get_version("t", 1).variables_json
    assert versions.get_version("t", 1).content == "Original content that we want to restore"
    assert [v.version for v in versions.get_versions("t")] == [4, 3, 2, 1]


def test_rollback_to_missing_version_raises(versions: VersionManager) -> None:
    _save(versions, "only version")
    with pytest.raises(VersionNotFoundError) as excinfo:
        versions.rollback("t", 7)
    assert excinfo.value.version == 7
    assert "Version not found: 7 for template t" in str(excinfo.value)
    assert len(versions.get_versions("t")) == 1


def test_compare_same_version_has_no_changes(versions: VersionManager) -> None:
    _save(versions, "line one\nline two")
    diff = versions.compare("t", 1, 1)
    assert diff.added == []
    assert diff.removed == []
    assert diff.modified == []
    assert diff.summary == "No changes"


def test_compare_classifies_lines(versions: VersionManager) -> None:
    _save(versions, "a\nb\nc")
    _save(versions, "a\nB\nc\nd")

    diff = versions.compare("t", 1, 2)

    assert diff.added == ["d"]
    assert diff.removed == []
    changed = [line for line in diff.modified if line.type is DiffType.MODIFIED]
    assert len(changed) == 1
    assert changed[0].line_number == 2
    assert (changed[0].old_content, changed[0].new_content) == ("b", "B")
    assert diff.summary == "1 lines added, 1 lines modified"


def test_compare_reports_removed_lines_in_order(versions: VersionManager) -> None:
    _save(versions, "keep\ndrop one\ndrop two\nend")
    _save(versions, "keep\nend")
    diff = versions.compare("t", 1, 2)
    assert diff.removed == ["drop one", "drop two"]
    assert diff.added == []
    assert diff.summary == "2 lines removed"


def test_compare_missing_version_raises(versions: VersionManager) -> None:
    _save(versions, "x")
    with pytest.raises(VersionNotFoundError):
        versions.compare("t", 1, 2)


def test_archive_and_restore(versions: VersionManager) -> None:
    _save(versions, "v1")
    _save(versions, "v2")

    assert versions.archive("t") == 2
    assert versions.get_versions("t") == []
    assert versions.get_latest_version("t") is None
    # Archived versions are still addressable
    assert versions.get_version("t", 1).content == "v1"
    # Numbers keep counting archived versions
    assert _save(versions, "v3").version == 3

    versions.restore("t")
    assert [v.version for v in versions.get_versions("t")] == [3, 2, 1]


def test_old_versions_are_auto_archived(gateway: PersistenceGateway) -> None:
    manager = VersionManager(gateway, max_versions_to_keep=2)
    for i in range(4):
        _save(manager, f"v{i + 1}")

    assert [v.version for v in manager.get_versions("t")] == [4, 3]
    info = manager.version_info("t")
    assert info.total_versions == 4
    assert info.current_version == 4
    assert info.is_archived is True


def test_auto_archive_can_be_disabled(gateway: PersistenceGateway) -> None:
    manager = VersionManager(gateway, max_versions_to_keep=1, auto_archive_old_versions=False)
    _save(manager, "a")
    _save(manager, "b")
    assert len(manager.get_versions("t")) == 2


def test_version_info_and_change_log(versions: VersionManager) -> None:
    assert versions.version_info("missing") is None
    _save(versions, "a", change_description="first", created_by="sara")
    _save(versions, "b", change_description="second")

    info = versions.version_info("t")
    assert info.current_version == 2
    assert info.created_at <= info.last_modified
    assert info.is_archived is False

    log = versions.change_log("t", limit=1)
    assert len(log) == 1
    assert log[0].version == 2
    assert log[0].change_description == "second"


def test_search_versions_filters(versions: VersionManager) -> None:
    versions.save_version("a", "intro", "x", category="health", created_by="sara")
    versions.save_version("b", "faq", "y", category="zodiac", created_by="omar")
    versions.save_version("c", "intro", "z", category="zodiac")

    assert {v.template_id for v in versions.search_versions(template_type="intro")} == {"a", "c"}
    assert {v.template_id for v in versions.search_versions(category="zodiac")} == {"b", "c"}
    assert [v.template_id for v in versions.search_versions(created_by="sara")] == ["a"]
    assert len(versions.search_versions(limit=2)) == 2


def test_clone_template_copies_history(versions: VersionManager) -> None:
    _save(versions, "first")
    _save(versions, "second")

    assert versions.clone_template("t", "t_copy") == 2
    copies = versions.get_versions("t_copy")
    assert [(v.version, v.content) for v in copies] == [(2, "second"), (1, "first")]
    assert copies[0].category == "health"


def test_merge_versions_strategies(versions: VersionManager) -> None:
    _save(versions, "old text")
    _save(versions, "new text")

    newer = versions.merge_versions("t", 1, 2, MergeStrategy.PREFER_NEWER)
    assert newer.content == "new text"
    assert newer.version == 3

    older = versions.merge_versions("t", 1, 2, "prefer-older")
    assert older.content == "old text"

    combined = versions.merge_versions("t", 1, 2, MergeStrategy.COMBINE)
    assert combined.content.startswith("old text")
    assert combined.content.endswith("new text")
    assert "Merged from v2" in combined.content
    assert combined.change_description == "Merged v1 and v2 using combine strategy"

    with pytest.raises(VersionNotFoundError):
        versions.merge_versions("t", 1, 99)


def test_version_stats(versions: VersionManager) -> None:
    _save(versions, "a", template_id="one")
    _save(versions, "b", template_id="one")
    _save(versions, "c", template_id="two")
    versions.archive("two")

    stats = versions.version_stats()
    assert stats.total_templates == 2
    assert stats.total_versions == 3
    assert stats.archived_versions == 1
    assert stats.avg_versions_per_template == 1.5
    assert stats.recent_changes == 3


def test_validate_template_content() -> None:
    assert validate_template_content("Hello {name}, welcome to {site_name}").valid is True

    empty = validate_template_content("   ")
    assert empty.valid is False
    assert "Template content is empty" in empty.errors

    bad_var = validate_template_content("Hello {1st name}")
    assert bad_var.valid is False
    assert bad_var.errors == ["Invalid variable name: {1st name}"]

    assert validate_template_content("x" * 100_001).valid is False


def test_extract_template_variables_ordered_and_unique() -> None:
    assert extract_template_variables("{b} and {a} then {b} again") == ["b", "a"]
    assert extract_template_variables("no placeholders") == []


def test_generate_template_id() -> None:
    first = generate_template_id("intro", "health")
    second = generate_template_id("intro", "health", index=3)

    assert first.startswith("intro_health_")
    assert second.endswith("_3")
    assert first != second
    assert len(first.split("_")) == 4
