"""Tests for export, validation, import and structural merge."""

from __future__ import annotations

import csv
import io
import json
from pathlib import Path

import pytest

from sona.config import Settings
from sona.portability.merge import (
    JsonArray,
    JsonObject,
    JsonScalar,
    deep_merge,
    from_python,
    merge,
    merge_synonyms,
    to_python,
)
from sona.portability.schema import ConflictResolution, ExportOptions, ImportOptions
from sona.services import SonaServices
from tests.conftest import make_metadata

NO_SECTIONS = ExportOptions(
    include_knowledge=False,
    include_templates=False,
    include_synonyms=False,
    include_phrases=False,
    include_settings=False,
)


def _write(path: Path, data: object) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")


def _read(path: Path) -> object:
    return json.loads(path.read_text(encoding="utf-8"))


@pytest.fixture
def data_dir(settings: Settings) -> Path:
    root = settings.data_dir
    _write(root / "knowledge" / "health.json", {"facts": ["water"], "meta": {"source": "who"}})
    _write(root / "templates" / "intro" / "basic.json", {"text": "Hello {name}"})
    _write(root / "synonyms" / "arabic.json", {"جميل": ["رائع"]})
    _write(root / "phrases" / "openers.json", ["In this article"])
    return root


def _document(**sections: object) -> dict:
    return {"metadata": {"version": "4.0.0", "exportedAt": "2024-05-01T10:00:00"}, **sections}


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


def test_export_reads_every_section(services: SonaServices, data_dir: Path) -> None:
    data = services.portability.export(exported_by="sara")

    assert data.metadata.contents == ["knowledge", "templates", "synonyms", "phrases", "settings"]
    assert data.metadata.exported_by == "sara"
    assert data.metadata.version == "4.0.0"
    assert data.knowledge == {"health": {"facts": ["water"], "meta": {"source": "who"}}}
    assert data.templates == {"intro": {"basic": {"text": "Hello {name}"}}}
    assert data.synonyms == {"جميل": ["رائع"]}
    assert data.phrases == {"openers": ["In this article"]}
    assert data.settings["keyword_density"] == 3


def test_export_with_nothing_selected_still_has_metadata(services: SonaServices) -> None:
    data = services.portability.export(NO_SECTIONS)
    assert data.metadata.contents == []
    assert data.knowledge is None
    assert services.portability.estimate_size(NO_SECTIONS) > 0


def test_export_json_uses_camel_case_metadata(services: SonaServices) -> None:
    document = json.loads(services.portability.export_json(NO_SECTIONS))
    assert set(document) == {"metadata"}
    assert "exportedAt" in document["metadata"]
    assert "exportedBy" not in document["metadata"]


def test_export_can_include_stats(services: SonaServices) -> None:
    services.tracker.record_generation_event(make_metadata(), 1200, True)
    data = services.portability.export(ExportOptions(include_stats=True))
    assert "stats" in data.metadata.contents
    assert data.stats[0]["total_generations"] == 1


def test_export_stats_csv_localized(services: SonaServices) -> None:
    services.tracker.record_generation_event(make_metadata(quality=75), 1200, True)

    arabic = list(csv.reader(io.StringIO(services.portability.export_stats_csv())))
    assert arabic[0][:2] == ["التاريخ", "إجمالي التوليدات"]
    assert len(arabic) == 2
    assert arabic[1][1:5] == ["1", "1", "0", "75.00"]

    english = services.portability.export_stats_csv(locale="en").splitlines()
    assert english[0] == "Date,Total generations,Successful,Failed,Average quality,Average time (ms)"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def test_validate_rejects_non_objects(services: SonaServices) -> None:
    for value in (None, [], "text", 3):
        result = services.portability.validate(value)
        assert result.valid is False
        assert result.errors == ["Invalid data format: expected object"]


def test_validate_metadata_rules(services: SonaServices) -> None:
    missing = services.portability.validate({"knowledge": {}})
    assert missing.valid is False
    assert "Missing metadata" in missing.errors

    partial = services.portability.validate({"metadata": {"contents": []}})
    assert partial.valid is True
    assert partial.warnings == ["Missing version in metadata", "Missing export date in metadata"]

    empty = services.portability.validate({"metadata": {}})
    assert empty.valid is True
    assert empty.errors == []
    assert empty.warnings == ["Missing version in metadata", "Missing export date in metadata"]


def test_validate_names_bad_synonyms(services: SonaServices) -> None:
    result = services.portability.validate(
        _document(synonyms={"good": ["fine"], "bad": "not a list"})
    )
    assert result.valid is False
    assert result.errors == ['Invalid synonyms for "bad": expected array']
    assert result.file_info["version"] == "4.0.0"


def test_validate_section_types(services: SonaServices) -> None:
    result = services.portability.validate(_document(knowledge=["x"], settings="y"))
    assert "Invalid knowledge format: expected object" in result.errors
    assert "Invalid settings format: expected object" in result.errors


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------


def test_import_malformed_text_fails_with_zero_counts(services: SonaServices) -> None:
    result = services.portability.import_data("invalid json{{{")
    assert result.success is False
    assert len(result.errors) > 0
    assert result.imported.knowledge == 0
    assert result.imported.templates == 0


def test_import_invalid_document_imports_nothing(services: SonaServices, settings: Settings) -> None:
    result = services.portability.import_data({"knowledge": {"a": {}}})
    assert result.success is False
    assert not (settings.data_dir / "knowledge").exists()


def test_import_merges_existing_files(services: SonaServices, data_dir: Path) -> None:
    result = services.portability.import_data(
        _document(
            knowledge={
                "health": {"facts": ["water", "sleep"], "meta": {"year": 2024}},
                "zodiac": {"signs": 12},
            },
            synonyms={"جميل": ["رائع", "بديع"], "سريع": ["عاجل"]},
        )
    )

    assert result.success is True
    assert result.imported.knowledge == 2
    assert result.imported.synonyms == 2
    assert _read(data_dir / "knowledge" / "health.json") == {
        "facts": ["water", "sleep"],
        "meta": {"source": "who", "year": 2024},
    }
    assert _read(data_dir / "knowledge" / "zodiac.json") == {"signs": 12}
    assert _read(data_dir / "synonyms" / "arabic.json") == {
        "جميل": ["رائع", "بديع"],
        "سريع": ["عاجل"],
    }


def test_import_skip_leaves_existing_files(services: SonaServices, data_dir: Path) -> None:
    result = services.portability.import_data(
        _document(
            templates={"intro": {"basic": {"text": "changed"}, "fresh": {"text": "new"}}}
        ),
        ImportOptions(conflict_resolution=ConflictResolution.SKIP),
    )
    assert result.imported.templates == 1
    assert result.skipped == 1
    assert _read(data_dir / "templates" / "intro" / "basic.json") == {"text": "Hello {name}"}
    assert _read(data_dir / "templates" / "intro" / "fresh.json") == {"text": "new"}


def test_import_replace_overwrites(services: SonaServices, data_dir: Path) -> None:
    services.portability.import_data(
        _document(phrases={"openers": ["Welcome"]}),
        ImportOptions(conflict_resolution=ConflictResolution.REPLACE),
    )
    assert _read(data_dir / "phrases" / "openers.json") == ["Welcome"]


def test_import_settings_go_through_validation(services: SonaServices) -> None:
    ok = services.portability.import_data(_document(settings={"keyword_density": 4}))
    assert ok.success is True
    assert ok.imported.settings == 1
    assert services.settings.get_setting("keyword_density") == 4

    bad = services.portability.import_data(_document(settings={"max_retries": 99}))
    assert bad.success is False
    assert bad.errors == ["Settings: max_retries must be between 1 and 10"]
    assert services.settings.get_setting("max_retries") == 3


def test_import_skips_unsafe_names(services: SonaServices, settings: Settings) -> None:
    result = services.portability.import_data(_document(knowledge={"../escape": {"x": 1}}))
    assert result.imported.knowledge == 0
    assert result.warnings == ["Skipped entry with unsafe name: '../escape'"]
    assert not (settings.data_dir / "escape.json").exists()


def test_import_accepts_export_objects(services: SonaServices, data_dir: Path) -> None:
    exported = services.portability.export()
    result = services.portability.import_data(exported)
    assert result.success is True
    assert result.imported.knowledge == 1
    assert result.imported.templates == 1


def test_backup_and_restore(services: SonaServices, data_dir: Path, tmp_path: Path) -> None:
    backup = services.portability.create_backup(tmp_path / "backups" / "sona.json")
    assert backup.exists()

    _write(data_dir / "knowledge" / "health.json", {"facts": ["changed"]})
    result = services.portability.restore_from_backup(backup)

    assert result.success is True
    assert _read(data_dir / "knowledge" / "health.json") == {
        "facts": ["water"],
        "meta": {"source": "who"},
    }


def test_restore_missing_backup(services: SonaServices, tmp_path: Path) -> None:
    result = services.portability.restore_from_backup(tmp_path / "nope.json")
    assert result.success is False
    assert result.errors[0].startswith("Failed to restore from backup")


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


def test_disjoint_objects_merge_to_union() -> None:
    assert deep_merge({"a": 1}, {"b": {"c": 2}}) == {"a": 1, "b": {"c": 2}}


def test_merge_with_itself_is_identity() -> None:
    value = {"a": [1, 2], "b": {"c": "x", "d": [{"k": 1}]}, "e": None}
    assert deep_merge(value, value) == value


def test_arrays_union_in_order() -> None:
    assert deep_merge([3, 1, 3], [1, 2, {"x": 1}, {"x": 1}]) == [3, 1, 2, {"x": 1}]


def test_scalars_and_mismatched_kinds_take_source() -> None:
    assert deep_merge(1, 2) == 2
    assert deep_merge({"a": 1}, [1]) == [1]
    assert deep_merge([1], "text") == "text"
    assert deep_merge({"a": {"b": 1}}, {"a": None}) == {"a": None}


def test_tagged_variant_round_trip() -> None:
    node = from_python({"a": [1, "two", None]})
    assert node == JsonObject((("a", JsonArray((JsonScalar(1), JsonScalar("two"), JsonScalar(None)))),))
    assert to_python(merge(node, JsonScalar(True))) is True
    with pytest.raises(TypeError):
        from_python({1, 2})


def test_merge_synonyms() -> None:
    merged = merge_synonyms(
        {"fast": ["quick", "rapid"], "big": ["large"]},
        {"fast": ["rapid", "swift"], "small": ["tiny"]},
    )
    assert merged == {
        "fast": ["quick", "rapid", "swift"],
        "big": ["large"],
        "small": ["tiny"],
    }
