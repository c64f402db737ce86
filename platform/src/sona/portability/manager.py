"""Export/import of the SONA knowledge base, templates and settings.

File-backed sections live under the configured data directory:

    knowledge/<name>.json
    templates/<category>/<name>.json
    synonyms/arabic.json
    phrases/<name>.json

Settings go through the SettingsManager so imports obey the same
validation as any other update.
"""

from __future__ import annotations

import csv
import io
import json
import logging
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Callable

from sona.portability.merge import deep_merge, merge_synonyms
from sona.portability.schema import (
    SECTIONS,
    ConflictResolution,
    ExportData,
    ExportMetadata,
    ExportOptions,
    ImportOptions,
    ImportResult,
    ImportValidation,
)
from sona.settings.manager import SettingsManager
from sona.storage.gateway import PersistenceGateway
from sona.storage.models import GenerationStatRecord

logger = logging.getLogger(__name__)

STATS_WINDOW_DAYS = 30
SYNONYMS_FILE = "arabic.json"

STATS_CSV_HEADERS = {
    "ar": [
        "التاريخ",
        "إجمالي التوليدات",
        "الناجحة",
        "الفاشلة",
        "متوسط الجودة",
        "متوسط الوقت (مللي ثانية)",
    ],
    "en": [
        "Date",
        "Total generations",
        "Successful",
        "Failed",
        "Average quality",
        "Average time (ms)",
    ],
}


def _is_safe_name(name: str) -> bool:
    return bool(name) and name not in {".", ".."} and "/" not in name and "\\" not in name


def _read_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


def _write_json(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")


class ExportImportManager:
    def __init__(
        self,
        data_dir: Path,
        settings_manager: SettingsManager,
        gateway: PersistenceGateway | None = None,
        *,
        schema_version: str = "4.0.0",
        csv_locale: str = "ar",
    ) -> None:
        self._data_dir = Path(data_dir)
        self._settings_manager = settings_manager
        self._gateway = gateway
        self._schema_version = schema_version
        self._csv_locale = csv_locale

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export(
        self,
        options: ExportOptions | None = None,
        exported_by: str | None = None,
        description: str | None = None,
    ) -> ExportData:
        """Snapshot the selected sections. Metadata is always present."""
        options = options or ExportOptions()
        data = ExportData(
            metadata=ExportMetadata(
                version=self._schema_version,
                exported_at=datetime.now().isoformat(),
                exported_by=exported_by,
                description=description,
            )
        )

        if options.include_knowledge:
            data.knowledge = self._read_json_dir(self._data_dir / "knowledge")
            data.metadata.contents.append("knowledge")
        if options.include_templates:
            data.templates = self._load_templates()
            data.metadata.contents.append("templates")
        if options.include_synonyms:
            data.synonyms = self._load_synonyms()
            data.metadata.contents.append("synonyms")
        if options.include_phrases:
            data.phrases = self._read_json_dir(self._data_dir / "phrases")
            data.metadata.contents.append("phrases")
        if options.include_settings:
            data.settings = self._settings_manager.get_settings().model_dump(mode="json")
            data.metadata.contents.append("settings")
        if options.include_stats and self._gateway is not None:
            data.stats = [row.model_dump(mode="json") for row in self._recent_stats()]
            data.metadata.contents.append("stats")

        logger.info("Exported sections: %s", ", ".join(data.metadata.contents) or "none")
        return data

    def export_json(
        self, options: ExportOptions | None = None, exported_by: str | None = None
    ) -> str:
        document = self.export(options, exported_by).to_document()
        return json.dumps(document, ensure_ascii=False, indent=2)

    def estimate_size(self, options: ExportOptions | None = None) -> int:
        """Length of the compact serialized export; nothing is written."""
        document = self.export(options).to_document()
        return len(json.dumps(document, ensure_ascii=False))

    def export_stats_csv(self, locale: str | None = None) -> str:
        """Daily stat rows for the last 30 days, newest first."""
        headers = STATS_CSV_HEADERS.get(locale or self._csv_locale, STATS_CSV_HEADERS["en"])
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(headers)
        for stat in self._recent_stats():
            writer.writerow(
                [
                    stat.date,
                    stat.total_generations,
                    stat.successful_generations,
                    stat.failed_generations,
                    f"{stat.avg_quality_score or 0:.2f}",
                    stat.avg_generation_time or 0,
                ]
            )
        return buffer.getvalue()

    def create_backup(self, path: Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.export_json(), encoding="utf-8")
        logger.info("Backup written to %s", path)
        return path

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, data: Any) -> ImportValidation:
        if not isinstance(data, dict):
            return ImportValidation(valid=False, errors=["Invalid data format: expected object"])

        errors: list[str] = []
        warnings: list[str] = []
        metadata = data.get("metadata")
        if metadata is None:
            errors.append("Missing metadata")
        elif not isinstance(metadata, dict):
            errors.append("Invalid metadata format: expected object")
        else:
            if not metadata.get("version"):
                warnings.append("Missing version in metadata")
            if not metadata.get("exportedAt"):
                warnings.append("Missing export date in metadata")

        for section in SECTIONS:
            value = data.get(section)
            if value is not None and not isinstance(value, dict):
                errors.append(f"Invalid {section} format: expected object")

        synonyms = data.get("synonyms")
        if isinstance(synonyms, dict):
            for word, values in synonyms.items():
                if not isinstance(values, list):
                    errors.append(f'Invalid synonyms for "{word}": expected array')

        file_info = None
        if isinstance(metadata, dict):
            file_info = {
                "version": metadata.get("version"),
                "exported_at": metadata.get("exportedAt"),
                "contents": metadata.get("contents"),
            }
        return ImportValidation(valid=not errors, errors=errors, warnings=warnings, file_info=file_info)

    # ------------------------------------------------------------------
    # Import
    # ------------------------------------------------------------------

    def import_data(
        self, data: ExportData | dict | str, options: ImportOptions | None = None
    ) -> ImportResult:
        """Parse, validate, then merge each present section.

        Unparsable text or a failed validation is a hard failure with zero
        counts. Section-level failures are collected as errors while the
        remaining sections still import.
        """
        options = options or ImportOptions()
        result = ImportResult()

        if isinstance(data, str):
            try:
                document = json.loads(data)
            except json.JSONDecodeError as exc:
                result.errors.append(f"Import failed: {exc}")
                return result
        elif isinstance(data, ExportData):
            document = data.to_document()
        else:
            document = data

        if options.validate_before_import:
            validation = self.validate(document)
            if not validation.valid:
                result.errors = validation.errors
                return result
            result.warnings = validation.warnings
        elif not isinstance(document, dict):
            result.errors.append("Invalid data format: expected object")
            return result

        mode = options.conflict_resolution
        importers: dict[str, Callable[[Any, ConflictResolution, ImportResult], int]] = {
            "knowledge": lambda entries, m, r: self._import_dir(self._data_dir / "knowledge", entries, m, r),
            "templates": self._import_templates,
            "synonyms": self._import_synonyms,
            "phrases": lambda entries, m, r: self._import_dir(self._data_dir / "phrases", entries, m, r),
        }
        for section, importer in importers.items():
            if document.get(section):
                count = self._import_section(section, importer, document[section], mode, result)
                setattr(result.imported, section, count)

        if document.get("settings"):
            validation = self._settings_manager.update_settings(
                document["settings"], updated_by="import"
            )
            if validation.valid:
                result.imported.settings = len(document["settings"])
            else:
                result.errors.extend(f"Settings: {error}" for error in validation.errors)

        result.success = not result.errors
        logger.info(
            "Import finished (success=%s, skipped=%d, errors=%d)",
            result.success,
            result.skipped,
            len(result.errors),
        )
        return result

    def restore_from_backup(self, path: Path) -> ImportResult:
        """Re-import a backup file, replacing whatever is on disk."""
        try:
            text = Path(path).read_text(encoding="utf-8")
        except OSError as exc:
            result = ImportResult()
            result.errors.append(f"Failed to restore from backup: {exc}")
            return result
        return self.import_data(text, ImportOptions(conflict_resolution=ConflictResolution.REPLACE))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _recent_stats(self) -> list[GenerationStatRecord]:
        if self._gateway is None:
            return []
        today = date.today()
        start = today - timedelta(days=STATS_WINDOW_DAYS)
        return self._gateway.generation_stats(start.isoformat(), today.isoformat())

    def _read_json_dir(self, directory: Path) -> dict[str, Any]:
        entries: dict[str, Any] = {}
        if not directory.is_dir():
            return entries
        for path in sorted(directory.glob("*.json")):
            try:
                entries[path.stem] = _read_json(path)
            except json.JSONDecodeError:
                logger.warning("Skipping unreadable JSON file %s", path)
        return entries

    def _load_templates(self) -> dict[str, Any]:
        root = self._data_dir / "templates"
        if not root.is_dir():
            return {}
        return {
            category.name: self._read_json_dir(category)
            for category in sorted(root.iterdir())
            if category.is_dir()
        }

    def _load_synonyms(self) -> dict[str, list[str]]:
        path = self._data_dir / "synonyms" / SYNONYMS_FILE
        if not path.is_file():
            return {}
        try:
            return _read_json(path)
        except json.JSONDecodeError:
            logger.warning("Skipping unreadable synonyms file %s", path)
            return {}

    def _import_section(
        self,
        name: str,
        importer: Callable[[Any, ConflictResolution, ImportResult], int],
        entries: Any,
        mode: ConflictResolution,
        result: ImportResult,
    ) -> int:
        try:
            return importer(entries, mode, result)
        except (OSError, json.JSONDecodeError) as exc:
            logger.exception("Failed to import %s", name)
            result.errors.append(f"Failed to import {name}: {exc}")
            return 0

    def _import_entry(self, path: Path, data: Any, mode: ConflictResolution) -> bool:
        """Write one entry honoring the conflict mode; False when skipped."""
        exists = path.exists()
        if exists and mode is ConflictResolution.SKIP:
            return False
        if exists and mode is ConflictResolution.MERGE:
            data = deep_merge(_read_json(path), data)
        _write_json(path, data)
        return True

    def _import_dir(
        self, directory: Path, entries: dict[str, Any], mode: ConflictResolution, result: ImportResult
    ) -> int:
        count = 0
        for name, data in entries.items():
            if not _is_safe_name(name):
                result.warnings.append(f"Skipped entry with unsafe name: {name!r}")
                continue
            if self._import_entry(directory / f"{name}.json", data, mode):
                count += 1
            else:
                result.skipped += 1
        return count

    def _import_templates(
        self, templates: dict[str, Any], mode: ConflictResolution, result: ImportResult
    ) -> int:
        count = 0
        for category, entries in templates.items():
            if not _is_safe_name(category):
                result.warnings.append(f"Skipped template category with unsafe name: {category!r}")
                continue
            if isinstance(entries, dict):
                count += self._import_dir(self._data_dir / "templates" / category, entries, mode, result)
        return count

    def _import_synonyms(
        self, synonyms: dict[str, list[str]], mode: ConflictResolution, result: ImportResult
    ) -> int:
        path = self._data_dir / "synonyms" / SYNONYMS_FILE
        exists = path.exists()
        if exists and mode is ConflictResolution.SKIP:
            result.skipped += 1
            return 0
        if exists and mode is ConflictResolution.MERGE:
            _write_json(path, merge_synonyms(_read_json(path), synonyms))
        else:
            _write_json(path, synonyms)
        return len(synonyms)
