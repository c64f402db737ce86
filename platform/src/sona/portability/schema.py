"""Export file shape and the options/results of export and import."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

SECTIONS = ("knowledge", "templates", "synonyms", "phrases", "settings")


class ConflictResolution(str, Enum):
    REPLACE = "replace"
    MERGE = "merge"
    SKIP = "skip"


class ExportOptions(BaseModel):
    include_knowledge: bool = True
    include_templates: bool = True
    include_synonyms: bool = True
    include_phrases: bool = True
    include_settings: bool = True
    include_stats: bool = False


class ImportOptions(BaseModel):
    conflict_resolution: ConflictResolution = ConflictResolution.MERGE
    validate_before_import: bool = True


class ExportMetadata(BaseModel):
    """Serialized with camelCase keys so files stay compatible across versions."""

    model_config = ConfigDict(populate_by_name=True)

    version: str
    exported_at: str = Field(alias="exportedAt")
    exported_by: str | None = Field(default=None, alias="exportedBy")
    description: str | None = None
    contents: list[str] = Field(default_factory=list)


class ExportData(BaseModel):
    metadata: ExportMetadata
    knowledge: dict[str, Any] | None = None
    templates: dict[str, Any] | None = None
    synonyms: dict[str, list[str]] | None = None
    phrases: dict[str, Any] | None = None
    settings: dict[str, Any] | None = None
    stats: list[dict[str, Any]] | None = None

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


@dataclass
class ImportCounts:
    knowledge: int = 0
    templates: int = 0
    synonyms: int = 0
    phrases: int = 0
    settings: int = 0


@dataclass
class ImportResult:
    success: bool = False
    imported: ImportCounts = field(default_factory=ImportCounts)
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class ImportValidation:
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    file_info: dict[str, Any] | None = None
