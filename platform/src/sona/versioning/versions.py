"""Template version manager.

Every save appends an immutable version; rollback copies an old version
forward instead of rewriting history. Archiving is a logical delete that
restore() reverses.
"""

from __future__ import annotations

import difflib
import json
import logging
import re
import secrets
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

from sona.exceptions import VersionNotFoundError
from sona.storage.gateway import PersistenceGateway, dumps
from sona.storage.models import TemplateVersionRecord
from sona.validation import ValidationResult

logger = logging.getLogger(__name__)

MAX_TEMPLATE_LENGTH = 100_000
_PLACEHOLDER = re.compile(r"\{([^}]+)\}")
_IDENTIFIER = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


# =============================================================================
# Data types
# =============================================================================


class DiffType(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"


class MergeStrategy(str, Enum):
    PREFER_NEWER = "prefer-newer"
    PREFER_OLDER = "prefer-older"
    COMBINE = "combine"


@dataclass
class DiffLine:
    line_number: int
    type: DiffType
    old_content: str | None = None
    new_content: str | None = None


@dataclass
class VersionDiff:
    template_id: str
    version1: int
    version2: int
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    modified: list[DiffLine] = field(default_factory=list)
    summary: str = ""


@dataclass
class VersionInfo:
    template_id: str
    current_version: int
    total_versions: int
    created_at: datetime
    last_modified: datetime
    is_archived: bool


@dataclass
class ChangeLogEntry:
    version: int
    change_description: str | None
    created_at: datetime
    created_by: str | None


@dataclass
class VersionStats:
    total_templates: int
    total_versions: int
    archived_versions: int
    avg_versions_per_template: float
    recent_changes: int


# =============================================================================
# Version manager
# =============================================================================


class VersionManager:
    """Saves, lists, diffs, rolls back and archives template versions."""

    def __init__(
        self,
        gateway: PersistenceGateway,
        *,
        max_versions_to_keep: int = 50,
        auto_archive_old_versions: bool = True,
    ) -> None:
        self._gateway = gateway
        self._max_versions_to_keep = max_versions_to_keep
        self._auto_archive = auto_archive_old_versions
        # Serializes version-number allocation
        self._lock = threading.Lock()

    def save_version(
        self,
        template_id: str,
        template_type: str,
        content: str,
        *,
        category: str | None = None,
        change_description: str | None = None,
        created_by: str | None = None,
        variables: dict | None = None,
    ) -> TemplateVersionRecord:
        """Append the next version of a template."""
        with self._lock:
            next_version = self._gateway.count_template_versions(template_id) + 1
            record = self._gateway.save_template_version(
                TemplateVersionRecord(
                    template_id=template_id,
                    template_type=template_type,
                    category=category,
                    version=next_version,
                    content=content,
                    variables_json=dumps(variables or {}),
                    change_description=change_description,
                    created_by=created_by,
                )
            )
        logger.info("Saved %s v%d", template_id, record.version)

        if self._auto_archive:
            self._archive_surplus_versions(template_id)
        return record

    def get_versions(self, template_id: str) -> list[TemplateVersionRecord]:
        """Active versions, highest first."""
        return self._gateway.list_template_versions(template_id)

    def get_version(self, template_id: str, version: int) -> TemplateVersionRecord | None:
        return self._gateway.get_template_version(template_id, version)

    def get_latest_version(self, template_id: str) -> TemplateVersionRecord | None:
        versions = self.get_versions(template_id)
        return versions[0] if versions else None

    def rollback(self, template_id: str, version: int) -> TemplateVersionRecord:
        """Re-publish an old version's content as a brand new version."""
        target = self.get_version(template_id, version)
        if target is None:
            raise VersionNotFoundError(template_id, version)

        record = self.save_version(
            template_id,
            target.template_type,
            target.content,
            category=target.category,
            change_description=f"Rollback to version {version}",
            variables=json.loads(target.variables_json or "{}"),
        )
        logger.info("Rolled back %s to v%d as v%d", template_id, version, record.version)
        return record

    def compare(self, template_id: str, version1: int, version2: int) -> VersionDiff:
        v1 = self.get_version(template_id, version1)
        if v1 is None:
            raise VersionNotFoundError(template_id, version1)
        v2 = self.get_version(template_id, version2)
        if v2 is None:
            raise VersionNotFoundError(template_id, version2)
        return compute_diff(template_id, v1, v2)

    def archive(self, template_id: str) -> int:
        count = self._gateway.set_template_archived(template_id, True)
        logger.info("Archived %d versions of %s", count, template_id)
        return count

    def restore(self, template_id: str) -> int:
        count = self._gateway.set_template_archived(template_id, False)
        logger.info("Restored %d versions of %s", count, template_id)
        return count

    def version_info(self, template_id: str) -> VersionInfo | None:
        versions = self._gateway.list_template_versions(template_id, include_archived=True)
        if not versions:
            return None
        return VersionInfo(
            template_id=template_id,
            current_version=max(v.version for v in versions),
            total_versions=len(versions),
            created_at=min(v.created_at for v in versions),
            last_modified=max(v.created_at for v in versions),
            is_archived=any(v.is_archived for v in versions),
        )

    def change_log(self, template_id: str, limit: int = 20) -> list[ChangeLogEntry]:
        return [
            ChangeLogEntry(v.version, v.change_description, v.created_at, v.created_by)
            for v in self.get_versions(template_id)[:limit]
        ]

    def search_versions(
        self,
        *,
        template_type: str | None = None,
        category: str | None = None,
        created_by: str | None = None,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
        limit: int = 100,
    ) -> list[TemplateVersionRecord]:
        return self._gateway.search_template_versions(
            template_type=template_type,
            category=category,
            created_by=created_by,
            from_date=from_date,
            to_date=to_date,
            limit=limit,
        )

    def clone_template(self, source_template_id: str, new_template_id: str) -> int:
        """Copy every active version of a template, oldest first, under a new id."""
        cloned = 0
        for version in reversed(self.get_versions(source_template_id)):
            self.save_version(
                new_template_id,
                version.template_type,
                version.content,
                category=version.category,
                variables=json.loads(version.variables_json or "{}"),
                change_description=f"Cloned from {source_template_id} v{version.version}",
            )
            cloned += 1
        return cloned

    def merge_versions(
        self,
        template_id: str,
        version1: int,
        version2: int,
        strategy: MergeStrategy | str = MergeStrategy.PREFER_NEWER,
    ) -> TemplateVersionRecord:
        strategy = MergeStrategy(strategy)
        v1 = self.get_version(template_id, version1)
        if v1 is None:
            raise VersionNotFoundError(template_id, version1)
        v2 = self.get_version(template_id, version2)
        if v2 is None:
            raise VersionNotFoundError(template_id, version2)

        if strategy is MergeStrategy.PREFER_NEWER:
            content = v1.content if version1 > version2 else v2.content
        elif strategy is MergeStrategy.PREFER_OLDER:
            content = v1.content if version1 < version2 else v2.content
        else:
            content = f"{v1.content}\n\n<!-- Merged from v{version2} -->\n\n{v2.content}"

        return self.save_version(
            template_id,
            v1.template_type,
            content,
            category=v1.category or v2.category,
            change_description=(
                f"Merged v{version1} and v{version2} using {strategy.value} strategy"
            ),
        )

    def version_stats(self) -> VersionStats:
        rows = self._gateway.all_template_versions()
        templates = {r.template_id for r in rows}
        week_ago = datetime.now() - timedelta(days=7)
        total = len(rows)
        return VersionStats(
            total_templates=len(templates),
            total_versions=total,
            archived_versions=sum(1 for r in rows if r.is_archived),
            avg_versions_per_template=round(total / len(templates), 1) if templates else 0,
            recent_changes=sum(1 for r in rows if r.created_at > week_ago),
        )

    def _archive_surplus_versions(self, template_id: str) -> int:
        versions = self.get_versions(template_id)
        surplus = versions[self._max_versions_to_keep:]
        for version in surplus:
            self._gateway.set_version_archived(version.id, True)
        if surplus:
            logger.debug("Auto-archived %d old versions of %s", len(surplus), template_id)
        return len(surplus)


# =============================================================================
# Diffing
# =============================================================================


def compute_diff(
    template_id: str, v1: TemplateVersionRecord, v2: TemplateVersionRecord
) -> VersionDiff:
    """Line diff of two versions aligned with difflib.

    Replaced blocks pair up line by line as modifications; any surplus on
    either side counts as added or removed.
    """
    lines1 = v1.content.split("\n")
    lines2 = v2.content.split("\n")
    diff = VersionDiff(template_id=template_id, version1=v1.version, version2=v2.version)

    matcher = difflib.SequenceMatcher(a=lines1, b=lines2, autojunk=False)
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            continue
        old = lines1[i1:i2]
        new = lines2[j1:j2]
        paired = min(len(old), len(new)) if tag == "replace" else 0

        for offset in range(paired):
            diff.modified.append(
                DiffLine(j1 + offset + 1, DiffType.MODIFIED, old[offset], new[offset])
            )
        for offset, line in enumerate(new[paired:], start=paired):
            diff.added.append(line)
            diff.modified.append(DiffLine(j1 + offset + 1, DiffType.ADDED, new_content=line))
        for offset, line in enumerate(old[paired:], start=paired):
            diff.removed.append(line)
            diff.modified.append(DiffLine(i1 + offset + 1, DiffType.REMOVED, old_content=line))

    diff.summary = _diff_summary(diff)
    return diff


def _diff_summary(diff: VersionDiff) -> str:
    parts = []
    if diff.added:
        parts.append(f"{len(diff.added)} lines added")
    if diff.removed:
        parts.append(f"{len(diff.removed)} lines removed")
    modified = sum(1 for line in diff.modified if line.type is DiffType.MODIFIED)
    if modified:
        parts.append(f"{modified} lines modified")
    return ", ".join(parts) if parts else "No changes"


# =============================================================================
# Helpers
# =============================================================================


def validate_template_content(content: str) -> ValidationResult:
    errors = []
    if not content or not content.strip():
        errors.append("Template content is empty")
    if len(content or "") > MAX_TEMPLATE_LENGTH:
        errors.append(f"Template content is too long (maximum {MAX_TEMPLATE_LENGTH:,} characters)")
    for match in _PLACEHOLDER.finditer(content or ""):
        if not _IDENTIFIER.match(match.group(1)):
            errors.append(f"Invalid variable name: {match.group(0)}")
    return ValidationResult(valid=not errors, errors=errors)


def extract_template_variables(content: str) -> list[str]:
    """Placeholder names in order of first appearance."""
    return list(dict.fromkeys(m.group(1) for m in _PLACEHOLDER.finditer(content)))


def _to_base36(number: int) -> str:
    digits = ""
    while True:
        number, remainder = divmod(number, 36)
        digits = _BASE36[remainder] + digits
        if not number:
            return digits


def generate_template_id(template_type: str, category: str, index: int | None = None) -> str:
    timestamp = _to_base36(int(time.time() * 1000))
    random_part = "".join(secrets.choice(_BASE36) for _ in range(4))
    suffix = f"_{index}" if index is not None else ""
    return f"{template_type}_{category}_{timestamp}_{random_part}{suffix}"
