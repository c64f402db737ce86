"""Settings manager: validated, persisted, observable generation settings."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from sona.exceptions import SettingsParseError
from sona.settings.schema import (
    DEFAULT_SETTINGS,
    FEATURE_TOGGLES,
    ArticleLength,
    SONASettings,
    plain_value,
    validate_field,
    validate_settings,
)
from sona.storage.gateway import PersistenceGateway
from sona.validation import ValidationResult

logger = logging.getLogger(__name__)


@dataclass
class SettingsChangeEvent:
    key: str
    old_value: Any
    new_value: Any
    timestamp: datetime = field(default_factory=datetime.now)
    changed_by: str | None = None


Listener = Callable[[SettingsChangeEvent], None]


class SettingsManager:
    """Reads, validates, persists and broadcasts SONA settings.

    Persisted rows are merged over the defaults and cached until the next
    successful mutation. Invalid updates are rejected as a whole and come
    back as a ValidationResult; nothing is written in that case.
    """

    def __init__(self, gateway: PersistenceGateway) -> None:
        self._gateway = gateway
        self._cached: SONASettings | None = None
        self._listeners: list[Listener] = []
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def get_settings(self) -> SONASettings:
        with self._lock:
            if self._cached is None:
                stored = self._gateway.all_settings()
                merged = DEFAULT_SETTINGS.model_dump(mode="json")
                for key, value in stored.items():
                    if key in merged and value is not None:
                        merged[key] = value
                self._cached = SONASettings.model_validate(merged)
            return self._cached.model_copy(deep=True)

    def get_setting(self, name: str) -> Any:
        return getattr(self.get_settings(), name)

    def get_word_count_target(self, length: ArticleLength | str | None = None) -> int:
        settings = self.get_settings()
        target = ArticleLength(length) if length else settings.article_length
        return getattr(settings.word_count_targets, target.value)

    def is_feature_enabled(self, feature: str) -> bool:
        toggle = FEATURE_TOGGLES.get(feature)
        if toggle is None:
            return False
        return bool(getattr(self.get_settings(), toggle))

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_field(self, name: str, value: Any) -> ValidationResult:
        return validate_field(name, plain_value(value))

    def validate_settings(self, partial: dict[str, Any]) -> ValidationResult:
        return validate_settings({k: plain_value(v) for k, v in partial.items()})

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def update_setting(self, name: str, value: Any, updated_by: str | None = None) -> ValidationResult:
        return self.update_settings({name: value}, updated_by)

    def update_settings(
        self, partial: dict[str, Any], updated_by: str | None = None
    ) -> ValidationResult:
        """Validate a partial update against itself and the current settings, then persist it."""
        partial = {k: plain_value(v) for k, v in partial.items()}
        with self._lock:
            result = validate_settings(partial)
            if not result.valid:
                return result

            current = self.get_settings().model_dump(mode="json")
            merged = {**current, **partial}
            cross = validate_settings(
                {
                    "min_keyword_occurrences": merged["min_keyword_occurrences"],
                    "max_keyword_occurrences": merged["max_keyword_occurrences"],
                }
            )
            if not cross.valid:
                return cross

            self._gateway.upsert_settings(partial, updated_by)
            self._cached = None

        self._notify_changes(current, partial, updated_by)
        return result

    def reset_to_defaults(self, updated_by: str | None = None) -> ValidationResult:
        return self.update_settings(DEFAULT_SETTINGS.model_dump(mode="json"), updated_by)

    # ------------------------------------------------------------------
    # Export / import
    # ------------------------------------------------------------------

    def export_json(self) -> str:
        return self.get_settings().model_dump_json(indent=2)

    def import_json(self, text: str, updated_by: str | None = None) -> ValidationResult:
        """Replace all settings with the document; absent fields fall back to defaults."""
        try:
            document = json.loads(text)
        except json.JSONDecodeError as exc:
            raise SettingsParseError(detail=str(exc)) from exc
        if not isinstance(document, dict):
            raise SettingsParseError(detail="Settings document must be a JSON object")

        full = {**DEFAULT_SETTINGS.model_dump(mode="json"), **document}
        result = validate_settings(full)
        if not result.valid:
            return result

        with self._lock:
            current = self.get_settings().model_dump(mode="json")
            self._gateway.replace_settings(full, updated_by)
            self._cached = None

        logger.info("Imported settings (%d fields from document)", len(document))
        self._notify_changes(current, full, updated_by)
        return result

    def diff(self, partial: dict[str, Any]) -> dict[str, dict[str, Any]]:
        current = self.get_settings().model_dump(mode="json")
        changes = {}
        for key, new_value in partial.items():
            new_value = plain_value(new_value)
            old_value = current.get(key)
            if old_value != new_value:
                changes[key] = {"old": old_value, "new": new_value}
        return changes

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    def on_change(self, listener: Listener) -> Callable[[], None]:
        """Subscribe to changes; the returned callable unsubscribes (safe to call twice)."""
        self._listeners.append(listener)
        subscribed = True

        def unsubscribe() -> None:
            nonlocal subscribed
            if subscribed:
                subscribed = False
                self._listeners.remove(listener)

        return unsubscribe

    def clear_cache(self) -> None:
        with self._lock:
            self._cached = None

    def _notify_changes(
        self, before: dict[str, Any], after: dict[str, Any], changed_by: str | None
    ) -> None:
        for key, new_value in after.items():
            old_value = before.get(key)
            if old_value == new_value:
                continue
            event = SettingsChangeEvent(key, old_value, new_value, changed_by=changed_by)
            for listener in list(self._listeners):
                try:
                    listener(event)
                except Exception:
                    logger.exception("Settings listener failed for %s", key)
