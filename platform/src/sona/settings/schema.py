"""Tunable generation settings and their validation rules."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from sona.validation import ValidationResult


class ArticleLength(str, Enum):
    SHORT = "short"
    MEDIUM = "medium"
    LONG = "long"
    COMPREHENSIVE = "comprehensive"


class DiversityLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    MAXIMUM = "maximum"


class WordCountTargets(BaseModel):
    short: int = 500
    medium: int = 1000
    long: int = 2000
    comprehensive: int = 3000


class SONASettings(BaseModel):
    """Singleton configuration consumed by the generation pipeline."""

    # Article
    article_length: ArticleLength = ArticleLength.MEDIUM
    word_count_targets: WordCountTargets = Field(default_factory=WordCountTargets)

    # SEO
    keyword_density: float = 3  # percent, 1-5
    min_keyword_occurrences: int = 3
    max_keyword_occurrences: int = 5

    # Quality
    min_quality_score: float = 70  # 0-100
    max_retries: int = 3
    diversity_level: DiversityLevel = DiversityLevel.HIGH

    # Templates
    template_rotation: bool = True
    excluded_templates: list[str] = Field(default_factory=list)
    preferred_templates: list[str] = Field(default_factory=list)

    # Feature toggles
    enable_synonym_replacement: bool = True
    enable_sentence_variation: bool = True
    enable_faq_generation: bool = True
    enable_tips_generation: bool = True
    enable_ctas: bool = True


DEFAULT_SETTINGS = SONASettings()

SETTING_FIELDS = tuple(SONASettings.model_fields)

# Stable feature names -> toggle field
FEATURE_TOGGLES = {
    "synonym_replacement": "enable_synonym_replacement",
    "sentence_variation": "enable_sentence_variation",
    "faq_generation": "enable_faq_generation",
    "tips_generation": "enable_tips_generation",
    "ctas": "enable_ctas",
}

_NUMERIC_RANGES = {
    "keyword_density": (1, 5),
    "min_keyword_occurrences": (1, 10),
    "max_keyword_occurrences": (1, 20),
    "min_quality_score": (0, 100),
    "max_retries": (1, 10),
}

_WORD_COUNT_RANGES = {
    "short": (100, 1000),
    "medium": (500, 2000),
    "long": (1000, 5000),
    "comprehensive": (2000, 10000),
}

_INTEGER_FIELDS = {"min_keyword_occurrences", "max_keyword_occurrences", "max_retries"}
_BOOLEAN_FIELDS = {"template_rotation", *FEATURE_TOGGLES.values()}
_LIST_FIELDS = {"excluded_templates", "preferred_templates"}


def plain_value(value: Any) -> Any:
    """Reduce enums and models to their JSON form so comparison and storage agree."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, Enum):
        return value.value
    return value


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


def validate_field(name: str, value: Any) -> ValidationResult:
    """Check one setting against its own rule; no cross-field checks here."""
    errors: list[str] = []

    if name == "article_length":
        allowed = _enum_values(ArticleLength)
        if getattr(value, "value", value) not in allowed:
            errors.append(f"article_length must be one of: {', '.join(allowed)}")

    elif name == "diversity_level":
        allowed = _enum_values(DiversityLevel)
        if getattr(value, "value", value) not in allowed:
            errors.append(f"diversity_level must be one of: {', '.join(allowed)}")

    elif name == "word_count_targets":
        if isinstance(value, WordCountTargets):
            value = value.model_dump()
        if not isinstance(value, dict):
            errors.append("word_count_targets must be an object")
        else:
            for length, (low, high) in _WORD_COUNT_RANGES.items():
                target = value.get(length)
                if not _is_number(target) or not low <= target <= high or target != int(target):
                    errors.append(f"word_count_targets.{length} must be between {low} and {high}")
            for unknown in sorted(set(value) - set(_WORD_COUNT_RANGES)):
                errors.append(f"word_count_targets.{unknown} is not a known length")

    elif name in _NUMERIC_RANGES:
        low, high = _NUMERIC_RANGES[name]
        if not _is_number(value) or not low <= value <= high:
            errors.append(f"{name} must be between {low} and {high}")
        elif name in _INTEGER_FIELDS and value != int(value):
            errors.append(f"{name} must be a whole number")

    elif name in _BOOLEAN_FIELDS:
        if not isinstance(value, bool):
            errors.append(f"{name} must be a boolean")

    elif name in _LIST_FIELDS:
        if not isinstance(value, list):
            errors.append(f"{name} must be an array")
        elif not all(isinstance(item, str) for item in value):
            errors.append(f"{name} must contain only strings")

    else:
        errors.append(f"Unknown setting: {name}")

    return ValidationResult(valid=not errors, errors=errors)


def validate_settings(partial: dict[str, Any]) -> ValidationResult:
    """Validate every present field, then the cross-field rules. Collects all errors."""
    errors: list[str] = []
    for name, value in partial.items():
        errors.extend(validate_field(name, value).errors)

    low = partial.get("min_keyword_occurrences")
    high = partial.get("max_keyword_occurrences")
    if _is_number(low) and _is_number(high) and low > high:
        errors.append("min_keyword_occurrences cannot be greater than max_keyword_occurrences")

    return ValidationResult(valid=not errors, errors=errors)
