"""Structured validation outcome shared by settings and template checks."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class ValidationResult:
    """Validation failures are reported, never raised."""

    valid: bool
    errors: list[str] = field(default_factory=list)
