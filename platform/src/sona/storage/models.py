"""SQLModel database models."""

from __future__ import annotations

from datetime import datetime

from sqlmodel import Field, SQLModel


class ContentHashRecord(SQLModel, table=True):
    """Fingerprint of one generated article."""

    id: int | None = Field(default=None, primary_key=True)
    content_hash: str = Field(index=True, unique=True)
    topic: str
    category: str
    word_count: int = 0
    quality_score: float | None = None
    templates_used_json: str = "[]"
    keywords_json: str = "[]"
    created_at: datetime = Field(default_factory=datetime.now)


class GenerationLogRecord(SQLModel, table=True):
    """One generation attempt, successful or not."""

    id: int | None = Field(default=None, primary_key=True)
    timestamp: datetime = Field(default_factory=datetime.now, index=True)
    topic: str
    category: str
    duration: float = 0.0  # milliseconds
    quality_score: float | None = None
    templates_used_json: str = "[]"
    word_count: int = 0
    success: bool = True
    retries: int = 0
    error_message: str | None = None


class GenerationStatRecord(SQLModel, table=True):
    """Daily rollup of generation activity."""

    id: int | None = Field(default=None, primary_key=True)
    date: str = Field(index=True, unique=True)  # ISO day, YYYY-MM-DD
    total_generations: int = 0
    successful_generations: int = 0
    failed_generations: int = 0
    avg_quality_score: float | None = None
    avg_generation_time: float | None = None
    category_breakdown_json: str = "{}"
    template_usage_json: str = "{}"


class TemplateVersionRecord(SQLModel, table=True):
    """Immutable snapshot of a template. Only is_archived ever changes."""

    id: int | None = Field(default=None, primary_key=True)
    template_id: str = Field(index=True)
    template_type: str
    category: str | None = None
    version: int
    content: str
    variables_json: str = "{}"
    change_description: str | None = None
    created_by: str | None = None
    created_at: datetime = Field(default_factory=datetime.now)
    is_archived: bool = False


class SettingRecord(SQLModel, table=True):
    """One persisted settings key with its JSON-encoded value."""

    id: int | None = Field(default=None, primary_key=True)
    key: str = Field(index=True, unique=True)
    value_json: str = "null"
    updated_at: datetime = Field(default_factory=datetime.now)
    updated_by: str | None = None


class SandboxSessionRecord(SQLModel, table=True):
    """Persisted mirror of a sandbox session."""

    id: int | None = Field(default=None, primary_key=True)
    session_id: str = Field(index=True, unique=True)
    settings_json: str = "{}"
    generated_content_json: str = "[]"
    created_at: datetime = Field(default_factory=datetime.now)
    expires_at: datetime | None = None
    is_active: bool = True
