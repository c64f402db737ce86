"""Persistence gateway: every row-store access the SONA components make.

Components never touch SQL directly; they call the methods below. Errors
raised by SQLAlchemy propagate unchanged to the caller.
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any

from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlmodel import Session, col, select

from sona.storage.database import get_engine
from sona.storage.models import (
    ContentHashRecord,
    GenerationLogRecord,
    GenerationStatRecord,
    SandboxSessionRecord,
    SettingRecord,
    TemplateVersionRecord,
)


def dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


class PersistenceGateway:
    """CRUD over generation logs/stats, hashes, template versions, settings and sandbox rows."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    @classmethod
    def for_path(cls, db_path: Path) -> PersistenceGateway:
        return cls(get_engine(db_path))

    def _session(self) -> Session:
        # Records stay readable after commit and close
        return Session(self._engine, expire_on_commit=False)

    # ------------------------------------------------------------------
    # Generation stats and logs
    # ------------------------------------------------------------------

    def total_generations(self) -> int:
        with self._session() as session:
            total = session.exec(
                select(func.coalesce(func.sum(GenerationStatRecord.total_generations), 0))
            ).one()
        return int(total)

    def generation_stats(self, start_date: str, end_date: str) -> list[GenerationStatRecord]:
        """Daily rows with start_date <= date <= end_date, newest first."""
        with self._session() as session:
            return list(
                session.exec(
                    select(GenerationStatRecord)
                    .where(GenerationStatRecord.date >= start_date)
                    .where(GenerationStatRecord.date <= end_date)
                    .order_by(col(GenerationStatRecord.date).desc())
                ).all()
            )

    def stat_for_day(self, day: str) -> GenerationStatRecord | None:
        with self._session() as session:
            return session.exec(
                select(GenerationStatRecord).where(GenerationStatRecord.date == day)
            ).first()

    def save_stat(self, stat: GenerationStatRecord) -> GenerationStatRecord:
        with self._session() as session:
            stat = session.merge(stat)
            session.commit()
            session.refresh(stat)
            return stat

    def log_generation(
        self,
        topic: str,
        category: str,
        duration: float,
        quality_score: float | None,
        templates_used: list[str],
        word_count: int,
        success: bool,
        retries: int = 0,
        error_message: str | None = None,
    ) -> GenerationLogRecord:
        record = GenerationLogRecord(
            topic=topic,
            category=category,
            duration=duration,
            quality_score=quality_score,
            templates_used_json=dumps(templates_used),
            word_count=word_count,
            success=success,
            retries=retries,
            error_message=error_message,
        )
        with self._session() as session:
            session.add(record)
            session.commit()
            session.refresh(record)
        return record

    def generation_logs(self, limit: int = 100, offset: int = 0) -> list[GenerationLogRecord]:
        with self._session() as session:
            return list(
                session.exec(
                    select(GenerationLogRecord)
                    .order_by(col(GenerationLogRecord.timestamp).desc(), col(GenerationLogRecord.id).desc())
                    .offset(offset)
                    .limit(limit)
                ).all()
            )

    def error_logs(self, limit: int = 50) -> list[GenerationLogRecord]:
        with self._session() as session:
            return list(
                session.exec(
                    select(GenerationLogRecord)
                    .where(GenerationLogRecord.success == False)  # noqa: E712
                    .order_by(col(GenerationLogRecord.timestamp).desc(), col(GenerationLogRecord.id).desc())
                    .limit(limit)
                ).all()
            )

    # ------------------------------------------------------------------
    # Content hashes
    # ------------------------------------------------------------------

    def content_hash_exists(self, content_hash: str) -> bool:
        with self._session() as session:
            row = session.exec(
                select(ContentHashRecord.id).where(ContentHashRecord.content_hash == content_hash)
            ).first()
        return row is not None

    def save_content_hash(
        self,
        content_hash: str,
        topic: str,
        category: str,
        word_count: int,
        quality_score: float | None,
        templates_used: list[str],
        keywords: list[str] | None = None,
    ) -> ContentHashRecord:
        record = ContentHashRecord(
            content_hash=content_hash,
            topic=topic,
            category=category,
            word_count=word_count,
            quality_score=quality_score,
            templates_used_json=dumps(templates_used),
            keywords_json=dumps(keywords or []),
        )
        with self._session() as session:
            session.add(record)
            session.commit()
            session.refresh(record)
        return record

    def recent_content_hashes(self, limit: int = 50) -> list[ContentHashRecord]:
        with self._session() as session:
            return list(
                session.exec(
                    select(ContentHashRecord)
                    .order_by(col(ContentHashRecord.created_at).desc(), col(ContentHashRecord.id).desc())
                    .limit(limit)
                ).all()
            )

    def content_stats(self) -> dict:
        """Aggregate view of stored hashes: totals, averages and per-category counts."""
        with self._session() as session:
            total, avg_words, avg_quality = session.exec(
                select(
                    func.count(ContentHashRecord.id),
                    func.avg(ContentHashRecord.word_count),
                    func.avg(ContentHashRecord.quality_score),
                )
            ).one()
            rows = session.exec(
                select(ContentHashRecord.category, func.count(ContentHashRecord.id))
                .group_by(ContentHashRecord.category)
            ).all()
        return {
            "total_content": int(total or 0),
            "avg_word_count": float(avg_words or 0),
            "avg_quality_score": float(avg_quality or 0),
            "by_category": {category: int(count) for category, count in rows},
        }

    # ------------------------------------------------------------------
    # Template versions
    # ------------------------------------------------------------------

    def count_template_versions(self, template_id: str) -> int:
        """All versions of a template, archived ones included."""
        with self._session() as session:
            count = session.exec(
                select(func.count(TemplateVersionRecord.id)).where(
                    TemplateVersionRecord.template_id == template_id
                )
            ).one()
        return int(count)

    def save_template_version(self, record: TemplateVersionRecord) -> TemplateVersionRecord:
        with self._session() as session:
            session.add(record)
            session.commit()
            session.refresh(record)
        return record

    def list_template_versions(
        self, template_id: str, include_archived: bool = False
    ) -> list[TemplateVersionRecord]:
        """Versions of a template, highest version first."""
        statement = select(TemplateVersionRecord).where(
            TemplateVersionRecord.template_id == template_id
        )
        if not include_archived:
            statement = statement.where(TemplateVersionRecord.is_archived == False)  # noqa: E712
        with self._session() as session:
            return list(
                session.exec(statement.order_by(col(TemplateVersionRecord.version).desc())).all()
            )

    def get_template_version(self, template_id: str, version: int) -> TemplateVersionRecord | None:
        with self._session() as session:
            return session.exec(
                select(TemplateVersionRecord)
                .where(TemplateVersionRecord.template_id == template_id)
                .where(TemplateVersionRecord.version == version)
            ).first()

    def set_template_archived(self, template_id: str, archived: bool) -> int:
        """Flip the archived flag on every version of a template."""
        with self._session() as session:
            rows = session.exec(
                select(TemplateVersionRecord).where(TemplateVersionRecord.template_id == template_id)
            ).all()
            for row in rows:
                row.is_archived = archived
                session.add(row)
            session.commit()
        return len(rows)

    def set_version_archived(self, record_id: int, archived: bool) -> None:
        with self._session() as session:
            row = session.get(TemplateVersionRecord, record_id)
            if row is not None:
                row.is_archived = archived
                session.add(row)
                session.commit()

    def search_template_versions(
        self,
        *,
        template_type: str | None = None,
        category: str | None = None,
        created_by: str | None = None,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
        limit: int = 100,
    ) -> list[TemplateVersionRecord]:
        statement = select(TemplateVersionRecord).where(
            TemplateVersionRecord.is_archived == False  # noqa: E712
        )
        if template_type:
            statement = statement.where(TemplateVersionRecord.template_type == template_type)
        if category:
            statement = statement.where(TemplateVersionRecord.category == category)
        if created_by:
            statement = statement.where(TemplateVersionRecord.created_by == created_by)
        if from_date:
            statement = statement.where(TemplateVersionRecord.created_at >= from_date)
        if to_date:
            statement = statement.where(TemplateVersionRecord.created_at <= to_date)
        statement = statement.order_by(
            col(TemplateVersionRecord.created_at).desc(), col(TemplateVersionRecord.id).desc()
        ).limit(limit)
        with self._session() as session:
            return list(session.exec(statement).all())

    def all_template_versions(self) -> list[TemplateVersionRecord]:
        with self._session() as session:
            return list(session.exec(select(TemplateVersionRecord)).all())

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def all_settings(self) -> dict[str, Any]:
        with self._session() as session:
            rows = session.exec(select(SettingRecord)).all()
        return {row.key: json.loads(row.value_json) for row in rows}

    def upsert_settings(self, values: dict[str, Any], updated_by: str | None = None) -> None:
        """Write every key in one transaction."""
        with self._session() as session:
            for key, value in values.items():
                row = session.exec(select(SettingRecord).where(SettingRecord.key == key)).first()
                if row is None:
                    row = SettingRecord(key=key)
                row.value_json = dumps(value)
                row.updated_by = updated_by
                row.updated_at = datetime.now()
                session.add(row)
            session.commit()

    def replace_settings(self, values: dict[str, Any], updated_by: str | None = None) -> None:
        """Drop every stored key, then write the given ones."""
        with self._session() as session:
            for row in session.exec(select(SettingRecord)).all():
                session.delete(row)
            session.flush()
            for key, value in values.items():
                session.add(SettingRecord(key=key, value_json=dumps(value), updated_by=updated_by))
            session.commit()

    # ------------------------------------------------------------------
    # Sandbox sessions
    # ------------------------------------------------------------------

    def create_sandbox_row(
        self, session_id: str, settings: dict[str, Any], expires_at: datetime | None
    ) -> SandboxSessionRecord:
        record = SandboxSessionRecord(
            session_id=session_id,
            settings_json=dumps(settings),
            expires_at=expires_at,
        )
        with self._session() as session:
            session.add(record)
            session.commit()
            session.refresh(record)
        return record

    def get_sandbox_row(self, session_id: str) -> SandboxSessionRecord | None:
        with self._session() as session:
            return session.exec(
                select(SandboxSessionRecord)
                .where(SandboxSessionRecord.session_id == session_id)
                .where(SandboxSessionRecord.is_active == True)  # noqa: E712
            ).first()

    def update_sandbox_row(
        self,
        session_id: str,
        *,
        settings: dict[str, Any] | None = None,
        generated_content: list[dict] | None = None,
    ) -> None:
        with self._session() as session:
            row = session.exec(
                select(SandboxSessionRecord).where(SandboxSessionRecord.session_id == session_id)
            ).first()
            if row is None:
                return
            if settings is not None:
                row.settings_json = dumps(settings)
            if generated_content is not None:
                row.generated_content_json = dumps(generated_content)
            session.add(row)
            session.commit()

    def close_sandbox_row(self, session_id: str) -> None:
        with self._session() as session:
            row = session.exec(
                select(SandboxSessionRecord).where(SandboxSessionRecord.session_id == session_id)
            ).first()
            if row is not None:
                row.is_active = False
                session.add(row)
                session.commit()

    def cleanup_expired_sandbox_rows(self, now: datetime | None = None) -> int:
        """Deactivate expired active rows and return how many changed."""
        now = now or datetime.now()
        with self._session() as session:
            rows = session.exec(
                select(SandboxSessionRecord)
                .where(SandboxSessionRecord.is_active == True)  # noqa: E712
                .where(col(SandboxSessionRecord.expires_at).is_not(None))
                .where(SandboxSessionRecord.expires_at < now)
            ).all()
            for row in rows:
                row.is_active = False
                session.add(row)
            session.commit()
        return len(rows)
