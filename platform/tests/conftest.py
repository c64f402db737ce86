"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from sona.config import Settings
from sona.content.tracker import ContentMetadata
from sona.services import SonaServices
from sona.storage.database import dispose_engine
from sona.storage.gateway import PersistenceGateway


@pytest.fixture
def tmp_data_dir(tmp_path: Path) -> Path:
    """Create a temporary data directory structure."""
    (tmp_path / "sona").mkdir()
    return tmp_path


@pytest.fixture
def settings(tmp_data_dir: Path) -> Settings:
    """Create test settings with temporary paths."""
    return Settings(
        db_path=tmp_data_dir / "test.db",
        data_dir=tmp_data_dir / "sona",
        log_level="DEBUG",
    )


@pytest.fixture
def gateway(settings: Settings) -> Iterator[PersistenceGateway]:
    """A real gateway over a throwaway SQLite file."""
    yield PersistenceGateway.for_path(settings.db_path)
    dispose_engine(settings.db_path)


@pytest.fixture
def services(settings: Settings, gateway: PersistenceGateway) -> Iterator[SonaServices]:
    built = SonaServices.build(settings, gateway=gateway)
    yield built
    built.close()


def make_metadata(
    topic: str = "فوائد الشاي الأخضر",
    category: str = "health",
    templates: list[str] | None = None,
    quality: float = 80.0,
    words: int = 1000,
) -> ContentMetadata:
    """Helper to build generation metadata with sensible defaults."""
    return ContentMetadata(
        topic=topic,
        category=category,
        used_templates=templates if templates is not None else ["intro_a", "faq_b"],
        word_count=words,
        quality_score=quality,
    )
