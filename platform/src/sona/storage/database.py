"""SQLite engine cache shared by every gateway on the same file."""

from __future__ import annotations

from pathlib import Path

from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine

# Import models so SQLModel registers them
from sona.storage import models as _models  # noqa: F401

_engines: dict[str, Engine] = {}


def get_engine(db_path: Path) -> Engine:
    """Get or create a SQLAlchemy engine for the given database path."""
    key = str(db_path)
    if key not in _engines:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(
            f"sqlite:///{db_path}",
            echo=False,
            connect_args={"check_same_thread": False},
        )
        SQLModel.metadata.create_all(engine)
        _engines[key] = engine
    return _engines[key]


def dispose_engine(db_path: Path) -> None:
    """Dispose and forget the engine for a database path."""
    engine = _engines.pop(str(db_path), None)
    if engine is not None:
        engine.dispose()
