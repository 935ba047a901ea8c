"""Programmatic Alembic migrations for the queue database."""

from __future__ import annotations

import threading
from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory

from photo_jobs.storage.common import build_sqlite_engine

_REPO_ROOT = Path(__file__).resolve().parents[3]
_UPGRADE_LOCK = threading.Lock()


def migrations_config(db_path: Path) -> Config:
    """Alembic config bound to ``db_path`` and the repository's migration scripts."""

    config = Config(str(_REPO_ROOT / "alembic.ini"))
    config.set_main_option("script_location", str(_REPO_ROOT / "alembic"))
    config.set_main_option("sqlalchemy.url", f"sqlite:///{db_path}")
    return config


def upgrade_head(db_path: Path) -> None:
    """Apply Alembic migrations up to head for the given SQLite database."""

    with _UPGRADE_LOCK:
        command.upgrade(migrations_config(db_path), "head")


def head_revision(db_path: Path) -> str | None:
    return ScriptDirectory.from_config(migrations_config(db_path)).get_current_head()


def current_revision(db_path: Path) -> str | None:
    """Revision stamped in the database, ``None`` before the first upgrade."""

    engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=5000)
    try:
        with engine.connect() as connection:
            return MigrationContext.configure(connection).get_current_revision()
    finally:
        engine.dispose()
