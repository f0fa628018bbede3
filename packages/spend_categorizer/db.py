"""Database sink for the learning queue (SQLAlchemy).

Usage
-----
from spend_categorizer.db import export_learning_queue_to_db

inserted = export_learning_queue_to_db(service.learning_queue, service.cache,
                                       database_url="sqlite+pysqlite:///queue.db")

Engines are cached per URL; ``session_scope`` commits on success and rolls
back on error. The ``learning_queue_keys`` table is created on first export
when missing.
"""

from __future__ import annotations

import os
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime

from sqlalchemy import DateTime, Float, String, create_engine, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from .cache import LearningQueue, VerdictCache
from .logging_setup import get_logger

_logger = get_logger("spend_categorizer.db")

_ENGINES: dict[str, Engine] = {}
_SESSION_MAKERS: dict[str, sessionmaker[Session]] = {}
_ENGINES_LOCK = threading.Lock()


class Base(DeclarativeBase):
    pass


class LearningQueueKey(Base):
    """One model-resolved cache key awaiting promotion into a static rule."""

    __tablename__ = "learning_queue_keys"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    normalized_text: Mapped[str] = mapped_column(String, nullable=False)
    # Verdict at export time, for reviewers; absent when the cache was cleared.
    category: Mapped[str | None] = mapped_column(String, nullable=True)
    tx_type: Mapped[str | None] = mapped_column(String, nullable=True)
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    first_exported_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


def _database_url(override: str | None = None) -> str:
    url = override or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is not set; cannot initialize database client")
    return url


def get_engine(*, database_url: str | None = None) -> Engine:
    """Return the shared engine for the URL, creating it on first use."""

    url = _database_url(database_url)
    with _ENGINES_LOCK:
        engine = _ENGINES.get(url)
        if engine is None:
            engine = create_engine(url, pool_pre_ping=True)
            _ENGINES[url] = engine
            _SESSION_MAKERS[url] = sessionmaker(
                bind=engine, expire_on_commit=False, class_=Session
            )
        return engine


def get_session(*, database_url: str | None = None) -> Session:
    url = _database_url(database_url)
    get_engine(database_url=url)
    return _SESSION_MAKERS[url]()


@contextmanager
def session_scope(*, database_url: str | None = None) -> Iterator[Session]:
    """Provide a transactional scope around a series of operations."""

    session = get_session(database_url=database_url)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def ensure_schema(*, database_url: str | None = None) -> None:
    Base.metadata.create_all(bind=get_engine(database_url=database_url))


def export_learning_queue_to_db(
    queue: LearningQueue,
    cache: VerdictCache,
    *,
    database_url: str | None = None,
) -> int:
    """Insert queued keys not already stored; return the number inserted.

    Existing rows are left untouched, so repeated exports are idempotent and
    the first exported verdict is preserved for review.
    """

    keys = queue.keys()
    if not keys:
        _logger.info("learning_queue:db_export_skipped reason=empty")
        return 0

    ensure_schema(database_url=database_url)
    now = datetime.now(UTC)
    inserted = 0
    with session_scope(database_url=database_url) as session:
        existing = set(
            session.scalars(select(LearningQueueKey.key).where(LearningQueueKey.key.in_(keys)))
        )
        for key in keys:
            if key in existing:
                continue
            currency, _, text = key.partition("|")
            verdict = cache.get(key)
            session.add(
                LearningQueueKey(
                    key=key,
                    currency=currency,
                    normalized_text=text,
                    category=verdict.category.value if verdict else None,
                    tx_type=verdict.type.value if verdict else None,
                    confidence=verdict.confidence if verdict else None,
                    first_exported_at=now,
                )
            )
            inserted += 1

    _logger.info(
        "learning_queue:db_exported inserted=%d already_present=%d", inserted, len(keys) - inserted
    )
    return inserted


__all__ = [
    "Base",
    "LearningQueueKey",
    "ensure_schema",
    "export_learning_queue_to_db",
    "get_engine",
    "get_session",
    "session_scope",
]
