"""Verdict cache and learning queue.

- :class:`VerdictCache`: in-memory memo of model verdicts keyed by
  ``currency + "|" + normalized merchant/description text``. Written only by
  the model path after a successful call; read before every model call. No
  eviction: it grows with the number of distinct keys seen.
- :class:`LearningQueue`: insertion-ordered set of keys that were resolved by
  the model, kept for offline promotion into static rules.

Both are owned by a :class:`~spend_categorizer.service.CategorizationService`
instance and guarded by their own lock, so they may be shared across worker
threads.

On-disk helpers (all writes go to ``.tmp`` and are then ``os.replace``-d):

- :meth:`VerdictCache.save` / :meth:`VerdictCache.load`: optional snapshot used
  by the CLI to warm the cache across runs.
- :func:`export_learning_queue`: ``{"keys": [...]}`` dump on demand.
"""

from __future__ import annotations

import contextlib
import json
import os
import threading
from collections.abc import Iterator
from pathlib import Path

from pydantic import ValidationError

from .logging_setup import get_logger
from .models import (
    CachedVerdict,
    CacheSnapshotEntry,
    CacheSnapshotFile,
    LearningQueueFile,
    Transaction,
)
from .normalizer import transaction_text

# Bump only when the on-disk snapshot shape changes.
SCHEMA_VERSION: int = 1

_logger = get_logger("spend_categorizer.cache")


def cache_key(tx: Transaction) -> str:
    """Return ``"<currency>|<normalized text>"`` for ``tx``."""

    return f"{tx.currency}|{transaction_text(tx)}"


def _write_atomic(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    try:
        tmp.write_text(text, encoding="utf-8")
        os.replace(tmp, path)
    except Exception:
        with contextlib.suppress(FileNotFoundError):
            tmp.unlink()
        raise


class VerdictCache:
    def __init__(self) -> None:
        self._entries: dict[str, CachedVerdict] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> CachedVerdict | None:
        with self._lock:
            return self._entries.get(key)

    def put(self, key: str, verdict: CachedVerdict) -> None:
        """Store ``verdict`` under ``key`` (last write wins)."""

        with self._lock:
            self._entries[key] = verdict

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def items(self) -> list[tuple[str, CachedVerdict]]:
        with self._lock:
            return list(self._entries.items())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def save(self, path: str | Path) -> None:
        """Write a JSON snapshot of every entry to ``path``."""

        snapshot = CacheSnapshotFile(
            schema_version=SCHEMA_VERSION,
            entries=[
                CacheSnapshotEntry(
                    key=k, category=v.category, type=v.type, confidence=v.confidence
                )
                for k, v in self.items()
            ],
        )
        p = Path(path)
        _write_atomic(
            p,
            json.dumps(
                snapshot.model_dump(mode="json"), ensure_ascii=False, separators=(",", ":")
            ),
        )
        _logger.info("cache:saved path=%s entries=%d", p, len(snapshot.entries))

    def load(self, path: str | Path) -> int:
        """Merge entries from a snapshot at ``path``; return how many were loaded.

        A missing, unreadable, malformed or version-mismatched file loads
        nothing: the cache is an optimization, so a bad snapshot only costs
        extra model calls.
        """

        p = Path(path)
        if not p.exists():
            return 0
        try:
            parsed = CacheSnapshotFile.model_validate_json(p.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, ValidationError):
            _logger.debug("cache:load_failed; ignoring snapshot path=%s", p, exc_info=True)
            return 0
        if parsed.schema_version != SCHEMA_VERSION:
            _logger.debug(
                "cache:load_skipped path=%s schema_version=%d expected=%d",
                p,
                parsed.schema_version,
                SCHEMA_VERSION,
            )
            return 0

        with self._lock:
            for e in parsed.entries:
                self._entries[e.key] = CachedVerdict(
                    category=e.category, type=e.type, confidence=e.confidence
                )
        _logger.info("cache:loaded path=%s entries=%d", p, len(parsed.entries))
        return len(parsed.entries)


class LearningQueue:
    """Deduplicated, first-seen-ordered record of model-resolved cache keys."""

    def __init__(self) -> None:
        # dict keys double as an insertion-ordered set
        self._keys: dict[str, None] = {}
        self._lock = threading.Lock()

    def add(self, key: str) -> bool:
        """Add ``key``; return ``False`` when it was already queued."""

        with self._lock:
            if key in self._keys:
                return False
            self._keys[key] = None
            return True

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._keys)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._keys

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())


def export_learning_queue(queue: LearningQueue, path: str | Path) -> bool:
    """Dump the queue as ``{"keys": [...]}`` to ``path``.

    Returns ``False`` without touching the filesystem when the queue is empty,
    so an earlier export is never clobbered by an empty run.
    """

    keys = queue.keys()
    p = Path(path)
    if not keys:
        _logger.info("learning_queue:export_skipped reason=empty path=%s", p)
        return False
    payload = LearningQueueFile(keys=keys)
    _write_atomic(p, json.dumps(payload.model_dump(mode="json"), ensure_ascii=False, indent=2))
    _logger.info("learning_queue:exported path=%s keys=%d", p, len(keys))
    return True


def read_learning_queue(path: str | Path) -> list[str]:
    """Read keys from a file written by :func:`export_learning_queue`.

    Raises ``ValueError`` when the file does not match the expected shape.
    """

    p = Path(path)
    try:
        parsed = LearningQueueFile.model_validate_json(p.read_text(encoding="utf-8"))
    except ValidationError as exc:
        raise ValueError(f"Invalid learning queue file {p}: {exc}") from exc
    return parsed.keys


__all__ = [
    "SCHEMA_VERSION",
    "LearningQueue",
    "VerdictCache",
    "cache_key",
    "export_learning_queue",
    "read_learning_queue",
]
