"""Runtime settings read from the environment.

The CLI loads a local ``.env`` (``python-dotenv``) before calling
:meth:`Settings.from_env`; library callers may construct :class:`Settings`
directly. A missing API key is not an error here: it only becomes a
:class:`ConfigurationError` when the model path is first needed.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TIMEOUT_S = 30.0
DEFAULT_CONCURRENCY = 4
MAX_CONCURRENCY = 32
DEFAULT_LEARNING_QUEUE_PATH = "learning_queue.json"


class ConfigurationError(RuntimeError):
    """Required configuration (e.g. the provider credential) is missing or unusable."""


def _env_str(name: str) -> str | None:
    val = os.getenv(name)
    if val is None or not val.strip():
        return None
    return val.strip()


def _env_float(name: str, default: float) -> float:
    raw = _env_str(name)
    try:
        val = float(raw) if raw is not None else default
    except ValueError:
        return default
    return val if val > 0 else default


def _env_int(name: str, default: int) -> int:
    raw = _env_str(name)
    try:
        val = int(raw) if raw is not None else default
    except ValueError:
        return default
    return val if val > 0 else default


@dataclass(frozen=True, slots=True)
class Settings:
    openai_api_key: str | None = None
    model: str = DEFAULT_MODEL
    request_timeout_s: float = DEFAULT_TIMEOUT_S
    concurrency: int = DEFAULT_CONCURRENCY
    rules_path: Path | None = None
    learning_queue_path: Path = Path(DEFAULT_LEARNING_QUEUE_PATH)
    database_url: str | None = None

    @classmethod
    def from_env(cls) -> Settings:
        """Build settings from environment variables.

        Recognized: ``OPENAI_API_KEY``, ``SPEND_CATEGORIZER_MODEL``,
        ``SPEND_CATEGORIZER_TIMEOUT_S``, ``SPEND_CATEGORIZER_CONCURRENCY``
        (capped at 32), ``SPEND_CATEGORIZER_RULES_PATH``,
        ``SPEND_CATEGORIZER_LEARNING_QUEUE_PATH`` and ``DATABASE_URL``.
        Unparseable or non-positive numbers fall back to the defaults.
        """

        rules_path = _env_str("SPEND_CATEGORIZER_RULES_PATH")
        return cls(
            openai_api_key=_env_str("OPENAI_API_KEY"),
            model=_env_str("SPEND_CATEGORIZER_MODEL") or DEFAULT_MODEL,
            request_timeout_s=_env_float("SPEND_CATEGORIZER_TIMEOUT_S", DEFAULT_TIMEOUT_S),
            concurrency=min(
                _env_int("SPEND_CATEGORIZER_CONCURRENCY", DEFAULT_CONCURRENCY), MAX_CONCURRENCY
            ),
            rules_path=Path(rules_path) if rules_path else None,
            learning_queue_path=Path(
                _env_str("SPEND_CATEGORIZER_LEARNING_QUEUE_PATH") or DEFAULT_LEARNING_QUEUE_PATH
            ),
            database_url=_env_str("DATABASE_URL"),
        )


__all__ = ["ConfigurationError", "Settings"]
