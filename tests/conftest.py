"""Pytest configuration for test isolation.

Settings are read from the environment, and the CLI additionally loads a
``.env`` from the working directory. To keep tests hermetic every test runs
in its own temporary working directory with the package's environment
variables cleared and a dummy API key set. Tests that need a missing key
delete it explicitly.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from spend_categorizer.config import Settings

_ENV_VARS = (
    "OPENAI_API_KEY",
    "DATABASE_URL",
    "SPEND_CATEGORIZER_MODEL",
    "SPEND_CATEGORIZER_TIMEOUT_S",
    "SPEND_CATEGORIZER_CONCURRENCY",
    "SPEND_CATEGORIZER_RULES_PATH",
    "SPEND_CATEGORIZER_LEARNING_QUEUE_PATH",
    "SPEND_CATEGORIZER_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _isolate_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def settings() -> Settings:
    return Settings(openai_api_key="test-key", model="test-model", concurrency=4)
