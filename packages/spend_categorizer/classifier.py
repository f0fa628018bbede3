"""Model fallback for transactions no rule recognizes.

The asymmetry between the two failure modes is intentional:

- The provider call failing (network error, non-2xx status, timeout, missing
  credentials) means no verdict is possible. The exception propagates
  unchanged to the caller.
- A successful call with an unusable body (not JSON, not an object, values
  outside the closed enumerations) still yields a verdict: each unusable field
  is treated as absent and replaced by its default.
"""

from __future__ import annotations

import json
import threading
import time
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError

from . import prompting
from .categories import DEFAULT_CATEGORY, Source
from .config import Settings
from .engine import tx_type_from
from .logging_setup import get_logger
from .models import AiVerdict, Categorization, Transaction
from .openai_client import complete_chat, create_client

DEFAULT_AI_CONFIDENCE: float = 0.6

_logger = get_logger("spend_categorizer.classifier")


def parse_verdict(text: str | None) -> AiVerdict:
    """Decode the model reply, soft-failing to an all-absent verdict.

    Never raises: invalid JSON or a non-object top level yields
    ``AiVerdict()`` and individual out-of-domain fields become ``None``.
    """

    if not text:
        return AiVerdict()
    try:
        decoded = json.loads(text)
    except (json.JSONDecodeError, RecursionError):
        _logger.warning("classify:parse_fallback reason=invalid_json length=%d", len(text))
        return AiVerdict()
    if not isinstance(decoded, dict):
        _logger.warning(
            "classify:parse_fallback reason=not_object kind=%s", type(decoded).__name__
        )
        return AiVerdict()
    try:
        return AiVerdict.model_validate(decoded)
    except ValidationError:  # pragma: no cover - every field validator is lenient
        _logger.warning("classify:parse_fallback reason=validation", exc_info=True)
        return AiVerdict()


def build_categorization(tx: Transaction, verdict: AiVerdict) -> Categorization:
    """Apply defaults for absent fields: ``Misc``, amount-sign type, 0.6."""

    return Categorization(
        transaction_id=tx.id,
        category=verdict.category or DEFAULT_CATEGORY,
        type=verdict.type or tx_type_from(tx.amount),
        source=Source.AI,
        confidence=(
            verdict.confidence if verdict.confidence is not None else DEFAULT_AI_CONFIDENCE
        ),
        rationale=verdict.reason,
    )


class AiClassifier:
    """Classify one transaction with a single chat-completion call.

    Parameters
    ----------
    settings:
        Model name, timeout and credential. Defaults to
        :meth:`Settings.from_env`.
    client_factory:
        Callable returning an object with the ``chat.completions.create``
        shape. Defaults to :func:`~spend_categorizer.openai_client.create_client`,
        which raises :class:`~spend_categorizer.config.ConfigurationError` on a
        missing key. The client is created lazily on the first call, so a
        process whose transactions are all resolved by rules never needs a key.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        client_factory: Callable[[Settings], Any] | None = None,
    ) -> None:
        self._settings = settings or Settings.from_env()
        self._client_factory = client_factory or create_client
        self._client: Any | None = None
        self._client_lock = threading.Lock()

    @property
    def model(self) -> str:
        return self._settings.model

    def _get_client(self) -> Any:
        with self._client_lock:
            if self._client is None:
                self._client = self._client_factory(self._settings)
            return self._client

    def classify(self, tx: Transaction) -> Categorization:
        messages = prompting.build_messages(tx)
        client = self._get_client()

        t0 = time.perf_counter()
        try:
            text = complete_chat(client, model=self._settings.model, messages=messages)
        except Exception as e:
            dt_ms = (time.perf_counter() - t0) * 1000.0
            _logger.error(
                "classify:ai_failed id=%s latency_ms=%.2f error=%s",
                tx.id,
                dt_ms,
                e.__class__.__name__,
            )
            raise
        dt_ms = (time.perf_counter() - t0) * 1000.0

        result = build_categorization(tx, parse_verdict(text))
        _logger.info(
            "classify:ai_done id=%s category=%s type=%s confidence=%.2f latency_ms=%.2f",
            tx.id,
            result.category,
            result.type,
            result.confidence,
            dt_ms,
        )
        return result


__all__ = [
    "DEFAULT_AI_CONFIDENCE",
    "AiClassifier",
    "build_categorization",
    "parse_verdict",
]
