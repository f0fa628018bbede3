"""Thin seam over the OpenAI Chat Completions API.

One non-streaming ``chat.completions.create`` call per request, with
deterministic sampling (``temperature=0``) and a JSON-object response format.
The SDK's own retries are disabled: a failed call surfaces to the caller
unchanged and is never retried by the engine. Every call is bounded by the
configured timeout; a timeout is an ordinary call failure.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from openai import OpenAI

from .config import ConfigurationError, Settings
from .prompting import RESPONSE_FORMAT


def create_client(settings: Settings) -> OpenAI:
    """Return an SDK client for ``settings``.

    Raises :class:`ConfigurationError` when no API key is configured.
    """

    if not settings.openai_api_key:
        raise ConfigurationError("OPENAI_API_KEY environment variable is required for OpenAI access")
    return OpenAI(
        api_key=settings.openai_api_key,
        timeout=settings.request_timeout_s,
        max_retries=0,
    )


def complete_chat(client: Any, *, model: str, messages: Sequence[dict[str, str]]) -> str:
    """Execute one chat completion and return the reply text (``""`` when empty)."""

    resp = client.chat.completions.create(
        model=model,
        messages=list(messages),
        temperature=0,
        response_format=RESPONSE_FORMAT,
    )
    choices = getattr(resp, "choices", None) or []
    if not choices:
        return ""
    message = getattr(choices[0], "message", None)
    content = getattr(message, "content", None)
    return content if isinstance(content, str) else ""


__all__ = ["complete_chat", "create_client"]
