"""Text normalization and region inference.

:func:`normalize_text` is the single canonical form used both for rule
matching and for cache keys; the two must never diverge, so callers go through
:func:`transaction_text` rather than concatenating fields themselves.
"""

from __future__ import annotations

import re

from .categories import Region
from .models import Transaction

# Account/reference numbers. Single digits survive ("7-eleven" -> "7 eleven").
_DIGIT_RUN_RE = re.compile(r"[0-9]{2,}")
# Anything that is not a letter, digit or whitespace. ``\w`` also admits "_".
_NON_ALNUM_RE = re.compile(r"[^\w\s]|_")
_WS_RE = re.compile(r"\s+")


def normalize_text(s: str | None) -> str:
    """Return the canonical matching form of ``s``.

    Steps: lower-case, replace runs of two or more digits with a space,
    replace every non letter/digit/whitespace character with a space, collapse
    whitespace, trim. Total over all strings; ``None`` and ``""`` yield ``""``.
    The result is a fixed point: ``normalize_text(normalize_text(s)) ==
    normalize_text(s)``.
    """

    if not s:
        return ""
    out = s.lower()
    out = _DIGIT_RUN_RE.sub(" ", out)
    out = _NON_ALNUM_RE.sub(" ", out)
    out = _WS_RE.sub(" ", out)
    return out.strip()


def transaction_text(tx: Transaction) -> str:
    """Normalized ``merchant_name + " " + description`` for a transaction."""

    return normalize_text(f"{tx.merchant_name or ''} {tx.description or ''}")


def region_from(currency: str | None, region_hint: Region | str | None = None) -> Region:
    """Infer the rule region: explicit hint, else AUD -> AU, USD -> US, else ALL."""

    if region_hint:
        return Region(region_hint)
    if currency == "AUD":
        return Region.AU
    if currency == "USD":
        return Region.US
    return Region.ALL


def transaction_region(tx: Transaction) -> Region:
    return region_from(tx.currency, tx.region_hint)


__all__ = ["normalize_text", "region_from", "transaction_region", "transaction_text"]
