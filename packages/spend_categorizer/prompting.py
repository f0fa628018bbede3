"""Prompt construction for the model fallback.

Builds:
- The fixed system instruction naming both closed enumerations and the
  strict JSON reply shape.
- Two worked examples (few-shot turns).
- The per-transaction payload ``{desc, amount, currency, mcc}`` with a fixed
  key order, where ``desc`` is the normalized merchant+description text.
- The ``response_format`` constraint for a JSON object reply.
"""

from __future__ import annotations

import json
from decimal import Decimal
from typing import Any

from .categories import ALLOWED_CATEGORIES, ALLOWED_TX_TYPES
from .models import Transaction
from .normalizer import transaction_text

PAYLOAD_FIELD_ORDER: tuple[str, ...] = ("desc", "amount", "currency", "mcc")

RESPONSE_FORMAT: dict[str, str] = {"type": "json_object"}


def build_system_instructions() -> str:
    return (
        "You categorize bank transactions for AU and US.\n"
        'Return strict JSON: {"category":"<one>","type":"<one>","confidence":0-1,'
        '"reason":"<short>"}.\n'
        f"Categories: {', '.join(ALLOWED_CATEGORIES)}.\n"
        f"Type: {' | '.join(ALLOWED_TX_TYPES)}.\n"
        "If description implies transfer/refund/fee/atm/interest, set type accordingly. "
        "If unclear, infer from amount sign.\n"
        "Be concise. Do not invent merchants."
    )


FEW_SHOTS: tuple[dict[str, str], ...] = (
    {"role": "user", "content": '{"desc":"NETFLIX.COM AU","amount":-22.99,"currency":"AUD"}'},
    {
        "role": "assistant",
        "content": (
            '{"category":"Subscriptions","type":"debit","confidence":0.98,'
            '"reason":"Known subscription"}'
        ),
    },
    {"role": "user", "content": '{"desc":"PAYROLL ACME CORP","amount":2500,"currency":"USD"}'},
    {
        "role": "assistant",
        "content": '{"category":"Income","type":"credit","confidence":0.99,"reason":"Payroll"}',
    },
)


def _json_number(d: Decimal) -> int | float:
    # Integral amounts render as 2500, not 2500.0, matching the worked examples.
    return int(d) if d == d.to_integral_value() else float(d)


def build_payload(tx: Transaction) -> dict[str, Any]:
    """Return the transaction payload in :data:`PAYLOAD_FIELD_ORDER`."""

    return {
        "desc": transaction_text(tx),
        "amount": _json_number(tx.amount),
        "currency": tx.currency,
        "mcc": tx.mcc or None,
    }


def serialize_payload(tx: Transaction) -> str:
    return json.dumps(build_payload(tx), ensure_ascii=False, separators=(",", ":"))


def build_messages(tx: Transaction) -> list[dict[str, str]]:
    """System instruction, worked examples, then the transaction payload."""

    return [
        {"role": "system", "content": build_system_instructions()},
        *(dict(m) for m in FEW_SHOTS),
        {"role": "user", "content": serialize_payload(tx)},
    ]


__all__ = [
    "FEW_SHOTS",
    "PAYLOAD_FIELD_ORDER",
    "RESPONSE_FORMAT",
    "build_messages",
    "build_payload",
    "build_system_instructions",
    "serialize_payload",
]
