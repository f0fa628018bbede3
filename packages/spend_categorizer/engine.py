"""Deterministic rule pass.

``categorize_by_rules`` never fails and never touches the network: it either
returns a rule verdict or ``None`` to signal the orchestrator to try the cache
and then the model.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal

from .categories import Source, TxType
from .models import Categorization, Transaction
from .normalizer import transaction_region, transaction_text
from .rules import RULES, Rule, match_rule


def tx_type_from(amount: Decimal) -> TxType:
    """Amount-sign heuristic: ``credit`` if positive, ``debit`` if negative, else ``unknown``."""

    if amount > 0:
        return TxType.CREDIT
    if amount < 0:
        return TxType.DEBIT
    return TxType.UNKNOWN


def categorize_by_rules(tx: Transaction, rules: Sequence[Rule] = RULES) -> Categorization | None:
    hit = match_rule(transaction_text(tx), transaction_region(tx), rules)
    if hit is None:
        return None
    return Categorization(
        transaction_id=tx.id,
        category=hit.rule.category,
        type=hit.rule.type or tx_type_from(tx.amount),
        source=Source.RULE,
        confidence=hit.confidence,
        rule_id=hit.rule.id,
    )


__all__ = ["categorize_by_rules", "tx_type_from"]
