"""Categorization orchestrator.

Every transaction goes Rule -> Cache -> Model:

1. A rule hit is returned immediately; cache and model are not consulted.
2. On a rule miss the verdict cache is checked under
   ``currency|normalized text``. A hit is returned tagged ``source=ai`` (it
   came from an earlier model call) without a rationale.
3. Only on a cache miss is the model called. A successful call populates the
   cache and the learning queue; a failed call populates neither and the
   exception reaches the caller unchanged.

The service owns its cache and learning queue, so separate instances (and
separate tests) never share state. Concurrent misses on one key share a single
in-flight model call (:class:`~spend_categorizer.fanout.SingleFlight`).
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from .cache import LearningQueue, VerdictCache, cache_key
from .categories import Source
from .classifier import AiClassifier
from .config import Settings
from .engine import categorize_by_rules
from .fanout import SingleFlight, p_map
from .logging_setup import get_logger
from .models import CachedVerdict, Categorization, Transaction
from .rules import RULES, Rule, load_rules

_logger = get_logger("spend_categorizer.service")


def _verdict_of(result: Categorization) -> CachedVerdict:
    return CachedVerdict(category=result.category, type=result.type, confidence=result.confidence)


def _from_cached(tx: Transaction, verdict: CachedVerdict) -> Categorization:
    return Categorization(
        transaction_id=tx.id,
        category=verdict.category,
        type=verdict.type,
        source=Source.AI,
        confidence=verdict.confidence,
    )


class CategorizationService:
    """Rule matcher, verdict cache and model fallback behind one object.

    Parameters
    ----------
    classifier:
        Anything with ``classify(tx) -> Categorization``; defaults to an
        :class:`~spend_categorizer.classifier.AiClassifier` built from
        ``settings``.
    rules:
        Ordered rules; first match wins. Defaults to the built-in
        :data:`~spend_categorizer.rules.RULES`.
    cache, learning_queue:
        Injected state, mainly for tests and for warming from a snapshot.
    settings:
        Defaults to :meth:`Settings.from_env`. Supplies the default batch
        concurrency.
    """

    def __init__(
        self,
        classifier: AiClassifier | None = None,
        *,
        rules: Sequence[Rule] = RULES,
        cache: VerdictCache | None = None,
        learning_queue: LearningQueue | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or Settings.from_env()
        self._classifier = classifier or AiClassifier(self._settings)
        self._rules: tuple[Rule, ...] = tuple(rules)
        self.cache = cache if cache is not None else VerdictCache()
        self.learning_queue = learning_queue if learning_queue is not None else LearningQueue()
        self._flight: SingleFlight[str, Categorization] = SingleFlight()

    @classmethod
    def from_settings(cls, settings: Settings) -> CategorizationService:
        """Build a service, placing rules from ``settings.rules_path`` ahead of the built-ins."""

        rules: tuple[Rule, ...] = RULES
        if settings.rules_path is not None:
            rules = load_rules(settings.rules_path) + RULES
        return cls(settings=settings, rules=rules)

    @property
    def rules(self) -> tuple[Rule, ...]:
        return self._rules

    # ---- single ---------------------------------------------------------

    def classify(self, tx: Transaction) -> Categorization:
        """Categorize one transaction (Rule -> Cache -> Model).

        Raises whatever the model call raises (provider/network errors,
        timeouts, :class:`~spend_categorizer.config.ConfigurationError`).
        """

        ruled = categorize_by_rules(tx, self._rules)
        if ruled is not None:
            _logger.debug("classify:rule_hit id=%s rule=%s", tx.id, ruled.rule_id)
            return ruled
        return self._classify_miss(tx, cache_key(tx))

    def _classify_miss(self, tx: Transaction, key: str) -> Categorization:
        hit = self.cache.get(key)
        if hit is not None:
            _logger.debug("classify:cache_hit id=%s", tx.id)
            return _from_cached(tx, hit)

        result, leader = self._flight.do(key, lambda: self._resolve(tx, key))
        if leader:
            return result
        _logger.debug("classify:coalesced id=%s", tx.id)
        return _from_cached(tx, _verdict_of(result))

    def _resolve(self, tx: Transaction, key: str) -> Categorization:
        # Another leader may have settled this key between our check and now.
        hit = self.cache.get(key)
        if hit is not None:
            return _from_cached(tx, hit)

        _logger.info("classify:ai_call id=%s currency=%s", tx.id, tx.currency)
        result = self._classifier.classify(tx)
        self.cache.put(key, _verdict_of(result))
        if self.learning_queue.add(key):
            _logger.debug("learning_queue:added size=%d", len(self.learning_queue))
        return result

    # ---- batch ----------------------------------------------------------

    def classify_batch(
        self,
        transactions: Iterable[Transaction],
        *,
        concurrency: int | None = None,
        stop_on_error: bool = True,
    ) -> list[Categorization]:
        """Categorize many transactions, preserving input order.

        Rule hits resolve inline. Misses are grouped by cache key and the first
        occurrence of each key is resolved (up to ``concurrency`` model calls in
        flight, default ``settings.concurrency``); later occurrences are built
        from the cached verdict, exactly as a one-at-a-time run would produce
        them. ``concurrency=1`` is strictly sequential.

        With ``stop_on_error`` the first failure aborts the batch and is
        re-raised; otherwise all keys are attempted and failures are raised as
        an ``ExceptionGroup``. Either way no partial result list is returned.
        """

        txs = list(transactions)
        results: list[Categorization | None] = [None] * len(txs)
        groups: dict[str, list[int]] = {}
        for i, tx in enumerate(txs):
            ruled = categorize_by_rules(tx, self._rules)
            if ruled is not None:
                results[i] = ruled
                continue
            groups.setdefault(cache_key(tx), []).append(i)

        n_rule = len(txs) - sum(len(v) for v in groups.values())
        exemplars: list[tuple[str, int]] = [(key, idxs[0]) for key, idxs in groups.items()]

        def _resolve_group(item: tuple[str, int]) -> Categorization:
            key, first = item
            return self._classify_miss(txs[first], key)

        firsts = p_map(
            exemplars,
            _resolve_group,
            concurrency=concurrency or self._settings.concurrency,
            stop_on_error=stop_on_error,
        )

        for idxs, first in zip(groups.values(), firsts, strict=True):
            results[idxs[0]] = first
            verdict = _verdict_of(first)
            for i in idxs[1:]:
                results[i] = _from_cached(txs[i], verdict)

        _logger.info(
            "classify_batch:done total=%d rule_hits=%d distinct_keys=%d",
            len(txs),
            n_rule,
            len(groups),
        )
        missing = [i for i, r in enumerate(results) if r is None]
        if missing:  # pragma: no cover - defensive
            raise RuntimeError(f"Internal error: missing categorized results at indices {missing}")
        return [r for r in results if r is not None]


__all__ = ["CategorizationService"]
