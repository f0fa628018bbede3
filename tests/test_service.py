import json
import threading
from pathlib import Path

import openai
import pytest

from spend_categorizer.cache import cache_key
from spend_categorizer.categories import Category, Source, TxType
from spend_categorizer.classifier import AiClassifier
from spend_categorizer.config import ConfigurationError, Settings
from spend_categorizer.models import CachedVerdict
from spend_categorizer.service import CategorizationService
from tests.helpers.factories import make_tx
from tests.helpers.openai_stub import ChatStub, always, connection_error, raising, status_error

INCOME_REPLY = {"category": "Income", "type": "credit", "confidence": 0.9, "reason": "Large one-off credit"}


def _service(settings: Settings, stub: ChatStub, **kw) -> CategorizationService:
    return CategorizationService(AiClassifier(settings, client_factory=stub.factory), settings=settings, **kw)


def test_rule_hit_makes_no_model_call(settings: Settings):
    stub = ChatStub(always(INCOME_REPLY))
    svc = _service(settings, stub)

    res = svc.classify(make_tx("NETFLIX.COM 123456", "-22.99", "AUD"))

    assert (res.category, res.type, res.source, res.rule_id) == (
        Category.SUBSCRIPTIONS,
        TxType.DEBIT,
        Source.RULE,
        "sub_netflix",
    )
    assert res.confidence == pytest.approx(0.95)
    assert stub.calls == []
    assert len(svc.cache) == 0
    assert len(svc.learning_queue) == 0


def test_rule_hits_need_no_api_key():
    svc = CategorizationService(AiClassifier(Settings(openai_api_key=None)), settings=Settings())
    assert svc.classify(make_tx("Spotify P0042", "-11.99")).source is Source.RULE
    with pytest.raises(ConfigurationError):
        svc.classify(make_tx("Zorblex"))


def test_model_fallback_populates_cache_and_queue_once(settings: Settings):
    stub = ChatStub(always(INCOME_REPLY))
    svc = _service(settings, stub)
    tx = make_tx("ACME DEPOSIT 998877", "2500.00", "USD", id="a")

    first = svc.classify(tx)
    assert first.category is Category.INCOME
    assert first.type is TxType.CREDIT
    assert first.source is Source.AI
    assert first.confidence == pytest.approx(0.9)
    assert first.rationale == "Large one-off credit"

    key = "USD|acme deposit"
    assert cache_key(tx) == key
    assert svc.cache.get(key) == CachedVerdict(Category.INCOME, TxType.CREDIT, 0.9)
    assert svc.learning_queue.keys() == [key]

    again = svc.classify(tx)
    assert len(stub.calls) == 1
    assert again.source is Source.AI
    assert again.rationale is None
    assert (again.category, again.type, again.confidence) == (first.category, first.type, first.confidence)
    assert svc.learning_queue.keys() == [key]


def test_cache_is_shared_by_text_and_currency_not_amount_or_id(settings: Settings):
    stub = ChatStub(always(INCOME_REPLY))
    svc = _service(settings, stub)

    svc.classify(make_tx("ACME DEPOSIT 1111", "2500", "USD", id="a", date="2025-08-01"))
    b = svc.classify(make_tx("acme  deposit 2222", "-10", "USD", id="b", date="2025-09-01"))

    assert len(stub.calls) == 1
    assert b.transaction_id == "b"
    assert b.category is Category.INCOME
    assert b.type is TxType.CREDIT

    svc.classify(make_tx("ACME DEPOSIT", "2500", "AUD", id="c"))
    assert len(stub.calls) == 2
    assert svc.learning_queue.keys() == ["USD|acme deposit", "AUD|acme deposit"]


def test_soft_failure_is_cached_like_any_verdict(settings: Settings):
    stub = ChatStub(always("not json"))
    svc = _service(settings, stub)
    tx = make_tx("Zorblex Pty", "-42.50")

    res = svc.classify(tx)

    assert (res.category, res.type, res.source) == (Category.MISC, TxType.DEBIT, Source.AI)
    assert res.confidence == pytest.approx(0.6)
    assert svc.cache.get(cache_key(tx)) == CachedVerdict(Category.MISC, TxType.DEBIT, 0.6)
    assert cache_key(tx) in svc.learning_queue


def test_out_of_enum_category_becomes_misc(settings: Settings):
    stub = ChatStub(always({"category": "Crypto", "type": "debit", "confidence": 0.7}))
    res = _service(settings, stub).classify(make_tx("Quillon Exchange", "-500"))
    assert res.category is Category.MISC
    assert res.type is TxType.DEBIT
    assert res.confidence == pytest.approx(0.7)


@pytest.mark.parametrize("exc", [status_error(500), connection_error()])
def test_hard_failure_leaves_no_trace_and_is_retried_next_time(settings: Settings, exc: Exception):
    replies = iter([exc, INCOME_REPLY])

    def reply(_payload):
        out = next(replies)
        if isinstance(out, Exception):
            raise out
        return out

    stub = ChatStub(reply)
    svc = _service(settings, stub)
    tx = make_tx("ACME DEPOSIT", "2500", "USD")

    with pytest.raises(type(exc)):
        svc.classify(tx)
    assert cache_key(tx) not in svc.cache
    assert cache_key(tx) not in svc.learning_queue

    assert svc.classify(tx).category is Category.INCOME
    assert len(stub.calls) == 2


def test_services_do_not_share_state(settings: Settings):
    stub = ChatStub(always(INCOME_REPLY))
    tx = make_tx("ACME DEPOSIT", "2500", "USD")
    _service(settings, stub).classify(tx)
    _service(settings, stub).classify(tx)
    assert len(stub.calls) == 2


def test_concurrent_calls_for_one_key_share_a_model_call(settings: Settings):
    stub = ChatStub(always(INCOME_REPLY), sleep_per_call=0.1)
    svc = _service(settings, stub)
    n = 8
    barrier = threading.Barrier(n)
    results = [None] * n

    def worker(i: int) -> None:
        barrier.wait()
        results[i] = svc.classify(make_tx("ACME DEPOSIT", "2500", "USD", id=f"t{i}"))

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(stub.calls) == 1
    assert [r.transaction_id for r in results] == [f"t{i}" for i in range(n)]
    assert {r.category for r in results} == {Category.INCOME}
    assert sum(r.rationale is not None for r in results) == 1
    assert svc.learning_queue.keys() == ["USD|acme deposit"]


def test_concurrent_failure_reaches_every_waiter(settings: Settings):
    stub = ChatStub(raising(status_error(500)), sleep_per_call=0.1)
    svc = _service(settings, stub)
    n = 4
    barrier = threading.Barrier(n)
    errors: list[BaseException] = []
    lock = threading.Lock()

    def worker(i: int) -> None:
        barrier.wait()
        try:
            svc.classify(make_tx("Zorblex", id=f"t{i}"))
        except openai.InternalServerError as e:
            with lock:
                errors.append(e)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(errors) == n
    assert len(svc.cache) == 0


# ---- batch --------------------------------------------------------------------


def test_batch_preserves_order_and_coalesces_duplicate_keys(settings: Settings):
    stub = ChatStub(always(INCOME_REPLY))
    svc = _service(settings, stub)
    txs = [
        make_tx("ACME DEPOSIT 01", "2500", "USD", id="1"),
        make_tx("NETFLIX.COM", "-22.99", "AUD", id="2"),
        make_tx("ACME DEPOSIT 02", "2500", "USD", id="3"),
        make_tx("Zorblex", "-5", "AUD", id="4"),
        make_tx("acme deposit", "2500", "USD", id="5"),
    ]

    out = svc.classify_batch(txs)

    assert [r.transaction_id for r in out] == ["1", "2", "3", "4", "5"]
    assert [r.source for r in out] == [Source.AI, Source.RULE, Source.AI, Source.AI, Source.AI]
    assert len(stub.calls) == 2
    assert out[0].rationale == "Large one-off credit"
    assert out[2].rationale is None and out[4].rationale is None
    assert svc.learning_queue.keys() == ["USD|acme deposit", "AUD|zorblex"]


def test_batch_matches_one_at_a_time_results(settings: Settings):
    txs = [
        make_tx("ACME DEPOSIT 01", "2500", "USD", id="1"),
        make_tx("WOOLWORTHS 1234", "-54.10", "AUD", id="2"),
        make_tx("acme deposit", "-3", "USD", id="3"),
        make_tx("Quillon", "0", "AUD", id="4"),
    ]
    seq = _service(settings, ChatStub(always(INCOME_REPLY)))
    expected = [seq.classify(tx) for tx in txs]

    batch = _service(settings, ChatStub(always(INCOME_REPLY))).classify_batch(txs, concurrency=4)
    assert batch == expected


def test_batch_bounds_concurrency(settings: Settings):
    stub = ChatStub(always({"category": "Shopping"}), sleep_per_call=0.05)
    svc = _service(settings, stub)
    names = ["Zorblex", "Quillon", "Harbor Books", "Fernwick", "Daxley", "Ombrio", "Tavix", "Pellum"]
    txs = [make_tx(name, "-9", id=str(i)) for i, name in enumerate(names)]

    svc.classify_batch(txs, concurrency=3)

    assert len(stub.calls) == len(names)
    assert 2 <= stub.max_inflight <= 3


def test_batch_concurrency_one_is_sequential(settings: Settings):
    stub = ChatStub(always({"category": "Shopping"}), sleep_per_call=0.01)
    svc = _service(settings, stub)
    svc.classify_batch([make_tx(n, id=n) for n in ("Zorblex", "Quillon", "Tavix")], concurrency=1)
    assert stub.max_inflight == 1


def test_batch_aborts_on_first_failure(settings: Settings):
    def reply(payload):
        if payload["desc"] == "quillon":
            raise status_error(500)
        return {"category": "Shopping"}

    svc = _service(settings, ChatStub(reply))
    with pytest.raises(openai.InternalServerError):
        svc.classify_batch([make_tx("Zorblex", id="1"), make_tx("Quillon", id="2")], concurrency=1)
    assert "AUD|zorblex" in svc.cache
    assert "AUD|quillon" not in svc.cache


def test_batch_collects_failures_when_not_stopping(settings: Settings):
    def reply(payload):
        if payload["desc"] in {"quillon", "tavix"}:
            raise connection_error()
        return {"category": "Shopping"}

    svc = _service(settings, ChatStub(reply))
    txs = [make_tx(n, id=n) for n in ("Zorblex", "Quillon", "Tavix", "Ombrio")]
    with pytest.raises(ExceptionGroup) as info:
        svc.classify_batch(txs, stop_on_error=False)

    assert len(info.value.exceptions) == 2
    assert all(isinstance(e, openai.APIConnectionError) for e in info.value.exceptions)
    assert set(svc.learning_queue) == {"AUD|zorblex", "AUD|ombrio"}


def test_batch_empty(settings: Settings):
    stub = ChatStub(always(INCOME_REPLY))
    assert _service(settings, stub).classify_batch([]) == []
    assert stub.calls == []


def test_from_settings_puts_file_rules_first(tmp_path: Path):
    rules_file = tmp_path / "rules.json"
    rules_file.write_text(
        json.dumps({"rules": [{"id": "streaming_family", "category": "Misc", "keywords": ["netflix"]}]}),
        encoding="utf-8",
    )
    svc = CategorizationService.from_settings(Settings(rules_path=rules_file))

    assert svc.rules[0].id == "streaming_family"
    res = svc.classify(make_tx("NETFLIX.COM", "-22.99"))
    assert res.rule_id == "streaming_family"
    assert res.category is Category.MISC
