from pathlib import Path

from sqlalchemy import select

from spend_categorizer.cache import LearningQueue, VerdictCache
from spend_categorizer.categories import Category, TxType
from spend_categorizer.db import LearningQueueKey, export_learning_queue_to_db, session_scope
from spend_categorizer.models import CachedVerdict


def _state() -> tuple[LearningQueue, VerdictCache]:
    queue, cache = LearningQueue(), VerdictCache()
    for key, verdict in [
        ("USD|acme deposit", CachedVerdict(Category.INCOME, TxType.CREDIT, 0.9)),
        ("AUD|zorblex", CachedVerdict(Category.MISC, TxType.DEBIT, 0.6)),
    ]:
        queue.add(key)
        cache.put(key, verdict)
    return queue, cache


def test_export_to_database_is_idempotent(tmp_path: Path):
    url = f"sqlite+pysqlite:///{tmp_path / 'queue.db'}"
    queue, cache = _state()

    assert export_learning_queue_to_db(queue, cache, database_url=url) == 2
    assert export_learning_queue_to_db(queue, cache, database_url=url) == 0

    queue.add("AUD|quillon")
    assert export_learning_queue_to_db(queue, cache, database_url=url) == 1

    with session_scope(database_url=url) as session:
        rows = {r.key: r for r in session.scalars(select(LearningQueueKey))}
    assert set(rows) == {"USD|acme deposit", "AUD|zorblex", "AUD|quillon"}
    income = rows["USD|acme deposit"]
    assert (income.currency, income.normalized_text) == ("USD", "acme deposit")
    assert (income.category, income.tx_type, income.confidence) == ("Income", "credit", 0.9)
    assert rows["AUD|quillon"].category is None


def test_empty_queue_touches_nothing(tmp_path: Path):
    db_file = tmp_path / "queue.db"
    assert export_learning_queue_to_db(
        LearningQueue(), VerdictCache(), database_url=f"sqlite+pysqlite:///{db_file}"
    ) == 0
    assert not db_file.exists()
