"""Bounded, order-preserving fan-out and per-key call coalescing.

- :func:`p_map`: map an iterable through a function on a thread pool with at
  most ``concurrency`` calls running, returning results in input order. With
  ``stop_on_error`` (default) the first failure propagates and queued work is
  cancelled; otherwise every item runs and failures are raised together as an
  ``ExceptionGroup``.
- :class:`SingleFlight`: at most one in-flight call per key. Concurrent
  callers for the same key wait for the leader and share its outcome
  (result or exception). Nothing is remembered once the call settles; callers
  keep their own cache.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Generic, TypeVar

InT = TypeVar("InT")
OutT = TypeVar("OutT")
K = TypeVar("K")
V = TypeVar("V")


def p_map(
    iterable: Iterable[InT],
    mapper: Callable[[InT], OutT],
    *,
    concurrency: int,
    stop_on_error: bool = True,
) -> list[OutT]:
    if not isinstance(concurrency, int) or concurrency < 1:
        raise ValueError("concurrency must be a positive integer")

    items = list(iterable)
    if not items:
        return []
    # Run inline when there is nothing to overlap.
    if concurrency == 1 or len(items) == 1:
        if stop_on_error:
            return [mapper(item) for item in items]
        out_seq: list[OutT] = []
        seq_errors: list[Exception] = []
        for item in items:
            try:
                out_seq.append(mapper(item))
            except Exception as e:  # noqa: BLE001 - collected and re-raised below
                seq_errors.append(e)
        if seq_errors:
            raise ExceptionGroup("p_map: one or more mapper calls failed", seq_errors)
        return out_seq

    results: dict[int, OutT] = {}
    errors: list[Exception] = []
    it = enumerate(items)
    future_to_idx: dict[Future[OutT], int] = {}

    def _submit(pool: ThreadPoolExecutor) -> Future[OutT] | None:
        try:
            idx, item = next(it)
        except StopIteration:
            return None
        fut = pool.submit(mapper, item)
        future_to_idx[fut] = idx
        return fut

    with ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix="spendcat") as pool:
        active: set[Future[OutT]] = set()
        for _ in range(concurrency):
            fut = _submit(pool)
            if fut is None:
                break
            active.add(fut)

        while active:
            done, active = wait(active, return_when=FIRST_COMPLETED)
            for fut in done:
                idx = future_to_idx.pop(fut)
                try:
                    results[idx] = fut.result()
                except Exception as e:  # noqa: BLE001
                    if stop_on_error:
                        pool.shutdown(wait=False, cancel_futures=True)
                        raise
                    errors.append(e)
            for _ in range(len(done)):
                fut = _submit(pool)
                if fut is None:
                    break
                active.add(fut)

    if errors:
        raise ExceptionGroup("p_map: one or more mapper calls failed", errors)
    return [results[i] for i in range(len(items))]


class SingleFlight(Generic[K, V]):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._inflight: dict[K, Future[V]] = {}

    def do(self, key: K, fn: Callable[[], V]) -> tuple[V, bool]:
        """Run ``fn`` for ``key`` unless a call is already in flight.

        Returns ``(value, leader)`` where ``leader`` is ``True`` for the caller
        that actually ran ``fn``. Followers re-raise the leader's exception.
        """

        with self._lock:
            fut = self._inflight.get(key)
            leader = fut is None
            if fut is None:
                fut = Future()
                self._inflight[key] = fut

        if not leader:
            return fut.result(), False

        try:
            value = fn()
        except BaseException as e:
            fut.set_exception(e)
            raise
        else:
            fut.set_result(value)
            return value, True
        finally:
            with self._lock:
                self._inflight.pop(key, None)

    def inflight(self) -> int:
        with self._lock:
            return len(self._inflight)


__all__ = ["SingleFlight", "p_map"]
