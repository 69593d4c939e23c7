"""Bounded-concurrency, order-preserving map for batch ingestion.

Each document is an independent pipeline invocation, so a batch of uploads
can be parsed on a small thread pool; the pool mostly waits on the AI
provider and the OCR engine.

- ``concurrency`` caps the number of mapper calls in flight.
- ``stop_on_error=True`` re-raises the first failure and cancels work that
  has not started; ``False`` runs everything and raises an
  ``ExceptionGroup`` of all failures at the end.
- A mapper may return ``p_map_skip`` to drop its item from the output.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import TypeVar

InT = TypeVar("InT")
OutT = TypeVar("OutT")


class _Skip:
    __slots__ = ()

    def __repr__(self) -> str:  # pragma: no cover - trivial
        return "p_map_skip"


p_map_skip: object = _Skip()


def _fill(
    pool: ThreadPoolExecutor,
    source: Iterator[tuple[int, InT]],
    mapper: Callable[[InT], OutT | object],
    pending: dict[Future, int],
    limit: int,
) -> None:
    while len(pending) < limit:
        try:
            idx, item = next(source)
        except StopIteration:
            return
        pending[pool.submit(mapper, item)] = idx


def p_map(
    iterable: Iterable[InT],
    mapper: Callable[[InT], OutT | object],
    *,
    concurrency: int,
    stop_on_error: bool = True,
) -> list[OutT]:
    """Map ``iterable`` through ``mapper`` with at most ``concurrency`` calls in flight.

    The result keeps input order, minus items whose mapper returned
    ``p_map_skip``. The iterable is consumed lazily.
    """

    if not isinstance(concurrency, int) or concurrency < 1:
        raise ValueError("concurrency must be a positive integer")

    source = enumerate(iterable)
    results: dict[int, OutT | object] = {}
    errors: list[Exception] = []
    pending: dict[Future, int] = {}

    with ThreadPoolExecutor(max_workers=concurrency) as pool:
        _fill(pool, source, mapper, pending, concurrency)
        while pending:
            done, _ = wait(set(pending), return_when=FIRST_COMPLETED)
            for fut in done:
                idx = pending.pop(fut)
                try:
                    results[idx] = fut.result()
                except Exception as e:  # noqa: BLE001
                    if stop_on_error:
                        pool.shutdown(wait=False, cancel_futures=True)
                        raise
                    errors.append(e)
            _fill(pool, source, mapper, pending, concurrency)

    if errors:
        raise ExceptionGroup("p_map: one or more mapper calls failed", errors)

    return [val for _, val in sorted(results.items()) if val is not p_map_skip]  # type: ignore[misc]


__all__ = ["p_map", "p_map_skip"]
