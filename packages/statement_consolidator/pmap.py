"""Bounded, order-preserving parallel map over a thread pool.

``p_map(items, mapper, concurrency=N)`` keeps at most ``N`` mapper calls in
flight, refilling the window as calls complete, and returns the results in
input order. Mappers may return ``p_map_skip`` to drop an item.

When a ``cancel_event`` is supplied, no new item is started once the event is
set; items already running finish and their results are kept (still in input
order).
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import TypeVar

InT = TypeVar("InT")
OutT = TypeVar("OutT")


class _Skip:
    __slots__ = ()

    def __repr__(self) -> str:  # pragma: no cover - trivial
        return "p_map_skip"


# Mappers return this sentinel to omit an element from the output.
p_map_skip: object = _Skip()


def p_map(
    iterable: Iterable[InT],
    mapper: Callable[[InT], OutT | object],
    *,
    concurrency: int,
    stop_on_error: bool = True,
    cancel_event: threading.Event | None = None,
) -> list[OutT]:
    """Map ``iterable`` through ``mapper`` with at most ``concurrency`` workers.

    - With ``stop_on_error`` (default) the first mapper exception propagates
      and queued work is cancelled.
    - Without it, every item runs and failures are raised together as an
      ``ExceptionGroup`` afterwards.
    """

    if not isinstance(concurrency, int) or concurrency < 1:
        raise ValueError("concurrency must be a positive integer")

    pending = enumerate(iterable)
    results: dict[int, object] = {}
    errors: list[Exception] = []
    index_of: dict[Future, int] = {}

    def _cancelled() -> bool:
        return cancel_event is not None and cancel_event.is_set()

    def _start_next(pool: ThreadPoolExecutor) -> Future | None:
        if _cancelled():
            return None
        nxt = next(pending, None)
        if nxt is None:
            return None
        idx, item = nxt
        fut = pool.submit(mapper, item)
        index_of[fut] = idx
        return fut

    with ThreadPoolExecutor(max_workers=concurrency) as pool:
        in_flight: set[Future] = set()
        while len(in_flight) < concurrency:
            fut = _start_next(pool)
            if fut is None:
                break
            in_flight.add(fut)

        while in_flight:
            done, in_flight = wait(in_flight, return_when=FIRST_COMPLETED)
            for fut in done:
                idx = index_of.pop(fut)
                try:
                    results[idx] = fut.result()
                except Exception as e:
                    if stop_on_error:
                        pool.shutdown(wait=False, cancel_futures=True)
                        raise
                    errors.append(e)
            for _ in done:
                fut = _start_next(pool)
                if fut is None:
                    break
                in_flight.add(fut)

    if errors:
        raise ExceptionGroup("p_map: one or more mapper calls failed", errors)

    return [
        val  # type: ignore[misc]
        for _, val in sorted(results.items())
        if val is not p_map_skip
    ]


__all__ = ["p_map", "p_map_skip"]
