"""Bounded-concurrency ordered map over a thread pool.

``p_map(items, mapper, concurrency=N)`` runs at most ``N`` mapper calls at once
and returns results in input order. ``concurrency=1`` runs inline on the
calling thread, which keeps single-connection backends (SQLite files under
test) on one thread.

Mappers may return ``p_map_skip`` to drop an element from the output.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import TypeVar

InT = TypeVar("InT")
OutT = TypeVar("OutT")

_MAX_WORKERS = 32


class _Skip:
    __slots__ = ()

    def __repr__(self) -> str:  # pragma: no cover - trivial
        return "p_map_skip"


p_map_skip: object = _Skip()


def default_concurrency() -> int:
    """Worker count from ``HE_JOB_CONCURRENCY`` (default 1, capped at 32)."""

    raw = os.getenv("HE_JOB_CONCURRENCY")
    try:
        value = int(raw) if raw else 1
    except ValueError:
        value = 1
    return max(1, min(value, _MAX_WORKERS))


def p_map(
    iterable: Iterable[InT],
    mapper: Callable[[InT], OutT | object],
    *,
    concurrency: int,
    stop_on_error: bool = True,
) -> list[OutT]:
    """Map ``iterable`` through ``mapper`` with at most ``concurrency`` in flight.

    With ``stop_on_error`` the first mapper exception propagates and unstarted
    work is cancelled. Otherwise every item runs and failures are raised
    together as an ``ExceptionGroup``.
    """

    if not isinstance(concurrency, int) or isinstance(concurrency, bool) or concurrency < 1:
        raise ValueError("concurrency must be a positive integer")

    if concurrency == 1:
        return _map_inline(iterable, mapper, stop_on_error=stop_on_error)

    indexed = enumerate(iterable)
    results: dict[int, object] = {}
    errors: list[Exception] = []
    pending: dict[Future, int] = {}

    def _feed(pool: ThreadPoolExecutor) -> bool:
        try:
            idx, item = next(indexed)
        except StopIteration:
            return False
        pending[pool.submit(mapper, item)] = idx
        return True

    with ThreadPoolExecutor(max_workers=concurrency) as pool:
        while len(pending) < concurrency and _feed(pool):
            pass
        while pending:
            done, _ = wait(list(pending), return_when=FIRST_COMPLETED)
            for fut in done:
                idx = pending.pop(fut)
                try:
                    results[idx] = fut.result()
                except Exception as exc:
                    if stop_on_error:
                        pool.shutdown(wait=False, cancel_futures=True)
                        raise
                    errors.append(exc)
                _feed(pool)

    if errors:
        raise ExceptionGroup("p_map: one or more mapper calls failed", errors)

    ordered = (results[i] for i in sorted(results))
    return [val for val in ordered if val is not p_map_skip]  # type: ignore[misc]


def _map_inline(
    iterable: Iterable[InT],
    mapper: Callable[[InT], OutT | object],
    *,
    stop_on_error: bool,
) -> list[OutT]:
    out: list[OutT] = []
    errors: list[Exception] = []
    for item in iterable:
        try:
            val = mapper(item)
        except Exception as exc:
            if stop_on_error:
                raise
            errors.append(exc)
            continue
        if val is not p_map_skip:
            out.append(val)  # type: ignore[arg-type]
    if errors:
        raise ExceptionGroup("p_map: one or more mapper calls failed", errors)
    return out


__all__ = ["default_concurrency", "p_map", "p_map_skip"]
