from __future__ import annotations

import threading
import time

import pytest

from household_engine.pmap import default_concurrency, p_map, p_map_skip


@pytest.mark.parametrize("concurrency", [1, 3])
def test_results_keep_input_order(concurrency: int) -> None:
    def slow_square(n: int) -> int:
        time.sleep(0.01 * (5 - n))
        return n * n

    assert p_map(range(5), slow_square, concurrency=concurrency) == [0, 1, 4, 9, 16]


@pytest.mark.parametrize("concurrency", [1, 4])
def test_skip_sentinel_drops_items(concurrency: int) -> None:
    out = p_map(range(6), lambda n: p_map_skip if n % 2 else n, concurrency=concurrency)
    assert out == [0, 2, 4]


def test_never_exceeds_concurrency() -> None:
    lock = threading.Lock()
    active = 0
    peak = 0

    def work(_: int) -> None:
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        time.sleep(0.02)
        with lock:
            active -= 1

    p_map(range(10), work, concurrency=2)
    assert peak <= 2


def test_inline_mode_runs_on_calling_thread() -> None:
    caller = threading.get_ident()
    idents = p_map(range(3), lambda _: threading.get_ident(), concurrency=1)
    assert set(idents) == {caller}


@pytest.mark.parametrize("concurrency", [1, 2])
def test_first_error_propagates(concurrency: int) -> None:
    def boom(n: int) -> int:
        if n == 1:
            raise ValueError("bad item")
        return n

    with pytest.raises(ValueError, match="bad item"):
        p_map(range(3), boom, concurrency=concurrency)


@pytest.mark.parametrize("concurrency", [1, 2])
def test_collected_errors_raise_group(concurrency: int) -> None:
    def boom(n: int) -> int:
        raise KeyError(n)

    with pytest.raises(ExceptionGroup) as info:
        p_map(range(3), boom, concurrency=concurrency, stop_on_error=False)
    assert len(info.value.exceptions) == 3


@pytest.mark.parametrize("bad", [0, -1, True])
def test_rejects_invalid_concurrency(bad) -> None:
    with pytest.raises(ValueError):
        p_map([1], lambda n: n, concurrency=bad)


@pytest.mark.parametrize(
    ("raw", "expected"), [(None, 1), ("4", 4), ("0", 1), ("500", 32), ("x", 1)]
)
def test_default_concurrency_from_env(
    monkeypatch: pytest.MonkeyPatch, raw: str | None, expected: int
) -> None:
    if raw is not None:
        monkeypatch.setenv("HE_JOB_CONCURRENCY", raw)
    assert default_concurrency() == expected
