# ruff: noqa: E402, I001
import sys
import threading
import time
from pathlib import Path

import pytest


# Make sure the workspace `packages/` dir is on sys.path so `financial_ingest` is importable
_ROOT = Path(__file__).resolve().parents[1]
_PKG_DIR = _ROOT / "packages"
sys.path[:0] = [p for p in [str(_PKG_DIR), str(_ROOT)] if p not in sys.path]

from financial_ingest.pmap import p_map, p_map_skip


def test_preserves_input_order() -> None:
    def slow_square(x: int) -> int:
        time.sleep(0.01 * (5 - x))
        return x * x

    assert p_map(range(5), slow_square, concurrency=3) == [0, 1, 4, 9, 16]


def test_skip_drops_items() -> None:
    out = p_map(range(6), lambda x: p_map_skip if x % 2 else x, concurrency=2)
    assert out == [0, 2, 4]


def test_concurrency_is_bounded() -> None:
    lock = threading.Lock()
    active = 0
    peak = 0

    def track(x: int) -> int:
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        time.sleep(0.02)
        with lock:
            active -= 1
        return x

    assert p_map(range(8), track, concurrency=2) == list(range(8))
    assert peak <= 2


def test_stop_on_error_reraises_first_failure() -> None:
    def boom(x: int) -> int:
        if x == 1:
            raise RuntimeError("bad item")
        return x

    with pytest.raises(RuntimeError, match="bad item"):
        p_map([0, 1, 2], boom, concurrency=1)


def test_collects_all_failures_when_not_stopping() -> None:
    def boom(x: int) -> int:
        if x % 2:
            raise ValueError(f"odd {x}")
        return x

    with pytest.raises(ExceptionGroup) as excinfo:
        p_map(range(5), boom, concurrency=2, stop_on_error=False)

    assert sorted(str(e) for e in excinfo.value.exceptions) == ["odd 1", "odd 3"]


@pytest.mark.parametrize("bad", [0, -1, 1.5])
def test_rejects_invalid_concurrency(bad) -> None:
    with pytest.raises(ValueError):
        p_map([1], lambda x: x, concurrency=bad)


def test_empty_iterable() -> None:
    assert p_map([], lambda x: x, concurrency=4) == []
