"""Tests for the stream driver, the progress tracker and the small helpers."""
from __future__ import annotations

import asyncio
import math

import pytest

from chshgame import (
    FunctionGroup,
    delayed,
    make_progress_tracker,
    resolved,
    stream_generated_results,
)


async def tick() -> None:
    """Let pending done-callbacks run."""
    for _ in range(3):
        await asyncio.sleep(0)


class Source:
    """Factory handing out futures the test settles by hand."""

    def __init__(self):
        self.futures: list[asyncio.Future] = []

    def __call__(self) -> asyncio.Future:
        fut = asyncio.get_running_loop().create_future()
        self.futures.append(fut)
        return fut


def test_function_group() -> None:
    calls = []
    f = FunctionGroup()

    f.add(lambda: calls.append(1))
    assert calls == []
    f.run_and_clear()
    assert calls == [1]
    f.run_and_clear()
    assert calls == [1]

    f.add(lambda: calls.append(2))
    f.add(lambda: calls.append(3))
    assert len(f) == 2
    f.run_and_clear()
    assert calls == [1, 2, 3]
    assert len(f) == 0


def test_delayed_and_resolved() -> None:
    async def scenario():
        assert await delayed("x", 0.001) == "x"
        with pytest.raises(KeyError):
            await delayed(KeyError("y"), 0.001, reject=True)
        fut = resolved(5)
        assert fut.done() and await fut == 5

    asyncio.run(scenario())


def test_stream_one_at_a_time() -> None:
    async def scenario():
        src, vals, errs = Source(), [], []
        stream_generated_results(src, vals.append, errs.append)
        assert len(src.futures) == 1

        src.futures[0].set_result("x")
        await tick()
        assert len(src.futures) == 2
        assert vals == ["x"]

        src.futures[1].set_result("y")
        await tick()
        assert len(src.futures) == 3
        assert vals == ["x", "y"]

        boom = ValueError("z")
        src.futures[2].set_exception(boom)
        await tick()
        assert len(src.futures) == 3
        assert vals == ["x", "y"]
        assert errs == [boom]

    asyncio.run(scenario())


def test_stream_respects_count_limit() -> None:
    async def scenario():
        src, vals = Source(), []
        finished = stream_generated_results(src, vals.append, pytest.fail, count=3)
        for i, v in enumerate("xyz"):
            src.futures[i].set_result(v)
            await tick()
        assert vals == ["x", "y", "z"]
        assert len(src.futures) == 3
        assert finished.done()

    asyncio.run(scenario())


def test_stream_concurrency() -> None:
    async def scenario():
        src, vals, errs = Source(), [], []
        finished = stream_generated_results(src, vals.append, errs.append, math.inf, 2)
        assert len(src.futures) == 2

        src.futures[0].set_result("x")
        await tick()
        assert len(src.futures) == 3
        assert vals == ["x"]

        boom = ValueError("z")
        src.futures[1].set_exception(boom)
        await tick()
        assert len(src.futures) == 3
        assert errs == [boom]
        assert finished.done()

        src.futures[2].set_result("ignored")
        await tick()
        assert len(src.futures) == 3
        assert vals == ["x"]
        assert errs == [boom]

    asyncio.run(scenario())


def test_stream_forwards_in_completion_order() -> None:
    async def scenario():
        src, vals = Source(), []
        stream_generated_results(src, vals.append, pytest.fail, math.inf, 2)
        src.futures[1].set_result("x")
        await tick()
        assert vals == ["x"]
        src.futures[0].set_result("y")
        await tick()
        assert vals == ["x", "y"]

    asyncio.run(scenario())


def test_stream_cancelled() -> None:
    async def scenario():
        src, vals, cancellers = Source(), [], []
        finished = stream_generated_results(src, vals.append, pytest.fail, math.inf, 1,
                                            cancellers.append)
        src.futures[0].set_result("x")
        await tick()
        assert vals == ["x"]
        assert len(src.futures) == 2

        for c in cancellers:
            c()
        assert finished.done()
        src.futures[1].set_result("y")
        await tick()
        assert vals == ["x"]
        assert len(src.futures) == 2

    asyncio.run(scenario())


def test_stream_factory_failure_is_reported() -> None:
    async def scenario():
        errs = []

        def factory():
            raise RuntimeError("bad")

        finished = stream_generated_results(factory, pytest.fail, errs.append, 5, 3)
        assert [str(e) for e in errs] == ["bad"]
        assert finished.done()

    asyncio.run(scenario())


def test_stream_consumer_failure_finishes_stream() -> None:
    async def scenario():
        vals, errs = [], []

        def on_value(value):
            vals.append(value)
            raise RuntimeError("render failed")

        finished = stream_generated_results(lambda: resolved(1), on_value, errs.append, 3, 1)
        await asyncio.wait_for(finished, 1.0)
        assert vals == [1]
        assert [str(e) for e in errs] == ["render failed"]

    asyncio.run(scenario())


def test_stream_rejects_zero_concurrency() -> None:
    async def scenario():
        with pytest.raises(ValueError):
            stream_generated_results(Source(), print, print, 1, 0)

    asyncio.run(scenario())


# ─── Progress tracker ───────────────────────────────────────────────────────

def new_tracker():
    seen = []
    return make_progress_tracker(lambda value, ok: seen.append((value, ok))), seen


def future():
    return asyncio.get_running_loop().create_future()


def test_tracker_one_by_one() -> None:
    async def scenario():
        track, seen = new_tracker()
        await tick()
        assert seen == []

        track(resolved("a"))
        await tick()
        assert seen == [("a", True)]

        boom = ValueError("b")
        track(delayed(boom, 0, reject=True))
        await asyncio.sleep(0.01)
        assert seen == [("a", True), (boom, False)]

    asyncio.run(scenario())


def test_tracker_overlap_resolve_in_order() -> None:
    async def scenario():
        track, seen = new_tracker()
        f1, f2 = future(), future()
        track(f1)
        track(f2)
        await tick()
        assert seen == []

        f1.set_result("a")
        await tick()
        assert seen == [("a", True)]
        f2.set_result("b")
        await tick()
        assert seen == [("a", True), ("b", True)]

    asyncio.run(scenario())


def test_tracker_ignores_older_result_after_newer() -> None:
    async def scenario():
        track, seen = new_tracker()
        f1, f2 = future(), future()
        track(f1)
        track(f2)

        f2.set_result("a")
        await tick()
        assert seen == [("a", True)]
        f1.set_result("b")
        await tick()
        assert seen == [("a", True)]

    asyncio.run(scenario())


def test_tracker_only_reports_latest_error() -> None:
    async def scenario():
        track, seen = new_tracker()
        f1, f2 = future(), future()
        track(f1)
        track(f2)

        f1.set_exception(ValueError("a"))
        await tick()
        assert seen == []

        b = ValueError("b")
        f2.set_exception(b)
        await tick()
        assert seen == [(b, False)]

    asyncio.run(scenario())


def test_tracker_blocks_stale_error_out_of_order() -> None:
    async def scenario():
        track, seen = new_tracker()
        f1, f2 = future(), future()
        track(f1)
        track(f2)

        a = ValueError("a")
        f2.set_exception(a)
        await tick()
        assert seen == [(a, False)]

        f1.set_exception(ValueError("b"))
        await tick()
        assert seen == [(a, False)]

    asyncio.run(scenario())


def test_tracker_stale_error_then_newer_success() -> None:
    async def scenario():
        track, seen = new_tracker()
        f1, f2 = future(), future()
        track(f1)
        track(f2)

        f1.set_exception(ValueError("a"))
        await tick()
        assert seen == []

        f2.set_result("b")
        await tick()
        assert seen == [("b", True)]

    asyncio.run(scenario())


def test_tracker_survives_sequence_wraparound() -> None:
    async def scenario():
        track, seen = new_tracker()
        for i in range(0x10000 + 5):
            track(resolved(i))
        await tick()
        assert len(seen) == 0x10000 + 5
        assert seen[-1] == (0x10000 + 4, True)

        older, newer = future(), future()
        track(older)
        track(newer)
        newer.set_result("new")
        await tick()
        older.set_result("old")
        await tick()
        assert seen[-1] == ("new", True)

    asyncio.run(scenario())
