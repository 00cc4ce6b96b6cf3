"""Streaming aggregation helpers built on asyncio futures.

Everything here runs on a single event loop thread. Work happens in
futures produced by callers; this module only decides when to start more
of them and which results are still worth reporting.

MIT License
"""
from __future__ import annotations
import asyncio, logging, math
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger("chshgame.streaming")

SEQUENCE_MASK = 0xFFFF
SEQUENCE_HALF = 0x8000


class FunctionGroup:
    """Accepts multiple functions, storing them until told to run them and reset."""

    def __init__(self):
        self._funcs: list[Callable[[], Any]] = []

    def add(self, func: Callable[[], Any]):
        self._funcs.append(func)

    def run_and_clear(self):
        funcs, self._funcs = self._funcs, []
        for f in funcs:
            f()

    def __len__(self) -> int:
        return len(self._funcs)


async def delayed(value, delay: float, reject: bool = False):
    """Return ``value`` after ``delay`` seconds, or raise it if ``reject``."""
    await asyncio.sleep(delay)
    if reject:
        raise value
    return value


def resolved(value) -> asyncio.Future:
    """An already-completed future holding ``value``."""
    fut = asyncio.get_running_loop().create_future()
    fut.set_result(value)
    return fut


def stream_generated_results(factory: Callable[[], Awaitable],
                             on_value: Callable[[Any], Any],
                             on_error: Callable[[BaseException], Any],
                             count: float = math.inf,
                             concurrency: int = 1,
                             cancel_taker: Optional[Callable[[Callable[[], None]], None]] = None
                             ) -> asyncio.Future:
    """Keep up to ``concurrency`` awaitables from ``factory`` in flight.

    Each success goes to ``on_value`` in completion order (not start order)
    and immediately starts a replacement, until ``count`` have been started.
    The first failure stops the stream and goes to ``on_error``, and so does
    an exception raised by ``on_value``; results of anything still in flight
    are then ignored. Running a canceller handed to
    ``cancel_taker`` stops the stream the same way, silently.

    Must be called from inside a running event loop.

    Returns:
        Future that completes (with None) once the stream is over.
    """
    if concurrency < 1:
        raise ValueError(f"concurrency must be at least 1, got {concurrency!r}")

    finished = asyncio.get_running_loop().create_future()
    state = {"cancelled": False, "started": 0, "in_flight": 0}

    def finish():
        if not finished.done():
            finished.set_result(None)

    def cancel():
        state["cancelled"] = True
        finish()

    def fail(error: BaseException):
        state["cancelled"] = True
        logger.warning("stream stopped after %d started: %s", state["started"], error)
        on_error(error)
        finish()

    def settled(fut: asyncio.Future):
        state["in_flight"] -= 1
        error = asyncio.CancelledError() if fut.cancelled() else fut.exception()
        if state["cancelled"]:
            return
        if error is not None:
            fail(error)
            return
        try:
            on_value(fut.result())
        except Exception as e:
            fail(e)
            return
        add()

    def add():
        if state["cancelled"]:
            return
        if state["started"] >= count:
            if state["in_flight"] == 0:
                finish()
            return
        # Bookkeeping first: a synchronously settled future re-enters add().
        state["started"] += 1
        state["in_flight"] += 1
        try:
            fut = asyncio.ensure_future(factory())
        except Exception as e:
            state["in_flight"] -= 1
            fail(e)
            return
        fut.add_done_callback(settled)

    if cancel_taker is not None:
        cancel_taker(cancel)
    for _ in range(concurrency):
        add()
    return finished


def make_progress_tracker(report: Callable[[Any, bool], Any]) -> Callable[[Awaitable], None]:
    """Wrap ``report`` so it takes awaitables and never goes back in time.

    Every awaitable handed to the returned function gets a 16-bit cyclic
    sequence id. A success is reported as ``report(value, True)`` unless a
    later-issued awaitable already completed. A failure is reported as
    ``report(error, False)`` only if nothing was issued after it.

    Ids are compared modulo 2**16, so fewer than 2**15 awaitables may be
    outstanding at once.
    """
    state = {"latest_completed": 0, "next_id": 1}

    def is_late(seq_id: int) -> bool:
        return ((state["latest_completed"] - seq_id) & SEQUENCE_MASK) < SEQUENCE_HALF

    def track(awaitable: Awaitable):
        seq_id = state["next_id"]
        state["next_id"] = (seq_id + 1) & SEQUENCE_MASK

        def settled(fut: asyncio.Future):
            error = asyncio.CancelledError() if fut.cancelled() else fut.exception()
            if error is None:
                if is_late(seq_id):
                    return
                state["latest_completed"] = seq_id
                report(fut.result(), True)
            else:
                if ((seq_id + 1) & SEQUENCE_MASK) != state["next_id"]:
                    return
                state["latest_completed"] = seq_id
                report(error, False)

        asyncio.ensure_future(awaitable).add_done_callback(settled)

    return track
