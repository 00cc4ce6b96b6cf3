"""Run strategy jobs in a separate, killable Python process.

Each call to ``evaluate`` spawns ``python -m chshgame.worker``, hands it a
JSON job on stdin and waits for its JSON reply. The process is killed when
the timeout expires, when a registered canceller runs, or when the returned
task is cancelled.

This is NOT a secure sandbox for hostile code. It keeps runaway strategies
(infinite loops, huge allocations) from taking the caller down with them.

MIT License
"""
from __future__ import annotations
import asyncio, json, logging, os, sys
from pathlib import Path
from typing import Callable, Optional

from chshgame.errors import (
    EvaluationCancelled,
    EvaluationError,
    EvaluationTimeout,
    ProtocolViolation,
)

logger = logging.getLogger("chshgame.sandbox")

WORKER_MODULE = "chshgame.worker"
_PACKAGE_PARENT = str(Path(__file__).resolve().parent.parent)

CancelTaker = Callable[[Callable[[], None]], None]


def _worker_env() -> dict:
    env = dict(os.environ)
    paths = [_PACKAGE_PARENT]
    if env.get("PYTHONPATH"):
        paths.append(env["PYTHONPATH"])
    env["PYTHONPATH"] = os.pathsep.join(paths)
    return env


def evaluate(job: dict, timeout: Optional[float] = None,
             cancel_taker: Optional[CancelTaker] = None) -> "asyncio.Task[dict]":
    """Start running ``job`` in a worker process.

    Must be called from inside a running event loop. The canceller is handed
    to ``cancel_taker`` before this returns.

    Args:
        job: JSON-serializable job description (see chshgame.worker.JOBS).
        timeout: Seconds before the worker is killed. None means no limit.
        cancel_taker: Receives a canceller; calling it kills the worker.
    Returns:
        Task resolving to the worker's reply dict (always has "ok": True).
        It fails with EvaluationTimeout, EvaluationCancelled,
        EvaluationError or ProtocolViolation.
    """
    payload = json.dumps(job).encode("utf-8")
    cancelled = asyncio.Event()
    if cancel_taker is not None:
        cancel_taker(cancelled.set)
    return asyncio.ensure_future(_run_worker(payload, job.get("kind"), timeout, cancelled))


async def _run_worker(payload: bytes, kind, timeout: Optional[float],
                      cancelled: asyncio.Event) -> dict:
    if cancelled.is_set():
        raise EvaluationCancelled("Cancelled")

    proc = await asyncio.create_subprocess_exec(
        sys.executable, "-m", WORKER_MODULE,
        stdin=asyncio.subprocess.PIPE,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        env=_worker_env(),
    )
    logger.debug("worker %s started for %s job", proc.pid, kind)

    communicate = asyncio.ensure_future(proc.communicate(payload))
    cancel_wait = asyncio.ensure_future(cancelled.wait())
    try:
        done, _ = await asyncio.wait({communicate, cancel_wait}, timeout=timeout,
                                     return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        if proc.returncode is None:
            proc.kill()
        communicate.cancel()
        raise
    finally:
        cancel_wait.cancel()

    if communicate not in done:
        if proc.returncode is None:
            proc.kill()
        await communicate
        if cancelled.is_set():
            logger.debug("worker %s cancelled", proc.pid)
            raise EvaluationCancelled("Cancelled")
        logger.debug("worker %s timed out after %ss", proc.pid, timeout)
        raise EvaluationTimeout(f"Timeout after {timeout}s")

    stdout, stderr = communicate.result()
    if proc.returncode != 0:
        detail = stderr.decode("utf-8", "replace").strip().splitlines()
        raise EvaluationError(detail[-1] if detail else f"worker exited with code {proc.returncode}")

    try:
        reply = json.loads(stdout.decode("utf-8"))
    except ValueError as e:
        raise ProtocolViolation(f"worker reply is not JSON: {stdout[:200]!r}") from e
    if not isinstance(reply, dict) or "ok" not in reply:
        raise ProtocolViolation(f"malformed worker reply: {reply!r}")
    if not reply["ok"]:
        raise EvaluationError(str(reply.get("error", "unknown strategy error")))
    return reply
