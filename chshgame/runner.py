"""Trial runners — play batches of CHSH rounds with user-supplied strategies.

Two variants:
  - Classical: players share random bits (a local hidden variable) and each
    strategy runs in its own worker process.
  - Quantum: players share a Bell pair and may turn/measure their own qubit.

Both return an asyncio future resolving to an OutcomeCounts for the batch,
or failing as a whole (no partial batches).

MIT License
"""

from __future__ import annotations
import asyncio, logging, time
from typing import Optional

import numpy as np

from chshgame.core import OutcomeCounts
from chshgame.errors import InputValidationError, ProtocolViolation
from chshgame.sandbox import CancelTaker, evaluate

logger = logging.getLogger("chshgame.runner")

MAX_SHARED_BIT_COUNT = 52  # shared draws must fit in a double's mantissa


# ═════════════════════════════════════════════════════════════
#  DEFAULT STRATEGIES
# ═════════════════════════════════════════════════════════════

DEFAULT_CLASSICAL_CODE_A = "move = false"
DEFAULT_CLASSICAL_CODE_B = "move = false"

# Measure along 0°/90° (A) and ±45° (B) in the X-Z plane: wins cos²(π/8) ≈ 85.4%.
DEFAULT_QUANTUM_CODE_A = "turn(Y, 90 if refChoice else 0)\nmove = measure()"
DEFAULT_QUANTUM_CODE_B = "turn(Y, -45 if refChoice else 45)\nmove = measure()"


def _check_count(count: int):
    if isinstance(count, bool) or not isinstance(count, (int, np.integer)) or count < 0:
        raise InputValidationError(f"count must be a non-negative integer, got {count!r}")


def _check_timeout(timeout: Optional[float]):
    if timeout is not None and not timeout > 0:
        raise InputValidationError(f"timeout must be positive or None, got {timeout!r}")


def _moves(reply: dict, field: str, count: int) -> list[bool]:
    moves = reply.get(field)
    if not isinstance(moves, list) or len(moves) != count \
            or not all(isinstance(m, bool) for m in moves):
        raise ProtocolViolation("Corrupted moves.")
    return moves


# ═════════════════════════════════════════════════════════════
#  CLASSICAL VARIANT
# ═════════════════════════════════════════════════════════════

def run_classical_batch(code_a: str, code_b: str, count: int = 1,
                        timeout: Optional[float] = None,
                        shared_bit_count: int = 16,
                        cancel_taker: Optional[CancelTaker] = None,
                        rng: Optional[np.random.Generator] = None) -> "asyncio.Future[OutcomeCounts]":
    """Play ``count`` classical rounds and count the outcomes.

    Referee choices cycle deterministically (round i asks A bit 0 and B
    bit 1 of i), so batches whose size is a multiple of 4 cover every
    question pair exactly evenly. The shared bits are fresh random draws.

    Args:
        code_a: Player A's strategy; reads refChoice/sharedBits, sets move.
        code_b: Player B's strategy.
        count: Number of rounds to play.
        timeout: Seconds each player's worker may run. None means no limit.
        shared_bit_count: Length of sharedBits, in (0, 53).
        cancel_taker: Receives cancellers that abort the batch.
        rng: Source of the shared bits.
    Raises:
        InputValidationError: synchronously, for bad arguments.
    """
    if isinstance(shared_bit_count, bool) or not isinstance(shared_bit_count, (int, np.integer)) \
            or not 0 < shared_bit_count <= MAX_SHARED_BIT_COUNT:
        raise InputValidationError(f"shared_bit_count must be in (0, 53), got {shared_bit_count!r}")
    _check_count(count)
    _check_timeout(timeout)

    rng = rng if rng is not None else np.random.default_rng()
    shared = [int(v) for v in rng.integers(0, 1 << int(shared_bit_count), size=count)]

    def job(code, ref_mask, label):
        return {
            "kind": "classical",
            "label": label,
            "code": code,
            "rounds": count,
            "shared": shared,
            "shared_bit_count": int(shared_bit_count),
            "ref_mask": ref_mask,
        }

    started = time.perf_counter()
    # Separate workers, so neither strategy can see the other's state.
    eval_a = evaluate(job(code_a, 1, "A"), timeout, cancel_taker)
    eval_b = evaluate(job(code_b, 2, "B"), timeout, cancel_taker)

    async def collect() -> OutcomeCounts:
        reply_a, reply_b = await _gather_all(eval_a, eval_b)
        moves_a = _moves(reply_a, "moves", count)
        moves_b = _moves(reply_b, "moves", count)
        outcomes = OutcomeCounts.from_cases(
            ((i & 1) != 0, (i & 2) != 0, moves_a[i], moves_b[i]) for i in range(count))
        logger.debug("classical batch of %d rounds in %.1f ms", count,
                     (time.perf_counter() - started) * 1e3)
        return outcomes

    return asyncio.ensure_future(collect())


# ═════════════════════════════════════════════════════════════
#  QUANTUM VARIANT
# ═════════════════════════════════════════════════════════════

def run_quantum_batch(code_a: str, code_b: str, count: int = 1,
                      timeout: Optional[float] = None,
                      cancel_taker: Optional[CancelTaker] = None,
                      rng: Optional[np.random.Generator] = None) -> "asyncio.Future[OutcomeCounts]":
    """Play ``count`` rounds where the players share a fresh Bell pair.

    Referee choices are independent fair coins. Each strategy may call
    ``turn(axis, degrees=180)`` and ``measure()`` on its own qubit only, and
    runs in its own namespace; both act on the same pair within a round.

    Args:
        code_a: Player A's strategy; reads refChoice, sets move.
        code_b: Player B's strategy.
        count: Number of rounds to play.
        timeout: Seconds the worker may run. None means no limit.
        cancel_taker: Receives cancellers that abort the batch.
        rng: Source of the referee coins and of the measurement seed.
    """
    _check_count(count)
    _check_timeout(timeout)

    rng = rng if rng is not None else np.random.default_rng()
    refs_a = [bool(r) for r in rng.integers(0, 2, size=count)]
    refs_b = [bool(r) for r in rng.integers(0, 2, size=count)]
    job = {
        "kind": "quantum",
        "code_a": code_a,
        "code_b": code_b,
        "refs_a": refs_a,
        "refs_b": refs_b,
        "seed": int(rng.integers(0, 2**63 - 1)),
    }

    started = time.perf_counter()
    pending = evaluate(job, timeout, cancel_taker)

    async def collect() -> OutcomeCounts:
        reply = await pending
        moves_a = _moves(reply, "moves_a", count)
        moves_b = _moves(reply, "moves_b", count)
        outcomes = OutcomeCounts.from_cases(zip(refs_a, refs_b, moves_a, moves_b))
        logger.debug("quantum batch of %d rounds in %.1f ms", count,
                     (time.perf_counter() - started) * 1e3)
        return outcomes

    return asyncio.ensure_future(collect())


async def _gather_all(*futures):
    """Like asyncio.gather, but kills the siblings as soon as one fails."""
    try:
        return await asyncio.gather(*futures)
    except BaseException:
        for f in futures:
            f.cancel()
        raise
