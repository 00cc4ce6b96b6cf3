#!/usr/bin/env python3
"""chshgame Quick Start Example — classical vs. quantum CHSH strategies."""
import asyncio
import logging
import math

from chshgame import (
    GameConfig,
    GameSession,
    GameVariant,
    StateVector,
    run_classical_batch,
    run_quantum_batch,
    summarize,
)
from chshgame.runner import DEFAULT_QUANTUM_CODE_A, DEFAULT_QUANTUM_CODE_B

logging.basicConfig(level=logging.INFO)


async def main():
    # ─── 1. State vector ─────────────────────────────────────────────────────
    print("=== Bell pair ===")
    pair = StateVector.bell_pair()
    print(f"Amplitudes: {pair.peek().round(4).tolist()}")
    pair.rotate(0, (0, 1, 0), math.pi / 4)
    print(f"P(A measures 1) after 45° turn: {pair.probability(0):.4f}")
    print(f"A: {pair.measure(0)}  B: {pair.measure(1)}")

    # ─── 2. Classical batch ──────────────────────────────────────────────────
    print("\n=== Classical: both always play false ===")
    classical = await run_classical_batch("move = false", "move = false", count=1000, timeout=10)
    print(summarize(classical).text())

    # ─── 3. Quantum batch ────────────────────────────────────────────────────
    print("\n=== Quantum: measure at 0°/90° vs. ±45° ===")
    quantum = await run_quantum_batch(DEFAULT_QUANTUM_CODE_A, DEFAULT_QUANTUM_CODE_B,
                                      count=1000, timeout=10)
    print(summarize(quantum).text())

    # ─── 4. Streaming session ────────────────────────────────────────────────
    print("\n=== Session: 10 batches × 1000 plays ===")

    def display(value, ok):
        if ok:
            print(" | ".join(value.lines()))
        else:
            print(f"error: {value}")

    config = GameConfig(rounds_per_batch=1000, max_batches=10, concurrency=2, timeout=10)
    session = GameSession(GameVariant.QUANTUM, display, config)
    session.show_baseline()
    session.recompute("turn(Y, 90 if refChoice else 0)\nmove = measure()",
                      "turn(Y, -45 if ref_choice else 45)\nmove = measure()")
    await session.wait()
    await asyncio.sleep(0)
    print(session.status())


if __name__ == "__main__":
    asyncio.run(main())
