"""chshgame — CHSH game simulator: local hidden variables vs. entanglement.

Example:
    import asyncio
    from chshgame import run_classical_batch, run_quantum_batch, summarize

    async def main():
        classical = await run_classical_batch("move = false", "move = false", count=1000)
        quantum = await run_quantum_batch(
            "turn(Y, 90 if refChoice else 0)\\nmove = measure()",
            "turn(Y, -45 if refChoice else 45)\\nmove = measure()",
            count=1000)
        print(summarize(classical).text())
        print(summarize(quantum).text())

    asyncio.run(main())

MIT License
"""
from chshgame.core import (
    StateVector,
    OutcomeCounts,
    case_to_key,
    key_to_case,
    case_to_is_win,
)
from chshgame.errors import (
    ChshError,
    InputValidationError,
    EvaluationTimeout,
    EvaluationError,
    ProtocolViolation,
    EvaluationCancelled,
)
from chshgame.runner import run_classical_batch, run_quantum_batch
from chshgame.streaming import (
    FunctionGroup,
    delayed,
    resolved,
    stream_generated_results,
    make_progress_tracker,
)
from chshgame.config import GameConfig
from chshgame.session import (
    GameSession,
    GameVariant,
    SessionState,
    OutcomeSummary,
    summarize,
)

__version__ = "1.0.0"

__all__ = [
    "StateVector",
    "OutcomeCounts",
    "case_to_key",
    "key_to_case",
    "case_to_is_win",
    "ChshError",
    "InputValidationError",
    "EvaluationTimeout",
    "EvaluationError",
    "ProtocolViolation",
    "EvaluationCancelled",
    "run_classical_batch",
    "run_quantum_batch",
    "FunctionGroup",
    "delayed",
    "resolved",
    "stream_generated_results",
    "make_progress_tracker",
    "GameConfig",
    "GameSession",
    "GameVariant",
    "SessionState",
    "OutcomeSummary",
    "summarize",
]
