"""Game sessions — what an interactive front end drives.

A session owns the two strategy texts, re-runs the game whenever they
change, and pushes a running summary to a display callback. Rendering is
left to the caller: ``render(counts)`` gets the merged OutcomeCounts after
every batch and ``display(value, ok)`` gets either an OutcomeSummary
(ok=True) or the error that stopped the run (ok=False).

MIT License
"""

from __future__ import annotations
import logging, math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

import numpy as np

from chshgame.config import GameConfig
from chshgame.core import OutcomeCounts
from chshgame.runner import (
    DEFAULT_CLASSICAL_CODE_A,
    DEFAULT_CLASSICAL_CODE_B,
    DEFAULT_QUANTUM_CODE_A,
    DEFAULT_QUANTUM_CODE_B,
    run_classical_batch,
    run_quantum_batch,
)
from chshgame.streaming import (
    FunctionGroup,
    delayed,
    make_progress_tracker,
    resolved,
    stream_generated_results,
)

logger = logging.getLogger("chshgame.session")

CLASSICAL_WIN_LIMIT = 0.75


class GameVariant(Enum):
    CLASSICAL = "classical"
    QUANTUM = "quantum"


class SessionState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    FINISHED = "finished"
    ERROR = "error"
    CANCELLED = "cancelled"


DEFAULT_CODE = {
    GameVariant.CLASSICAL: (DEFAULT_CLASSICAL_CODE_A, DEFAULT_CLASSICAL_CODE_B),
    GameVariant.QUANTUM: (DEFAULT_QUANTUM_CODE_A, DEFAULT_QUANTUM_CODE_B),
}

# Outcomes of 100 batches × 1000 plays of the default strategies, shown on
# startup instead of spending compute before anything was edited.
PRECOMPUTED_BASELINES = {
    GameVariant.CLASSICAL: OutcomeCounts.from_counts({0: 25000, 1: 25000, 2: 25000, 3: 25000}),
    GameVariant.QUANTUM: OutcomeCounts.from_counts({
        0: 10670, 4: 1831, 8: 1830, 12: 10669,
        1: 10670, 5: 1831, 9: 1830, 13: 10669,
        2: 10670, 6: 1831, 10: 1830, 14: 10669,
        3: 1830, 7: 10669, 11: 10670, 15: 1831,
    }),
}


# ═════════════════════════════════════════════════════════════
#  SUMMARY
# ═════════════════════════════════════════════════════════════

@dataclass
class OutcomeSummary:
    """Win statistics, judged against the classical 75% limit."""
    wins: int
    plays: int
    win_rate: float
    error_bar: float  # ±3σ
    sigma_over_classical: float
    judgement: str

    def lines(self) -> list[str]:
        return [
            f"~{100 * self.win_rate:.1f}% (±{100 * self.error_bar:.1f}%)",
            f"{self.wins} wins out of {self.plays} plays",
            self.judgement,
        ]

    def text(self) -> str:
        return "\n".join(self.lines())

    def to_dict(self) -> dict:
        return {
            "wins": self.wins,
            "plays": self.plays,
            "win_rate": round(self.win_rate, 6),
            "error_bar": round(self.error_bar, 6),
            "sigma_over_classical": round(self.sigma_over_classical, 3),
            "judgement": self.judgement,
        }


def summarize(counts: OutcomeCounts) -> OutcomeSummary:
    """Does this beat the classical limit, and how sure are we?"""
    plays = counts.count_plays()
    wins = counts.count_wins()
    mean = wins / plays if plays else 0.0

    # Smoothed so zero or perfect scores still get an error bar.
    sample_mean = (wins + 1) / (plays + 2)
    sample_std = math.sqrt(sample_mean * (1 - sample_mean) / (plays + 1))
    over = (max(mean, 1 - mean) - CLASSICAL_WIN_LIMIT) / sample_std if plays else 0.0

    if over <= 1:
        judgement = "No"
    elif over <= 3:
        judgement = "Probably Not"  # about 1 in 6 by chance
    elif over <= 5:
        judgement = "Maybe. Could be lucky? σ>3"  # about 1 in 750 by chance
    else:
        judgement = "Looks like it! σ>5"  # about 1 in 30000 by chance

    return OutcomeSummary(
        wins=wins,
        plays=plays,
        win_rate=mean,
        error_bar=3 * sample_std,
        sigma_over_classical=over,
        judgement=judgement,
    )


# ═════════════════════════════════════════════════════════════
#  SESSION
# ═════════════════════════════════════════════════════════════

class GameSession:
    """Re-plays the game whenever either strategy changes.

    Each change cancels whatever the previous change started, then streams
    fresh batches into a new running total. Results reach ``display``
    through a stale-result filter, so a slow earlier run can never
    overwrite a later one.
    """

    def __init__(self, variant: GameVariant = GameVariant.CLASSICAL,
                 display: Optional[Callable[[Any, bool], Any]] = None,
                 config: Optional[GameConfig] = None,
                 render: Optional[Callable[[OutcomeCounts], Any]] = None,
                 code_a: Optional[str] = None,
                 code_b: Optional[str] = None,
                 baseline: Optional[OutcomeCounts] = None,
                 rng: Optional[np.random.Generator] = None):
        self.variant = GameVariant(variant)
        self.config = config if config is not None else GameConfig()
        self.display = display
        self.render = render
        self.rng = rng if rng is not None else np.random.default_rng()

        default_a, default_b = DEFAULT_CODE[self.variant]
        self.code_a = default_a if code_a is None else code_a
        self.code_b = default_b if code_b is None else code_b
        if baseline is None and (self.code_a, self.code_b) == (default_a, default_b):
            baseline = PRECOMPUTED_BASELINES[self.variant]
        self.baseline = baseline

        self.totals = OutcomeCounts()
        self.state = SessionState.IDLE
        self.last_error: Optional[BaseException] = None
        self._cancellers = FunctionGroup()
        self._report = make_progress_tracker(self._on_report)
        self._finished = None

    def _on_report(self, value, ok: bool):
        if self.display is not None:
            self.display(value, ok)

    def _show(self, counts: OutcomeCounts):
        if self.render is not None:
            self.render(counts)
        self._report(resolved(summarize(counts)))

    def show_baseline(self) -> bool:
        """Display the precomputed outcome, if there is one. Needs a running loop."""
        if self.baseline is None:
            return False
        self.totals = self.baseline
        self._show(self.baseline)
        return True

    def _start_batch(self, code_a: str, code_b: str):
        cfg = self.config
        if self.variant is GameVariant.CLASSICAL:
            return run_classical_batch(code_a, code_b, cfg.rounds_per_batch, cfg.timeout,
                                       cfg.shared_bit_count, self._cancellers.add, self.rng)
        return run_quantum_batch(code_a, code_b, cfg.rounds_per_batch, cfg.timeout,
                                 self._cancellers.add, self.rng)

    def recompute(self, code_a: str, code_b: str) -> bool:
        """Start playing the given strategies, unless they are unchanged.

        Must be called from inside a running event loop.

        Returns:
            True if a new run started.
        """
        if (code_a, code_b) == (self.code_a, self.code_b):
            return False
        self.code_a, self.code_b = code_a, code_b

        # Stop the previous run, workers included.
        self._cancellers.run_and_clear()
        self.totals = OutcomeCounts()
        self.last_error = None
        self.state = SessionState.RUNNING
        cfg = self.config
        logger.debug("recompute %s: %d × %d rounds, concurrency %d", self.variant.value,
                     cfg.max_batches, cfg.rounds_per_batch, cfg.concurrency)

        def on_value(delta: OutcomeCounts):
            self.totals = self.totals.merged_with(delta)
            self._show(self.totals)

        def on_error(error: BaseException):
            self.state = SessionState.ERROR
            self.last_error = error
            self._report(delayed(error, cfg.error_grace_period, reject=True))

        finished = stream_generated_results(
            lambda: self._start_batch(code_a, code_b),
            on_value,
            on_error,
            cfg.max_batches,
            cfg.concurrency,
            self._cancellers.add)
        finished.add_done_callback(lambda _: self._stream_over(finished))
        self._finished = finished
        return True

    def _stream_over(self, finished):
        if finished is self._finished and self.state is SessionState.RUNNING:
            self.state = SessionState.FINISHED

    def cancel(self):
        """Stop the current run. Batches already in flight are killed."""
        self._cancellers.run_and_clear()
        if self.state is SessionState.RUNNING:
            self.state = SessionState.CANCELLED

    async def wait(self):
        """Wait until the current run is over (done, failed or cancelled)."""
        if self._finished is not None:
            await self._finished

    def status(self) -> dict:
        return {
            "variant": self.variant.value,
            "state": self.state.value,
            "plays": self.totals.count_plays(),
            "wins": self.totals.count_wins(),
            "last_error": None if self.last_error is None else str(self.last_error),
            "config": self.config.to_dict(),
        }
