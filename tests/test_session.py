"""Tests for game sessions, summaries and configuration."""
from __future__ import annotations

import asyncio

import numpy as np
import pytest

from chshgame import (
    EvaluationError,
    GameConfig,
    GameSession,
    GameVariant,
    OutcomeCounts,
    SessionState,
    summarize,
)
from chshgame.session import PRECOMPUTED_BASELINES


def small_config(**overrides) -> GameConfig:
    settings = dict(rounds_per_batch=40, max_batches=3, concurrency=2, timeout=60.0,
                    error_grace_period=0.01)
    settings.update(overrides)
    return GameConfig(**settings)


class Screen:
    def __init__(self):
        self.shown = []
        self.drawn = []

    def display(self, value, ok):
        self.shown.append((value, ok))

    def render(self, counts):
        self.drawn.append(counts)


# ─── Summary ────────────────────────────────────────────────────────────────

def test_summarize_classical_baseline() -> None:
    summary = summarize(PRECOMPUTED_BASELINES[GameVariant.CLASSICAL])
    assert summary.wins == 75000
    assert summary.plays == 100000
    assert summary.win_rate == pytest.approx(0.75)
    assert summary.judgement == "No"
    assert summary.lines() == ["~75.0% (±0.4%)", "75000 wins out of 100000 plays", "No"]


def test_summarize_quantum_baseline() -> None:
    summary = summarize(PRECOMPUTED_BASELINES[GameVariant.QUANTUM])
    assert summary.plays == 100000
    assert summary.win_rate == pytest.approx(0.8536, abs=1e-3)
    assert summary.judgement == "Looks like it! σ>5"
    assert summary.to_dict()["wins"] == summary.wins


def test_summarize_empty_and_small_samples() -> None:
    empty = summarize(OutcomeCounts())
    assert empty.plays == 0
    assert empty.win_rate == 0.0
    assert empty.judgement == "No"

    # 10 straight wins is suggestive, not conclusive.
    lucky = summarize(OutcomeCounts.from_counts({0: 10}))
    assert lucky.win_rate == 1.0
    assert lucky.judgement in ("Probably Not", "Maybe. Could be lucky? σ>3")
    assert lucky.text().count("\n") == 2


# ─── Config ─────────────────────────────────────────────────────────────────

def test_config_from_env(monkeypatch) -> None:
    monkeypatch.setenv("CHSH_ROUNDS_PER_BATCH", "250")
    monkeypatch.setenv("CHSH_CONCURRENCY", "1000")
    monkeypatch.setenv("CHSH_TIMEOUT", "none")
    monkeypatch.setenv("CHSH_SHARED_BIT_COUNT", "not-a-number")
    monkeypatch.setenv("CHSH_ERROR_GRACE_PERIOD", "0.1")
    cfg = GameConfig.from_env()
    assert cfg.rounds_per_batch == 250
    assert cfg.concurrency == 64
    assert cfg.timeout is None
    assert cfg.shared_bit_count == 16
    assert cfg.error_grace_period == pytest.approx(0.1)
    assert cfg.max_batches == 100


def test_config_defaults() -> None:
    assert GameConfig().to_dict() == {
        "rounds_per_batch": 1000,
        "max_batches": 100,
        "concurrency": 2,
        "timeout": 2.0,
        "shared_bit_count": 16,
        "error_grace_period": 0.5,
    }


# ─── Session ────────────────────────────────────────────────────────────────

def test_session_shows_baseline_without_computing() -> None:
    async def scenario():
        screen = Screen()
        session = GameSession(GameVariant.CLASSICAL, screen.display, small_config(),
                              render=screen.render)
        assert session.show_baseline()
        await asyncio.sleep(0)
        assert screen.drawn == [PRECOMPUTED_BASELINES[GameVariant.CLASSICAL]]
        assert screen.shown[0][1] is True
        assert screen.shown[0][0].plays == 100000
        assert session.recompute(session.code_a, session.code_b) is False
        assert session.state is SessionState.IDLE

    asyncio.run(scenario())


def test_custom_code_has_no_baseline() -> None:
    session = GameSession(GameVariant.QUANTUM, code_a="move = true")
    assert session.baseline is None
    assert session.code_b == "turn(Y, -45 if refChoice else 45)\nmove = measure()"


def test_session_streams_and_merges_batches() -> None:
    async def scenario():
        screen = Screen()
        session = GameSession(GameVariant.CLASSICAL, screen.display, small_config(),
                              render=screen.render, rng=np.random.default_rng(4))
        assert session.recompute("move = true", "move = refChoice")
        assert session.state is SessionState.RUNNING
        await asyncio.wait_for(session.wait(), 120)
        await asyncio.sleep(0)

        assert session.state is SessionState.FINISHED
        assert [c.count_plays() for c in screen.drawn] == [40, 80, 120]
        assert session.totals.count_plays() == 120
        # A always plays true and B echoes its question: only refs (0, 1) win.
        assert session.totals.count_wins() == 30
        assert screen.shown[-1] == (summarize(session.totals), True)
        assert session.status()["plays"] == 120

    asyncio.run(scenario())


def test_session_reports_errors_after_grace_period() -> None:
    async def scenario():
        screen = Screen()
        session = GameSession(GameVariant.CLASSICAL, screen.display, small_config())
        session.recompute("move = undefined_name", "move = true")
        await asyncio.wait_for(session.wait(), 120)
        assert session.state is SessionState.ERROR
        assert isinstance(session.last_error, EvaluationError)
        assert screen.shown == []

        await asyncio.sleep(0.1)
        assert len(screen.shown) == 1
        error, ok = screen.shown[0]
        assert ok is False
        assert "NameError" in str(error)

    asyncio.run(scenario())


def test_failing_render_ends_the_run() -> None:
    async def scenario():
        def render(counts):
            raise RuntimeError("render failed")

        session = GameSession(GameVariant.CLASSICAL, config=small_config(), render=render)
        session.recompute("move = true", "move = true")
        await asyncio.wait_for(session.wait(), 120)
        assert session.state is SessionState.ERROR
        assert str(session.last_error) == "render failed"

    asyncio.run(scenario())


def test_new_code_cancels_previous_run() -> None:
    async def scenario():
        screen = Screen()
        session = GameSession(GameVariant.CLASSICAL, screen.display,
                              small_config(timeout=None, max_batches=1))
        session.recompute("while True: pass", "move = true")
        await asyncio.sleep(0.2)
        session.recompute("move = false", "move = false")
        await asyncio.wait_for(session.wait(), 120)
        await asyncio.sleep(0.05)

        assert session.state is SessionState.FINISHED
        assert session.totals.count_wins() == 30
        assert all(ok for _, ok in screen.shown)

    asyncio.run(scenario())


def test_cancel_stops_session() -> None:
    async def scenario():
        session = GameSession(GameVariant.QUANTUM, config=small_config(timeout=None))
        session.recompute("while True: pass\nmove = true", "move = true")
        await asyncio.sleep(0.1)
        session.cancel()
        await asyncio.wait_for(session.wait(), 5)
        assert session.state is SessionState.CANCELLED
        assert session.totals.count_plays() == 0

    asyncio.run(scenario())


def test_quantum_session_beats_classical_limit() -> None:
    async def scenario():
        session = GameSession(GameVariant.QUANTUM,
                              config=small_config(rounds_per_batch=1000, max_batches=4),
                              code_a="", rng=np.random.default_rng(8))
        session.recompute("turn(Y, 90 if refChoice else 0)\nmove = measure()",
                          "turn(Y, -45 if refChoice else 45)\nmove = measure()")
        await asyncio.wait_for(session.wait(), 120)
        summary = summarize(session.totals)
        assert summary.plays == 4000
        assert summary.win_rate > 0.80
        assert summary.judgement == "Looks like it! σ>5"

    asyncio.run(scenario())
