"""Settings for a game session, with environment variable overrides.

MIT License
"""
from __future__ import annotations
import logging, os
from dataclasses import asdict, dataclass
from typing import Optional

logger = logging.getLogger("chshgame.config")


def _safe_int_env(name: str, default: int, min_val: int = None, max_val: int = None) -> int:
    """Parse an integer environment variable, clamped; falls back to default."""
    try:
        value = int(os.getenv(name, str(default)))
    except (ValueError, TypeError):
        logger.warning("Invalid %s, using default %s", name, default)
        return default
    if min_val is not None:
        value = max(min_val, value)
    if max_val is not None:
        value = min(max_val, value)
    return value


def _safe_float_env(name: str, default: Optional[float], min_val: float = 0.0) -> Optional[float]:
    """Parse a float environment variable. 'none' or 'inf' mean no limit."""
    raw = os.getenv(name)
    if raw is None:
        return default
    if raw.strip().lower() in ("none", "inf", "infinity"):
        return None
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Invalid %s, using default %s", name, default)
        return default
    return max(min_val, value)


@dataclass
class GameConfig:
    """How a session plays: batch size, how many batches, how many at once."""
    rounds_per_batch: int = 1000
    max_batches: int = 100
    concurrency: int = 2  # each in-flight batch holds up to two worker processes
    timeout: Optional[float] = 2.0  # seconds per worker
    shared_bit_count: int = 16
    error_grace_period: float = 0.5  # seconds before an error is shown

    @classmethod
    def from_env(cls) -> "GameConfig":
        d = cls()
        return cls(
            rounds_per_batch=_safe_int_env("CHSH_ROUNDS_PER_BATCH", d.rounds_per_batch, 1, 10**6),
            max_batches=_safe_int_env("CHSH_MAX_BATCHES", d.max_batches, 1),
            concurrency=_safe_int_env("CHSH_CONCURRENCY", d.concurrency, 1, 64),
            timeout=_safe_float_env("CHSH_TIMEOUT", d.timeout, min_val=0.001),
            shared_bit_count=_safe_int_env("CHSH_SHARED_BIT_COUNT", d.shared_bit_count, 1, 52),
            error_grace_period=_safe_float_env("CHSH_ERROR_GRACE_PERIOD", d.error_grace_period) or 0.0,
        )

    def to_dict(self) -> dict:
        return asdict(self)
