"""Error taxonomy for the CHSH game simulator.

MIT License
"""
from __future__ import annotations


class ChshError(Exception):
    """Base class for every failure raised by chshgame."""


class InputValidationError(ChshError, ValueError):
    """Bad arguments (qubit index, rotation axis/angle, shared bit count, ...)."""


class EvaluationTimeout(ChshError):
    """A strategy evaluation exceeded its time budget."""


class EvaluationError(ChshError):
    """Strategy code failed to compile, raised, or produced an invalid move."""


class ProtocolViolation(ChshError):
    """The evaluation worker replied with something of the wrong shape."""


class EvaluationCancelled(ChshError):
    """The evaluation was cancelled before it finished."""
