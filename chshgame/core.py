"""chshgame Core — qubit state vectors and CHSH outcome bookkeeping.

Provides:
  - StateVector: amplitudes for a handful of qubits, with controlled
    rotations and destructive single-qubit measurement
  - case_to_key / case_to_is_win: the CHSH outcome classifier
  - OutcomeCounts: immutable histogram over the 16 possible game outcomes

MIT License
"""

from __future__ import annotations
import logging, math
from functools import lru_cache
from typing import Iterable, Mapping, Optional, Sequence

import numpy as np
import stim

from chshgame.errors import InputValidationError

logger = logging.getLogger("chshgame.core")

AXIS_NORM_TOLERANCE = 1e-4
MAX_ABS_ANGLE = 1e6  # radians
MAX_QUBITS = 16

OUTCOME_KEY_COUNT = 16


# ═════════════════════════════════════════════════════════════
#  STATE VECTOR
# ═════════════════════════════════════════════════════════════

@lru_cache(maxsize=None)
def _bell_amplitudes() -> tuple:
    """(|00⟩ + |11⟩)/√2, read off a Stim tableau for H 0; CNOT 0 1."""
    c = stim.Circuit()
    c.append("H", [0])
    c.append("CNOT", [0, 1])
    amps = stim.Tableau.from_circuit(c).to_state_vector(endian="little")
    return tuple(complex(a) for a in amps)


class StateVector:
    """A weighted combination of basis states of ``qubit_count`` qubits.

    Amplitudes live in a float64 buffer of ``2 << qubit_count`` entries,
    interleaved as (real, imag) pairs and indexed by the basis state's bits
    (qubit k is bit k of the index). The buffer is mutated in place by
    ``rotate`` and ``measure``; ``peek`` hands out copies.
    """

    def __init__(self, qubit_count: int, rng: Optional[np.random.Generator] = None):
        if not isinstance(qubit_count, (int, np.integer)) or not 0 <= qubit_count <= MAX_QUBITS:
            raise InputValidationError(f"qubit_count must be in [0, {MAX_QUBITS}], got {qubit_count!r}")
        self.qubit_count = int(qubit_count)
        self.rng = rng if rng is not None else np.random.default_rng()
        self._amps = np.zeros(2 << self.qubit_count, dtype=np.float64)
        self._amps[0] = 1.0
        # Complex view over the same memory: entry i is (amps[2i], amps[2i+1]).
        self._cplx = self._amps.view(np.complex128)
        self._indices = np.arange(1 << self.qubit_count)

    @classmethod
    def from_amplitudes(cls, amplitudes: Sequence[complex],
                        rng: Optional[np.random.Generator] = None) -> "StateVector":
        """Build a state from explicit complex amplitudes (length a power of 2)."""
        n = len(amplitudes)
        if n == 0 or n & (n - 1):
            raise InputValidationError(f"amplitude count must be a power of 2, got {n}")
        state = cls(n.bit_length() - 1, rng=rng)
        state._cplx[:] = np.asarray(amplitudes, dtype=np.complex128)
        if abs(state.norm() - 1.0) > AXIS_NORM_TOLERANCE:
            raise InputValidationError("amplitudes are not normalized")
        return state

    @classmethod
    def bell_pair(cls, rng: Optional[np.random.Generator] = None) -> "StateVector":
        """Fresh 2-qubit state in the Bell state (|00⟩ + |11⟩)/√2."""
        return cls.from_amplitudes(_bell_amplitudes(), rng=rng)

    def _check_qubit(self, qubit: int, what: str = "target qubit"):
        if not isinstance(qubit, (int, np.integer)) or isinstance(qubit, bool) \
                or not 0 <= qubit < self.qubit_count:
            raise InputValidationError(
                f"{what} must be an index in [0, {self.qubit_count}), got {qubit!r}")

    def _mask_of(self, qubit: int) -> np.ndarray:
        return (self._indices & (1 << qubit)) != 0

    def rotate(self, target_qubit: int, axis: Sequence[float], angle: float,
               control_qubits: Iterable[int] = ()):
        """Apply a (controlled) rotation of ``angle`` radians around ``axis``.

        With U = x·X + y·Y + z·Z and p = e^{iθ}, the applied operation is
        U^(θ/π) = ((1+p)·I + (1-p)·U)/2. An angle of π applies U itself
        exactly (no global phase), so a π turn around X is a NOT gate.

        Args:
            target_qubit: Qubit the operation acts on.
            axis: (x, y, z) unit vector.
            angle: Rotation amount in radians.
            control_qubits: The operation only touches basis states where
                all of these qubits are 1.
        """
        self._check_qubit(target_qubit)
        controls = list(control_qubits)
        for k in controls:
            self._check_qubit(k, "control qubit")
            if k == target_qubit:
                raise InputValidationError("control qubit can't be the target qubit")

        try:
            x, y, z = (float(e) for e in axis)
        except (TypeError, ValueError) as e:
            raise InputValidationError(f"axis must be an (x, y, z) vector, got {axis!r}") from e
        if not all(math.isfinite(e) for e in (x, y, z)):
            raise InputValidationError(f"axis must be finite, got {axis!r}")
        if abs(x*x + y*y + z*z - 1) > AXIS_NORM_TOLERANCE:
            raise InputValidationError(f"axis must be a unit vector, got {axis!r}")
        try:
            angle = float(angle)
        except (TypeError, ValueError) as e:
            raise InputValidationError(f"angle must be a number, got {angle!r}") from e
        if not math.isfinite(angle) or abs(angle) > MAX_ABS_ANGLE:
            raise InputValidationError(f"angle out of range: {angle!r}")

        pr = math.cos(angle)
        pi = math.sin(angle)
        a = complex((1 + pr + z - pr*z) / 2, (pi - pi*z) / 2)
        b = complex((x - pr*x - pi*y) / 2, (-y + pr*y - pi*x) / 2)
        c = complex((x - pr*x + pi*y) / 2, (y - pr*y - pi*x) / 2)
        d = complex((1 + pr - z + pr*z) / 2, (pi + pi*z) / 2)

        selected = ~self._mask_of(target_qubit)
        for k in controls:
            selected &= self._mask_of(k)
        i0 = self._indices[selected]
        i1 = i0 | (1 << target_qubit)

        u = self._cplx[i0]
        v = self._cplx[i1]
        self._cplx[i0] = a*u + b*v
        self._cplx[i1] = c*u + d*v

    def probability(self, target_qubit: int) -> float:
        """Probability that measuring ``target_qubit`` yields True."""
        self._check_qubit(target_qubit)
        weights = np.abs(self._cplx[self._mask_of(target_qubit)]) ** 2
        return min(1.0, max(0.0, float(weights.sum())))

    def measure(self, target_qubit: int) -> bool:
        """Measure one qubit, collapsing and renormalizing the state."""
        p = self.probability(target_qubit)
        outcome = bool(self.rng.random() < p)

        w = math.sqrt(p if outcome else 1 - p)
        keep = self._mask_of(target_qubit) == outcome
        self._cplx[keep] /= w
        self._cplx[~keep] = 0
        return outcome

    def norm(self) -> float:
        return float(np.sum(self._amps ** 2))

    def peek(self) -> np.ndarray:
        """Copy of the interleaved (real, imag) amplitude buffer."""
        snapshot = self._amps.copy()
        snapshot.flags.writeable = False
        return snapshot

    def __repr__(self) -> str:
        return f"StateVector(qubit_count={self.qubit_count}, amps={self._cplx.round(4).tolist()})"


# ═════════════════════════════════════════════════════════════
#  OUTCOME CLASSIFIER
# ═════════════════════════════════════════════════════════════

def case_to_key(ref_a, ref_b, move_a, move_b) -> int:
    """Pack a game outcome into [0, 16): ref_a, ref_b, move_a, move_b at bits 0-3."""
    return (1 if ref_a else 0) + (2 if ref_b else 0) + (4 if move_a else 0) + (8 if move_b else 0)


def key_to_case(key: int) -> tuple[bool, bool, bool, bool]:
    """Inverse of case_to_key."""
    if not 0 <= key < OUTCOME_KEY_COUNT:
        raise InputValidationError(f"outcome key must be in [0, 16), got {key!r}")
    return bool(key & 1), bool(key & 2), bool(key & 4), bool(key & 8)


def case_to_is_win(ref_a, ref_b, move_a, move_b) -> bool:
    """The players win when their moves differ exactly when both refs are set."""
    return (bool(move_a) != bool(move_b)) == (bool(ref_a) and bool(ref_b))


# ═════════════════════════════════════════════════════════════
#  OUTCOME COUNTS
# ═════════════════════════════════════════════════════════════

class OutcomeCounts:
    """How often each of the 16 CHSH outcomes occurred.

    Instances are immutable; merging returns a new instance. Absent keys
    count as zero.
    """

    __slots__ = ("_counts",)

    def __init__(self):
        self._counts: dict[int, int] = {}

    @classmethod
    def from_counts(cls, counts: Mapping[int, int]) -> "OutcomeCounts":
        result = cls()
        for key, n in counts.items():
            key = int(key)
            if not 0 <= key < OUTCOME_KEY_COUNT:
                raise InputValidationError(f"outcome key must be in [0, 16), got {key!r}")
            if n > 0:
                result._counts[key] = int(n)
        return result

    @classmethod
    def from_cases(cls, cases: Iterable[tuple]) -> "OutcomeCounts":
        """Count (ref_a, ref_b, move_a, move_b) tuples."""
        counts: dict[int, int] = {}
        for case in cases:
            k = case_to_key(*case)
            counts[k] = counts.get(k, 0) + 1
        return cls.from_counts(counts)

    def count_for_key(self, key: int) -> int:
        return self._counts.get(key, 0)

    def count_for_case(self, ref_a, ref_b, move_a, move_b) -> int:
        return self._counts.get(case_to_key(ref_a, ref_b, move_a, move_b), 0)

    def count_wins(self) -> int:
        return sum(n for k, n in self._counts.items() if case_to_is_win(*key_to_case(k)))

    def count_plays(self) -> int:
        return sum(self._counts.values())

    def merged_with(self, other: "OutcomeCounts") -> "OutcomeCounts":
        result = OutcomeCounts()
        for k in range(OUTCOME_KEY_COUNT):
            t = self._counts.get(k, 0) + other._counts.get(k, 0)
            if t > 0:
                result._counts[k] = t
        return result

    def to_dict(self) -> dict:
        return {k: self._counts[k] for k in sorted(self._counts)}

    def __eq__(self, other) -> bool:
        if not isinstance(other, OutcomeCounts):
            return NotImplemented
        return all(self.count_for_key(k) == other.count_for_key(k)
                   for k in range(OUTCOME_KEY_COUNT))

    def __hash__(self) -> int:
        return hash(frozenset(self._counts.items()))

    def __repr__(self) -> str:
        return f"OutcomeCounts.from_counts({self.to_dict()!r})"
