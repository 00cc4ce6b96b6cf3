"""Strategy harness executed in a throwaway subprocess.

Reads one JSON job from stdin, plays every round of it, and writes one JSON
reply to stdout. Run with ``python -m chshgame.worker``; see
chshgame.sandbox for the parent side.

Not a security boundary: strategies only get a reduced set of builtins and
their own namespace, and the parent kills the process on timeout.

MIT License
"""
from __future__ import annotations
import builtins, json, math, numbers, random, sys, types
from typing import Optional

import numpy as np

from chshgame.core import StateVector

_SAFE_BUILTIN_NAMES = (
    "abs", "all", "any", "bool", "dict", "divmod", "enumerate", "filter",
    "float", "int", "isinstance", "len", "list", "map", "max", "min", "pow", "print",
    "range", "reversed", "round", "set", "sorted", "sum", "tuple", "zip",
    "ArithmeticError", "Exception", "ValueError", "ZeroDivisionError",
)
SAFE_BUILTINS = {name: getattr(builtins, name) for name in _SAFE_BUILTIN_NAMES}

_F = math.sqrt(0.5)
AXES = {
    "X": (1.0, 0.0, 0.0),
    "Y": (0.0, 1.0, 0.0),
    "Z": (0.0, 0.0, 1.0),
    "H": (_F, 0.0, _F),
}


class StrategyError(Exception):
    """Strategy code misbehaved; reported back to the parent as a failed job."""


def coerce_move(move) -> bool:
    # Loose on purpose, so 'x ^ y' on ints is fine.
    if isinstance(move, (bool, np.bool_)):
        return bool(move)
    if isinstance(move, numbers.Real) and move in (0, 1):
        return bool(move)
    raise StrategyError(f"'move' variable ended up {move!r} instead of true or false")


def _check_names(code: types.CodeType, label: str):
    # Dunder lookups reach __builtins__, closures and class internals.
    for name in code.co_names:
        if name.startswith("__"):
            raise StrategyError(f"strategy {label}: access to {name!r} is not allowed")
    for const in code.co_consts:
        if isinstance(const, types.CodeType):
            _check_names(const, label)


def compile_strategy(code: str, label: str):
    try:
        program = compile(code, f"<strategy {label}>", "exec")
    except SyntaxError as e:
        raise StrategyError(f"strategy {label}: SyntaxError: {e.msg} (line {e.lineno})") from e
    _check_names(program, label)
    return program


def _math_copy() -> types.SimpleNamespace:
    return types.SimpleNamespace(**{k: v for k, v in vars(math).items() if not k.startswith("_")})


def _base_namespace(ref_choice: bool, rand: Optional[random.Random] = None) -> dict:
    # Fresh objects each time: strategies sharing a process must not share state.
    return {
        "__builtins__": dict(SAFE_BUILTINS),
        "math": _math_copy(),
        "random": rand if rand is not None else random.Random(),
        "pi": math.pi,
        "true": True,
        "false": False,
        "refChoice": ref_choice,
        "refchoice": ref_choice,
        "ref_choice": ref_choice,
        "move": None,
    }


def classical_namespace(ref_choice: bool, shared_bits: list[bool],
                        rand: Optional[random.Random] = None) -> dict:
    ns = _base_namespace(ref_choice, rand)
    ns["sharedBits"] = ns["sharedbits"] = ns["shared_bits"] = shared_bits
    return ns


def quantum_namespace(ref_choice: bool, state: StateVector, qubit: int,
                      rand: Optional[random.Random] = None) -> dict:
    """Namespace whose turn/measure act on ``qubit`` of ``state`` only."""

    def turn(axis="X", degrees=180):
        if isinstance(axis, str):
            try:
                axis = AXES[axis.upper()]
            except KeyError:
                raise StrategyError(f"unknown axis {axis!r}, expected one of {sorted(AXES)}") from None
        state.rotate(qubit, axis, math.radians(degrees))

    def measure():
        return state.measure(qubit)

    ns = _base_namespace(ref_choice, rand)
    ns.update(AXES)
    ns["turn"] = turn
    ns["measure"] = measure
    return ns


def play(program, namespace: dict, label: str) -> bool:
    try:
        exec(program, namespace)
    except StrategyError:
        raise
    except Exception as e:
        raise StrategyError(f"strategy {label}: {type(e).__name__}: {e}") from e
    return coerce_move(namespace.get("move"))


def run_classical(job: dict) -> dict:
    program = compile_strategy(job["code"], job.get("label", "?"))
    rounds = int(job["rounds"])
    bit_count = int(job["shared_bit_count"])
    ref_mask = int(job["ref_mask"])
    shared = job["shared"]
    if len(shared) != rounds:
        raise StrategyError(f"expected {rounds} shared values, got {len(shared)}")

    rand = random.Random(job.get("seed"))
    moves = []
    for i in range(rounds):
        # Cycling instead of flipping coins gives exact coverage when rounds % 4 == 0.
        ref_choice = (i & ref_mask) != 0
        bits = [(shared[i] >> k) & 1 == 1 for k in range(bit_count)]
        moves.append(play(program, classical_namespace(ref_choice, bits, rand), job.get("label", "?")))
    return {"moves": moves}


def run_quantum(job: dict) -> dict:
    program_a = compile_strategy(job["code_a"], "A")
    program_b = compile_strategy(job["code_b"], "B")
    refs_a = [bool(r) for r in job["refs_a"]]
    refs_b = [bool(r) for r in job["refs_b"]]
    if len(refs_a) != len(refs_b):
        raise StrategyError("referee choice lists differ in length")
    rng = np.random.default_rng(job.get("seed"))
    # One random.Random per player, seeded apart from the measurement stream.
    rand_a, rand_b = (random.Random(int(s)) for s in rng.integers(0, 2**62, size=2))

    moves_a, moves_b = [], []
    for ref_a, ref_b in zip(refs_a, refs_b):
        state = StateVector.bell_pair(rng=rng)
        moves_a.append(play(program_a, quantum_namespace(ref_a, state, 0, rand_a), "A"))
        moves_b.append(play(program_b, quantum_namespace(ref_b, state, 1, rand_b), "B"))
    return {"moves_a": moves_a, "moves_b": moves_b}


JOBS = {
    "classical": run_classical,
    "quantum": run_quantum,
}


def handle(job: dict) -> dict:
    kind = job.get("kind")
    if kind not in JOBS:
        return {"ok": False, "error": f"unknown job kind {kind!r}"}
    try:
        return {"ok": True, **JOBS[kind](job)}
    except StrategyError as e:
        return {"ok": False, "error": str(e)}


def main():
    reply_stream = sys.stdout
    # Anything a strategy prints must not end up in the reply.
    sys.stdout = sys.stderr
    job = json.load(sys.stdin)
    json.dump(handle(job), reply_stream)
    reply_stream.flush()


if __name__ == "__main__":
    main()
