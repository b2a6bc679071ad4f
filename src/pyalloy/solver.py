"""SAT solver adapter.

Converts circuit literals to CNF with the Tseitin transformation and hands
the clauses to a ``python-sat`` backend. The backend call is the only
blocking step of an analysis, so it is also the only place where a timeout
or a cancellation request takes effect: a watchdog thread interrupts the
backend, and the interrupted call is reported as ``Timeout``, never as UNSAT.

Example:
    >>> from pyalloy.boolean import BooleanCircuit
    >>> circuit = BooleanCircuit()
    >>> a, b = circuit.new_var(), circuit.new_var()
    >>> outcome = SolverAdapter().solve(circuit, [circuit.and_(a, -b)])
    >>> isinstance(outcome, Sat)
    True
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Set, Union

from pysat.solvers import Solver

from pyalloy.boolean import FALSE, TRUE, BooleanCircuit
from pyalloy.exceptions import SolverError
from pyalloy.logger import LOGGER

WATCHDOG_INTERVAL = 0.02


@dataclass(frozen=True)
class Sat:
    """A satisfying assignment, given as the set of true variables."""

    true_vars: frozenset
    solve_ms: float = 0.0


@dataclass(frozen=True)
class Unsat:
    solve_ms: float = 0.0


@dataclass(frozen=True)
class Timeout:
    """The budget ran out or the caller cancelled before an answer."""

    solve_ms: float = 0.0


Outcome = Union[Sat, Unsat, Timeout]


def tseitin(circuit: BooleanCircuit, roots: Iterable[int]) -> List[List[int]]:
    """Clauses that are satisfiable exactly when all ``roots`` can be true.

    Asserting a positive AND gate asserts its inputs directly, without a
    gate variable. Only gates reached in other positions are defined, with
    both directions of the equivalence, so shared sub-circuits are encoded
    once.
    """
    clauses: List[List[int]] = [[TRUE]]
    asserted: Set[int] = set()
    defined: Set[int] = set()
    to_define: List[int] = []
    to_assert: List[int] = list(roots)

    while to_assert:
        literal = to_assert.pop()
        if literal in asserted or literal == TRUE:
            continue
        asserted.add(literal)
        if literal == FALSE:
            clauses.append([FALSE])
            continue
        inputs = circuit.gates.get(abs(literal))
        if inputs is None:
            clauses.append([literal])
        elif literal > 0:
            to_assert.extend(inputs)
        else:
            clauses.append([-lit for lit in inputs])
            to_define.extend(lit for lit in inputs if circuit.is_gate(lit))

    while to_define:
        gate = abs(to_define.pop())
        if gate in defined:
            continue
        defined.add(gate)
        inputs = circuit.gates[gate]
        for lit in inputs:
            clauses.append([-gate, lit])
        clauses.append([gate] + [-lit for lit in inputs])
        to_define.extend(lit for lit in inputs if circuit.is_gate(lit))
    return clauses


class SolverSession:
    """One backend instance loaded with a CNF; supports repeated solving.

    Used as a context manager so the native solver is always released.
    """

    def __init__(
        self,
        solver_name: str,
        clauses: List[List[int]],
        phases: Optional[Sequence[int]] = None,
    ):
        self.solver_name = solver_name
        try:
            self.solver = Solver(name=solver_name, bootstrap_with=clauses)
        except Exception as error:
            raise SolverError(
                f"Cannot start SAT backend '{solver_name}': {error}"
            ) from error
        if phases:
            try:
                self.solver.set_phases(literals=list(phases))
            except NotImplementedError:
                LOGGER.info("Backend '%s' does not support phase hints", solver_name)

    def __enter__(self) -> "SolverSession":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    def close(self) -> None:
        self.solver.delete()

    def block(self, literals: Iterable[int]) -> None:
        """Add a clause, typically one excluding the previous solution."""
        self.solver.add_clause(list(literals))

    def solve(
        self,
        assumptions: Sequence[int] = (),
        deadline: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> Outcome:
        """Solve under assumptions, stopping at ``deadline`` or on ``cancel``.

        Args:
            assumptions: Literals assumed true for this call only.
            deadline: ``time.monotonic()`` value after which to give up.
            cancel: Event that aborts the call when set.

        Returns:
            Sat, Unsat or Timeout.

        Raises:
            SolverError: If the backend fails.
        """
        if cancel is not None and cancel.is_set():
            return Timeout()
        if deadline is not None and time.monotonic() >= deadline:
            return Timeout()

        finished = threading.Event()
        watchdog = None
        if deadline is not None or cancel is not None:
            watchdog = threading.Thread(
                target=self._watch,
                args=(finished, deadline, cancel),
                name="pyalloy-solver-watchdog",
                daemon=True,
            )
        start = time.perf_counter()
        self.solver.clear_interrupt()
        if watchdog is not None:
            watchdog.start()
        try:
            result = self.solver.solve_limited(
                assumptions=list(assumptions), expect_interrupt=True
            )
        except Exception as error:
            raise SolverError(f"SAT backend '{self.solver_name}' failed: {error}") from error
        finally:
            finished.set()
            if watchdog is not None:
                watchdog.join()
        elapsed = (time.perf_counter() - start) * 1000.0

        if result is None:
            LOGGER.info("SAT backend interrupted after %.1f ms", elapsed)
            return Timeout(solve_ms=elapsed)
        if result:
            model = self.solver.get_model() or []
            return Sat(true_vars=frozenset(v for v in model if v > 0), solve_ms=elapsed)
        return Unsat(solve_ms=elapsed)

    def _watch(
        self,
        finished: threading.Event,
        deadline: Optional[float],
        cancel: Optional[threading.Event],
    ) -> None:
        while not finished.wait(WATCHDOG_INTERVAL):
            expired = deadline is not None and time.monotonic() >= deadline
            if expired or (cancel is not None and cancel.is_set()):
                self.solver.interrupt()
                return


class SolverAdapter:
    """Front door to the SAT backend.

    Attributes:
        solver_name: ``python-sat`` solver name, e.g. ``"m22"`` or ``"cd15"``.
    """

    def __init__(self, solver_name: str = "m22"):
        self.solver_name = solver_name

    def session(
        self,
        circuit: BooleanCircuit,
        roots: Iterable[int],
        phases: Optional[Sequence[int]] = None,
    ) -> SolverSession:
        clauses = tseitin(circuit, roots)
        LOGGER.debug(
            "CNF: %d variables, %d clauses", circuit.num_vars, len(clauses)
        )
        return SolverSession(self.solver_name, clauses, phases)

    def solve(
        self,
        circuit: BooleanCircuit,
        roots: Iterable[int],
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
        phases: Optional[Sequence[int]] = None,
        preferred: Sequence[int] = (),
    ) -> Outcome:
        """Decide whether all ``roots`` can hold at once.

        Args:
            circuit: Circuit the roots belong to.
            roots: Literals that must all be true.
            timeout: Budget in seconds, or None for no limit.
            cancel: Event that aborts the search when set.
            phases: Polarity hints for the backend.
            preferred: Literals tried as assumptions first; if they make the
                problem unsatisfiable the search is repeated without them.

        Returns:
            Sat, Unsat or Timeout.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self.session(circuit, roots, phases) as session:
            if preferred:
                outcome = session.solve(preferred, deadline, cancel)
                if not isinstance(outcome, Unsat):
                    return outcome
                LOGGER.debug("Preferred assumptions failed, solving without them")
            outcome = session.solve((), deadline, cancel)
        LOGGER.debug("Solver outcome: %s", type(outcome).__name__)
        return outcome
