"""Tests for the solver module.

Most tests run the real ``python-sat`` backend on tiny circuits. Timeout,
cancellation and failure handling use a fake backend patched into
``pyalloy.solver`` so they do not depend on the speed of the machine.
"""

import threading

import pytest

import pyalloy.solver as solver_module
from pyalloy.boolean import FALSE, TRUE, BooleanCircuit
from pyalloy.exceptions import SolverError
from pyalloy.solver import Sat, SolverAdapter, Timeout, Unsat, tseitin


@pytest.fixture
def circuit():
    """Create an empty BooleanCircuit for testing."""
    return BooleanCircuit()


@pytest.fixture
def adapter():
    """Create a SolverAdapter with the default backend."""
    return SolverAdapter()


class FakeSolver:
    """Backend that blocks until interrupted, or fails on request."""

    fail_on_solve = False
    supports_phases = True

    def __init__(self, name=None, bootstrap_with=None):
        self.interrupted = threading.Event()
        self.deleted = False

    def set_phases(self, literals=None):
        if not self.supports_phases:
            raise NotImplementedError

    def clear_interrupt(self):
        self.interrupted.clear()

    def interrupt(self):
        self.interrupted.set()

    def solve_limited(self, assumptions=None, expect_interrupt=False):
        if self.fail_on_solve:
            raise RuntimeError("backend crashed")
        self.interrupted.wait(5)
        return None

    def get_model(self):
        return []

    def add_clause(self, clause):
        pass

    def delete(self):
        self.deleted = True


@pytest.fixture
def fake_backend(monkeypatch):
    """Replace the python-sat Solver with ``FakeSolver``."""
    monkeypatch.setattr(solver_module, "Solver", FakeSolver)
    monkeypatch.setattr(FakeSolver, "fail_on_solve", False)
    monkeypatch.setattr(FakeSolver, "supports_phases", True)
    return FakeSolver


# =============================================================================
# CNF conversion
# =============================================================================


class TestTseitin:
    """Test conversion of circuit roots to clauses."""

    def test_true_variable_is_fixed(self, circuit):
        """Test that the first clause pins the constant-true variable."""
        assert tseitin(circuit, [])[0] == [TRUE]

    def test_positive_and_is_split(self, circuit):
        """Test that an asserted AND becomes unit clauses."""
        a, b = circuit.new_var(), circuit.new_var()
        clauses = tseitin(circuit, [circuit.and_(a, -b)])
        assert sorted(clauses) == sorted([[TRUE], [a], [-b]])

    def test_negative_and_is_one_clause(self, circuit):
        """Test that an asserted NAND is a single clause."""
        a, b = circuit.new_var(), circuit.new_var()
        clauses = tseitin(circuit, [-circuit.and_(a, b)])
        assert sorted(map(sorted, clauses)) == sorted([[TRUE], sorted([-a, -b])])

    def test_nested_gate_is_defined(self, circuit):
        """Test that a gate under a clause gets both directions of its definition."""
        a, b, c = (circuit.new_var() for _ in range(3))
        inner = circuit.and_(a, b)
        clauses = tseitin(circuit, [circuit.or_(inner, c)])
        as_sets = [frozenset(clause) for clause in clauses]
        assert frozenset({inner, c}) in as_sets
        assert frozenset({-inner, a}) in as_sets
        assert frozenset({-inner, b}) in as_sets
        assert frozenset({inner, -a, -b}) in as_sets

    def test_false_root(self, circuit):
        """Test that asserting FALSE adds an unsatisfiable unit clause."""
        assert [FALSE] in tseitin(circuit, [FALSE])


# =============================================================================
# Solving with the real backend
# =============================================================================


class TestSolve:
    """Test satisfiability answers from the backend."""

    def test_sat(self, circuit, adapter):
        """Test a satisfiable conjunction."""
        a, b = circuit.new_var(), circuit.new_var()
        outcome = adapter.solve(circuit, [circuit.and_(a, -b)])
        assert isinstance(outcome, Sat)
        assert a in outcome.true_vars
        assert b not in outcome.true_vars
        assert outcome.solve_ms >= 0

    def test_unsat(self, circuit, adapter):
        """Test contradictory roots."""
        a, b = circuit.new_var(), circuit.new_var()
        outcome = adapter.solve(circuit, [circuit.and_(a, b), -a])
        assert isinstance(outcome, Unsat)

    def test_constant_false(self, circuit, adapter):
        """Test that a folded contradiction is UNSAT."""
        assert isinstance(adapter.solve(circuit, [FALSE]), Unsat)

    def test_preferred_assumptions_are_used(self, circuit, adapter):
        """Test that satisfiable preferences shape the answer."""
        a, b = circuit.new_var(), circuit.new_var()
        outcome = adapter.solve(circuit, [circuit.or_(a, b)], preferred=[-a, b])
        assert b in outcome.true_vars and a not in outcome.true_vars

    def test_preferred_assumptions_fall_back(self, circuit, adapter):
        """Test that failing preferences do not turn SAT into UNSAT."""
        a, b = circuit.new_var(), circuit.new_var()
        outcome = adapter.solve(circuit, [circuit.or_(a, b)], preferred=[-a, -b])
        assert isinstance(outcome, Sat)

    def test_session_enumeration(self, circuit, adapter):
        """Test blocking clauses over the primary variables."""
        a, b = circuit.new_var(), circuit.new_var()
        found = []
        with adapter.session(circuit, [circuit.or_(a, b)]) as session:
            while True:
                outcome = session.solve()
                if not isinstance(outcome, Sat):
                    break
                model = tuple(v in outcome.true_vars for v in (a, b))
                found.append(model)
                session.block(
                    -v if v in outcome.true_vars else v for v in (a, b)
                )
        assert sorted(found) == [(False, True), (True, False), (True, True)]


# =============================================================================
# Timeouts, cancellation and failures
# =============================================================================


class TestInterruption:
    """Test that interrupted searches report Timeout."""

    def test_cancel_before_start(self, circuit, adapter):
        """Test that an already-set cancel event returns at once."""
        cancel = threading.Event()
        cancel.set()
        a = circuit.new_var()
        assert isinstance(adapter.solve(circuit, [a], cancel=cancel), Timeout)

    def test_zero_timeout(self, circuit, adapter):
        """Test that an exhausted budget never reaches the backend."""
        a = circuit.new_var()
        assert isinstance(adapter.solve(circuit, [a], timeout=0), Timeout)

    def test_deadline_interrupts_backend(self, circuit, fake_backend):
        """Test that the watchdog interrupts a long search."""
        a = circuit.new_var()
        outcome = SolverAdapter().solve(circuit, [a], timeout=0.05)
        assert isinstance(outcome, Timeout)
        assert outcome.solve_ms > 0

    def test_cancel_during_search(self, circuit, fake_backend):
        """Test cancelling from another thread while the backend runs."""
        a = circuit.new_var()
        cancel = threading.Event()
        timer = threading.Timer(0.05, cancel.set)
        timer.start()
        try:
            outcome = SolverAdapter().solve(circuit, [a], cancel=cancel)
        finally:
            timer.cancel()
        assert isinstance(outcome, Timeout)

    def test_backend_failure(self, circuit, fake_backend):
        """Test that a crashing backend raises SolverError."""
        fake_backend.fail_on_solve = True
        a = circuit.new_var()
        with pytest.raises(SolverError, match="backend crashed"):
            SolverAdapter().solve(circuit, [a])

    def test_backend_cannot_start(self, circuit, monkeypatch):
        """Test that a backend that cannot be created raises SolverError."""

        def broken(**kwargs):
            raise ValueError("no such solver")

        monkeypatch.setattr(solver_module, "Solver", broken)
        with pytest.raises(SolverError, match="Cannot start"):
            SolverAdapter("missing").solve(circuit, [circuit.new_var()])

    def test_phases_not_supported(self, circuit, fake_backend):
        """Test that a backend without phase hints is still usable."""
        fake_backend.supports_phases = False
        a = circuit.new_var()
        outcome = SolverAdapter().solve(circuit, [a], timeout=0.05, phases=[a])
        assert isinstance(outcome, Timeout)
