"""Tests for the matrix module.

Constant matrices are used where possible so that expected results can be
written as plain sets of tuples.
"""

import itertools

import pytest

from pyalloy.boolean import FALSE, TRUE, BooleanCircuit
from pyalloy.matrix import Matrix


@pytest.fixture
def circuit():
    """Create an empty BooleanCircuit for testing."""
    return BooleanCircuit()


def rel(circuit, *tuples):
    """Build a constant matrix from tuples; arity is taken from the first."""
    arity = len(tuples[0]) if tuples else 1
    return Matrix.constant(circuit, arity, tuples)


def tuples_of(matrix):
    """The tuples a constant matrix certainly contains."""
    return {t for t, lit in matrix.items() if lit == TRUE}


class TestConstruction:
    """Test building and inspecting matrices."""

    def test_false_entries_are_dropped(self, circuit):
        """Test that FALSE literals are not stored."""
        matrix = Matrix(circuit, 1, {(0,): FALSE, (1,): TRUE})
        assert len(matrix) == 1
        assert matrix.get((0,)) == FALSE
        assert matrix.get((1,)) == TRUE

    def test_equality_and_key(self, circuit):
        """Test structural equality."""
        assert rel(circuit, (0, 1), (1, 2)) == rel(circuit, (1, 2), (0, 1))
        assert rel(circuit, (0, 1)).key() == rel(circuit, (0, 1)).key()
        assert rel(circuit, (0,)) != rel(circuit, (1,))

    def test_singleton(self, circuit):
        """Test the one-atom set used for quantified variables."""
        assert Matrix.singleton(circuit, 2) == rel(circuit, (2,))
        assert Matrix.singleton(circuit, 2).arity == 1


class TestSetOperations:
    """Test union, intersection, difference and override."""

    def test_union_intersection_difference(self, circuit):
        """Test the basic set operations on constant relations."""
        a = rel(circuit, (0,), (1,))
        b = rel(circuit, (1,), (2,))
        assert tuples_of(a.union(b)) == {(0,), (1,), (2,)}
        assert tuples_of(a.intersection(b)) == {(1,)}
        assert tuples_of(a.difference(b)) == {(0,)}

    def test_override(self, circuit):
        """Test that override replaces tuples sharing a first atom."""
        r = rel(circuit, (0, 1), (1, 2))
        s = rel(circuit, (0, 2))
        assert tuples_of(r.override(s)) == {(0, 2), (1, 2)}

    def test_union_with_variables(self, circuit):
        """Test that a union entry is the disjunction of both literals."""
        x, y = circuit.new_var(), circuit.new_var()
        a = Matrix(circuit, 1, {(0,): x})
        b = Matrix(circuit, 1, {(0,): y})
        literal = a.union(b).get((0,))
        assert circuit.evaluate(literal, [y])
        assert not circuit.evaluate(literal, [])


class TestRelationalOperations:
    """Test join, product, transpose, closure and restrictions."""

    def test_join(self, circuit):
        """Test joining a set with a binary relation."""
        edges = rel(circuit, (0, 1), (1, 2), (2, 0))
        assert tuples_of(rel(circuit, (0,)).join(edges)) == {(1,)}
        composed = edges.join(edges)
        assert composed.arity == 2
        assert tuples_of(composed) == {(0, 2), (1, 0), (2, 1)}

    def test_product(self, circuit):
        """Test the cartesian product."""
        product = rel(circuit, (0,), (1,)).product(rel(circuit, (2,)))
        assert product.arity == 2
        assert tuples_of(product) == {(0, 2), (1, 2)}

    def test_transpose(self, circuit):
        """Test swapping the columns of a binary relation."""
        assert tuples_of(rel(circuit, (0, 1)).transpose()) == {(1, 0)}

    def test_closure_of_chain(self, circuit):
        """Test the transitive closure of a four-atom chain."""
        chain = rel(circuit, (0, 1), (1, 2), (2, 3))
        assert tuples_of(chain.closure()) == {
            (0, 1), (0, 2), (0, 3), (1, 2), (1, 3), (2, 3),
        }

    def test_closure_of_cycle(self, circuit):
        """Test that a cycle closes onto every pair, including the diagonal."""
        cycle = rel(circuit, (0, 1), (1, 2), (2, 0))
        closure = cycle.closure()
        assert tuples_of(closure) == {(a, b) for a in range(3) for b in range(3)}

    def test_closure_is_idempotent(self, circuit):
        """Test that closing a closed relation changes nothing."""
        closed = rel(circuit, (0, 1), (1, 2)).closure()
        assert closed.closure() == closed

    def test_closure_is_idempotent_with_variables(self, circuit):
        """Test that re-closing agrees with one closure under every assignment."""
        edges = {
            (a, b): circuit.new_var() for a in range(3) for b in range(3) if a != b
        }
        closed = Matrix(circuit, 2, edges).closure()
        reclosed = closed.closure()
        variables = list(edges.values())
        for bits in itertools.product([False, True], repeat=len(variables)):
            true_vars = [v for v, bit in zip(variables, bits) if bit]
            for pair in set(closed.entries) | set(reclosed.entries):
                assert circuit.evaluate(closed.get(pair), true_vars) == circuit.evaluate(
                    reclosed.get(pair), true_vars
                )

    def test_closure_with_variables(self, circuit):
        """Test the closure literal of a two-step path."""
        x, y = circuit.new_var(), circuit.new_var()
        edges = Matrix(circuit, 2, {(0, 1): x, (1, 2): y})
        literal = edges.closure().get((0, 2))
        assert circuit.evaluate(literal, [x, y])
        assert not circuit.evaluate(literal, [x])

    def test_reflexive_closure(self, circuit):
        """Test that the reflexive closure adds the identity."""
        iden = rel(circuit, (0, 0), (1, 1))
        result = rel(circuit, (0, 1)).reflexive_closure(iden)
        assert tuples_of(result) == {(0, 0), (0, 1), (1, 1)}

    def test_restrictions(self, circuit):
        """Test domain and range restriction."""
        r = rel(circuit, (0, 1), (1, 2))
        assert tuples_of(r.domain_restriction(rel(circuit, (0,)))) == {(0, 1)}
        assert tuples_of(r.range_restriction(rel(circuit, (0,)))) == set()


class TestFormulas:
    """Test the formulas built from matrices."""

    def test_multiplicities_of_constants(self, circuit):
        """Test some, no, lone and one on constant relations."""
        empty = Matrix(circuit, 1)
        single = rel(circuit, (0,))
        pair = rel(circuit, (0,), (1,))
        assert empty.no() == TRUE and empty.some() == FALSE
        assert single.one() == TRUE and single.lone() == TRUE
        assert pair.lone() == FALSE and pair.some() == TRUE

    def test_subset_and_equality(self, circuit):
        """Test subset and equality of constant relations."""
        a = rel(circuit, (0,))
        b = rel(circuit, (0,), (1,))
        assert a.subset_of(b) == TRUE
        assert b.subset_of(a) == FALSE
        assert a.equals(rel(circuit, (0,))) == TRUE

    def test_one_with_variables(self, circuit):
        """Test the exactly-one literal over two variable tuples."""
        x, y = circuit.new_var(), circuit.new_var()
        matrix = Matrix(circuit, 1, {(0,): x, (1,): y})
        literal = matrix.one()
        assert circuit.evaluate(literal, [x])
        assert not circuit.evaluate(literal, [x, y])
        assert not circuit.evaluate(literal, [])
