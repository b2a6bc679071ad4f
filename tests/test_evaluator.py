"""Tests for the evaluator module.

The translator is driven directly with hand-built typed nodes over a single
signature ``A`` of three atoms and one binary field ``r``.
"""

import pytest

from pyalloy.ast_models import BinaryOp, IntCompareOp, Quantifier, UnaryOp
from pyalloy.boolean import FALSE, TRUE, BooleanCircuit
from pyalloy.evaluator import Translator, free_variables
from pyalloy.matrix import Matrix
from pyalloy.typed_models import (
    AndF,
    BinaryRel,
    Binding,
    CardinalityOf,
    Equal,
    FieldRef,
    IntTest,
    IntValue,
    MultTest,
    NotF,
    PredCall,
    QuantifiedF,
    SetComprehension,
    SigRef,
    Subset,
    TypedPredicate,
    UnaryRel,
    Variable,
    VarRef,
)

A_TYPE = frozenset({0})
A = SigRef(types=(A_TYPE,), sig=0, name="A")
R = FieldRef(types=(A_TYPE, A_TYPE), field=0, name="r")
X = Variable(0, "x")
Y = Variable(1, "y")
X_REF = VarRef(types=(A_TYPE,), var=X)
Y_REF = VarRef(types=(A_TYPE,), var=Y)


def join(left, right):
    return BinaryRel(
        types=left.types[:-1] + right.types[1:], op=BinaryOp.JOIN, left=left, right=right
    )


def make_translator(edges, circuit=None):
    """A translator over atoms 0..2 with ``r`` set to the given matrix entries."""
    circuit = circuit or BooleanCircuit()
    atoms = Matrix.constant(circuit, 1, [(0,), (1,), (2,)])
    r = Matrix(circuit, 2, dict(edges))
    return Translator(circuit, [atoms], [r], atoms)


@pytest.fixture
def cycle():
    """A translator where ``r`` is the constant cycle 0 -> 1 -> 2 -> 0."""
    return make_translator({(0, 1): TRUE, (1, 2): TRUE, (2, 0): TRUE})


@pytest.fixture
def chain():
    """A translator where ``r`` is the constant chain 0 -> 1 -> 2."""
    return make_translator({(0, 1): TRUE, (1, 2): TRUE})


class TestExpressions:
    """Test compiling relational expressions."""

    def test_signature_and_field(self, cycle):
        """Test that references return the bound matrices."""
        assert len(cycle.expr(A)) == 3
        assert cycle.expr(R).arity == 2

    def test_join_and_closure(self, chain):
        """Test a join through a closure."""
        closure = UnaryRel(types=R.types, op=UnaryOp.CLOSURE, operand=R)
        reach = chain.expr(join(A, closure))
        assert set(reach.entries) == {(1,), (2,)}

    def test_identity(self, cycle):
        """Test that ``iden`` covers every existing atom."""
        assert set(cycle.iden.entries) == {(0, 0), (1, 1), (2, 2)}

    def test_comprehension(self, chain):
        """Test ``{ x: A | some x.r }``."""
        comprehension = SetComprehension(
            types=(A_TYPE,),
            bindings=(Binding(var=X, domain=A),),
            body=MultTest(Quantifier.SOME, join(X_REF, R)),
        )
        result = chain.expr(comprehension)
        assert {t for t, lit in result.items() if lit == TRUE} == {(0,), (1,)}

    def test_memoized(self, cycle):
        """Test that compiling the same expression twice reuses the matrix."""
        assert cycle.expr(join(A, R)) is cycle.expr(join(A, R))


class TestQuantifiers:
    """Test quantifier expansion."""

    def every_atom_has_successor(self):
        return QuantifiedF(
            kind=Quantifier.ALL,
            bindings=(Binding(var=X, domain=A),),
            body=MultTest(Quantifier.SOME, join(X_REF, R)),
        )

    def test_universal(self, cycle, chain):
        """Test ``all x: A | some x.r``."""
        assert cycle.formula(self.every_atom_has_successor()) == TRUE
        assert chain.formula(self.every_atom_has_successor()) == FALSE

    @pytest.mark.parametrize(
        "kind, expected",
        [
            (Quantifier.SOME, TRUE),
            (Quantifier.NO, FALSE),
            (Quantifier.ONE, TRUE),
            (Quantifier.LONE, TRUE),
        ],
    )
    def test_counting_quantifiers(self, chain, kind, expected):
        """Test quantifiers over ``x`` with no successor; only atom 2 qualifies."""
        formula = QuantifiedF(
            kind=kind,
            bindings=(Binding(var=X, domain=A),),
            body=MultTest(Quantifier.NO, join(X_REF, R)),
        )
        assert chain.formula(formula) == expected

    def test_disjoint_variables(self, cycle):
        """Test that disj variables never take the same atom."""
        formula = QuantifiedF(
            kind=Quantifier.SOME,
            bindings=(
                Binding(var=X, domain=A, disj_group=0),
                Binding(var=Y, domain=A, disj_group=0),
            ),
            body=Equal(X_REF, Y_REF),
        )
        assert cycle.formula(formula) == FALSE

    def test_guards_on_variable_domain(self):
        """Test that a quantifier only ranges over atoms that exist."""
        circuit = BooleanCircuit()
        present = circuit.new_var()
        domain = Matrix(circuit, 1, {(0,): present})
        translator = Translator(circuit, [domain], [Matrix(circuit, 2)], domain)
        formula = QuantifiedF(
            kind=Quantifier.ALL,
            bindings=(Binding(var=X, domain=A),),
            body=MultTest(Quantifier.SOME, join(X_REF, R)),
        )
        literal = translator.formula(formula)
        assert circuit.evaluate(literal, [])
        assert not circuit.evaluate(literal, [present])


class TestIntegers:
    """Test cardinality comparisons."""

    @pytest.mark.parametrize(
        "op, value, expected",
        [
            (IntCompareOp.EQ, 3, TRUE),
            (IntCompareOp.NEQ, 3, FALSE),
            (IntCompareOp.GT, 2, TRUE),
            (IntCompareOp.GT, 3, FALSE),
            (IntCompareOp.LT, 4, TRUE),
            (IntCompareOp.LTE, 3, TRUE),
            (IntCompareOp.GTE, 4, FALSE),
        ],
    )
    def test_constant_cardinality(self, cycle, op, value, expected):
        """Test ``#r op value`` where ``r`` has three tuples."""
        test = IntTest(op, CardinalityOf(R), IntValue(value))
        assert cycle.formula(test) == expected

    def test_variable_cardinality(self):
        """Test ``#r >= 2`` over variable tuples."""
        circuit = BooleanCircuit()
        a, b, c = (circuit.new_var() for _ in range(3))
        translator = make_translator({(0, 1): a, (1, 2): b, (2, 0): c}, circuit)
        literal = translator.formula(
            IntTest(IntCompareOp.GTE, CardinalityOf(R), IntValue(2))
        )
        assert circuit.evaluate(literal, [a, c])
        assert not circuit.evaluate(literal, [b])

    def test_compare_two_cardinalities(self, chain):
        """Test ``#A > #r`` with three atoms and two tuples."""
        test = IntTest(IntCompareOp.GT, CardinalityOf(A), CardinalityOf(R))
        assert chain.formula(test) == TRUE


class TestPredicates:
    """Test inlining of predicate calls."""

    def test_call_binds_parameters(self, chain):
        """Test calling ``p[x] { some x.r }`` with each atom."""
        param = Binding(var=X, domain=A)
        chain.predicates["p"] = TypedPredicate(
            name="p", params=(param,), body=MultTest(Quantifier.SOME, join(X_REF, R))
        )
        call = PredCall(pred="p", args=(join(A, R),))
        # A.r = {1, 2}, and 1 has a successor
        assert chain.formula(call) == TRUE

    def test_connectives(self, cycle):
        """Test negation and conjunction of compiled formulas."""
        subset = Subset(join(A, R), A)
        assert cycle.formula(AndF((subset, NotF(subset)))) == FALSE


class TestFreeVariables:
    """Test free variable analysis."""

    def test_bound_variables_are_not_free(self):
        """Test that a quantifier binds its variables."""
        body = Equal(X_REF, Y_REF)
        formula = QuantifiedF(
            kind=Quantifier.ALL, bindings=(Binding(var=X, domain=A),), body=body
        )
        assert free_variables(body) == {X, Y}
        assert free_variables(formula) == {Y}

    def test_domain_sees_outer_variables(self):
        """Test that a domain mentioning an outer variable keeps it free."""
        formula = QuantifiedF(
            kind=Quantifier.SOME,
            bindings=(Binding(var=Y, domain=join(X_REF, R)),),
            body=MultTest(Quantifier.SOME, Y_REF),
        )
        assert free_variables(formula) == {X}
