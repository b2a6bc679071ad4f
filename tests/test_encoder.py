"""Tests for the encoder module.

Structural constraints are checked by evaluating them against hand-built
instances rather than by calling a SAT solver.
"""

import pytest

from pyalloy.boolean import TRUE
from pyalloy.encoder import compute_bounds, encode, merge_scope
from pyalloy.exceptions import ScopeError
from pyalloy.grammar_parser import parse
from pyalloy.resolver import resolve
from pyalloy.typed_models import TypedScope, TypedTypeScope

HIERARCHY = """
abstract sig Person {}
sig Man, Woman extends Person {}
one sig Adam extends Man {}
"""


def typed(source):
    """Parse and resolve a model source."""
    return resolve(parse(source))


def scope_of(source, index=0):
    """Resolve a model and return one of its commands' scopes."""
    model = typed(source)
    return model, model.commands[index].scope


def bounds_by_name(model, bounds):
    return {model.signatures.name_of(sig): n for sig, n in bounds.bounds.items()}


def holds(encoding, true_vars):
    """True if every structural constraint holds under the assignment."""
    values = encoding.circuit.evaluate_all(true_vars)
    return all(
        values.get(abs(lit), False) == (lit > 0) for lit in encoding.base_constraints
    )


@pytest.fixture
def graph():
    """Encoding of a single signature with a binary field, scope 2."""
    return encode(typed("sig A { r: set A }"), TypedScope(default=2))


# =============================================================================
# Bounds
# =============================================================================


class TestComputeBounds:
    """Test how scopes become per-signature bounds."""

    def test_defaults(self):
        """Test default scope, inheritance and one-sig bounds."""
        model = typed(HIERARCHY)
        bounds = compute_bounds(model.signatures, TypedScope(), 3)
        assert bounds_by_name(model, bounds) == {
            "Person": 3, "Man": 3, "Woman": 3, "Adam": 1,
        }
        assert not bounds.exact

    def test_command_default_wins(self):
        """Test that a command's default replaces the global one."""
        model = typed(HIERARCHY)
        bounds = compute_bounds(model.signatures, TypedScope(default=5), 3)
        assert bounds_by_name(model, bounds)["Person"] == 5

    def test_abstract_sum_of_children(self):
        """Test that a fully scoped abstract signature gets the sum."""
        model, scope = scope_of(HIERARCHY + "run {} for 3 but 2 Man, 1 Woman")
        bounds = bounds_by_name(model, compute_bounds(model.signatures, scope, 3))
        assert bounds["Person"] == 3
        assert bounds["Man"] == 2
        assert bounds["Woman"] == 1

    def test_explicit_child_above_parent(self):
        """Test that a child scoped above its parent is an error."""
        model, scope = scope_of(HIERARCHY + "run {} for 2 but 3 Man")
        with pytest.raises(ScopeError, match="exceeds"):
            compute_bounds(model.signatures, scope, 3)

    def test_implicit_child_is_clamped(self):
        """Test that a derived bound never exceeds the parent's."""
        model, scope = scope_of(
            """
            sig A {}
            abstract sig B extends A {}
            sig C, D extends B {}
            run {} for 2 but 2 C, 2 D
            """
        )
        bounds = bounds_by_name(model, compute_bounds(model.signatures, scope, 3))
        assert bounds["A"] == 2
        assert bounds["B"] == 2

    def test_exact(self):
        """Test that exactly-scoped signatures are recorded."""
        model, scope = scope_of("sig A {} run {} for 3 but exactly 2 A")
        bounds = compute_bounds(model.signatures, scope, 3)
        assert bounds[model.signatures.lookup("A")] == 2
        assert bounds.exact == {model.signatures.lookup("A")}


class TestMergeScope:
    """Test caller overrides of a command's scope."""

    def test_override_keeps_exact_flag(self):
        """Test that overriding a count keeps ``exactly``."""
        model, scope = scope_of("sig A {} sig B {} run {} for 2 but exactly 2 A")
        merged = merge_scope(model.signatures, scope, 4, {"A": 3, "B": 1})
        assert merged.default == 4
        a, b = model.signatures.lookup("A"), model.signatures.lookup("B")
        assert merged.type_scopes == (
            TypedTypeScope(sig=a, count=3, exact=True),
            TypedTypeScope(sig=b, count=1, exact=False),
        )

    def test_no_overrides(self):
        """Test that an empty override leaves the scope alone."""
        model, scope = scope_of("sig A {} run {} for 2 A")
        assert merge_scope(model.signatures, scope) == scope

    @pytest.mark.parametrize(
        "default, type_scopes",
        [(0, None), (None, {"Missing": 2}), (None, {"A": 0})],
    )
    def test_invalid_overrides(self, default, type_scopes):
        """Test rejected override values."""
        model, scope = scope_of("sig A {} run {}")
        with pytest.raises(ScopeError):
            merge_scope(model.signatures, scope, default, type_scopes)


# =============================================================================
# Encoding
# =============================================================================


class TestAllocation:
    """Test the universe and the primary variables."""

    def test_segments(self):
        """Test one contiguous segment per top-level signature."""
        encoding = encode(typed("sig A {} sig B {}"), TypedScope(default=2))
        assert encoding.universe.segments == {0: range(0, 2), 1: range(2, 4)}
        assert encoding.universe.size == 4

    def test_subsignature_shares_root_segment(self):
        """Test that an extension draws atoms from its root's segment."""
        model = typed("sig A {} sig B extends A {}")
        encoding = encode(model, TypedScope(default=3))
        b = model.signatures.lookup("B")
        assert sorted(encoding.sig_vars[b]) == [0, 1, 2]

    def test_field_candidates(self, graph):
        """Test that a field gets a variable per candidate tuple."""
        assert sorted(graph.field_vars[0]) == [(0, 0), (0, 1), (1, 0), (1, 1)]
        assert graph.translator.fields[0].arity == 2

    def test_primary_variables_come_first(self, graph):
        """Test that every gate is numbered after every primary variable."""
        assert graph.primary_variables == list(range(2, 2 + 2 + 4))
        assert min(graph.circuit.gates) > max(graph.primary_variables)

    def test_exact_top_level_is_constant(self):
        """Test that an exactly-scoped top-level signature needs no variables."""
        model, scope = scope_of("sig A {} run {} for exactly 2 A")
        encoding = encode(model, scope)
        assert list(encoding.sig_vars[0].values()) == [TRUE, TRUE]
        assert encoding.populated_assumptions() == []

    def test_phases(self, graph):
        """Test that signatures lean true and fields lean false."""
        phases = graph.preferred_phases()
        assert set(graph.sig_vars[0].values()) <= set(phases)
        assert all(-lit in phases for lit in graph.field_vars[0].values())


class TestRoundTrip:
    """Test moving between instances and assignments."""

    def test_assignment_and_extract(self, graph):
        """Test that an instance survives assignment and extraction."""
        true_vars = graph.assignment_from({"A": [0, 1]}, {"r": [(0, 1), (1, 1)]})
        raw = graph.extract(true_vars)
        assert raw.signatures == {0: [0, 1]}
        assert raw.fields == {0: [(0, 1), (1, 1)]}

    def test_unknown_tuple(self, graph):
        """Test that a tuple outside the universe has no variable."""
        with pytest.raises(KeyError):
            graph.assignment_from({"A": [0]}, {"r": [(0, 5)]})


class TestStructuralConstraints:
    """Test the constraints that hold in every instance."""

    def test_valid_instance(self, graph):
        """Test that a well-formed instance satisfies every constraint."""
        assert holds(graph, graph.assignment_from({"A": [0, 1]}, {"r": [(0, 1)]}))

    def test_tuple_outside_signature(self, graph):
        """Test that field tuples must connect existing atoms."""
        assert not holds(graph, graph.assignment_from({"A": [0]}, {"r": [(0, 1)]}))

    def test_symmetry_breaking(self, graph):
        """Test that atoms are used in allocation order."""
        assert holds(graph, graph.assignment_from({"A": [0]}, {}))
        assert not holds(graph, graph.assignment_from({"A": [1]}, {}))

    def test_symmetry_breaking_can_be_disabled(self):
        """Test that without symmetry breaking any atom may be used alone."""
        encoding = encode(
            typed("sig A {}"), TypedScope(default=2), symmetry_breaking=False
        )
        assert holds(encoding, encoding.assignment_from({"A": [1]}, {}))

    def test_scope_upper_bound(self):
        """Test that a subsignature respects its own bound."""
        model, scope = scope_of("sig A {} sig B extends A {} run {} for 3 but 1 B")
        encoding = encode(model, scope)
        assert holds(encoding, encoding.assignment_from({"A": [0, 1], "B": [1]}, {}))
        assert not holds(
            encoding, encoding.assignment_from({"A": [0, 1], "B": [0, 1]}, {})
        )

    def test_extension_within_parent(self):
        """Test that an extension's atoms belong to the parent."""
        encoding = encode(typed("sig A {} sig B extends A {}"), TypedScope(default=2))
        assert not holds(encoding, encoding.assignment_from({"B": [0]}, {}))

    def test_siblings_disjoint(self):
        """Test that two extensions of one signature share no atom."""
        encoding = encode(
            typed("sig A {} sig B, C extends A {}"), TypedScope(default=1)
        )
        assert holds(encoding, encoding.assignment_from({"A": [0], "B": [0]}, {}))
        assert not holds(
            encoding, encoding.assignment_from({"A": [0], "B": [0], "C": [0]}, {})
        )

    def test_abstract_has_no_own_atoms(self):
        """Test that an abstract signature's atoms belong to an extension."""
        encoding = encode(
            typed("abstract sig P {} sig Q extends P {}"), TypedScope(default=1)
        )
        assert not holds(encoding, encoding.assignment_from({"P": [0]}, {}))
        assert holds(encoding, encoding.assignment_from({"P": [0], "Q": [0]}, {}))

    def test_one_signature(self):
        """Test that a one-sig has exactly one atom."""
        encoding = encode(typed("one sig S {}"), TypedScope(default=3))
        assert len(encoding.sig_vars[0]) == 1
        assert not holds(encoding, encoding.assignment_from({"S": []}, {}))
        assert holds(encoding, encoding.assignment_from({"S": [0]}, {}))

    def test_some_signature(self):
        """Test that a some-sig is never empty."""
        encoding = encode(typed("some sig S {}"), TypedScope(default=2))
        assert not holds(encoding, encoding.assignment_from({"S": []}, {}))

    def test_field_multiplicity_one(self):
        """Test that a one-field maps each existing atom to exactly one atom."""
        encoding = encode(typed("sig A { f: A }"), TypedScope(default=2))
        assert not holds(encoding, encoding.assignment_from({"A": [0]}, {}))
        assert holds(encoding, encoding.assignment_from({"A": [0]}, {"f": [(0, 0)]}))
        assert not holds(
            encoding,
            encoding.assignment_from({"A": [0, 1]}, {"f": [(0, 0), (0, 1), (1, 0)]}),
        )

    def test_field_multiplicity_lone(self):
        """Test that a lone-field maps each atom to at most one atom."""
        encoding = encode(typed("sig A { f: lone A }"), TypedScope(default=2))
        assert holds(encoding, encoding.assignment_from({"A": [0]}, {}))
        assert not holds(
            encoding, encoding.assignment_from({"A": [0, 1]}, {"f": [(0, 0), (0, 1)]})
        )
