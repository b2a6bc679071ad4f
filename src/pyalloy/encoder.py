"""Bounded instance encoding.

Given a typed model and a scope, the encoder fixes a finite universe of atoms
and allocates one boolean variable per possible signature membership and
per candidate field tuple. It then emits the structural constraints that hold
in every instance, independent of the user's facts:

* an extending signature is contained in its parent, and siblings are
  disjoint;
* an abstract signature with extensions has no atoms of its own;
* signature multiplicities (``one``, ``lone``, ``some``) and scope bounds;
* every field tuple starts with an atom of the owning signature and lies
  within the declared target type;
* field multiplicities (``one``, ``lone``, ``some``) per source atom.

Each top-level signature owns a contiguous segment of the universe, sized by
its bound. Extending signatures draw their atoms from the segment of their
top-level ancestor.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Set, Tuple

from pyalloy.ast_models import Multiplicity
from pyalloy.boolean import TRUE, BooleanCircuit
from pyalloy.evaluator import Translator
from pyalloy.exceptions import ScopeError
from pyalloy.logger import LOGGER
from pyalloy.matrix import AtomTuple, Matrix
from pyalloy.signatures import SignatureTable
from pyalloy.typed_models import TypedModel, TypedScope, TypedTypeScope


@dataclass(frozen=True)
class Bounds:
    """Atom bound of every signature.

    Attributes:
        bounds: Maximum number of atoms per signature index.
        exact: Signatures whose atom count must equal their bound.
    """

    bounds: Mapping[int, int]
    exact: FrozenSet[int] = frozenset()

    def __getitem__(self, sig: int) -> int:
        return self.bounds[sig]


@dataclass
class Universe:
    """Atoms of one analysis, split into one segment per top-level signature."""

    segments: Dict[int, range] = field(default_factory=dict)

    @property
    def size(self) -> int:
        return sum(len(segment) for segment in self.segments.values())

    def atoms_of(self, top_level: Iterable[int]) -> List[int]:
        return sorted(a for sig in top_level for a in self.segments[sig])


@dataclass
class RawInstance:
    """Atom indexes of every signature and tuples of every field."""

    signatures: Dict[int, List[int]]
    fields: Dict[int, List[AtomTuple]]


def merge_scope(
    table: SignatureTable,
    scope: TypedScope,
    default: Optional[int] = None,
    type_scopes: Optional[Mapping[str, int]] = None,
) -> TypedScope:
    """Apply caller overrides on top of a command's scope clause.

    Args:
        table: Signatures of the model.
        scope: The command's own scope.
        default: Replacement for the default scope.
        type_scopes: Replacement bounds by signature name.

    Raises:
        ScopeError: For unknown signatures or non-positive bounds.
    """
    if default is not None and default < 1:
        raise ScopeError(f"Scope must be positive, got {default}")
    entries = {ts.sig: ts for ts in scope.type_scopes}
    for name, count in (type_scopes or {}).items():
        sig = table.lookup(name)
        if sig is None:
            raise ScopeError(f"Unknown signature '{name}' in scope override")
        if count < 1:
            raise ScopeError(f"Scope of '{name}' must be positive, got {count}")
        previous = entries.get(sig)
        entries[sig] = TypedTypeScope(
            sig=sig, count=count, exact=previous.exact if previous else False
        )
    return TypedScope(
        default=default if default is not None else scope.default,
        type_scopes=tuple(entries[sig] for sig in sorted(entries)),
    )


def compute_bounds(
    table: SignatureTable, scope: TypedScope, default_scope: int
) -> Bounds:
    """Work out the atom bound of every signature.

    An explicit type scope wins. Otherwise ``one`` and ``lone`` signatures
    get 1, an abstract signature whose extensions are all scoped gets their
    sum, other top-level signatures get the default scope and other
    extending signatures inherit their parent's bound.

    Raises:
        ScopeError: If an extension is scoped above its parent.
    """
    default = scope.default if scope.default is not None else default_scope
    explicit = {ts.sig: ts.count for ts in scope.type_scopes}
    exact = frozenset(ts.sig for ts in scope.type_scopes if ts.exact)
    bounds: Dict[int, int] = {}
    for sig in sorted(range(len(table)), key=table.depth):
        signature = table[sig]
        children = table.children[sig]
        if sig in explicit:
            bound = explicit[sig]
        elif signature.multiplicity in (Multiplicity.ONE, Multiplicity.LONE):
            bound = 1
        elif signature.abstract and children and all(c in explicit for c in children):
            bound = sum(explicit[c] for c in children)
        elif signature.parent is None:
            bound = default
        else:
            bound = bounds[signature.parent]
        if signature.parent is not None:
            if bound > bounds[signature.parent]:
                if sig in explicit:
                    raise ScopeError(
                        f"Scope {bound} of '{signature.name}' exceeds the scope "
                        f"{bounds[signature.parent]} of its parent "
                        f"'{table.name_of(signature.parent)}'"
                    )
                bound = bounds[signature.parent]
        bounds[sig] = bound
    return Bounds(bounds=bounds, exact=exact)


@dataclass
class Encoding:
    """Variables and structural constraints of one bounded analysis.

    Attributes:
        model: The typed model being analyzed.
        circuit: Circuit holding every variable and gate.
        bounds: Atom bound of every signature.
        universe: Atom segments of the top-level signatures.
        sig_vars: Membership literal per atom, by signature index.
        field_vars: Membership literal per candidate tuple, by field index.
        primary_variables: Every membership variable, allocated before any
            gate so that they carry the lowest numbers.
        base_constraints: Structural constraint literals.
        translator: Evaluator bound to this encoding's relations.
    """

    model: TypedModel
    circuit: BooleanCircuit
    bounds: Bounds
    universe: Universe
    sig_vars: List[Dict[int, int]]
    field_vars: List[Dict[AtomTuple, int]]
    primary_variables: List[int]
    base_constraints: List[int] = field(default_factory=list)
    translator: Optional[Translator] = None

    def preferred_phases(self) -> List[int]:
        """Polarity hints: signatures populated, fields empty."""
        phases = []
        for lits in self.sig_vars:
            phases.extend(lit for lit in lits.values() if lit != TRUE)
        for lits in self.field_vars:
            phases.extend(-lit for lit in lits.values())
        return phases

    def populated_assumptions(self) -> List[int]:
        """Membership literals that fill every top-level signature."""
        table = self.model.signatures
        return [
            lit
            for sig in table.top_level()
            for lit in self.sig_vars[sig].values()
            if lit != TRUE
        ]

    def assignment_from(
        self,
        signatures: Mapping[str, Iterable[int]],
        fields: Mapping[str, Iterable[AtomTuple]],
    ) -> Set[int]:
        """The true primary variables of a hand-built instance.

        Args:
            signatures: Atom indexes of each named signature.
            fields: Atom tuples of each named field.

        Raises:
            KeyError: If an atom or tuple has no variable in this encoding.
        """
        table = self.model.signatures
        true_vars: Set[int] = set()
        for name, atoms in signatures.items():
            lits = self.sig_vars[table.by_name[name]]
            true_vars.update(lits[atom] for atom in atoms)
        for name, tuples in fields.items():
            index = self.model.field_by_name(name).index
            true_vars.update(self.field_vars[index][tuple(t)] for t in tuples)
        true_vars.discard(TRUE)
        return true_vars

    def extract(self, true_vars: Iterable[int]) -> RawInstance:
        """Read signature atoms and field tuples off a satisfying assignment."""
        true_set = {v for v in true_vars if v > 0}
        true_set.add(TRUE)
        signatures = {
            sig: sorted(atom for atom, lit in lits.items() if lit in true_set)
            for sig, lits in enumerate(self.sig_vars)
        }
        fields = {
            index: sorted(t for t, lit in lits.items() if lit in true_set)
            for index, lits in enumerate(self.field_vars)
        }
        return RawInstance(signatures=signatures, fields=fields)


class Encoder:
    """Build the ``Encoding`` of a typed model under given bounds."""

    def __init__(
        self,
        model: TypedModel,
        bounds: Bounds,
        symmetry_breaking: bool = True,
        circuit: Optional[BooleanCircuit] = None,
    ):
        self.model = model
        self.table = model.signatures
        self.bounds = bounds
        self.symmetry_breaking = symmetry_breaking
        self.circuit = circuit or BooleanCircuit()

    def encode(self) -> Encoding:
        universe = self._universe()
        sig_vars = self._allocate_signatures(universe)
        field_vars = self._allocate_fields(universe)
        primary = list(range(TRUE + 1, self.circuit.num_vars + 1))

        sig_matrices = [
            Matrix(self.circuit, 1, {(atom,): lit for atom, lit in lits.items()})
            for lits in sig_vars
        ]
        field_matrices = [
            Matrix(self.circuit, f.arity, field_vars[f.index]) for f in self.model.fields
        ]
        univ = Matrix(self.circuit, 1)
        for sig in self.table.top_level():
            univ = univ.union(sig_matrices[sig])

        encoding = Encoding(
            model=self.model,
            circuit=self.circuit,
            bounds=self.bounds,
            universe=universe,
            sig_vars=sig_vars,
            field_vars=field_vars,
            primary_variables=primary,
            translator=Translator(
                self.circuit, sig_matrices, field_matrices, univ, self.model.predicates
            ),
        )
        constraints = encoding.base_constraints
        constraints.extend(self._signature_constraints(sig_vars))
        constraints.extend(self._field_constraints(encoding))
        LOGGER.debug(
            "Encoded %d atoms, %d primary variables, %d gates, %d base constraints",
            universe.size,
            len(primary),
            len(self.circuit.gates),
            len(constraints),
        )
        return encoding

    # ========================================================================
    # Allocation
    # ========================================================================

    def _universe(self) -> Universe:
        universe = Universe()
        offset = 0
        for sig in self.table.top_level():
            bound = self.bounds[sig]
            universe.segments[sig] = range(offset, offset + bound)
            offset += bound
        return universe

    def _allocate_signatures(self, universe: Universe) -> List[Dict[int, int]]:
        sig_vars: List[Dict[int, int]] = []
        for sig in range(len(self.table)):
            name = self.table.name_of(sig)
            root = self.table.roots[sig]
            segment = universe.segments[root]
            constant = root == sig and sig in self.bounds.exact
            sig_vars.append(
                {
                    atom: TRUE
                    if constant
                    else self.circuit.new_var(f"{name}${atom - segment.start}")
                    for atom in segment
                }
            )
        return sig_vars

    def _column_atoms(self, universe: Universe, column: FrozenSet[int]) -> List[int]:
        return universe.atoms_of({self.table.roots[sig] for sig in column})

    def _allocate_fields(self, universe: Universe) -> List[Dict[AtomTuple, int]]:
        field_vars: List[Dict[AtomTuple, int]] = []
        for typed_field in self.model.fields:
            columns = [self._column_atoms(universe, c) for c in typed_field.types]
            field_vars.append(
                {
                    t: self.circuit.new_var(f"{typed_field.name}{t}")
                    for t in itertools.product(*columns)
                }
            )
        return field_vars

    # ========================================================================
    # Structural constraints
    # ========================================================================

    def _signature_constraints(self, sig_vars: List[Dict[int, int]]) -> List[int]:
        circuit = self.circuit
        constraints: List[int] = []
        for sig, signature in enumerate(self.table.signatures):
            lits = [sig_vars[sig][atom] for atom in sorted(sig_vars[sig])]
            bound = self.bounds[sig]
            if sig in self.bounds.exact:
                constraints.append(circuit.exactly(lits, bound))
            elif bound < len(lits):
                constraints.append(circuit.at_most(lits, bound))

            if signature.multiplicity is Multiplicity.ONE:
                constraints.append(circuit.exactly(lits, 1))
            elif signature.multiplicity is Multiplicity.LONE:
                constraints.append(circuit.at_most(lits, 1))
            elif signature.multiplicity is Multiplicity.SOME:
                constraints.append(circuit.at_least(lits, 1))

            if signature.parent is not None:
                parent = sig_vars[signature.parent]
                for atom, lit in sig_vars[sig].items():
                    constraints.append(circuit.implies(lit, parent[atom]))

            children = self.table.children[sig]
            for first, second in itertools.combinations(children, 2):
                for atom in sig_vars[sig]:
                    constraints.append(
                        -circuit.and_(sig_vars[first][atom], sig_vars[second][atom])
                    )
            if signature.abstract and children:
                for atom, lit in sig_vars[sig].items():
                    constraints.append(
                        circuit.implies(
                            lit, circuit.or_all(sig_vars[c][atom] for c in children)
                        )
                    )

            if (
                self.symmetry_breaking
                and signature.parent is None
                and sig not in self.bounds.exact
            ):
                # Atoms of a top-level signature are used in allocation order.
                for previous, current in zip(lits, lits[1:]):
                    constraints.append(circuit.implies(current, previous))
        return constraints

    def _field_constraints(self, encoding: Encoding) -> List[int]:
        circuit = self.circuit
        translator = encoding.translator
        constraints: List[int] = []
        for typed_field in self.model.fields:
            owner = encoding.sig_vars[typed_field.owner]
            target = translator.expr(typed_field.target)
            by_source: Dict[int, List[int]] = {}
            for t, lit in encoding.field_vars[typed_field.index].items():
                allowed = circuit.and_(owner[t[0]], target.get(t[1:]))
                constraints.append(circuit.implies(lit, allowed))
                by_source.setdefault(t[0], []).append(lit)

            multiplicity = typed_field.multiplicity
            for atom, present in owner.items():
                lits = by_source.get(atom, [])
                if multiplicity is Multiplicity.ONE:
                    constraints.append(circuit.implies(present, circuit.exactly(lits, 1)))
                elif multiplicity is Multiplicity.LONE:
                    constraints.append(circuit.at_most(lits, 1))
                elif multiplicity is Multiplicity.SOME:
                    constraints.append(
                        circuit.implies(present, circuit.at_least(lits, 1))
                    )
        return constraints


def encode(
    model: TypedModel,
    scope: TypedScope,
    default_scope: int = 3,
    symmetry_breaking: bool = True,
) -> Encoding:
    """Encode a typed model under a scope.

    Args:
        model: The typed model.
        scope: Default and per-signature bounds.
        default_scope: Bound used when ``scope`` has no default.
        symmetry_breaking: Whether to order the atoms of top-level signatures.

    Raises:
        ScopeError: If the scope cannot be honoured.
    """
    bounds = compute_bounds(model.signatures, scope, default_scope)
    LOGGER.debug(
        "Bounds: %s",
        {model.signatures.name_of(sig): n for sig, n in bounds.bounds.items()},
    )
    return Encoder(model, bounds, symmetry_breaking=symmetry_breaking).encode()
