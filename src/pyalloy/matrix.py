"""Sparse boolean matrices of tuple-membership literals.

A ``Matrix`` maps each candidate tuple of atom indexes to the literal that
says whether the tuple is in the relation. Tuples whose literal is ``FALSE``
are never stored, so constant relations stay small and a matrix with no
entries is the empty relation.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from pyalloy.boolean import FALSE, TRUE, BooleanCircuit

AtomTuple = Tuple[int, ...]


class Matrix:
    """A relation of fixed arity over atom indexes.

    Attributes:
        circuit: Circuit that builds the literals of derived matrices.
        arity: Number of columns.
        entries: Literal of every tuple that may be present.
    """

    def __init__(
        self,
        circuit: BooleanCircuit,
        arity: int,
        entries: Optional[Dict[AtomTuple, int]] = None,
    ):
        self.circuit = circuit
        self.arity = arity
        self.entries: Dict[AtomTuple, int] = {
            t: lit for t, lit in (entries or {}).items() if lit != FALSE
        }

    @classmethod
    def constant(
        cls, circuit: BooleanCircuit, arity: int, tuples: Iterable[AtomTuple]
    ) -> "Matrix":
        return cls(circuit, arity, {tuple(t): TRUE for t in tuples})

    @classmethod
    def singleton(cls, circuit: BooleanCircuit, atom: int) -> "Matrix":
        return cls.constant(circuit, 1, [(atom,)])

    def get(self, atoms: AtomTuple) -> int:
        return self.entries.get(atoms, FALSE)

    def items(self) -> Iterator[Tuple[AtomTuple, int]]:
        return iter(self.entries.items())

    def literals(self) -> List[int]:
        return list(self.entries.values())

    def key(self) -> Tuple[Tuple[AtomTuple, int], ...]:
        """Structural identity of the matrix, usable as a cache key."""
        return tuple(sorted(self.entries.items()))

    def __len__(self) -> int:
        return len(self.entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Matrix):
            return NotImplemented
        return self.arity == other.arity and self.entries == other.entries

    def __repr__(self) -> str:
        return f"Matrix(arity={self.arity}, entries={self.entries!r})"

    def _derived(
        self, entries: Dict[AtomTuple, int], arity: Optional[int] = None
    ) -> "Matrix":
        return Matrix(self.circuit, self.arity if arity is None else arity, entries)

    # ========================================================================
    # Set operations
    # ========================================================================

    def union(self, other: "Matrix") -> "Matrix":
        entries = dict(self.entries)
        for t, lit in other.items():
            entries[t] = self.circuit.or_(entries.get(t, FALSE), lit)
        return self._derived(entries)

    def intersection(self, other: "Matrix") -> "Matrix":
        return self._derived(
            {t: self.circuit.and_(lit, other.get(t)) for t, lit in self.items()}
        )

    def difference(self, other: "Matrix") -> "Matrix":
        return self._derived(
            {t: self.circuit.and_(lit, -other.get(t)) for t, lit in self.items()}
        )

    def override(self, other: "Matrix") -> "Matrix":
        """``self ++ other``: tuples of ``other`` replace those with the same first atom."""
        domain: Dict[int, List[int]] = defaultdict(list)
        for t, lit in other.items():
            domain[t[0]].append(lit)
        entries = {}
        for t, lit in self.items():
            covered = self.circuit.or_all(domain.get(t[0], ()))
            entries[t] = self.circuit.and_(lit, -covered)
        return self._derived(entries).union(other)

    # ========================================================================
    # Relational operations
    # ========================================================================

    def join(self, other: "Matrix") -> "Matrix":
        """Relational join on the last column of ``self`` and first of ``other``."""
        by_first: Dict[int, List[Tuple[AtomTuple, int]]] = defaultdict(list)
        for t, lit in other.items():
            by_first[t[0]].append((t[1:], lit))
        terms: Dict[AtomTuple, List[int]] = defaultdict(list)
        for t, lit in self.items():
            for rest, other_lit in by_first.get(t[-1], ()):
                terms[t[:-1] + rest].append(self.circuit.and_(lit, other_lit))
        return self._derived(
            {t: self.circuit.or_all(lits) for t, lits in terms.items()},
            self.arity + other.arity - 2,
        )

    def product(self, other: "Matrix") -> "Matrix":
        entries = {}
        for t, lit in self.items():
            for u, other_lit in other.items():
                entries[t + u] = self.circuit.and_(lit, other_lit)
        return self._derived(entries, self.arity + other.arity)

    def transpose(self) -> "Matrix":
        return self._derived({(t[1], t[0]): lit for t, lit in self.items()})

    def closure(self) -> "Matrix":
        """Transitive closure by iterative squaring.

        A path through ``n`` distinct atoms has at most ``n`` edges, so
        ``ceil(log2(n))`` squarings reach every path.
        """
        atoms = {a for t in self.entries for a in t}
        result = self
        for _ in range(max(0, (len(atoms) - 1).bit_length())):
            squared = result.union(result.join(result))
            if squared.key() == result.key():
                break
            result = squared
        return result

    def reflexive_closure(self, iden: "Matrix") -> "Matrix":
        return self.closure().union(iden)

    def domain_restriction(self, domain: "Matrix") -> "Matrix":
        """``domain <: self``."""
        return self._derived(
            {t: self.circuit.and_(lit, domain.get((t[0],))) for t, lit in self.items()}
        )

    def range_restriction(self, range_: "Matrix") -> "Matrix":
        """``self :> range_``."""
        return self._derived(
            {t: self.circuit.and_(lit, range_.get((t[-1],))) for t, lit in self.items()}
        )

    # ========================================================================
    # Formulas over matrices
    # ========================================================================

    def some(self) -> int:
        return self.circuit.or_all(self.literals())

    def no(self) -> int:
        return -self.some()

    def lone(self) -> int:
        return self.circuit.at_most(self.literals(), 1)

    def one(self) -> int:
        return self.circuit.exactly(self.literals(), 1)

    def subset_of(self, other: "Matrix") -> int:
        return self.circuit.and_all(
            self.circuit.implies(lit, other.get(t)) for t, lit in self.items()
        )

    def equals(self, other: "Matrix") -> int:
        return self.circuit.and_(self.subset_of(other), other.subset_of(self))
