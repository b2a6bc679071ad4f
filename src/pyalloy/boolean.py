"""Boolean circuits over numbered variables.

Literals are non-zero integers in DIMACS style: ``v`` is a variable and ``-v``
its negation. Variable 1 is reserved for the constant true, so ``TRUE == 1``
and ``FALSE == -1``.

The circuit is an and-inverter graph with n-ary AND gates. Gates are
hash-consed by their sorted inputs, so building the same conjunction twice
returns the same literal, and constants are folded as gates are built.
Primary (decision) variables come from a ``VariableAllocator``; the circuit
allocates its gate outputs from the same allocator.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Set, Tuple

TRUE = 1
FALSE = -1


class VariableAllocator:
    """Hands out consecutive variable numbers, optionally labelled.

    Attributes:
        num_vars: The highest variable allocated so far.
        labels: Human-readable names of labelled variables.
    """

    def __init__(self):
        self.num_vars = 1
        self.labels: Dict[int, str] = {TRUE: "true"}

    def new_var(self, label: Optional[str] = None) -> int:
        self.num_vars += 1
        if label is not None:
            self.labels[self.num_vars] = label
        return self.num_vars

    def label(self, literal: int) -> str:
        name = self.labels.get(abs(literal), f"v{abs(literal)}")
        return name if literal > 0 else f"!{name}"


class BooleanCircuit:
    """Hash-consed AND/NOT circuit.

    Attributes:
        allocator: Source of variable numbers.
        gates: Input literals of each gate variable, in creation order.
    """

    def __init__(self, allocator: Optional[VariableAllocator] = None):
        self.allocator = allocator or VariableAllocator()
        self.gates: Dict[int, Tuple[int, ...]] = {}
        self._cache: Dict[Tuple[int, ...], int] = {}

    def new_var(self, label: Optional[str] = None) -> int:
        return self.allocator.new_var(label)

    @property
    def num_vars(self) -> int:
        return self.allocator.num_vars

    def is_gate(self, literal: int) -> bool:
        return abs(literal) in self.gates

    # ========================================================================
    # Connectives
    # ========================================================================

    def and_(self, *literals: int) -> int:
        return self.and_all(literals)

    def and_all(self, literals: Iterable[int]) -> int:
        """Conjunction of the given literals, with constant folding."""
        inputs: Set[int] = set()
        for literal in literals:
            if literal == FALSE:
                return FALSE
            if literal == TRUE:
                continue
            if -literal in inputs:
                return FALSE
            inputs.add(literal)
        if not inputs:
            return TRUE
        if len(inputs) == 1:
            return next(iter(inputs))
        key = tuple(sorted(inputs))
        gate = self._cache.get(key)
        if gate is None:
            gate = self.allocator.new_var()
            self.gates[gate] = key
            self._cache[key] = gate
        return gate

    def or_(self, *literals: int) -> int:
        return self.or_all(literals)

    def or_all(self, literals: Iterable[int]) -> int:
        return -self.and_all(-literal for literal in literals)

    def implies(self, antecedent: int, consequent: int) -> int:
        return self.or_(-antecedent, consequent)

    def iff(self, left: int, right: int) -> int:
        if left == right:
            return TRUE
        if left == -right:
            return FALSE
        return self.and_(self.implies(left, right), self.implies(right, left))

    def ite(self, condition: int, then: int, otherwise: int) -> int:
        if condition == TRUE:
            return then
        if condition == FALSE:
            return otherwise
        if then == otherwise:
            return then
        return self.or_(
            self.and_(condition, then), self.and_(-condition, otherwise)
        )

    # ========================================================================
    # Cardinality
    # ========================================================================

    def thermometer(self, literals: List[int], limit: int) -> List[int]:
        """Unary count of the true literals, truncated at ``limit``.

        Element ``j`` of the result is true exactly when at least ``j + 1``
        of the literals are true. This is the sequential counter encoding,
        quadratic in ``limit`` rather than in ``len(literals)``.
        """
        counts = [FALSE] * limit
        for literal in literals:
            for j in reversed(range(limit)):
                previous = TRUE if j == 0 else counts[j - 1]
                counts[j] = self.or_(counts[j], self.and_(literal, previous))
        return counts

    def at_least(self, literals: List[int], k: int) -> int:
        if k <= 0:
            return TRUE
        if k > len(literals):
            return FALSE
        return self.thermometer(literals, k)[k - 1]

    def at_most(self, literals: List[int], k: int) -> int:
        if k < 0:
            return FALSE
        if k >= len(literals):
            return TRUE
        return -self.thermometer(literals, k + 1)[k]

    def exactly(self, literals: List[int], k: int) -> int:
        if k < 0 or k > len(literals):
            return FALSE
        counts = self.thermometer(literals, k + 1)
        upper = counts[k] if k < len(literals) else FALSE
        lower = counts[k - 1] if k > 0 else TRUE
        return self.and_(lower, -upper)

    # ========================================================================
    # Evaluation
    # ========================================================================

    def evaluate_all(self, true_vars: Iterable[int]) -> Dict[int, bool]:
        """Value of every variable given the true primary variables.

        Gate inputs always have smaller numbers than the gate itself, so a
        single pass in variable order suffices.
        """
        values: Dict[int, bool] = {TRUE: True}
        for var in true_vars:
            values[abs(var)] = var > 0
        for gate in sorted(self.gates):
            values[gate] = all(
                values.get(abs(lit), False) == (lit > 0) for lit in self.gates[gate]
            )
        return values

    def evaluate(self, literal: int, true_vars: Iterable[int]) -> bool:
        values = self.evaluate_all(true_vars)
        return values.get(abs(literal), False) == (literal > 0)
