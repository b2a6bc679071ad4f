"""Relational algebra evaluator.

The ``Translator`` lowers typed expressions to ``Matrix`` values and typed
formulas to circuit literals. Bound variables are substituted by singleton
matrices, so a quantifier over a domain of ``n`` atoms expands into ``n``
copies of its body, and ``k`` nested variables into ``n ** k`` copies. This
expansion dominates the cost of translation.

Every compiled sub-expression and sub-formula is memoized under its
structural identity together with the values of the variables free in it,
so a sub-formula that does not mention a quantified variable is compiled
only once for the whole expansion.
"""

from __future__ import annotations

import dataclasses
from typing import TYPE_CHECKING, Dict, FrozenSet, Iterator, List, Optional, Tuple

from pyalloy.ast_models import BinaryOp, ConstantKind, IntCompareOp, Quantifier, UnaryOp
from pyalloy.boolean import FALSE, TRUE, BooleanCircuit
from pyalloy.logger import LOGGER
from pyalloy.matrix import Matrix
from pyalloy.typed_models import (
    AndF,
    BinaryRel,
    Binding,
    BoolConst,
    CardinalityOf,
    ConstantRel,
    Equal,
    FieldRef,
    IffF,
    IfThenElseF,
    ImpliesF,
    IntTest,
    IntValue,
    MultTest,
    NotF,
    OrF,
    PredCall,
    QuantifiedF,
    SetComprehension,
    SigRef,
    Subset,
    TypedExpr,
    TypedFormula,
    TypedIntExpr,
    TypedPredicate,
    UnaryRel,
    Variable,
    VarRef,
)

if TYPE_CHECKING:
    from pyalloy.encoder import Encoding
    from pyalloy.typed_models import TypedModel

Environment = Dict[Variable, Matrix]


def free_variables(node: object) -> FrozenSet[Variable]:
    """Variables occurring free in a typed expression or formula."""
    if isinstance(node, VarRef):
        return frozenset({node.var})
    if isinstance(node, (QuantifiedF, SetComprehension)):
        free = set()
        bound = set()
        for binding in node.bindings:
            free |= free_variables(binding.domain) - bound
            bound.add(binding.var)
        free |= free_variables(node.body) - bound
        return frozenset(free)
    if isinstance(node, PredCall):
        free = set()
        for arg in node.args:
            free |= free_variables(arg)
        return frozenset(free)
    if not dataclasses.is_dataclass(node):
        return frozenset()
    free = set()
    for field in dataclasses.fields(node):
        value = getattr(node, field.name)
        children = value if isinstance(value, tuple) else (value,)
        for child in children:
            if dataclasses.is_dataclass(child):
                free |= free_variables(child)
    return frozenset(free)


class Translator:
    """Compile typed expressions and formulas against a set of relations.

    Attributes:
        circuit: Circuit that receives every gate.
        signatures: Membership matrix of each signature, by index.
        fields: Tuple matrix of each field, by index.
        univ: Matrix of every atom that exists.
        iden: Identity relation over ``univ``.
        predicates: Predicates available to calls, by name.
    """

    def __init__(
        self,
        circuit: BooleanCircuit,
        signatures: List[Matrix],
        fields: List[Matrix],
        univ: Matrix,
        predicates: Optional[Dict[str, TypedPredicate]] = None,
    ):
        self.circuit = circuit
        self.signatures = signatures
        self.fields = fields
        self.univ = univ
        self.iden = Matrix(
            circuit, 2, {(t[0], t[0]): lit for t, lit in univ.items()}
        )
        self.predicates = predicates or {}
        self._free: Dict[object, FrozenSet[Variable]] = {}
        self._expr_cache: Dict[Tuple, Matrix] = {}
        self._formula_cache: Dict[Tuple, int] = {}

    def _cache_key(self, node: object, env: Environment) -> Tuple:
        free = self._free.get(node)
        if free is None:
            free = free_variables(node)
            self._free[node] = free
        bound = tuple(
            (var.uid, env[var].key()) for var in sorted(free, key=lambda v: v.uid)
        )
        return (node, bound)

    # ========================================================================
    # Expressions
    # ========================================================================

    def expr(self, node: TypedExpr, env: Optional[Environment] = None) -> Matrix:
        """Compile a relational expression into a matrix."""
        env = env or {}
        key = self._cache_key(node, env)
        cached = self._expr_cache.get(key)
        if cached is not None:
            return cached
        result = self._compile_expr(node, env)
        self._expr_cache[key] = result
        return result

    def _compile_expr(self, node: TypedExpr, env: Environment) -> Matrix:
        if isinstance(node, SigRef):
            return self.signatures[node.sig]
        if isinstance(node, FieldRef):
            return self.fields[node.field]
        if isinstance(node, VarRef):
            return env[node.var]
        if isinstance(node, ConstantRel):
            if node.kind is ConstantKind.UNIV:
                return self.univ
            if node.kind is ConstantKind.IDEN:
                return self.iden
            return Matrix(self.circuit, 1)
        if isinstance(node, BinaryRel):
            left = self.expr(node.left, env)
            right = self.expr(node.right, env)
            return self._binary(node.op, left, right)
        if isinstance(node, UnaryRel):
            operand = self.expr(node.operand, env)
            if node.op is UnaryOp.TRANSPOSE:
                return operand.transpose()
            if node.op is UnaryOp.CLOSURE:
                return operand.closure()
            return operand.reflexive_closure(self.iden)
        if isinstance(node, SetComprehension):
            entries = {}
            for guards, inner in self._expand(node.bindings, env):
                atoms = tuple(
                    next(iter(inner[b.var].entries))[0] for b in node.bindings
                )
                body = self.formula(node.body, inner)
                entries[atoms] = self.circuit.and_all(guards + [body])
            return Matrix(self.circuit, node.arity, entries)
        raise TypeError(f"Cannot compile expression {type(node).__name__}")

    @staticmethod
    def _binary(op: BinaryOp, left: Matrix, right: Matrix) -> Matrix:
        if op is BinaryOp.UNION:
            return left.union(right)
        if op is BinaryOp.DIFFERENCE:
            return left.difference(right)
        if op is BinaryOp.INTERSECTION:
            return left.intersection(right)
        if op is BinaryOp.OVERRIDE:
            return left.override(right)
        if op is BinaryOp.PRODUCT:
            return left.product(right)
        if op is BinaryOp.DOMAIN:
            return right.domain_restriction(left)
        if op is BinaryOp.RANGE:
            return left.range_restriction(right)
        return left.join(right)

    # ========================================================================
    # Formulas
    # ========================================================================

    def formula(self, node: TypedFormula, env: Optional[Environment] = None) -> int:
        """Compile a formula into a circuit literal."""
        env = env or {}
        key = self._cache_key(node, env)
        cached = self._formula_cache.get(key)
        if cached is not None:
            return cached
        result = self._compile_formula(node, env)
        self._formula_cache[key] = result
        return result

    def _compile_formula(self, node: TypedFormula, env: Environment) -> int:
        circuit = self.circuit
        if isinstance(node, BoolConst):
            return TRUE if node.value else FALSE
        if isinstance(node, NotF):
            return -self.formula(node.operand, env)
        if isinstance(node, AndF):
            return circuit.and_all(self.formula(f, env) for f in node.operands)
        if isinstance(node, OrF):
            return circuit.or_all(self.formula(f, env) for f in node.operands)
        if isinstance(node, ImpliesF):
            return circuit.implies(
                self.formula(node.left, env), self.formula(node.right, env)
            )
        if isinstance(node, IffF):
            return circuit.iff(
                self.formula(node.left, env), self.formula(node.right, env)
            )
        if isinstance(node, IfThenElseF):
            return circuit.ite(
                self.formula(node.condition, env),
                self.formula(node.then, env),
                self.formula(node.otherwise, env),
            )
        if isinstance(node, Subset):
            return self.expr(node.left, env).subset_of(self.expr(node.right, env))
        if isinstance(node, Equal):
            return self.expr(node.left, env).equals(self.expr(node.right, env))
        if isinstance(node, MultTest):
            matrix = self.expr(node.expr, env)
            return {
                Quantifier.SOME: matrix.some,
                Quantifier.NO: matrix.no,
                Quantifier.LONE: matrix.lone,
                Quantifier.ONE: matrix.one,
            }[node.kind]()
        if isinstance(node, IntTest):
            return self._int_test(node, env)
        if isinstance(node, QuantifiedF):
            return self._quantified(node, env)
        if isinstance(node, PredCall):
            return self._call(node, env)
        raise TypeError(f"Cannot compile formula {type(node).__name__}")

    def _call(self, node: PredCall, env: Environment) -> int:
        predicate = self.predicates[node.pred]
        inner = {
            param.var: self.expr(arg, env)
            for param, arg in zip(predicate.params, node.args)
        }
        return self.formula(predicate.body, inner)

    def _expand(
        self, bindings: Tuple[Binding, ...], env: Environment
    ) -> Iterator[Tuple[List[int], Environment]]:
        """Yield every assignment of atoms to the bound variables.

        Each assignment comes with the membership literals that guard it:
        the chosen atoms must actually be in their domains.
        """

        def expand(
            index: int, env: Environment, chosen: Dict[int, List[int]]
        ) -> Iterator[Tuple[List[int], Environment]]:
            if index == len(bindings):
                yield [], env
                return
            binding = bindings[index]
            domain = self.expr(binding.domain, env)
            for atoms, lit in sorted(domain.items()):
                atom = atoms[0]
                group = binding.disj_group
                if group is not None and atom in chosen.get(group, ()):
                    continue
                inner = dict(env)
                inner[binding.var] = Matrix.singleton(self.circuit, atom)
                inner_chosen = chosen
                if group is not None:
                    inner_chosen = dict(chosen)
                    inner_chosen[group] = chosen.get(group, []) + [atom]
                for guards, final in expand(index + 1, inner, inner_chosen):
                    yield [lit] + guards, final

        return expand(0, env, {})

    def _quantified(self, node: QuantifiedF, env: Environment) -> int:
        circuit = self.circuit
        if node.kind is Quantifier.ALL:
            return circuit.and_all(
                circuit.implies(circuit.and_all(guards), self.formula(node.body, inner))
                for guards, inner in self._expand(node.bindings, env)
            )
        terms = [
            circuit.and_all(guards + [self.formula(node.body, inner)])
            for guards, inner in self._expand(node.bindings, env)
        ]
        if node.kind is Quantifier.SOME:
            return circuit.or_all(terms)
        if node.kind is Quantifier.NO:
            return -circuit.or_all(terms)
        if node.kind is Quantifier.LONE:
            return circuit.at_most(terms, 1)
        return circuit.exactly(terms, 1)

    # ========================================================================
    # Integers
    # ========================================================================

    def _counts(self, node: TypedIntExpr, env: Environment, limit: int) -> List[int]:
        if isinstance(node, IntValue):
            return [TRUE if j < node.value else FALSE for j in range(limit)]
        return self.circuit.thermometer(self.expr(node.expr, env).literals(), limit)

    def _max_value(self, node: TypedIntExpr, env: Environment) -> int:
        if isinstance(node, IntValue):
            return node.value
        return len(self.expr(node.expr, env))

    def _int_test(self, node: IntTest, env: Environment) -> int:
        """Compare two counts in unary.

        Both sides become thermometers of the same length ``limit``, one
        more than the largest value either side can take.
        """
        limit = max(self._max_value(node.left, env), self._max_value(node.right, env)) + 1
        left = self._counts(node.left, env, limit)
        right = self._counts(node.right, env, limit)
        op = node.op
        if op is IntCompareOp.EQ:
            return self.circuit.and_(self._ge(left, right), self._ge(right, left))
        if op is IntCompareOp.NEQ:
            return -self.circuit.and_(self._ge(left, right), self._ge(right, left))
        if op is IntCompareOp.GTE:
            return self._ge(left, right)
        if op is IntCompareOp.LTE:
            return self._ge(right, left)
        if op is IntCompareOp.GT:
            return self._ge(left, self._successor(right))
        return self._ge(right, self._successor(left))

    def _ge(self, left: List[int], right: List[int]) -> int:
        return self.circuit.and_all(
            self.circuit.implies(r, l) for l, r in zip(left, right)
        )

    @staticmethod
    def _successor(counts: List[int]) -> List[int]:
        return [TRUE] + counts[:-1]


def compile_formulas(
    model: "TypedModel",
    encoding: "Encoding",
    goal: Optional[TypedFormula] = None,
) -> int:
    """Compile the facts of a model, and an optional goal, into one literal.

    Args:
        model: The typed model whose facts must hold.
        encoding: The encoding that owns the circuit and the relations.
        goal: Extra formula, such as a command's predicate call.

    Returns:
        int: The literal of the conjunction.
    """
    translator = encoding.translator
    before = len(translator.circuit.gates)
    formulas = list(model.facts)
    if goal is not None:
        formulas.append(goal)
    root = translator.circuit.and_all(translator.formula(f) for f in formulas)
    LOGGER.debug(
        "Compiled %d formulas into %d new gates",
        len(formulas),
        len(translator.circuit.gates) - before,
    )
    return root
