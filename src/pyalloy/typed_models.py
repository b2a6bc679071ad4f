"""Typed intermediate representation produced by the resolver.

Every relational expression carries ``types``: one column type per column,
each a frozenset of signature indexes. The arity of an expression is the
number of its columns. Names have been bound to signatures, fields and
uniquely numbered variables; box joins, ``!=`` and ``not in`` have been
desugared; signature facts have been wrapped in their ``all this`` quantifier.

All nodes are frozen dataclasses, so structurally equal sub-expressions
compare and hash equal. The evaluator relies on this to memoize.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional, Tuple, Union

from pyalloy.ast_models import (
    BinaryOp,
    ConstantKind,
    IntCompareOp,
    Multiplicity,
    Position,
    Quantifier,
    UnaryOp,
)
from pyalloy.enums import CommandKind
from pyalloy.signatures import SignatureTable

Types = Tuple[FrozenSet[int], ...]


@dataclass(frozen=True)
class Variable:
    """A bound variable; ``uid`` keeps shadowed names apart."""

    uid: int
    name: str


# =============================================================================
# Relational expressions
# =============================================================================


@dataclass(frozen=True)
class TypedExpr:
    types: Types

    @property
    def arity(self) -> int:
        return len(self.types)


@dataclass(frozen=True)
class SigRef(TypedExpr):
    sig: int
    name: str


@dataclass(frozen=True)
class FieldRef(TypedExpr):
    field: int
    name: str


@dataclass(frozen=True)
class VarRef(TypedExpr):
    var: Variable


@dataclass(frozen=True)
class ConstantRel(TypedExpr):
    kind: ConstantKind


@dataclass(frozen=True)
class BinaryRel(TypedExpr):
    op: BinaryOp
    left: TypedExpr
    right: TypedExpr


@dataclass(frozen=True)
class UnaryRel(TypedExpr):
    """Transpose, closure or reflexive closure of a binary relation."""

    op: UnaryOp
    operand: TypedExpr


@dataclass(frozen=True)
class Binding:
    """A variable bound over a unary domain.

    Variables declared together with ``disj`` share a ``disj_group``; the
    values of variables in the same group must be pairwise distinct.
    """

    var: Variable
    domain: TypedExpr
    disj_group: Optional[int] = None


@dataclass(frozen=True)
class SetComprehension(TypedExpr):
    bindings: Tuple[Binding, ...]
    body: "TypedFormula"


# =============================================================================
# Integer expressions
# =============================================================================


@dataclass(frozen=True)
class CardinalityOf:
    expr: TypedExpr


@dataclass(frozen=True)
class IntValue:
    value: int


TypedIntExpr = Union[CardinalityOf, IntValue]


# =============================================================================
# Formulas
# =============================================================================


@dataclass(frozen=True)
class BoolConst:
    value: bool


@dataclass(frozen=True)
class NotF:
    operand: "TypedFormula"


@dataclass(frozen=True)
class AndF:
    operands: Tuple["TypedFormula", ...]


@dataclass(frozen=True)
class OrF:
    operands: Tuple["TypedFormula", ...]


@dataclass(frozen=True)
class ImpliesF:
    left: "TypedFormula"
    right: "TypedFormula"


@dataclass(frozen=True)
class IffF:
    left: "TypedFormula"
    right: "TypedFormula"


@dataclass(frozen=True)
class IfThenElseF:
    condition: "TypedFormula"
    then: "TypedFormula"
    otherwise: "TypedFormula"


@dataclass(frozen=True)
class Subset:
    """``left in right``."""

    left: TypedExpr
    right: TypedExpr


@dataclass(frozen=True)
class Equal:
    left: TypedExpr
    right: TypedExpr


@dataclass(frozen=True)
class MultTest:
    """``no``, ``some``, ``lone`` or ``one`` applied to an expression."""

    kind: Quantifier
    expr: TypedExpr


@dataclass(frozen=True)
class IntTest:
    op: IntCompareOp
    left: TypedIntExpr
    right: TypedIntExpr


@dataclass(frozen=True)
class QuantifiedF:
    kind: Quantifier
    bindings: Tuple[Binding, ...]
    body: "TypedFormula"


@dataclass(frozen=True)
class PredCall:
    """Invocation of a predicate; expanded inline by the evaluator."""

    pred: str
    args: Tuple[TypedExpr, ...] = ()


TypedFormula = Union[
    BoolConst,
    NotF,
    AndF,
    OrF,
    ImpliesF,
    IffF,
    IfThenElseF,
    Subset,
    Equal,
    MultTest,
    IntTest,
    QuantifiedF,
    PredCall,
]

TRUE = BoolConst(True)
FALSE = BoolConst(False)


# =============================================================================
# Declarations and commands
# =============================================================================


@dataclass(frozen=True)
class TypedField:
    """A field with its resolved column types.

    ``types`` covers every column, starting with the owning signature;
    ``target`` is the declared type expression for the remaining columns.
    """

    index: int
    name: str
    owner: int
    multiplicity: Multiplicity
    target: TypedExpr
    types: Types
    pos: Optional[Position] = None

    @property
    def arity(self) -> int:
        return len(self.types)


@dataclass(frozen=True)
class TypedPredicate:
    name: str
    params: Tuple[Binding, ...]
    body: TypedFormula


@dataclass(frozen=True)
class TypedAssertion:
    name: str
    body: TypedFormula


@dataclass(frozen=True)
class TypedTypeScope:
    sig: int
    count: int
    exact: bool = False


@dataclass(frozen=True)
class TypedScope:
    default: Optional[int] = None
    type_scopes: Tuple[TypedTypeScope, ...] = ()


@dataclass(frozen=True)
class TypedCommand:
    """A resolved command.

    Attributes:
        kind: ``run`` or ``check``.
        label: Display label such as ``run showGraph``.
        name: The predicate or assertion name, if any.
        goal: Formula that must hold together with the facts. For ``check``
            this is already the negated assertion.
        scope: The command's own scope clause.
    """

    kind: CommandKind
    label: str
    name: Optional[str]
    goal: TypedFormula
    scope: TypedScope = TypedScope()


@dataclass
class TypedModel:
    signatures: SignatureTable
    fields: List[TypedField]
    facts: List[TypedFormula]
    predicates: Dict[str, TypedPredicate]
    assertions: Dict[str, TypedAssertion]
    commands: List[TypedCommand]

    def field_by_name(self, name: str) -> Optional[TypedField]:
        for typed_field in self.fields:
            if typed_field.name == name:
                return typed_field
        return None
