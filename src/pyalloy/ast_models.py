"""Abstract syntax tree produced by ``grammar_parser``.

The nodes are frozen dataclasses so that they compare and hash by structure.
Source positions are carried in ``pos`` but excluded from comparison, so two
occurrences of the same expression at different places are equal.

``render`` turns an expression or formula back into source-like text for
error messages.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple, Union


@dataclass(frozen=True)
class Position:
    """1-based line and column of a node in the model source."""

    line: int
    column: int


@dataclass(frozen=True)
class Node:
    """Base class of every AST node."""

    pos: Optional[Position] = field(default=None, compare=False, kw_only=True)


class BinaryOp(str, Enum):
    """Binary relational operators."""

    UNION = "+"
    DIFFERENCE = "-"
    OVERRIDE = "++"
    INTERSECTION = "&"
    PRODUCT = "->"
    DOMAIN = "<:"
    RANGE = ":>"
    JOIN = "."


class UnaryOp(str, Enum):
    """Prefix relational operators."""

    TRANSPOSE = "~"
    CLOSURE = "^"
    REFLEXIVE_CLOSURE = "*"


class ConstantKind(str, Enum):
    """Built-in relation constants."""

    NONE = "none"
    UNIV = "univ"
    IDEN = "iden"


class LogicOp(str, Enum):
    """Binary logical connectives."""

    AND = "and"
    OR = "or"
    IMPLIES = "implies"
    IFF = "iff"


class CompareOp(str, Enum):
    """Relational comparison operators."""

    IN = "in"
    EQ = "="


class IntCompareOp(str, Enum):
    """Integer comparison operators."""

    EQ = "="
    NEQ = "!="
    LT = "<"
    GT = ">"
    LTE = "=<"
    GTE = ">="


class Quantifier(str, Enum):
    """Quantifier and multiplicity keywords."""

    ALL = "all"
    SOME = "some"
    NO = "no"
    LONE = "lone"
    ONE = "one"


class Multiplicity(str, Enum):
    """Multiplicity keywords of signatures and fields."""

    SET = "set"
    ONE = "one"
    LONE = "lone"
    SOME = "some"


# =============================================================================
# Expressions
# =============================================================================


@dataclass(frozen=True)
class Name(Node):
    """An identifier: a signature, field, predicate or bound variable."""

    name: str


@dataclass(frozen=True)
class This(Node):
    """The ``this`` keyword inside a signature fact."""


@dataclass(frozen=True)
class Constant(Node):
    """One of ``none``, ``univ`` or ``iden``."""

    kind: ConstantKind


@dataclass(frozen=True)
class BinaryExpr(Node):
    """A binary relational expression such as ``a + b`` or ``a.b``."""

    op: BinaryOp
    left: "Expr"
    right: "Expr"


@dataclass(frozen=True)
class UnaryExpr(Node):
    """A prefix relational expression such as ``^r``."""

    op: UnaryOp
    operand: "Expr"


@dataclass(frozen=True)
class BoxJoin(Node):
    """``target[a, b]``, sugar for ``b.(a.target)``; also a predicate call."""

    target: "Expr"
    args: Tuple["Expr", ...]


@dataclass(frozen=True)
class Decl(Node):
    """``[disj] x, y: expr`` in quantifiers, comprehensions and parameters."""

    names: Tuple[str, ...]
    expr: "Expr"
    disjoint: bool = False


@dataclass(frozen=True)
class Comprehension(Node):
    """``{ x: A | F }``."""

    decls: Tuple[Decl, ...]
    body: "Formula"


Expr = Union[Name, This, Constant, BinaryExpr, UnaryExpr, BoxJoin, Comprehension]


# =============================================================================
# Integer expressions
# =============================================================================


@dataclass(frozen=True)
class Cardinality(Node):
    """``#expr``."""

    expr: Expr


@dataclass(frozen=True)
class IntLiteral(Node):
    """A non-negative integer literal."""

    value: int


IntExpr = Union[Cardinality, IntLiteral]


# =============================================================================
# Formulas
# =============================================================================


@dataclass(frozen=True)
class Block(Node):
    """``{ F G ... }``: the conjunction of its formulas (true when empty)."""

    formulas: Tuple["Formula", ...] = ()


@dataclass(frozen=True)
class Not(Node):
    operand: "Formula"


@dataclass(frozen=True)
class BinaryFormula(Node):
    op: LogicOp
    left: "Formula"
    right: "Formula"


@dataclass(frozen=True)
class IfElse(Node):
    """``C implies T else E``."""

    condition: "Formula"
    then: "Formula"
    otherwise: "Formula"


@dataclass(frozen=True)
class Compare(Node):
    """``a in b``, ``a = b`` and their negations."""

    op: CompareOp
    left: Expr
    right: Expr
    negated: bool = False


@dataclass(frozen=True)
class IntCompare(Node):
    op: IntCompareOp
    left: IntExpr
    right: IntExpr


@dataclass(frozen=True)
class MultFormula(Node):
    """``no e``, ``some e``, ``lone e`` or ``one e``."""

    kind: Quantifier
    expr: Expr


@dataclass(frozen=True)
class Quantified(Node):
    """``all x: A | F`` and the other quantifiers."""

    kind: Quantifier
    decls: Tuple[Decl, ...]
    body: "Formula"


@dataclass(frozen=True)
class BareExpr(Node):
    """An expression in formula position; valid only as a predicate call."""

    expr: Expr


Formula = Union[
    Block,
    Not,
    BinaryFormula,
    IfElse,
    Compare,
    IntCompare,
    MultFormula,
    Quantified,
    BareExpr,
]


# =============================================================================
# Paragraphs
# =============================================================================


@dataclass(frozen=True)
class FieldDecl(Node):
    names: Tuple[str, ...]
    multiplicity: Optional[Multiplicity]
    expr: Expr


@dataclass(frozen=True)
class SigDecl(Node):
    """One ``sig`` paragraph, possibly declaring several signatures."""

    names: Tuple[str, ...]
    abstract: bool = False
    multiplicity: Optional[Multiplicity] = None
    parent: Optional[str] = None
    fields: Tuple[FieldDecl, ...] = ()
    fact: Optional[Block] = None


@dataclass(frozen=True)
class FactDecl(Node):
    name: Optional[str]
    body: Block


@dataclass(frozen=True)
class PredDecl(Node):
    name: str
    params: Tuple[Decl, ...]
    body: Block


@dataclass(frozen=True)
class AssertDecl(Node):
    name: str
    body: Block


@dataclass(frozen=True)
class TypeScope(Node):
    """``[exactly] N Sig`` inside a scope clause."""

    sig: str
    count: int
    exact: bool = False


@dataclass(frozen=True)
class Scope(Node):
    """``for N but ...``; ``default`` is None when only type scopes are given."""

    default: Optional[int] = None
    type_scopes: Tuple[TypeScope, ...] = ()


@dataclass(frozen=True)
class Command(Node):
    """A ``run`` or ``check`` command.

    Exactly one of ``target`` (a predicate or assertion name) and ``body``
    is set.
    """

    kind: str
    target: Optional[str] = None
    body: Optional[Block] = None
    scope: Optional[Scope] = None

    @property
    def label(self) -> str:
        return f"{self.kind} {self.target if self.target else '{...}'}"


Paragraph = Union[SigDecl, FactDecl, PredDecl, AssertDecl, Command]


@dataclass(frozen=True)
class Model:
    """A parsed model: its paragraphs in source order."""

    paragraphs: Tuple[Paragraph, ...] = ()

    def _of_type(self, kind: type) -> List:
        return [p for p in self.paragraphs if isinstance(p, kind)]

    @property
    def sigs(self) -> List[SigDecl]:
        return self._of_type(SigDecl)

    @property
    def facts(self) -> List[FactDecl]:
        return self._of_type(FactDecl)

    @property
    def predicates(self) -> List[PredDecl]:
        return self._of_type(PredDecl)

    @property
    def assertions(self) -> List[AssertDecl]:
        return self._of_type(AssertDecl)

    @property
    def commands(self) -> List[Command]:
        return self._of_type(Command)


# =============================================================================
# Rendering
# =============================================================================


def _render_decls(decls: Tuple[Decl, ...]) -> str:
    parts = []
    for decl in decls:
        prefix = "disj " if decl.disjoint else ""
        parts.append(f"{prefix}{', '.join(decl.names)}: {render(decl.expr)}")
    return ", ".join(parts)


def render(node: Union[Expr, IntExpr, Formula]) -> str:
    """Render an expression or formula back to model syntax.

    Binary expressions are fully parenthesised, so the output is unambiguous
    rather than minimal.
    """
    if isinstance(node, Name):
        return node.name
    if isinstance(node, This):
        return "this"
    if isinstance(node, Constant):
        return node.kind.value
    if isinstance(node, BinaryExpr):
        if node.op == BinaryOp.JOIN:
            return f"{render(node.left)}.{render(node.right)}"
        return f"({render(node.left)} {node.op.value} {render(node.right)})"
    if isinstance(node, UnaryExpr):
        return f"{node.op.value}{render(node.operand)}"
    if isinstance(node, BoxJoin):
        args = ", ".join(render(arg) for arg in node.args)
        return f"{render(node.target)}[{args}]"
    if isinstance(node, Comprehension):
        return f"{{ {_render_decls(node.decls)} | {render(node.body)} }}"
    if isinstance(node, Cardinality):
        return f"#{render(node.expr)}"
    if isinstance(node, IntLiteral):
        return str(node.value)
    if isinstance(node, Block):
        return "{ " + " ".join(render(f) for f in node.formulas) + " }"
    if isinstance(node, Not):
        return f"not {render(node.operand)}"
    if isinstance(node, BinaryFormula):
        return f"({render(node.left)} {node.op.value} {render(node.right)})"
    if isinstance(node, IfElse):
        return (
            f"({render(node.condition)} implies {render(node.then)}"
            f" else {render(node.otherwise)})"
        )
    if isinstance(node, Compare):
        op = node.op.value
        if node.negated:
            op = "not in" if node.op == CompareOp.IN else "!="
        return f"{render(node.left)} {op} {render(node.right)}"
    if isinstance(node, IntCompare):
        return f"{render(node.left)} {node.op.value} {render(node.right)}"
    if isinstance(node, MultFormula):
        return f"{node.kind.value} {render(node.expr)}"
    if isinstance(node, Quantified):
        return f"{node.kind.value} {_render_decls(node.decls)} | {render(node.body)}"
    if isinstance(node, BareExpr):
        return render(node.expr)
    raise TypeError(f"Cannot render {type(node).__name__}")
