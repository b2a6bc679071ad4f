"""Alloy-style Model Grammar Parser using Lark

This module implements the parser for the relational modeling language
accepted by PyAlloy. It uses the Lark parsing library (LALR with a basic,
keyword-reserving lexer) to parse model source into a parse tree and then
transforms that tree into the frozen dataclass AST of ``ast_models``.

Shift/reduce conflicts in the grammar are resolved by shifting, which gives
quantifier bodies their maximal extent and binds ``else`` to the nearest
``implies``.

Example:
    >>> from pyalloy.grammar_parser import GrammarParser
    >>> parser = GrammarParser()
    >>> model = parser.parse_to_ast("sig A { r: set A } run {} for 2")
    >>> [s.names for s in model.sigs]
    [('A',)]
"""

from __future__ import annotations

from typing import Any, Iterable, List, Optional, Tuple

from lark import Lark, Token, Transformer, Tree
from lark.exceptions import (
    UnexpectedCharacters,
    UnexpectedEOF,
    UnexpectedInput,
    UnexpectedToken,
)
from lark.lexer import PatternStr

from pyalloy.ast_models import (
    AssertDecl,
    BareExpr,
    BinaryExpr,
    BinaryFormula,
    BinaryOp,
    Block,
    BoxJoin,
    Cardinality,
    Command,
    Compare,
    CompareOp,
    Comprehension,
    Constant,
    ConstantKind,
    Decl,
    FactDecl,
    FieldDecl,
    IfElse,
    IntCompare,
    IntCompareOp,
    IntLiteral,
    LogicOp,
    Model,
    MultFormula,
    Multiplicity,
    Name,
    Not,
    Position,
    PredDecl,
    Quantified,
    Quantifier,
    Scope,
    SigDecl,
    This,
    TypeScope,
    UnaryExpr,
    UnaryOp,
)
from pyalloy.exceptions import ParseError
from pyalloy.logger import LOGGER

MODEL_GRAMMAR = r"""
?start: model

model: paragraph*

?paragraph: sig_decl
          | fact_decl
          | pred_decl
          | assert_decl
          | run_cmd
          | check_cmd

//============================================================================
// Signatures and fields
//============================================================================

sig_decl: [ABSTRACT] [sig_mult] "sig" name_list [sig_extends] "{" [field_decls] "}" [block]
?sig_mult: ONE | LONE | SOME
sig_extends: "extends" NAME
name_list: NAME ("," NAME)*
field_decls: field_decl ("," field_decl)*
field_decl: name_list ":" [field_mult] expr
?field_mult: SET | ONE | LONE | SOME

//============================================================================
// Facts, predicates, assertions and commands
//============================================================================

fact_decl: "fact" [NAME] block
pred_decl: "pred" NAME [pred_params] block
pred_params: "[" [decls] "]"
assert_decl: "assert" NAME block

run_cmd: "run" (NAME | block) [scope]
check_cmd: "check" (NAME | block) [scope]

scope: "for" NUMBER ["but" typescopes]   -> default_scope
     | "for" typescopes                  -> typed_scope
typescopes: typescope ("," typescope)*
typescope: [EXACTLY] NUMBER NAME

//============================================================================
// Formulas
//============================================================================

block: "{" formula* "}"

?formula: iff_f
        | formula ("or" | "||") iff_f                     -> disjunction
?iff_f: imp_f
      | iff_f ("iff" | "<=>") imp_f                       -> biconditional
?imp_f: and_f
      | and_f ("implies" | "=>") imp_f                    -> implication
      | and_f ("implies" | "=>") imp_f "else" imp_f       -> implication_else
?and_f: unary_f
      | and_f ("and" | "&&") unary_f                      -> conjunction
?unary_f: ("not" | "!") unary_f                           -> negation
        | quant
        | mult_f
        | compare
        | block
        | expr                                            -> bare
        | "(" formula ")"

quant: (ALL | SOME | NO | LONE | ONE) decls quant_body
quant_body: "|" formula
          | block
decls: decl ("," decl)*
decl: [DISJ] name_list ":" expr
mult_f: (SOME | NO | LONE | ONE) expr

compare: expr "in" expr                  -> in_compare
       | expr ("not" | "!") "in" expr    -> not_in_compare
       | expr "=" expr                   -> eq_compare
       | expr "!=" expr                  -> neq_compare
       | int_e "=" int_e                 -> int_eq
       | int_e "!=" int_e                -> int_neq
       | int_e "<" int_e                 -> int_lt
       | int_e ">" int_e                 -> int_gt
       | int_e ("=<" | "<=") int_e       -> int_lte
       | int_e ">=" int_e                -> int_gte

?int_e: "#" over_e                       -> cardinality
      | NUMBER                           -> int_literal

//============================================================================
// Relational expressions
//============================================================================

?expr: union_e
?union_e: over_e
        | union_e "+" over_e             -> union
        | union_e "-" over_e             -> difference
?over_e: inter_e
       | over_e "++" inter_e             -> override
?inter_e: prod_e
        | inter_e "&" prod_e             -> intersection
?prod_e: restr_e
       | prod_e "->" restr_e             -> product
?restr_e: join_e
        | restr_e "<:" join_e            -> domain_restriction
        | restr_e ":>" join_e            -> range_restriction
?join_e: unary_e
       | join_e "." unary_e              -> join
       | join_e "[" args "]"             -> box_join
args: expr ("," expr)*
?unary_e: primary
        | "~" unary_e                    -> transpose
        | "^" unary_e                    -> closure
        | "*" unary_e                    -> reflexive_closure
?primary: NAME                           -> name
        | THIS                           -> this_ref
        | NONE                           -> none_ref
        | UNIV                           -> univ_ref
        | IDEN                           -> iden_ref
        | "(" expr ")"
        | "{" decls "|" formula "}"      -> comprehension

//============================================================================
// Terminals
//============================================================================

ABSTRACT: "abstract"
ONE: "one"
LONE: "lone"
SOME: "some"
SET: "set"
ALL: "all"
NO: "no"
DISJ: "disj"
EXACTLY: "exactly"
THIS: "this"
NONE: "none"
UNIV: "univ"
IDEN: "iden"

NAME: /[A-Za-z_][A-Za-z0-9_']*/
NUMBER: /[0-9]+/

LINE_COMMENT: /(\/\/|--)[^\n]*/
BLOCK_COMMENT: /\/\*[\s\S]*?\*\//

%import common.WS
%ignore WS
%ignore LINE_COMMENT
%ignore BLOCK_COMMENT
"""


def _position(*items: Any) -> Optional[Position]:
    """Return the position of the first item that carries one."""
    for item in items:
        if isinstance(item, Token) and item.line is not None:
            return Position(item.line, item.column)
        position = getattr(item, "pos", None)
        if position is not None:
            return position
        if isinstance(item, (list, tuple)) and item:
            found = _position(*item)
            if found is not None:
                return found
    return None


def _names(tokens: Iterable[Token]) -> Tuple[str, ...]:
    return tuple(str(token) for token in tokens)


class ModelASTTransformer(Transformer):
    """Transform the Lark parse tree into ``ast_models`` dataclasses.

    Each method corresponds to a grammar rule or alias and receives its
    already-transformed children. Optional items arrive as ``None``
    placeholders.
    """

    # ========================================================================
    # Paragraphs
    # ========================================================================

    def model(self, args: List[Any]) -> Model:
        return Model(paragraphs=tuple(args))

    def name_list(self, args: List[Token]) -> List[Token]:
        return list(args)

    def sig_extends(self, args: List[Token]) -> Token:
        return args[0]

    def sig_decl(self, args: List[Any]) -> SigDecl:
        """Transform a signature paragraph.

        Args:
            args: ``[ABSTRACT?, multiplicity?, names, extends?, fields?, fact?]``
                with ``None`` for absent parts.
        """
        abstract, mult, names, parent, fields, fact = args
        return SigDecl(
            names=_names(names),
            abstract=abstract is not None,
            multiplicity=Multiplicity(str(mult)) if mult is not None else None,
            parent=str(parent) if parent is not None else None,
            fields=tuple(fields or ()),
            fact=fact,
            pos=_position(abstract, mult, names),
        )

    def field_decls(self, args: List[FieldDecl]) -> List[FieldDecl]:
        return list(args)

    def field_decl(self, args: List[Any]) -> FieldDecl:
        names, mult, expr = args
        return FieldDecl(
            names=_names(names),
            multiplicity=Multiplicity(str(mult)) if mult is not None else None,
            expr=expr,
            pos=_position(names),
        )

    def fact_decl(self, args: List[Any]) -> FactDecl:
        name, body = args
        return FactDecl(
            name=str(name) if name is not None else None,
            body=body,
            pos=_position(name, body),
        )

    def pred_params(self, args: List[Any]) -> Tuple[Decl, ...]:
        return tuple(args[0] or ())

    def pred_decl(self, args: List[Any]) -> PredDecl:
        name, params, body = args
        return PredDecl(
            name=str(name),
            params=tuple(params or ()),
            body=body,
            pos=_position(name),
        )

    def assert_decl(self, args: List[Any]) -> AssertDecl:
        name, body = args
        return AssertDecl(name=str(name), body=body, pos=_position(name))

    def _command(self, kind: str, args: List[Any]) -> Command:
        target, scope = args
        if isinstance(target, Token):
            return Command(
                kind=kind, target=str(target), scope=scope, pos=_position(target)
            )
        return Command(kind=kind, body=target, scope=scope, pos=_position(target))

    def run_cmd(self, args: List[Any]) -> Command:
        return self._command("run", args)

    def check_cmd(self, args: List[Any]) -> Command:
        return self._command("check", args)

    def default_scope(self, args: List[Any]) -> Scope:
        number, type_scopes = args
        return Scope(
            default=int(number),
            type_scopes=tuple(type_scopes or ()),
            pos=_position(number),
        )

    def typed_scope(self, args: List[Any]) -> Scope:
        return Scope(type_scopes=tuple(args[0]), pos=_position(args[0]))

    def typescopes(self, args: List[TypeScope]) -> List[TypeScope]:
        return list(args)

    def typescope(self, args: List[Any]) -> TypeScope:
        exactly, number, name = args
        return TypeScope(
            sig=str(name),
            count=int(number),
            exact=exactly is not None,
            pos=_position(exactly, number),
        )

    # ========================================================================
    # Formulas
    # ========================================================================

    def block(self, args: List[Any]) -> Block:
        return Block(formulas=tuple(args), pos=_position(args))

    def _logic(self, op: LogicOp, args: List[Any]) -> BinaryFormula:
        left, right = args
        return BinaryFormula(op=op, left=left, right=right, pos=_position(left))

    def disjunction(self, args: List[Any]) -> BinaryFormula:
        return self._logic(LogicOp.OR, args)

    def biconditional(self, args: List[Any]) -> BinaryFormula:
        return self._logic(LogicOp.IFF, args)

    def implication(self, args: List[Any]) -> BinaryFormula:
        return self._logic(LogicOp.IMPLIES, args)

    def implication_else(self, args: List[Any]) -> IfElse:
        condition, then, otherwise = args
        return IfElse(
            condition=condition,
            then=then,
            otherwise=otherwise,
            pos=_position(condition),
        )

    def conjunction(self, args: List[Any]) -> BinaryFormula:
        return self._logic(LogicOp.AND, args)

    def negation(self, args: List[Any]) -> Not:
        return Not(operand=args[0], pos=_position(args[0]))

    def bare(self, args: List[Any]) -> BareExpr:
        return BareExpr(expr=args[0], pos=_position(args[0]))

    def quant(self, args: List[Any]) -> Quantified:
        kind, decls, body = args
        return Quantified(
            kind=Quantifier(str(kind)),
            decls=tuple(decls),
            body=body,
            pos=_position(kind),
        )

    def quant_body(self, args: List[Any]) -> Any:
        return args[0]

    def decls(self, args: List[Decl]) -> List[Decl]:
        return list(args)

    def decl(self, args: List[Any]) -> Decl:
        disj, names, expr = args
        return Decl(
            names=_names(names),
            expr=expr,
            disjoint=disj is not None,
            pos=_position(disj, names),
        )

    def mult_f(self, args: List[Any]) -> MultFormula:
        kind, expr = args
        return MultFormula(
            kind=Quantifier(str(kind)), expr=expr, pos=_position(kind)
        )

    def _compare(self, op: CompareOp, args: List[Any], negated: bool) -> Compare:
        left, right = args
        return Compare(
            op=op, left=left, right=right, negated=negated, pos=_position(left)
        )

    def in_compare(self, args: List[Any]) -> Compare:
        return self._compare(CompareOp.IN, args, False)

    def not_in_compare(self, args: List[Any]) -> Compare:
        return self._compare(CompareOp.IN, args, True)

    def eq_compare(self, args: List[Any]) -> Compare:
        return self._compare(CompareOp.EQ, args, False)

    def neq_compare(self, args: List[Any]) -> Compare:
        return self._compare(CompareOp.EQ, args, True)

    def _int_compare(self, op: IntCompareOp, args: List[Any]) -> IntCompare:
        left, right = args
        return IntCompare(op=op, left=left, right=right, pos=_position(left))

    def int_eq(self, args: List[Any]) -> IntCompare:
        return self._int_compare(IntCompareOp.EQ, args)

    def int_neq(self, args: List[Any]) -> IntCompare:
        return self._int_compare(IntCompareOp.NEQ, args)

    def int_lt(self, args: List[Any]) -> IntCompare:
        return self._int_compare(IntCompareOp.LT, args)

    def int_gt(self, args: List[Any]) -> IntCompare:
        return self._int_compare(IntCompareOp.GT, args)

    def int_lte(self, args: List[Any]) -> IntCompare:
        return self._int_compare(IntCompareOp.LTE, args)

    def int_gte(self, args: List[Any]) -> IntCompare:
        return self._int_compare(IntCompareOp.GTE, args)

    def cardinality(self, args: List[Any]) -> Cardinality:
        return Cardinality(expr=args[0], pos=_position(args[0]))

    def int_literal(self, args: List[Token]) -> IntLiteral:
        return IntLiteral(value=int(args[0]), pos=_position(args[0]))

    # ========================================================================
    # Expressions
    # ========================================================================

    def _binary(self, op: BinaryOp, args: List[Any]) -> BinaryExpr:
        left, right = args
        return BinaryExpr(op=op, left=left, right=right, pos=_position(left))

    def union(self, args: List[Any]) -> BinaryExpr:
        return self._binary(BinaryOp.UNION, args)

    def difference(self, args: List[Any]) -> BinaryExpr:
        return self._binary(BinaryOp.DIFFERENCE, args)

    def override(self, args: List[Any]) -> BinaryExpr:
        return self._binary(BinaryOp.OVERRIDE, args)

    def intersection(self, args: List[Any]) -> BinaryExpr:
        return self._binary(BinaryOp.INTERSECTION, args)

    def product(self, args: List[Any]) -> BinaryExpr:
        return self._binary(BinaryOp.PRODUCT, args)

    def domain_restriction(self, args: List[Any]) -> BinaryExpr:
        return self._binary(BinaryOp.DOMAIN, args)

    def range_restriction(self, args: List[Any]) -> BinaryExpr:
        return self._binary(BinaryOp.RANGE, args)

    def join(self, args: List[Any]) -> BinaryExpr:
        return self._binary(BinaryOp.JOIN, args)

    def box_join(self, args: List[Any]) -> BoxJoin:
        target, box_args = args
        return BoxJoin(target=target, args=tuple(box_args), pos=_position(target))

    def args(self, args: List[Any]) -> List[Any]:
        return list(args)

    def _unary(self, op: UnaryOp, args: List[Any]) -> UnaryExpr:
        return UnaryExpr(op=op, operand=args[0], pos=_position(args[0]))

    def transpose(self, args: List[Any]) -> UnaryExpr:
        return self._unary(UnaryOp.TRANSPOSE, args)

    def closure(self, args: List[Any]) -> UnaryExpr:
        return self._unary(UnaryOp.CLOSURE, args)

    def reflexive_closure(self, args: List[Any]) -> UnaryExpr:
        return self._unary(UnaryOp.REFLEXIVE_CLOSURE, args)

    def name(self, args: List[Token]) -> Name:
        return Name(name=str(args[0]), pos=_position(args[0]))

    def this_ref(self, args: List[Token]) -> This:
        return This(pos=_position(args[0]))

    def none_ref(self, args: List[Token]) -> Constant:
        return Constant(kind=ConstantKind.NONE, pos=_position(args[0]))

    def univ_ref(self, args: List[Token]) -> Constant:
        return Constant(kind=ConstantKind.UNIV, pos=_position(args[0]))

    def iden_ref(self, args: List[Token]) -> Constant:
        return Constant(kind=ConstantKind.IDEN, pos=_position(args[0]))

    def comprehension(self, args: List[Any]) -> Comprehension:
        decls, body = args
        return Comprehension(decls=tuple(decls), body=body, pos=_position(decls))


class GrammarParser:
    """Parser for model source based on ``MODEL_GRAMMAR``.

    Attributes:
        parser: The Lark parser instance.
        transformer: The AST transformer instance.

    Example:
        >>> parser = GrammarParser()
        >>> tree = parser.parse("sig Node { edges: set Node }")
        >>> model = parser.parse_to_ast("sig Node { edges: set Node }")
    """

    parser: Lark
    transformer: ModelASTTransformer

    def __init__(self, debug: bool = False) -> None:
        """Initialize the grammar parser.

        Args:
            debug: If True, let Lark report grammar conflicts while building.
        """
        self.parser = Lark(
            MODEL_GRAMMAR,
            parser="lalr",
            lexer="basic",
            debug=debug,
            maybe_placeholders=True,
        )
        self.transformer = ModelASTTransformer()

    def parse(self, source: str) -> Tree:
        """Parse model source into a Lark parse tree.

        Raises:
            ParseError: If the source has syntax errors.
        """
        try:
            return self.parser.parse(source)
        except UnexpectedInput as error:
            raise self._to_parse_error(error, source) from None

    def parse_to_ast(self, source: str) -> Model:
        """Parse model source into a ``Model``.

        Either the complete model is returned or ``ParseError`` is raised;
        there is no partial result.
        """
        tree = self.parse(source)
        model = self.transformer.transform(tree)
        LOGGER.debug("Parsed %d paragraphs", len(model.paragraphs))
        return model

    def validate(self, source: str) -> bool:
        """Return True if the source is syntactically valid."""
        try:
            self.parse(source)
            return True
        except ParseError:
            return False

    def _display_terminal(self, name: str) -> str:
        if name == "$END":
            return "<EOF>"
        try:
            terminal = self.parser.get_terminal(name)
        except KeyError:
            return name
        if isinstance(terminal.pattern, PatternStr):
            return repr(terminal.pattern.value)
        return name

    def _to_parse_error(self, error: UnexpectedInput, source: str) -> ParseError:
        line = getattr(error, "line", None)
        column = getattr(error, "column", None)
        at_end = isinstance(error, UnexpectedEOF) or (
            isinstance(error, UnexpectedToken) and error.token.type == "$END"
        )
        if at_end or line is None or line < 1:
            line = source.count("\n") + 1
            column = len(source) - source.rfind("\n")
        if isinstance(error, UnexpectedToken):
            # accepts holds only the terminals that can really be shifted
            expected = error.accepts or error.expected
            found = (
                "<EOF>" if error.token.type == "$END" else str(error.token)
            )
        elif isinstance(error, UnexpectedCharacters):
            expected = error.allowed or ()
            found = source[error.pos_in_stream] if error.pos_in_stream < len(
                source
            ) else "<EOF>"
        elif isinstance(error, UnexpectedEOF):
            expected = error.expected
            found = "<EOF>"
        else:
            expected = ()
            found = "?"
        display = [self._display_terminal(name) for name in expected or ()]
        LOGGER.debug("Parse error at %s:%s on %r", line, column, found)
        return ParseError(line, column, display, found)


_DEFAULT_PARSER: Optional[GrammarParser] = None


def parse(source: str) -> Model:
    """Parse model source with a shared ``GrammarParser``.

    The Lark parser is stateless between calls, so one instance is shared.

    Raises:
        ParseError: If the source has syntax errors.
    """
    global _DEFAULT_PARSER
    if _DEFAULT_PARSER is None:
        _DEFAULT_PARSER = GrammarParser()
    return _DEFAULT_PARSER.parse_to_ast(source)
