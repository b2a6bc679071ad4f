"""Name and type resolution.

The resolver turns the untyped ``Model`` into a ``TypedModel``. It builds the
signature table, declares fields, binds every identifier to a signature, field,
predicate or bound variable, and computes the arity and column types of every
expression bottom-up.

Field names are global: a field may not share its name with another field,
a signature or a predicate, wherever in the hierarchy it is declared. This
keeps joins such as ``x.f`` unambiguous.

Example:
    >>> from pyalloy.grammar_parser import parse
    >>> typed = resolve(parse("sig A { r: set A } fact { all a: A | a not in a.r }"))
    >>> typed.fields[0].arity
    2
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field, replace
from typing import Dict, FrozenSet, List, Mapping, Optional, Set, Tuple

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
    IfElse,
    IntCompare,
    IntLiteral,
    LogicOp,
    Model,
    MultFormula,
    Multiplicity,
    Name,
    Node,
    Not,
    PredDecl,
    Quantified,
    Quantifier,
    Scope,
    This,
    UnaryExpr,
    UnaryOp,
    render,
)
from pyalloy.enums import CommandKind
from pyalloy.exceptions import ModelTypeError, ResolutionError, ScopeError
from pyalloy.logger import LOGGER
from pyalloy.signatures import SignatureTable
from pyalloy.typed_models import (
    TRUE,
    AndF,
    BinaryRel,
    Binding,
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
    TypedAssertion,
    TypedCommand,
    TypedExpr,
    TypedField,
    TypedFormula,
    TypedIntExpr,
    TypedModel,
    TypedPredicate,
    TypedScope,
    TypedTypeScope,
    Types,
    UnaryRel,
    Variable,
    VarRef,
)


@dataclass(frozen=True)
class _Context:
    """Names visible at one point of a formula.

    Attributes:
        where: Description of the enclosing paragraph, used in errors.
        variables: Bound variables by name; inner bindings shadow outer ones.
        this: The ``this`` variable inside a signature fact.
        this_sig: The signature whose fact is being resolved.
    """

    where: str
    variables: Mapping[str, VarRef] = field(default_factory=dict)
    this: Optional[VarRef] = None
    this_sig: Optional[int] = None

    def bind(self, bindings: List[Binding]) -> "_Context":
        variables = dict(self.variables)
        for binding in bindings:
            variables[binding.var.name] = VarRef(
                types=binding.domain.types, var=binding.var
            )
        return replace(self, variables=variables)


def _loc(node: Optional[Node]) -> Tuple[Optional[int], Optional[int]]:
    pos = getattr(node, "pos", None)
    if pos is None:
        return None, None
    return pos.line, pos.column


def _type_error(node: Node, reason: str) -> ModelTypeError:
    line, column = _loc(node)
    return ModelTypeError(render(node), reason, line, column)


class Resolver:
    """Resolve one parsed model.

    A resolver is single-use: it owns the variable numbering of the model it
    resolves, so every analysis builds its own.
    """

    def __init__(self, model: Model):
        self.model = model
        self.table: Optional[SignatureTable] = None
        self.fields: List[TypedField] = []
        self.field_index: Dict[str, int] = {}
        self.predicates: Dict[str, TypedPredicate] = {}
        self.assertions: Dict[str, TypedAssertion] = {}
        self._pred_decls: Dict[str, PredDecl] = {}
        self._assert_decls: Dict[str, AssertDecl] = {}
        self._pred_params: Dict[str, Tuple[Binding, ...]] = {}
        self._calls: Dict[str, Set[str]] = {}
        self._current_pred: Optional[str] = None
        self._uids = itertools.count()
        self._disj_groups = itertools.count()

    # ========================================================================
    # Declarations
    # ========================================================================

    def resolve(self) -> TypedModel:
        """Run every resolution pass and return the typed model.

        Raises:
            ResolutionError: For unknown or duplicate names and recursion.
            ModelTypeError: For arity and column type mismatches.
            ScopeError: For non-positive or duplicated scope entries.
        """
        self.table = SignatureTable.from_declarations(self.model.sigs)
        self._declare_paragraph_names()
        self._declare_fields()

        for name, decl in self._pred_decls.items():
            ctx = _Context(where=f"pred {name}")
            params = self._bindings(decl.params, ctx)
            self._pred_params[name] = params

        facts: List[TypedFormula] = []
        for sig_decl in self.model.sigs:
            if sig_decl.fact is None:
                continue
            for name in sig_decl.names:
                facts.append(self._sig_fact(self.table.lookup(name), sig_decl.fact))
        for fact in self.model.facts:
            where = f"fact {fact.name}" if fact.name else "fact"
            facts.append(self._formula(fact.body, _Context(where=where)))

        for name, decl in self._pred_decls.items():
            params = self._pred_params[name]
            ctx = _Context(where=f"pred {name}").bind(list(params))
            self._current_pred = name
            self._calls[name] = set()
            body = self._formula(decl.body, ctx)
            self._current_pred = None
            self.predicates[name] = TypedPredicate(name=name, params=params, body=body)
        self._check_recursion()

        for name, decl in self._assert_decls.items():
            body = self._formula(decl.body, _Context(where=f"assert {name}"))
            self.assertions[name] = TypedAssertion(name=name, body=body)

        commands = [self._command(command) for command in self.model.commands]

        LOGGER.debug(
            "Resolved %d signatures, %d fields, %d facts, %d predicates, "
            "%d assertions, %d commands",
            len(self.table),
            len(self.fields),
            len(facts),
            len(self.predicates),
            len(self.assertions),
            len(commands),
        )
        return TypedModel(
            signatures=self.table,
            fields=self.fields,
            facts=facts,
            predicates=self.predicates,
            assertions=self.assertions,
            commands=commands,
        )

    def _declare_paragraph_names(self) -> None:
        for decl in self.model.predicates:
            self._check_fresh(decl.name, f"pred {decl.name}", decl)
            self._pred_decls[decl.name] = decl
        for decl in self.model.assertions:
            self._check_fresh(decl.name, f"assert {decl.name}", decl)
            self._assert_decls[decl.name] = decl

    def _check_fresh(self, name: str, where: str, node: Node) -> None:
        if (
            self.table.lookup(name) is not None
            or name in self.field_index
            or name in self._pred_decls
            or name in self._assert_decls
        ):
            line, column = _loc(node)
            raise ResolutionError(
                name, where, f"Duplicate declaration of '{name}'", line, column
            )

    def _declare_fields(self) -> None:
        pending = []
        for sig_decl in self.model.sigs:
            if sig_decl.fields and len(sig_decl.names) > 1:
                line, column = _loc(sig_decl)
                raise ResolutionError(
                    sig_decl.fields[0].names[0],
                    f"sig {', '.join(sig_decl.names)}",
                    "Fields cannot be declared on several signatures at once",
                    line,
                    column,
                )
            for field_decl in sig_decl.fields:
                owner = self.table.lookup(sig_decl.names[0])
                for name in field_decl.names:
                    self._check_fresh(name, f"sig {sig_decl.names[0]}", field_decl)
                    self.field_index[name] = -1
                    pending.append((name, owner, field_decl))

        for name, owner, field_decl in pending:
            ctx = _Context(where=f"field {name}")
            target = self._expr(field_decl.expr, ctx)
            multiplicity = field_decl.multiplicity
            if multiplicity is None:
                multiplicity = Multiplicity.ONE if target.arity == 1 else Multiplicity.SET
            index = len(self.fields)
            typed = TypedField(
                index=index,
                name=name,
                owner=owner,
                multiplicity=multiplicity,
                target=target,
                types=(frozenset({owner}),) + target.types,
                pos=field_decl.pos,
            )
            self.fields.append(typed)
            self.field_index[name] = index
            self.table[owner].fields.append(index)

    def _sig_fact(self, sig: int, fact: Block) -> TypedFormula:
        name = self.table.name_of(sig)
        domain = SigRef(types=(frozenset({sig}),), sig=sig, name=name)
        binding = Binding(var=Variable(next(self._uids), "this"), domain=domain)
        ctx = _Context(where=f"sig {name}", this_sig=sig).bind([binding])
        ctx = replace(ctx, this=ctx.variables["this"])
        body = self._formula(fact, ctx)
        return QuantifiedF(kind=Quantifier.ALL, bindings=(binding,), body=body)

    def _check_recursion(self) -> None:
        state: Dict[str, int] = {}

        def visit(name: str) -> None:
            state[name] = 1
            for callee in sorted(self._calls.get(name, ())):
                if state.get(callee) == 1:
                    decl = self._pred_decls[callee]
                    line, column = _loc(decl)
                    raise ResolutionError(
                        callee,
                        f"pred {name}",
                        f"Recursive predicate '{callee}'",
                        line,
                        column,
                    )
                if callee not in state:
                    visit(callee)
            state[name] = 2

        for name in self._pred_decls:
            if name not in state:
                visit(name)

    # ========================================================================
    # Commands
    # ========================================================================

    def _command(self, command: Command) -> TypedCommand:
        kind = CommandKind(command.kind)
        ctx = _Context(where=command.label)
        if command.target is None:
            goal = self._formula(command.body, ctx)
            if kind is CommandKind.CHECK:
                goal = NotF(goal)
        elif kind is CommandKind.RUN:
            goal = self._run_goal(command, ctx)
        else:
            assertion = self.assertions.get(command.target)
            if assertion is None:
                line, column = _loc(command)
                raise ResolutionError(
                    command.target,
                    command.label,
                    f"'{command.target}' is not an assertion",
                    line,
                    column,
                )
            goal = NotF(assertion.body)
        return TypedCommand(
            kind=kind,
            label=command.label,
            name=command.target,
            goal=goal,
            scope=self._scope(command.scope, command.label),
        )

    def _run_goal(self, command: Command, ctx: _Context) -> TypedFormula:
        predicate = self.predicates.get(command.target)
        if predicate is None:
            line, column = _loc(command)
            raise ResolutionError(
                command.target,
                command.label,
                f"'{command.target}' is not a predicate",
                line,
                column,
            )
        args = tuple(
            VarRef(types=p.domain.types, var=p.var) for p in predicate.params
        )
        call = PredCall(pred=predicate.name, args=args)
        if not predicate.params:
            return call
        return QuantifiedF(kind=Quantifier.SOME, bindings=predicate.params, body=call)

    def _scope(self, scope: Optional[Scope], where: str) -> TypedScope:
        if scope is None:
            return TypedScope()
        line, column = _loc(scope)
        if scope.default is not None and scope.default < 1:
            raise ScopeError(
                f"Scope must be positive in {where}, got {scope.default}",
                line,
                column,
            )
        seen: Set[int] = set()
        entries = []
        for type_scope in scope.type_scopes:
            line, column = _loc(type_scope)
            sig = self.table.lookup(type_scope.sig)
            if sig is None:
                raise ResolutionError(type_scope.sig, where, line=line, column=column)
            if type_scope.count < 1:
                raise ScopeError(
                    f"Scope of '{type_scope.sig}' must be positive, "
                    f"got {type_scope.count}",
                    line,
                    column,
                )
            if sig in seen:
                raise ScopeError(
                    f"Signature '{type_scope.sig}' is scoped twice", line, column
                )
            seen.add(sig)
            entries.append(
                TypedTypeScope(sig=sig, count=type_scope.count, exact=type_scope.exact)
            )
        return TypedScope(default=scope.default, type_scopes=tuple(entries))

    # ========================================================================
    # Formulas
    # ========================================================================

    def _formula(self, node: Node, ctx: _Context) -> TypedFormula:
        if isinstance(node, Block):
            parts = tuple(self._formula(f, ctx) for f in node.formulas)
            if not parts:
                return TRUE
            return parts[0] if len(parts) == 1 else AndF(parts)
        if isinstance(node, Not):
            return NotF(self._formula(node.operand, ctx))
        if isinstance(node, BinaryFormula):
            left = self._formula(node.left, ctx)
            right = self._formula(node.right, ctx)
            if node.op is LogicOp.AND:
                return AndF((left, right))
            if node.op is LogicOp.OR:
                return OrF((left, right))
            if node.op is LogicOp.IMPLIES:
                return ImpliesF(left, right)
            return IffF(left, right)
        if isinstance(node, IfElse):
            return IfThenElseF(
                self._formula(node.condition, ctx),
                self._formula(node.then, ctx),
                self._formula(node.otherwise, ctx),
            )
        if isinstance(node, Compare):
            left = self._expr(node.left, ctx)
            right = self._expr(node.right, ctx)
            if left.arity != right.arity:
                raise _type_error(
                    node,
                    f"Operands of '{node.op.value}' have arity "
                    f"{left.arity} and {right.arity}",
                )
            result = Subset(left, right) if node.op is CompareOp.IN else Equal(left, right)
            return NotF(result) if node.negated else result
        if isinstance(node, IntCompare):
            return IntTest(
                node.op, self._int_expr(node.left, ctx), self._int_expr(node.right, ctx)
            )
        if isinstance(node, MultFormula):
            return MultTest(node.kind, self._expr(node.expr, ctx))
        if isinstance(node, Quantified):
            bindings = self._bindings(node.decls, ctx)
            body = self._formula(node.body, ctx.bind(list(bindings)))
            return QuantifiedF(kind=node.kind, bindings=bindings, body=body)
        if isinstance(node, BareExpr):
            return self._pred_call(node, ctx)
        raise _type_error(node, "Expected a formula")

    def _pred_call(self, node: BareExpr, ctx: _Context) -> TypedFormula:
        expr = node.expr
        arg_nodes: Tuple[Node, ...] = ()
        if isinstance(expr, BoxJoin) and isinstance(expr.target, Name):
            arg_nodes = expr.args
            expr = expr.target
        if not (
            isinstance(expr, Name)
            and expr.name in self._pred_decls
            and expr.name not in ctx.variables
        ):
            raise _type_error(node.expr, "Expression used where a formula is required")
        name = expr.name
        params = self._pred_params.get(name)
        if params is None:
            # Called from a predicate's own parameter declarations.
            line, column = _loc(node)
            raise ResolutionError(name, ctx.where, line=line, column=column)
        if len(arg_nodes) != len(params):
            raise _type_error(
                node.expr,
                f"Predicate '{name}' takes {len(params)} arguments, "
                f"got {len(arg_nodes)}",
            )
        args = []
        for arg_node, param in zip(arg_nodes, params):
            arg = self._expr(arg_node, ctx)
            if arg.arity != param.domain.arity:
                raise _type_error(
                    arg_node,
                    f"Argument for '{param.var.name}' must have arity "
                    f"{param.domain.arity}",
                )
            args.append(arg)
        if self._current_pred is not None:
            self._calls[self._current_pred].add(name)
        return PredCall(pred=name, args=tuple(args))

    def _bindings(self, decls: Tuple[Decl, ...], ctx: _Context) -> Tuple[Binding, ...]:
        """Bind the variables of a declaration list.

        Later declarations see the variables of earlier ones, so domains
        such as ``all x: A, y: x.r`` are allowed.
        """
        bindings: List[Binding] = []
        for decl in decls:
            domain = self._expr(decl.expr, ctx.bind(bindings))
            if domain.arity != 1:
                raise _type_error(
                    decl.expr,
                    f"Variables must range over a set, got arity {domain.arity}",
                )
            group = next(self._disj_groups) if decl.disjoint else None
            for name in decl.names:
                var = Variable(next(self._uids), name)
                bindings.append(Binding(var=var, domain=domain, disj_group=group))
        return tuple(bindings)

    def _int_expr(self, node: Node, ctx: _Context) -> TypedIntExpr:
        if isinstance(node, Cardinality):
            return CardinalityOf(self._expr(node.expr, ctx))
        if isinstance(node, IntLiteral):
            return IntValue(node.value)
        raise _type_error(node, "Expected an integer expression")

    # ========================================================================
    # Expressions
    # ========================================================================

    @property
    def _univ(self) -> FrozenSet[int]:
        return frozenset(self.table.top_level())

    def _expr(self, node: Node, ctx: _Context) -> TypedExpr:
        if isinstance(node, Name):
            return self._name(node, ctx)
        if isinstance(node, This):
            if ctx.this is None:
                line, column = _loc(node)
                raise ResolutionError(
                    "this", ctx.where, "'this' is only allowed in signature facts",
                    line, column,
                )
            return ctx.this
        if isinstance(node, Constant):
            types: Types = (self._univ,)
            if node.kind is ConstantKind.IDEN:
                types = (self._univ, self._univ)
            return ConstantRel(types=types, kind=node.kind)
        if isinstance(node, BinaryExpr):
            left = self._expr(node.left, ctx)
            right = self._expr(node.right, ctx)
            return self._binary(node, left, right)
        if isinstance(node, UnaryExpr):
            return self._unary(node, self._expr(node.operand, ctx))
        if isinstance(node, BoxJoin):
            if isinstance(node.target, Name) and node.target.name in self._pred_decls:
                raise _type_error(node, "Predicate call used as an expression")
            result = self._expr(node.target, ctx)
            for arg in node.args:
                result = self._join(node, self._expr(arg, ctx), result)
            return result
        if isinstance(node, Comprehension):
            bindings = self._bindings(node.decls, ctx)
            body = self._formula(node.body, ctx.bind(list(bindings)))
            return SetComprehension(
                types=tuple(b.domain.types[0] for b in bindings),
                bindings=bindings,
                body=body,
            )
        raise _type_error(node, "Expected a relational expression")

    def _name(self, node: Name, ctx: _Context) -> TypedExpr:
        name = node.name
        if name in ctx.variables:
            return ctx.variables[name]
        field_index = self.field_index.get(name)
        if field_index is not None and field_index >= 0:
            typed_field = self.fields[field_index]
            field_ref = FieldRef(types=typed_field.types, field=field_index, name=name)
            if ctx.this is not None and self.table.is_subtype(
                ctx.this_sig, typed_field.owner
            ):
                return BinaryRel(
                    types=typed_field.types[1:],
                    op=BinaryOp.JOIN,
                    left=ctx.this,
                    right=field_ref,
                )
            return field_ref
        sig = self.table.lookup(name)
        if sig is not None:
            return SigRef(types=(frozenset({sig}),), sig=sig, name=name)
        if name in self._pred_decls:
            raise _type_error(node, "Predicate used as an expression")
        line, column = _loc(node)
        raise ResolutionError(name, ctx.where, line=line, column=column)

    def _join(self, node: Node, left: TypedExpr, right: TypedExpr) -> TypedExpr:
        if left.arity + right.arity - 2 < 1:
            raise _type_error(
                node,
                f"Join of arity {left.arity} and {right.arity} relations "
                "has no columns",
            )
        if not self.table.types_overlap(left.types[-1], right.types[0]):
            raise _type_error(
                node,
                f"Join columns never overlap ({self.table.render_type(left.types[-1])} "
                f"and {self.table.render_type(right.types[0])})",
            )
        return BinaryRel(
            types=left.types[:-1] + right.types[1:],
            op=BinaryOp.JOIN,
            left=left,
            right=right,
        )

    def _binary(self, node: BinaryExpr, left: TypedExpr, right: TypedExpr) -> TypedExpr:
        op = node.op
        if op is BinaryOp.JOIN:
            return self._join(node, left, right)
        if op is BinaryOp.PRODUCT:
            types = left.types + right.types
        elif op is BinaryOp.DOMAIN:
            if left.arity != 1:
                raise _type_error(node, "Left operand of '<:' must be a set")
            types = right.types
        elif op is BinaryOp.RANGE:
            if right.arity != 1:
                raise _type_error(node, "Right operand of ':>' must be a set")
            types = left.types
        else:
            if left.arity != right.arity:
                raise _type_error(
                    node,
                    f"Operands of '{op.value}' have arity "
                    f"{left.arity} and {right.arity}",
                )
            if op in (BinaryOp.UNION, BinaryOp.OVERRIDE):
                types = tuple(a | b for a, b in zip(left.types, right.types))
            else:
                types = left.types
        return BinaryRel(types=types, op=op, left=left, right=right)

    def _unary(self, node: UnaryExpr, operand: TypedExpr) -> TypedExpr:
        if operand.arity != 2:
            raise _type_error(
                node,
                f"'{node.op.value}' needs a binary relation, got arity {operand.arity}",
            )
        if node.op is UnaryOp.TRANSPOSE:
            types = (operand.types[1], operand.types[0])
        elif node.op is UnaryOp.CLOSURE:
            types = operand.types
        else:
            types = (self._univ, self._univ)
        return UnaryRel(types=types, op=node.op, operand=operand)


def resolve(model: Model) -> TypedModel:
    """Resolve a parsed model into a ``TypedModel``.

    Raises:
        ResolutionError: For unknown, duplicate or recursive names.
        ModelTypeError: For ill-typed expressions.
        ScopeError: For invalid scope clauses.
    """
    return Resolver(model).resolve()
