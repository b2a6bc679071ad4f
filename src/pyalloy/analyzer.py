"""End-to-end analysis pipeline.

``analyze`` runs one command of a model through every stage:

    source -> parse -> resolve -> encode -> compile -> solve -> format

and always returns an ``AnalysisResult``: syntax errors become PARSE_ERROR,
resolution, type and scope errors become TYPE_ERROR, and UNSAT and timeouts
are ordinary outcomes. Only a failure of the SAT backend itself
(``SolverError``) propagates.

Every call builds its own resolver, circuit and solver, so concurrent
analyses share no mutable state.

Example:
    >>> result = analyze("sig A { r: set A } run {} for 2")
    >>> result.status
    <Status.SAT: 'SAT'>
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Iterator, List, Mapping, Optional, Union

from pyalloy.ast_models import Quantifier
from pyalloy.config import DEFAULT_CONFIG, AnalyzerConfig
from pyalloy.encoder import Encoding, encode, merge_scope
from pyalloy.enums import CommandKind, Status
from pyalloy.evaluator import compile_formulas
from pyalloy.exceptions import ModelTypeError, ParseError, ResolutionError, ScopeError
from pyalloy.formatter import (
    AnalysisResult,
    Instance,
    decode_instance,
    format_error,
    format_result,
)
from pyalloy.grammar_parser import parse
from pyalloy.logger import LOGGER
from pyalloy.resolver import resolve
from pyalloy.solver import Sat, SolverAdapter
from pyalloy.typed_models import (
    TRUE,
    NotF,
    PredCall,
    QuantifiedF,
    TypedCommand,
    TypedModel,
    VarRef,
)

CommandSelector = Union[str, int, None]


@dataclass
class PreparedCommand:
    """A command that is ready to be handed to the solver."""

    model: TypedModel
    command: TypedCommand
    encoding: Encoding
    roots: List[int]


def select_command(model: TypedModel, selector: CommandSelector = None) -> TypedCommand:
    """Pick the command to analyze.

    Args:
        model: The typed model.
        selector: None for the first command, an index, or a name. A name
            may be a command label (``"run show"``), the predicate or
            assertion a command refers to, or a predicate or assertion with
            no command of its own.

    Returns:
        TypedCommand: The selected command. A model without commands yields
        ``run {}``.

    Raises:
        ResolutionError: If nothing matches the selector.
    """
    commands = model.commands
    if selector is None:
        if commands:
            return commands[0]
        return TypedCommand(kind=CommandKind.RUN, label="run {}", name=None, goal=TRUE)
    if isinstance(selector, int):
        if 0 <= selector < len(commands):
            return commands[selector]
        raise ResolutionError(
            str(selector),
            "commands",
            f"Command index {selector} out of range ({len(commands)} commands)",
        )
    for command in commands:
        if selector in (command.label, command.name):
            return command
    predicate = model.predicates.get(selector)
    if predicate is not None:
        goal = PredCall(
            pred=selector,
            args=tuple(VarRef(types=p.domain.types, var=p.var) for p in predicate.params),
        )
        if predicate.params:
            goal = QuantifiedF(kind=Quantifier.SOME, bindings=predicate.params, body=goal)
        return TypedCommand(
            kind=CommandKind.RUN, label=f"run {selector}", name=selector, goal=goal
        )
    assertion = model.assertions.get(selector)
    if assertion is not None:
        return TypedCommand(
            kind=CommandKind.CHECK,
            label=f"check {selector}",
            name=selector,
            goal=NotF(assertion.body),
        )
    raise ResolutionError(selector, "commands", f"No command named '{selector}'")


def prepare(
    source: str,
    command: CommandSelector = None,
    scope: Optional[int] = None,
    type_scopes: Optional[Mapping[str, int]] = None,
    config: Optional[AnalyzerConfig] = None,
) -> PreparedCommand:
    """Parse, resolve, encode and compile one command.

    Raises:
        ParseError: On malformed source.
        ResolutionError, ModelTypeError, ScopeError: On semantic errors.
    """
    config = config or DEFAULT_CONFIG
    model = resolve(parse(source))
    selected = select_command(model, command)
    merged = merge_scope(model.signatures, selected.scope, scope, type_scopes)
    encoding = encode(
        model,
        merged,
        default_scope=config.default_scope,
        symmetry_breaking=config.symmetry_breaking,
    )
    goal = compile_formulas(model, encoding, selected.goal)
    LOGGER.info(
        "Prepared '%s': %d variables, %d gates",
        selected.label,
        encoding.circuit.num_vars,
        len(encoding.circuit.gates),
    )
    return PreparedCommand(
        model=model,
        command=selected,
        encoding=encoding,
        roots=encoding.base_constraints + [goal],
    )


def _elapsed(start: float) -> float:
    return (time.perf_counter() - start) * 1000.0


def analyze(
    source: str,
    command: CommandSelector = None,
    scope: Optional[int] = None,
    type_scopes: Optional[Mapping[str, int]] = None,
    timeout: Optional[float] = None,
    cancel: Optional[threading.Event] = None,
    config: Optional[AnalyzerConfig] = None,
) -> AnalysisResult:
    """Analyze one command of a model.

    Args:
        source: Model source text.
        command: Which command to run; see ``select_command``.
        scope: Default scope overriding the command's ``for N``.
        type_scopes: Per-signature bounds overriding the command's.
        timeout: Seconds allowed for the SAT backend; defaults to the
            configured ``timeout_seconds``.
        cancel: Event that, once set, aborts the search with TIMEOUT.
        config: Analyzer settings; defaults to the packaged configuration.

    Returns:
        AnalysisResult: The outcome. Never raises for problems in the model.

    Raises:
        SolverError: If the SAT backend fails.
    """
    config = config or DEFAULT_CONFIG
    start = time.perf_counter()
    try:
        prepared = prepare(source, command, scope, type_scopes, config)
    except ParseError as error:
        LOGGER.info("Parse error: %s", error)
        return format_error(Status.PARSE_ERROR, error, elapsed_ms=_elapsed(start))
    except (ResolutionError, ModelTypeError, ScopeError) as error:
        LOGGER.info("Type error: %s", error)
        return format_error(Status.TYPE_ERROR, error, elapsed_ms=_elapsed(start))

    encoding = prepared.encoding
    adapter = SolverAdapter(config.solver_name)
    outcome = adapter.solve(
        encoding.circuit,
        prepared.roots,
        timeout=timeout if timeout is not None else config.timeout_seconds,
        cancel=cancel,
        phases=encoding.preferred_phases() if config.prefer_populated else None,
        preferred=encoding.populated_assumptions() if config.prefer_populated else (),
    )
    label = prepared.command.label
    if isinstance(outcome, Sat):
        instance = decode_instance(encoding, outcome.true_vars)
        result = format_result(instance, label, _elapsed(start), outcome.solve_ms)
    else:
        result = format_result(outcome, label, _elapsed(start), outcome.solve_ms)
    LOGGER.info("%s: %s in %.1f ms", label, result.status.value, result.elapsed_ms)
    return result


def enumerate_instances(
    source: str,
    limit: Optional[int] = 10,
    command: CommandSelector = None,
    scope: Optional[int] = None,
    type_scopes: Optional[Mapping[str, int]] = None,
    timeout: Optional[float] = None,
    cancel: Optional[threading.Event] = None,
    config: Optional[AnalyzerConfig] = None,
) -> Iterator[Instance]:
    """Yield distinct instances of a command, up to ``limit``.

    After each instance a clause excluding its exact assignment of
    signature and field variables is added, so no instance repeats. With
    symmetry breaking on, instances that differ only by renaming atoms of a
    top-level signature are mostly collapsed.

    Unlike ``analyze``, errors in the model are raised.

    Raises:
        ParseError: On malformed source.
        ResolutionError, ModelTypeError, ScopeError: On semantic errors.
        SolverError: If the SAT backend fails.
    """
    config = config or DEFAULT_CONFIG
    prepared = prepare(source, command, scope, type_scopes, config)
    encoding = prepared.encoding
    timeout = timeout if timeout is not None else config.timeout_seconds
    deadline = None if timeout is None else time.monotonic() + timeout
    phases = encoding.preferred_phases() if config.prefer_populated else None
    adapter = SolverAdapter(config.solver_name)
    count = 0
    with adapter.session(encoding.circuit, prepared.roots, phases) as session:
        while limit is None or count < limit:
            outcome = session.solve((), deadline, cancel)
            if not isinstance(outcome, Sat):
                LOGGER.info("Enumeration stopped after %d instances", count)
                return
            count += 1
            yield decode_instance(encoding, outcome.true_vars)
            if not encoding.primary_variables:
                return
            session.block(
                -var if var in outcome.true_vars else var
                for var in encoding.primary_variables
            )
