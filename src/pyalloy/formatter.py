"""Decode solver output and package analysis results.

``decode_instance`` reads a satisfying assignment back into named atoms and
tuples. Each atom is named after its most specific signature, numbered in
allocation order: ``Node$0``, ``Node$1``, ``Dir$0``.

``AnalysisResult`` is the serializable outcome of one analysis. It is a frozen
pydantic model; ``to_dict`` produces the camel-cased wire form
(``elapsedMs``, ``solveMs``) and ``tree`` a ``rich`` rendering.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field
from rich import print as rprint
from rich.markup import escape
from rich.tree import Tree

from pyalloy.ast_models import (
    AssertDecl,
    Command,
    FactDecl,
    Model,
    PredDecl,
    SigDecl,
    render,
)
from pyalloy.encoder import Encoding
from pyalloy.enums import Status
from pyalloy.exceptions import AlloyError
from pyalloy.solver import Timeout, Unsat


@dataclass(frozen=True)
class Instance:
    """Atoms of every signature and tuples of every field, by name."""

    signatures: Mapping[str, Tuple[str, ...]]
    fields: Mapping[str, Tuple[Tuple[str, ...], ...]]

    def atoms(self, signature: str) -> Tuple[str, ...]:
        return self.signatures[signature]

    def tuples(self, field_name: str) -> Tuple[Tuple[str, ...], ...]:
        return self.fields[field_name]


def atom_names(encoding: Encoding, atoms_by_sig: Mapping[int, List[int]]) -> Dict[int, str]:
    """Display name of every existing atom.

    The name comes from the deepest signature that contains the atom; atoms
    of that signature are numbered in allocation order.
    """
    table = encoding.model.signatures
    owner: Dict[int, int] = {}
    for sig in sorted(range(len(table)), key=table.depth):
        for atom in atoms_by_sig.get(sig, ()):
            owner[atom] = sig
    counters: Dict[int, int] = {}
    names: Dict[int, str] = {}
    for atom in sorted(owner):
        sig = owner[atom]
        names[atom] = f"{table.name_of(sig)}${counters.get(sig, 0)}"
        counters[sig] = counters.get(sig, 0) + 1
    return names


def decode_instance(encoding: Encoding, true_vars: Iterable[int]) -> Instance:
    """Turn the true variables of a solution into an ``Instance``."""
    raw = encoding.extract(true_vars)
    names = atom_names(encoding, raw.signatures)
    table = encoding.model.signatures
    signatures = {
        table.name_of(sig): tuple(names[atom] for atom in atoms)
        for sig, atoms in raw.signatures.items()
    }
    fields = {
        encoding.model.fields[index].name: tuple(
            tuple(names[atom] for atom in t) for t in tuples
        )
        for index, tuples in raw.fields.items()
    }
    return Instance(
        signatures=MappingProxyType(signatures), fields=MappingProxyType(fields)
    )


class SignatureResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    atoms: List[str]


class FieldResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    tuples: List[List[str]]


class ErrorInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    line: Optional[int] = None
    column: Optional[int] = None
    message: str


class AnalysisResult(BaseModel):
    """Outcome of analyzing one command.

    Attributes:
        status: SAT, UNSAT, TIMEOUT, PARSE_ERROR or TYPE_ERROR.
        command: Label of the command that was run, if one was reached.
        signatures: Atoms of each signature (SAT only).
        field_results: Tuples of each field (SAT only); serialized as ``fields``.
        elapsed_ms: Wall time of the whole analysis.
        solve_ms: Time spent inside the SAT backend, if it was called.
        error: Location and message for PARSE_ERROR and TYPE_ERROR.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    status: Status
    command: Optional[str] = None
    signatures: List[SignatureResult] = Field(default_factory=list)
    field_results: List[FieldResult] = Field(default_factory=list, alias="fields")
    elapsed_ms: float = Field(0.0, alias="elapsedMs")
    solve_ms: Optional[float] = Field(None, alias="solveMs")
    error: Optional[ErrorInfo] = None

    @property
    def satisfiable(self) -> bool:
        return self.status is Status.SAT

    def atoms(self, signature: str) -> List[str]:
        for entry in self.signatures:
            if entry.name == signature:
                return entry.atoms
        raise KeyError(signature)

    def tuples(self, field_name: str) -> List[List[str]]:
        for entry in self.field_results:
            if entry.name == field_name:
                return entry.tuples
        raise KeyError(field_name)

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)

    def to_json(self, indent: Optional[int] = 2) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True, indent=indent)

    def tree(self) -> Tree:
        """A ``rich`` tree of the result, for terminal display."""
        title = f"[bold]{self.status.value}[/bold]"
        if self.command:
            title += f"  {self.command}"
        title += f"  ({self.elapsed_ms:.1f} ms)"
        t = Tree(title)
        if self.error is not None:
            where = ""
            if self.error.line is not None:
                where = f"line {self.error.line}:{self.error.column}  "
            t.add(f"[red]{escape(where + self.error.message)}[/red]")
        if self.status is Status.UNSAT:
            t.add("No instance found within scope")
        if self.status is Status.TIMEOUT:
            t.add("Search stopped before an answer was found")
        if self.signatures:
            sigs = t.add("signatures")
            for entry in self.signatures:
                sigs.add(f"{entry.name} = {{{', '.join(entry.atoms)}}}")
        if self.field_results:
            fields = t.add("fields")
            for entry in self.field_results:
                tuples = ", ".join("->".join(tup) for tup in entry.tuples)
                fields.add(f"{entry.name} = {{{tuples}}}")
        return t

    def print_tree(self) -> None:
        rprint(self.tree())


def format_result(
    outcome: Union[Instance, Unsat, Timeout],
    command: Optional[str] = None,
    elapsed_ms: float = 0.0,
    solve_ms: Optional[float] = None,
) -> AnalysisResult:
    """Package an instance, UNSAT or a timeout as an ``AnalysisResult``."""
    if isinstance(outcome, Unsat):
        return AnalysisResult(
            status=Status.UNSAT, command=command, elapsed_ms=elapsed_ms, solve_ms=solve_ms
        )
    if isinstance(outcome, Timeout):
        return AnalysisResult(
            status=Status.TIMEOUT,
            command=command,
            elapsed_ms=elapsed_ms,
            solve_ms=solve_ms,
        )
    return AnalysisResult(
        status=Status.SAT,
        command=command,
        signatures=[
            SignatureResult(name=name, atoms=list(atoms))
            for name, atoms in outcome.signatures.items()
        ],
        field_results=[
            FieldResult(name=name, tuples=[list(t) for t in tuples])
            for name, tuples in outcome.fields.items()
        ],
        elapsed_ms=elapsed_ms,
        solve_ms=solve_ms,
    )


def format_error(
    status: Status,
    error: AlloyError,
    command: Optional[str] = None,
    elapsed_ms: float = 0.0,
) -> AnalysisResult:
    """Package a user-fixable error as a PARSE_ERROR or TYPE_ERROR result."""
    return AnalysisResult(
        status=status,
        command=command,
        elapsed_ms=elapsed_ms,
        error=ErrorInfo(line=error.line, column=error.column, message=error.message),
    )


def model_tree(model: Model) -> Tree:
    """A ``rich`` tree summarizing the paragraphs of a parsed model."""
    t = Tree("Model")
    for paragraph in model.paragraphs:
        if isinstance(paragraph, SigDecl):
            label = f"sig {', '.join(paragraph.names)}"
            if paragraph.parent:
                label += f" extends {paragraph.parent}"
            node = t.add(label)
            for field_decl in paragraph.fields:
                mult = f"{field_decl.multiplicity.value} " if field_decl.multiplicity else ""
                node.add(escape(f"{', '.join(field_decl.names)}: {mult}{render(field_decl.expr)}"))
            if paragraph.fact is not None:
                node.add(escape(render(paragraph.fact)))
        elif isinstance(paragraph, FactDecl):
            t.add(f"fact {paragraph.name or ''}".rstrip()).add(escape(render(paragraph.body)))
        elif isinstance(paragraph, PredDecl):
            t.add(f"pred {paragraph.name}").add(escape(render(paragraph.body)))
        elif isinstance(paragraph, AssertDecl):
            t.add(f"assert {paragraph.name}").add(escape(render(paragraph.body)))
        elif isinstance(paragraph, Command):
            t.add(escape(paragraph.label))
    return t
