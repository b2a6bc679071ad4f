"""Signature hierarchy stored as an arena of indexes.

Each signature is identified by its position in ``SignatureTable.signatures``.
The extension hierarchy is kept as a parent-index list together with
precomputed children and descendant sets, so subtype tests are set lookups
rather than walks up the tree.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from pyalloy.ast_models import Multiplicity, Position, SigDecl
from pyalloy.exceptions import ResolutionError
from pyalloy.logger import LOGGER


@dataclass
class Signature:
    """One declared signature.

    Attributes:
        index: Position of the signature in its table.
        name: Declared name.
        parent: Index of the extended signature, or None for top-level sigs.
        abstract: Whether the signature was declared ``abstract``.
        multiplicity: ``one``, ``lone`` or ``some``; None when unconstrained.
        pos: Source position of the declaration.
    """

    index: int
    name: str
    parent: Optional[int] = None
    abstract: bool = False
    multiplicity: Optional[Multiplicity] = None
    pos: Optional[Position] = None
    fields: List[int] = field(default_factory=list)


class SignatureTable:
    """Arena of signatures with precomputed hierarchy queries.

    Attributes:
        signatures: All signatures in declaration order.
        parents: ``parents[i]`` is the parent index of signature ``i``.
        children: ``children[i]`` lists the direct extensions of ``i``.
        descendants: ``descendants[i]`` holds ``i`` and everything below it.
        by_name: Signature index by name.
    """

    def __init__(self, signatures: List[Signature]):
        self.signatures = signatures
        self.by_name: Dict[str, int] = {sig.name: sig.index for sig in signatures}
        self.parents: List[Optional[int]] = [sig.parent for sig in signatures]
        self.children: List[List[int]] = [[] for _ in signatures]
        for sig in signatures:
            if sig.parent is not None:
                self.children[sig.parent].append(sig.index)
        self._check_acyclic()
        self.descendants: List[FrozenSet[int]] = [
            frozenset() for _ in signatures
        ]
        for index in range(len(signatures)):
            self._collect_descendants(index)
        self.roots: List[int] = [self.root_of(i) for i in range(len(signatures))]

    @classmethod
    def from_declarations(cls, decls: Iterable[SigDecl]) -> "SignatureTable":
        """Build the table from the ``sig`` paragraphs of a model.

        Raises:
            ResolutionError: On duplicate names, unknown parents or an
                extension cycle.
        """
        signatures: List[Signature] = []
        parent_names: List[Tuple[Optional[str], SigDecl]] = []
        seen: Dict[str, Signature] = {}
        for decl in decls:
            for name in decl.names:
                if name in seen:
                    line, column = _location(decl.pos)
                    raise ResolutionError(
                        name,
                        f"sig {name}",
                        f"Duplicate signature '{name}'",
                        line,
                        column,
                    )
                sig = Signature(
                    index=len(signatures),
                    name=name,
                    abstract=decl.abstract,
                    multiplicity=decl.multiplicity,
                    pos=decl.pos,
                )
                seen[name] = sig
                signatures.append(sig)
                parent_names.append((decl.parent, decl))

        for sig, (parent_name, decl) in zip(signatures, parent_names):
            if parent_name is None:
                continue
            if parent_name not in seen:
                line, column = _location(decl.pos)
                raise ResolutionError(
                    parent_name,
                    f"sig {sig.name} extends {parent_name}",
                    line=line,
                    column=column,
                )
            sig.parent = seen[parent_name].index

        table = cls(signatures)
        LOGGER.debug(
            "Signature table: %d signatures, %d top-level",
            len(signatures),
            len(table.top_level()),
        )
        return table

    def _check_acyclic(self) -> None:
        for sig in self.signatures:
            visited = {sig.index}
            current = sig.parent
            while current is not None:
                if current in visited:
                    line, column = _location(sig.pos)
                    raise ResolutionError(
                        sig.name,
                        f"sig {sig.name}",
                        f"Cyclic extension involving '{sig.name}'",
                        line,
                        column,
                    )
                visited.add(current)
                current = self.parents[current]

    def _collect_descendants(self, index: int) -> FrozenSet[int]:
        if self.descendants[index]:
            return self.descendants[index]
        found = {index}
        for child in self.children[index]:
            found |= self._collect_descendants(child)
        self.descendants[index] = frozenset(found)
        return self.descendants[index]

    def __len__(self) -> int:
        return len(self.signatures)

    def __getitem__(self, index: int) -> Signature:
        return self.signatures[index]

    def lookup(self, name: str) -> Optional[int]:
        return self.by_name.get(name)

    def name_of(self, index: int) -> str:
        return self.signatures[index].name

    def top_level(self) -> List[int]:
        """Indexes of the signatures that extend nothing."""
        return [i for i, parent in enumerate(self.parents) if parent is None]

    def root_of(self, index: int) -> int:
        """The top-level ancestor of a signature."""
        while self.parents[index] is not None:
            index = self.parents[index]
        return index

    def ancestors(self, index: int) -> List[int]:
        """The signature itself followed by its ancestors, nearest first."""
        chain = [index]
        while self.parents[chain[-1]] is not None:
            chain.append(self.parents[chain[-1]])
        return chain

    def depth(self, index: int) -> int:
        return len(self.ancestors(index)) - 1

    def is_subtype(self, sub: int, sup: int) -> bool:
        """True if ``sub`` is ``sup`` or extends it, directly or not."""
        return sub in self.descendants[sup]

    def overlaps(self, a: int, b: int) -> bool:
        """True if two signatures can share atoms."""
        return self.is_subtype(a, b) or self.is_subtype(b, a)

    def types_overlap(self, left: FrozenSet[int], right: FrozenSet[int]) -> bool:
        """True if two column types can share an atom."""
        return any(self.overlaps(a, b) for a in left for b in right)

    def render_type(self, column: FrozenSet[int]) -> str:
        if column == frozenset(self.top_level()):
            return "univ"
        return "+".join(sorted(self.name_of(i) for i in column)) or "none"


def _location(pos: Optional[Position]) -> Tuple[Optional[int], Optional[int]]:
    if pos is None:
        return None, None
    return pos.line, pos.column
