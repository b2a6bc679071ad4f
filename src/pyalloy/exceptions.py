"""Custom exceptions for the PyAlloy package.

This module defines the error taxonomy used throughout the analysis pipeline.
Parse, resolution, type and scope errors are user-fixable problems with the
model source and carry a source location where one is known. ``SolverError``
is fatal: the SAT backend itself failed.

UNSAT and timeouts are not exceptions; they are ordinary analysis outcomes.
"""

from __future__ import annotations

from typing import Iterable, Optional


class AlloyError(Exception):
    """Base class for every error raised by the analysis pipeline.

    Attributes:
        message: Human-readable description of the problem.
        line: 1-based source line, if known.
        column: 1-based source column, if known.
    """

    def __init__(
        self,
        message: str,
        line: Optional[int] = None,
        column: Optional[int] = None,
    ):
        self.message = message
        self.line = line
        self.column = column
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.line is None:
            return self.message
        return f"Line {self.line}:{self.column} - {self.message}"


class ParseError(AlloyError):
    """Exception raised when the model source is not syntactically valid.

    Attributes:
        expected: Sorted tokens the parser would have accepted.
        found: The offending token text (``"<EOF>"`` at end of input).
    """

    def __init__(
        self,
        line: Optional[int],
        column: Optional[int],
        expected: Iterable[str],
        found: str,
    ):
        self.expected = sorted(set(expected))
        self.found = found
        message = f"Unexpected {found!r}"
        if self.expected:
            message += f", expected one of: {', '.join(self.expected)}"
        super().__init__(message, line, column)


class ResolutionError(AlloyError):
    """Exception raised when a name cannot be bound to a declaration.

    Also raised for duplicate declarations and cyclic signature hierarchies.

    Attributes:
        name: The identifier that failed to resolve.
        context: Where the identifier occurred (e.g. ``"fact NoCycles"``).
    """

    def __init__(
        self,
        name: str,
        context: str,
        message: Optional[str] = None,
        line: Optional[int] = None,
        column: Optional[int] = None,
    ):
        self.name = name
        self.context = context
        super().__init__(
            message or f"Cannot resolve '{name}' in {context}", line, column
        )


class ModelTypeError(AlloyError):
    """Exception raised when an expression is ill-typed.

    Arity mismatches, joins over disjoint column types and expressions
    used where a formula is required all end up here.

    Attributes:
        expr: Source rendering of the offending expression.
        reason: Why the expression was rejected.
    """

    def __init__(
        self,
        expr: str,
        reason: str,
        line: Optional[int] = None,
        column: Optional[int] = None,
    ):
        self.expr = expr
        self.reason = reason
        super().__init__(f"{reason}: {expr}", line, column)


class ScopeError(AlloyError):
    """Exception raised when a command's scope cannot be honoured."""


class SolverError(AlloyError):
    """Exception raised when the SAT backend fails or is unavailable."""
