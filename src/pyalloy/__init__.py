"""PyAlloy: a bounded relational model finder.

Models declare signatures, fields, facts, predicates and assertions; ``run``
and ``check`` commands are answered by translating the model into a boolean
satisfiability problem over a finite universe of atoms.
"""

from pyalloy.analyzer import analyze, enumerate_instances, select_command
from pyalloy.config import AnalyzerConfig, load_config
from pyalloy.encoder import encode
from pyalloy.enums import Status
from pyalloy.exceptions import (
    AlloyError,
    ModelTypeError,
    ParseError,
    ResolutionError,
    ScopeError,
    SolverError,
)
from pyalloy.formatter import AnalysisResult, Instance, format_result
from pyalloy.grammar_parser import parse
from pyalloy.resolver import resolve

__all__ = [
    "AlloyError",
    "AnalysisResult",
    "AnalyzerConfig",
    "Instance",
    "ModelTypeError",
    "ParseError",
    "ResolutionError",
    "ScopeError",
    "SolverError",
    "Status",
    "analyze",
    "encode",
    "enumerate_instances",
    "format_result",
    "load_config",
    "parse",
    "resolve",
    "select_command",
]
