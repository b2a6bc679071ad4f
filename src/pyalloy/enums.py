"""Just some enums shared across the pipeline."""

from enum import Enum


class LoggingLevelEnum(str, Enum):
    """Enum for the logging level to use for an analysis."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class Status(str, Enum):
    """Outcome of one analysis run."""

    SAT = "SAT"
    UNSAT = "UNSAT"
    TIMEOUT = "TIMEOUT"
    PARSE_ERROR = "PARSE_ERROR"
    TYPE_ERROR = "TYPE_ERROR"


class CommandKind(str, Enum):
    """Kind of a model command."""

    RUN = "run"
    CHECK = "check"
