"""Load configuration from toml file and make available."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional, Union

import toml
from pydantic import BaseModel, Field, field_validator

from pyalloy.enums import LoggingLevelEnum

SRC_BASE_DIR: Path = Path(__file__).parent

config_file: Path = SRC_BASE_DIR / "config" / "config.toml"
with open(config_file, "r", encoding="utf8") as f:
    config: Dict[str, Any] = toml.load(f)


class AnalyzerConfig(BaseModel):
    """
    Settings for one analysis run.

    Attributes:
        default_scope: Atom bound for top-level signatures when a command
            gives no ``for N`` clause.
        solver_name: ``pysat`` solver name used as the SAT backend.
        timeout_seconds: Time budget for the backend call, or None.
        symmetry_breaking: Order the atoms of each top-level signature.
        prefer_populated: Ask the backend to try populated signatures first.
        logging_level: Level applied to the package logger.
    """

    model_config = {"frozen": True}

    default_scope: int = Field(3, gt=0)
    solver_name: str = "m22"
    timeout_seconds: Optional[float] = None
    symmetry_breaking: bool = True
    prefer_populated: bool = True
    logging_level: LoggingLevelEnum = LoggingLevelEnum.WARNING

    @field_validator("timeout_seconds")
    @classmethod
    def _zero_means_unbounded(cls, value: Optional[float]) -> Optional[float]:
        if value is None or value == 0:
            return None
        if value < 0:
            raise ValueError("timeout_seconds must not be negative")
        return value


def load_config(path: Optional[Union[str, Path]] = None) -> AnalyzerConfig:
    """Build an ``AnalyzerConfig`` from the packaged defaults.

    Args:
        path: Optional toml file whose ``[analyzer]`` table overrides the
            packaged defaults.

    Returns:
        AnalyzerConfig: The validated configuration.
    """
    values: Dict[str, Any] = dict(config["analyzer"])
    if path is not None:
        with open(path, "r", encoding="utf8") as user_file:
            values.update(toml.load(user_file).get("analyzer", {}))
    return AnalyzerConfig(**values)


DEFAULT_CONFIG: AnalyzerConfig = load_config()
