"""
Shell environment source for envlens.

Captures the current process environment as VariableRecords with
`source="shell"`, so shell values merge with file values on equal terms.
"""

from __future__ import annotations

import fnmatch
import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

from .records import VariableRecord
from .value_types import TypeDetector

SHELL_SOURCE = "shell"


@dataclass
class ShellConfig:
    """
    Configuration for loading shell variables.

    Attributes:
        enabled: Load process environment variables at all
        override: When True, shell values take precedence over file values
        include: Glob patterns a name must match (empty means all names)
        exclude: Glob patterns that drop a name
        filter: Optional callable(key, value) -> bool deciding inclusion
        transform: Optional callable(key, value) -> str rewriting values
    """

    enabled: bool = False
    override: bool = False
    include: list[str] = field(default_factory=list)
    exclude: list[str] = field(default_factory=list)
    filter: Callable[[str, str], bool] | None = None
    transform: Callable[[str, str], str] | None = None

    def accepts(self, key: str, value: str) -> bool:
        if self.include and not any(fnmatch.fnmatchcase(key, p) for p in self.include):
            return False
        if any(fnmatch.fnmatchcase(key, p) for p in self.exclude):
            return False
        return self.filter is None or bool(self.filter(key, value))


def load_shell_vars(
    config: ShellConfig | None = None,
    environ: Mapping[str, str] | None = None,
    detector: TypeDetector | None = None,
) -> dict[str, VariableRecord]:
    """
    Load shell variables as records.

    Args:
        config: Filtering and transform settings
        environ: Environment to read (default: os.environ)
        detector: Type detector for the values

    Returns:
        Mapping of variable name to record; never fails
    """
    config = config or ShellConfig(enabled=True)
    detector = detector or TypeDetector()
    environ = os.environ if environ is None else environ

    variables: dict[str, VariableRecord] = {}
    for key, value in environ.items():
        if not config.accepts(key, value):
            continue
        if config.transform is not None:
            value = config.transform(key, value)

        type_name, typed_value = detector.detect(value)
        variables[key] = VariableRecord(
            name=key,
            value=typed_value,
            raw_value=value,
            type=type_name,
            source=SHELL_SOURCE,
        )

    return variables
