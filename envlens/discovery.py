"""
Candidate file discovery for envlens.

Finds files under the workspace root matching the configured glob patterns
and orders them so the most relevant candidate comes first.
"""

from __future__ import annotations

import fnmatch
import re
from collections.abc import Iterable, Sequence
from pathlib import Path

DEFAULT_FILE_PATTERNS = (".env", ".env.*")

# `.env`, `.envrc` and friends: no second dot in the name
_PLAIN_ENV_NAME = re.compile(r"^\.env[^.]*$")


def match_env_file(filename: str | Path, patterns: Sequence[str] | None = None) -> bool:
    """Check whether a file name matches any of the discovery patterns."""
    name = Path(filename).name
    return any(fnmatch.fnmatchcase(name, pattern) for pattern in patterns or DEFAULT_FILE_PATTERNS)


def sort_env_files(files: Iterable[Path], preferred_environment: str | None = None) -> list[Path]:
    """
    Order candidate files.

    Files ending in `.<preferred_environment>` come first, then plain `.env*`
    names, then everything else; ties break on the path.
    """

    def sort_key(path: Path) -> tuple[bool, bool, str]:
        preferred = bool(preferred_environment) and path.name.endswith(f".{preferred_environment}")
        plain = _PLAIN_ENV_NAME.match(path.name) is not None
        return (not preferred, not plain, str(path))

    return sorted(files, key=sort_key)


def find_env_files(
    root: str | Path | None = None,
    patterns: Sequence[str] | None = None,
    preferred_environment: str | None = None,
) -> list[Path]:
    """
    Find candidate environment files.

    Args:
        root: Workspace root to search (default: current directory)
        patterns: Glob patterns relative to the root, in priority order
        preferred_environment: Suffix that should sort first (e.g. "local")

    Returns:
        Sorted list of matching regular files
    """
    base = Path(root) if root is not None else Path.cwd()
    if not base.is_dir():
        return []

    found: dict[Path, None] = {}
    for pattern in patterns or DEFAULT_FILE_PATTERNS:
        for candidate in base.glob(pattern):
            if candidate.is_file():
                found.setdefault(candidate, None)

    return sort_env_files(found, preferred_environment)
