"""
Data model for envlens.

This module holds the resolved variable record, the per-line parse cache,
and the per-session loader state shared by the loader and the resolver.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, NamedTuple


class ParsedLine(NamedTuple):
    """A single `KEY=VALUE` line split into its parts."""

    key: str
    raw_value: str
    comment: str | None = None
    quote_char: str | None = None


class _Skip:
    """Marker for blank, comment and malformed lines."""

    _instance: "_Skip | None" = None

    def __new__(cls) -> "_Skip":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SKIP"

    def __bool__(self) -> bool:
        return False


SKIP = _Skip()


@dataclass
class VariableRecord:
    """Represents one resolved environment variable."""

    name: str
    value: Any
    raw_value: str
    type: str = "string"
    source: str = ""
    comment: str | None = None
    quote_char: str | None = None

    @property
    def text(self) -> str:
        """The value rendered as display text."""
        return format_value(self.value)

    def evolve(self, **changes: Any) -> "VariableRecord":
        """Return a copy of this record with the given fields replaced."""
        return replace(self, **changes)


def format_value(value: Any) -> str:
    """Render a typed value back to the text form used in env files."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@dataclass(frozen=True)
class ParseCacheEntry:
    """Memoized parse result for one line of one file."""

    line: str
    file_path: str
    result: ParsedLine | _Skip


class LineCache:
    """
    Parse cache keyed by the exact `(line text, file path)` pair.

    Entries are never invalidated one at a time; `clear()` drops the whole
    cache, which is what a reload does.
    """

    def __init__(self) -> None:
        self._entries: dict[tuple[str, str], ParseCacheEntry] = {}
        self.hits = 0
        self.misses = 0

    def get(self, line: str, file_path: str) -> ParseCacheEntry | None:
        entry = self._entries.get((line, file_path))
        if entry is None:
            self.misses += 1
        else:
            self.hits += 1
        return entry

    def put(self, line: str, file_path: str, result: ParsedLine | _Skip) -> ParseCacheEntry:
        entry = ParseCacheEntry(line=line, file_path=file_path, result=result)
        self._entries[(line, file_path)] = entry
        return entry

    def clear(self) -> None:
        self._entries.clear()
        self.hits = 0
        self.misses = 0

    def copy(self) -> "LineCache":
        """Return an independent cache holding the same entries."""
        other = LineCache()
        other._entries = dict(self._entries)
        other.hits = self.hits
        other.misses = self.misses
        return other

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries


@dataclass
class LoaderState:
    """
    Per-session resolution cache.

    Created empty, populated by the first resolution, and cleared on forced
    reload, on loss of the selected file, or when the workspace root changes.
    Only the resolver writes `variables`; only the file loader writes
    `line_cache`.
    """

    variables: dict[str, VariableRecord] = field(default_factory=dict)
    selected_file: Path | None = None
    line_cache: LineCache = field(default_factory=LineCache)
    workspace_root: Path | None = None

    def clear(self) -> None:
        """Drop the cached mapping and every parsed line."""
        self.variables = {}
        self.line_cache.clear()
