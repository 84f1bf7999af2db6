"""
Environment file loader for envlens.

This module reads `.env` files into VariableRecord mappings. Lines go through
the per-session LineCache, values through type detection and, when enabled,
through the interpolation engine.

Both shapes share the same parsing code:
    - `load_file` reads synchronously, in line with the caller
    - `load_file_async` reads in bounded chunks and yields to the event loop
      between chunks
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from itertools import islice
from pathlib import Path
from typing import Any

from .interpolation import InterpolationOptions, Interpolator
from .parser import is_skippable, parse_line
from .records import SKIP, LineCache, ParsedLine, VariableRecord
from .value_types import TypeDetector

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 50

LoadCallback = Callable[[dict[str, VariableRecord] | None, str | None], Any]


@dataclass
class LoadOptions:
    """Options for a single file load."""

    interpolation: InterpolationOptions = field(default_factory=InterpolationOptions)
    detector: TypeDetector = field(default_factory=TypeDetector)
    chunk_size: int = DEFAULT_CHUNK_SIZE


class EnvFileLoader:
    """
    Loads environment files into VariableRecord mappings.

    Within one file the last definition of a key wins. Every open is scoped
    so the file handle is released even when reading fails midway.

    Example:
        loader = EnvFileLoader()
        variables = loader.load(".env", LineCache())
        print(variables["DATABASE_URL"].value)
    """

    def __init__(self, options: LoadOptions | None = None) -> None:
        self.options = options or LoadOptions()
        self._interpolator = Interpolator(self.options.interpolation)

    def load(self, file_path: Any, line_cache: LineCache) -> dict[str, VariableRecord]:
        """
        Load a file synchronously.

        Args:
            file_path: Path of the environment file
            line_cache: Parse cache shared across loads of the session

        Returns:
            Mapping of variable name to record, or an empty mapping when the
            path is invalid or the file cannot be read
        """
        try:
            path = _coerce_path(file_path)
            parsed = self._read(path, line_cache)
        except EnvFileError as exc:
            logger.warning("%s", exc)
            return {}

        return self._build_records(parsed, str(path))

    async def load_async(
        self, file_path: Any, line_cache: LineCache, chunk_size: int | None = None
    ) -> dict[str, VariableRecord]:
        """
        Load a file without blocking the event loop for the whole read.

        Same contract as `load`: failures are logged and yield an empty
        mapping.
        """
        try:
            return await self._load_async(file_path, line_cache, chunk_size)
        except EnvFileError as exc:
            logger.warning("%s", exc)
            return {}

    def schedule(
        self,
        file_path: Any,
        line_cache: LineCache,
        callback: LoadCallback,
        chunk_size: int | None = None,
    ) -> asyncio.Task:
        """
        Schedule an asynchronous load and report through `callback`.

        The callback receives `(mapping, None)` on success or
        `(None, error_description)` on failure, never both.

        Raises:
            InvalidInputError: If `callback` is not callable or `chunk_size`
                is not positive
            RuntimeError: If no event loop is running
        """
        if not callable(callback):
            raise InvalidInputError("Invalid callback for asynchronous load: must be callable")
        _check_chunk_size(chunk_size)

        loop = asyncio.get_running_loop()

        async def runner() -> None:
            try:
                variables = await self._load_async(file_path, line_cache, chunk_size)
            except EnvFileError as exc:
                logger.warning("%s", exc)
                callback(None, str(exc))
                return
            except Exception as exc:
                logger.warning("Asynchronous load of %s failed: %s", file_path, exc)
                callback(None, str(exc))
                return
            callback(variables, None)

        return loop.create_task(runner())

    async def _load_async(
        self, file_path: Any, line_cache: LineCache, chunk_size: int | None
    ) -> dict[str, VariableRecord]:
        path = _coerce_path(file_path)
        _check_chunk_size(chunk_size)
        size = self.options.chunk_size if chunk_size is None else chunk_size

        source = str(path)
        parsed: dict[str, ParsedLine] = {}

        try:
            with path.open("r", encoding="utf-8") as handle:
                while True:
                    chunk = list(islice(handle, size))
                    if not chunk:
                        break
                    self._parse_lines(chunk, source, line_cache, parsed)
                    await asyncio.sleep(0)
        except (OSError, UnicodeDecodeError, ValueError) as exc:
            raise EnvFileError(f"Could not open environment file {path}: {exc}") from exc

        return self._build_records(parsed, source)

    def _read(self, path: Path, line_cache: LineCache) -> dict[str, ParsedLine]:
        parsed: dict[str, ParsedLine] = {}
        try:
            with path.open("r", encoding="utf-8") as handle:
                self._parse_lines(handle, str(path), line_cache, parsed)
        except (OSError, UnicodeDecodeError, ValueError) as exc:
            raise EnvFileError(f"Could not open environment file {path}: {exc}") from exc
        return parsed

    def _parse_lines(
        self,
        lines: Iterable[str],
        source: str,
        line_cache: LineCache,
        parsed: dict[str, ParsedLine],
    ) -> None:
        """Parse lines into `parsed`, consulting and filling the line cache."""
        for line in lines:
            line = line.rstrip("\r\n")
            entry = line_cache.get(line, source)
            if entry is None:
                entry = line_cache.put(line, source, parse_line(line))

            result = entry.result
            if result is SKIP:
                continue
            parsed[result.key] = result

    def _build_records(
        self, parsed: dict[str, ParsedLine], source: str
    ) -> dict[str, VariableRecord]:
        detector = self.options.detector
        records: dict[str, VariableRecord] = {}

        for key, line in parsed.items():
            type_name, value = detector.detect(line.raw_value)
            records[key] = VariableRecord(
                name=key,
                value=value,
                raw_value=line.raw_value,
                type=type_name,
                source=source,
                comment=line.comment,
                quote_char=line.quote_char,
            )

        if self.options.interpolation.enabled:
            records = self._interpolate(records)

        return records

    def _interpolate(self, records: dict[str, VariableRecord]) -> dict[str, VariableRecord]:
        """
        Expand references across the whole file.

        Runs passes until no value changes, bounded by `max_depth`, so
        forward references and chains settle while cycles still terminate.
        """
        expanded = {name: record.raw_value for name, record in records.items()}
        max_passes = max(1, self.options.interpolation.max_depth)

        for _ in range(max_passes):
            changed = False
            for name, record in records.items():
                if record.quote_char == "'":
                    continue
                value = self._interpolator.interpolate(record.raw_value, expanded, record.quote_char)
                if value != expanded[name]:
                    expanded[name] = value
                    changed = True
            if not changed:
                break

        detector = self.options.detector
        result: dict[str, VariableRecord] = {}
        for name, record in records.items():
            if expanded[name] == record.raw_value:
                result[name] = record
                continue
            type_name, value = detector.detect(expanded[name])
            result[name] = record.evolve(value=value, type=type_name)
        return result


def _coerce_path(file_path: Any) -> Path:
    if isinstance(file_path, Path):
        return file_path
    if isinstance(file_path, (str, os.PathLike)) and str(file_path):
        return Path(file_path)
    raise EnvFileError(f"Invalid environment file path: {file_path!r}")


def _check_chunk_size(chunk_size: Any) -> None:
    if chunk_size is None:
        return
    if not isinstance(chunk_size, int) or isinstance(chunk_size, bool) or chunk_size < 1:
        raise InvalidInputError(f"chunk_size must be a positive integer, got {chunk_size!r}")


def load_file(
    file_path: Any, line_cache: LineCache, options: LoadOptions | None = None
) -> dict[str, VariableRecord]:
    """Load one environment file synchronously."""
    return EnvFileLoader(options).load(file_path, line_cache)


async def load_file_async(
    file_path: Any,
    line_cache: LineCache,
    options: LoadOptions | None = None,
    chunk_size: int | None = None,
) -> dict[str, VariableRecord]:
    """Load one environment file in chunks, yielding between them."""
    return await EnvFileLoader(options).load_async(file_path, line_cache, chunk_size)


def schedule_load(
    file_path: Any,
    line_cache: LineCache,
    options: LoadOptions | None,
    callback: LoadCallback,
) -> asyncio.Task:
    """Schedule an asynchronous load reporting through `callback`."""
    return EnvFileLoader(options).schedule(file_path, line_cache, callback)


def generate_example_file(env_file: str | Path) -> Path:
    """
    Write a `<name>.example` template next to an environment file.

    Values are replaced by `your_<key>_here` placeholders; blank and
    comment lines are kept as-is.

    Raises:
        EnvFileError: If the source cannot be read or the template written
    """
    path = Path(env_file)
    example_path = path.with_name(path.name + ".example")
    output: list[str] = []

    try:
        with path.open("r", encoding="utf-8") as handle:
            for line in handle:
                line = line.rstrip("\r\n")
                if is_skippable(line):
                    output.append(line)
                    continue
                parsed = parse_line(line)
                if parsed is SKIP:
                    continue
                placeholder = f"{parsed.key}=your_{parsed.key.lower()}_here"
                if parsed.comment:
                    placeholder = f"{placeholder} # {parsed.comment}"
                output.append(placeholder)
    except (OSError, UnicodeDecodeError, ValueError) as exc:
        raise EnvFileError(f"Could not open environment file {path}: {exc}") from exc

    try:
        example_path.write_text("\n".join(output) + "\n", encoding="utf-8")
    except OSError as exc:
        raise EnvFileError(f"Could not create example file {example_path}: {exc}") from exc

    return example_path


class EnvFileError(Exception):
    """Exception raised for environment file errors."""


class InvalidInputError(TypeError):
    """Raised immediately when a caller passes arguments of the wrong kind."""
