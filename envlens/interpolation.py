"""
Variable interpolation for envlens.

Expands `$VAR` and `${VAR}` references (plus the shell parameter forms
`${VAR:-default}`, `${VAR-default}`, `${VAR:+alt}` and `${VAR+alt}`) using
values already resolved for the same file.

Rules:
    - single-quoted values are literal and never expanded
    - references to undefined variables are left as literal text
    - expansion repeats until the value stops changing, a cycle is seen,
      or `max_depth` passes have run
"""

from __future__ import annotations

import logging
import os
import re
import subprocess
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .records import format_value

logger = logging.getLogger(__name__)

NAME_PATTERN = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
BRACE_CONTENT_PATTERN = re.compile(
    r"^(?P<name>[A-Za-z_][A-Za-z0-9_]*)(?:(?P<op>:-|-|:\+|\+)(?P<arg>.*))?$",
    re.DOTALL,
)
ESCAPE_PATTERN = re.compile(r"\\([nrt\"'\\$])")
ESCAPE_MAP = {
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "\\": "\\",
    '"': '"',
    "'": "'",
    "$": "$",
}
UNSAFE_COMMAND_CHARS = re.compile(r"[;&|`$()]")


@dataclass
class InterpolationFeatures:
    """Switches for the individual interpolation features."""

    variables: bool = True
    defaults: bool = True
    alternates: bool = True
    escapes: bool = True
    commands: bool = False


@dataclass
class InterpolationOptions:
    """Interpolation settings taken from the `interpolation` config section."""

    enabled: bool = True
    max_depth: int = 10
    use_shell_env: bool = True
    disable_security: bool = False
    command_timeout: float = 5.0
    features: InterpolationFeatures = field(default_factory=InterpolationFeatures)


def _find_closing(value: str, start: int, open_char: str, close_char: str) -> int:
    """Index of the bracket closing the one opened just before `start`, or -1."""
    depth = 1
    pos = start
    quote: str | None = None
    while pos < len(value):
        char = value[pos]
        if char == "\\":
            pos += 2
            continue
        if open_char == "(" and char in ("'", '"'):
            if quote is None:
                quote = char
            elif quote == char:
                quote = None
        elif quote is None:
            if char == open_char:
                depth += 1
            elif char == close_char:
                depth -= 1
                if depth == 0:
                    return pos
        pos += 1
    return -1


class Interpolator:
    """
    Expands variable references inside a single value.

    Example:
        interpolator = Interpolator()
        interpolator.interpolate("http://${HOST}:$PORT", {"HOST": "db", "PORT": "5432"})
        # -> "http://db:5432"
    """

    def __init__(self, options: InterpolationOptions | None = None) -> None:
        self.options = options or InterpolationOptions()

    def interpolate(
        self,
        value: str,
        lookup: Mapping[str, Any],
        quote_char: str | None = None,
    ) -> str:
        """
        Expand all references in `value`.

        Args:
            value: The raw value text (quotes already stripped)
            lookup: Known variables for this resolution pass
            quote_char: The quote character the value was written with

        Returns:
            The expanded text. Single-quoted values are returned unchanged.
        """
        if quote_char == "'" or not isinstance(value, str):
            return value

        features = self.options.features
        if features.variables:
            value = self._expand(value, lookup)
        if features.commands:
            value = self._substitute_commands(value)
        if features.escapes and quote_char == '"':
            value = ESCAPE_PATTERN.sub(lambda m: ESCAPE_MAP[m.group(1)], value)
        return value

    def _expand(self, value: str, lookup: Mapping[str, Any]) -> str:
        seen = {value}
        for _ in range(max(1, self.options.max_depth)):
            expanded = self._expand_once(value, lookup)
            if expanded == value:
                return expanded
            if expanded in seen:
                logger.debug("Interpolation cycle detected in %r", value)
                return expanded
            seen.add(expanded)
            value = expanded

        logger.warning(
            "Maximum interpolation depth (%d) reached; value left partially expanded",
            self.options.max_depth,
        )
        return value

    def _expand_once(self, value: str, lookup: Mapping[str, Any]) -> str:
        parts: list[str] = []
        pos = 0
        length = len(value)

        while pos < length:
            char = value[pos]

            if char == "\\" and pos + 1 < length:
                parts.append(value[pos : pos + 2])
                pos += 2
                continue

            if char != "$" or pos + 1 >= length:
                parts.append(char)
                pos += 1
                continue

            nxt = value[pos + 1]
            if nxt == "{":
                end = _find_closing(value, pos + 2, "{", "}")
                if end == -1:
                    parts.append(value[pos:])
                    break
                literal = value[pos : end + 1]
                parts.append(self._substitute(value[pos + 2 : end], lookup, literal))
                pos = end + 1
            elif nxt == "(":
                end = _find_closing(value, pos + 2, "(", ")")
                if end == -1:
                    parts.append(value[pos:])
                    break
                parts.append(value[pos : end + 1])
                pos = end + 1
            else:
                match = NAME_PATTERN.match(value, pos + 1)
                if match is None:
                    parts.append(char)
                    pos += 1
                    continue
                name = match.group(0)
                current = self._lookup(name, lookup)
                if current is None:
                    logger.debug("Undefined variable reference: $%s", name)
                    parts.append("$" + name)
                else:
                    parts.append(current)
                pos = match.end()

        return "".join(parts)

    def _substitute(self, content: str, lookup: Mapping[str, Any], literal: str) -> str:
        match = BRACE_CONTENT_PATTERN.match(content)
        if match is None:
            return literal

        name, op, arg = match.group("name"), match.group("op"), match.group("arg") or ""
        current = self._lookup(name, lookup)
        features = self.options.features

        if op is None:
            if current is None:
                logger.debug("Undefined variable reference: ${%s}", name)
                return literal
            return current

        if op in (":-", "-"):
            if not features.defaults:
                return literal
            missing = current is None or (op == ":-" and current == "")
            return arg if missing else current

        if not features.alternates:
            return literal
        present = current is not None and (op == "+" or current != "")
        return arg if present else ""

    def _lookup(self, name: str, lookup: Mapping[str, Any]) -> str | None:
        if name in lookup:
            return format_value(lookup[name])
        if self.options.use_shell_env:
            return os.environ.get(name)
        return None

    def _substitute_commands(self, value: str) -> str:
        parts: list[str] = []
        pos = 0
        while True:
            start = value.find("$(", pos)
            if start == -1:
                parts.append(value[pos:])
                break
            end = _find_closing(value, start + 2, "(", ")")
            if end == -1:
                parts.append(value[pos:])
                break
            parts.append(value[pos:start])
            parts.append(self._run_command(value[start + 2 : end]))
            pos = end + 1
        return "".join(parts)

    def _run_command(self, command: str) -> str:
        if not command.strip():
            logger.warning("Empty command substitution")
            return ""

        if not self.options.disable_security:
            sanitized = UNSAFE_COMMAND_CHARS.sub("", command)
            if sanitized != command:
                logger.warning("Command contains unsafe characters, sanitizing: %s", command)
                command = sanitized

        try:
            completed = subprocess.run(
                ["sh", "-c", command],
                capture_output=True,
                text=True,
                timeout=self.options.command_timeout,
                check=False,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            logger.warning("Command substitution failed: %s (%s)", command, exc)
            return ""

        if completed.returncode != 0:
            logger.warning(
                "Command substitution failed: %s (exit code: %d)",
                completed.stderr.strip(),
                completed.returncode,
            )
            return ""

        return completed.stdout.rstrip()


def interpolate(
    value: str,
    lookup: Mapping[str, Any],
    options: InterpolationOptions | None = None,
    quote_char: str | None = None,
) -> str:
    """Expand `value` with a one-off Interpolator."""
    return Interpolator(options).interpolate(value, lookup, quote_char)
