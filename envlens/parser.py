"""
Line parser for envlens.

Splits a single `.env` line into key, raw value, optional inline comment and
optional quote character. Blank lines, comment lines and lines without an
`=` produce the `SKIP` marker.
"""

from __future__ import annotations

import re

from .records import SKIP, ParsedLine, _Skip

BLANK_OR_COMMENT = re.compile(r"^\s*(#|$)")
EXPORT_PREFIX = re.compile(r"^\s*export\s+")
QUOTE_CHARS = ("'", '"')


def is_skippable(line: str) -> bool:
    """Return True for blank lines and lines starting with `#`."""
    return BLANK_OR_COMMENT.match(line) is not None


def _find_closing_quote(value: str, quote_char: str) -> int:
    """Index of the first unescaped `quote_char` after position 0, or -1."""
    pos = 1
    while pos < len(value):
        char = value[pos]
        if char == "\\":
            pos += 2
            continue
        if char == quote_char:
            return pos
        pos += 1
    return -1


def _split_inline_comment(value: str) -> tuple[str, str | None]:
    """Split an unquoted value on the first `#` that follows whitespace."""
    match = re.search(r"\s#", value)
    if match is None:
        return value, None
    comment = value[match.end():].strip()
    return value[: match.start()].rstrip(), comment


def parse_line(line: str) -> ParsedLine | _Skip:
    """
    Parse one line of an environment file.

    Args:
        line: The line text, with or without its trailing newline

    Returns:
        A ParsedLine, or SKIP for blank, comment and malformed lines
    """
    line = line.rstrip("\r\n")
    if is_skippable(line):
        return SKIP

    line = EXPORT_PREFIX.sub("", line, count=1)
    if "=" not in line:
        return SKIP

    key, value = line.split("=", 1)
    key = key.strip()
    if not key:
        return SKIP

    value = value.strip()

    if value[:1] in QUOTE_CHARS:
        quote_char = value[0]
        end = _find_closing_quote(value, quote_char)
        if end != -1:
            rest = value[end + 1:].strip()
            comment = rest[1:].strip() if rest.startswith("#") else None
            return ParsedLine(key, value[1:end], comment, quote_char)

    value, comment = _split_inline_comment(value)
    return ParsedLine(key, value, comment, None)
