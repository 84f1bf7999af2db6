"""
Value type detection for envlens.

Infers a semantic type tag from the raw text of a variable and, where the
tag has a natural Python form, converts the value (booleans and numbers).
Detection is best-effort and never raises.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit

BUILT_IN_TYPES = (
    "database_url",
    "url",
    "localhost",
    "boolean",
    "json",
    "hex_color",
    "ipv4",
    "iso_date",
    "iso_time",
    "number",
)

DB_PROTOCOLS = frozenset(
    {
        "postgresql",
        "postgres",
        "mysql",
        "mariadb",
        "mongodb",
        "mongodb+srv",
        "redis",
        "rediss",
        "sqlite",
        "cockroachdb",
    }
)

PATTERNS = {
    "url": re.compile(r"^https?://[\w.-]+\.[\w.-]+[\w./:?=&%#~+-]*$"),
    "localhost": re.compile(r"^https?://(localhost|127\.0\.0\.1)(:(?P<port>\d+))?([/?#].*)?$"),
    "scheme": re.compile(r"^(?P<scheme>[A-Za-z][A-Za-z0-9+]*)://"),
    "json": re.compile(r"^\s*[\[{].*[\]}]\s*$", re.DOTALL),
    "hex_color": re.compile(r"^#([0-9A-Fa-f]{3}|[0-9A-Fa-f]{6})$"),
    "ipv4": re.compile(r"^(\d{1,3})\.(\d{1,3})\.(\d{1,3})\.(\d{1,3})$"),
    "iso_date": re.compile(r"^(\d{4})-(\d{2})-(\d{2})$"),
    "iso_time": re.compile(r"^(\d{2}):(\d{2}):(\d{2})$"),
    "integer": re.compile(r"^[+-]?\d+$"),
    "float": re.compile(r"^[+-]?(\d+\.\d*|\.\d+|\d+)([eE][+-]?\d+)?$"),
}

_BOOLEANS = {"true": True, "yes": True, "false": False, "no": False}
_DAYS_IN_MONTH = (31, 29, 31, 30, 31, 30, 31, 31, 30, 31, 30, 31)


def _valid_port(port: str | None) -> bool:
    return port is None or 1 <= int(port) <= 65535


def _is_database_url(value: str) -> bool:
    match = PATTERNS["scheme"].match(value)
    if not match or match.group("scheme").lower() not in DB_PROTOCOLS:
        return False

    scheme = match.group("scheme").lower()
    try:
        parts = urlsplit(value)
        port = parts.port
    except ValueError:
        return False

    if scheme == "sqlite":
        return bool(parts.path) and parts.path != "/"

    host = parts.hostname
    if not host:
        return False
    if scheme == "mongodb+srv":
        return port is None and "." in host
    return True


def _is_localhost(value: str) -> bool:
    match = PATTERNS["localhost"].match(value)
    return bool(match) and _valid_port(match.group("port"))


def _is_json(value: str) -> bool:
    if not PATTERNS["json"].match(value):
        return False
    try:
        json.loads(value)
    except ValueError:
        return False
    return True


def _is_ipv4(value: str) -> bool:
    match = PATTERNS["ipv4"].match(value)
    return bool(match) and all(0 <= int(octet) <= 255 for octet in match.groups())


def _is_iso_date(value: str) -> bool:
    match = PATTERNS["iso_date"].match(value)
    if not match:
        return False
    year, month, day = (int(part) for part in match.groups())
    if not 1 <= month <= 12 or day < 1 or day > _DAYS_IN_MONTH[month - 1]:
        return False
    if month == 2 and day == 29:
        return (year % 4 == 0 and year % 100 != 0) or year % 400 == 0
    return True


def _is_iso_time(value: str) -> bool:
    match = PATTERNS["iso_time"].match(value)
    if not match:
        return False
    hour, minute, second = (int(part) for part in match.groups())
    return hour < 24 and minute < 60 and second < 60


def _to_number(value: str) -> int | float | None:
    if PATTERNS["integer"].match(value):
        return int(value)
    if PATTERNS["float"].match(value):
        try:
            return float(value)
        except ValueError:
            return None
    return None


@dataclass
class TypeDetector:
    """
    Configurable type detector.

    Attributes:
        enabled: Built-in type tags that may be reported. Disabled tags fall
            through to the next check and finally to "string".
        custom_types: Extra name -> regex pattern types, checked after the
            URL family and before booleans.
    """

    enabled: frozenset[str] = field(default_factory=lambda: frozenset(BUILT_IN_TYPES))
    custom_types: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self._custom = {name: re.compile(pattern) for name, pattern in self.custom_types.items()}

    def detect(self, value: Any) -> tuple[str, Any]:
        """
        Detect the type of a raw value.

        Args:
            value: The raw text to inspect

        Returns:
            A (type tag, transformed value) pair. The value is unchanged
            unless the tag is "boolean" or "number".
        """
        if not isinstance(value, str):
            return "unknown", value

        stripped = value.strip()
        on = self.enabled

        if "database_url" in on and _is_database_url(stripped):
            return "database_url", value
        if "localhost" in on and _is_localhost(stripped):
            return "localhost", value
        if "url" in on and PATTERNS["url"].match(stripped):
            return "url", value

        for name, pattern in self._custom.items():
            if pattern.match(value):
                return name, value

        if "boolean" in on and stripped.lower() in _BOOLEANS:
            return "boolean", _BOOLEANS[stripped.lower()]
        if "json" in on and _is_json(stripped):
            return "json", value
        if "hex_color" in on and PATTERNS["hex_color"].match(stripped):
            return "hex_color", value
        if "ipv4" in on and _is_ipv4(stripped):
            return "ipv4", value
        if "iso_date" in on and _is_iso_date(stripped):
            return "iso_date", value
        if "iso_time" in on and _is_iso_time(stripped):
            return "iso_time", value
        if "number" in on:
            number = _to_number(stripped)
            if number is not None:
                return "number", number

        return "string", value


_default_detector = TypeDetector()


def detect_type(value: Any) -> tuple[str, Any]:
    """Detect a value's type with the default (all built-ins) detector."""
    return _default_detector.detect(value)
