"""
Masking engine for envlens.

Turns variable values into display strings for a given consumer context
(completion menu, picker, statusline, ...). Masking never touches the
record it is applied to; it only produces text.
"""

from __future__ import annotations

import fnmatch
import os
import re
from dataclasses import dataclass, field
from typing import Any

from .records import VariableRecord, format_value

MASK_CONTEXTS = ("completion", "peek", "files", "picker", "picker_preview", "statusline")
MASK_MODES = ("full", "partial", "none")

_LINE_BREAKS = re.compile(r"\s*(?:\r\n|\r|\n)\s*")


@dataclass
class PartialMode:
    """How many characters partial masking keeps at each end."""

    show_start: int = 3
    show_end: int = 3
    min_mask: int = 3


@dataclass
class MaskingConfig:
    """
    Masking settings taken from the `masking` config section.

    Attributes:
        contexts: Context name -> masking enabled. Unknown contexts are
            treated as enabled.
        default_mode: Mode used when no pattern matches
        partial_mode: Partial masking settings, or None to always mask fully
        mask_char: Replacement character
        mask_length: Fixed placeholder length for full masking
        patterns: Variable name glob -> mode
        sources: Source glob -> mode
    """

    contexts: dict[str, bool] = field(default_factory=lambda: dict.fromkeys(MASK_CONTEXTS, True))
    default_mode: str = "full"
    partial_mode: PartialMode | None = None
    mask_char: str = "*"
    mask_length: int | None = None
    patterns: dict[str, str] = field(default_factory=dict)
    sources: dict[str, str] = field(default_factory=dict)

    def is_enabled(self, context: str) -> bool:
        return self.contexts.get(context, True)


def apply_full_mask(value: str, mask_char: str = "*", mask_length: int | None = None) -> str:
    """Replace the whole value with mask characters."""
    return mask_char * (mask_length or len(value))


def apply_partial_mask(
    value: str,
    partial: PartialMode,
    mask_char: str = "*",
    mask_length: int | None = None,
) -> str:
    """
    Keep the edges of the value and mask the middle.

    Values too short to keep both edges and still hide `min_mask`
    characters are masked fully.
    """
    visible = partial.show_start + partial.show_end
    if len(value) <= visible or len(value) < visible + partial.min_mask:
        return apply_full_mask(value, mask_char, mask_length)

    middle = max(partial.min_mask, len(value) - visible)
    end = value[len(value) - partial.show_end :] if partial.show_end else ""
    return value[: partial.show_start] + mask_char * middle + end


class Masker:
    """
    Produces masked display strings.

    Example:
        masker = Masker(MaskingConfig(default_mode="partial", partial_mode=PartialMode(1, 1)))
        masker.mask("s3cr3t", "picker")  # "s****t"
    """

    def __init__(self, config: MaskingConfig | None = None) -> None:
        self.config = config or MaskingConfig()

    def determine_mode(self, name: str | None = None, source: str | None = None) -> str:
        """Pick the mode from name patterns, then source patterns, then the default."""
        if name:
            for pattern, mode in self.config.patterns.items():
                if fnmatch.fnmatchcase(name, pattern):
                    return mode

        if source:
            candidates = (source, os.path.basename(source))
            for pattern, mode in self.config.sources.items():
                if any(fnmatch.fnmatchcase(candidate, pattern) for candidate in candidates):
                    return mode

        return self.config.default_mode

    def mask(
        self,
        value: Any,
        context: str,
        name: str | None = None,
        source: str | None = None,
    ) -> str:
        """
        Render `value` for display in `context`.

        Returns the value unchanged (as text) when masking is disabled for
        the context or the selected mode is "none".
        """
        text = value if isinstance(value, str) else format_value(value)
        if not self.config.is_enabled(context):
            return text

        text = _LINE_BREAKS.sub(" ", text)

        mode = self.determine_mode(name, source)
        if mode == "none":
            return text
        if mode == "partial" and self.config.partial_mode is not None:
            return apply_partial_mask(
                text, self.config.partial_mode, self.config.mask_char, self.config.mask_length
            )
        return apply_full_mask(text, self.config.mask_char, self.config.mask_length)

    def mask_record(self, record: VariableRecord, context: str) -> str:
        return self.mask(record.value, context, record.name, record.source)


def mask_value(
    value: Any,
    context: str,
    config: MaskingConfig | None = None,
    name: str | None = None,
    source: str | None = None,
) -> str:
    """Mask a single value with the given settings."""
    return Masker(config).mask(value, context, name, source)
