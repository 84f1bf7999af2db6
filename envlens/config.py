"""
Configuration management for envlens.

This module handles loading and parsing configuration files for the tool:
discovery patterns, shell and interpolation settings, secret managers,
masking and type detection.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Callable

import yaml

from .discovery import DEFAULT_FILE_PATTERNS
from .interpolation import InterpolationFeatures, InterpolationOptions
from .loader import LoadOptions
from .masking import MASK_CONTEXTS, MASK_MODES, MaskingConfig, PartialMode
from .shell import ShellConfig
from .value_types import BUILT_IN_TYPES, TypeDetector

# Keys of a secret manager section that are not adapter options
_MANAGER_KEYS = ("type", "enabled", "override", "filter", "transform")


@dataclass
class SecretManagerConfig:
    """Configuration for a single secret manager."""

    name: str
    type: str
    enabled: bool = False
    override: bool = False
    options: dict[str, Any] = field(default_factory=dict)
    filter: Callable[[str, str], bool] | None = None
    transform: Callable[[str, str], str] | None = None


@dataclass
class EnvLensConfig:
    """Main configuration for envlens."""

    path: Path | None = None
    file_patterns: list[str] = field(default_factory=lambda: list(DEFAULT_FILE_PATTERNS))
    preferred_environment: str | None = None
    async_loading: bool = False
    shell: ShellConfig = field(default_factory=ShellConfig)
    interpolation: InterpolationOptions = field(default_factory=InterpolationOptions)
    secret_managers: dict[str, SecretManagerConfig] = field(default_factory=dict)
    masking: MaskingConfig = field(default_factory=MaskingConfig)
    types: dict[str, bool] = field(default_factory=lambda: dict.fromkeys(BUILT_IN_TYPES, True))
    custom_types: dict[str, str] = field(default_factory=dict)

    @classmethod
    def load(cls, config_path: str | Path | None = None) -> "EnvLensConfig":
        """
        Load configuration from a YAML file.

        Args:
            config_path: Path to the configuration file. If None, searches
                        for config in standard locations.

        Returns:
            An EnvLensConfig instance with the loaded configuration.

        Raises:
            ConfigurationError: If the file is not valid YAML or a section
                has the wrong shape
        """
        if config_path is None:
            config_path = cls._find_config_file()

        if config_path is None or not Path(config_path).exists():
            return cls()

        return cls._parse_config_file(config_path)

    @classmethod
    def _find_config_file(cls) -> str | None:
        """Search for config file in standard locations."""
        search_paths = [
            Path.cwd() / ".envlens.yaml",
            Path.cwd() / ".envlens.yml",
            Path.cwd() / "envlens.yaml",
            Path.cwd() / "envlens.yml",
            Path.home() / ".config" / "envlens.yaml",
            Path.home() / ".envlens.yaml",
        ]

        for path in search_paths:
            if path.exists():
                return str(path)

        return None

    @classmethod
    def _parse_config_file(cls, config_path: str | Path) -> "EnvLensConfig":
        """Parse a YAML configuration file."""
        path = Path(config_path)

        try:
            data = yaml.safe_load(path.read_text())
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid YAML in config file: {exc}", exc) from exc
        except OSError as exc:
            raise ConfigurationError(f"Could not read config file {path}: {exc}", exc) from exc

        if data is None:
            return cls()

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EnvLensConfig":
        """
        Build a configuration from a plain mapping (e.g. parsed YAML).

        Raises:
            ConfigurationError: If a section has the wrong type
        """
        if not isinstance(data, Mapping):
            raise ConfigurationError("Configuration must be a mapping")

        config = cls()

        if data.get("path") is not None:
            config.path = Path(_expect(data, "path", str))
        if "file_patterns" in data:
            patterns = _expect(data, "file_patterns", (list, str))
            config.file_patterns = [patterns] if isinstance(patterns, str) else list(patterns)
        if data.get("preferred_environment") is not None:
            config.preferred_environment = str(data["preferred_environment"])
        if "async_loading" in data:
            config.async_loading = _expect(data, "async_loading", bool)

        if "shell" in data:
            config.shell = _parse_shell(data["shell"])
        if "interpolation" in data:
            config.interpolation = _parse_interpolation(data["interpolation"])
        if "secret_managers" in data:
            managers = _expect(data, "secret_managers", Mapping)
            config.secret_managers = {
                name: _parse_secret_manager(name, section) for name, section in managers.items()
            }
        if "masking" in data:
            config.masking = _parse_masking(data["masking"])

        if "types" in data:
            types = _expect(data, "types", (bool, Mapping))
            if isinstance(types, bool):
                config.types = dict.fromkeys(BUILT_IN_TYPES, types)
            else:
                config.types.update({str(k): bool(v) for k, v in types.items()})
        if "custom_types" in data:
            custom = _expect(data, "custom_types", Mapping)
            config.custom_types = {str(k): str(v) for k, v in custom.items()}

        return config

    def detector(self) -> TypeDetector:
        """Type detector honouring the `types` and `custom_types` settings."""
        enabled = frozenset(name for name, on in self.types.items() if on)
        return TypeDetector(enabled=enabled, custom_types=dict(self.custom_types))

    def load_options(self) -> LoadOptions:
        """File loader options derived from this configuration."""
        return LoadOptions(interpolation=self.interpolation, detector=self.detector())

    def get_secret_manager_config(self, name: str) -> SecretManagerConfig | None:
        """Get configuration for a specific secret manager."""
        return self.secret_managers.get(name)


def _expect(data: Mapping[str, Any], key: str, kind: type | tuple[type, ...]) -> Any:
    value = data[key]
    if not isinstance(value, kind):
        raise ConfigurationError(
            f"Invalid value for '{key}': expected {_kind_name(kind)}, got {type(value).__name__}"
        )
    return value


def _kind_name(kind: type | tuple[type, ...]) -> str:
    if isinstance(kind, tuple):
        return " or ".join(k.__name__ for k in kind)
    return kind.__name__


def _section(value: Any, name: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ConfigurationError(
            f"Invalid '{name}' section: expected a mapping, got {type(value).__name__}"
        )
    return value


def _parse_shell(value: Any) -> ShellConfig:
    if isinstance(value, bool):
        return ShellConfig(enabled=value)

    section = _section(value, "shell")
    return ShellConfig(
        enabled=bool(section.get("enabled", False)),
        override=bool(section.get("override", False)),
        include=list(section.get("include") or []),
        exclude=list(section.get("exclude") or []),
        filter=section.get("filter"),
        transform=section.get("transform"),
    )


def _parse_interpolation(value: Any) -> InterpolationOptions:
    if isinstance(value, bool):
        return InterpolationOptions(enabled=value)

    section = _section(value, "interpolation")
    features = InterpolationFeatures()
    if "features" in section:
        known = {f.name for f in fields(InterpolationFeatures)}
        for name, enabled in _section(section["features"], "interpolation.features").items():
            if name not in known:
                raise ConfigurationError(f"Unknown interpolation feature: {name}")
            setattr(features, name, bool(enabled))

    try:
        max_depth = int(section.get("max_depth", 10))
        command_timeout = float(section.get("command_timeout", 5.0))
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid interpolation setting: {exc}", exc) from exc

    return InterpolationOptions(
        enabled=bool(section.get("enabled", True)),
        max_depth=max_depth,
        use_shell_env=bool(section.get("use_shell_env", True)),
        disable_security=bool(section.get("disable_security", False)),
        command_timeout=command_timeout,
        features=features,
    )


def _parse_secret_manager(name: str, value: Any) -> SecretManagerConfig:
    section = _section(value, f"secret_managers.{name}")
    return SecretManagerConfig(
        name=name,
        type=str(section.get("type", name)),
        enabled=bool(section.get("enabled", False)),
        override=bool(section.get("override", False)),
        options={k: v for k, v in section.items() if k not in _MANAGER_KEYS},
        filter=section.get("filter"),
        transform=section.get("transform"),
    )


def _parse_masking(value: Any) -> MaskingConfig:
    if isinstance(value, bool):
        return MaskingConfig(contexts=dict.fromkeys(MASK_CONTEXTS, value))

    section = _section(value, "masking")
    config = MaskingConfig()

    if "contexts" in section:
        contexts = section["contexts"]
        if isinstance(contexts, bool):
            config.contexts = dict.fromkeys(MASK_CONTEXTS, contexts)
        else:
            config.contexts.update(
                {str(k): bool(v) for k, v in _section(contexts, "masking.contexts").items()}
            )

    if "default_mode" in section:
        config.default_mode = _mask_mode(section["default_mode"], "masking.default_mode")

    partial = section.get("partial_mode")
    if partial is True:
        config.partial_mode = PartialMode()
    elif isinstance(partial, Mapping):
        try:
            config.partial_mode = PartialMode(
                show_start=int(partial.get("show_start", 3)),
                show_end=int(partial.get("show_end", 3)),
                min_mask=int(partial.get("min_mask", 3)),
            )
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid masking.partial_mode: {exc}", exc) from exc
    elif partial not in (None, False):
        raise ConfigurationError("masking.partial_mode must be a mapping or a boolean")

    if config.default_mode == "partial" and config.partial_mode is None:
        config.partial_mode = PartialMode()

    if "mask_char" in section:
        mask_char = str(section["mask_char"])
        if len(mask_char) != 1:
            raise ConfigurationError("masking.mask_char must be a single character")
        config.mask_char = mask_char
    if section.get("mask_length") is not None:
        try:
            config.mask_length = int(section["mask_length"])
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid masking.mask_length: {exc}", exc) from exc

    config.patterns = {
        str(k): _mask_mode(v, f"masking.patterns.{k}")
        for k, v in _section(section.get("patterns") or {}, "masking.patterns").items()
    }
    config.sources = {
        str(k): _mask_mode(v, f"masking.sources.{k}")
        for k, v in _section(section.get("sources") or {}, "masking.sources").items()
    }
    return config


def _mask_mode(value: Any, where: str) -> str:
    if value not in MASK_MODES:
        raise ConfigurationError(
            f"Invalid {where}: {value!r} (expected one of {', '.join(MASK_MODES)})"
        )
    return value


class ConfigurationError(Exception):
    """Exception raised for configuration errors."""

    def __init__(self, message: str, from_exception: Exception | None = None) -> None:
        self.message = message
        self.from_exception = from_exception
        super().__init__(message)
        if from_exception:
            self.__cause__ = from_exception
