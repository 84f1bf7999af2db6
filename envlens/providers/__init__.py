"""
Secret manager interface and registry for envlens.

Secret managers are remote variable sources. Each one turns its configuration
section into VariableRecords of the same shape the file and shell sources
produce. The set of managers is closed: configuration selects one by its
`type` key from the registry.

Usage:
    from envlens.providers import ProviderRegistry

    manager = ProviderRegistry.get("aws")
    records = await manager.load(config.secret_managers["aws"])
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ..records import VariableRecord, format_value
from ..value_types import TypeDetector

if TYPE_CHECKING:
    from ..config import SecretManagerConfig


@dataclass
class ProviderInfo:
    """Metadata about a secret manager."""

    name: str
    description: str
    version: str = "1.0.0"
    author: str = ""


class SecretManager(ABC):
    """
    Base class for all secret managers.

    To add a manager:
    1. Inherit from SecretManager
    2. Set the `info` and `source_prefix` class attributes
    3. Implement `load`, raising ProviderError on any failure
    4. Register the class with ProviderRegistry.register()
    """

    info: ProviderInfo
    source_prefix: str = ""

    def __init__(self, detector: TypeDetector | None = None) -> None:
        self.detector = detector or TypeDetector()

    @abstractmethod
    async def load(self, config: SecretManagerConfig) -> dict[str, VariableRecord]:
        """
        Load every configured secret.

        Args:
            config: This manager's configuration section

        Returns:
            Mapping of variable name to record

        Raises:
            ProviderError: If the service is unreachable, authentication
                fails, a required library is missing, or the config is invalid
        """
        ...

    def process_secret_value(
        self,
        secret: str | Mapping[str, Any],
        secret_id: str,
        config: SecretManagerConfig,
        into: dict[str, VariableRecord],
    ) -> int:
        """
        Turn one fetched secret into records.

        JSON objects (or mappings) expand into one record per key; any other
        value becomes a single record named after the last segment of
        `secret_id`.

        Returns:
            The number of records added
        """
        if isinstance(secret, str):
            try:
                decoded = json.loads(secret)
            except ValueError:
                decoded = None
            pairs = decoded if isinstance(decoded, dict) else {secret_id.rsplit("/", 1)[-1]: secret}
        else:
            pairs = secret

        source = f"{self.source_prefix}:{secret_id}"
        added = 0
        for key, raw in pairs.items():
            key = str(key)
            value = json.dumps(raw) if isinstance(raw, (dict, list)) else format_value(raw)

            try:
                if config.filter is not None and not config.filter(key, value):
                    continue
                if config.transform is not None:
                    value = config.transform(key, value)
            except Exception as exc:
                raise ProviderError(
                    f"Secret filter or transform failed for {key}: {exc}",
                    provider=self.info.name,
                    reference=secret_id,
                ) from exc

            type_name, typed_value = self.detector.detect(value)
            into[key] = VariableRecord(
                name=key,
                value=typed_value,
                raw_value=value,
                type=type_name,
                source=source,
            )
            added += 1

        return added

    async def close(self) -> None:
        """
        Cleanup resources when the manager is no longer needed.

        Override this method to drop clients or connections.
        """
        pass

    async def __aenter__(self) -> "SecretManager":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()


class ProviderRegistry:
    """
    Registry of the available secret manager classes.

    Configuration picks a manager by type name; there is no dynamic probing
    of modules.
    """

    _providers: dict[str, type[SecretManager]] = {}
    _instances: dict[str, SecretManager] = {}

    @classmethod
    def register(cls, manager_class: type[SecretManager], name: str | None = None) -> None:
        """
        Register a secret manager class.

        Args:
            manager_class: The class to register
            name: Optional custom name, defaults to manager_class.info.name

        Raises:
            ValueError: If the class is missing its ProviderInfo
            KeyError: If a manager with the same name is already registered
        """
        if not hasattr(manager_class, "info") or not isinstance(manager_class.info, ProviderInfo):
            raise ValueError(
                f"Secret manager {manager_class.__name__} must have a ProviderInfo attribute"
            )

        manager_name = name or manager_class.info.name

        if manager_name in cls._providers:
            raise KeyError(f"Secret manager '{manager_name}' is already registered")

        cls._providers[manager_name] = manager_class

    @classmethod
    def get(cls, name: str) -> SecretManager:
        """
        Get the shared instance of a secret manager by type name.

        Raises:
            KeyError: If no manager with the given name is registered
        """
        if name not in cls._instances:
            cls._instances[name] = cls.create(name)
        return cls._instances[name]

    @classmethod
    def create(cls, name: str, detector: TypeDetector | None = None) -> SecretManager:
        """Create a fresh, unshared instance of a secret manager."""
        if name not in cls._providers:
            available = ", ".join(cls._providers.keys())
            raise KeyError(f"Secret manager '{name}' not found. Available managers: {available}")
        return cls._providers[name](detector)

    @classmethod
    def list_providers(cls) -> list[ProviderInfo]:
        """List all registered managers with their metadata."""
        return [manager.info for manager in cls._providers.values()]

    @classmethod
    def is_registered(cls, name: str) -> bool:
        """Check if a manager type is registered."""
        return name in cls._providers

    @classmethod
    def clear(cls) -> None:
        """Clear all registered managers and instances."""
        cls._providers.clear()
        cls._instances.clear()


class ProviderError(Exception):
    """Base exception for secret manager errors."""

    def __init__(self, message: str, provider: str | None = None, reference: str | None = None):
        self.message = message
        self.provider = provider
        self.reference = reference
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.provider:
            parts.insert(0, f"[{self.provider}]")
        if self.reference:
            parts.append(f"(reference: {self.reference})")
        return " ".join(parts)
