"""Built-in secret manager loader for envlens.

This module registers the built-in secret managers with the ProviderRegistry.
"""

from . import ProviderRegistry
from .aws import AwsSecretsManager
from .hashicorp import VaultSecretsManager

# Track whether managers have been registered
_registered = False


def register_built_in_providers() -> None:
    """Register all built-in secret managers with the registry.

    This function is idempotent - it can be called multiple times safely.
    """
    global _registered

    if _registered and ProviderRegistry.is_registered("aws"):
        return

    if not ProviderRegistry.is_registered("aws"):
        ProviderRegistry.register(AwsSecretsManager)
    if not ProviderRegistry.is_registered("vault"):
        ProviderRegistry.register(VaultSecretsManager)

    _registered = True


# Auto-register on import
register_built_in_providers()
