"""
envlens: environment variable resolution for development tools.

Discovers `.env` files, parses them into typed records, merges them with the
shell environment and secret managers under a fixed precedence policy, and
masks values for display.

Basic Usage:
    envlens
    envlens ./services/api --shell --reveal
"""

__version__ = "1.0.0"

from .config import ConfigurationError, EnvLensConfig, SecretManagerConfig
from .loader import EnvFileError, EnvFileLoader, InvalidInputError, load_file
from .masking import Masker, MaskingConfig, PartialMode
from .providers import ProviderError, ProviderRegistry, SecretManager
from .records import LineCache, LoaderState, VariableRecord
from .resolver import ResolverService, merge_vars, resolve, resolve_sync

__all__ = [
    "ConfigurationError",
    "EnvFileError",
    "EnvFileLoader",
    "EnvLensConfig",
    "InvalidInputError",
    "LineCache",
    "LoaderState",
    "Masker",
    "MaskingConfig",
    "PartialMode",
    "ProviderError",
    "ProviderRegistry",
    "ResolverService",
    "SecretManager",
    "SecretManagerConfig",
    "VariableRecord",
    "load_file",
    "merge_vars",
    "resolve",
    "resolve_sync",
]
