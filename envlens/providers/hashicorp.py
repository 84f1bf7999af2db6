"""
HashiCorp Vault source (optional extra).

Reads key/value secrets from HashiCorp Vault. Every key stored at a
configured path becomes one variable.

Configuration:
    secret_managers:
      vault:
        enabled: true
        override: true
        url: https://vault.example.com:8200   # default: VAULT_ADDR
        token: s.xxxxx                        # default: VAULT_TOKEN
        namespace: team-a                     # Vault Enterprise only
        mount_point: secret
        kv_version: 2
        paths:
          - my-app/database
          - my-app/api

Install with: pip install envlens[vault]
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import TYPE_CHECKING, Any

from ..records import VariableRecord
from . import ProviderError, ProviderInfo, SecretManager

if TYPE_CHECKING:
    from ..config import SecretManagerConfig

logger = logging.getLogger(__name__)

DEFAULT_VAULT_URL = "http://127.0.0.1:8200"


class VaultSecretsManager(SecretManager):
    """
    HashiCorp Vault source.

    Uses the hvac library. Records carry `source="vault:<path>"`.

    Install with: pip install envlens[vault]
    """

    info = ProviderInfo(
        name="vault",
        description="HashiCorp Vault key/value store",
        version="1.0.0",
        author="envlens contributors",
    )
    source_prefix = "vault"

    def __init__(self, detector=None) -> None:
        super().__init__(detector)
        self._client: Any | None = None

    async def load(self, config: SecretManagerConfig) -> dict[str, VariableRecord]:
        """
        Load every configured path.

        Raises:
            ProviderError: On missing paths or token, missing hvac, failed
                authentication, or when every path failed
        """
        options = config.options
        paths = list(options.get("paths") or [])
        if not paths:
            raise ProviderError(
                "No secret paths specified for HashiCorp Vault integration",
                provider=self.info.name,
            )

        mount_point = options.get("mount_point", "secret")
        try:
            kv_version = int(options.get("kv_version", 2))
        except (TypeError, ValueError) as exc:
            raise ProviderError(
                f"Invalid kv_version {options.get('kv_version')!r}; expected 1 or 2",
                provider=self.info.name,
            ) from exc
        if kv_version not in (1, 2):
            raise ProviderError(
                f"Unsupported kv_version {kv_version}; expected 1 or 2",
                provider=self.info.name,
            )

        client = self._get_client(options)

        try:
            authenticated = await asyncio.to_thread(client.is_authenticated)
        except Exception as exc:
            raise ProviderError(
                f"Could not reach HashiCorp Vault: {exc}",
                provider=self.info.name,
            ) from exc
        if not authenticated:
            raise ProviderError(
                "Vault authentication failed. Check VAULT_TOKEN or the configured token",
                provider=self.info.name,
            )

        variables: dict[str, VariableRecord] = {}
        failures = 0
        for path in paths:
            try:
                data = await self._read_path(client, path, mount_point, kv_version)
            except ProviderError as exc:
                logger.debug("Skipping Vault path %s: %s", path, exc)
                failures += 1
                continue
            self.process_secret_value(data, path, config, variables)

        if failures == len(paths):
            raise ProviderError(
                f"Failed to read any of {len(paths)} Vault path(s)",
                provider=self.info.name,
            )

        return variables

    def _get_client(self, options: dict[str, Any]) -> Any:
        """Create the hvac client on first use."""
        if self._client is not None:
            return self._client

        try:
            import hvac
        except ImportError as exc:
            raise ProviderError(
                "hvac is required for the vault secret manager. "
                "Install it with: pip install envlens[vault]",
                provider=self.info.name,
            ) from exc

        url = options.get("url") or os.environ.get("VAULT_ADDR") or DEFAULT_VAULT_URL
        token = options.get("token") or os.environ.get("VAULT_TOKEN")
        if not token:
            raise ProviderError(
                "Vault token not configured. Set VAULT_TOKEN or configure it in .envlens.yaml",
                provider=self.info.name,
            )

        self._client = hvac.Client(url=url, token=token, namespace=options.get("namespace"))
        return self._client

    async def _read_path(
        self, client: Any, path: str, mount_point: str, kv_version: int
    ) -> dict[str, Any]:
        """Read the key/value data stored at one path."""
        try:
            if kv_version == 2:
                response = await asyncio.to_thread(
                    client.secrets.kv.v2.read_secret_version,
                    path=path,
                    mount_point=mount_point,
                    raise_on_deleted_version=True,
                )
                data = (response or {}).get("data", {}).get("data")
            else:
                response = await asyncio.to_thread(
                    client.secrets.kv.v1.read_secret,
                    path=path,
                    mount_point=mount_point,
                )
                data = (response or {}).get("data")
        except Exception as exc:
            raise ProviderError(
                f"Failed to read secret from HashiCorp Vault: {exc}",
                provider=self.info.name,
                reference=f"{mount_point}/{path}",
            ) from exc

        if not isinstance(data, dict):
            raise ProviderError(
                f"No key/value data at {mount_point}/{path}",
                provider=self.info.name,
                reference=f"{mount_point}/{path}",
            )
        return data

    async def close(self) -> None:
        """Drop the client."""
        self._client = None


def create_provider() -> VaultSecretsManager:
    """Factory function to create a VaultSecretsManager instance."""
    return VaultSecretsManager()
