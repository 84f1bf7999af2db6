"""
AWS Secrets Manager source (optional extra).

Loads the configured secrets from AWS Secrets Manager. A secret holding a
JSON object contributes one variable per key; any other secret contributes
a single variable named after the last segment of its id.

Configuration:
    secret_managers:
      aws:
        enabled: true
        override: false
        region: us-east-1
        profile: dev          # optional
        secrets:
          - my-app/database
          - my-app/api-key

Install with: pip install envlens[aws]
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from ..records import VariableRecord
from . import ProviderError, ProviderInfo, SecretManager

if TYPE_CHECKING:
    from ..config import SecretManagerConfig

logger = logging.getLogger(__name__)


class AwsSecretsManager(SecretManager):
    """
    AWS Secrets Manager source.

    Fetches secrets with boto3. Records carry `source="asm:<secret id>"`.

    Install with: pip install envlens[aws]
    """

    info = ProviderInfo(
        name="aws",
        description="AWS Secrets Manager",
        version="1.0.0",
        author="envlens contributors",
    )
    source_prefix = "asm"

    def __init__(self, detector=None) -> None:
        super().__init__(detector)
        self._client: Any | None = None
        self._client_key: tuple[str, str | None] | None = None

    async def load(self, config: SecretManagerConfig) -> dict[str, VariableRecord]:
        """
        Load every secret listed in the config.

        A secret that fails to load is skipped; the whole load fails only
        when none of the listed secrets could be fetched.

        Raises:
            ProviderError: On missing region/secrets, missing boto3, or when
                every secret failed
        """
        options = config.options
        region = options.get("region")
        if not region:
            raise ProviderError(
                "AWS region is required for AWS Secrets Manager integration",
                provider=self.info.name,
            )

        secret_ids = list(options.get("secrets") or [])
        if not secret_ids:
            raise ProviderError(
                "No secrets specified for AWS Secrets Manager integration",
                provider=self.info.name,
            )

        client = self._get_client(region, options.get("profile"))

        variables: dict[str, VariableRecord] = {}
        failures: list[ProviderError] = []
        for secret_id in secret_ids:
            try:
                secret = await self._fetch_secret(client, secret_id, region)
            except ProviderError as exc:
                logger.debug("Skipping AWS secret %s: %s", secret_id, exc)
                failures.append(exc)
                continue
            self.process_secret_value(secret, secret_id, config, variables)

        if failures and len(failures) == len(secret_ids):
            raise ProviderError(
                f"Failed to load any of {len(secret_ids)} secret(s): {failures[0].message}",
                provider=self.info.name,
            )

        return variables

    def _get_client(self, region: str, profile: str | None) -> Any:
        """Create (or reuse) a Secrets Manager client using boto3."""
        if self._client is not None and self._client_key == (region, profile):
            return self._client

        try:
            import boto3
        except ImportError as exc:
            raise ProviderError(
                "boto3 is required for the aws secret manager. "
                "Install it with: pip install envlens[aws]",
                provider=self.info.name,
            ) from exc

        try:
            session = boto3.session.Session(profile_name=profile, region_name=region)
            self._client = session.client(service_name="secretsmanager", region_name=region)
        except Exception as exc:
            raise ProviderError(
                f"Could not create AWS session: {exc}",
                provider=self.info.name,
            ) from exc

        self._client_key = (region, profile)
        return self._client

    async def _fetch_secret(self, client: Any, secret_id: str, region: str) -> str:
        """Fetch one secret value."""
        try:
            response = await asyncio.to_thread(client.get_secret_value, SecretId=secret_id)
        except Exception as exc:
            error = getattr(exc, "response", None) or {}
            error_code = error.get("Error", {}).get("Code", "Unknown")

            if error_code == "DecryptionFailureException":
                message = f"Secret '{secret_id}' cannot be decrypted - check KMS key"
            elif error_code == "ResourceNotFoundException":
                message = f"Secret '{secret_id}' not found in region '{region}'"
            elif error_code in ("AccessDeniedException", "UnrecognizedClientException"):
                message = f"Access denied for secret '{secret_id}' - check AWS credentials"
            else:
                message = f"AWS error: {exc}"

            raise ProviderError(message, provider=self.info.name, reference=secret_id) from exc

        if response.get("SecretString") is not None:
            secret = response["SecretString"]
        elif response.get("SecretBinary") is not None:
            secret = response["SecretBinary"].decode("utf-8")
        else:
            secret = ""

        if secret == "":
            raise ProviderError(
                f"Empty secret value for {secret_id}",
                provider=self.info.name,
                reference=secret_id,
            )
        return secret

    async def close(self) -> None:
        """Drop the client."""
        self._client = None
        self._client_key = None


def create_provider() -> AwsSecretsManager:
    """Factory function to create an AwsSecretsManager instance."""
    return AwsSecretsManager()
