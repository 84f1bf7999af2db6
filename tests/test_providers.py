"""
Tests for the secret manager interface, the registry and the built-in managers.
"""

import json
import sys
from unittest.mock import MagicMock, patch

import pytest

from envlens.config import SecretManagerConfig
from envlens.providers import ProviderError, ProviderInfo, ProviderRegistry, SecretManager
from envlens.providers.aws import AwsSecretsManager
from envlens.providers.built_in import register_built_in_providers
from envlens.providers.hashicorp import VaultSecretsManager


class StaticManager(SecretManager):
    """Secret manager returning fixed secrets."""

    info = ProviderInfo(name="static", description="Static secrets")
    source_prefix = "static"

    async def load(self, config):
        variables = {}
        for secret_id, secret in config.options.get("secrets", {}).items():
            self.process_secret_value(secret, secret_id, config, variables)
        return variables


class TestProviderInfo:
    """Tests for ProviderInfo dataclass."""

    def test_create_provider_info(self):
        """Test creating a ProviderInfo instance."""
        info = ProviderInfo(
            name="test",
            description="A test manager",
            version="1.0.0",
        )

        assert info.name == "test"
        assert info.description == "A test manager"
        assert info.version == "1.0.0"
        assert info.author == ""


class TestSecretManager:
    """Tests for the base SecretManager class."""

    def test_abstract_load(self):
        """Test that SecretManager is abstract and cannot be instantiated."""
        with pytest.raises(TypeError):
            SecretManager()

    @pytest.mark.asyncio
    async def test_json_secret_expands_per_key(self):
        config = SecretManagerConfig(
            name="static",
            type="static",
            options={"secrets": {"prod/db": json.dumps({"DB_USER": "app", "DB_PORT": 5432})}},
        )

        variables = await StaticManager().load(config)

        assert set(variables) == {"DB_USER", "DB_PORT"}
        assert variables["DB_PORT"].value == 5432
        assert variables["DB_PORT"].type == "number"
        assert variables["DB_USER"].source == "static:prod/db"

    @pytest.mark.asyncio
    async def test_plain_secret_uses_last_path_segment(self):
        config = SecretManagerConfig(
            name="static", type="static", options={"secrets": {"prod/api/API_TOKEN": "abc123"}}
        )

        variables = await StaticManager().load(config)

        assert variables["API_TOKEN"].value == "abc123"
        assert variables["API_TOKEN"].raw_value == "abc123"

    @pytest.mark.asyncio
    async def test_nested_json_values_are_serialized(self):
        config = SecretManagerConfig(
            name="static",
            type="static",
            options={"secrets": {"cfg": json.dumps({"FEATURES": {"beta": True}, "ON": True})}},
        )

        variables = await StaticManager().load(config)

        assert variables["FEATURES"].raw_value == '{"beta": true}'
        assert variables["FEATURES"].type == "json"
        assert variables["ON"].value is True

    @pytest.mark.asyncio
    async def test_filter_and_transform(self):
        config = SecretManagerConfig(
            name="static",
            type="static",
            options={"secrets": {"cfg": json.dumps({"KEEP": "a", "DROP": "b"})}},
            filter=lambda key, value: key != "DROP",
            transform=lambda key, value: value * 2,
        )

        variables = await StaticManager().load(config)

        assert set(variables) == {"KEEP"}
        assert variables["KEEP"].value == "aa"

    @pytest.mark.asyncio
    async def test_failing_transform_raises_provider_error(self):
        def transform(key, value):
            raise KeyError(key)

        config = SecretManagerConfig(
            name="static",
            type="static",
            options={"secrets": {"cfg": json.dumps({"KEEP": "a"})}},
            transform=transform,
        )

        with pytest.raises(ProviderError, match="transform failed for KEEP"):
            await StaticManager().load(config)

    @pytest.mark.asyncio
    async def test_async_context_manager_closes(self):
        manager = StaticManager()
        with patch.object(manager, "close") as close:
            async with manager:
                pass

        close.assert_called_once()


class TestProviderRegistry:
    """Tests for the ProviderRegistry class."""

    def setup_method(self):
        """Clear registry before each test."""
        ProviderRegistry.clear()

    def teardown_method(self):
        """Restore the built-in managers after each test."""
        ProviderRegistry.clear()
        register_built_in_providers()

    def test_register_manager(self):
        """Test registering a manager."""
        ProviderRegistry.register(StaticManager)
        assert ProviderRegistry.is_registered("static")

    def test_register_manager_with_custom_name(self):
        """Test registering a manager with a custom name."""
        ProviderRegistry.register(StaticManager, name="custom")
        assert ProviderRegistry.is_registered("custom")
        assert not ProviderRegistry.is_registered("static")

    def test_register_duplicate_raises_error(self):
        """Test that registering a duplicate manager raises an error."""
        ProviderRegistry.register(StaticManager)

        with pytest.raises(KeyError):
            ProviderRegistry.register(StaticManager)

    def test_register_without_info_raises_error(self):
        """Test that registering a manager without info raises an error."""

        class NoInfoManager(SecretManager):
            async def load(self, config):
                return {}

        with pytest.raises(ValueError):
            ProviderRegistry.register(NoInfoManager)

    def test_get_manager_is_shared(self):
        """Test that shared instances are cached."""
        ProviderRegistry.register(StaticManager)

        assert ProviderRegistry.get("static") is ProviderRegistry.get("static")

    def test_create_manager_is_fresh(self):
        ProviderRegistry.register(StaticManager)

        first = ProviderRegistry.create("static")
        assert isinstance(first, StaticManager)
        assert first is not ProviderRegistry.create("static")

    def test_get_unknown_manager_raises_error(self):
        """Test that getting an unknown manager raises an error."""
        with pytest.raises(KeyError):
            ProviderRegistry.get("unknown")

    def test_built_in_registration_is_idempotent(self):
        register_built_in_providers()
        register_built_in_providers()

        names = {info.name for info in ProviderRegistry.list_providers()}
        assert names == {"aws", "vault"}


class TestProviderError:
    """Tests for ProviderError exception."""

    def test_error_with_all_details(self):
        """Test creating an error with all details."""
        error = ProviderError("Something went wrong", provider="aws", reference="prod/db")

        assert error.message == "Something went wrong"
        assert error.provider == "aws"
        assert error.reference == "prod/db"
        assert str(error) == "[aws] Something went wrong (reference: prod/db)"

    def test_error_without_details(self):
        """Test creating an error without details."""
        error = ProviderError("Simple error")

        assert error.provider is None
        assert error.reference is None
        assert str(error) == "Simple error"


class _ClientError(Exception):
    """Stand-in for botocore's ClientError shape."""

    def __init__(self, code):
        super().__init__(code)
        self.response = {"Error": {"Code": code}}


class TestAwsSecretsManager:
    """Tests for the AWS Secrets Manager source."""

    @pytest.fixture
    def config(self):
        return SecretManagerConfig(
            name="aws",
            type="aws",
            enabled=True,
            options={"region": "us-east-1", "secrets": ["prod/db", "prod/API_KEY"]},
        )

    @pytest.fixture
    def client(self):
        client = MagicMock()
        secrets = {
            "prod/db": {"SecretString": json.dumps({"DB_HOST": "db.internal", "DB_PORT": "5432"})},
            "prod/API_KEY": {"SecretBinary": b"sk-live-123"},
        }

        def get_secret_value(SecretId):
            if SecretId not in secrets:
                raise _ClientError("ResourceNotFoundException")
            return secrets[SecretId]

        client.get_secret_value.side_effect = get_secret_value
        return client

    @pytest.mark.asyncio
    async def test_load(self, config, client):
        manager = AwsSecretsManager()
        with patch.object(manager, "_get_client", return_value=client):
            variables = await manager.load(config)

        assert variables["DB_HOST"].value == "db.internal"
        assert variables["DB_HOST"].source == "asm:prod/db"
        assert variables["DB_PORT"].value == 5432
        assert variables["API_KEY"].value == "sk-live-123"
        assert variables["API_KEY"].source == "asm:prod/API_KEY"

    @pytest.mark.asyncio
    async def test_partial_failure_is_skipped(self, config, client):
        config.options["secrets"].append("prod/missing")
        manager = AwsSecretsManager()
        with patch.object(manager, "_get_client", return_value=client):
            variables = await manager.load(config)

        assert "DB_HOST" in variables

    @pytest.mark.asyncio
    async def test_all_failures_raise(self, config, client):
        config.options["secrets"] = ["nope/one", "nope/two"]
        manager = AwsSecretsManager()
        with patch.object(manager, "_get_client", return_value=client):
            with pytest.raises(ProviderError, match="not found in region"):
                await manager.load(config)

    @pytest.mark.asyncio
    async def test_access_denied_message(self, config):
        client = MagicMock()
        client.get_secret_value.side_effect = _ClientError("AccessDeniedException")
        manager = AwsSecretsManager()

        with pytest.raises(ProviderError, match="check AWS credentials"):
            await manager._fetch_secret(client, "prod/db", "us-east-1")

    @pytest.mark.asyncio
    async def test_region_required(self, config):
        del config.options["region"]

        with pytest.raises(ProviderError, match="region is required"):
            await AwsSecretsManager().load(config)

    @pytest.mark.asyncio
    async def test_secrets_required(self, config):
        config.options["secrets"] = []

        with pytest.raises(ProviderError, match="No secrets specified"):
            await AwsSecretsManager().load(config)

    @pytest.mark.asyncio
    async def test_missing_boto3(self, config):
        with patch.dict(sys.modules, {"boto3": None}):
            with pytest.raises(ProviderError, match="boto3 is required"):
                await AwsSecretsManager().load(config)

    @pytest.mark.asyncio
    async def test_close_drops_client(self, config, client):
        manager = AwsSecretsManager()
        manager._client = client

        await manager.close()

        assert manager._client is None


class TestVaultSecretsManager:
    """Tests for the HashiCorp Vault source."""

    @pytest.fixture
    def config(self):
        return SecretManagerConfig(
            name="vault",
            type="vault",
            enabled=True,
            options={"token": "s.test", "paths": ["app/config", "app/missing"]},
        )

    @pytest.fixture
    def client(self):
        client = MagicMock()
        client.is_authenticated.return_value = True

        def read_secret_version(path, mount_point, raise_on_deleted_version):
            if path != "app/config":
                raise RuntimeError("404 not found")
            return {"data": {"data": {"API_URL": "https://api.example.com", "RETRIES": "3"}}}

        client.secrets.kv.v2.read_secret_version.side_effect = read_secret_version
        client.secrets.kv.v1.read_secret.return_value = {"data": {"LEGACY": "yes"}}
        return client

    @pytest.mark.asyncio
    async def test_load_kv_v2(self, config, client):
        manager = VaultSecretsManager()
        with patch.object(manager, "_get_client", return_value=client):
            variables = await manager.load(config)

        assert variables["API_URL"].type == "url"
        assert variables["API_URL"].source == "vault:app/config"
        assert variables["RETRIES"].value == 3
        client.secrets.kv.v2.read_secret_version.assert_any_call(
            path="app/config", mount_point="secret", raise_on_deleted_version=True
        )

    @pytest.mark.asyncio
    async def test_load_kv_v1(self, config, client):
        config.options.update({"kv_version": 1, "mount_point": "kv", "paths": ["legacy"]})
        manager = VaultSecretsManager()
        with patch.object(manager, "_get_client", return_value=client):
            variables = await manager.load(config)

        assert variables["LEGACY"].value is True
        client.secrets.kv.v1.read_secret.assert_called_once_with(path="legacy", mount_point="kv")

    @pytest.mark.asyncio
    async def test_unauthenticated(self, config, client):
        client.is_authenticated.return_value = False
        manager = VaultSecretsManager()
        with patch.object(manager, "_get_client", return_value=client):
            with pytest.raises(ProviderError, match="authentication failed"):
                await manager.load(config)

    @pytest.mark.asyncio
    async def test_all_paths_failing(self, config, client):
        config.options["paths"] = ["app/missing"]
        manager = VaultSecretsManager()
        with patch.object(manager, "_get_client", return_value=client):
            with pytest.raises(ProviderError):
                await manager.load(config)

    @pytest.mark.asyncio
    async def test_invalid_kv_version(self, config):
        config.options["kv_version"] = 3

        with pytest.raises(ProviderError, match="kv_version"):
            await VaultSecretsManager().load(config)

    @pytest.mark.asyncio
    async def test_non_integer_kv_version(self, config):
        config.options["kv_version"] = "two"

        with pytest.raises(ProviderError, match="Invalid kv_version"):
            await VaultSecretsManager().load(config)

    @pytest.mark.asyncio
    async def test_unreachable_server(self, config, client):
        client.is_authenticated.side_effect = ConnectionError("connection refused")
        manager = VaultSecretsManager()
        with patch.object(manager, "_get_client", return_value=client):
            with pytest.raises(ProviderError, match="Could not reach"):
                await manager.load(config)

    @pytest.mark.asyncio
    async def test_paths_required(self, config):
        config.options["paths"] = []

        with pytest.raises(ProviderError, match="No secret paths"):
            await VaultSecretsManager().load(config)

    @pytest.mark.asyncio
    async def test_missing_hvac(self, config):
        with patch.dict(sys.modules, {"hvac": None}):
            with pytest.raises(ProviderError, match="hvac is required"):
                await VaultSecretsManager().load(config)

    def test_client_uses_environment(self, monkeypatch):
        hvac = MagicMock()
        monkeypatch.setenv("VAULT_ADDR", "https://vault.internal:8200")
        monkeypatch.setenv("VAULT_TOKEN", "s.env")

        with patch.dict(sys.modules, {"hvac": hvac}):
            VaultSecretsManager()._get_client({})

        hvac.Client.assert_called_once_with(
            url="https://vault.internal:8200", token="s.env", namespace=None
        )

    def test_client_requires_token(self, monkeypatch):
        monkeypatch.delenv("VAULT_TOKEN", raising=False)

        with patch.dict(sys.modules, {"hvac": MagicMock()}):
            with pytest.raises(ProviderError, match="token not configured"):
                VaultSecretsManager()._get_client({})
