"""
Tests for the command-line interface.
"""

import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest

from envlens import __version__
from envlens.cli import main
from envlens.providers.built_in import register_built_in_providers


class TestCli:
    """Tests for the envlens entry point."""

    @pytest.fixture
    def temp_dir(self):
        """Create a workspace with an environment file and no config."""
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            (root / ".env").write_text("API_TOKEN=s3cr3t-value # api token\nDEBUG=true\n")
            yield root

    @pytest.fixture(autouse=True)
    def isolated(self, temp_dir, monkeypatch):
        monkeypatch.chdir(temp_dir)
        monkeypatch.setenv("HOME", str(temp_dir))
        monkeypatch.setenv("COLUMNS", "250")
        register_built_in_providers()

    def test_masked_output(self, temp_dir, capsys):
        assert main([str(temp_dir)]) == 0

        output = capsys.readouterr().out
        assert "API_TOKEN" in output
        assert "s3cr3t-value" not in output
        assert "api token" in output

    def test_reveal(self, temp_dir, capsys):
        assert main([str(temp_dir), "--reveal"]) == 0

        assert "s3cr3t-value" in capsys.readouterr().out

    def test_explicit_file(self, temp_dir, capsys):
        other = temp_dir / "custom.env"
        other.write_text("ONLY_HERE=1\n")

        assert main(["--file", str(other), "--reveal"]) == 0

        output = capsys.readouterr().out
        assert "ONLY_HERE" in output
        assert "API_TOKEN" not in output

    def test_list_files(self, temp_dir, capsys):
        (temp_dir / ".env.local").write_text("A=1\n")

        assert main(["--list-files"]) == 0

        output = capsys.readouterr().out
        assert ".env.local" in output

    def test_list_files_empty(self, temp_dir, capsys):
        empty = temp_dir / "empty"
        empty.mkdir()

        assert main([str(empty), "--list-files"]) == 1

    def test_list_providers(self, capsys):
        assert main(["--list-providers"]) == 0

        output = capsys.readouterr().out
        assert "aws" in output
        assert "vault" in output

    def test_generate_example(self, temp_dir):
        assert main(["--generate-example"]) == 0

        example = (temp_dir / ".env.example").read_text()
        assert "API_TOKEN=your_api_token_here # api token" in example

    def test_generate_example_without_file(self, temp_dir):
        empty = temp_dir / "empty"
        empty.mkdir()

        assert main([str(empty), "--generate-example"]) == 1

    def test_shell_override(self, temp_dir, capsys, monkeypatch):
        monkeypatch.setenv("DEBUG", "false")

        assert main(["--shell-override", "--reveal"]) == 0

        output = capsys.readouterr().out
        assert "shell" in output

    def test_invalid_config_is_an_error(self, temp_dir, capsys):
        config = temp_dir / "broken.yaml"
        config.write_text("masking: [not, a, mapping]\n")

        assert main(["--config", str(config)]) == 1
        assert "Error" in capsys.readouterr().out

    def test_keyboard_interrupt(self):
        with patch("envlens.cli._main_async", side_effect=KeyboardInterrupt):
            assert main([]) == 130

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as excinfo:
            main(["--version"])

        assert excinfo.value.code == 0
        assert __version__ in capsys.readouterr().out
