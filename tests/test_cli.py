"""Tests for the wabridge command line interface."""

import pytest
from click.testing import CliRunner

from wabridge import __version__
from wabridge import cli as cli_module


@pytest.fixture()
def runner(monkeypatch, tmp_path):
    monkeypatch.delenv("WABRIDGE_CDP_URL", raising=False)
    monkeypatch.delenv("WABRIDGE_PHONE_NUMBER", raising=False)
    monkeypatch.delenv("WABRIDGE_BUNDLE_DIR", raising=False)
    monkeypatch.setenv("WABRIDGE_CONFIG_DIR", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "cache"))
    monkeypatch.setattr(cli_module, "setup_logging", lambda **kwargs: None)
    return CliRunner()


class TestCli:
    """Tests for the wabridge command group."""

    def test_version_command(self, runner):
        result = runner.invoke(cli_module.cli, ["version"])

        assert result.exit_code == 0
        assert f"wabridge {__version__}" in result.output

    def test_version_option(self, runner):
        result = runner.invoke(cli_module.cli, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_init_creates_config(self, runner, tmp_path):
        """Test that init writes config.json under the configured directory."""
        result = runner.invoke(cli_module.cli, ["init"])

        assert result.exit_code == 0
        assert (tmp_path / "config" / "config.json").exists()
        assert "Configuration" in result.output

    def test_connect_requires_cdp_url(self, runner):
        result = runner.invoke(cli_module.cli, ["connect"])

        assert result.exit_code == 2
        assert "No CDP endpoint" in result.output
