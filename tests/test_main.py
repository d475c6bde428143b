"""Tests for main.py CLI module."""

import os
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from bore_tunnel import __version__
from bore_tunnel.actions import ActionsStateStore
from bore_tunnel.config import RunnerSettings
from bore_tunnel.errors import InstallError, TunnelFailedError
from bore_tunnel.main import _build_store, _build_supervisor, _init_sentry, cli
from bore_tunnel.readiness import TunnelAddress
from bore_tunnel.session import TunnelStatus
from bore_tunnel.state import FileStateStore, TunnelRecord


@pytest.fixture(autouse=True)
def quiet_logging():
    """Leave global logging alone while invoking the CLI."""
    with patch("bore_tunnel.main.configure_logging"):
        yield


@pytest.fixture
def settings(tmp_path):
    settings = RunnerSettings(runner_temp=tmp_path, github_state=None, github_output=None)
    settings.state_file = None
    settings.skip_install = False
    return settings


@pytest.fixture
def mock_supervisor(settings):
    supervisor = MagicMock()
    with (
        patch("bore_tunnel.main._load_settings", return_value=settings),
        patch("bore_tunnel.main._build_supervisor", return_value=supervisor) as build,
    ):
        supervisor.build = build
        yield supervisor


class TestSentryInitialization:
    """Test _init_sentry function."""

    def test_init_sentry_with_dsn(self):
        """Test Sentry initialization with DSN."""
        with (
            patch.dict(os.environ, {"SENTRY_DSN": "https://test@sentry.io/123"}),
            patch("sentry_sdk.init") as mock_init,
            patch("sentry_sdk.set_tag") as mock_tag,
        ):
            result = _init_sentry()
            assert result is True
            mock_init.assert_called_once()
            mock_tag.assert_called_with("service", "bore-tunnel")

    def test_init_sentry_without_dsn(self):
        """Test Sentry initialization without DSN."""
        with patch.dict(os.environ, {}, clear=True):
            assert _init_sentry() is False

    def test_init_sentry_environment(self):
        """Test the environment defaults to ci."""
        with (
            patch.dict(os.environ, {"SENTRY_DSN": "https://test@sentry.io/123"}),
            patch("sentry_sdk.init") as mock_init,
            patch("sentry_sdk.set_tag"),
        ):
            os.environ.pop("ENVIRONMENT", None)
            _init_sentry()
            call_kwargs = mock_init.call_args[1]
            assert call_kwargs["environment"] == "ci"
            assert call_kwargs["release"] == f"bore-tunnel@{__version__}"
            assert call_kwargs["send_default_pii"] is False


class TestBuildStore:
    """Test state store selection."""

    def test_explicit_file(self, settings, tmp_path):
        """Test an explicit state file wins."""
        store = _build_store(settings, tmp_path / "state.json")
        assert isinstance(store, FileStateStore)
        assert store.path == tmp_path / "state.json"

    def test_env_file(self, settings, tmp_path):
        """Test BORE_STATE_FILE is used next."""
        settings.state_file = tmp_path / "env.json"
        settings.github_state = tmp_path / "github_state"
        store = _build_store(settings, None)
        assert isinstance(store, FileStateStore)
        assert store.path == tmp_path / "env.json"

    def test_actions_state(self, settings, tmp_path):
        """Test the Actions store is used inside a runner."""
        settings.github_state = tmp_path / "github_state"
        store = _build_store(settings, None)
        assert isinstance(store, ActionsStateStore)
        assert store.state_file == tmp_path / "github_state"

    def test_default_file(self, settings, tmp_path):
        """Test a file in RUNNER_TEMP is the fallback."""
        store = _build_store(settings, None)
        assert isinstance(store, FileStateStore)
        assert store.path == tmp_path / "bore_tunnel_state.json"


class TestBuildSupervisor:
    """Test supervisor wiring."""

    def test_without_installer(self, settings):
        """Test no installer is wired by default."""
        supervisor = _build_supervisor(settings, None)
        assert supervisor._installer is None
        assert supervisor.runner_temp == settings.runner_temp

    def test_with_installer(self, settings):
        """Test the installer receives the runner settings."""
        supervisor = _build_supervisor(settings, None, install=True)
        assert supervisor._installer.keywords["runner_temp"] == settings.runner_temp


class TestCli:
    """Test top-level CLI behaviour."""

    def test_help(self, cli_runner):
        """Test help lists the commands."""
        result = cli_runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        for command in ("run", "setup", "cleanup", "install", "status", "version"):
            assert command in result.output

    def test_version_option(self, cli_runner):
        """Test --version."""
        result = cli_runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_version_command(self, cli_runner):
        """Test the version command."""
        result = cli_runner.invoke(cli, ["version"])
        assert result.exit_code == 0
        assert f"bore-tunnel v{__version__}" in result.output


class TestRunCommand:
    """Test the action entry point."""

    def test_success(self, cli_runner, mock_supervisor):
        """Test a successful phase exits 0."""
        mock_supervisor.run = AsyncMock(return_value=0)

        result = cli_runner.invoke(cli, ["run"])

        assert result.exit_code == 0
        mock_supervisor.run.assert_awaited_once()

    def test_failure(self, cli_runner, mock_supervisor):
        """Test a failed setup exits 1."""
        mock_supervisor.run = AsyncMock(return_value=1)

        result = cli_runner.invoke(cli, ["run"])

        assert result.exit_code == 1

    def test_installs_by_default(self, cli_runner, mock_supervisor, settings):
        """Test the installer is enabled unless BORE_SKIP_INSTALL is set."""
        mock_supervisor.run = AsyncMock(return_value=0)

        cli_runner.invoke(cli, ["run"])

        assert mock_supervisor.build.call_args.kwargs["install"] is True

    def test_skip_install(self, cli_runner, mock_supervisor, settings):
        """Test BORE_SKIP_INSTALL disables the installer."""
        settings.skip_install = True
        mock_supervisor.run = AsyncMock(return_value=0)

        cli_runner.invoke(cli, ["run"])

        assert mock_supervisor.build.call_args.kwargs["install"] is False


class TestSetupCommand:
    """Test the setup command."""

    def test_success(self, cli_runner, mock_supervisor):
        """Test the tunnel address is printed."""
        mock_supervisor.setup = AsyncMock(return_value=TunnelAddress("bore.pub", "41234"))

        result = cli_runner.invoke(cli, ["setup", "--port", "3000", "--no-install"])

        assert result.exit_code == 0
        assert "bore.pub:41234" in result.output
        inputs = mock_supervisor.setup.call_args.args[0]
        assert inputs.port == 3000
        assert inputs.server == "bore.pub"
        assert mock_supervisor.build.call_args.kwargs["install"] is False

    def test_missing_port(self, cli_runner, mock_supervisor):
        """Test a missing port fails with a clear error."""
        mock_supervisor.setup = AsyncMock()

        result = cli_runner.invoke(cli, ["setup"])

        assert result.exit_code == 1
        assert "Port is required" in result.output
        mock_supervisor.setup.assert_not_called()

    def test_port_from_environment(self, cli_runner, mock_supervisor, monkeypatch):
        """Test INPUT_PORT is used when --port is absent."""
        monkeypatch.setenv("INPUT_PORT", "8080")
        mock_supervisor.setup = AsyncMock(return_value=TunnelAddress("bore.pub", "1"))

        result = cli_runner.invoke(cli, ["setup"])

        assert result.exit_code == 0
        assert mock_supervisor.setup.call_args.args[0].port == 8080

    def test_tunnel_failure_prints_log(self, cli_runner, mock_supervisor):
        """Test bore's output is shown when setup fails."""
        mock_supervisor.setup = AsyncMock(
            side_effect=TunnelFailedError(
                "Tunnel failed: Failed to establish tunnel",
                log_content="connection refused",
            )
        )

        result = cli_runner.invoke(cli, ["setup", "--port", "3000"])

        assert result.exit_code == 1
        assert "connection refused" in result.output
        assert "Tunnel failed: Failed to establish tunnel" in result.output


class TestCleanupCommand:
    """Test the cleanup command."""

    def test_cleanup(self, cli_runner, mock_supervisor):
        """Test cleanup runs and exits 0."""
        result = cli_runner.invoke(cli, ["cleanup"])

        assert result.exit_code == 0
        mock_supervisor.cleanup.assert_called_once()

    def test_state_file_option(self, cli_runner, mock_supervisor, tmp_path):
        """Test --state-file is passed through."""
        cli_runner.invoke(cli, ["cleanup", "--state-file", str(tmp_path / "s.json")])

        assert mock_supervisor.build.call_args.args[1] == tmp_path / "s.json"


class TestStatusCommand:
    """Test the status command."""

    def test_no_record(self, cli_runner, mock_supervisor):
        """Test status without a recorded tunnel."""
        mock_supervisor.inspect.return_value = (None, None)

        result = cli_runner.invoke(cli, ["status"])

        assert result.exit_code == 0
        assert "No active tunnel recorded." in result.output

    def test_ready(self, cli_runner, mock_supervisor):
        """Test status of a running tunnel."""
        mock_supervisor.inspect.return_value = (
            TunnelRecord("4242", Path("/tmp/bore.log"), Path("/tmp/bore.pid")),
            TunnelStatus.READY,
        )

        result = cli_runner.invoke(cli, ["status"])

        assert result.exit_code == 0
        assert "4242" in result.output
        assert "ready" in result.output


class TestInstallCommand:
    """Test the install command."""

    def test_install(self, cli_runner, settings, tmp_path):
        """Test the installed path is printed."""
        with (
            patch("bore_tunnel.main._load_settings", return_value=settings),
            patch("bore_tunnel.main.install_bore", return_value=tmp_path / "bore") as mock_install,
        ):
            result = cli_runner.invoke(cli, ["install", "--bore-version", "v0.5.1"])

        assert result.exit_code == 0
        assert "Installed bore to" in result.output
        assert mock_install.call_args.args[0] == "v0.5.1"

    def test_install_failure(self, cli_runner, settings):
        """Test install errors exit 1."""
        with (
            patch("bore_tunnel.main._load_settings", return_value=settings),
            patch("bore_tunnel.main.install_bore", side_effect=InstallError("Unsupported platform")),
        ):
            result = cli_runner.invoke(cli, ["install"])

        assert result.exit_code == 1
        assert "Unsupported platform" in result.output
