#!/usr/bin/env python3
"""bore-tunnel - CLI entry point."""

import asyncio
import functools
import logging
import os
import sys
from pathlib import Path

import click
import sentry_sdk
from sentry_sdk.integrations.httpx import HttpxIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

from . import __version__
from .actions import ActionsOutputs, ActionsStateStore
from .config import RunnerSettings, load_inputs
from .errors import BoreTunnelError
from .installer import install_bore
from .logging_config import configure_logging
from .process import select_backend
from .state import FileStateStore, StateStore, TunnelStateBridge
from .supervisor import TunnelSupervisor

DEFAULT_STATE_FILE_NAME = "bore_tunnel_state.json"


def _init_sentry() -> bool:
    """Initialize Sentry error tracking when SENTRY_DSN is set."""
    dsn = os.environ.get("SENTRY_DSN")
    if not dsn:
        return False

    environment = os.environ.get("ENVIRONMENT", "ci")

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        release=f"bore-tunnel@{__version__}",
        traces_sample_rate=0.0,
        integrations=[
            HttpxIntegration(),
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
        ],
        send_default_pii=False,
        attach_stacktrace=True,
        max_breadcrumbs=50,
        server_name="bore-tunnel",
        ignore_errors=["KeyboardInterrupt", "SystemExit"],
    )

    sentry_sdk.set_tag("service", "bore-tunnel")
    return True


_sentry_enabled = _init_sentry()


def _load_settings() -> RunnerSettings:
    settings = RunnerSettings()
    configure_logging(settings.log_level, github_actions=settings.github_actions)
    return settings


def _build_store(settings: RunnerSettings, state_file: Path | None) -> StateStore:
    """Pick the state store: explicit file, then the Actions store, then a temp file."""
    path = state_file or settings.state_file
    if path is not None:
        return FileStateStore(path)
    if settings.github_state is not None:
        return ActionsStateStore(settings.github_state)
    return FileStateStore(settings.runner_temp / DEFAULT_STATE_FILE_NAME)


def _build_supervisor(
    settings: RunnerSettings,
    state_file: Path | None,
    install: bool = False,
) -> TunnelSupervisor:
    installer = None
    if install:
        installer = functools.partial(
            install_bore,
            runner_temp=settings.runner_temp,
            runner_os=settings.runner_os,
            runner_arch=settings.runner_arch,
            github_token=settings.github_token,
            github_path=settings.github_path,
        )

    return TunnelSupervisor(
        bridge=TunnelStateBridge(_build_store(settings, state_file)),
        backend=select_backend(),
        outputs=ActionsOutputs(settings.github_output),
        runner_temp=settings.runner_temp,
        installer=installer,
    )


def _finish(exit_code: int) -> None:
    if _sentry_enabled:
        sentry_sdk.flush(timeout=2.0)
    sys.exit(exit_code)


state_file_option = click.option(
    "--state-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="JSON file holding state between setup and cleanup (default: Actions state)",
)


@click.group()
@click.version_option(version=__version__, prog_name="bore-tunnel")
def cli() -> None:
    """bore-tunnel - Expose a local port through bore for the rest of a CI job.

    The tunnel runs detached in the background; a second invocation
    (the post step) shuts it down.
    """
    pass


@cli.command()
@state_file_option
def run(state_file: Path | None) -> None:
    """Run as the action entry point.

    The first invocation sets the tunnel up, the next one cleans it up.
    Inputs are read from INPUT_* environment variables.
    """
    settings = _load_settings()
    supervisor = _build_supervisor(settings, state_file, install=not settings.skip_install)
    exit_code = asyncio.run(supervisor.run(load_inputs))
    _finish(exit_code)


@cli.command()
@click.option("--port", type=int, default=None, help="Local port to expose [env: INPUT_PORT]")
@click.option("--server", default=None, help="Bore server (default: bore.pub)")
@click.option("--secret", default=None, help="Secret for authenticated bore servers")
@click.option("--timeout", type=int, default=None, help="Seconds to wait for the tunnel")
@click.option(
    "--bore-version",
    "version",
    default=None,
    help="Bore release to install (default: latest)",
)
@click.option(
    "--install/--no-install",
    default=None,
    help="Download bore before starting (default: on unless BORE_SKIP_INSTALL)",
)
@state_file_option
def setup(
    port: int | None,
    server: str | None,
    secret: str | None,
    timeout: int | None,
    version: str | None,
    install: bool | None,
    state_file: Path | None,
) -> None:
    """Start a detached tunnel and print its public address.

    Options override the matching INPUT_* environment variables.
    """
    settings = _load_settings()
    if install is None:
        install = not settings.skip_install
    supervisor = _build_supervisor(settings, state_file, install=install)

    try:
        inputs = load_inputs(
            port=port, server=server, secret=secret, timeout=timeout, version=version
        )
        address = asyncio.run(supervisor.setup(inputs))
    except BoreTunnelError as e:
        log_content = getattr(e, "log_content", "")
        if log_content:
            click.echo(log_content, err=True)
        click.echo(click.style("Error: ", fg="red", bold=True) + str(e), err=True)
        _finish(1)
        return

    click.echo(click.style("Tunnel ready ", fg="green", bold=True) + f"{address.host}:{address.port}")
    _finish(0)


@cli.command()
@state_file_option
def cleanup(state_file: Path | None) -> None:
    """Stop the tunnel started by setup. Never fails."""
    settings = _load_settings()
    _build_supervisor(settings, state_file).cleanup()
    _finish(0)


@cli.command()
@click.option("--bore-version", "version", default="latest", show_default=True)
def install(version: str) -> None:
    """Download and install the bore binary for this platform."""
    settings = _load_settings()
    try:
        path = install_bore(
            version,
            runner_temp=settings.runner_temp,
            runner_os=settings.runner_os,
            runner_arch=settings.runner_arch,
            github_token=settings.github_token,
            github_path=settings.github_path,
        )
    except BoreTunnelError as e:
        click.echo(click.style("Error: ", fg="red", bold=True) + str(e), err=True)
        _finish(1)
        return

    click.echo(click.style("OK", fg="green") + f" Installed bore to {path}")
    _finish(0)


@cli.command()
@state_file_option
def status(state_file: Path | None) -> None:
    """Show the tunnel recorded by setup and whether it is still running."""
    settings = _load_settings()
    record, tunnel_status = _build_supervisor(settings, state_file).inspect()

    if record is None:
        click.echo(click.style("No active tunnel recorded.", fg="yellow"))
        return

    color = {"ready": "green", "starting": "cyan"}.get(
        tunnel_status.value if tunnel_status else "", "red"
    )
    click.echo(click.style("Bore Tunnel", fg="cyan", bold=True))
    click.echo(f"  PID: {record.pid or '(unknown)'}")
    click.echo(f"  Log: {record.log_path or '(unknown)'}")
    click.echo(f"  PID file: {record.pid_path or '(unknown)'}")
    click.echo(
        "  Status: "
        + click.style(tunnel_status.value if tunnel_status else "unknown", fg=color)
    )


@cli.command()
def version() -> None:
    """Show version information."""
    click.echo(f"bore-tunnel v{__version__}")


if __name__ == "__main__":
    cli()
