"""Start the bore client as a detached background process."""

from pathlib import Path

import structlog

from .errors import LaunchFailedError
from .process import ProcessBackend, terminate_quietly
from .session import TunnelSession

logger = structlog.get_logger()

SECRET_PLACEHOLDER = "***"


def build_bore_args(port: int, server: str, secret: str | None = None) -> list[str]:
    """Build the ``bore local`` argument vector."""
    args = ["local", str(port), "--to", server]
    if secret:
        args.extend(["--secret", secret])
    return args


def redact_args(args: list[str]) -> list[str]:
    """Copy of ``args`` with the value following ``--secret`` masked."""
    redacted = list(args)
    for index, arg in enumerate(redacted[:-1]):
        if arg == "--secret":
            redacted[index + 1] = SECRET_PLACEHOLDER
    return redacted


async def start_detached_bore(
    backend: ProcessBackend,
    binary: Path,
    session: TunnelSession,
) -> str:
    """Launch bore for ``session`` and record its PID.

    Parent directories of the log and PID files are created before the
    child's output is opened. The PID is written to ``session.pid_path``
    and stored on the session.

    Args:
        backend: Platform backend performing the detached spawn.
        binary: Path to the bore executable.
        session: Session being started.

    Returns:
        PID of the bore process.

    Raises:
        LaunchFailedError: If the process could not be spawned, or its PID
            file could not be written (the process is killed first).
    """
    args = build_bore_args(session.port, session.server, session.secret)
    logger.info(
        "Starting detached bore process",
        command=" ".join([str(binary), *redact_args(args)]),
        backend=backend.name,
    )

    session.log_path.parent.mkdir(parents=True, exist_ok=True)
    session.pid_path.parent.mkdir(parents=True, exist_ok=True)

    pid = await backend.spawn(binary, args, session.log_path)
    try:
        session.pid_path.write_text(pid)
    except OSError as e:
        terminate_quietly(backend, pid)
        raise LaunchFailedError(f"Failed to write PID file {session.pid_path}: {e}") from e
    session.pid = pid

    logger.info("Bore process started", pid=pid, log_path=str(session.log_path))
    return pid
