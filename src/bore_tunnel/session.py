"""Tunnel session model."""

import re
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field

from .config import TunnelInputs

_UNSAFE_PATH_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class TunnelStatus(str, Enum):
    """Observed state of a tunnel, reconstructed from its log and PID."""

    STARTING = "starting"
    READY = "ready"
    FAILED = "failed"
    TERMINATED = "terminated"


def session_paths(server: str, port: int, temp_dir: Path) -> tuple[Path, Path]:
    """Return the (log, pid) file paths for a server/port pair.

    Sessions with the same server and port share these files.
    """
    stem = f"bore_{_UNSAFE_PATH_CHARS.sub('_', server)}_{port}"
    return temp_dir / f"{stem}.log", temp_dir / f"{stem}.pid"


class TunnelSession(BaseModel):
    """One local port exposed through one bore server."""

    port: int = Field(ge=1, le=65535)
    server: str
    secret: str | None = Field(default=None, repr=False)
    timeout_seconds: int = Field(ge=1)
    log_path: Path
    pid_path: Path
    pid: str | None = None

    @classmethod
    def from_inputs(cls, inputs: TunnelInputs, temp_dir: Path) -> "TunnelSession":
        """Create a fresh session for the given inputs."""
        log_path, pid_path = session_paths(inputs.server, inputs.port, temp_dir)
        return cls(
            port=inputs.port,
            server=inputs.server,
            secret=inputs.secret,
            timeout_seconds=inputs.timeout,
            log_path=log_path,
            pid_path=pid_path,
        )
