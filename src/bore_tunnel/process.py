"""Platform backends for spawning and killing detached processes.

The bore client must outlive the step that started it, so it is spawned
detached from our own session. How that works differs per platform:

* POSIX: a ``nohup ... &`` shell in a new session, reporting ``$!``.
* Windows: a native detached spawn with a hidden window and file-backed
  stdout/stderr.

Pick the backend once with :func:`select_backend`.
"""

import asyncio
import os
import shlex
import signal
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path

import psutil
import structlog

from .binary import is_windows
from .errors import LaunchFailedError, TerminationFailedError

logger = structlog.get_logger()

# Win32 process creation flags (only exported by subprocess on Windows)
DETACHED_PROCESS = 0x00000008
CREATE_NEW_PROCESS_GROUP = 0x00000200
STARTF_USESHOWWINDOW = 0x00000001
SW_HIDE = 0


def parse_pid(pid: str | int) -> int:
    """Convert a persisted PID into an integer.

    Raises:
        TerminationFailedError: If the value is not a positive integer.
            Zero and negative values would address process groups.
    """
    try:
        value = int(str(pid).strip())
    except ValueError as e:
        raise TerminationFailedError(f"Invalid PID: {pid!r}") from e
    if value <= 0:
        raise TerminationFailedError(f"Invalid PID: {pid!r}")
    return value


def error_log_path(log_path: Path) -> Path:
    """Sibling file receiving stderr when the streams are split."""
    if log_path.suffix == ".log":
        return log_path.with_suffix(".err.log")
    return log_path.with_name(f"{log_path.name}.err.log")


class ProcessBackend(ABC):
    """Spawns and kills detached processes on one platform."""

    name: str = "base"

    @abstractmethod
    async def spawn(self, binary: Path, args: list[str], log_path: Path) -> str:
        """Start ``binary`` detached with output appended to ``log_path``.

        Returns:
            PID of the detached process, as a string.

        Raises:
            LaunchFailedError: If the process could not be started.
        """

    @abstractmethod
    def terminate(self, pid: str) -> None:
        """Forcefully kill ``pid``.

        Raises:
            TerminationFailedError: If the process could not be killed.
        """

    def is_running(self, pid: str) -> bool:
        """Check whether a process with this PID currently exists."""
        try:
            return psutil.pid_exists(parse_pid(pid))
        except TerminationFailedError:
            return False


class PosixBackend(ProcessBackend):
    """``nohup`` + background shell job, killed with SIGKILL."""

    name = "posix"

    def __init__(self, shell: str = "bash") -> None:
        self.shell = shell

    def build_command(self, binary: Path, args: list[str], log_path: Path) -> str:
        """Shell command that starts bore in the background and echoes its PID."""
        command = " ".join(shlex.quote(part) for part in [str(binary), *args])
        return f"nohup {command} > {shlex.quote(str(log_path))} 2>&1 & echo $!"

    async def spawn(self, binary: Path, args: list[str], log_path: Path) -> str:
        command = self.build_command(binary, args, log_path)
        try:
            process = await asyncio.create_subprocess_exec(
                self.shell,
                "-c",
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=True,
            )
            stdout, stderr = await process.communicate()
        except OSError as e:
            raise LaunchFailedError(f"Failed to start bore: {e}") from e

        # $! is the background job's PID, not the shell's own
        pid = stdout.decode("utf-8", errors="replace").strip()
        if process.returncode != 0 or not pid.isdigit():
            raise LaunchFailedError(
                f"Shell did not report a bore PID (exit code {process.returncode}): "
                f"{stderr.decode('utf-8', errors='replace').strip() or pid!r}"
            )
        return pid

    def terminate(self, pid: str) -> None:
        target = parse_pid(pid)
        try:
            os.kill(target, signal.SIGKILL)
        except (ProcessLookupError, PermissionError) as e:
            raise TerminationFailedError(f"Failed to kill process {target}: {e}") from e


class WindowsBackend(ProcessBackend):
    """Native detached spawn, killed together with its process tree."""

    name = "windows"

    def _startupinfo(self) -> "subprocess.STARTUPINFO | None":
        if not hasattr(subprocess, "STARTUPINFO"):
            return None
        info = subprocess.STARTUPINFO()
        info.dwFlags |= STARTF_USESHOWWINDOW
        info.wShowWindow = SW_HIDE
        return info

    async def spawn(self, binary: Path, args: list[str], log_path: Path) -> str:
        err_path = error_log_path(log_path)
        try:
            # The child keeps its own handles; ours are closed on exit
            with open(log_path, "wb") as out, open(err_path, "wb") as err:
                process = subprocess.Popen(
                    [str(binary), *args],
                    stdin=subprocess.DEVNULL,
                    stdout=out,
                    stderr=err,
                    creationflags=DETACHED_PROCESS | CREATE_NEW_PROCESS_GROUP,
                    startupinfo=self._startupinfo(),
                    close_fds=True,
                )
        except OSError as e:
            raise LaunchFailedError(f"Failed to start bore: {e}") from e
        return str(process.pid)

    def terminate(self, pid: str) -> None:
        target = parse_pid(pid)
        try:
            parent = psutil.Process(target)
            children = parent.children(recursive=True)
        except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
            raise TerminationFailedError(f"Failed to kill process {target}: {e}") from e

        for child in children:
            try:
                child.kill()
            except psutil.NoSuchProcess:
                continue
            except psutil.AccessDenied as e:
                logger.warning("Failed to kill child process", pid=child.pid, error=str(e))

        try:
            parent.kill()
        except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
            raise TerminationFailedError(f"Failed to kill process {target}: {e}") from e


def select_backend(system: str | None = None) -> ProcessBackend:
    """Return the process backend for the given (or current) platform."""
    if is_windows(system):
        return WindowsBackend()
    return PosixBackend()


def terminate_quietly(backend: ProcessBackend, pid: str) -> bool:
    """Kill ``pid``, downgrading any failure to a warning.

    Returns:
        True if the process was killed.
    """
    try:
        backend.terminate(pid)
    except TerminationFailedError as e:
        logger.warning("Failed to kill process", pid=pid, error=str(e))
        return False
    logger.info("Bore process terminated", pid=pid)
    return True
