"""Location of the bore executable on the runner."""

import platform
from pathlib import Path

from .errors import BinaryNotFoundError

POSIX_INSTALL_DIR = Path("/usr/local/bin")


def is_windows(system: str | None = None) -> bool:
    """Check whether the given (or current) platform is Windows."""
    return (system or platform.system()) == "Windows"


def get_install_dir(runner_temp: Path, system: str | None = None) -> Path:
    """Directory the bore binary is installed into for this platform."""
    if is_windows(system):
        return runner_temp / "bin"
    return POSIX_INSTALL_DIR


def get_bore_binary_path(runner_temp: Path, system: str | None = None) -> Path:
    """Return the path where the bore binary is expected to be installed.

    Args:
        runner_temp: Per-job temporary directory (``RUNNER_TEMP``).
        system: Platform name as returned by ``platform.system()``.
            Defaults to the current platform.
    """
    name = "bore.exe" if is_windows(system) else "bore"
    return get_install_dir(runner_temp, system) / name


def locate_bore_binary(runner_temp: Path, system: str | None = None) -> Path:
    """Return the installed bore binary path.

    Raises:
        BinaryNotFoundError: If nothing exists at the expected path.
    """
    path = get_bore_binary_path(runner_temp, system)
    if not path.exists():
        raise BinaryNotFoundError(f"Bore binary not found at: {path}")
    return path
