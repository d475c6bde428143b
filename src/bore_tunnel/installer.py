"""Download and install the bore binary for the runner platform.

Releases are fetched from https://github.com/ekzhang/bore/releases and
installed where :mod:`bore_tunnel.binary` expects to find them.
"""

import os
import platform
import shutil
import stat
import subprocess
import tarfile
import tempfile
import time
import zipfile
from pathlib import Path

import httpx
import structlog

from .actions import add_path
from .binary import get_bore_binary_path, is_windows
from .errors import InstallError

logger = structlog.get_logger()

RELEASES_API_URL = "https://api.github.com/repos/ekzhang/bore/releases/latest"
DOWNLOAD_URL = "https://github.com/ekzhang/bore/releases/download/{version}/{asset}"

VERSION_MAX_ATTEMPTS = 3
VERSION_RETRY_DELAY = 2.0
HTTP_TIMEOUT = 60.0

# (os, arch) -> (release target, archive extension)
_TARGETS: dict[tuple[str, str], tuple[str, str]] = {
    ("linux", "x64"): ("x86_64-unknown-linux-musl", "tar.gz"),
    ("linux", "arm64"): ("aarch64-unknown-linux-musl", "tar.gz"),
    ("windows", "x64"): ("x86_64-pc-windows-msvc", "zip"),
    ("windows", "x86"): ("i686-pc-windows-msvc", "zip"),
    ("macos", "x64"): ("x86_64-apple-darwin", "tar.gz"),
    ("macos", "arm64"): ("aarch64-apple-darwin", "tar.gz"),
}

_SYSTEM_NAMES = {"linux": "linux", "windows": "windows", "darwin": "macos", "macos": "macos"}
_PLATFORM_SYSTEMS = {"linux": "Linux", "windows": "Windows", "macos": "Darwin"}
_MACHINE_NAMES = {
    "x64": "x64",
    "x86_64": "x64",
    "amd64": "x64",
    "arm64": "arm64",
    "aarch64": "arm64",
    "x86": "x86",
    "i386": "x86",
    "i686": "x86",
}


def detect_platform(runner_os: str | None = None, runner_arch: str | None = None) -> tuple[str, str]:
    """Return normalized (os, arch), preferring the runner's RUNNER_OS/RUNNER_ARCH."""
    os_name = (runner_os or platform.system()).lower()
    arch = (runner_arch or platform.machine()).lower()
    return _SYSTEM_NAMES.get(os_name, os_name), _MACHINE_NAMES.get(arch, arch)


def release_target(os_name: str, arch: str) -> tuple[str, str]:
    """Return the (target triple, archive extension) for a platform.

    Raises:
        InstallError: If bore publishes no build for the platform.
    """
    target = _TARGETS.get((os_name, arch))
    if target is None:
        raise InstallError(f"Unsupported platform: {os_name}-{arch}")
    return target


def asset_name(version: str, target: str, extension: str) -> str:
    return f"bore-{version}-{target}.{extension}"


def _auth_headers(github_token: str | None) -> dict[str, str]:
    headers = {"Accept": "application/vnd.github+json"}
    if github_token:
        headers["Authorization"] = f"Bearer {github_token}"
    return headers


def resolve_version(
    version: str,
    github_token: str | None = None,
    client: httpx.Client | None = None,
    max_attempts: int = VERSION_MAX_ATTEMPTS,
    retry_delay: float = VERSION_RETRY_DELAY,
) -> str:
    """Resolve ``latest`` to a concrete release tag.

    Unauthenticated requests are rate limited, so pass ``GITHUB_TOKEN``
    when available.

    Raises:
        InstallError: If no tag could be fetched after ``max_attempts``.
    """
    if version != "latest":
        logger.info("Using specified bore version", version=version)
        return version

    if not github_token:
        logger.warning("No GitHub token found, using unauthenticated requests (rate limited)")

    owns_client = client is None
    http = client or httpx.Client(timeout=HTTP_TIMEOUT, follow_redirects=True)
    last_error: str | None = None
    try:
        for attempt in range(1, max_attempts + 1):
            try:
                response = http.get(RELEASES_API_URL, headers=_auth_headers(github_token))
                response.raise_for_status()
                tag = response.json().get("tag_name")
                if tag:
                    logger.info("Latest bore version", version=tag)
                    return str(tag)
                last_error = "response has no tag_name"
            except (httpx.HTTPError, ValueError) as e:
                last_error = str(e)

            if attempt < max_attempts:
                logger.warning(
                    "Failed to fetch latest bore version, retrying",
                    attempt=attempt,
                    max_attempts=max_attempts,
                    error=last_error,
                )
                time.sleep(retry_delay)
    finally:
        if owns_client:
            http.close()

    raise InstallError(
        f"Failed to fetch latest bore version after {max_attempts} attempts: {last_error}. "
        "Pass GITHUB_TOKEN to avoid rate limiting."
    )


def _download(url: str, dest: Path, client: httpx.Client | None = None) -> None:
    owns_client = client is None
    http = client or httpx.Client(timeout=HTTP_TIMEOUT, follow_redirects=True)
    try:
        with http.stream("GET", url) as response:
            response.raise_for_status()
            with open(dest, "wb") as f:
                for chunk in response.iter_bytes():
                    f.write(chunk)
    except httpx.HTTPError as e:
        raise InstallError(f"Failed to download bore binary from {url}: {e}") from e
    finally:
        if owns_client:
            http.close()


def _extract(archive: Path, dest_dir: Path) -> None:
    try:
        if archive.name.endswith(".tar.gz"):
            with tarfile.open(archive, "r:gz") as tar:
                tar.extractall(dest_dir, filter="data")
        else:
            with zipfile.ZipFile(archive) as zf:
                zf.extractall(dest_dir)
    except (tarfile.TarError, zipfile.BadZipFile, OSError) as e:
        raise InstallError(f"Failed to extract {archive.name}: {e}") from e


def _find_binary(directory: Path, binary_name: str) -> Path:
    direct = directory / binary_name
    if direct.is_file():
        return direct
    # Some archives nest the binary in a subdirectory
    for candidate in sorted(directory.rglob(binary_name)):
        if candidate.is_file():
            return candidate
    raise InstallError(f"Could not find {binary_name} in extracted archive")


def _copy_binary(source: Path, dest: Path, windows: bool) -> None:
    dest.parent.mkdir(parents=True, exist_ok=True)
    if windows or os.access(dest.parent, os.W_OK):
        shutil.copyfile(source, dest)
    else:
        logger.info("Install directory not writable, using sudo", path=str(dest.parent))
        result = subprocess.run(
            ["sudo", "cp", str(source), str(dest)],
            capture_output=True,
            text=True,
        )
        if result.returncode != 0:
            raise InstallError(f"sudo cp failed: {result.stderr.strip()}")
        subprocess.run(["sudo", "chmod", "+x", str(dest)], capture_output=True)

    try:
        dest.chmod(dest.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    except PermissionError:
        # Owned by root after sudo cp; already made executable above
        pass


def _verify(binary: Path) -> str:
    try:
        result = subprocess.run(
            [str(binary), "--version"],
            capture_output=True,
            text=True,
            timeout=10,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        raise InstallError(f"Installed bore binary does not run: {e}") from e
    if result.returncode != 0:
        raise InstallError(f"bore --version failed: {result.stderr.strip()}")
    return result.stdout.strip()


def install_bore(
    version: str,
    runner_temp: Path,
    runner_os: str | None = None,
    runner_arch: str | None = None,
    github_token: str | None = None,
    github_path: Path | None = None,
    client: httpx.Client | None = None,
) -> Path:
    """Download a bore release and install it for this platform.

    Args:
        version: Release tag or ``latest``.
        runner_temp: Per-job temporary directory.
        runner_os: ``RUNNER_OS`` value; detected when not given.
        runner_arch: ``RUNNER_ARCH`` value; detected when not given.
        github_token: Token for the GitHub releases API.
        github_path: ``GITHUB_PATH`` file; on Windows the install directory
            is added to it so later steps can run ``bore``.
        client: Optional HTTP client (tests).

    Returns:
        Path of the installed binary.

    Raises:
        InstallError: If the platform is unsupported or any step fails.
    """
    os_name, arch = detect_platform(runner_os, runner_arch)
    target, extension = release_target(os_name, arch)
    logger.info("Detected platform", platform=f"{os_name}-{arch}", target=target)

    system = _PLATFORM_SYSTEMS[os_name]
    windows = is_windows(system)
    resolved = resolve_version(version, github_token=github_token, client=client)
    asset = asset_name(resolved, target, extension)
    url = DOWNLOAD_URL.format(version=resolved, asset=asset)
    dest = get_bore_binary_path(runner_temp, system)

    runner_temp.mkdir(parents=True, exist_ok=True)
    with tempfile.TemporaryDirectory(prefix=".boretmp", dir=runner_temp) as tmp:
        work_dir = Path(tmp)
        archive = work_dir / asset

        logger.info("Downloading bore", url=url)
        _download(url, archive, client=client)
        _extract(archive, work_dir)

        source = _find_binary(work_dir, "bore.exe" if windows else "bore")
        logger.info("Installing bore", path=str(dest))
        _copy_binary(source, dest, windows)

    if windows:
        add_path(github_path, dest.parent)

    reported = _verify(dest)
    logger.info("Bore installed", path=str(dest), version=reported or resolved)
    return dest
