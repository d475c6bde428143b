"""GitHub Actions runner integration.

Implements the runner's file-command protocol: state and outputs are
appended to the files named by ``GITHUB_STATE`` / ``GITHUB_OUTPUT``, and
state saved by the main step is handed to the post step as ``STATE_<key>``
environment variables.
"""

import os
from collections.abc import Mapping
from pathlib import Path
from uuid import uuid4

import structlog

logger = structlog.get_logger()


def format_file_command(key: str, value: str) -> str:
    """Format one ``key<<delimiter`` block, safe for multi-line values."""
    delimiter = f"ghadelimiter_{uuid4()}"
    if delimiter in key or delimiter in value:
        raise ValueError(f"Unexpected input: value for {key!r} contains the delimiter")
    return f"{key}<<{delimiter}\n{value}\n{delimiter}\n"


def issue_file_command(path: Path, values: Mapping[str, str]) -> None:
    """Append one block per entry of ``values`` to a runner command file."""
    content = "".join(format_file_command(key, value) for key, value in values.items())
    with open(path, "a", encoding="utf-8") as f:
        f.write(content)


class ActionsStateStore:
    """State store backed by the Actions ``saveState``/``getState`` protocol.

    Values saved here are only visible to the *next* step of the action
    (the post step), never to the current process.
    """

    def __init__(self, state_file: Path, environ: Mapping[str, str] | None = None) -> None:
        self.state_file = state_file
        self._environ = environ if environ is not None else os.environ

    def get(self, key: str) -> str | None:
        return self._environ.get(f"STATE_{key}") or None

    def set(self, key: str, value: str) -> None:
        self.set_many({key: value})

    def set_many(self, values: dict[str, str]) -> None:
        issue_file_command(self.state_file, values)


class ActionsOutputs:
    """Step outputs.

    Written to ``GITHUB_OUTPUT`` when available; always kept in
    :attr:`values` and logged so local runs can see them.
    """

    def __init__(self, output_file: Path | None = None) -> None:
        self.output_file = output_file
        self.values: dict[str, str] = {}

    def set_output(self, name: str, value: str) -> None:
        self.values[name] = value
        if self.output_file is not None:
            issue_file_command(self.output_file, {name: value})
        logger.debug("Output set", name=name, value=value)


def add_path(path_file: Path | None, directory: Path) -> None:
    """Prepend ``directory`` to PATH for subsequent steps."""
    if path_file is None:
        logger.debug("GITHUB_PATH not set, skipping PATH update", directory=str(directory))
        return
    with open(path_file, "a", encoding="utf-8") as f:
        f.write(f"{directory}\n")
