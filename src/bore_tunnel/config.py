"""Configuration for the bore tunnel action."""

import tempfile
from pathlib import Path
from typing import Any

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import InputError

DEFAULT_SERVER = "bore.pub"
DEFAULT_TIMEOUT = 30
DEFAULT_VERSION = "latest"


class TunnelInputs(BaseSettings):
    """Action inputs.

    GitHub Actions exposes ``with:`` inputs as ``INPUT_<NAME>`` environment
    variables. Inputs the workflow leaves out arrive as empty strings, so
    empty values fall back to the defaults below.
    """

    model_config = SettingsConfigDict(
        env_prefix="INPUT_",
        env_ignore_empty=True,
        extra="ignore",
    )

    port: int = Field(ge=1, le=65535, description="Local port to expose")
    server: str = Field(
        default=DEFAULT_SERVER,
        min_length=1,
        description="Remote bore server",
    )
    secret: str | None = Field(
        default=None,
        repr=False,
        description="Shared secret for authenticated bore servers",
    )
    timeout: int = Field(
        default=DEFAULT_TIMEOUT,
        ge=1,
        description="Seconds to wait for the tunnel to come up",
    )
    version: str = Field(
        default=DEFAULT_VERSION,
        description="Bore release to install ('latest' or a tag such as v0.5.1)",
    )


class RunnerSettings(BaseSettings):
    """Environment of the job runner executing the action."""

    model_config = SettingsConfigDict(
        env_ignore_empty=True,
        extra="ignore",
    )

    runner_temp: Path = Field(
        default_factory=lambda: Path(tempfile.gettempdir()),
        description="Per-job temporary directory",
    )
    runner_os: str | None = Field(default=None, description="Runner OS (Linux, Windows, macOS)")
    runner_arch: str | None = Field(default=None, description="Runner architecture (X64, ARM64)")

    github_actions: bool = Field(default=False, description="True when running inside Actions")
    github_state: Path | None = Field(default=None, description="File receiving saved state")
    github_output: Path | None = Field(default=None, description="File receiving step outputs")
    github_path: Path | None = Field(default=None, description="File receiving PATH additions")
    github_token: str | None = Field(
        default=None,
        repr=False,
        description="Token used for GitHub API requests",
    )

    state_file: Path | None = Field(
        default=None,
        validation_alias="BORE_STATE_FILE",
        description="JSON state file used instead of the Actions state store",
    )
    skip_install: bool = Field(
        default=False,
        validation_alias="BORE_SKIP_INSTALL",
        description="Use an already-installed bore binary",
    )

    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR)",
    )


def load_inputs(**overrides: Any) -> TunnelInputs:
    """Load action inputs from the environment.

    Args:
        **overrides: Values that take precedence over ``INPUT_*`` variables
            (e.g. command line options). ``None`` values are ignored.

    Returns:
        Validated inputs.

    Raises:
        InputError: If the port is missing or any input is invalid.
    """
    explicit = {key: value for key, value in overrides.items() if value is not None}
    try:
        return TunnelInputs(**explicit)
    except ValidationError as e:
        missing = {
            str(err["loc"][0]) for err in e.errors() if err["type"] == "missing" and err["loc"]
        }
        if "port" in missing:
            raise InputError("Port is required") from e
        details = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise InputError(f"Invalid inputs: {details}") from e
