"""Logging setup for the bore-tunnel CLI."""

import logging
import sys
from typing import Any, cast

import structlog

# Workflow commands that turn a log line into a job annotation
_ANNOTATION_PREFIXES = {
    "warning": "::warning::",
    "error": "::error::",
    "exception": "::error::",
    "critical": "::error::",
}


def annotate_for_actions(_logger: Any, method_name: str, rendered: str) -> str:
    """Prefix rendered warning/error lines with an Actions workflow command."""
    prefix = _ANNOTATION_PREFIXES.get(method_name)
    if prefix is None:
        return rendered
    first_line, _, rest = rendered.partition("\n")
    annotated = f"{prefix}{first_line}"
    return f"{annotated}\n{rest}" if rest else annotated


def configure_logging(
    log_level: str | int = logging.INFO,
    json_format: bool = False,
    github_actions: bool = False,
) -> structlog.stdlib.BoundLogger:
    """Configure stdlib logging and structlog.

    Call once at CLI startup.

    Args:
        log_level: Minimum level, as a name ("DEBUG") or number.
        json_format: Render JSON lines instead of console output.
        github_actions: Emit warnings and errors as job annotations.

    Returns:
        Configured structlog logger.
    """
    if isinstance(log_level, str):
        log_level = logging.getLevelName(log_level.upper())
        if not isinstance(log_level, int):
            log_level = logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Remove existing handlers to avoid duplicate lines when reconfigured
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(handler)

    processors: list[Any] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=not github_actions))

    if github_actions:
        processors.append(annotate_for_actions)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    return cast("structlog.stdlib.BoundLogger", structlog.get_logger("bore-tunnel"))
