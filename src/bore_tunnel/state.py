"""Cross-invocation state for the setup and cleanup phases.

The setup and cleanup phases run as separate processes that share no
memory. Everything cleanup needs to find the tunnel again travels through a
small string key-value store.
"""

import json
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import structlog

from .session import TunnelSession

logger = structlog.get_logger()

IS_POST_KEY = "isPost"
PID_KEY = "bore_pid"
LOG_KEY = "bore_log"
PID_PATH_KEY = "bore_pid_path"
TUNNEL_ACTIVE_KEY = "tunnel_active"


class StateStore(Protocol):
    """Persisted string key-value store shared by both phases."""

    def get(self, key: str) -> str | None: ...
    def set(self, key: str, value: str) -> None: ...
    def set_many(self, values: dict[str, str]) -> None: ...


class MemoryStateStore:
    """In-process store, mainly for tests."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self.values: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self.values.get(key)

    def set(self, key: str, value: str) -> None:
        self.values[key] = value

    def set_many(self, values: dict[str, str]) -> None:
        self.values.update(values)


class FileStateStore:
    """JSON file store for runs outside GitHub Actions.

    Writes go to a temporary file that replaces the state file, so readers
    never see a partially written mapping.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable state file", path=str(self.path), error=str(e))
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring malformed state file", path=str(self.path))
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def get(self, key: str) -> str | None:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        self.set_many({key: value})

    def set_many(self, values: dict[str, str]) -> None:
        data = self._load()
        data.update(values)

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


@dataclass(frozen=True)
class TunnelRecord:
    """What cleanup knows about the tunnel started by setup."""

    pid: str | None
    log_path: Path | None
    pid_path: Path | None


class TunnelStateBridge:
    """Reads and writes the tunnel record through a :class:`StateStore`."""

    def __init__(self, store: StateStore) -> None:
        self.store = store

    def is_post(self) -> bool:
        """True when a previous invocation already ran setup."""
        return bool(self.store.get(IS_POST_KEY))

    def mark_post(self) -> None:
        """Make the next invocation run cleanup."""
        self.store.set(IS_POST_KEY, "true")

    def save_session(self, session: TunnelSession) -> None:
        """Persist the session so cleanup can find its process.

        ``tunnel_active`` is written last; a record without it is ignored.
        """
        if session.pid is None:
            raise ValueError("Cannot persist a session without a PID")

        self.store.set_many(
            {
                PID_KEY: session.pid,
                LOG_KEY: str(session.log_path),
                PID_PATH_KEY: str(session.pid_path),
                TUNNEL_ACTIVE_KEY: "true",
            }
        )
        logger.debug("Tunnel state saved", pid=session.pid)

    def load_session(self) -> TunnelRecord | None:
        """Read the persisted record.

        Returns:
            The record, or None if no active tunnel was recorded.
        """
        if self.store.get(TUNNEL_ACTIVE_KEY) != "true":
            return None

        log_path = self.store.get(LOG_KEY)
        pid_path = self.store.get(PID_PATH_KEY)
        return TunnelRecord(
            pid=self.store.get(PID_KEY) or None,
            log_path=Path(log_path) if log_path else None,
            pid_path=Path(pid_path) if pid_path else None,
        )
