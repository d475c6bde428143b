"""Pytest fixtures for bore-tunnel tests."""

from collections.abc import Callable
from pathlib import Path

import pytest

from bore_tunnel.binary import get_bore_binary_path
from bore_tunnel.config import TunnelInputs
from bore_tunnel.errors import TerminationFailedError
from bore_tunnel.process import ProcessBackend
from bore_tunnel.readiness import ReadinessMonitor
from bore_tunnel.state import MemoryStateStore, TunnelStateBridge

INPUT_VARS = ("INPUT_PORT", "INPUT_SERVER", "INPUT_SECRET", "INPUT_TIMEOUT", "INPUT_VERSION")


class FakeBackend(ProcessBackend):
    """Process backend that records calls instead of spawning anything."""

    name = "fake"

    def __init__(
        self,
        log_content: str | None = "",
        pid: str = "4242",
        spawn_error: Exception | None = None,
        terminate_error: TerminationFailedError | None = None,
        alive: bool = True,
    ) -> None:
        self.log_content = log_content
        self.pid = pid
        self.spawn_error = spawn_error
        self.terminate_error = terminate_error
        self.alive = alive
        self.spawned: list[tuple[Path, list[str], Path]] = []
        self.terminated: list[str] = []

    async def spawn(self, binary: Path, args: list[str], log_path: Path) -> str:
        if self.spawn_error is not None:
            raise self.spawn_error
        self.spawned.append((binary, list(args), log_path))
        if self.log_content is not None:
            log_path.write_text(self.log_content)
        return self.pid

    def terminate(self, pid: str) -> None:
        self.terminated.append(pid)
        if self.terminate_error is not None:
            raise self.terminate_error

    def is_running(self, pid: str) -> bool:
        return self.alive


class FakeClock:
    """Manually advanced monotonic clock with scheduled side effects."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []
        self._events: list[tuple[float, Callable[[], None]]] = []

    def __call__(self) -> float:
        return self.now

    def at(self, when: float, action: Callable[[], None]) -> None:
        """Run ``action`` once the clock reaches ``when``."""
        self._events.append((when, action))

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        due = [event for event in self._events if event[0] <= self.now]
        self._events = [event for event in self._events if event[0] > self.now]
        for _, action in due:
            action()


@pytest.fixture(autouse=True)
def clean_input_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep INPUT_* variables from the surrounding environment out of tests."""
    for name in INPUT_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def memory_store() -> MemoryStateStore:
    return MemoryStateStore()


@pytest.fixture
def bridge(memory_store: MemoryStateStore) -> TunnelStateBridge:
    return TunnelStateBridge(memory_store)


@pytest.fixture
def runner_temp(tmp_path: Path) -> Path:
    path = tmp_path / "runner_temp"
    path.mkdir()
    return path


@pytest.fixture
def bore_binary(runner_temp: Path) -> Path:
    """Dummy bore executable at the Windows-layout path under RUNNER_TEMP."""
    path = get_bore_binary_path(runner_temp, "Windows")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("dummy")
    return path


@pytest.fixture
def monitor_factory(clock: FakeClock) -> Callable[[Path, float], ReadinessMonitor]:
    """Readiness monitors driven by the fake clock."""

    def factory(log_path: Path, timeout_seconds: float) -> ReadinessMonitor:
        return ReadinessMonitor(log_path, timeout_seconds, clock=clock, sleep=clock.sleep)

    return factory


@pytest.fixture
def tunnel_inputs() -> TunnelInputs:
    return TunnelInputs(port=3000, timeout=5)


@pytest.fixture
def cli_runner():
    """Click CLI test runner."""
    from click.testing import CliRunner

    return CliRunner()
