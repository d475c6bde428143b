"""Two-phase tunnel supervisor.

The action's entry point is invoked twice by the runner: once as the main
step and once as the post step at the end of the job. The two runs share
nothing but the filesystem and the state store, so the phase is chosen from
the persisted ``isPost`` flag:

* setup: launch bore detached, wait for it to come up, persist where to find
  it, and publish its public address.
* cleanup: look the process up again and kill it.
"""

from collections.abc import Callable
from enum import Enum
from pathlib import Path

import structlog

from .actions import ActionsOutputs
from .binary import locate_bore_binary
from .config import TunnelInputs
from .errors import (
    BoreTunnelError,
    SetupError,
    TunnelFailedError,
    TunnelTimeoutError,
)
from .launcher import start_detached_bore
from .process import ProcessBackend, terminate_quietly
from .readiness import (
    FailureReason,
    ReadinessMonitor,
    TunnelAddress,
    parse_tunnel_address,
    read_log,
    reconstruct_status,
)
from .session import TunnelSession, TunnelStatus
from .state import TunnelRecord, TunnelStateBridge

logger = structlog.get_logger()

Installer = Callable[[str], Path]
MonitorFactory = Callable[[Path, float], ReadinessMonitor]


class SupervisorState(str, Enum):
    """Lifecycle of one supervisor invocation."""

    UNINITIALIZED = "uninitialized"
    SETTING_UP = "setting_up"
    READY = "ready"
    SETUP_FAILED = "setup_failed"
    CLEANING_UP = "cleaning_up"
    DONE = "done"


class TunnelSupervisor:
    """Runs the setup and cleanup phases of a bore tunnel."""

    def __init__(
        self,
        bridge: TunnelStateBridge,
        backend: ProcessBackend,
        outputs: ActionsOutputs,
        runner_temp: Path,
        installer: Installer | None = None,
        monitor_factory: MonitorFactory = ReadinessMonitor,
        system: str | None = None,
    ) -> None:
        """Initialize the supervisor.

        Args:
            bridge: Cross-invocation state.
            backend: Platform backend used to spawn and kill bore.
            outputs: Receives the ``host`` and ``port`` outputs.
            runner_temp: Directory for log and PID files.
            installer: Optional callable installing bore for a version
                string before setup locates the binary.
            monitor_factory: Builds the readiness monitor for a log path
                and timeout.
            system: Platform name override for locating the binary.
        """
        self.bridge = bridge
        self.backend = backend
        self.outputs = outputs
        self.runner_temp = runner_temp
        self.state = SupervisorState.UNINITIALIZED
        self._installer = installer
        self._monitor_factory = monitor_factory
        self._system = system

    async def run(self, load_inputs: Callable[[], TunnelInputs]) -> int:
        """Run whichever phase is due.

        Args:
            load_inputs: Loads the action inputs; only called for setup.

        Returns:
            Process exit code. Cleanup always returns 0.
        """
        if self.bridge.is_post():
            self.cleanup()
            return 0

        # Flag first, so the post step cleans up even if setup dies half way
        self.bridge.mark_post()

        try:
            await self.setup(load_inputs())
        except SetupError as e:
            if e.log_content:
                logger.info("Bore output", output=e.log_content)
            logger.error("Action failed", error=str(e))
            return 1
        except BoreTunnelError as e:
            self.state = SupervisorState.SETUP_FAILED
            logger.error("Action failed", error=str(e))
            return 1
        return 0

    async def setup(self, inputs: TunnelInputs) -> TunnelAddress:
        """Start the tunnel and publish its address.

        Raises:
            SetupError: If bore could not be started, never came up, or its
                address could not be recorded. Any process that was launched
                has been killed.
            InstallError: If the installer failed.
        """
        self.state = SupervisorState.SETTING_UP
        logger.info("Starting bore tunnel setup", port=inputs.port, server=inputs.server)

        session = TunnelSession.from_inputs(inputs, self.runner_temp)
        try:
            if self._installer is not None:
                logger.info("Installing bore binary", version=inputs.version)
                self._installer(inputs.version)
            binary = locate_bore_binary(self.runner_temp, self._system)
            pid = await start_detached_bore(self.backend, binary, session)
        except BoreTunnelError:
            self.state = SupervisorState.SETUP_FAILED
            raise

        # bore is running from here on; any failure must kill it
        try:
            address = await self._wait_for_address(session)
            self.outputs.set_output("host", address.host)
            self.outputs.set_output("port", address.port)
            self.bridge.save_session(session)
        except Exception as e:
            self.state = SupervisorState.SETUP_FAILED
            terminate_quietly(self.backend, pid)
            if isinstance(e, SetupError):
                raise
            raise SetupError(f"Failed to record tunnel: {e}") from e

        self.state = SupervisorState.READY

        logger.info(
            "Tunnel established and detached",
            host=address.host,
            port=address.port,
            pid=pid,
        )
        return address

    async def _wait_for_address(self, session: TunnelSession) -> TunnelAddress:
        monitor = self._monitor_factory(session.log_path, session.timeout_seconds)
        result = await monitor.wait()

        if not result.ready:
            error_cls = (
                TunnelTimeoutError if result.reason is FailureReason.TIMEOUT else TunnelFailedError
            )
            reason = (result.reason or FailureReason.TUNNEL_FAILED).value
            raise error_cls(
                f"{reason}: Failed to establish tunnel",
                log_content=result.log_content,
            )

        return parse_tunnel_address(result.log_content)

    def cleanup(self) -> None:
        """Kill the tunnel recorded by setup, if any.

        Never raises: the job outcome is already decided when this runs.
        """
        self.state = SupervisorState.CLEANING_UP
        try:
            record = self.bridge.load_session()
            if record is None:
                logger.info("No active tunnel to clean up")
                return

            if not record.pid:
                logger.warning("No PID found for cleanup")
                return

            logger.info("Terminating bore process", pid=record.pid)
            terminate_quietly(self.backend, record.pid)
            self._remove_pid_file(record.pid_path)
            logger.info("Cleanup completed")
        except Exception as e:
            logger.warning("Cleanup failed", error=str(e))
        finally:
            self.state = SupervisorState.DONE

    def _remove_pid_file(self, pid_path: Path | None) -> None:
        if pid_path is None:
            return
        try:
            pid_path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Failed to remove PID file", path=str(pid_path), error=str(e))

    def inspect(self) -> tuple[TunnelRecord | None, TunnelStatus | None]:
        """Return the persisted record and the tunnel's current status."""
        record = self.bridge.load_session()
        if record is None or not record.pid:
            return record, None

        log_content = read_log(record.log_path) if record.log_path else None
        alive = self.backend.is_running(record.pid)
        return record, reconstruct_status(log_content, alive)
