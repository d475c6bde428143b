"""Error types raised while setting up or tearing down a bore tunnel."""


class BoreTunnelError(Exception):
    """Base class for all bore-tunnel errors."""

    pass


class InputError(BoreTunnelError):
    """Raised when the action inputs are missing or invalid."""

    pass


class InstallError(BoreTunnelError):
    """Raised when the bore binary could not be downloaded or installed."""

    pass


class SetupError(BoreTunnelError):
    """Fatal error during the setup phase.

    Carries whatever tunnel output was captured so it can be shown to the
    user for debugging.
    """

    def __init__(self, message: str, log_content: str = "") -> None:
        super().__init__(message)
        self.log_content = log_content


class BinaryNotFoundError(SetupError):
    """Raised when the bore binary is missing at its expected path."""

    pass


class LaunchFailedError(SetupError):
    """Raised when the OS could not spawn the detached bore process."""

    pass


class TunnelFailedError(SetupError):
    """Raised when the bore output reports an error before the tunnel came up."""

    pass


class TunnelTimeoutError(SetupError):
    """Raised when bore never reported readiness within the deadline."""

    pass


class ParseFailedError(SetupError):
    """Raised when readiness was reported but no host/port could be parsed."""

    pass


class TerminationFailedError(BoreTunnelError):
    """Raised when a bore process could not be killed.

    Callers downgrade this to a warning; termination is best-effort.
    """

    pass
