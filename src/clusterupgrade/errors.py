"""Domain errors for clusterupgrade."""

from typing import Optional


class SkippedPrecondition(Exception):
    """Raised when a scenario cannot run on this host and must be skipped."""


class HarnessError(RuntimeError):
    """Raised when an upgrade scenario cannot continue safely."""

    def __init__(self, message: str, node_index: Optional[int] = None):
        super().__init__(message)
        self.node_index = node_index


class SetupError(HarnessError):
    """The cluster (or its prerequisites) failed to start."""


class ProcessLaunchError(HarnessError):
    """A server process exited early or never became ready."""


class ProcessStopError(HarnessError):
    """A server process did not terminate in time."""


class ProcessRestartError(HarnessError):
    """A server process could not be restarted."""


class WriteError(HarnessError):
    """A seed write was rejected or timed out."""

    def __init__(self, message: str, key: str, node_index: Optional[int] = None):
        super().__init__(message, node_index=node_index)
        self.key = key


class VerificationMismatchError(HarnessError):
    """A read returned something other than the seeded value."""

    def __init__(
        self,
        message: str,
        key: str,
        expected: str,
        actual: Optional[str],
        node_index: Optional[int] = None,
    ):
        super().__init__(message, node_index=node_index)
        self.key = key
        self.expected = expected
        self.actual = actual


class ConvergenceTimeoutError(HarnessError):
    """The cluster never advertised the expected cluster version."""

    def __init__(self, message: str, target: str, last_version: Optional[str]):
        super().__init__(message)
        self.target = target
        self.last_version = last_version
