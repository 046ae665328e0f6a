"""Process lifecycle controller: stop, reconfigure and restart single nodes."""

from clusterupgrade.constants import DEFAULT_STOP_TIMEOUT
from clusterupgrade.errors import (
    HarnessError,
    ProcessLaunchError,
    ProcessRestartError,
    ProcessStopError,
)
from clusterupgrade.errors_catalog import actionable_error
from clusterupgrade.services.cluster import ClusterHandle


class LifecycleController:
    """Mutates a cluster's processes on behalf of a scenario orchestrator."""

    def __init__(self, cluster: ClusterHandle, launcher, logger, stop_timeout: float = DEFAULT_STOP_TIMEOUT):
        self.cluster = cluster
        self.launcher = launcher
        self.logger = logger
        self.stop_timeout = stop_timeout

    def stop(self, index: int):
        handle = self.cluster.proc(index)
        self.logger.info("Stopping node: %s", index)
        if not self.launcher.stop(handle, self.stop_timeout):
            raise ProcessStopError(
                actionable_error("stop_timeout", node=index, timeout=self.stop_timeout),
                node_index=index,
            )
        self.logger.info("Stopped node: %s", index)

    def upgrade_config(self, index: int, new_exec_path: str, keep_data: bool = True):
        if not keep_data:
            raise HarnessError(
                f"Node {index}: upgrade restarts must keep the data directory.",
                node_index=index,
            )
        node = self.cluster.nodes[index]
        node.exec_path = new_exec_path
        node.keep_data_dir = True
        self.logger.debug("Node %s now launches %s (keep data dir)", index, new_exec_path)

    def restart(self, index: int):
        node = self.cluster.nodes[index]
        old = self.cluster.procs[index]
        if old is not None and old.is_alive():
            self.stop(index)

        self.logger.info("Restarting node %s with %s", index, node.exec_path)
        try:
            handle = self.launcher.spawn(self.cluster.config, node)
            self.cluster.replace(index, handle)
            self.launcher.wait_ready(self.cluster.config, handle)
        except ProcessLaunchError as exc:
            raise ProcessRestartError(
                actionable_error(
                    "restart_failed",
                    node=index,
                    exec_path=node.exec_path,
                    error=str(exc),
                    log_file=node.log_file,
                ),
                node_index=index,
            ) from exc
        self.logger.info("Node %s is serving again", index)
