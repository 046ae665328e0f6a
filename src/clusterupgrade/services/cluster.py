"""Cluster handle: a set of node processes sharing one cluster identity."""

import os
from typing import List, Optional

from clusterupgrade.constants import DEFAULT_STOP_TIMEOUT
from clusterupgrade.errors import ProcessLaunchError, SetupError
from clusterupgrade.errors_catalog import actionable_error
from clusterupgrade.models import ClusterConfig, NodeProcessConfig
from clusterupgrade.services.process import ProcessHandle


def build_node_configs(
    cluster_config: ClusterConfig,
    exec_path: str,
    work_dir: str,
) -> List[NodeProcessConfig]:
    names = [f"node-{i}" for i in range(cluster_config.cluster_size)]
    peer_urls = [
        f"{cluster_config.peer_scheme}://localhost:{cluster_config.peer_port(i)}"
        for i in range(cluster_config.cluster_size)
    ]
    initial_cluster = ",".join(f"{name}={url}" for name, url in zip(names, peer_urls))

    return [
        NodeProcessConfig(
            index=i,
            name=names[i],
            exec_path=exec_path,
            data_dir=os.path.join(work_dir, names[i], "data"),
            client_url=f"{cluster_config.client_scheme}://localhost:{cluster_config.client_port(i)}",
            peer_url=peer_urls[i],
            initial_cluster=initial_cluster,
            log_file=os.path.join(work_dir, "logs", f"{names[i]}.log"),
            work_dir=work_dir,
        )
        for i in range(cluster_config.cluster_size)
    ]


class ClusterHandle:
    """Owns every node's ProcessHandle and their coordinated teardown.

    Use it as a context manager: processes are released on every exit path.
    """

    def __init__(
        self,
        cluster_config: ClusterConfig,
        nodes: List[NodeProcessConfig],
        launcher,
        logger,
        stop_timeout: float = DEFAULT_STOP_TIMEOUT,
        log_dir: Optional[str] = None,
    ):
        self.config = cluster_config
        self.nodes = nodes
        self.launcher = launcher
        self.logger = logger
        self.stop_timeout = stop_timeout
        self.log_dir = log_dir
        self.procs: List[Optional[ProcessHandle]] = [None] * len(nodes)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    @property
    def client_urls(self) -> List[str]:
        return [node.client_url for node in self.nodes]

    def start(self):
        """Spawns every member first, then waits for each one to serve.

        A lone member never reports healthy without quorum, so readiness is
        only checked once all processes exist.
        """
        self.logger.info("Starting %s-node %s cluster", len(self.nodes), self.config.version)
        try:
            for node in self.nodes:
                self.procs[node.index] = self.launcher.spawn(self.config, node)
            for handle in self.procs:
                self.launcher.wait_ready(self.config, handle)
        except ProcessLaunchError as exc:
            raise SetupError(
                actionable_error(
                    "cluster_start_failed",
                    version=self.config.version,
                    error=str(exc),
                    log_dir=self.log_dir or "the work directory",
                    base_port=self.config.base_port,
                ),
                node_index=exc.node_index,
            ) from exc

    def proc(self, index: int) -> ProcessHandle:
        handle = self.procs[index]
        if handle is None:
            raise IndexError(f"node {index} has no process handle")
        return handle

    def replace(self, index: int, handle: ProcessHandle):
        self.procs[index] = handle

    def close(self):
        for handle in self.procs:
            if handle is None:
                continue
            if not self.launcher.stop(handle, self.stop_timeout):
                self.launcher.kill(handle)
        self.logger.debug("Cluster processes released")
