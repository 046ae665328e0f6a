"""Server process control: spawn, readiness probing and termination."""

import os
import subprocess
import time
from typing import List, Optional

import requests

from clusterupgrade.constants import (
    DEFAULT_READY_TIMEOUT,
    HEALTH_PATH,
    HTTP_TIMEOUT,
    READY_PROBE_INTERVAL,
)
from clusterupgrade.errors import ProcessLaunchError
from clusterupgrade.models import ClusterConfig, NodeProcessConfig, ProcessState


class ProcessHandle:
    """One OS-level server process bound to a node's launch config."""

    def __init__(self, config: NodeProcessConfig):
        self.config = config
        self.state = ProcessState.STOPPED
        self.popen = None
        self.log_handle = None

    @property
    def index(self) -> int:
        return self.config.index

    @property
    def pid(self) -> Optional[int]:
        return self.popen.pid if self.popen is not None else None

    def is_alive(self) -> bool:
        return self.popen is not None and self.popen.poll() is None

    def close_log(self):
        if self.log_handle is not None:
            self.log_handle.close()
            self.log_handle = None

    def __repr__(self):
        return f"<ProcessHandle {self.config.name} pid={self.pid} state={self.state.value}>"


class ProcessLauncher:
    """Starts and stops server processes for cluster nodes."""

    def __init__(
        self,
        logger,
        filesystem_service,
        ready_timeout: float = DEFAULT_READY_TIMEOUT,
        probe_interval: float = READY_PROBE_INTERVAL,
        subprocess_module=subprocess,
        requests_module=requests,
        clock=time.monotonic,
        sleep=time.sleep,
    ):
        self.logger = logger
        self.filesystem_service = filesystem_service
        self.ready_timeout = ready_timeout
        self.probe_interval = probe_interval
        self.subprocess = subprocess_module
        self.requests = requests_module
        self.clock = clock
        self.sleep = sleep

    def build_command(self, cluster_config: ClusterConfig, node: NodeProcessConfig) -> List[str]:
        cmd = [
            node.exec_path,
            "--name",
            node.name,
            "--data-dir",
            node.data_dir,
            "--listen-client-urls",
            node.client_url,
            "--advertise-client-urls",
            node.client_url,
            "--listen-peer-urls",
            node.peer_url,
            "--initial-advertise-peer-urls",
            node.peer_url,
            "--initial-cluster",
            node.initial_cluster,
            "--initial-cluster-state",
            "new",
            "--initial-cluster-token",
            cluster_config.cluster_token,
            "--snapshot-count",
            str(cluster_config.snapshot_count),
        ]
        if cluster_config.client_tls:
            cmd += [
                "--cert-file",
                cluster_config.cert_file,
                "--key-file",
                cluster_config.key_file,
                "--trusted-ca-file",
                cluster_config.trusted_ca_file,
            ]
        return cmd

    def spawn(self, cluster_config: ClusterConfig, node: NodeProcessConfig) -> ProcessHandle:
        handle = ProcessHandle(node)

        if not node.keep_data_dir:
            self.filesystem_service.cleanup_dir(node.data_dir)
        self.filesystem_service.ensure_dir(node.work_dir)
        self.filesystem_service.ensure_dir(os.path.dirname(node.log_file))

        cmd = self.build_command(cluster_config, node)
        self.logger.debug("Spawning %s: %s", node.name, " ".join(cmd))

        handle.state = ProcessState.STARTING
        try:
            handle.log_handle = open(node.log_file, "a", encoding="utf-8")
            handle.popen = self.subprocess.Popen(
                cmd,
                stdout=handle.log_handle,
                stderr=self.subprocess.STDOUT,
                cwd=node.work_dir,
            )
        except OSError as exc:
            handle.state = ProcessState.FAILED
            handle.close_log()
            raise ProcessLaunchError(
                f"Could not launch {node.exec_path}: {exc}",
                node_index=node.index,
            ) from exc

        return handle

    def _probe_health(self, cluster_config: ClusterConfig, url: str, timeout: float) -> bool:
        response = self.requests.get(
            url,
            timeout=timeout,
            verify=cluster_config.trusted_ca_file or True,
        )
        if response.status_code != 200:
            return False
        payload = response.json()
        return isinstance(payload, dict) and str(payload.get("health")).lower() == "true"

    def wait_ready(self, cluster_config: ClusterConfig, handle: ProcessHandle):
        """Polls ``/health`` until the node serves, within ``ready_timeout`` wall-clock seconds.

        Every request timeout is capped by the time left, so a member that
        accepts connections but never answers cannot stretch the wait.
        """
        node = handle.config
        url = node.client_url.rstrip("/") + HEALTH_PATH
        deadline = self.clock() + self.ready_timeout
        last_error = None

        while True:
            if not handle.is_alive():
                handle.state = ProcessState.FAILED
                returncode = handle.popen.returncode if handle.popen is not None else None
                raise ProcessLaunchError(
                    f"{node.name} exited with code {returncode} before becoming ready",
                    node_index=node.index,
                )

            remaining = deadline - self.clock()
            if remaining <= 0:
                break
            try:
                if self._probe_health(cluster_config, url, min(HTTP_TIMEOUT, remaining)):
                    handle.state = ProcessState.RUNNING
                    self.logger.debug("%s is ready (pid %s)", node.name, handle.pid)
                    return
                last_error = None
            except (self.requests.RequestException, ValueError) as exc:
                last_error = exc

            remaining = deadline - self.clock()
            if remaining <= 0:
                break
            self.sleep(min(self.probe_interval, remaining))

        handle.state = ProcessState.FAILED
        detail = f" (last error: {last_error})" if last_error else ""
        raise ProcessLaunchError(
            f"{node.name} was not ready after {self.ready_timeout}s{detail}",
            node_index=node.index,
        )

    def start(self, cluster_config: ClusterConfig, node: NodeProcessConfig) -> ProcessHandle:
        handle = self.spawn(cluster_config, node)
        self.wait_ready(cluster_config, handle)
        return handle

    def stop(self, handle: ProcessHandle, timeout: float) -> bool:
        """Terminates gracefully; returns False when the process outlives ``timeout``."""
        if not handle.is_alive():
            handle.state = ProcessState.STOPPED
            handle.close_log()
            return True

        self.logger.debug("Sending SIGTERM to %s (pid %s)", handle.config.name, handle.pid)
        handle.popen.terminate()
        try:
            handle.popen.wait(timeout=timeout)
        except self.subprocess.TimeoutExpired:
            return False

        handle.state = ProcessState.STOPPED
        handle.close_log()
        return True

    def kill(self, handle: ProcessHandle):
        if handle.is_alive():
            self.logger.warning("Killing %s (pid %s)", handle.config.name, handle.pid)
            handle.popen.kill()
            handle.popen.wait()
        handle.state = ProcessState.STOPPED
        handle.close_log()
