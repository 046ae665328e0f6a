"""Shared domain models for clusterupgrade."""

import enum
from dataclasses import dataclass
from typing import List, Optional

from clusterupgrade.constants import (
    DEFAULT_BASE_PORT,
    DEFAULT_CLUSTER_SIZE,
    LAST_RELEASE,
    PORTS_PER_NODE,
)


@dataclass(frozen=True)
class ClusterConfig:
    """Cluster-wide launch settings, read by every node of one scenario."""

    version: str = LAST_RELEASE
    cluster_size: int = DEFAULT_CLUSTER_SIZE
    snapshot_count: int = 10000
    base_scheme: str = "http"
    base_port: int = DEFAULT_BASE_PORT
    cluster_token: str = "clusterupgrade"
    client_tls: bool = False
    cert_file: Optional[str] = None
    key_file: Optional[str] = None
    trusted_ca_file: Optional[str] = None

    @property
    def client_scheme(self) -> str:
        return "https" if self.client_tls else "http"

    @property
    def peer_scheme(self) -> str:
        return self.base_scheme

    def client_port(self, index: int) -> int:
        return self.base_port + index * PORTS_PER_NODE

    def peer_port(self, index: int) -> int:
        return self.base_port + index * PORTS_PER_NODE + 1


@dataclass
class NodeProcessConfig:
    """Launch settings owned by a single node and mutated on upgrade."""

    index: int
    name: str
    exec_path: str
    data_dir: str
    client_url: str
    peer_url: str
    initial_cluster: str
    log_file: str
    work_dir: str
    keep_data_dir: bool = False


class ProcessState(enum.Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    FAILED = "failed"


@dataclass(frozen=True)
class KeyValueRecord:
    key: str
    value: str


def build_records(count: int, prefix: str = "foo", value: str = "bar") -> List[KeyValueRecord]:
    return [KeyValueRecord(key=f"{prefix}{i}", value=value) for i in range(count)]


@dataclass(frozen=True)
class ConvergenceTarget:
    """Expected cluster version plus a finite polling budget."""

    version: str
    max_attempts: int
    interval: float

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.interval < 0:
            raise ValueError("interval must not be negative")


@dataclass
class ScenarioResult:
    name: str
    status: str = "running"
    reason: Optional[str] = None
    node_index: Optional[int] = None
    key: Optional[str] = None
    last_version: Optional[str] = None
    duration_seconds: Optional[float] = None
