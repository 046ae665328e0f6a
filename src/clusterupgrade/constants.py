"""Default values shared across clusterupgrade."""

LAST_RELEASE = "last-release"

DEFAULT_CLUSTER_SIZE = 3
DEFAULT_BASE_PORT = 20000
PORTS_PER_NODE = 5

DEFAULT_DIAL_TIMEOUT = 7.0
DEFAULT_STOP_TIMEOUT = 10.0
DEFAULT_READY_TIMEOUT = 30.0
READY_PROBE_INTERVAL = 0.5
HTTP_TIMEOUT = 2.0

DEFAULT_CONVERGENCE_ATTEMPTS = 7
DEFAULT_CONVERGENCE_INTERVAL = 1.0

VERSION_PATH = "/version"
HEALTH_PATH = "/health"
CLUSTER_VERSION_FIELD = "etcdcluster"

SCENARIOS = ("rolling", "restart")
