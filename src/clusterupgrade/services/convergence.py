"""Version convergence poller for the cluster status endpoint."""

import time
from typing import Optional

import requests

from clusterupgrade.constants import CLUSTER_VERSION_FIELD, HTTP_TIMEOUT, VERSION_PATH
from clusterupgrade.errors import ConvergenceTimeoutError
from clusterupgrade.errors_catalog import actionable_error
from clusterupgrade.models import ConvergenceTarget
from clusterupgrade.services.retry import retry


class VersionConvergencePoller:
    """Polls ``GET /version`` until the advertised cluster version matches.

    Every member answers for the whole cluster, so a single endpoint is
    queried rather than each node.
    """

    def __init__(
        self,
        endpoint: str,
        logger,
        requests_module=requests,
        request_timeout: float = HTTP_TIMEOUT,
        verify=True,
        sleep=time.sleep,
    ):
        self.endpoint = endpoint.rstrip("/")
        self.logger = logger
        self.requests = requests_module
        self.request_timeout = request_timeout
        self.verify = verify
        self.sleep = sleep
        self.last_version: Optional[str] = None

    def fetch_cluster_version(self) -> Optional[str]:
        response = self.requests.get(
            self.endpoint + VERSION_PATH,
            timeout=self.request_timeout,
            verify=self.verify,
        )
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError(f"unexpected {VERSION_PATH} body: {payload!r}")
        value = payload.get(CLUSTER_VERSION_FIELD)
        self.last_version = value
        return value

    def await_version(self, target: ConvergenceTarget) -> str:
        self.logger.info(
            "Waiting for cluster version %s (%s attempts, %.1fs apart)",
            target.version,
            target.max_attempts,
            target.interval,
        )

        def matches() -> bool:
            return self.fetch_cluster_version() == target.version

        def report(attempt, _value, error):
            seen = error if error is not None else self.last_version
            self.logger.info("#%s: %s is not ready yet (%s)", attempt - 1, target.version, seen)

        outcome = retry(
            target.max_attempts,
            target.interval,
            matches,
            retry_on=(self.requests.RequestException, ValueError),
            on_attempt_failed=report,
            sleep=self.sleep,
        )
        if not outcome.succeeded:
            raise ConvergenceTimeoutError(
                actionable_error(
                    "convergence_timeout",
                    target=target.version,
                    attempts=target.max_attempts,
                    last=self.last_version or "<none>",
                ),
                target=target.version,
                last_version=self.last_version,
            )

        self.logger.info("Cluster version converged to %s", target.version)
        return target.version
