"""Key-value client surface backed by the ``etcdctl`` binary."""

from typing import List, Optional

from clusterupgrade.constants import DEFAULT_DIAL_TIMEOUT


class KeyValueClient:
    """Issues ``put``/``get`` requests through ``etcdctl`` against all endpoints.

    ``run_cmd`` follows ``CommandRunner.run`` and raises ``HarnessError`` when a
    command fails or times out.
    """

    def __init__(
        self,
        etcdctl_path: str,
        endpoints: List[str],
        run_cmd,
        dial_timeout: float = DEFAULT_DIAL_TIMEOUT,
        quorum: bool = True,
        trusted_ca_file: Optional[str] = None,
    ):
        self.etcdctl_path = etcdctl_path
        self.endpoints = endpoints
        self.run_cmd = run_cmd
        self.dial_timeout = dial_timeout
        self.quorum = quorum
        self.trusted_ca_file = trusted_ca_file

    def _base_args(self) -> List[str]:
        args = [
            self.etcdctl_path,
            f"--endpoints={','.join(self.endpoints)}",
            f"--dial-timeout={self.dial_timeout:g}s",
        ]
        if self.trusted_ca_file:
            args.append(f"--cacert={self.trusted_ca_file}")
        return args

    def _timeout(self) -> float:
        # etcdctl's own --command-timeout defaults to 5s on top of dialing.
        return self.dial_timeout + 5.0

    def put(self, key: str, value: str):
        self.run_cmd(
            self._base_args() + ["put", key, value],
            check=True,
            capture_output=True,
            timeout=self._timeout(),
        )

    def get(self, key: str) -> Optional[str]:
        consistency = "l" if self.quorum else "s"
        result = self.run_cmd(
            self._base_args() + ["get", f"--consistency={consistency}", key],
            check=True,
            capture_output=True,
            timeout=self._timeout(),
        )
        lines = (result.stdout or "").splitlines()
        # Simple output format is alternating key/value lines.
        for found_key, value in zip(lines[0::2], lines[1::2]):
            if found_key == key:
                return value
        return None
