"""Binary precondition checks and version detection."""

import os
import re
from typing import Callable

from packaging import version

from clusterupgrade.errors import HarnessError, SetupError, SkippedPrecondition
from clusterupgrade.errors_catalog import actionable_error


class ValidationService:
    """Validates binaries on disk and derives the expected cluster version."""

    VERSION_PATTERN = re.compile(r"Version:\s*v?(\S+)")

    def ensure_release_binary(self, path: str):
        if not path or not os.path.exists(path):
            raise SkippedPrecondition(actionable_error("release_binary_missing", path=path))

    def ensure_binary(self, path: str, label: str, option: str):
        if not path or not os.path.exists(path):
            raise SetupError(actionable_error("binary_missing", label=label, path=path, option=option))
        if not os.access(path, os.X_OK):
            raise SetupError(actionable_error("binary_not_executable", label=label, path=path))

    def ensure_tls_material(self, cert_file: str, key_file: str, trusted_ca_file: str):
        for label, option, path in (
            ("certificate", "cert-file", cert_file),
            ("private key", "key-file", key_file),
            ("trusted CA bundle", "trusted-ca-file", trusted_ca_file),
        ):
            if not path or not os.path.isfile(path):
                raise SetupError(
                    actionable_error(
                        "tls_file_missing",
                        label=label,
                        path=path,
                        option=option,
                        key=option.replace("-", "_"),
                    )
                )

    def cluster_version(self, ver_str: str) -> str:
        """Maps a server version to the cluster version it advertises (``X.Y.0``)."""
        try:
            parsed = version.Version(ver_str.strip())
        except version.InvalidVersion as exc:
            raise SetupError(f"Invalid version identifier: {ver_str!r}") from exc
        return f"{parsed.major}.{parsed.minor}.0"

    def detect_cluster_version(self, binary: str, run_cmd: Callable) -> str:
        try:
            result = run_cmd([binary, "--version"], capture_output=True)
        except HarnessError as exc:
            raise SetupError(f"Could not read version of {binary}: {exc}") from exc

        match = self.VERSION_PATTERN.search(result.stdout or "")
        if not match:
            raise SetupError(f"Could not find a version in `{binary} --version` output.")
        return self.cluster_version(match.group(1))
