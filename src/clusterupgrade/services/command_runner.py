"""Subprocess execution service for client and probe commands."""

import os
import subprocess
from typing import Dict, List, Optional

from clusterupgrade.errors import HarnessError


class CommandRunner:
    """Runs short-lived external commands with consistent error handling.

    Long-running server processes are owned by ``ProcessLauncher``; this
    runner is for ``etcdctl`` calls and ``--version`` probes that are expected
    to exit on their own. Each command gets exactly one attempt.
    """

    def __init__(self, logger, env: Optional[Dict[str, str]] = None):
        self.logger = logger
        self.env = env or {}

    def run(
        self,
        cmd: List[str],
        check: bool = True,
        capture_output: bool = False,
        timeout: Optional[float] = None,
    ) -> subprocess.CompletedProcess:
        cmd_str = " ".join(cmd)
        self.logger.debug("Executing: %s", cmd_str)

        env = dict(os.environ, **self.env) if self.env else None
        try:
            result = subprocess.run(
                cmd,
                text=True,
                capture_output=capture_output,
                timeout=timeout,
                env=env,
            )
        except FileNotFoundError as exc:
            raise HarnessError(f"Required command not found: {cmd[0]}") from exc
        except subprocess.TimeoutExpired as exc:
            raise HarnessError(f"Command timed out after {timeout}s: {cmd_str}") from exc
        except OSError as exc:
            raise HarnessError(f"Failed to execute command: {cmd_str}. {exc}") from exc

        if capture_output and result.stdout:
            self.logger.debug("Command output: %s", result.stdout.strip())

        if result.returncode == 0:
            return result

        stderr = (result.stderr or "").strip() if capture_output else ""
        message = f"Command failed ({result.returncode}): {cmd_str}"
        if stderr:
            message = f"{message}\n{stderr}"

        if check:
            raise HarnessError(message)

        self.logger.warning(message)
        return result
