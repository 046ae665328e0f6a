"""YAML configuration loader for harness defaults."""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from clusterupgrade.constants import SCENARIOS
from clusterupgrade.errors import HarnessError


class ConfigLoader:
    """Loads and type-checks the harness configuration file."""

    PATH_KEYS = {
        "current_binary",
        "release_binary",
        "etcdctl_binary",
        "work_dir",
        "report_file",
        "log_file",
        "cert_file",
        "key_file",
        "trusted_ca_file",
    }
    INTEGER_KEYS = {"cluster_size", "base_port", "convergence_attempts"}
    NUMBER_KEYS = {"dial_timeout", "convergence_interval", "stop_timeout", "ready_timeout"}
    BOOLEAN_KEYS = {"client_tls", "verbose"}
    SUPPORTED_KEYS = PATH_KEYS | INTEGER_KEYS | NUMBER_KEYS | BOOLEAN_KEYS | {"scenario", "target_version"}

    def load(self, config_path: Optional[str]) -> Dict[str, Any]:
        if not config_path:
            return {}

        path = Path(config_path)
        if not path.exists():
            raise HarnessError(f"Config file not found: {config_path}")

        try:
            parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise HarnessError(f"Invalid config file '{config_path}': {exc}") from exc

        if parsed is None:
            return {}
        if not isinstance(parsed, dict):
            raise HarnessError("Config file must contain a YAML mapping at the root.")

        unknown = sorted(set(parsed.keys()) - self.SUPPORTED_KEYS)
        if unknown:
            raise HarnessError(f"Unknown configuration keys: {', '.join(unknown)}")

        self._check_types(parsed)
        return parsed

    def _check_types(self, values: Dict[str, Any]):
        for key, value in values.items():
            if key in self.INTEGER_KEYS and (isinstance(value, bool) or not isinstance(value, int)):
                raise HarnessError(f"Configuration key '{key}' must be an integer.")
            if key in self.NUMBER_KEYS and (isinstance(value, bool) or not isinstance(value, (int, float))):
                raise HarnessError(f"Configuration key '{key}' must be a number.")
            if key in self.PATH_KEYS and not isinstance(value, str):
                raise HarnessError(f"Configuration key '{key}' must be a path string.")
            if key in self.BOOLEAN_KEYS and not isinstance(value, bool):
                raise HarnessError(f"Configuration key '{key}' must be true or false.")

        scenario = values.get("scenario")
        if scenario is not None and scenario not in SCENARIOS + ("all",):
            raise HarnessError(
                f"Unknown scenario '{scenario}'. Choose one of: {', '.join(SCENARIOS + ('all',))}"
            )
        if "target_version" in values:
            values["target_version"] = str(values["target_version"])
