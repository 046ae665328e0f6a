"""Actionable error catalog for clusterupgrade."""

from typing import Dict

_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "release_binary_missing": {
        "what": "Last-release binary does not exist: {path}",
        "next": "Download the previous release or set `CLUSTERUPGRADE_RELEASE_BINARY`.",
    },
    "binary_missing": {
        "what": "{label} does not exist: {path}",
        "next": "Build the binary or point `--{option}` at an existing executable.",
    },
    "binary_not_executable": {
        "what": "{label} is not executable: {path}",
        "next": "Fix the file permissions (for example `chmod +x {path}`).",
    },
    "tls_file_missing": {
        "what": "Client TLS is enabled but the {label} is missing: {path}",
        "next": "Provide `--{option}` (or `{key}` in the config file) pointing at an existing PEM file.",
    },
    "cluster_start_failed": {
        "what": "Could not start the {version} cluster: {error}",
        "next": "Inspect the node logs under `{log_dir}` and free the ports starting at {base_port}.",
    },
    "stop_timeout": {
        "what": "Node {node} did not stop within {timeout}s.",
        "next": "Check the node log for hung shutdown hooks; the process is killed during teardown.",
    },
    "restart_failed": {
        "what": "Node {node} failed to restart on {exec_path}: {error}",
        "next": "Inspect `{log_file}` for startup errors reported by the new binary.",
    },
    "write_failed": {
        "what": "Write of key {key!r} was not acknowledged: {error}",
        "next": "Make sure a quorum of members is healthy before seeding.",
    },
    "value_mismatch": {
        "what": "Key {key!r} read back {actual!r}, expected {expected!r}{after}.",
        "next": "The upgrade lost or corrupted committed data; keep the node data directories for analysis.",
    },
    "convergence_timeout": {
        "what": "Cluster version did not reach {target} after {attempts} attempts (last seen: {last}).",
        "next": "Confirm every member runs the new binary, or raise `--convergence-attempts`.",
    },
}


def actionable_error(code: str, **kwargs) -> str:
    if code not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {code}")

    template = _ERROR_MESSAGES[code]
    what = template["what"].format(**kwargs)
    next_step = template["next"].format(**kwargs)
    return f"{what} Suggested action: {next_step}"
