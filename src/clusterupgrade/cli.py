import logging
import os

import click
from rich.logging import RichHandler

from .constants import (
    DEFAULT_BASE_PORT,
    DEFAULT_CLUSTER_SIZE,
    DEFAULT_CONVERGENCE_ATTEMPTS,
    DEFAULT_CONVERGENCE_INTERVAL,
    DEFAULT_DIAL_TIMEOUT,
    DEFAULT_READY_TIMEOUT,
    DEFAULT_STOP_TIMEOUT,
)
from .core import HarnessError, UpgradeHarness
from .services.config_loader import ConfigLoader

DEFAULT_CONFIG_FILE = ".clusterupgrade.yml"


def _resolve_option(cli_value, config, key, default=None):
    if cli_value is not None:
        return cli_value
    if key in config:
        return config[key]
    return default


logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True, show_level=False, show_path=False)],
)


@click.command()
@click.option(
    "--scenario",
    required=False,
    type=click.Choice(UpgradeHarness.SCENARIOS),
    help="Upgrade scenario to run (default: all).",
)
@click.option(
    "--config",
    required=False,
    type=click.Path(),
    help=f"Path to a YAML configuration file. Defaults to {DEFAULT_CONFIG_FILE} if present.",
)
@click.option(
    "--current-binary",
    envvar="CLUSTERUPGRADE_CURRENT_BINARY",
    required=False,
    help="Server binary under test (the upgrade target).",
)
@click.option(
    "--release-binary",
    envvar="CLUSTERUPGRADE_RELEASE_BINARY",
    required=False,
    help="Last released server binary. Scenarios are skipped when it is missing.",
)
@click.option(
    "--etcdctl-binary",
    envvar="CLUSTERUPGRADE_ETCDCTL_BINARY",
    required=False,
    help="Client binary used for reads and writes.",
)
@click.option("--cluster-size", type=int, default=None, help="Number of cluster members (default: 3).")
@click.option("--base-port", type=int, default=None, help="First TCP port assigned to the cluster.")
@click.option("--work-dir", type=click.Path(), help="Directory for node data and logs.")
@click.option(
    "--target-version",
    required=False,
    help="Expected cluster version after the upgrade. Detected from the current binary if omitted.",
)
@click.option("--dial-timeout", type=float, default=None, help="Client dial timeout in seconds (default: 7).")
@click.option(
    "--convergence-attempts",
    type=int,
    default=None,
    help="Number of cluster version polls before giving up (default: 7).",
)
@click.option(
    "--convergence-interval",
    type=float,
    default=None,
    help="Seconds between cluster version polls (default: 1).",
)
@click.option("--stop-timeout", type=float, default=None, help="Seconds to wait for a node to stop.")
@click.option("--ready-timeout", type=float, default=None, help="Seconds to wait for a node to serve.")
@click.option("--report-file", type=click.Path(), help="Path for the JSON report (default: output/upgrade-report.json).")
@click.option("--client-tls", is_flag=True, default=None, help="Serve client traffic over HTTPS.")
@click.option("--cert-file", type=click.Path(), help="Server certificate used when --client-tls is set.")
@click.option("--key-file", type=click.Path(), help="Server private key used when --client-tls is set.")
@click.option("--trusted-ca-file", type=click.Path(), help="CA bundle trusted by the harness when --client-tls is set.")
@click.option("--verbose", is_flag=True, default=None, help="Enable verbose logging")
@click.option("--log-file", type=click.Path(), help="Path to log file")
def main(
    scenario,
    config,
    current_binary,
    release_binary,
    etcdctl_binary,
    cluster_size,
    base_port,
    work_dir,
    target_version,
    dial_timeout,
    convergence_attempts,
    convergence_interval,
    stop_timeout,
    ready_timeout,
    report_file,
    client_tls,
    cert_file,
    key_file,
    trusted_ca_file,
    verbose,
    log_file,
):
    """Verify that a replicated key-value cluster survives a release upgrade."""
    logger = logging.getLogger("clusterupgrade")

    try:
        resolved_config = config
        if resolved_config is None:
            default_config_path = os.path.join(os.getcwd(), DEFAULT_CONFIG_FILE)
            if os.path.exists(default_config_path):
                resolved_config = default_config_path

        config_values = ConfigLoader().load(resolved_config)
    except HarnessError as exc:
        raise click.ClickException(str(exc)) from exc

    scenario = _resolve_option(scenario, config_values, "scenario", default="all")
    current_binary = _resolve_option(current_binary, config_values, "current_binary")
    release_binary = _resolve_option(release_binary, config_values, "release_binary")
    etcdctl_binary = _resolve_option(etcdctl_binary, config_values, "etcdctl_binary")
    cluster_size = int(_resolve_option(cluster_size, config_values, "cluster_size", default=DEFAULT_CLUSTER_SIZE))
    base_port = int(_resolve_option(base_port, config_values, "base_port", default=DEFAULT_BASE_PORT))
    work_dir = _resolve_option(work_dir, config_values, "work_dir")
    target_version = _resolve_option(target_version, config_values, "target_version")
    dial_timeout = float(_resolve_option(dial_timeout, config_values, "dial_timeout", default=DEFAULT_DIAL_TIMEOUT))
    convergence_attempts = int(
        _resolve_option(
            convergence_attempts,
            config_values,
            "convergence_attempts",
            default=DEFAULT_CONVERGENCE_ATTEMPTS,
        )
    )
    convergence_interval = float(
        _resolve_option(
            convergence_interval,
            config_values,
            "convergence_interval",
            default=DEFAULT_CONVERGENCE_INTERVAL,
        )
    )
    stop_timeout = float(_resolve_option(stop_timeout, config_values, "stop_timeout", default=DEFAULT_STOP_TIMEOUT))
    ready_timeout = float(
        _resolve_option(ready_timeout, config_values, "ready_timeout", default=DEFAULT_READY_TIMEOUT)
    )
    report_file = _resolve_option(report_file, config_values, "report_file")
    client_tls = bool(_resolve_option(client_tls, config_values, "client_tls", default=False))
    cert_file = _resolve_option(cert_file, config_values, "cert_file")
    key_file = _resolve_option(key_file, config_values, "key_file")
    trusted_ca_file = _resolve_option(trusted_ca_file, config_values, "trusted_ca_file")
    verbose = bool(_resolve_option(verbose, config_values, "verbose", default=False))
    log_file = _resolve_option(log_file, config_values, "log_file")

    for option, value in (
        ("--current-binary", current_binary),
        ("--release-binary", release_binary),
        ("--etcdctl-binary", etcdctl_binary),
    ):
        if not value:
            raise click.ClickException(f"Missing required option '{option}' (or provide it in config).")
    if cluster_size < 1:
        raise click.ClickException("--cluster-size must be at least 1.")
    if convergence_attempts < 1:
        raise click.ClickException("--convergence-attempts must be at least 1.")

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        logger.addHandler(file_handler)

    harness = UpgradeHarness(
        current_binary=current_binary,
        release_binary=release_binary,
        etcdctl_binary=etcdctl_binary,
        scenario=scenario,
        cluster_size=cluster_size,
        base_port=base_port,
        work_dir=work_dir,
        target_version=target_version,
        dial_timeout=dial_timeout,
        convergence_attempts=convergence_attempts,
        convergence_interval=convergence_interval,
        stop_timeout=stop_timeout,
        ready_timeout=ready_timeout,
        report_file=report_file,
        client_tls=client_tls,
        cert_file=cert_file,
        key_file=key_file,
        trusted_ca_file=trusted_ca_file,
    )

    raise SystemExit(harness.run())


if __name__ == "__main__":
    main()
