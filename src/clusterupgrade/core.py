import logging
import os
import subprocess
import time
import uuid
from typing import Any, Dict, List, Optional

import requests
from rich.console import Console
from rich.table import Table

from .constants import (
    DEFAULT_BASE_PORT,
    DEFAULT_CLUSTER_SIZE,
    DEFAULT_CONVERGENCE_ATTEMPTS,
    DEFAULT_CONVERGENCE_INTERVAL,
    DEFAULT_DIAL_TIMEOUT,
    DEFAULT_READY_TIMEOUT,
    DEFAULT_STOP_TIMEOUT,
    LAST_RELEASE,
    SCENARIOS,
)
from .errors import HarnessError, SkippedPrecondition
from .models import ClusterConfig, ConvergenceTarget, ScenarioResult, build_records
from .services.cluster import ClusterHandle, build_node_configs
from .services.command_runner import CommandRunner
from .services.convergence import VersionConvergencePoller
from .services.filesystem import FileSystemService
from .services.kv_client import KeyValueClient
from .services.lifecycle import LifecycleController
from .services.process import ProcessLauncher
from .services.report import ReportService
from .services.task_group import TaskGroup
from .services.validation import ValidationService
from .services.verifier import ReadWriteVerifier

console = Console()
logger = logging.getLogger("clusterupgrade")


class UpgradeHarness:
    SCENARIOS = list(SCENARIOS) + ["all"]

    ROLLING_RECORD_COUNT = 5
    ROLLING_SNAPSHOT_COUNT = 3
    RESTART_RECORD_COUNT = 50
    RESTART_SNAPSHOT_COUNT = 10
    # Unix peer sockets keep concurrently running clusters off each other's ports.
    PEER_SCHEME = "unix"

    def __init__(
        self,
        current_binary: str,
        release_binary: str,
        etcdctl_binary: str,
        scenario: str = "all",
        cluster_size: int = DEFAULT_CLUSTER_SIZE,
        base_port: int = DEFAULT_BASE_PORT,
        work_dir: Optional[str] = None,
        target_version: Optional[str] = None,
        dial_timeout: float = DEFAULT_DIAL_TIMEOUT,
        convergence_attempts: int = DEFAULT_CONVERGENCE_ATTEMPTS,
        convergence_interval: float = DEFAULT_CONVERGENCE_INTERVAL,
        stop_timeout: float = DEFAULT_STOP_TIMEOUT,
        ready_timeout: float = DEFAULT_READY_TIMEOUT,
        report_file: Optional[str] = None,
        client_tls: bool = False,
        cert_file: Optional[str] = None,
        key_file: Optional[str] = None,
        trusted_ca_file: Optional[str] = None,
    ):
        self.current_binary = current_binary
        self.release_binary = release_binary
        self.etcdctl_binary = etcdctl_binary
        self.scenario = scenario
        self.cluster_size = cluster_size
        self.base_port = base_port
        self.target_version = target_version
        self.dial_timeout = dial_timeout
        self.convergence_attempts = convergence_attempts
        self.convergence_interval = convergence_interval
        self.stop_timeout = stop_timeout
        self.client_tls = client_tls
        self.cert_file = cert_file
        self.key_file = key_file
        self.trusted_ca_file = trusted_ca_file

        self.run_id = uuid.uuid4().hex[:10]
        self.cwd = os.getcwd()
        self.output_dir = os.path.join(self.cwd, "output")
        self.work_dir = work_dir or os.path.join(self.output_dir, f"cluster-{self.run_id}")
        self.report_file = report_file or os.path.join(self.output_dir, "upgrade-report.json")

        self.current_scenario: Optional[str] = None
        self.current_step_name: Optional[str] = None
        self.results: List[ScenarioResult] = []

        self.filesystem_service = FileSystemService(logger=logger, console=console)
        self.validation_service = ValidationService()
        self.report_service = ReportService(report_file=self.report_file, logger=logger)
        self.command_runner = CommandRunner(logger=logger, env={"ETCDCTL_API": "3"})
        self.launcher = ProcessLauncher(
            logger=logger,
            filesystem_service=self.filesystem_service,
            ready_timeout=ready_timeout,
            subprocess_module=subprocess,
            requests_module=requests,
        )

    def _run_step(self, name: str, callback, *args, **kwargs):
        scenario = self.current_scenario
        self.report_service.step_started(scenario, name)
        self.current_step_name = name

        try:
            result = callback(*args, **kwargs)
        except SkippedPrecondition as exc:
            self.report_service.step_finished(scenario, name, "skipped", error=str(exc))
            raise
        except Exception as exc:
            self.report_service.step_finished(scenario, name, "failed", error=str(exc))
            raise

        self.report_service.step_finished(scenario, name, "success")
        self.current_step_name = None
        return result

    def _run_cmd(
        self,
        cmd: List[str],
        check: bool = True,
        capture_output: bool = False,
        timeout: Optional[float] = None,
    ) -> subprocess.CompletedProcess:
        return self.command_runner.run(cmd, check=check, capture_output=capture_output, timeout=timeout)

    def _build_metadata(self) -> Dict[str, Any]:
        return {
            "scenario": self.scenario,
            "current_binary": self.current_binary,
            "release_binary": self.release_binary,
            "etcdctl_binary": self.etcdctl_binary,
            "cluster_size": self.cluster_size,
            "target_version": self.target_version,
            "convergence_attempts": self.convergence_attempts,
            "convergence_interval": self.convergence_interval,
            "work_dir": self.work_dir,
            "client_tls": self.client_tls,
        }

    def validate_binaries(self):
        self.validation_service.ensure_release_binary(self.release_binary)
        self.validation_service.ensure_binary(self.current_binary, "Current binary", "current-binary")
        self.validation_service.ensure_binary(self.etcdctl_binary, "etcdctl binary", "etcdctl-binary")
        if self.client_tls:
            self.validation_service.ensure_tls_material(self.cert_file, self.key_file, self.trusted_ca_file)

    def resolve_target_version(self) -> str:
        if self.target_version:
            return self.validation_service.cluster_version(self.target_version)
        return self.validation_service.detect_cluster_version(self.current_binary, self._run_cmd)

    def cluster_config(self, snapshot_count: int) -> ClusterConfig:
        return ClusterConfig(
            version=LAST_RELEASE,
            cluster_size=self.cluster_size,
            snapshot_count=snapshot_count,
            base_scheme=self.PEER_SCHEME,
            base_port=self.base_port,
            cluster_token=f"clusterupgrade-{self.run_id}",
            client_tls=self.client_tls,
            cert_file=self.cert_file if self.client_tls else None,
            key_file=self.key_file if self.client_tls else None,
            trusted_ca_file=self.trusted_ca_file if self.client_tls else None,
        )

    def create_cluster(self, cluster_config: ClusterConfig, scenario: str) -> ClusterHandle:
        exec_path = self.release_binary if cluster_config.version == LAST_RELEASE else self.current_binary
        scenario_dir = os.path.join(self.work_dir, scenario)
        return ClusterHandle(
            cluster_config,
            build_node_configs(cluster_config, exec_path, scenario_dir),
            launcher=self.launcher,
            logger=logger,
            stop_timeout=self.stop_timeout,
            log_dir=os.path.join(scenario_dir, "logs"),
        )

    def build_kv_client(self, cluster: ClusterHandle) -> KeyValueClient:
        return KeyValueClient(
            etcdctl_path=self.etcdctl_binary,
            endpoints=cluster.client_urls,
            run_cmd=self._run_cmd,
            dial_timeout=self.dial_timeout,
            quorum=True,
            trusted_ca_file=cluster.config.trusted_ca_file,
        )

    def build_poller(self, cluster: ClusterHandle) -> VersionConvergencePoller:
        return VersionConvergencePoller(
            endpoint=cluster.client_urls[0],
            logger=logger,
            requests_module=requests,
            verify=cluster.config.trusted_ca_file or True,
        )

    def build_lifecycle(self, cluster: ClusterHandle) -> LifecycleController:
        return LifecycleController(cluster, self.launcher, logger, stop_timeout=self.stop_timeout)

    def seed_cluster(self, cluster: ClusterHandle, count: int):
        verifier = ReadWriteVerifier(self.build_kv_client(cluster), logger)
        records = build_records(count)
        self._run_step("seed_records", verifier.seed, records)
        return verifier, records

    def run_rolling_upgrade(self):
        """Upgrades one member at a time and re-reads every record in between."""
        target = ConvergenceTarget(
            version=self._run_step("resolve_target_version", self.resolve_target_version),
            max_attempts=self.convergence_attempts,
            interval=self.convergence_interval,
        )

        with self.create_cluster(self.cluster_config(self.ROLLING_SNAPSHOT_COUNT), "rolling") as cluster:
            self._run_step("start_cluster", cluster.start)
            verifier, records = self.seed_cluster(cluster, self.ROLLING_RECORD_COUNT)
            console.print("[blue]Cluster running the last release.[/blue]")

            lifecycle = self.build_lifecycle(cluster)
            for index in range(len(cluster.nodes)):
                self._run_step(f"stop_node_{index}", lifecycle.stop, index)
                lifecycle.upgrade_config(index, self.current_binary, keep_data=True)
                self._run_step(f"restart_node_{index}", lifecycle.restart, index)
                self._run_step(
                    f"verify_after_node_{index}",
                    verifier.verify,
                    records,
                    node_index=index,
                )
                console.print(f"[blue]Node {index} upgraded; {len(records)} records intact.[/blue]")

            console.print("[yellow]Waiting for full upgrade...[/yellow]")
            poller = self.build_poller(cluster)
            self._run_step("await_cluster_version", poller.await_version, target)

    def run_concurrent_restart(self):
        """Stops the whole cluster, then brings every member back on the new binary at once."""
        with self.create_cluster(self.cluster_config(self.RESTART_SNAPSHOT_COUNT), "restart") as cluster:
            self._run_step("start_cluster", cluster.start)
            verifier, records = self.seed_cluster(cluster, self.RESTART_RECORD_COUNT)

            lifecycle = self.build_lifecycle(cluster)
            for index in range(len(cluster.nodes)):
                self._run_step(f"stop_node_{index}", lifecycle.stop, index)

            self._run_step("restart_all_nodes", self.restart_all_concurrently, lifecycle, len(cluster.nodes))
            self._run_step("verify_first_record", verifier.verify, records[:1])

    def restart_all_concurrently(self, lifecycle: LifecycleController, count: int):
        def upgrade_and_restart(index: int):
            lifecycle.upgrade_config(index, self.current_binary, keep_data=True)
            lifecycle.restart(index)

        with TaskGroup(count, name="restart") as group:
            for index in range(count):
                group.spawn(index, upgrade_and_restart, index)
            group.join()
        console.print(f"[blue]All {count} nodes restarted on the current binary.[/blue]")

    def run_scenario(self, name: str) -> ScenarioResult:
        scenarios = {
            "rolling": self.run_rolling_upgrade,
            "restart": self.run_concurrent_restart,
        }
        result = ScenarioResult(name=name)
        self.current_scenario = name
        self.report_service.scenario_started(name)
        console.print(f"[bold blue]Scenario: {name}[/bold blue]")
        logger.info("Running scenario %s", name)
        started = time.monotonic()

        try:
            self._run_step("validate_binaries", self.validate_binaries)
            scenarios[name]()
            result.status = "passed"
            console.print(f"[green]Scenario {name} passed.[/green]")
        except SkippedPrecondition as exc:
            result.status = "skipped"
            result.reason = str(exc)
            console.print(f"[yellow]Scenario {name} skipped:[/yellow] {exc}")
            logger.info("Scenario %s skipped: %s", name, exc)
        except HarnessError as exc:
            result.status = "failed"
            result.reason = str(exc)
            result.node_index = exc.node_index
            result.key = getattr(exc, "key", None)
            result.last_version = getattr(exc, "last_version", None)
            console.print(f"[bold red]Scenario {name} failed:[/bold red] {exc}")
            logger.error("Scenario %s failed at step %s: %s", name, self.current_step_name, exc)
        except Exception as exc:
            result.status = "failed"
            result.reason = str(exc)
            console.print(f"[bold red]Scenario {name} failed unexpectedly:[/bold red] {exc}")
            logger.exception("Unexpected error in scenario %s at step %s", name, self.current_step_name)
        finally:
            result.duration_seconds = round(time.monotonic() - started, 3)
            self.results.append(result)
            self.report_service.scenario_finished(result)
            self.current_scenario = None
            self.current_step_name = None

        return result

    def print_summary(self):
        table = Table(title="Upgrade scenarios")
        table.add_column("Scenario")
        table.add_column("Status")
        table.add_column("Node")
        table.add_column("Key")
        table.add_column("Cluster version")
        colors = {"passed": "green", "skipped": "yellow", "failed": "red"}
        for result in self.results:
            table.add_row(
                result.name,
                f"[{colors.get(result.status, 'white')}]{result.status}[/]",
                "" if result.node_index is None else str(result.node_index),
                result.key or "",
                result.last_version or "",
            )
        console.print(table)

    def cleanup(self, keep_artifacts: bool = False):
        if keep_artifacts:
            logger.warning("Keeping node data and logs for inspection in %s", self.work_dir)
            return
        for result in self.results:
            self.filesystem_service.cleanup_dir(os.path.join(self.work_dir, result.name))

    def run(self) -> int:
        exit_code = 1
        run_status = "failed"
        run_error: Optional[str] = None

        try:
            logger.info("Starting clusterupgrade run %s...", self.run_id)

            if self.scenario not in self.SCENARIOS:
                raise HarnessError(f"Invalid scenario. Supported scenarios: {', '.join(self.SCENARIOS)}")

            self.report_service.start_run(run_id=self.run_id, metadata=self._build_metadata())
            names = SCENARIOS if self.scenario == "all" else (self.scenario,)
            for name in names:
                self.run_scenario(name)

            self.print_summary()
            failed = [result for result in self.results if result.status == "failed"]
            if failed:
                run_error = "; ".join(f"{result.name}: {result.reason}" for result in failed)
                return exit_code

            run_status = "skipped" if all(r.status == "skipped" for r in self.results) else "passed"
            exit_code = 0
            return exit_code

        except KeyboardInterrupt:
            console.print("[bold red]Operation cancelled by user.[/bold red]")
            logger.info("Operation cancelled by user")
            run_status = "aborted"
            run_error = "Operation cancelled by user."
            return exit_code
        except HarnessError as exc:
            console.print(f"[bold red]Error:[/bold red] {exc}")
            logger.error(str(exc))
            run_error = str(exc)
            return exit_code
        except Exception as exc:
            console.print(f"[bold red]Unexpected error:[/bold red] {exc}")
            logger.exception("Unexpected error")
            run_error = str(exc)
            return exit_code
        finally:
            self.report_service.finalize(run_status, error=run_error)
            self.cleanup(keep_artifacts=run_status not in ("passed", "skipped"))
