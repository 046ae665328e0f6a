from click.testing import CliRunner

import clusterupgrade.cli as cli_module


class FakeHarness:
    SCENARIOS = cli_module.UpgradeHarness.SCENARIOS
    captured = {}
    exit_code = 0

    def __init__(self, **kwargs):
        FakeHarness.captured = kwargs

    def run(self):
        return FakeHarness.exit_code


def test_cli_uses_config_and_allows_cli_override(tmp_path, monkeypatch):
    config_file = tmp_path / ".clusterupgrade.yml"
    config_file.write_text(
        "scenario: rolling\n"
        "current_binary: /opt/etcd\n"
        "release_binary: /opt/etcd-last-release\n"
        "etcdctl_binary: /opt/etcdctl\n"
        "convergence_attempts: 3\n"
        "dial_timeout: 5\n",
        encoding="utf-8",
    )
    monkeypatch.setattr(cli_module, "UpgradeHarness", FakeHarness)

    result = CliRunner().invoke(
        cli_module.main,
        ["--config", str(config_file), "--convergence-attempts", "9", "--scenario", "restart"],
    )

    assert result.exit_code == 0, result.output
    captured = FakeHarness.captured
    assert captured["scenario"] == "restart"
    assert captured["current_binary"] == "/opt/etcd"
    assert captured["convergence_attempts"] == 9
    assert captured["convergence_interval"] == 1.0
    assert captured["dial_timeout"] == 5.0
    assert captured["cluster_size"] == 3


def test_cli_reads_binaries_from_environment(tmp_path, monkeypatch):
    monkeypatch.setattr(cli_module, "UpgradeHarness", FakeHarness)
    monkeypatch.chdir(tmp_path)

    result = CliRunner().invoke(
        cli_module.main,
        [],
        env={
            "CLUSTERUPGRADE_CURRENT_BINARY": "/bin/etcd",
            "CLUSTERUPGRADE_RELEASE_BINARY": "/bin/etcd-last-release",
            "CLUSTERUPGRADE_ETCDCTL_BINARY": "/bin/etcdctl",
        },
    )

    assert result.exit_code == 0, result.output
    assert FakeHarness.captured["release_binary"] == "/bin/etcd-last-release"
    assert FakeHarness.captured["scenario"] == "all"


def test_cli_propagates_harness_exit_code(tmp_path, monkeypatch):
    monkeypatch.setattr(cli_module, "UpgradeHarness", FakeHarness)
    monkeypatch.setattr(FakeHarness, "exit_code", 1)
    monkeypatch.chdir(tmp_path)

    result = CliRunner().invoke(
        cli_module.main,
        ["--current-binary", "a", "--release-binary", "b", "--etcdctl-binary", "c"],
    )

    assert result.exit_code == 1


def test_cli_requires_binaries(tmp_path, monkeypatch):
    monkeypatch.setattr(cli_module, "UpgradeHarness", FakeHarness)
    monkeypatch.chdir(tmp_path)

    result = CliRunner().invoke(
        cli_module.main,
        [],
        env={
            "CLUSTERUPGRADE_CURRENT_BINARY": None,
            "CLUSTERUPGRADE_RELEASE_BINARY": None,
            "CLUSTERUPGRADE_ETCDCTL_BINARY": None,
        },
    )

    assert result.exit_code != 0
    assert "Missing required option" in result.output


def test_cli_reports_bad_config(tmp_path, monkeypatch):
    config_file = tmp_path / "bad.yml"
    config_file.write_text("unknown: 1\n", encoding="utf-8")
    monkeypatch.setattr(cli_module, "UpgradeHarness", FakeHarness)

    result = CliRunner().invoke(cli_module.main, ["--config", str(config_file)])

    assert result.exit_code != 0
    assert "Unknown configuration keys" in result.output


def test_cli_passes_client_tls_settings(tmp_path, monkeypatch):
    config_file = tmp_path / ".clusterupgrade.yml"
    config_file.write_text(
        "current_binary: /opt/etcd\n"
        "release_binary: /opt/etcd-last-release\n"
        "etcdctl_binary: /opt/etcdctl\n"
        "cert_file: /certs/server.crt\n"
        "key_file: /certs/server.key\n",
        encoding="utf-8",
    )
    monkeypatch.setattr(cli_module, "UpgradeHarness", FakeHarness)

    result = CliRunner().invoke(
        cli_module.main,
        ["--config", str(config_file), "--client-tls", "--trusted-ca-file", "/certs/ca.crt"],
    )

    assert result.exit_code == 0, result.output
    captured = FakeHarness.captured
    assert captured["client_tls"] is True
    assert captured["cert_file"] == "/certs/server.crt"
    assert captured["trusted_ca_file"] == "/certs/ca.crt"
