import json

import pytest
import yaml

from lattice_link.errors import OperationError
from lattice_link.main import build_parser, main, settings_from_args
from lattice_link.models import ResourceType


@pytest.fixture
def desired_file(tmp_path, full_document):
    path = tmp_path / "desired.yaml"
    path.write_text(yaml.safe_dump(full_document))
    return str(path)


@pytest.fixture
def run(tmp_path, driver):
    db_path = str(tmp_path / "ledger.db")

    def invoke(*argv):
        return main(list(argv) + ["--db-path", db_path], driver_factory=lambda settings, region: driver)

    return invoke


def test_apply_then_status(run, driver, desired_file, capsys):
    assert run("apply", "-f", desired_file) == 0
    out = capsys.readouterr().out
    assert "created" in out
    assert "service_network:sn1" in out

    assert run("status", "-f", desired_file, "--output", "json") == 0
    report = json.loads(capsys.readouterr().out)
    assert report["operation"] == "status"
    assert set(report["counts"]) == {"in_sync"}
    assert report["observed"]["service_network"]["id"] == driver.find(ResourceType.SERVICE_NETWORK, "sn1").resource_id


def test_apply_json_output(run, desired_file, capsys):
    assert run("apply", "-f", desired_file, "--output", "json") == 0

    report = json.loads(capsys.readouterr().out)
    assert report["success"] is True
    assert report["exit_code"] == 0
    assert report["diagnostics"]["total_errors"] == 0


def test_dry_run_writes_nothing(run, driver, desired_file, capsys):
    assert run("apply", "-f", desired_file, "--dry-run") == 0

    assert driver.writes == []
    assert "(dry run)" in capsys.readouterr().out


def test_failed_apply_exits_one_after_rollback(run, driver, desired_file, capsys):
    driver.fail_on("create", ResourceType.TARGET)

    assert run("apply", "-f", desired_file) == 1
    assert driver.find(ResourceType.SERVICE_NETWORK, "sn1") is None


def test_failed_apply_without_rollback_exits_two(run, driver, desired_file, capsys):
    driver.fail_on("create", ResourceType.TARGET)

    assert run("apply", "-f", desired_file, "--no-rollback") == 2
    assert driver.find(ResourceType.SERVICE_NETWORK, "sn1") is not None


def test_incomplete_rollback_lists_manual_cleanup(run, driver, desired_file, capsys):
    driver.fail_on("create", ResourceType.TARGET)
    driver.fail_on("delete", ResourceType.TARGET_GROUP)

    assert run("apply", "-f", desired_file) == 2
    out = capsys.readouterr().out
    assert "Manual cleanup required:" in out
    assert "target_group:tg1" in out


def test_status_exits_one_on_drift(run, driver, desired_file):
    run("apply", "-f", desired_file)
    driver.find(ResourceType.SERVICE_NETWORK, "sn1").attributes["auth_type"] = "AWS_IAM"

    assert run("status", "-f", desired_file) == 1


def test_destroy_removes_everything(run, driver, desired_file):
    run("apply", "-f", desired_file)

    assert run("destroy", "-f", desired_file) == 0
    assert all(not resources for resources in driver.store.values())


def test_invalid_desired_state_exits_three(run, tmp_path, driver, capsys):
    path = tmp_path / "bad.yaml"
    path.write_text("service_network:\n  name: Not_Valid\n")

    assert run("apply", "-f", str(path)) == 3
    assert "invalid desired state" in capsys.readouterr().err
    assert driver.calls == []


def test_missing_file_exits_three(run, tmp_path):
    assert run("status", "-f", str(tmp_path / "nope.yaml")) == 3


def test_no_cluster_skips_kubernetes_objects(run, driver, desired_file):
    assert run("apply", "-f", desired_file, "--no-cluster") == 0

    assert not driver.calls_for(ResourceType.CLUSTER_GATEWAY)
    assert not driver.calls_for(ResourceType.DNS_ALIAS)


def test_flags_override_settings(monkeypatch):
    monkeypatch.setenv("LATTICE_LINK_MAX_CONCURRENCY", "3")
    args = build_parser().parse_args(
        ["apply", "-f", "x.yaml", "--region", "eu-west-1", "--no-rollback", "--max-concurrency", "8"]
    )

    settings = settings_from_args(args)

    assert settings.region == "eu-west-1"
    assert settings.max_concurrency == 8
    assert settings.rollback_on_failure is False


def test_a_subcommand_is_required():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_kubernetes_driver_follows_the_graph(tmp_path, driver, scenario_document, full_document):
    db_path = str(tmp_path / "ledger.db")
    network_only = tmp_path / "network.yaml"
    network_only.write_text(yaml.safe_dump(scenario_document))
    full = tmp_path / "full.yaml"
    full.write_text(yaml.safe_dump(full_document))
    requested = []

    def factory(settings, region):
        requested.append(settings.enable_cluster)
        return driver

    def invoke(*argv):
        return main(list(argv) + ["--region", "us-west-2", "--db-path", db_path], driver_factory=factory)

    assert invoke("status", "-f", str(network_only)) == 1
    assert invoke("apply", "-f", str(full)) == 0
    # the alias is still in the ledger, so pruning it needs the cluster
    assert invoke("apply", "-f", str(network_only), "--prune") == 0
    assert invoke("status", "-f", str(network_only)) == 0

    assert requested == [False, True, True, False]
    assert driver.find(ResourceType.DNS_ALIAS, "postgres") is None


def test_driver_configuration_error_exits_one(tmp_path, desired_file, capsys):
    def factory(settings, region):
        raise OperationError("No usable Kubernetes configuration: Invalid kube-config file.")

    code = main(["status", "-f", desired_file, "--db-path", str(tmp_path / "ledger.db")], driver_factory=factory)

    assert code == 1
    assert "No usable Kubernetes configuration" in capsys.readouterr().err
