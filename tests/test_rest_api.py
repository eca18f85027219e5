import pytest
from fastapi.testclient import TestClient

from lattice_link.api.rest_api_server import app, get_driver_factory, get_ledger, get_settings
from lattice_link.desired_state import parse_desired_state
from lattice_link.errors import OperationError
from lattice_link.models import ResourceType
from lattice_link.reconciler import ReconciliationEngine


@pytest.fixture
def client(driver, settings, ledger):
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_ledger] = lambda: ledger
    app.dependency_overrides[get_driver_factory] = lambda: (lambda region, cluster: driver)
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_metrics_are_exposed(client):
    client.get("/health")

    response = client.get("/metrics")

    assert response.status_code == 200
    assert "lattice_link_api_requests_total" in response.text


def test_plan_on_empty_account(client, driver, scenario_document):
    response = client.post("/plan", json={"desired_state": scenario_document})

    assert response.status_code == 200
    body = response.json()
    assert body["dry_run"] is True
    assert body["counts"] == {"planned": 7}
    assert {e["action"] for e in body["entities"]} == {"create"}
    assert driver.writes == []


def test_plan_rejects_invalid_documents(client, scenario_document):
    scenario_document["services"][0]["listeners"][0]["target_group"] = "missing"

    response = client.post("/plan", json={"desired_state": scenario_document})

    assert response.status_code == 422
    assert "unknown target group 'missing'" in response.json()["detail"][0]


def test_status_reports_drift(client, driver, settings, ledger, scenario_document):
    ReconciliationEngine(driver, settings, ledger=ledger, sleep=lambda _: None).apply(
        parse_desired_state(scenario_document)
    )
    driver.store[ResourceType.SERVICE_NETWORK].clear()

    response = client.post("/status", json={"desired_state": scenario_document})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is False
    assert body["entities"][0]["status"] == "missing"


def test_ledger_lists_recorded_entries(client, driver, settings, ledger, scenario_document):
    ReconciliationEngine(driver, settings, ledger=ledger, sleep=lambda _: None).apply(
        parse_desired_state(scenario_document)
    )

    response = client.get("/ledger", params={"graph": "rds-link"})

    assert response.status_code == 200
    entries = response.json()
    assert len(entries) == 7
    assert entries[0]["resource_type"] == "service_network"
    assert client.get("/ledger", params={"graph": "other"}).json() == []


def test_kubernetes_driver_is_only_requested_for_cluster_objects(client, driver, scenario_document, full_document):
    requested = []

    def factory(region, cluster):
        requested.append(cluster)
        return driver

    app.dependency_overrides[get_driver_factory] = lambda: factory

    client.post("/status", json={"desired_state": scenario_document})
    client.post("/status", json={"desired_state": full_document})

    assert requested == [False, True]


def test_driver_configuration_errors_are_bad_gateway(client, scenario_document):
    def factory(region, cluster):
        raise OperationError("No usable Kubernetes configuration: Invalid kube-config file.")

    app.dependency_overrides[get_driver_factory] = lambda: factory

    response = client.post("/status", json={"desired_state": scenario_document})

    assert response.status_code == 502
    assert "No usable Kubernetes configuration" in response.json()["detail"]
