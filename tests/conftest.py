import copy

import pytest

from lattice_link.config import Settings
from lattice_link.desired_state import parse_desired_state
from lattice_link.ledger import Ledger
from lattice_link.reconciler import ReconciliationEngine

from .fakes import FakeDriver


SCENARIO = {
    "name": "rds-link",
    "region": "us-west-2",
    "service_network": {"name": "sn1"},
    "vpc_associations": [{"vpc_id": "vpcA"}, {"vpc_id": "vpcB"}],
    "target_groups": [
        {
            "name": "tg1",
            "protocol": "TCP",
            "port": 5432,
            "vpc_id": "vpcB",
            "targets": [{"ip": "10.0.0.5", "port": 5432}],
        }
    ],
    "services": [
        {
            "name": "svc1",
            "listeners": [{"name": "listener", "protocol": "TCP", "port": 5432, "target_group": "tg1"}],
        }
    ],
}

FULL = dict(
    copy.deepcopy(SCENARIO),
    service_associations=[{"service": "svc1"}],
    security_group_rule={
        "group_id": "sg-0rds",
        "protocol": "tcp",
        "from_port": 5432,
        "source_prefix_list_name": "com.amazonaws.us-west-2.vpc-lattice",
    },
    cluster={
        "namespace": "apps",
        "gateway": {},
        "dns_aliases": [{"name": "postgres", "service": "svc1", "port": 5432}],
    },
)


@pytest.fixture
def scenario_document():
    return copy.deepcopy(SCENARIO)


@pytest.fixture
def full_document():
    return copy.deepcopy(FULL)


@pytest.fixture
def scenario(scenario_document):
    return parse_desired_state(scenario_document)


@pytest.fixture
def full_graph(full_document):
    return parse_desired_state(full_document)


@pytest.fixture
def driver():
    fake = FakeDriver()
    fake.prefix_lists["com.amazonaws.us-west-2.vpc-lattice"] = "pl-0lattice"
    return fake


@pytest.fixture
def settings():
    return Settings(db_path="sqlite:///:memory:", max_concurrency=5)


@pytest.fixture
def ledger():
    return Ledger("sqlite:///:memory:")


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def engine(driver, settings, ledger, sleeps):
    return ReconciliationEngine(driver, settings, ledger=ledger, sleep=sleeps.append)
