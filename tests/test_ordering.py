import pytest

from lattice_link.models import ResourceType
from lattice_link.reconciler.ordering import (
    CREATION_ORDER,
    DELETION_ORDER,
    CycleError,
    creation_waves,
    deletion_waves,
    kind_order,
    reverse_topo_sort,
    topo_sort,
)


def test_creation_order_puts_parents_first():
    assert CREATION_ORDER == [
        ResourceType.SERVICE_NETWORK,
        ResourceType.VPC_ASSOCIATION,
        ResourceType.TARGET_GROUP,
        ResourceType.TARGET,
        ResourceType.SERVICE,
        ResourceType.SERVICE_ASSOCIATION,
        ResourceType.LISTENER,
        ResourceType.SECURITY_GROUP_RULE,
        ResourceType.CLUSTER_GATEWAY,
        ResourceType.DNS_ALIAS,
    ]


def test_deletion_order_is_exact_reverse():
    assert DELETION_ORDER == list(reversed(CREATION_ORDER))


def test_cycle_is_rejected():
    dependencies = {
        ResourceType.SERVICE_NETWORK: (ResourceType.VPC_ASSOCIATION,),
        ResourceType.VPC_ASSOCIATION: (ResourceType.SERVICE_NETWORK,),
    }

    with pytest.raises(CycleError, match="service_network"):
        kind_order(dependencies)


def test_ties_follow_declaration_order():
    dependencies = {
        ResourceType.DNS_ALIAS: (),
        ResourceType.SERVICE: (),
        ResourceType.TARGET_GROUP: (),
    }

    assert kind_order(dependencies) == [
        ResourceType.TARGET_GROUP,
        ResourceType.SERVICE,
        ResourceType.DNS_ALIAS,
    ]


def test_waves_group_entities_by_kind(scenario):
    waves = creation_waves(scenario)

    assert [kind for kind, _ in waves] == [
        ResourceType.SERVICE_NETWORK,
        ResourceType.VPC_ASSOCIATION,
        ResourceType.TARGET_GROUP,
        ResourceType.TARGET,
        ResourceType.SERVICE,
        ResourceType.LISTENER,
    ]
    assert [e.key for e in waves[1][1]] == ["sn1/vpcA", "sn1/vpcB"]


def test_deletion_waves_reverse_creation_waves(full_graph):
    creation = creation_waves(full_graph)
    deletion = deletion_waves(full_graph)

    assert [kind for kind, _ in deletion] == [kind for kind, _ in reversed(creation)]
    assert deletion[0][0] == ResourceType.DNS_ALIAS
    assert deletion[-1][0] == ResourceType.SERVICE_NETWORK


def test_every_entity_follows_its_dependencies(full_graph):
    ordered = topo_sort(full_graph)
    position = {(e.resource_type, e.key): i for i, e in enumerate(ordered)}

    assert len(ordered) == len(full_graph.entity_keys())
    for entity in ordered:
        for ref in entity.requires():
            assert position[(ref.resource_type, ref.key)] < position[(entity.resource_type, entity.key)]
    assert reverse_topo_sort(full_graph) == list(reversed(ordered))
