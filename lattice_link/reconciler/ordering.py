# File: lattice_link/reconciler/ordering.py
"""
Ordering engine.

The dependency graph between resource types is fixed by the domain, so the
edges are hardcoded. Creation follows a topological order of this DAG with
ties broken by ResourceType declaration order; deletion is the exact reverse.
Entities of one resource type never depend on each other and form one wave
that may run concurrently.
"""

import heapq
from typing import Dict, List, Tuple

from ..models import ConnectivityGraph, Entity, ResourceType

# resource type -> resource types that must exist first
KIND_DEPENDENCIES: Dict[ResourceType, Tuple[ResourceType, ...]] = {
    ResourceType.SERVICE_NETWORK: (),
    ResourceType.VPC_ASSOCIATION: (ResourceType.SERVICE_NETWORK,),
    ResourceType.TARGET_GROUP: (),
    ResourceType.TARGET: (ResourceType.TARGET_GROUP,),
    ResourceType.SERVICE: (),
    ResourceType.SERVICE_ASSOCIATION: (ResourceType.SERVICE_NETWORK, ResourceType.SERVICE),
    ResourceType.LISTENER: (
        ResourceType.TARGET_GROUP,
        ResourceType.SERVICE,
        ResourceType.SERVICE_ASSOCIATION,
    ),
    ResourceType.SECURITY_GROUP_RULE: (),
    ResourceType.CLUSTER_GATEWAY: (ResourceType.SERVICE_NETWORK,),
    ResourceType.DNS_ALIAS: (ResourceType.SERVICE,),
}

_RANK = {kind: index for index, kind in enumerate(ResourceType)}


class CycleError(Exception):
    pass


def kind_order(dependencies: Dict[ResourceType, Tuple[ResourceType, ...]] = KIND_DEPENDENCIES) -> List[ResourceType]:
    """Kahn's algorithm, always taking the lowest-ranked ready type."""
    remaining = {kind: set(deps) for kind, deps in dependencies.items()}
    dependents: Dict[ResourceType, List[ResourceType]] = {kind: [] for kind in dependencies}
    for kind, deps in dependencies.items():
        for dep in deps:
            dependents[dep].append(kind)

    ready = [(_RANK[kind], kind.value, kind) for kind, deps in remaining.items() if not deps]
    heapq.heapify(ready)
    order: List[ResourceType] = []
    while ready:
        _, _, kind = heapq.heappop(ready)
        order.append(kind)
        for dependent in dependents[kind]:
            remaining[dependent].discard(kind)
            if not remaining[dependent]:
                heapq.heappush(ready, (_RANK[dependent], dependent.value, dependent))

    if len(order) != len(dependencies):
        stuck = sorted(kind.value for kind in dependencies if kind not in order)
        raise CycleError(f"Dependency cycle between resource types: {stuck}")
    return order


CREATION_ORDER: List[ResourceType] = kind_order()
DELETION_ORDER: List[ResourceType] = list(reversed(CREATION_ORDER))


def creation_waves(graph: ConnectivityGraph) -> List[Tuple[ResourceType, List[Entity]]]:
    """Group the graph's entities into ordered, non-empty waves."""
    by_kind: Dict[ResourceType, List[Entity]] = {kind: [] for kind in CREATION_ORDER}
    for entity in graph.entities():
        by_kind[entity.resource_type].append(entity)
    return [(kind, by_kind[kind]) for kind in CREATION_ORDER if by_kind[kind]]


def deletion_waves(graph: ConnectivityGraph) -> List[Tuple[ResourceType, List[Entity]]]:
    return [(kind, list(reversed(entities))) for kind, entities in reversed(creation_waves(graph))]


def topo_sort(graph: ConnectivityGraph) -> List[Entity]:
    """Every entity of the graph in creation order."""
    return [entity for _, entities in creation_waves(graph) for entity in entities]


def reverse_topo_sort(graph: ConnectivityGraph) -> List[Entity]:
    return list(reversed(topo_sort(graph)))
