# File: lattice_link/desired_state.py
"""
Desired-state document loading.

The document is YAML (JSON is accepted too). It is parsed with pydantic
schemas, converted into an immutable ConnectivityGraph and checked by the
semantic validators before anything talks to a provider.
"""

import os
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as SchemaError

from .errors import ValidationError
from .models import (
    ClusterGateway,
    ConnectivityGraph,
    DnsAlias,
    Listener,
    SecurityGroupRule,
    Service,
    ServiceAssociation,
    ServiceNetwork,
    Target,
    TargetGroup,
    VpcAssociation,
)
from .validation import validate_graph


class _Document(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ServiceNetworkDoc(_Document):
    name: str = Field(..., min_length=1, max_length=63)
    auth_type: str = "NONE"


class VpcAssociationDoc(_Document):
    vpc_id: str = Field(..., min_length=1)
    security_group_ids: List[str] = Field(default_factory=list)


class TargetDoc(_Document):
    ip: str
    port: int


class TargetGroupDoc(_Document):
    name: str = Field(..., min_length=1, max_length=128)
    protocol: str = "TCP"
    port: int
    vpc_id: str = Field(..., min_length=1)
    target_type: str = "IP"
    targets: List[TargetDoc] = Field(default_factory=list)


class ListenerDoc(_Document):
    name: str = Field(..., min_length=1, max_length=63)
    protocol: str = "TCP"
    port: int
    target_group: str


class ServiceDoc(_Document):
    name: str = Field(..., min_length=1, max_length=40)
    auth_type: str = "NONE"
    listeners: List[ListenerDoc] = Field(default_factory=list)


class ServiceAssociationDoc(_Document):
    service: str


class SecurityGroupRuleDoc(_Document):
    group_id: str = Field(..., min_length=1)
    protocol: str = "tcp"
    from_port: int
    to_port: Optional[int] = None
    source_prefix_list_id: Optional[str] = None
    source_prefix_list_name: Optional[str] = None


class GatewayDoc(_Document):
    name: Optional[str] = None
    namespace: Optional[str] = None
    gateway_class: str = "amazon-vpc-lattice"


class DnsAliasDoc(_Document):
    name: str
    service: str
    port: int
    namespace: Optional[str] = None


class ClusterDoc(_Document):
    namespace: str = "default"
    gateway: Optional[GatewayDoc] = None
    dns_aliases: List[DnsAliasDoc] = Field(default_factory=list)


class DesiredStateDoc(_Document):
    name: Optional[str] = None
    region: Optional[str] = None
    service_network: ServiceNetworkDoc
    vpc_associations: List[VpcAssociationDoc] = Field(default_factory=list)
    target_groups: List[TargetGroupDoc] = Field(default_factory=list)
    services: List[ServiceDoc] = Field(default_factory=list)
    service_associations: List[ServiceAssociationDoc] = Field(default_factory=list)
    security_group_rule: Optional[SecurityGroupRuleDoc] = None
    cluster: Optional[ClusterDoc] = None


def _schema_messages(exc: SchemaError) -> List[str]:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        messages.append(f"{location}: {error.get('msg')}")
    return messages


def _to_graph(doc: DesiredStateDoc) -> ConnectivityGraph:
    sn_name = doc.service_network.name
    region = doc.region
    cluster = doc.cluster

    gateway = None
    dns_aliases = ()
    if cluster is not None:
        if cluster.gateway is not None:
            gateway = ClusterGateway(
                name=cluster.gateway.name or sn_name,
                service_network=sn_name,
                namespace=cluster.gateway.namespace or cluster.namespace,
                gateway_class=cluster.gateway.gateway_class,
            )
        dns_aliases = tuple(
            DnsAlias(
                name=alias.name,
                service=alias.service,
                port=alias.port,
                namespace=alias.namespace or cluster.namespace,
            )
            for alias in cluster.dns_aliases
        )

    rule = None
    if doc.security_group_rule is not None:
        sg = doc.security_group_rule
        protocol = sg.protocol.lower()
        from_port = sg.from_port
        to_port = sg.to_port if sg.to_port is not None else sg.from_port
        if protocol == "-1":
            # EC2 reports all-traffic rules with a -1 port range
            from_port = to_port = -1
        rule = SecurityGroupRule(
            group_id=sg.group_id,
            protocol=protocol,
            from_port=from_port,
            to_port=to_port,
            source_prefix_list_id=sg.source_prefix_list_id,
            source_prefix_list_name=sg.source_prefix_list_name,
        )

    return ConnectivityGraph(
        name=doc.name or sn_name,
        region=region,
        service_network=ServiceNetwork(
            name=sn_name,
            auth_type=doc.service_network.auth_type,
            region=region,
        ),
        vpc_associations=tuple(
            VpcAssociation(
                service_network=sn_name,
                vpc_id=assoc.vpc_id,
                security_group_ids=tuple(assoc.security_group_ids),
            )
            for assoc in doc.vpc_associations
        ),
        target_groups=tuple(
            TargetGroup(
                name=group.name,
                protocol=group.protocol.upper(),
                port=group.port,
                vpc_id=group.vpc_id,
                target_type=group.target_type.upper(),
                targets=tuple(
                    Target(target_group=group.name, ip=target.ip, port=target.port)
                    for target in group.targets
                ),
            )
            for group in doc.target_groups
        ),
        services=tuple(
            Service(
                name=service.name,
                auth_type=service.auth_type,
                listeners=tuple(
                    Listener(
                        service=service.name,
                        name=listener.name,
                        protocol=listener.protocol.upper(),
                        port=listener.port,
                        target_group=listener.target_group,
                    )
                    for listener in service.listeners
                ),
            )
            for service in doc.services
        ),
        service_associations=tuple(
            ServiceAssociation(service_network=sn_name, service=assoc.service)
            for assoc in doc.service_associations
        ),
        security_group_rule=rule,
        gateway=gateway,
        dns_aliases=dns_aliases,
    )


def parse_desired_state(data: Any) -> ConnectivityGraph:
    """Build and validate a graph from an already-decoded document."""
    if not isinstance(data, dict):
        raise ValidationError(["desired state must be a mapping at the top level"])
    try:
        doc = DesiredStateDoc.model_validate(data)
    except SchemaError as e:
        raise ValidationError(_schema_messages(e)) from e

    graph = _to_graph(doc)
    report = validate_graph(graph)
    if not report.passed:
        raise ValidationError(report.error_messages())
    return graph


def load_desired_state(path: str) -> ConnectivityGraph:
    """Load a desired-state file from disk."""
    if not os.path.exists(path):
        raise ValidationError([f"desired state file not found: {path}"])
    with open(path, "r") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValidationError([f"could not parse {path}: {e}"]) from e
    return parse_desired_state(data)


def graph_to_document(graph: ConnectivityGraph) -> Dict[str, Any]:
    """Serialize a graph back into the document layout (used by reports)."""
    doc: Dict[str, Any] = {
        "name": graph.name,
        "region": graph.region,
        "service_network": {
            "name": graph.service_network.name,
            "auth_type": graph.service_network.auth_type,
            "id": graph.service_network.resource_id,
        },
        "vpc_associations": [
            {"vpc_id": a.vpc_id, "id": a.resource_id, "status": a.status}
            for a in graph.vpc_associations
        ],
        "target_groups": [
            {
                "name": g.name,
                "protocol": g.protocol,
                "port": g.port,
                "vpc_id": g.vpc_id,
                "id": g.resource_id,
                "targets": [
                    {"ip": t.ip, "port": t.port, "id": t.resource_id, "health": t.health}
                    for t in g.targets
                ],
            }
            for g in graph.target_groups
        ],
        "services": [
            {
                "name": s.name,
                "id": s.resource_id,
                "dns_name": s.dns_name,
                "listeners": [
                    {
                        "name": l.name,
                        "protocol": l.protocol,
                        "port": l.port,
                        "target_group": l.target_group,
                        "id": l.resource_id,
                    }
                    for l in s.listeners
                ],
            }
            for s in graph.services
        ],
        "service_associations": [
            {"service": a.service, "id": a.resource_id} for a in graph.service_associations
        ],
    }
    if graph.security_group_rule is not None:
        rule = graph.security_group_rule
        doc["security_group_rule"] = {
            "group_id": rule.group_id,
            "protocol": rule.protocol,
            "from_port": rule.from_port,
            "to_port": rule.to_port,
            "source_prefix_list_id": rule.source_prefix_list_id,
            "id": rule.resource_id,
        }
    if graph.gateway is not None or graph.dns_aliases:
        doc["cluster"] = {
            "gateway": {
                "name": graph.gateway.name,
                "namespace": graph.gateway.namespace,
                "id": graph.gateway.resource_id,
            } if graph.gateway else None,
            "dns_aliases": [
                {"name": a.name, "namespace": a.namespace, "service": a.service, "port": a.port,
                 "id": a.resource_id}
                for a in graph.dns_aliases
            ],
        }
    return doc
