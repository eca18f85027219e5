# File: lattice_link/models.py
"""
Desired-state model for the cross-VPC connectivity graph.

Every entity is a frozen dataclass. A ConnectivityGraph is built once from the
desired-state file and passed down the call chain unchanged; the observed graph
returned by an apply is a new value with provider ids filled in.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, ClassVar, Dict, Iterator, List, Optional, Tuple


class ResourceType(Enum):
    # Declaration order breaks ties in the ordering engine.
    SERVICE_NETWORK = "service_network"
    VPC_ASSOCIATION = "vpc_association"
    TARGET_GROUP = "target_group"
    TARGET = "target"
    SERVICE = "service"
    SERVICE_ASSOCIATION = "service_association"
    LISTENER = "listener"
    SECURITY_GROUP_RULE = "security_group_rule"
    CLUSTER_GATEWAY = "cluster_gateway"
    DNS_ALIAS = "dns_alias"


class ResourceStatus:
    ACTIVE = "ACTIVE"
    PENDING = "PENDING"
    FAILED = "FAILED"
    DELETED = "DELETED"


@dataclass(frozen=True)
class Ref:
    """Reference from an entity to a parent it cannot exist without.

    The resolved value lands in ``refs[field]``: the parent's provider id, or
    one of its observed attributes when ``attribute`` is set.
    """

    resource_type: ResourceType
    key: str
    field: str
    attribute: Optional[str] = None


@dataclass
class ObservedResource:
    """A resource as reported by a provider."""

    resource_type: ResourceType
    name: str
    resource_id: str
    status: str = ResourceStatus.ACTIVE
    attributes: Dict[str, Any] = field(default_factory=dict)
    scope: Dict[str, str] = field(default_factory=dict)


class Entity:
    """Behaviour shared by every graph entity."""

    resource_type: ClassVar[ResourceType]
    immutable_fields: ClassVar[Tuple[str, ...]] = ()

    @property
    def key(self) -> str:
        return self.name

    def requires(self) -> Tuple[Ref, ...]:
        return ()

    def scope(self, refs: Dict[str, Any]) -> Dict[str, str]:
        return {}

    def spec(self, refs: Dict[str, Any]) -> Dict[str, Any]:
        return {}

    @property
    def label(self) -> str:
        return f"{self.resource_type.value}:{self.key}"


@dataclass(frozen=True)
class ServiceNetwork(Entity):
    resource_type: ClassVar[ResourceType] = ResourceType.SERVICE_NETWORK

    name: str
    auth_type: str = "NONE"
    region: Optional[str] = None
    resource_id: Optional[str] = None

    def spec(self, refs):
        return {"auth_type": self.auth_type}


@dataclass(frozen=True)
class VpcAssociation(Entity):
    resource_type: ClassVar[ResourceType] = ResourceType.VPC_ASSOCIATION

    service_network: str
    vpc_id: str
    security_group_ids: Tuple[str, ...] = ()
    status: Optional[str] = None
    resource_id: Optional[str] = None

    @property
    def name(self) -> str:
        return self.vpc_id

    @property
    def key(self) -> str:
        return f"{self.service_network}/{self.vpc_id}"

    def requires(self):
        return (Ref(ResourceType.SERVICE_NETWORK, self.service_network, "service_network_id"),)

    def scope(self, refs):
        return {"service_network_id": refs["service_network_id"]}

    def spec(self, refs):
        return {
            "vpc_id": self.vpc_id,
            "security_group_ids": sorted(self.security_group_ids),
        }


@dataclass(frozen=True)
class Target(Entity):
    resource_type: ClassVar[ResourceType] = ResourceType.TARGET
    immutable_fields: ClassVar[Tuple[str, ...]] = ("ip", "port")

    target_group: str
    ip: str
    port: int
    health: Optional[str] = None
    resource_id: Optional[str] = None

    @property
    def name(self) -> str:
        return f"{self.ip}:{self.port}"

    @property
    def key(self) -> str:
        return f"{self.target_group}/{self.ip}:{self.port}"

    def requires(self):
        return (Ref(ResourceType.TARGET_GROUP, self.target_group, "target_group_id"),)

    def scope(self, refs):
        return {"target_group_id": refs["target_group_id"]}

    def spec(self, refs):
        return {"ip": self.ip, "port": self.port}


@dataclass(frozen=True)
class TargetGroup(Entity):
    resource_type: ClassVar[ResourceType] = ResourceType.TARGET_GROUP
    immutable_fields: ClassVar[Tuple[str, ...]] = ("protocol", "port", "vpc_id", "target_type")

    name: str
    protocol: str
    port: int
    vpc_id: str
    target_type: str = "IP"
    targets: Tuple[Target, ...] = ()
    resource_id: Optional[str] = None

    def spec(self, refs):
        return {
            "protocol": self.protocol,
            "port": self.port,
            "vpc_id": self.vpc_id,
            "target_type": self.target_type,
        }


@dataclass(frozen=True)
class Listener(Entity):
    resource_type: ClassVar[ResourceType] = ResourceType.LISTENER
    immutable_fields: ClassVar[Tuple[str, ...]] = ("protocol", "port")

    service: str
    name: str
    protocol: str
    port: int
    target_group: str
    resource_id: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.service}/{self.name}"

    def requires(self):
        return (
            Ref(ResourceType.SERVICE, self.service, "service_id"),
            Ref(ResourceType.TARGET_GROUP, self.target_group, "target_group_id"),
        )

    def scope(self, refs):
        return {"service_id": refs["service_id"]}

    def spec(self, refs):
        return {
            "protocol": self.protocol,
            "port": self.port,
            "target_group_id": refs["target_group_id"],
        }


@dataclass(frozen=True)
class Service(Entity):
    resource_type: ClassVar[ResourceType] = ResourceType.SERVICE

    name: str
    auth_type: str = "NONE"
    listeners: Tuple[Listener, ...] = ()
    dns_name: Optional[str] = None
    resource_id: Optional[str] = None

    def spec(self, refs):
        return {"auth_type": self.auth_type}


@dataclass(frozen=True)
class ServiceAssociation(Entity):
    resource_type: ClassVar[ResourceType] = ResourceType.SERVICE_ASSOCIATION

    service_network: str
    service: str
    resource_id: Optional[str] = None

    @property
    def name(self) -> str:
        return self.service

    @property
    def key(self) -> str:
        return f"{self.service_network}/{self.service}"

    def requires(self):
        return (
            Ref(ResourceType.SERVICE_NETWORK, self.service_network, "service_network_id"),
            Ref(ResourceType.SERVICE, self.service, "service_id"),
        )

    def scope(self, refs):
        return {"service_network_id": refs["service_network_id"]}

    def spec(self, refs):
        return {"service_id": refs["service_id"]}


@dataclass(frozen=True)
class SecurityGroupRule(Entity):
    """Ingress rule allowing the mesh prefix list into a security group.

    Identity is the composite (group, protocol, port range, source prefix
    list); there is nothing to update in place.
    """

    resource_type: ClassVar[ResourceType] = ResourceType.SECURITY_GROUP_RULE

    group_id: str
    protocol: str
    from_port: int
    to_port: int
    source_prefix_list_id: Optional[str] = None
    source_prefix_list_name: Optional[str] = None
    resource_id: Optional[str] = None

    @property
    def source(self) -> str:
        return self.source_prefix_list_name or self.source_prefix_list_id or ""

    @property
    def name(self) -> str:
        return f"{self.protocol}:{self.from_port}-{self.to_port}:{self.source_prefix_list_id}"

    @property
    def key(self) -> str:
        return f"{self.group_id}/{self.protocol}/{self.from_port}-{self.to_port}/{self.source}"

    def scope(self, refs):
        return {"group_id": self.group_id}

    def spec(self, refs):
        return {
            "protocol": self.protocol,
            "from_port": self.from_port,
            "to_port": self.to_port,
            "prefix_list_id": self.source_prefix_list_id,
        }


@dataclass(frozen=True)
class ClusterGateway(Entity):
    resource_type: ClassVar[ResourceType] = ResourceType.CLUSTER_GATEWAY
    immutable_fields: ClassVar[Tuple[str, ...]] = ("gateway_class",)

    name: str
    service_network: str
    namespace: str = "default"
    gateway_class: str = "amazon-vpc-lattice"
    resource_id: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    def requires(self):
        return (Ref(ResourceType.SERVICE_NETWORK, self.service_network, "service_network_id"),)

    def scope(self, refs):
        return {"namespace": self.namespace}

    def spec(self, refs):
        return {"gateway_class": self.gateway_class}


@dataclass(frozen=True)
class DnsAlias(Entity):
    """ExternalName Service pointing cluster workloads at a mesh service."""

    resource_type: ClassVar[ResourceType] = ResourceType.DNS_ALIAS

    name: str
    service: str
    port: int
    namespace: str = "default"
    resource_id: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    def requires(self):
        return (Ref(ResourceType.SERVICE, self.service, "external_name", attribute="dns_name"),)

    def scope(self, refs):
        return {"namespace": self.namespace}

    def spec(self, refs):
        return {"external_name": refs["external_name"], "port": self.port}


@dataclass(frozen=True)
class ConnectivityGraph:
    """Root aggregate: owns every entity of one cross-VPC connection."""

    name: str
    service_network: ServiceNetwork
    region: Optional[str] = None
    vpc_associations: Tuple[VpcAssociation, ...] = ()
    target_groups: Tuple[TargetGroup, ...] = ()
    services: Tuple[Service, ...] = ()
    service_associations: Tuple[ServiceAssociation, ...] = ()
    security_group_rule: Optional[SecurityGroupRule] = None
    gateway: Optional[ClusterGateway] = None
    dns_aliases: Tuple[DnsAlias, ...] = ()

    def entities(self) -> Iterator[Entity]:
        yield self.service_network
        yield from self.vpc_associations
        for target_group in self.target_groups:
            yield target_group
            yield from target_group.targets
        for service in self.services:
            yield service
            yield from service.listeners
        yield from self.service_associations
        if self.security_group_rule is not None:
            yield self.security_group_rule
        if self.gateway is not None:
            yield self.gateway
        yield from self.dns_aliases

    def entity_keys(self) -> List[Tuple[ResourceType, str]]:
        return [(entity.resource_type, entity.key) for entity in self.entities()]

    def with_observed(self, observed: Dict[Tuple[ResourceType, str], ObservedResource]) -> "ConnectivityGraph":
        """Return a copy carrying provider ids and provider-assigned fields."""

        def fill(entity, **extra):
            found = observed.get((entity.resource_type, entity.key))
            if found is None:
                return replace(entity, **extra) if extra else entity
            return replace(entity, resource_id=found.resource_id, **extra)

        def attribute(entity, name):
            found = observed.get((entity.resource_type, entity.key))
            return found.attributes.get(name) if found else None

        return replace(
            self,
            service_network=fill(self.service_network),
            vpc_associations=tuple(
                fill(assoc, status=_status_of(observed, assoc)) for assoc in self.vpc_associations
            ),
            target_groups=tuple(
                fill(
                    group,
                    targets=tuple(
                        fill(target, health=attribute(target, "health")) for target in group.targets
                    ),
                )
                for group in self.target_groups
            ),
            services=tuple(
                fill(
                    service,
                    dns_name=attribute(service, "dns_name"),
                    listeners=tuple(fill(listener) for listener in service.listeners),
                )
                for service in self.services
            ),
            service_associations=tuple(fill(assoc) for assoc in self.service_associations),
            security_group_rule=fill(
                self.security_group_rule,
                source_prefix_list_id=(
                    attribute(self.security_group_rule, "prefix_list_id")
                    or self.security_group_rule.source_prefix_list_id
                ),
            ) if self.security_group_rule else None,
            gateway=fill(self.gateway) if self.gateway else None,
            dns_aliases=tuple(fill(alias) for alias in self.dns_aliases),
        )


def _status_of(observed, entity) -> Optional[str]:
    found = observed.get((entity.resource_type, entity.key))
    return found.status if found else None
