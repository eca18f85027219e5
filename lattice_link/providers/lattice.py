# File: lattice_link/providers/lattice.py
"""
VPC Lattice driver.

Maps the generic driver operations onto the boto3 ``vpc-lattice`` client for
service networks, VPC and service associations, target groups, targets,
services and listeners. Lattice statuses (CREATE_IN_PROGRESS, ACTIVE,
CREATE_FAILED, ...) are normalized to ACTIVE, PENDING, FAILED and DELETED.
"""

import logging
from typing import Any, Dict, List, Optional

from ..errors import NotFoundError, OperationError, TransientProviderError
from ..models import ObservedResource, ResourceStatus, ResourceType
from .aws import paginate, translate_errors
from .base import ResourceDriver

logger = logging.getLogger(__name__)

# register_targets failure codes that a retry can fix
TRANSIENT_TARGET_FAILURES = {"ConflictException", "ThrottlingException", "InternalServerException"}


def normalize_status(status: Optional[str]) -> str:
    if not status or status == "ACTIVE":
        return ResourceStatus.ACTIVE
    if status.startswith("DELETE_IN_PROGRESS"):
        return ResourceStatus.DELETED
    if status.endswith("_FAILED"):
        return ResourceStatus.FAILED
    if status.endswith("_IN_PROGRESS"):
        return ResourceStatus.PENDING
    return ResourceStatus.ACTIVE


def normalize_target_status(status: Optional[str]) -> str:
    # DRAINING targets are on their way out; every other state means registered
    if status == "DRAINING":
        return ResourceStatus.DELETED
    return ResourceStatus.ACTIVE


def _forward(target_group_id: str) -> Dict[str, Any]:
    return {"forward": {"targetGroups": [{"targetGroupIdentifier": target_group_id, "weight": 100}]}}


def _forwarded_group(listener: Dict[str, Any]) -> Optional[str]:
    groups = listener.get("defaultAction", {}).get("forward", {}).get("targetGroups", [])
    return groups[0].get("targetGroupIdentifier") if groups else None


class LatticeDriver(ResourceDriver):
    kinds = frozenset({
        ResourceType.SERVICE_NETWORK,
        ResourceType.VPC_ASSOCIATION,
        ResourceType.TARGET_GROUP,
        ResourceType.TARGET,
        ResourceType.SERVICE,
        ResourceType.SERVICE_ASSOCIATION,
        ResourceType.LISTENER,
    })

    def __init__(self, client):
        self.client = client

    def _handler(self, operation: str, kind: ResourceType):
        handler = getattr(self, f"_{operation}_{kind.value}", None)
        if handler is None:
            raise OperationError(f"{operation} is not supported for {kind.value} resources", resource_type=kind)
        return handler

    def list_resources(self, kind, scope):
        with translate_errors(f"list {kind.value}"):
            return self._handler("list", kind)(scope)

    def get_resource(self, kind, resource_id, scope):
        try:
            with translate_errors(f"get {kind.value} {resource_id}"):
                return self._handler("get", kind)(resource_id, scope)
        except NotFoundError:
            return None

    def create_resource(self, kind, name, spec, scope):
        with translate_errors(f"create {kind.value} {name}", resource_type=kind, key=name,
                              missing_parent_is_transient=bool(scope)):
            return self._handler("create", kind)(name, spec, scope)

    def update_resource(self, kind, resource_id, spec, scope):
        with translate_errors(f"update {kind.value} {resource_id}", resource_type=kind):
            return self._handler("update", kind)(resource_id, spec, scope)

    def delete_resource(self, kind, resource_id, scope):
        try:
            with translate_errors(f"delete {kind.value} {resource_id}", resource_type=kind):
                self._handler("delete", kind)(resource_id, scope)
        except NotFoundError:
            logger.info(f"{kind.value} {resource_id} is already gone")

    # Service networks

    @staticmethod
    def _service_network(item) -> ObservedResource:
        return ObservedResource(
            ResourceType.SERVICE_NETWORK,
            item["name"],
            item["id"],
            attributes={"auth_type": item.get("authType"), "arn": item.get("arn")},
        )

    def _list_service_network(self, scope):
        return [self._service_network(item) for item in paginate(self.client, "list_service_networks", "items")]

    def _get_service_network(self, resource_id, scope):
        return self._service_network(self.client.get_service_network(serviceNetworkIdentifier=resource_id))

    def _create_service_network(self, name, spec, scope):
        return self._service_network(self.client.create_service_network(name=name, authType=spec["auth_type"]))

    def _update_service_network(self, resource_id, spec, scope):
        return self._service_network(self.client.update_service_network(
            serviceNetworkIdentifier=resource_id, authType=spec["auth_type"],
        ))

    def _delete_service_network(self, resource_id, scope):
        self.client.delete_service_network(serviceNetworkIdentifier=resource_id)

    # VPC associations

    @staticmethod
    def _vpc_association(item, scope) -> ObservedResource:
        return ObservedResource(
            ResourceType.VPC_ASSOCIATION,
            item["vpcId"],
            item["id"],
            status=normalize_status(item.get("status")),
            attributes={
                "vpc_id": item["vpcId"],
                "security_group_ids": sorted(item.get("securityGroupIds", [])),
                "raw_status": item.get("status"),
            },
            scope=dict(scope),
        )

    def _list_vpc_association(self, scope):
        items = paginate(self.client, "list_service_network_vpc_associations", "items",
                         serviceNetworkIdentifier=scope["service_network_id"])
        return [self._vpc_association(item, scope) for item in items]

    def _get_vpc_association(self, resource_id, scope):
        return self._vpc_association(
            self.client.get_service_network_vpc_association(serviceNetworkVpcAssociationIdentifier=resource_id),
            scope,
        )

    def _create_vpc_association(self, name, spec, scope):
        kwargs = {"serviceNetworkIdentifier": scope["service_network_id"], "vpcIdentifier": spec["vpc_id"]}
        if spec.get("security_group_ids"):
            kwargs["securityGroupIds"] = list(spec["security_group_ids"])
        response = self.client.create_service_network_vpc_association(**kwargs)
        item = dict(response, vpcId=spec["vpc_id"])
        item.setdefault("securityGroupIds", kwargs.get("securityGroupIds", []))
        return self._vpc_association(item, scope)

    def _update_vpc_association(self, resource_id, spec, scope):
        self.client.update_service_network_vpc_association(
            serviceNetworkVpcAssociationIdentifier=resource_id,
            securityGroupIds=list(spec["security_group_ids"]),
        )
        return self._get_vpc_association(resource_id, scope)

    def _delete_vpc_association(self, resource_id, scope):
        self.client.delete_service_network_vpc_association(serviceNetworkVpcAssociationIdentifier=resource_id)

    # Target groups

    @staticmethod
    def _target_group(item) -> ObservedResource:
        config = item.get("config", item)
        return ObservedResource(
            ResourceType.TARGET_GROUP,
            item["name"],
            item["id"],
            status=normalize_status(item.get("status")),
            attributes={
                "protocol": config.get("protocol"),
                "port": config.get("port"),
                "vpc_id": config.get("vpcIdentifier"),
                "target_type": item.get("type"),
                "arn": item.get("arn"),
            },
        )

    def _list_target_group(self, scope):
        return [self._target_group(item) for item in paginate(self.client, "list_target_groups", "items")]

    def _get_target_group(self, resource_id, scope):
        return self._target_group(self.client.get_target_group(targetGroupIdentifier=resource_id))

    def _create_target_group(self, name, spec, scope):
        config = {"port": spec["port"], "protocol": spec["protocol"], "vpcIdentifier": spec["vpc_id"]}
        response = self.client.create_target_group(name=name, type=spec["target_type"], config=config)
        return self._target_group(dict(response, config=response.get("config", config),
                                       type=response.get("type", spec["target_type"])))

    def _delete_target_group(self, resource_id, scope):
        self.client.delete_target_group(targetGroupIdentifier=resource_id)

    # Targets

    @staticmethod
    def _target(item, scope) -> ObservedResource:
        name = f"{item['id']}:{item['port']}"
        return ObservedResource(
            ResourceType.TARGET,
            name,
            name,
            status=normalize_target_status(item.get("status")),
            attributes={"ip": item["id"], "port": item["port"], "health": item.get("status")},
            scope=dict(scope),
        )

    def _list_target(self, scope):
        items = paginate(self.client, "list_targets", "items", targetGroupIdentifier=scope["target_group_id"])
        return [self._target(item, scope) for item in items]

    def _get_target(self, resource_id, scope):
        for target in self._list_target(scope):
            if target.resource_id == resource_id:
                return target
        return None

    def _create_target(self, name, spec, scope):
        target = {"id": spec["ip"], "port": spec["port"]}
        response = self.client.register_targets(targetGroupIdentifier=scope["target_group_id"], targets=[target])
        for failure in response.get("unsuccessful", []):
            code = failure.get("failureCode", "")
            message = f"register target {name}: {code}: {failure.get('failureMessage', '')}"
            if code in TRANSIENT_TARGET_FAILURES:
                raise TransientProviderError(message)
            raise OperationError(message, resource_type=ResourceType.TARGET, key=name)
        return ObservedResource(
            ResourceType.TARGET, name, name, status=ResourceStatus.PENDING,
            attributes={"ip": spec["ip"], "port": spec["port"], "health": "INITIAL"}, scope=dict(scope),
        )

    def _delete_target(self, resource_id, scope):
        ip, port = resource_id.rsplit(":", 1)
        self.client.deregister_targets(
            targetGroupIdentifier=scope["target_group_id"],
            targets=[{"id": ip, "port": int(port)}],
        )

    # Services

    @staticmethod
    def _service(item) -> ObservedResource:
        return ObservedResource(
            ResourceType.SERVICE,
            item["name"],
            item["id"],
            status=normalize_status(item.get("status")),
            attributes={
                "auth_type": item.get("authType"),
                "dns_name": item.get("dnsEntry", {}).get("domainName"),
                "arn": item.get("arn"),
            },
        )

    def _list_service(self, scope):
        return [self._service(item) for item in paginate(self.client, "list_services", "items")]

    def _get_service(self, resource_id, scope):
        return self._service(self.client.get_service(serviceIdentifier=resource_id))

    def _create_service(self, name, spec, scope):
        return self._service(self.client.create_service(name=name, authType=spec["auth_type"]))

    def _update_service(self, resource_id, spec, scope):
        self.client.update_service(serviceIdentifier=resource_id, authType=spec["auth_type"])
        return self._get_service(resource_id, scope)

    def _delete_service(self, resource_id, scope):
        self.client.delete_service(serviceIdentifier=resource_id)

    # Service associations

    @staticmethod
    def _service_association(item, scope) -> ObservedResource:
        return ObservedResource(
            ResourceType.SERVICE_ASSOCIATION,
            item.get("serviceName"),
            item["id"],
            status=normalize_status(item.get("status")),
            attributes={"service_id": item.get("serviceId")},
            scope=dict(scope),
        )

    def _list_service_association(self, scope):
        items = paginate(self.client, "list_service_network_service_associations", "items",
                         serviceNetworkIdentifier=scope["service_network_id"])
        return [self._service_association(item, scope) for item in items]

    def _get_service_association(self, resource_id, scope):
        return self._service_association(
            self.client.get_service_network_service_association(
                serviceNetworkServiceAssociationIdentifier=resource_id,
            ),
            scope,
        )

    def _create_service_association(self, name, spec, scope):
        response = self.client.create_service_network_service_association(
            serviceNetworkIdentifier=scope["service_network_id"],
            serviceIdentifier=spec["service_id"],
        )
        return self._service_association(dict(response, serviceName=name, serviceId=spec["service_id"]), scope)

    def _delete_service_association(self, resource_id, scope):
        self.client.delete_service_network_service_association(
            serviceNetworkServiceAssociationIdentifier=resource_id,
        )

    # Listeners

    @staticmethod
    def _listener(item, scope) -> ObservedResource:
        return ObservedResource(
            ResourceType.LISTENER,
            item["name"],
            item["id"],
            attributes={
                "protocol": item.get("protocol"),
                "port": item.get("port"),
                "target_group_id": _forwarded_group(item),
            },
            scope=dict(scope),
        )

    def _list_listener(self, scope):
        items = paginate(self.client, "list_listeners", "items", serviceIdentifier=scope["service_id"])
        return [self._listener(item, scope) for item in items]

    def _get_listener(self, resource_id, scope):
        return self._listener(
            self.client.get_listener(serviceIdentifier=scope["service_id"], listenerIdentifier=resource_id),
            scope,
        )

    def _create_listener(self, name, spec, scope):
        return self._listener(self.client.create_listener(
            serviceIdentifier=scope["service_id"],
            name=name,
            protocol=spec["protocol"],
            port=spec["port"],
            defaultAction=_forward(spec["target_group_id"]),
        ), scope)

    def _update_listener(self, resource_id, spec, scope):
        self.client.update_listener(
            serviceIdentifier=scope["service_id"],
            listenerIdentifier=resource_id,
            defaultAction=_forward(spec["target_group_id"]),
        )
        return self._get_listener(resource_id, scope)

    def _delete_listener(self, resource_id, scope):
        self.client.delete_listener(serviceIdentifier=scope["service_id"], listenerIdentifier=resource_id)
