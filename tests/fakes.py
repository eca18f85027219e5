"""In-memory ResourceDriver used by the reconciler, CLI and API tests."""

import itertools
import threading
from dataclasses import replace
from typing import Callable, Dict, List, Optional, Tuple

from lattice_link.errors import NotFoundError, OperationError, TransientProviderError
from lattice_link.models import ObservedResource, ResourceStatus, ResourceType
from lattice_link.providers.base import ResourceDriver

WRITE_OPERATIONS = ("create", "update", "delete")

ID_PREFIX = {
    ResourceType.SERVICE_NETWORK: "sn",
    ResourceType.VPC_ASSOCIATION: "snva",
    ResourceType.TARGET_GROUP: "tg",
    ResourceType.SERVICE: "svc",
    ResourceType.SERVICE_ASSOCIATION: "snsa",
    ResourceType.LISTENER: "listener",
    ResourceType.SECURITY_GROUP_RULE: "sgr",
}


class FakeDriver(ResourceDriver):
    """Stores resources in memory and records every call.

    Failures are injected per (operation, resource type, name or id); a name
    of None matches every resource of the type.

    Like the provider, a target group still forwarded to by a listener cannot
    be deleted. Kinds in ``pending_deletes`` stay visible as deleting for that
    many reads after their delete.
    """

    kinds = frozenset(ResourceType)

    def __init__(self):
        self.store: Dict[ResourceType, List[ObservedResource]] = {kind: [] for kind in ResourceType}
        self.calls: List[Tuple[str, ResourceType, str]] = []
        self.failures: Dict[Tuple[str, ResourceType, Optional[str]], Exception] = {}
        self.transient: Dict[Tuple[str, ResourceType, Optional[str]], int] = {}
        self.pending_reads: Dict[ResourceType, int] = {}
        self.pending_deletes: Dict[ResourceType, int] = {}
        self.initial_status: Dict[ResourceType, str] = {}
        self.prefix_lists: Dict[str, str] = {}
        self.after_write: Optional[Callable[[str, ResourceType, str], None]] = None
        self._pending: Dict[str, int] = {}
        self._vanishing: Dict[str, int] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    # test helpers

    @property
    def writes(self) -> List[Tuple[str, ResourceType, str]]:
        return [call for call in self.calls if call[0] in WRITE_OPERATIONS]

    def calls_for(self, kind: ResourceType) -> List[Tuple[str, ResourceType, str]]:
        return [call for call in self.calls if call[1] == kind]

    def fail_on(self, operation: str, kind: ResourceType, name: Optional[str] = None,
                error: Optional[Exception] = None, transient_times: int = 0) -> None:
        if transient_times:
            self.transient[(operation, kind, name)] = transient_times
        else:
            self.failures[(operation, kind, name)] = error or OperationError(f"{operation} {kind.value} rejected")

    def find(self, kind: ResourceType, name: str) -> Optional[ObservedResource]:
        for resource in self.store[kind]:
            if resource.name == name:
                return resource
        return None

    def seed(self, kind: ResourceType, name: str, attributes=None, scope=None,
             status: str = ResourceStatus.ACTIVE, resource_id: Optional[str] = None) -> ObservedResource:
        resource = ObservedResource(
            kind, name, resource_id or self._new_id(kind, name, scope or {}),
            status=status, attributes=dict(attributes or {}), scope=dict(scope or {}),
        )
        self.store[kind].append(resource)
        return resource

    # driver interface

    def list_resources(self, kind, scope):
        self._record("list", kind, ",".join(f"{k}={v}" for k, v in sorted(scope.items())))
        return [self._copy(r) for r in self.store[kind] if not scope or r.scope == scope]

    def get_resource(self, kind, resource_id, scope):
        self._record("get", kind, resource_id)
        resource = self._lookup(kind, resource_id, scope)
        if resource is None:
            return None
        with self._lock:
            reads_left = self._vanishing.get(resource.resource_id)
            if reads_left is not None:
                if reads_left <= 1:
                    del self._vanishing[resource.resource_id]
                    self.store[kind].remove(resource)
                    return None
                self._vanishing[resource.resource_id] = reads_left - 1
            remaining = self._pending.get(resource.resource_id, 0)
            if remaining:
                self._pending[resource.resource_id] = remaining - 1
                if remaining == 1:
                    resource.status = ResourceStatus.ACTIVE
        return self._copy(resource)

    def create_resource(self, kind, name, spec, scope):
        self._write("create", kind, name)
        attributes = dict(spec)
        if kind == ResourceType.SERVICE:
            attributes["dns_name"] = f"{name}-0123456789abcdef.7d67968.vpc-lattice-svcs.us-west-2.on.aws"
        if kind == ResourceType.TARGET:
            attributes["health"] = "HEALTHY"
        status = self.initial_status.get(kind, ResourceStatus.ACTIVE)
        resource = ObservedResource(kind, name, self._new_id(kind, name, scope), status=status,
                                    attributes=attributes, scope=dict(scope))
        if self.pending_reads.get(kind):
            resource.status = ResourceStatus.PENDING
            self._pending[resource.resource_id] = self.pending_reads[kind]
        with self._lock:
            self.store[kind].append(resource)
        self._after("create", kind, name)
        return self._copy(resource)

    def update_resource(self, kind, resource_id, spec, scope):
        self._write("update", kind, resource_id)
        resource = self._lookup(kind, resource_id, scope)
        if resource is None:
            raise NotFoundError(f"{kind.value} {resource_id} not found")
        resource.attributes.update(spec)
        self._after("update", kind, resource_id)
        return self._copy(resource)

    def delete_resource(self, kind, resource_id, scope):
        self._write("delete", kind, resource_id)
        if kind == ResourceType.TARGET_GROUP and any(
            listener.attributes.get("target_group_id") == resource_id for listener in self.store[ResourceType.LISTENER]
        ):
            raise TransientProviderError(f"delete {kind.value} {resource_id}: ConflictException: target group in use")
        if self.pending_deletes.get(kind):
            resource = self._lookup(kind, resource_id, scope)
            if resource is not None:
                with self._lock:
                    resource.status = ResourceStatus.DELETED
                    self._vanishing[resource.resource_id] = self.pending_deletes[kind]
                self._after("delete", kind, resource_id)
                return
        with self._lock:
            self.store[kind] = [
                r for r in self.store[kind]
                if not (r.resource_id == resource_id and (not scope or r.scope == scope))
            ]
        self._after("delete", kind, resource_id)

    def lookup_prefix_list(self, name):
        self._record("lookup", ResourceType.SECURITY_GROUP_RULE, name)
        if name not in self.prefix_lists:
            raise NotFoundError(f"Managed prefix list '{name}' does not exist in this region")
        return self.prefix_lists[name]

    # internals

    def _record(self, operation, kind, name):
        with self._lock:
            self.calls.append((operation, kind, name))

    def _write(self, operation, kind, name):
        self._record(operation, kind, name)
        for key in ((operation, kind, name), (operation, kind, None)):
            with self._lock:
                remaining = self.transient.get(key, 0)
                if remaining:
                    self.transient[key] = remaining - 1
            if remaining:
                raise TransientProviderError(f"{operation} {kind.value} {name}: ThrottlingException")
            if key in self.failures:
                raise self.failures[key]

    def _after(self, operation, kind, name):
        if self.after_write is not None:
            self.after_write(operation, kind, name)

    def _lookup(self, kind, resource_id, scope):
        for resource in self.store[kind]:
            if resource.resource_id == resource_id and (not scope or not resource.scope or resource.scope == scope):
                return resource
        return None

    def _new_id(self, kind, name, scope):
        if kind == ResourceType.TARGET:
            return name
        if kind in (ResourceType.CLUSTER_GATEWAY, ResourceType.DNS_ALIAS):
            return f"{scope.get('namespace', 'default')}/{name}"
        with self._lock:
            return f"{ID_PREFIX[kind]}-{next(self._ids):04d}"

    @staticmethod
    def _copy(resource: ObservedResource) -> ObservedResource:
        return replace(resource, attributes=dict(resource.attributes), scope=dict(resource.scope))
