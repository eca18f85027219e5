# File: lattice_link/providers/base.py
"""
Provider driver interface.

A driver translates the five generic operations (list, get, create, update,
delete) into provider API calls for the resource types it handles. Drivers
raise TransientProviderError for retryable failures and OperationError for
permanent rejections; they never retry on their own.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

from ..errors import NotFoundError, OperationError
from ..models import ObservedResource, ResourceType


class ResourceDriver(ABC):
    kinds: FrozenSet[ResourceType] = frozenset()

    @abstractmethod
    def list_resources(self, kind: ResourceType, scope: Dict[str, str]) -> List[ObservedResource]:
        """Every resource of ``kind`` under ``scope``."""

    @abstractmethod
    def get_resource(self, kind: ResourceType, resource_id: str,
                     scope: Dict[str, str]) -> Optional[ObservedResource]:
        """Full observed state of one resource, or None when it does not exist."""

    @abstractmethod
    def create_resource(self, kind: ResourceType, name: str, spec: Dict[str, Any],
                        scope: Dict[str, str]) -> ObservedResource:
        pass

    @abstractmethod
    def update_resource(self, kind: ResourceType, resource_id: str, spec: Dict[str, Any],
                        scope: Dict[str, str]) -> ObservedResource:
        pass

    @abstractmethod
    def delete_resource(self, kind: ResourceType, resource_id: str, scope: Dict[str, str]) -> None:
        """Delete one resource. Deleting an absent resource is not an error."""

    def lookup_prefix_list(self, name: str) -> str:
        raise NotFoundError(f"Prefix list lookup is not supported by {type(self).__name__}")


class CompositeDriver(ResourceDriver):
    """Routes each resource type to the driver that handles it."""

    def __init__(self, drivers: Iterable[ResourceDriver], prefix_list_driver: Optional[ResourceDriver] = None):
        self.drivers = list(drivers)
        self._routes: Dict[ResourceType, ResourceDriver] = {}
        for driver in self.drivers:
            for kind in driver.kinds:
                self._routes.setdefault(kind, driver)
        self.kinds = frozenset(self._routes)
        self._prefix_list_driver = prefix_list_driver or self._routes.get(ResourceType.SECURITY_GROUP_RULE)

    def driver_for(self, kind: ResourceType) -> ResourceDriver:
        try:
            return self._routes[kind]
        except KeyError:
            raise OperationError(f"No driver is configured for {kind.value} resources", resource_type=kind)

    def list_resources(self, kind, scope):
        return self.driver_for(kind).list_resources(kind, scope)

    def get_resource(self, kind, resource_id, scope):
        return self.driver_for(kind).get_resource(kind, resource_id, scope)

    def create_resource(self, kind, name, spec, scope):
        return self.driver_for(kind).create_resource(kind, name, spec, scope)

    def update_resource(self, kind, resource_id, spec, scope):
        return self.driver_for(kind).update_resource(kind, resource_id, spec, scope)

    def delete_resource(self, kind, resource_id, scope):
        return self.driver_for(kind).delete_resource(kind, resource_id, scope)

    def lookup_prefix_list(self, name):
        if self._prefix_list_driver is None:
            return super().lookup_prefix_list(name)
        return self._prefix_list_driver.lookup_prefix_list(name)
