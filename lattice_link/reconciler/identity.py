# File: lattice_link/reconciler/identity.py
"""
Identity resolution.

Provider APIs do not look resources up by name, so every name is resolved
with a list call scoped to the parent and filtered on exact name equality.
List results are cached per (resource type, scope) for the lifetime of one
resolver, which lives for one apply; the cache is filled lazily under a lock
per resource type so two workers never issue the same list call.
"""

import logging
import threading
import time
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple

from ..errors import AmbiguousResourceError
from ..ledger import Ledger
from ..models import ObservedResource, ResourceStatus, ResourceType
from ..providers.base import ResourceDriver
from .retry import RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)

CacheKey = Tuple[ResourceType, FrozenSet[Tuple[str, str]]]


def _cache_key(kind: ResourceType, scope: Dict[str, str]) -> CacheKey:
    return kind, frozenset((scope or {}).items())


class IdentityResolver:
    def __init__(self, driver: ResourceDriver, policy: RetryPolicy, ledger: Optional[Ledger] = None,
                 graph_name: Optional[str] = None, read_only: bool = False,
                 sleep: Callable[[float], None] = time.sleep):
        self.driver = driver
        self.policy = policy
        self.ledger = ledger
        self.graph_name = graph_name
        self.read_only = read_only
        self.sleep = sleep
        self._cache: Dict[CacheKey, List[ObservedResource]] = {}
        self._locks: Dict[ResourceType, threading.Lock] = {kind: threading.Lock() for kind in ResourceType}
        self.list_calls = 0

    def resolve(self, kind: ResourceType, name: str, scope: Dict[str, str],
                key: Optional[str] = None) -> Optional[str]:
        """Provider id of the resource named ``name`` under ``scope``, or None.

        Raises AmbiguousResourceError when several resources carry the name.
        """
        resource_id = self._from_ledger(kind, name, scope, key)
        if resource_id is not None:
            return resource_id

        with self._locks[kind]:
            listed = self._listing(kind, scope)
            matches = [r for r in listed if r.name == name and r.status != ResourceStatus.DELETED]

        if len(matches) > 1:
            raise AmbiguousResourceError(kind, name, [m.resource_id for m in matches])
        return matches[0].resource_id if matches else None

    def remember(self, observed: ObservedResource, scope: Dict[str, str]) -> None:
        """Record a resource this run created so later lookups see it."""
        with self._locks[observed.resource_type]:
            cached = self._cache.get(_cache_key(observed.resource_type, scope))
            if cached is not None:
                cached[:] = [r for r in cached if r.resource_id != observed.resource_id]
                cached.append(observed)

    def forget(self, kind: ResourceType, resource_id: str, scope: Dict[str, str]) -> None:
        with self._locks[kind]:
            cached = self._cache.get(_cache_key(kind, scope))
            if cached is not None:
                cached[:] = [r for r in cached if r.resource_id != resource_id]

    def listing(self, kind: ResourceType, scope: Dict[str, str]) -> List[ObservedResource]:
        """Every resource of ``kind`` under ``scope``, from the cache when possible."""
        with self._locks[kind]:
            return list(self._listing(kind, scope))

    def _listing(self, kind: ResourceType, scope: Dict[str, str]) -> List[ObservedResource]:
        cache_key = _cache_key(kind, scope)
        if cache_key not in self._cache:
            self.list_calls += 1
            self._cache[cache_key] = list(call_with_retry(
                lambda: self.driver.list_resources(kind, scope),
                self.policy,
                description=f"list {kind.value}",
                sleep=self.sleep,
            ))
        return self._cache[cache_key]

    def _from_ledger(self, kind, name, scope, key) -> Optional[str]:
        if self.ledger is None or self.graph_name is None or key is None:
            return None
        record = self.ledger.lookup(self.graph_name, kind, key)
        if record is None or record.scope != dict(scope or {}):
            return None

        observed = call_with_retry(
            lambda: self.driver.get_resource(kind, record.resource_id, scope),
            self.policy,
            description=f"get {kind.value} {record.resource_id}",
            sleep=self.sleep,
        )
        if observed is not None and observed.name == name and observed.status != ResourceStatus.DELETED:
            return record.resource_id

        logger.info(f"Ledger entry for {kind.value}:{key} ({record.resource_id}) is stale")
        if not self.read_only:
            self.ledger.forget(self.graph_name, kind, key)
        return None
