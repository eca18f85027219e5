from .identity import IdentityResolver
from .ordering import CREATION_ORDER, DELETION_ORDER, creation_waves, deletion_waves, kind_order, topo_sort
from .reconciler import (
    ActionType,
    EntityReport,
    EntityStatus,
    ReconciliationAction,
    ReconciliationEngine,
    ReconciliationResult,
)
from .retry import RetryPolicy, call_with_retry
from .rollback import CreatedResource, RollbackCoordinator, RollbackReport

__all__ = [
    "ActionType",
    "CREATION_ORDER",
    "CreatedResource",
    "DELETION_ORDER",
    "EntityReport",
    "EntityStatus",
    "IdentityResolver",
    "ReconciliationAction",
    "ReconciliationEngine",
    "ReconciliationResult",
    "RetryPolicy",
    "RollbackCoordinator",
    "RollbackReport",
    "call_with_retry",
    "creation_waves",
    "deletion_waves",
    "kind_order",
    "topo_sort",
]
