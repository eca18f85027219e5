# File: lattice_link/reconciler/rollback.py
"""
Rollback coordinator.

Undoes the resources one apply created, newest first. Each delete gets the
usual bounded retry and is read back until the resource is gone, so a
parent is never deleted while its child is still being torn down. A delete
that still fails is recorded and the walk continues.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..errors import LatticeLinkError, RollbackError
from ..ledger import Ledger
from ..metrics import METRICS
from ..models import ResourceType
from ..providers.base import ResourceDriver
from .retry import RetryPolicy, call_with_retry, wait_until_deleted

logger = logging.getLogger(__name__)


@dataclass
class CreatedResource:
    """A resource created during the current apply."""

    resource_type: ResourceType
    key: str
    resource_id: str
    scope: Dict[str, str] = field(default_factory=dict)

    @property
    def label(self) -> str:
        return f"{self.resource_type.value}:{self.key}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resource_type": self.resource_type.value,
            "key": self.key,
            "resource_id": self.resource_id,
            "scope": dict(self.scope),
        }


@dataclass
class RollbackReport:
    rolled_back: List[CreatedResource] = field(default_factory=list)
    failed: List[RollbackError] = field(default_factory=list)
    audit: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failed

    @property
    def requires_manual_cleanup(self) -> List[Dict[str, Any]]:
        return [
            {
                "resource_type": error.resource_type.value if error.resource_type else None,
                "key": error.key,
                "resource_id": error.resource_id,
                "error": str(error),
            }
            for error in self.failed
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "complete": self.complete,
            "rolled_back": [r.to_dict() for r in self.rolled_back],
            "requires_manual_cleanup": self.requires_manual_cleanup,
            "audit": list(self.audit),
        }


class RollbackCoordinator:
    def __init__(self, driver: ResourceDriver, policy: RetryPolicy, ledger: Optional[Ledger] = None,
                 graph_name: Optional[str] = None, sleep: Callable[[float], None] = time.sleep,
                 confirm_attempts: int = 10):
        self.driver = driver
        self.policy = policy
        self.ledger = ledger
        self.graph_name = graph_name
        self.sleep = sleep
        self.confirm_attempts = confirm_attempts
        self.audit_log: List[Dict[str, Any]] = []

    def rollback(self, created_so_far: List[CreatedResource]) -> RollbackReport:
        report = RollbackReport()
        logger.warning(f"Rolling back {len(created_so_far)} resources created by this run")

        for created in reversed(created_so_far):
            try:
                call_with_retry(
                    lambda: self.driver.delete_resource(created.resource_type, created.resource_id, created.scope),
                    self.policy,
                    description=f"rollback delete {created.label}",
                    sleep=self.sleep,
                )
                wait_until_deleted(
                    lambda: self.driver.get_resource(created.resource_type, created.resource_id, created.scope),
                    self.policy,
                    self.confirm_attempts,
                    description=f"confirm rollback delete {created.label}",
                    sleep=self.sleep,
                )
            except LatticeLinkError as e:
                error = RollbackError(
                    f"Could not delete {created.label} ({created.resource_id}): {e}",
                    resource_type=created.resource_type,
                    key=created.key,
                    resource_id=created.resource_id,
                )
                logger.error(f"{error}; delete it manually")
                report.failed.append(error)
                self._audit(report, "rollback_failed", created, str(e))
                METRICS["rollbacks"].labels(outcome="failed").inc()
                continue

            if self.ledger is not None and self.graph_name is not None:
                self.ledger.forget(self.graph_name, created.resource_type, created.key)
            report.rolled_back.append(created)
            self._audit(report, "rolled_back", created)
            METRICS["rollbacks"].labels(outcome="rolled_back").inc()

        if report.complete:
            logger.info(f"Rollback complete: {len(report.rolled_back)} resources deleted")
        else:
            logger.error(
                f"Rollback incomplete: {len(report.failed)} resources need manual cleanup"
            )
        return report

    def _audit(self, report: RollbackReport, event: str, created: CreatedResource,
               error: Optional[str] = None) -> None:
        entry = {
            "timestamp": datetime.utcnow().isoformat(),
            "event": event,
            "resource_type": created.resource_type.value,
            "key": created.key,
            "resource_id": created.resource_id,
        }
        if error:
            entry["error"] = error
        report.audit.append(entry)
        self.audit_log.append(entry)
