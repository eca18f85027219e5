# File: lattice_link/reconciler/reconciler.py
"""
Reconciliation Engine

Converges the provider-side connectivity graph onto a declared desired state.

Implements:
- Per-wave diff computation against observed state
- Corrective actions (create, update in place, recreate, delete)
- Retry with exponential backoff for transient provider errors
- Read-back confirmation of every write
- Automatic rollback of resources created by a failed run
- Prune of undeclared resources, dry-run planning, destroy and status
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from ..config import Settings
from ..desired_state import graph_to_document
from ..errors import LatticeLinkError, NotFoundError, OperationError, ValidationError
from ..ledger import Ledger
from ..metrics import METRICS
from ..models import (
    ConnectivityGraph,
    Entity,
    ObservedResource,
    ResourceStatus,
    ResourceType,
    SecurityGroupRule,
)
from ..providers.base import ResourceDriver
from ..validation import validate_graph
from .identity import IdentityResolver
from .ordering import DELETION_ORDER, creation_waves, deletion_waves
from .retry import RetryPolicy, call_with_retry, wait_until_deleted
from .rollback import CreatedResource, RollbackCoordinator, RollbackReport

logger = logging.getLogger(__name__)

EntityKey = Tuple[ResourceType, str]


class ActionType(Enum):
    CREATE = "create"
    UPDATE = "update"
    RECREATE = "recreate"
    DELETE = "delete"
    NOOP = "noop"


class EntityStatus(Enum):
    CREATED = "created"
    UPDATED = "updated"
    RECREATED = "recreated"
    UNCHANGED = "unchanged"
    DELETED = "deleted"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"
    ROLLBACK_FAILED = "rollback_failed"
    SKIPPED = "skipped"
    PLANNED = "planned"
    ABSENT = "absent"
    IN_SYNC = "in_sync"
    DRIFTED = "drifted"
    MISSING = "missing"


_APPLIED_STATUS = {
    ActionType.CREATE: EntityStatus.CREATED,
    ActionType.UPDATE: EntityStatus.UPDATED,
    ActionType.RECREATE: EntityStatus.RECREATED,
    ActionType.NOOP: EntityStatus.UNCHANGED,
    ActionType.DELETE: EntityStatus.DELETED,
}


@dataclass
class ReconciliationAction:
    """Represents a single corrective action."""

    action_type: ActionType
    resource_type: ResourceType
    key: str
    target_state: Dict[str, Any]
    current_state: Optional[Dict[str, Any]] = None
    resource_id: Optional[str] = None
    changed_fields: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action_type": self.action_type.value,
            "resource_type": self.resource_type.value,
            "key": self.key,
            "resource_id": self.resource_id,
            "changed_fields": list(self.changed_fields),
        }


@dataclass
class EntityReport:
    resource_type: ResourceType
    key: str
    status: EntityStatus
    resource_id: Optional[str] = None
    action: Optional[ActionType] = None
    error: Optional[str] = None
    detail: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "resource_type": self.resource_type.value,
            "key": self.key,
            "status": self.status.value,
            "resource_id": self.resource_id,
        }
        if self.action is not None:
            data["action"] = self.action.value
        if self.error:
            data["error"] = self.error
        if self.detail:
            data["detail"] = dict(self.detail)
        return data


@dataclass
class ReconciliationResult:
    """Result of one apply, destroy or status run."""

    operation: str
    graph_name: str
    success: bool = True
    entities: List[EntityReport] = field(default_factory=list)
    actions_taken: List[ReconciliationAction] = field(default_factory=list)
    errors: List[LatticeLinkError] = field(default_factory=list)
    created_so_far: List[CreatedResource] = field(default_factory=list)
    rollback: Optional[RollbackReport] = None
    observed: Optional[ConnectivityGraph] = None
    failed_phase: Optional[str] = None
    write_calls: int = 0
    cancelled: bool = False
    dry_run: bool = False
    duration_ms: float = 0

    def report_for(self, resource_type: ResourceType, key: str) -> Optional[EntityReport]:
        for report in self.entities:
            if report.resource_type == resource_type and report.key == key:
                return report
        return None

    def counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for report in self.entities:
            counts[report.status.value] = counts.get(report.status.value, 0) + 1
        return counts

    @property
    def exit_code(self) -> int:
        """0 success, 1 failure with nothing left behind, 2 manual cleanup needed."""
        if self.success:
            return 0
        if self.operation == "status":
            return 1
        if self.failed_phase == "destroy":
            return 2
        if self.rollback is not None:
            return 1 if self.rollback.complete else 2
        if self.failed_phase == "prune":
            return 1
        return 2 if self.created_so_far else 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "graph": self.graph_name,
            "success": self.success,
            "dry_run": self.dry_run,
            "cancelled": self.cancelled,
            "exit_code": self.exit_code,
            "counts": self.counts(),
            "entities": [report.to_dict() for report in self.entities],
            "actions_taken": [action.to_dict() for action in self.actions_taken],
            "errors": [str(error) for error in self.errors],
            "created_so_far": [created.to_dict() for created in self.created_so_far],
            "rollback": self.rollback.to_dict() if self.rollback else None,
            "observed": graph_to_document(self.observed) if self.observed else None,
            "write_calls": self.write_calls,
            "duration_ms": round(self.duration_ms, 2),
        }


class _Run:
    """Mutable bookkeeping for one engine invocation."""

    def __init__(self, engine: "ReconciliationEngine", desired: ConnectivityGraph, operation: str,
                 dry_run: bool, cancel_event: Optional[threading.Event]):
        self.desired = desired
        self.dry_run = dry_run
        self.cancel_event = cancel_event
        self.lock = threading.Lock()
        self.observed: Dict[EntityKey, ObservedResource] = {}
        self.planned: Set[EntityKey] = set()
        # listeners deleted so a target group they forward to could be recreated
        self.displaced: Set[EntityKey] = set()
        self.reports: Dict[EntityKey, EntityReport] = {}
        self.result = ReconciliationResult(operation=operation, graph_name=desired.name, dry_run=dry_run)
        self.resolver = IdentityResolver(
            engine.driver,
            engine.policy,
            ledger=engine.ledger,
            graph_name=desired.name,
            read_only=dry_run or operation == "status",
            sleep=engine.sleep,
        )

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def report(self, entity_report: EntityReport) -> EntityReport:
        with self.lock:
            self.reports[(entity_report.resource_type, entity_report.key)] = entity_report
        return entity_report

    def fail(self, entity: Entity, error: LatticeLinkError) -> EntityReport:
        with self.lock:
            self.result.errors.append(error)
        return self.report(EntityReport(entity.resource_type, entity.key, EntityStatus.FAILED, error=str(error)))

    def observe(self, entity: Entity, observed: ObservedResource) -> None:
        with self.lock:
            self.observed[(entity.resource_type, entity.key)] = observed


class ReconciliationEngine:
    """
    Main reconciliation engine.

    Entities are processed wave by wave in dependency order. Entities of one
    wave run concurrently on a bounded thread pool; a failure lets its
    siblings finish but stops every later wave.
    """

    def __init__(self, driver: ResourceDriver, settings: Optional[Settings] = None,
                 ledger: Optional[Ledger] = None, sleep: Callable[[float], None] = time.sleep):
        self.driver = driver
        self.settings = settings or Settings()
        self.ledger = ledger
        self.sleep = sleep
        self.policy = RetryPolicy.from_settings(self.settings)

    # ------------------------------------------------------------------ apply

    def apply(self, desired: ConnectivityGraph, prune: bool = False, dry_run: bool = False,
              cancel_event: Optional[threading.Event] = None) -> ReconciliationResult:
        """
        Converge the provider onto ``desired``.

        Steps:
        1. Validate the desired state (no provider call on failure)
        2. For each wave: resolve, diff, execute, confirm
        3. Stop later waves on the first failed wave and roll back
        4. Optionally prune undeclared resources
        """
        start_time = time.time()
        self._validate(desired)
        run = _Run(self, desired, "apply", dry_run, cancel_event)
        mode = " (dry run)" if dry_run else ""
        logger.info(f"Applying connectivity graph '{desired.name}'{mode}")

        waves = creation_waves(desired)
        halted = False
        for kind, entities in waves:
            if halted or run.cancelled:
                self._skip(run, entities)
                continue
            self._run_wave(run, entities, lambda entity: self._reconcile_entity(run, entity))
            if any(run.reports[(e.resource_type, e.key)].status == EntityStatus.FAILED for e in entities):
                logger.error(f"Wave {kind.value} failed; later waves will not run")
                halted = True
                run.result.failed_phase = "converge"

        result = run.result
        result.cancelled = run.cancelled and any(
            report.status == EntityStatus.SKIPPED for report in run.reports.values()
        )
        if result.cancelled:
            logger.warning(
                f"Apply cancelled; {len(result.created_so_far)} resources created so far are left in place"
            )
        elif halted and not dry_run and result.created_so_far:
            if self.settings.rollback_on_failure:
                self._rollback(run)
            else:
                logger.warning(
                    f"Rollback disabled; {len(result.created_so_far)} created resources are left in place"
                )
        elif not halted and prune:
            self._prune(run)

        result.success = not result.cancelled and result.failed_phase is None
        result.observed = desired.with_observed(run.observed)
        return self._finish(run, [e for _, entities in waves for e in entities], start_time)

    def _reconcile_entity(self, run: _Run, entity: Entity) -> EntityReport:
        if run.cancelled:
            return self.report_skipped(run, entity)
        try:
            refs, parent_planned = self._resolve_refs(run, entity)
            entity = self._resolve_prefix_list(run, entity)
            scope = entity.scope(refs)
            spec = entity.spec(refs)

            if parent_planned:
                with run.lock:
                    run.planned.add((entity.resource_type, entity.key))
                return run.report(EntityReport(
                    entity.resource_type, entity.key, EntityStatus.PLANNED, action=ActionType.CREATE,
                ))

            current = self._observe(run, entity, scope)
            action = self._compute_diff(entity, spec, current)

            if run.dry_run:
                if action.action_type in (ActionType.CREATE, ActionType.RECREATE):
                    with run.lock:
                        run.planned.add((entity.resource_type, entity.key))
                else:
                    run.observe(entity, current)
                return run.report(EntityReport(
                    entity.resource_type, entity.key, EntityStatus.PLANNED,
                    resource_id=action.resource_id, action=action.action_type,
                    detail={"changed_fields": action.changed_fields} if action.changed_fields else {},
                ))

            observed = self._execute_action(run, entity, action, scope, spec, current)
            run.observe(entity, observed)
            if self.ledger is not None:
                self.ledger.record(run.desired.name, entity.resource_type, entity.key,
                                   observed.resource_id, scope, observed.status)
            status = _APPLIED_STATUS[action.action_type]
            if action.action_type == ActionType.CREATE and (entity.resource_type, entity.key) in run.displaced:
                status = EntityStatus.RECREATED
            return run.report(EntityReport(
                entity.resource_type, entity.key, status,
                resource_id=observed.resource_id, action=action.action_type,
                detail=self._detail(entity, observed),
            ))
        except LatticeLinkError as e:
            logger.error(f"{entity.label}: {e}")
            return run.fail(entity, e)
        except Exception as e:
            return run.fail(entity, self._unexpected(entity, e))

    def _compute_diff(self, entity: Entity, spec: Dict[str, Any],
                      current: Optional[ObservedResource]) -> ReconciliationAction:
        """Compare the desired attributes with what the provider reports."""
        if current is None:
            return ReconciliationAction(ActionType.CREATE, entity.resource_type, entity.key, spec)

        current_state = dict(current.attributes)
        if current.status == ResourceStatus.FAILED:
            return ReconciliationAction(
                ActionType.RECREATE, entity.resource_type, entity.key, spec,
                current_state=current_state, resource_id=current.resource_id, changed_fields=["status"],
            )

        changed = [
            name for name, value in spec.items()
            if _normalize(current_state.get(name)) != _normalize(value)
        ]
        if not changed:
            action_type = ActionType.NOOP
        elif any(name in entity.immutable_fields for name in changed):
            action_type = ActionType.RECREATE
        else:
            action_type = ActionType.UPDATE
        return ReconciliationAction(
            action_type, entity.resource_type, entity.key, spec,
            current_state=current_state, resource_id=current.resource_id, changed_fields=changed,
        )

    def _execute_action(self, run: _Run, entity: Entity, action: ReconciliationAction,
                        scope: Dict[str, str], spec: Dict[str, Any],
                        current: Optional[ObservedResource]) -> ObservedResource:
        kind = entity.resource_type
        if action.action_type == ActionType.NOOP:
            return self._confirm(run, entity, current, scope)

        if action.action_type == ActionType.UPDATE:
            logger.info(f"Updating {entity.label} ({', '.join(action.changed_fields)})")
            updated = self._write(run, f"update {entity.label}", lambda: self.driver.update_resource(
                kind, current.resource_id, spec, scope,
            ))
            self._record_action(run, action)
            return self._confirm(run, entity, updated, scope)

        if action.action_type == ActionType.RECREATE:
            logger.info(f"Recreating {entity.label} ({', '.join(action.changed_fields)} changed)")
            if kind == ResourceType.TARGET_GROUP:
                self._release_listeners(run, entity)
            self._delete_and_wait(run, entity.label, kind, current.resource_id, scope)
            run.resolver.forget(kind, current.resource_id, scope)

        if action.action_type in (ActionType.CREATE, ActionType.RECREATE):
            logger.info(f"Creating {entity.label}")
            created = self._write(run, f"create {entity.label}", lambda: self.driver.create_resource(
                kind, entity.name, spec, scope,
            ))
            with run.lock:
                run.result.created_so_far.append(CreatedResource(kind, entity.key, created.resource_id, dict(scope)))
            run.resolver.remember(created, scope)
            self._record_action(run, action)
            return self._confirm(run, entity, created, scope)

        raise OperationError(f"Unsupported action {action.action_type.value} for {entity.label}")

    def _release_listeners(self, run: _Run, group: Entity) -> None:
        """Delete the declared listeners forwarding to ``group`` so it can be deleted.

        The listener wave runs later and creates them again against the new
        target group.
        """
        for service in run.desired.services:
            listeners = [listener for listener in service.listeners if listener.target_group == group.name]
            if not listeners:
                continue
            service_id = run.resolver.resolve(ResourceType.SERVICE, service.name, {}, key=service.key)
            if service_id is None:
                continue
            scope = {"service_id": service_id}
            for listener in listeners:
                listener_id = run.resolver.resolve(ResourceType.LISTENER, listener.name, scope, key=listener.key)
                if listener_id is None:
                    continue
                logger.info(f"Deleting {listener.label} ({listener_id}) so {group.label} can be recreated")
                self._delete_and_wait(run, listener.label, ResourceType.LISTENER, listener_id, scope)
                run.resolver.forget(ResourceType.LISTENER, listener_id, scope)
                if self.ledger is not None:
                    self.ledger.forget(run.desired.name, ResourceType.LISTENER, listener.key)
                self._record_action(run, ReconciliationAction(
                    ActionType.DELETE, ResourceType.LISTENER, listener.key, {}, resource_id=listener_id,
                ))
                with run.lock:
                    run.displaced.add((ResourceType.LISTENER, listener.key))

    def _delete_and_wait(self, run: _Run, label: str, kind: ResourceType, resource_id: str,
                         scope: Dict[str, str]) -> None:
        self._write(run, f"delete {label}", lambda: self.driver.delete_resource(kind, resource_id, scope))
        wait_until_deleted(
            lambda: self.driver.get_resource(kind, resource_id, scope),
            self.policy,
            self.settings.confirm_max_attempts,
            description=f"confirm delete {label}",
            sleep=self.sleep,
        )

    def _confirm(self, run: _Run, entity: Entity, observed: ObservedResource,
                 scope: Dict[str, str]) -> ObservedResource:
        """Read the resource back until the provider reports it ACTIVE."""
        attempts = self.settings.confirm_max_attempts
        attempt = 0
        while observed.status != ResourceStatus.ACTIVE:
            if observed.status == ResourceStatus.FAILED:
                raise OperationError(
                    f"{entity.label} entered FAILED state",
                    resource_type=entity.resource_type, key=entity.key,
                )
            attempt += 1
            if attempt > attempts:
                raise OperationError(
                    f"{entity.label} did not become ACTIVE after {attempts} checks",
                    resource_type=entity.resource_type, key=entity.key,
                )
            self.sleep(self.policy.delay(attempt))
            resource_id = observed.resource_id
            observed = call_with_retry(
                lambda: self.driver.get_resource(entity.resource_type, resource_id, scope),
                self.policy,
                description=f"get {entity.label}",
                sleep=self.sleep,
            ) or ObservedResource(entity.resource_type, entity.name, resource_id, status=ResourceStatus.PENDING)
        return observed

    # ------------------------------------------------------------- rollback

    def _rollback(self, run: _Run) -> None:
        result = run.result
        coordinator = RollbackCoordinator(
            self.driver, self.policy, ledger=self.ledger, graph_name=run.desired.name, sleep=self.sleep,
            confirm_attempts=self.settings.confirm_max_attempts,
        )
        result.rollback = coordinator.rollback(result.created_so_far)
        for created in result.rollback.rolled_back:
            report = run.reports.get((created.resource_type, created.key))
            if report is not None:
                report.status = EntityStatus.ROLLED_BACK
            run.observed.pop((created.resource_type, created.key), None)
        for error in result.rollback.failed:
            report = run.reports.get((error.resource_type, error.key))
            if report is not None:
                report.status = EntityStatus.ROLLBACK_FAILED
                report.error = str(error)
            result.errors.append(error)

    # ---------------------------------------------------------------- prune

    def _prune(self, run: _Run) -> None:
        """Delete resources under declared parents, or in the ledger, that are no longer declared."""
        desired = run.desired
        declared = set(desired.entity_keys())
        candidates: Dict[EntityKey, CreatedResource] = {}

        def consider(kind, key, resource_id, scope):
            if (kind, key) not in declared and (kind, key) not in candidates:
                candidates[(kind, key)] = CreatedResource(kind, key, resource_id, dict(scope))

        try:
            children = [(ResourceType.VPC_ASSOCIATION, desired.service_network, "service_network_id"),
                        (ResourceType.SERVICE_ASSOCIATION, desired.service_network, "service_network_id")]
            children += [(ResourceType.TARGET, group, "target_group_id") for group in desired.target_groups]
            children += [(ResourceType.LISTENER, service, "service_id") for service in desired.services]
            for kind, parent, scope_field in children:
                parent_observed = run.observed.get((parent.resource_type, parent.key))
                if parent_observed is None:
                    continue
                scope = {scope_field: parent_observed.resource_id}
                for found in run.resolver.listing(kind, scope):
                    consider(kind, f"{parent.name}/{found.name}", found.resource_id, scope)

            if self.ledger is not None:
                for record in self.ledger.entries(desired.name):
                    consider(record.resource_type, record.key, record.resource_id, record.scope)
        except LatticeLinkError as e:
            logger.error(f"Prune discovery failed: {e}")
            run.result.errors.append(e)
            run.result.failed_phase = "prune"
            return

        rank = {kind: index for index, kind in enumerate(DELETION_ORDER)}
        for (kind, key), stale in sorted(candidates.items(), key=lambda item: rank[item[0][0]]):
            action = ReconciliationAction(ActionType.DELETE, kind, key, {}, resource_id=stale.resource_id)
            if run.dry_run:
                run.report(EntityReport(kind, key, EntityStatus.PLANNED,
                                        resource_id=stale.resource_id, action=ActionType.DELETE))
                continue
            try:
                logger.info(f"Pruning {kind.value}:{key} ({stale.resource_id})")
                self._delete_and_wait(run, f"{kind.value}:{key}", kind, stale.resource_id, stale.scope)
            except LatticeLinkError as e:
                logger.error(f"Prune of {kind.value}:{key} failed: {e}")
                run.result.errors.append(e)
                run.result.failed_phase = "prune"
                run.report(EntityReport(kind, key, EntityStatus.FAILED,
                                        resource_id=stale.resource_id, action=ActionType.DELETE, error=str(e)))
                continue
            self._record_action(run, action)
            if self.ledger is not None:
                self.ledger.forget(desired.name, kind, key)
            run.report(EntityReport(kind, key, EntityStatus.DELETED,
                                    resource_id=stale.resource_id, action=ActionType.DELETE))

    # -------------------------------------------------------------- destroy

    def destroy(self, desired: ConnectivityGraph, dry_run: bool = False,
                cancel_event: Optional[threading.Event] = None) -> ReconciliationResult:
        """Delete every declared resource that exists, children first."""
        start_time = time.time()
        self._validate(desired)
        run = _Run(self, desired, "destroy", dry_run, cancel_event)
        logger.info(f"Destroying connectivity graph '{desired.name}'{' (dry run)' if dry_run else ''}")

        for _, entities in creation_waves(desired):
            self._run_wave(run, entities, lambda entity: self._locate_entity(run, entity))

        if any(r.status == EntityStatus.FAILED for r in run.reports.values()):
            logger.error("Could not observe every declared resource; nothing was deleted")
            run.result.failed_phase = "observe"
            run.result.success = False
            return self._finish(run, list(desired.entities()), start_time)

        halted = False
        ordered: List[Entity] = []
        for kind, entities in deletion_waves(desired):
            present = [e for e in entities if (e.resource_type, e.key) in run.observed]
            ordered.extend(entities)
            if not present:
                continue
            if halted or run.cancelled:
                self._skip(run, present)
                continue
            self._run_wave(run, present, lambda entity: self._delete_entity(run, entity))
            if any(run.reports[(e.resource_type, e.key)].status == EntityStatus.FAILED for e in present):
                logger.error(f"Deleting {kind.value} failed; parent resources are left in place")
                halted = True

        run.result.cancelled = run.cancelled
        if halted:
            run.result.failed_phase = "destroy"
        run.result.success = not halted and not run.cancelled
        run.result.observed = desired.with_observed(run.observed)
        return self._finish(run, ordered, start_time)

    def _locate_entity(self, run: _Run, entity: Entity) -> EntityReport:
        try:
            refs, _ = self._resolve_refs(run, entity, strict=False)
            if any(value is None for value in entity.scope(refs).values()):
                # a child cannot exist without its parent
                return run.report(EntityReport(entity.resource_type, entity.key, EntityStatus.ABSENT))
            try:
                entity = self._resolve_prefix_list(run, entity)
            except NotFoundError:
                return run.report(EntityReport(entity.resource_type, entity.key, EntityStatus.ABSENT))
            current = self._observe(run, entity, entity.scope(refs))
            if current is None:
                return run.report(EntityReport(entity.resource_type, entity.key, EntityStatus.ABSENT))
            run.observe(entity, current)
            return run.report(EntityReport(
                entity.resource_type, entity.key,
                EntityStatus.PLANNED if run.dry_run else EntityStatus.SKIPPED,
                resource_id=current.resource_id, action=ActionType.DELETE,
            ))
        except LatticeLinkError as e:
            logger.error(f"{entity.label}: {e}")
            return run.fail(entity, e)
        except Exception as e:
            return run.fail(entity, self._unexpected(entity, e))

    def _delete_entity(self, run: _Run, entity: Entity) -> EntityReport:
        current = run.observed[(entity.resource_type, entity.key)]
        if run.dry_run:
            return run.reports[(entity.resource_type, entity.key)]
        if run.cancelled:
            return self.report_skipped(run, entity, resource_id=current.resource_id)
        try:
            logger.info(f"Deleting {entity.label} ({current.resource_id})")
            self._delete_and_wait(run, entity.label, entity.resource_type, current.resource_id, current.scope)
        except LatticeLinkError as e:
            logger.error(f"{entity.label}: {e}")
            return self._delete_failed(run, entity, current, e)
        except Exception as e:
            return self._delete_failed(run, entity, current, self._unexpected(entity, e))
        self._record_action(run, ReconciliationAction(
            ActionType.DELETE, entity.resource_type, entity.key, {}, resource_id=current.resource_id,
        ))
        with run.lock:
            run.observed.pop((entity.resource_type, entity.key), None)
        if self.ledger is not None:
            self.ledger.forget(run.desired.name, entity.resource_type, entity.key)
        return run.report(EntityReport(entity.resource_type, entity.key, EntityStatus.DELETED,
                                       resource_id=current.resource_id, action=ActionType.DELETE))

    @staticmethod
    def _delete_failed(run: _Run, entity: Entity, current: ObservedResource,
                       error: LatticeLinkError) -> EntityReport:
        with run.lock:
            run.result.errors.append(error)
        return run.report(EntityReport(entity.resource_type, entity.key, EntityStatus.FAILED,
                                       resource_id=current.resource_id, action=ActionType.DELETE,
                                       error=str(error)))

    # --------------------------------------------------------------- status

    def status(self, desired: ConnectivityGraph) -> ReconciliationResult:
        """Read-only drift report: in_sync, drifted or missing per entity."""
        start_time = time.time()
        self._validate(desired)
        run = _Run(self, desired, "status", False, None)

        ordered: List[Entity] = []
        for _, entities in creation_waves(desired):
            ordered.extend(entities)
            self._run_wave(run, entities, lambda entity: self._status_entity(run, entity))

        run.result.success = all(r.status == EntityStatus.IN_SYNC for r in run.reports.values())
        run.result.observed = desired.with_observed(run.observed)
        return self._finish(run, ordered, start_time)

    def _status_entity(self, run: _Run, entity: Entity) -> EntityReport:
        try:
            refs, _ = self._resolve_refs(run, entity, strict=False)
            if any(value is None for value in refs.values()):
                return run.report(EntityReport(entity.resource_type, entity.key, EntityStatus.MISSING,
                                               detail={"reason": "parent missing"}))
            try:
                entity = self._resolve_prefix_list(run, entity)
            except NotFoundError as e:
                return run.report(EntityReport(entity.resource_type, entity.key, EntityStatus.MISSING,
                                               detail={"reason": str(e)}))
            scope = entity.scope(refs)
            current = self._observe(run, entity, scope)
            if current is None:
                return run.report(EntityReport(entity.resource_type, entity.key, EntityStatus.MISSING))
            run.observe(entity, current)
            action = self._compute_diff(entity, entity.spec(refs), current)
            detail = self._detail(entity, current)
            if entity.resource_type == ResourceType.TARGET_GROUP:
                detail.update(self._target_group_health(run, current, scope))
            if action.action_type == ActionType.NOOP:
                return run.report(EntityReport(entity.resource_type, entity.key, EntityStatus.IN_SYNC,
                                               resource_id=current.resource_id, detail=detail))
            detail["changed_fields"] = action.changed_fields
            return run.report(EntityReport(entity.resource_type, entity.key, EntityStatus.DRIFTED,
                                           resource_id=current.resource_id, action=action.action_type,
                                           detail=detail))
        except LatticeLinkError as e:
            logger.error(f"{entity.label}: {e}")
            return run.fail(entity, e)
        except Exception as e:
            return run.fail(entity, self._unexpected(entity, e))

    def _target_group_health(self, run: _Run, group: ObservedResource, scope: Dict[str, str]) -> Dict[str, Any]:
        targets = run.resolver.listing(ResourceType.TARGET, {"target_group_id": group.resource_id})
        healthy = sum(1 for t in targets if str(t.attributes.get("health", "")).upper() == "HEALTHY")
        detail: Dict[str, Any] = {"healthy_targets": healthy, "registered_targets": len(targets)}
        if healthy == 0:
            detail["degraded"] = True
        return detail

    # -------------------------------------------------------------- helpers

    def _validate(self, desired: ConnectivityGraph) -> None:
        report = validate_graph(desired)
        for warning in report.warning_messages():
            logger.warning(warning)
        if not report.passed:
            raise ValidationError(report.error_messages())

    def _run_wave(self, run: _Run, entities: List[Entity], worker: Callable[[Entity], EntityReport]) -> None:
        workers = max(1, min(self.settings.max_concurrency, len(entities)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="lattice-link") as executor:
            futures = [executor.submit(worker, entity) for entity in entities]
            for future in futures:
                future.result()

    def _skip(self, run: _Run, entities: List[Entity]) -> None:
        for entity in entities:
            self.report_skipped(run, entity)

    @staticmethod
    def report_skipped(run: _Run, entity: Entity, resource_id: Optional[str] = None) -> EntityReport:
        return run.report(EntityReport(entity.resource_type, entity.key, EntityStatus.SKIPPED,
                                       resource_id=resource_id))

    def _resolve_refs(self, run: _Run, entity: Entity, strict: bool = True) -> Tuple[Dict[str, Any], bool]:
        """Values of the entity's parent references, read from this run's observations.

        Returns the values and whether any parent is only planned (dry run).
        """
        refs: Dict[str, Any] = {}
        parent_planned = False
        for ref in entity.requires():
            parent = run.observed.get((ref.resource_type, ref.key))
            if parent is None:
                if (ref.resource_type, ref.key) in run.planned:
                    refs[ref.field] = None
                    parent_planned = True
                    continue
                if not strict:
                    refs[ref.field] = None
                    continue
                raise NotFoundError(f"{entity.label} requires {ref.resource_type.value}:{ref.key}, which does not exist")
            value = parent.attributes.get(ref.attribute) if ref.attribute else parent.resource_id
            if value is None and strict:
                raise NotFoundError(
                    f"{entity.label} requires {ref.attribute} of {ref.resource_type.value}:{ref.key}, "
                    f"which the provider has not reported"
                )
            refs[ref.field] = value
        return refs, parent_planned

    def _resolve_prefix_list(self, run: _Run, entity: Entity) -> Entity:
        if not isinstance(entity, SecurityGroupRule) or entity.source_prefix_list_id:
            return entity
        prefix_list_id = call_with_retry(
            lambda: self.driver.lookup_prefix_list(entity.source_prefix_list_name),
            self.policy,
            description=f"look up prefix list {entity.source_prefix_list_name}",
            sleep=self.sleep,
        )
        logger.debug(f"Prefix list {entity.source_prefix_list_name} resolved to {prefix_list_id}")
        return replace(entity, source_prefix_list_id=prefix_list_id)

    def _observe(self, run: _Run, entity: Entity, scope: Dict[str, str]) -> Optional[ObservedResource]:
        resource_id = run.resolver.resolve(entity.resource_type, entity.name, scope, key=entity.key)
        if resource_id is None:
            return None
        current = call_with_retry(
            lambda: self.driver.get_resource(entity.resource_type, resource_id, scope),
            self.policy,
            description=f"get {entity.label}",
            sleep=self.sleep,
        )
        if current is not None and current.status == ResourceStatus.DELETED:
            return None
        return current

    def _write(self, run: _Run, description: str, fn: Callable[[], Any]) -> Any:
        def counted():
            with run.lock:
                run.result.write_calls += 1
            return fn()

        return call_with_retry(counted, self.policy, description=description, sleep=self.sleep)

    @staticmethod
    def _unexpected(entity: Entity, error: Exception) -> OperationError:
        logger.exception(f"{entity.label}: unexpected error")
        return OperationError(f"{entity.label}: {error}", resource_type=entity.resource_type, key=entity.key)

    @staticmethod
    def _record_action(run: _Run, action: ReconciliationAction) -> None:
        with run.lock:
            run.result.actions_taken.append(action)
        METRICS["reconciliation_actions"].labels(
            action_type=f"{action.action_type.value}_{action.resource_type.value}"
        ).inc()

    @staticmethod
    def _detail(entity: Entity, observed: ObservedResource) -> Dict[str, Any]:
        if entity.resource_type == ResourceType.TARGET and observed.attributes.get("health"):
            return {"health": observed.attributes["health"]}
        if entity.resource_type == ResourceType.SERVICE and observed.attributes.get("dns_name"):
            return {"dns_name": observed.attributes["dns_name"]}
        return {}

    def _finish(self, run: _Run, ordered: List[Entity], start_time: float) -> ReconciliationResult:
        result = run.result
        seen = set()
        entities = []
        for entity in ordered:
            entity_key = (entity.resource_type, entity.key)
            if entity_key in run.reports and entity_key not in seen:
                seen.add(entity_key)
                entities.append(run.reports[entity_key])
        entities += [report for entity_key, report in run.reports.items() if entity_key not in seen]
        result.entities = entities
        result.duration_ms = (time.time() - start_time) * 1000

        METRICS["reconciliation_latency"].labels(operation=result.operation).observe(result.duration_ms)
        for report in entities:
            METRICS["entity_results"].labels(status=report.status.value).inc()

        logger.info(
            f"{result.operation} of '{result.graph_name}' finished in {result.duration_ms:.0f}ms: "
            + ", ".join(f"{count} {status}" for status, count in sorted(result.counts().items()))
        )
        return result


def _normalize(value: Any) -> Any:
    if isinstance(value, (list, tuple, set, frozenset)):
        return sorted(str(item) for item in value)
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return value
