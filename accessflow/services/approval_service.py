from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Optional
from uuid import uuid4

from accessflow.core import workflow_engine as engine
from accessflow.core.errors import AuthorizationError, ConfigurationError, ConflictError, NotFoundError
from accessflow.core.rbac import Permission, can
from accessflow.models.auth import SessionSnapshot
from accessflow.models.workflow import (
    ActorRef,
    ApprovalInstance,
    ApprovalRequestCreate,
    Decision,
    InstanceStatus,
    StepState,
    TimeoutPolicy,
    TimeoutSweepResult,
)
from accessflow.repositories.data_store import DataStore, utcnow
from accessflow.services.approver_resolver import ApproverResolver
from accessflow.services.audit_service import EventLogger
from accessflow.services.workflow_definition_service import WorkflowDefinitionService

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


class ApprovalService:
    """Runs approval instances against their workflow definitions.

    All state changes go through ``_mutate``: under the store lock the current
    instance is loaded, optionally checked against the caller's expected
    version, changed on a deep copy by the engine, and only then written back
    with a bumped version. A human decision and the timeout sweep therefore
    race on the same path and exactly one of them moves a step out of Pending.
    """

    def __init__(
        self,
        store: DataStore,
        event_logger: EventLogger,
        definitions: WorkflowDefinitionService,
        resolver: ApproverResolver,
        default_timeout_policy: TimeoutPolicy = TimeoutPolicy.BLOCK,
    ) -> None:
        self.store = store
        self.event_logger = event_logger
        self.definitions = definitions
        self.resolver = resolver
        self.default_timeout_policy = default_timeout_policy

    def create_instance(self, actor: SessionSnapshot, payload: ApprovalRequestCreate) -> ApprovalInstance:
        if payload.workflow_id:
            workflow = self.definitions.get_workflow(payload.workflow_id)
        else:
            workflow = self.definitions.find_active(payload.module or "", payload.resource or "")
            if workflow is None:
                raise ConfigurationError(
                    f"No active approval workflow configured for {payload.module}/{payload.resource}"
                )
        if not workflow.is_active:
            raise ConfigurationError(f"Approval workflow {workflow.workflow_id} is inactive")

        now = utcnow()
        instance = ApprovalInstance(
            instance_id=f"apr-{uuid4().hex[:10]}",
            workflow_id=workflow.workflow_id,
            workflow_name=workflow.name,
            workflow_type=workflow.workflow_type,
            timeout_policy=workflow.timeout_policy or self.default_timeout_policy,
            module=workflow.module,
            resource=workflow.resource,
            subject_id=payload.subject_id,
            requested_by=actor.user_id,
            department_id=payload.department_id,
            steps=[StepState.from_definition(step) for step in workflow.steps],
            created_at=now,
            updated_at=now,
        )

        with self.store.lock:
            open_duplicate = next(
                (
                    existing for existing in self.store.instances.values()
                    if existing.module == instance.module
                    and existing.resource == instance.resource
                    and existing.subject_id == instance.subject_id
                    and not engine.is_terminal(existing)
                ),
                None,
            )
            if open_duplicate is not None:
                raise ConflictError(
                    f"Subject {instance.subject_id} already has open approval request {open_duplicate.instance_id}"
                )
            self.store.instances[instance.instance_id] = instance

        self._audit(actor.user_id, actor.role, "approval_created", instance)
        return self._start(instance.instance_id, actor.user_id, actor.role)

    def start_instance(self, actor: SessionSnapshot, instance_id: str) -> ApprovalInstance:
        """Operator retry for an instance halted on a configuration error."""
        return self._start(instance_id, actor.user_id, actor.role)

    def _start(self, instance_id: str, actor_id: str, actor_role: str) -> ApprovalInstance:
        with self.store.lock:
            current = self._require_instance(instance_id)
            if current.status != InstanceStatus.NOT_STARTED:
                raise ConflictError(f"Approval request {instance_id} is already {current.status.value}")
            try:
                assignments = self.resolver.resolve_all(current)
            except ConfigurationError as exc:
                reason = exc.message
                halted = self._mutate(
                    instance_id,
                    lambda working, now: working.model_copy(update={"halted_reason": reason}),
                )
                logger.error("Approval request %s halted: %s", instance_id, reason)
                self._audit(actor_id, actor_role, "approval_halted", halted, reason=reason)
                raise ConfigurationError(f"Approval request {instance_id} halted: {reason}") from exc

            started = self._mutate(instance_id, lambda working, now: engine.start(working, assignments, now))

        self._audit(actor_id, actor_role, "approval_started", started)
        return started

    def decide(
        self,
        instance_id: str,
        step_id: str,
        actor_id: str,
        decision: Decision,
        note: Optional[str] = None,
        expected_version: Optional[int] = None,
        actor_role: str = "",
    ) -> ApprovalInstance:
        updated = self._mutate(
            instance_id,
            lambda working, now: engine.apply_decision(
                self._refresh_assignees(working), step_id, actor_id, decision, now, note
            ),
            expected_version,
        )
        self._audit(
            actor_id,
            actor_role,
            "step_decided",
            updated,
            step_id=step_id,
            decision=decision.value,
            note=note,
        )
        return updated

    def delegate(
        self,
        instance_id: str,
        step_id: str,
        actor_id: str,
        delegate_to: str,
        note: Optional[str] = None,
        expected_version: Optional[int] = None,
        actor_role: str = "",
    ) -> ApprovalInstance:
        delegate = self.resolver.resolve_delegate(delegate_to)
        updated = self._mutate(
            instance_id,
            lambda working, now: engine.apply_delegation(
                self._refresh_assignees(working), step_id, actor_id, delegate, now, note
            ),
            expected_version,
        )
        self._audit(actor_id, actor_role, "step_delegated", updated, step_id=step_id, delegate_to=delegate_to)
        return updated

    def cancel(self, actor: SessionSnapshot, instance_id: str, reason: Optional[str] = None) -> ApprovalInstance:
        current = self.get_instance(instance_id)
        if current.requested_by != actor.user_id and not can(actor.permissions, Permission.SECURITY_MANAGE):
            raise AuthorizationError("Only the requester or a security manager can cancel an approval request")

        updated = self._mutate(instance_id, lambda working, now: engine.cancel(working, now, reason))
        self._audit(actor.user_id, actor.role, "approval_cancelled", updated, reason=reason)
        return updated

    def sweep_timeouts(self, now: Optional[datetime] = None) -> TimeoutSweepResult:
        now = now or utcnow()
        with self.store.lock:
            candidates = [
                instance_id
                for instance_id, instance in self.store.instances.items()
                if instance.status == InstanceStatus.IN_PROGRESS
            ]

        timed_out = 0
        affected: list[str] = []
        for instance_id in candidates:
            with self.store.lock:
                current = self._require_instance(instance_id)
                if not engine.overdue_steps(current, now):
                    continue
                expired: list[str] = []

                def expire(working: ApprovalInstance, _: datetime) -> ApprovalInstance:
                    # Each timeout may activate later steps or finish the instance.
                    while not engine.is_terminal(working):
                        overdue = engine.overdue_steps(working, now)
                        if not overdue:
                            break
                        engine.apply_timeout(working, overdue[0].step_id, now)
                        expired.append(overdue[0].step_id)
                    return working

                updated = self._mutate(instance_id, expire, now=now)

            timed_out += len(expired)
            affected.append(instance_id)
            self._audit(SYSTEM_ACTOR, SYSTEM_ACTOR, "steps_timed_out", updated, step_ids=expired)
            if updated.blocked:
                logger.warning("Approval request %s is blocked on a timed-out step", instance_id)

        return TimeoutSweepResult(swept_at=now, timed_out_steps=timed_out, affected_instances=affected)

    def current_pending_approvers(self, instance_id: str) -> list[ActorRef]:
        return engine.pending_approvers(self._live_view(self.get_instance(instance_id)))

    def pending_for_user(self, user_id: str) -> list[ApprovalInstance]:
        with self.store.lock:
            instances = list(self.store.instances.values())
        return [
            instance for instance in instances
            if any(actor.user_id == user_id for actor in engine.pending_approvers(self._live_view(instance)))
        ]

    def get_instance(self, instance_id: str) -> ApprovalInstance:
        with self.store.lock:
            return self._require_instance(instance_id)

    def list_instances(
        self,
        session: SessionSnapshot,
        status: Optional[InstanceStatus] = None,
        module: Optional[str] = None,
        requested_by: Optional[str] = None,
    ) -> list[ApprovalInstance]:
        with self.store.lock:
            rows = list(self.store.instances.values())

        if not can(session.permissions, Permission.SECURITY_READ):
            rows = [r for r in rows if self._involves(r, session.user_id)]
        if status:
            rows = [r for r in rows if r.status == status]
        if module:
            rows = [r for r in rows if r.module == module]
        if requested_by:
            rows = [r for r in rows if r.requested_by == requested_by]
        return sorted(rows, key=lambda r: r.created_at, reverse=True)

    def ensure_visible(self, session: SessionSnapshot, instance: ApprovalInstance) -> ApprovalInstance:
        if can(session.permissions, Permission.SECURITY_READ) or self._involves(instance, session.user_id):
            return instance
        raise AuthorizationError(f"Not allowed to view approval request {instance.instance_id}")

    def history(self, instance_id: str) -> list[dict[str, Any]]:
        self.get_instance(instance_id)
        return self.event_logger.events_for("instance_id", instance_id)

    def _refresh_assignees(self, instance: ApprovalInstance) -> ApprovalInstance:
        for step in instance.steps:
            if step.status in engine.OPEN_STATUSES:
                step.assignees = self.resolver.live_assignees(step, instance)
        return instance

    def _live_view(self, instance: ApprovalInstance) -> ApprovalInstance:
        return self._refresh_assignees(instance.model_copy(deep=True))

    @staticmethod
    def _involves(instance: ApprovalInstance, user_id: str) -> bool:
        if instance.requested_by == user_id:
            return True
        for step in instance.steps:
            if user_id in {step.decided_by, step.delegated_from}:
                return True
            if any(actor.user_id == user_id for actor in step.assignees):
                return True
        return False

    def _require_instance(self, instance_id: str) -> ApprovalInstance:
        instance = self.store.instances.get(instance_id)
        if instance is None:
            raise NotFoundError(f"Approval request {instance_id} not found")
        return instance

    def _mutate(
        self,
        instance_id: str,
        change: Callable[[ApprovalInstance, datetime], ApprovalInstance],
        expected_version: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> ApprovalInstance:
        now = now or utcnow()
        with self.store.lock:
            current = self._require_instance(instance_id)
            if expected_version is not None and current.version != expected_version:
                raise ConflictError(
                    f"Approval request {instance_id} is at version {current.version}, not {expected_version}"
                )
            working = change(current.model_copy(deep=True), now)
            working.version = current.version + 1
            working.updated_at = now
            self.store.instances[instance_id] = working
        return working

    def _audit(
        self,
        actor_id: str,
        actor_role: str,
        action: str,
        instance: ApprovalInstance,
        **details: Any,
    ) -> None:
        logger.info("%s %s by %s -> %s", action, instance.instance_id, actor_id, instance.status.value)
        self.event_logger.log_event(
            event_type="approval_event",
            actor_id=actor_id,
            actor_role=actor_role,
            details={
                "action": action,
                "instance_id": instance.instance_id,
                "subject_id": instance.subject_id,
                "status": instance.status.value,
                "version": instance.version,
                **details,
            },
        )
