"""Approval state machine.

Every function here works on an ``ApprovalInstance`` the caller owns (the
service hands in a deep copy and only stores it back when no error was
raised), performs no I/O and reads the clock only through ``now``.

Step outcomes are derived from step status plus the instance's timeout
policy: a ``TimedOut`` step counts as an approval, a rejection, or blocks the
instance, depending on ``TimeoutPolicy``.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from accessflow.core.errors import AuthorizationError, ConfigurationError, ConflictError, NotFoundError
from accessflow.models.workflow import (
    ActorRef,
    ApprovalInstance,
    Decision,
    InstanceStatus,
    StepState,
    StepStatus,
    TimeoutPolicy,
    WorkflowType,
)

OPEN_STATUSES = frozenset({StepStatus.PENDING, StepStatus.DELEGATED})
TERMINAL_STATUSES = frozenset({InstanceStatus.APPROVED, InstanceStatus.REJECTED, InstanceStatus.CANCELLED})

APPROVED = "approved"
REJECTED = "rejected"
OPEN = "open"
BLOCKED = "blocked"
SKIPPED = "skipped"


def is_terminal(instance: ApprovalInstance) -> bool:
    return instance.status in TERMINAL_STATUSES


def step_outcome(step: StepState, policy: TimeoutPolicy) -> str:
    if step.status == StepStatus.APPROVED:
        return APPROVED
    if step.status == StepStatus.REJECTED:
        return REJECTED
    if step.status in OPEN_STATUSES:
        return OPEN
    if step.status == StepStatus.TIMED_OUT:
        return {
            TimeoutPolicy.APPROVE: APPROVED,
            TimeoutPolicy.REJECT: REJECTED,
            TimeoutPolicy.BLOCK: BLOCKED,
        }[policy]
    return SKIPPED


def find_step(instance: ApprovalInstance, step_id: str) -> StepState:
    for step in instance.steps:
        if step.step_id == step_id:
            return step
    raise NotFoundError(f"Step {step_id} not found on approval request {instance.instance_id}")


def actionable_steps(instance: ApprovalInstance) -> list[StepState]:
    # A blocked instance waits for an operator, whatever its workflow type.
    if instance.status != InstanceStatus.IN_PROGRESS or instance.blocked:
        return []

    if instance.workflow_type != WorkflowType.SEQUENTIAL:
        return [s for s in instance.steps if s.status in OPEN_STATUSES]

    actionable: list[StepState] = []
    for step in sorted(instance.steps, key=lambda s: s.step_order):
        outcome = step_outcome(step, instance.timeout_policy)
        if outcome == OPEN:
            actionable.append(step)
        # Optional steps never hold back the ones after them.
        if step.is_required and outcome != APPROVED:
            break
    return actionable


def pending_approvers(instance: ApprovalInstance) -> list[ActorRef]:
    seen: set[str] = set()
    approvers: list[ActorRef] = []
    for step in actionable_steps(instance):
        for actor in step.assignees:
            if actor.user_id not in seen:
                seen.add(actor.user_id)
                approvers.append(actor)
    return approvers


def _decide_status(instance: ApprovalInstance) -> Optional[InstanceStatus]:
    policy = instance.timeout_policy
    outcomes = [(step, step_outcome(step, policy)) for step in instance.steps]

    if instance.workflow_type == WorkflowType.ANY:
        if any(outcome == APPROVED for _, outcome in outcomes):
            return InstanceStatus.APPROVED
        if all(outcome == REJECTED for _, outcome in outcomes):
            return InstanceStatus.REJECTED
        return None

    required = [outcome for step, outcome in outcomes if step.is_required]
    if any(outcome == REJECTED for outcome in required):
        return InstanceStatus.REJECTED
    if all(outcome == APPROVED for outcome in required):
        return InstanceStatus.APPROVED
    return None


def _is_blocked(instance: ApprovalInstance) -> bool:
    policy = instance.timeout_policy
    if instance.workflow_type == WorkflowType.ANY:
        outcomes = [step_outcome(step, policy) for step in instance.steps]
        return OPEN not in outcomes and BLOCKED in outcomes
    return any(
        step.is_required and step_outcome(step, policy) == BLOCKED for step in instance.steps
    )


def _finalize(instance: ApprovalInstance, status: InstanceStatus, now: datetime) -> None:
    for step in instance.steps:
        if step.status in OPEN_STATUSES:
            step.status = StepStatus.SKIPPED
    instance.status = status
    instance.blocked = False
    instance.completed_at = now


def evaluate(instance: ApprovalInstance, now: datetime) -> InstanceStatus:
    if instance.status != InstanceStatus.IN_PROGRESS:
        return instance.status

    status = _decide_status(instance)
    if status is not None:
        _finalize(instance, status, now)
        return instance.status

    for step in actionable_steps(instance):
        if step.activated_at is None:
            step.activated_at = now
    instance.blocked = _is_blocked(instance)
    return instance.status


def start(
    instance: ApprovalInstance,
    assignments: dict[str, list[ActorRef]],
    now: datetime,
) -> ApprovalInstance:
    if instance.status != InstanceStatus.NOT_STARTED:
        raise ConflictError(f"Approval request {instance.instance_id} has already started")

    for step in instance.steps:
        assignees = assignments.get(step.step_id)
        if not assignees:
            raise ConfigurationError(f"No approver assigned to step {step.step_order}")
        step.assignees = list(assignees)

    instance.status = InstanceStatus.IN_PROGRESS
    instance.halted_reason = None
    evaluate(instance, now)
    return instance


def _require_open_step(instance: ApprovalInstance, step_id: str) -> StepState:
    if instance.status == InstanceStatus.NOT_STARTED:
        raise ConflictError(f"Approval request {instance.instance_id} has not started")
    if is_terminal(instance):
        raise ConflictError(
            f"Approval request {instance.instance_id} is already {instance.status.value}"
        )

    step = find_step(instance, step_id)
    if step.status not in OPEN_STATUSES:
        raise ConflictError(f"Step {step.step_order} is already {step.status.value}")
    if instance.blocked:
        raise ConflictError(
            f"Approval request {instance.instance_id} is blocked on a timed-out step and must be cancelled"
        )
    if step.step_id not in {s.step_id for s in actionable_steps(instance)}:
        raise ConflictError(f"Step {step.step_order} is waiting on an earlier required step")
    return step


def _require_assignee(step: StepState, actor_id: str) -> None:
    if actor_id not in {actor.user_id for actor in step.assignees}:
        raise AuthorizationError(f"User {actor_id} is not an approver for step {step.step_order}")


def apply_decision(
    instance: ApprovalInstance,
    step_id: str,
    actor_id: str,
    decision: Decision,
    now: datetime,
    note: Optional[str] = None,
) -> ApprovalInstance:
    step = _require_open_step(instance, step_id)
    _require_assignee(step, actor_id)

    step.status = StepStatus.APPROVED if decision == Decision.APPROVE else StepStatus.REJECTED
    step.decided_by = actor_id
    step.decided_at = now
    step.note = note
    evaluate(instance, now)
    return instance


def apply_delegation(
    instance: ApprovalInstance,
    step_id: str,
    actor_id: str,
    delegate: ActorRef,
    now: datetime,
    note: Optional[str] = None,
) -> ApprovalInstance:
    step = _require_open_step(instance, step_id)
    _require_assignee(step, actor_id)

    if not step.can_delegate:
        raise AuthorizationError(f"Step {step.step_order} does not allow delegation")
    if step.status == StepStatus.DELEGATED:
        raise ConflictError(f"Step {step.step_order} has already been delegated")
    if not step.delegate_ids:
        raise ConfigurationError(f"Step {step.step_order} has no eligible delegates configured")
    if delegate.user_id not in step.delegate_ids:
        raise AuthorizationError(f"User {delegate.user_id} is not an eligible delegate for step {step.step_order}")

    step.status = StepStatus.DELEGATED
    step.delegated_from = actor_id
    step.assignees = [delegate]
    step.note = note
    evaluate(instance, now)
    return instance


def deadline(step: StepState) -> Optional[datetime]:
    if step.timeout_hours is None or step.activated_at is None:
        return None
    return step.activated_at + timedelta(hours=step.timeout_hours)


def overdue_steps(instance: ApprovalInstance, now: datetime) -> list[StepState]:
    overdue = []
    for step in actionable_steps(instance):
        due = deadline(step)
        if due is not None and due <= now:
            overdue.append(step)
    return overdue


def apply_timeout(instance: ApprovalInstance, step_id: str, now: datetime) -> ApprovalInstance:
    step = _require_open_step(instance, step_id)
    due = deadline(step)
    if due is None or due > now:
        raise ConflictError(f"Step {step.step_order} is not past its deadline")

    step.status = StepStatus.TIMED_OUT
    step.decided_at = now
    step.note = f"Timed out after {step.timeout_hours}h ({instance.timeout_policy.value})"
    evaluate(instance, now)
    return instance


def cancel(
    instance: ApprovalInstance,
    now: datetime,
    reason: Optional[str] = None,
) -> ApprovalInstance:
    if is_terminal(instance):
        raise ConflictError(
            f"Approval request {instance.instance_id} is already {instance.status.value}"
        )

    for step in instance.steps:
        if step.status in OPEN_STATUSES:
            step.status = StepStatus.SKIPPED
            step.note = reason
    instance.status = InstanceStatus.CANCELLED
    instance.blocked = False
    instance.halted_reason = reason
    instance.completed_at = now
    return instance
