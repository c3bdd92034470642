from __future__ import annotations

from typing import Any

from accessflow.core.errors import ConfigurationError
from accessflow.models.workflow import ActorRef, ApprovalInstance, ApproverType, StepState, StepStatus
from accessflow.repositories.data_store import DataStore


class ApproverResolver:
    """Turns a step's approver type into the concrete users allowed to act on it.

    ``resolve`` never returns an empty result: a step nobody can act on is a
    configuration problem and raises ``ConfigurationError``. ``live_assignees``
    answers the narrower question of who may act at this moment and may be
    empty.
    """

    def __init__(self, store: DataStore) -> None:
        self.store = store

    def resolve_all(self, instance: ApprovalInstance) -> dict[str, list[ActorRef]]:
        return {step.step_id: self.resolve(step, instance) for step in instance.steps}

    def resolve(self, step: StepState, instance: ApprovalInstance) -> list[ActorRef]:
        with self.store.lock:
            if step.approver_type == ApproverType.ROLE:
                return self._role_members(step, instance)
            if step.approver_type == ApproverType.USER:
                return [self._named_user(step, instance)]
            if step.approver_type == ApproverType.MANAGER:
                return [self._manager(step, instance)]
            return [self._department_head(step, instance)]

    def live_assignees(self, step: StepState, instance: ApprovalInstance) -> list[ActorRef]:
        """Users allowed to act on an open step right now.

        A Pending role step follows current role membership; any other step
        keeps its stored assignees, minus anyone who is no longer active.
        """
        with self.store.lock:
            if step.approver_type == ApproverType.ROLE and step.status == StepStatus.PENDING:
                try:
                    return self._role_members(step, instance)
                except ConfigurationError:
                    return []
            return [actor for actor in step.assignees if self._is_active(actor.user_id)]

    def resolve_delegate(self, user_id: str) -> ActorRef:
        with self.store.lock:
            user = self.store.users.get(user_id)
        if not user or not user.get("is_active", True):
            raise ConfigurationError(f"Delegate {user_id} is not an active user")
        return ActorRef(user_id=user_id, display_name=user.get("full_name"), resolved_via=ApproverType.USER)

    def _role_members(self, step: StepState, instance: ApprovalInstance) -> list[ActorRef]:
        role = self.store.roles.get(step.approver_id or "") or next(
            (r for r in self.store.roles.values() if r["code"] == step.approver_id), None
        )
        if role is None:
            raise ConfigurationError(f"Step {step.step_order} references unknown role {step.approver_id}")
        if not role.get("is_active", True):
            raise ConfigurationError(f"Step {step.step_order} references inactive role {role['code']}")

        members = [
            self._actor(user, ApproverType.ROLE)
            for user in self.store.users.values()
            if user.get("role_id") == role["role_id"]
            and user.get("is_active", True)
            and user["user_id"] != instance.requested_by
        ]
        if not members:
            raise ConfigurationError(f"No active user holds role {role['code']} for step {step.step_order}")
        return members

    def _named_user(self, step: StepState, instance: ApprovalInstance) -> ActorRef:
        user = self.store.users.get(step.approver_id or "")
        if not user or not user.get("is_active", True):
            raise ConfigurationError(f"Step {step.step_order} references unknown or inactive user {step.approver_id}")
        if user["user_id"] == instance.requested_by:
            raise ConfigurationError(f"Step {step.step_order} would have {user['user_id']} approve their own request")
        return self._actor(user, ApproverType.USER)

    def _manager(self, step: StepState, instance: ApprovalInstance) -> ActorRef:
        requester = self._requester(instance)
        seen = {requester["user_id"]}
        manager_id = requester.get("manager_id")
        # Walk up the reporting line past inactive managers.
        while manager_id:
            if manager_id in seen:
                raise ConfigurationError(f"Reporting line of {instance.requested_by} contains a cycle")
            seen.add(manager_id)
            manager = self.store.users.get(manager_id)
            if manager is None:
                raise ConfigurationError(f"Manager {manager_id} of {instance.requested_by} does not exist")
            if manager.get("is_active", True):
                return self._actor(manager, ApproverType.MANAGER)
            manager_id = manager.get("manager_id")
        raise ConfigurationError(f"No active manager found for {instance.requested_by} (step {step.step_order})")

    def _department_head(self, step: StepState, instance: ApprovalInstance) -> ActorRef:
        department_id = instance.department_id or self._requester(instance).get("department_id")
        department = self.store.departments.get(department_id or "")
        if department is None:
            raise ConfigurationError(f"Step {step.step_order} cannot resolve department {department_id}")

        head = self.store.users.get(department.get("head_id") or "")
        if not head or not head.get("is_active", True):
            raise ConfigurationError(f"Department {department['name']} has no active head")
        if head["user_id"] == instance.requested_by:
            raise ConfigurationError(
                f"Head of {department['name']} cannot approve their own request (step {step.step_order})"
            )
        return self._actor(head, ApproverType.DEPARTMENT_HEAD)

    def _is_active(self, user_id: str) -> bool:
        user = self.store.users.get(user_id)
        return user is not None and bool(user.get("is_active", True))

    def _requester(self, instance: ApprovalInstance) -> dict[str, Any]:
        requester = self.store.users.get(instance.requested_by)
        if requester is None:
            raise ConfigurationError(f"Requester {instance.requested_by} has no employee record")
        return requester

    @staticmethod
    def _actor(user: dict[str, Any], via: ApproverType) -> ActorRef:
        return ActorRef(user_id=user["user_id"], display_name=user.get("full_name"), resolved_via=via)
