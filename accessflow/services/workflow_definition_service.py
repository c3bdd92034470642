from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from accessflow.core.errors import ConfigurationError, NotFoundError
from accessflow.models.auth import SessionSnapshot
from accessflow.models.workflow import (
    ApprovalWorkflowCreate,
    ApprovalWorkflowRecord,
    ApproverType,
    WorkflowType,
)
from accessflow.repositories.data_store import DataStore
from accessflow.services.audit_service import EventLogger


class WorkflowDefinitionService:
    def __init__(self, store: DataStore, event_logger: EventLogger, seed: bool = True) -> None:
        self.store = store
        self.event_logger = event_logger
        if seed:
            self._seed_workflows()

    @staticmethod
    def _iso_now() -> str:
        return datetime.now(timezone.utc).isoformat()

    def _seed_workflows(self) -> None:
        leave = ApprovalWorkflowCreate(
            name="Leave approval",
            module="hrms",
            resource="leave",
            workflow_type=WorkflowType.SEQUENTIAL,
            steps=[
                {"approver_type": ApproverType.MANAGER, "timeout_hours": 48},
                {"approver_type": ApproverType.ROLE, "approver_id": "role-hr", "timeout_hours": 72},
            ],
        )
        with self.store.lock:
            if self.store.workflows:
                return
            self._store_row("wf-leave-approval", leave, created_at=self._iso_now())

    def list_workflows(self, active_only: bool = True) -> list[ApprovalWorkflowRecord]:
        with self.store.lock:
            rows = list(self.store.workflows.values())
        if active_only:
            rows = [r for r in rows if r["is_active"]]
        return [self._to_model(r) for r in rows]

    def get_workflow(self, workflow_id: str) -> ApprovalWorkflowRecord:
        with self.store.lock:
            row = self.store.workflows.get(workflow_id)
        if not row:
            raise NotFoundError(f"Approval workflow {workflow_id} not found")
        return self._to_model(row)

    def find_active(self, module: str, resource: str) -> Optional[ApprovalWorkflowRecord]:
        with self.store.lock:
            row = next(
                (
                    r for r in self.store.workflows.values()
                    if r["is_active"] and r["module"] == module and r["resource"] == resource
                ),
                None,
            )
        return self._to_model(row) if row else None

    def create_workflow(self, actor: SessionSnapshot, payload: ApprovalWorkflowCreate) -> ApprovalWorkflowRecord:
        self._check_references(payload)
        workflow_id = f"wf-{uuid4().hex[:10]}"
        with self.store.lock:
            row = self._store_row(workflow_id, payload, created_at=self._iso_now())

        self._audit(actor, "workflow_created", workflow_id)
        return self._to_model(row)

    def update_workflow(
        self,
        actor: SessionSnapshot,
        workflow_id: str,
        payload: ApprovalWorkflowCreate,
    ) -> ApprovalWorkflowRecord:
        self._check_references(payload)
        with self.store.lock:
            existing = self.store.workflows.get(workflow_id)
            if not existing:
                raise NotFoundError(f"Approval workflow {workflow_id} not found")
            row = self._store_row(workflow_id, payload, created_at=existing["created_at"])

        # Running instances keep the step snapshot they were created with.
        self._audit(actor, "workflow_updated", workflow_id)
        return self._to_model(row)

    def deactivate_workflow(self, actor: SessionSnapshot, workflow_id: str) -> ApprovalWorkflowRecord:
        with self.store.lock:
            row = self.store.workflows.get(workflow_id)
            if not row:
                raise NotFoundError(f"Approval workflow {workflow_id} not found")
            row["is_active"] = False
            row["updated_at"] = self._iso_now()

        self._audit(actor, "workflow_deactivated", workflow_id)
        return self._to_model(row)

    def _check_references(self, payload: ApprovalWorkflowCreate) -> None:
        with self.store.lock:
            role_refs = set(self.store.roles) | {r["code"] for r in self.store.roles.values()}
            users = set(self.store.users)
        for step in payload.steps:
            if step.approver_type == ApproverType.ROLE and step.approver_id not in role_refs:
                raise ConfigurationError(f"Step {step.step_order} references unknown role {step.approver_id}")
            if step.approver_type == ApproverType.USER and step.approver_id not in users:
                raise ConfigurationError(f"Step {step.step_order} references unknown user {step.approver_id}")
            unknown_delegates = [d for d in step.delegate_ids if d not in users]
            if unknown_delegates:
                raise ConfigurationError(
                    f"Step {step.step_order} lists unknown delegate(s): {', '.join(unknown_delegates)}"
                )

    def _store_row(self, workflow_id: str, payload: ApprovalWorkflowCreate, created_at: str) -> dict[str, Any]:
        row = {
            **payload.model_dump(mode="json"),
            "workflow_id": workflow_id,
            "created_at": created_at,
            "updated_at": self._iso_now(),
        }
        self.store.workflows[workflow_id] = row
        return row

    def _audit(self, actor: SessionSnapshot, action: str, workflow_id: str) -> None:
        self.event_logger.log_event(
            event_type="security_event",
            actor_id=actor.user_id,
            actor_role=actor.role,
            details={"action": action, "workflow_id": workflow_id},
        )

    @staticmethod
    def _to_model(row: dict[str, Any]) -> ApprovalWorkflowRecord:
        return ApprovalWorkflowRecord(**row)
