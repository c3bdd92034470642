from fastapi import APIRouter, Depends, status

from accessflow.api.deps import require_permission
from accessflow.core.rbac import Permission
from accessflow.models.auth import SessionSnapshot
from accessflow.models.workflow import ApprovalWorkflowCreate, ApprovalWorkflowRecord
from accessflow.services.container import workflow_definition_service


router = APIRouter(prefix="/approval-workflows", tags=["Approval Workflows"])

can_read = require_permission(Permission.SECURITY_READ, Permission.SECURITY_MANAGE)
can_manage = require_permission(Permission.SECURITY_MANAGE)


@router.get("", response_model=list[ApprovalWorkflowRecord])
def list_workflows(
    active_only: bool = True,
    current_user: SessionSnapshot = Depends(can_read),
) -> list[ApprovalWorkflowRecord]:
    _ = current_user
    return workflow_definition_service.list_workflows(active_only)


@router.get("/{workflow_id}", response_model=ApprovalWorkflowRecord)
def get_workflow(workflow_id: str, current_user: SessionSnapshot = Depends(can_read)) -> ApprovalWorkflowRecord:
    _ = current_user
    return workflow_definition_service.get_workflow(workflow_id)


@router.post("", response_model=ApprovalWorkflowRecord, status_code=status.HTTP_201_CREATED)
def create_workflow(
    payload: ApprovalWorkflowCreate,
    current_user: SessionSnapshot = Depends(can_manage),
) -> ApprovalWorkflowRecord:
    return workflow_definition_service.create_workflow(current_user, payload)


@router.put("/{workflow_id}", response_model=ApprovalWorkflowRecord)
def update_workflow(
    workflow_id: str,
    payload: ApprovalWorkflowCreate,
    current_user: SessionSnapshot = Depends(can_manage),
) -> ApprovalWorkflowRecord:
    return workflow_definition_service.update_workflow(current_user, workflow_id, payload)


@router.delete("/{workflow_id}", response_model=ApprovalWorkflowRecord)
def deactivate_workflow(
    workflow_id: str,
    current_user: SessionSnapshot = Depends(can_manage),
) -> ApprovalWorkflowRecord:
    return workflow_definition_service.deactivate_workflow(current_user, workflow_id)
