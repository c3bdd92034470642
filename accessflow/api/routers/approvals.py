from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, status

from accessflow.api.deps import get_current_session, require_permission
from accessflow.core.rbac import Permission
from accessflow.models.auth import SessionSnapshot
from accessflow.models.workflow import (
    ActorRef,
    ApprovalInstance,
    ApprovalRequestCreate,
    CancellationRequest,
    DecisionRequest,
    DelegationRequest,
    InstanceStatus,
    TimeoutSweepResult,
)
from accessflow.services.container import approval_service


router = APIRouter(prefix="/approval-requests", tags=["Approval Requests"])


@router.post("/timeouts/sweep", response_model=TimeoutSweepResult)
def sweep_timeouts(
    current_user: SessionSnapshot = Depends(require_permission(Permission.SECURITY_MANAGE)),
) -> TimeoutSweepResult:
    _ = current_user
    return approval_service.sweep_timeouts()


@router.get("/pending/me", response_model=list[ApprovalInstance])
def list_my_pending(current_user: SessionSnapshot = Depends(get_current_session)) -> list[ApprovalInstance]:
    return approval_service.pending_for_user(current_user.user_id)


@router.post("", response_model=ApprovalInstance, status_code=status.HTTP_201_CREATED)
def create_approval_request(
    payload: ApprovalRequestCreate,
    current_user: SessionSnapshot = Depends(get_current_session),
) -> ApprovalInstance:
    return approval_service.create_instance(current_user, payload)


@router.get("", response_model=list[ApprovalInstance])
def list_approval_requests(
    status_filter: Optional[InstanceStatus] = Query(default=None, alias="status"),
    module: Optional[str] = None,
    requested_by: Optional[str] = None,
    current_user: SessionSnapshot = Depends(get_current_session),
) -> list[ApprovalInstance]:
    return approval_service.list_instances(current_user, status_filter, module, requested_by)


@router.get("/{instance_id}", response_model=ApprovalInstance)
def get_approval_request(
    instance_id: str,
    current_user: SessionSnapshot = Depends(get_current_session),
) -> ApprovalInstance:
    return approval_service.ensure_visible(current_user, approval_service.get_instance(instance_id))


@router.get("/{instance_id}/pending-approvers", response_model=list[ActorRef])
def get_pending_approvers(
    instance_id: str,
    current_user: SessionSnapshot = Depends(get_current_session),
) -> list[ActorRef]:
    approval_service.ensure_visible(current_user, approval_service.get_instance(instance_id))
    return approval_service.current_pending_approvers(instance_id)


@router.get("/{instance_id}/history")
def get_approval_history(
    instance_id: str,
    current_user: SessionSnapshot = Depends(get_current_session),
) -> list[dict[str, Any]]:
    approval_service.ensure_visible(current_user, approval_service.get_instance(instance_id))
    return approval_service.history(instance_id)


@router.post("/{instance_id}/steps/{step_id}/decision", response_model=ApprovalInstance)
def decide_step(
    instance_id: str,
    step_id: str,
    payload: DecisionRequest,
    current_user: SessionSnapshot = Depends(get_current_session),
) -> ApprovalInstance:
    return approval_service.decide(
        instance_id,
        step_id,
        current_user.user_id,
        payload.decision,
        note=payload.note,
        expected_version=payload.expected_version,
        actor_role=current_user.role,
    )


@router.post("/{instance_id}/steps/{step_id}/delegate", response_model=ApprovalInstance)
def delegate_step(
    instance_id: str,
    step_id: str,
    payload: DelegationRequest,
    current_user: SessionSnapshot = Depends(get_current_session),
) -> ApprovalInstance:
    return approval_service.delegate(
        instance_id,
        step_id,
        current_user.user_id,
        payload.delegate_to,
        note=payload.note,
        expected_version=payload.expected_version,
        actor_role=current_user.role,
    )


@router.post("/{instance_id}/cancel", response_model=ApprovalInstance)
def cancel_approval_request(
    instance_id: str,
    payload: CancellationRequest,
    current_user: SessionSnapshot = Depends(get_current_session),
) -> ApprovalInstance:
    return approval_service.cancel(current_user, instance_id, payload.reason)


@router.post("/{instance_id}/start", response_model=ApprovalInstance)
def start_approval_request(
    instance_id: str,
    current_user: SessionSnapshot = Depends(require_permission(Permission.SECURITY_MANAGE)),
) -> ApprovalInstance:
    return approval_service.start_instance(current_user, instance_id)
