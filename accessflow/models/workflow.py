from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator


class WorkflowType(str, Enum):
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    ANY = "any"


class ApproverType(str, Enum):
    ROLE = "role"
    USER = "user"
    MANAGER = "manager"
    DEPARTMENT_HEAD = "department_head"


class TimeoutPolicy(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    BLOCK = "block"


class StepStatus(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    DELEGATED = "Delegated"
    TIMED_OUT = "TimedOut"
    SKIPPED = "Skipped"


class InstanceStatus(str, Enum):
    NOT_STARTED = "NotStarted"
    IN_PROGRESS = "InProgress"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    CANCELLED = "Cancelled"


class Decision(str, Enum):
    APPROVE = "Approve"
    REJECT = "Reject"


def _step_id() -> str:
    return f"step-{uuid4().hex[:10]}"


class WorkflowStepDefinition(BaseModel):
    step_id: str = Field(default_factory=_step_id)
    step_order: Optional[int] = Field(default=None, ge=1)
    approver_type: ApproverType
    approver_id: Optional[str] = None
    is_required: bool = True
    can_delegate: bool = False
    timeout_hours: Optional[int] = Field(default=None, ge=1)
    delegate_ids: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_approver_reference(self) -> "WorkflowStepDefinition":
        if self.approver_type in {ApproverType.ROLE, ApproverType.USER} and not self.approver_id:
            raise ValueError(f"approver_id is required for approver_type '{self.approver_type.value}'")
        return self


class ApprovalWorkflowCreate(BaseModel):
    name: str = Field(min_length=3, max_length=120)
    module: str = Field(min_length=2, max_length=60)
    resource: str = Field(min_length=2, max_length=60)
    workflow_type: WorkflowType = WorkflowType.SEQUENTIAL
    timeout_policy: Optional[TimeoutPolicy] = None
    is_active: bool = True
    steps: list[WorkflowStepDefinition] = Field(min_length=1)

    @model_validator(mode="after")
    def validate_steps(self) -> "ApprovalWorkflowCreate":
        orders = [step.step_order for step in self.steps]
        if all(order is None for order in orders):
            for position, step in enumerate(self.steps, start=1):
                step.step_order = position
        elif any(order is None for order in orders):
            raise ValueError("step_order must be set on every step or on none")
        elif sorted(orders) != list(range(1, len(self.steps) + 1)):
            raise ValueError("step_order values must run from 1 without gaps or duplicates")

        self.steps.sort(key=lambda step: step.step_order)

        if len({step.step_id for step in self.steps}) != len(self.steps):
            raise ValueError("step_id values must be unique within a workflow")
        if self.workflow_type != WorkflowType.ANY and not any(s.is_required for s in self.steps):
            raise ValueError(f"a {self.workflow_type.value} workflow needs at least one required step")
        return self


class ApprovalWorkflowRecord(ApprovalWorkflowCreate):
    workflow_id: str
    created_at: datetime
    updated_at: datetime


class ActorRef(BaseModel):
    user_id: str
    display_name: Optional[str] = None
    resolved_via: ApproverType


class StepState(BaseModel):
    step_id: str
    step_order: int
    approver_type: ApproverType
    approver_id: Optional[str] = None
    is_required: bool = True
    can_delegate: bool = False
    timeout_hours: Optional[int] = None
    delegate_ids: list[str] = Field(default_factory=list)
    status: StepStatus = StepStatus.PENDING
    assignees: list[ActorRef] = Field(default_factory=list)
    delegated_from: Optional[str] = None
    activated_at: Optional[datetime] = None
    decided_by: Optional[str] = None
    decided_at: Optional[datetime] = None
    note: Optional[str] = None

    @classmethod
    def from_definition(cls, step: WorkflowStepDefinition) -> "StepState":
        return cls(**step.model_dump())


class ApprovalInstance(BaseModel):
    instance_id: str
    workflow_id: str
    workflow_name: str
    workflow_type: WorkflowType
    timeout_policy: TimeoutPolicy
    module: str
    resource: str
    subject_id: str
    requested_by: str
    department_id: Optional[str] = None
    status: InstanceStatus = InstanceStatus.NOT_STARTED
    steps: list[StepState]
    halted_reason: Optional[str] = None
    blocked: bool = False
    version: int = 0
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None


class ApprovalRequestCreate(BaseModel):
    subject_id: str = Field(min_length=1, max_length=120)
    workflow_id: Optional[str] = None
    module: Optional[str] = None
    resource: Optional[str] = None
    department_id: Optional[str] = None

    @model_validator(mode="after")
    def validate_workflow_reference(self) -> "ApprovalRequestCreate":
        if not self.workflow_id and not (self.module and self.resource):
            raise ValueError("either workflow_id or module and resource must be given")
        return self


class DecisionRequest(BaseModel):
    decision: Decision
    note: Optional[str] = Field(default=None, max_length=300)
    expected_version: Optional[int] = None


class DelegationRequest(BaseModel):
    delegate_to: str
    note: Optional[str] = Field(default=None, max_length=300)
    expected_version: Optional[int] = None


class CancellationRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=300)


class TimeoutSweepResult(BaseModel):
    swept_at: datetime
    timed_out_steps: int
    affected_instances: list[str]
