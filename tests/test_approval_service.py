from datetime import timedelta

import pytest

from accessflow.core.errors import AuthorizationError, ConfigurationError, ConflictError
from accessflow.models.security import RoleUpdate
from accessflow.models.workflow import (
    ApprovalRequestCreate,
    ApprovalWorkflowCreate,
    ApproverType,
    Decision,
    InstanceStatus,
    StepStatus,
    TimeoutPolicy,
    WorkflowStepDefinition,
)
from accessflow.repositories.data_store import utcnow
from tests.conftest import add_user, session_for


def leave_workflow(definitions, admin_session, policy=None, manager_timeout=None):
    return definitions.create_workflow(
        admin_session,
        ApprovalWorkflowCreate(
            name="Leave approval",
            module="hrms",
            resource="leave",
            timeout_policy=policy,
            steps=[
                WorkflowStepDefinition(
                    step_id="manager",
                    approver_type=ApproverType.MANAGER,
                    timeout_hours=manager_timeout,
                ),
                WorkflowStepDefinition(
                    step_id="hr",
                    approver_type=ApproverType.ROLE,
                    approver_id="role-hr",
                    timeout_hours=72,
                ),
            ],
        ),
    )


def request_leave(approvals, user_id="u-emp", subject_id="leave-100"):
    return approvals.create_instance(
        session_for(user_id),
        ApprovalRequestCreate(module="hrms", resource="leave", subject_id=subject_id),
    )


@pytest.fixture
def leave(org, definitions, admin_session):
    return leave_workflow(definitions, admin_session)


def test_leave_request_end_to_end(leave, approvals):
    instance = request_leave(approvals)
    assert instance.status == InstanceStatus.IN_PROGRESS
    assert instance.version == 1
    assert [a.user_id for a in approvals.current_pending_approvers(instance.instance_id)] == ["u-mgr"]
    assert [i.instance_id for i in approvals.pending_for_user("u-mgr")] == [instance.instance_id]

    instance = approvals.decide(instance.instance_id, "manager", "u-mgr", Decision.APPROVE)
    assert instance.status == InstanceStatus.IN_PROGRESS
    pending = {a.user_id for a in approvals.current_pending_approvers(instance.instance_id)}
    assert pending == {"u-hr", "u-hr2"}

    instance = approvals.decide(instance.instance_id, "hr", "u-hr", Decision.REJECT, note="Peak season")
    assert instance.status == InstanceStatus.REJECTED
    assert instance.steps[1].decided_by == "u-hr"
    assert approvals.current_pending_approvers(instance.instance_id) == []

    actions = [e["details"]["action"] for e in approvals.history(instance.instance_id)]
    assert actions == ["approval_created", "approval_started", "step_decided", "step_decided"]


def test_requester_is_excluded_from_role_step(leave, approvals):
    instance = request_leave(approvals, user_id="u-hr", subject_id="leave-hr")
    assert instance.steps[0].assignees[0].user_id == "u-admin"
    assert [a.user_id for a in instance.steps[1].assignees] == ["u-hr2"]


def test_manager_resolution_skips_inactive_manager(leave, approvals, org):
    org.users["u-mgr"]["is_active"] = False
    instance = request_leave(approvals)
    assert instance.steps[0].assignees[0].user_id == "u-head"


def test_department_head_step(org, definitions, approvals, admin_session):
    definitions.create_workflow(
        admin_session,
        ApprovalWorkflowCreate(
            name="Equipment purchase",
            module="financial",
            resource="purchase",
            steps=[WorkflowStepDefinition(approver_type=ApproverType.DEPARTMENT_HEAD)],
        ),
    )
    instance = approvals.create_instance(
        session_for("u-emp"),
        ApprovalRequestCreate(module="financial", resource="purchase", subject_id="po-1"),
    )
    assert instance.steps[0].assignees[0].user_id == "u-head"
    assert instance.steps[0].assignees[0].resolved_via == ApproverType.DEPARTMENT_HEAD


def test_missing_workflow_is_configuration_error(org, approvals):
    with pytest.raises(ConfigurationError):
        request_leave(approvals)


def test_unresolvable_step_halts_until_operator_retry(org, definitions, approvals, admin_session, store):
    definitions.create_workflow(
        admin_session,
        ApprovalWorkflowCreate(
            name="Invoice approval",
            module="financial",
            resource="invoice",
            steps=[WorkflowStepDefinition(approver_type=ApproverType.ROLE, approver_id="role-finance")],
        ),
    )
    payload = ApprovalRequestCreate(module="financial", resource="invoice", subject_id="inv-9")
    with pytest.raises(ConfigurationError, match="halted"):
        approvals.create_instance(session_for("u-emp"), payload)

    (halted,) = store.instances.values()
    assert halted.status == InstanceStatus.NOT_STARTED
    assert halted.version == 1
    assert "FINANCE" in halted.halted_reason
    with pytest.raises(ConflictError):
        approvals.create_instance(session_for("u-emp"), payload)

    add_user(store, "u-fin", "role-finance", manager_id="u-admin", department_id="dept-fin")
    started = approvals.start_instance(admin_session, halted.instance_id)
    assert started.status == InstanceStatus.IN_PROGRESS
    assert started.halted_reason is None
    assert [a.user_id for a in started.steps[0].assignees] == ["u-fin"]


def test_expected_version_mismatch_conflicts(leave, approvals):
    instance = request_leave(approvals)
    with pytest.raises(ConflictError):
        approvals.decide(instance.instance_id, "manager", "u-mgr", Decision.APPROVE, expected_version=0)
    assert approvals.get_instance(instance.instance_id).steps[0].status == StepStatus.PENDING

    updated = approvals.decide(
        instance.instance_id, "manager", "u-mgr", Decision.APPROVE, expected_version=instance.version
    )
    assert updated.version == instance.version + 1


def test_stored_instance_is_unchanged_when_decision_fails(leave, approvals):
    instance = request_leave(approvals)
    with pytest.raises(AuthorizationError):
        approvals.decide(instance.instance_id, "manager", "u-emp2", Decision.APPROVE)
    stored = approvals.get_instance(instance.instance_id)
    assert stored.version == instance.version
    assert stored.steps[0].status == StepStatus.PENDING


def test_duplicate_open_request_conflicts(leave, approvals):
    request_leave(approvals)
    with pytest.raises(ConflictError):
        request_leave(approvals)


def test_new_request_allowed_after_terminal(leave, approvals):
    first = request_leave(approvals)
    approvals.decide(first.instance_id, "manager", "u-mgr", Decision.REJECT)
    second = request_leave(approvals)
    assert second.instance_id != first.instance_id


def test_cancel_requires_requester_or_manager(leave, approvals, admin_session):
    instance = request_leave(approvals)
    with pytest.raises(AuthorizationError):
        approvals.cancel(session_for("u-emp2"), instance.instance_id, "not mine")

    cancelled = approvals.cancel(session_for("u-emp"), instance.instance_id, "plans changed")
    assert cancelled.status == InstanceStatus.CANCELLED
    with pytest.raises(ConflictError):
        approvals.cancel(admin_session, instance.instance_id)


@pytest.mark.parametrize(
    "policy,expected",
    [
        (TimeoutPolicy.APPROVE, InstanceStatus.IN_PROGRESS),
        (TimeoutPolicy.REJECT, InstanceStatus.REJECTED),
        (None, InstanceStatus.IN_PROGRESS),
    ],
)
def test_sweep_times_out_overdue_steps_once(org, definitions, approvals, admin_session, policy, expected):
    leave_workflow(definitions, admin_session, policy=policy, manager_timeout=1)
    instance = request_leave(approvals)

    later = utcnow() + timedelta(hours=2)
    result = approvals.sweep_timeouts(now=later)
    assert result.timed_out_steps == 1
    assert result.affected_instances == [instance.instance_id]

    swept = approvals.get_instance(instance.instance_id)
    assert swept.steps[0].status == StepStatus.TIMED_OUT
    assert swept.status == expected
    # No workflow policy means the service default, which blocks.
    assert swept.blocked is (policy is None)

    again = approvals.sweep_timeouts(now=later)
    assert again.timed_out_steps == 0
    assert approvals.get_instance(instance.instance_id).version == swept.version


def test_sweep_and_late_decision_race(org, definitions, approvals, admin_session):
    leave_workflow(definitions, admin_session, policy=TimeoutPolicy.REJECT, manager_timeout=1)
    instance = request_leave(approvals)
    approvals.sweep_timeouts(now=utcnow() + timedelta(hours=2))
    with pytest.raises(ConflictError):
        approvals.decide(instance.instance_id, "manager", "u-mgr", Decision.APPROVE)


def test_running_instance_keeps_its_step_snapshot(leave, approvals, definitions, admin_session):
    instance = request_leave(approvals)
    definitions.update_workflow(
        admin_session,
        leave.workflow_id,
        ApprovalWorkflowCreate(
            name="Leave approval",
            module="hrms",
            resource="leave",
            steps=[WorkflowStepDefinition(approver_type=ApproverType.USER, approver_id="u-admin")],
        ),
    )
    stored = approvals.get_instance(instance.instance_id)
    assert [s.step_id for s in stored.steps] == ["manager", "hr"]


def advance_to_hr(approvals):
    instance = request_leave(approvals)
    return approvals.decide(instance.instance_id, "manager", "u-mgr", Decision.APPROVE)


def test_demoted_role_member_cannot_decide(leave, approvals, security_service, admin_session):
    instance = advance_to_hr(approvals)
    security_service.assign_user_role(admin_session, "u-hr2", "role-employee")

    assert [a.user_id for a in approvals.current_pending_approvers(instance.instance_id)] == ["u-hr"]
    assert approvals.pending_for_user("u-hr2") == []
    with pytest.raises(AuthorizationError):
        approvals.decide(instance.instance_id, "hr", "u-hr2", Decision.APPROVE)

    stored = approvals.get_instance(instance.instance_id)
    assert stored.status == InstanceStatus.IN_PROGRESS
    assert stored.version == instance.version


def test_new_role_member_can_decide(leave, approvals, org):
    instance = advance_to_hr(approvals)
    add_user(org, "u-hr3", "role-hr", manager_id="u-admin", department_id="dept-people")

    pending = {a.user_id for a in approvals.current_pending_approvers(instance.instance_id)}
    assert pending == {"u-hr", "u-hr2", "u-hr3"}
    decided = approvals.decide(instance.instance_id, "hr", "u-hr3", Decision.APPROVE)
    assert decided.status == InstanceStatus.APPROVED
    assert decided.steps[1].decided_by == "u-hr3"


def test_deactivated_role_leaves_step_without_approvers(leave, approvals, security_service, admin_session):
    instance = advance_to_hr(approvals)
    security_service.update_role(admin_session, "role-hr", RoleUpdate(is_active=False))

    assert approvals.current_pending_approvers(instance.instance_id) == []
    with pytest.raises(AuthorizationError):
        approvals.decide(instance.instance_id, "hr", "u-hr", Decision.APPROVE)


def test_deactivated_manager_cannot_decide(leave, approvals, org):
    instance = request_leave(approvals)
    org.users["u-mgr"]["is_active"] = False

    assert approvals.pending_for_user("u-mgr") == []
    with pytest.raises(AuthorizationError):
        approvals.decide(instance.instance_id, "manager", "u-mgr", Decision.APPROVE)


def test_start_on_running_instance_conflicts(leave, approvals, admin_session, org):
    instance = request_leave(approvals)
    org.users["u-hr"]["is_active"] = False
    org.users["u-hr2"]["is_active"] = False

    with pytest.raises(ConflictError):
        approvals.start_instance(admin_session, instance.instance_id)

    stored = approvals.get_instance(instance.instance_id)
    assert stored.status == InstanceStatus.IN_PROGRESS
    assert stored.halted_reason is None
    assert stored.version == instance.version


def test_list_instances_is_scoped_to_involvement(leave, approvals, admin_session):
    instance = request_leave(approvals)
    assert approvals.list_instances(session_for("u-emp2")) == []
    assert [i.instance_id for i in approvals.list_instances(session_for("u-mgr"))] == [instance.instance_id]
    assert len(approvals.list_instances(admin_session, status=InstanceStatus.IN_PROGRESS)) == 1
    assert approvals.list_instances(admin_session, module="financial") == []

    with pytest.raises(AuthorizationError):
        approvals.ensure_visible(session_for("u-emp2"), instance)
