import os
import tempfile

# Must be set before accessflow.core.config is first imported.
os.environ.setdefault("ACCESSFLOW_DATA_DIR", tempfile.mkdtemp(prefix="accessflow-tests-"))

from datetime import datetime, timezone  # noqa: E402

import pytest  # noqa: E402

from accessflow.core import workflow_engine as engine  # noqa: E402
from accessflow.core.rbac import ALL_PERMISSIONS  # noqa: E402
from accessflow.models.auth import SessionSnapshot  # noqa: E402
from accessflow.models.workflow import (  # noqa: E402
    ActorRef,
    ApprovalInstance,
    ApproverType,
    StepState,
    TimeoutPolicy,
    WorkflowType,
)
from accessflow.repositories.data_store import DataStore  # noqa: E402
from accessflow.services.approval_service import ApprovalService  # noqa: E402
from accessflow.services.approver_resolver import ApproverResolver  # noqa: E402
from accessflow.services.audit_service import EventLogger  # noqa: E402
from accessflow.services.permission_service import PermissionService  # noqa: E402
from accessflow.services.security_service import SecurityService  # noqa: E402
from accessflow.services.workflow_definition_service import WorkflowDefinitionService  # noqa: E402

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def add_user(store, user_id, role_id, manager_id=None, department_id="dept-eng", is_active=True):
    store.users[user_id] = {
        "user_id": user_id,
        "username": user_id,
        "full_name": user_id.title(),
        "role_id": role_id,
        "manager_id": manager_id,
        "department_id": department_id,
        "is_active": is_active,
        "hashed_password": "not-used",
    }
    return store.users[user_id]


def make_instance(workflow_type, steps, policy=TimeoutPolicy.BLOCK):
    """Build a started instance; ``steps`` is a list of (step_id, is_required, extra) tuples."""
    states = []
    for order, (step_id, is_required, extra) in enumerate(steps, start=1):
        states.append(
            StepState(
                step_id=step_id,
                step_order=order,
                approver_type=ApproverType.USER,
                approver_id=f"u-{step_id}",
                is_required=is_required,
                **extra,
            )
        )
    instance = ApprovalInstance(
        instance_id="apr-test",
        workflow_id="wf-test",
        workflow_name="Test workflow",
        workflow_type=workflow_type,
        timeout_policy=policy,
        module="hrms",
        resource="leave",
        subject_id="leave-1",
        requested_by="u-requester",
        steps=states,
        created_at=T0,
        updated_at=T0,
    )
    assignments = {
        state.step_id: [ActorRef(user_id=f"u-{state.step_id}", resolved_via=ApproverType.USER)]
        for state in states
    }
    return engine.start(instance, assignments, T0)


@pytest.fixture
def sequential_pair():
    return make_instance(WorkflowType.SEQUENTIAL, [("a", True, {}), ("b", True, {})])


@pytest.fixture
def store():
    return DataStore()


@pytest.fixture
def event_logger(tmp_path):
    return EventLogger(tmp_path / "events.jsonl")


@pytest.fixture
def permission_service(store):
    return PermissionService(store)


@pytest.fixture
def security_service(store, event_logger, permission_service):
    return SecurityService(store, event_logger, permission_service)


@pytest.fixture
def org(store, security_service):
    """Small org chart: admin -> head -> manager -> two employees, plus two HR users."""
    _ = security_service
    store.departments["dept-eng"] = {"department_id": "dept-eng", "name": "Engineering", "head_id": "u-head"}
    add_user(store, "u-admin", "role-admin", department_id="dept-ops")
    add_user(store, "u-head", "role-manager", manager_id="u-admin")
    add_user(store, "u-mgr", "role-manager", manager_id="u-head")
    add_user(store, "u-emp", "role-employee", manager_id="u-mgr")
    add_user(store, "u-emp2", "role-employee", manager_id="u-mgr")
    add_user(store, "u-hr", "role-hr", manager_id="u-admin", department_id="dept-people")
    add_user(store, "u-hr2", "role-hr", manager_id="u-admin", department_id="dept-people")
    return store


@pytest.fixture
def definitions(store, event_logger):
    return WorkflowDefinitionService(store, event_logger, seed=False)


@pytest.fixture
def approvals(store, event_logger, definitions):
    return ApprovalService(store, event_logger, definitions, ApproverResolver(store))


@pytest.fixture
def admin_session():
    return SessionSnapshot(
        user_id="u-admin",
        username="u-admin",
        role="Admin",
        permissions=ALL_PERMISSIONS,
        config_version=1,
    )


def session_for(user_id, permissions=frozenset(), role="Employee"):
    return SessionSnapshot(
        user_id=user_id,
        username=user_id,
        role=role,
        permissions=frozenset(permissions),
        config_version=1,
    )
