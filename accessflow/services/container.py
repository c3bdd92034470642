from accessflow.core.config import settings
from accessflow.models.workflow import TimeoutPolicy
from accessflow.repositories.data_store import DataStore
from accessflow.services.approval_service import ApprovalService
from accessflow.services.approver_resolver import ApproverResolver
from accessflow.services.audit_service import EventLogger
from accessflow.services.auth_service import AuthService
from accessflow.services.permission_service import PermissionService
from accessflow.services.security_service import SecurityService
from accessflow.services.workflow_definition_service import WorkflowDefinitionService


store = DataStore()
event_logger = EventLogger()

permission_service = PermissionService(store=store)
security_service = SecurityService(
    store=store,
    event_logger=event_logger,
    permission_service=permission_service,
)
auth_service = AuthService(
    store=store,
    event_logger=event_logger,
    permission_service=permission_service,
    seed=settings.seed_demo_data,
)
workflow_definition_service = WorkflowDefinitionService(
    store=store,
    event_logger=event_logger,
    seed=settings.seed_demo_data,
)
approval_service = ApprovalService(
    store=store,
    event_logger=event_logger,
    definitions=workflow_definition_service,
    resolver=ApproverResolver(store),
    default_timeout_policy=TimeoutPolicy(settings.timeout_policy),
)
