"""Business logic services for the NPT workflow."""

from .approval_engine import (
    ActionInput,
    ActionResult,
    ApprovalEngine,
    CreateReportInput,
    WorkflowState,
)
from .delegation_ledger import ApproverResolution, DelegationInput, DelegationLedger
from .exceptions import (
    ConcurrencyConflictError,
    InvalidTransitionError,
    NotFoundError,
    UnauthorizedError,
    WorkflowError,
    WorkflowValidationError,
)
from .lifecycle import DaySliceInput, LifecycleKpis, LifecycleService, PeriodTimeline
from .notifications import NotificationConfig, NotificationQueue
from .path_resolver import WorkflowPath, normalize_category, resolve_path
from .role_directory import RoleDirectory
from .sla_monitor import CheckResult, MonitorConfig, SlaMonitor

__all__ = [
    # Approval engine
    "ApprovalEngine",
    "ActionInput",
    "ActionResult",
    "CreateReportInput",
    "WorkflowState",
    # Roles & delegation
    "RoleDirectory",
    "DelegationLedger",
    "DelegationInput",
    "ApproverResolution",
    # Paths
    "WorkflowPath",
    "resolve_path",
    "normalize_category",
    # Lifecycle
    "LifecycleService",
    "DaySliceInput",
    "PeriodTimeline",
    "LifecycleKpis",
    # Notifications & monitoring
    "NotificationQueue",
    "NotificationConfig",
    "SlaMonitor",
    "MonitorConfig",
    "CheckResult",
    # Errors
    "WorkflowError",
    "NotFoundError",
    "InvalidTransitionError",
    "UnauthorizedError",
    "WorkflowValidationError",
    "ConcurrencyConflictError",
]
