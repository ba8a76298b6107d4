"""SQLAlchemy models for the NPT workflow."""

from .base import Base, TimestampMixin, UUIDMixin
from .models import (
    EDITABLE_REPORT_FIELDS,
    PENDING_PREFIX,
    STATUS_APPROVED,
    STATUS_DRAFT,
    STATUS_REJECTED,
    TERMINAL_STATUSES,
    ApprovalAction,
    ApprovalRecord,
    DaySlice,
    DayStatus,
    Delegation,
    Notification,
    NotificationRule,
    NptReport,
    PeriodReport,
    PeriodStatus,
    RoleAssignment,
    StageEvent,
    StageName,
    pending_status,
)

__all__ = [
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    # Enums
    "ApprovalAction",
    "PeriodStatus",
    "StageName",
    "DayStatus",
    "NotificationRule",
    # Workflow status helpers
    "STATUS_DRAFT",
    "STATUS_APPROVED",
    "STATUS_REJECTED",
    "PENDING_PREFIX",
    "TERMINAL_STATUSES",
    "EDITABLE_REPORT_FIELDS",
    "pending_status",
    # Models
    "NptReport",
    "ApprovalRecord",
    "RoleAssignment",
    "Delegation",
    "PeriodReport",
    "StageEvent",
    "DaySlice",
    "Notification",
]
