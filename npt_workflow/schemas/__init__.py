"""Pydantic schemas for the NPT workflow API."""

from .base import ErrorDetail, ErrorResponse, WorkflowBaseModel
from .directory import (
    AssignRoleRequest,
    DelegationRequest,
    DelegationResponse,
    EffectiveApproverResponse,
    RoleAssignmentResponse,
)
from .periods import (
    CreatePeriodRequest,
    DaySliceRequest,
    DaySliceResponse,
    KpiResponse,
    PeriodRejectRequest,
    PeriodReportResponse,
    PeriodTransitionRequest,
    StageEventResponse,
    TimelineResponse,
)
from .reports import (
    ActionRequest,
    ActionResponse,
    ApprovalRecordResponse,
    CreateReportRequest,
    NptFieldsPatch,
    RejectRequest,
    ReportResponse,
    WorkflowStateResponse,
)

__all__ = [
    # Base
    "WorkflowBaseModel",
    "ErrorDetail",
    "ErrorResponse",
    # Reports
    "NptFieldsPatch",
    "CreateReportRequest",
    "ActionRequest",
    "RejectRequest",
    "ReportResponse",
    "ApprovalRecordResponse",
    "ActionResponse",
    "WorkflowStateResponse",
    # Periods
    "CreatePeriodRequest",
    "PeriodTransitionRequest",
    "PeriodRejectRequest",
    "DaySliceRequest",
    "PeriodReportResponse",
    "DaySliceResponse",
    "StageEventResponse",
    "TimelineResponse",
    "KpiResponse",
    # Directory
    "AssignRoleRequest",
    "RoleAssignmentResponse",
    "DelegationRequest",
    "DelegationResponse",
    "EffectiveApproverResponse",
]
