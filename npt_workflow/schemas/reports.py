"""Request and response schemas for NPT reports and their approval trail."""

from datetime import date, datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from ..models import ApprovalAction
from .base import WorkflowBaseModel


class NptFieldsPatch(BaseModel):
    """Editable NPT fields. Only the fields sent are applied."""

    model_config = ConfigDict(extra="forbid")

    report_date: date | None = None
    hours: float | None = Field(default=None, ge=0, le=24)
    npt_type: str | None = Field(default=None, max_length=50)
    system: str | None = Field(default=None, max_length=255)
    equipment: str | None = Field(default=None, max_length=255)
    description: str | None = None
    immediate_cause: str | None = None
    root_cause: str | None = None
    corrective_action: str | None = None
    future_action: str | None = None
    action_party: str | None = Field(default=None, max_length=255)
    notification_number: str | None = Field(default=None, max_length=100)

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class CreateReportRequest(BaseModel):
    """Request to create a draft NPT report."""
    rig_id: int = Field(..., ge=1)
    category: str | None = Field(
        default=None,
        max_length=100,
        description="Department, e.g. 'Drilling' or 'E.Maintenance'. Selects the approval path.",
    )
    fields: NptFieldsPatch = Field(default_factory=NptFieldsPatch)


class ActionRequest(BaseModel):
    """Body shared by initiate, approve and request-changes."""
    comment: str | None = Field(default=None, max_length=2000)
    patch: NptFieldsPatch | None = None
    expected_version: int | None = Field(
        default=None,
        description="For optimistic locking: the report version you acted on",
    )


class RejectRequest(BaseModel):
    """Body for reject. The comment becomes the rejection reason."""
    comment: str = Field(..., min_length=1, max_length=2000)
    expected_version: int | None = None


class ReportResponse(WorkflowBaseModel):
    id: UUID
    rig_id: int
    category: str | None
    created_by: str
    created_at: datetime

    report_date: date | None
    hours: float | None
    npt_type: str | None
    system: str | None
    equipment: str | None
    description: str | None
    immediate_cause: str | None
    root_cause: str | None
    corrective_action: str | None
    future_action: str | None
    action_party: str | None
    notification_number: str | None

    workflow_status: str
    current_approver_role: str | None
    workflow_path: list[str] | None
    workflow_path_name: str | None
    initiated_by: str | None
    initiated_at: datetime | None
    completed_at: datetime | None
    rejection_reason: str | None
    version: int


class ApprovalRecordResponse(WorkflowBaseModel):
    id: UUID
    sequence: int
    principal_id: str
    acting_role: str
    delegated_from: str | None
    action: ApprovalAction
    comment: str | None
    edited_fields: list[str]
    previous_values: dict[str, Any]
    status_before: str
    status_after: str
    created_at: datetime


class ActionResponse(WorkflowBaseModel):
    """Report after the action, with the audit record it produced."""
    report: ReportResponse
    record: ApprovalRecordResponse


class WorkflowStateResponse(WorkflowBaseModel):
    report_id: UUID
    status: str
    path_name: str | None
    path: list[str]
    current_role: str | None
    current_approver: str | None
    next_role: str | None
    can_initiate: bool
    can_approve: bool
    can_reject: bool
    can_edit: bool
