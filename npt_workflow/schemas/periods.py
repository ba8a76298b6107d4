"""Request and response schemas for monthly period reports."""

from datetime import date, datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from ..models import DayStatus, PeriodStatus, StageName
from .base import WorkflowBaseModel

MONTH_FIELD_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"


class CreatePeriodRequest(BaseModel):
    month: str = Field(..., pattern=MONTH_FIELD_PATTERN, description="YYYY-MM")
    rig_id: int = Field(..., ge=1)


class PeriodTransitionRequest(BaseModel):
    comment: str | None = Field(default=None, max_length=2000)


class PeriodRejectRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)


class DaySliceRequest(BaseModel):
    hours: float = Field(..., ge=0, le=24)
    npt_type: str | None = Field(
        default=None,
        max_length=50,
        description="Contractual, Operational or Abraj",
    )
    notes: str | None = None
    report_ids: list[UUID] = Field(
        default_factory=list,
        description="NPT reports backing this day",
    )


class PeriodReportResponse(WorkflowBaseModel):
    id: UUID
    month: str
    rig_id: int
    created_by: str
    status: PeriodStatus
    sla_days: int
    total_hours: float
    contractual_hours: float
    operational_hours: float
    abraj_hours: float
    hours_by_category: dict[str, Any]
    notes: str | None
    submitted_at: datetime | None
    approved_by: str | None
    approved_at: datetime | None
    rejection_reason: str | None
    created_at: datetime
    version: int


class DaySliceResponse(WorkflowBaseModel):
    id: UUID
    day: date
    hours: float
    npt_type: str | None
    notes: str | None
    report_ids: list[str]
    day_status: DayStatus
    updated_by: str | None


class StageEventResponse(WorkflowBaseModel):
    id: UUID
    sequence: int
    stage: StageName
    previous_stage: str | None
    principal_id: str
    comment: str | None
    created_at: datetime


class TimelineResponse(WorkflowBaseModel):
    report: PeriodReportResponse
    day_slices: list[DaySliceResponse]
    stage_events: list[StageEventResponse]


class KpiResponse(WorkflowBaseModel):
    total_reports: int
    total_npt_hours: float
    approved_on_time_pct: float
    average_review_days: float
    over_sla_count: int
