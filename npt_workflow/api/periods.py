"""Period API Routes: monthly period reports, day slices and KPIs."""

from datetime import date
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from ..core import CurrentPrincipalDep, SessionDep
from ..models import PeriodStatus
from ..schemas import (
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
from ..services.lifecycle import DaySliceInput, LifecycleService

router = APIRouter(prefix="/periods", tags=["periods"])


def get_lifecycle_service(session: SessionDep) -> LifecycleService:
    return LifecycleService(session)


LifecycleServiceDep = Annotated[LifecycleService, Depends(get_lifecycle_service)]


# =============================================================================
# PERIOD REPORTS
# =============================================================================


@router.post(
    "",
    response_model=PeriodReportResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Get or create the period report for a rig and month",
)
async def get_or_create_period(
    request: CreatePeriodRequest,
    principal_id: CurrentPrincipalDep,
    service: LifecycleServiceDep,
):
    period = await service.get_or_create_period_report(
        request.month, request.rig_id, principal_id
    )
    return PeriodReportResponse.model_validate(period)


@router.get("", response_model=list[PeriodReportResponse], summary="List period reports")
async def list_periods(
    principal_id: CurrentPrincipalDep,
    service: LifecycleServiceDep,
    rig_id: int | None = None,
    period_status: Annotated[PeriodStatus | None, Query(alias="status")] = None,
    start_month: str | None = None,
    end_month: str | None = None,
):
    periods = await service.list_period_reports(
        rig_id=rig_id,
        status=period_status,
        start_month=start_month,
        end_month=end_month,
    )
    return [PeriodReportResponse.model_validate(p) for p in periods]


@router.get(
    "/kpis",
    response_model=KpiResponse,
    summary="Review KPIs",
    description="Totals, on-time approval rate and average review time across period reports.",
)
async def get_kpis(
    principal_id: CurrentPrincipalDep,
    service: LifecycleServiceDep,
    rig_id: int | None = None,
    start_month: str | None = None,
    end_month: str | None = None,
):
    kpis = await service.get_kpis(rig_id=rig_id, start_month=start_month, end_month=end_month)
    return KpiResponse.model_validate(kpis)


@router.get("/{period_id}", response_model=PeriodReportResponse, summary="Get a period report")
async def get_period(
    period_id: UUID,
    principal_id: CurrentPrincipalDep,
    service: LifecycleServiceDep,
):
    return PeriodReportResponse.model_validate(await service.get_period_report(period_id))


@router.get(
    "/{period_id}/timeline",
    response_model=TimelineResponse,
    summary="Period report with day slices and stage events",
)
async def get_timeline(
    period_id: UUID,
    principal_id: CurrentPrincipalDep,
    service: LifecycleServiceDep,
):
    return TimelineResponse.model_validate(await service.get_timeline(period_id))


@router.get(
    "/{period_id}/stages",
    response_model=list[StageEventResponse],
    summary="Ordered stage events",
)
async def get_stage_events(
    period_id: UUID,
    principal_id: CurrentPrincipalDep,
    service: LifecycleServiceDep,
):
    events = await service.get_stage_events(period_id)
    return [StageEventResponse.model_validate(e) for e in events]


# =============================================================================
# TRANSITIONS
# =============================================================================


@router.post("/{period_id}/submit", response_model=PeriodReportResponse, summary="Submit for review")
async def submit_period(
    period_id: UUID,
    request: PeriodTransitionRequest,
    principal_id: CurrentPrincipalDep,
    service: LifecycleServiceDep,
):
    period = await service.submit(period_id, principal_id, request.comment)
    return PeriodReportResponse.model_validate(period)


@router.post(
    "/{period_id}/start-review",
    response_model=PeriodReportResponse,
    summary="Take a submitted report into review",
)
async def start_review(
    period_id: UUID,
    request: PeriodTransitionRequest,
    principal_id: CurrentPrincipalDep,
    service: LifecycleServiceDep,
):
    period = await service.start_review(period_id, principal_id, request.comment)
    return PeriodReportResponse.model_validate(period)


@router.post("/{period_id}/approve", response_model=PeriodReportResponse, summary="Approve")
async def approve_period(
    period_id: UUID,
    request: PeriodTransitionRequest,
    principal_id: CurrentPrincipalDep,
    service: LifecycleServiceDep,
):
    period = await service.approve(period_id, principal_id, request.comment)
    return PeriodReportResponse.model_validate(period)


@router.post("/{period_id}/reject", response_model=PeriodReportResponse, summary="Reject")
async def reject_period(
    period_id: UUID,
    request: PeriodRejectRequest,
    principal_id: CurrentPrincipalDep,
    service: LifecycleServiceDep,
):
    period = await service.reject(period_id, principal_id, request.reason)
    return PeriodReportResponse.model_validate(period)


@router.post(
    "/{period_id}/resubmit",
    response_model=PeriodReportResponse,
    summary="Resubmit a rejected report",
)
async def resubmit_period(
    period_id: UUID,
    request: PeriodTransitionRequest,
    principal_id: CurrentPrincipalDep,
    service: LifecycleServiceDep,
):
    period = await service.resubmit(period_id, principal_id, request.comment)
    return PeriodReportResponse.model_validate(period)


# =============================================================================
# DAY SLICES
# =============================================================================


@router.put(
    "/{month}/{rig_id}/days/{day}",
    response_model=DaySliceResponse,
    summary="Upsert one day's NPT hours",
    description="""
    Creates the period report on first write. Recomputes the period's
    totals after the write; the period's status is never changed.
    """,
)
async def upsert_day_slice(
    month: str,
    rig_id: int,
    day: date,
    request: DaySliceRequest,
    principal_id: CurrentPrincipalDep,
    service: LifecycleServiceDep,
):
    slice_ = await service.upsert_day_slice(
        month,
        rig_id,
        DaySliceInput(
            day=day,
            hours=request.hours,
            npt_type=request.npt_type,
            notes=request.notes,
        ),
        updated_by=principal_id,
    )
    if request.report_ids:
        slice_ = await service.link_reports_to_day(
            month, rig_id, day, request.report_ids, updated_by=principal_id
        )
    return DaySliceResponse.model_validate(slice_)
