"""
Report API Routes: NPT report approval workflow.

1. POST /reports - Create a draft report
2. POST /reports/{id}/initiate|approve|reject|request-changes - Workflow actions
3. GET /reports/{id}/audit - Ordered approval records
4. GET /reports/{id}/state - What the caller may do next

Workflow errors are translated to HTTP responses by the application's
exception handler.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, status

from ..core import CurrentPrincipalDep, SessionDep
from ..schemas import (
    ActionRequest,
    ActionResponse,
    ApprovalRecordResponse,
    CreateReportRequest,
    RejectRequest,
    ReportResponse,
    WorkflowStateResponse,
)
from ..services.approval_engine import (
    ActionInput,
    ActionResult,
    ApprovalEngine,
    CreateReportInput,
)

router = APIRouter(prefix="/reports", tags=["reports"])


# =============================================================================
# DEPENDENCIES
# =============================================================================


def get_approval_engine(session: SessionDep) -> ApprovalEngine:
    return ApprovalEngine(session)


ApprovalEngineDep = Annotated[ApprovalEngine, Depends(get_approval_engine)]


def _action_input(request: ActionRequest) -> ActionInput:
    return ActionInput(
        comment=request.comment,
        patch=request.patch.changes() if request.patch else None,
        expected_version=request.expected_version,
    )


def _action_response(result: ActionResult) -> ActionResponse:
    return ActionResponse(
        report=ReportResponse.model_validate(result.report),
        record=ApprovalRecordResponse.model_validate(result.record),
    )


# =============================================================================
# ENDPOINTS
# =============================================================================


@router.post(
    "",
    response_model=ReportResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a draft NPT report",
)
async def create_report(
    request: CreateReportRequest,
    principal_id: CurrentPrincipalDep,
    engine: ApprovalEngineDep,
):
    report = await engine.create_report(
        CreateReportInput(
            rig_id=request.rig_id,
            category=request.category,
            fields=request.fields.changes(),
        ),
        created_by=principal_id,
    )
    return ReportResponse.model_validate(report)


@router.get(
    "/pending",
    response_model=list[ReportResponse],
    summary="Reports waiting on the caller",
    description="Open reports whose pending role currently resolves to the caller, delegation included.",
)
async def list_pending_reports(
    principal_id: CurrentPrincipalDep,
    engine: ApprovalEngineDep,
):
    reports = await engine.pending_reports_for(principal_id)
    return [ReportResponse.model_validate(r) for r in reports]


@router.get("/{report_id}", response_model=ReportResponse, summary="Get a report")
async def get_report(
    report_id: UUID,
    principal_id: CurrentPrincipalDep,
    engine: ApprovalEngineDep,
):
    return ReportResponse.model_validate(await engine.get_report(report_id))


@router.get(
    "/{report_id}/audit",
    response_model=list[ApprovalRecordResponse],
    summary="Approval audit trail",
)
async def get_audit_trail(
    report_id: UUID,
    principal_id: CurrentPrincipalDep,
    engine: ApprovalEngineDep,
):
    records = await engine.get_audit_trail(report_id)
    return [ApprovalRecordResponse.model_validate(r) for r in records]


@router.get(
    "/{report_id}/state",
    response_model=WorkflowStateResponse,
    summary="Workflow state for the caller",
)
async def get_workflow_state(
    report_id: UUID,
    principal_id: CurrentPrincipalDep,
    engine: ApprovalEngineDep,
):
    state = await engine.workflow_state(report_id, principal_id)
    return WorkflowStateResponse.model_validate(state)


@router.post(
    "/{report_id}/initiate",
    response_model=ActionResponse,
    summary="Start the approval workflow",
    description="""
    Moves a draft report to pending at the second role of its path.

    The caller must currently hold (directly or by delegation) the first
    role of the path on the report's rig.
    """,
)
async def initiate_report(
    report_id: UUID,
    request: ActionRequest,
    principal_id: CurrentPrincipalDep,
    engine: ApprovalEngineDep,
):
    result = await engine.initiate(report_id, principal_id, _action_input(request))
    return _action_response(result)


@router.post(
    "/{report_id}/approve",
    response_model=ActionResponse,
    summary="Approve the pending step",
)
async def approve_report(
    report_id: UUID,
    request: ActionRequest,
    principal_id: CurrentPrincipalDep,
    engine: ApprovalEngineDep,
):
    result = await engine.approve(report_id, principal_id, _action_input(request))
    return _action_response(result)


@router.post(
    "/{report_id}/reject",
    response_model=ActionResponse,
    summary="Reject the report",
)
async def reject_report(
    report_id: UUID,
    request: RejectRequest,
    principal_id: CurrentPrincipalDep,
    engine: ApprovalEngineDep,
):
    result = await engine.reject(
        report_id,
        principal_id,
        ActionInput(comment=request.comment, expected_version=request.expected_version),
    )
    return _action_response(result)


@router.post(
    "/{report_id}/request-changes",
    response_model=ActionResponse,
    summary="Patch and annotate without advancing",
)
async def request_changes(
    report_id: UUID,
    request: ActionRequest,
    principal_id: CurrentPrincipalDep,
    engine: ApprovalEngineDep,
):
    result = await engine.request_changes(report_id, principal_id, _action_input(request))
    return _action_response(result)
