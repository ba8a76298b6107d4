"""Directory API Routes: role assignments, delegations and approver lookup."""

from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from ..core import CurrentPrincipalDep, SessionDep
from ..schemas import (
    AssignRoleRequest,
    DelegationRequest,
    DelegationResponse,
    EffectiveApproverResponse,
    RoleAssignmentResponse,
)
from ..services.delegation_ledger import DelegationInput, DelegationLedger

router = APIRouter(tags=["directory"])


def get_delegation_ledger(session: SessionDep) -> DelegationLedger:
    return DelegationLedger(session)


DelegationLedgerDep = Annotated[DelegationLedger, Depends(get_delegation_ledger)]


@router.get(
    "/approvers/effective",
    response_model=EffectiveApproverResponse,
    summary="Who may act for a rig and role",
    description="Resolves delegation. `at` defaults to now.",
)
async def get_effective_approver(
    principal_id: CurrentPrincipalDep,
    ledger: DelegationLedgerDep,
    rig_id: Annotated[int, Query(ge=1)],
    role: Annotated[str, Query(min_length=1)],
    at: datetime | None = None,
):
    resolution = await ledger.resolve(rig_id, role, at)
    return EffectiveApproverResponse(
        rig_id=resolution.rig_id,
        role_key=resolution.role_key,
        principal_id=resolution.principal_id,
        nominal_id=resolution.nominal_id,
        delegation_id=resolution.delegation_id,
        is_delegated=resolution.is_delegated,
    )


# =============================================================================
# ROLE ASSIGNMENTS
# =============================================================================


@router.get(
    "/role-assignments",
    response_model=list[RoleAssignmentResponse],
    summary="Active role assignments for a rig",
)
async def list_role_assignments(
    principal_id: CurrentPrincipalDep,
    ledger: DelegationLedgerDep,
    rig_id: Annotated[int, Query(ge=1)],
):
    assignments = await ledger.directory.list_assignments(rig_id)
    return [RoleAssignmentResponse.model_validate(a) for a in assignments]


@router.post(
    "/role-assignments",
    response_model=RoleAssignmentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Assign a role",
    description="Deactivates the current holder, if any, and records the new assignment.",
)
async def assign_role(
    request: AssignRoleRequest,
    principal_id: CurrentPrincipalDep,
    ledger: DelegationLedgerDep,
):
    assignment = await ledger.directory.assign_role(
        request.rig_id,
        request.role,
        request.principal_id,
        assigned_by=principal_id,
    )
    return RoleAssignmentResponse.model_validate(assignment)


@router.delete(
    "/role-assignments/{rig_id}/{role}",
    response_model=RoleAssignmentResponse,
    summary="Vacate a role",
)
async def revoke_role(
    rig_id: int,
    role: str,
    principal_id: CurrentPrincipalDep,
    ledger: DelegationLedgerDep,
):
    assignment = await ledger.directory.revoke_role(rig_id, role)
    return RoleAssignmentResponse.model_validate(assignment)


# =============================================================================
# DELEGATIONS
# =============================================================================


@router.get(
    "/delegations",
    response_model=list[DelegationResponse],
    summary="Delegations given or received by the caller",
)
async def list_delegations(
    principal_id: CurrentPrincipalDep,
    ledger: DelegationLedgerDep,
    include_inactive: bool = False,
):
    delegations = await ledger.list_delegations(principal_id, include_inactive=include_inactive)
    return [DelegationResponse.model_validate(d) for d in delegations]


@router.post(
    "/delegations",
    response_model=DelegationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Delegate the caller's approval authority",
)
async def create_delegation(
    request: DelegationRequest,
    principal_id: CurrentPrincipalDep,
    ledger: DelegationLedgerDep,
):
    delegation = await ledger.delegate(
        DelegationInput(
            delegator_id=principal_id,
            delegate_id=request.delegate_id,
            starts_at=request.starts_at,
            ends_at=request.ends_at,
            rig_id=request.rig_id,
            role=request.role,
            reason=request.reason,
        )
    )
    return DelegationResponse.model_validate(delegation)


@router.delete(
    "/delegations/{delegation_id}",
    response_model=DelegationResponse,
    summary="Revoke a delegation",
)
async def revoke_delegation(
    delegation_id: UUID,
    principal_id: CurrentPrincipalDep,
    ledger: DelegationLedgerDep,
):
    delegation = await ledger.revoke_delegation(delegation_id, revoked_by=principal_id)
    return DelegationResponse.model_validate(delegation)
