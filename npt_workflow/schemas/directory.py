"""Request and response schemas for role assignments and delegations."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from .base import WorkflowBaseModel


class AssignRoleRequest(BaseModel):
    rig_id: int = Field(..., ge=1)
    role: str = Field(..., min_length=1, max_length=64)
    principal_id: str = Field(..., min_length=1, max_length=255)


class RoleAssignmentResponse(WorkflowBaseModel):
    id: UUID
    rig_id: int
    role_key: str
    principal_id: str
    is_active: bool
    assigned_at: datetime
    assigned_by: str | None
    deactivated_at: datetime | None


class DelegationRequest(BaseModel):
    """Delegate the caller's approval authority for a time window."""
    delegate_id: str = Field(..., min_length=1, max_length=255)
    starts_at: datetime
    ends_at: datetime
    rig_id: int | None = Field(default=None, description="Limit to one rig; omit for all")
    role: str | None = Field(default=None, description="Limit to one role; omit for all")
    reason: str | None = Field(default=None, max_length=500)

    @model_validator(mode="after")
    def check_window(self) -> "DelegationRequest":
        if self.ends_at <= self.starts_at:
            raise ValueError("ends_at must be after starts_at")
        return self


class DelegationResponse(WorkflowBaseModel):
    id: UUID
    delegator_id: str
    delegate_id: str
    starts_at: datetime
    ends_at: datetime
    rig_id: int | None
    role_key: str | None
    reason: str | None
    is_active: bool
    created_at: datetime
    revoked_at: datetime | None


class EffectiveApproverResponse(WorkflowBaseModel):
    rig_id: int
    role_key: str
    principal_id: str | None
    nominal_id: str | None
    delegation_id: UUID | None
    is_delegated: bool
