"""Base schemas and common types for the NPT workflow API."""

from pydantic import BaseModel, ConfigDict


class WorkflowBaseModel(BaseModel):
    """Base model with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,  # Enable ORM mode
        populate_by_name=True,
        use_enum_values=True,
    )


# =============================================================================
# ERROR RESPONSES
# =============================================================================


class ErrorDetail(WorkflowBaseModel):
    """Detailed error information."""

    field: str | None = None
    message: str
    code: str


class ErrorResponse(WorkflowBaseModel):
    """Standard error response format."""

    error: str
    message: str
    details: list[ErrorDetail] = []
