"""SQLAlchemy ORM Models for the NPT approval workflow.

Approval records and stage events are append-only. Role assignments and
delegations are never deleted; they are closed out by timestamp so that
"who was the approver at time t" stays answerable.
"""

from datetime import date, datetime
from enum import Enum as PyEnum
from typing import Any
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from ..core.clock import utcnow
from .base import Base, TimestampMixin, UUIDMixin


# =============================================================================
# ENUMS
# =============================================================================


class ApprovalAction(str, PyEnum):
    INITIATE = "initiate"
    APPROVE = "approve"
    REJECT = "reject"
    REQUEST_CHANGES = "request_changes"


class PeriodStatus(str, PyEnum):
    """Lifecycle of a monthly period report."""
    DRAFT = "Draft"
    SUBMITTED = "Submitted"
    IN_REVIEW = "In_Review"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class StageName(str, PyEnum):
    CREATED = "Created"
    SUBMITTED = "Submitted"
    IN_REVIEW = "In_Review"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    RESUBMITTED = "Resubmitted"


class DayStatus(str, PyEnum):
    NO_ENTRY = "No-Entry"
    DRAFT = "Draft"
    SUBMITTED = "Submitted"
    IN_REVIEW = "In_Review"
    APPROVED = "Approved"


class NotificationRule(str, PyEnum):
    PENDING_APPROVAL = "pending_approval"
    APPROVAL_COMPLETE = "approval_complete"
    REPORT_REJECTED = "report_rejected"
    OVER_SLA = "over_sla"
    STALLED = "stalled"


def _enum(enum_cls: type[PyEnum], name: str) -> Enum:
    return Enum(enum_cls, name=name, values_callable=lambda x: [e.value for e in x])


# =============================================================================
# NPT REPORTS & APPROVAL AUDIT
# =============================================================================


# workflow_status values
STATUS_DRAFT = "draft"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"
PENDING_PREFIX = "pending:"

TERMINAL_STATUSES = frozenset({STATUS_APPROVED, STATUS_REJECTED})


def pending_status(role_key: str) -> str:
    return f"{PENDING_PREFIX}{role_key}"


class NptReport(Base, UUIDMixin, TimestampMixin):
    """A single NPT event report moving through the approval path."""

    __tablename__ = "npt_reports"

    rig_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    category: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
        comment="Department as supplied, e.g. 'Drilling' or 'E.Maintenance'",
    )
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)

    # NPT fields (editable while the report is open)
    report_date: Mapped[date | None] = mapped_column(nullable=True)
    hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    npt_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    system: Mapped[str | None] = mapped_column(String(255), nullable=True)
    equipment: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    immediate_cause: Mapped[str | None] = mapped_column(Text, nullable=True)
    root_cause: Mapped[str | None] = mapped_column(Text, nullable=True)
    corrective_action: Mapped[str | None] = mapped_column(Text, nullable=True)
    future_action: Mapped[str | None] = mapped_column(Text, nullable=True)
    action_party: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notification_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Workflow state
    workflow_status: Mapped[str] = mapped_column(
        String(64), default=STATUS_DRAFT, nullable=False, index=True
    )
    current_approver_role: Mapped[str | None] = mapped_column(String(64), nullable=True)
    workflow_path: Mapped[list[str] | None] = mapped_column(
        nullable=True,
        comment="Role list captured at initiation; never re-resolved",
    )
    workflow_path_name: Mapped[str | None] = mapped_column(String(50), nullable=True)
    initiated_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    initiated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Optimistic lock counter, maintained by the ORM on every UPDATE
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_closed(self) -> bool:
        return self.workflow_status in TERMINAL_STATUSES


# Fields an approver may patch while acting on a report
EDITABLE_REPORT_FIELDS = frozenset({
    "report_date",
    "hours",
    "npt_type",
    "system",
    "equipment",
    "description",
    "immediate_cause",
    "root_cause",
    "corrective_action",
    "future_action",
    "action_party",
    "notification_number",
})


class ApprovalRecord(Base, UUIDMixin):
    """Append-only audit row; one per successful workflow action."""

    __tablename__ = "approval_records"
    __table_args__ = (
        UniqueConstraint("report_id", "sequence", name="uq_approval_records_report_sequence"),
    )

    report_id: Mapped[UUID] = mapped_column(
        ForeignKey("npt_reports.id"), nullable=False, index=True
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    principal_id: Mapped[str] = mapped_column(String(255), nullable=False)
    acting_role: Mapped[str] = mapped_column(String(64), nullable=False)
    delegated_from: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="Nominal role holder when the actor was a delegate",
    )
    action: Mapped[ApprovalAction] = mapped_column(
        _enum(ApprovalAction, "approval_action"), nullable=False
    )
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    edited_fields: Mapped[list[str]] = mapped_column(default=list, nullable=False)
    previous_values: Mapped[dict[str, Any]] = mapped_column(default=dict, nullable=False)
    status_before: Mapped[str] = mapped_column(String(64), nullable=False)
    status_after: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


# =============================================================================
# ROLE DIRECTORY & DELEGATIONS
# =============================================================================


class RoleAssignment(Base, UUIDMixin):
    """Who holds a workflow role on a rig, and for what interval."""

    __tablename__ = "role_assignments"
    __table_args__ = (
        Index(
            "uq_role_assignments_active_rig_role",
            "rig_id",
            "role_key",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    rig_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    role_key: Mapped[str] = mapped_column(String(64), nullable=False)
    principal_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    assigned_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    assigned_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    deactivated_at: Mapped[datetime | None] = mapped_column(nullable=True)


class Delegation(Base, UUIDMixin):
    """Time-bounded hand-over of approval authority.

    ``rig_id`` / ``role_key`` of None mean "any rig" / "any role". The active
    window is half-open: ``starts_at <= t < ends_at``.
    """

    __tablename__ = "delegations"

    delegator_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    delegate_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    starts_at: Mapped[datetime] = mapped_column(nullable=False)
    ends_at: Mapped[datetime] = mapped_column(nullable=False)
    rig_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    role_key: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(nullable=True)


# =============================================================================
# MONTHLY LIFECYCLE
# =============================================================================


class PeriodReport(Base, UUIDMixin, TimestampMixin):
    """Monthly roll-up of NPT for one rig."""

    __tablename__ = "period_reports"
    __table_args__ = (
        UniqueConstraint("month", "rig_id", name="uq_period_reports_month_rig"),
    )

    month: Mapped[str] = mapped_column(String(7), nullable=False, comment="YYYY-MM")
    rig_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[PeriodStatus] = mapped_column(
        _enum(PeriodStatus, "period_status"),
        default=PeriodStatus.DRAFT,
        nullable=False,
        index=True,
    )
    sla_days: Mapped[int] = mapped_column(Integer, default=7, nullable=False)

    # Totals, recomputed from day slices
    total_hours: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    contractual_hours: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    operational_hours: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    abraj_hours: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    hours_by_category: Mapped[dict[str, Any]] = mapped_column(default=dict, nullable=False)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    submitted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class StageEvent(Base, UUIDMixin):
    """Append-only record of a period report transition."""

    __tablename__ = "stage_events"
    __table_args__ = (
        UniqueConstraint("period_report_id", "sequence", name="uq_stage_events_period_sequence"),
    )

    period_report_id: Mapped[UUID] = mapped_column(
        ForeignKey("period_reports.id"), nullable=False, index=True
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    stage: Mapped[StageName] = mapped_column(_enum(StageName, "stage_name"), nullable=False)
    previous_stage: Mapped[str | None] = mapped_column(String(32), nullable=True)
    principal_id: Mapped[str] = mapped_column(String(255), nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class DaySlice(Base, UUIDMixin, TimestampMixin):
    """NPT hours for one calendar day within a period report."""

    __tablename__ = "day_slices"
    __table_args__ = (
        UniqueConstraint("period_report_id", "day", name="uq_day_slices_period_day"),
    )

    period_report_id: Mapped[UUID] = mapped_column(
        ForeignKey("period_reports.id"), nullable=False, index=True
    )
    day: Mapped[date] = mapped_column(nullable=False)
    hours: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    npt_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    report_ids: Mapped[list[str]] = mapped_column(default=list, nullable=False)
    day_status: Mapped[DayStatus] = mapped_column(
        _enum(DayStatus, "day_status"), default=DayStatus.NO_ENTRY, nullable=False
    )
    updated_by: Mapped[str | None] = mapped_column(String(255), nullable=True)


# =============================================================================
# NOTIFICATIONS
# =============================================================================


class Notification(Base, UUIDMixin):
    """Enqueued in-app notification. Delivery happens elsewhere."""

    __tablename__ = "notifications"
    __table_args__ = (
        Index(
            "ix_notifications_dedup_lookup",
            "period_report_id",
            "rule",
            "recipient_id",
            "created_at",
        ),
    )

    recipient_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    report_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("npt_reports.id"), nullable=True
    )
    period_report_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("period_reports.id"), nullable=True
    )
    rule: Mapped[NotificationRule] = mapped_column(
        _enum(NotificationRule, "notification_rule"), nullable=False
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    channel: Mapped[str] = mapped_column(String(32), default="in_app", nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    dedup_key: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    details: Mapped[dict[str, Any]] = mapped_column(default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
