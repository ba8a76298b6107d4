"""
Approval Engine: the per-report approval state machine.

A report moves ``draft -> pending:<role> -> ... -> approved`` along the role
path snapshotted at initiation, or drops to ``rejected``. Every successful
action:
- locks the report row and re-reads it
- checks the caller is the effective holder of the role the step needs
- updates the report and appends exactly one ApprovalRecord
all inside the caller's transaction. Services flush; the caller commits.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from ..core.clock import as_utc, utcnow
from ..models import (
    EDITABLE_REPORT_FIELDS,
    PENDING_PREFIX,
    STATUS_APPROVED,
    STATUS_DRAFT,
    STATUS_REJECTED,
    ApprovalAction,
    ApprovalRecord,
    NotificationRule,
    NptReport,
    pending_status,
)
from .delegation_ledger import ApproverResolution, DelegationLedger
from .exceptions import (
    ConcurrencyConflictError,
    InvalidTransitionError,
    NotFoundError,
    UnauthorizedError,
    WorkflowValidationError,
)
from .notifications import NotificationQueue
from .path_resolver import WorkflowPath, path_from_snapshot, resolve_path

logger = logging.getLogger(__name__)


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class CreateReportInput:
    """Input for creating a draft report."""
    rig_id: int
    category: str | None = None
    fields: dict[str, Any] = field(default_factory=dict)


@dataclass
class ActionInput:
    """Optional arguments shared by every workflow action."""
    comment: str | None = None
    patch: dict[str, Any] | None = None
    expected_version: int | None = None  # Optimistic locking


@dataclass
class ActionResult:
    """The updated report and the audit row written for the action."""
    report: NptReport
    record: ApprovalRecord


@dataclass
class WorkflowState:
    """What a principal may do with a report right now."""
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


# =============================================================================
# APPROVAL ENGINE
# =============================================================================


class ApprovalEngine:
    """
    State machine for NPT report approval.

    Guarantees:
    1. Status only moves forward along the snapshotted path, or to rejected
    2. One ApprovalRecord per successful action, written with the status change
    3. Only the effective approver of the pending role may act
    4. A lost race surfaces as ConcurrencyConflictError or InvalidTransitionError
    """

    def __init__(
        self,
        session: AsyncSession,
        ledger: DelegationLedger | None = None,
        notifications: NotificationQueue | None = None,
    ):
        self._session = session
        self._ledger = ledger or DelegationLedger(session)
        self._notifications = notifications or NotificationQueue(session)

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create_report(
        self,
        input: CreateReportInput,
        created_by: str,
        now: datetime | None = None,
    ) -> NptReport:
        """Create a report in ``draft``. The workflow starts at ``initiate``."""
        self._validate_patch(input.fields)

        report = NptReport(
            rig_id=input.rig_id,
            category=input.category,
            created_by=created_by,
            workflow_status=STATUS_DRAFT,
            created_at=as_utc(now) or utcnow(),
        )
        for name, value in input.fields.items():
            setattr(report, name, _coerce_field(name, value))

        self._session.add(report)
        await self._flush()
        return report

    # =========================================================================
    # ACTIONS
    # =========================================================================

    async def initiate(
        self,
        report_id: UUID,
        principal_id: str,
        input: ActionInput | None = None,
        now: datetime | None = None,
    ) -> ActionResult:
        """
        Start the workflow: ``draft -> pending:<path[1]>``.

        Flow:
        1. Lock the report, check it is still a draft
        2. Resolve the path from the category and snapshot it
        3. Caller must be the effective holder of path[0] on the rig
        4. The next role must have a resolvable approver
        5. Apply the optional patch, write the record, notify the next approver
        """
        input = input or ActionInput()
        now = as_utc(now) or utcnow()

        report = await self._lock_report(report_id)
        self._check_version(report, input.expected_version)
        self._ensure_open(report)
        if report.workflow_status != STATUS_DRAFT:
            raise InvalidTransitionError(
                f"Report {report_id} has already been initiated",
                status=report.workflow_status,
            )

        path = resolve_path(report.category)
        resolution = await self._authorize(report.rig_id, path.initiator_role, principal_id, now)
        next_role = path.roles[1]
        await self._ledger.require_effective_approver(report.rig_id, next_role, now)

        self._validate_patch(input.patch)
        edited, previous = self._apply_patch(report, input.patch)

        status_before = report.workflow_status
        report.workflow_path = list(path.roles)
        report.workflow_path_name = path.name
        report.initiated_by = principal_id
        report.initiated_at = now
        report.current_approver_role = next_role
        report.workflow_status = pending_status(next_role)

        record = await self._append_record(
            report,
            resolution,
            ApprovalAction.INITIATE,
            status_before,
            comment=input.comment,
            edited=edited,
            previous=previous,
            now=now,
        )
        await self._notify_pending(report, next_role, now)
        await self._flush()

        logger.info(
            f"Report {report_id} initiated by {principal_id} on path {path.name}, "
            f"now {report.workflow_status}"
        )
        return ActionResult(report=report, record=record)

    async def approve(
        self,
        report_id: UUID,
        principal_id: str,
        input: ActionInput | None = None,
        now: datetime | None = None,
    ) -> ActionResult:
        """Approve the pending step; advance to the next role or to ``approved``."""
        input = input or ActionInput()
        now = as_utc(now) or utcnow()

        report = await self._lock_report(report_id)
        self._check_version(report, input.expected_version)
        role = self._pending_role(report)
        resolution = await self._authorize(report.rig_id, role, principal_id, now)

        path = self._snapshot_path(report)
        next_role = path.next_role(role)
        if next_role is not None:
            await self._ledger.require_effective_approver(report.rig_id, next_role, now)

        self._validate_patch(input.patch)
        edited, previous = self._apply_patch(report, input.patch)

        status_before = report.workflow_status
        if next_role is not None:
            report.current_approver_role = next_role
            report.workflow_status = pending_status(next_role)
        else:
            report.current_approver_role = None
            report.workflow_status = STATUS_APPROVED
            report.completed_at = now

        record = await self._append_record(
            report,
            resolution,
            ApprovalAction.APPROVE,
            status_before,
            comment=input.comment,
            edited=edited,
            previous=previous,
            now=now,
        )

        if next_role is not None:
            await self._notify_pending(report, next_role, now)
        else:
            await self._notify_initiator(
                report,
                NotificationRule.APPROVAL_COMPLETE,
                f"NPT report for rig {report.rig_id} has been fully approved.",
                now,
            )
        await self._flush()

        logger.info(
            f"Report {report_id} approved at {role} by {principal_id}"
            + (f" on behalf of {resolution.nominal_id}" if resolution.is_delegated else "")
            + f", now {report.workflow_status}"
        )
        return ActionResult(report=report, record=record)

    async def reject(
        self,
        report_id: UUID,
        principal_id: str,
        input: ActionInput | None = None,
        now: datetime | None = None,
    ) -> ActionResult:
        """Reject the report. Terminal; the comment becomes the rejection reason."""
        input = input or ActionInput()
        now = as_utc(now) or utcnow()

        report = await self._lock_report(report_id)
        self._check_version(report, input.expected_version)
        role = self._pending_role(report)
        resolution = await self._authorize(report.rig_id, role, principal_id, now)

        comment = (input.comment or "").strip()
        if not comment:
            raise WorkflowValidationError("A comment is required to reject a report")
        if input.patch:
            raise WorkflowValidationError("Field changes cannot be made while rejecting")

        status_before = report.workflow_status
        report.workflow_status = STATUS_REJECTED
        report.current_approver_role = None
        report.rejection_reason = comment
        report.completed_at = now

        record = await self._append_record(
            report,
            resolution,
            ApprovalAction.REJECT,
            status_before,
            comment=comment,
            now=now,
        )
        await self._notify_initiator(
            report,
            NotificationRule.REPORT_REJECTED,
            f"NPT report for rig {report.rig_id} was rejected at {role}: {comment}",
            now,
        )
        await self._flush()

        logger.info(f"Report {report_id} rejected at {role} by {principal_id}")
        return ActionResult(report=report, record=record)

    async def request_changes(
        self,
        report_id: UUID,
        principal_id: str,
        input: ActionInput | None = None,
        now: datetime | None = None,
    ) -> ActionResult:
        """Patch and annotate the report without moving it along the path."""
        input = input or ActionInput()
        now = as_utc(now) or utcnow()

        report = await self._lock_report(report_id)
        self._check_version(report, input.expected_version)
        role = self._pending_role(report)
        resolution = await self._authorize(report.rig_id, role, principal_id, now)

        if not input.patch and not (input.comment or "").strip():
            raise WorkflowValidationError("request_changes needs a field patch or a comment")

        self._validate_patch(input.patch)
        edited, previous = self._apply_patch(report, input.patch)

        record = await self._append_record(
            report,
            resolution,
            ApprovalAction.REQUEST_CHANGES,
            report.workflow_status,
            comment=input.comment,
            edited=edited,
            previous=previous,
            now=now,
        )
        # Touch the row so the version counter moves even without a patch
        report.updated_at = now
        await self._flush()

        logger.info(
            f"Changes recorded on report {report_id} by {principal_id}: {edited or 'comment only'}"
        )
        return ActionResult(report=report, record=record)

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_report(self, report_id: UUID) -> NptReport:
        report = await self._session.get(NptReport, report_id)
        if report is None:
            raise NotFoundError(f"Report {report_id} not found")
        return report

    async def get_audit_trail(self, report_id: UUID) -> Sequence[ApprovalRecord]:
        """All approval records for a report, in the order they were written."""
        await self.get_report(report_id)
        result = await self._session.execute(
            select(ApprovalRecord)
            .where(ApprovalRecord.report_id == report_id)
            .order_by(ApprovalRecord.sequence)
        )
        return result.scalars().all()

    async def workflow_state(
        self,
        report_id: UUID,
        principal_id: str,
        now: datetime | None = None,
    ) -> WorkflowState:
        """Describe who must act next and what ``principal_id`` may do."""
        now = as_utc(now) or utcnow()
        report = await self.get_report(report_id)

        path = self._snapshot_path(report) if report.workflow_path else resolve_path(report.category)
        current_role = report.current_approver_role
        current_approver = None
        can_initiate = False

        if report.workflow_status == STATUS_DRAFT:
            initiator = await self._ledger.effective_approver(report.rig_id, path.initiator_role, now)
            can_initiate = initiator == principal_id
        elif current_role is not None:
            current_approver = await self._ledger.effective_approver(report.rig_id, current_role, now)

        is_current = current_approver is not None and current_approver == principal_id
        return WorkflowState(
            report_id=report.id,
            status=report.workflow_status,
            path_name=path.name,
            path=list(path.roles),
            current_role=current_role,
            current_approver=current_approver,
            next_role=path.next_role(current_role) if current_role else None,
            can_initiate=can_initiate,
            can_approve=is_current,
            can_reject=is_current,
            can_edit=is_current or can_initiate,
        )

    async def pending_reports_for(
        self,
        principal_id: str,
        now: datetime | None = None,
    ) -> list[NptReport]:
        """Open reports whose pending role currently resolves to ``principal_id``."""
        now = as_utc(now) or utcnow()
        result = await self._session.execute(
            select(NptReport)
            .where(NptReport.workflow_status.startswith(PENDING_PREFIX))
            .order_by(NptReport.initiated_at)
        )

        resolved: dict[tuple[int, str], str | None] = {}
        pending = []
        for report in result.scalars():
            key = (report.rig_id, report.current_approver_role)
            if key not in resolved:
                resolved[key] = await self._ledger.effective_approver(*key, now)
            if resolved[key] == principal_id:
                pending.append(report)
        return pending

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    async def _lock_report(self, report_id: UUID) -> NptReport:
        """Fetch the report with a row lock, overwriting any cached copy."""
        result = await self._session.execute(
            select(NptReport)
            .where(NptReport.id == report_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        report = result.scalar_one_or_none()
        if report is None:
            raise NotFoundError(f"Report {report_id} not found")
        return report

    def _check_version(self, report: NptReport, expected_version: int | None) -> None:
        if expected_version is not None and report.version != expected_version:
            raise ConcurrencyConflictError(
                f"Version mismatch: expected v{expected_version}, "
                f"but current is v{report.version}. "
                "The report was modified by another user.",
                expected_version=expected_version,
                current_version=report.version,
            )

    def _ensure_open(self, report: NptReport) -> None:
        if report.is_closed:
            raise InvalidTransitionError(
                "workflow already closed",
                status=report.workflow_status,
            )

    def _pending_role(self, report: NptReport) -> str:
        """Role the report is waiting on; anything else is an invalid transition."""
        self._ensure_open(report)
        if report.workflow_status == STATUS_DRAFT or report.current_approver_role is None:
            raise InvalidTransitionError(
                f"Report {report.id} has not been initiated",
                status=report.workflow_status,
            )
        return report.current_approver_role

    def _snapshot_path(self, report: NptReport) -> WorkflowPath:
        path = path_from_snapshot(report.workflow_path_name, report.workflow_path)
        if path is None:
            raise InvalidTransitionError(f"Report {report.id} has no workflow path")
        return path

    async def _authorize(
        self,
        rig_id: int,
        role: str,
        principal_id: str,
        at: datetime,
    ) -> ApproverResolution:
        resolution = await self._ledger.require_effective_approver(rig_id, role, at)
        if resolution.principal_id != principal_id:
            raise UnauthorizedError(
                f"{principal_id} is not the current {role} approver for rig {rig_id}",
                role=role,
                rig_id=rig_id,
            )
        return resolution

    def _validate_patch(self, patch: dict[str, Any] | None) -> None:
        if not patch:
            return
        unknown = sorted(set(patch) - EDITABLE_REPORT_FIELDS)
        if unknown:
            raise WorkflowValidationError(
                f"Fields cannot be edited: {', '.join(unknown)}",
                fields=unknown,
            )

    def _apply_patch(
        self,
        report: NptReport,
        patch: dict[str, Any] | None,
    ) -> tuple[list[str], dict[str, Any]]:
        """Apply a field patch; return the changed field names and their old values."""
        edited: list[str] = []
        previous: dict[str, Any] = {}
        for name, raw in sorted((patch or {}).items()):
            value = _coerce_field(name, raw)
            old = getattr(report, name)
            if old == value:
                continue
            previous[name] = _jsonable(old)
            setattr(report, name, value)
            edited.append(name)
        return edited, previous

    async def _append_record(
        self,
        report: NptReport,
        resolution: ApproverResolution,
        action: ApprovalAction,
        status_before: str,
        comment: str | None = None,
        edited: list[str] | None = None,
        previous: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> ApprovalRecord:
        result = await self._session.execute(
            select(func.max(ApprovalRecord.sequence)).where(
                ApprovalRecord.report_id == report.id
            )
        )
        sequence = (result.scalar() or 0) + 1

        record = ApprovalRecord(
            report_id=report.id,
            sequence=sequence,
            principal_id=resolution.principal_id,
            acting_role=resolution.role_key,
            delegated_from=resolution.nominal_id if resolution.is_delegated else None,
            action=action,
            comment=comment,
            edited_fields=edited or [],
            previous_values=previous or {},
            status_before=status_before,
            status_after=report.workflow_status,
            created_at=now or utcnow(),
        )
        self._session.add(record)
        return record

    async def _notify_pending(self, report: NptReport, role: str, now: datetime) -> None:
        approver = await self._ledger.effective_approver(report.rig_id, role, now)
        if approver is None:
            return
        await self._notifications.enqueue(
            approver,
            NotificationRule.PENDING_APPROVAL,
            f"NPT report for rig {report.rig_id} is waiting for your approval as {role}.",
            report_id=report.id,
            details={"role": role, "status": report.workflow_status},
            now=now,
        )

    async def _notify_initiator(
        self,
        report: NptReport,
        rule: NotificationRule,
        message: str,
        now: datetime,
    ) -> None:
        recipients = [report.initiated_by or report.created_by]
        if report.created_by not in recipients:
            recipients.append(report.created_by)
        await self._notifications.enqueue_many(
            recipients,
            rule,
            message,
            report_id=report.id,
            details={"status": report.workflow_status},
            now=now,
        )

    async def _flush(self) -> None:
        try:
            await self._session.flush()
        except StaleDataError as e:
            raise ConcurrencyConflictError(
                "Report was modified concurrently; re-read and retry"
            ) from e
        except IntegrityError as e:
            raise ConcurrencyConflictError(f"Concurrent workflow action detected: {e}") from e


# =============================================================================
# FIELD HELPERS
# =============================================================================


def _coerce_field(name: str, value: Any) -> Any:
    if value is None:
        return None
    if name == "report_date" and isinstance(value, str):
        try:
            return date.fromisoformat(value)
        except ValueError as e:
            raise WorkflowValidationError(f"Invalid report_date: {value!r}") from e
    if name == "hours":
        try:
            hours = float(value)
        except (TypeError, ValueError) as e:
            raise WorkflowValidationError(f"Invalid hours: {value!r}") from e
        if hours < 0 or hours > 24:
            raise WorkflowValidationError(f"Hours must be between 0 and 24, got {hours}")
        return hours
    return value


def _jsonable(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value
