"""
Lifecycle Service: monthly period reports and their day slices.

A period report bundles one rig's NPT for a month into a single review unit
with its own lifecycle, independent of per-report approval:

    Draft -> Submitted -> (In_Review) -> Approved
                       \\-> Rejected -> (resubmit) -> Submitted

Every transition appends a StageEvent. Day slice writes recompute the
period's totals under the period row lock; recomputation only ever touches
the total columns.
"""

import logging
import re
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from ..core.clock import as_utc, utcnow
from ..core.config import get_settings
from ..models import (
    DaySlice,
    DayStatus,
    NotificationRule,
    PeriodReport,
    PeriodStatus,
    StageEvent,
    StageName,
)
from .delegation_ledger import DelegationLedger
from .exceptions import (
    ConcurrencyConflictError,
    InvalidTransitionError,
    NotFoundError,
    UnauthorizedError,
    WorkflowValidationError,
)
from .notifications import NotificationQueue
from .path_resolver import APPROVER_ROLES

logger = logging.getLogger(__name__)

MONTH_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")

# Categories with their own total column
CONTRACTUAL = "contractual"
OPERATIONAL = "operational"
ABRAJ = "abraj"

REVIEWABLE_STATUSES = (PeriodStatus.SUBMITTED, PeriodStatus.IN_REVIEW)

# Day status mirrored onto slices when the period moves
_DAY_STATUS_FOR_PERIOD = {
    PeriodStatus.DRAFT: DayStatus.DRAFT,
    PeriodStatus.SUBMITTED: DayStatus.SUBMITTED,
    PeriodStatus.IN_REVIEW: DayStatus.IN_REVIEW,
    PeriodStatus.APPROVED: DayStatus.APPROVED,
    PeriodStatus.REJECTED: DayStatus.DRAFT,
}


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class DaySliceInput:
    """Values for one day's contribution to a period report."""
    day: date
    hours: float
    npt_type: str | None = None
    notes: str | None = None


@dataclass
class PeriodTimeline:
    """A period report with its slices and stage history."""
    report: PeriodReport
    day_slices: Sequence[DaySlice]
    stage_events: Sequence[StageEvent]


@dataclass
class LifecycleKpis:
    """Review performance across a set of period reports."""
    total_reports: int
    total_npt_hours: float
    approved_on_time_pct: float
    average_review_days: float
    over_sla_count: int


# =============================================================================
# LIFECYCLE SERVICE
# =============================================================================


class LifecycleService:
    """Period report lifecycle, day slices and roll-up totals."""

    def __init__(
        self,
        session: AsyncSession,
        ledger: DelegationLedger | None = None,
        notifications: NotificationQueue | None = None,
        default_sla_days: int | None = None,
    ):
        self._session = session
        self._ledger = ledger or DelegationLedger(session)
        self._notifications = notifications or NotificationQueue(session)
        self._default_sla_days = default_sla_days or get_settings().default_sla_days

    # =========================================================================
    # PERIOD REPORTS
    # =========================================================================

    async def get_or_create_period_report(
        self,
        month: str,
        rig_id: int,
        created_by: str,
        now: datetime | None = None,
    ) -> PeriodReport:
        """Return the period report for (month, rig), creating it in Draft if absent."""
        _validate_month(month)
        existing = await self._find_period(month, rig_id)
        if existing is not None:
            return existing

        now = as_utc(now) or utcnow()
        period = PeriodReport(
            month=month,
            rig_id=rig_id,
            created_by=created_by,
            status=PeriodStatus.DRAFT,
            sla_days=self._default_sla_days,
            total_hours=0.0,
            contractual_hours=0.0,
            operational_hours=0.0,
            abraj_hours=0.0,
            hours_by_category={},
            created_at=now,
        )
        self._session.add(period)
        await self._flush()

        await self._append_stage_event(
            period,
            StageName.CREATED,
            created_by,
            f"Monthly report created for {month}",
            previous_stage=None,
            now=now,
        )
        await self._flush()

        logger.info(f"Created period report {period.id} for rig {rig_id} {month}")
        return period

    async def get_period_report(self, period_id: UUID) -> PeriodReport:
        period = await self._session.get(PeriodReport, period_id)
        if period is None:
            raise NotFoundError(f"Period report {period_id} not found")
        return period

    async def list_period_reports(
        self,
        rig_id: int | None = None,
        status: PeriodStatus | None = None,
        start_month: str | None = None,
        end_month: str | None = None,
    ) -> Sequence[PeriodReport]:
        query = select(PeriodReport)
        if rig_id is not None:
            query = query.where(PeriodReport.rig_id == rig_id)
        if status is not None:
            query = query.where(PeriodReport.status == status)
        if start_month:
            query = query.where(PeriodReport.month >= start_month)
        if end_month:
            query = query.where(PeriodReport.month <= end_month)

        result = await self._session.execute(
            query.order_by(PeriodReport.month.desc(), PeriodReport.rig_id)
        )
        return result.scalars().all()

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    async def submit(
        self,
        period_id: UUID,
        principal_id: str,
        comment: str | None = None,
        now: datetime | None = None,
    ) -> PeriodReport:
        """Draft -> Submitted. Notifies every approver-role holder of the rig."""
        now = as_utc(now) or utcnow()
        period = await self._lock_period(period_id)
        self._require_status(period, (PeriodStatus.DRAFT,), "Only draft reports can be submitted")

        previous = period.status
        period.status = PeriodStatus.SUBMITTED
        period.submitted_at = now
        await self._mirror_day_status(period)

        await self._append_stage_event(
            period,
            StageName.SUBMITTED,
            principal_id,
            comment or "Report submitted for review",
            previous_stage=previous,
            now=now,
        )
        await self._notify_approvers(
            period,
            f"Monthly NPT report for rig {period.rig_id} {period.month} submitted for approval",
            now,
        )
        await self._flush()

        logger.info(f"Period report {period_id} submitted by {principal_id}")
        return period

    async def start_review(
        self,
        period_id: UUID,
        principal_id: str,
        comment: str | None = None,
        now: datetime | None = None,
    ) -> PeriodReport:
        """Submitted -> In_Review, taken by an approver of the rig."""
        now = as_utc(now) or utcnow()
        period = await self._lock_period(period_id)
        self._require_status(
            period, (PeriodStatus.SUBMITTED,), "Only submitted reports can be taken into review"
        )
        await self._authorize_reviewer(period, principal_id, now)

        previous = period.status
        period.status = PeriodStatus.IN_REVIEW
        await self._mirror_day_status(period)

        await self._append_stage_event(
            period,
            StageName.IN_REVIEW,
            principal_id,
            comment or "Report under review",
            previous_stage=previous,
            now=now,
        )
        await self._flush()
        return period

    async def approve(
        self,
        period_id: UUID,
        principal_id: str,
        comment: str | None = None,
        now: datetime | None = None,
    ) -> PeriodReport:
        """Submitted/In_Review -> Approved. Notifies the creator."""
        now = as_utc(now) or utcnow()
        period = await self._lock_period(period_id)
        self._require_status(
            period, REVIEWABLE_STATUSES, "Only submitted or in-review reports can be approved"
        )
        await self._authorize_reviewer(period, principal_id, now)

        previous = period.status
        period.status = PeriodStatus.APPROVED
        period.approved_by = principal_id
        period.approved_at = now
        await self._mirror_day_status(period)

        await self._append_stage_event(
            period,
            StageName.APPROVED,
            principal_id,
            comment or "Report approved",
            previous_stage=previous,
            now=now,
        )
        await self._notifications.enqueue(
            period.created_by,
            NotificationRule.APPROVAL_COMPLETE,
            f"Your monthly NPT report for {period.month} has been approved",
            period_report_id=period.id,
            now=now,
        )
        await self._flush()

        logger.info(f"Period report {period_id} approved by {principal_id}")
        return period

    async def reject(
        self,
        period_id: UUID,
        principal_id: str,
        reason: str | None,
        now: datetime | None = None,
    ) -> PeriodReport:
        """Submitted/In_Review -> Rejected. A reason is required."""
        now = as_utc(now) or utcnow()
        period = await self._lock_period(period_id)
        self._require_status(
            period, REVIEWABLE_STATUSES, "Only submitted or in-review reports can be rejected"
        )
        await self._authorize_reviewer(period, principal_id, now)

        reason = (reason or "").strip()
        if not reason:
            raise WorkflowValidationError("A reason is required to reject a period report")

        previous = period.status
        period.status = PeriodStatus.REJECTED
        period.rejection_reason = reason
        await self._mirror_day_status(period)

        await self._append_stage_event(
            period,
            StageName.REJECTED,
            principal_id,
            reason,
            previous_stage=previous,
            now=now,
        )
        await self._notifications.enqueue(
            period.created_by,
            NotificationRule.REPORT_REJECTED,
            f"Your monthly NPT report for {period.month} has been rejected: {reason}",
            period_report_id=period.id,
            now=now,
        )
        await self._flush()

        logger.info(f"Period report {period_id} rejected by {principal_id}")
        return period

    async def resubmit(
        self,
        period_id: UUID,
        principal_id: str,
        comment: str | None = None,
        now: datetime | None = None,
    ) -> PeriodReport:
        """Rejected -> Submitted. Clears the rejection and re-notifies approvers."""
        now = as_utc(now) or utcnow()
        period = await self._lock_period(period_id)
        self._require_status(
            period, (PeriodStatus.REJECTED,), "Only rejected reports can be resubmitted"
        )

        previous = period.status
        period.status = PeriodStatus.SUBMITTED
        period.submitted_at = now
        period.rejection_reason = None
        await self._mirror_day_status(period)

        await self._append_stage_event(
            period,
            StageName.RESUBMITTED,
            principal_id,
            comment or "Report resubmitted after revision",
            previous_stage=previous,
            now=now,
        )
        await self._notify_approvers(
            period,
            f"Monthly NPT report for rig {period.rig_id} {period.month} resubmitted for approval",
            now,
        )
        await self._flush()

        logger.info(f"Period report {period_id} resubmitted by {principal_id}")
        return period

    # =========================================================================
    # DAY SLICES
    # =========================================================================

    async def upsert_day_slice(
        self,
        month: str,
        rig_id: int,
        input: DaySliceInput,
        updated_by: str,
        now: datetime | None = None,
    ) -> DaySlice:
        """Create or replace one day's hours, then recompute the period totals."""
        if input.hours is None or input.hours < 0 or input.hours > 24:
            raise WorkflowValidationError(
                f"Day hours must be between 0 and 24, got {input.hours}"
            )

        now = as_utc(now) or utcnow()
        period = await self.get_or_create_period_report(month, rig_id, updated_by, now=now)
        period = await self._lock_period(period.id)
        self._ensure_writable(period, input.day)

        slice_ = await self._find_slice(period.id, input.day)
        if slice_ is None:
            slice_ = DaySlice(
                period_report_id=period.id,
                day=input.day,
                report_ids=[],
                created_at=now,
            )
            self._session.add(slice_)

        slice_.hours = float(input.hours)
        slice_.npt_type = input.npt_type
        slice_.notes = input.notes
        slice_.updated_by = updated_by
        slice_.day_status = _DAY_STATUS_FOR_PERIOD[period.status]
        await self._flush()

        await self.recalculate_totals(period.id)
        return slice_

    async def link_reports_to_day(
        self,
        month: str,
        rig_id: int,
        day: date,
        report_ids: Sequence[UUID | str],
        updated_by: str,
        now: datetime | None = None,
    ) -> DaySlice:
        """Attach NPT report ids to a day without touching its hours."""
        now = as_utc(now) or utcnow()
        period = await self.get_or_create_period_report(month, rig_id, updated_by, now=now)
        period = await self._lock_period(period.id)
        self._ensure_writable(period, day)

        slice_ = await self._find_slice(period.id, day)
        if slice_ is None:
            slice_ = DaySlice(
                period_report_id=period.id,
                day=day,
                hours=0.0,
                report_ids=[],
                created_at=now,
            )
            self._session.add(slice_)

        linked = list(slice_.report_ids or [])
        for report_id in report_ids:
            if str(report_id) not in linked:
                linked.append(str(report_id))
        slice_.report_ids = linked
        slice_.day_status = _DAY_STATUS_FOR_PERIOD[period.status]
        slice_.updated_by = updated_by
        await self._flush()
        return slice_

    async def recalculate_totals(self, period_id: UUID) -> PeriodReport:
        """Sum the day slices by category onto the period. Never touches status."""
        period = await self._lock_period(period_id)
        result = await self._session.execute(
            select(DaySlice.npt_type, func.sum(DaySlice.hours))
            .where(DaySlice.period_report_id == period_id)
            .group_by(DaySlice.npt_type)
        )

        by_category: dict[str, float] = defaultdict(float)
        for npt_type, hours in result.all():
            by_category[npt_type or "Unspecified"] += float(hours or 0)

        totals = _category_totals(by_category)
        changed = False
        for name, value in totals.items():
            if getattr(period, name) != value:
                setattr(period, name, value)
                changed = True

        if changed:
            await self._flush()
            logger.debug(f"Recalculated totals for period {period_id}: {totals['total_hours']}h")
        return period

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_day_slices(self, period_id: UUID) -> Sequence[DaySlice]:
        result = await self._session.execute(
            select(DaySlice)
            .where(DaySlice.period_report_id == period_id)
            .order_by(DaySlice.day)
        )
        return result.scalars().all()

    async def get_stage_events(self, period_id: UUID) -> Sequence[StageEvent]:
        """Stage history of a period report, oldest first."""
        await self.get_period_report(period_id)
        result = await self._session.execute(
            select(StageEvent)
            .where(StageEvent.period_report_id == period_id)
            .order_by(StageEvent.sequence)
        )
        return result.scalars().all()

    async def latest_stage_event(self, period_id: UUID) -> StageEvent | None:
        result = await self._session.execute(
            select(StageEvent)
            .where(StageEvent.period_report_id == period_id)
            .order_by(StageEvent.sequence.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_timeline(self, period_id: UUID) -> PeriodTimeline:
        report = await self.get_period_report(period_id)
        return PeriodTimeline(
            report=report,
            day_slices=await self.get_day_slices(period_id),
            stage_events=await self.get_stage_events(period_id),
        )

    async def get_kpis(
        self,
        rig_id: int | None = None,
        start_month: str | None = None,
        end_month: str | None = None,
    ) -> LifecycleKpis:
        """Review KPIs. On-time means approved within the period's SLA days."""
        reports = await self.list_period_reports(
            rig_id=rig_id, start_month=start_month, end_month=end_month
        )

        approved_on_time = 0
        over_sla = 0
        review_days: list[float] = []
        for report in reports:
            if report.status != PeriodStatus.APPROVED or not report.submitted_at or not report.approved_at:
                continue
            days = (as_utc(report.approved_at) - as_utc(report.submitted_at)).total_seconds() / 86400
            review_days.append(days)
            if days <= report.sla_days:
                approved_on_time += 1
            else:
                over_sla += 1

        total = len(reports)
        return LifecycleKpis(
            total_reports=total,
            total_npt_hours=round(sum(r.total_hours or 0 for r in reports), 2),
            approved_on_time_pct=round(approved_on_time / total * 100, 2) if total else 0.0,
            average_review_days=round(sum(review_days) / len(review_days), 2) if review_days else 0.0,
            over_sla_count=over_sla,
        )

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    async def _find_period(self, month: str, rig_id: int) -> PeriodReport | None:
        result = await self._session.execute(
            select(PeriodReport).where(
                PeriodReport.month == month,
                PeriodReport.rig_id == rig_id,
            )
        )
        return result.scalar_one_or_none()

    async def _find_slice(self, period_id: UUID, day: date) -> DaySlice | None:
        result = await self._session.execute(
            select(DaySlice).where(
                DaySlice.period_report_id == period_id,
                DaySlice.day == day,
            )
        )
        return result.scalar_one_or_none()

    async def _lock_period(self, period_id: UUID) -> PeriodReport:
        result = await self._session.execute(
            select(PeriodReport)
            .where(PeriodReport.id == period_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        period = result.scalar_one_or_none()
        if period is None:
            raise NotFoundError(f"Period report {period_id} not found")
        return period

    def _require_status(
        self,
        period: PeriodReport,
        allowed: Sequence[PeriodStatus],
        message: str,
    ) -> None:
        if period.status not in allowed:
            raise InvalidTransitionError(message, status=period.status.value)

    def _ensure_writable(self, period: PeriodReport, day: date) -> None:
        if period.status == PeriodStatus.APPROVED:
            raise InvalidTransitionError(
                f"Period report {period.month} for rig {period.rig_id} is approved and locked",
                status=period.status.value,
            )
        if day.strftime("%Y-%m") != period.month:
            raise WorkflowValidationError(
                f"{day.isoformat()} is outside period {period.month}",
                day=day.isoformat(),
                month=period.month,
            )

    async def _authorize_reviewer(
        self,
        period: PeriodReport,
        principal_id: str,
        now: datetime,
    ) -> str:
        """Return the approver role ``principal_id`` effectively holds on the rig."""
        for role in APPROVER_ROLES:
            if await self._ledger.effective_approver(period.rig_id, role, now) == principal_id:
                return role
        raise UnauthorizedError(
            f"{principal_id} holds no approver role on rig {period.rig_id}",
            rig_id=period.rig_id,
        )

    async def _mirror_day_status(self, period: PeriodReport) -> None:
        await self._session.execute(
            update(DaySlice)
            .where(
                DaySlice.period_report_id == period.id,
                DaySlice.day_status != DayStatus.NO_ENTRY,
            )
            .values(day_status=_DAY_STATUS_FOR_PERIOD[period.status])
            .execution_options(synchronize_session="fetch")
        )

    async def _append_stage_event(
        self,
        period: PeriodReport,
        stage: StageName,
        principal_id: str,
        comment: str | None,
        previous_stage: PeriodStatus | None,
        now: datetime,
    ) -> StageEvent:
        result = await self._session.execute(
            select(func.max(StageEvent.sequence)).where(
                StageEvent.period_report_id == period.id
            )
        )
        event = StageEvent(
            period_report_id=period.id,
            sequence=(result.scalar() or 0) + 1,
            stage=stage,
            previous_stage=previous_stage.value if previous_stage else None,
            principal_id=principal_id,
            comment=comment,
            created_at=now,
        )
        self._session.add(event)
        return event

    async def _notify_approvers(self, period: PeriodReport, message: str, now: datetime) -> None:
        holders = await self._ledger.approver_holders(period.rig_id, APPROVER_ROLES, now)
        if not holders:
            logger.warning(f"No approvers resolvable on rig {period.rig_id} for period {period.id}")
        await self._notifications.enqueue_many(
            holders,
            NotificationRule.PENDING_APPROVAL,
            message,
            period_report_id=period.id,
            details={"month": period.month, "status": period.status.value},
            now=now,
        )

    async def _flush(self) -> None:
        try:
            await self._session.flush()
        except StaleDataError as e:
            raise ConcurrencyConflictError(
                "Period report was modified concurrently; re-read and retry"
            ) from e
        except IntegrityError as e:
            raise ConcurrencyConflictError(f"Concurrent period update detected: {e}") from e


# =============================================================================
# HELPERS
# =============================================================================


def _validate_month(month: str) -> None:
    if not MONTH_PATTERN.match(month or ""):
        raise WorkflowValidationError(f"Month must be YYYY-MM, got {month!r}")


def _category_totals(by_category: dict[str, float]) -> dict[str, Any]:
    """Totals columns for a {category: hours} breakdown."""
    folded: dict[str, float] = defaultdict(float)
    for category, hours in by_category.items():
        folded[category.strip().casefold()] += hours

    return {
        "total_hours": round(sum(by_category.values()), 2),
        "contractual_hours": round(folded.get(CONTRACTUAL, 0.0), 2),
        "operational_hours": round(folded.get(OPERATIONAL, 0.0), 2),
        "abraj_hours": round(folded.get(ABRAJ, 0.0), 2),
        "hours_by_category": {k: round(v, 2) for k, v in sorted(by_category.items())},
    }
