"""
Tests for the period report lifecycle.

These tests verify:
1. TOTALS: day slice writes roll up into the period totals by category
2. IDEMPOTENCY: upserting the same day replaces it instead of adding to it
3. TRANSITIONS: Draft -> Submitted -> In_Review -> Approved/Rejected -> Resubmitted
4. LOCKING: approved periods refuse further day slice writes
5. HISTORY: every transition appends one stage event
"""

from datetime import date
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from npt_workflow.models import (
    DayStatus,
    Notification,
    NotificationRule,
    PeriodStatus,
    StageName,
)
from npt_workflow.services.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    UnauthorizedError,
    WorkflowValidationError,
)
from npt_workflow.services.lifecycle import DaySliceInput, LifecycleService, _category_totals

from conftest import DS, OSE, PME, RIG_ID, T0, TOOL_PUSHER, days

MONTH = "2025-05"


async def period_with_abraj_hours(service: LifecycleService):
    for day, hours in ((1, 2), (2, 3), (3, 1)):
        await service.upsert_day_slice(
            MONTH,
            RIG_ID,
            DaySliceInput(day=date(2025, 5, day), hours=hours, npt_type="Abraj"),
            updated_by=TOOL_PUSHER,
            now=T0,
        )
    return await service.get_or_create_period_report(MONTH, RIG_ID, TOOL_PUSHER)


async def notifications(session: AsyncSession, period_id, rule: NotificationRule):
    result = await session.execute(
        select(Notification).where(
            Notification.period_report_id == period_id,
            Notification.rule == rule,
        )
    )
    return result.scalars().all()


# =============================================================================
# TEST: PERIOD REPORTS & DAY SLICES
# =============================================================================


class TestDaySlices:

    async def test_create_period_report_in_draft(self, session: AsyncSession):
        service = LifecycleService(session)

        period = await service.get_or_create_period_report(MONTH, RIG_ID, TOOL_PUSHER, now=T0)

        assert period.status == PeriodStatus.DRAFT
        assert period.sla_days == 7
        assert period.total_hours == 0.0
        events = await service.get_stage_events(period.id)
        assert [e.stage for e in events] == [StageName.CREATED]

    async def test_get_or_create_returns_existing(self, session: AsyncSession):
        service = LifecycleService(session)

        first = await service.get_or_create_period_report(MONTH, RIG_ID, TOOL_PUSHER, now=T0)
        second = await service.get_or_create_period_report(MONTH, RIG_ID, DS, now=T0)

        assert first.id == second.id
        assert len(await service.list_period_reports(rig_id=RIG_ID)) == 1

    @pytest.mark.parametrize("month", ["2025-13", "2025-5", "May 2025", ""])
    async def test_invalid_month_rejected(self, session: AsyncSession, month):
        with pytest.raises(WorkflowValidationError):
            await LifecycleService(session).get_or_create_period_report(month, RIG_ID, TOOL_PUSHER)

    async def test_day_slices_roll_up_by_category(self, session: AsyncSession, staffed_rig):
        service = LifecycleService(session)

        period = await period_with_abraj_hours(service)

        assert period.abraj_hours == 6.0
        assert period.total_hours == 6.0
        assert period.contractual_hours == 0.0
        assert period.hours_by_category == {"Abraj": 6.0}

    async def test_upsert_replaces_existing_day(self, session: AsyncSession):
        service = LifecycleService(session)
        for hours in (5, 5, 2.5):
            await service.upsert_day_slice(
                MONTH,
                RIG_ID,
                DaySliceInput(day=date(2025, 5, 10), hours=hours, npt_type="Contractual"),
                updated_by=TOOL_PUSHER,
                now=T0,
            )

        period = await service.get_or_create_period_report(MONTH, RIG_ID, TOOL_PUSHER)
        slices = await service.get_day_slices(period.id)

        assert len(slices) == 1
        assert slices[0].hours == 2.5
        assert slices[0].day_status == DayStatus.DRAFT
        assert period.contractual_hours == 2.5
        assert period.total_hours == 2.5

    async def test_mixed_categories(self, session: AsyncSession):
        service = LifecycleService(session)
        for day, hours, npt_type in ((1, 4, "contractual"), (2, 2.25, "Operational"), (3, 1, None)):
            await service.upsert_day_slice(
                MONTH,
                RIG_ID,
                DaySliceInput(day=date(2025, 5, day), hours=hours, npt_type=npt_type),
                updated_by=TOOL_PUSHER,
                now=T0,
            )

        period = await service.get_or_create_period_report(MONTH, RIG_ID, TOOL_PUSHER)

        assert period.contractual_hours == 4.0
        assert period.operational_hours == 2.25
        assert period.abraj_hours == 0.0
        assert period.total_hours == 7.25
        assert period.hours_by_category["Unspecified"] == 1.0

    @pytest.mark.parametrize("hours", [-1, 24.5])
    async def test_day_hours_out_of_range(self, session: AsyncSession, hours):
        with pytest.raises(WorkflowValidationError):
            await LifecycleService(session).upsert_day_slice(
                MONTH,
                RIG_ID,
                DaySliceInput(day=date(2025, 5, 1), hours=hours),
                updated_by=TOOL_PUSHER,
            )

    async def test_day_outside_month_rejected(self, session: AsyncSession):
        with pytest.raises(WorkflowValidationError):
            await LifecycleService(session).upsert_day_slice(
                MONTH,
                RIG_ID,
                DaySliceInput(day=date(2025, 6, 1), hours=1),
                updated_by=TOOL_PUSHER,
                now=T0,
            )

    async def test_recalculation_never_changes_status(self, session: AsyncSession, staffed_rig):
        service = LifecycleService(session)
        period = await period_with_abraj_hours(service)
        await service.submit(period.id, TOOL_PUSHER, now=T0)

        await service.upsert_day_slice(
            MONTH,
            RIG_ID,
            DaySliceInput(day=date(2025, 5, 4), hours=4, npt_type="Abraj"),
            updated_by=TOOL_PUSHER,
            now=T0 + days(1),
        )
        period = await service.recalculate_totals(period.id)

        assert period.status == PeriodStatus.SUBMITTED
        assert period.abraj_hours == 10.0

    async def test_link_reports_to_day(self, session: AsyncSession):
        service = LifecycleService(session)
        await service.upsert_day_slice(
            MONTH,
            RIG_ID,
            DaySliceInput(day=date(2025, 5, 2), hours=3, npt_type="Abraj"),
            updated_by=TOOL_PUSHER,
            now=T0,
        )

        await service.link_reports_to_day(MONTH, RIG_ID, date(2025, 5, 2), ["r-1", "r-2"], TOOL_PUSHER)
        slice_ = await service.link_reports_to_day(
            MONTH, RIG_ID, date(2025, 5, 2), ["r-2", "r-3"], TOOL_PUSHER
        )

        assert slice_.report_ids == ["r-1", "r-2", "r-3"]
        assert slice_.hours == 3.0

    async def test_day_writes_follow_period_status(self, session: AsyncSession, staffed_rig):
        service = LifecycleService(session)
        period = await period_with_abraj_hours(service)
        await service.submit(period.id, TOOL_PUSHER, now=T0)

        existing = await service.link_reports_to_day(
            MONTH, RIG_ID, date(2025, 5, 2), ["r-1"], TOOL_PUSHER, now=T0 + days(1)
        )
        added = await service.link_reports_to_day(
            MONTH, RIG_ID, date(2025, 5, 9), ["r-2"], TOOL_PUSHER, now=T0 + days(1)
        )
        upserted = await service.upsert_day_slice(
            MONTH,
            RIG_ID,
            DaySliceInput(day=date(2025, 5, 10), hours=1, npt_type="Abraj"),
            updated_by=TOOL_PUSHER,
            now=T0 + days(1),
        )

        assert existing.day_status == DayStatus.SUBMITTED
        assert added.day_status == DayStatus.SUBMITTED
        assert upserted.day_status == DayStatus.SUBMITTED

    def test_category_totals_fold_case(self):
        totals = _category_totals({"Abraj": 2.0, "ABRAJ ": 1.5, "Contractual": 1.0})

        assert totals["abraj_hours"] == 3.5
        assert totals["contractual_hours"] == 1.0
        assert totals["total_hours"] == 4.5


# =============================================================================
# TEST: TRANSITIONS
# =============================================================================


class TestTransitions:

    async def test_submit_notifies_approver_holders(self, session: AsyncSession, staffed_rig):
        service = LifecycleService(session)
        period = await period_with_abraj_hours(service)

        period = await service.submit(period.id, TOOL_PUSHER, now=T0)

        assert period.status == PeriodStatus.SUBMITTED
        assert period.submitted_at is not None
        pending = await notifications(session, period.id, NotificationRule.PENDING_APPROVAL)
        assert sorted(n.recipient_id for n in pending) == sorted([PME, DS, OSE])

        slices = await service.get_day_slices(period.id)
        assert {s.day_status for s in slices} == {DayStatus.SUBMITTED}

    async def test_submit_twice_is_invalid(self, session: AsyncSession, staffed_rig):
        service = LifecycleService(session)
        period = await period_with_abraj_hours(service)
        await service.submit(period.id, TOOL_PUSHER, now=T0)

        with pytest.raises(InvalidTransitionError):
            await service.submit(period.id, TOOL_PUSHER, now=T0)

    async def test_review_and_approve(self, session: AsyncSession, staffed_rig):
        service = LifecycleService(session)
        period = await period_with_abraj_hours(service)
        await service.submit(period.id, TOOL_PUSHER, now=T0)

        reviewing = await service.start_review(period.id, DS, now=T0 + days(1))
        assert reviewing.status == PeriodStatus.IN_REVIEW

        approved = await service.approve(period.id, OSE, comment="Looks right", now=T0 + days(2))

        assert approved.status == PeriodStatus.APPROVED
        assert approved.approved_by == OSE
        stages = [e.stage for e in await service.get_stage_events(period.id)]
        assert stages == [
            StageName.CREATED,
            StageName.SUBMITTED,
            StageName.IN_REVIEW,
            StageName.APPROVED,
        ]
        assert len(await notifications(session, period.id, NotificationRule.APPROVAL_COMPLETE)) == 1

    async def test_non_approver_cannot_review(self, session: AsyncSession, staffed_rig):
        service = LifecycleService(session)
        period = await period_with_abraj_hours(service)
        await service.submit(period.id, TOOL_PUSHER, now=T0)

        with pytest.raises(UnauthorizedError):
            await service.approve(period.id, TOOL_PUSHER, now=T0 + days(1))

    async def test_approve_draft_is_invalid(self, session: AsyncSession, staffed_rig):
        service = LifecycleService(session)
        period = await period_with_abraj_hours(service)

        with pytest.raises(InvalidTransitionError):
            await service.approve(period.id, DS, now=T0)

    async def test_reject_requires_reason(self, session: AsyncSession, staffed_rig):
        service = LifecycleService(session)
        period = await period_with_abraj_hours(service)
        await service.submit(period.id, TOOL_PUSHER, now=T0)

        with pytest.raises(WorkflowValidationError):
            await service.reject(period.id, DS, reason="  ", now=T0 + days(1))

    async def test_reject_then_resubmit(self, session: AsyncSession, staffed_rig):
        service = LifecycleService(session)
        period = await period_with_abraj_hours(service)
        await service.submit(period.id, TOOL_PUSHER, now=T0)

        rejected = await service.reject(period.id, PME, reason="Day 2 double counted", now=T0 + days(1))
        assert rejected.status == PeriodStatus.REJECTED
        assert rejected.rejection_reason == "Day 2 double counted"
        assert {s.day_status for s in await service.get_day_slices(period.id)} == {DayStatus.DRAFT}

        resubmitted = await service.resubmit(period.id, TOOL_PUSHER, now=T0 + days(2))

        assert resubmitted.status == PeriodStatus.SUBMITTED
        assert resubmitted.rejection_reason is None
        latest = await service.latest_stage_event(period.id)
        assert latest.stage == StageName.RESUBMITTED
        assert latest.previous_stage == "Rejected"

    async def test_resubmit_requires_rejection(self, session: AsyncSession, staffed_rig):
        service = LifecycleService(session)
        period = await period_with_abraj_hours(service)

        with pytest.raises(InvalidTransitionError):
            await service.resubmit(period.id, TOOL_PUSHER, now=T0)

    async def test_approved_period_is_locked(self, session: AsyncSession, staffed_rig):
        service = LifecycleService(session)
        period = await period_with_abraj_hours(service)
        await service.submit(period.id, TOOL_PUSHER, now=T0)
        await service.approve(period.id, DS, now=T0 + days(1))

        with pytest.raises(InvalidTransitionError):
            await service.upsert_day_slice(
                MONTH,
                RIG_ID,
                DaySliceInput(day=date(2025, 5, 1), hours=8, npt_type="Abraj"),
                updated_by=TOOL_PUSHER,
                now=T0 + days(2),
            )

        period = await service.get_period_report(period.id)
        assert period.abraj_hours == 6.0

    async def test_unknown_period_not_found(self, session: AsyncSession):
        with pytest.raises(NotFoundError):
            await LifecycleService(session).submit(uuid4(), TOOL_PUSHER)


# =============================================================================
# TEST: TIMELINE & KPIS
# =============================================================================


class TestTimelineAndKpis:

    async def test_timeline(self, session: AsyncSession, staffed_rig):
        service = LifecycleService(session)
        period = await period_with_abraj_hours(service)
        await service.submit(period.id, TOOL_PUSHER, now=T0)

        timeline = await service.get_timeline(period.id)

        assert timeline.report.id == period.id
        assert [s.day for s in timeline.day_slices] == [
            date(2025, 5, 1),
            date(2025, 5, 2),
            date(2025, 5, 3),
        ]
        assert [e.sequence for e in timeline.stage_events] == [1, 2]

    async def test_kpis(self, session: AsyncSession, staffed_rig):
        service = LifecycleService(session)

        on_time = await period_with_abraj_hours(service)
        await service.submit(on_time.id, TOOL_PUSHER, now=T0)
        await service.approve(on_time.id, DS, now=T0 + days(2))

        late = await service.get_or_create_period_report("2025-06", RIG_ID, TOOL_PUSHER, now=T0)
        await service.upsert_day_slice(
            "2025-06",
            RIG_ID,
            DaySliceInput(day=date(2025, 6, 1), hours=4, npt_type="Operational"),
            updated_by=TOOL_PUSHER,
            now=T0,
        )
        await service.submit(late.id, TOOL_PUSHER, now=T0)
        await service.approve(late.id, OSE, now=T0 + days(10))

        await service.get_or_create_period_report("2025-07", RIG_ID, TOOL_PUSHER, now=T0)

        kpis = await service.get_kpis(rig_id=RIG_ID)

        assert kpis.total_reports == 3
        assert kpis.total_npt_hours == 10.0
        assert kpis.approved_on_time_pct == 33.33
        assert kpis.average_review_days == 6.0
        assert kpis.over_sla_count == 1
