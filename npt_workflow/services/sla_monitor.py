"""
SLA Monitor: periodic over-SLA and stall checks for submitted period reports.

Both checks only read period reports and stage events and insert
notifications; they never change a report's status. Repeat sweeps are
deduplicated per (period, rule, recipient) inside the cooldown window.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import as_utc, utcnow
from ..core.config import get_settings
from ..models import NotificationRule, PeriodReport, PeriodStatus, StageEvent
from .delegation_ledger import DelegationLedger
from .exceptions import ConcurrencyConflictError
from .notifications import NotificationConfig, NotificationQueue
from .path_resolver import APPROVER_ROLES

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================


@dataclass
class MonitorConfig:
    """Configuration for the SLA and stall checks."""

    # Hours since the latest stage event before a submitted report counts as stalled
    stall_threshold_hours: int = 24

    # Minimum hours between repeat notifications for the same period, rule and recipient
    cooldown_hours: int = 24

    @classmethod
    def from_settings(cls) -> "MonitorConfig":
        settings = get_settings()
        return cls(
            stall_threshold_hours=settings.stall_threshold_hours,
            cooldown_hours=settings.notification_cooldown_hours,
        )


@dataclass
class CheckResult:
    """Outcome of one check over all submitted period reports."""
    rule: NotificationRule
    reports_checked: int = 0
    reports_flagged: int = 0
    notifications_created: int = 0
    notifications_suppressed: int = 0


# =============================================================================
# SLA MONITOR
# =============================================================================


class SlaMonitor:
    """Runs the over-SLA and stall checks in the caller's transaction."""

    def __init__(
        self,
        session: AsyncSession,
        config: MonitorConfig | None = None,
        ledger: DelegationLedger | None = None,
    ):
        self._session = session
        self._config = config or MonitorConfig.from_settings()
        self._ledger = ledger or DelegationLedger(session)
        self._notifications = NotificationQueue(
            session,
            NotificationConfig(
                channel=get_settings().notification_channel,
                cooldown_hours=self._config.cooldown_hours,
            ),
        )

    async def run_sla_check(self, now: datetime | None = None) -> CheckResult:
        """Notify creator and approvers of every submitted report past its SLA."""
        now = as_utc(now) or utcnow()
        result = CheckResult(rule=NotificationRule.OVER_SLA)

        for period in await self._submitted_reports():
            result.reports_checked += 1
            submitted_at = as_utc(period.submitted_at)
            if submitted_at is None:
                continue

            elapsed = now - submitted_at
            if elapsed <= timedelta(days=period.sla_days):
                continue

            result.reports_flagged += 1
            days = int(elapsed.total_seconds() // 86400)
            recipients = [period.created_by]
            for holder in await self._ledger.approver_holders(period.rig_id, APPROVER_ROLES, now):
                if holder not in recipients:
                    recipients.append(holder)

            await self._notify(
                result,
                period,
                recipients,
                f"Monthly NPT report for {period.month} (rig {period.rig_id}) "
                f"is overdue for approval ({days} days)",
                {"days_since_submission": days, "sla_days": period.sla_days},
                now,
            )

        await self._flush()
        logger.info(
            f"SLA check: {result.reports_flagged}/{result.reports_checked} overdue, "
            f"{result.notifications_created} notified, "
            f"{result.notifications_suppressed} suppressed"
        )
        return result

    async def run_stall_check(self, now: datetime | None = None) -> CheckResult:
        """Notify the creator of every submitted report with no recent stage activity."""
        now = as_utc(now) or utcnow()
        threshold = now - timedelta(hours=self._config.stall_threshold_hours)
        result = CheckResult(rule=NotificationRule.STALLED)

        latest = await self._latest_event_times()
        for period in await self._submitted_reports():
            result.reports_checked += 1
            last_activity = as_utc(latest.get(period.id))
            if last_activity is None or last_activity >= threshold:
                continue

            result.reports_flagged += 1
            hours = int((now - last_activity).total_seconds() // 3600)
            await self._notify(
                result,
                period,
                [period.created_by],
                f"Monthly NPT report for {period.month} (rig {period.rig_id}) "
                f"has had no activity for {hours} hours",
                {"hours_since_activity": hours},
                now,
            )

        await self._flush()
        logger.info(
            f"Stall check: {result.reports_flagged}/{result.reports_checked} stalled, "
            f"{result.notifications_created} notified, "
            f"{result.notifications_suppressed} suppressed"
        )
        return result

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    async def _submitted_reports(self) -> list[PeriodReport]:
        result = await self._session.execute(
            select(PeriodReport)
            .where(PeriodReport.status == PeriodStatus.SUBMITTED)
            .order_by(PeriodReport.submitted_at)
        )
        return list(result.scalars().all())

    async def _latest_event_times(self) -> dict:
        result = await self._session.execute(
            select(StageEvent.period_report_id, func.max(StageEvent.created_at))
            .join(PeriodReport, PeriodReport.id == StageEvent.period_report_id)
            .where(PeriodReport.status == PeriodStatus.SUBMITTED)
            .group_by(StageEvent.period_report_id)
        )
        return {period_id: created_at for period_id, created_at in result.all()}

    async def _notify(
        self,
        result: CheckResult,
        period: PeriodReport,
        recipients: list[str],
        message: str,
        details: dict,
        now: datetime,
    ) -> None:
        for recipient in recipients:
            notification = await self._notifications.enqueue_once(
                recipient,
                result.rule,
                message,
                period_report_id=period.id,
                details={"month": period.month, **details},
                now=now,
            )
            if notification is None:
                result.notifications_suppressed += 1
            else:
                result.notifications_created += 1

    async def _flush(self) -> None:
        try:
            await self._session.flush()
        except IntegrityError as e:
            # Another sweep inserted the same dedup key first
            raise ConcurrencyConflictError(f"Concurrent sweep detected: {e}") from e
