"""
Notification queue.

The workflow only enqueues rows; reading, dismissing and delivering them is
somebody else's job. Sweep notifications go through ``enqueue_once`` which
skips a recipient already told about the same rule within the cooldown.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import as_utc, utcnow
from ..core.config import get_settings
from ..models import Notification, NotificationRule

logger = logging.getLogger(__name__)


@dataclass
class NotificationConfig:
    """Configuration for notification fan-out."""

    channel: str = "in_app"

    # Minimum hours between two notifications for the same target, rule and recipient
    cooldown_hours: int = 24

    @classmethod
    def from_settings(cls) -> "NotificationConfig":
        settings = get_settings()
        return cls(
            channel=settings.notification_channel,
            cooldown_hours=settings.notification_cooldown_hours,
        )


class NotificationQueue:
    """Writes notification rows in the caller's transaction."""

    def __init__(self, session: AsyncSession, config: NotificationConfig | None = None):
        self._session = session
        self._config = config or NotificationConfig.from_settings()

    async def enqueue(
        self,
        recipient_id: str,
        rule: NotificationRule,
        message: str,
        report_id: UUID | None = None,
        period_report_id: UUID | None = None,
        details: dict[str, Any] | None = None,
        dedup_key: str | None = None,
        now: datetime | None = None,
    ) -> Notification:
        notification = Notification(
            recipient_id=recipient_id,
            rule=rule,
            message=message,
            report_id=report_id,
            period_report_id=period_report_id,
            channel=self._config.channel,
            is_read=False,
            details=details or {},
            dedup_key=dedup_key,
            created_at=as_utc(now) or utcnow(),
        )
        self._session.add(notification)
        # Don't flush here - let it be part of the transaction
        return notification

    async def enqueue_many(
        self,
        recipient_ids: Sequence[str],
        rule: NotificationRule,
        message: str,
        **kwargs,
    ) -> list[Notification]:
        return [
            await self.enqueue(recipient_id, rule, message, **kwargs)
            for recipient_id in recipient_ids
        ]

    async def enqueue_once(
        self,
        recipient_id: str,
        rule: NotificationRule,
        message: str,
        period_report_id: UUID,
        details: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> Notification | None:
        """Enqueue unless the recipient already got this rule for this period recently.

        The row carries a dedup key bucketed by the cooldown window; the
        unique constraint on it catches two sweeps racing past the check.
        """
        now = as_utc(now) or utcnow()
        if await self.sent_within_cooldown(period_report_id, rule, recipient_id, now):
            logger.debug(
                f"Suppressed duplicate {rule.value} for {recipient_id} on period {period_report_id}"
            )
            return None

        return await self.enqueue(
            recipient_id,
            rule,
            message,
            period_report_id=period_report_id,
            details=details,
            dedup_key=self.dedup_key(period_report_id, rule, recipient_id, now),
            now=now,
        )

    async def sent_within_cooldown(
        self,
        period_report_id: UUID,
        rule: NotificationRule,
        recipient_id: str,
        now: datetime,
    ) -> bool:
        since = now - timedelta(hours=self._config.cooldown_hours)
        result = await self._session.execute(
            select(Notification.id)
            .where(
                and_(
                    Notification.period_report_id == period_report_id,
                    Notification.rule == rule,
                    Notification.recipient_id == recipient_id,
                    Notification.created_at > since,
                )
            )
            .limit(1)
        )
        return result.first() is not None

    def dedup_key(
        self,
        period_report_id: UUID,
        rule: NotificationRule,
        recipient_id: str,
        now: datetime,
    ) -> str:
        bucket = int(now.timestamp() // (self._config.cooldown_hours * 3600))
        return f"{period_report_id}:{rule.value}:{recipient_id}:{bucket}"
