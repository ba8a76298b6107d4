"""
SLA Sweep Job: scheduled over-SLA and stall checks for period reports.

Runs as a scheduled job (cron, systemd timer, or the built-in loop) and
only appends notifications. Safe to run from several instances at once.

Typical cron schedule: 0 * * * * (hourly)
"""

import asyncio
import logging
import traceback
from datetime import datetime
from typing import Any

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import utcnow
from ..core.config import get_settings
from ..core.database import build_engine, build_session_factory
from ..services.exceptions import ConcurrencyConflictError
from ..services.sla_monitor import MonitorConfig, SlaMonitor

logger = logging.getLogger(__name__)


# =============================================================================
# ALERTING
# =============================================================================


ALERT_SOURCE = "npt-workflow-sweep"
SEVERITY_COLORS = {"critical": "#dc2626", "error": "#f59e0b"}


async def send_alert(
    title: str,
    message: str,
    severity: str = "error",
    details: dict | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> None:
    """
    Report a sweep failure on every configured channel.

    The alert is always logged. It is also posted to the Slack incoming
    webhook and the generic webhook (PagerDuty, Opsgenie, ...) when their
    URLs are set. A channel that cannot be reached is logged and skipped.
    """
    log_message = f"[SWEEP ALERT] {title}: {message}"
    if details:
        log_message += f" | Details: {details}"
    logger.log(logging.CRITICAL if severity == "critical" else logging.ERROR, log_message)

    settings = get_settings()
    sent_at = utcnow().isoformat()
    channels = (
        ("Slack", settings.slack_alerts_webhook_url, _slack_payload),
        ("webhook", settings.alert_webhook_url, _webhook_payload),
    )

    for channel, url, build_payload in channels:
        if not url:
            continue
        payload = build_payload(title, message, severity, details or {}, sent_at)
        try:
            await _post_json(url, payload, transport)
        except httpx.HTTPError as e:
            logger.error(f"Failed to send {channel} alert: {e}")


def _slack_payload(
    title: str,
    message: str,
    severity: str,
    details: dict,
    sent_at: str,
) -> dict[str, Any]:
    """Block Kit attachment coloured by severity."""
    blocks: list[dict[str, Any]] = [
        {"type": "header", "text": {"type": "plain_text", "text": title}},
        {"type": "section", "text": {"type": "mrkdwn", "text": message}},
    ]
    if details:
        lines = "\n".join(f"• *{key}*: {value}" for key, value in details.items())
        blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": lines}})
    blocks.append({
        "type": "context",
        "elements": [
            {"type": "mrkdwn", "text": f"Severity: *{severity.upper()}* | Time: {sent_at}"},
        ],
    })
    color = SEVERITY_COLORS.get(severity, SEVERITY_COLORS["error"])
    return {"attachments": [{"color": color, "blocks": blocks}]}


def _webhook_payload(
    title: str,
    message: str,
    severity: str,
    details: dict,
    sent_at: str,
) -> dict[str, Any]:
    return {
        "title": title,
        "message": message,
        "severity": severity,
        "timestamp": sent_at,
        "source": ALERT_SOURCE,
        "details": details,
    }


async def _post_json(
    url: str,
    payload: dict[str, Any],
    transport: httpx.AsyncBaseTransport | None = None,
) -> None:
    async with httpx.AsyncClient(transport=transport, timeout=10) as client:
        response = await client.post(url, json=payload)
        response.raise_for_status()


# =============================================================================
# SWEEP
# =============================================================================


async def run_sla_sweep(
    database_url: str | None = None,
    monitor_config: MonitorConfig | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Main entry point for the sweep.

    This function:
    1. Runs the over-SLA check in its own transaction
    2. Runs the stall check in its own transaction
    3. Logs a summary and alerts on failure

    A check that loses a race with another instance is rolled back and
    reported as skipped; the winner has already enqueued the same rows.
    """
    start_time = utcnow()
    logger.info(f"Starting SLA sweep at {start_time.isoformat()}")

    engine = build_engine(database_url or get_settings().database_url)
    session_factory = build_session_factory(engine)
    config = monitor_config or MonitorConfig.from_settings()

    results: dict[str, Any] = {
        "started_at": start_time.isoformat(),
        "completed_at": None,
        "over_sla_flagged": 0,
        "stalled_flagged": 0,
        "notifications_created": 0,
        "notifications_suppressed": 0,
        "skipped_checks": [],
        "errors": [],
    }

    checks = (
        ("over_sla", SlaMonitor.run_sla_check, "over_sla_flagged"),
        ("stalled", SlaMonitor.run_stall_check, "stalled_flagged"),
    )

    try:
        for name, check, flagged_key in checks:
            try:
                async with session_factory() as session:
                    async with session.begin():
                        outcome = await check(_monitor(session, config), now)
            except ConcurrencyConflictError as e:
                logger.warning(f"{name} check skipped, concurrent sweep won: {e}")
                results["skipped_checks"].append(name)
                continue

            results[flagged_key] = outcome.reports_flagged
            results["notifications_created"] += outcome.notifications_created
            results["notifications_suppressed"] += outcome.notifications_suppressed

    except Exception as e:
        error_msg = f"SLA sweep failed: {str(e)}"
        logger.error(error_msg)
        results["errors"].append(error_msg)

        await send_alert(
            title="SLA Sweep Failed",
            message="The period report SLA sweep crashed unexpectedly.",
            severity="critical",
            details={
                "error": str(e),
                "traceback": traceback.format_exc()[-500:],  # Last 500 chars
                "started_at": results["started_at"],
            },
        )
        raise

    finally:
        await engine.dispose()

    end_time = utcnow()
    results["completed_at"] = end_time.isoformat()
    results["duration_seconds"] = (end_time - start_time).total_seconds()

    logger.info(
        f"SLA sweep completed in {results['duration_seconds']:.2f}s: "
        f"{results['over_sla_flagged']} over SLA, {results['stalled_flagged']} stalled, "
        f"{results['notifications_created']} notifications"
    )
    return results


def _monitor(session: AsyncSession, config: MonitorConfig) -> SlaMonitor:
    return SlaMonitor(session, config=config)


async def run_forever(
    database_url: str,
    interval_minutes: int,
    monitor_config: MonitorConfig | None = None,
) -> None:
    """Run the sweep on a fixed interval until cancelled."""
    while True:
        try:
            await run_sla_sweep(database_url, monitor_config=monitor_config)
        except Exception as e:
            # Already alerted; keep the loop alive for the next interval
            logger.error(f"Sweep iteration failed: {e}")
        await asyncio.sleep(interval_minutes * 60)


# =============================================================================
# CLI ENTRY POINT
# =============================================================================


def main():
    """CLI entry point for the SLA sweep."""
    import argparse

    settings = get_settings()

    parser = argparse.ArgumentParser(description="Run the period report SLA/stall sweep")
    parser.add_argument(
        "--database-url",
        default=settings.database_url,
        help="Database connection string",
    )
    parser.add_argument(
        "--stall-hours",
        type=int,
        default=settings.stall_threshold_hours,
        help="Hours without stage activity before a report is stalled",
    )
    parser.add_argument(
        "--loop",
        action="store_true",
        help="Keep running, sweeping every --interval-minutes",
    )
    parser.add_argument(
        "--interval-minutes",
        type=int,
        default=settings.sweep_interval_minutes,
        help="Minutes between sweeps when --loop is set",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    config = MonitorConfig(
        stall_threshold_hours=args.stall_hours,
        cooldown_hours=settings.notification_cooldown_hours,
    )

    if args.loop:
        try:
            asyncio.run(run_forever(args.database_url, args.interval_minutes, config))
        except KeyboardInterrupt:
            logger.info("Sweep loop stopped")
        return

    try:
        results = asyncio.run(run_sla_sweep(args.database_url, monitor_config=config))
        print(f"Sweep completed: {results}")
    except Exception as e:
        print(f"Sweep failed: {e}")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
