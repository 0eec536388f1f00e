"""Background jobs: event relay and stuck-transfer escalation."""
from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from settlement.config import Settings
from settlement.services.events import relay_pending_events_once
from settlement.services.transfers import escalate_stuck_transfers_once

logger = logging.getLogger(__name__)

_scheduler: AsyncIOScheduler | None = None


def start_scheduler(settings: Settings) -> AsyncIOScheduler:
    """Start the in-process scheduler once per process.

    Only one replica should run with SCHEDULER_ENABLED; the jobs are safe to
    repeat but not coordinated across processes.
    """

    global _scheduler
    if _scheduler is not None:
        return _scheduler
    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        relay_pending_events_once,
        "interval",
        minutes=1,
        id="relay-domain-events",
        replace_existing=True,
    )
    scheduler.add_job(
        escalate_stuck_transfers_once,
        "interval",
        minutes=5,
        id="escalate-stuck-transfers",
        replace_existing=True,
    )
    scheduler.start()
    _scheduler = scheduler
    if settings.app_env.lower() != "dev":
        logger.warning(
            "APScheduler enabled; ensure only one runner has SCHEDULER_ENABLED=1.",
            extra={"env": settings.app_env},
        )
    return scheduler


def stop_scheduler() -> None:
    global _scheduler
    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None


def scheduler_running() -> bool:
    return _scheduler is not None and _scheduler.running


__all__ = ["start_scheduler", "stop_scheduler", "scheduler_running"]
