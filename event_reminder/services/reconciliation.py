from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone

from event_reminder.services.event_store import EventStore
from event_reminder.services.reminder_event import ReminderEvent
from event_reminder.services.reminder_scheduler import FireOutcome, ReminderScheduler

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SweepReport:
    processed: int = 0
    delivered: int = 0
    errors: int = 0
    outcomes: Counter[str] = field(default_factory=Counter)

    def count(self, outcome: FireOutcome) -> int:
        return self.outcomes.get(outcome.value, 0)


class ReconciliationSweep:
    """Store-driven pass over every enabled event that is due.

    Timers live only in memory, so this is what catches up after a restart or
    a missed wakeup. It goes through the same fire path as the timers.
    """

    def __init__(self, store: EventStore, scheduler: ReminderScheduler, batch_size: int = 100) -> None:
        self._store = store
        self._scheduler = scheduler
        self._batch_size = batch_size

    async def run(self, now: datetime | None = None) -> SweepReport:
        now = now or datetime.now(timezone.utc)
        report = SweepReport()
        due_items = await self._store.fetch_due(now, limit=self._batch_size)
        for item in due_items:
            report.processed += 1
            try:
                event = ReminderEvent.from_record(item)
                result = await self._scheduler.fire(event)
                if result.next_event is not None:
                    await self._scheduler.schedule(result.next_event)
            except Exception:
                report.errors += 1
                logger.exception("Failed to process due event id=%s", getattr(item, "id", None))
                continue
            report.outcomes[result.outcome.value] += 1
            if result.delivered:
                report.delivered += 1
            if result.outcome == FireOutcome.failed:
                report.errors += 1
        return report


async def run_reconciliation_sweep(sweep: ReconciliationSweep) -> SweepReport | None:
    try:
        report = await sweep.run()
    except Exception:
        logger.exception("Reconciliation sweep failed")
        return None
    if report.processed:
        logger.info(
            "Reconciliation sweep done: processed=%s delivered=%s errors=%s outcomes=%s",
            report.processed,
            report.delivered,
            report.errors,
            dict(report.outcomes),
        )
    return report
