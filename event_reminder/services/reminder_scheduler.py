"""In-process reminder timers.

Every pending reminder runs as its own asyncio task that sleeps until the
event's ``fire_at`` or until its handle is cancelled. A fire always re-reads
the stored event first: whatever is in storage wins over the in-memory copy.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from enum import Enum

from event_reminder.core.errors import EventStoreError
from event_reminder.models.event import EventStatus
from event_reminder.services.event_store import EventStore
from event_reminder.services.notifier import Notifier
from event_reminder.services.recurrence import advance_past, next_fire_time
from event_reminder.services.reminder_event import ReminderEvent

logger = logging.getLogger(__name__)


class FireOutcome(str, Enum):
    rescheduled = "rescheduled"
    retired = "retired"
    not_found = "not_found"
    inactive = "inactive"
    superseded = "superseded"
    cancelled = "cancelled"
    failed = "failed"


@dataclass(slots=True)
class FireResult:
    event_id: int
    outcome: FireOutcome
    delivered: bool = False
    next_event: ReminderEvent | None = None


class TimerHandle:
    def __init__(self, event_id: int) -> None:
        self.event_id = event_id
        self.task: asyncio.Task[None] | None = None
        self._cancelled = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    async def wait(self, delay: float) -> bool:
        """Sleep for ``delay`` seconds; ``False`` if cancelled first."""
        if self.cancelled:
            return False
        try:
            await asyncio.wait_for(self._cancelled.wait(), timeout=max(delay, 0.0))
        except asyncio.TimeoutError:
            return not self.cancelled
        return False


class TimerRegistry:
    """Map of event id to its single active timer handle."""

    def __init__(self) -> None:
        self._handles: dict[int, TimerHandle] = {}
        self._lock = asyncio.Lock()

    def __contains__(self, event_id: int) -> bool:
        return event_id in self._handles

    def __len__(self) -> int:
        return len(self._handles)

    def get(self, event_id: int) -> TimerHandle | None:
        return self._handles.get(event_id)

    def ids(self) -> list[int]:
        return sorted(self._handles)

    async def replace(self, event_id: int, handle: TimerHandle) -> TimerHandle | None:
        async with self._lock:
            previous = self._handles.get(event_id)
            self._handles[event_id] = handle
        if previous is not None and previous is not handle:
            previous.cancel()
        return previous

    async def pop(self, event_id: int) -> TimerHandle | None:
        async with self._lock:
            return self._handles.pop(event_id, None)

    async def discard(self, event_id: int, handle: TimerHandle) -> bool:
        async with self._lock:
            if self._handles.get(event_id) is not handle:
                return False
            del self._handles[event_id]
            return True

    async def cancel_all(self) -> list[TimerHandle]:
        async with self._lock:
            handles = list(self._handles.values())
            self._handles.clear()
        for handle in handles:
            handle.cancel()
        return handles


class ReminderScheduler:
    def __init__(
        self,
        store: EventStore,
        notifier: Notifier,
        *,
        registry: TimerRegistry | None = None,
        tz: tzinfo | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._registry = registry if registry is not None else TimerRegistry()
        self._tz = tz
        self._clock = clock

    @property
    def registry(self) -> TimerRegistry:
        return self._registry

    def _now(self) -> datetime:
        if self._clock is not None:
            return self._clock()
        return datetime.now(timezone.utc)

    def is_scheduled(self, event_id: int) -> bool:
        return event_id in self._registry

    def scheduled_ids(self) -> list[int]:
        return self._registry.ids()

    async def schedule(self, event: ReminderEvent) -> TimerHandle | None:
        """Arm a timer for ``event``, superseding any earlier timer for its id.

        Returns ``None`` when nothing was armed because the event is already
        due: a one-shot event is left for retirement by the caller, and a
        recurring one whose catch-up ran out of occurrences is too.
        """
        if event.fire_at <= self._now():
            if event.periodicity is None:
                logger.info("Event id=%s is already due, not scheduling", event.id)
                return None
            caught_up = await self._catch_up(event)
            if caught_up is None:
                return None
            event = caught_up

        handle = TimerHandle(event.id)
        previous = await self._registry.replace(event.id, handle)
        if previous is not None:
            logger.debug("Superseded timer for event id=%s", event.id)
        handle.task = asyncio.create_task(self._run_timer(handle, event), name=f"reminder-{event.id}")
        logger.debug("Scheduled event id=%s at %s", event.id, event.fire_at.isoformat())
        return handle

    async def _catch_up(self, event: ReminderEvent) -> ReminderEvent | None:
        """Skip missed occurrences without delivering them and persist the next one."""
        next_fire_at = advance_past(event.periodicity, event.weekdays, event.fire_at, self._now(), self._tz)
        if next_fire_at is None:
            logger.info("Event id=%s has no further occurrences", event.id)
            return None
        changed = await self._store.update_fields(
            event.id,
            {"fire_at": next_fire_at},
            expected_fire_at=event.fire_at,
        )
        if not changed:
            logger.info("Event id=%s changed in storage during catch-up, not scheduling", event.id)
            return None
        logger.info("Event id=%s skipped missed occurrences up to %s", event.id, next_fire_at.isoformat())
        return event.with_fire_at(next_fire_at)

    async def cancel(self, event_id: int) -> bool:
        handle = await self._registry.pop(event_id)
        if handle is None:
            return False
        handle.cancel()
        logger.debug("Cancelled timer for event id=%s", event_id)
        return True

    async def cancel_all(self, timeout: float = 5.0) -> int:
        """Cancel every timer and give the tasks a moment to wind down."""
        handles = await self._registry.cancel_all()
        tasks = [h.task for h in handles if h.task is not None and not h.task.done()]
        if tasks:
            await asyncio.wait(tasks, timeout=timeout)
        if handles:
            logger.info("Cancelled %s pending reminder timers", len(handles))
        return len(handles)

    async def _run_timer(self, handle: TimerHandle, event: ReminderEvent) -> None:
        current = event
        try:
            while True:
                delay = (current.fire_at - self._now()).total_seconds()
                if not await handle.wait(delay):
                    return
                result = await self.fire(current, handle=handle)
                if result.next_event is None or handle.cancelled:
                    return
                current = result.next_event
                if current.fire_at <= self._now():
                    caught_up = await self._catch_up(current)
                    if caught_up is None or handle.cancelled:
                        return
                    current = caught_up
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Reminder timer crashed: event_id=%s", current.id)
        finally:
            await self._registry.discard(current.id, handle)

    async def fire(self, event: ReminderEvent, handle: TimerHandle | None = None) -> FireResult:
        """Deliver ``event`` if storage still agrees it is due, then reschedule or retire it."""
        try:
            stored = await self._store.fetch_by_id(event.id)
        except EventStoreError:
            logger.exception("Failed to load event id=%s before delivery", event.id)
            return FireResult(event.id, FireOutcome.failed)

        if stored is None:
            logger.info("Event id=%s no longer exists, skipping", event.id)
            return FireResult(event.id, FireOutcome.not_found)
        if stored.status != EventStatus.enabled:
            logger.info("Event id=%s is %s, skipping", event.id, getattr(stored.status, "value", stored.status))
            return FireResult(event.id, FireOutcome.inactive)
        if stored.fire_at != event.fire_at:
            logger.info(
                "Event id=%s was moved to %s, skipping stale fire at %s",
                event.id,
                stored.fire_at.isoformat(),
                event.fire_at.isoformat(),
            )
            return FireResult(event.id, FireOutcome.superseded)
        if handle is not None and handle.cancelled:
            return FireResult(event.id, FireOutcome.cancelled)

        current = ReminderEvent.from_record(stored)
        delivered = await self._deliver(current)

        if current.periodicity is not None:
            next_fire_at = next_fire_time(current.periodicity, current.weekdays, current.fire_at, self._tz)
            if next_fire_at is not None:
                return await self._reschedule(current, next_fire_at, delivered)
        return await self._retire(current, delivered)

    async def _deliver(self, event: ReminderEvent) -> bool:
        try:
            await self._notifier.deliver(event.chat_id, event.text)
        except Exception:
            logger.exception("Failed to send reminder id=%s chat_id=%s", event.id, event.chat_id)
            return False
        return True

    async def _reschedule(self, event: ReminderEvent, next_fire_at: datetime, delivered: bool) -> FireResult:
        try:
            changed = await self._store.update_fields(
                event.id,
                {"fire_at": next_fire_at},
                expected_fire_at=event.fire_at,
            )
        except EventStoreError:
            logger.exception("Failed to reschedule event id=%s", event.id)
            return FireResult(event.id, FireOutcome.failed, delivered=delivered)
        if not changed:
            logger.info("Event id=%s changed in storage while firing, not rescheduling", event.id)
            return FireResult(event.id, FireOutcome.superseded, delivered=delivered)
        logger.info("Event id=%s rescheduled to %s", event.id, next_fire_at.isoformat())
        return FireResult(
            event.id,
            FireOutcome.rescheduled,
            delivered=delivered,
            next_event=event.with_fire_at(next_fire_at),
        )

    async def _retire(self, event: ReminderEvent, delivered: bool) -> FireResult:
        try:
            changed = await self._store.soft_delete(event.id, expected_fire_at=event.fire_at)
        except EventStoreError:
            logger.exception("Failed to retire event id=%s", event.id)
            return FireResult(event.id, FireOutcome.failed, delivered=delivered)
        if not changed:
            logger.info("Event id=%s changed in storage while firing, not retiring", event.id)
            return FireResult(event.id, FireOutcome.superseded, delivered=delivered)
        logger.info("Event id=%s retired", event.id)
        return FireResult(event.id, FireOutcome.retired, delivered=delivered)
