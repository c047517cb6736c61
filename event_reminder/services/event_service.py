from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from event_reminder.core.errors import (
    EventAccessDeniedError,
    EventInactiveError,
    EventLimitError,
    EventNotFoundError,
    EventValidationError,
    PastDateError,
)
from event_reminder.models.event import EVENT_TEXT_MAX_LENGTH, EventStatus, Periodicity
from event_reminder.services.event_store import EventStore, StoredEvent
from event_reminder.services.recurrence import ISO_WEEKDAYS
from event_reminder.services.reminder_event import ReminderEvent
from event_reminder.services.reminder_scheduler import ReminderScheduler

logger = logging.getLogger(__name__)

MAX_PERIODIC_EVENTS = 100


class ManagedEventStore(EventStore, Protocol):
    async def create(
        self,
        chat_id: int,
        text: str,
        fire_at: datetime,
        periodicity: Periodicity | None = None,
        weekdays: Iterable[int] = (),
    ) -> StoredEvent: ...

    async def list_enabled(self, chat_id: int | None = None) -> list[StoredEvent]: ...

    async def count_periodic(self, chat_id: int) -> int: ...


@dataclass(slots=True)
class RestoreReport:
    scheduled: int = 0
    fired: int = 0
    failed: int = 0


def _validate_recurrence(periodicity: Periodicity | None, weekdays: Iterable[int]) -> frozenset[int]:
    days = frozenset(weekdays)
    invalid = days - ISO_WEEKDAYS
    if invalid:
        raise EventValidationError(f"Weekday codes must be within 1..7, got {sorted(invalid)}")
    if periodicity == Periodicity.weekdays and not days:
        raise EventValidationError("At least one weekday is required for weekdays periodicity")
    return days


class EventService:
    """Event mutations that must keep the reminder timers in step with storage."""

    def __init__(
        self,
        store: ManagedEventStore,
        scheduler: ReminderScheduler,
        clock: Callable[[], datetime] | None = None,
        max_periodic_events: int = MAX_PERIODIC_EVENTS,
    ) -> None:
        self._store = store
        self._scheduler = scheduler
        self._clock = clock
        self._max_periodic_events = max_periodic_events

    def _now(self) -> datetime:
        if self._clock is not None:
            return self._clock()
        return datetime.now(timezone.utc)

    async def _check_periodic_limit(self, chat_id: int) -> None:
        count = await self._store.count_periodic(chat_id)
        if count >= self._max_periodic_events:
            raise EventLimitError(
                f"Chat {chat_id} already has {count} recurring events, the limit is {self._max_periodic_events}"
            )

    async def create_event(
        self,
        chat_id: int,
        text: str,
        fire_at: datetime,
        periodicity: Periodicity | None = None,
        weekdays: Iterable[int] = (),
    ) -> ReminderEvent:
        text = text.strip()
        if not text:
            raise EventValidationError("Event text is empty")
        if len(text) > EVENT_TEXT_MAX_LENGTH:
            raise EventValidationError(f"Event text is longer than {EVENT_TEXT_MAX_LENGTH} characters")
        if fire_at.tzinfo is None:
            raise EventValidationError("Event time must be timezone-aware")
        days = _validate_recurrence(periodicity, weekdays)
        if fire_at <= self._now():
            raise PastDateError("Event time is in the past")
        if periodicity is not None:
            await self._check_periodic_limit(chat_id)

        record = await self._store.create(
            chat_id=chat_id,
            text=text,
            fire_at=fire_at,
            periodicity=periodicity,
            weekdays=sorted(days),
        )
        event = ReminderEvent.from_record(record)
        await self._scheduler.schedule(event)
        logger.info("Event created: id=%s chat_id=%s fire_at=%s", event.id, chat_id, fire_at.isoformat())
        return event

    async def _load_owned(self, event_id: int, chat_id: int, *, require_enabled: bool = True) -> Any:
        record = await self._store.fetch_by_id(event_id)
        if record is None or record.status == EventStatus.deleted:
            raise EventNotFoundError(f"Event {event_id} not found")
        if record.chat_id != chat_id:
            raise EventAccessDeniedError(f"Event {event_id} belongs to another chat")
        if require_enabled and record.status != EventStatus.enabled:
            raise EventInactiveError(f"Event {event_id} is not active")
        return record

    async def _move(self, record: Any, new_time: datetime) -> ReminderEvent:
        if new_time <= self._now():
            raise PastDateError("New event time is in the past")
        changed = await self._store.update_fields(record.id, {"fire_at": new_time})
        if not changed:
            raise EventNotFoundError(f"Event {record.id} not found")
        event = ReminderEvent.from_record(record).with_fire_at(new_time)
        await self._scheduler.schedule(event)
        logger.info("Event id=%s moved to %s", record.id, new_time.isoformat())
        return event

    async def snooze(self, event_id: int, chat_id: int, new_time: datetime) -> ReminderEvent:
        record = await self._load_owned(event_id, chat_id)
        return await self._move(record, new_time)

    async def snooze_for(self, event_id: int, chat_id: int, minutes: int) -> ReminderEvent:
        if minutes <= 0:
            raise EventValidationError("Snooze interval must be positive")
        return await self.snooze(event_id, chat_id, self._now() + timedelta(minutes=minutes))

    async def postpone(self, event_id: int, chat_id: int, delta: timedelta) -> ReminderEvent:
        record = await self._load_owned(event_id, chat_id)
        return await self._move(record, record.fire_at + delta)

    async def change_periodicity(
        self,
        event_id: int,
        chat_id: int,
        periodicity: Periodicity | None,
        weekdays: Iterable[int] = (),
    ) -> ReminderEvent:
        record = await self._load_owned(event_id, chat_id)
        days = _validate_recurrence(periodicity, weekdays)
        if periodicity is not None and record.periodicity is None:
            await self._check_periodic_limit(chat_id)
        changed = await self._store.update_fields(
            event_id,
            {"periodicity": periodicity, "weekdays": sorted(days)},
        )
        if not changed:
            raise EventNotFoundError(f"Event {event_id} not found")
        event = ReminderEvent(
            id=record.id,
            chat_id=record.chat_id,
            text=record.text,
            fire_at=record.fire_at,
            periodicity=periodicity,
            weekdays=days,
        )
        await self._scheduler.schedule(event)
        return event

    async def mark_done(self, event_id: int, chat_id: int) -> None:
        await self._load_owned(event_id, chat_id, require_enabled=False)
        await self._retire(event_id)

    async def delete(self, event_id: int, chat_id: int) -> None:
        await self._load_owned(event_id, chat_id, require_enabled=False)
        await self._retire(event_id)

    async def _retire(self, event_id: int) -> None:
        await self._scheduler.cancel(event_id)
        if not await self._store.soft_delete(event_id):
            raise EventNotFoundError(f"Event {event_id} not found")
        logger.info("Event id=%s deleted", event_id)

    async def restore_all(self) -> RestoreReport:
        """Arm timers for every enabled event after a process start."""
        report = RestoreReport()
        records = await self._store.list_enabled()
        for record in records:
            event = ReminderEvent.from_record(record)
            try:
                handle = await self._scheduler.schedule(event)
                if handle is None:
                    result = await self._scheduler.fire(event)
                    if result.next_event is not None:
                        await self._scheduler.schedule(result.next_event)
                    report.fired += 1
                else:
                    report.scheduled += 1
            except Exception:
                report.failed += 1
                logger.exception("Failed to restore event id=%s", event.id)
        logger.info(
            "Reminder timers restored: scheduled=%s fired=%s failed=%s",
            report.scheduled,
            report.fired,
            report.failed,
        )
        return report
