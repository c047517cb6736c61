from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, time, timedelta, timezone, tzinfo
from itertools import groupby
from typing import Any, Protocol

from event_reminder.core.errors import EventStoreError, NotifyError
from event_reminder.models.event import Periodicity
from event_reminder.services.reminder_event import ReminderEvent

logger = logging.getLogger(__name__)

DIGEST_HEADER = "📅 События на сегодня:"

WEEKDAY_NAMES = {
    1: "Пн",
    2: "Вт",
    3: "Ср",
    4: "Чт",
    5: "Пт",
    6: "Сб",
    7: "Вс",
}

PERIODICITY_LABELS = {
    Periodicity.hourly: "🔄 Каждый час",
    Periodicity.daily: "🔄 Ежедневно",
    Periodicity.weekly: "🔄 Еженедельно",
}


class DigestStore(Protocol):
    async def list_enabled_between(self, from_dt: datetime, to_dt: datetime) -> list[Any]: ...


class DigestSender(Protocol):
    async def send(self, chat_id: int, text: str) -> None: ...


def _recurrence_line(event: ReminderEvent) -> str:
    if event.periodicity is None:
        return "⏹️ Без повтора"
    if event.periodicity == Periodicity.weekdays:
        days = ", ".join(WEEKDAY_NAMES[d] for d in sorted(event.weekdays) if d in WEEKDAY_NAMES)
        return f"🔄 По дням: {days}"
    return PERIODICITY_LABELS[event.periodicity]


def build_digest_text(events: Sequence[ReminderEvent], tz: tzinfo) -> str:
    lines = [DIGEST_HEADER, ""]
    for idx, event in enumerate(events, start=1):
        lines.append(f"{idx}. {event.text}: {event.fire_at.astimezone(tz).strftime('%H:%M')}")
        lines.append(_recurrence_line(event))
    return "\n".join(lines)


def day_bounds(now: datetime, tz: tzinfo) -> tuple[datetime, datetime]:
    today = now.astimezone(tz).date()
    start = datetime.combine(today, time.min, tzinfo=tz)
    end = datetime.combine(today + timedelta(days=1), time.min, tzinfo=tz)
    return start, end


async def send_daily_digest(
    store: DigestStore,
    sender: DigestSender,
    tz: tzinfo,
    now: datetime | None = None,
) -> int:
    """Send each chat one message listing its enabled events due today."""
    now = now or datetime.now(timezone.utc)
    start, end = day_bounds(now, tz)
    try:
        records = await store.list_enabled_between(start, end)
    except EventStoreError:
        logger.exception("Failed to load events for daily digest")
        return 0

    events = sorted((ReminderEvent.from_record(r) for r in records), key=lambda e: (e.chat_id, e.fire_at, e.id))
    sent = 0
    for chat_id, chat_events in groupby(events, key=lambda e: e.chat_id):
        text = build_digest_text(list(chat_events), tz)
        try:
            await sender.send(chat_id, text)
        except NotifyError:
            logger.exception("Failed to send daily digest chat_id=%s", chat_id)
            continue
        sent += 1
    if sent:
        logger.info("Daily digest sent: chats=%s", sent)
    return sent
