from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from event_reminder.models.event import Periodicity
from event_reminder.services.daily_digest import build_digest_text, send_daily_digest
from event_reminder.services.reminder_event import ReminderEvent
from tests.fakes import FailingStore, FakeEvent, FakeNotifier, FakeStore

MOSCOW = ZoneInfo("Europe/Moscow")


def test_build_digest_text_lists_events_with_recurrence() -> None:
    events = [
        ReminderEvent(id=1, chat_id=1, text="Зарядка", fire_at=datetime(2026, 10, 19, 4, 0, tzinfo=timezone.utc)),
        ReminderEvent(
            id=2,
            chat_id=1,
            text="Планёрка",
            fire_at=datetime(2026, 10, 19, 7, 30, tzinfo=timezone.utc),
            periodicity=Periodicity.weekdays,
            weekdays=frozenset({5, 1}),
        ),
        ReminderEvent(
            id=3,
            chat_id=1,
            text="Таблетки",
            fire_at=datetime(2026, 10, 19, 18, 0, tzinfo=timezone.utc),
            periodicity=Periodicity.daily,
        ),
    ]

    text = build_digest_text(events, MOSCOW)

    assert text.splitlines() == [
        "📅 События на сегодня:",
        "",
        "1. Зарядка: 07:00",
        "⏹️ Без повтора",
        "2. Планёрка: 10:30",
        "🔄 По дням: Пн, Пт",
        "3. Таблетки: 21:00",
        "🔄 Ежедневно",
    ]


@pytest.mark.asyncio
async def test_send_daily_digest_groups_by_chat_within_local_day() -> None:
    store = FakeStore(
        [
            FakeEvent(id=1, chat_id=10, text="b", fire_at=datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)),
            FakeEvent(id=2, chat_id=20, text="c", fire_at=datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)),
            FakeEvent(id=3, chat_id=10, text="a", fire_at=datetime(2026, 10, 19, 6, 0, tzinfo=timezone.utc)),
            # 2026-10-19 21:30 UTC is already the next day in Moscow.
            FakeEvent(id=4, chat_id=30, text="late", fire_at=datetime(2026, 10, 19, 21, 30, tzinfo=timezone.utc)),
        ]
    )
    sender = FakeNotifier(fail_chat_ids={20})

    sent = await send_daily_digest(store, sender, MOSCOW, now=datetime(2026, 10, 19, 5, 0, tzinfo=timezone.utc))

    assert sent == 1
    assert [chat_id for chat_id, _ in sender.sent] == [10]
    lines = sender.sent[0][1].splitlines()
    assert lines[2] == "1. a: 09:00"
    assert lines[4] == "2. b: 15:00"
    start, end = store.between_calls[0]
    assert start == datetime(2026, 10, 18, 21, 0, tzinfo=timezone.utc)
    assert end == datetime(2026, 10, 19, 21, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_send_daily_digest_survives_store_failure() -> None:
    sender = FakeNotifier()

    assert await send_daily_digest(FailingStore(), sender, MOSCOW) == 0
    assert sender.sent == []
