from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from event_reminder.core.errors import EventStoreError
from event_reminder.models.event import EventStatus, Periodicity
from event_reminder.services.reconciliation import ReconciliationSweep, run_reconciliation_sweep
from event_reminder.services.reminder_scheduler import FireOutcome, ReminderScheduler
from tests.fakes import FakeEvent, FakeNotifier, FakeStore


def _build(records, notifier: FakeNotifier | None = None):
    store = FakeStore(records)
    notifier = notifier or FakeNotifier()
    scheduler = ReminderScheduler(store, notifier)
    return store, notifier, scheduler, ReconciliationSweep(store, scheduler)


@pytest.mark.asyncio
async def test_sweep_delivers_and_retires_overdue_one_shot_event() -> None:
    now = datetime.now(timezone.utc)
    store, notifier, scheduler, sweep = _build(
        [FakeEvent(id=1, chat_id=42, text="call mom", fire_at=now - timedelta(hours=1))]
    )

    report = await sweep.run(now=now)

    assert notifier.delivered == [(42, "call mom")]
    assert store.deleted == [1]
    assert store.records[1].status == EventStatus.deleted
    assert report.processed == 1
    assert report.delivered == 1
    assert report.count(FireOutcome.retired) == 1
    assert report.errors == 0


@pytest.mark.asyncio
async def test_sweep_reschedules_recurring_event_and_arms_timer() -> None:
    now = datetime.now(timezone.utc)
    fire_at = now - timedelta(hours=1)
    store, notifier, scheduler, sweep = _build(
        [FakeEvent(id=2, chat_id=7, text="water plants", fire_at=fire_at, periodicity=Periodicity.daily)]
    )

    try:
        report = await sweep.run(now=now)

        assert notifier.delivered == [(7, "water plants")]
        assert store.updates == [(2, {"fire_at": fire_at + timedelta(hours=24)})]
        assert report.count(FireOutcome.rescheduled) == 1
        assert scheduler.is_scheduled(2)
    finally:
        await scheduler.cancel_all()


@pytest.mark.asyncio
async def test_sweep_ignores_future_and_disabled_events() -> None:
    now = datetime.now(timezone.utc)
    store, notifier, _, sweep = _build(
        [
            FakeEvent(id=1, chat_id=1, text="later", fire_at=now + timedelta(hours=1)),
            FakeEvent(id=2, chat_id=1, text="off", fire_at=now - timedelta(hours=1), status=EventStatus.disabled),
        ]
    )

    report = await sweep.run(now=now)

    assert report.processed == 0
    assert notifier.delivered == []
    assert store.deleted == []


@pytest.mark.asyncio
async def test_sweep_continues_after_single_event_failures() -> None:
    now = datetime.now(timezone.utc)
    store, notifier, _, sweep = _build(
        [
            FakeEvent(id=1, chat_id=1, text="a", fire_at=now - timedelta(minutes=3)),
            FakeEvent(id=2, chat_id=2, text="b", fire_at=now - timedelta(minutes=2)),
            FakeEvent(id=3, chat_id=3, text="c", fire_at=now - timedelta(minutes=1)),
        ],
        notifier=FakeNotifier(fail_chat_ids={3}),
    )
    store.fetch_errors[1] = EventStoreError("db down")
    store.fetch_errors[2] = RuntimeError("unexpected")

    report = await sweep.run(now=now)

    assert report.processed == 3
    assert report.errors == 2
    assert report.count(FireOutcome.failed) == 1
    assert report.count(FireOutcome.retired) == 1
    assert report.delivered == 0
    assert store.deleted == [3]
    assert notifier.delivered == []


@pytest.mark.asyncio
async def test_sweep_respects_batch_size() -> None:
    now = datetime.now(timezone.utc)
    store = FakeStore(
        [FakeEvent(id=i, chat_id=i, text=str(i), fire_at=now - timedelta(minutes=10 - i)) for i in range(1, 6)]
    )
    notifier = FakeNotifier()
    sweep = ReconciliationSweep(store, ReminderScheduler(store, notifier), batch_size=2)

    report = await sweep.run(now=now)

    assert report.processed == 2
    assert [chat_id for chat_id, _ in notifier.delivered] == [1, 2]


@pytest.mark.asyncio
async def test_run_reconciliation_sweep_swallows_query_failure() -> None:
    store, _, _, sweep = _build([])
    store.fetch_due_error = EventStoreError("db down")

    assert await run_reconciliation_sweep(sweep) is None


@pytest.mark.asyncio
async def test_run_propagates_query_failure() -> None:
    store, _, _, sweep = _build([])
    store.fetch_due_error = EventStoreError("db down")

    with pytest.raises(EventStoreError):
        await sweep.run()
