from __future__ import annotations

from collections.abc import AsyncIterator, Iterable, Mapping
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from event_reminder.core.errors import EventStoreError
from event_reminder.models.event import EventStatus, Periodicity
from event_reminder.repositories.event_repository import EventRepository


class StoredEvent(Protocol):
    id: int
    chat_id: int
    text: str
    fire_at: datetime
    status: EventStatus
    periodicity: Periodicity | None
    weekdays: list[int]


class EventStore(Protocol):
    async def fetch_by_id(self, event_id: int) -> StoredEvent | None: ...

    async def fetch_due(self, now: datetime, limit: int = 100) -> list[StoredEvent]: ...

    async def update_fields(
        self,
        event_id: int,
        fields: Mapping[str, Any],
        *,
        expected_fire_at: datetime | None = None,
    ) -> bool: ...

    async def soft_delete(self, event_id: int, *, expected_fire_at: datetime | None = None) -> bool: ...


class SessionEventStore:
    """Event store that opens a short-lived session for every call.

    Timers outlive any single request, so each operation gets its own session
    and commits on its own. Database errors surface as ``EventStoreError``.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _repository(self, operation: str) -> AsyncIterator[EventRepository]:
        try:
            async with self._session_factory() as session:
                yield EventRepository(session)
        except SQLAlchemyError as exc:
            raise EventStoreError(f"Event store {operation} failed") from exc

    async def fetch_by_id(self, event_id: int):
        async with self._repository("fetch_by_id") as repository:
            return await repository.get_by_id(event_id)

    async def fetch_due(self, now: datetime, limit: int = 100):
        async with self._repository("fetch_due") as repository:
            return await repository.list_due_enabled(until_dt=now, limit=limit)

    async def update_fields(
        self,
        event_id: int,
        fields: Mapping[str, Any],
        *,
        expected_fire_at: datetime | None = None,
    ) -> bool:
        async with self._repository("update_fields") as repository:
            return await repository.update_fields(event_id, fields, expected_fire_at=expected_fire_at)

    async def soft_delete(self, event_id: int, *, expected_fire_at: datetime | None = None) -> bool:
        async with self._repository("soft_delete") as repository:
            return await repository.soft_delete(event_id, expected_fire_at=expected_fire_at)

    async def count_periodic(self, chat_id: int) -> int:
        async with self._repository("count_periodic") as repository:
            return await repository.count_periodic(chat_id)

    async def create(
        self,
        chat_id: int,
        text: str,
        fire_at: datetime,
        periodicity: Periodicity | None = None,
        weekdays: Iterable[int] = (),
    ):
        async with self._repository("create") as repository:
            return await repository.create_one(
                chat_id=chat_id,
                text=text,
                fire_at=fire_at,
                periodicity=periodicity,
                weekdays=weekdays,
            )

    async def list_enabled(self, chat_id: int | None = None):
        async with self._repository("list_enabled") as repository:
            return await repository.list_enabled(chat_id=chat_id)

    async def list_enabled_between(self, from_dt: datetime, to_dt: datetime):
        async with self._repository("list_enabled_between") as repository:
            return await repository.list_enabled_between(from_dt, to_dt)
