from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from sqlalchemy import func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from event_reminder.models.event import Event, EventStatus, Periodicity

UPDATABLE_FIELDS = frozenset({"fire_at", "status", "periodicity", "weekdays", "text"})


def _check_fields(fields: Mapping[str, Any]) -> None:
    if not fields:
        raise ValueError("No fields to update")
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Fields are not updatable: {sorted(unknown)}")


class EventRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create_one(
        self,
        chat_id: int,
        text: str,
        fire_at: datetime,
        periodicity: Periodicity | None = None,
        weekdays: Iterable[int] = (),
        status: EventStatus = EventStatus.enabled,
    ) -> Event:
        stmt = insert(Event).returning(Event)
        result = await self._session.execute(
            stmt,
            [
                {
                    "chat_id": chat_id,
                    "text": text,
                    "fire_at": fire_at,
                    "periodicity": periodicity,
                    "weekdays": sorted(set(weekdays)),
                    "status": status,
                }
            ],
        )
        await self._session.commit()
        return result.scalars().one()

    async def get_by_id(self, event_id: int) -> Event | None:
        return await self._session.get(Event, event_id, populate_existing=True)

    async def list_due_enabled(self, until_dt: datetime, limit: int = 100) -> list[Event]:
        stmt = (
            select(Event)
            .where(Event.status == EventStatus.enabled, Event.fire_at <= until_dt)
            .order_by(Event.fire_at.asc(), Event.id.asc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_enabled(self, chat_id: int | None = None) -> list[Event]:
        stmt = select(Event).where(Event.status == EventStatus.enabled)
        if chat_id is not None:
            stmt = stmt.where(Event.chat_id == chat_id)
        stmt = stmt.order_by(Event.fire_at.asc(), Event.id.asc())
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_enabled_between(self, from_dt: datetime, to_dt: datetime) -> list[Event]:
        stmt = (
            select(Event)
            .where(
                Event.status == EventStatus.enabled,
                Event.fire_at >= from_dt,
                Event.fire_at < to_dt,
            )
            .order_by(Event.chat_id.asc(), Event.fire_at.asc(), Event.id.asc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def update_fields(
        self,
        event_id: int,
        fields: Mapping[str, Any],
        *,
        expected_fire_at: datetime | None = None,
    ) -> bool:
        _check_fields(fields)
        stmt = update(Event).where(Event.id == event_id)
        if expected_fire_at is not None:
            stmt = stmt.where(Event.fire_at == expected_fire_at)
        stmt = stmt.values(**fields).execution_options(synchronize_session=False)
        result = await self._session.execute(stmt)
        await self._session.commit()
        return bool(result.rowcount)

    async def count_periodic(self, chat_id: int) -> int:
        stmt = select(func.count(Event.id)).where(
            Event.chat_id == chat_id,
            Event.status == EventStatus.enabled,
            Event.periodicity.is_not(None),
        )
        result = await self._session.execute(stmt)
        return int(result.scalar_one())

    async def soft_delete(self, event_id: int, *, expected_fire_at: datetime | None = None) -> bool:
        stmt = update(Event).where(Event.id == event_id, Event.status != EventStatus.deleted)
        if expected_fire_at is not None:
            stmt = stmt.where(Event.fire_at == expected_fire_at)
        stmt = stmt.values(status=EventStatus.deleted).execution_options(synchronize_session=False)
        result = await self._session.execute(stmt)
        await self._session.commit()
        return bool(result.rowcount)
