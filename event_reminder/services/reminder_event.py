from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from event_reminder.models.event import Periodicity


@dataclass(frozen=True, slots=True)
class ReminderEvent:
    id: int
    chat_id: int
    text: str
    fire_at: datetime
    periodicity: Periodicity | None = None
    weekdays: frozenset[int] = field(default_factory=frozenset)

    @classmethod
    def from_record(cls, record: Any) -> ReminderEvent:
        periodicity = record.periodicity
        if periodicity is not None and not isinstance(periodicity, Periodicity):
            periodicity = Periodicity(periodicity)
        return cls(
            id=record.id,
            chat_id=record.chat_id,
            text=record.text,
            fire_at=record.fire_at,
            periodicity=periodicity,
            weekdays=frozenset(record.weekdays or ()),
        )

    def with_fire_at(self, fire_at: datetime) -> ReminderEvent:
        return replace(self, fire_at=fire_at)
