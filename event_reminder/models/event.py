from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import JSON, BigInteger, DateTime, Enum as SqlEnum, String
from sqlalchemy.orm import Mapped, mapped_column

from event_reminder.db.base import Base

EVENT_TEXT_MAX_LENGTH = 200


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EventStatus(str, Enum):
    enabled = "enabled"
    disabled = "disabled"
    deleted = "deleted"


class Periodicity(str, Enum):
    hourly = "hourly"
    daily = "daily"
    weekly = "weekly"
    weekdays = "weekdays"


class Event(Base):
    __tablename__ = "events"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    chat_id: Mapped[int] = mapped_column(BigInteger, index=True)
    text: Mapped[str] = mapped_column(String(EVENT_TEXT_MAX_LENGTH), nullable=False)
    fire_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    status: Mapped[EventStatus] = mapped_column(
        SqlEnum(EventStatus, name="event_status"),
        default=EventStatus.enabled,
        nullable=False,
    )
    periodicity: Mapped[Periodicity | None] = mapped_column(
        SqlEnum(Periodicity, name="event_periodicity"),
        nullable=True,
    )
    weekdays: Mapped[list[int]] = mapped_column(JSON, default=list, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
