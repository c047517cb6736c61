from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from event_reminder.core.settings import get_settings

settings = get_settings()

engine = create_async_engine(settings.database_url, future=True, echo=False)
SessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
