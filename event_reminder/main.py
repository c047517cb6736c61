import logging
from contextlib import asynccontextmanager
from zoneinfo import ZoneInfo

from aiogram.utils.token import TokenValidationError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI

from event_reminder.api.routes import router as api_router
from event_reminder.core.settings import get_settings
from event_reminder.db.session import SessionLocal
from event_reminder.observability.logging_config import configure_logging
from event_reminder.services.daily_digest import send_daily_digest
from event_reminder.services.event_service import EventService
from event_reminder.services.event_store import SessionEventStore
from event_reminder.services.notifier import TelegramNotifier
from event_reminder.services.reconciliation import ReconciliationSweep, run_reconciliation_sweep
from event_reminder.services.reminder_scheduler import ReminderScheduler
from event_reminder.telegram.runtime import build_bot

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.app_log_level)
    local_tz = ZoneInfo(settings.app_timezone)
    bot = None
    try:
        bot = build_bot()
    except TokenValidationError:
        logger.warning("Telegram bot token is invalid. Reminder delivery is disabled.")
    app.state.bot = bot
    app.state.reminder_scheduler = None
    scheduler = AsyncIOScheduler(timezone=local_tz)
    app.state.scheduler = scheduler
    if bot is not None:
        store = SessionEventStore(SessionLocal)
        notifier = TelegramNotifier(bot)
        reminder_scheduler = ReminderScheduler(store, notifier, tz=local_tz)
        sweep = ReconciliationSweep(store, reminder_scheduler, batch_size=settings.reminder_sweep_batch_size)
        event_service = EventService(
            store,
            reminder_scheduler,
            max_periodic_events=settings.max_periodic_events,
        )
        app.state.reminder_scheduler = reminder_scheduler
        app.state.event_service = event_service

        if settings.restore_on_startup:
            try:
                await event_service.restore_all()
            except Exception:
                logger.exception("Failed to restore reminder timers, relying on the sweep")

        scheduler.add_job(
            run_reconciliation_sweep,
            "interval",
            seconds=settings.reminder_sweep_interval_seconds,
            kwargs={"sweep": sweep},
            max_instances=1,
            coalesce=True,
            id="reminder-reconciliation-sweep",
            replace_existing=True,
        )
        if settings.daily_digest_enabled:
            scheduler.add_job(
                send_daily_digest,
                "cron",
                hour=settings.daily_digest_hour,
                minute=0,
                kwargs={"store": store, "sender": notifier, "tz": local_tz},
                max_instances=1,
                coalesce=True,
                id="daily-digest",
                replace_existing=True,
            )
        scheduler.start()
    logger.info("Application started")
    try:
        yield
    finally:
        scheduler = getattr(app.state, "scheduler", None)
        if scheduler is not None and scheduler.running:
            scheduler.shutdown(wait=False)
        reminder_scheduler = getattr(app.state, "reminder_scheduler", None)
        if reminder_scheduler is not None:
            await reminder_scheduler.cancel_all()
        if bot is not None:
            await bot.session.close()
        logger.info("Application stopped")


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.include_router(api_router)
    return app


app = create_app()
