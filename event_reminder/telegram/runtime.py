from aiogram import Bot

from event_reminder.core.settings import get_settings


def build_bot() -> Bot:
    settings = get_settings()
    return Bot(token=settings.telegram_bot_token)
